from typing import Optional


class ShipfishError(Exception):
    """
    Base class for every error shipfish expects to see in normal operation.
    """
    pass


class ShipfishAppError(ShipfishError):
    """Generic errors."""
    pass


class ConfigProcessingFailed(ShipfishError):
    """
    While loading shipfish.yml or performing our variable substitutions in it,
    we had a problem.
    """
    pass


class SkipConfigProcessing(Exception):
    """
    This is used to skip processing steps when looping through the variable
    substitution classes while processing variable substitutions in shipfish.yml.
    """
    pass


class NoSuchConfigSection(ShipfishError):
    """
    We looked in our shipfish.yml for a section, but it was not present.
    """
    def __init__(self, section: str):
        super().__init__()
        self.section = section

    def __str__(self) -> str:
        return f"No such shipfish.yml section: {self.section}"


class NoSuchConfigSectionItem(ShipfishError):
    """
    We looked an existing shipfish.yml section for a named item, but it was not present.
    """
    def __init__(self, section: str, name: str):
        super().__init__()
        self.section = section
        self.name = name

    def __str__(self) -> str:
        return f'No item named "{self.name}" in shipfish.yml section "{self.section}"'


# ----------------------------------------
# Deployment errors
# ----------------------------------------

class DeploymentError(ShipfishError):
    """
    Something went wrong while we were working on a target.  Every one of these
    knows which step we were on and which family and cluster we were working with,
    so that the operator can tell what to look at.

    Args:
        message: what happened

    Keyword Args:
        step: the orchestration step that failed, e.g. "resolve task definition"
        family: the task definition family / service name of the target
        cluster: the name of the ECS cluster of the target
    """

    default_step: str = 'deploy'

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        family: Optional[str] = None,
        cluster: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step if step else self.default_step
        self.family = family
        self.cluster = cluster

    def __str__(self) -> str:
        where = []
        if self.family:
            where.append(f'family="{self.family}"')
        if self.cluster:
            where.append(f'cluster="{self.cluster}"')
        if where:
            return f'[{self.step}] {", ".join(where)}: {self.message}'
        return f'[{self.step}] {self.message}'


class MissingTaskDefinitionConfig(DeploymentError):
    """
    No task definition revision exists yet and no ``task_definition_config`` was given.
    """
    default_step = 'resolve task definition'


class MissingServiceConfig(DeploymentError):
    """
    No service exists yet and no ``service_config`` was given.
    """
    default_step = 'resolve service'


class NoService(DeploymentError):
    """
    The operation needs an existing service, but there is none.
    """
    default_step = 'resolve service'


class NoTaskDefinition(DeploymentError):
    """
    The operation needs a task definition revision, but none can be resolved.
    """
    default_step = 'resolve task definition'


class NoRunningTasks(DeploymentError):
    """
    We needed a running task for the family, but there are none.
    """
    default_step = 'locate runtime'


class ConvergenceTimeout(DeploymentError):
    """
    We gave up waiting for ECS to report the state we were waiting for.  The
    mutation that started the wait has already been applied: either a service
    update, or a one-off task that may still be running.
    """
    default_step = 'converge'

    #: Steps whose wait is on a one-off task rather than on a service
    TASK_STEPS = ('run task', 'run commands')

    def __str__(self) -> str:
        if self.step in self.TASK_STEPS:
            note = 'the task was already started in AWS and may still be running; check it before running it again.'
        else:
            note = 'the change was already applied in AWS; check the service before retrying the same deploy.'
        return f'{super().__str__()}.  NOTE: {note}'


class TaskFailed(DeploymentError):
    """
    A one-off task ran to completion but exited non-zero.
    """
    default_step = 'run task'

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


class CommandFailed(TaskFailed):
    """
    One of our ``bootstrap_commands`` or ``predeploy_commands`` failed.
    """
    default_step = 'run commands'


class GatewayError(DeploymentError):
    """
    A call to AWS failed.

    Keyword Args:
        retryable: ``True`` if the failure is transient (throttling, a 5xx
            from AWS) and the same call may be tried again.
        code: the AWS error code, if we got one
    """
    default_step = 'aws'

    def __init__(self, message: str, retryable: bool = False, code: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable
        self.code = code
