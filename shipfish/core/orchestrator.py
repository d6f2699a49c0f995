from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from shipfish.core.gateway import AbstractClusterGateway
from shipfish.core.models import Service, TaskDefinition
from shipfish.core.resolvers import (
    MustRegister,
    RegistrationDecision,
    ServiceConvergence,
    TaskDefinitionResolver,
    Unchanged,
)
from shipfish.core.runtime import (
    NetworkAddress,
    RunTaskExecutor,
    RuntimeLocator,
    ShellRequest,
    TaskCommandRunner,
)
from shipfish.core.target import Target
from shipfish.exceptions import DeploymentError, NoService, NoTaskDefinition


logger = logging.getLogger(__name__)


class DeploymentState(Enum):
    IDLE = 'IDLE'
    RESOLVING_TASK_DEFINITION = 'RESOLVING_TASK_DEFINITION'
    RESOLVING_SERVICE = 'RESOLVING_SERVICE'
    CONVERGING = 'CONVERGING'
    SUCCEEDED = 'SUCCEEDED'
    FAILED = 'FAILED'


@dataclass(frozen=True)
class TargetStatus:
    """
    What :py:meth:`DeploymentOrchestrator.status` found.
    """
    task_definition: Optional[TaskDefinition]
    service: Optional[Service]
    hosts: List[NetworkAddress] = field(default_factory=list)


class DeploymentOrchestrator:
    """
    Drive one :py:class:`shipfish.core.target.Target` through a deployment
    operation.

    Every operation starts by reading the current state of the target's task
    definitions and service from AWS, decides what to do with the resolvers, and
    only then starts changing things, so that configuration problems abort
    before anything has been touched.  The first failure aborts the operation;
    we never retry a mutation here.

    :py:attr:`state` tracks where the current operation is.

    Args:
        target: what we are deploying
        gateway: how we talk to the cluster

    Keyword Args:
        command_runner: runs ``bootstrap_commands`` and ``predeploy_commands``;
            anything with a ``run_commands(commands, started_by, task_definition)``
            method
        locator: finds the hosts running our containers
        executor: runs one-off tasks
        shell_launcher: opens interactive shells; anything with an
            ``open_shell(request)`` method
    """

    def __init__(
        self,
        target: Target,
        gateway: AbstractClusterGateway,
        command_runner: Any = None,
        locator: RuntimeLocator = None,
        executor: RunTaskExecutor = None,
        shell_launcher: Any = None
    ) -> None:
        self.target = target
        self.gateway = gateway
        self.executor = executor if executor else RunTaskExecutor(gateway, timeout=target.timeout)
        self.command_runner = command_runner if command_runner else TaskCommandRunner(self.executor, target.cluster)
        self.locator = locator if locator else RuntimeLocator(gateway)
        self.shell_launcher = shell_launcher
        self.resolver = TaskDefinitionResolver(target.family)
        self.convergence = ServiceConvergence(gateway)
        self.state = DeploymentState.IDLE
        #: The exit status of the shell :py:meth:`bash` opened, if it opened one
        self.shell_exit_code: Optional[int] = None

    @property
    def family(self) -> str:
        return self.target.family

    @property
    def cluster(self) -> str:
        return self.target.cluster

    @contextmanager
    def operation(self, name: str) -> Iterator[None]:
        self.state = DeploymentState.IDLE
        logger.info('%s: starting %s on cluster %s', self.family, name, self.cluster)
        try:
            yield
        except Exception:
            self.state = DeploymentState.FAILED
            raise
        self.state = DeploymentState.SUCCEEDED
        logger.info('%s: %s succeeded', self.family, name)

    # ------------------------
    # Helpers
    # ------------------------

    def require_service(self) -> Service:
        service = self.gateway.describe_service(self.cluster, self.family)
        if service is None:
            raise NoService(
                f"No service for '{self.family}'!", step='resolve service', family=self.family, cluster=self.cluster
            )
        return service

    def no_task_definition(self, message: str = None) -> NoTaskDefinition:
        return NoTaskDefinition(
            message if message else f"No task definition for '{self.family}'",
            family=self.family,
            cluster=self.cluster
        )

    def decide_task_definition(self) -> Tuple[Optional[TaskDefinition], RegistrationDecision]:
        """
        Fetch the latest revision and decide whether we need to register a new
        one.  Nothing is changed in AWS.

        Raises:
            NoTaskDefinition: there is no latest revision and no
                ``task_definition_config``
        """
        self.state = DeploymentState.RESOLVING_TASK_DEFINITION
        latest = self.gateway.latest_task_definition(self.family)
        if latest is None and not self.target.task_definition_config:
            raise self.no_task_definition()
        return latest, self.resolver.resolve(latest, self.target.task_definition_config, image=self.target.image)

    def realize(self, decision: RegistrationDecision) -> TaskDefinition:
        if isinstance(decision, Unchanged):
            logger.info('%s: using existing task definition %s', self.family, decision.revision.family_revision)
            return decision.revision
        return self.gateway.register_task_definition(decision.spec)

    def converge(self) -> None:
        self.state = DeploymentState.CONVERGING
        self.convergence.converge(self.cluster, self.family, self.target.timeout)

    # ------------------------
    # Operations
    # ------------------------

    def bootstrap(self) -> TaskDefinition:
        """
        Make sure the target has a task definition and a service, creating
        them from our configuration if they don't exist yet, then run the
        ``bootstrap_commands``.  Running this on a target that already has both
        changes nothing but the commands it runs.

        Raises:
            MissingTaskDefinitionConfig: no task definition exists and there is
                no ``task_definition_config``
            MissingServiceConfig: no service exists and there is no ``service_config``
        """
        with self.operation('bootstrap'):
            self.state = DeploymentState.RESOLVING_TASK_DEFINITION
            latest = self.gateway.latest_task_definition(self.family)
            decision: RegistrationDecision
            if latest is None:
                decision = self.resolver.resolve(None, self.target.task_definition_config, image=self.target.image)
            else:
                decision = Unchanged(latest)
            self.state = DeploymentState.RESOLVING_SERVICE
            service = self.gateway.describe_service(self.cluster, self.family)
            plan = None
            if service is None:
                plan = self.convergence.plan(None, self.target.service_config, family=self.family)
            revision = self.realize(decision)
            if plan is not None:
                self.convergence.apply(plan, self.cluster, self.family, revision.arn)
                self.converge()
            else:
                logger.info('%s: service already exists in cluster %s', self.family, self.cluster)
            if self.target.bootstrap_commands:
                self.command_runner.run_commands(
                    self.target.bootstrap_commands,
                    started_by='bootstrap',
                    task_definition=revision
                )
        return revision

    def short(self) -> TaskDefinition:
        """
        Deploy: register a new task definition revision if our configuration
        calls for one, point the service at it, apply our ``service_config``
        and wait for the service to settle.

        Raises:
            NoService: the service does not exist
            NoTaskDefinition: there is no task definition and no ``task_definition_config``
        """
        with self.operation('short deploy'):
            service = self.require_service()
            _, decision = self.decide_task_definition()
            revision = self.deploy(service, decision)
        return revision

    def full(self) -> TaskDefinition:
        """
        Like :py:meth:`short`, but run the ``predeploy_commands`` against the
        revision we are about to deploy first.  If they fail, the service is
        left alone and any revision we registered for them is deregistered.
        """
        with self.operation('full deploy'):
            service = self.require_service()
            _, decision = self.decide_task_definition()
            if self.target.predeploy_commands:
                revision = self.realize(decision)
                try:
                    self.command_runner.run_commands(
                        self.target.predeploy_commands,
                        started_by='predeploy',
                        task_definition=revision
                    )
                except DeploymentError:
                    if isinstance(decision, MustRegister):
                        logger.warning(
                            '%s: predeploy failed; deregistering %s', self.family, revision.family_revision
                        )
                        self.gateway.deregister_task_definition(revision)
                    raise
                decision = Unchanged(revision)
            revision = self.deploy(service, decision)
        return revision

    def deploy(self, service: Service, decision: RegistrationDecision) -> TaskDefinition:
        self.state = DeploymentState.RESOLVING_SERVICE
        plan = self.convergence.plan(service, self.target.service_config, family=self.family)
        revision = self.realize(decision)
        if self.convergence.apply(plan, self.cluster, self.family, revision.arn):
            self.converge()
        return revision

    def rollback(self, count: int = 1) -> TaskDefinition:
        """
        Point the service back at the revision ``count`` revisions older than
        the latest, then deregister the revisions newer than it.

        The service is updated first: if that fails, nothing is deregistered.

        Raises:
            NoService: the service does not exist
            NoTaskDefinition: there is no task definition, or not enough older
                revisions to roll back to
            DeploymentError: ``count`` is less than 1
        """
        if count < 1:
            raise DeploymentError(
                f'can only roll back 1 or more revisions, not {count}',
                step='rollback',
                family=self.family,
                cluster=self.cluster
            )
        with self.operation('rollback'):
            service = self.require_service()
            self.state = DeploymentState.RESOLVING_TASK_DEFINITION
            arns = self.gateway.list_task_definitions(self.family)
            if not arns:
                raise self.no_task_definition()
            if len(arns) <= count:
                raise self.no_task_definition(
                    f"No task definition for '{self.family}' {count} revision(s) older than the latest"
                )
            previous = self.gateway.describe_task_definition(arns[count])
            self.state = DeploymentState.RESOLVING_SERVICE
            plan = self.convergence.plan(service, self.target.service_config, family=self.family)
            changed = self.convergence.apply(plan, self.cluster, self.family, previous.arn)
            for arn in arns[:count]:
                self.gateway.deregister_task_definition(self.gateway.describe_task_definition(arn))
            if changed:
                self.converge()
        return previous

    def scale(self, desired_count: int) -> None:
        """
        Set the service's desired count and wait for it to settle.

        Raises:
            NoService: the service does not exist
            DeploymentError: ``desired_count`` is negative
        """
        if desired_count < 0:
            raise DeploymentError(
                f'desired count must not be negative, not {desired_count}',
                step='scale',
                family=self.family,
                cluster=self.cluster
            )
        with self.operation('scale'):
            self.require_service()
            self.state = DeploymentState.RESOLVING_SERVICE
            self.gateway.update_service(self.cluster, self.family, {'desiredCount': desired_count})
            self.converge()

    def status(self) -> TargetStatus:
        """
        Report on the target without changing anything.
        """
        with self.operation('status'):
            self.state = DeploymentState.RESOLVING_TASK_DEFINITION
            latest = self.gateway.latest_task_definition(self.family)
            self.state = DeploymentState.RESOLVING_SERVICE
            service = self.gateway.describe_service(self.cluster, self.family)
            hosts = []
            if service is not None:
                for arn in self.gateway.list_running_tasks(self.cluster, self.family):
                    try:
                        hosts.append(self.locator.task_host(self.cluster, self.family, arn))
                    except DeploymentError as e:
                        logger.warning('%s: %s', self.family, e)
        return TargetStatus(task_definition=latest, service=service, hosts=hosts)

    def bash(self) -> ShellRequest:
        """
        Find a live container of the target and, if we have a shell launcher,
        open an interactive shell in it.  The shell's exit status ends up in
        :py:attr:`shell_exit_code`.

        Raises:
            NoTaskDefinition: the family has no task definition
            NoService: the service does not exist
            NoRunningTasks: no tasks of the family are running
        """
        with self.operation('bash'):
            self.state = DeploymentState.RESOLVING_TASK_DEFINITION
            if not self.gateway.list_task_definitions(self.family):
                raise self.no_task_definition()
            self.require_service()
            request = self.locator.shell_request(self.cluster, self.family)
            if self.shell_launcher is not None:
                self.shell_exit_code = self.shell_launcher.open_shell(request)
        return request

    def run(self, command: Optional[Sequence[str]] = None) -> int:
        """
        Run the latest revision as a one-off task, with ``command`` (or the
        target's ``command``) overriding the first container's command.

        Raises:
            NoTaskDefinition: the family has no task definition
            TaskFailed: the task exited non-zero
        """
        with self.operation('run'):
            self.state = DeploymentState.RESOLVING_TASK_DEFINITION
            latest = self.gateway.latest_task_definition(self.family)
            if latest is None:
                raise self.no_task_definition()
            exit_code = self.executor.run(
                self.cluster,
                latest,
                command=command if command else self.target.command,
                started_by='run',
                family=self.family
            )
        return exit_code
