from dataclasses import dataclass
import ipaddress
import logging
from typing import Callable, List, Optional, Sequence

from shipfish.core.gateway import AbstractClusterGateway
from shipfish.core.models import TaskDefinition
from shipfish.exceptions import (
    CommandFailed,
    DeploymentError,
    NoRunningTasks,
    NoTaskDefinition,
    TaskFailed,
)


logger = logging.getLogger(__name__)

#: Anything that accepts a chunk of log text
LogSink = Callable[[str], None]


def log_to_logger(text: str) -> None:
    for line in text.splitlines():
        logging.getLogger('shipfish').info(line)


# ------------------------
# Finding live containers
# ------------------------

@dataclass(frozen=True)
class NetworkAddress:
    """
    A validated IP address of the host running one of our containers.
    """
    ip: str
    host_id: str

    def __post_init__(self) -> None:
        # raises ValueError for anything that isn't an IPv4 or IPv6 address
        ipaddress.ip_address(self.ip)


@dataclass(frozen=True)
class ShellRequest:
    """
    Everything a shell launcher needs: where to connect, and which container on
    that host to attach to.
    """
    address: NetworkAddress
    container_filter: str


class RuntimeLocator:
    """
    Find where a family's containers are running right now.
    """

    def __init__(self, gateway: AbstractClusterGateway) -> None:
        self.gateway = gateway

    def resolve_host(self, cluster: str, family: str) -> NetworkAddress:
        """
        Follow the first running task of ``family`` to its container instance
        and from there to the EC2 instance hosting it.

        Raises:
            NoRunningTasks: ``family`` has no running tasks in ``cluster``
        """
        arns = self.gateway.list_running_tasks(cluster, family)
        if not arns:
            raise NoRunningTasks(f'No running tasks found for "{family}"', family=family, cluster=cluster)
        return self.task_host(cluster, family, arns[0])

    def task_host(self, cluster: str, family: str, arn: str) -> NetworkAddress:
        task = self.gateway.describe_task(cluster, arn, family=family)
        if not task.container_instance_arn:
            raise DeploymentError(
                f'task {task.task_id} is not running on a container instance we can reach',
                step='locate runtime',
                family=family,
                cluster=cluster
            )
        container_instance = self.gateway.describe_container_instance(
            cluster, task.container_instance_arn, family=family
        )
        instance = self.gateway.describe_hosting_instance(
            container_instance.ec2_instance_id, family=family, cluster=cluster
        )
        try:
            return NetworkAddress(ip=instance.ip_address, host_id=instance.pk)
        except (TypeError, ValueError) as e:
            raise DeploymentError(
                f'instance {instance.pk} has no usable IP address: {instance.ip_address!r}',
                step='locate runtime',
                family=family,
                cluster=cluster
            ) from e

    def shell_request(self, cluster: str, family: str) -> ShellRequest:
        return ShellRequest(address=self.resolve_host(cluster, family), container_filter=family)


# ------------------------
# One-off tasks
# ------------------------

class RunTaskExecutor:
    """
    Run a task definition revision as a one-off task, wait for it to finish,
    send its logs to ``log_sink`` and report how it exited.

    Args:
        gateway: how we talk to the cluster

    Keyword Args:
        log_sink: where the task's log output goes
        timeout: how many seconds to wait for the task to stop
    """

    def __init__(
        self,
        gateway: AbstractClusterGateway,
        log_sink: Optional[LogSink] = None,
        timeout: int = 600
    ) -> None:
        self.gateway = gateway
        self.log_sink = log_sink if log_sink else log_to_logger
        self.timeout = timeout

    def build_spec(
        self,
        task_definition: TaskDefinition,
        command: Optional[Sequence[str]],
        started_by: str
    ) -> dict:
        spec = {
            'taskDefinition': task_definition.arn,
            'count': 1,
            # ECS limits startedBy to 36 characters
            'startedBy': started_by[:36],
        }
        if command:
            spec['overrides'] = {
                'containerOverrides': [
                    {'name': task_definition.containers[0]['name'], 'command': list(command)}
                ]
            }
        return spec

    def run(
        self,
        cluster: str,
        task_definition: Optional[TaskDefinition],
        command: Optional[Sequence[str]] = None,
        started_by: str = 'shipfish',
        family: str = None
    ) -> int:
        """
        Returns:
            The exit code of the task's first container, which is always 0:
            anything else raises.

        Raises:
            NoTaskDefinition: ``task_definition`` is ``None``
            TaskFailed: the task exited non-zero, or never produced an exit code
        """
        if task_definition is None:
            raise NoTaskDefinition(f'No task definition for "{family}"', step='run task', family=family, cluster=cluster)
        family = task_definition.family
        task = self.gateway.run_task(cluster, self.build_spec(task_definition, command, started_by))
        logger.info('started task %s from %s', task.task_id, task_definition.family_revision)
        self.gateway.wait_for_task_stopped(cluster, task.arn, self.timeout, family=family)
        logs = self.gateway.fetch_task_logs(cluster, task.arn, family=family)
        if logs:
            self.log_sink(logs)
        task = self.gateway.describe_task(cluster, task.arn, family=family)
        exit_code = task.exit_code()
        if exit_code is None:
            raise TaskFailed(
                f'task {task.task_id} stopped without an exit code: {task.stopped_reason or "no reason given"}',
                family=family,
                cluster=cluster
            )
        if exit_code != 0:
            raise TaskFailed(
                f'task {task.task_id} exited with code {exit_code}',
                exit_code=exit_code,
                family=family,
                cluster=cluster
            )
        return exit_code


class TaskCommandRunner:
    """
    Run ``bootstrap_commands`` and ``predeploy_commands``: each command runs, in
    order, as a one-off task of the revision we are deploying.  We stop at the
    first command that fails.
    """

    def __init__(self, executor: RunTaskExecutor, cluster: str) -> None:
        self.executor = executor
        self.cluster = cluster

    def run_commands(
        self,
        commands: List[List[str]],
        started_by: str,
        task_definition: TaskDefinition
    ) -> None:
        """
        Raises:
            CommandFailed: one of the commands exited non-zero
        """
        for command in commands:
            logger.info('running %s command: %s', started_by, ' '.join(command))
            try:
                self.executor.run(self.cluster, task_definition, command=command, started_by=started_by)
            except TaskFailed as e:
                raise CommandFailed(
                    f'{started_by} command "{" ".join(command)}" failed: {e.message}',
                    exit_code=e.exit_code,
                    family=task_definition.family,
                    cluster=self.cluster
                ) from e
