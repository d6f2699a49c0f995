from copy import deepcopy
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from shipfish.core.aws import get_boto3_session
from shipfish.core.models import (
    ContainerInstance,
    HostingInstance,
    RunningTask,
    Service,
    TaskDefinition,
)
from shipfish.core.utils import family_revision
from shipfish.core.waiters import get_hooked_waiter
from shipfish.exceptions import ConvergenceTimeout, GatewayError


logger = logging.getLogger(__name__)

#: A waiter hook factory: called once per wait, returns a hook for ``WaiterHooks``
WaiterHookFactory = Callable[[], Callable]


class AbstractClusterGateway:
    """
    Everything the deployment engine needs from the container scheduling
    control plane.  Every method either reads current remote state or performs
    exactly one remote mutation; nothing is cached between calls.

    Every method may raise :py:class:`shipfish.exceptions.GatewayError`.
    """

    # ------------------------
    # Task definitions
    # ------------------------

    def list_task_definitions(self, family: str) -> List[str]:
        """
        Return the ARNs of the ACTIVE revisions of ``family``, newest first.
        """
        raise NotImplementedError

    def describe_task_definition(self, arn: str) -> TaskDefinition:
        raise NotImplementedError

    def latest_task_definition(self, family: str) -> Optional[TaskDefinition]:
        """
        Return the newest ACTIVE revision of ``family``, or ``None`` if there is
        no such revision.
        """
        arns = self.list_task_definitions(family)
        if not arns:
            return None
        return self.describe_task_definition(arns[0])

    def previous_task_definition(self, family: str, count: int = 1) -> Optional[TaskDefinition]:
        """
        Return the ACTIVE revision of ``family`` that is ``count`` revisions
        older than the latest one, or ``None`` if there are not that many.
        """
        arns = self.list_task_definitions(family)
        if len(arns) <= count:
            return None
        return self.describe_task_definition(arns[count])

    def register_task_definition(self, spec: Dict[str, Any]) -> TaskDefinition:
        raise NotImplementedError

    def deregister_task_definition(self, revision: TaskDefinition) -> None:
        raise NotImplementedError

    # ------------------------
    # Services
    # ------------------------

    def describe_service(self, cluster: str, family: str) -> Optional[Service]:
        """
        Return the service named ``family`` in ``cluster``, or ``None`` if it
        doesn't exist or is INACTIVE.
        """
        raise NotImplementedError

    def create_service(
        self,
        cluster: str,
        family: str,
        config: Dict[str, Any],
        task_definition: str
    ) -> Service:
        raise NotImplementedError

    def update_service(
        self,
        cluster: str,
        family: str,
        config: Dict[str, Any],
        task_definition: Optional[str] = None
    ) -> None:
        raise NotImplementedError

    def wait_for_steady_state(self, cluster: str, family: str, timeout: int) -> None:
        """
        Block until the service is stable or ``timeout`` seconds pass.

        Raises:
            ConvergenceTimeout: the service did not stabilize in time
        """
        raise NotImplementedError

    # ------------------------
    # Tasks and instances
    # ------------------------

    def list_running_tasks(self, cluster: str, family: str) -> List[str]:
        raise NotImplementedError

    # ``family`` on the methods below only labels the errors they raise.

    def describe_task(self, cluster: str, arn: str, family: str = None) -> RunningTask:
        raise NotImplementedError

    def describe_container_instance(self, cluster: str, arn: str, family: str = None) -> ContainerInstance:
        raise NotImplementedError

    def describe_hosting_instance(
        self,
        instance_id: str,
        family: str = None,
        cluster: str = None
    ) -> HostingInstance:
        raise NotImplementedError

    def run_task(self, cluster: str, spec: Dict[str, Any]) -> RunningTask:
        raise NotImplementedError

    def wait_for_task_stopped(self, cluster: str, arn: str, timeout: int, family: str = None) -> None:
        raise NotImplementedError

    def fetch_task_logs(self, cluster: str, arn: str, family: str = None) -> str:
        raise NotImplementedError


class ECSClusterGateway(AbstractClusterGateway):
    """
    :py:class:`AbstractClusterGateway` implemented with boto3 against ECS, EC2
    and CloudWatch Logs.

    Transient AWS failures are retried here, one call at a time, with
    exponential backoff.  Reads are retried on any transient failure.
    Mutations are retried only when AWS throttled them, because a throttled
    request is known not to have been applied; any other failure of a mutation
    is raised immediately.

    Keyword Args:
        max_attempts: how many times to try a single AWS call before giving up
        backoff: seconds to sleep before the first retry; doubles each retry
        poll_interval: seconds between polls while waiting on services and tasks
        service_waiter_hooks: hook factories for the ``services_stable`` waiter
        task_waiter_hooks: hook factories for the ``tasks_stopped`` waiter
        clients: prebuilt boto3 clients by service name; anything not here is
            built from our boto3 session on first use
    """

    #: AWS error codes which mean "the request was not processed, try again later"
    THROTTLING_ERROR_CODES = {
        'Throttling',
        'ThrottlingException',
        'ThrottledException',
        'RequestLimitExceeded',
        'TooManyRequestsException',
    }

    #: AWS error codes for transient server side failures
    TRANSIENT_ERROR_CODES = {
        'ServerException',
        'InternalError',
        'InternalFailure',
        'ServiceUnavailable',
        'ServiceUnavailableException',
        'RequestTimeout',
        'RequestTimeoutException',
    }

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: float = 1.0,
        poll_interval: int = 10,
        service_waiter_hooks: Sequence[WaiterHookFactory] = None,
        task_waiter_hooks: Sequence[WaiterHookFactory] = None,
        clients: Dict[str, Any] = None
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.poll_interval = poll_interval
        self.service_waiter_hooks = list(service_waiter_hooks) if service_waiter_hooks else []
        self.task_waiter_hooks = list(task_waiter_hooks) if task_waiter_hooks else []
        self._clients: Dict[str, Any] = dict(clients) if clients else {}

    def client(self, service: str):
        if service not in self._clients:
            self._clients[service] = get_boto3_session().client(service)
        return self._clients[service]

    def is_retryable(self, code: str) -> bool:
        return code in self.THROTTLING_ERROR_CODES or code in self.TRANSIENT_ERROR_CODES

    def _call(
        self,
        service: str,
        operation: str,
        params: Dict[str, Any],
        mutating: bool = False,
        step: str = 'aws',
        family: str = None,
        cluster: str = None
    ) -> Dict[str, Any]:
        """
        Call ``operation`` on the boto3 client for ``service`` with ``params``
        as its keyword arguments, retrying transient failures as described in
        the class docstring.  ``step``, ``family`` and ``cluster`` only label
        the error we raise.

        Raises:
            GatewayError: the call failed for good
        """
        method = getattr(self.client(service), operation)
        attempt = 0
        while True:
            attempt += 1
            try:
                return method(**params)
            except ClientError as e:
                code = e.response.get('Error', {}).get('Code', 'Unknown')
                retryable = self.is_retryable(code)
                may_retry = code in self.THROTTLING_ERROR_CODES if mutating else retryable
                if not may_retry or attempt >= self.max_attempts:
                    raise GatewayError(
                        f'{service}.{operation} failed: {e}',
                        retryable=retryable,
                        code=code,
                        step=step,
                        family=family,
                        cluster=cluster
                    ) from e
                reason = code
            except BotoCoreError as e:
                # Connection level failures: we don't know whether a mutation got through
                if mutating or attempt >= self.max_attempts:
                    raise GatewayError(
                        f'{service}.{operation} failed: {e}',
                        retryable=True,
                        step=step,
                        family=family,
                        cluster=cluster
                    ) from e
                reason = e.__class__.__name__
            delay = self.backoff * (2 ** (attempt - 1))
            logger.warning(
                '%s.%s failed with %s; retrying in %.1f seconds (attempt %d of %d)',
                service, operation, reason, delay, attempt + 1, self.max_attempts
            )
            time.sleep(delay)

    def _wait(
        self,
        waiter_name: str,
        params: Dict[str, Any],
        timeout: int,
        hooks: Sequence[WaiterHookFactory],
        step: str,
        family: Optional[str],
        cluster: str
    ) -> None:
        waiter = get_hooked_waiter(self.client('ecs'), waiter_name)
        kwargs = dict(params)
        kwargs['WaiterConfig'] = {
            'Delay': self.poll_interval,
            'MaxAttempts': max(1, int(math.ceil(timeout / float(self.poll_interval)))),
        }
        kwargs['WaiterHooks'] = [factory() for factory in hooks]
        # A throttled poll counts as one more "waiting" attempt
        kwargs['WaiterRetryableErrors'] = self.THROTTLING_ERROR_CODES
        try:
            waiter.wait(**kwargs)
        except WaiterError as e:
            if 'Max attempts exceeded' in str(e):
                raise ConvergenceTimeout(
                    f'gave up after {timeout} seconds waiting on {waiter_name}',
                    step=step,
                    family=family,
                    cluster=cluster
                ) from e
            code = e.last_response.get('Error', {}).get('Code', '') if e.last_response else ''
            raise GatewayError(
                str(e),
                retryable=self.is_retryable(code),
                code=code or None,
                step=step,
                family=family,
                cluster=cluster
            ) from e

    # ------------------------
    # Task definitions
    # ------------------------

    def list_task_definitions(self, family: str) -> List[str]:
        # familyPrefix is a prefix match, so "web" would also find "web-worker"
        arns: List[str] = []
        params: Dict[str, Any] = {'familyPrefix': family, 'status': 'ACTIVE', 'sort': 'DESC'}
        while True:
            response = self._call(
                'ecs', 'list_task_definitions', params, step='resolve task definition', family=family
            )
            arns.extend(
                arn for arn in response.get('taskDefinitionArns', [])
                if family_revision(arn).rsplit(':', 1)[0] == family
            )
            if not response.get('nextToken'):
                break
            params['nextToken'] = response['nextToken']
        return arns

    def describe_task_definition(self, arn: str) -> TaskDefinition:
        response = self._call(
            'ecs', 'describe_task_definition',
            {'taskDefinition': arn, 'include': ['TAGS']},
            step='resolve task definition',
            family=family_revision(arn).rsplit(':', 1)[0]
        )
        data = response['taskDefinition']
        # Tags come back alongside the task definition, not in it
        if response.get('tags'):
            data['tags'] = response['tags']
        return TaskDefinition(data)

    def register_task_definition(self, spec: Dict[str, Any]) -> TaskDefinition:
        response = self._call(
            'ecs', 'register_task_definition',
            deepcopy(spec),
            mutating=True,
            step='register task definition',
            family=spec.get('family')
        )
        data = response['taskDefinition']
        if response.get('tags'):
            data['tags'] = response['tags']
        revision = TaskDefinition(data)
        logger.info('registered task definition %s', revision.family_revision)
        return revision

    def deregister_task_definition(self, revision: TaskDefinition) -> None:
        self._call(
            'ecs', 'deregister_task_definition',
            {'taskDefinition': revision.arn},
            mutating=True,
            step='deregister task definition',
            family=revision.family
        )
        logger.info('deregistered task definition %s', revision.family_revision)

    # ------------------------
    # Services
    # ------------------------

    def describe_service(self, cluster: str, family: str) -> Optional[Service]:
        response = self._call(
            'ecs', 'describe_services',
            {'cluster': cluster, 'services': [family]},
            step='resolve service',
            family=family,
            cluster=cluster
        )
        services = [s for s in response.get('services', []) if s.get('status') != 'INACTIVE']
        if not services:
            return None
        data = services[0]
        data['cluster'] = cluster
        return Service(data)

    def create_service(
        self,
        cluster: str,
        family: str,
        config: Dict[str, Any],
        task_definition: str
    ) -> Service:
        params = deepcopy(config)
        params['cluster'] = cluster
        params['serviceName'] = family
        params['taskDefinition'] = task_definition
        response = self._call(
            'ecs', 'create_service',
            params,
            mutating=True,
            step='create service',
            family=family,
            cluster=cluster
        )
        data = response['service']
        data['cluster'] = cluster
        logger.info('created service %s:%s with %s', cluster, family, family_revision(task_definition))
        return Service(data)

    #: The keyword arguments to ``update_service()`` we pass through from a service config
    UPDATE_SERVICE_KEYS = {
        'capacityProviderStrategy',
        'deploymentConfiguration',
        'desiredCount',
        'enableECSManagedTags',
        'enableExecuteCommand',
        'forceNewDeployment',
        'healthCheckGracePeriodSeconds',
        'loadBalancers',
        'networkConfiguration',
        'placementConstraints',
        'placementStrategy',
        'platformVersion',
        'propagateTags',
        'serviceRegistries',
    }

    def update_service(
        self,
        cluster: str,
        family: str,
        config: Dict[str, Any],
        task_definition: Optional[str] = None
    ) -> None:
        params = {}
        for key, value in config.items():
            if key in self.UPDATE_SERVICE_KEYS:
                params[key] = deepcopy(value)
            else:
                logger.debug('service %s:%s: %s can only be set at creation; ignoring it', cluster, family, key)
        params['cluster'] = cluster
        params['service'] = family
        if task_definition:
            params['taskDefinition'] = task_definition
        self._call(
            'ecs', 'update_service',
            params,
            mutating=True,
            step='update service',
            family=family,
            cluster=cluster
        )
        logger.info(
            'updated service %s:%s%s',
            cluster, family, f' to {family_revision(task_definition)}' if task_definition else ''
        )

    def wait_for_steady_state(self, cluster: str, family: str, timeout: int) -> None:
        self._wait(
            'services_stable',
            {'cluster': cluster, 'services': [family]},
            timeout,
            self.service_waiter_hooks,
            step='converge',
            family=family,
            cluster=cluster
        )

    # ------------------------
    # Tasks and instances
    # ------------------------

    def list_running_tasks(self, cluster: str, family: str) -> List[str]:
        arns: List[str] = []
        params: Dict[str, Any] = {'cluster': cluster, 'family': family, 'desiredStatus': 'RUNNING'}
        while True:
            response = self._call('ecs', 'list_tasks', params, step='locate runtime', family=family, cluster=cluster)
            arns.extend(response.get('taskArns', []))
            if not response.get('nextToken'):
                break
            params['nextToken'] = response['nextToken']
        return arns

    def describe_task(self, cluster: str, arn: str, family: str = None) -> RunningTask:
        response = self._call(
            'ecs', 'describe_tasks',
            {'cluster': cluster, 'tasks': [arn]},
            step='describe task',
            family=family,
            cluster=cluster
        )
        if not response.get('tasks'):
            raise GatewayError(
                f'No task with arn "{arn}" exists', step='describe task', family=family, cluster=cluster
            )
        return RunningTask(response['tasks'][0])

    def describe_container_instance(self, cluster: str, arn: str, family: str = None) -> ContainerInstance:
        response = self._call(
            'ecs', 'describe_container_instances',
            {'cluster': cluster, 'containerInstances': [arn]},
            step='locate runtime',
            family=family,
            cluster=cluster
        )
        if not response.get('containerInstances'):
            raise GatewayError(
                f'No container instance with arn "{arn}" exists',
                step='locate runtime',
                family=family,
                cluster=cluster
            )
        return ContainerInstance(response['containerInstances'][0])

    def describe_hosting_instance(
        self,
        instance_id: str,
        family: str = None,
        cluster: str = None
    ) -> HostingInstance:
        response = self._call(
            'ec2', 'describe_instances',
            {'InstanceIds': [instance_id]},
            step='locate runtime',
            family=family,
            cluster=cluster
        )
        for reservation in response.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                return HostingInstance(instance)
        raise GatewayError(
            f'No EC2 instance with id "{instance_id}" exists', step='locate runtime', family=family, cluster=cluster
        )

    def run_task(self, cluster: str, spec: Dict[str, Any]) -> RunningTask:
        params = deepcopy(spec)
        params['cluster'] = cluster
        family = family_revision(params.get('taskDefinition', '')).rsplit(':', 1)[0] or None
        response = self._call(
            'ecs', 'run_task',
            params,
            mutating=True,
            step='run task',
            family=family,
            cluster=cluster
        )
        if not response.get('tasks'):
            reasons = ', '.join(
                f"{f.get('arn', '?')}: {f.get('reason', 'unknown')}" for f in response.get('failures', [])
            )
            raise GatewayError(
                f'ECS did not start the task: {reasons or "no reason given"}',
                step='run task',
                family=family,
                cluster=cluster
            )
        return RunningTask(response['tasks'][0])

    def wait_for_task_stopped(self, cluster: str, arn: str, timeout: int, family: str = None) -> None:
        self._wait(
            'tasks_stopped',
            {'cluster': cluster, 'tasks': [arn]},
            timeout,
            self.task_waiter_hooks,
            step='run task',
            family=family,
            cluster=cluster
        )

    def _read_log_stream(self, group: str, stream: str, family: str = None, cluster: str = None) -> List[str]:
        lines: List[str] = []
        params: Dict[str, Any] = {'logGroupName': group, 'logStreamName': stream, 'startFromHead': True}
        while True:
            try:
                response = self._call(
                    'logs', 'get_log_events', dict(params), step='fetch logs', family=family, cluster=cluster
                )
            except GatewayError as e:
                if e.code == 'ResourceNotFoundException':
                    logger.debug('log stream %s:%s does not exist', group, stream)
                    return lines
                raise
            lines.extend(event['message'] for event in response.get('events', []))
            token = response.get('nextForwardToken')
            # get_log_events hands back the token we sent once we reach the end of the stream
            if not token or token == params.get('nextToken'):
                return lines
            params['nextToken'] = token

    def fetch_task_logs(self, cluster: str, arn: str, family: str = None) -> str:
        """
        Return the CloudWatch Logs output of every ``awslogs`` container in the
        task.  Containers using other log drivers, or ``awslogs`` without a
        stream prefix, have no predictable stream name, so we skip them.
        """
        task = self.describe_task(cluster, arn, family=family)
        task_definition = self.describe_task_definition(task.task_definition)
        lines: List[str] = []
        for container in task_definition.containers:
            log_config = container.get('logConfiguration', {})
            if log_config.get('logDriver') != 'awslogs':
                continue
            options = log_config.get('options', {})
            group = options.get('awslogs-group')
            prefix = options.get('awslogs-stream-prefix')
            if not group or not prefix:
                continue
            stream = f"{prefix}/{container['name']}/{task.task_id}"
            lines.extend(self._read_log_stream(group, stream, family=family, cluster=cluster))
        return '\n'.join(lines)
