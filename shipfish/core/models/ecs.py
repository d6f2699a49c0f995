from copy import deepcopy
from typing import Any, Dict, List, Optional

from shipfish.core.utils import family_revision

from .abstract import Model


__all__ = [
    'ContainerInstance',
    'RunningTask',
    'Service',
    'TaskDefinition',
]


class TaskDefinition(Model):
    """
    One registered revision of an ECS task definition.  Revisions are
    immutable: once AWS gives us one back, the only things that can happen to it
    are being superseded by a newer revision or being deregistered.

    ``TaskDefinition.data`` is the ``taskDefinition`` dict from
    ``describe_task_definition``, with the ``tags`` from alongside it folded in::

        'taskDefinitionArn': 'string',
        'family': 'string',
        'revision': 123,
        'status': 'ACTIVE|INACTIVE',
        'containerDefinitions': [...],
        'taskRoleArn': 'string',                              [optional]
        'networkMode': 'bridge'|'host'|'awsvpc'|'none',
        'compatibilities': ['EC2'|'FARGATE'],
        'requiresAttributes': [...],
        'registeredAt': datetime,
        'registeredBy': 'string',
        'tags': [{'key': 'string', 'value': 'string'}]
    """

    #: Keys that AWS fills in on registration and which register_task_definition() will not accept
    READ_ONLY_KEYS: List[str] = [
        'taskDefinitionArn',
        'revision',
        'status',
        'requiresAttributes',
        'compatibilities',
        'registeredAt',
        'registeredBy',
        'deregisteredAt',
    ]

    @property
    def pk(self) -> str:
        if self.revision:
            return f'{self.family}:{self.revision}'
        return self.family

    @property
    def name(self) -> str:
        return self.pk

    @property
    def arn(self) -> Optional[str]:
        return self.data.get('taskDefinitionArn', None)

    @property
    def family(self) -> str:
        return self.data['family']

    @property
    def revision(self) -> Optional[int]:
        return self.data.get('revision', None)

    @property
    def family_revision(self) -> str:
        if self.arn:
            return family_revision(self.arn)
        return self.pk

    @property
    def containers(self) -> List[Dict[str, Any]]:
        return self.data.get('containerDefinitions', [])

    @property
    def images(self) -> List[str]:
        return [c.get('image', '') for c in self.containers]

    def render_for_register(self) -> Dict[str, Any]:
        """
        Return our data in the shape ``register_task_definition()`` wants, which
        is what we use as the base when building the next revision.
        """
        data = deepcopy(self.data)
        if 'compatibilities' in data and 'requiresCompatibilities' not in data:
            data['requiresCompatibilities'] = data['compatibilities']
        for key in self.READ_ONLY_KEYS:
            data.pop(key, None)
        if not data.get('tags'):
            data.pop('tags', None)
        return data

    def render_for_diff(self) -> Dict[str, Any]:
        return self.render_for_register()


class Service(Model):
    """
    An ECS service.  ``Service.data`` is one entry from the ``services`` list
    returned by ``describe_services``, plus a ``cluster`` key holding the bare
    name of the cluster.
    """

    #: The parts of a service's configuration that update_service() can change,
    #: and thus that we merge ``service_config`` onto when updating
    MUTABLE_KEYS: List[str] = [
        'desiredCount',
        'deploymentConfiguration',
        'placementConstraints',
        'placementStrategy',
        'networkConfiguration',
        'healthCheckGracePeriodSeconds',
    ]

    @property
    def pk(self) -> str:
        """
        Service names are only unique within a cluster, so our pk is
        ``{cluster_name}:{service_name}``.
        """
        return f'{self.cluster}:{self.name}'

    @property
    def name(self) -> str:
        return self.data['serviceName']

    @property
    def arn(self) -> Optional[str]:
        return self.data.get('serviceArn', None)

    @property
    def cluster(self) -> str:
        if 'cluster' in self.data:
            return self.data['cluster']
        return self.data['clusterArn'].rsplit('/', 1)[-1]

    @property
    def status(self) -> str:
        return self.data.get('status', 'ACTIVE')

    @property
    def task_definition(self) -> str:
        """
        The ARN of the task definition revision the service currently points at.
        """
        return self.data['taskDefinition']

    @property
    def desired_count(self) -> int:
        return self.data.get('desiredCount', 0)

    @property
    def running_count(self) -> int:
        return self.data.get('runningCount', 0)

    @property
    def deployments(self) -> List[Dict[str, Any]]:
        return self.data.get('deployments', [])

    @property
    def events(self) -> List[Dict[str, Any]]:
        return self.data.get('events', [])

    @property
    def steady(self) -> bool:
        """
        ``True`` if the service has a single deployment and its running count
        matches its desired count.  This is the same test the ECS
        ``services_stable`` waiter uses.
        """
        return len(self.deployments) <= 1 and self.running_count == self.desired_count

    @property
    def config(self) -> Dict[str, Any]:
        """
        The current values of the service settings we know how to update.
        """
        return {key: deepcopy(self.data[key]) for key in self.MUTABLE_KEYS if key in self.data}


class RunningTask(Model):
    """
    A task that ECS has started: it is either PENDING, RUNNING or STOPPED.
    ``RunningTask.data`` is one entry from the ``tasks`` list of
    ``describe_tasks`` or ``run_task``.
    """

    @property
    def pk(self) -> str:
        return self.arn

    @property
    def name(self) -> str:
        return self.task_id

    @property
    def arn(self) -> str:
        return self.data['taskArn']

    @property
    def task_id(self) -> str:
        return self.arn.rsplit('/', 1)[-1]

    @property
    def last_status(self) -> str:
        return self.data.get('lastStatus', 'PENDING')

    @property
    def task_definition(self) -> str:
        return self.data.get('taskDefinitionArn', '')

    @property
    def container_instance_arn(self) -> Optional[str]:
        return self.data.get('containerInstanceArn', None)

    @property
    def started_by(self) -> Optional[str]:
        return self.data.get('startedBy', None)

    @property
    def stopped_reason(self) -> Optional[str]:
        return self.data.get('stoppedReason', None)

    @property
    def containers(self) -> List[Dict[str, Any]]:
        return self.data.get('containers', [])

    def exit_code(self, container_name: Optional[str] = None) -> Optional[int]:
        """
        Return the exit code of the container named ``container_name``, or of
        the first container if no name is given.  ``None`` means the container
        has not exited (or never started).
        """
        for container in self.containers:
            if container_name is None or container['name'] == container_name:
                return container.get('exitCode', None)
        return None


class ContainerInstance(Model):
    """
    The ECS agent's view of an EC2 instance in a cluster.
    """

    @property
    def pk(self) -> str:
        return self.arn

    @property
    def name(self) -> str:
        return self.ec2_instance_id

    @property
    def arn(self) -> str:
        return self.data['containerInstanceArn']

    @property
    def ec2_instance_id(self) -> str:
        return self.data['ec2InstanceId']
