from dataclasses import dataclass, field
import shlex
from typing import Any, Dict, List, Optional, Sequence

from shipfish.core.utils import camelize_keys
from shipfish.exceptions import ConfigProcessingFailed


def normalize_commands(commands: Optional[Sequence[Any]]) -> List[List[str]]:
    """
    ``bootstrap_commands`` and ``predeploy_commands`` may be written in
    shipfish.yml either as argv lists or as shell-style strings.  Return them
    all as argv lists.
    """
    normalized: List[List[str]] = []
    for command in commands or []:
        if isinstance(command, str):
            normalized.append(shlex.split(command))
        else:
            normalized.append([str(arg) for arg in command])
    return normalized


@dataclass(frozen=True)
class Target:
    """
    A deployable unit: one task definition family and the service of the same
    name in one cluster, plus everything we know about how it should look.

    A ``Target`` is built once per invocation from a ``targets:`` item in
    shipfish.yml and never changes after that.  ``task_definition_config`` and
    ``service_config`` are already in the camelCase shape the ECS API wants.
    """

    name: str
    family: str
    cluster: str
    task_definition_config: Optional[Dict[str, Any]] = None
    service_config: Optional[Dict[str, Any]] = None
    bootstrap_commands: List[List[str]] = field(default_factory=list)
    predeploy_commands: List[List[str]] = field(default_factory=list)
    docker_image: Optional[str] = None
    tag: Optional[str] = None
    command: Optional[List[str]] = None
    timeout: int = 600
    poll_interval: int = 10
    ssh: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.family:
            raise ConfigProcessingFailed(f'target "{self.name}" has no family')
        if not self.cluster:
            raise ConfigProcessingFailed(f'target "{self.name}" has no cluster')
        if self.tag and not self.docker_image:
            raise ConfigProcessingFailed(
                f'target "{self.name}": a tag was given but the target has no docker_image'
            )

    @property
    def image(self) -> Optional[str]:
        """
        The image every container should run, if the operator asked for one.
        """
        if self.tag:
            return f'{self.docker_image}:{self.tag}'
        return None

    @classmethod
    def new(
        cls,
        item: Dict[str, Any],
        settings: Optional[Dict[str, Any]] = None,
        tag: Optional[str] = None,
        command: Optional[Sequence[str]] = None
    ) -> "Target":
        """
        Build a ``Target`` from a ``targets:`` item from shipfish.yml.

        Args:
            item: the ``targets:`` item
            settings: the ``shipfish:`` section of shipfish.yml
            tag: the docker image tag to deploy, from the command line
            command: the command override for a one-off task, from the command line
        """
        settings = settings or {}
        if 'name' not in item:
            raise ConfigProcessingFailed('every item in the targets: section needs a name')
        task_definition_config = item.get('task_definition_config', None)
        service_config = item.get('service_config', None)
        return cls(
            name=item['name'],
            family=item.get('family', item['name']),
            cluster=item.get('cluster', None),
            task_definition_config=camelize_keys(task_definition_config) if task_definition_config else None,
            service_config=camelize_keys(service_config) if service_config else None,
            bootstrap_commands=normalize_commands(item.get('bootstrap_commands', None)),
            predeploy_commands=normalize_commands(item.get('predeploy_commands', None)),
            docker_image=item.get('docker_image', None),
            tag=tag,
            command=list(command) if command else None,
            timeout=int(item.get('timeout', settings.get('timeout', 600))),
            poll_interval=int(item.get('poll_interval', settings.get('poll_interval', 10))),
            ssh=dict(item.get('ssh', settings.get('ssh', {})) or {}),
        )
