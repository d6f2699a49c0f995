"""
The decisions a deploy has to make before it touches anything: do we need a
new task definition revision, and what do we need to do to the service?

Resolvers look only at the remote state handed to them and the target's
configuration, and return one of a small set of decision objects.  Only
:py:meth:`ServiceConvergence.apply` and :py:meth:`ServiceConvergence.converge`
talk to AWS.
"""
from copy import deepcopy
from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Union

from shipfish.core.gateway import AbstractClusterGateway
from shipfish.core.models import Service, TaskDefinition
from shipfish.core.utils import deep_merge, family_revision
from shipfish.exceptions import MissingServiceConfig, MissingTaskDefinitionConfig


logger = logging.getLogger(__name__)


# ------------------------
# Task definitions
# ------------------------

@dataclass(frozen=True)
class Unchanged:
    """
    The latest revision is already what we want: deploy it as is.
    """
    revision: TaskDefinition


@dataclass(frozen=True)
class MustRegister:
    """
    Register ``spec`` as a new revision and deploy that.
    """
    spec: Dict[str, Any]


RegistrationDecision = Union[Unchanged, MustRegister]


def merge_container_definitions(
    base: List[Dict[str, Any]],
    overlay: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Merge the ``containerDefinitions`` from a ``task_definition_config`` onto
    those of the latest revision.

    * An overlay container whose ``name`` matches a base container is deep
      merged onto that container.
    * An overlay container with no ``name`` is deep merged onto the base
      container at the same position.
    * Any other overlay container is added to the end of the list.
    * Base containers the overlay doesn't mention are kept as they are.
    """
    merged = [deepcopy(c) for c in base]
    positions = {c['name']: i for i, c in enumerate(merged) if c.get('name')}
    for index, container in enumerate(overlay):
        name = container.get('name', None)
        if name and name in positions:
            merged[positions[name]] = deep_merge(merged[positions[name]], container)
        elif not name and index < len(merged):
            merged[index] = deep_merge(merged[index], container)
        else:
            merged.append(deepcopy(container))
    return merged


class TaskDefinitionResolver:
    """
    Decide whether deploying ``family`` needs a new task definition revision.

    Args:
        family: the task definition family we are resolving
    """

    def __init__(self, family: str) -> None:
        self.family = family

    def merge(self, base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        spec = deep_merge(base, {k: v for k, v in overlay.items() if k != 'containerDefinitions'})
        if 'containerDefinitions' in overlay:
            spec['containerDefinitions'] = merge_container_definitions(
                base.get('containerDefinitions', []),
                overlay['containerDefinitions']
            )
        spec['family'] = self.family
        return spec

    def resolve(
        self,
        latest: Optional[TaskDefinition],
        overlay: Optional[Dict[str, Any]],
        image: Optional[str] = None
    ) -> RegistrationDecision:
        """
        Args:
            latest: the newest ACTIVE revision of our family, if there is one
            overlay: the target's ``task_definition_config``
            image: if given, set every container's ``image`` to this

        Raises:
            MissingTaskDefinitionConfig: there is no revision to start from and
                no ``task_definition_config`` to build one from
        """
        if latest is None and not overlay:
            raise MissingTaskDefinitionConfig(
                'No task definition revision exists and no task_definition_config was given',
                family=self.family
            )
        if latest is not None and not overlay and (image is None or set(latest.images) == {image}):
            return Unchanged(latest)
        base = latest.render_for_register() if latest is not None else {'family': self.family}
        spec = self.merge(base, overlay or {})
        if image:
            for container in spec.get('containerDefinitions', []):
                container['image'] = image
        if latest is not None:
            changes = TaskDefinition(spec).diff(latest)
            if not changes:
                logger.info('task definition %s already matches our config', latest.family_revision)
                return Unchanged(latest)
        return MustRegister(spec)


# ------------------------
# Services
# ------------------------

@dataclass(frozen=True)
class Create:
    """
    The service does not exist: create it with ``config``.
    """
    config: Dict[str, Any]


@dataclass(frozen=True)
class Update:
    """
    The service exists: update it to ``config``.
    """
    config: Dict[str, Any]


@dataclass(frozen=True)
class NoOp:
    """
    The service exists and we have no changes to its configuration.
    """
    current: Service


ServicePlan = Union[Create, Update, NoOp]


class ServiceConvergence:
    """
    Plan, apply and wait out changes to a service.

    Args:
        gateway: how we talk to the cluster
    """

    def __init__(self, gateway: AbstractClusterGateway) -> None:
        self.gateway = gateway

    def plan(self, current: Optional[Service], overlay: Optional[Dict[str, Any]], family: str = None) -> ServicePlan:
        """
        Raises:
            MissingServiceConfig: there is no service and no ``service_config``
                to create one from
        """
        if current is None:
            if not overlay:
                raise MissingServiceConfig(
                    'Service does not exist and no service_config was given',
                    family=family
                )
            return Create(deepcopy(overlay))
        if overlay:
            return Update(deep_merge(current.config, overlay))
        return NoOp(current)

    def apply(self, plan: ServicePlan, cluster: str, family: str, task_definition: str) -> bool:
        """
        Make the change ``plan`` describes, pointing the service at
        ``task_definition`` while we're at it.

        Returns:
            ``True`` if we changed the service and should wait for it to
            settle, ``False`` if there was nothing to do.
        """
        if isinstance(plan, Create):
            self.gateway.create_service(cluster, family, plan.config, task_definition)
            return True
        if isinstance(plan, Update):
            self.gateway.update_service(cluster, family, plan.config, task_definition=task_definition)
            return True
        if plan.current.task_definition == task_definition:
            logger.info(
                'service %s:%s already runs %s', cluster, family, family_revision(task_definition)
            )
            return False
        # Even with no config changes, the revision pointer has to move
        self.gateway.update_service(cluster, family, {}, task_definition=task_definition)
        return True

    def converge(self, cluster: str, family: str, timeout: int) -> None:
        self.gateway.wait_for_steady_state(cluster, family, timeout)
