from .abstract import AbstractWaiterHook  # noqa:F401
from .ecs import ECSDeploymentStatusWaiterHook, ECSTaskStatusWaiterHook  # noqa:F401
