from .abstract import Model  # noqa:F401
from .ec2 import HostingInstance  # noqa:F401
from .ecs import (  # noqa:F401
    ContainerInstance,
    RunningTask,
    Service,
    TaskDefinition,
)
