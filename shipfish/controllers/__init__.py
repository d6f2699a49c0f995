from .base import Base  # noqa: F401
from .deploy import Deploy  # noqa: F401
