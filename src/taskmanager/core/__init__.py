"""Core taskmanager components and abstractions."""

from taskmanager.core.config import TaskManagerConfig
from taskmanager.core.exceptions import *  # noqa: F403
from taskmanager.core.exceptions import __all__ as exceptions__all__
from taskmanager.core.types import *  # noqa: F403
from taskmanager.core.types import __all__ as types__all__

__all__ = [
    "TaskManagerConfig",
]

__all__ += exceptions__all__
__all__ += types__all__
