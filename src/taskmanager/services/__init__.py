"""Domain services: users, projects, tasks and the dashboard.

Every operation takes the calling :class:`~taskmanager.core.types.Actor`
explicitly and checks it against :mod:`taskmanager.policy` before any write.
"""

from taskmanager.services.dashboard import DashboardService
from taskmanager.services.projects import ProjectService
from taskmanager.services.tasks import TaskService
from taskmanager.services.users import UserService

__all__ = [
    "DashboardService",
    "ProjectService",
    "TaskService",
    "UserService",
]
