"""Storage implementations for taskmanager data.

This module provides two repository backends:
- SQLAlchemy: Production persistent storage (PostgreSQL, SQLite, MySQL)
- In-Memory: Testing and development

Example:
    ```python
    from taskmanager.storage import SQLAlchemyRepository

    repo = SQLAlchemyRepository(database_url="postgresql+asyncpg://localhost/tasks")
    await repo.initialize()

    # Development / tests
    from taskmanager.storage import InMemoryRepository

    repo = InMemoryRepository()
    ```
"""

from taskmanager.storage.database import SQLAlchemyRepository
from taskmanager.storage.memory import InMemoryRepository
from taskmanager.storage.repository import Repository

__all__ = [
    "InMemoryRepository",
    "Repository",
    "SQLAlchemyRepository",
]
