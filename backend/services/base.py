"""Base service with soft-delete aware queries.

Definition-side services inherit from this. Queries default to the
"active" view (rows that are not soft-deleted); ``include_deleted=True``
switches to the "all" view.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar
from uuid import uuid4

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic soft-delete aware service for any definition-side model.

    Usage:
        class DefinitionStore(BaseService[WorkflowDefinitionModel]):
            def __init__(self, db: AsyncSession):
                super().__init__(WorkflowDefinitionModel, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    def _query(self, include_deleted: bool = False) -> Select:
        """Active view by default, all view with ``include_deleted``."""
        query = select(self.model)
        if not include_deleted:
            query = query.where(self.model.is_deleted == False)  # noqa: E712
        return query

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(
        self,
        id: str,
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record by ID."""
        query = self._query(include_deleted).where(self.model.id == id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        include_deleted: bool = False,
        order_by: str = "created_at",
        order_desc: bool = False,
        filters: dict[str, Any] = None,
        limit: Optional[int] = None,
    ) -> Sequence[ModelType]:
        """List records matching equality filters."""
        query = self._query(include_deleted)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model, field):
                    col = getattr(self.model, field)
                    if isinstance(value, list):
                        query = query.where(col.in_(value))
                    else:
                        query = query.where(col == value)

        if hasattr(self.model, order_by):
            col = getattr(self.model, order_by)
            query = query.order_by(col.desc() if order_desc else col.asc())

        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return result.scalars().all()

    # ─── Create ────────────────────────────────────────────

    def add(self, instance: ModelType) -> ModelType:
        if not instance.id:
            instance.id = str(uuid4())
        self.db.add(instance)
        return instance

    # ─── Delete ────────────────────────────────────────────

    async def soft_delete(self, id: str) -> bool:
        """Soft-delete a record (set is_deleted=True).

        Returns:
            True if deleted, False if not found
        """
        instance = await self.get_by_id(id)
        if not instance:
            return False

        instance.soft_delete()
        await self.db.flush()
        return True
