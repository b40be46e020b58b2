"""Base repository with generic CRUD operations."""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenstore.core.errors import (
    DatabaseError,
    DuplicateError,
    NotFoundError,
)
from tokenstore.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic repository working inside a caller-owned transaction.

    Repositories flush but never commit; the session's transaction is owned by
    the service that created it.
    """

    def __init__(self, session: AsyncSession, model: type[ModelType]) -> None:
        """Initialize repository with session and model.

        Args:
            session: SQLAlchemy async session
            model: SQLAlchemy model class
        """
        assert session is not None, "Session cannot be None"
        assert model is not None, "Model cannot be None"
        assert issubclass(model, Base), "Model must inherit from Base"

        self._session = session
        self._model = model

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record.

        Args:
            data: Dictionary of model attributes

        Returns:
            Created model instance

        Raises:
            DuplicateError: If unique constraint is violated
            DatabaseError: For other database errors
        """
        assert data is not None, "Data cannot be None"

        try:
            instance = self._model(**data)
            self._session.add(instance)
            await self._session.flush()
            return instance

        except IntegrityError as e:
            raise DuplicateError(str(e.orig), details=e) from e

        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e

    async def find(self, id: Any, *, for_update: bool = False) -> ModelType | None:
        """Get record by primary key, or None.

        Args:
            id: Primary key value
            for_update: Lock the row until the transaction ends

        Returns:
            Model instance or None
        """
        assert id is not None, "ID cannot be None"

        try:
            return await self._session.get(
                self._model,
                id,
                with_for_update=for_update or None,
                populate_existing=for_update,
            )
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e

    async def get_by_id(self, id: Any, *, for_update: bool = False) -> ModelType:
        """Get record by primary key.

        Raises:
            NotFoundError: If record not found
            DatabaseError: For database errors
        """
        instance = await self.find(id, for_update=for_update)
        if instance is None:
            raise NotFoundError(f"{self._model.__name__} not found", details=id)
        return instance

    async def _all(self, query: Select[tuple[ModelType]]) -> list[ModelType]:
        try:
            result = await self._session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e

    def _build_query(self) -> Select[tuple[ModelType]]:
        """Build base query for the model.

        Returns:
            SQLAlchemy select statement
        """
        return select(self._model)
