"""
Storage abstraction for gateway entities.

The services only talk to the Repository interface (create/get/list/update/
delete per entity), so the core logic runs unchanged against the in-memory
implementation used in tests and development or a transactional store.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from .errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Repository(ABC, Generic[T]):
    """Persistence contract for one entity type keyed by ``id``."""

    @abstractmethod
    async def create(self, entity: T) -> T:
        ...

    @abstractmethod
    async def get(self, entity_id: str) -> Optional[T]:
        ...

    @abstractmethod
    async def list(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        ...

    @abstractmethod
    async def update(self, entity: T) -> T:
        ...

    @abstractmethod
    async def delete(self, entity_id: str) -> bool:
        ...


class InMemoryRepository(Repository[T]):
    """
    Dict-backed repository.

    Entities are copied on the way in and out so callers never share mutable
    state with the store, mirroring how a database row behaves.
    """

    def __init__(self, name: str):
        self.name = name
        self._items: Dict[str, T] = {}

    async def create(self, entity: T) -> T:
        entity_id = getattr(entity, "id")
        if entity_id in self._items:
            raise ConflictError(f"{self.name} {entity_id} already exists")
        self._items[entity_id] = entity.model_copy(deep=True)
        logger.debug("Created %s %s", self.name, entity_id)
        return entity.model_copy(deep=True)

    async def get(self, entity_id: str) -> Optional[T]:
        item = self._items.get(entity_id)
        return item.model_copy(deep=True) if item is not None else None

    async def list(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        return [
            item.model_copy(deep=True)
            for item in self._items.values()
            if predicate is None or predicate(item)
        ]

    async def update(self, entity: T) -> T:
        entity_id = getattr(entity, "id")
        if entity_id not in self._items:
            raise NotFoundError(f"{self.name} {entity_id} not found")
        self._items[entity_id] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    async def delete(self, entity_id: str) -> bool:
        return self._items.pop(entity_id, None) is not None

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class Storage:
    """Bundle of repositories the services are wired with."""

    plans: Repository
    subscriptions: Repository
    subscription_payments: Repository
    payments: Repository
    merchants: Repository
    wallets: Repository

    @classmethod
    def in_memory(cls) -> "Storage":
        return cls(
            plans=InMemoryRepository("plan"),
            subscriptions=InMemoryRepository("subscription"),
            subscription_payments=InMemoryRepository("subscription_payment"),
            payments=InMemoryRepository("payment"),
            merchants=InMemoryRepository("merchant"),
            wallets=InMemoryRepository("wallet"),
        )
