import threading
from typing import Any, Dict, Generic, List, Optional, TypeVar

from backoffice.models.base import MongoModel

T = TypeVar("T", bound=MongoModel)


class InMemoryRepository(Generic[T]):
    """
    Dict-backed stand-in for the document store. Stores and returns deep
    copies so callers never share mutable state with the repository.
    """

    def __init__(self, model_cls: type[T]):
        self.model_cls = model_cls
        self.key_field = model_cls.key_field
        self._docs: Dict[Any, T] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[T]:
        with self._lock:
            doc = self._docs.get(key)
        return doc.model_copy(deep=True) if doc else None

    async def list(self, filter: Optional[Dict[str, Any]] = None) -> List[T]:
        filter = filter or {}
        with self._lock:
            docs = list(self._docs.values())
        return [
            doc.model_copy(deep=True)
            for doc in docs
            if all(getattr(doc, field, None) == value for field, value in filter.items())
        ]

    async def put(self, model: T) -> T:
        key = model.key()
        if not key:
            raise ValueError(f"{self.model_cls.__name__} has no {self.key_field}")
        with self._lock:
            self._docs[key] = model.model_copy(deep=True)
        return model

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._docs.pop(key, None) is not None

    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        return len(await self.list(filter))
