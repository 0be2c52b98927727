from typing import Generic, TypeVar, Any, Dict, List, Optional, Protocol
from motor.motor_asyncio import AsyncIOMotorCollection
from backoffice.models.base import MongoModel

T = TypeVar("T", bound=MongoModel)

class Repository(Protocol[T]):
    """Minimal document-store contract used by the services."""

    async def get(self, key: str) -> Optional[T]: ...

    async def list(self, filter: Optional[Dict[str, Any]] = None) -> List[T]: ...

    async def put(self, model: T) -> T: ...


class BaseRepository(Generic[T]):
    """Repository over a MongoDB collection, keyed by the model's key_field."""

    def __init__(self, collection: AsyncIOMotorCollection, model_cls: type[T]):
        self.collection = collection
        self.model_cls = model_cls
        self.key_field = model_cls.key_field

    async def get(self, key: str) -> Optional[T]:
        """Get a document by its business key."""
        doc = await self.collection.find_one({self.key_field: key})
        return self.model_cls.from_mongo(doc) if doc else None

    async def list(self, filter: Optional[Dict[str, Any]] = None, skip: int = 0, limit: int = 0) -> List[T]:
        """List documents with optional filter and pagination (limit 0 = all)."""
        cursor = self.collection.find(filter or {}).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=limit or None)
        return [self.model_cls.from_mongo(doc) for doc in docs]

    async def put(self, model: T) -> T:
        """Insert or replace the document with the model's key."""
        data = model.to_mongo()
        # _id is immutable; a loaded document carries it back as a string
        data.pop("_id", None)
        await self.collection.replace_one({self.key_field: model.key()}, data, upsert=True)
        return model

    async def delete(self, key: str) -> bool:
        result = await self.collection.delete_one({self.key_field: key})
        return result.deleted_count > 0

    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        """Count documents matching a filter."""
        return await self.collection.count_documents(filter or {})
