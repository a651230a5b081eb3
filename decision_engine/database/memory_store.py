# decision_engine/database/memory_store.py
import copy
import uuid
from typing import Any, Dict, List, Optional

from decision_engine.core.errors import NotFoundError
from .store import ChangeFeed, ChangeType, DocumentStore, Filter, Query


class InMemoryDocumentStore(DocumentStore):
    """مخزن مستندات في الذاكرة (للتشغيل المحلي والاختبارات)"""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        super().__init__(change_feed)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _with_id(doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        document = copy.deepcopy(data)
        document["id"] = doc_id
        return document

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data = self._collection(collection).get(doc_id)
        return self._with_id(doc_id, data) if data is not None else None

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        stored = copy.deepcopy(data)
        stored.pop("id", None)
        self._collection(collection)[doc_id] = stored
        self._publish(ChangeType.UPSERT, collection, doc_id, self._with_id(doc_id, stored))

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFoundError(f"Document {collection}/{doc_id} not found")
        merged = {**docs[doc_id], **copy.deepcopy(updates)}
        merged.pop("id", None)
        docs[doc_id] = merged
        document = self._with_id(doc_id, merged)
        self._publish(ChangeType.UPSERT, collection, doc_id, document)
        return document

    async def delete(self, collection: str, doc_id: str) -> bool:
        removed = self._collection(collection).pop(doc_id, None)
        if removed is None:
            return False
        self._publish(ChangeType.DELETE, collection, doc_id)
        return True

    def _matching(self, collection: str, filters: List[Filter]) -> List[Dict[str, Any]]:
        return [
            self._with_id(doc_id, data)
            for doc_id, data in self._collection(collection).items()
            if all(f.matches(data) for f in filters)
        ]

    async def query(self, collection: str, query: Optional[Query] = None) -> List[Dict[str, Any]]:
        query = query or Query()
        results = self._matching(collection, query.filters)
        if query.order_by:
            # المستندات بدون حقل الترتيب تأتي في النهاية
            present = [d for d in results if d.get(query.order_by) is not None]
            missing = [d for d in results if d.get(query.order_by) is None]
            present.sort(key=lambda d: d[query.order_by], reverse=query.descending)
            results = present + missing
        if query.limit is not None:
            results = results[:query.limit]
        return results

    async def count(self, collection: str, filters: Optional[List[Filter]] = None) -> int:
        return len(self._matching(collection, filters or []))
