# decision_engine/database/store.py
"""
واجهة مخزن المستندات (collections / documents)

يعتمد المحرك على هذه الواجهة فقط، لذلك يمكن تبديل الخلفية
(SQLAlchemy أو الذاكرة) دون تغيير الخدمات.
"""
import asyncio
import logging
import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """حدث تغيير على مستند"""
    type: ChangeType
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None


FILTER_OPERATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Dict[str, Any]) -> bool:
        if self.field not in document or document[self.field] is None:
            return False
        try:
            return FILTER_OPERATORS[self.op](document[self.field], self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class Query:
    """استعلام على مجموعة: فلاتر + ترتيب + حد"""
    filters: List[Filter] = field(default_factory=list)
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        return Query(
            filters=[*self.filters, Filter(field_name, op, value)],
            order_by=self.order_by,
            descending=self.descending,
            limit=self.limit,
        )


class Subscription:
    """اشتراك في تغييرات مجموعة، يُقرأ كـ async iterator"""

    def __init__(self, feed: "ChangeFeed", collection: str):
        self.collection = collection
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def put(self, event: ChangeEvent):
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self):
        if not self._closed:
            self._closed = True
            self._feed.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()


class ChangeFeed:
    """موزع أحداث التغيير داخل العملية"""

    def __init__(self):
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, collection: str) -> Subscription:
        subscription = Subscription(self, collection)
        self._subscribers.setdefault(collection, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscribers = self._subscribers.get(subscription.collection)
        if subscribers:
            subscribers.discard(subscription)

    def publish(self, event: ChangeEvent):
        for subscription in list(self._subscribers.get(event.collection, ())):
            subscription.put(event)


class DocumentStore(ABC):
    """واجهة مجردة لمخزن المستندات"""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.change_feed = change_feed or ChangeFeed()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """جلب مستند، أو None إذا لم يوجد"""
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """كتابة مستند كامل (إنشاء أو استبدال)"""
        pass

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """إضافة مستند بمعرف مولد، يعيد المعرف"""
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """دمج الحقول في مستند موجود (NotFoundError إذا لم يوجد)"""
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        pass

    @abstractmethod
    async def query(self, collection: str, query: Optional[Query] = None) -> List[Dict[str, Any]]:
        """المستندات المطابقة، كل منها يحتوي الحقل id"""
        pass

    @abstractmethod
    async def count(self, collection: str, filters: Optional[List[Filter]] = None) -> int:
        pass

    async def list_all(self, collection: str) -> List[Dict[str, Any]]:
        return await self.query(collection, Query())

    def subscribe(self, collection: str) -> Subscription:
        return self.change_feed.subscribe(collection)

    def _publish(self, change_type: ChangeType, collection: str, doc_id: str,
                 data: Optional[Dict[str, Any]] = None):
        self.change_feed.publish(ChangeEvent(change_type, collection, doc_id, data))

    async def close(self) -> None:
        pass
