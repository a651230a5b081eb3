# decision_engine/database/sql_store.py
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from decision_engine.core.errors import DatabaseError, NotFoundError
from .models import DocumentRecord
from .store import FILTER_OPERATORS, ChangeFeed, ChangeType, DocumentStore, Filter, Query

logger = logging.getLogger(__name__)


def _json_element(field_name: str, value: Any):
    """اختيار نوع المقارنة لحقل JSON حسب نوع القيمة"""
    element = DocumentRecord.data[field_name]
    if isinstance(value, bool):
        return element.as_boolean()
    if isinstance(value, (int, float)):
        return element.as_float()
    return element.as_string()


def _conditions(collection: str, filters: List[Filter]) -> list:
    conditions = [DocumentRecord.collection == collection]
    for f in filters:
        column = _json_element(f.field, f.value)
        conditions.append(FILTER_OPERATORS[f.op](column, f.value))
    return conditions


class SqlDocumentStore(DocumentStore):
    """مخزن مستندات فوق SQLAlchemy async (جدول documents بعمود JSON)"""

    def __init__(self, session_factory: sessionmaker, change_feed: Optional[ChangeFeed] = None):
        super().__init__(change_feed)
        self.session_factory = session_factory

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self.session_factory() as session:
                record = await session.get(DocumentRecord, (collection, doc_id))
                return record.to_document() if record else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to read {collection}/{doc_id}", original_error=e)

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        payload = {k: v for k, v in data.items() if k != "id"}
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = await session.get(DocumentRecord, (collection, doc_id))
                    if record is None:
                        session.add(DocumentRecord(collection=collection, doc_id=doc_id, data=payload))
                    else:
                        record.data = payload
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to write {collection}/{doc_id}", original_error=e)
        self._publish(ChangeType.UPSERT, collection, doc_id, {**payload, "id": doc_id})

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = await session.get(DocumentRecord, (collection, doc_id))
                    if record is None:
                        raise NotFoundError(f"Document {collection}/{doc_id} not found")
                    merged = {**(record.data or {}), **updates}
                    merged.pop("id", None)
                    # إعادة الإسناد ليكتشف SQLAlchemy التغيير في عمود JSON
                    record.data = merged
                    document = record.to_document()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update {collection}/{doc_id}", original_error=e)
        self._publish(ChangeType.UPSERT, collection, doc_id, document)
        return document

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(DocumentRecord).where(
                            DocumentRecord.collection == collection,
                            DocumentRecord.doc_id == doc_id,
                        )
                    )
                    removed = result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to delete {collection}/{doc_id}", original_error=e)
        if removed:
            self._publish(ChangeType.DELETE, collection, doc_id)
        return removed

    async def query(self, collection: str, query: Optional[Query] = None) -> List[Dict[str, Any]]:
        query = query or Query()
        stmt = select(DocumentRecord).where(*_conditions(collection, query.filters))
        if query.order_by:
            order_column = DocumentRecord.data[query.order_by].as_string()
            stmt = stmt.order_by(order_column.desc() if query.descending else order_column.asc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [record.to_document() for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to query {collection}", original_error=e)

    async def count(self, collection: str, filters: Optional[List[Filter]] = None) -> int:
        stmt = select(func.count()).select_from(DocumentRecord).where(
            *_conditions(collection, filters or [])
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count {collection}", original_error=e)
