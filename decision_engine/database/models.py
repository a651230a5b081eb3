# decision_engine/database/models.py
from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from .session import Base

class DocumentRecord(Base):
    """مستند JSON داخل مجموعة (collection)"""
    __tablename__ = "documents"

    collection = Column(String(100), primary_key=True)
    doc_id = Column(String(100), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_documents_collection", "collection"),
    )

    def to_document(self) -> dict:
        document = dict(self.data or {})
        document["id"] = self.doc_id
        return document
