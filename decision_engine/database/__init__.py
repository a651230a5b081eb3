# decision_engine/database/__init__.py
from .session import Base, build_engine, build_session_factory, init_db, close_db
from .store import ChangeEvent, ChangeFeed, ChangeType, DocumentStore, Filter, Query, Subscription
from .memory_store import InMemoryDocumentStore
from .sql_store import SqlDocumentStore
