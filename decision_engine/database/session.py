# decision_engine/database/session.py
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        database_url,
        echo=echo,
        future=True
    )


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


Base = declarative_base()

async def init_db(bind: AsyncEngine):
    """تهيئة قاعدة البيانات وإنشاء الجداول"""
    # تسجيل النماذج على Base قبل create_all
    from . import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def close_db(bind: AsyncEngine):
    """إغلاق محرك قاعدة البيانات"""
    await bind.dispose()
