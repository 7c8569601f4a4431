"""
缓存条目模型

SqlAlchemyStore 使用的键值表，每个跟踪账户一行
"""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class CacheEntry(Base):
    """键值缓存条目"""

    __tablename__ = 'cache_entries'

    key = Column(String(128), primary_key=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<CacheEntry(key='{self.key}', size={len(self.payload or '')})>"
