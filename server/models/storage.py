from sqlalchemy import Column, DateTime, Text, func

from core.orm import Base


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
