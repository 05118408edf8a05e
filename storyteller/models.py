from datetime import datetime
from typing import List, Optional
from sqlalchemy import String, DateTime, Text, JSON, Integer, Float, Boolean, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

class Base(DeclarativeBase):
    pass

class UsageSnapshot(Base):
    """Denormalized per-session cost snapshot. One row per session, last write wins."""
    __tablename__ = "usage_snapshots"

    session_id: Mapped[str] = mapped_column(String, primary_key=True)

    elevenlabs_characters: Mapped[int] = mapped_column(Integer, default=0)
    openai_input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    openai_output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    whisper_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    image_count: Mapped[int] = mapped_column(Integer, default=0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)

    costs: Mapped[dict] = mapped_column(JSON, default=dict) # provider -> USD
    breakdown: Mapped[dict] = mapped_column(JSON, default=dict) # full usage-update payload

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class LoreEntry(Base):
    __tablename__ = "lore_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    entry_type: Mapped[str] = mapped_column(String(64), default="general")
    title: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text, default="")
    importance: Mapped[int] = mapped_column(Integer, default=50)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)
    is_secret: Mapped[bool] = mapped_column(Boolean, default=False)
    parent_location_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_lore_entries_session_importance", "session_id", "importance"),
    )

class SfxCacheEntry(Base):
    """Generated sound effect on disk, keyed by sha256(prompt:duration:loop)."""
    __tablename__ = "sfx_cache"

    cache_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    prompt: Mapped[str] = mapped_column(Text)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    loop: Mapped[bool] = mapped_column(Boolean, default=False)
    file_path: Mapped[str] = mapped_column(String)
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)
    hit_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
