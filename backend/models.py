"""
SQLAlchemy ORM models for the channel catalog.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from database import Base

from channel_record import (
    ChannelRecord,
    DrmDescriptor,
    LivenessStatus,
    StreamKind,
    TransportHeaders,
)


class Source(Base):
    """
    An imported feed (remote URL, uploaded text, or manual entry).
    Owns zero or more channels; deleting a source deletes its channels.
    """
    __tablename__ = "sources"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    origin = Column(String(10), nullable=False, default="url")  # "url", "text", "manual"
    url = Column(Text, nullable=True)
    content = Column(Text, nullable=True)  # Uploaded playlist text or feed JSON
    enabled = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    status = Column(String(10), default="loading", nullable=False)  # "active", "error", "loading"
    error = Column(Text, nullable=True)
    channel_count = Column(Integer, default=0, nullable=False)
    raw_channel_count = Column(Integer, default=0, nullable=False)  # Before selection filtering
    last_updated = Column(DateTime, nullable=True)
    # Optional selection model: only channels matching one of these patterns are kept
    selection_patterns = Column(JSON, nullable=True)
    selection_group = Column(String(255), nullable=True)  # Group assigned to matched channels

    channels = relationship(
        "Channel",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "origin": self.origin,
            "url": self.url,
            "enabled": self.enabled,
            "priority": self.priority,
            "status": self.status,
            "error": self.error,
            "channel_count": self.channel_count,
            "raw_channel_count": self.raw_channel_count,
            "last_updated": self.last_updated.isoformat() + "Z" if self.last_updated else None,
            "selection_patterns": self.selection_patterns or [],
            "selection_group": self.selection_group,
        }

    def __repr__(self):
        return f"<Source(id={self.id}, name={self.name}, status={self.status})>"


class Channel(Base):
    """
    A persisted channel record. Disabled channels stay in the catalog but
    are skipped by resolution and liveness probing.
    """
    __tablename__ = "channels"

    id = Column(String(128), primary_key=True)
    source_id = Column(String(64), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    logo = Column(Text, nullable=True)
    group = Column("group_name", String(255), nullable=False, default="Uncategorized")
    guide_id = Column(String(255), nullable=True)
    guide_name = Column(String(255), nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    license_type = Column(String(50), nullable=True)
    license_key = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    referer = Column(Text, nullable=True)
    cookie = Column(Text, nullable=True)
    http_headers = Column(JSON, nullable=True)
    stream_kind = Column(String(10), default="direct", nullable=False)
    status = Column(String(10), default="unknown", nullable=False)
    last_checked = Column(DateTime, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    order = Column("sort_order", Integer, default=0, nullable=False)

    source = relationship("Source", back_populates="channels")

    __table_args__ = (
        Index("idx_channel_source", source_id),
        Index("idx_channel_group", "group_name"),
        Index("idx_channel_order", "sort_order"),
    )

    @classmethod
    def from_record(cls, record: ChannelRecord) -> "Channel":
        return cls(
            id=record.id,
            source_id=record.source_id,
            name=record.name,
            url=record.url,
            logo=record.logo,
            group=record.group,
            guide_id=record.guide_id,
            guide_name=record.guide_name,
            enabled=record.enabled,
            license_type=record.drm.license_type if record.drm else None,
            license_key=record.drm.license_key if record.drm else None,
            user_agent=record.headers.user_agent,
            referer=record.headers.referer,
            cookie=record.headers.cookie,
            http_headers=dict(record.headers.extra) or None,
            stream_kind=record.stream_kind.value,
            status=record.status.value,
            last_checked=record.last_checked,
            response_time_ms=record.response_time_ms,
            order=record.order,
        )

    def to_record(self) -> ChannelRecord:
        drm = None
        if self.license_type and self.license_key:
            drm = DrmDescriptor(license_type=self.license_type, license_key=self.license_key)
        return ChannelRecord(
            id=self.id,
            name=self.name,
            url=self.url,
            source_id=self.source_id,
            group=self.group,
            logo=self.logo,
            guide_id=self.guide_id,
            guide_name=self.guide_name,
            enabled=bool(self.enabled),
            drm=drm,
            headers=TransportHeaders(
                user_agent=self.user_agent,
                referer=self.referer,
                cookie=self.cookie,
                extra=dict(self.http_headers or {}),
            ),
            stream_kind=StreamKind(self.stream_kind or "direct"),
            status=LivenessStatus(self.status or "unknown"),
            last_checked=self.last_checked,
            response_time_ms=self.response_time_ms,
            order=self.order or 0,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return self.to_record().to_dict()

    def __repr__(self):
        return f"<Channel(id={self.id}, name={self.name}, source={self.source_id})>"
