"""
Catalog service: sources, their channels, and the bulk operations on them.

Importing a source replaces its channel rows in one transaction. A failed
import (unparseable content, unreachable URL) marks the source as errored
and leaves its previous channels untouched.
"""
import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from channel_matcher import ChannelGroup, filter_by_patterns, group_channels
from channel_record import ChannelRecord, LivenessStatus
from feed_parser import ValidationError
from fetch_pipeline import FetchPipeline, NetworkError
from liveness_prober import LivenessResult
from log_utils import redact_url
from m3u_exporter import DEFAULT_PLAYLIST_NAME, generate_m3u
from models import Channel, Source
from source_parser import parse_source

logger = logging.getLogger(__name__)

SOURCE_ORIGINS = ("url", "text", "manual")


class SourceNotFoundError(Exception):
    """Raised when a source id does not exist."""

    def __init__(self, source_id: str):
        self.source_id = source_id
        super().__init__(f"Source not found: {source_id}")


def new_source_id() -> str:
    return f"src_{uuid.uuid4().hex[:12]}"


class CatalogService:
    """Catalog operations bound to one database session."""

    def __init__(self, session: Session):
        self.session = session

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def add_source(
        self,
        name: str,
        origin: str,
        url: Optional[str] = None,
        content: Optional[str] = None,
        selection_patterns: Optional[list[str]] = None,
        selection_group: Optional[str] = None,
    ) -> Source:
        if origin not in SOURCE_ORIGINS:
            raise ValueError(f"Unknown source origin: {origin}")
        if origin == "url" and not url:
            raise ValueError("A url source needs a url")

        patterns = [p.strip() for p in (selection_patterns or []) if p and p.strip()]
        source = Source(
            id=new_source_id(),
            name=name.strip() or "Untitled Source",
            origin=origin,
            url=url,
            content=content,
            enabled=True,
            status="loading",
            selection_patterns=patterns or None,
            selection_group=selection_group or None,
        )
        self.session.add(source)
        self.session.commit()
        logger.info("[CATALOG] Added %s source %s (%s)", origin, source.id, source.name)
        return source

    def get_source(self, source_id: str) -> Source:
        source = self.session.get(Source, source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def list_sources(self) -> list[Source]:
        return self.session.query(Source).order_by(Source.priority, Source.name).all()

    async def _load_content(self, source: Source, fetcher: Optional[FetchPipeline]) -> str:
        if source.origin == "url":
            if fetcher is None:
                raise ValueError("A fetcher is required to refresh a url source")
            return await fetcher.fetch_text(source.url)
        if not source.content:
            raise ValidationError("Source has no stored content")
        return source.content

    def _next_order_base(self, source_id: str) -> int:
        """Order of the first channel of a re-import: keep the source's slot, else append."""
        previous = (
            self.session.query(func.min(Channel.order))
            .filter(Channel.source_id == source_id)
            .scalar()
        )
        if previous is not None:
            return previous
        highest = self.session.query(func.max(Channel.order)).scalar()
        return 0 if highest is None else highest + 1

    async def refresh_source(self, source_id: str, fetcher: Optional[FetchPipeline] = None) -> Source:
        """
        Fetch (or reuse stored content), parse, filter and replace a source's channels.

        Raises:
            SourceNotFoundError: unknown id
            ValidationError: content unparseable or without channels
            NetworkError: remote source unreachable through every fetch tier
        """
        source = self.get_source(source_id)
        source.status = "loading"
        self.session.commit()

        try:
            content = await self._load_content(source, fetcher)
            records = parse_source(content, source.id)
        except Exception as e:
            # A source is never left in "loading" once the import has stopped
            source.status = "error"
            source.error = str(e)
            source.last_updated = datetime.utcnow()
            self.session.commit()
            if isinstance(e, (ValidationError, NetworkError)):
                logger.warning("[CATALOG] Import of source %s failed: %s", source.id, e)
            else:
                logger.exception("[CATALOG] Unexpected error importing source %s", source.id)
            raise

        raw_count = len(records)
        if source.selection_patterns:
            selection = filter_by_patterns(records, source.selection_patterns)
            records = selection.matched
            if source.selection_group:
                for record in records:
                    record.group = source.selection_group
            logger.info(
                "[CATALOG] Selection kept %s of %s channel(s) for source %s",
                len(records), raw_count, source.id,
            )

        base = self._next_order_base(source.id)
        for offset, record in enumerate(records):
            record.order = base + offset

        try:
            self.session.query(Channel).filter(Channel.source_id == source.id).delete(
                synchronize_session=False
            )
            self.session.add_all(Channel.from_record(r) for r in records)
            source.status = "active"
            source.error = None
            source.channel_count = len(records)
            source.raw_channel_count = raw_count
            source.last_updated = datetime.utcnow()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.expire(source, ["channels"])
        where = redact_url(source.url) if source.url else source.origin
        logger.info("[CATALOG] Imported %s channel(s) into source %s from %s", len(records), source.id, where)
        return source

    async def import_source(
        self,
        name: str,
        origin: str,
        url: Optional[str] = None,
        content: Optional[str] = None,
        selection_patterns: Optional[list[str]] = None,
        selection_group: Optional[str] = None,
        fetcher: Optional[FetchPipeline] = None,
    ) -> Source:
        """Add a source and import it. The source row is kept (as errored) when the import fails."""
        source = self.add_source(name, origin, url, content, selection_patterns, selection_group)
        return await self.refresh_source(source.id, fetcher)

    def set_source_enabled(self, source_id: str, enabled: bool) -> Source:
        source = self.get_source(source_id)
        source.enabled = enabled
        self.session.commit()
        return source

    def delete_source(self, source_id: str) -> int:
        """Delete a source and all of its channels. Returns the number of channels removed."""
        source = self.get_source(source_id)
        removed = (
            self.session.query(Channel)
            .filter(Channel.source_id == source_id)
            .delete(synchronize_session=False)
        )
        self.session.expire(source, ["channels"])
        self.session.delete(source)
        self.session.commit()
        logger.info("[CATALOG] Deleted source %s with %s channel(s)", source_id, removed)
        return removed

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    def list_channels(
        self,
        enabled_only: bool = False,
        group: Optional[str] = None,
        search: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> list[Channel]:
        query = self.session.query(Channel)
        if enabled_only:
            query = query.filter(Channel.enabled.is_(True))
        if group:
            query = query.filter(Channel.group == group)
        if source_id:
            query = query.filter(Channel.source_id == source_id)
        if search:
            query = query.filter(Channel.name.ilike(f"%{search.strip()}%"))
        return query.order_by(Channel.order, Channel.name).all()

    def playable_channels(self) -> list[ChannelRecord]:
        """Enabled channels whose source is enabled, as records."""
        rows = (
            self.session.query(Channel)
            .join(Source, Channel.source_id == Source.id)
            .filter(Channel.enabled.is_(True), Source.enabled.is_(True))
            .order_by(Channel.order, Channel.name)
            .all()
        )
        return [row.to_record() for row in rows]

    def _bulk_update(self, channel_ids: Iterable[str], values: dict) -> int:
        ids = list(channel_ids)
        if not ids:
            return 0
        updated = (
            self.session.query(Channel)
            .filter(Channel.id.in_(ids))
            .update(values, synchronize_session=False)
        )
        self.session.commit()
        return updated

    def set_channels_enabled(self, channel_ids: Iterable[str], enabled: bool) -> int:
        return self._bulk_update(channel_ids, {Channel.enabled: enabled})

    def move_channels(self, channel_ids: Iterable[str], group: str) -> int:
        group = group.strip()
        if not group:
            raise ValueError("Group name must not be empty")
        return self._bulk_update(channel_ids, {Channel.group: group})

    def reorder_channels(self, channel_ids: list[str]) -> int:
        """Assign consecutive orders following the given id sequence; unknown ids are skipped."""
        rows = {c.id: c for c in self.session.query(Channel).filter(Channel.id.in_(channel_ids)).all()}
        position = 0
        for channel_id in channel_ids:
            row = rows.get(channel_id)
            if row is None:
                continue
            row.order = position
            position += 1
        self.session.commit()
        return position

    def apply_liveness(self, results: Iterable[LivenessResult]) -> int:
        """Store probe outcomes on their channels. Returns the number of channels updated."""
        updated = 0
        for result in results:
            if not result.channel_id:
                continue
            row = self.session.get(Channel, result.channel_id)
            if row is None:
                continue
            row.status = (LivenessStatus.ALIVE if result.alive else LivenessStatus.DEAD).value
            row.last_checked = result.checked_at
            row.response_time_ms = result.response_time_ms
            updated += 1
        self.session.commit()
        return updated

    def remove_dead_channels(self) -> int:
        removed = (
            self.session.query(Channel)
            .filter(Channel.status == LivenessStatus.DEAD.value)
            .delete(synchronize_session=False)
        )
        self._refresh_channel_counts()
        self.session.commit()
        logger.info("[CATALOG] Removed %s dead channel(s)", removed)
        return removed

    def _refresh_channel_counts(self) -> None:
        counts = dict(
            self.session.query(Channel.source_id, func.count(Channel.id))
            .group_by(Channel.source_id)
            .all()
        )
        for source in self.session.query(Source).all():
            source.channel_count = counts.get(source.id, 0)

    def list_groups(self) -> list[dict]:
        rows = (
            self.session.query(
                Channel.group,
                func.count(Channel.id),
                func.sum(case((Channel.enabled.is_(True), 1), else_=0)),
            )
            .group_by(Channel.group)
            .order_by(Channel.group)
            .all()
        )
        return [
            {"name": name, "channel_count": total, "enabled_count": int(enabled or 0)}
            for name, total, enabled in rows
        ]

    def combine(self, min_sources: int = 2) -> list[ChannelGroup]:
        """Channels available from at least min_sources distinct sources, grouped by name."""
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        return group_channels(self.playable_channels(), min_sources=min_sources)

    def export_m3u(
        self,
        include_disabled: bool = False,
        filter_group: Optional[str] = None,
        sort_by_group: bool = True,
        playlist_name: str = DEFAULT_PLAYLIST_NAME,
    ) -> str:
        records = [row.to_record() for row in self.list_channels()]
        return generate_m3u(
            records,
            include_disabled=include_disabled,
            filter_group=filter_group,
            sort_by_group=sort_by_group,
            playlist_name=playlist_name,
        )
