"""
Format detection for imported source content.

Playlist text and structured feeds arrive through the same import path;
detect_format() decides which parser handles them.
"""
import logging
from enum import Enum

from channel_record import ChannelRecord
from feed_parser import ValidationError, parse_feed
from playlist_parser import parse_playlist

logger = logging.getLogger(__name__)


class SourceFormat(Enum):
    PLAYLIST = "playlist"
    FEED = "feed"
    UNKNOWN = "unknown"


def looks_like_feed(content: str) -> bool:
    trimmed = content.lstrip("\ufeff").lstrip()
    return trimmed.startswith("[") or trimmed.startswith("{")


def detect_format(content: str) -> SourceFormat:
    trimmed = content.lstrip("\ufeff").strip()
    if trimmed.startswith("#EXTM3U") or "#EXTINF" in trimmed:
        return SourceFormat.PLAYLIST
    if looks_like_feed(trimmed):
        return SourceFormat.FEED
    return SourceFormat.UNKNOWN


def parse_source(content: str, source_id: str) -> list[ChannelRecord]:
    """
    Parse imported content in whichever dialect it is written.

    Unknown content is tried as a bare URL list. An import that yields no
    channels at all is rejected.

    Raises:
        ValidationError: the content is unparseable or contains no channels
    """
    fmt = detect_format(content)
    logger.debug("[CATALOG] Detected %s format for source %s", fmt.value, source_id)

    if fmt is SourceFormat.FEED:
        return parse_feed(content, source_id)

    records = parse_playlist(content, source_id)
    if not records:
        raise ValidationError("No channels found in playlist content")
    return records
