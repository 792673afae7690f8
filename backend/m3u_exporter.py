"""
Playlist export.

Writes channel records back out in the #EXTM3U dialect read by
playlist_parser, including the DRM (#KODIPROP), transport (#EXTVLCOPT)
and header (#EXTHTTP) directives, so an exported catalog can be
re-imported with its playback metadata intact.
"""
import json
import logging
from typing import Iterable, Optional

from channel_record import ChannelRecord

logger = logging.getLogger(__name__)

DEFAULT_PLAYLIST_NAME = "Channel Catalog"
M3U_MEDIA_TYPE = "application/x-mpegurl"


def escape_attribute(value: str) -> str:
    """Make a value safe inside a double-quoted EXTINF attribute."""
    return value.replace('"', "&quot;").replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


def single_line(value: str) -> str:
    return " ".join(value.splitlines()).strip()


def select_records(
    records: Iterable[ChannelRecord],
    include_disabled: bool = False,
    filter_group: Optional[str] = None,
    sort_by_group: bool = True,
) -> list[ChannelRecord]:
    """Records an export would contain, in output order."""
    selected = [r for r in records if include_disabled or r.enabled]
    if filter_group:
        selected = [r for r in selected if r.group == filter_group]
    if sort_by_group:
        selected.sort(key=lambda r: (r.group.casefold(), r.name.casefold()))
    return selected


def extinf_line(record: ChannelRecord) -> str:
    parts = ["#EXTINF:-1"]
    if record.guide_id:
        parts.append(f'tvg-id="{escape_attribute(record.guide_id)}"')
    parts.append(f'tvg-name="{escape_attribute(record.guide_name or record.name)}"')
    if record.logo:
        parts.append(f'tvg-logo="{escape_attribute(record.logo)}"')
    parts.append(f'group-title="{escape_attribute(record.group)}"')
    return f"{' '.join(parts)},{single_line(record.name)}"


def directive_lines(record: ChannelRecord) -> list[str]:
    """DRM and transport directives that follow the EXTINF line."""
    lines = []
    if record.drm:
        lines.append(f"#KODIPROP:inputstream.adaptive.license_type={record.drm.license_type}")
        lines.append(f"#KODIPROP:inputstream.adaptive.license_key={record.drm.license_key}")

    headers = record.headers
    if headers.user_agent:
        lines.append(f"#EXTVLCOPT:http-user-agent={single_line(headers.user_agent)}")
    if headers.referer:
        lines.append(f"#EXTVLCOPT:http-referrer={single_line(headers.referer)}")

    http_block = dict(headers.extra)
    if headers.cookie:
        http_block["cookie"] = headers.cookie
    if http_block:
        lines.append(f"#EXTHTTP:{json.dumps(http_block, separators=(',', ':'))}")
    return lines


def generate_m3u(
    records: Iterable[ChannelRecord],
    include_disabled: bool = False,
    filter_group: Optional[str] = None,
    sort_by_group: bool = True,
    playlist_name: str = DEFAULT_PLAYLIST_NAME,
) -> str:
    """
    Render records as playlist text.

    Only enabled records are written unless include_disabled is set.
    Display names are written after the final comma of the EXTINF line,
    so a name that itself contains a comma is cut at that comma when the
    file is read back.
    """
    selected = select_records(records, include_disabled, filter_group, sort_by_group)
    lines = [
        f'#EXTM3U x-tvg-url="" playlist-type="vod" x-playlist-name="{escape_attribute(playlist_name)}"'
    ]
    for record in selected:
        lines.append(extinf_line(record))
        lines.extend(directive_lines(record))
        lines.append(record.url)

    logger.debug("[CATALOG] Exported %s channel(s) to playlist '%s'", len(selected), playlist_name)
    return "\n".join(lines) + "\n"
