"""
Line-oriented playlist parser (#EXTM3U dialect).

Parsing is a fold over trimmed, non-empty lines. The fold state holds the
records emitted so far and an optional PendingEntry collecting metadata from
the directive lines that precede a stream URL:

    #EXTINF           opens a pending entry (attributes + display name)
    #KODIPROP         DRM license type / key
    #EXTVLCOPT        user agent / referer
    #EXTHTTP          inline JSON header object (cookie + arbitrary headers)
    <url>             closes the entry and emits a ChannelRecord

Unknown directives and unrecognized lines are skipped. A malformed #EXTHTTP
object is dropped without discarding the rest of the pending metadata.
"""
import json
import logging
import re
from dataclasses import dataclass, replace
from functools import reduce
from typing import Callable, Optional

from channel_record import (
    DEFAULT_CHANNEL_NAME,
    DEFAULT_GROUP,
    ChannelRecord,
    DrmDescriptor,
    TransportHeaders,
    detect_stream_kind,
    looks_like_stream_url,
    new_channel_id,
    normalize_drm_scheme,
)

logger = logging.getLogger(__name__)

EXTINF_PREFIX = "#EXTINF:"
LICENSE_TYPE_PREFIX = "#KODIPROP:inputstream.adaptive.license_type="
LICENSE_KEY_PREFIX = "#KODIPROP:inputstream.adaptive.license_key="
USER_AGENT_PREFIX = "#EXTVLCOPT:http-user-agent="
REFERRER_PREFIXES = ("#EXTVLCOPT:http-referrer=", "#EXTVLCOPT:http-referer=")
EXTHTTP_PREFIX = "#EXTHTTP:"

# EXTINF attribute -> PendingEntry field
EXTINF_ATTRIBUTES = {
    "tvg-logo": "logo",
    "group-title": "group",
    "tvg-id": "guide_id",
    "tvg-name": "guide_name",
}


@dataclass(frozen=True)
class PendingEntry:
    """Metadata accumulated for the next stream URL."""
    name: Optional[str] = None
    logo: Optional[str] = None
    group: Optional[str] = None
    guide_id: Optional[str] = None
    guide_name: Optional[str] = None
    license_type: Optional[str] = None
    license_key: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    cookie: Optional[str] = None
    headers: tuple = ()  # (name, value) pairs, later pairs override earlier ones


@dataclass(frozen=True)
class ParserState:
    source_id: str
    pending: Optional[PendingEntry] = None
    # Emitted records as a cons list, newest first: (record, rest) or None
    emitted: Optional[tuple] = None
    count: int = 0

    @property
    def records(self) -> list[ChannelRecord]:
        """Emitted records in file order."""
        records = []
        node = self.emitted
        while node is not None:
            record, node = node
            records.append(record)
        records.reverse()
        return records


def _attribute_pattern(attr: str) -> list:
    escaped = re.escape(attr)
    prefix = r"(?<![\w-])"
    return [
        re.compile(prefix + escaped + r'="([^"]*)"', re.IGNORECASE),
        re.compile(prefix + escaped + r"='([^']*)'", re.IGNORECASE),
        re.compile(prefix + escaped + r"=([^\s,\"']+)", re.IGNORECASE),
    ]


_ATTRIBUTE_PATTERNS = {attr: _attribute_pattern(attr) for attr in EXTINF_ATTRIBUTES}


def extract_attribute(line: str, attr: str) -> Optional[str]:
    """Read a double-quoted, single-quoted or bare attribute value from an EXTINF line."""
    for pattern in _ATTRIBUTE_PATTERNS.get(attr) or _attribute_pattern(attr):
        match = pattern.search(line)
        if match:
            return match.group(1).strip()
    return None


def last_unquoted_comma(line: str) -> int:
    """Index of the last comma outside a double-quoted attribute value, or -1."""
    in_quotes = False
    position = -1
    for i, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            position = i
    return position


def extract_display_name(extinf: str) -> str:
    """
    Display name of an EXTINF line.

    Attribute values such as logo URLs may contain commas, so the name
    starts after the last comma that is not inside quotes. A plain
    last-comma split is used only when no unquoted comma exists (for
    example when a quote is left unbalanced).
    """
    index = last_unquoted_comma(extinf)
    if index == -1:
        index = extinf.rfind(",")
    if index == -1:
        return DEFAULT_CHANNEL_NAME
    return extinf[index + 1:].strip() or DEFAULT_CHANNEL_NAME


def _pending(state: ParserState) -> PendingEntry:
    return state.pending or PendingEntry()


def _on_extinf(state: ParserState, line: str) -> ParserState:
    values = {
        target: extract_attribute(line, attr)
        for attr, target in EXTINF_ATTRIBUTES.items()
    }
    entry = PendingEntry(name=extract_display_name(line), **values)
    return replace(state, pending=entry)


def _on_license_type(state: ParserState, line: str) -> ParserState:
    value = line[len(LICENSE_TYPE_PREFIX):].strip()
    if not value:
        return state
    return replace(state, pending=replace(_pending(state), license_type=normalize_drm_scheme(value)))


def _on_license_key(state: ParserState, line: str) -> ParserState:
    value = line[len(LICENSE_KEY_PREFIX):].strip()
    if not value:
        return state
    return replace(state, pending=replace(_pending(state), license_key=value))


def _on_user_agent(state: ParserState, line: str) -> ParserState:
    value = line[len(USER_AGENT_PREFIX):].strip()
    if not value:
        return state
    return replace(state, pending=replace(_pending(state), user_agent=value))


def _on_referrer(state: ParserState, line: str) -> ParserState:
    value = line.split("=", 1)[1].strip()
    if not value:
        return state
    return replace(state, pending=replace(_pending(state), referer=value))


def _on_exthttp(state: ParserState, line: str) -> ParserState:
    raw = line[len(EXTHTTP_PREFIX):].strip()
    try:
        data = json.loads(raw)
    except ValueError:
        logger.debug("[PLAYLIST] Ignoring malformed #EXTHTTP block: %s", raw[:80])
        return state
    if not isinstance(data, dict):
        logger.debug("[PLAYLIST] Ignoring non-object #EXTHTTP block")
        return state

    entry = _pending(state)
    headers = dict(entry.headers)
    cookie = entry.cookie
    for key, value in data.items():
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            continue
        text = str(value)
        if key.lower() == "cookie":
            cookie = text
        else:
            headers[key] = text
    return replace(state, pending=replace(entry, cookie=cookie, headers=tuple(headers.items())))


def _build_record(state: ParserState, url: str) -> ChannelRecord:
    entry = _pending(state)
    drm = None
    if entry.license_type and entry.license_key:
        drm = DrmDescriptor(license_type=entry.license_type, license_key=entry.license_key)
    elif entry.license_key:
        # KODIPROP key without a type line: the common case is a kid:key pair
        drm = DrmDescriptor(license_type="clearkey", license_key=entry.license_key)

    index = state.count
    return ChannelRecord(
        id=new_channel_id(state.source_id, index),
        name=entry.name or DEFAULT_CHANNEL_NAME,
        url=url,
        source_id=state.source_id,
        group=entry.group or DEFAULT_GROUP,
        logo=entry.logo or None,
        guide_id=entry.guide_id or None,
        guide_name=entry.guide_name or None,
        drm=drm,
        headers=TransportHeaders(
            user_agent=entry.user_agent,
            referer=entry.referer,
            cookie=entry.cookie,
            extra=dict(entry.headers),
        ),
        stream_kind=detect_stream_kind(url),
        order=index,
    )


def _on_url(state: ParserState, line: str) -> ParserState:
    record = _build_record(state, line)
    return replace(state, pending=None, emitted=(record, state.emitted), count=state.count + 1)


# Ordered (predicate, handler) table; the first matching predicate wins
_LINE_HANDLERS: list = [
    (lambda line: line.startswith(EXTINF_PREFIX), _on_extinf),
    (lambda line: line.startswith(LICENSE_TYPE_PREFIX), _on_license_type),
    (lambda line: line.startswith(LICENSE_KEY_PREFIX), _on_license_key),
    (lambda line: line.startswith(USER_AGENT_PREFIX), _on_user_agent),
    (lambda line: line.startswith(REFERRER_PREFIXES), _on_referrer),
    (lambda line: line.startswith(EXTHTTP_PREFIX), _on_exthttp),
    (lambda line: not line.startswith("#") and looks_like_stream_url(line), _on_url),
]


def step(state: ParserState, line: str) -> ParserState:
    """Advance the parser by one trimmed, non-empty line."""
    handler: Optional[Callable[[ParserState, str], ParserState]] = next(
        (h for predicate, h in _LINE_HANDLERS if predicate(line)), None
    )
    if handler is None:
        return state
    return handler(state, line)


def parse_playlist(content: str, source_id: str) -> list[ChannelRecord]:
    """
    Parse playlist text into channel records, in file order.

    Args:
        content: Raw multi-line playlist text
        source_id: Id of the owning source

    Returns:
        List of ChannelRecord with status unknown
    """
    lines = (line.strip() for line in content.splitlines())
    final = reduce(step, (line for line in lines if line), ParserState(source_id=source_id))
    logger.debug("[PLAYLIST] Parsed %s channel(s) for source %s", final.count, source_id)
    return final.records
