"""
Canonical channel record shared by the parsers, matcher, resolver and prober.

Both playlist dialects are parsed into ChannelRecord instances. The catalog
persists them as models.Channel rows and converts back with to_record().
"""
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


DEFAULT_CHANNEL_NAME = "Unknown Channel"
DEFAULT_GROUP = "Uncategorized"


class StreamKind(Enum):
    HLS = "hls"
    DASH = "dash"
    DIRECT = "direct"


class LivenessStatus(Enum):
    UNKNOWN = "unknown"
    ALIVE = "alive"
    DEAD = "dead"
    CHECKING = "checking"


# Aliases seen in feeds and KODIPROP lines, mapped to one canonical token
DRM_SCHEME_ALIASES = {
    "clearkey": "clearkey",
    "org.w3.clearkey": "clearkey",
    "widevine": "widevine",
    "com.widevine.alpha": "widevine",
    "playready": "playready",
    "com.microsoft.playready": "playready",
}

STREAM_KIND_TOKENS = frozenset(kind.value for kind in StreamKind)

# Scheme prefixes that mark a playlist line as a stream location
URL_SCHEME_RE = re.compile(r"^(?:https?|rtmpe?|rtsp|rtp|udp|mms)://", re.IGNORECASE)
MEDIA_EXTENSION_RE = re.compile(r"\.(?:m3u8?|mpd|ts|mp4|mkv|aac)(?:[?#].*)?$", re.IGNORECASE)


def normalize_drm_scheme(scheme: str) -> str:
    """Map a DRM scheme alias onto its canonical token (unknown values pass through lower-cased)."""
    lowered = scheme.strip().lower()
    return DRM_SCHEME_ALIASES.get(lowered, lowered)


def detect_stream_kind(url: str) -> StreamKind:
    """Classify a playback URL by its shape."""
    u = url.lower().split("#", 1)[0]
    path = u.split("?", 1)[0]
    if path.endswith(".mpd") or ".mpd" in u or "/dash/" in path:
        return StreamKind.DASH
    if ".m3u8" in u or path.endswith(".m3u") or "/hls/" in path:
        return StreamKind.HLS
    return StreamKind.DIRECT


def looks_like_stream_url(line: str) -> bool:
    """True for a scheme-prefixed location or a bare path with a media extension."""
    return bool(URL_SCHEME_RE.match(line) or MEDIA_EXTENSION_RE.search(line))


def new_channel_id(source_id: str, index: int) -> str:
    """Catalog-wide unique id for the index-th record of a source import."""
    return f"{source_id}_{index}_{uuid.uuid4().hex[:10]}"


@dataclass
class DrmDescriptor:
    """License type plus key material (kid:key pairs or a license server URL)."""
    license_type: str
    license_key: str


@dataclass
class TransportHeaders:
    """Headers the playback engine must send when requesting the stream."""
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    cookie: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.user_agent or self.referer or self.cookie or self.extra)

    def as_request_headers(self) -> dict:
        """Flatten into an HTTP header mapping; the named fields win over extras."""
        headers = {k: v for k, v in self.extra.items() if isinstance(v, str)}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if self.referer:
            headers["Referer"] = self.referer
        if self.cookie:
            headers["Cookie"] = self.cookie
        return headers


@dataclass
class ChannelRecord:
    """One playable channel as imported from a source."""
    id: str
    name: str
    url: str
    source_id: str
    group: str = DEFAULT_GROUP
    logo: Optional[str] = None
    guide_id: Optional[str] = None
    guide_name: Optional[str] = None
    enabled: bool = True
    drm: Optional[DrmDescriptor] = None
    headers: TransportHeaders = field(default_factory=TransportHeaders)
    stream_kind: StreamKind = StreamKind.DIRECT
    status: LivenessStatus = LivenessStatus.UNKNOWN
    last_checked: Optional[datetime] = None
    response_time_ms: Optional[int] = None
    order: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "source_id": self.source_id,
            "group": self.group,
            "logo": self.logo,
            "guide_id": self.guide_id,
            "guide_name": self.guide_name,
            "enabled": self.enabled,
            "license_type": self.drm.license_type if self.drm else None,
            "license_key": self.drm.license_key if self.drm else None,
            "user_agent": self.headers.user_agent,
            "referer": self.headers.referer,
            "cookie": self.headers.cookie,
            "http_headers": dict(self.headers.extra),
            "stream_kind": self.stream_kind.value,
            "status": self.status.value,
            "last_checked": self.last_checked.isoformat() + "Z" if self.last_checked else None,
            "response_time_ms": self.response_time_ms,
            "order": self.order,
        }
