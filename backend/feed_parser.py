"""
Structured feed parser.

Accepts JSON feeds in the dialects seen in the wild:

    [ {link, name, logo, cookie, drmScheme, drmLicense}, ... ]     JioTV-style
    [ {url|stream|src, title|channel, icon|image, category}, ... ]  generic
    {"channels": [...]} / {"streams": [...]} / {"items": [...]}     wrapped
    {"data": [...]} / {"data": {"channels": [...]}}                 data wrapper
    {url, tvgName, tvgLogo, groupTitle, headers: {...}}             single entry

Field resolution is driven by FIELD_SYNONYMS: for each logical field the
first key holding a usable scalar value wins. Values of unexpected types
(numbers, lists, objects) never raise; they are coerced or skipped.
"""
import json
import logging
from typing import Any, Optional

from channel_record import (
    DEFAULT_CHANNEL_NAME,
    DEFAULT_GROUP,
    STREAM_KIND_TOKENS,
    URL_SCHEME_RE,
    ChannelRecord,
    DrmDescriptor,
    TransportHeaders,
    detect_stream_kind,
    new_channel_id,
    normalize_drm_scheme,
)

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when a feed payload cannot be parsed or yields no playable entries."""


# Ordered synonym keys per logical field; first usable value wins
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "url": ("link", "url", "stream", "src", "streamUrl", "playbackUrl"),
    "name": ("name", "title", "channel", "channelName", "label", "tvgName", "tvg-name"),
    "logo": ("logo", "icon", "image", "thumbnail", "poster", "tvgLogo", "tvg-logo"),
    "group": ("group", "category", "genre", "groupTitle", "group-title", "type"),
    "guide_id": ("tvgId", "tvg-id", "epgId"),
    "guide_name": ("tvgName", "tvg-name"),
    "user_agent": ("userAgent", "user-agent", "user_agent"),
    "referer": ("referer", "referrer"),
    "cookie": ("cookie",),
}

# Keys under which a wrapper object nests its entry list
NESTING_KEYS = ("channels", "streams", "items")
DATA_KEY = "data"

HEADER_MAP_KEYS = ("headers", "httpHeaders")

# (scheme key, license key) pairs naming a DRM scheme alongside its license
DRM_SCHEME_PAIRS = (("drmScheme", "drmLicense"),)
DRM_DIRECT_PAIR = ("licenseType", "licenseKey")
# Single-purpose shorthand fields -> implied license type
DRM_SHORTHAND = (
    ("clearKey", "clearkey"),
    ("drmKey", "clearkey"),
    ("widevineUrl", "widevine"),
)


def as_text(value: Any) -> str:
    """Coerce a scalar JSON value to text; anything else becomes ''."""
    if isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def first_value(raw: dict, keys: tuple[str, ...], reject: frozenset = frozenset()) -> Optional[str]:
    """First non-empty text value among keys, skipping values whose lower-case form is in reject."""
    for key in keys:
        text = as_text(raw.get(key))
        if text and text.lower() not in reject:
            return text
    return None


def resolve_field(raw: dict, field_name: str) -> Optional[str]:
    reject = STREAM_KIND_TOKENS if field_name == "group" else frozenset()
    return first_value(raw, FIELD_SYNONYMS[field_name], reject)


def _header_maps(raw: dict) -> list[dict]:
    return [raw[key] for key in HEADER_MAP_KEYS if isinstance(raw.get(key), dict)]


def _header_lookup(maps: list[dict], *names: str) -> Optional[str]:
    for header_map in maps:
        for name in names:
            text = as_text(header_map.get(name))
            if text:
                return text
    return None


def extract_headers(raw: dict) -> TransportHeaders:
    """Cookie, user agent, referer and any header maps, probing both header spellings."""
    maps = _header_maps(raw)
    merged: dict[str, str] = {}
    for header_map in maps:
        for key, value in header_map.items():
            text = as_text(value)
            if isinstance(key, str) and text:
                merged[key] = text

    return TransportHeaders(
        user_agent=resolve_field(raw, "user_agent") or _header_lookup(maps, "User-Agent", "user-agent"),
        referer=resolve_field(raw, "referer") or _header_lookup(maps, "Referer", "referer"),
        cookie=resolve_field(raw, "cookie") or _header_lookup(maps, "Cookie", "cookie"),
        extra=merged,
    )


def extract_drm(raw: dict) -> Optional[DrmDescriptor]:
    for scheme_key, license_key in DRM_SCHEME_PAIRS:
        scheme = as_text(raw.get(scheme_key))
        license_value = as_text(raw.get(license_key))
        if scheme and license_value:
            return DrmDescriptor(license_type=normalize_drm_scheme(scheme), license_key=license_value)

    type_key, key_key = DRM_DIRECT_PAIR
    license_type = as_text(raw.get(type_key))
    license_value = as_text(raw.get(key_key))
    if license_type and license_value:
        return DrmDescriptor(license_type=normalize_drm_scheme(license_type), license_key=license_value)

    for key, implied_type in DRM_SHORTHAND:
        value = as_text(raw.get(key))
        if value:
            return DrmDescriptor(license_type=implied_type, license_key=value)

    return None


def has_resolvable_url(raw: Any) -> bool:
    return isinstance(raw, dict) and resolve_field(raw, "url") is not None


def flatten_entries(raw: Any) -> list[dict]:
    """
    Flatten a decoded payload into a list of candidate entry objects.

    Arrays contribute their entries (objects with a URL) and recurse into
    members that are themselves wrappers. Wrapper objects recurse into the
    first nesting key present; a "data" wrapper may nest one level further.
    An object with a URL and no nesting key is a single entry.
    """
    if isinstance(raw, list):
        entries: list[dict] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            if has_resolvable_url(item):
                entries.append(item)
            elif any(isinstance(item.get(key), list) for key in NESTING_KEYS):
                entries.extend(flatten_entries(item))
        return entries

    if isinstance(raw, dict):
        for key in NESTING_KEYS:
            if isinstance(raw.get(key), list):
                return flatten_entries(raw[key])

        data = raw.get(DATA_KEY)
        if isinstance(data, list):
            return flatten_entries(data)
        if isinstance(data, dict):
            for key in NESTING_KEYS:
                if isinstance(data.get(key), list):
                    return flatten_entries(data[key])

        if has_resolvable_url(raw):
            return [raw]

    return []


def parse_entry(raw: dict, source_id: str, index: int) -> Optional[ChannelRecord]:
    """Build a record from one entry, or None when its URL is not a stream location."""
    url = resolve_field(raw, "url")
    if not url or not URL_SCHEME_RE.match(url):
        return None

    name = resolve_field(raw, "name") or DEFAULT_CHANNEL_NAME
    return ChannelRecord(
        id=new_channel_id(source_id, index),
        name=name,
        url=url,
        source_id=source_id,
        group=resolve_field(raw, "group") or DEFAULT_GROUP,
        logo=resolve_field(raw, "logo"),
        guide_id=resolve_field(raw, "guide_id"),
        guide_name=resolve_field(raw, "guide_name") or name,
        drm=extract_drm(raw),
        headers=extract_headers(raw),
        stream_kind=detect_stream_kind(url),
        order=index,
    )


def decode_payload(payload: Any) -> Any:
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Feed is not valid UTF-8: {e}") from e
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError as e:
            raise ValidationError("Invalid JSON: could not parse source content") from e
    if isinstance(payload, (list, dict)):
        return payload
    raise ValidationError(f"Unsupported feed payload type: {type(payload).__name__}")


def parse_feed(payload: Any, source_id: str) -> list[ChannelRecord]:
    """
    Parse a structured feed into channel records.

    Args:
        payload: JSON text, UTF-8 bytes, or an already-decoded list/dict
        source_id: Id of the owning source

    Returns:
        List of ChannelRecord, one per entry with a stream URL

    Raises:
        ValidationError: payload undecodable, or no entry has a usable URL
    """
    decoded = decode_payload(payload)
    entries = flatten_entries(decoded)
    if not entries:
        raise ValidationError("No streams found in feed. Expected objects with url/link fields.")

    records = []
    for entry in entries:
        record = parse_entry(entry, source_id, len(records))
        if record is None:
            logger.debug("[FEED] Dropping entry without a stream URL: %s", resolve_field(entry, "name"))
            continue
        records.append(record)

    if not records:
        raise ValidationError(
            f"Feed parsed but no valid stream URLs found (checked {len(entries)} entries)."
        )

    logger.debug("[FEED] Parsed %s of %s entries for source %s", len(records), len(entries), source_id)
    return records
