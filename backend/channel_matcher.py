"""
Precise channel name matching.

Decides whether a free-text channel name denotes the same channel as a
short pattern, without conflating brands that differ by a language or
region word:

    "Sun TV"    matches "Sun TV", "Sun TV HD", "SunTV VIP", "SUN TV USA", "[HD] Sun TV"
    "Sun TV"    does not match "Sunshine TV" or "Sony TV"
    "Zee Tamil" matches "Zee Tamil HD" but not "Zee Marathi"

Only quality / delivery / region qualifiers are stripped. Language and
brand words (and "tv") are always kept, and every pattern token must be
present in the candidate.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from channel_record import ChannelRecord

logger = logging.getLogger(__name__)

# Quality/delivery/region qualifiers removed during normalization.
# "tv" is deliberately absent: it is part of brand names.
STOP_WORDS = frozenset({
    "hd", "sd", "fhd", "uhd", "4k", "2k", "8k",
    "1080p", "1080i", "720p", "576p", "480p", "360p",
    "vip", "plus", "premium", "backup", "mirror", "alt", "alternate",
    "usa", "uk", "us", "ca", "au", "in",
    "live", "stream", "online", "channel",
})

_BRACKETED_RE = re.compile(r"[\[\(\{][^\]\)\}]*[\]\)\}]")
_SEPARATOR_RE = re.compile(r"[\W_]+", re.UNICODE)

# Secondary concatenation match applies to short patterns only
CONCAT_MAX_PATTERN_TOKENS = 2
CONCAT_MIN_LENGTH = 3


def tokenize(name: str) -> list[str]:
    """Lower-case, drop bracketed annotations and separators, and remove stop words."""
    if not isinstance(name, str):
        return []
    text = _BRACKETED_RE.sub(" ", name.lower())
    text = _SEPARATOR_RE.sub(" ", text)
    return [token for token in text.split() if token not in STOP_WORDS]


def normalize_channel_name(name: str) -> str:
    """
    Normalization key of a channel name.

    Idempotent: normalize_channel_name(normalize_channel_name(x)) equals
    normalize_channel_name(x).
    """
    return " ".join(tokenize(name))


def channel_matches(channel_name: str, pattern: str) -> bool:
    """
    True when channel_name denotes the channel described by pattern.

    Every pattern token must appear as a whole token of the candidate.
    For patterns of at most two tokens, a candidate whose concatenated
    form equals or starts with the pattern's concatenated form also
    matches ("SunTV" for "Sun TV").
    """
    pattern_tokens = tokenize(pattern)
    if not pattern_tokens:
        return False

    channel_tokens = tokenize(channel_name)
    channel_set = set(channel_tokens)
    if all(token in channel_set for token in pattern_tokens):
        return True

    pattern_joined = "".join(pattern_tokens)
    if len(pattern_tokens) <= CONCAT_MAX_PATTERN_TOKENS and len(pattern_joined) >= CONCAT_MIN_LENGTH:
        channel_joined = "".join(channel_tokens)
        if channel_joined.startswith(pattern_joined):
            return True

    return False


def matches_any_pattern(channel_name: str, patterns: Iterable[str]) -> Optional[str]:
    """Return the first pattern (stripped) that matches channel_name, or None."""
    for pattern in patterns:
        stripped = pattern.strip() if isinstance(pattern, str) else ""
        if stripped and channel_matches(channel_name, stripped):
            return stripped
    return None


@dataclass
class FilterResult:
    """Outcome of filtering records by a pattern list."""
    matched: list = field(default_factory=list)
    unmatched: list = field(default_factory=list)
    match_map: dict = field(default_factory=dict)  # record id -> matched pattern


def filter_by_patterns(records: Iterable[ChannelRecord], patterns: list[str]) -> FilterResult:
    result = FilterResult()
    for record in records:
        hit = matches_any_pattern(record.name, patterns)
        if hit is None:
            result.unmatched.append(record)
        else:
            result.matched.append(record)
            result.match_map[record.id] = hit
    return result


def preview_patterns(names: list[str], patterns: list[str], examples: int = 5) -> list[dict]:
    """For each pattern, how many names match and the first few of them."""
    preview = []
    for pattern in patterns:
        stripped = pattern.strip()
        if not stripped:
            continue
        hits = [name for name in names if channel_matches(name, stripped)]
        preview.append({
            "pattern": stripped,
            "match_count": len(hits),
            "examples": hits[:examples],
        })
    return preview


@dataclass
class SelectionModel:
    """A named list of channel patterns applied to a source on import."""
    id: str
    name: str
    patterns: list[str]
    single_group: bool = True
    default_group_name: str = ""
    built_in: bool = False


BUILT_IN_MODELS = [
    SelectionModel(
        id="builtin_tamil",
        name="Tamil Channels",
        default_group_name="Tamil",
        built_in=True,
        patterns=[
            "Sun TV", "Star Vijay", "Zee Tamil", "Colors Tamil", "Jaya TV",
            "Kalaignar TV", "Raj TV", "Polimer TV", "Mega TV", "Makkal TV",
            "Puthuyugam TV", "Vendhar TV", "Thanthi TV", "Thanthi One", "KTV",
            "J Movies", "Puthiya Thalaimurai", "News7 Tamil", "Polimer News",
            "Seithigal TV", "Isai Aruvi", "Sirippoli TV", "Star Sports Tamil",
            "Sony Ten Tamil",
        ],
    ),
    SelectionModel(
        id="builtin_sports",
        name="Sports Channels",
        default_group_name="Sports",
        built_in=True,
        patterns=[
            "Star Sports", "Sony Sports", "Sony Ten", "ESPN", "Sky Sports",
            "BT Sport", "beIN Sports", "Eurosport", "DAZN", "Fox Sports",
            "NBC Sports", "TNT Sports",
        ],
    ),
    SelectionModel(
        id="builtin_news",
        name="News Channels",
        default_group_name="News",
        built_in=True,
        patterns=[
            "CNN", "BBC News", "Al Jazeera", "NDTV", "Times Now", "Republic TV",
            "India Today", "Aaj Tak", "News18", "DD News", "Sky News", "Fox News",
            "CNBC", "Bloomberg",
        ],
    ),
]


def get_built_in_model(model_id: str) -> Optional[SelectionModel]:
    return next((m for m in BUILT_IN_MODELS if m.id == model_id), None)


@dataclass
class ChannelGroup:
    """Channels from several sources sharing one normalization key."""
    key: str
    name: str
    members: list = field(default_factory=list)
    source_ids: set = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "source_count": len(self.source_ids),
            "logo": next((m.logo for m in self.members if m.logo), None),
            "channels": [m.to_dict() for m in self.members],
        }


def group_channels(records: Iterable[ChannelRecord], min_sources: int = 2) -> list[ChannelGroup]:
    """
    Bucket enabled records by normalization key.

    Only buckets whose members come from at least min_sources distinct
    sources are returned, in order of first appearance. The representative
    name is the shortest member name (first seen wins ties).
    """
    buckets: dict[str, ChannelGroup] = {}
    for record in records:
        if not record.enabled:
            continue
        key = normalize_channel_name(record.name)
        if not key:
            continue
        group = buckets.get(key)
        if group is None:
            group = buckets[key] = ChannelGroup(key=key, name=record.name)
        group.members.append(record)
        group.source_ids.add(record.source_id)
        if len(record.name) < len(group.name):
            group.name = record.name

    groups = [g for g in buckets.values() if len(g.source_ids) >= min_sources]
    logger.debug("[CATALOG] %s of %s channel keys span >= %s sources", len(groups), len(buckets), min_sources)
    return groups
