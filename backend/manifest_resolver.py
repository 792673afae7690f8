"""
Adaptive manifest resolution.

Turns an HLS playlist URL into a concrete playable URL:

- master manifest: variants are sorted by descending bandwidth and the one at
  index len // 2 is chosen. The middle rendition is picked on purpose, it
  plays more reliably on TV clients than the top one.
- media manifest: the first segment or sub-manifest line is chosen.
- anything else passes through unchanged.

resolve_stream() never raises. When nothing usable is found, including when
the manifest cannot be fetched at all, the original URL comes back classified
as FALLBACK so callers can still attempt playback.
"""
import logging
import re
import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Optional
from urllib.parse import urljoin

from batch_runner import BatchOutcome, BatchRunner, CancellationToken
from cache import Cache, get_cache
from config import get_settings
from fetch_pipeline import FetchPipeline, NetworkError, get_fetcher
from log_utils import redact_url

logger = logging.getLogger(__name__)

DEFAULT_RESOLVE_CONCURRENCY = 5

VARIANT_DIRECTIVE = "#EXT-X-STREAM-INF"
BANDWIDTH_RE = re.compile(r"BANDWIDTH=(\d+)")
RESOLUTION_RE = re.compile(r"RESOLUTION=(\d+x\d+)")
UNKNOWN_RESOLUTION = "unknown"

# Line fragments identifying a segment or nested manifest in a media playlist
MEDIA_TARGET_MARKERS = (".ts", ".m4s", ".m3u8", ".aac", ".mp4")

# Manifest excerpt lengths kept on results, per outcome
PASSTHROUGH_EXCERPT = 200
FALLBACK_EXCERPT = 300
RESOLVED_EXCERPT = 400


class ResolutionKind(Enum):
    MASTER = "master"
    MEDIA = "media"
    DIRECT = "direct"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ManifestVariant:
    url: str
    bandwidth: int = 0
    resolution: str = UNKNOWN_RESOLUTION


@dataclass
class ResolutionResult:
    url: str
    kind: ResolutionKind
    original_url: str
    selected_index: Optional[int] = None
    variants_found: Optional[int] = None
    resolution: Optional[str] = None
    bandwidth: Optional[int] = None
    elapsed_ms: int = 0
    cached: bool = False
    excerpt: Optional[str] = None
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.kind in (ResolutionKind.MASTER, ResolutionKind.MEDIA)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def is_manifest_url(url: str) -> bool:
    """True for URLs shaped like an HLS playlist."""
    lowered = url.lower()
    return (
        lowered.endswith(".m3u8")
        or lowered.endswith(".m3u")
        or ".m3u8?" in lowered
        or "/playlist" in lowered
        or "play.m3u8" in lowered
    )


def looks_like_manifest(text: str) -> bool:
    return "#EXTM3U" in text or "#EXT-X-" in text


def manifest_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def is_master_manifest(lines: list[str]) -> bool:
    return any(VARIANT_DIRECTIVE in line for line in lines)


def parse_variants(lines: list[str]) -> list[ManifestVariant]:
    """Pair every variant directive with the next non-comment line."""
    variants = []
    for i, line in enumerate(lines):
        if VARIANT_DIRECTIVE not in line:
            continue
        bandwidth = BANDWIDTH_RE.search(line)
        resolution = RESOLUTION_RE.search(line)
        target = next((candidate for candidate in lines[i + 1:] if not candidate.startswith("#")), None)
        if target is None:
            continue
        variants.append(ManifestVariant(
            url=target,
            bandwidth=int(bandwidth.group(1)) if bandwidth else 0,
            resolution=resolution.group(1) if resolution else UNKNOWN_RESOLUTION,
        ))
    return variants


def select_variant(variants: list[ManifestVariant]) -> tuple[int, ManifestVariant]:
    """Return (index, variant) of the middle entry by descending bandwidth."""
    ranked = sorted(variants, key=lambda v: v.bandwidth, reverse=True)
    index = len(ranked) // 2
    return index, ranked[index]


def find_media_target(lines: list[str]) -> Optional[str]:
    for line in lines:
        if line.startswith("#"):
            continue
        lowered = line.lower()
        if any(marker in lowered for marker in MEDIA_TARGET_MARKERS):
            return line
    return None


def resolve_reference(reference: str, base_url: str) -> str:
    """Absolute URL of a manifest reference; protocol-relative references become https."""
    if reference.startswith("//"):
        return "https:" + reference
    return urljoin(base_url, reference)


class ManifestResolver:
    """
    Resolves manifest URLs through the fetch pipeline.

    Successful (master or media) results are stored in the injected cache
    keyed on the original URL; pass-through and fallback results are not.
    """

    def __init__(
        self,
        fetcher: FetchPipeline,
        cache: Optional[Cache] = None,
        concurrency: int = DEFAULT_RESOLVE_CONCURRENCY,
        timeout_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.cache = cache if cache is not None else Cache()
        self.runner = BatchRunner(concurrency, name="resolve")
        self.timeout_ms = timeout_ms
        self._clock = clock

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def _fallback(self, url: str, started: float, error: str) -> ResolutionResult:
        return ResolutionResult(
            url=url,
            kind=ResolutionKind.FALLBACK,
            original_url=url,
            elapsed_ms=self._elapsed_ms(started),
            error=error,
        )

    async def resolve_stream(self, url: str, headers: Optional[dict] = None) -> ResolutionResult:
        """
        Resolve url to a concrete playable URL.

        Args:
            url: Stream URL as listed in the catalog
            headers: Extra request headers for the manifest fetch

        Returns:
            ResolutionResult; never raises for network or content problems
        """
        started = self._clock()

        if not is_manifest_url(url):
            return ResolutionResult(url=url, kind=ResolutionKind.DIRECT, original_url=url)

        hit = self.cache.get(url)
        if hit is not None:
            logger.debug("[RESOLVE] Cache hit for %s", redact_url(url))
            return replace(hit, cached=True, elapsed_ms=self._elapsed_ms(started))

        try:
            text = await self.fetcher.fetch_text(url, timeout_ms=self.timeout_ms, headers=headers)
        except NetworkError as e:
            logger.warning("[RESOLVE] Falling back to original URL for %s: %s", redact_url(url), e)
            return self._fallback(url, started, str(e))
        except Exception as e:
            logger.error("[RESOLVE] Unexpected fetch failure for %s: %s", redact_url(url), e)
            return self._fallback(url, started, str(e))

        if not looks_like_manifest(text):
            return ResolutionResult(
                url=url,
                kind=ResolutionKind.DIRECT,
                original_url=url,
                elapsed_ms=self._elapsed_ms(started),
                excerpt=text[:PASSTHROUGH_EXCERPT],
            )

        result = self._resolve_text(url, text)
        result.elapsed_ms = self._elapsed_ms(started)
        if result.resolved:
            self.cache.set(url, result)
            logger.info(
                "[RESOLVE] %s manifest resolved %s -> %s",
                result.kind.value, redact_url(url), redact_url(result.url),
            )
        return result

    def _resolve_text(self, url: str, text: str) -> ResolutionResult:
        lines = manifest_lines(text)

        if is_master_manifest(lines):
            variants = parse_variants(lines)
            if not variants:
                return ResolutionResult(
                    url=url,
                    kind=ResolutionKind.FALLBACK,
                    original_url=url,
                    variants_found=0,
                    excerpt=text[:FALLBACK_EXCERPT],
                    error="No variants found in master manifest",
                )
            index, chosen = select_variant(variants)
            return ResolutionResult(
                url=resolve_reference(chosen.url, url),
                kind=ResolutionKind.MASTER,
                original_url=url,
                selected_index=index,
                variants_found=len(variants),
                resolution=chosen.resolution,
                bandwidth=chosen.bandwidth,
                excerpt=text[:RESOLVED_EXCERPT],
            )

        target = find_media_target(lines)
        if target is None:
            return ResolutionResult(
                url=url,
                kind=ResolutionKind.FALLBACK,
                original_url=url,
                excerpt=text[:FALLBACK_EXCERPT],
                error="No segments found in playlist",
            )
        return ResolutionResult(
            url=resolve_reference(target, url),
            kind=ResolutionKind.MEDIA,
            original_url=url,
            excerpt=text[:RESOLVED_EXCERPT],
        )

    async def resolve_many(
        self,
        urls: Iterable[str],
        on_result: Optional[Callable[[ResolutionResult, int, int], object]] = None,
        token: Optional[CancellationToken] = None,
    ) -> BatchOutcome:
        """Resolve urls in bounded slices; results arrive in completion order per slice."""
        return await self.runner.run(urls, self.resolve_stream, on_progress=on_result, token=token)

    def clear_cache(self) -> int:
        return self.cache.clear()


_resolver: Optional[ManifestResolver] = None


def get_resolver() -> ManifestResolver:
    """Get the process-wide resolver, built on the shared fetcher and cache."""
    global _resolver
    if _resolver is None:
        settings = get_settings()
        _resolver = ManifestResolver(
            fetcher=get_fetcher(),
            cache=get_cache(),
            concurrency=settings.resolve_concurrency,
        )
    return _resolver


def set_resolver(resolver: Optional[ManifestResolver]) -> None:
    global _resolver
    _resolver = resolver
