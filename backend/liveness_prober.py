"""
Stream liveness prober.

A probe is a HEAD request under a hard timeout. Only a timeout reports the
stream dead. Every other outcome (an error status, a refused connection, a
redirect loop) reports it alive: many playable streams reject diagnostic
requests while still serving players, so only silence counts as dead.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

import httpx

from batch_runner import BatchOutcome, BatchRunner, CancellationToken
from channel_record import ChannelRecord
from config import get_settings
from log_utils import redact_url

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_MS = 8000
DEFAULT_PROBE_CONCURRENCY = 10


@dataclass
class LivenessResult:
    channel_id: Optional[str]
    url: str
    alive: bool
    response_time_ms: int
    checked_at: datetime = field(default_factory=datetime.utcnow)
    status_code: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "url": self.url,
            "alive": self.alive,
            "status": "alive" if self.alive else "dead",
            "response_time_ms": self.response_time_ms,
            "checked_at": self.checked_at.isoformat() + "Z",
            "status_code": self.status_code,
            "error": self.error,
        }


@dataclass
class HealthCheckRun:
    """Progress of one background health check over many channels."""
    id: str
    total: int
    token: CancellationToken = field(default_factory=CancellationToken)
    checked: int = 0
    alive_count: int = 0
    dead_count: int = 0
    status: str = "running"  # running, completed, cancelled, failed
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    results: list = field(default_factory=list)

    def record(self, result: LivenessResult) -> None:
        self.checked += 1
        self.results.append(result)
        if result.alive:
            self.alive_count += 1
        else:
            self.dead_count += 1

    @property
    def in_progress(self) -> bool:
        return self.status == "running"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "in_progress": self.in_progress,
            "status": self.status,
            "total": self.total,
            "checked": self.checked,
            "alive_count": self.alive_count,
            "dead_count": self.dead_count,
            "percentage": round(self.checked / self.total * 100, 1) if self.total > 0 else 0,
            "started_at": self.started_at.isoformat() + "Z",
            "finished_at": self.finished_at.isoformat() + "Z" if self.finished_at else None,
        }


class LivenessProber:
    """Concurrent HEAD-probe checker with one tracked background run at a time."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
        concurrency: int = DEFAULT_PROBE_CONCURRENCY,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout_ms = timeout_ms
        self.runner = BatchRunner(concurrency, name="probe")
        self._run: Optional[HealthCheckRun] = None

    @classmethod
    def from_settings(cls, client: Optional[httpx.AsyncClient] = None) -> "LivenessProber":
        settings = get_settings()
        return cls(
            client=client,
            timeout_ms=settings.probe_timeout_ms,
            concurrency=settings.probe_concurrency,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def check_url(
        self,
        url: str,
        channel_id: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> LivenessResult:
        """Probe one URL. Never raises."""
        timeout_s = self.timeout_ms / 1000.0
        started = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            response = await asyncio.wait_for(
                self._get_client().head(url, headers=headers or {}, timeout=timeout_s, follow_redirects=True),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.debug("[PROBE] Timed out after %sms: %s", self.timeout_ms, redact_url(url))
            return LivenessResult(
                channel_id=channel_id, url=url, alive=False,
                response_time_ms=elapsed(), error=f"Timed out after {self.timeout_ms}ms",
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Unreachable-looking but answered in time: counted alive
            logger.debug("[PROBE] Probe error treated as alive for %s: %s", redact_url(url), e)
            return LivenessResult(
                channel_id=channel_id, url=url, alive=True,
                response_time_ms=elapsed(), error=str(e),
            )

        return LivenessResult(
            channel_id=channel_id, url=url, alive=True,
            response_time_ms=elapsed(), status_code=response.status_code,
        )

    async def check_stream(self, record: ChannelRecord) -> LivenessResult:
        """Probe a channel, sending its own transport headers."""
        return await self.check_url(
            record.url,
            channel_id=record.id,
            headers=record.headers.as_request_headers(),
        )

    async def check_many(
        self,
        records: Iterable[ChannelRecord],
        on_result: Optional[Callable[[LivenessResult, int, int], object]] = None,
        token: Optional[CancellationToken] = None,
    ) -> BatchOutcome:
        """Probe every enabled record in bounded slices."""
        enabled = [r for r in records if r.enabled]
        return await self.runner.run(enabled, self.check_stream, on_progress=on_result, token=token)

    # Background run tracking

    def is_running(self) -> bool:
        return self._run is not None and self._run.in_progress

    def start_run(self, records: list[ChannelRecord]) -> HealthCheckRun:
        """Register a new run; call run_health_check() with it to execute."""
        if self.is_running():
            raise RuntimeError("A health check is already running")
        total = sum(1 for r in records if r.enabled)
        self._run = HealthCheckRun(id=uuid.uuid4().hex[:12], total=total)
        return self._run

    async def run_health_check(
        self,
        run: HealthCheckRun,
        records: list[ChannelRecord],
        on_result: Optional[Callable[[LivenessResult], object]] = None,
    ) -> HealthCheckRun:
        """
        Execute a registered run to completion or cancellation.

        on_result is called for every result as it arrives (used to persist
        statuses incrementally).
        """
        logger.info("[PROBE] Health check %s started for %s channel(s)", run.id, run.total)

        async def _progress(result: LivenessResult, index: int, total: int):
            run.record(result)
            if on_result is not None:
                reported = on_result(result)
                if asyncio.iscoroutine(reported):
                    await reported

        try:
            outcome = await self.check_many(records, on_result=_progress, token=run.token)
        except Exception:
            run.status = "failed"
            run.finished_at = datetime.utcnow()
            logger.exception("[PROBE] Health check %s failed", run.id)
            raise

        run.status = "cancelled" if outcome.cancelled else "completed"
        run.finished_at = datetime.utcnow()
        logger.info(
            "[PROBE] Health check %s %s: %s alive, %s dead of %s",
            run.id, run.status, run.alive_count, run.dead_count, run.total,
        )
        return run

    def cancel_health_check(self) -> dict:
        """Request cancellation of the current run; slices already dispatched still finish."""
        if not self.is_running():
            return {"status": "no_check_running", "message": "No health check is currently running"}
        logger.info("[PROBE] Cancelling health check %s", self._run.id)
        self._run.token.cancel()
        return {"status": "cancelling", "message": "Health check cancellation requested"}

    def get_progress(self) -> dict:
        if self._run is None:
            return {"in_progress": False, "status": "idle", "total": 0, "checked": 0,
                    "alive_count": 0, "dead_count": 0, "percentage": 0}
        return self._run.to_dict()


_prober: Optional[LivenessProber] = None


def get_prober() -> LivenessProber:
    """Get the process-wide prober, creating it from settings on first use."""
    global _prober
    if _prober is None:
        _prober = LivenessProber.from_settings()
    return _prober


def set_prober(prober: Optional[LivenessProber]) -> None:
    global _prober
    _prober = prober
