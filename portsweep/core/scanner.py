"""
PortSweep Core Scanner Engine
Rate-limited asyncio worker pool performing TCP connect and banner grabs
"""

import asyncio
import errno
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from portsweep.core.errors import BannerReadError, ConnectError
from portsweep.core.generator import GENERATOR_QUEUE_SIZE, RequestGenerator
from portsweep.core.models import MultiPortScanRequest, ScanConfiguration, ScanRequest, ScanResult
from portsweep.core.ratelimit import END_OF_STREAM, TokenBucket, rate_limit_stage, wait_or_cancel

logger = logging.getLogger(__name__)

BANNER_BUFFER_SIZE = 4096

# Buffering between rate limiter and workers
LIMITED_QUEUE_SIZE = 2000

_UNREACHABLE_ERRNOS = {
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.EHOSTDOWN,
    errno.ENETDOWN,
}

ScanFunc = Callable[[ScanRequest], Awaitable[ScanResult]]


def classify_connect_error(exc: BaseException) -> str:
    """Map a dial exception to refused, timeout, unreachable or error"""
    # TimeoutError is an OSError subclass on current Pythons, check it first
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, ConnectionRefusedError):
        return "refused"
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return "unreachable"
    return "error"


async def _read_banner(request: ScanRequest, reader: asyncio.StreamReader,
                       writer: asyncio.StreamWriter) -> bytes:
    params = request.params

    async def exchange():
        if params.trigger:
            writer.write(params.trigger)
            await writer.drain()
        return await reader.read(BANNER_BUFFER_SIZE)

    # One deadline covers both the trigger write and the read
    try:
        return await asyncio.wait_for(exchange(), timeout=params.banner_timeout)

    except (OSError, asyncio.TimeoutError) as e:
        reason = "timeout" if isinstance(e, (asyncio.TimeoutError, TimeoutError)) else "reset"
        logger.debug(str(BannerReadError(request.host, request.port, reason, e)))
        return b""


async def scan_port(request: ScanRequest) -> ScanResult:
    """
    Connect to ``request.host:request.port`` and read whatever the service
    sends first.

    A failed dial gives ``open=False`` (with the error attached only when
    ``report_errors`` is set). A successful dial is always ``open=True``, an
    empty banner just means the service stayed silent.
    """
    params = request.params
    result = ScanResult(host=request.host, port=request.port)
    logger.debug(f"Scanning {request.hostport}")

    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(request.host, request.port),
            timeout=params.dial_timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        error = ConnectError(request.host, request.port, classify_connect_error(e), e)
        logger.debug(str(error))
        if params.report_errors:
            result.error = error
        return result

    result.open = True
    try:
        result.banner = await _read_banner(request, reader, writer)
    finally:
        if writer.transport.get_write_buffer_size():
            # A peer that never reads would hold a graceful close open
            writer.transport.abort()
        else:
            writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Close failed for {request.hostport}: {e}")

    return result


@dataclass
class ScanStats:
    """Counters for one scan run"""
    hosts: int = 0
    units: int = 0
    probes: int = 0
    started: int = 0
    completed: int = 0
    open: int = 0
    errors: int = 0
    cancelled: bool = False
    elapsed: float = 0.0


class Scanner:
    """
    Runs a ScanConfiguration through the pipeline:
    generator -> rate limiter -> worker pool -> sink.

    ``sink`` is anything with a ``record(result)`` method. Cancellation is
    cooperative: ``cancel()`` stops new work at the next checkpoint but never
    interrupts a dial or read already in progress.
    """

    def __init__(self, config: ScanConfiguration, sink,
                 scan_func: ScanFunc = scan_port,
                 limiter: Optional[TokenBucket] = None,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.sink = sink
        self.scan_func = scan_func
        self.limiter = limiter or TokenBucket(config.rate, config.burst)
        self.rng = rng
        self.cancel_event = asyncio.Event()
        self.stats = ScanStats()

    def cancel(self):
        """Request a cooperative shutdown"""
        if not self.cancel_event.is_set():
            logger.info("Scan cancellation requested")
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    async def run(self, max_duration: Optional[float] = None) -> ScanStats:
        """Scan every unit and return once all workers have exited"""
        start_time = time.monotonic()

        # Enumeration errors surface here, before any connection is made
        generator = RequestGenerator(self.config, self.rng)
        self.stats.hosts = len(generator.hosts)
        self.stats.units = generator.unit_count
        self.stats.probes = generator.probe_count

        worker_count = self.config.worker_count
        logger.info(f"Starting scan of {self.stats.hosts} hosts on {len(self.config.ports)} ports "
                    f"({self.stats.probes} probes, {worker_count} workers, {self.config.rate}/s)")

        timer = None
        if max_duration is not None:
            timer = asyncio.get_running_loop().call_later(max_duration, self.cancel)

        units: asyncio.Queue = asyncio.Queue(GENERATOR_QUEUE_SIZE)
        limited: asyncio.Queue = asyncio.Queue(LIMITED_QUEUE_SIZE)

        stages = [
            asyncio.ensure_future(generator.produce(units, self.cancel_event)),
            asyncio.ensure_future(rate_limit_stage(units, limited, self.limiter, self.cancel_event)),
        ]
        workers = [asyncio.ensure_future(self._worker(i, limited)) for i in range(worker_count)]

        try:
            await asyncio.gather(*workers)
        finally:
            if timer is not None:
                timer.cancel()
            pending = [task for task in stages + workers if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self.stats.cancelled = self.cancelled
        self.stats.elapsed = time.monotonic() - start_time
        logger.info(f"Scan {'cancelled' if self.cancelled else 'finished'}: "
                    f"{self.stats.completed}/{self.stats.probes} probes, {self.stats.open} open "
                    f"in {self.stats.elapsed:.2f}s")
        return self.stats

    async def _worker(self, worker_id: int, queue: asyncio.Queue):
        while not self.cancelled:
            received, unit = await wait_or_cancel(queue.get(), self.cancel_event)
            if not received:
                break
            if unit is END_OF_STREAM:
                # Leave the marker for the next idle worker
                queue.put_nowait(END_OF_STREAM)
                break

            if not await self._scan_unit(worker_id, unit):
                break

        logger.debug(f"Worker {worker_id} exiting")

    async def _scan_unit(self, worker_id: int, unit: MultiPortScanRequest) -> bool:
        """Scan each port of a unit in order. Returns False if cancelled part way."""
        for request in unit.expand():
            if self.cancelled:
                logger.debug(f"Worker {worker_id} abandoning remaining ports on {unit.host}")
                return False

            self.stats.started += 1
            result = await self.scan_func(request)
            self._record(result)

        return True

    def _record(self, result: ScanResult):
        self.stats.completed += 1
        if result.open:
            self.stats.open += 1
        elif result.error is not None:
            self.stats.errors += 1
        self.sink.record(result)


async def scan(config: ScanConfiguration, sink, max_duration: Optional[float] = None) -> ScanStats:
    """Convenience wrapper running a single Scanner"""
    scanner = Scanner(config, sink)
    return await scanner.run(max_duration=max_duration)

