"""
Scan request generation
Turns a ScanConfiguration into a stream of rate-limitable scan units
"""

import asyncio
import logging
import random
from typing import Iterator, List, Optional

from portsweep.core.models import MultiPortScanRequest, ScanConfiguration
from portsweep.core.ratelimit import END_OF_STREAM, wait_or_cancel
from portsweep.core.targets import enumerate_hosts

logger = logging.getLogger(__name__)

# Matches the buffering between generator and rate limiter
GENERATOR_QUEUE_SIZE = 1000


class RequestGenerator:
    """Single-pass producer of MultiPortScanRequest units"""

    def __init__(self, config: ScanConfiguration, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random(config.seed)
        self.hosts = self._prepare_hosts()
        self._consumed = False

    def _prepare_hosts(self) -> List[str]:
        # Raises ConfigurationError before any scanning happens
        hosts = enumerate_hosts(self.config.include_ranges, self.config.exclude_ranges)
        if self.config.randomize_host_order:
            self.rng.shuffle(hosts)
        return hosts

    @property
    def unit_count(self) -> int:
        if self.config.parallel_per_host:
            return len(self.hosts) * len(self.config.ports)
        return len(self.hosts)

    @property
    def probe_count(self) -> int:
        return len(self.hosts) * len(self.config.ports)

    def __iter__(self) -> Iterator[MultiPortScanRequest]:
        if self._consumed:
            raise RuntimeError("RequestGenerator can only be iterated once")
        self._consumed = True
        return self._units()

    def _units(self) -> Iterator[MultiPortScanRequest]:
        params = self.config.params
        ports = self.config.ports

        for host in self.hosts:
            if self.config.parallel_per_host:
                for port in ports:
                    yield MultiPortScanRequest(host=host, ports=(port,), params=params)
            else:
                yield MultiPortScanRequest(host=host, ports=ports, params=params)

    async def produce(self, queue: asyncio.Queue, cancel: Optional[asyncio.Event] = None) -> int:
        """Feed every unit into ``queue`` and close it. Returns units produced."""
        produced = 0
        for unit in self:
            put, _ = await wait_or_cancel(queue.put(unit), cancel)
            if not put:
                logger.debug(f"Generator cancelled after {produced} units")
                return produced
            produced += 1

        await queue.put(END_OF_STREAM)
        logger.debug(f"Generator finished, {produced} units")
        return produced
