"""
Scan data model
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from portsweep.core.errors import ConfigurationError, ConnectError

DEFAULT_DIAL_TIMEOUT = 2.0
DEFAULT_BANNER_TIMEOUT = 2.0
DEFAULT_RATE = 20

# Extra workers on top of the rate so the pool never limits throughput
WORKER_SLACK = 16


@dataclass(frozen=True)
class ScanParams:
    """Per-connection settings carried by every scan unit"""
    dial_timeout: float = DEFAULT_DIAL_TIMEOUT
    banner_timeout: float = DEFAULT_BANNER_TIMEOUT
    trigger: bytes = b""
    report_errors: bool = False

    def __post_init__(self):
        if self.dial_timeout <= 0:
            raise ConfigurationError(f"dial timeout must be positive, got {self.dial_timeout}")
        if self.banner_timeout <= 0:
            raise ConfigurationError(f"banner timeout must be positive, got {self.banner_timeout}")


@dataclass(frozen=True)
class ScanConfiguration:
    """Everything needed to run one scan, built once at startup"""
    include_ranges: Tuple[str, ...]
    ports: Tuple[int, ...]
    exclude_ranges: Tuple[str, ...] = ()
    parallel_per_host: bool = False
    randomize_host_order: bool = True
    params: ScanParams = field(default_factory=ScanParams)
    rate: float = DEFAULT_RATE
    burst: Optional[int] = None
    workers: Optional[int] = None
    seed: Optional[int] = None

    def __post_init__(self):
        # Accept lists from callers but keep the stored value immutable
        object.__setattr__(self, 'include_ranges', tuple(self.include_ranges))
        object.__setattr__(self, 'exclude_ranges', tuple(self.exclude_ranges))
        object.__setattr__(self, 'ports', tuple(self.ports))

        if not self.include_ranges:
            raise ConfigurationError("no target ranges specified")
        if not self.ports:
            raise ConfigurationError("no ports specified")
        if self.rate <= 0:
            raise ConfigurationError(f"rate must be positive, got {self.rate}")
        if self.burst is not None and self.burst < 1:
            raise ConfigurationError(f"burst must be at least 1, got {self.burst}")
        if self.workers is not None and self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")

    @property
    def worker_count(self) -> int:
        if self.workers is not None:
            return self.workers
        return int(self.rate) + WORKER_SLACK


@dataclass(frozen=True)
class ScanRequest:
    """A single host:port connection attempt"""
    host: str
    port: int
    params: ScanParams = field(default_factory=ScanParams)

    @property
    def hostport(self) -> str:
        if ':' in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class MultiPortScanRequest:
    """One unit passed through the rate limiter"""
    host: str
    ports: Tuple[int, ...]
    params: ScanParams = field(default_factory=ScanParams)

    def expand(self) -> List[ScanRequest]:
        return [ScanRequest(host=self.host, port=port, params=self.params) for port in self.ports]


@dataclass
class ScanResult:
    """Outcome of one ScanRequest"""
    host: str
    port: int
    open: bool = False
    error: Optional[ConnectError] = None
    banner: bytes = b""

    @property
    def state(self) -> str:
        if self.open:
            return "open"
        if self.error is not None:
            return "error"
        return "closed"

    def __str__(self):
        return f"{self.host}:{self.port} ok={self.open} err={self.error} banner={self.banner!r}"
