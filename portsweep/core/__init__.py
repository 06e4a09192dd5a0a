from portsweep.core.errors import (
    BannerReadError,
    ConfigurationError,
    ConnectError,
    InvalidPortSpec,
    InvalidRange,
    PortSweepError,
)
from portsweep.core.models import (
    MultiPortScanRequest,
    ScanConfiguration,
    ScanParams,
    ScanRequest,
    ScanResult,
)
from portsweep.core.scanner import Scanner, ScanStats, scan, scan_port
from portsweep.core.targets import enumerate_hosts, enumerate_port_specs, enumerate_ports, expand_cidrs
