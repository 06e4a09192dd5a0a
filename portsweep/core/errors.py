"""
PortSweep error types
"""

from typing import Optional


class PortSweepError(Exception):
    """Base class for all PortSweep errors"""


class ConfigurationError(PortSweepError):
    """Unusable scan configuration, fatal before scanning starts"""


class InvalidRange(ConfigurationError):
    """A CIDR block failed to parse"""

    def __init__(self, block: str, reason: str = ""):
        self.block = block
        message = f"Invalid range: {block!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidPortSpec(ConfigurationError):
    """A port specification token failed to parse"""

    def __init__(self, token: str, reason: str = ""):
        self.token = token
        message = f"Invalid port specification: {token!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ScanError(PortSweepError):
    """Per-connection failure, recovered inside the executor"""

    def __init__(self, host: str, port: int, reason: str, cause: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.reason = reason
        self.cause = cause
        detail = f": {cause}" if cause is not None and str(cause) else ""
        super().__init__(f"{host}:{port} {reason}{detail}")


class ConnectError(ScanError):
    """Dial failed: refused, timed out, unreachable or other socket error"""


class BannerReadError(ScanError):
    """Banner read timed out or the connection was reset"""
