"""
Target enumeration
Expands CIDR blocks into addresses and port specifications into port lists
"""

import ipaddress
import logging
from typing import Iterable, Iterator, List, Sequence, Union

from portsweep.core.errors import InvalidPortSpec, InvalidRange

logger = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

MIN_PORT = 1
MAX_PORT = 65535

# Exclude blocks up to this size are expanded into a lookup set
EXCLUDE_EXPAND_LIMIT = 65536


def _increment(buf: bytearray) -> None:
    """Add one to a big-endian address buffer, carrying into higher bytes"""
    for i in range(len(buf) - 1, -1, -1):
        buf[i] = (buf[i] + 1) & 0xFF
        if buf[i]:
            break


def parse_cidr(block: str) -> Network:
    """Parse a CIDR block, masking off any host bits"""
    try:
        return ipaddress.ip_network(block.strip(), strict=False)
    except (ValueError, TypeError) as e:
        raise InvalidRange(block, str(e)) from e


def iter_network(network: Network) -> Iterator[str]:
    """Yield every address of a network in ascending order"""
    buf = bytearray(network.network_address.packed)
    for _ in range(network.num_addresses):
        yield str(ipaddress.ip_address(bytes(buf)))
        _increment(buf)


def expand_cidrs(blocks: Iterable[str]) -> List[str]:
    """Expand CIDR blocks into addresses, network and broadcast included"""
    # Parse everything first so a bad block never leaves a partial result
    networks = [parse_cidr(block) for block in blocks]

    hosts: List[str] = []
    for network in networks:
        hosts.extend(iter_network(network))
    return hosts


def enumerate_hosts(include: Sequence[str], exclude: Sequence[str]) -> List[str]:
    """
    Expand include blocks and drop every address produced by the exclude
    blocks. Excludes that never appear in the include set are ignored.
    """
    include_networks = [parse_cidr(block) for block in include]
    exclude_networks = [parse_cidr(block) for block in exclude]

    # Small excludes become an address set, large ones are matched by network
    excluded = set()
    large: List[Network] = []
    for network in exclude_networks:
        if network.num_addresses <= EXCLUDE_EXPAND_LIMIT:
            excluded.update(iter_network(network))
        else:
            large.append(network)

    hosts: List[str] = []
    skipped = 0
    for network in include_networks:
        same_version = [net for net in large if net.version == network.version]
        if any(network.subnet_of(net) for net in same_version):
            skipped += network.num_addresses
            continue

        for ip in iter_network(network):
            if ip in excluded or any(ipaddress.ip_address(ip) in net for net in same_version):
                skipped += 1
                continue
            hosts.append(ip)

    logger.debug(f"Enumerated {len(hosts)} hosts ({skipped} excluded)")
    return hosts


def _parse_port(token: str, text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise InvalidPortSpec(token, f"{text!r} is not a number")

    port = int(text)
    if port < MIN_PORT or port > MAX_PORT:
        raise InvalidPortSpec(token, f"port {port} out of range {MIN_PORT}-{MAX_PORT}")
    return port


def enumerate_ports(spec: str) -> List[int]:
    """
    Parse a port specification.

    Tokens are comma separated and are either a single port ("22") or an
    inclusive range ("1-1024"). A range whose end is below its start yields
    no ports. Duplicates are kept in the order given.
    """
    ports: List[int] = []

    for part in spec.split(','):
        part = part.strip()
        if not part:
            continue

        if '-' not in part:
            ports.append(_parse_port(part, part))
            continue

        range_parts = [p.strip() for p in part.split('-') if p.strip()]
        if len(range_parts) != 2:
            raise InvalidPortSpec(part, "expected start-end")

        start = _parse_port(part, range_parts[0])
        end = _parse_port(part, range_parts[1])
        if start > end:
            logger.warning(f"Port range {part} is descending and selects no ports")
        ports.extend(range(start, end + 1))

    return ports


def enumerate_port_specs(specs: Iterable[str]) -> List[int]:
    """Concatenate several port specifications in the order given"""
    ports: List[int] = []
    for spec in specs:
        ports.extend(enumerate_ports(spec))
    return ports
