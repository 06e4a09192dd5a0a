"""
Output utilities for PortSweep
Result sinks for logging and console display, plus a JSON report writer
"""

import json
import logging
import time
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from rich.console import Console
from rich.table import Table

from portsweep.core.models import ScanConfiguration, ScanResult

results_logger = logging.getLogger("portsweep.results")

BANNER_PREVIEW_LENGTH = 80


def decode_banner(banner: bytes) -> str:
    """Best-effort text rendering of raw banner bytes"""
    return banner.decode('utf-8', errors='replace').strip()


def result_event(result: ScanResult) -> Optional[Dict[str, object]]:
    """
    Structured event for a result, or None for a closed port with nothing
    to report.
    """
    if result.open:
        event = {'state': 'open', 'host': result.host, 'port': result.port}
        if result.banner:
            event['banner'] = decode_banner(result.banner)
        return event

    if result.error is not None:
        return {
            'state': 'error',
            'host': result.host,
            'port': result.port,
            'error': result.error.reason,
            'detail': str(result.error),
        }

    return None


class LoggingSink:
    """Emits one log record per reportable result"""

    def __init__(self, logger: logging.Logger = results_logger):
        self.logger = logger

    def record(self, result: ScanResult):
        event = result_event(result)
        if event is None:
            return

        if event['state'] == 'open':
            self.logger.info(f"open {result.host} {result.port} {event.get('banner', '')!r}",
                             extra={'scan': event})
        else:
            self.logger.warning(f"error {result.host} {result.port} {event['error']}",
                                extra={'scan': event})


class CollectingSink:
    """Keeps reportable results in memory for the end-of-scan summary"""

    def __init__(self):
        self.results: List[ScanResult] = []

    def record(self, result: ScanResult):
        if result.open or result.error is not None:
            self.results.append(result)

    @property
    def open_results(self) -> List[ScanResult]:
        return [r for r in self.results if r.open]

    def build_table(self, show_errors: bool = False) -> Table:
        """Render collected results as a rich table sorted by host and port"""
        table = Table(title="[bold]Open Ports[/bold]")
        table.add_column("Host", style="cyan", no_wrap=True)
        table.add_column("Port", style="cyan", no_wrap=True)
        table.add_column("State", style="green")
        table.add_column("Banner", style="magenta")

        rows = self.results if show_errors else self.open_results
        for result in sorted(rows, key=lambda r: (r.host, r.port)):
            if result.open:
                banner = decode_banner(result.banner)
                if len(banner) > BANNER_PREVIEW_LENGTH:
                    banner = banner[:BANNER_PREVIEW_LENGTH] + "..."
                table.add_row(result.host, f"{result.port}/tcp", "[green]open[/green]", banner)
            else:
                table.add_row(result.host, f"{result.port}/tcp", "[yellow]error[/yellow]",
                              f"[dim]{result.error.reason}[/dim]")

        return table

    def print_results(self, console: Console, show_errors: bool = False):
        if not self.results:
            console.print("[yellow]No open ports found[/yellow]")
            return
        console.print(self.build_table(show_errors))


class MultiSink:
    """Fans each result out to several sinks"""

    def __init__(self, *sinks):
        self.sinks = sinks

    def record(self, result: ScanResult):
        for sink in self.sinks:
            sink.record(result)


def save_json(results: Iterable[ScanResult], filename: str,
              config: Optional[ScanConfiguration] = None):
    """Save reportable results as a JSON report"""
    output = {
        'scanner': 'portsweep',
        'scan_time': datetime.now().isoformat(),
        'generated': int(time.time()),
        'results': [],
    }

    if config is not None:
        output['targets'] = list(config.include_ranges)
        output['excluded'] = list(config.exclude_ranges)
        output['port_count'] = len(config.ports)
        output['rate'] = config.rate

    for result in results:
        event = result_event(result)
        if event is not None:
            output['results'].append(event)

    with open(filename, 'w') as f:
        json.dump(output, f, indent=2)
