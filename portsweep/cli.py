#!/usr/bin/env python3
"""
PortSweep CLI - Command Line Interface
Builds a ScanConfiguration from command line options and runs the scan
"""

import asyncio
import logging
import signal
import sys
import time
from datetime import datetime
from typing import List, Optional, Sequence

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from portsweep import __version__
from portsweep.core.errors import ConfigurationError
from portsweep.core.models import DEFAULT_RATE, ScanConfiguration, ScanParams
from portsweep.core.scanner import Scanner, ScanStats
from portsweep.core.targets import enumerate_port_specs
from portsweep.utils.output import CollectingSink, LoggingSink, MultiSink, save_json

console = Console()
logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

TOP_PORTS = [
    80, 23, 443, 21, 22, 25, 3389, 110, 445, 139,
    143, 53, 135, 3306, 8080, 1723, 111, 995, 993, 5900,
    1025, 587, 8888, 199, 1720, 465, 548, 113, 81, 6001,
    10000, 514, 5060, 179, 1026, 2000, 8443, 8000, 32768, 554,
    26, 1433, 49152, 2001, 515, 8008, 49154, 1027, 5666, 646,
    5000, 5631, 631, 49153, 8081, 2049, 88, 79, 5800, 106,
    2121, 1110, 49155, 6000, 513, 990, 5357, 427, 49156, 543,
    544, 5101, 144, 7, 389, 8009, 3128, 444, 9999, 5009,
    7070, 5190, 3000, 5432, 1900, 3986, 13, 1029, 9, 5051,
    6646, 49157, 1028, 873, 1755, 2717, 4899, 9100, 119, 37,
]


def setup_logging(verbose: int):
    """Setup logging based on verbosity level"""
    if verbose == 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    # Open ports are the scan output, report them at any verbosity
    logging.getLogger("portsweep.results").setLevel(logging.INFO)


def parse_time(time_str: str) -> float:
    """Parse time string with units (ms, s, m, h)"""
    time_str = time_str.strip()

    try:
        if time_str.endswith('ms'):
            return float(time_str[:-2]) / 1000
        elif time_str.endswith('s'):
            return float(time_str[:-1])
        elif time_str.endswith('m'):
            return float(time_str[:-1]) * 60
        elif time_str.endswith('h'):
            return float(time_str[:-1]) * 3600
        else:
            # Default to seconds
            return float(time_str)
    except ValueError:
        raise ConfigurationError(f"Invalid duration: {time_str!r}")


def parse_trigger(trigger: Optional[str]) -> bytes:
    r"""Turn a trigger option such as 'HEAD / HTTP/1.0\r\n\r\n' into bytes"""
    if not trigger:
        return b""
    return trigger.encode('utf-8').decode('unicode_escape').encode('latin-1')


def get_top_ports(n: int) -> List[int]:
    """Get top N most common ports"""
    return TOP_PORTS[:n]


def build_configuration(targets: Sequence[str], ports: Sequence[str], options: dict) -> ScanConfiguration:
    """Assemble a ScanConfiguration from parsed command options"""
    port_list = enumerate_port_specs(ports)
    if options.get('top_ports'):
        port_list.extend(get_top_ports(options['top_ports']))

    params = ScanParams(
        dial_timeout=parse_time(options['timeout']),
        banner_timeout=parse_time(options['banner_timeout']),
        trigger=parse_trigger(options.get('trigger')),
        report_errors=options.get('show_errors', False),
    )

    return ScanConfiguration(
        include_ranges=tuple(targets),
        exclude_ranges=tuple(options.get('exclude') or ()),
        ports=tuple(port_list),
        parallel_per_host=options.get('parallel', False),
        randomize_host_order=options.get('randomize', True),
        params=params,
        rate=options.get('rate', DEFAULT_RATE),
        burst=options.get('burst'),
        workers=options.get('workers'),
        seed=options.get('seed'),
    )


def display_banner():
    """Display PortSweep banner"""
    console.print(Panel(f"PortSweep {__version__}\nTCP connect and banner scanner", style="bold blue"))


def display_summary(stats: ScanStats):
    status = "[yellow]Interrupted[/yellow]" if stats.cancelled else "[bold]Scan Complete[/bold]"
    summary = f"""
Scan Summary:
├─ Hosts: {stats.hosts}
├─ Probes: {stats.completed}/{stats.probes} completed
├─ Open: {stats.open}
├─ Errors: {stats.errors}
└─ Time: {stats.elapsed:.2f}s
    """
    console.print(Panel(summary, title=status, style="yellow" if stats.cancelled else "green"))


class ProgressSink:
    """Advances a rich progress task for every finished probe"""

    def __init__(self, progress: Progress, task_id):
        self.progress = progress
        self.task_id = task_id

    def record(self, result):
        self.progress.advance(self.task_id)


async def run_scan(scanner: Scanner, max_duration: Optional[float], show_progress: bool) -> bool:
    """Run the scanner, cancelling it on SIGINT. Returns True if interrupted."""
    interrupted = False

    def on_interrupt():
        nonlocal interrupted
        interrupted = True
        scanner.cancel()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handler support
        pass

    try:
        if not show_progress:
            await scanner.run(max_duration=max_duration)
            return interrupted

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Scanning...", total=None)
            sink = scanner.sink
            scanner.sink = MultiSink(sink, ProgressSink(progress, task))

            # Total is known once the generator has expanded the targets
            async def watch_total():
                while not scanner.stats.probes:
                    await asyncio.sleep(0.05)
                progress.update(task, total=scanner.stats.probes)

            watcher = asyncio.ensure_future(watch_total())
            try:
                await scanner.run(max_duration=max_duration)
            finally:
                watcher.cancel()
                scanner.sink = sink
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    return interrupted


@click.command()
@click.argument('targets', nargs=-1, required=True)
# Port specification
@click.option('-p', '--port', 'ports', multiple=True, help='Ports to scan (e.g. 22, 1-1024, 22,80,443). Repeatable')
@click.option('--top-ports', type=int, help='Also scan the <number> most common ports')
@click.option('-F', '--fast-scan', is_flag=True, help='Fast mode - scan top 100 ports')
# Target specification
@click.option('-x', '--exclude', multiple=True, help='CIDR block to skip. Repeatable')
@click.option('--randomize/--no-randomize', default=True, show_default=True, help='Shuffle host order')
@click.option('--seed', type=int, help='Seed for host order randomization')
# Timing and performance
@click.option('--rate', type=int, default=DEFAULT_RATE, show_default=True, help='Maximum connection attempts per second')
@click.option('--burst', type=int, help='Token bucket burst size (defaults to the rate)')
@click.option('--workers', type=int, help='Number of concurrent workers (defaults to rate + 16)')
@click.option('--timeout', default='2s', show_default=True, help='Connect timeout (ms, s, m, h)')
@click.option('--banner-timeout', default='2s', show_default=True, help='Banner read timeout (ms, s, m, h)')
@click.option('--parallel', is_flag=True, help='Schedule every host:port pair independently')
@click.option('--max-time', help='Stop starting new probes after this long')
# Probing
@click.option('--trigger', help='Bytes to send after connecting, escapes allowed (e.g. "\\r\\n")')
# Output
@click.option('--show-errors', is_flag=True, help='Report connection errors as well as open ports')
@click.option('-o', '--output-json', type=click.Path(dir_okay=False), help='Write results to a JSON file')
@click.option('-v', '--verbose', count=True, help='Increase verbosity level')
@click.option('-q', '--quiet', is_flag=True, help='No banner, progress bar or results table')
@click.version_option(__version__, prog_name='portsweep')
@click.pass_context
def main(ctx, targets, ports, **options):
    """
    PortSweep - rate limited TCP connect and banner scanner

    Examples:
      portsweep -p 22,80,443 192.168.1.0/24
      portsweep -p 1-1024 -x 10.0.0.1/32 --rate 200 10.0.0.0/24
      portsweep -F --parallel --trigger '\\r\\n' 172.16.0.0/28
    """
    setup_logging(options.get('verbose', 0))

    if not options.get('quiet'):
        display_banner()

    if options.get('fast_scan') and not options.get('top_ports'):
        options['top_ports'] = 100

    try:
        config = build_configuration(targets, ports, options)
        max_duration = parse_time(options['max_time']) if options.get('max_time') else None
        collector = CollectingSink()
        scanner = Scanner(config, MultiSink(LoggingSink(), collector))
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        ctx.exit(EXIT_CONFIG_ERROR)

    if not options.get('quiet'):
        console.print(f"[bold]Starting PortSweep[/bold] at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        console.print(f"Target(s): [cyan]{', '.join(config.include_ranges)}[/cyan]")
        if config.exclude_ranges:
            console.print(f"Excluded: [cyan]{', '.join(config.exclude_ranges)}[/cyan]")
        console.print(f"Ports: [cyan]{len(config.ports)}[/cyan]  Rate: [cyan]{config.rate}/s[/cyan]")
        console.print()

    start_time = time.time()
    try:
        interrupted = asyncio.run(run_scan(scanner, max_duration, show_progress=not options.get('quiet')))
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        ctx.exit(EXIT_CONFIG_ERROR)
    except KeyboardInterrupt:
        console.print("\n[bold red]Scan interrupted by user[/bold red]")
        sys.exit(EXIT_INTERRUPTED)

    logger.debug(f"Scan wall time {time.time() - start_time:.2f}s")

    if not options.get('quiet'):
        display_summary(scanner.stats)
        collector.print_results(console, show_errors=options.get('show_errors', False))

    if options.get('output_json'):
        save_json(collector.results, options['output_json'], config)
        console.print(f"JSON output saved to: {options['output_json']}")

    if interrupted:
        console.print("\n[bold red]Scan interrupted by user[/bold red]")
        ctx.exit(EXIT_INTERRUPTED)


if __name__ == '__main__':
    main()
