# tlsscout/main.py

import argparse
import logging
import sys
import threading
from typing import Iterator, Tuple

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from tlsscout.config import (
    DEFAULT_OUTPUT, DEFAULT_PORT, DEFAULT_THREADS, DEFAULT_TIMEOUT, ScanConfig,
)
from tlsscout.events import GeoStatus, logging_callbacks
from tlsscout.exceptions import ScannerError
from tlsscout.export import CsvResultWriter, save_excel
from tlsscout.models import Host, ScanResult
from tlsscout.scanning.orchestrator import ScanSession
from tlsscout.targets import crawl_url, estimate_total, iterate_addr, iterate_file
from tlsscout.utils import setup_logging

GEO_STATUS_MESSAGES = {
    GeoStatus.CHECKING: "Checking GeoIP database...",
    GeoStatus.READY: "GeoIP ready",
    GeoStatus.UNAVAILABLE: "GeoIP unavailable",
}


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Find hosts presenting TLS 1.3, h2 ALPN and a populated certificate"
    )
    parser.add_argument('-addr',
                        help='Specify an IP, IP CIDR or domain to scan')
    parser.add_argument('-in', dest='input',
                        help='Specify a file that contains multiple IPs, IP CIDRs or domains '
                             'to scan, divided by line break')
    parser.add_argument('-url',
                        help='Crawl the domain list from a URL')
    parser.add_argument('-port', type=int, default=DEFAULT_PORT,
                        help=f'Specify a HTTPS port to check (default: {DEFAULT_PORT})')
    parser.add_argument('-thread', type=int, default=DEFAULT_THREADS,
                        help=f'Count of concurrent tasks (default: {DEFAULT_THREADS})')
    parser.add_argument('-timeout', type=int, default=DEFAULT_TIMEOUT,
                        help=f'Timeout for every check in seconds (default: {DEFAULT_TIMEOUT})')
    parser.add_argument('-out', default=DEFAULT_OUTPUT,
                        help=f'Output file to store the result; .xlsx writes a spreadsheet '
                             f'(default: {DEFAULT_OUTPUT})')
    parser.add_argument('-v', dest='verbose', action='store_true',
                        help='Verbose output')
    parser.add_argument('-46', dest='ipv6', action='store_true',
                        help='Enable IPv6 in addition to IPv4')
    parser.add_argument('-log', action='store_true',
                        help='Also write logs to a rotating file under logs/')
    return parser.parse_args(argv)


def build_host_stream(args, config: ScanConfig) -> Tuple[Iterator[Host], int]:
    """
    Pick the address source named on the command line.

    Raises:
        ScannerError: If not exactly one source is given or it cannot be opened.
        OSError: If the input file cannot be read.
    """
    sources = [s for s in (args.addr, args.input, args.url) if s]
    if len(sources) != 1:
        raise ScannerError("Specify exactly one of -addr, -in or -url")

    if args.addr:
        return iterate_addr(args.addr, config.enable_ipv6, config.timeout), estimate_total(args.addr)
    if args.input:
        return iterate_file(args.input, config.enable_ipv6), 0
    return crawl_url(args.url, config.enable_ipv6, config.timeout), 0


class ProgressReporter:
    """Feeds progress and result events from worker threads into a tqdm bar."""

    def __init__(self, pbar):
        self.pbar = pbar
        self.lock = threading.Lock()
        self.found = 0

    def on_progress(self, current: int, total: int):
        with self.lock:
            # Events from different workers may arrive out of order
            if current > self.pbar.n:
                self.pbar.update(current - self.pbar.n)
                self.pbar.set_postfix({"Found": self.found}, refresh=False)

    def on_result(self, result: ScanResult):
        if result.feasible:
            with self.lock:
                self.found += 1


def run_scan(session: ScanSession, hosts, total: int):
    """Run in the background so Ctrl-C can stop the scan cooperatively."""
    session.start(hosts, total)
    try:
        while session.is_running():
            session.wait(0.5)
    except KeyboardInterrupt:
        session.stop()
        logging.info("Interrupted, waiting for in-flight probes to finish...")
    return session.wait()


def main(argv=None) -> int:
    try:
        args = parse_arguments(argv)
    except Exception as e:
        print(f"Error parsing arguments: {e}", file=sys.stderr)
        return 1

    setup_logging(verbose=args.verbose, log_to_file=args.log)

    config = ScanConfig(
        port=args.port,
        concurrency=args.thread,
        timeout=args.timeout,
        enable_ipv6=args.ipv6,
        verbose=args.verbose,
    )
    to_excel = args.out.lower().endswith(".xlsx")
    collected = []
    try:
        config.validate()
        hosts, total = build_host_stream(args, config)
    except ScannerError as e:
        print(f"Error: {e}", file=sys.stderr)
        logging.critical(f"Invalid configuration: {e}")
        return 1
    except OSError as e:
        print(f"Input file {args.input} cannot be opened: {e}", file=sys.stderr)
        logging.critical(f"Cannot open input {args.input}: {e}")
        return 1

    try:
        csv_writer = None if to_excel else CsvResultWriter(args.out)
    except OSError as e:
        print(f"Output file {args.out} cannot be opened: {e}", file=sys.stderr)
        logging.critical(f"Cannot open output {args.out}: {e}")
        return 1

    try:
        with logging_redirect_tqdm(), tqdm(total=total or None, desc="Scanning: ", unit="host") as pbar:
            reporter = ProgressReporter(pbar)

            def on_result(result: ScanResult):
                reporter.on_result(result)
                if csv_writer is not None:
                    csv_writer.write(result)
                else:
                    collected.append(result)

            callbacks = logging_callbacks(
                on_result=on_result,
                on_progress=reporter.on_progress,
                on_geo_status=lambda status: logging.info(GEO_STATUS_MESSAGES[status]),
            )
            session = ScanSession(config, callbacks)
            summary = run_scan(session, hosts, total)
    finally:
        if csv_writer is not None:
            csv_writer.close()

    if session.error is not None:
        return 1

    if to_excel:
        saved = save_excel(collected, args.out)
    else:
        saved = csv_writer.count
    logging.info(
        f"Probed {summary.probed} hosts, {summary.results} handshakes, "
        f"saved {saved} feasible results to {args.out}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
