# tlsscout/scanning/orchestrator.py
"""
Scan lifecycle: config validation, GeoIP setup and fan-out of an address
stream to a fixed pool of probe workers.

Cancellation is cooperative. Workers check the stop signal before taking the
next host, so a probe already dialing or handshaking runs to its own timeout
and ``stop()`` takes effect within one per-host timeout.
"""

import logging
import threading
from collections.abc import Sized
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, Optional

from tlsscout.config import ScanConfig
from tlsscout.events import GeoStatus, ScanCallbacks
from tlsscout.exceptions import GeoDatabaseError, ScannerError
from tlsscout.geo import GeoResolver
from tlsscout.models import Host, ScanResult, ScanSummary
from tlsscout.scanning.prober import probe
from tlsscout.utils import log_exception


class SharedHostStream:
    """Hands out hosts from one iterator to many worker threads."""

    def __init__(self, hosts: Iterable[Host]):
        self._iterator = iter(hosts)
        self._lock = threading.Lock()

    def next(self) -> Optional[Host]:
        with self._lock:
            return next(self._iterator, None)


class _Tally:
    def __init__(self):
        self.lock = threading.Lock()
        self.probed = 0
        self.results = 0
        self.feasible = 0

    def record(self, result: Optional[ScanResult]) -> int:
        with self.lock:
            self.probed += 1
            if result is not None:
                self.results += 1
                if result.feasible:
                    self.feasible += 1
            return self.probed


class ScanSession:
    """One scan run: its config, cancellation signal, GeoIP resolver and callbacks."""

    def __init__(self, config: ScanConfig, callbacks: Optional[ScanCallbacks] = None,
                 resolver=None):
        self.config = config.validate()
        self.callbacks = callbacks or ScanCallbacks()
        self.cancel_event = threading.Event()
        self.summary: Optional[ScanSummary] = None
        self.error: Optional[BaseException] = None
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Opening the resolver may block on the network
        if resolver is None:
            self.callbacks.emit_geo_status(GeoStatus.CHECKING)
            resolver = GeoResolver.open()
        self.resolver = resolver
        self.callbacks.emit_geo_status(self._geo_status())

    def _geo_status(self) -> GeoStatus:
        return GeoStatus.READY if self.resolver.available else GeoStatus.UNAVAILABLE

    def run(self, hosts: Iterable[Host], total: Optional[int] = None) -> ScanSummary:
        """
        Probe every host with config.concurrency workers and block until done or stopped.

        Args:
            hosts: Any iterable of Host, possibly unbounded. It is consumed
                lazily and never buffered.
            total: Host count for progress events; defaults to len(hosts)
                for sized inputs and 0 (unknown) otherwise.

        Returns:
            ScanSummary: Counts for the run, also sent to on_finish.
        """
        if self.summary is not None:
            raise ScannerError("A scan session can only run once")
        if total is None:
            total = len(hosts) if isinstance(hosts, Sized) else 0

        stream = SharedHostStream(hosts)
        tally = _Tally()
        self._running.set()
        try:
            with ThreadPoolExecutor(max_workers=self.config.concurrency,
                                    thread_name_prefix="probe") as executor:
                futures = [
                    executor.submit(self._worker, stream, tally, total)
                    for _ in range(self.config.concurrency)
                ]
                for future in as_completed(futures):
                    # Re-raises errors from the address stream itself
                    future.result()
        finally:
            self.summary = ScanSummary(
                probed=tally.probed,
                results=tally.results,
                feasible=tally.feasible,
                cancelled=self.cancel_event.is_set(),
            )
            self._running.clear()
            self.callbacks.emit_log("info", f"Scan completed. Found: {self.summary.results} results")
            self.callbacks.emit_finish(self.summary)
        return self.summary

    def _worker(self, stream: SharedHostStream, tally: _Tally, total: int):
        while not self.cancel_event.is_set():
            host = stream.next()
            if host is None:
                return
            try:
                result = probe(host, self.config, self.resolver, self.callbacks)
            except Exception as e:
                log_exception(e, host.origin)
                self.callbacks.emit_log("error", f"Unexpected error probing {host.origin}: {e}")
                result = None
            current = tally.record(result)
            self.callbacks.emit_progress(current, total)

    def start(self, hosts: Iterable[Host], total: Optional[int] = None) -> "ScanSession":
        """Run the scan on a background thread and return immediately."""
        if self.is_running() or self._thread is not None:
            raise ScannerError("Scan already started")
        self._running.set()
        self._thread = threading.Thread(
            target=self._run_in_background, args=(hosts, total), name="scan", daemon=True
        )
        self._thread.start()
        return self

    def _run_in_background(self, hosts, total):
        try:
            self.run(hosts, total)
        except Exception as e:
            self.error = e
            log_exception(e)
            self.callbacks.emit_log("error", f"Scan aborted: {e}")
        finally:
            self._running.clear()

    def wait(self, timeout: Optional[float] = None) -> Optional[ScanSummary]:
        """Block until a background scan finishes; returns its summary, or None on timeout."""
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                return None
        return self.summary

    def stop(self):
        """Signal cancellation; in-flight probes finish on their own timeout."""
        if not self.cancel_event.is_set():
            logging.info("Stopping scan...")
        self.cancel_event.set()

    def is_running(self) -> bool:
        return self._running.is_set()

    def refresh_geo(self) -> bool:
        """Re-check the GeoIP database mid-run; failures are reported, not raised."""
        try:
            updated = self.resolver.refresh()
        except GeoDatabaseError as e:
            logging.warning(f"Failed to refresh GeoIP database: {e}")
            self.callbacks.emit_log("warning", f"Failed to refresh GeoIP database: {e}")
            return False
        self.callbacks.emit_geo_status(self._geo_status())
        return updated


def start(config: ScanConfig, callbacks: Optional[ScanCallbacks], hosts: Iterable[Host],
          total: Optional[int] = None, resolver=None) -> ScanSession:
    """Build a session and run it in the background."""
    return ScanSession(config, callbacks, resolver).start(hosts, total)


def stop(session: ScanSession):
    session.stop()


def is_running(session: ScanSession) -> bool:
    return session.is_running()
