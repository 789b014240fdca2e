# tlsscout/config.py

import os
from dataclasses import dataclass

from tlsscout.exceptions import ConfigurationError

# Define folder paths
LOG_FOLDER = "logs"
LOG_PATH = os.path.join(LOG_FOLDER, "scan_log.log")
DEFAULT_OUTPUT = "out.csv"

# Scan defaults
DEFAULT_PORT = 443
DEFAULT_THREADS = 2
DEFAULT_TIMEOUT = 10

# GeoIP database
GEO_DB_URL = "https://github.com/P3TERX/GeoLite.mmdb/releases/latest/download/GeoLite2-Country.mmdb"
GEO_DB_PATH = "Country.mmdb"
GEO_CHECK_TIMEOUT = 5  # seconds, HEAD request used for the staleness check
GEO_DOWNLOAD_TIMEOUT = 60
GEO_CHUNK_SIZE = 32 * 1024
GEO_UNKNOWN = "N/A"

# Fixed handshake parameters
ALPN_PROTOCOLS = ["h2", "http/1.1"]
PREFERRED_CURVE = "X25519"
FEASIBLE_TLS_VERSION = "1.3"
FEASIBLE_ALPN = "h2"


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class ScanConfig:
    port: int = DEFAULT_PORT
    concurrency: int = DEFAULT_THREADS
    timeout: int = DEFAULT_TIMEOUT  # seconds, applied to resolve, dial and handshake
    enable_ipv6: bool = False
    verbose: bool = False

    def validate(self):
        """
        Check the scan parameters before a run starts.

        Raises:
            ConfigurationError: If port, concurrency or timeout is out of range.
        """
        if not _is_int(self.port) or not 1 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid port: {self.port!r}")
        if not _is_int(self.concurrency) or self.concurrency < 1:
            raise ConfigurationError(f"Invalid thread count: {self.concurrency!r}")
        if not _is_int(self.timeout) or self.timeout < 1:
            raise ConfigurationError(f"Invalid timeout: {self.timeout!r}")
        return self
