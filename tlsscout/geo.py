# tlsscout/geo.py

import logging
import os
import threading
from typing import Callable, Optional

import geoip2.database
import requests

from tlsscout.config import (
    GEO_CHECK_TIMEOUT, GEO_CHUNK_SIZE, GEO_DB_PATH, GEO_DB_URL,
    GEO_DOWNLOAD_TIMEOUT, GEO_UNKNOWN,
)
from tlsscout.exceptions import GeoDatabaseError

MIB = 1024 * 1024


class GeoResolver:
    """
    Country lookups backed by a local GeoLite2 Country database.

    The reader handle is guarded by a single lock for both lookups and
    replacement, so a refresh never exposes a half-opened database.
    """

    def __init__(self, path: str = GEO_DB_PATH, url: str = GEO_DB_URL,
                 reader_factory: Optional[Callable] = None):
        self.path = path
        self.temp_path = path + ".tmp"
        self.url = url
        self.reader_factory = reader_factory or geoip2.database.Reader
        self.reader = None
        self.lock = threading.Lock()
        # Serializes download and swap; lookups only take self.lock
        self.refresh_lock = threading.Lock()

    @classmethod
    def open(cls, path: str = GEO_DB_PATH, url: str = GEO_DB_URL,
             reader_factory: Optional[Callable] = None) -> "GeoResolver":
        """
        Bring the local database up to date and open it.

        Network and file errors are logged and leave the resolver disabled
        (or on the previous local copy); they are never raised.
        """
        resolver = cls(path, url, reader_factory)
        try:
            update = resolver.needs_update()
        except GeoDatabaseError as e:
            logging.warning(f"Failed to check GeoIP database updates: {e}")
            update = False

        if update:
            try:
                resolver.download()
            except GeoDatabaseError as e:
                logging.warning(f"Failed to download GeoIP database: {e}")

        try:
            resolver.reader = resolver._open_reader()
        except GeoDatabaseError as e:
            logging.warning(f"Cannot open {path}: {e}")
            return resolver
        logging.info("Enabled GeoIP")
        return resolver

    @property
    def available(self) -> bool:
        with self.lock:
            return self.reader is not None

    def needs_update(self) -> bool:
        """Compare the local file size with the remote Content-Length."""
        try:
            local_size = os.path.getsize(self.path)
        except FileNotFoundError:
            return True
        except OSError as e:
            raise GeoDatabaseError(f"Cannot stat {self.path}: {e}") from e

        try:
            response = requests.head(self.url, allow_redirects=True, timeout=GEO_CHECK_TIMEOUT)
        except requests.exceptions.RequestException as e:
            # Keep using the local copy when the remote cannot be reached
            logging.debug(f"Failed to check GeoIP database updates: {e}")
            return False

        if response.status_code != 200:
            return False
        try:
            remote_size = int(response.headers.get("Content-Length", 0))
        except ValueError:
            return False
        if remote_size <= 0:
            return False

        if local_size != remote_size:
            logging.info(
                f"GeoIP database update available: local_size={local_size} remote_size={remote_size}"
            )
            return True
        return False

    def download(self):
        """
        Stream the remote database to a temporary file, then move it over the local path.

        Raises:
            GeoDatabaseError: On transfer, status or write failure. The local
                database is left untouched and the temporary file removed.
        """
        logging.info(f"Downloading GeoIP database from {self.url}")
        try:
            response = requests.get(self.url, stream=True, timeout=GEO_DOWNLOAD_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise GeoDatabaseError(f"Failed to download: {e}") from e

        try:
            if response.status_code != 200:
                raise GeoDatabaseError(f"Bad status code: {response.status_code}")

            downloaded = 0
            try:
                with open(self.temp_path, "wb") as tmp_file:
                    for chunk in response.iter_content(chunk_size=GEO_CHUNK_SIZE):
                        if not chunk:
                            continue
                        tmp_file.write(chunk)
                        reported_mib = downloaded // MIB
                        downloaded += len(chunk)
                        if downloaded // MIB > reported_mib:
                            logging.debug(f"Download progress: {downloaded // MIB} MiB")
                os.replace(self.temp_path, self.path)
            except (OSError, requests.exceptions.RequestException) as e:
                self._remove_temp()
                raise GeoDatabaseError(f"Failed to write: {e}") from e
        finally:
            response.close()

        logging.info(f"GeoIP database downloaded successfully: {downloaded} bytes")

    def refresh(self) -> bool:
        """
        Re-check the remote database and swap in a fresh reader if it changed.

        Returns:
            bool: True if a new database was installed.

        Raises:
            GeoDatabaseError: If the download or reopen fails; the current
                reader stays in place.
        """
        with self.refresh_lock:
            if not self.needs_update():
                return False
            self.download()

            with self.lock:
                reader = self._open_reader()
                old_reader, self.reader = self.reader, reader
                if old_reader is not None:
                    old_reader.close()
        logging.info("GeoIP database updated and reloaded")
        return True

    def lookup(self, ip: str) -> str:
        """Return the ISO country code for ip, or "N/A"; never raises."""
        with self.lock:
            if self.reader is None:
                return GEO_UNKNOWN
            try:
                response = self.reader.country(ip)
            except Exception as e:
                logging.debug(f"Error reading geo for {ip}: {e}")
                return GEO_UNKNOWN
        return response.country.iso_code or GEO_UNKNOWN

    def close(self):
        with self.lock:
            if self.reader is not None:
                self.reader.close()
                self.reader = None

    def _open_reader(self):
        if not os.path.exists(self.path):
            raise GeoDatabaseError(f"{self.path} does not exist")
        try:
            return self.reader_factory(self.path)
        except (OSError, ValueError, RuntimeError) as e:
            raise GeoDatabaseError(str(e)) from e

    def _remove_temp(self):
        try:
            os.remove(self.temp_path)
        except FileNotFoundError:
            pass
