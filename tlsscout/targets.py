# tlsscout/targets.py
"""
Address streams: turn a single address, a file or a crawled page into a lazy
sequence of Host values.
"""

import ipaddress
import logging
import re
from typing import Iterable, Iterator, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from tlsscout.config import DEFAULT_TIMEOUT
from tlsscout.exceptions import ConfigurationError, HostResolutionError, ScannerError
from tlsscout.models import Host
from tlsscout.scanning.prober import resolve_host

DOMAIN_REGEX = re.compile(
    r'^(?:[a-zA-Z0-9]'
    r'(?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+'
    r'[a-zA-Z]{2,63}$'
)
URL_IN_TEXT = re.compile(r'https?://[^\s/"\'<>]+')


def is_valid_domain(domain: str) -> bool:
    """Simple regex validation for domain names."""
    return DOMAIN_REGEX.match(domain) is not None


def _ip_allowed(ip, enable_ipv6: bool) -> bool:
    return ip.version == 4 or enable_ipv6


def parse_entry(entry: str, enable_ipv6: bool = False) -> Iterator[Host]:
    """Expand one IP, CIDR or domain entry; anything else is skipped with a debug log."""
    entry = entry.strip()
    if not entry or entry.startswith("#"):
        return

    if "/" in entry:
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            logging.debug(f"Not a valid IP CIDR: {entry}")
            return
        if not _ip_allowed(network, enable_ipv6):
            logging.debug(f"Skipping IPv6 range {entry}")
            return
        for ip in network:
            yield Host.from_ip(str(ip))
        return

    try:
        ip = ipaddress.ip_address(entry)
    except ValueError:
        ip = None
    if ip is not None:
        if _ip_allowed(ip, enable_ipv6):
            yield Host.from_ip(str(ip))
        else:
            logging.debug(f"Skipping IPv6 address {entry}")
        return

    if is_valid_domain(entry):
        yield Host.from_domain(entry)
    else:
        logging.debug(f"Not a valid IP, IP CIDR or domain: {entry}")


def iterate_lines(lines: Iterable[str], enable_ipv6: bool = False) -> Iterator[Host]:
    for line in lines:
        yield from parse_entry(line, enable_ipv6)


def iterate_file(path: str, enable_ipv6: bool = False) -> Iterator[Host]:
    """Stream hosts from a newline-separated file; the file is opened immediately so errors surface early."""
    handle = open(path, "r", encoding="utf-8")
    return _iterate_and_close(handle, enable_ipv6)


def _iterate_and_close(handle, enable_ipv6: bool) -> Iterator[Host]:
    with handle:
        yield from iterate_lines(handle, enable_ipv6)


def walk_outward(center) -> Iterator[Host]:
    """
    Yield the neighbours of an address alternately below and above it, moving
    one step further out each time, until both ends of the address space are hit.
    """
    address_type = type(center)
    max_value = 2 ** center.max_prefixlen - 1
    low = high = int(center)
    step_down = True
    while low > 0 or high < max_value:
        if step_down and low > 0:
            low -= 1
            yield Host.from_ip(str(address_type(low)))
        elif not step_down and high < max_value:
            high += 1
            yield Host.from_ip(str(address_type(high)))
        step_down = not step_down


def iterate_addr(addr: str, enable_ipv6: bool = False, timeout: float = DEFAULT_TIMEOUT) -> Iterator[Host]:
    """
    Hosts for a single -addr value.

    A CIDR yields every address in the range. A single IP or domain starts
    infinity mode: the target itself, then the addresses around it, without end.
    """
    addr = addr.strip()
    if not addr:
        raise ConfigurationError("Empty address")

    if "/" in addr:
        try:
            network = ipaddress.ip_network(addr, strict=False)
        except ValueError as e:
            raise ConfigurationError(f"Invalid CIDR: {addr}") from e
        if not _ip_allowed(network, enable_ipv6):
            raise ConfigurationError(f"IPv6 range {addr} requires IPv6 to be enabled")
        return parse_entry(addr, enable_ipv6)

    try:
        center = ipaddress.ip_address(addr)
        first = Host.from_ip(addr)
    except ValueError:
        if not is_valid_domain(addr):
            raise ConfigurationError(f"Not a valid IP, IP CIDR or domain: {addr}")
        first = Host.from_domain(addr)
        try:
            center = ipaddress.ip_address(resolve_host(addr, enable_ipv6, timeout))
        except HostResolutionError as e:
            logging.warning(f"Cannot resolve {addr}, scanning the domain only: {e}")
            return iter([first])
        first = Host(origin=addr, kind=first.kind, address=str(center))

    if not _ip_allowed(center, enable_ipv6):
        raise ConfigurationError(f"IPv6 address {addr} requires IPv6 to be enabled")
    return _infinity(first, center)


def _infinity(first: Host, center) -> Iterator[Host]:
    logging.info(f"Enable infinity mode around {center}")
    yield first
    yield from walk_outward(center)


def estimate_total(addr: str) -> int:
    """Number of hosts for a CIDR value, 0 when the stream is unbounded or unknown."""
    if "/" not in addr:
        return 0
    try:
        return ipaddress.ip_network(addr.strip(), strict=False).num_addresses
    except ValueError:
        return 0


def extract_hostnames(html: str, base_url: str = "") -> list:
    """Collect unique hostnames from links and plain-text URLs on a page, in page order."""
    soup = BeautifulSoup(html, "html.parser")
    urls = [urljoin(base_url, tag.get("href")) for tag in soup.find_all(href=True)]
    urls += URL_IN_TEXT.findall(soup.get_text(" "))

    hostnames = []
    seen = set()
    for url in urls:
        hostname: Optional[str] = urlparse(url).hostname
        if hostname and hostname not in seen:
            seen.add(hostname)
            hostnames.append(hostname)
    return hostnames


def crawl_url(url: str, enable_ipv6: bool = False, timeout: float = DEFAULT_TIMEOUT) -> Iterator[Host]:
    """
    Fetch a page and stream the hosts it links to.

    Raises:
        ScannerError: If the page cannot be fetched.
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise ScannerError(f"Failed to crawl {url}: {e}") from e

    hostnames = extract_hostnames(response.text, url)
    logging.info(f"Crawled {len(hostnames)} hosts from {url}")
    return iterate_lines(hostnames, enable_ipv6)
