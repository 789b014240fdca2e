# tlsscout/scanning/prober.py

import ipaddress
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Optional, Tuple

import dns.exception
import dns.resolver
from cryptography import x509
from cryptography.x509.oid import NameOID

from tlsscout.config import ALPN_PROTOCOLS, PREFERRED_CURVE, ScanConfig
from tlsscout.events import ScanCallbacks
from tlsscout.exceptions import HostResolutionError
from tlsscout.models import Host, HostKind, ScanResult, classify

# ssl.SSLSocket.version() names mapped to the short form carried in results
TLS_VERSION_NAMES = {
    "SSLv3": "SSL 3.0",
    "TLSv1": "1.0",
    "TLSv1.1": "1.1",
    "TLSv1.2": "1.2",
    "TLSv1.3": "1.3",
}


@dataclass(frozen=True)
class HandshakeOutcome:
    tls_version: str
    alpn: str
    leaf_der: Optional[bytes]


def resolve_host(origin: str, enable_ipv6: bool, timeout: float) -> str:
    """
    Resolve a domain to a single address, preferring IPv4.

    Raises:
        HostResolutionError: If no usable A (or AAAA, with IPv6 enabled) record exists.
    """
    rdtypes = ["A", "AAAA"] if enable_ipv6 else ["A"]
    errors = []
    for rdtype in rdtypes:
        try:
            answers = dns.resolver.resolve(origin, rdtype, lifetime=timeout)
        except dns.exception.DNSException as e:
            errors.append(f"{rdtype}: {e}")
            continue
        for rdata in answers:
            return rdata.address
    raise HostResolutionError(f"No IP found for {origin} ({'; '.join(errors) or 'empty answer'})")


def format_target(address: str, port: int) -> str:
    if ipaddress.ip_address(address).version == 6:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def dial(address: str, port: int, timeout: float) -> socket.socket:
    """Open the TCP connection; the timeout also bounds every later read and write."""
    return socket.create_connection((address, port), timeout=timeout)


def make_tls_context() -> ssl.SSLContext:
    """Client context with verification off, h2/http1.1 ALPN and X25519 key exchange."""
    ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    # Presented configuration is measured, not trust
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    ssl_context.set_alpn_protocols(ALPN_PROTOCOLS)
    try:
        ssl_context.set_ecdh_curve(PREFERRED_CURVE)
    except (ValueError, ssl.SSLError) as e:
        # Older OpenSSL builds only accept named EC curves here
        logging.debug(f"Cannot prefer {PREFERRED_CURVE}, using default groups: {e}")
    return ssl_context


def handshake(sock: socket.socket, server_name: Optional[str]) -> HandshakeOutcome:
    """Run the TLS handshake over an open connection and capture the negotiated parameters."""
    ssl_context = make_tls_context()
    with ssl_context.wrap_socket(sock, server_hostname=server_name) as ssock:
        version = ssock.version() or ""
        return HandshakeOutcome(
            tls_version=TLS_VERSION_NAMES.get(version, version),
            alpn=ssock.selected_alpn_protocol() or "",
            leaf_der=ssock.getpeercert(binary_form=True),
        )


def parse_leaf_certificate(der: bytes) -> Tuple[str, str]:
    """
    Extract the subject common name and the issuer organizations of a DER certificate.

    Returns:
        tuple: (cert_domain, cert_issuer) where cert_issuer joins the issuer
            organization fields with " | ". Either may be empty.
    """
    cert = x509.load_der_x509_certificate(der)
    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    cert_domain = str(common_names[0].value) if common_names else ''
    organizations = cert.issuer.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
    cert_issuer = " | ".join(str(attr.value) for attr in organizations)
    return cert_domain, cert_issuer


def probe(host: Host, config: ScanConfig, resolver, callbacks: ScanCallbacks) -> Optional[ScanResult]:
    """
    Probe one host: resolve, dial, handshake, classify.

    Every failure is expected at scale and ends the probe quietly with a
    debug log event; nothing is retried. Returns the emitted ScanResult, or
    None when the host did not complete a handshake with a certificate.
    """
    address = host.address
    if address is None:
        try:
            address = resolve_host(host.origin, config.enable_ipv6, config.timeout)
        except HostResolutionError as e:
            callbacks.emit_log("debug", f"Failed to get IP from {host.origin}: {e}")
            return None

    target = format_target(address, config.port)
    try:
        sock = dial(address, config.port, config.timeout)
    except OSError as e:
        if config.verbose:
            callbacks.emit_log("debug", f"Cannot dial {target}: {e}")
        return None

    server_name = host.origin if host.kind is HostKind.DOMAIN else None
    with sock:
        try:
            outcome = handshake(sock, server_name)
        except OSError as e:
            if config.verbose:
                callbacks.emit_log("debug", f"TLS handshake failed for {target}: {e}")
            return None

    if not outcome.leaf_der:
        if config.verbose:
            callbacks.emit_log("debug", f"No peer certificates for {target}")
        return None

    try:
        cert_domain, cert_issuer = parse_leaf_certificate(outcome.leaf_der)
    except ValueError as e:
        if config.verbose:
            callbacks.emit_log("debug", f"Cannot parse certificate from {target}: {e}")
        return None

    geo_code = resolver.lookup(address)
    feasible = classify(outcome.tls_version, outcome.alpn, cert_domain, cert_issuer)
    result = ScanResult(
        ip=address,
        origin=host.origin,
        cert_domain=cert_domain,
        cert_issuer=cert_issuer,
        geo_code=geo_code,
        feasible=feasible,
        tls_version=outcome.tls_version,
        alpn=outcome.alpn,
    )
    callbacks.emit_result(result)

    if feasible or config.verbose:
        callbacks.emit_log(
            "info" if feasible else "debug",
            f"Connected: {address} | {host.origin} | TLS:{outcome.tls_version} ALPN:{outcome.alpn} | "
            f"Domain:{cert_domain} | Issuer:{cert_issuer} | Geo:{geo_code} | Feasible:{feasible}"
        )
    return result
