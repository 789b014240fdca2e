# tlsscout/models.py

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tlsscout.config import FEASIBLE_ALPN, FEASIBLE_TLS_VERSION


class HostKind(Enum):
    IP = "ip"
    DOMAIN = "domain"


@dataclass(frozen=True)
class Host:
    origin: str  # the address or domain as it appeared in the input
    kind: HostKind
    address: Optional[str] = None  # resolved IP, None until the prober resolves origin

    @classmethod
    def from_ip(cls, ip: str) -> "Host":
        return cls(origin=ip, kind=HostKind.IP, address=ip)

    @classmethod
    def from_domain(cls, domain: str) -> "Host":
        return cls(origin=domain, kind=HostKind.DOMAIN)


@dataclass(frozen=True)
class ScanResult:
    ip: str
    origin: str
    cert_domain: str
    cert_issuer: str
    geo_code: str
    feasible: bool
    tls_version: str
    alpn: str

    def csv_row(self) -> str:
        return f'{self.ip},{self.origin},{self.cert_domain},"{self.cert_issuer}",{self.geo_code}'


@dataclass(frozen=True)
class ScanSummary:
    probed: int
    results: int
    feasible: int
    cancelled: bool


def classify(tls_version: str, alpn: str, cert_domain: str, cert_issuer: str) -> bool:
    """A host is feasible only with TLS 1.3, h2 negotiated and a populated leaf subject and issuer."""
    return (
        tls_version == FEASIBLE_TLS_VERSION
        and alpn == FEASIBLE_ALPN
        and len(cert_domain) > 0
        and len(cert_issuer) > 0
    )
