import datetime
import threading

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tlsscout.config import GEO_UNKNOWN
from tlsscout.events import ScanCallbacks


class FakeResolver:
    def __init__(self, code='US', available=True):
        self.code = code
        self.available = available
        self.lookups = []
        self.lock = threading.Lock()

    def lookup(self, ip):
        with self.lock:
            self.lookups.append(ip)
        return self.code if self.available else GEO_UNKNOWN

    def refresh(self):
        return True


class EventRecorder:
    def __init__(self):
        self.lock = threading.Lock()
        self.results = []
        self.progress = []
        self.logs = []
        self.geo_statuses = []
        self.finished = []

    def _add(self, bucket, item):
        with self.lock:
            bucket.append(item)

    def callbacks(self):
        return ScanCallbacks(
            on_result=lambda result: self._add(self.results, result),
            on_progress=lambda current, total: self._add(self.progress, (current, total)),
            on_log=lambda level, message: self._add(self.logs, (level, message)),
            on_geo_status=lambda status: self._add(self.geo_statuses, status),
            on_finish=lambda summary: self._add(self.finished, summary),
        )

    def logs_at(self, level):
        return [message for lvl, message in self.logs if lvl == level]


def _name(common_name=None, organizations=()):
    attributes = []
    if common_name:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    for org in organizations:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
    if not attributes:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, 'US'))
    return x509.Name(attributes)


def build_certificate(common_name='', issuer_organizations=(), self_signed_name=None):
    """Return (certificate, private_key); subject carries the CN, issuer carries the O fields."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = _name(common_name, ())
    issuer = _name(None, issuer_organizations)
    if self_signed_name is not None:
        subject = issuer = self_signed_name
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return cert, key


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def make_der():
    def make(common_name='', issuer_organizations=()):
        cert, _ = build_certificate(common_name, issuer_organizations)
        return cert.public_bytes(serialization.Encoding.DER)
    return make


@pytest.fixture
def tls_server_files(tmp_path):
    """Self-signed certificate with CN and O set, written as PEM files."""
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, 'localhost'),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Test Issuer'),
    ])
    cert, key = build_certificate(self_signed_name=name)
    cert_path = tmp_path / 'cert.pem'
    key_path = tmp_path / 'key.pem'
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    return str(cert_path), str(key_path)
