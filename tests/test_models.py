import itertools

import pytest

from tlsscout.config import ScanConfig
from tlsscout.exceptions import ConfigurationError
from tlsscout.models import Host, HostKind, ScanResult, classify


@pytest.mark.parametrize('is_tls13, is_h2, has_domain, has_issuer',
                         list(itertools.product([True, False], repeat=4)))
def test_classification_requires_all_four_predicates(is_tls13, is_h2, has_domain, has_issuer):
    feasible = classify(
        '1.3' if is_tls13 else '1.2',
        'h2' if is_h2 else 'http/1.1',
        'example.com' if has_domain else '',
        'Example CA' if has_issuer else '',
    )
    assert feasible == (is_tls13 and is_h2 and has_domain and has_issuer)


def test_classification_alpn_must_be_exactly_h2():
    assert not classify('1.3', '', 'example.com', 'Example CA')
    assert not classify('1.3', 'H2', 'example.com', 'Example CA')
    assert not classify('TLS 1.3', 'h2', 'example.com', 'Example CA')


def test_csv_row_quotes_issuer():
    result = ScanResult('1.1.1.1', '1.1.1.1', 'cloudflare-dns.com', 'Cloudflare, Inc.', 'US', True, '1.3', 'h2')
    assert result.csv_row() == '1.1.1.1,1.1.1.1,cloudflare-dns.com,"Cloudflare, Inc.",US'


def test_host_constructors():
    assert Host.from_ip('1.1.1.1') == Host('1.1.1.1', HostKind.IP, '1.1.1.1')
    domain = Host.from_domain('example.com')
    assert domain.kind is HostKind.DOMAIN
    assert domain.address is None


def test_default_config_is_valid():
    config = ScanConfig()
    assert config.validate() is config
    assert (config.port, config.concurrency, config.timeout) == (443, 2, 10)


@pytest.mark.parametrize('kwargs', [
    {'port': 0},
    {'port': 65536},
    {'port': True},
    {'concurrency': 0},
    {'concurrency': -3},
    {'timeout': 0},
    {'timeout': 1.5},
])
def test_invalid_config_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        ScanConfig(**kwargs).validate()


def test_config_bounds_accepted():
    ScanConfig(port=1, concurrency=1, timeout=1).validate()
    ScanConfig(port=65535).validate()
