import pandas as pd
import pytest

from tlsscout import main as main_module
from tlsscout.config import ScanConfig
from tlsscout.exceptions import ScannerError
from tlsscout.models import ScanResult
from tlsscout.scanning import orchestrator
from tlsscout.scanning.orchestrator import ScanSession

from conftest import FakeResolver


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(main_module, 'setup_logging', lambda verbose=False, log_to_file=False: None)


@pytest.fixture
def offline(monkeypatch):
    """Run the CLI without GeoIP downloads or network probes."""
    probed = []

    def fake_probe(host, config, resolver, callbacks):
        probed.append(host.origin)
        feasible = host.origin.endswith('.1')
        result = ScanResult(host.origin, host.origin, 'example.com', 'Example, CA',
                            resolver.lookup(host.origin), feasible,
                            '1.3' if feasible else '1.2', 'h2')
        callbacks.emit_result(result)
        return result

    monkeypatch.setattr(orchestrator, 'probe', fake_probe)
    monkeypatch.setattr(main_module, 'ScanSession',
                        lambda config, callbacks: ScanSession(config, callbacks, resolver=FakeResolver('DE')))
    return probed


def test_parse_arguments_flags():
    args = main_module.parse_arguments(
        ['-addr', '1.1.1.0/24', '-port', '8443', '-thread', '16', '-timeout', '3',
         '-v', '-46', '-out', 'hosts.xlsx', '-log']
    )
    assert args.addr == '1.1.1.0/24'
    assert (args.port, args.thread, args.timeout) == (8443, 16, 3)
    assert args.verbose and args.ipv6 and args.log
    assert args.out == 'hosts.xlsx'


def test_parse_arguments_defaults():
    args = main_module.parse_arguments(['-in', 'targets.txt'])
    assert args.input == 'targets.txt'
    assert (args.port, args.thread, args.timeout) == (443, 2, 10)
    assert args.out == 'out.csv'
    assert not (args.verbose or args.ipv6 or args.log)


@pytest.mark.parametrize('argv', [
    [],
    ['-addr', '1.1.1.1', '-in', 'targets.txt'],
])
def test_build_host_stream_needs_exactly_one_source(argv):
    args = main_module.parse_arguments(argv)
    with pytest.raises(ScannerError):
        main_module.build_host_stream(args, ScanConfig())


def test_main_rejects_missing_source(tmp_path):
    assert main_module.main(['-out', str(tmp_path / 'out.csv')]) == 1


def test_main_rejects_bad_thread_count(tmp_path):
    assert main_module.main(['-addr', '1.1.1.1', '-thread', '0', '-out', str(tmp_path / 'out.csv')]) == 1


def test_main_rejects_missing_input_file(tmp_path, caplog):
    missing = str(tmp_path / 'missing.txt')
    assert main_module.main(['-in', missing, '-out', str(tmp_path / 'out.csv')]) == 1
    assert f'Cannot open input {missing}' in caplog.text
    assert 'Invalid configuration' not in caplog.text


def test_main_rejects_unwritable_output(tmp_path, caplog):
    out = str(tmp_path / 'no-such-dir' / 'out.csv')
    assert main_module.main(['-addr', '10.0.0.0/30', '-out', out]) == 1
    assert f'Cannot open output {out}' in caplog.text


def test_ipv6_flag_help_text(capsys):
    with pytest.raises(SystemExit):
        main_module.parse_arguments(['-h'])
    assert 'in addition to IPv4' in ' '.join(capsys.readouterr().out.split())


def test_main_writes_csv(tmp_path, offline):
    out = tmp_path / 'out.csv'

    assert main_module.main(['-addr', '10.0.0.0/29', '-thread', '3', '-out', str(out)]) == 0

    assert sorted(offline) == [f'10.0.0.{n}' for n in range(8)]
    assert out.read_text() == (
        'IP,ORIGIN,CERT_DOMAIN,CERT_ISSUER,GEO_CODE\n'
        '10.0.0.1,10.0.0.1,example.com,"Example, CA",DE\n'
    )


def test_main_reads_input_file(tmp_path, offline):
    targets = tmp_path / 'targets.txt'
    targets.write_text('192.168.0.1\n# skip\n192.168.0.2\n')
    out = tmp_path / 'out.csv'

    assert main_module.main(['-in', str(targets), '-out', str(out)]) == 0

    assert sorted(offline) == ['192.168.0.1', '192.168.0.2']
    assert out.read_text().splitlines()[1].startswith('192.168.0.1,')


def test_main_writes_excel(tmp_path, offline):
    out = tmp_path / 'out.xlsx'

    assert main_module.main(['-addr', '10.0.0.0/30', '-out', str(out)]) == 0

    df = pd.read_excel(out, sheet_name='Scan Results', engine='openpyxl')
    assert list(df['IP']) == ['10.0.0.1']
    assert list(df['Geo']) == ['DE']


def test_progress_reporter_ignores_stale_events():
    class Bar:
        def __init__(self):
            self.n = 0
            self.postfix = None

        def update(self, amount):
            self.n += amount

        def set_postfix(self, postfix, refresh=True):
            self.postfix = postfix

    bar = Bar()
    reporter = main_module.ProgressReporter(bar)
    reporter.on_result(ScanResult('1.1.1.1', '1.1.1.1', 'd', 'i', 'US', True, '1.3', 'h2'))
    reporter.on_progress(3, 10)
    reporter.on_progress(2, 10)

    assert bar.n == 3
    assert bar.postfix == {'Found': 1}
