import os
import signal

import pytest

import conf
import dumprun
import cmd_dump
from dumprun import ExitCode, RunOutcome

from conftest import FakeCluster, script


@pytest.fixture
def captured(monkeypatch):
    calls = []

    def fake_run(config, cluster=None):
        calls.append(config)
        return RunOutcome()

    monkeypatch.setattr(dumprun, 'run', fake_run)
    monkeypatch.setattr(conf.Conf, 'DEFAULT_PATH', '')
    return calls


def test_options_build_conf(captured, backup_dir):
    with pytest.raises(SystemExit) as e:
        cmd_dump.main([f'--backup-dir={backup_dir}', '--order=size', '--compressor=pigz',
                       '--threads=0', '--level', '9', '--inline', '--exclude=',
                       '--host=db.example.com', '--user=backup', '-q', 'shop', 'crm'])

    assert e.value.code == ExitCode.OK
    config = captured[0]
    assert config.backup_dir == str(backup_dir)
    assert config.order == 'size'
    assert (config.compressor, config.threads, config.level) == ('pigz', 0, 9)
    assert config.inline is True
    assert config.exclude == ()
    assert config.host == 'db.example.com'
    assert config.user == 'backup'
    assert config.databases == ('shop', 'crm')


def test_exit_code_of_the_run(monkeypatch):
    monkeypatch.setattr(conf.Conf, 'DEFAULT_PATH', '')
    monkeypatch.setattr(dumprun, 'run', lambda config: RunOutcome(ExitCode.COMPARE_FAILED))

    with pytest.raises(SystemExit) as e:
        cmd_dump.main([])
    assert e.value.code == ExitCode.COMPARE_FAILED


def test_interrupt(monkeypatch):
    def interrupted(config):
        raise KeyboardInterrupt()

    monkeypatch.setattr(conf.Conf, 'DEFAULT_PATH', '')
    monkeypatch.setattr(dumprun, 'run', interrupted)

    with pytest.raises(SystemExit) as e:
        cmd_dump.main([])
    assert e.value.code == ExitCode.INTERRUPTED


def test_help(capsys):
    with pytest.raises(SystemExit) as e:
        cmd_dump.main(['--help'])

    assert e.value.code == 0
    err = capsys.readouterr().err
    assert '--compressor=NAME' in err
    assert 'NO_SUCCESSFUL_DUMPS' in err


@pytest.mark.parametrize("argv", [['--no-such-option'], ['--order=oldest'], ['--threads=x']])
def test_bad_usage(captured, argv):
    with pytest.raises(SystemExit) as e:
        cmd_dump.main(argv)
    assert e.value.code == ExitCode.CONF_ERROR
    assert captured == []


def test_simulate(monkeypatch, backup_dir, capsys):
    monkeypatch.setattr(conf.Conf, 'DEFAULT_PATH', '')
    monkeypatch.setattr(conf.Conf, 'cluster', lambda self: FakeCluster({"shop": b"x"}))

    cmd_dump.main([f'--backup-dir={backup_dir}', '--compressor=gzip', '--hostname=host',
                   '--simulate'])

    out = capsys.readouterr().out
    assert f"{backup_dir}/host-pgsql-GLOBAL.sql (new)" in out
    assert f"{backup_dir}/host-pgsql-shop.sql.gz (new)" in out
    assert list(backup_dir.iterdir()) == []


class SigtermCluster(FakeCluster):
    """Dumping 'shop' sends SIGTERM to the test process and then hangs"""

    def __init__(self, pidfile):
        super().__init__({"shop": b""})
        self.pidfile = str(pidfile)

    def dump_command(self, name, is_global=False):
        if is_global:
            return super().dump_command(name, is_global)

        return script("import os, sys, time, signal;"
                      f" open({self.pidfile!r}, 'w').write(str(os.getpid()));"
                      " sys.stdout.buffer.write(b'partial'); sys.stdout.flush();"
                      " time.sleep(0.5);"
                      f" os.kill({os.getpid()}, signal.SIGTERM);"
                      " time.sleep(60)")


def test_sigterm_during_dump(monkeypatch, tmp_path, backup_dir):
    monkeypatch.setattr(conf.Conf, 'DEFAULT_PATH', '')
    argv = [f'--backup-dir={backup_dir}', '--compressor=gzip', '--hostname=host', '--exclude=']
    pidfile = tmp_path / "producer.pid"

    monkeypatch.setattr(conf.Conf, 'cluster', lambda self: SigtermCluster(pidfile))
    with pytest.raises(SystemExit) as e:
        cmd_dump.main(argv)
    assert e.value.code == ExitCode.INTERRUPTED

    # producer was killed and reaped, its partial output stays behind
    with pytest.raises(ProcessLookupError):
        os.kill(int(pidfile.read_text()), 0)
    assert (backup_dir / "host-pgsql-shop.sql.work").exists()
    assert not (backup_dir / "host-pgsql-shop.sql.gz").exists()
    assert not (backup_dir / "host-pgsql.last-success").exists()

    monkeypatch.setattr(conf.Conf, 'cluster', lambda self: FakeCluster({"shop": b"fresh"}))
    with pytest.raises(SystemExit) as e:
        cmd_dump.main(argv)
    assert e.value.code == ExitCode.CLEANUP_OCCURRED
    assert not (backup_dir / "host-pgsql-shop.sql.work").exists()
    assert (backup_dir / "host-pgsql-shop.sql.gz").exists()


def test_sigterm_handler_interrupts():
    signal.signal(signal.SIGTERM, cmd_dump._sigterm)
    with pytest.raises(KeyboardInterrupt):
        os.kill(os.getpid(), signal.SIGTERM)
        signal.pause()
