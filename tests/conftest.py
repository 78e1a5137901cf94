"""Shared test fixtures."""

import sys
import signal
import logging

import pytest

import pgsql
from conf import Conf


def script(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def writes(data: bytes) -> list[str]:
    """Command that writes <data> to stdout"""
    return script(f"import sys; sys.stdout.buffer.write({data!r})")


def fails(message: str = "pg_dump: error: connection refused") -> list[str]:
    return script(f"import sys; sys.stderr.write({message + chr(10)!r}); sys.exit(1)")


class FakeCluster:
    """In-memory cluster, dumping with small python scripts"""

    KIND = pgsql.KIND

    def __init__(self, contents: dict[str, bytes], globals_: bytes = b"CREATE ROLE app;\n",
                 failing: tuple[str, ...] = (), catalog_error: bool = False):
        self.contents = dict(contents)
        self.globals = globals_
        self.failing = failing
        self.catalog_error = catalog_error
        self.queries: list[tuple[tuple[str, ...], str]] = []

    def list_databases(self, excludes=(), order=pgsql.ORDER_NAME):
        self.queries.append((tuple(excludes), order))
        if self.catalog_error:
            raise pgsql.Error("can't list databases (exitcode 2): connection refused")

        names = [name for name in self.contents if name not in excludes]
        if order == pgsql.ORDER_NAME:
            names.sort()
        elif order == pgsql.ORDER_SIZE:
            names.sort(key=lambda name: -len(self.contents[name]))

        return [pgsql.Database(name, len(self.contents[name])) for name in names]

    def dump_command(self, name, is_global=False):
        if name in self.failing:
            return fails()

        return writes(self.globals if is_global else self.contents[name])


@pytest.fixture(autouse=True)
def restore_cwd(monkeypatch, tmp_path):
    # dumprun.run() changes into the backup directory
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def restore_logging():
    handlers = logging.root.handlers[:]
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)


@pytest.fixture(autouse=True)
def restore_sigterm():
    # cmd_dump.main() installs its own SIGTERM handler
    handler = signal.getsignal(signal.SIGTERM)
    yield
    signal.signal(signal.SIGTERM, handler)


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return path


@pytest.fixture
def make_conf(backup_dir):
    def make(**kwargs):
        values = dict(backup_dir=str(backup_dir), compressor='gzip',
                      hostname='host', exclude=(), order=pgsql.ORDER_NAME)
        values.update(kwargs)
        return Conf(**values)

    return make
