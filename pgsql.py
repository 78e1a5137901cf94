#
# Copyright (c) 2026 The pgdumpsync authors
#
# This file is part of pgdumpsync (PostgreSQL dump synchronizer).
#
# pgdumpsync is open source software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License as
# published by the Free Software Foundation; either version 3 of
# the License, or (at your option) any later version.
#
import re
import shlex
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Iterable

KIND = "pgsql"

ORDER_SIZE = 'size'
ORDER_NAME = 'name'
ORDER_RANDOM = 'random'
ORDERS = (ORDER_SIZE, ORDER_NAME, ORDER_RANDOM)

MAINTENANCE_DB = "postgres"

_ORDER_BY = {
    ORDER_SIZE: "pg_database_size(datname) DESC, datname",
    ORDER_NAME: "datname",
    ORDER_RANDOM: "random()",
}

# pg_dump -v / pg_dumpall progress chatter
NOISE = re.compile(r'^\S+: connecting to ')


class Error(Exception):
    pass


@dataclass(frozen=True)
class Database:
    name: str
    size: Optional[int] = None


def is_noise(line: str) -> bool:
    return bool(NOISE.match(line))


def su(user: str, command: list[str]) -> list[str]:
    return ["su", user, "-c", shlex.join(command)]


def conninfo_quote(value: str) -> str:
    """Quote <value> for use in a libpq connection string"""
    value = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{value}'"


@dataclass(frozen=True)
class PgsqlCluster:
    """PostgreSQL cluster as a source of dump targets and dump commands"""

    host: str = ''
    port: Optional[int] = None
    user: str = ''
    run_as: str = ''

    KIND = KIND

    def _conn_args(self) -> list[str]:
        args = []
        if self.host:
            args.append(f"--host={self.host}")
        if self.port:
            args.append(f"--port={self.port}")
        if self.user:
            args.append(f"--username={self.user}")
        return args

    def _wrap(self, command: list[str]) -> list[str]:
        if self.run_as:
            return su(self.run_as, command)
        return command

    def query_command(self, order: str) -> list[str]:
        try:
            order_by = _ORDER_BY[order]
        except KeyError:
            raise Error(f"unknown database order '{order}'")

        sql = ("SELECT datname, pg_database_size(datname) FROM pg_database"
               " WHERE datallowconn AND NOT datistemplate"
               f" ORDER BY {order_by}")

        return self._wrap(["psql", "-X", "-A", "-t", "-F", "\t",
                           *self._conn_args(),
                           "-d", MAINTENANCE_DB, "-c", sql])

    def list_databases(self, excludes: Iterable[str] = (),
                       order: str = ORDER_NAME) -> list[Database]:
        command = self.query_command(order)
        logging.debug(f"pgsql: {shlex.join(command)}")

        try:
            p = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise Error(f"can't list databases: {e}") from e

        if p.returncode != 0:
            raise Error(f"can't list databases (exitcode {p.returncode}): "
                        f"{p.stderr.strip()}")

        return parse_databases(p.stdout, excludes)

    def dump_command(self, name: str, is_global: bool = False) -> list[str]:
        if is_global:
            command = ["pg_dumpall", *self._conn_args(), "--globals-only"]
        else:
            # a bare name starting with - or containing = would not be taken literally
            command = ["pg_dump", *self._conn_args(), "--create",
                       f"--dbname=dbname={conninfo_quote(name)}"]
        return self._wrap(command)


def parse_databases(output: str, excludes: Iterable[str] = ()) -> list[Database]:
    """Parse `psql -A -t -F '\\t'` output of (name, size) rows"""
    excludes = set(excludes)

    databases = []
    for line in output.splitlines():
        if not line.strip():
            continue

        name, _, size = line.partition("\t")
        if name in excludes:
            logging.debug(f"pgsql: excluding {name}")
            continue

        databases.append(Database(name, int(size) if size.strip().isdigit() else None))

    return databases
