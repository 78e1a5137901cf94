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
import os
from os.path import exists, isdir, realpath
import re
from dataclasses import dataclass
from typing import Optional, Mapping, Self, Any

import pgsql
from utils import short_hostname

ENV_PREFIX = 'PGDUMPSYNC_'
DEFAULT_PATH = os.environ.get(ENV_PREFIX + 'CONF', '/etc/pgdumpsync/pgdumpsync.conf')

DEFAULT_BACKUP_DIRS = ('/var/backups/postgresql', '/var/lib/postgresql/backups')
DEFAULT_EXCLUDE = ('postgres',)


class Error(Exception):
    pass


def _validate_bool(opt: str, value: str | bool) -> bool:
    """Returns value if valid, otherwise raise exception"""
    if value in (True, False):
        return bool(value)

    if re.match(r'^(true|1|yes|on)$', str(value), re.IGNORECASE):
        return True
    elif re.match(r'^(false|0|no|off)$', str(value), re.IGNORECASE):
        return False

    raise Error(f"bad {opt} value '{value}' (expected yes/no)")


def _validate_int(opt: str, value: str | int, minimum: Optional[int] = None) -> Optional[int]:
    """Returns value if valid, otherwise raise exception"""
    if value in ('', None):
        return None

    try:
        value_ = int(value)
    except ValueError:
        raise Error(f"{opt} not a number ({value})")

    if minimum is not None and value_ < minimum:
        raise Error(f"{opt} must be at least {minimum} ({value})")
    return value_


def _validate_choice(opt: str, choices: tuple[str, ...], value: str) -> str:
    """Returns value if valid, otherwise raise exception"""
    value = str(value).lower()
    if value not in choices:
        raise Error(f"bad {opt} value ({value}), expected one of: {', '.join(choices)}")
    return value


def _validate_list(opt: str, value: str | tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, (tuple, list)):
        return tuple(value)
    return tuple(v for v in re.split(r'[\s,]+', value) if v)


def _validate_string(opt: str, value: str) -> str:
    return str(value).strip()


_VALIDATORS = {
    'backup_dir': _validate_string,
    'exclude': _validate_list,
    'databases': _validate_list,
    'order': lambda opt, val: _validate_choice(opt, pgsql.ORDERS, val),
    'compressor': lambda opt, val: str(val).strip().lower(),
    'threads': lambda opt, val: _validate_int(opt, val, minimum=0),
    'level': _validate_int,
    'inline': _validate_bool,
    'host': _validate_string,
    'port': lambda opt, val: _validate_int(opt, val, minimum=1),
    'user': _validate_string,
    'run_as': _validate_string,
    'hostname': _validate_string,
    'pre_hook': _validate_string,
    'post_hook': _validate_string,
}


def validate(opt: str, value: Any) -> tuple[str, Any]:
    """Normalize option name (dashes to underscores) and validate value"""
    opt = opt.replace('-', '_').lower()
    if opt not in _VALIDATORS:
        raise Error(f"unknown conf option '{opt}'")

    return opt, _VALIDATORS[opt](opt, value)


def read_file(conffile: str) -> dict[str, Any]:
    """Parse a configuration file of '<option> <value>' lines"""
    values = {}
    with open(conffile) as fob:
        for line in fob.read().split("\n"):
            line = re.sub(r'#.*', '', line).strip()
            if not line:
                continue

            try:
                opt, value = re.split(r'\s+', line, maxsplit=1)
            except ValueError:
                raise Error(f"{conffile}: illegal line '{line}'")

            try:
                opt, value = validate(opt, value)
            except Error as e:
                raise Error(f"{conffile}: {e}")

            values[opt] = value

    return values


def read_environ(environ: Mapping[str, str]) -> dict[str, Any]:
    values = {}
    for opt in _VALIDATORS:
        varname = ENV_PREFIX + opt.upper()
        if varname not in environ:
            continue

        try:
            opt, value = validate(opt, environ[varname])
        except Error as e:
            raise Error(f"${varname}: {e}")

        values[opt] = value

    return values


@dataclass(frozen=True)
class Conf:
    Error = Error
    DEFAULT_PATH = DEFAULT_PATH

    backup_dir: str = ''
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    databases: tuple[str, ...] = ()
    order: str = pgsql.ORDER_NAME
    compressor: str = ''
    threads: Optional[int] = None
    level: Optional[int] = None
    inline: bool = False

    host: str = ''
    port: Optional[int] = None
    user: str = ''
    run_as: str = ''

    hostname: str = ''
    pre_hook: str = ''
    post_hook: str = ''

    @classmethod
    def load(cls, path: Optional[str] = None,
             environ: Optional[Mapping[str, str]] = None,
             overrides: Optional[Mapping[str, Any]] = None) -> Self:
        """Resolve configuration.

        Resolution order:

          1) overrides, i.e., command line (highest precedence)
          2) environment ($PGDUMPSYNC_<OPTION>)
          3) configuration file
          4) built-in default (lowest precedence)
        """
        if path is None:
            path = cls.DEFAULT_PATH
        if environ is None:
            environ = os.environ

        values: dict[str, Any] = {}
        if path and exists(path):
            values.update(read_file(path))

        values.update(read_environ(environ))

        for opt, value in (overrides or {}).items():
            opt, value = validate(opt, value)
            values[opt] = value

        return cls(**values)

    def effective_hostname(self) -> str:
        return self.hostname or self.host or short_hostname()

    def find_backup_dir(self) -> Optional[str]:
        candidates = (self.backup_dir,) if self.backup_dir else DEFAULT_BACKUP_DIRS
        for candidate in candidates:
            if isdir(candidate):
                return realpath(candidate)

        return None

    def cluster(self) -> pgsql.PgsqlCluster:
        return pgsql.PgsqlCluster(self.host, self.port, self.user, self.run_as)
