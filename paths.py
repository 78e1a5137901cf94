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
"""
Artifact filenames inside a backup directory

    {hostname}-{kind}-{target}.sql{ext}             final artifact
    {hostname}-{kind}-{target}.sql.md5sum           final fingerprint
    {hostname}-{kind}-{target}.sql.work             uncompressed work file
    {hostname}-{kind}-{target}.sql.work{ext}        compressed work file
    {hostname}-{kind}-{target}.sql.work.md5sum      work fingerprint

USAGE

paths = ArtifactPaths.create("/var/backups/postgresql", "db1", "pgsql", "shop", ".zst")
print(paths.final)          # /var/backups/postgresql/db1-pgsql-shop.sql.zst
print(paths.work_sidecar)   # /var/backups/postgresql/db1-pgsql-shop.sql.work.md5sum
"""
import re
from os.path import join, lexists, basename
from dataclasses import dataclass
from typing import Self

GLOBAL_NAME = "GLOBAL"

SQL_SUFFIX = ".sql"
WORK_SUFFIX = ".work"
SIDECAR_SUFFIX = ".md5sum"
MARKER_SUFFIX = ".last-success"


class PathsError(Exception):
    pass


def check_name(name: str, is_global: bool = False) -> None:
    """Raise PathsError if <name> can't safely be part of a filename"""
    if is_global:
        return

    if not name or name in ('.', '..'):
        raise PathsError(f"illegal target name {name!r}")

    if re.search(r'[/\\\x00-\x1f\x7f]', name):
        raise PathsError(f"target name {name!r} contains characters unsafe in a filename")

    # would share its fingerprint sidecar with the global dump
    if name == GLOBAL_NAME:
        raise PathsError(f"target name {name!r} is reserved")


def prefix(hostname: str, kind: str) -> str:
    return f"{hostname}-{kind}"


def marker_path(backup_dir: str, hostname: str, kind: str) -> str:
    return join(backup_dir, prefix(hostname, kind) + MARKER_SUFFIX)


@dataclass(frozen=True)
class ArtifactPaths:
    base: str
    extension: str = ''

    @classmethod
    def create(cls, backup_dir: str, hostname: str, kind: str,
               target: str, extension: str = '', is_global: bool = False) -> Self:
        check_name(target, is_global)
        if is_global:
            target = GLOBAL_NAME
            extension = ''

        base = join(backup_dir, f"{prefix(hostname, kind)}-{target}{SQL_SUFFIX}")
        return cls(base, extension)

    @property
    def label(self) -> str:
        """Name of the final artifact, recorded in the fingerprint sidecar"""
        return basename(self.final)

    @property
    def final(self) -> str:
        return self.base + self.extension

    @property
    def sidecar(self) -> str:
        return self.base + SIDECAR_SUFFIX

    @property
    def work(self) -> str:
        return self.base + WORK_SUFFIX

    @property
    def work_compressed(self) -> str:
        return self.work + self.extension

    @property
    def work_sidecar(self) -> str:
        return self.work + SIDECAR_SUFFIX

    def work_files(self) -> list[str]:
        files = [self.work, self.work_compressed, self.work_sidecar]
        return list(dict.fromkeys(files))

    def leftovers(self) -> list[str]:
        return [path for path in self.work_files() if lexists(path)]

    def has_final(self) -> bool:
        return lexists(self.final) and lexists(self.sidecar)
