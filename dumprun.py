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
Dump every database of a cluster, one target after another.

The global dump (roles, tablespaces) always comes first. A failed target
never stops the run; the run's exit code is the most severe code any
target produced, or NO_SUCCESSFUL_DUMPS if nothing succeeded.
"""
import os
import logging
import datetime
from enum import IntEnum
from dataclasses import dataclass, field
from typing import Optional, Protocol, Iterable

import compressor
import paths
import pgsql
from conf import Conf, DEFAULT_BACKUP_DIRS
from compressor import Compressor
from dumpjob import DumpJob, DumpTarget, DumpResult, Status, Code
from hooks import Hooks
from paths import ArtifactPaths, PathsError
from utils import fmt_title


class ExitCode(IntEnum):
    OK = 0

    # fatal, before any target is attempted
    BACKUP_DIR_NOT_FOUND = 1
    NO_COMPRESSOR = 2
    UNKNOWN_COMPRESSOR = 3
    CHDIR_FAILED = 4
    CATALOG_FAILED = 5
    CONF_ERROR = 6

    # per target, ordered by severity
    CLEANUP_OCCURRED = Code.CLEANUP_OCCURRED.value
    INVALID_TARGET = Code.INVALID_TARGET.value
    DUMP_FAILED = Code.DUMP_FAILED.value
    COMPRESS_FAILED = Code.COMPRESS_FAILED.value
    COMPARE_FAILED = Code.COMPARE_FAILED.value

    NO_SUCCESSFUL_DUMPS = 15

    INTERRUPTED = 130


class Cluster(Protocol):
    KIND: str

    def list_databases(self, excludes: Iterable[str] = (),
                       order: str = pgsql.ORDER_NAME) -> list[pgsql.Database]:
        ...

    def dump_command(self, name: str, is_global: bool = False) -> list[str]:
        ...


@dataclass
class RunOutcome:
    exitcode: ExitCode = ExitCode.OK
    succeeded: int = 0
    changed: list[str] = field(default_factory=list)
    results: list[DumpResult] = field(default_factory=list)
    backup_dir: Optional[str] = None

    def add(self, result: DumpResult) -> None:
        self.results.append(result)
        if result.ok:
            self.succeeded += 1
        self.changed.extend(result.changed)
        self.exitcode = max(self.exitcode, ExitCode(result.code))

    def fail(self, exitcode: ExitCode) -> None:
        self.exitcode = max(self.exitcode, exitcode)

    @property
    def attempted(self) -> int:
        return len(self.results)

    def by_status(self, status: Status) -> list[DumpResult]:
        return [r for r in self.results if r.status is status]

    def summary(self) -> str:
        s = fmt_title("Dump summary", '-')
        s += f"targets: {self.attempted}, succeeded: {self.succeeded}\n"
        for status in Status:
            names = [str(r.target) for r in self.by_status(status)]
            if names:
                s += f"{status.value}: {', '.join(names)}\n"
        s += f"exitcode: {int(self.exitcode)} ({self.exitcode.name})\n"
        return s


def targets(cluster: Cluster, conf: Conf) -> list[DumpTarget]:
    """Ordered dump targets, global target first"""
    databases = cluster.list_databases(conf.exclude, conf.order)
    names = [db.name for db in databases]

    if conf.databases:
        missing = set(conf.databases) - set(names)
        for name in sorted(missing):
            logging.warning(f"{name}: no such database (or excluded), skipping")
        names = [name for name in names if name in conf.databases]

    return [DumpTarget.globals()] + [DumpTarget(name) for name in names]


def write_marker(backup_dir: str, hostname: str, kind: str) -> str:
    path = paths.marker_path(backup_dir, hostname, kind)
    with open(path, "w") as fob:
        fob.write(datetime.datetime.now().astimezone().isoformat() + "\n")
    return path


def dump_target(target: DumpTarget, backup_dir: str, hostname: str,
                cluster: Cluster, comp: Optional[Compressor],
                inline: bool = False) -> DumpResult:
    extension = comp.EXTENSION if comp else ''
    try:
        artifact_paths = ArtifactPaths.create(backup_dir, hostname, cluster.KIND,
                                              target.name, extension,
                                              is_global=target.is_global)
    except PathsError as e:
        logging.error(f"{target.name!r}: FAILED: {e}")
        return DumpResult(target, Status.FAILED, Code.INVALID_TARGET)

    command = cluster.dump_command(target.name, target.is_global)
    job = DumpJob(target, artifact_paths, command, comp, inline,
                  is_noise=pgsql.is_noise)
    return job.run()


def run(conf: Conf, cluster: Optional[Cluster] = None) -> RunOutcome:
    outcome = RunOutcome()

    backup_dir = conf.find_backup_dir()
    if backup_dir is None:
        logging.error("backup directory not found: "
                      f"{conf.backup_dir or ', '.join(DEFAULT_BACKUP_DIRS)}")
        outcome.fail(ExitCode.BACKUP_DIR_NOT_FOUND)
        return outcome

    try:
        os.chdir(backup_dir)
    except OSError as e:
        logging.error(f"can't change into backup directory {backup_dir}: {e}")
        outcome.fail(ExitCode.CHDIR_FAILED)
        return outcome

    outcome.backup_dir = backup_dir

    try:
        comp = compressor.select(conf.compressor, conf.threads, conf.level)
    except compressor.UnknownCompressor as e:
        logging.error(str(e))
        outcome.fail(ExitCode.UNKNOWN_COMPRESSOR)
        return outcome
    except compressor.NoCompressorAvailable as e:
        logging.error(str(e))
        outcome.fail(ExitCode.NO_COMPRESSOR)
        return outcome
    except compressor.InvalidLevel as e:
        logging.error(str(e))
        outcome.fail(ExitCode.CONF_ERROR)
        return outcome

    if cluster is None:
        cluster = conf.cluster()

    hostname = conf.effective_hostname()
    hooks = Hooks(conf.pre_hook, conf.post_hook)

    logging.info(f"dumping to {backup_dir} as {hostname}-{cluster.KIND}-*, "
                 f"compressor: {comp or 'none'} "
                 f"({'inline' if conf.inline else 'deferred'})")

    hooks.pre()

    try:
        dump_targets = targets(cluster, conf)
    except pgsql.Error as e:
        logging.error(str(e))
        outcome.fail(ExitCode.CATALOG_FAILED)
        return outcome

    logging.info(f"targets: {', '.join(t.name for t in dump_targets)}")

    for target in dump_targets:
        outcome.add(dump_target(target, backup_dir, hostname, cluster, comp, conf.inline))

    if outcome.succeeded == 0:
        outcome.fail(ExitCode.NO_SUCCESSFUL_DUMPS)

    if outcome.exitcode == ExitCode.OK:
        marker = write_marker(backup_dir, hostname, cluster.KIND)
        logging.info(f"run complete, marker written to {marker}")
        hooks.post(outcome.changed)
    else:
        logging.warning(f"run finished with exitcode {int(outcome.exitcode)} "
                        f"({outcome.exitcode.name}), post hook skipped")

    return outcome

