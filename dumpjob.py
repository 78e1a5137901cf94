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
Dump one target and replace its artifact only if the content changed.

    DUMPING -> FINGERPRINTING -> IDENTICAL -> KEPT
                              -> REPLACING -> REPLACED
    (any step)                             -> FAILED

The fingerprint is taken over the uncompressed dump stream while it is
being written (deferred mode) or piped into the compressor (inline
mode). An unchanged dump leaves the existing artifact untouched; a
changed one is renamed into place. Failures leave the work files behind
for inspection and are cleaned up by the next run.
"""
import os
import shlex
import logging
import threading
import subprocess
from subprocess import PIPE, DEVNULL
from enum import Enum, IntEnum
from dataclasses import dataclass, field
from typing import Optional, IO, Self

import fingerprint
from fingerprint import Fingerprint, Fingerprinter, Comparison
from compressor import Compressor
from paths import ArtifactPaths, GLOBAL_NAME
from tee import StreamTee
from utils import remove_any, fmt_size


class Code(IntEnum):
    """Per-target exit codes, ordered by severity"""
    OK = 0
    CLEANUP_OCCURRED = 10
    INVALID_TARGET = 11
    DUMP_FAILED = 12
    COMPRESS_FAILED = 13
    COMPARE_FAILED = 14


class State(Enum):
    DUMPING = 'dumping'
    FINGERPRINTING = 'fingerprinting'
    IDENTICAL = 'identical'
    REPLACING = 'replacing'
    KEPT = 'kept'
    REPLACED = 'replaced'
    FAILED = 'failed'


class Status(Enum):
    KEPT = 'kept'
    REPLACED = 'replaced'
    FAILED = 'failed'


@dataclass(frozen=True)
class DumpTarget:
    name: str
    is_global: bool = False

    @classmethod
    def globals(cls) -> Self:
        return cls(GLOBAL_NAME, is_global=True)

    def __str__(self) -> str:
        return self.name


@dataclass
class DumpResult:
    target: DumpTarget
    status: Status
    code: Code = Code.OK
    changed: list[str] = field(default_factory=list)
    fingerprint: Optional[Fingerprint] = None
    cleanup: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not Status.FAILED


def reconcile(paths: ArtifactPaths, target: DumpTarget) -> bool:
    """Remove work files left by an interrupted run.

    Return: True if anything had to be removed"""
    leftovers = paths.leftovers()
    for path in leftovers:
        logging.warning(f"{target}: removing leftover work file {path} "
                        "(previous run did not complete)")
        remove_any(path)

    return bool(leftovers)


class _StderrLogger(threading.Thread):
    """Pass producer diagnostics through to the log, minus progress noise"""

    def __init__(self, target: DumpTarget, fh: IO[bytes], is_noise):
        super().__init__(daemon=True)
        self.target = target
        self.fh = fh
        self.is_noise = is_noise

    def run(self) -> None:
        for raw in self.fh:
            line = raw.decode(errors='replace').rstrip()
            if not line or self.is_noise(line):
                continue
            logging.warning(f"{self.target}: {line}")
        self.fh.close()


def _never_noise(line: str) -> bool:
    return False


class DumpJob:
    def __init__(self, target: DumpTarget, paths: ArtifactPaths,
                 command: list[str],
                 compressor: Optional[Compressor] = None,
                 inline: bool = False,
                 is_noise=_never_noise):
        self.target = target
        self.paths = paths
        self.command = command
        self.compressor = None if target.is_global else compressor
        self.inline = inline and self.compressor is not None
        self.is_noise = is_noise

        self.state = State.DUMPING
        self._procs: list[subprocess.Popen] = []

    def _set_state(self, state: State) -> None:
        logging.debug(f"{self.target}: {self.state.value} -> {state.value}")
        self.state = state

    def _popen(self, command: list[str], **kwargs) -> subprocess.Popen:
        logging.debug(f"{self.target}: {shlex.join(command)}")
        proc = subprocess.Popen(command, **kwargs)
        self._procs.append(proc)
        return proc

    def _kill(self) -> None:
        for proc in self._procs:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

    def _fail(self, code: Code, msg: str, cleanup: bool) -> DumpResult:
        self._set_state(State.FAILED)
        logging.error(f"{self.target}: FAILED: {msg}")
        return DumpResult(self.target, Status.FAILED,
                          max(code, Code.CLEANUP_OCCURRED if cleanup else Code.OK),
                          cleanup=cleanup)

    def _dump(self) -> tuple[Fingerprint, Optional[Code], str]:
        """Run the producer into the sink, fingerprinting on the way.

        Returns (fingerprint, failure code or None, failure message)"""
        paths = self.paths
        fp = Fingerprinter()

        comp_proc = None
        if self.inline:
            assert self.compressor is not None
            command = self.compressor.stream_command()
            try:
                with open(paths.work_compressed, "wb") as out:
                    comp_proc = self._popen(command, stdin=PIPE, stdout=out)
            except OSError as e:
                return fp.fingerprint(), Code.COMPRESS_FAILED, f"can't run {command[0]}: {e}"

            sink = comp_proc.stdin
        else:
            sink = open(paths.work, "wb")

        assert sink is not None
        try:
            proc = self._popen(self.command, stdin=DEVNULL, stdout=PIPE, stderr=PIPE)
        except OSError as e:
            sink.close()
            if comp_proc:
                comp_proc.wait()
            return fp.fingerprint(), Code.DUMP_FAILED, f"can't run {self.command[0]}: {e}"

        stderr_logger = _StderrLogger(self.target, proc.stderr, self.is_noise)
        stderr_logger.start()

        self._set_state(State.FINGERPRINTING)
        assert proc.stdout is not None
        errors = StreamTee(proc.stdout, [fp.update, sink.write]).run()
        proc.stdout.close()

        sink_error = errors[1]
        try:
            sink.close()
        except OSError as e:
            sink_error = sink_error or e

        returncode = proc.wait()
        stderr_logger.join()

        comp_returncode = comp_proc.wait() if comp_proc else 0

        if returncode != 0:
            return fp.fingerprint(), Code.DUMP_FAILED, \
                f"non-zero exitcode ({returncode}) from dump command: {shlex.join(self.command)}"

        if comp_proc and (comp_returncode != 0 or sink_error):
            return fp.fingerprint(), Code.COMPRESS_FAILED, \
                f"compressor failed (exitcode {comp_returncode}): {sink_error or self.compressor}"

        if sink_error:
            return fp.fingerprint(), Code.DUMP_FAILED, \
                f"can't write {paths.work}: {sink_error}"

        return fp.fingerprint(), None, ''

    def _compress(self) -> Optional[str]:
        """Compress the work file in place (deferred mode).

        Returns an error message or None"""
        assert self.compressor is not None
        command = self.compressor.file_command(self.paths.work)
        try:
            proc = self._popen(command, stdin=DEVNULL)
        except OSError as e:
            return f"can't run {command[0]}: {e}"

        returncode = proc.wait()
        if returncode != 0:
            return f"non-zero exitcode ({returncode}) from {shlex.join(command)}"

        if not self.compressor.REMOVES_SOURCE:
            remove_any(self.paths.work)

        return None

    def _finalize(self) -> list[str]:
        paths = self.paths
        src = paths.work_compressed if self.compressor else paths.work

        os.rename(src, paths.final)
        os.rename(paths.work_sidecar, paths.sidecar)

        return [paths.final, paths.sidecar]

    def run(self) -> DumpResult:
        target = self.target
        paths = self.paths

        cleanup = reconcile(paths, target)

        self._set_state(State.DUMPING)
        logging.info(f"{target}: dumping to {paths.final}")
        try:
            try:
                new, code, msg = self._dump()
                if code is None:
                    fingerprint.write(paths.work_sidecar, new, paths.label)
            except OSError as e:
                return self._fail(Code.DUMP_FAILED, str(e), cleanup)

            if code is not None:
                return self._fail(code, msg, cleanup)

            if paths.has_final():
                try:
                    old = fingerprint.read(paths.sidecar)
                except fingerprint.CompareError as e:
                    return self._fail(Code.COMPARE_FAILED,
                                      f"{e} (leaving work files for inspection)", cleanup)

                if old.label != paths.label:
                    logging.info(f"{target}: stored fingerprint belongs to {old.label or 'nothing'}, "
                                 f"not {paths.label}, treating as initial dump")
                    comparison = Comparison.DIFFERENT
                else:
                    comparison = fingerprint.compare(old, new)
            else:
                logging.info(f"{target}: initial dump")
                comparison = Comparison.DIFFERENT

            code_ok = Code.CLEANUP_OCCURRED if cleanup else Code.OK

            if comparison is Comparison.IDENTICAL:
                self._set_state(State.IDENTICAL)
                for path in paths.work_files():
                    remove_any(path)

                self._set_state(State.KEPT)
                logging.info(f"{target}: unchanged ({new}, {fmt_size(new.size)}), "
                             f"kept {paths.final}")
                return DumpResult(target, Status.KEPT, code_ok,
                                  fingerprint=new, cleanup=cleanup)

            self._set_state(State.REPLACING)
            if self.compressor and not self.inline:
                error = self._compress()
                if error:
                    return self._fail(Code.COMPRESS_FAILED, error, cleanup)

            try:
                changed = self._finalize()
            except OSError as e:
                return self._fail(Code.DUMP_FAILED, f"can't replace {paths.final}: {e}", cleanup)

            self._set_state(State.REPLACED)
            logging.info(f"{target}: changed ({new}, {fmt_size(new.size)}), "
                         f"replaced {paths.final}")
            return DumpResult(target, Status.REPLACED, code_ok, changed,
                              fingerprint=new, cleanup=cleanup)

        finally:
            self._kill()
