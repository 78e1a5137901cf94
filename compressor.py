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
Compressor backends

Every backend exposes the same interface:

    stream_command()        argv that compresses stdin to stdout
    file_command(path)      argv that compresses path to path + EXTENSION
    EXTENSION               suffix of the compressed file
    REMOVES_SOURCE          file mode deletes the uncompressed source
    ZERO_THREADS_AUTO       threads=0 means "all cores" (True) or
                            "leave the flag out" (False)

Usage:

    c = select('zstd', threads=0, level=9)
    c.stream_command()      # ['zstd', '-q', '-9', '-T0', '-c']
    c.file_command('x.sql') # ['zstd', '-q', '-f', '-9', '-T0', 'x.sql']
"""
import logging
import subprocess
from subprocess import DEVNULL
from typing import Optional, Callable, Sequence


class Error(Exception):
    pass


class UnknownCompressor(Error):
    pass


class NoCompressorAvailable(Error):
    pass


class InvalidLevel(Error):
    pass


def _fmt_levels(levels: Sequence[int]) -> str:
    if isinstance(levels, range):
        return f"{levels.start}..{levels.stop - 1}"
    return ", ".join(str(level) for level in levels)


class Compressor:
    NAME = ''
    BINARY = ''
    EXTENSION = ''
    REMOVES_SOURCE = True

    # None: single threaded, thread count is ignored
    THREADS_FLAG: Optional[str] = None
    ZERO_THREADS_AUTO = False

    QUIET: list[str] = []

    # compression levels the binary accepts as -N
    LEVELS: Sequence[int] = range(1, 10)

    def __init__(self, threads: Optional[int] = None, level: Optional[int] = None):
        if level is not None and level not in self.LEVELS:
            raise InvalidLevel(f"{self.NAME}: unsupported compression level {level} "
                               f"(supported: {_fmt_levels(self.LEVELS)})")

        self.threads = threads
        self.level = level

    def _level_args(self) -> list[str]:
        if self.level is None:
            return []
        return [f"-{self.level}"]

    def _threads_args(self) -> list[str]:
        if self.THREADS_FLAG is None or self.threads is None:
            return []

        if self.threads == 0 and not self.ZERO_THREADS_AUTO:
            return []

        return [f"{self.THREADS_FLAG}{self.threads}"]

    def _args(self) -> list[str]:
        return self._level_args() + self._threads_args()

    def stream_command(self) -> list[str]:
        return [self.BINARY, *self.QUIET, *self._args(), '-c']

    def file_command(self, path: str) -> list[str]:
        return [self.BINARY, *self.QUIET, '-f', *self._args(), path]

    def compressed_path(self, path: str) -> str:
        return path + self.EXTENSION

    @classmethod
    def is_available(cls) -> bool:
        """Compress empty input as a capability check"""
        try:
            p = subprocess.run([cls.BINARY, '-c'],
                               stdin=DEVNULL, stdout=DEVNULL, stderr=DEVNULL)
        except OSError:
            return False

        return p.returncode == 0

    def __str__(self) -> str:
        return " ".join(self.stream_command())

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(threads={self.threads!r}, level={self.level!r})"


class Zstd(Compressor):
    NAME = BINARY = 'zstd'
    EXTENSION = '.zst'
    LEVELS = range(1, 23)
    REMOVES_SOURCE = False
    THREADS_FLAG = '-T'
    ZERO_THREADS_AUTO = True
    QUIET = ['-q']

    def _level_args(self) -> list[str]:
        args = super()._level_args()
        if self.level is not None and self.level > 19:
            args.insert(0, '--ultra')
        return args


class Pigz(Compressor):
    NAME = BINARY = 'pigz'
    EXTENSION = '.gz'
    # 11 is zopfli
    LEVELS = (*range(0, 10), 11)
    THREADS_FLAG = '-p'

    def _threads_args(self) -> list[str]:
        # pigz wants the count as a separate argument
        args = super()._threads_args()
        if not args:
            return args
        return [self.THREADS_FLAG, str(self.threads)]


class Xz(Compressor):
    NAME = BINARY = 'xz'
    EXTENSION = '.xz'
    LEVELS = range(0, 10)
    THREADS_FLAG = '-T'
    ZERO_THREADS_AUTO = True


class Pbzip2(Compressor):
    NAME = BINARY = 'pbzip2'
    EXTENSION = '.bz2'
    THREADS_FLAG = '-p'


class Gzip(Compressor):
    NAME = BINARY = 'gzip'
    EXTENSION = '.gz'


class Bzip2(Compressor):
    NAME = BINARY = 'bzip2'
    EXTENSION = '.bz2'


class Lz4(Compressor):
    NAME = BINARY = 'lz4'
    EXTENSION = '.lz4'
    LEVELS = range(1, 13)
    REMOVES_SOURCE = False
    QUIET = ['-q']

    def file_command(self, path: str) -> list[str]:
        # lz4 only derives the output name for a single input on newer releases
        return super().file_command(path) + [self.compressed_path(path)]


COMPRESSORS: dict[str, type[Compressor]] = {
    cls.NAME: cls for cls in (Zstd, Pigz, Xz, Pbzip2, Gzip, Bzip2, Lz4)
}

PREFERENCE = ['zstd', 'pigz', 'xz', 'pbzip2', 'gzip', 'bzip2']

NONE = 'none'


def get(name: str, threads: Optional[int] = None,
        level: Optional[int] = None) -> Compressor:
    try:
        cls = COMPRESSORS[name]
    except KeyError:
        raise UnknownCompressor(f"unknown compressor '{name}' "
                                f"(supported: {', '.join(sorted(COMPRESSORS))}, {NONE})")

    return cls(threads, level)


def select(name: Optional[str] = None,
           threads: Optional[int] = None,
           level: Optional[int] = None,
           probe: Optional[Callable[[type[Compressor]], bool]] = None) -> Optional[Compressor]:
    """Return the configured compressor, or the first usable one from
    PREFERENCE if <name> is empty. Returns None for 'none' (plain dumps).
    """
    if name == NONE:
        return None

    if name:
        return get(name, threads, level)

    if probe is None:
        probe = lambda cls: cls.is_available()

    for candidate in PREFERENCE:
        cls = COMPRESSORS[candidate]
        if probe(cls):
            logging.debug(f"compressor: selected {candidate}")
            return cls(threads, level)

        logging.debug(f"compressor: {candidate} not usable")

    raise NoCompressorAvailable("none of the supported compressors is usable: "
                                + ", ".join(PREFERENCE))
