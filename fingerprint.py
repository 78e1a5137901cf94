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
Content fingerprints of uncompressed dumps, stored as md5sum(1) style
sidecar files:

    <hexdigest>  <label>
"""
import hashlib
from enum import Enum
from dataclasses import dataclass, field
from typing import BinaryIO

CHUNK_SIZE = 64 * 1024


class Error(Exception):
    pass


class CompareError(Error):
    pass


class Comparison(Enum):
    IDENTICAL = 'identical'
    DIFFERENT = 'different'


@dataclass(frozen=True)
class Fingerprint:
    digest: str
    size: int = 0

    # artifact the digest was recorded for, as read back from a sidecar
    label: str = field(default='', compare=False)

    def __str__(self) -> str:
        return self.digest


class Fingerprinter:
    """Incremental fingerprint, fed one chunk at a time"""

    def __init__(self) -> None:
        self._md5 = hashlib.md5()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._md5.update(chunk)
        self.size += len(chunk)

    def fingerprint(self) -> Fingerprint:
        return Fingerprint(self._md5.hexdigest(), self.size)


def compute(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Fingerprint:
    fp = Fingerprinter()
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        fp.update(chunk)

    return fp.fingerprint()


def compare(existing: Fingerprint, new: Fingerprint) -> Comparison:
    if existing.digest == new.digest:
        return Comparison.IDENTICAL
    return Comparison.DIFFERENT


def read(path: str) -> Fingerprint:
    """Read the fingerprint stored in a sidecar.

    Raises CompareError if the sidecar can't be read. An empty or garbled
    sidecar yields an empty digest, which compares as DIFFERENT. The
    label names the artifact the digest belongs to.
    """
    try:
        with open(path, errors="replace") as fob:
            line = fob.readline()
    except OSError as e:
        raise CompareError(f"can't read fingerprint {path}: {e}") from e

    digest, _, label = line.rstrip("\n").partition("  ")
    return Fingerprint(digest.strip().lower(), label=label.strip())


def write(path: str, fingerprint: Fingerprint, label: str) -> None:
    with open(path, "w") as fob:
        fob.write(f"{fingerprint.digest}  {label}\n")
