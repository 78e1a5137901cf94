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
from os.path import lexists, islink, isdir
import shutil
import socket
import datetime

from io import StringIO


def remove_any(path: str) -> bool:
    """Remove a path whether it is a file or a directory.
       Return: True if removed, False if nothing to remove"""

    if not lexists(path):
        return False

    if not islink(path) and isdir(path):
        shutil.rmtree(path)
    else:
        os.remove(path)

    return True


def is_writeable(fpath: str) -> bool:
    try:
        with open(fpath, "a"):
            return True
    except IOError:
        return False


def is_executable(fpath: str) -> bool:
    return os.path.isfile(fpath) and os.access(fpath, os.X_OK)


def fmt_title(title: str, c: str = '=') -> str:
    return title + "\n" + c * len(title) + "\n"


def fmt_timestamp() -> str:

    fh = StringIO()

    s = "### %s ###" % datetime.datetime.now().ctime()
    print("#" * len(s), file=fh)
    print(s, file=fh)
    print("#" * len(s), file=fh)

    return fh.getvalue()


def fmt_size(nbytes: int) -> str:
    size = float(nbytes)
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if size < 1024 or unit == 'TB':
            break
        size /= 1024

    if unit == 'B':
        return f"{nbytes} B"
    return f"{size:.1f} {unit}"


def short_hostname() -> str:
    return socket.gethostname().split('.')[0]
