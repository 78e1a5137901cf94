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
import logging
import subprocess
from typing import Sequence

from utils import is_executable


class HookError(Exception):
    pass


def run_hook(fpath: str, args: Sequence[str] = ()) -> None:
    if not is_executable(fpath):
        raise HookError(f"`{fpath}` is not an executable file")

    logging.info(f"running hook {fpath} ({len(args)} arguments)")
    try:
        p = subprocess.run([fpath, *args])
    except OSError as e:
        raise HookError(f"`{fpath}` failed to run: {e}") from e

    if p.returncode != 0:
        raise HookError(f"`{fpath}` non-zero exitcode ({p.returncode})")


class Hooks:
    """
    Dump run hook invocation:

        pre hook                    no arguments, failure is only logged
        dump every target
        post hook                   only after a fully clean run, gets
                                    the changed files as arguments

    """

    def __init__(self, pre: str = '', post: str = ''):
        self.pre_hook = pre
        self.post_hook = post

    def pre(self) -> bool:
        if not self.pre_hook:
            return True

        try:
            run_hook(self.pre_hook)
        except HookError as e:
            logging.warning(f"pre hook: {e} (continuing anyway)")
            return False

        return True

    def post(self, changed: Sequence[str]) -> bool:
        if not self.post_hook:
            return True

        try:
            run_hook(self.post_hook, changed)
        except HookError as e:
            logging.error(f"post hook: {e}")
            return False

        return True
