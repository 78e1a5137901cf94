#!/usr/bin/python3
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
Dump all databases of a PostgreSQL cluster, one file per database,
rewriting only the files whose content changed since the last run.

Arguments:
    <database> ...                 Only dump these databases (default: all)

Options:
    --backup-dir=PATH              Directory to dump into
                                   default: first existing of $DEFAULT_BACKUP_DIRS

    --exclude=DB[,DB...]           Databases to skip (empty for none)
                                   default: $DEFAULT_EXCLUDE

    --order=size|name|random       Order in which databases are dumped
                                   default: $DEFAULT_ORDER

    --compressor=NAME              One of: $COMPRESSORS, none
                                   default: first usable of $PREFERENCE

    --threads=N                    Compressor threads (0 = compressor's own default)
    --level=N                      Compression level

    --inline                       Compress while dumping, instead of compressing
                                   only dumps that changed afterwards

    --host=HOST                    Dump a remote cluster
    --port=PORT
    --user=USER                    Connect as USER
    --run-as=USER                  Run pg_dump/psql via su USER (e.g., postgres)

    --hostname=NAME                Filename prefix (default: --host or local hostname)

    --pre-hook=PATH                Executable run before dumping
    --post-hook=PATH               Executable run after a fully clean run,
                                   with the changed files as arguments

    --conf=PATH                    Configuration file
                                   default: $CONF_PATH

    --simulate                     List what would be dumped, and where
    --logfile=PATH                 Also log to PATH
    -q --quiet                     Only log warnings and errors
    -v --verbose                   Log debugging output
    -h --help                      Show this help

Resolution order for configurable options:

  1) command line (highest precedence)
  2) environment ($ENV_PREFIX<OPTION>, e.g. ${ENV_PREFIX}BACKUP_DIR)
  3) configuration file ($CONF_PATH)
  4) built-in default (lowest precedence)

Configuration file format:

  <option-name> <value>

Exit codes:

$EXITCODES
"""
import os
import sys
import getopt
import signal
import logging

from string import Template
from typing import Optional, NoReturn

import conf
import compressor
import dumprun
import pgsql
from dumprun import ExitCode
from paths import ArtifactPaths, PathsError
from utils import is_writeable, fmt_timestamp

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

CONF_OPTIONS = ['backup-dir=', 'exclude=', 'order=', 'compressor=',
                'threads=', 'level=', 'inline',
                'host=', 'port=', 'user=', 'run-as=', 'hostname=',
                'pre-hook=', 'post-hook=']


def usage(e: Optional[str | Exception] = None) -> NoReturn:
    if e:
        print("error: " + str(e), file=sys.stderr)

    print("Usage: %s [ -options ] [ database ... ]" % sys.argv[0], file=sys.stderr)
    assert __doc__ is not None
    tpl = Template(__doc__.strip())
    exitcodes = "\n".join(f"    {int(code):>3}  {code.name}" for code in ExitCode)
    print(tpl.substitute(DEFAULT_BACKUP_DIRS=", ".join(conf.DEFAULT_BACKUP_DIRS),
                         DEFAULT_EXCLUDE=",".join(conf.DEFAULT_EXCLUDE),
                         DEFAULT_ORDER=conf.Conf.order,
                         COMPRESSORS=", ".join(compressor.COMPRESSORS),
                         PREFERENCE=", ".join(compressor.PREFERENCE),
                         CONF_PATH=conf.DEFAULT_PATH,
                         ENV_PREFIX=conf.ENV_PREFIX,
                         EXITCODES=exitcodes), file=sys.stderr)
    sys.exit(ExitCode.CONF_ERROR if e else 0)


def fatal(e: str | Exception, exitcode: int = ExitCode.CONF_ERROR) -> NoReturn:
    print("error: " + str(e), file=sys.stderr)
    sys.exit(exitcode)


def _sigterm(signum, frame) -> NoReturn:
    raise KeyboardInterrupt()


def setup_logging(level: int, logfile: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if logfile:
        with open(logfile, "a") as fob:
            print("\n" + fmt_timestamp(), file=fob)
        handlers.append(logging.FileHandler(logfile))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def simulate(config: conf.Conf) -> None:
    backup_dir = config.find_backup_dir() or config.backup_dir or conf.DEFAULT_BACKUP_DIRS[0]
    comp = compressor.select(config.compressor, config.threads, config.level)
    cluster = config.cluster()
    hostname = config.effective_hostname()

    print(f"# backup dir: {backup_dir}")
    print(f"# compressor: {comp or 'none'} ({'inline' if config.inline else 'deferred'})")
    for target in dumprun.targets(cluster, config):
        try:
            paths = ArtifactPaths.create(backup_dir, hostname, cluster.KIND, target.name,
                                         comp.EXTENSION if comp else '',
                                         is_global=target.is_global)
        except PathsError as e:
            print(f"{target.name!r}: skipped ({e})")
            continue

        state = "update" if paths.has_final() else "new"
        print(f"{target.name}: {' '.join(cluster.dump_command(target.name, target.is_global))}"
              f" -> {paths.final} ({state})")


def main(argv: Optional[list[str]] = None) -> None:
    if argv is None:
        argv = sys.argv[1:]

    try:
        opts, args = getopt.gnu_getopt(argv, 'qvh',
                                       ['help', 'quiet', 'verbose',
                                        'conf=', 'logfile=', 'simulate']
                                       + CONF_OPTIONS)
    except getopt.GetoptError as e:
        usage(e)

    conf_path = None
    opt_simulate = False
    opt_logfile = None
    opt_level = logging.INFO

    overrides: dict[str, str | bool] = {}
    for opt, val in opts:
        if opt in ('-h', '--help'):
            usage()

        elif opt in ('-q', '--quiet'):
            opt_level = logging.WARNING

        elif opt in ('-v', '--verbose'):
            opt_level = logging.DEBUG

        elif opt == '--conf':
            if not os.path.exists(val):
                fatal(f"--conf={val} does not exist")
            conf_path = val

        elif opt == '--logfile':
            if not is_writeable(val):
                fatal(f"logfile '{val}' is not writeable")
            opt_logfile = val

        elif opt == '--simulate':
            opt_simulate = True

        elif opt == '--inline':
            overrides['inline'] = True

        else:
            overrides[opt[2:]] = val

    if args:
        overrides['databases'] = tuple(args)

    setup_logging(opt_level, opt_logfile)

    try:
        config = conf.Conf.load(conf_path, overrides=overrides)
    except (conf.Error, OSError) as e:
        fatal(e)

    signal.signal(signal.SIGTERM, _sigterm)

    try:
        if opt_simulate:
            try:
                simulate(config)
            except compressor.UnknownCompressor as e:
                fatal(e, ExitCode.UNKNOWN_COMPRESSOR)
            except compressor.NoCompressorAvailable as e:
                fatal(e, ExitCode.NO_COMPRESSOR)
            except compressor.InvalidLevel as e:
                fatal(e, ExitCode.CONF_ERROR)
            except pgsql.Error as e:
                fatal(e, ExitCode.CATALOG_FAILED)
            return

        outcome = dumprun.run(config)

    except KeyboardInterrupt:
        logging.error("interrupted, leaving work files for the next run to clean up")
        sys.exit(ExitCode.INTERRUPTED)

    if outcome.results:
        print(outcome.summary(), file=sys.stderr)

    sys.exit(int(outcome.exitcode))


if __name__ == "__main__":
    main()
