"""
Runs a command under a supervisor, logging what it writes to its pipes.
"""

import argparse
import logging
from   pathlib import Path
import sys

import orjson

from   .exc import ProcpipeError
from   .loop import default_loop
from   .spec import Proc, Stdio, STDIN, STDOUT, STDERR
from   .supervisor import Capture, Supervisor, FROM_ENV, log_event

LOG_FMT = "%(asctime)s [%(levelname)-7s] %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

logger = logging.getLogger(__name__)

#-------------------------------------------------------------------------------

def make_slot(mode, fd):
    match mode:
        case "ignore":
            return Stdio.Ignore()
        case "inherit":
            return Stdio.Inherit(fd)
        case "pipe":
            return Stdio.Pipe(readable=fd == STDIN, writable=fd != STDIN)


def load_proc(args):
    if args.spec is not None:
        with open(args.spec, "rb") as file:
            jso = orjson.loads(file.read())
        return Proc.from_jso(jso)

    if len(args.argv) == 0:
        raise ValueError("no command given")
    stdio = Stdio(
        make_slot(args.stdin, STDIN),
        make_slot(args.stdout, STDOUT),
        make_slot(args.stderr, STDERR),
    )
    return Proc(args.argv, exe=args.exe, stdio=stdio)


def main():
    MODES = ("ignore", "inherit", "pipe")

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--stdin", metavar="MODE", choices=MODES, default="ignore",
        help="child stdin: ignore, inherit, or pipe [def: ignore]")
    parser.add_argument(
        "--stdout", metavar="MODE", choices=MODES, default="pipe",
        help="child stdout: ignore, inherit, or pipe [def: pipe]")
    parser.add_argument(
        "--stderr", metavar="MODE", choices=MODES, default="inherit",
        help="child stderr: ignore, inherit, or pipe [def: inherit]")
    parser.add_argument(
        "--exe", metavar="PATH", default=None,
        help="run PATH [def: argv[0]]")
    parser.add_argument(
        "--buffer-size", metavar="BYTES", type=int, default=FROM_ENV,
        help="pipe read size [def: $PROCPIPE_BUFFER_SIZE or 65536]")
    parser.add_argument(
        "--timeout", metavar="SECS", type=float, default=None,
        help="kill the process after SECS")
    parser.add_argument(
        "--spec", metavar="FILE", type=Path, default=None,
        help="read the process spec from JSON FILE")
    parser.add_argument(
        "--print", action="store_true", default=False,
        help="print the outcome as JSON")
    parser.add_argument(
        "--log-level", metavar="LEVEL", default="INFO", type=str.upper,
        choices=LOG_LEVELS,
        help=f"log at LEVEL: {', '.join(LOG_LEVELS)} [def: INFO]")
    parser.add_argument(
        "argv", nargs=argparse.REMAINDER,
        help="command to run")
    args = parser.parse_args()
    if args.argv[: 1] == ["--"]:
        args.argv = args.argv[1 :]

    logging.basicConfig(
        level   =args.log_level,
        format  =LOG_FMT,
    )

    try:
        proc = load_proc(args)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    capture = Capture(on_event=log_event)
    supervisor = Supervisor(
        proc,
        loop        =default_loop(),
        on_event    =capture,
        buffer_size =args.buffer_size,
        timeout     =args.timeout,
    )
    try:
        outcome = supervisor.run()
    except ProcpipeError as exc:
        logger.error(str(exc))
        raise SystemExit(1)

    if args.print:
        jso = outcome.to_jso()
        jso["fds"] = {
            str(fd): capture.text(fd)
            for fd in outcome.closed
        }
        sys.stdout.buffer.write(orjson.dumps(jso, option=orjson.OPT_INDENT_2))
        sys.stdout.buffer.write(b"\n")


if __name__ == "__main__":
    main()


