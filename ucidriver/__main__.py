# Copyright (C) 2013-2018 Jean-Francois Romang (jromang@posteo.de)
#                         Shivkumar Shivaji ()
#                         Jürgen Précour (LocutusOfPenguin@posteo.de)
#                         Johan Sjöblom (messier109@gmail.com)
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from ucidriver.engine import EngineEventSink, UciEngine, probe_options
from ucidriver.errors import EngineError
from ucidriver.preferences import read_preferences
from ucidriver.process import UciShell

logger = logging.getLogger(__name__)


class PrintingSink(EngineEventSink):
    """Print the analysis as it comes in."""

    def on_engine_name(self, name):
        print("engine: {0}".format(name))

    def on_new_line(self, line):
        if line.mate is not None:
            score = "#{0}".format(line.mate)
        else:
            score = "{0:+.2f}".format((line.score or 0) / 100.0)
        moves = line.san or line.moves
        print("depth {0:3d} {1:>7} {2}".format(line.depth, score, " ".join(moves)))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="ucidriver", description="drive a uci engine")
    parser.add_argument("engine", help="path of the engine executable")
    parser.add_argument("--engine-args", nargs="*", default=[], help="arguments for the engine")
    parser.add_argument("--log-level", default="warning", choices=["notset", "debug", "info", "warning", "error", "critical"])
    parser.add_argument("--log-file", help="log to the given file in the logs directory")
    parser.add_argument("--preferences", help="ini file with threads, hash, contempt, skill_level, syzygy_path")
    parser.add_argument("--remote-server", help="start the engine on this host over ssh")
    parser.add_argument("--remote-user", help="user for the remote host")
    parser.add_argument("--remote-key", help="private key file for the remote host")
    parser.add_argument("--remote-pass", help="password for the remote host")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("probe", help="list the supported options of the engine")
    analyse = commands.add_parser("analyse", help="analyse a position for some seconds")
    analyse.add_argument("target", nargs="?", default="startpos", help='position, e.g. "startpos moves e2e4"')
    analyse.add_argument("--seconds", type=float, default=5.0)
    return parser.parse_args(argv)


def setup_logging(args):
    log_format = "%(asctime)s.%(msecs)03d %(levelname)7s %(module)10s - %(funcName)s: %(message)s"
    handlers = None
    if args.log_file:
        os.makedirs("logs", exist_ok=True)
        handlers = [RotatingFileHandler("logs" + os.sep + args.log_file, maxBytes=1 * 1024 * 1024, backupCount=5)]
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


async def run(args) -> int:
    shell = UciShell(
        hostname=args.remote_server,
        username=args.remote_user,
        key_file=args.remote_key,
        password=args.remote_pass,
    )
    if args.command == "probe":
        options = await probe_options(args.engine, uci_shell=shell, args=args.engine_args)
        for option in options:
            print("{0}: default={1} min={2} max={3}".format(option.name, option.default, option.min, option.max))
        return 0

    preferences = read_preferences(args.preferences) if args.preferences else None
    async with UciEngine(
        args.engine, uci_shell=shell, args=args.engine_args, sink=PrintingSink(), preferences=preferences
    ) as engine:
        engine.set_target(args.target)
        engine.set_analyzing(True)
        await asyncio.sleep(args.seconds)
        engine.set_analyzing(False)
        await asyncio.sleep(0.5)  # give bestmove a moment
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args)
    # log the startup parameters but hide the password
    a_copy = dict(vars(args))
    a_copy["remote_pass"] = "*****"
    logger.debug("startup parameters: %s", a_copy)
    try:
        return asyncio.run(run(args))
    except EngineError as e:
        logger.error("%s", e)
        print("error: {0}".format(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
