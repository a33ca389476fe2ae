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

from __future__ import annotations

import configparser
import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Tuple, Union

from ucidriver.options import EngineOption

logger = logging.getLogger(__name__)

# ini key -> uci option name, in the order the options are sent
PREFERENCE_OPTIONS = (
    ("threads", "Threads"),
    ("hash", "Hash"),
    ("contempt", "Contempt"),
    ("skill_level", "Skill Level"),
    ("syzygy_path", "SyzygyPath"),
)


@dataclass(frozen=True)
class EnginePreferences:
    """User chosen values for the options the driver sets on an engine."""

    threads: int = 1
    hash: int = 16
    contempt: int = 0
    skill_level: int = 20
    syzygy_path: str = ""

    def as_options(self) -> List[Tuple[str, Union[int, str]]]:
        """(uci option name, value) pairs in sending order"""
        return [(option, getattr(self, key)) for key, option in PREFERENCE_OPTIONS]

    def clamp(self, options: Iterable[EngineOption]) -> "EnginePreferences":
        """Return a copy with numeric values limited to what the engine declared."""
        by_name = {option.name: option for option in options}
        changes = {}
        for key, name in PREFERENCE_OPTIONS:
            option = by_name.get(name)
            value = getattr(self, key)
            if option is not None and option.is_numeric() and isinstance(value, int):
                clamped = option.clamp(value)
                if clamped != value:
                    logger.debug("preference %s=%d clamped to %d", name, value, clamped)
                    changes[key] = clamped
        return replace(self, **changes)


def read_preferences(filename: str) -> EnginePreferences:
    """
    Read preferences from an ini file.

    The last section of the file is used. A missing file gives the defaults,
    a value that is not a number is logged and replaced by its default.
    """
    parser = configparser.ConfigParser()
    if not parser.read(filename):
        logger.debug("no preferences file %s - using defaults", filename)
        return EnginePreferences()
    return _from_parser(parser, filename)


def read_preferences_file(file, source: str = "<preferences>") -> EnginePreferences:
    """Like read_preferences, for an already opened file (e.g. on a remote shell)."""
    parser = configparser.ConfigParser()
    parser.read_file(file, source=source)
    return _from_parser(parser, source)


def _from_parser(parser: configparser.ConfigParser, source: str) -> EnginePreferences:
    if not parser.sections():
        logger.debug("no preferences in %s - using defaults", source)
        return EnginePreferences()

    section = parser[parser.sections().pop()]
    defaults = EnginePreferences()
    values = {}
    for key, _ in PREFERENCE_OPTIONS:
        if key not in section:
            continue
        if isinstance(getattr(defaults, key), int):
            try:
                values[key] = section.getint(key)
            except ValueError:
                logger.warning("invalid value for %s in %s: %s", key, source, section[key])
        else:
            values[key] = section[key].strip()
    return EnginePreferences(**values)
