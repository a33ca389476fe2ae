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

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class OptionKind(enum.Enum):
    """Options the driver knows how to handle."""

    THREADS = "threads"
    HASH = "hash"
    NUMBER = "number"
    STRING = "string"


# option name as sent by the engine -> kind
SUPPORTED_OPTIONS = {
    "Threads": OptionKind.THREADS,
    "Hash": OptionKind.HASH,
    "Contempt": OptionKind.NUMBER,
    "Skill Level": OptionKind.NUMBER,
    "SyzygyPath": OptionKind.STRING,
}


def is_option_supported(name: str) -> bool:
    """Return True if the option name is on the allow-list."""
    return name in SUPPORTED_OPTIONS


@dataclass(frozen=True)
class EngineOption:
    """An allow-listed option declared by the engine."""

    name: str
    kind: OptionKind
    type: str = ""
    default: Union[int, str] = ""
    min: Optional[int] = None
    max: Optional[int] = None

    def is_numeric(self) -> bool:
        return self.kind is not OptionKind.STRING

    def clamp(self, value: int) -> int:
        """Limit value to the range the engine declared."""
        if self.min is not None and value < self.min:
            return self.min
        if self.max is not None and value > self.max:
            return self.max
        return value


class OptionsCatalog:
    """Collect option declarations until the engine sends uciok."""

    def __init__(self):
        self._options: List[EngineOption] = []
        self._delivered = False

    def add(self, option: EngineOption):
        if self._delivered:
            logger.debug("option %s declared after uciok - ignored", option.name)
            return
        self._options.append(option)

    def complete(self) -> Optional[List[EngineOption]]:
        """Return the collected options the first time, None afterwards."""
        if self._delivered:
            return None
        self._delivered = True
        return list(self._options)

    def is_complete(self) -> bool:
        return self._delivered

    def __len__(self):
        return len(self._options)
