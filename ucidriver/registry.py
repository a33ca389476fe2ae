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

import logging
import threading

logger = logging.getLogger(__name__)


class AnalysisRegistry:
    """Count the engine instances with an analysis cycle in flight.

    Other parts of an application read the count to keep away from
    operations that must not run while any engine analyses (e.g. changing
    engine settings). Mutation is serialised, reading never blocks.
    """

    def __init__(self):
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def increment(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def decrement(self) -> int:
        with self._lock:
            if self._count == 0:
                # every decrement is paired with an increment - should not happen
                logger.error("analysis registry decremented below zero - ignored")
                return 0
            self._count -= 1
            return self._count

    def reset(self):
        """Start over at zero, for process start and tests."""
        with self._lock:
            self._count = 0


registry = AnalysisRegistry()  # process wide default


def current_analyzing_count() -> int:
    """Return how many engines of this process are analysing right now."""
    return registry.count
