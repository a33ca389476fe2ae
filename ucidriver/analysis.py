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
from typing import Callable, Optional

from ucidriver.errors import AnalysisStateError
from ucidriver.protocol import AnalysisTarget, Target, as_target
from ucidriver.registry import AnalysisRegistry, registry as default_registry

logger = logging.getLogger(__name__)


class AnalysisState(enum.Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    STOPPING = "stopping"  # stop sent, bestmove not seen yet


class AnalysisController:
    """
    Turn "analyse this target" requests into uci commands.

    A go cycle is outstanding from "go infinite" until the engine answers
    with bestmove. While it is outstanding the engine must not get a new
    position/go, so target swaps and restarts are parked in a single slot
    and resumed by best_move_found(). The registry is incremented when a
    cycle starts and decremented when it ends, nowhere else.
    """

    def __init__(self, send: Callable[[str], None], registry: AnalysisRegistry | None = None, name: str = "engine"):
        self.send = send
        self.registry = registry if registry is not None else default_registry
        self.whoami = name
        self.state = AnalysisState.IDLE
        self.target: Optional[AnalysisTarget] = None
        self._cycle_outstanding = False
        # continuation slot, only used while STOPPING
        self._parked_target: Optional[AnalysisTarget] = None
        self._restart = False

    @property
    def is_analyzing(self) -> bool:
        return self.state is AnalysisState.ANALYZING

    def has_outstanding_cycle(self) -> bool:
        return self._cycle_outstanding

    def set_target(self, target: Target) -> None:
        target = as_target(target)
        if target is None and self.state is not AnalysisState.IDLE:
            raise AnalysisStateError("cannot clear the target while analysing")
        if self.state is AnalysisState.IDLE:
            self.target = target
        elif self.state is AnalysisState.ANALYZING:
            logger.debug("%s new target while analysing - stopping first", self.whoami)
            self._parked_target = target
            self._restart = True
            self._stop()
        else:
            logger.debug("%s new target while stopping - parked until bestmove", self.whoami)
            self._parked_target = target

    def set_analyzing(self, analyzing: bool) -> None:
        if analyzing:
            if self.state is AnalysisState.IDLE:
                self._start()
            elif self.state is AnalysisState.STOPPING:
                logger.debug("%s restart requested - waiting for bestmove", self.whoami)
                self._restart = True
        else:
            if self.state is AnalysisState.ANALYZING:
                self._restart = False
                self._stop()
            elif self.state is AnalysisState.STOPPING:
                self._restart = False

    def best_move_found(self) -> None:
        """The engine finished the outstanding go cycle."""
        if not self._cycle_outstanding:
            logger.debug("%s bestmove without outstanding go - ignored", self.whoami)
            return
        self._cycle_outstanding = False
        self.registry.decrement()
        parked, restart = self._parked_target, self._restart
        self._parked_target = None
        self._restart = False
        self.state = AnalysisState.IDLE
        if parked is not None:
            self.target = parked
        if restart:
            self._start()

    def teardown(self) -> None:
        """Close the books on an outstanding cycle, e.g. when the engine goes away."""
        if self._cycle_outstanding:
            logger.debug("%s teardown while analysing - balancing registry", self.whoami)
            self._cycle_outstanding = False
            self.registry.decrement()
        self._parked_target = None
        self._restart = False
        self.state = AnalysisState.IDLE

    def _start(self) -> None:
        if self.target is None:
            raise AnalysisStateError("trying to analyse but no target set")
        self.send(self.target.command())
        self.state = AnalysisState.ANALYZING
        self._cycle_outstanding = True
        self.registry.increment()
        self.send("go infinite")

    def _stop(self) -> None:
        self.state = AnalysisState.STOPPING
        self.send("stop")
