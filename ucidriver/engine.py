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

import asyncio
import logging
from typing import Iterable, List, Optional

from ucidriver.analysis import AnalysisController, AnalysisState
from ucidriver.errors import WriteError
from ucidriver.framer import LineFramer
from ucidriver.options import EngineOption, OptionsCatalog
from ucidriver.preferences import EnginePreferences, read_preferences, read_preferences_file
from ucidriver.process import EngineProcess, UciShell
from ucidriver.protocol import (
    EMPTY_VALUE,
    AnalysisTarget,
    BestMoveFound,
    CurrentMove,
    EngineEvent,
    EngineIdentity,
    OptionDeclared,
    OptionsReady,
    PrincipalVariation,
    Target,
    UciLine,
    decode,
)
from ucidriver.registry import AnalysisRegistry, registry as default_registry

ENGINE_PROBE_TIMEOUT = 5.0  # seconds to wait for uciok when probing options

logger = logging.getLogger(__name__)


class EngineEventSink(object):
    """Receives what the engine reports. Override the calls you need.

    on_options_ready(options) is optional: it is only called if the sink
    defines it.
    """

    def on_current_move(self, move: str, number: int, depth: int):
        pass

    def on_new_line(self, line: UciLine):
        pass

    def on_engine_name(self, name: str):
        pass


class QueueEventSink(EngineEventSink):
    """Deliver the engine events into an asyncio queue, in the order received.

    Meant for exactly one consumer per engine.
    """

    def __init__(self, queue: asyncio.Queue | None = None):
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()

    def on_current_move(self, move: str, number: int, depth: int):
        self.queue.put_nowait(CurrentMove(move, number, depth))

    def on_new_line(self, line: UciLine):
        self.queue.put_nowait(PrincipalVariation(line))

    def on_engine_name(self, name: str):
        self.queue.put_nowait(EngineIdentity(name))

    def on_options_ready(self, options: List[EngineOption]):
        self.queue.put_nowait(OptionsReady(tuple(options)))

    async def get(self) -> EngineEvent:
        return await self.queue.get()


class UciEngine(object):
    """Handle the uci engine communication."""

    def __init__(
        self,
        file: str,
        uci_shell: UciShell | None = None,
        args: Iterable[str] = (),
        sink: EngineEventSink | None = None,
        registry: AnalysisRegistry | None = None,
        preferences: EnginePreferences | None = None,
        apply_preferences: bool = True,
        engine_debug_name: str = "engine",
    ):
        """initialise engine with file and launch arguments, call open_engine() next"""
        super(UciEngine, self).__init__()
        self.file = file
        self.args = list(args)
        self.shell = uci_shell
        self.sink = sink if sink is not None else EngineEventSink()
        self.registry = registry if registry is not None else default_registry
        self.preferences = preferences
        self.should_apply_preferences = apply_preferences  # False for an options probe
        self.whoami = engine_debug_name
        self.process: EngineProcess | None = None
        self.engine_name = "NN"
        self.options: List[EngineOption] = []  # filled when engine sends uciok
        self.latest_line: UciLine | None = None
        self.framer = LineFramer()
        self.catalog = OptionsCatalog()
        self.analysis = AnalysisController(self._send, self.registry, engine_debug_name)

    async def __aenter__(self) -> "UciEngine":
        await self.open_engine()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.quit()

    async def open_engine(self):
        """Start the engine and ask for its options. Raises LaunchError.

        The preferences are sent once the engine answered with uciok.
        """
        self.process = await EngineProcess.launch(
            self.file,
            self.args,
            shell=self.shell,
            on_data=self._data_received,
            on_exit=self._process_exited,
            name=self.whoami,
        )
        self._send("uci")

    def loaded_ok(self) -> bool:
        """check if engine was loaded and is still running"""
        return self.process is not None and self.process.is_running()

    def get_name(self) -> str:
        """Get engine name that was reported by engine"""
        return self.engine_name

    def get_options(self) -> List[EngineOption]:
        """Get the supported options the engine declared."""
        return self.options

    # analysis

    @property
    def target(self) -> Optional[AnalysisTarget]:
        return self.analysis.target

    @property
    def state(self) -> AnalysisState:
        return self.analysis.state

    def is_analyzing(self) -> bool:
        return self.analysis.is_analyzing

    def set_target(self, target: Target):
        """Analyse target from now on, restarting the analysis if running."""
        if self.analysis.is_analyzing:
            self.latest_line = None
        self.analysis.set_target(target)

    def set_analyzing(self, analyzing: bool):
        self.analysis.set_analyzing(analyzing)

    # options

    def set_option(self, name: str, value):
        """Send setoption for name with value."""
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif value == "":
            value = EMPTY_VALUE
        self._send("setoption name {0} value {1}".format(name, value))

    def apply_preferences(self, preferences: EnginePreferences | None = None) -> bool:
        """Send the preference values to the engine. Refused while analysing."""
        if self.analysis.has_outstanding_cycle():
            logger.warning("%s could not apply preferences because engine is analysing", self.whoami)
            return False
        if preferences is None:
            preferences = self.preferences if self.preferences is not None else self._load_preferences()
        self.preferences = preferences
        if self.catalog.is_complete():
            # issue 85 - dont send options the engine did not declare
            preferences = preferences.clamp(self.options)
            declared = {option.name for option in self.options}
            values = [(name, value) for name, value in preferences.as_options() if name in declared]
        else:
            values = preferences.as_options()
        for name, value in values:
            self.set_option(name, value)
        return True

    def _load_preferences(self) -> EnginePreferences:
        """read <engine file>.uci like the engine ini files"""
        filename = self.file + ".uci"
        if self.shell is None or self.shell.get() is None:
            return read_preferences(filename)
        try:
            with self.shell.open(filename, "r") as file:
                return read_preferences_file(file, filename)
        except OSError:
            logger.debug("%s no remote preferences file %s", self.whoami, filename)
            return EnginePreferences()

    # shutdown

    def terminate(self):
        """Kill the engine now. Safe to call more than once."""
        self.analysis.teardown()
        if self.process:
            self.process.terminate()

    async def quit(self):
        """Quit engine, escalating to terminate and kill if it does not listen."""
        self.analysis.teardown()
        if self.process:
            await self.process.shutdown()

    # engine output

    def _send(self, line: str):
        if self.process is None:
            raise WriteError("no engine loaded")
        self.process.send(line)

    def _data_received(self, data: bytes):
        for line in self.framer.feed(data):
            self._line_received(line)

    def _line_received(self, line: str):
        logger.debug("%s >> %s", self.whoami, line)
        self._dispatch(decode(line, self.analysis.target))

    def _dispatch(self, event: EngineEvent):
        if isinstance(event, CurrentMove):
            self.sink.on_current_move(event.move, event.number, event.depth)
        elif isinstance(event, PrincipalVariation):
            self.latest_line = event.line
            self.sink.on_new_line(event.line)
        elif isinstance(event, BestMoveFound):
            self.analysis.best_move_found()
        elif isinstance(event, EngineIdentity):
            self.engine_name = event.name
            self.sink.on_engine_name(event.name)
        elif isinstance(event, OptionDeclared):
            self.catalog.add(event.option)
        elif isinstance(event, OptionsReady):
            options = self.catalog.complete()
            if options is None:
                logger.debug("%s uciok seen twice - ignored", self.whoami)
                return
            self.options = options
            logger.debug("%s supported options %s", self.whoami, [option.name for option in options])
            if self.should_apply_preferences:
                self.apply_preferences()
            on_options_ready = getattr(self.sink, "on_options_ready", None)
            if on_options_ready is not None:
                on_options_ready(options)

    def _process_exited(self, returncode: Optional[int]):
        if self.framer.pending:
            logger.debug("%s dropping unterminated output %r", self.whoami, self.framer.pending)
            self.framer.reset()
        if self.analysis.has_outstanding_cycle():
            logger.warning("%s engine exited while analysing (exit code: %s)", self.whoami, returncode)
        self.analysis.teardown()


class _OptionsWaiter(EngineEventSink):
    def __init__(self, future: asyncio.Future):
        self.future = future

    def on_options_ready(self, options: List[EngineOption]):
        if not self.future.done():
            self.future.set_result(options)


async def probe_options(
    file: str,
    uci_shell: UciShell | None = None,
    args: Iterable[str] = (),
    timeout: float = ENGINE_PROBE_TIMEOUT,
) -> List[EngineOption]:
    """Start the engine only to learn which supported options it has."""
    future = asyncio.get_running_loop().create_future()
    engine = UciEngine(
        file,
        uci_shell=uci_shell,
        args=args,
        sink=_OptionsWaiter(future),
        apply_preferences=False,
        engine_debug_name="probe",
    )
    await engine.open_engine()
    try:
        return await asyncio.wait_for(future, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("engine %s did not send uciok within %.1fs", file, timeout)
        return []
    finally:
        engine.terminate()
