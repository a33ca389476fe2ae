#!/usr/bin/env python3

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

import asyncio
import os
import signal
import sys
import tempfile
import unittest
from unittest.mock import patch

from mock_transport import UCI_RESPONSE, MockLauncher

from ucidriver.analysis import AnalysisState
from ucidriver.engine import EngineEventSink, QueueEventSink, UciEngine, probe_options
from ucidriver.errors import AnalysisStateError, WriteError
from ucidriver.options import OptionKind
from ucidriver.preferences import EnginePreferences
from ucidriver.protocol import AnalysisTarget, CurrentMove, EngineIdentity, OptionsReady, PrincipalVariation
from ucidriver.registry import AnalysisRegistry

FAKE_ENGINE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "fixtures", "fake_engine.py")

T1 = "startpos moves e2e4"
T2 = "startpos moves d2d4"


class RecordingSink(EngineEventSink):
    def __init__(self):
        self.current_moves = []
        self.lines = []
        self.names = []
        self.options = []

    def on_current_move(self, move, number, depth):
        self.current_moves.append((move, number, depth))

    def on_new_line(self, line):
        self.lines.append(line)

    def on_engine_name(self, name):
        self.names.append(name)

    def on_options_ready(self, options):
        self.options.append(options)


class TestEngine(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = AnalysisRegistry()
        self.sink = RecordingSink()
        self.launcher = MockLauncher()

    async def open(self, **kwargs) -> UciEngine:
        kwargs.setdefault("sink", self.sink)
        kwargs.setdefault("registry", self.registry)
        kwargs.setdefault("preferences", EnginePreferences())
        eng = UciEngine("some_test_engine", **kwargs)
        with patch.object(asyncio.get_running_loop(), "subprocess_exec", self.launcher):
            await eng.open_engine()
        return eng

    def setoptions(self):
        return [line for line in self.launcher.transport.written if line.startswith("setoption")]

    async def test_engine_name_and_options(self):
        eng = await self.open()
        self.assertEqual("MockFish 1.0", eng.get_name())
        self.assertEqual(["MockFish 1.0"], self.sink.names)
        self.assertEqual(["Threads", "Hash", "Skill Level", "SyzygyPath"], [option.name for option in eng.get_options()])
        self.assertEqual(1, len(self.sink.options))
        self.assertEqual(eng.get_options(), self.sink.options[0])
        self.assertEqual(OptionKind.HASH, eng.get_options()[1].kind)
        self.assertEqual("uci", self.launcher.transport.written[0])
        self.assertTrue(eng.loaded_ok())

    async def test_preferences_sent_for_declared_options(self):
        await self.open(preferences=EnginePreferences(threads=64, hash=128, contempt=20, skill_level=5, syzygy_path="/tb"))
        self.assertEqual(
            [
                "setoption name Threads value 8",
                "setoption name Hash value 128",
                "setoption name Skill Level value 5",
                "setoption name SyzygyPath value /tb",
            ],
            self.setoptions(),
        )

    async def test_preferences_wait_for_uciok(self):
        self.launcher = MockLauncher({})
        await self.open(preferences=EnginePreferences(threads=64, hash=128, contempt=20, skill_level=5, syzygy_path="/tb"))
        self.assertEqual(["uci"], self.launcher.transport.written)
        self.launcher.transport.feed(*UCI_RESPONSE)
        self.assertEqual(
            [
                "setoption name Threads value 8",
                "setoption name Hash value 128",
                "setoption name Skill Level value 5",
                "setoption name SyzygyPath value /tb",
            ],
            self.setoptions(),
        )

    async def test_preferences_read_from_uci_file(self):
        with tempfile.TemporaryDirectory() as directory:
            file = os.path.join(directory, "engine")
            with open(file + ".uci", "w") as ini:
                ini.write("[engine]\nhash = 512\n")
            eng = UciEngine(file, sink=self.sink, registry=self.registry)
            with patch.object(asyncio.get_running_loop(), "subprocess_exec", self.launcher):
                await eng.open_engine()
        self.assertEqual(512, eng.preferences.hash)
        self.assertIn("setoption name Hash value 512", self.setoptions())

    async def test_options_probe_sends_no_preferences(self):
        await self.open(apply_preferences=False)
        self.assertEqual([], self.setoptions())

    async def test_uciok_twice_delivers_options_once(self):
        eng = await self.open()
        self.launcher.transport.feed("uciok")
        self.assertEqual(1, len(self.sink.options))
        self.assertEqual(4, len(eng.get_options()))

    async def test_preferences_refused_while_analyzing(self):
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        before = len(self.setoptions())
        with self.assertLogs("ucidriver.engine", level="WARNING"):
            self.assertFalse(eng.apply_preferences(EnginePreferences(threads=2)))
        self.assertEqual(before, len(self.setoptions()))

    async def test_set_option(self):
        eng = await self.open(apply_preferences=False)
        eng.set_option("Ponder", False)
        eng.set_option("Threads", 3)
        eng.set_option("SyzygyPath", "")
        self.assertEqual(
            [
                "setoption name Ponder value false",
                "setoption name Threads value 3",
                "setoption name SyzygyPath value <empty>",
            ],
            self.setoptions(),
        )
        with self.assertRaises(WriteError):
            eng.set_option("SyzygyPath", "/tb\ngo infinite")

    async def test_analysis_events(self):
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        transport = self.launcher.transport
        self.assertEqual(["position startpos moves e2e4", "go infinite"], transport.written[-2:])
        transport.feed("info depth 5 currmove e7e5 currmovenumber 1", "info depth 5 score cp 20 pv e7e5 g1f3")
        self.assertEqual([("e7e5", 1, 5)], self.sink.current_moves)
        self.assertEqual(("e5", "Nf3"), eng.latest_line.san)
        self.assertEqual([eng.latest_line], self.sink.lines)
        self.assertEqual(1, self.registry.count)

    async def test_swap_target(self):
        eng = await self.open()
        transport = self.launcher.transport
        eng.set_target(T1)
        eng.set_analyzing(True)
        transport.feed("info depth 3 score cp 10 pv e7e5")
        transport.written.clear()

        eng.set_target(T2)
        self.assertEqual(["stop"], transport.written)
        self.assertIsNone(eng.latest_line)
        self.assertEqual(AnalysisState.STOPPING, eng.state)
        # a late line still belongs to the old target
        transport.feed("info depth 4 score cp 12 pv e7e5 g1f3")
        self.assertEqual(("e5", "Nf3"), eng.latest_line.san)
        self.assertEqual(1, self.registry.count)

        transport.feed("bestmove e7e5")
        self.assertEqual(["stop", "position startpos moves d2d4", "go infinite"], transport.written)
        self.assertEqual(AnalysisTarget(T2), eng.target)
        self.assertTrue(eng.is_analyzing())
        self.assertEqual(1, self.registry.count)

    async def test_swap_with_immediate_bestmove(self):
        self.launcher = MockLauncher({"uci": UCI_RESPONSE, "stop": ["bestmove e7e5"]})
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        eng.set_target(T2)
        self.assertEqual(
            ["position startpos moves e2e4", "go infinite", "stop", "position startpos moves d2d4", "go infinite"],
            self.launcher.transport.written[-5:],
        )
        self.assertEqual(1, self.registry.count)

    async def test_analyzing_twice_sends_go_once(self):
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        eng.set_analyzing(True)
        self.assertEqual(1, self.launcher.transport.written.count("go infinite"))

    async def test_analyzing_without_target(self):
        eng = await self.open()
        with self.assertRaises(AnalysisStateError):
            eng.set_analyzing(True)

    async def test_analyzing_before_open(self):
        eng = UciEngine("some_test_engine", registry=self.registry)
        eng.set_target(T1)
        with self.assertRaises(WriteError):
            eng.set_analyzing(True)
        self.assertEqual(0, self.registry.count)

    async def test_registry_counts_instances(self):
        first = await self.open()
        second = await self.open()
        first.set_target(T1)
        second.set_target(T2)
        first.set_analyzing(True)
        second.set_analyzing(True)
        self.assertEqual(2, self.registry.count)
        first.set_analyzing(False)
        self.assertEqual(2, self.registry.count)
        self.launcher.transports[0].feed("bestmove e7e5")
        self.assertEqual(1, self.registry.count)
        second.terminate()
        self.assertEqual(0, self.registry.count)

    async def test_terminate_while_analyzing(self):
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        eng.terminate()
        eng.terminate()
        self.assertEqual(0, self.registry.count)
        self.assertEqual([signal.SIGINT, "kill"], self.launcher.transport.signals)
        self.assertEqual(AnalysisState.IDLE, eng.state)

    async def test_engine_crash_while_analyzing(self):
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        with self.assertLogs("ucidriver.engine", level="WARNING"):
            self.launcher.transport.exit(139)
        self.assertEqual(0, self.registry.count)
        self.assertFalse(eng.loaded_ok())

    async def test_quit(self):
        eng = await self.open()
        eng.set_target(T1)
        eng.set_analyzing(True)
        await eng.quit()
        self.assertEqual("quit", self.launcher.transport.written[-1])
        self.assertEqual(0, self.registry.count)
        self.assertEqual([], self.launcher.transport.signals)

    async def test_context_manager(self):
        with patch.object(asyncio.get_running_loop(), "subprocess_exec", self.launcher):
            async with UciEngine("some_test_engine", registry=self.registry, preferences=EnginePreferences()) as eng:
                self.assertEqual("MockFish 1.0", eng.get_name())
        self.assertEqual("quit", self.launcher.transport.written[-1])

    async def test_queue_sink_keeps_order(self):
        sink = QueueEventSink()
        eng = await self.open(sink=sink)
        eng.set_target(T1)
        eng.set_analyzing(True)
        self.launcher.transport.feed("info depth 1 currmove e7e5 currmovenumber 1", "info depth 1 score cp 5 pv c7c5")
        events = [sink.queue.get_nowait() for _ in range(sink.queue.qsize())]
        self.assertEqual(EngineIdentity("MockFish 1.0"), events[0])
        self.assertIsInstance(events[1], OptionsReady)
        self.assertEqual(4, len(events[1].options))
        self.assertEqual(CurrentMove("e7e5", 1, 1), events[2])
        self.assertIsInstance(events[3], PrincipalVariation)
        self.assertEqual(("c5",), events[3].line.san)

    async def test_probe_options(self):
        with patch.object(asyncio.get_running_loop(), "subprocess_exec", self.launcher):
            options = await probe_options("some_test_engine")
        self.assertEqual(["Threads", "Hash", "Skill Level", "SyzygyPath"], [option.name for option in options])
        self.assertEqual(["uci"], self.launcher.transport.written)
        self.assertEqual([signal.SIGINT, "kill"], self.launcher.transport.signals)

    async def test_probe_options_timeout(self):
        self.launcher = MockLauncher({})
        with patch.object(asyncio.get_running_loop(), "subprocess_exec", self.launcher):
            with self.assertLogs("ucidriver.engine", level="WARNING"):
                options = await probe_options("some_test_engine", timeout=0.05)
        self.assertEqual([], options)


class TestEngineProcessIntegration(unittest.IsolatedAsyncioTestCase):
    """Run the scripted fake engine as a real child process."""

    async def wait_for(self, condition, timeout=5.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while not condition():
            if asyncio.get_running_loop().time() > deadline:
                self.fail("condition not met in time")
            await asyncio.sleep(0.02)

    async def test_analyse_and_swap(self):
        registry = AnalysisRegistry()
        sink = RecordingSink()
        eng = UciEngine(
            sys.executable, args=[FAKE_ENGINE], sink=sink, registry=registry, preferences=EnginePreferences(threads=2)
        )
        await eng.open_engine()
        try:
            await self.wait_for(lambda: sink.options)
            self.assertEqual("FakeEngine 1.0", eng.get_name())
            self.assertEqual(["Threads", "Hash"], [option.name for option in sink.options[0]])

            eng.set_target(AnalysisTarget("startpos"))
            eng.set_analyzing(True)
            await self.wait_for(lambda: sink.lines and sink.current_moves)
            self.assertEqual([("e2e4", 1, 1)], sink.current_moves)
            self.assertEqual(("e4", "e5"), sink.lines[0].san)

            eng.set_target(T1)
            self.assertLessEqual(registry.count, 1)
            await self.wait_for(lambda: eng.target == AnalysisTarget(T1) and eng.is_analyzing())
            self.assertEqual(1, registry.count)

            eng.set_analyzing(False)
            await self.wait_for(lambda: eng.state is AnalysisState.IDLE)
            self.assertEqual(0, registry.count)
        finally:
            await eng.quit()
        self.assertFalse(eng.loaded_ok())

    async def test_crash_balances_registry(self):
        registry = AnalysisRegistry()
        eng = UciEngine(sys.executable, args=[FAKE_ENGINE, "--crash-on-go"], registry=registry, apply_preferences=False)
        await eng.open_engine()
        eng.set_target(T1)
        with self.assertLogs("ucidriver.engine", level="WARNING"):
            eng.set_analyzing(True)
            self.assertEqual(1, registry.count)
            await eng.process.wait(5.0)
        self.assertEqual(0, registry.count)
        eng.terminate()
