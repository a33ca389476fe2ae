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
import functools
import logging
import signal
import subprocess
from typing import Callable, Iterable, List, Optional

import paramiko
import spur  # type: ignore

from ucidriver.errors import LaunchError, WriteError
from ucidriver.framer import LineFramer

# Seconds to wait for an engine to exit before escalating.
ENGINE_QUIT_TIMEOUT = 3.0  # waiting seconds for a normal engine to quit
ENGINE_TERMINATE_TIMEOUT = 2.0  # if not send SIGTERM and wait a bit
ENGINE_KILL_TIMEOUT = 1.0  # finally send SIGKILL, wait time gives OS some time

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
ExitCallback = Callable[[Optional[int]], None]


class UciShell(object):
    """Handle the shell an engine is started in - local or over ssh."""

    def __init__(self, hostname=None, username=None, key_file=None, password=None):
        super(UciShell, self).__init__()
        if hostname:
            logger.info("connecting to [%s]", hostname)
            shell_params = {
                "hostname": hostname,
                "username": username,
                "missing_host_key": paramiko.AutoAddPolicy(),
            }
            if key_file:
                shell_params["private_key_file"] = key_file
            else:
                shell_params["password"] = password
            self._shell = spur.SshShell(**shell_params)
        else:
            self._shell = None

    def __getattr__(self, attr):
        """Dispatch unknown attributes to SshShell."""
        return getattr(self._shell, attr)

    def get(self):
        return self if self._shell is not None else None

    async def spawn(self, command: List[str], protocol: "EngineProcess") -> "EngineProcess":
        """Start command on the remote host and connect it to protocol."""
        loop = asyncio.get_running_loop()
        transport = _SshTransport(loop, protocol)
        try:
            process = await loop.run_in_executor(
                None,
                functools.partial(
                    self._shell.spawn,
                    command,
                    stdout=_PipeWriter(loop, protocol, 1),
                    stderr=_PipeWriter(loop, protocol, 2),
                    store_pid=True,
                    allow_error=True,
                ),
            )
        except (spur.ssh.ConnectionError, spur.NoSuchCommandError, OSError) as e:
            logger.exception("could not start remote engine %s", command)
            raise LaunchError("could not start remote engine {0}: {1}".format(command[0], e)) from e
        transport.attach(process)
        protocol.connection_made(transport)
        return protocol


class _PipeWriter(object):
    """File-like target for spur output, handing the data to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, protocol: "EngineProcess", fd: int):
        self.loop = loop
        self.protocol = protocol
        self.fd = fd

    def write(self, data):
        if isinstance(data, str):
            data = data.encode("utf-8")
        # called from a spur io thread
        self.loop.call_soon_threadsafe(self.protocol.pipe_data_received, self.fd, data)

    def flush(self):
        pass


class _SshTransport(asyncio.SubprocessTransport):
    """The parts of a subprocess transport EngineProcess needs, on top of spur."""

    def __init__(self, loop: asyncio.AbstractEventLoop, protocol: "EngineProcess"):
        super().__init__()
        self.loop = loop
        self.protocol = protocol
        self.process = None
        self._returncode: Optional[int] = None
        self._closed = False

    def attach(self, process):
        self.process = process
        waiter = self.loop.run_in_executor(None, process.wait_for_result)
        waiter.add_done_callback(self._process_finished)

    def _process_finished(self, waiter: asyncio.Future):
        try:
            self._returncode = waiter.result().return_code
        except Exception:
            logger.debug("remote engine ended without result", exc_info=True)
            self._returncode = -1
        self.protocol.process_exited()
        self.protocol.connection_lost(None)

    def get_pid(self):
        return self.process.pid if self.process else None

    def get_returncode(self):
        return self._returncode

    def get_pipe_transport(self, fd):
        return self if fd == 0 else None

    def is_closing(self):
        return self._closed or self._returncode is not None

    def write(self, data):
        self.process.stdin_write(data)

    def send_signal(self, sig):
        if self.process is None or self._returncode is not None:
            raise ProcessLookupError()
        name = signal.Signals(sig).name[3:]
        # kill over ssh blocks, dont do it in the event loop
        sender = self.loop.run_in_executor(None, self.process.send_signal, name)
        sender.add_done_callback(self._signal_sent)

    @staticmethod
    def _signal_sent(sender: asyncio.Future):
        if sender.exception() is not None:
            logger.debug("sending signal to remote engine failed: %s", sender.exception())

    def terminate(self):
        self.send_signal(signal.SIGTERM)

    def kill(self):
        self.send_signal(signal.SIGKILL)

    def close(self):
        self._closed = True


class EngineProcess(asyncio.SubprocessProtocol):
    """Own the engine child process and its pipes."""

    def __init__(self, on_data: DataCallback | None = None, on_exit: ExitCallback | None = None, name: str = "engine"):
        self.loop = asyncio.get_running_loop()
        self.transport: asyncio.SubprocessTransport | None = None
        self.on_data = on_data
        self.on_exit = on_exit
        self.whoami = name
        self._unread = bytearray()  # stdout kept while nobody listens
        self._stderr = LineFramer()
        self._terminated = False
        self.returncode: asyncio.Future = self.loop.create_future()

    def __repr__(self):
        pid = self.transport.get_pid() if self.transport else None
        return "<EngineProcess {0} (pid={1})>".format(self.whoami, pid)

    @classmethod
    async def launch(
        cls,
        path: str,
        args: Iterable[str] = (),
        *,
        shell: UciShell | None = None,
        on_data: DataCallback | None = None,
        on_exit: ExitCallback | None = None,
        name: str = "engine",
    ) -> "EngineProcess":
        """Start the engine at path. Raises LaunchError if that fails."""
        command = [path, *args]
        logger.info("%s launching %s", name, command)
        protocol = cls(on_data=on_data, on_exit=on_exit, name=name)
        if shell is not None and shell.get() is not None:
            return await shell.spawn(command, protocol)
        try:
            await protocol.loop.subprocess_exec(
                lambda: protocol,
                *command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            logger.exception("OS error in starting engine %s", path)
            raise LaunchError("could not start engine {0}: {1}".format(path, e)) from e
        return protocol

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore
        logger.debug("%s connection made", self)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        code = self.transport.get_returncode() if self.transport else None
        logger.debug("%s connection lost (exit code: %s, error: %s)", self, code, exc)
        if not self.returncode.done():
            self.returncode.set_result(code)
            if self.on_exit:
                self.on_exit(code)

    def process_exited(self) -> None:
        logger.debug("%s process exited", self)

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        if fd == 1:
            if self.on_data:
                self.on_data(bytes(data))
            else:
                self._unread.extend(data)
        else:
            for line in self._stderr.feed(data):
                if line:
                    logger.warning("%s stderr >> %s", self.whoami, line)

    def read_available(self) -> bytes:
        """Return the output that arrived since the last call, b"" if none."""
        data = bytes(self._unread)
        self._unread.clear()
        return data

    def is_running(self) -> bool:
        return self.transport is not None and not self._terminated and not self.returncode.done()

    def send(self, line: str) -> None:
        """Write one command line to the engine."""
        if "\n" in line or "\r" in line:
            raise WriteError("uci command contains new line: {0!r}".format(line))
        if not self.is_running():
            raise WriteError("engine process {0} is not running".format(self.whoami))
        stdin = self.transport.get_pipe_transport(0)
        if stdin is None or stdin.is_closing():
            raise WriteError("stdin of engine {0} is closed".format(self.whoami))
        logger.debug("%s << %s", self.whoami, line)
        try:
            stdin.write(line.encode("utf-8") + b"\n")
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WriteError("engine {0} closed its input: {1}".format(self.whoami, e)) from e

    def terminate(self) -> None:
        """Interrupt, then kill the engine. Calling it again does nothing."""
        if self._terminated:
            return
        self._terminated = True
        if self.transport is None:
            return
        if not self.returncode.done():
            logger.debug("%s terminating", self)
            self._signal(signal.SIGINT)
            self._signal(None)
        try:
            self.transport.close()
        except Exception:
            logger.debug("transport close failed for %s", self.whoami, exc_info=True)

    def _signal(self, sig) -> bool:
        """Send sig (None means kill). Returns False if the process is gone."""
        try:
            if sig is None:
                self.transport.kill()
            else:
                self.transport.send_signal(sig)
        except ProcessLookupError:
            return False
        except Exception:
            logger.debug("signal %s failed for %s", sig, self.whoami, exc_info=True)
        return True

    async def wait(self, timeout: float) -> bool:
        """Wait until the process exited. Returns False on timeout."""
        if self.returncode.done():
            return True
        try:
            await asyncio.wait_for(asyncio.shield(self.returncode), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def shutdown(self) -> None:
        """Ask the engine to quit and escalate if it ignores us."""
        if self.transport is None or self._terminated:
            return
        try:
            self.send("quit")
        except WriteError:
            logger.debug("%s could not send quit", self.whoami)
        if not await self.wait(ENGINE_QUIT_TIMEOUT):
            logger.warning("%s engine failed to quit within %.1fs - terminating", self.whoami, ENGINE_QUIT_TIMEOUT)
            if self._signal(signal.SIGTERM) and not await self.wait(ENGINE_TERMINATE_TIMEOUT):
                logger.warning("%s engine still running - killing process", self.whoami)
                self._signal(None)
                await self.wait(ENGINE_KILL_TIMEOUT)
        self.terminate()
