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

from typing import Iterator


def _decode(line_bytes: bytes) -> str:
    if line_bytes.endswith(b"\r"):
        line_bytes = line_bytes[:-1]
    # engines are not trusted to send clean utf-8
    return line_bytes.decode("utf-8", errors="replace")


class LineFramer:
    """Turn raw output chunks of an engine into complete text lines."""

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes) -> Iterator[str]:
        """
        Add a chunk and return the lines it completes.

        The buffer is updated before the lines are handed out, so a caller
        that stops iterating early does not lose the fragment.
        A chunk without newline only grows the pending fragment.
        """
        self._buffer.extend(data)
        *complete, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)
        return (_decode(bytes(line_bytes)) for line_bytes in complete)

    @property
    def pending(self) -> str:
        """The fragment still waiting for its newline."""
        return _decode(bytes(self._buffer))

    def reset(self):
        self._buffer = bytearray()


class LegacyLineFramer:
    """
    Framing as done by the first version of the engine wrapper.

    Every chunk is handled on its own: a chunk with newlines is split and all
    pieces are emitted, a trailing partial line included, and a chunk without
    newline is emitted as one line. Lines split across chunks come out broken.
    Only kept to document the difference to LineFramer.
    """

    def feed(self, data: bytes) -> Iterator[str]:
        text = data.decode("utf-8", errors="replace")
        if "\n" in text:
            return iter(text.split("\n"))
        return iter([text])

    @property
    def pending(self) -> str:
        return ""

    def reset(self):
        pass
