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
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import chess  # type: ignore

from ucidriver.errors import AnalysisStateError
from ucidriver.options import SUPPORTED_OPTIONS, EngineOption

logger = logging.getLogger(__name__)

# marker used by engines for an empty string default
EMPTY_VALUE = "<empty>"


@dataclass(frozen=True)
class AnalysisTarget:
    """Position to analyse, as it follows "position " in the uci command."""

    uci: str

    def __post_init__(self):
        text = self.uci.strip()
        if text.startswith("position "):
            text = text[len("position "):].strip()
        if not text or text == "position":
            raise AnalysisStateError("empty analysis target")
        object.__setattr__(self, "uci", text)

    @classmethod
    def from_board(cls, board: chess.Board) -> "AnalysisTarget":
        """Build a target from the game start position plus the moves played."""
        root = board.root()
        if root.fen() == chess.STARTING_FEN:
            text = "startpos"
        else:
            text = "fen " + root.fen()
        if board.move_stack:
            text += " moves " + " ".join(move.uci() for move in board.move_stack)
        return cls(text)

    def command(self) -> str:
        return "position " + self.uci

    def board(self) -> Optional[chess.Board]:
        """Return the position as a board or None if it cannot be read."""
        tokens = self.uci.split()
        if not tokens:
            return None
        moves_at = tokens.index("moves") if "moves" in tokens else len(tokens)
        try:
            if tokens[0] == "startpos":
                board = chess.Board()
            elif tokens[0] == "fen":
                board = chess.Board(" ".join(tokens[1:moves_at]))
            else:
                return None
            for move in tokens[moves_at + 1:]:
                board.push_uci(move)
        except ValueError:
            logger.debug("cannot build board from target %s", self.uci)
            return None
        return board

    def __str__(self):
        return self.uci


Target = Union[AnalysisTarget, str]


def as_target(target: Optional[Target]) -> Optional[AnalysisTarget]:
    if target is None or isinstance(target, AnalysisTarget):
        return target
    return AnalysisTarget(target)


@dataclass(frozen=True)
class UciLine:
    """A principal variation reported by the engine."""

    depth: int = 0
    seldepth: int = 0
    multipv: int = 1
    score: Optional[int] = None  # centipawns
    mate: Optional[int] = None  # moves to mate, negative when getting mated
    bound: Optional[str] = None  # "lowerbound" or "upperbound"
    nodes: int = 0
    nps: int = 0
    hashfull: int = 0
    tbhits: int = 0
    time: int = 0  # milliseconds
    moves: Tuple[str, ...] = ()
    san: Tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def from_tokens(cls, tokens: List[str], target: Optional[AnalysisTarget] = None) -> "UciLine":
        values = {}
        it = iter(tokens)
        for token in it:
            if token in ("depth", "seldepth", "multipv", "nodes", "nps", "hashfull", "tbhits", "time"):
                values[token] = _to_int(next(it, None))
            elif token == "score":
                kind = next(it, "")
                value = _to_int(next(it, None))
                if kind == "cp":
                    values["score"] = value
                elif kind == "mate":
                    values["mate"] = value
            elif token in ("lowerbound", "upperbound"):
                values["bound"] = token
            elif token == "pv":
                values["moves"] = tuple(it)
                break
        moves = values.get("moves", ())
        return cls(san=_to_san(moves, target), **values)

    def is_mate(self) -> bool:
        return self.mate is not None


def _to_int(token: Optional[str]) -> int:
    if token is None:
        return 0
    try:
        return int(token)
    except ValueError:
        return 0


def _to_san(moves: Tuple[str, ...], target: Optional[AnalysisTarget]) -> Tuple[str, ...]:
    """SAN for as many moves as are legal in the target position."""
    board = target.board() if target else None
    if board is None:
        return ()
    result = []
    for uci in moves:
        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            break
        if not board.is_legal(move):
            break
        result.append(board.san(move))
        board.push(move)
    return tuple(result)


@dataclass(frozen=True)
class CurrentMove:
    move: str
    number: int
    depth: int


@dataclass(frozen=True)
class PrincipalVariation:
    line: UciLine


@dataclass(frozen=True)
class BestMoveFound:
    move: str = ""
    ponder: Optional[str] = None


@dataclass(frozen=True)
class EngineIdentity:
    name: str


@dataclass(frozen=True)
class OptionDeclared:
    option: EngineOption


@dataclass(frozen=True)
class OptionsReady:
    # empty when decoded, the driver fills in the collected options
    options: Tuple[EngineOption, ...] = ()


@dataclass(frozen=True)
class Ignored:
    pass


EngineEvent = Union[CurrentMove, PrincipalVariation, BestMoveFound, EngineIdentity, OptionDeclared, OptionsReady, Ignored]

IGNORED = Ignored()


def _token_after(tokens: List[str], marker: str, start: int = 0) -> Optional[str]:
    try:
        index = tokens.index(marker, start)
    except ValueError:
        return None
    return tokens[index + 1] if index + 1 < len(tokens) else None


def _int_after(tokens: List[str], marker: str) -> int:
    return _to_int(_token_after(tokens, marker))


def _parse_value(token: Optional[str]) -> Union[int, str]:
    if token is None or token == EMPTY_VALUE:
        return ""
    try:
        return int(token)
    except ValueError:
        return token


def _optional_int(token: Optional[str]) -> Optional[int]:
    if token is None:
        return None
    try:
        return int(token)
    except ValueError:
        return None


def decode_option(tokens: List[str]) -> Optional[EngineOption]:
    """Return the option declared by the tokens if it is allow-listed."""
    start = tokens.index("name") + 1
    end = tokens.index("type", start) if "type" in tokens[start:] else len(tokens)
    name = " ".join(tokens[start:end])
    kind = SUPPORTED_OPTIONS.get(name)
    if kind is None:
        return None
    return EngineOption(
        name=name,
        kind=kind,
        type=_token_after(tokens, "type", end) or "",
        default=_parse_value(_token_after(tokens, "default", end)),
        min=_optional_int(_token_after(tokens, "min", end)),
        max=_optional_int(_token_after(tokens, "max", end)),
    )


def decode(line: str, target: Optional[Target] = None) -> EngineEvent:
    """
    Decode one line of engine output.

    The first marker found wins, in this order: currmove, pv, bestmove,
    id name, option name, uciok. A line with both pv and bestmove is
    therefore a principal variation.
    """
    tokens = line.split()
    if not tokens:
        return IGNORED

    if "currmove" in tokens:
        return CurrentMove(
            move=_token_after(tokens, "currmove") or "",
            number=_int_after(tokens, "currmovenumber"),
            depth=_int_after(tokens, "depth"),
        )
    if "pv" in tokens:
        return PrincipalVariation(UciLine.from_tokens(tokens, as_target(target)))
    if "bestmove" in tokens:
        return BestMoveFound(move=_token_after(tokens, "bestmove") or "", ponder=_token_after(tokens, "ponder"))
    if "id" in tokens and "name" in tokens:
        prefix = "id name "
        index = line.find(prefix)
        if index < 0:
            return IGNORED
        return EngineIdentity(name=line[index + len(prefix):].strip())
    if "option" in tokens and "name" in tokens:
        option = decode_option(tokens)
        return OptionDeclared(option) if option else IGNORED
    if "uciok" in tokens:
        return OptionsReady()
    return IGNORED
