"""Chess rules adapter backed by python-chess.

The repertoire core never decides legality itself: every position
encoding, legal-move enumeration and move application goes through
this module. Positions are exchanged as canonical FEN strings
(python-chess ``Board.fen()``), moves as UCI strings.
"""

from __future__ import annotations

from dataclasses import dataclass

import chess

from repertoire.errors import InvalidMoveSequence
from repertoire.models import BLACK, WHITE

STARTING_FEN = chess.STARTING_FEN


@dataclass(frozen=True)
class FenFields:
    """Fields decoded from a FEN string."""

    turn: str
    fullmove: int


@dataclass(frozen=True)
class PlyRecord:
    """One replayed ply of a human move list."""

    index: int
    fen_before: str
    uci: str
    san: str
    fen_after: str


def decode(fen: str) -> FenFields:
    """Decode side to move and full-move number from a FEN.

    Raises:
        ValueError: If the FEN cannot be parsed.
    """
    board = chess.Board(fen)
    return FenFields(
        turn=WHITE if board.turn == chess.WHITE else BLACK,
        fullmove=board.fullmove_number,
    )


def side_to_move(fen: str) -> str:
    """Return 'white' or 'black' for the side to move in ``fen``."""
    return decode(fen).turn


def ply_index(fen: str) -> int:
    """Number of plies played from the standard start to reach ``fen``."""
    fields = decode(fen)
    return 2 * (fields.fullmove - 1) + (0 if fields.turn == WHITE else 1)


def legal_moves(fen: str) -> list[str]:
    """All legal moves from ``fen`` in UCI notation."""
    board = chess.Board(fen)
    return [m.uci() for m in board.legal_moves]


def _parse(board: chess.Board, move: str) -> chess.Move:
    """Parse a UCI or SAN move that is legal on ``board``.

    Raises:
        ValueError: If the move is malformed, illegal or ambiguous.
    """
    try:
        parsed = chess.Move.from_uci(move)
    except ValueError:
        parsed = board.parse_san(move)
    # parse_san and from_uci both accept null moves ("--", "0000").
    if not parsed or parsed not in board.legal_moves:
        raise chess.IllegalMoveError(f"illegal move {move!r} in {board.fen()}")
    return parsed


def apply_move(fen: str, move: str) -> str:
    """Apply a UCI or SAN move to ``fen`` and return the resulting FEN.

    Raises:
        ValueError: If the move is not legal in the position.
    """
    board = chess.Board(fen)
    board.push(_parse(board, move))
    return board.fen()


def successors(fen: str) -> list[tuple[str, str]]:
    """Every legal reply from ``fen`` as (uci, resulting fen) pairs."""
    board = chess.Board(fen)
    result = []
    for move in list(board.legal_moves):
        board.push(move)
        result.append((move.uci(), board.fen()))
        board.pop()
    return result


def san_for(fen: str, move: str) -> str:
    """Render a UCI move in SAN for display; falls back to the raw move."""
    board = chess.Board(fen)
    try:
        return board.san(_parse(board, move))
    except ValueError:
        return move


def replay_san(moves: list[str], starting_fen: str | None = None) -> list[PlyRecord]:
    """Replay a human move list, recording the position before each ply.

    Args:
        moves: Moves in SAN (UCI is tolerated), e.g. ["e4", "c5", "Nf3"].
        starting_fen: Optional non-standard starting position.

    Returns:
        One PlyRecord per move, in order.

    Raises:
        InvalidMoveSequence: If the list is empty, the starting FEN is
            invalid, or any move is illegal, ambiguous or unparseable.
    """
    if not moves:
        raise InvalidMoveSequence("Cannot save an empty line")

    try:
        board = chess.Board(starting_fen or STARTING_FEN)
    except ValueError as exc:
        raise InvalidMoveSequence(f"Invalid starting FEN: {exc}") from exc

    plies: list[PlyRecord] = []
    for i, raw in enumerate(moves):
        text = raw.strip() if isinstance(raw, str) else ""
        if not text:
            raise InvalidMoveSequence(f"Empty move at ply {i + 1}", ply=i, move=raw)
        fen_before = board.fen()
        try:
            move = board.parse_san(text)
        except ValueError as exc:
            raise InvalidMoveSequence(
                f"Invalid move {text!r} at ply {i + 1}: {exc}", ply=i, move=text
            ) from exc
        if not move or move not in board.legal_moves:
            raise InvalidMoveSequence(
                f"Invalid move {text!r} at ply {i + 1}: not a legal move",
                ply=i,
                move=text,
            )
        san = board.san(move)
        board.push(move)
        plies.append(PlyRecord(i, fen_before, move.uci(), san, board.fen()))
    return plies
