"""Tests for the python-chess rules adapter."""

from __future__ import annotations

import pytest

from repertoire import rules
from repertoire.errors import InvalidMoveSequence

_AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


class TestDecode:

    def test_starting_position(self):
        fields = rules.decode(rules.STARTING_FEN)
        assert fields.turn == "white"
        assert fields.fullmove == 1
        assert rules.ply_index(rules.STARTING_FEN) == 0

    def test_after_first_move(self):
        assert rules.side_to_move(_AFTER_E4) == "black"
        assert rules.ply_index(_AFTER_E4) == 1

    def test_invalid_fen(self):
        with pytest.raises(ValueError):
            rules.decode("not a fen")


class TestMoves:

    def test_apply_uci_and_san_agree(self):
        assert rules.apply_move(rules.STARTING_FEN, "e2e4") == _AFTER_E4
        assert rules.apply_move(rules.STARTING_FEN, "e4") == _AFTER_E4

    def test_apply_illegal_move(self):
        with pytest.raises(ValueError):
            rules.apply_move(rules.STARTING_FEN, "e2e5")
        with pytest.raises(ValueError):
            rules.apply_move(rules.STARTING_FEN, "Ke2")
        with pytest.raises(ValueError):
            rules.apply_move(rules.STARTING_FEN, "0000")
        with pytest.raises(ValueError):
            rules.apply_move(rules.STARTING_FEN, "--")

    def test_legal_moves_from_start(self):
        moves = rules.legal_moves(rules.STARTING_FEN)
        assert len(moves) == 20
        assert "g1f3" in moves

    def test_successors_cover_legal_moves(self):
        pairs = rules.successors(_AFTER_E4)
        assert len(pairs) == 20
        assert dict(pairs)["c7c5"] == rules.apply_move(_AFTER_E4, "c7c5")

    def test_san_for(self):
        assert rules.san_for(rules.STARTING_FEN, "g1f3") == "Nf3"
        assert rules.san_for(rules.STARTING_FEN, "zz99") == "zz99"


class TestReplay:

    def test_replay_records_position_before_each_ply(self):
        plies = rules.replay_san(["e4", "c5", "Nf3"])
        assert [p.uci for p in plies] == ["e2e4", "c7c5", "g1f3"]
        assert [p.san for p in plies] == ["e4", "c5", "Nf3"]
        assert plies[0].fen_before == rules.STARTING_FEN
        assert plies[1].fen_before == _AFTER_E4
        assert plies[1].fen_before == plies[0].fen_after

    def test_replay_from_custom_fen(self):
        plies = rules.replay_san(["c5"], starting_fen=_AFTER_E4)
        assert plies[0].fen_before == _AFTER_E4

    def test_empty_line_rejected(self):
        with pytest.raises(InvalidMoveSequence):
            rules.replay_san([])

    def test_illegal_move_reports_ply(self):
        with pytest.raises(InvalidMoveSequence) as exc_info:
            rules.replay_san(["e4", "e5", "Ke3"])
        assert exc_info.value.ply == 2
        assert "Ke3" in str(exc_info.value)

    def test_ambiguous_move_rejected(self):
        # Nb1 and Nf3 can both reach d2.
        moves = ["d4", "d5", "Nf3", "Nf6", "e3", "e6", "Bd3", "Bd6", "Nd2"]
        with pytest.raises(InvalidMoveSequence):
            rules.replay_san(moves)

    @pytest.mark.parametrize("null_move", ["--", "0000", "Z0", "@@"])
    def test_null_move_rejected(self, null_move):
        with pytest.raises(InvalidMoveSequence) as exc_info:
            rules.replay_san(["e4", null_move, "Nf3"])
        assert exc_info.value.ply == 1

    def test_bad_starting_fen(self):
        with pytest.raises(InvalidMoveSequence):
            rules.replay_san(["e4"], starting_fen="garbage")
