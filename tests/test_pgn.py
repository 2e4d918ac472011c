"""Pytest tests for notation ingestion and export."""

from __future__ import annotations

import chess
import chess.pgn
import chess.variant
import pytest

from gambit.models import BLACK, WHITE
from gambit.pgn import clean_comment, export_pgn, glyph_for, parse
from gambit.variants import get_rules

_GAME = """[Event "Casual"]
[White "Alice"]
[Black "Bob"]
[Result "1-0"]

{Ruy Lopez} 1. e4 {[%eval 0.3] [%clk 0:05:00]} e5 {[%clk 0:04:58]}
2. Nf3 Nc6 (2... d6 3. d4 (3. Bc4)) 3. Bb5! a6 $6 ; rest of line
4. Ba4 Nf6 1-0
"""

_SCHOLARS_MATE = "1. e4 e5 2. Qh5 Nc6 3. Bc4 Nf6 4. Qxf7# 1-0"


class TestAnnotations:

    def test_clean_comment_strips_tags(self):
        assert clean_comment("[%eval -1.25] [%clk 0:03:10] sharp") == "sharp"

    def test_clean_comment_strips_arrows(self):
        assert clean_comment("[%cal Ge2e4] idea") == "idea"

    def test_clean_comment_only_tags(self):
        assert clean_comment("[%clk 1:00:00]") is None
        assert clean_comment("") is None
        assert clean_comment(None) is None

    @pytest.mark.parametrize(
        "nags,glyph",
        [({1}, "!"), ({2}, "?"), ({3}, "!!"), ({4}, "??"), ({5}, "!?"), ({6}, "?!"), ({14}, None), (set(), None)],
    )
    def test_glyph_for(self, nags, glyph):
        assert glyph_for(nags) == glyph


class TestParse:

    def test_replays_main_line_only(self):
        game = parse(_GAME)
        assert [m.san for m in game.moves] == ["e4", "e5", "Nf3", "Nc6", "Bb5", "a6", "Ba4", "Nf6"]
        assert len(game.positions) == len(game.moves) + 1
        assert game.positions[0].fen == chess.STARTING_FEN
        assert game.intro_comment == "Ruy Lopez"
        assert game.stopped_at is None
        assert game.error is None

    def test_headers(self):
        game = parse(_GAME)
        assert game.headers["White"] == "Alice"
        assert game.headers["Result"] == "1-0"

    def test_glyphs_and_nags(self):
        game = parse(_GAME)
        assert game.moves[4].glyph == "!"
        assert game.moves[5].glyph == "?!"
        assert chess.pgn.NAG_DUBIOUS_MOVE in game.moves[5].nags
        assert game.meta[5].glyph == "!"

    def test_sides_alternate(self):
        game = parse(_GAME)
        assert [m.side for m in game.moves[:3]] == [WHITE, BLACK, WHITE]

    def test_meta_eval_and_clocks_carry_forward(self):
        game = parse(_GAME)
        assert game.meta[1].eval == pytest.approx(0.3)
        assert game.meta[1].clocks == {WHITE: 300.0, BLACK: None}
        assert game.meta[2].clocks == {WHITE: 300.0, BLACK: 298.0}
        assert game.meta[3].clocks == {WHITE: 300.0, BLACK: 298.0}
        assert game.moves[0].clean_comment is None
        assert "[%clk" in game.moves[0].comment

    def test_mate_eval(self):
        game = parse("1. e4 {[%eval #-3]} e5")
        assert game.meta[1].eval is None
        assert game.meta[1].mate == -3

    def test_checkmate_meta(self):
        game = parse(_SCHOLARS_MATE)
        final = game.meta[-1]
        assert final.in_check
        assert final.is_checkmate
        assert final.check_square == "e8"
        assert game.moves[-1].san == "Qxf7#"

    def test_stops_at_first_illegal_move(self):
        game = parse("1. e4 e5 2. Ke3 Nc6 3. Nf3")
        assert [m.san for m in game.moves] == ["e4", "e5"]
        assert game.stopped_at == 2
        assert "Ke3" in game.error
        assert len(game.positions) == 3

    def test_garbage_yields_nothing(self):
        game = parse("this is not chess")
        assert game.moves == []
        assert len(game.positions) == 1

    def test_empty_text(self):
        game = parse("")
        assert game.moves == []
        assert game.error is None
        assert game.positions[0].fen == chess.STARTING_FEN

    def test_fen_header_sets_start_and_side(self):
        fen = "4k3/8/8/8/8/8/4P3/4K3 b - - 0 1"
        game = parse(f'[SetUp "1"]\n[FEN "{fen}"]\n\n1... Kd7 2. e4')
        assert game.positions[0].fen == fen
        assert [m.side for m in game.moves] == [BLACK, WHITE]

    def test_null_moves_keep_their_slot(self):
        game = parse("1. -- e5 2. d4 *")
        assert [m.san for m in game.moves] == ["--", "e5", "d4"]
        assert game.moves[0].is_null
        assert game.moves[0].side == WHITE
        assert [m.uci for m in game.played] == ["e7e5", "d2d4"]
        assert game.positions[1].turn == BLACK
        assert game.stopped_at is None

    def test_variant_header_selects_rules(self):
        game = parse('[Variant "Atomic"]\n\n1. e4 d5 2. exd5 *')
        assert game.variant == "atomic"
        assert all(p.variant == "atomic" for p in game.positions)
        # The capture explodes the capturing pawn too
        assert chess.variant.AtomicBoard(game.positions[-1].fen).piece_at(chess.D5) is None


class TestExport:

    def test_round_trip(self):
        rules = get_rules("standard")
        source = parse(_SCHOLARS_MATE)
        text = export_pgn(
            source.played,
            headers={"White": "A", "Black": "B", "Result": "1-0"},
        )
        again = parse(text)
        assert [m.san for m in again.moves] == [m.san for m in source.moves]
        assert again.headers["White"] == "A"
        assert again.positions[-1] == source.positions[-1]
        assert rules.is_terminal(again.positions[-1]).checkmate

    def test_custom_start_writes_fen(self):
        fen = "4k3/8/8/8/8/8/4P3/4K3 w - - 0 1"
        rules = get_rules("standard")
        start = rules.position_from_fen(fen)
        move = rules.parse_move(start, "e4")
        text = export_pgn([move], starting_fen=fen)
        assert f'[FEN "{fen}"]' in text
        assert parse(text).moves[0].san == "e4"

    def test_variant_header(self):
        rules = get_rules("atomic")
        start = rules.initial_position()
        text = export_pgn([rules.parse_move(start, "Nf3")], variant="atomic")
        assert '[Variant "Atomic"]' in text
        assert parse(text).variant == "atomic"

    def test_out_of_turn_moves_use_null_moves(self):
        rules = get_rules("standard")
        start = rules.initial_position()
        e4 = rules.parse_move(start, "e4")
        after = rules.apply(start, e4)
        passed = rules.with_turn(after, WHITE)
        d4 = rules.parse_move(passed, "d4")
        text = export_pgn([e4, d4])
        assert "1. e4 -- 2. d4" in text

        again = parse(text)
        assert [m.uci for m in again.played] == ["e2e4", "d2d4"]
        assert again.positions[-1] == rules.apply(passed, d4)


@pytest.mark.parametrize("result", ["1-0", "0-1", "1/2-1/2", "*"])
def test_result_markers_end_move_text(result):
    game = parse(f"1. e4 e5 {result}")
    assert len(game.moves) == 2
