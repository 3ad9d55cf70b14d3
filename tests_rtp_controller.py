#!/usr/bin/env python3
"""
Tests for the RTP Outcome Controller and Max-Win Meter

Validates:
1.  Fresh sessions report 100% RTP
2.  RTP above target + drift forces a loss
3.  RTP below target - drift forces medium/big
4.  Win streak at the limit forces a loss and resets the win counter
5.  Loss streak at the limit forces a win and resets the loss counter
6.  RTP correction takes precedence over streak control
7.  sample_band follows the configured distribution
8.  record_round folds stakes, payouts and streaks
9.  Loss bias avoids neighbour colours and non-common kinds
10. Loss bias falls back to an unbiased draw when no colour is safe
11. Loss-band boards hold no adjacent equal colours and nothing that matches
12. Big/mega bias copies a placed neighbour
13. Lords are enabled per round with their round chance
14. Max-win meter awards each level once and resets at the top
"""

import json
import random
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.engine_schema import MatchMode, MaxWinConfig, RTPConfig, config_from_dict, default_config
from gem_engine.board import Board
from gem_engine.gems import GemCatalog
from gem_engine.matcher import detect_matches
from gem_engine.max_win import MaxWinMeter
from gem_engine.rtp import (
    GemSpawner, OutcomeBand, SessionState, choose_outcome_band, populate_board,
    record_round, sample_band,
)

RTP = RTPConfig()


def test_fresh_session_rtp():
    state = SessionState()
    assert state.current_rtp == 100.0
    snap = state.snapshot()
    assert snap["current_rtp"] == 100.0
    assert snap["rounds_played"] == 0
    json.dumps(snap)
    print("✅ Fresh session: 100% RTP, JSON-serializable snapshot")


def test_above_band_forces_loss():
    state = SessionState(total_staked=1000, total_paid=1100)
    band, new_state = choose_outcome_band(state, RTP, random.Random(0))
    assert band == OutcomeBand.LOSS
    assert new_state == state
    print("✅ RTP 110% > 101% → LOSS")


def test_below_band_forces_win():
    state = SessionState(total_staked=1000, total_paid=800)
    seen = set()
    rng = random.Random(1)
    for _ in range(50):
        band, _ = choose_outcome_band(state, RTP, rng)
        seen.add(band)
    assert seen == {OutcomeBand.MEDIUM, OutcomeBand.BIG}, seen
    print("✅ RTP 80% < 91% → MEDIUM or BIG")


def test_win_streak_forces_loss():
    state = SessionState(total_staked=1000, total_paid=960, consecutive_wins=3)
    band, new_state = choose_outcome_band(state, RTP, random.Random(2))
    assert band == OutcomeBand.LOSS
    assert new_state.consecutive_wins == 0
    assert state.consecutive_wins == 3      # frozen input untouched
    print("✅ 3 consecutive wins → LOSS, win streak reset")


def test_loss_streak_forces_win():
    state = SessionState(total_staked=1000, total_paid=960, consecutive_losses=2)
    band, new_state = choose_outcome_band(state, RTP, random.Random(3))
    assert band in (OutcomeBand.MEDIUM, OutcomeBand.BIG)
    assert new_state.consecutive_losses == 0
    print(f"✅ 2 consecutive losses → {band.value}, loss streak reset")


def test_rtp_correction_beats_streaks():
    state = SessionState(total_staked=1000, total_paid=800, consecutive_wins=5)
    band, new_state = choose_outcome_band(state, RTP, random.Random(4))
    assert band in (OutcomeBand.MEDIUM, OutcomeBand.BIG)
    assert new_state.consecutive_wins == 5
    print("✅ Low RTP overrides win-streak control")


def test_sample_band_distribution():
    only_mega = {"loss": 0, "small": 0, "medium": 0, "big": 0, "mega": 1}
    assert sample_band(only_mega, random.Random(5)) == OutcomeBand.MEGA

    rng = random.Random(6)
    draws = [sample_band(RTP.win_distribution, rng) for _ in range(20000)]
    loss_share = draws.count(OutcomeBand.LOSS) / len(draws)
    small_share = draws.count(OutcomeBand.SMALL) / len(draws)
    assert 0.42 < loss_share < 0.48, loss_share
    assert 0.32 < small_share < 0.38, small_share
    print(f"✅ sample_band: loss {loss_share:.3f}, small {small_share:.3f}")


def test_record_round():
    state = record_round(SessionState(), stake=100, payout=150)
    assert state.total_staked == 100 and state.total_paid == 150
    assert state.consecutive_wins == 1 and state.consecutive_losses == 0
    assert state.rounds_played == 1
    state = record_round(state, stake=100, payout=0)
    assert state.consecutive_wins == 0 and state.consecutive_losses == 1
    assert state.current_rtp == 75.0
    print("✅ record_round: totals, streaks, RTP 75%")


def test_loss_bias_avoids_neighbors():
    config = default_config()
    catalog = GemCatalog(config)
    spawner = GemSpawner(catalog, config.rtp, random.Random(7))
    board = Board(3, 2, 2)
    board.place(0, 1, catalog.create("red"))     # left of (1, 1)
    board.place(1, 0, catalog.create("green"))   # below (1, 1)
    for _ in range(200):
        gem = spawner.spawn(board, 1, 1, OutcomeBand.LOSS)
        assert gem.kind.is_common, gem
        assert gem.color not in ("red", "green"), gem
    assert spawner.fallbacks == 0
    print("✅ Loss bias: only blue/yellow commons next to red + green")


def test_loss_bias_fallback():
    config = config_from_dict({"gems": [
        {"key": "red", "category": "common", "color": "red", "value": 5, "weight": 1},
    ]})
    catalog = GemCatalog(config)
    spawner = GemSpawner(catalog, config.rtp, random.Random(8))
    board = Board(2, 1, 1)
    board.place(0, 0, catalog.create("red"))
    gem = spawner.spawn(board, 1, 0, OutcomeBand.LOSS)
    assert gem.key == "red"
    assert spawner.fallbacks == 1
    print("✅ Loss bias with no safe colour → unbiased draw, fallback counted")


def test_loss_board_never_matches():
    config = default_config()
    catalog = GemCatalog(config)
    for seed in range(60):
        rng = random.Random(seed)
        board = Board(6, 8, 8)
        spawner = GemSpawner(catalog, config.rtp, rng, catalog.round_weights(rng))
        populate_board(board, spawner, OutcomeBand.LOSS)
        for (col, row), gem in board.occupied():
            assert gem.kind.is_common, gem
            for nc, nr in ((col + 1, row), (col, row + 1)):
                other = board.get(nc, nr)
                assert other is None or other.color != gem.color, (seed, col, row)
        assert detect_matches(board, MatchMode.BOTH, rng) == []
        assert spawner.fallbacks == 0
    print("✅ Loss boards: commons only, no equal neighbours, nothing to match (60 seeds)")


def test_big_band_copies_neighbor():
    config = config_from_dict({"rtp": {"seed_match_chance": {"big": 1.0}}})
    catalog = GemCatalog(config)
    spawner = GemSpawner(catalog, config.rtp, random.Random(9))
    board = Board(2, 1, 1)
    board.place(0, 0, catalog.create("yellow"))
    for _ in range(20):
        assert spawner.spawn(board, 1, 0, OutcomeBand.BIG).key == "yellow"
    print("✅ BIG bias with chance 1.0 copies the placed neighbour")


def test_populate_fills_board():
    config = default_config()
    catalog = GemCatalog(config)
    board = Board(6, 4, 8)
    placed = populate_board(board, GemSpawner(catalog, config.rtp, random.Random(10)), OutcomeBand.LOSS)
    assert placed == 24
    assert board.is_full()
    assert populate_board(board, GemSpawner(catalog, config.rtp, random.Random(10)), OutcomeBand.LOSS) == 0
    print("✅ populate_board fills 24 cells once, then nothing")


def test_lords_enabled_per_round():
    catalog = GemCatalog(default_config())
    rng = random.Random(12)
    rolls = [catalog.round_weights(rng) for _ in range(4000)]
    ignis = sum("lord_ignis" in w for w in rolls) / len(rolls)
    terra = sum("lord_terra" in w for w in rolls) / len(rolls)
    assert 0.27 < ignis < 0.33, ignis
    assert 0.22 < terra < 0.28, terra
    assert all("red" in w and "bomb_small" in w for w in rolls)

    config = config_from_dict({"gems": [
        {"key": "red", "category": "common", "color": "red", "value": 5, "weight": 1},
        {"key": "lord_red", "category": "special", "color": "red", "value": 100,
         "weight": 100, "round_chance": 0.0},
    ]})
    gated = GemCatalog(config)
    weights = gated.round_weights(rng)
    assert weights == {"red": 1}
    spawner = GemSpawner(gated, config.rtp, rng, weights)
    board = Board(6, 8, 8)
    populate_board(board, spawner, OutcomeBand.SMALL)
    assert all(g.key == "red" for _, g in board.occupied())
    print(f"✅ Lord round gating: ignis {ignis:.3f}, terra {terra:.3f}, disabled lords never spawn")


def test_max_win_meter_levels():
    meter = MaxWinMeter(MaxWinConfig())
    state, award = meter.collect(SessionState(), 3)
    assert award.levels == ["Bronze"] and award.reward == 50
    assert state.specials_collected == 3 and state.max_win_level == 1

    state, award = meter.collect(state, 1)
    assert award.levels == [] and award.reward == 0
    assert state.specials_collected == 4

    state, award = meter.collect(state, 11)
    assert award.levels == ["Silver", "Gold", "Platinum", "MAX WIN"]
    assert award.reward == 100 + 200 + 500 + 1000
    assert award.reset
    assert state.specials_collected == 0 and state.max_win_level == 0
    print("✅ Max-win meter: Bronze at 3, four levels at 15, reset")


def test_max_win_meter_disabled_and_no_reset():
    disabled = MaxWinMeter(MaxWinConfig(enabled=False))
    state, award = disabled.collect(SessionState(), 20)
    assert state == SessionState() and award.reward == 0

    sticky = MaxWinMeter(MaxWinConfig(reset_on_max_win=False))
    state, award = sticky.collect(SessionState(), 15)
    assert not award.reset and state.max_win_level == 5
    state, award = sticky.collect(state, 10)
    assert award.levels == []
    assert sticky.progress(state)["next_level"] is None
    print("✅ Max-win meter: disabled is inert, no-reset stays at the top")


if __name__ == "__main__":
    tests = [
        test_fresh_session_rtp,
        test_above_band_forces_loss,
        test_below_band_forces_win,
        test_win_streak_forces_loss,
        test_loss_streak_forces_win,
        test_rtp_correction_beats_streaks,
        test_sample_band_distribution,
        test_record_round,
        test_loss_bias_avoids_neighbors,
        test_loss_bias_fallback,
        test_loss_board_never_matches,
        test_big_band_copies_neighbor,
        test_populate_fills_board,
        test_lords_enabled_per_round,
        test_max_win_meter_levels,
        test_max_win_meter_disabled_and_no_reset,
    ]

    print(f"\n{'='*60}")
    print(f"RTP Controller Tests — {len(tests)} tests")
    print(f"{'='*60}\n")

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"❌ {test.__name__}: {e}")
            failed += 1
        print()

    print(f"{'='*60}")
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")
    print(f"{'='*60}")

    sys.exit(0 if failed == 0 else 1)
