#!/usr/bin/env python3
"""
Tests for the Engine Facade, Simulator and CLI

Validates:
1.  play_round folds the round into the session exactly once
2.  Stepwise advance and play_round agree for the same seed
3.  Round lifecycle errors (double start, no round, bad stake)
4.  Forced loss when the session RTP is above band
5.  Payout scales with stake / reference stake
6.  Round results are JSON-serializable, steps included
7.  Simulation is reproducible for a fixed seed
8.  Win buckets and streak analysis
9.  CLI commands exit cleanly; bad config exits 2
10. Forced-loss rounds pay nothing; a session steers toward target RTP
11. Start height is drawn per round between min_rows and start_rows_max
"""

import json
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from gem_engine import MatchCascadeEngine, NoActiveRoundError, RoundInProgressError, SessionState
from gem_engine.rtp import OutcomeBand
from gem_engine.simulate import analyze_streaks, categorize_win, simulate
from tools.gem_cli import main as cli_main


def test_play_round_updates_session():
    engine = MatchCascadeEngine(seed=1)
    result = engine.play_round(100)
    session = engine.session
    assert session.rounds_played == 1
    assert session.total_staked == 100
    assert session.total_paid == result.total_payout
    assert result.total_payout >= 0
    assert result.cascade_count == len(result.steps)
    assert result.cascade_count <= engine.config.max_cascades
    print(f"✅ play_round: band={result.outcome_band.value}, payout={result.total_payout:.2f}")


def test_stepwise_matches_play_round():
    for seed in range(10):
        a = MatchCascadeEngine(seed=seed)
        a.start_round(100)
        levels = []
        while (step := a.advance_cascade_step()) is not None:
            levels.append(step.cascade_level)
        stepwise = a.resolve_round_fully()

        b = MatchCascadeEngine(seed=seed)
        direct = b.play_round(100)

        assert levels == list(range(1, len(levels) + 1))
        assert stepwise.total_payout == direct.total_payout
        assert stepwise.cascade_count == direct.cascade_count == len(levels)
        assert a.session == b.session
        # Advancing a finished round is a no-op
        assert a.advance_cascade_step() is None
    print("✅ Stepwise advance == play_round for 10 seeds")


def test_round_lifecycle_errors():
    engine = MatchCascadeEngine(seed=2)
    try:
        engine.advance_cascade_step()
        raise AssertionError("advance without a round should fail")
    except NoActiveRoundError:
        pass
    try:
        engine.start_round(0)
        raise AssertionError("zero stake should fail")
    except ValueError:
        pass

    engine.start_round(100)
    try:
        engine.start_round(100)
        raise AssertionError("second start should fail")
    except RoundInProgressError:
        pass

    engine.resolve_round_fully()
    engine.start_round(100)          # finished round may be replaced
    engine.resolve_round_fully()
    assert engine.session.rounds_played == 2
    print("✅ Lifecycle: NoActiveRound, ValueError, RoundInProgress")


def test_forced_loss_band():
    engine = MatchCascadeEngine(seed=3, state=SessionState(total_staked=1000, total_paid=1100))
    rnd = engine.start_round(100)
    assert rnd.band == OutcomeBand.LOSS
    engine.resolve_round_fully()
    assert engine.session.rounds_played == 1
    print("✅ Session RTP 110% → LOSS band")


def test_forced_loss_rounds_pay_nothing():
    for seed in range(200):
        engine = MatchCascadeEngine(seed=seed, state=SessionState(total_staked=1000, total_paid=1100))
        result = engine.play_round(100)
        assert result.outcome_band == OutcomeBand.LOSS
        assert result.total_payout == 0, (seed, result.total_payout)
        assert result.cascade_count == 0
    print("✅ 200 forced-loss rounds: zero payout, zero cascades")


def test_session_rtp_steers_to_target():
    result = simulate(rounds=3000, seed=11)
    assert 85.0 <= result.rtp <= 110.0, result.rtp
    assert result.hit_rate > 0
    assert result.band_distribution["loss"] < 1.0
    print(f"✅ 3000 rounds: RTP {result.rtp:.2f}% (target {result.target_rtp}%), hit {result.hit_rate:.3f}")


def test_start_rows_drawn_per_round():
    engine = MatchCascadeEngine(seed=13)
    heights = set()
    for _ in range(60):
        rnd = engine.start_round(100)
        heights.add(len(rnd.board.snapshot()[0]))
        engine.resolve_round_fully()
    assert heights == {3, 4}, heights
    print("✅ Start height drawn from 3..4 rows")


def test_streak_reset_committed_at_round_end():
    state = SessionState(total_staked=1000, total_paid=960, consecutive_wins=3)
    engine = MatchCascadeEngine(seed=4, state=state)
    rnd = engine.start_round(100)
    assert rnd.band == OutcomeBand.LOSS
    assert engine.session.consecutive_wins == 3     # unchanged mid-round
    result = engine.resolve_round_fully()
    expected = 1 if result.total_payout > 0 else 0
    assert engine.session.consecutive_wins == expected
    print("✅ Win-streak reset lands with the round result")


def test_payout_scale():
    engine = MatchCascadeEngine(seed=5)
    assert engine.config.reference_stake == 250
    assert engine.payout_scale(250) == 1.0
    assert engine.payout_scale(500) == 2.0
    rnd = engine.start_round(500)
    assert rnd.resolver.payout_scale == 2.0
    print("✅ Payout scale = stake / reference_stake")


def test_result_serializable():
    engine = MatchCascadeEngine(seed=6)
    for _ in range(5):
        result = engine.play_round(100)
        data = json.loads(json.dumps(result.to_dict(include_steps=True)))
        assert data["cascade_count"] == len(data["steps"])
        for step in data["steps"]:
            assert step["cascade_level"] >= 1
            assert len(step["board_after_removal"]) == engine.config.board.columns
    snap = engine.get_rtp_session_snapshot()
    json.dumps(snap)
    assert snap["rounds_played"] == 5
    assert snap["target_rtp"] == 96.0
    assert "next_level" in snap["max_win"]
    print("✅ RoundResult.to_dict(include_steps=True) and session snapshot serialize")


def test_simulation_reproducible():
    first = simulate(rounds=150, seed=3).to_dict()
    second = simulate(rounds=150, seed=3).to_dict()
    first.pop("duration_s")
    second.pop("duration_s")
    assert first == second
    assert first["rounds"] == 150
    assert first["stake"] == 250
    assert first["total_wagered"] == 150 * 250
    assert abs(sum(first["band_distribution"].values()) - 1.0) < 0.01
    assert abs(sum(first["distribution"].values()) - 1.0) < 0.01
    print(f"✅ simulate(seed=3) reproducible: RTP {first['rtp']:.2f}%")


def test_win_buckets_and_streaks():
    assert categorize_win(0) == "0x"
    assert categorize_win(0.5) == "0-1x"
    assert categorize_win(3) == "2-5x"
    assert categorize_win(250) == "100x+"
    streaks = analyze_streaks([0, 0, 5, 7, 9, 0, 0, 0, 1])
    assert streaks == {"max_win_streak": 3, "max_loss_streak": 3}
    assert analyze_streaks([]) == {}
    print("✅ Win buckets and streak analysis")


def test_cli_commands():
    assert cli_main(["--log-level", "WARNING", "dump-config"]) == 0
    assert cli_main(["--seed", "3", "--log-level", "WARNING", "play", "--rounds", "2"]) == 0
    assert cli_main(["--log-level", "WARNING", "simulate", "--rounds", "20", "--json"]) == 0
    missing = str(Path(tempfile.mkdtemp()) / "missing.json")
    assert cli_main(["--config", missing, "dump-config"]) == 2
    print("✅ CLI: dump-config, play, simulate → 0; missing config → 2")


if __name__ == "__main__":
    tests = [
        test_play_round_updates_session,
        test_stepwise_matches_play_round,
        test_round_lifecycle_errors,
        test_forced_loss_band,
        test_forced_loss_rounds_pay_nothing,
        test_session_rtp_steers_to_target,
        test_start_rows_drawn_per_round,
        test_streak_reset_committed_at_round_end,
        test_payout_scale,
        test_result_serializable,
        test_simulation_reproducible,
        test_win_buckets_and_streaks,
        test_cli_commands,
    ]

    print(f"\n{'='*60}")
    print(f"Engine Round Tests — {len(tests)} tests")
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
