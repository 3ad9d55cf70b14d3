#!/usr/bin/env python3
"""
GEMFALL — Unit & Integration Test Suite

Run: python tests.py
     python tests.py -v          # verbose
     python tests.py TestBoard   # run specific class

Test categories:
  TestGemCatalog       — weighted draws, payout lookup, multiplier clamps
  TestBoard            — placement errors, gravity, row growth
  TestRunDetection     — row/column runs, wild extension, terminators
  TestClusterDetection — flood fill shapes, wild sharing
  TestSpecialsAndBombs — Lord activation, blast sets
  TestCascadeResolver  — payout formula, overlap handling, termination
  TestEngineConfig     — fail-fast validation, JSON loading
"""

import json
import os
import random
import sys
import tempfile
import unittest
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.engine_schema import (
    BombType, GemCategory, GemSpec, MatchMode, config_from_dict, default_config,
    load_config, validate_config,
)
from gem_engine.board import Board
from gem_engine.cascade import CascadeResolver, CascadeState
from gem_engine.errors import CellOccupied, ConfigurationError, OutOfBounds
from gem_engine.gems import WILD_COLOR, GemCatalog
from gem_engine.matcher import (
    MatchSource, area_blast, blast_set, check_special_power, color_blast,
    detect_matches, find_bomb_blasts, find_clusters, find_runs,
    find_special_activations, line_blast,
)
from gem_engine.rtp import GemSpawner, OutcomeBand, populate_board

CONFIG = default_config()
CATALOG = GemCatalog(CONFIG)


def gems(*keys):
    """Row of gems from catalog keys; None stays empty."""
    return [CATALOG.create(k) if k else None for k in keys]


def board_of(*rows, max_rows=None):
    """Board from rows given bottom-up."""
    return Board.from_rows([gems(*r) for r in rows], max_rows=max_rows)


def resolver_for(board, mode=MatchMode.CLUSTERS, max_cascades=5, seed=0, band=OutcomeBand.SMALL):
    rng = random.Random(seed)
    spawner = GemSpawner(CATALOG, CONFIG.rtp, rng)
    return CascadeResolver(board, CATALOG, spawner, band, rng,
                           match_mode=mode, max_cascades=max_cascades)


# The 6x4 board with exactly one horizontal run of three reds (row 0).
SINGLE_RUN_ROWS = [
    ("red", "red", "red", "green", "blue", "yellow"),
    ("green", "blue", "yellow", "blue", "yellow", "green"),
    ("blue", "yellow", "green", "yellow", "green", "blue"),
    ("yellow", "green", "blue", "green", "blue", "yellow"),
]


# ============================================================
# Gem Catalog
# ============================================================

class TestGemCatalog(unittest.TestCase):

    def test_payout_lookup(self):
        """payout_for returns table values, 0 for unknown kinds."""
        self.assertEqual(CATALOG.payout_for("red"), 5)
        self.assertEqual(CATALOG.payout_for("lord_terra"), 200)
        self.assertEqual(CATALOG.payout_for("black_gem"), -50)
        self.assertEqual(CATALOG.payout_for("obstacle"), 0)
        self.assertEqual(CATALOG.payout_for(None), 0)

    def test_match_multiplier_clamps_above_last_breakpoint(self):
        """Sizes past the largest breakpoint use its multiplier."""
        self.assertEqual(CATALOG.match_multiplier(3), 1.0)
        self.assertEqual(CATALOG.match_multiplier(10), 5.0)
        self.assertEqual(CATALOG.match_multiplier(12), CATALOG.match_multiplier(10))
        self.assertEqual(CATALOG.match_multiplier(2), 1.0)

    def test_combo_multiplier_steps(self):
        self.assertEqual(CATALOG.combo_multiplier(1), 1.0)
        self.assertEqual(CATALOG.combo_multiplier(3), 1.5)
        self.assertEqual(CATALOG.combo_multiplier(9), 4.0)

    def test_multipliers_non_decreasing(self):
        sizes = [CATALOG.match_multiplier(s) for s in range(1, 20)]
        self.assertEqual(sizes, sorted(sizes))
        levels = [CATALOG.combo_multiplier(lvl) for lvl in range(1, 20)]
        self.assertEqual(levels, sorted(levels))

    def test_draw_weighted_normalizes(self):
        """Weights in any unit: a 3:1 split lands near 75%."""
        rng = random.Random(7)
        draws = [CATALOG.draw_weighted({"red": 300, "blue": 100}, rng) for _ in range(4000)]
        share = draws.count("red") / len(draws)
        self.assertGreater(share, 0.70)
        self.assertLess(share, 0.80)

    def test_draw_weighted_degenerate_defaults(self):
        """Empty or zero-sum tables return the most common kind instead of raising."""
        rng = random.Random(1)
        self.assertEqual(CATALOG.draw_weighted({}, rng), CATALOG.most_common_key)
        self.assertEqual(CATALOG.draw_weighted({"blue": 0}, rng), CATALOG.most_common_key)

    def test_created_gems_carry_kind(self):
        lord = CATALOG.create("lord_aqua")
        self.assertTrue(lord.kind.is_special)
        self.assertEqual(lord.color, "blue")
        self.assertEqual(lord.payout_value, 150)
        bomb = CATALOG.create("bomb_line")
        self.assertEqual(bomb.kind.bomb, BombType.LINE)
        self.assertIsNone(bomb.color)
        self.assertTrue(CATALOG.create("wild").is_wild)


# ============================================================
# Board
# ============================================================

class TestBoard(unittest.TestCase):

    def test_place_out_of_bounds(self):
        board = Board(6, 4, 8)
        with self.assertRaises(OutOfBounds):
            board.place(6, 0, CATALOG.create("red"))
        with self.assertRaises(OutOfBounds):
            board.place(0, 4, CATALOG.create("red"))   # beyond active rows
        with self.assertRaises(OutOfBounds):
            board.place(-1, 0, CATALOG.create("red"))

    def test_place_occupied(self):
        board = Board(3, 3, 3)
        board.place(1, 1, CATALOG.create("red"))
        with self.assertRaises(CellOccupied):
            board.place(1, 1, CATALOG.create("blue"))
        self.assertEqual(board.get(1, 1).key, "red")

    def test_compact_column_preserves_order(self):
        board = Board(1, 5, 5)
        board.place(0, 1, CATALOG.create("red"))
        board.place(0, 3, CATALOG.create("blue"))
        board.place(0, 4, CATALOG.create("green"))
        board.compact_column(0)
        self.assertEqual(board.snapshot()[0], ("red", "blue", "green", None, None))
        self.assertFalse(board.has_floating_gems())

    def test_gravity_invariant_after_compact(self):
        rng = random.Random(3)
        board = Board(6, 8, 8)
        populate_board(board, GemSpawner(CATALOG, CONFIG.rtp, rng), OutcomeBand.SMALL)
        for col, row in list(board.coords()):
            if rng.random() < 0.4:
                board.remove(col, row)
        board.compact()
        for col in range(board.columns):
            column = board.snapshot()[col]
            first_gap = column.index(None) if None in column else len(column)
            self.assertTrue(all(k is None for k in column[first_gap:]), column)

    def test_grow_active_rows_clamps(self):
        board = Board(6, 4, 8)
        self.assertEqual(board.grow_active_rows(2), 2)
        self.assertEqual(board.active_rows, 6)
        self.assertEqual(board.grow_active_rows(5), 2)
        self.assertEqual(board.active_rows, 8)
        self.assertEqual(board.grow_active_rows(1), 0)
        self.assertEqual(board.active_rows, 8)

    def test_is_empty(self):
        board = Board(2, 2, 2)
        self.assertTrue(board.is_empty())
        board.place(0, 0, CATALOG.create("red"))
        self.assertFalse(board.is_empty())
        board.remove(0, 0)
        self.assertTrue(board.is_empty())


# ============================================================
# Run detection
# ============================================================

class TestRunDetection(unittest.TestCase):

    def test_full_row_single_run(self):
        board = board_of(["red"] * 6)
        runs = find_runs(board)
        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0].size, 6)
        self.assertEqual(runs[0].matched_color, "red")

    def test_differing_color_splits_run(self):
        """One differing gem splits the row into at most two shorter runs."""
        for k in range(6):
            row = ["red"] * 6
            row[k] = "blue"
            runs = find_runs(board_of(row))
            self.assertLessEqual(len(runs), 2)
            for run in runs:
                self.assertLess(run.size, 6)
                self.assertNotIn((k, 0), run.coords)

    def test_wild_extends_run(self):
        runs = find_runs(board_of(["red", "wild", "red"]))
        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0].size, 3)
        self.assertEqual(runs[0].matched_color, "red")

    def test_wild_bridges_two_colors(self):
        runs = find_runs(board_of(["red", "red", "wild", "blue", "blue"]))
        colors = sorted(r.matched_color for r in runs)
        self.assertEqual(colors, ["blue", "red"])
        for run in runs:
            self.assertIn((2, 0), run.coords)
            self.assertEqual(run.size, 3)

    def test_short_wild_run_discarded(self):
        runs = find_runs(board_of(["wild", "wild", "black_gem", "red", "green"]))
        self.assertEqual(runs, [])

    def test_penalty_and_empty_terminate(self):
        self.assertEqual(find_runs(board_of(["red", "red", "black_gem", "red", "red"])), [])
        self.assertEqual(find_runs(board_of(["red", "red", None, "red", "red"])), [])

    def test_bomb_terminates_run(self):
        self.assertEqual(find_runs(board_of(["blue", "blue", "bomb_small", "blue"])), [])

    def test_vertical_run(self):
        board = board_of(["green", "red"], ["green", "blue"], ["green", "red"])
        runs = find_runs(board)
        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0].coords, ((0, 0), (0, 1), (0, 2)))

    def test_special_joins_run_by_color(self):
        runs = find_runs(board_of(["red", "lord_ignis", "red"]))
        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0].matched_color, "red")


# ============================================================
# Cluster detection
# ============================================================

class TestClusterDetection(unittest.TestCase):

    def test_l_shape_is_one_cluster(self):
        board = board_of(
            ["red", "red", "red"],
            ["red", "green", "blue"],
            ["red", "blue", "green"],
        )
        clusters = find_clusters(board)
        self.assertEqual(len(clusters), 1)
        self.assertEqual(clusters[0].size, 5)
        self.assertEqual(clusters[0].matched_color, "red")

    def test_plus_shape_is_one_cluster(self):
        board = board_of(
            ["green", "red", "blue"],
            ["red", "red", "red"],
            ["blue", "red", "green"],
        )
        clusters = find_clusters(board)
        self.assertEqual(len(clusters), 1)
        self.assertEqual(clusters[0].size, 5)

    def test_pairs_are_not_clusters(self):
        board = board_of(["red", "red", "blue", "blue"], ["green", "yellow", "green", "yellow"])
        self.assertEqual(find_clusters(board), [])

    def test_penalty_never_clusters(self):
        board = board_of(["black_gem"] * 4)
        self.assertEqual(find_clusters(board), [])

    def test_wild_shared_between_colors(self):
        board = board_of(["red", "red", "wild", "blue", "blue"])
        clusters = find_clusters(board)
        self.assertEqual(sorted(c.matched_color for c in clusters), ["blue", "red"])
        for c in clusters:
            self.assertIn((2, 0), c.coords)

    def test_wild_only_region(self):
        lone = board_of(["wild", "wild", "wild"])
        clusters = find_clusters(lone)
        self.assertEqual(len(clusters), 1)
        self.assertEqual(clusters[0].matched_color, WILD_COLOR)


# ============================================================
# Specials & bombs
# ============================================================

class TestSpecialsAndBombs(unittest.TestCase):

    def test_lord_triggered_by_common_neighbor(self):
        board = board_of(["red", "lord_ignis", "green"])
        self.assertEqual(check_special_power(board, 1, 0), "red")

    def test_lord_not_triggered_by_wild_or_lord(self):
        board = board_of(["wild", "lord_ignis", "lord_ignis"])
        self.assertIsNone(check_special_power(board, 1, 0))
        self.assertIsNone(check_special_power(board, 0, 0))

    def test_activation_explodes_whole_color(self):
        board = board_of(
            ["red", "lord_ignis", "green"],
            ["blue", "green", "blue"],
            ["green", "blue", "red"],
        )
        acts = find_special_activations(board)
        self.assertEqual(len(acts), 1)
        self.assertEqual(set(acts[0].coords), {(0, 0), (1, 0), (2, 2)})
        self.assertEqual(acts[0].origin, (1, 0))

    def test_area_blast_radius_and_clip(self):
        rows = [["blue"] * 5 for _ in range(5)]
        board = board_of(*rows)
        self.assertEqual(len(area_blast(board, (2, 2), 1)), 9)
        self.assertEqual(len(area_blast(board, (2, 2), 2)), 25)
        self.assertEqual(len(area_blast(board, (0, 0), 1)), 4)
        self.assertEqual(len(area_blast(board, (0, 0), 3)), 16)

    def test_area_blast_skips_empty(self):
        board = board_of(["red", None, "red"], ["red", "red", "red"])
        self.assertEqual(len(area_blast(board, (1, 1), 1)), 5)

    def test_line_blast(self):
        board = board_of(["red", "blue", "green"], ["yellow", "red", None])
        self.assertEqual(line_blast(board, (1, 1), horizontal=True), [(0, 1), (1, 1)])
        self.assertEqual(line_blast(board, (1, 1), horizontal=False), [(1, 0), (1, 1)])

    def test_color_blast(self):
        board = board_of(["red", "blue", "red"], ["lord_ignis", "green", "wild"])
        self.assertEqual(color_blast(board, "red"), [(0, 0), (0, 1), (2, 0)])

    def test_blast_set_includes_bomb(self):
        board = board_of(["red", "bomb_color", "blue"], ["green", "blue", "red"])
        cells, color = blast_set(board, (1, 0), random.Random(5), CATALOG.colors)
        self.assertIn((1, 0), cells)
        self.assertIn(color, {"red", "blue", "green"})
        for c in cells:
            if c != (1, 0):
                self.assertEqual(board.get(*c).color, color)

    def test_every_bomb_detonates(self):
        board = board_of(["bomb_small", "red", "blue", "bomb_line"])
        blasts = find_bomb_blasts(board, random.Random(2))
        self.assertEqual({b.origin for b in blasts}, {(0, 0), (3, 0)})
        self.assertTrue(all(b.source == MatchSource.BOMB for b in blasts))

    def test_detect_priority_order(self):
        board = board_of(
            ["red", "lord_ignis", "bomb_small", "yellow"],
            ["green", "green", "green", "yellow"],
        )
        found = detect_matches(board, MatchMode.CLUSTERS, random.Random(0))
        sources = [m.source for m in found]
        self.assertEqual(sources, [MatchSource.SPECIAL, MatchSource.BOMB, MatchSource.CLUSTER])

    def test_run_and_cluster_same_cells_reported_once(self):
        board = board_of(*SINGLE_RUN_ROWS)
        found = detect_matches(board, MatchMode.BOTH, random.Random(0))
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].source, MatchSource.RUN)


# ============================================================
# Cascade resolver
# ============================================================

class TestCascadeResolver(unittest.TestCase):

    def test_single_run_pays_fifteen(self):
        """Three reds × 5 × match(3)=1.0 × combo(1)=1.0 = 15."""
        for mode in MatchMode:
            board = board_of(*SINGLE_RUN_ROWS)
            resolver = resolver_for(board, mode=mode, max_cascades=1)
            step = resolver.step()
            self.assertIsNotNone(step, mode)
            self.assertEqual(step.payout_delta, 15.0)
            self.assertEqual(step.removed_gem_kinds, ["red", "red", "red"])
            for col in range(3):
                self.assertIsNone(step.board_after_removal[col][0])
            self.assertEqual(step.board_after_removal[3][0], "green")
            resolver.resolve()
            self.assertEqual(resolver.total_payout, 15.0)
            self.assertTrue(resolver.done)

    def test_refill_leaves_full_board(self):
        board = board_of(*SINGLE_RUN_ROWS)
        resolver = resolver_for(board, max_cascades=1)
        step = resolver.step()
        self.assertTrue(all(k is not None for col in step.board_snapshot_after_refill for k in col))
        self.assertFalse(board.has_floating_gems())

    def test_overlapping_matches_pay_each_gem_once(self):
        board = board_of(
            ["red", "red", "red"],
            ["red", "green", "blue"],
            ["red", "blue", "green"],
        )
        resolver = resolver_for(board, mode=MatchMode.BOTH, max_cascades=1)
        step = resolver.step()
        kinds = [m.source for m in step.matches]
        self.assertEqual(kinds.count(MatchSource.RUN), 2)
        self.assertEqual(kinds.count(MatchSource.CLUSTER), 1)
        self.assertEqual(step.removed_gem_kinds.count("red"), 5)
        self.assertEqual(len(step.removed_gem_kinds), 5)
        self.assertEqual(step.payout_delta, 25.0)   # 15 + 10 + 0

    def test_cluster_uses_size_multiplier(self):
        board = board_of(
            ["red", "red", "red"],
            ["red", "green", "blue"],
            ["red", "blue", "green"],
        )
        step = resolver_for(board, mode=MatchMode.CLUSTERS, max_cascades=1).step()
        self.assertEqual(step.payout_delta, 25 * 2.0)

    def test_special_activation_payout(self):
        board = board_of(
            ["red", "lord_ignis", "green"],
            ["blue", "green", "blue"],
            ["green", "blue", "red"],
        )
        step = resolver_for(board, max_cascades=1).step()
        self.assertEqual(step.matches[0].source, MatchSource.SPECIAL)
        self.assertEqual(step.payout_delta, (5 + 100 + 5) * 10.0)
        self.assertEqual(step.specials_removed, 1)

    def test_no_matches_goes_done(self):
        board = board_of(["red", "blue"], ["green", "yellow"])
        resolver = resolver_for(board)
        self.assertIsNone(resolver.step())
        self.assertEqual(resolver.state, CascadeState.DONE)
        self.assertEqual(resolver.total_payout, 0.0)
        self.assertEqual(resolver.scan_passes, 1)
        self.assertIsNone(resolver.step())

    def test_termination_within_cap(self):
        """Any board resolves within max_cascades + 1 scan passes."""
        for seed in range(25):
            rng = random.Random(seed)
            board = Board(6, 4, 8)
            spawner = GemSpawner(CATALOG, CONFIG.rtp, rng)
            populate_board(board, spawner, OutcomeBand.MEGA)
            resolver = CascadeResolver(board, CATALOG, spawner, OutcomeBand.MEGA, rng,
                                       match_mode=MatchMode.BOTH, max_cascades=3,
                                       refill_rows_per_cascade=2)
            steps = resolver.resolve()
            self.assertLessEqual(len(steps), 3)
            self.assertLessEqual(resolver.scan_passes, 4)
            self.assertTrue(resolver.done)
            self.assertLessEqual(board.active_rows, 8)

    def test_combo_grows_per_cascade(self):
        for seed in range(40):
            rng = random.Random(seed)
            board = Board(6, 6, 6)
            spawner = GemSpawner(CATALOG, CONFIG.rtp, rng)
            populate_board(board, spawner, OutcomeBand.MEGA)
            resolver = CascadeResolver(board, CATALOG, spawner, OutcomeBand.MEGA, rng, max_cascades=5)
            steps = resolver.resolve()
            self.assertEqual([s.cascade_level for s in steps], list(range(1, len(steps) + 1)))

    def test_cap_reached_flag(self):
        config = config_from_dict({"gems": [
            {"key": "red", "category": "common", "color": "red", "value": 1, "weight": 1},
        ]})
        catalog = GemCatalog(config)
        rng = random.Random(0)
        board = Board(3, 3, 3)
        spawner = GemSpawner(catalog, config.rtp, rng)
        populate_board(board, spawner, OutcomeBand.SMALL)
        resolver = CascadeResolver(board, catalog, spawner, OutcomeBand.SMALL, rng, max_cascades=2)
        steps = resolver.resolve()
        self.assertEqual(len(steps), 2)
        self.assertTrue(resolver.cap_reached)
        self.assertEqual(resolver.scan_passes, 3)
        # 9 reds × 1 × match(9)=4.5, combo 1.0 then 1.2
        self.assertAlmostEqual(resolver.total_payout, 9 * 4.5 * 1.0 + 9 * 4.5 * 1.2)


# ============================================================
# Configuration
# ============================================================

class TestEngineConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def test_default_tables(self):
        self.assertEqual(CONFIG.board.columns, 6)
        self.assertEqual(CONFIG.board.max_rows, 8)
        self.assertEqual(CONFIG.max_cascades, 5)
        self.assertEqual(CONFIG.rtp.target_rtp, 96.0)
        self.assertEqual(CONFIG.multipliers.match[10], 5.0)
        self.assertEqual(len(CONFIG.config_hash), 16)

    def test_empty_multiplier_table_rejected(self):
        with self.assertRaises(ConfigurationError):
            config_from_dict({"multipliers": {"match": {}}})

    def test_non_positive_multiplier_rejected(self):
        with self.assertRaises(ConfigurationError):
            config_from_dict({"multipliers": {"combo": {"1": 1.0, "2": 0}}})

    def test_zero_weights_rejected(self):
        specs = [g.model_dump() for g in CONFIG.gems]
        for s in specs:
            s["weight"] = 0
        with self.assertRaises(ConfigurationError):
            config_from_dict({"gems": specs})

    def test_orphan_special_rejected(self):
        with self.assertRaises(ConfigurationError):
            config_from_dict({"gems": [
                {"key": "red", "category": "common", "color": "red", "weight": 1},
                {"key": "lord_x", "category": "special", "color": "purple", "weight": 1},
            ]})

    def test_bad_area_radius_rejected(self):
        with self.assertRaises(Exception):
            GemSpec(key="b", category=GemCategory.BOMB, bomb=BombType.AREA, radius=4)

    def test_rows_order_rejected(self):
        with self.assertRaises(ConfigurationError):
            config_from_dict({"board": {"min_rows": 9, "max_rows": 8}})

    def test_start_row_range_clamped(self):
        self.assertEqual(CONFIG.board.start_row_range(), (3, 4))
        low = config_from_dict({"board": {"min_rows": 5, "start_rows_max": 4}})
        self.assertEqual(low.board.start_row_range(), (5, 5))
        high = config_from_dict({"board": {"start_rows_max": 12, "max_rows": 6}})
        self.assertEqual(high.board.start_row_range(), (3, 6))

    def test_load_round_trip(self):
        path = Path(self.tmpdir) / "engine.json"
        path.write_text(CONFIG.model_dump_json(indent=2))
        loaded = load_config(path)
        self.assertEqual(loaded.config_hash, CONFIG.config_hash)
        self.assertEqual(loaded.multipliers.match, CONFIG.multipliers.match)

    def test_load_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_config(os.path.join(self.tmpdir, "nope.json"))

    def test_load_invalid_json_names_file(self):
        path = Path(self.tmpdir) / "bad.json"
        path.write_text(json.dumps({"max_cascades": 0}))
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(path)
        self.assertIn("bad.json", str(ctx.exception))

    def test_validate_config_warnings(self):
        self.assertEqual(validate_config(CONFIG), [])
        low = config_from_dict({"rtp": {"target_rtp": 80}})
        self.assertTrue(any("unusually low" in w for w in validate_config(low)))


if __name__ == "__main__":
    unittest.main()
