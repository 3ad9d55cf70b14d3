#!/usr/bin/env python3
"""
GEMFALL — Engine CLI

Usage:
    python -m tools.gem_cli simulate --rounds 20000 --stake 100
    python -m tools.gem_cli play --stake 100 --rounds 3
    python -m tools.gem_cli dump-config
    python -m tools.gem_cli simulate --config my_tables.json --json
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.engine_schema import validate_config
from config.settings import EngineSettings, OUTPUT_DIR, configure_logging
from gem_engine.engine import MatchCascadeEngine
from gem_engine.errors import ConfigurationError
from gem_engine.simulate import simulate

console = Console()


def _print_board(snapshot, title: str):
    columns = len(snapshot)
    rows = len(snapshot[0]) if columns else 0
    table = Table(title=title, show_header=False, box=None)
    for _ in range(columns):
        table.add_column(justify="center")
    for row in reversed(range(rows)):
        table.add_row(*[(snapshot[c][row] or "·") for c in range(columns)])
    console.print(table)


def cmd_simulate(args, config) -> int:
    console.print(Panel(
        f"[bold]💎 Gemfall Simulation[/bold]\n\n"
        f"Rounds: {args.rounds:,}\n"
        f"Stake: {args.stake or config.reference_stake:g}\n"
        f"Target RTP: {config.rtp.target_rtp}% ± {config.rtp.drift_band}%\n"
        f"Config: {config.config_hash}",
        title="Simulation Starting", border_style="cyan",
    ))
    result = simulate(config, rounds=args.rounds, stake=args.stake, seed=args.seed)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    console.print(result.summary())
    table = Table(title="Outcome bands")
    table.add_column("Band")
    table.add_column("Share", justify="right")
    for band, share in result.band_distribution.items():
        table.add_row(band, f"{share*100:.2f}%")
    console.print(table)

    dist = Table(title="Win distribution (× stake)")
    dist.add_column("Bucket")
    dist.add_column("Share", justify="right")
    for bucket, share in result.distribution.items():
        dist.add_row(bucket, f"{share*100:.2f}%")
    console.print(dist)

    if args.save:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        path = OUTPUT_DIR / f"simulation_{result.config_hash}_{args.seed}.json"
        path.write_text(json.dumps(result.to_dict(), indent=2))
        console.print(f"[green]✅ Saved {path}[/green]")
    return 0


def cmd_play(args, config) -> int:
    engine = MatchCascadeEngine(config, seed=args.seed)
    stake = args.stake or config.reference_stake
    for n in range(1, args.rounds + 1):
        rnd = engine.start_round(stake)
        console.print(f"\n[bold cyan]Round {n}[/bold cyan] — band [yellow]{rnd.band.value}[/yellow]")
        _print_board(rnd.board.snapshot(), "Initial board")
        while (step := engine.advance_cascade_step()) is not None:
            console.print(
                f"  Cascade {step.cascade_level}: {len(step.matches)} matches, "
                f"removed {len(step.removed_gem_kinds)}, [green]+{step.payout_delta:.2f}[/green]"
            )
            if args.verbose:
                _print_board(step.board_after_removal, "After removal")
                _print_board(step.board_snapshot_after_refill, "After refill")
        result = engine.resolve_round_fully()
        status = "[yellow]cap reached[/yellow]" if result.cap_reached else "stable"
        console.print(f"  Payout [bold]{result.total_payout:.2f}[/bold] "
                      f"({result.cascade_count} cascades, {status})")
        if result.max_win_levels:
            console.print(f"  🏆 Max-win: {', '.join(result.max_win_levels)} +{result.max_win_reward:.2f}")

    snap = engine.get_rtp_session_snapshot()
    console.print(Panel(
        f"Staked: {snap['total_staked']:.2f}\n"
        f"Paid: {snap['total_paid']:.2f}\n"
        f"RTP: {snap['current_rtp']:.2f}% (target {snap['target_rtp']}%)",
        title="Session", border_style="green",
    ))
    return 0


def cmd_dump_config(args, config) -> int:
    print(config.model_dump_json(indent=2))
    warnings = validate_config(config)
    if warnings:
        print("\n⚠️  Warnings:", file=sys.stderr)
        for w in warnings:
            print(f"  - {w}", file=sys.stderr)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Gemfall match-cascade engine")
    parser.add_argument("--config", type=str, default="", help="Engine config JSON")
    parser.add_argument("--seed", type=int, default=EngineSettings.SEED)
    parser.add_argument("--log-level", type=str, default="")
    sub = parser.add_subparsers(dest="command", required=True)

    p_sim = sub.add_parser("simulate", help="Monte Carlo session simulation")
    p_sim.add_argument("--rounds", type=int, default=EngineSettings.SIMULATION_ROUNDS)
    p_sim.add_argument("--stake", type=float, default=None)
    p_sim.add_argument("--json", action="store_true")
    p_sim.add_argument("--save", action="store_true")

    p_play = sub.add_parser("play", help="Play rounds and print each cascade")
    p_play.add_argument("--rounds", type=int, default=1)
    p_play.add_argument("--stake", type=float, default=None)
    p_play.add_argument("-v", "--verbose", action="store_true")

    sub.add_parser("dump-config", help="Print the effective config as JSON")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = EngineSettings.load_engine_config(args.config)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 2

    handlers = {"simulate": cmd_simulate, "play": cmd_play, "dump-config": cmd_dump_config}
    return handlers[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
