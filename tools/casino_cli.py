#!/usr/bin/env python3
"""
CASINOCORE — Command Line

Usage:
    python -m tools.casino_cli table --risk low --pockets 10
    python -m tools.casino_cli table --risk high --pockets 16 --target-rtp 0.97
    python -m tools.casino_cli simulate --drops 5000 --risk medium --seed 7
    python -m tools.casino_cli simulate --game crash --rounds 20000 --auto-cashout 2
    python -m tools.casino_cli play --wager 10 --risk low --balls 3
"""

import argparse
import json
from decimal import Decimal

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.game_schema import RiskLevel, default_plinko_config
from config.settings import Settings, configure_logging
from game_engine.core.errors import GameError
from game_engine.core.ledger import InMemoryBalanceService, PayoutLedger
from game_engine.core.rng import make_random_source
from game_engine.plinko.session import PlinkoSession
from tools.analysis import simulate_crash, simulate_drops, table_report

console = Console()

RISK_CHOICES = [r.value for r in RiskLevel]


def cmd_table(args) -> int:
    report = table_report(args.risk, args.pockets, target_rtp=args.target_rtp)
    if args.json:
        console.print_json(json.dumps(report))
        return 0

    table = Table(title=f"Plinko · {report['risk']} risk · {report['pocket_count']} pockets")
    table.add_column("Pocket", justify="right", style="cyan")
    table.add_column("Multiplier", justify="right")
    table.add_column("P(land)", justify="right")
    table.add_column("Contribution", justify="right")
    for p in report["pockets"]:
        style = "green" if p["multiplier"] >= 1 else "red"
        table.add_row(
            str(p["index"]),
            f"[{style}]{p['multiplier']:g}x[/{style}]",
            f"{p['probability']*100:.3f}%",
            f"{p['contribution']:.4f}",
        )
    console.print(table)
    console.print(f"[bold]Binomial RTP:[/bold] {report['binomial_rtp']*100:.3f}%")
    return 0


def cmd_simulate(args) -> int:
    if args.game == "crash":
        result = simulate_crash(rounds=args.rounds, auto_cashout=args.auto_cashout,
                                seed=args.seed)
    else:
        result = simulate_drops(drops=args.drops, risk=args.risk, pocket_count=args.pockets,
                                seed=args.seed, batch=args.batch)
    if args.json:
        console.print_json(json.dumps(result.to_dict()))
        return 0

    console.print(Panel(result.summary(), title="Monte Carlo", border_style="cyan"))
    if result.game_type == "plinko":
        histogram = Table(title="Pocket histogram")
        histogram.add_column("Pocket", justify="right", style="cyan")
        histogram.add_column("Landed", justify="right")
        histogram.add_column("Share", justify="right")
        for pocket, count in result.histogram.items():
            histogram.add_row(pocket, f"{count:,}", f"{count / max(result.rounds, 1)*100:.2f}%")
        console.print(histogram)
    return 0


def cmd_play(args) -> int:
    ledger = PayoutLedger(InMemoryBalanceService(Decimal(str(args.balance))))
    seed = args.seed if args.seed is not None else Settings.SEED
    session = PlinkoSession(
        ledger,
        config=default_plinko_config(pocket_count=args.pockets, risk=args.risk,
                                     target_rtp=None if args.raw else Settings.target_rtp()),
        rng=make_random_source(seed),
    )
    before = ledger.balance
    for _ in range(args.balls):
        result = session.drop(args.wager)
        if not result.ok:
            console.print(f"[red]✗ {result.error.kind.value}:[/red] {result.error.message}")
            break
    ticks = session.run_until_settled()
    session.close()

    table = Table(title=f"Plinko · {session.risk.value} risk")
    table.add_column("Ball", justify="right", style="cyan")
    table.add_column("Pocket", justify="right")
    table.add_column("Multiplier", justify="right")
    table.add_column("Wager", justify="right")
    table.add_column("Payout", justify="right")
    for r in reversed(session.results):
        style = "green" if r.payout >= r.wager else "red"
        table.add_row(str(r.ball_id), str(r.pocket_index), f"{r.multiplier:g}x",
                      str(r.wager), f"[{style}]{r.payout}[/{style}]")
    console.print(table)
    console.print(Panel(
        f"Balance before: {before}\n"
        f"Balance after:  {ledger.balance}\n"
        f"Net:            {ledger.balance - before}\n"
        f"Ticks:          {ticks}",
        title="Session", border_style="green" if ledger.balance >= before else "red",
    ))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Casino game engine tools")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p_table = sub.add_parser("table", help="Print a Plinko multiplier table")
    p_table.add_argument("--risk", choices=RISK_CHOICES, default=Settings.DEFAULT_RISK)
    p_table.add_argument("--pockets", type=int, default=10)
    p_table.add_argument("--target-rtp", type=float, default=None)
    p_table.add_argument("--json", action="store_true")
    p_table.set_defaults(func=cmd_table)

    p_sim = sub.add_parser("simulate", help="Monte Carlo run through the real engine")
    p_sim.add_argument("--game", choices=["plinko", "crash"], default="plinko")
    p_sim.add_argument("--drops", type=int, default=1_000)
    p_sim.add_argument("--batch", type=int, default=100)
    p_sim.add_argument("--risk", choices=RISK_CHOICES, default=Settings.DEFAULT_RISK)
    p_sim.add_argument("--pockets", type=int, default=10)
    p_sim.add_argument("--rounds", type=int, default=10_000)
    p_sim.add_argument("--auto-cashout", type=float, default=2.0)
    p_sim.add_argument("--seed", type=int, default=42)
    p_sim.add_argument("--json", action="store_true")
    p_sim.set_defaults(func=cmd_simulate)

    p_play = sub.add_parser("play", help="Drop balls against a throw-away balance")
    p_play.add_argument("--wager", type=str, default="10")
    p_play.add_argument("--balls", type=int, default=1)
    p_play.add_argument("--risk", choices=RISK_CHOICES, default=Settings.DEFAULT_RISK)
    p_play.add_argument("--pockets", type=int, default=10)
    p_play.add_argument("--balance", type=float, default=Settings.STARTING_BALANCE)
    p_play.add_argument("--seed", type=int, default=None)
    p_play.add_argument("--raw", action="store_true",
                        help="Use the uncalibrated risk curve instead of CASINOCORE_TARGET_RTP")
    p_play.set_defaults(func=cmd_play)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return args.func(args)
    except GameError as e:
        console.print(f"[red]✗ {e.kind.value}:[/red] {e.message}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
