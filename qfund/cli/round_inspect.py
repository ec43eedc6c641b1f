from __future__ import annotations

"""
qfund.cli.round_inspect
-----------------------

Inspect and dry-run a funding round from a tally document.

Examples
--------
# Alpha and per-recipient allocations for a 400-unit budget
python -m qfund.cli.round_inspect preview tally.json --budget 400

# Same, clamping alpha to 1 when the budget exceeds demand, as JSON
python -m qfund.cli.round_inspect preview tally.json --budget 2000000 --clamp --json

# Digest to publish before the round seals
python -m qfund.cli.round_inspect digest tally.json

# Full in-memory round: batches, seal, finalize, claim + redeem everything
python -m qfund.cli.round_inspect simulate tally.json --budget 400 --batch-size 3

# Resolved configuration (defaults < $QFUND_CONFIG_FILE < QFUND_* env)
python -m qfund.cli.round_inspect show-config
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import typer

from qfund import config as qconfig
from qfund.adapters.ledger import InMemoryLedger
from qfund.adapters.registry import SimpleRecipientRegistry
from qfund.economics.allocation import allocation_table, compute_alpha, dust, total_quadratic_votes
from qfund.errors import InvalidConfig, QFundError
from qfund.round.coordinator import RoundCoordinator
from qfund.tally.records import TallyRecord, load_tally

log = logging.getLogger(__name__)

app = typer.Typer(
    name="round-inspect",
    add_completion=False,
    no_args_is_help=True,
    help="Preview allocations and simulate quadratic-funding round settlement.",
)

POOL_ACCOUNT = "round/pool"
RESERVE_ACCOUNT = "vendor/reserve"

# -------------------- utils --------------------


def _fail(err: QFundError) -> NoReturn:
    typer.echo(json.dumps(err.to_dict(), sort_keys=True), err=True)
    raise typer.Exit(code=1)


def _load(tally: Path) -> TallyRecord:
    try:
        return load_tally(tally)
    except QFundError as e:
        _fail(e)


def _policy_config(vcf: Optional[int], clamp: bool, zero_boost: bool,
                   tree_depth: Optional[int] = None) -> qconfig.RoundConfig:
    changes: Dict[str, Any] = {}
    if vcf is not None:
        changes["voice_credit_factor"] = vcf
    if clamp:
        changes["alpha_overflow"] = "clamp"
    if zero_boost:
        changes["zero_boost"] = "zero"
    if tree_depth is not None:
        changes["tree_depth"] = tree_depth
    try:
        cfg = replace(qconfig.load(), **changes)
        cfg.validate()
    except ValueError as e:
        _fail(InvalidConfig(str(e), details=changes))
    return cfg


def _print_table(rows: List[Dict[str, int]]) -> None:
    typer.echo(f"{'index':>6}  {'spent':>14}  {'tally':>10}  {'amount':>16}")
    for r in rows:
        typer.echo(f"{r['recipient_index']:>6}  {r['spent']:>14}  {r['tally']:>10}  {r['amount']:>16}")


# -------------------- commands --------------------


@app.command("preview")
def preview(
    tally: Path = typer.Argument(..., exists=True, dir_okay=False, help="Tally JSON document."),
    budget: int = typer.Option(..., "--budget", min=0, help="Matching budget in smallest units."),
    vcf: Optional[int] = typer.Option(None, "--vcf", min=1, help="Voice credit factor override."),
    clamp: bool = typer.Option(False, "--clamp", help="Clamp alpha to 1 instead of rejecting."),
    zero_boost: bool = typer.Option(False, "--zero-boost", help="Use alpha=0 when there is no boost."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON."),
) -> None:
    """Compute alpha and every recipient's allocation without touching any ledger."""
    rec = _load(tally)
    cfg = _policy_config(vcf, clamp, zero_boost)
    try:
        alpha = compute_alpha(
            budget,
            rec.total_spent,
            total_quadratic_votes(rec.tally),
            voice_credit_factor=cfg.voice_credit_factor,
            precision=cfg.precision,
            overflow=cfg.alpha_overflow,
            zero_boost=cfg.zero_boost,
        )
        rows = allocation_table(rec.spent, rec.tally, alpha, voice_credit_factor=cfg.voice_credit_factor)
    except QFundError as e:
        _fail(e)

    total = sum(r["amount"] for r in rows)
    left = dust(budget, (r["amount"] for r in rows))
    if as_json:
        typer.echo(json.dumps({
            "alpha": alpha.to_dict(),
            "budget": budget,
            "allocations": rows,
            "total": total,
            "dust": left,
        }, indent=2, sort_keys=True))
        return
    typer.echo(f"alpha={alpha.value}/{alpha.precision} (~{alpha.as_fraction():.6f}){' clamped' if alpha.clamped else ''}")
    _print_table(rows)
    typer.echo(f"total={total} budget={budget} dust={left}")


@app.command("digest")
def digest(
    tally: Path = typer.Argument(..., exists=True, dir_okay=False, help="Tally JSON document."),
    tree_depth: Optional[int] = typer.Option(None, "--tree-depth", min=0,
                                             help="Arena depth (default: smallest that fits)."),
) -> None:
    """Print the commitment digest the sealed round will produce."""
    rec = _load(tally)
    try:
        typer.echo(rec.digest(tree_depth))
    except QFundError as e:
        _fail(e)


@app.command("simulate")
def simulate(
    tally: Path = typer.Argument(..., exists=True, dir_okay=False, help="Tally JSON document."),
    budget: int = typer.Option(..., "--budget", min=0, help="Matching budget in smallest units."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Tally batch size."),
    vcf: Optional[int] = typer.Option(None, "--vcf", min=1, help="Voice credit factor override."),
    clamp: bool = typer.Option(False, "--clamp", help="Clamp alpha to 1 instead of rejecting."),
) -> None:
    """
    Run a whole round in memory. Recipient i is owned by `recipient-<i>`; the
    pool is funded with `budget` voting tokens and the vendor reserve with the
    same amount of underlying asset.
    """
    rec = _load(tally)
    cfg = _policy_config(vcf, clamp, False, tree_depth=rec.tree_depth())
    token = InMemoryLedger("voting-token")
    asset = InMemoryLedger("asset")
    token.mint(POOL_ACCOUNT, budget)
    asset.mint(RESERVE_ACCOUNT, budget)
    registry = SimpleRecipientRegistry({i: f"recipient-{i}" for i in range(rec.size)})

    rnd = RoundCoordinator(
        "simulation",
        registry=registry,
        pool=token.account(POOL_ACCOUNT),
        token=token,
        underlying=asset.account(RESERVE_ACCOUNT),
        config=cfg,
    )
    try:
        digest_hex = rnd.ingest_tally(rec, batch_size)
        alpha = rnd.finalize()
        claimed = redeemed = 0
        for i in range(rec.size):
            owner = f"recipient-{i}"
            claimed += rnd.claim(i, owner)
            redeemed += rnd.redeem(i, owner)
    except QFundError as e:
        _fail(e)

    typer.echo(json.dumps({
        "digest": digest_hex,
        "alpha": alpha.to_dict(),
        "budget": budget,
        "claimed": claimed,
        "redeemed": redeemed,
        "dust": token.balance_of(POOL_ACCOUNT),
        "reserve_left": asset.balance_of(RESERVE_ACCOUNT),
        "state": rnd.state.name,
    }, indent=2, sort_keys=True))


@app.command("show-config")
def show_config() -> None:
    """Print the resolved configuration."""
    typer.echo(qconfig.pretty())


def main() -> None:  # pragma: no cover - thin wrapper
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
