"""
bidvault CLI - Command Line Interface for the auction ledger

Main entry point for all CLI commands. Mutating commands load the auction
persisted in the data directory, apply one operation and save the result.
"""

import json
import time
import click
from pathlib import Path
from typing import Optional

from bidvault.utils.logger import setup_logging


def _now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else now


def _open_ledger(ctx):
    """Load the persisted auction or exit with an error."""
    from bidvault.core.state import AuctionLedger
    from bidvault.core.storage import StorageManager

    storage = StorageManager(ctx.obj["data_dir"])
    if not storage.has_auction():
        click.echo(f"❌ No auction deployed in {ctx.obj['data_dir']}")
        click.echo("   Create one with: bidvault deploy")
        ctx.exit(1)
    return AuctionLedger.load(storage, config=ctx.obj["config"])


def _address(name: str, hint: str = "ACCOUNT") -> bytes:
    """Resolve a label or 0x address, as a usage error if malformed."""
    from bidvault.core.scenario import resolve_account

    try:
        return resolve_account(name)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint=hint) from e


def _report(ctx, result) -> None:
    """Print an operation result; non-zero exit on failure."""
    if result.ok:
        click.echo(f"✓ {result.message}")
        if result.receipt is not None:
            receipt = result.receipt
            click.echo(f"  Refund: {receipt.refund}  Fee: {receipt.fee}  Net: {receipt.net}")
        return

    kind = "payout failed, retry later" if result.error.is_transfer_failure else "rejected"
    click.echo(f"❌ {result.error.name} ({kind}): {result.message}")
    ctx.exit(2)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default="~/.bidvault", help="Data directory")
@click.option("--env-file", default=None, help="dotenv file with BIDVAULT_* settings")
@click.option("--log-file", is_flag=True, help="Also write logs to <log_dir>/bidvault.log")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, env_file, log_file):
    """bidvault - Auction ledger with escrowed refunds"""
    import logging
    from bidvault.core.config import load_config

    ctx.ensure_object(dict)
    try:
        config = load_config(env_file)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--env-file") from e

    level = logging.DEBUG if debug else logging.WARNING
    setup_logging(level=level, log_dir=config.log_dir, log_to_file=log_file)
    ctx.obj["config"] = config
    ctx.obj["data_dir"] = Path(data_dir).expanduser()


# =============================================================================
# Deployment & Funding
# =============================================================================


@cli.command("deploy")
@click.option("--operator", required=True, help="Operator label or 0x address")
@click.option("--beneficiary", required=True, help="Beneficiary label or 0x address")
@click.option("--duration", required=True, type=click.IntRange(min=0), help="Bidding time in seconds")
@click.option("--now", type=click.IntRange(min=0), default=None, help="Deployment time (default: wall clock)")
@click.option("--force", is_flag=True, help="Overwrite an existing auction")
@click.pass_context
def deploy(ctx, operator, beneficiary, duration, now, force):
    """Deploy a new auction into the data directory"""
    from bidvault.core.state import AuctionLedger, ValueBank
    from bidvault.core.storage import StorageManager
    from bidvault.crypto import bytes_to_hex

    operator_address = _address(operator, "--operator")
    beneficiary_address = _address(beneficiary, "--beneficiary")

    data_dir = ctx.obj["data_dir"]
    db_path = data_dir / "auction.db"
    if db_path.exists():
        if not force:
            click.echo(f"❌ Auction already exists at {db_path} (use --force to replace)")
            ctx.exit(1)
        for suffix in ("", "-wal", "-shm"):
            Path(str(db_path) + suffix).unlink(missing_ok=True)

    storage = StorageManager(data_dir)
    ledger = AuctionLedger.deploy(
        operator=operator_address,
        beneficiary=beneficiary_address,
        bidding_time=duration,
        now=_now(now),
        bank=ValueBank(),
        config=ctx.obj["config"],
        storage_manager=storage,
    )

    click.echo("✓ Auction deployed")
    click.echo(f"  Custody: {bytes_to_hex(ledger.address)}")
    click.echo(f"  Deadline: {ledger.state.deadline}")
    click.echo(f"  Saved to: {db_path}")


@cli.command("fund")
@click.argument("account")
@click.argument("amount", type=click.IntRange(min=0))
@click.pass_context
def fund(ctx, account, amount):
    """Credit AMOUNT to ACCOUNT's bank balance (demo mode)"""
    ledger = _open_ledger(ctx)
    address = _address(account)
    ledger.bank.mint(address, amount)
    ledger.save()
    click.echo(f"✓ {account}: balance {ledger.bank.balance_of(address)}")


# =============================================================================
# Auction Operations
# =============================================================================


@cli.command("bid")
@click.argument("account")
@click.argument("value", type=click.IntRange(min=0))
@click.option("--now", type=click.IntRange(min=0), default=None, help="Current time (default: wall clock)")
@click.pass_context
def bid(ctx, account, value, now):
    """Place a bid of VALUE from ACCOUNT"""
    ledger = _open_ledger(ctx)
    _report(ctx, ledger.bid(_address(account), value, _now(now)))
    click.echo(f"  Deadline: {ledger.state.deadline}")


@cli.command("withdraw")
@click.argument("account")
@click.option("--now", type=click.IntRange(min=0), default=None, help="Current time (default: wall clock)")
@click.pass_context
def withdraw(ctx, account, now):
    """Withdraw ACCOUNT's pending refund (less fee)"""
    ledger = _open_ledger(ctx)
    _report(ctx, ledger.withdraw_excess(_address(account), _now(now)))


@cli.command("end")
@click.argument("account")
@click.option("--now", type=click.IntRange(min=0), default=None, help="Current time (default: wall clock)")
@click.pass_context
def end(ctx, account, now):
    """Settle the auction (operator only)"""
    ledger = _open_ledger(ctx)
    _report(ctx, ledger.end_auction(_address(account), _now(now)))


@cli.command("emergency")
@click.argument("account")
@click.confirmation_option(prompt="Drain all custody to the operator? Pending refunds become unbacked.")
@click.pass_context
def emergency(ctx, account):
    """Drain the whole custody balance to the operator (operator only)"""
    ledger = _open_ledger(ctx)
    _report(ctx, ledger.emergency_withdraw(_address(account)))
    audit = ledger.audit()
    if audit.shortfall:
        click.echo(f"  ⚠️  Unbacked claims: {audit.shortfall}")


# =============================================================================
# Queries
# =============================================================================


@cli.command("status")
@click.option("--now", type=click.IntRange(min=0), default=None, help="Current time (default: wall clock)")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def status(ctx, now, as_json):
    """Show auction details"""
    ledger = _open_ledger(ctx)
    stats = ledger.stats()
    stats["phase"] = ledger.phase(_now(now)).name
    stats["minimum_next_bid"] = ledger.minimum_next_bid()

    if as_json:
        click.echo(json.dumps(stats, indent=2))
        return

    click.echo("Auction Status")
    click.echo("-" * 40)
    for key, value in stats.items():
        click.echo(f"  {key}: {value}")


@cli.command("deposit")
@click.argument("account")
@click.pass_context
def deposit(ctx, account):
    """Show ACCOUNT's pending refund and bank balance"""
    ledger = _open_ledger(ctx)
    address = _address(account)
    click.echo(f"Account: {account}")
    click.echo(f"  Pending refund: {ledger.get_deposit(address)}")
    click.echo(f"  Balance: {ledger.bank.balance_of(address)}")


# =============================================================================
# Demo & Replay
# =============================================================================


@cli.command("demo")
@click.pass_context
def demo(ctx):
    """Run the reference auction in memory"""
    from bidvault.core.state import AuctionLedger, ValueBank
    from bidvault.crypto import address_from_label

    click.echo("=" * 60)
    click.echo("  BIDVAULT - DEMO")
    click.echo("=" * 60)
    click.echo()

    operator = address_from_label("operator")
    seller = address_from_label("seller")
    alice = address_from_label("alice")
    bob = address_from_label("bob")

    bank = ValueBank({alice: 1000, bob: 1000})
    T = 1_000_000
    ledger = AuctionLedger(operator, seller, deadline=T, bank=bank, config=ctx.obj["config"])
    ledger.subscribe(lambda e: click.echo(f"  📣 {e.kind.name}: amount={e.amount}"))

    click.echo("🔨 Alice bids 100 one hour before the deadline...")
    ledger.bid(alice, 100, T - 3600)
    click.echo(f"  ✓ Deadline: {ledger.state.deadline}")
    click.echo()

    click.echo("🔨 Bob bids 106 one minute before the deadline...")
    ledger.bid(bob, 106, T - 60)
    click.echo(f"  ✓ Deadline extended to {ledger.state.deadline}")
    click.echo(f"  ✓ Alice's pending refund: {ledger.get_deposit(alice)}")
    click.echo()

    closed = ledger.state.deadline
    click.echo("💸 Alice withdraws after the deadline...")
    result = ledger.withdraw_excess(alice, closed)
    click.echo(f"  ✓ Alice received {result.receipt.net}, operator fee {result.receipt.fee}")
    click.echo()

    click.echo("⚖️  Operator settles...")
    ledger.end_auction(operator, closed)
    click.echo(f"  ✓ Seller balance: {bank.balance_of(seller)}")
    click.echo()

    click.echo("🚫 Bob (winner) tries to withdraw...")
    result = ledger.withdraw_excess(bob, closed)
    click.echo(f"  ✓ Rejected: {result.error.name}")
    click.echo()

    click.echo(f"📊 Final Statistics: {ledger.stats()}")
    click.echo()
    click.echo("✅ Demo complete!")


@cli.command("replay")
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def replay(ctx, scenario_file):
    """Replay a JSON scenario and check expected outcomes"""
    from pydantic import ValidationError
    from bidvault.core.scenario import load_scenario, run_scenario

    try:
        scenario = load_scenario(scenario_file)
    except ValidationError as e:
        click.echo(f"❌ Invalid scenario: {e.error_count()} error(s)")
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"])
            click.echo(f"   {loc}: {err['msg']}")
        ctx.exit(1)

    report = run_scenario(scenario, config=ctx.obj["config"])

    for outcome in report.outcomes:
        mark = "✓" if outcome.matched else "✗"
        step = outcome.step
        click.echo(f"  {mark} {outcome.index:>3} {step.action:<9} {step.account:<12} -> {outcome.outcome}")

    click.echo()
    for name in sorted(set(scenario.balances) | {scenario.operator, scenario.beneficiary}):
        click.echo(f"  {name}: {report.balance(name)}")

    if not report.passed:
        click.echo(f"❌ {len(report.mismatches)} step(s) did not match expectations")
        ctx.exit(1)
    click.echo("✅ Scenario matched")


if __name__ == "__main__":
    cli()
