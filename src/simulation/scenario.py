"""
Vault Scenario Simulation

Wires a LeveragedVault to in-memory venues from a config dict and drives it
through a randomized sequence of deposits, withdrawals, receipt price drift,
borrow interest and periodic rebalances.

Each step produces one snapshot row; amounts are reported in whole units of
the base asset.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from src.config.constants import NO_DEBT_SAFETY_RATIO, ONE_DAY, WAD
from src.config.vault_config import (
    strategy_params_from_config,
    to_units,
    to_wad,
    vault_params_from_config,
)
from src.utils.clock import ManualClock
from src.vault import LeveragedVault, VaultError
from src.venues import (
    CollateralConfig,
    InMemoryLedger,
    SimulatedCreditVenue,
    SimulatedExchange,
    SimulatedStakingConverter,
    StaticPriceOracle,
    VenueError,
)

logger = logging.getLogger(__name__)

DEFAULT_DEPOSITORS = ("alice", "bob", "carol")

# Snapshot fields expressed in base-asset smallest units
AMOUNT_FIELDS = (
    "total_assets",
    "last_total_assets",
    "idle_base",
    "net_position_value",
)
SHARE_FIELDS = ("total_supply", "fee_shares")

DEFAULT_SIMULATION = {
    "steps": 90,
    "seed": 7,
    "initial_deposit": 1000,
    "deposit_probability": 0.35,
    "withdraw_probability": 0.25,
    "max_flow": 250,
    "receipt_yield_mean_bps": 1.0,
    "receipt_yield_vol_bps": 4.0,
    "borrow_rate_bps": 0,
    "rebalance_every": 10,
}


@dataclass
class SimulationEnvironment:
    """A vault plus handles on the simulated collaborators around it."""
    vault: LeveragedVault
    ledger: InMemoryLedger
    oracle: StaticPriceOracle
    venues: List[SimulatedCreditVenue]
    clock: ManualClock
    decimals: int
    keeper: str
    simulation: Dict[str, Any] = field(default_factory=dict)


def _build_venue(
    name: str,
    venue_cfg: dict,
    ledger: InMemoryLedger,
    oracle: StaticPriceOracle,
    base_asset: str,
    borrow_asset: str,
    decimals: int,
) -> SimulatedCreditVenue:
    collateral = {
        asset: CollateralConfig(
            ltv_bps=int(params["ltv_bps"]),
            liquidation_threshold_bps=int(params["liquidation_threshold_bps"]),
        )
        for asset, params in (venue_cfg.get("collateral") or {}).items()
    }
    venue = SimulatedCreditVenue(
        name=venue_cfg.get("name", name),
        ledger=ledger,
        oracle=oracle,
        value_asset=base_asset,
        collateral=collateral,
        borrowable=venue_cfg.get("borrowable", [borrow_asset]),
    )
    liquidity = to_units(venue_cfg.get("liquidity", 0), decimals)
    if liquidity > 0:
        ledger.mint(borrow_asset, venue.address, liquidity)
    return venue


def build_simulated_vault(
    config: dict,
    multi_venue: Optional[bool] = None,
    profile: Optional[str] = None,
    clock: Optional[ManualClock] = None,
    **strategy_overrides,
) -> SimulationEnvironment:
    """
    Construct a vault over simulated venues.

    Args:
        config: Parsed configs/vault.yaml (may be {} for defaults)
        multi_venue: Force the two-venue layout on/off (default: venues.venue_b.enabled)
        profile: Strategy profile overriding the config's
        clock: Clock for timelocks (default: ManualClock())
        **strategy_overrides: StrategyParams overrides
    """
    assets = config.get("assets", {}) or {}
    base_asset = assets.get("base", "wstETH")
    borrow_asset = assets.get("borrow", "WETH")
    receipt_asset = assets.get("receipt", "weETH")
    share_asset = assets.get("share", "lvETH")
    decimals = int(assets.get("decimals", 18))

    prices = config.get("prices") or {base_asset: 1.0, borrow_asset: 1.0, receipt_asset: 1.0}
    oracle = StaticPriceOracle({asset: to_wad(price) for asset, price in prices.items()})
    ledger = InMemoryLedger()

    venues_cfg = config.get("venues", {}) or {}
    venue_a_cfg = venues_cfg.get("venue_a") or {
        "name": "lending_a",
        "liquidity": 1_000_000,
        "borrowable": [borrow_asset],
        "collateral": {
            base_asset: {"ltv_bps": 8000, "liquidation_threshold_bps": 8500},
            receipt_asset: {"ltv_bps": 8000, "liquidation_threshold_bps": 8500},
        },
    }
    venue_a = _build_venue("venue_a", venue_a_cfg, ledger, oracle, base_asset, borrow_asset, decimals)

    venue_b = None
    venue_b_cfg = venues_cfg.get("venue_b") or {}
    if multi_venue is None:
        multi_venue = bool(venue_b_cfg.get("enabled", False))
    if multi_venue:
        if not venue_b_cfg.get("collateral"):
            raise ValueError("multi-venue layout requires venues.venue_b.collateral in config")
        venue_b = _build_venue("venue_b", venue_b_cfg, ledger, oracle, base_asset, borrow_asset, decimals)

    exchange_cfg = config.get("exchange", {}) or {}
    converter = SimulatedStakingConverter(ledger, oracle, borrow_asset, receipt_asset)
    exchange = SimulatedExchange(ledger, oracle, fee_bps=int(exchange_cfg.get("fee_bps", 0)))

    vault_cfg = config.get("vault", {}) or {}
    allocators = vault_cfg.get("allocators") or []
    clock = clock or ManualClock()

    vault = LeveragedVault(
        ledger=ledger,
        oracle=oracle,
        converter=converter,
        exchange=exchange,
        venue_a=venue_a,
        venue_b=venue_b,
        base_asset=base_asset,
        borrow_asset=borrow_asset,
        receipt_asset=receipt_asset,
        share_asset=share_asset,
        owner=vault_cfg.get("owner", "owner"),
        vault_params=vault_params_from_config(config),
        strategy_params=strategy_params_from_config(config, profile=profile, **strategy_overrides),
        curator=vault_cfg.get("curator"),
        guardian=vault_cfg.get("guardian"),
        allocators=allocators,
        skim_recipient=vault_cfg.get("skim_recipient"),
        clock=clock,
    )

    simulation = dict(DEFAULT_SIMULATION)
    simulation.update(config.get("simulation", {}) or {})

    return SimulationEnvironment(
        vault=vault,
        ledger=ledger,
        oracle=oracle,
        venues=[v for v in (venue_a, venue_b) if v is not None],
        clock=clock,
        decimals=decimals,
        keeper=allocators[0] if allocators else vault.roles.owner,
        simulation=simulation,
    )


def run_scenario(
    env: SimulationEnvironment,
    steps: Optional[int] = None,
    seed: Optional[int] = None,
    depositors: Sequence[str] = DEFAULT_DEPOSITORS,
) -> pd.DataFrame:
    """
    Drive the vault through `steps` simulated days.

    Rejected user operations (ceiling, liquidity, venue limits) are recorded
    in the `action` column and the run continues.

    Returns:
        DataFrame with one row per step (step 0 is the initial deposit)
    """
    sim = env.simulation
    steps = int(steps if steps is not None else sim["steps"])
    seed = int(seed if seed is not None else sim["seed"])
    rng = np.random.default_rng(seed)
    vault = env.vault

    logger.info(f"[Scenario] Running {steps} steps (seed={seed}, venues={len(env.venues)})")

    rows = []
    initial = to_units(sim["initial_deposit"], env.decimals)
    action = _user_deposit(env, depositors[0], initial)
    rows.append(_snapshot_row(env, 0, action, initial))

    for step in range(1, steps + 1):
        env.clock.advance(ONE_DAY)
        _drift_receipt_price(env, rng)
        borrow_rate = int(sim["borrow_rate_bps"])
        if borrow_rate > 0:
            for venue in env.venues:
                venue.accrue_interest(vault.borrow_asset, borrow_rate)

        amount = to_units(round(float(rng.uniform(0.0, sim["max_flow"])), 6), env.decimals)
        draw = rng.random()
        if draw < sim["deposit_probability"]:
            action = _user_deposit(env, str(rng.choice(depositors)), amount)
        elif draw < sim["deposit_probability"] + sim["withdraw_probability"]:
            holders = [d for d in depositors if vault.balance_of(d) > 0]
            if holders:
                holder = str(rng.choice(holders))
                amount = min(amount, vault.max_withdraw(holder))
                action = _user_withdraw(env, holder, amount)
            else:
                action, amount = "idle", 0
        else:
            action, amount = "idle", 0

        rebalance_every = int(sim["rebalance_every"])
        if rebalance_every > 0 and step % rebalance_every == 0:
            try:
                vault.rebalance(env.keeper)
            except (VaultError, VenueError) as e:
                logger.warning(f"[Scenario] Step {step}: rebalance rejected: {e}")

        rows.append(_snapshot_row(env, step, action, amount))

    df = pd.DataFrame(rows)
    logger.info(
        f"[Scenario] Finished: share_price={df['share_price'].iloc[-1]:.6f}, "
        f"total_assets={df['total_assets'].iloc[-1]:,.4f}"
    )
    return df


def _user_deposit(env: SimulationEnvironment, depositor: str, amount: int) -> str:
    if amount <= 0:
        return "idle"
    env.ledger.mint(env.vault.base_asset, depositor, amount)
    try:
        env.vault.deposit(depositor, amount, depositor)
    except (VaultError, VenueError) as e:
        env.ledger.burn(env.vault.base_asset, depositor, amount)
        logger.info(f"[Scenario] Deposit by {depositor} rejected: {e}")
        return f"deposit_rejected:{type(e).__name__}"
    return "deposit"


def _user_withdraw(env: SimulationEnvironment, holder: str, amount: int) -> str:
    if amount <= 0:
        return "idle"
    try:
        env.vault.withdraw(holder, amount, holder, holder)
    except (VaultError, VenueError) as e:
        logger.info(f"[Scenario] Withdraw by {holder} rejected: {e}")
        return f"withdraw_rejected:{type(e).__name__}"
    return "withdraw"


def _drift_receipt_price(env: SimulationEnvironment, rng: np.random.Generator) -> None:
    sim = env.simulation
    receipt = env.vault.receipt_asset
    change_bps = rng.normal(float(sim["receipt_yield_mean_bps"]), float(sim["receipt_yield_vol_bps"]))
    price = env.oracle.price(receipt)
    env.oracle.set_price(receipt, max(int(price * (1.0 + change_bps / 10_000.0)), 1))


def _snapshot_row(env: SimulationEnvironment, step: int, action: str, amount: int) -> Dict[str, Any]:
    unit = 10 ** env.decimals
    snap = env.vault.snapshot()
    row: Dict[str, Any] = {
        "step": step,
        "timestamp": env.clock(),
        "action": action,
        "amount": amount / unit,
        "receipt_price": env.oracle.price(env.vault.receipt_asset) / WAD,
    }
    for key, value in snap.items():
        if key in AMOUNT_FIELDS or key in SHARE_FIELDS:
            row[key] = value / unit
        elif key == "min_safety_ratio":
            row[key] = np.nan if value == NO_DEBT_SAFETY_RATIO else value / WAD
        elif key == "leverage_bps":
            row["leverage"] = value / 10_000
        elif key in ("total_borrowed", "total_receipt_held"):
            row[key] = value / unit
        else:
            row[key] = value
    return row


def summarize_scenario(df: pd.DataFrame) -> Dict[str, Any]:
    """Headline statistics of a scenario run."""
    if df.empty:
        return {}

    price = df["share_price"]
    rejected = df["action"].str.contains("rejected")
    return {
        "steps": int(df["step"].max()),
        "start_share_price": float(price.iloc[0]),
        "end_share_price": float(price.iloc[-1]),
        "share_price_return": float(price.iloc[-1] / price.iloc[0] - 1.0) if price.iloc[0] > 0 else 0.0,
        "max_leverage": float(df["leverage"].max()),
        "min_safety_ratio": float(df["min_safety_ratio"].min()) if df["min_safety_ratio"].notna().any() else None,
        "end_total_assets": float(df["total_assets"].iloc[-1]),
        "end_fee_shares": float(df["fee_shares"].iloc[-1]),
        "deposits": int((df["action"] == "deposit").sum()),
        "withdrawals": int((df["action"] == "withdraw").sum()),
        "rejections": int(rejected.sum()),
    }
