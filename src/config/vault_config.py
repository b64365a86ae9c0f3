"""
Vault Configuration

Parameter records for the vault and the loop strategy, loaded from
configs/vault.yaml.

Precedence (lowest to highest):
1. Dataclass defaults
2. Named strategy profile ("conservative", "default", "aggressive")
3. Explicit values in the YAML `strategy:` / `vault:` sections
4. Explicit keyword overrides passed by the caller

Health factors are written as plain decimals in YAML (1.15) and stored as
WAD-scaled integers; amounts are written in whole units and stored in the
asset's smallest unit.
"""

import logging
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from src.config.constants import (
    BPS,
    MAX_FEE_BPS,
    MAX_ITERATIONS,
    MAX_LEVERAGE_BPS,
    MAX_TIMELOCK,
    MIN_TIMELOCK,
    ONE_DAY,
    WAD,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/vault.yaml")
DEFAULT_DECIMALS = 18

# Fields expressed as decimals in YAML and stored WAD-scaled
WAD_FIELDS = ("min_health_factor", "unwind_health_floor")


def to_wad(value: Union[int, float, str, Decimal]) -> int:
    """1.15 -> 1.15e18, exact for decimal literals."""
    return int(Decimal(str(value)) * WAD)


def to_units(value: Union[int, float, str, Decimal], decimals: int = DEFAULT_DECIMALS) -> int:
    """Whole-unit amount -> smallest-unit integer."""
    return int(Decimal(str(value)) * (10 ** decimals))


@dataclass
class StrategyParams:
    """
    Loop strategy parameters.

    Attributes:
        target_leverage_bps: Desired collateral / equity, 30_000 = 3x
        max_iterations: Borrow-and-restake iterations per build
        min_health_factor: Build stops once any venue reports less (WAD)
        venue_split_bps: Share of the remaining need borrowed from venue A per
                         iteration in the two-venue layout
        unwind_health_floor: Health factor kept while freeing collateral (WAD)
        max_unwind_steps: Bound on repay/withdraw steps per unwind
        full_unwind_threshold_bps: Partial unwinds at or above this ratio unwind fully
        unwind_buffer_bps: Extra ratio released by a partial unwind
        dust_threshold: Exposure value (base units) below which a partial unwind
                        closes the position
    """
    target_leverage_bps: int = 30_000
    max_iterations: int = 5
    min_health_factor: int = 1_150_000_000_000_000_000
    venue_split_bps: int = 5_000
    unwind_health_floor: int = 1_010_000_000_000_000_000
    max_unwind_steps: int = 64
    full_unwind_threshold_bps: int = 9_990
    unwind_buffer_bps: int = 10
    dust_threshold: int = 10**12

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not (BPS <= self.target_leverage_bps <= MAX_LEVERAGE_BPS):
            raise ValueError(
                f"target_leverage_bps must be in [{BPS}, {MAX_LEVERAGE_BPS}], "
                f"got {self.target_leverage_bps}"
            )
        if not (1 <= self.max_iterations <= MAX_ITERATIONS):
            raise ValueError(
                f"max_iterations must be in [1, {MAX_ITERATIONS}], got {self.max_iterations}"
            )
        if self.min_health_factor < WAD:
            raise ValueError(f"min_health_factor must be >= 1.0 (WAD), got {self.min_health_factor}")
        if not (0 < self.venue_split_bps <= BPS):
            raise ValueError(f"venue_split_bps must be in (0, {BPS}], got {self.venue_split_bps}")
        if self.unwind_health_floor <= WAD:
            raise ValueError(
                f"unwind_health_floor must be > 1.0 (WAD), got {self.unwind_health_floor}"
            )
        if self.max_unwind_steps < 1:
            raise ValueError(f"max_unwind_steps must be >= 1, got {self.max_unwind_steps}")
        if not (0 < self.full_unwind_threshold_bps <= BPS):
            raise ValueError(
                f"full_unwind_threshold_bps must be in (0, {BPS}], got {self.full_unwind_threshold_bps}"
            )
        if not (0 <= self.unwind_buffer_bps < BPS):
            raise ValueError(f"unwind_buffer_bps must be in [0, {BPS}), got {self.unwind_buffer_bps}")
        if self.dust_threshold < 0:
            raise ValueError(f"dust_threshold must be >= 0, got {self.dust_threshold}")


@dataclass
class VaultParams:
    """Initial vault-level parameters (later changed only through governance)."""
    fee_bps: int = 0
    fee_recipient: Optional[str] = None
    decimals_offset: int = 0
    deposit_ceiling: int = 0
    timelock: int = ONE_DAY

    def __post_init__(self):
        if not (0 <= self.fee_bps <= MAX_FEE_BPS):
            raise ValueError(f"fee_bps must be in [0, {MAX_FEE_BPS}], got {self.fee_bps}")
        if self.fee_bps > 0 and not self.fee_recipient:
            raise ValueError("fee_recipient is required when fee_bps > 0")
        if not (0 <= self.decimals_offset <= 18):
            raise ValueError(f"decimals_offset must be in [0, 18], got {self.decimals_offset}")
        if self.deposit_ceiling < 0:
            raise ValueError(f"deposit_ceiling must be >= 0, got {self.deposit_ceiling}")
        if not (MIN_TIMELOCK <= self.timelock <= MAX_TIMELOCK):
            raise ValueError(
                f"timelock must be in [{MIN_TIMELOCK}, {MAX_TIMELOCK}] seconds, got {self.timelock}"
            )


STRATEGY_PROFILES: Dict[str, Dict[str, Any]] = {
    "conservative": {
        "target_leverage_bps": 20_000,
        "max_iterations": 3,
        "min_health_factor": 1.30,
    },
    "default": {
        "target_leverage_bps": 30_000,
        "max_iterations": 5,
        "min_health_factor": 1.15,
    },
    "aggressive": {
        "target_leverage_bps": 45_000,
        "max_iterations": 8,
        "min_health_factor": 1.05,
    },
}


def load_config(path: Union[str, Path, None] = DEFAULT_CONFIG_PATH) -> dict:
    """Load vault configuration from YAML; a missing file yields {}."""
    if path is None:
        return {}
    path = Path(path)
    if not path.exists():
        logger.warning(f"[VaultConfig] Config file not found at {path}; using defaults")
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _normalize_strategy_values(values: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(StrategyParams)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown strategy parameters: {sorted(unknown)}")

    normalized = {}
    for key, value in values.items():
        # integers at or above WAD are already scaled
        if key in WAD_FIELDS and not (isinstance(value, int) and value >= WAD):
            normalized[key] = to_wad(value)
        else:
            normalized[key] = int(value)
    return normalized


def create_strategy_params(profile: str = "default", **overrides) -> StrategyParams:
    """
    Factory for StrategyParams with a preset profile.

    Profiles:
    - "conservative": 2x target, 3 iterations, stop below HF 1.30
    - "default": 3x target, 5 iterations, stop below HF 1.15
    - "aggressive": 4.5x target, 8 iterations, stop below HF 1.05
    """
    if profile not in STRATEGY_PROFILES:
        raise ValueError(f"Unknown profile: {profile}. Available: {list(STRATEGY_PROFILES.keys())}")

    values = dict(STRATEGY_PROFILES[profile])
    values.update(overrides)
    logger.info(f"[VaultConfig] Strategy profile: {profile}")
    return StrategyParams(**_normalize_strategy_values(values))


def strategy_params_from_config(config: dict, profile: Optional[str] = None, **overrides) -> StrategyParams:
    """Profile (argument, else config) < `strategy:` section < keyword overrides."""
    strategy_cfg = dict(config.get("strategy", {}) or {})
    profile = profile or strategy_cfg.pop("profile", None) or "default"
    strategy_cfg.pop("profile", None)
    strategy_cfg.update(overrides)
    return create_strategy_params(profile, **strategy_cfg)


def vault_params_from_config(config: dict, **overrides) -> VaultParams:
    vault_cfg = dict(config.get("vault", {}) or {})
    decimals = int(config.get("assets", {}).get("decimals", DEFAULT_DECIMALS))

    values: Dict[str, Any] = {
        "fee_bps": int(vault_cfg.get("fee_bps", 0)),
        "fee_recipient": vault_cfg.get("fee_recipient"),
        "decimals_offset": int(vault_cfg.get("decimals_offset", 0)),
        "deposit_ceiling": to_units(vault_cfg.get("deposit_ceiling", 0), decimals),
        "timelock": int(Decimal(str(vault_cfg.get("timelock_days", 1))) * ONE_DAY),
    }
    values.update(overrides)
    return VaultParams(**values)
