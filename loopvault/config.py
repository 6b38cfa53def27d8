"""
config.py - Vault policy configuration

VaultConfig holds the policy the Snapshot Comparator and Fee Accrual Engine
enforce: the target health factor and its asymmetric tolerance band, the
minimum value-creation floor, the unwind slippage tolerance and the
performance fee. It is immutable; a new vault is built for a new policy.

Configuration may be loaded from a YAML mapping:

    target_health_factor: "1.3"
    hf_lower_tolerance: "0.001"
    hf_upper_tolerance: "0.0001"
    minimum_deposit: 1000000000000000
    fee_rate: "0.1"
    fee_recipient: treasury
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Union
import logging

import yaml

logger = logging.getLogger(__name__)


_DECIMAL_FIELDS = (
    'target_health_factor',
    'hf_lower_tolerance',
    'hf_upper_tolerance',
    'slippage_tolerance',
    'fee_rate',
)

_INT_FIELDS = ('minimum_deposit', 'minimum_stake')


@dataclass(frozen=True, slots=True)
class VaultConfig:
    """
    Immutable vault policy.

    Attributes:
        target_health_factor: Health factor deposits steer toward (e.g., 1.3)
        hf_lower_tolerance: Fraction below target still accepted for a deposit
            that starts at or above target
        hf_upper_tolerance: Fraction above target accepted for any deposit
        minimum_deposit: Minimum NAV increase (base units) a deposit must create
        minimum_stake: Smallest amount the stake action accepts (staking granularity)
        slippage_tolerance: Fraction of redemption value an unwind may lose
        fee_rate: Performance fee on rate growth above the high-water mark (0-1)
        fee_recipient: Holder that receives fee shares
        borrowed_asset: Symbol of the asset borrowed (and the reference currency)
        collateral_asset: Symbol of the yield-bearing collateral
        share_symbol: Symbol of the vault's share token
        vault_holder: Identity under which the vault holds tokens and its market position
    """
    target_health_factor: Decimal = Decimal("1.3")
    hf_lower_tolerance: Decimal = Decimal("0.001")
    hf_upper_tolerance: Decimal = Decimal("0.0001")
    minimum_deposit: int = 10 ** 15
    minimum_stake: int = 100
    slippage_tolerance: Decimal = Decimal("0.005")
    fee_rate: Decimal = Decimal("0")
    fee_recipient: str = ""
    borrowed_asset: str = "WETH"
    collateral_asset: str = "WSTETH"
    share_symbol: str = "LOOP"
    vault_holder: str = "vault"

    def __post_init__(self):
        """Coerce numeric fields and validate ranges."""
        for name in _DECIMAL_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                object.__setattr__(self, name, int(value))

        if self.target_health_factor <= Decimal("1"):
            raise ValueError(
                f"target_health_factor must exceed 1, got {self.target_health_factor}"
            )
        for name in ('hf_lower_tolerance', 'hf_upper_tolerance', 'slippage_tolerance'):
            value = getattr(self, name)
            if value < 0 or value >= 1:
                raise ValueError(f"{name} must be in [0, 1), got {value}")
        if self.fee_rate < 0 or self.fee_rate >= 1:
            raise ValueError(f"fee_rate must be in [0, 1), got {self.fee_rate}")
        if self.fee_rate > 0 and not self.fee_recipient:
            raise ValueError("fee_recipient is required when fee_rate is positive")
        if self.minimum_deposit < 0:
            raise ValueError(f"minimum_deposit cannot be negative, got {self.minimum_deposit}")
        if self.minimum_stake < 0:
            raise ValueError(f"minimum_stake cannot be negative, got {self.minimum_stake}")
        if self.borrowed_asset == self.collateral_asset:
            raise ValueError("borrowed_asset and collateral_asset must be different")
        if not self.vault_holder:
            raise ValueError("vault_holder cannot be empty")

    @property
    def health_factor_floor(self) -> Decimal:
        """Lowest health factor accepted for a deposit starting at or above target."""
        return self.target_health_factor * (Decimal("1") - self.hf_lower_tolerance)

    @property
    def health_factor_ceiling(self) -> Decimal:
        """Highest health factor accepted for any deposit."""
        return self.target_health_factor * (Decimal("1") + self.hf_upper_tolerance)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "VaultConfig":
        """
        Build a config from a plain mapping.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        kwargs: Dict[str, Any] = {}
        for key, value in raw.items():
            if key in _DECIMAL_FIELDS:
                kwargs[key] = Decimal(str(value))
            elif key in _INT_FIELDS:
                kwargs[key] = int(value)
            else:
                kwargs[key] = str(value)
        return cls(**kwargs)


def load_config(path: Union[str, Path]) -> VaultConfig:
    """
    Load a VaultConfig from a YAML file.

    An empty file yields the defaults.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document is not a mapping or holds invalid values
    """
    config_path = Path(path)
    with config_path.open() as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}")
    config = VaultConfig.from_dict(raw)
    logger.info("loaded vault config from %s (target hf %s)", config_path, config.target_health_factor)
    return config


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for scripts. Unknown level names fall back to INFO."""
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(numeric)
