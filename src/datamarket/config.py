"""
datamarket/config.py

Configuration constants and engine settings for datamarket.

Settings can be provided:
1. Environment variables (DATAMARKET_*)
2. Programmatically via EngineConfig(...)
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal
from pathlib import Path
from typing import Optional, Dict, Any
import os
import logging

logger = logging.getLogger("datamarket.config")

VERSION = "0.1.0"


# ============================================================================
# MONEY
# ============================================================================

# Ledger-native smallest unit (wei) per coin
UNITS_PER_COIN = 10 ** 18
UNIT_DECIMALS = 18

# Platform fee, in basis points (250 = 2.5%)
PLATFORM_FEE_BPS = 250
BPS_DENOMINATOR = 10_000

# Displayed amounts are quantized to this many decimal places
FEE_DECIMALS = 4
FEE_QUANTUM = Decimal(1).scaleb(-FEE_DECIMALS)  # 0.0001

# Informational network fee shown next to a purchase quote
NETWORK_FEE_ESTIMATE = Decimal("0.001")

# Currency label used by the API and CLI
CURRENCY_SYMBOL = "MON"


# ============================================================================
# LEDGER
# ============================================================================

# Maximum block range the ledger accepts for an event query
DEFAULT_EVENT_WINDOW = 100

# Transaction id used for ledger events that do not expose one
UNKNOWN_TX_ID = "unknown"

# Seconds to wait for a write receipt before reporting an unknown outcome
DEFAULT_RECEIPT_TIMEOUT = 120.0

# Read retry settings
READ_RETRY_PARAMS = {
    "max_retries": 3,           # attempts per read
    "base_delay": 0.5,          # seconds
    "max_delay": 8.0,           # seconds
    "exponential_base": 2.0,
}


# ============================================================================
# STORAGE / API
# ============================================================================

DEFAULT_STORAGE_DIR = Path.home() / ".datamarket"
PURCHASES_FILENAME = "purchases.json"

DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8645

SECONDS_PER_DAY = 24 * 60 * 60


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class EngineConfig:
    """Runtime settings for a MarketplaceEngine and its collaborators."""
    rpc_url: str = ""
    dataset_registry: str = ""
    bounty_registry: str = ""
    storage_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_DIR)
    event_window: int = DEFAULT_EVENT_WINDOW
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT

    def __post_init__(self):
        if self.event_window <= 0:
            raise ValueError(f"event_window must be positive, got {self.event_window}")
        self.storage_dir = Path(self.storage_dir)

    @property
    def has_ledger(self) -> bool:
        """True when enough is configured to reach a remote ledger."""
        return bool(self.rpc_url and self.dataset_registry and self.bounty_registry)

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        """
        Build configuration from DATAMARKET_* environment variables.

        Args:
            overrides: Explicit values that win over the environment

        Returns:
            EngineConfig
        """
        values: Dict[str, Any] = {
            "rpc_url": os.environ.get("DATAMARKET_RPC_URL", ""),
            "dataset_registry": os.environ.get("DATAMARKET_DATASET_REGISTRY", ""),
            "bounty_registry": os.environ.get("DATAMARKET_BOUNTY_REGISTRY", ""),
            "storage_dir": Path(os.environ.get("DATAMARKET_STORAGE_DIR", str(DEFAULT_STORAGE_DIR))),
            "event_window": _env_int("DATAMARKET_EVENT_WINDOW", DEFAULT_EVENT_WINDOW),
            "receipt_timeout": _env_float("DATAMARKET_RECEIPT_TIMEOUT", DEFAULT_RECEIPT_TIMEOUT),
            "api_host": os.environ.get("DATAMARKET_API_HOST", DEFAULT_API_HOST),
            "api_port": _env_int("DATAMARKET_API_PORT", DEFAULT_API_PORT),
        }
        if overrides:
            values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        logger.debug(f"Loaded engine config (ledger configured: {config.has_ledger})")
        return config

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        data = asdict(self)
        data["storage_dir"] = str(self.storage_dir)
        return data
