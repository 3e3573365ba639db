"""Configuration loading for Pegwatch.

Settings come from ``~/.config/pegwatch/config.toml`` (optional) with a
handful of environment variable overrides. The resulting ``AppConfig`` is
built once by the caller and passed explicitly to the components that need it.
"""

import os
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from pegwatch.errors import ConfigurationError


CONFIG_DIR = Path.home() / ".config" / "pegwatch"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.toml"
DEFAULT_DB_PATH = CONFIG_DIR / "pegwatch.db"

# Venues that have a price client in pegwatch.sources
KNOWN_VENUES = ("binance", "coinbase")


class AssetInfo(BaseModel):
    """A tradable asset and its CoinGecko identifier."""

    name: str
    coingecko_id: str = Field(..., min_length=1)

    model_config = {"frozen": True}


class PairInfo(BaseModel):
    """A synthetic pair offered by the pair-depeg wizard."""

    token_a: str = Field(..., min_length=1)
    token_b: str = Field(..., min_length=1)
    expected_ratio: float = Field(default=1.0, gt=0)

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return f"{self.token_a}/{self.token_b}"


def _default_cryptocurrencies() -> dict[str, AssetInfo]:
    return {
        "BTC": AssetInfo(name="Bitcoin", coingecko_id="bitcoin"),
        "ETH": AssetInfo(name="Ethereum", coingecko_id="ethereum"),
        "BNB": AssetInfo(name="BNB", coingecko_id="binancecoin"),
        "SOL": AssetInfo(name="Solana", coingecko_id="solana"),
        "ADA": AssetInfo(name="Cardano", coingecko_id="cardano"),
        "DOGE": AssetInfo(name="Dogecoin", coingecko_id="dogecoin"),
        "DOT": AssetInfo(name="Polkadot", coingecko_id="polkadot"),
        "AVAX": AssetInfo(name="Avalanche", coingecko_id="avalanche-2"),
        "RUNE": AssetInfo(name="THORChain", coingecko_id="thorchain"),
        "WBTC": AssetInfo(name="Wrapped Bitcoin", coingecko_id="wrapped-bitcoin"),
        "STETH": AssetInfo(name="Lido Staked Ether", coingecko_id="staked-ether"),
    }


def _default_stablecoins() -> dict[str, AssetInfo]:
    return {
        "USDT": AssetInfo(name="Tether", coingecko_id="tether"),
        "USDC": AssetInfo(name="USD Coin", coingecko_id="usd-coin"),
        "DAI": AssetInfo(name="Dai", coingecko_id="dai"),
        "FRAX": AssetInfo(name="Frax", coingecko_id="frax"),
        "LUSD": AssetInfo(name="Liquity USD", coingecko_id="liquity-usd"),
        "USDD": AssetInfo(name="USDD", coingecko_id="usdd"),
        "SUSD": AssetInfo(name="sUSD", coingecko_id="nusd"),
    }


def _default_pairs() -> dict[str, PairInfo]:
    return {
        "WBTC/BTC": PairInfo(token_a="WBTC", token_b="BTC", expected_ratio=1.0),
        "STETH/ETH": PairInfo(token_a="STETH", token_b="ETH", expected_ratio=1.0),
        "USDC/USDT": PairInfo(token_a="USDC", token_b="USDT", expected_ratio=1.0),
    }


class AssetCatalog(BaseModel):
    """Symbols and pairs users can pick from in the wizards."""

    cryptocurrencies: dict[str, AssetInfo] = Field(default_factory=_default_cryptocurrencies)
    stablecoins: dict[str, AssetInfo] = Field(default_factory=_default_stablecoins)
    pairs: dict[str, PairInfo] = Field(default_factory=_default_pairs)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_pairs(self) -> "AssetCatalog":
        known = set(self.all_symbols())
        for name, pair in self.pairs.items():
            for token in (pair.token_a, pair.token_b):
                if token.upper() not in known:
                    raise ValueError(f"pair {name} uses unknown token {token}")
        return self

    def all_symbols(self) -> list[str]:
        """Every symbol with a primary price (cryptocurrencies then stablecoins)."""
        return [s.upper() for s in self.cryptocurrencies] + [
            s.upper() for s in self.stablecoins
        ]

    def stablecoin_symbols(self) -> list[str]:
        return [s.upper() for s in self.stablecoins]

    def pair_list(self) -> list[PairInfo]:
        return list(self.pairs.values())

    def coingecko_id(self, symbol: str) -> Optional[str]:
        """Look up the CoinGecko id for a symbol, or None if unlisted."""
        wanted = symbol.upper()
        for table in (self.cryptocurrencies, self.stablecoins):
            for key, info in table.items():
                if key.upper() == wanted:
                    return info.coingecko_id
        return None


class MonitorSettings(BaseModel):
    """Monitor loop timing and retry knobs."""

    interval: float = Field(default=60.0, gt=0, description="Seconds between ticks")
    call_timeout: float = Field(default=10.0, gt=0, description="Per-call timeout")
    max_attempts: int = Field(default=3, ge=1, description="Price fetch attempts")
    retry_delay: float = Field(default=2.0, ge=0, description="First retry delay")
    retry_backoff: float = Field(default=2.0, ge=1, description="Delay multiplier")


class DepegSettings(BaseModel):
    default_sources: list[str] = Field(
        default_factory=lambda: ["binance", "coinbase"], min_length=1
    )

    @field_validator("default_sources")
    @classmethod
    def _check_sources(cls, value: list[str]) -> list[str]:
        sources = [s.strip().lower() for s in value]
        unknown = [s for s in sources if s not in KNOWN_VENUES]
        if unknown:
            raise ValueError(f"unknown depeg sources: {', '.join(unknown)}")
        return sources


class TelegramSettings(BaseModel):
    token: Optional[str] = None


class CoinGeckoSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.coingecko.com/api/v3"


class BinanceSettings(BaseModel):
    base_url: str = "https://api.binance.com"
    quote_asset: str = "USDT"


class CoinbaseSettings(BaseModel):
    base_url: str = "https://api.coinbase.com"


class AppConfig(BaseModel):
    """Top-level Pegwatch configuration."""

    db_path: Path = Field(default=DEFAULT_DB_PATH)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    depeg: DepegSettings = Field(default_factory=DepegSettings)
    catalog: AssetCatalog = Field(default_factory=AssetCatalog)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    coingecko: CoinGeckoSettings = Field(default_factory=CoinGeckoSettings)
    binance: BinanceSettings = Field(default_factory=BinanceSettings)
    coinbase: CoinbaseSettings = Field(default_factory=CoinbaseSettings)


# Environment variable -> (section, key); section None means top level
ENV_OVERRIDES = {
    "PEGWATCH_DB_PATH": (None, "db_path"),
    "CHECK_INTERVAL": ("monitor", "interval"),
    "TELEGRAM_BOT_TOKEN": ("telegram", "token"),
    "COINGECKO_API_KEY": ("coingecko", "api_key"),
}


def _apply_env(raw: dict, environ: dict) -> dict:
    """Overlay environment variables onto raw TOML data."""
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        if section is None:
            raw[key] = value
        else:
            raw.setdefault(section, {})[key] = value
    return raw


def load_config(
    path: Optional[Path] = None,
    environ: Optional[dict] = None,
) -> AppConfig:
    """Load and validate configuration.

    Args:
        path: TOML file to read. Defaults to ~/.config/pegwatch/config.toml;
            a missing file means built-in defaults.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        Validated AppConfig.

    Raises:
        ConfigurationError: If the file cannot be parsed or a value is invalid.
    """
    config_path = path or DEFAULT_CONFIG_PATH
    raw: dict = {}

    if config_path.exists():
        try:
            raw = toml.load(config_path)
        except (toml.TomlDecodeError, OSError) as e:
            raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
    elif path is not None:
        raise ConfigurationError(f"Config file not found: {config_path}")

    raw = _apply_env(raw, dict(os.environ) if environ is None else environ)

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
