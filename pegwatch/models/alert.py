"""Alert data model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class PriceCondition(str, Enum):
    """Direction a price alert watches for."""

    ABOVE = "above"
    BELOW = "below"


class PriceTarget(BaseModel):
    """Fires when the primary price crosses a target."""

    type: Literal["price"] = "price"
    target_price: float = Field(..., gt=0, description="Price to compare against")
    condition: PriceCondition = Field(..., description="Above or below")

    model_config = {"frozen": True}


class DepegTarget(BaseModel):
    """Fires when a stablecoin drifts from its peg on any watched venue."""

    type: Literal["depeg"] = "depeg"
    target_price: float = Field(default=1.0, gt=0, description="Peg price")
    differential_pct: float = Field(
        ..., gt=0, description="Allowed deviation from the peg, in percent"
    )
    sources: list[str] = Field(
        ..., min_length=1, description="Venues to sample, in order"
    )

    model_config = {"frozen": True}

    @field_validator("sources")
    @classmethod
    def _dedupe_sources(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for source in value:
            name = source.strip().lower()
            if name and name not in seen:
                seen.append(name)
        if not seen:
            raise ValueError("at least one source is required")
        return seen


class PairDepegTarget(BaseModel):
    """Fires when the price ratio of two tokens drifts from the expected ratio."""

    type: Literal["pair_depeg"] = "pair_depeg"
    token_a: str = Field(..., min_length=1, description="Numerator token")
    token_b: str = Field(..., min_length=1, description="Denominator token")
    expected_ratio: float = Field(..., gt=0, description="Expected price(a)/price(b)")
    differential_pct: float = Field(
        ..., gt=0, description="Allowed deviation from the ratio, in percent"
    )

    model_config = {"frozen": True}


AlertVariant = Annotated[
    Union[PriceTarget, DepegTarget, PairDepegTarget],
    Field(discriminator="type"),
]


class Alert(BaseModel):
    """A watch on one asset (or asset pair) owned by a session."""

    id: Optional[int] = Field(default=None, description="Database ID")
    owner: str = Field(..., min_length=1, description="Recipient / session ID")
    symbol: str = Field(..., min_length=1, description="Asset symbol or 'A/B' pair")
    variant: AlertVariant
    created_at: datetime = Field(
        default_factory=utcnow, description="Alert creation timestamp"
    )
    triggered_at: Optional[datetime] = Field(
        default=None, description="When the monitor fired this alert"
    )
    active: bool = Field(default=True, description="False once triggered")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_active(self) -> "Alert":
        if self.active == (self.triggered_at is not None):
            raise ValueError("active must be False exactly when triggered_at is set")
        return self

    @property
    def kind(self) -> str:
        return self.variant.type

    def required_quotes(self) -> list[tuple[str, Optional[str]]]:
        """Price lookups this alert needs each tick.

        Returns:
            (symbol, source) keys; a source of None means the primary source.
        """
        variant = self.variant
        if isinstance(variant, DepegTarget):
            return [(self.symbol, source) for source in variant.sources]
        if isinstance(variant, PairDepegTarget):
            return [(variant.token_a, None), (variant.token_b, None)]
        return [(self.symbol, None)]
