"""Price sample data model."""

from datetime import datetime

from pydantic import BaseModel, Field

from pegwatch.models.alert import utcnow


class PriceSample(BaseModel):
    """One observed price for a symbol on one source."""

    symbol: str = Field(..., min_length=1, description="Asset symbol")
    source: str = Field(..., min_length=1, description="Venue that quoted the price")
    price: float = Field(..., gt=0, description="Quoted price in USD")
    observed_at: datetime = Field(default_factory=utcnow, description="Fetch time")

    model_config = {"frozen": True}
