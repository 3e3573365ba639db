"""Conversation (alert wizard) state model."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from pegwatch.models.alert import PriceCondition, utcnow


class WizardKind(str, Enum):
    """Which alert wizard a session is running."""

    PRICE = "price"
    DEPEG = "depeg"
    PAIR_DEPEG = "pair_depeg"


class WizardStep(str, Enum):
    """Steps across all wizards; each kind uses a subset (see STEPS)."""

    SELECT_SYMBOL = "select_symbol"
    ENTER_PRICE = "enter_price"
    SELECT_CONDITION = "select_condition"
    SELECT_TOKEN_PAIR = "select_token_pair"
    ENTER_RATIO = "enter_ratio"
    ENTER_DIFFERENTIAL = "enter_differential"


STEPS: dict[WizardKind, tuple[WizardStep, ...]] = {
    WizardKind.PRICE: (
        WizardStep.SELECT_SYMBOL,
        WizardStep.ENTER_PRICE,
        WizardStep.SELECT_CONDITION,
    ),
    WizardKind.DEPEG: (
        WizardStep.SELECT_SYMBOL,
        WizardStep.ENTER_DIFFERENTIAL,
    ),
    WizardKind.PAIR_DEPEG: (
        WizardStep.SELECT_TOKEN_PAIR,
        WizardStep.ENTER_RATIO,
        WizardStep.ENTER_DIFFERENTIAL,
    ),
}


class ConversationState(BaseModel):
    """Partially collected alert fields for one session."""

    session_id: str = Field(..., min_length=1, description="Chat / session key")
    kind: WizardKind
    step: WizardStep
    symbol: Optional[str] = None
    target_price: Optional[float] = None
    condition: Optional[PriceCondition] = None
    token_a: Optional[str] = None
    token_b: Optional[str] = None
    expected_ratio: Optional[float] = None
    differential_pct: Optional[float] = None
    sources: Optional[list[str]] = None
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}

    def next_step(self) -> Optional[WizardStep]:
        """Step after the current one, or None if this is the last step."""
        steps = STEPS[self.kind]
        index = steps.index(self.step)
        if index + 1 < len(steps):
            return steps[index + 1]
        return None
