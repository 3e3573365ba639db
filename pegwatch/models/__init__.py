"""Data models for Pegwatch."""

from pegwatch.models.alert import (
    Alert,
    AlertVariant,
    DepegTarget,
    PairDepegTarget,
    PriceCondition,
    PriceTarget,
    utcnow,
)
from pegwatch.models.conversation import (
    STEPS,
    ConversationState,
    WizardKind,
    WizardStep,
)
from pegwatch.models.sample import PriceSample

__all__ = [
    "Alert",
    "AlertVariant",
    "ConversationState",
    "DepegTarget",
    "PairDepegTarget",
    "PriceCondition",
    "PriceSample",
    "PriceTarget",
    "STEPS",
    "WizardKind",
    "WizardStep",
    "utcnow",
]
