"""Multi-step alert creation wizard.

The wizard is split in two layers:

* ``transition`` is a pure function ``(state, text) -> (new_state, outcome)``
  that validates one input and fills one field.
* ``ConversationStateMachine`` loads state from an AlertStore, applies
  ``transition`` and persists the result, so a wizard survives restarts.
"""

import logging
import math
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from pydantic import BaseModel, Field

from pegwatch.config import KNOWN_VENUES, AppConfig, AssetCatalog, PairInfo
from pegwatch.db.base import AlertStore
from pegwatch.errors import ValidationError
from pegwatch.models import (
    STEPS,
    Alert,
    ConversationState,
    DepegTarget,
    PairDepegTarget,
    PriceCondition,
    PriceTarget,
    WizardKind,
    WizardStep,
    utcnow,
)


logger = logging.getLogger(__name__)

DEPEG_TARGET_PRICE = 1.0
DIFFERENTIAL_CHOICES = ("0.5", "1", "2", "5")

CONDITION_ALIASES = {
    "above": PriceCondition.ABOVE,
    ">": PriceCondition.ABOVE,
    "below": PriceCondition.BELOW,
    "<": PriceCondition.BELOW,
}


# ==================== Outcomes ====================

class Prompt(BaseModel):
    """Ask the user for the input the current step needs."""

    kind: WizardKind
    step: WizardStep
    message: str
    options: list[str] = Field(default_factory=list)
    reason: Optional[str] = Field(default=None, description="Why the last input was rejected")

    model_config = {"frozen": True}


class Completed(BaseModel):
    """The wizard finished and produced an alert."""

    alert: Alert

    model_config = {"frozen": True}


class Cancelled(BaseModel):
    session_id: str

    model_config = {"frozen": True}


class NotStarted(BaseModel):
    """advance() was called for a session with no wizard in progress."""

    session_id: str
    message: str = "No alert is being created. Start a wizard first."

    model_config = {"frozen": True}


Outcome = Union[Prompt, Completed, Cancelled, NotStarted]


# ==================== Input parsing ====================

def parse_positive_number(text: str, what: str) -> float:
    """Parse a user-entered positive number.

    Accepts an optional leading '$', trailing '%' and thousands separators.

    Raises:
        ValidationError: If the text is not a finite number greater than zero.
    """
    cleaned = text.strip().lstrip("$").rstrip("%").replace(",", "").strip()
    try:
        value = float(cleaned)
    except ValueError:
        raise ValidationError(f"Invalid {what}: {text.strip()!r} is not a number.")
    if not math.isfinite(value) or value <= 0:
        raise ValidationError(f"Invalid {what}: must be a number greater than zero.")
    return value


def _match_symbol(text: str, choices: Iterable[str]) -> str:
    wanted = text.strip().upper()
    for choice in choices:
        if choice.upper() == wanted:
            return choice.upper()
    raise ValidationError(f"Unsupported symbol: {text.strip()!r}.")


def parse_condition(text: str) -> PriceCondition:
    condition = CONDITION_ALIASES.get(text.strip().lower())
    if condition is None:
        raise ValidationError(f"Unsupported condition: {text.strip()!r}. Use above or below.")
    return condition


def parse_pair(text: str, catalog: AssetCatalog) -> PairInfo:
    normalized = text.strip().upper().replace("-", "/").replace("_", "/").replace(" ", "")
    for name, pair in catalog.pairs.items():
        if normalized in (name.upper(), f"{pair.token_a}/{pair.token_b}".upper()):
            return pair
    raise ValidationError(f"Unsupported pair: {text.strip()!r}.")


# ==================== Prompts ====================

def prompt_for(state: ConversationState, catalog: AssetCatalog, reason: Optional[str] = None) -> Prompt:
    """Describe what the state's current step expects."""
    step = state.step
    options: list[str] = []

    if step == WizardStep.SELECT_SYMBOL and state.kind == WizardKind.DEPEG:
        message = "Select the stablecoin to watch (alerts when it drifts from $1):"
        options = catalog.stablecoin_symbols()
    elif step == WizardStep.SELECT_SYMBOL:
        message = "Select the cryptocurrency to watch:"
        options = catalog.all_symbols()
    elif step == WizardStep.ENTER_PRICE:
        message = f"Enter the target price for {state.symbol} (e.g. 45000.50):"
    elif step == WizardStep.SELECT_CONDITION:
        message = f"Alert when {state.symbol} goes above or below ${state.target_price:,.2f}?"
        options = [c.value for c in PriceCondition]
    elif step == WizardStep.SELECT_TOKEN_PAIR:
        message = "Select the token pair to watch:"
        options = [pair.label for pair in catalog.pair_list()]
    elif step == WizardStep.ENTER_RATIO:
        message = f"Enter the expected {state.token_a}/{state.token_b} price ratio (e.g. 1.0):"
    elif step == WizardStep.ENTER_DIFFERENTIAL and state.kind == WizardKind.DEPEG:
        message = f"How far (in %) may {state.symbol} drift from $1 before alerting?"
        options = list(DIFFERENTIAL_CHOICES)
    else:
        message = "How far (in %) may the ratio drift before alerting?"
        options = list(DIFFERENTIAL_CHOICES)

    return Prompt(kind=state.kind, step=step, message=message, options=options, reason=reason)


# ==================== Transition ====================

def _fill(state: ConversationState, text: str, catalog: AssetCatalog) -> dict:
    """Validate input for the current step; return the fields it sets."""
    step = state.step

    if step == WizardStep.SELECT_SYMBOL:
        choices = (
            catalog.stablecoin_symbols()
            if state.kind == WizardKind.DEPEG
            else catalog.all_symbols()
        )
        fields = {"symbol": _match_symbol(text, choices)}
        if state.kind == WizardKind.DEPEG:
            fields["target_price"] = DEPEG_TARGET_PRICE
        return fields
    if step == WizardStep.ENTER_PRICE:
        return {"target_price": parse_positive_number(text, "price")}
    if step == WizardStep.SELECT_CONDITION:
        return {"condition": parse_condition(text)}
    if step == WizardStep.SELECT_TOKEN_PAIR:
        pair = parse_pair(text, catalog)
        return {"token_a": pair.token_a.upper(), "token_b": pair.token_b.upper()}
    if step == WizardStep.ENTER_RATIO:
        return {"expected_ratio": parse_positive_number(text, "ratio")}
    if step == WizardStep.ENTER_DIFFERENTIAL:
        return {"differential_pct": parse_positive_number(text, "differential")}

    raise ValidationError(f"Unexpected step {step.value}")


def build_alert(state: ConversationState, now: datetime) -> Alert:
    """Turn a fully filled state into an (unsaved) alert."""
    if state.kind == WizardKind.PRICE:
        variant = PriceTarget(target_price=state.target_price, condition=state.condition)
        symbol = state.symbol
    elif state.kind == WizardKind.DEPEG:
        variant = DepegTarget(
            target_price=state.target_price or DEPEG_TARGET_PRICE,
            differential_pct=state.differential_pct,
            sources=state.sources,
        )
        symbol = state.symbol
    else:
        variant = PairDepegTarget(
            token_a=state.token_a,
            token_b=state.token_b,
            expected_ratio=state.expected_ratio,
            differential_pct=state.differential_pct,
        )
        symbol = f"{state.token_a}/{state.token_b}"

    return Alert(owner=state.session_id, symbol=symbol, variant=variant, created_at=now)


def transition(
    state: ConversationState,
    text: str,
    catalog: AssetCatalog,
    now: Optional[datetime] = None,
) -> tuple[Optional[ConversationState], Outcome]:
    """Apply one user input to a wizard state.

    Args:
        state: Current state.
        text: Raw user input (typed text or a selected option).
        catalog: Symbols and pairs that may be selected.
        now: Timestamp for bookkeeping; defaults to the current time.

    Returns:
        (new_state, outcome). On invalid input the original state is returned
        unchanged with a Prompt carrying the reason. On the final step the new
        state is None and the outcome is Completed with an unsaved alert.
    """
    now = now or utcnow()
    try:
        fields = _fill(state, text, catalog)
    except ValidationError as e:
        return state, prompt_for(state, catalog, reason=str(e))

    next_step = state.next_step()
    filled = state.model_copy(update={**fields, "updated_at": now})

    if next_step is None:
        return None, Completed(alert=build_alert(filled, now))

    new_state = filled.model_copy(update={"step": next_step})
    return new_state, prompt_for(new_state, catalog)


# ==================== State machine ====================

class ConversationStateMachine:
    """Drives alert wizards for many sessions, persisting after every step.

    Calls for one session must be serialized by the caller; distinct
    sessions are independent.
    """

    def __init__(
        self,
        store: AlertStore,
        catalog: AssetCatalog,
        default_depeg_sources: list[str],
        known_venues: Iterable[str] = KNOWN_VENUES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._catalog = catalog
        self._known_venues = [v.lower() for v in known_venues]
        self._default_depeg_sources = self._check_sources(default_depeg_sources)
        self._clock = clock

    @classmethod
    def from_config(cls, store: AlertStore, config: AppConfig) -> "ConversationStateMachine":
        return cls(
            store=store,
            catalog=config.catalog,
            default_depeg_sources=config.depeg.default_sources,
        )

    def _check_sources(self, sources: Iterable[str]) -> list[str]:
        cleaned = [s.strip().lower() for s in sources if s.strip()]
        if not cleaned:
            raise ValidationError("At least one price source is required.")
        unknown = [s for s in cleaned if s not in self._known_venues]
        if unknown:
            raise ValidationError(f"Unknown price source(s): {', '.join(unknown)}.")
        return list(dict.fromkeys(cleaned))

    def start(
        self,
        session_id: str,
        kind: Union[WizardKind, str],
        sources: Optional[list[str]] = None,
    ) -> Prompt:
        """Begin a wizard, replacing any unfinished one for the session.

        Args:
            session_id: Chat / session key.
            kind: "price", "depeg" or "pair_depeg".
            sources: Venues for a depeg alert; defaults to the configured set.

        Raises:
            ValidationError: If kind or sources are not supported.
            PersistenceError: If the state cannot be saved.
        """
        try:
            kind = WizardKind(kind.strip().lower().replace("-", "_"))
        except ValueError:
            raise ValidationError(f"Unknown alert type: {kind!r}.")

        fields: dict = {}
        if kind == WizardKind.DEPEG:
            fields["sources"] = (
                self._check_sources(sources) if sources else list(self._default_depeg_sources)
            )

        state = ConversationState(
            session_id=session_id,
            kind=kind,
            step=STEPS[kind][0],
            updated_at=self._clock(),
            **fields,
        )
        self._store.save_conversation_state(state)
        logger.debug("Started %s wizard for session %s", kind.value, session_id)
        return prompt_for(state, self._catalog)

    def advance(self, session_id: str, text: str) -> Outcome:
        """Feed one user input to the session's wizard.

        Returns:
            Prompt for the next (or same, on bad input) step, Completed with
            the stored alert, or NotStarted if no wizard is running.

        Raises:
            PersistenceError: If loading or saving fails; nothing is
                half-written in that case.
        """
        state = self._store.get_conversation_state(session_id)
        if state is None:
            return NotStarted(session_id=session_id)

        new_state, outcome = transition(state, text, self._catalog, now=self._clock())

        if isinstance(outcome, Completed):
            saved = self._store.complete_conversation(session_id, outcome.alert)
            logger.info(
                "Created %s alert #%s on %s for %s",
                saved.kind, saved.id, saved.symbol, saved.owner,
            )
            return Completed(alert=saved)

        if new_state is not state:
            self._store.save_conversation_state(new_state)
        return outcome

    def cancel(self, session_id: str) -> Cancelled:
        """Abandon any wizard for the session."""
        self._store.clear_conversation_state(session_id)
        return Cancelled(session_id=session_id)

    def current(self, session_id: str) -> Optional[ConversationState]:
        return self._store.get_conversation_state(session_id)
