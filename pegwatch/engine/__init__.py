"""Alert lifecycle engine: evaluation, wizard and monitor loop."""

from pegwatch.engine.evaluator import render_message, should_trigger
from pegwatch.engine.monitor import MonitorLoop, TickReport
from pegwatch.engine.retry import RetryPolicy
from pegwatch.engine.wizard import (
    Cancelled,
    Completed,
    ConversationStateMachine,
    NotStarted,
    Prompt,
    transition,
)

__all__ = [
    "Cancelled",
    "Completed",
    "ConversationStateMachine",
    "MonitorLoop",
    "NotStarted",
    "Prompt",
    "RetryPolicy",
    "TickReport",
    "render_message",
    "should_trigger",
    "transition",
]
