"""Contract lifecycle package: transition table, renewal and job handlers."""

from rentcore.lifecycle.state_machine import (
    ContractEvent,
    ContractStateMachine,
    InvalidTransitionError,
    RoomEffect,
    TransitionContext,
    TransitionResult,
)

__all__ = [
    "ContractEvent",
    "ContractStateMachine",
    "InvalidTransitionError",
    "RoomEffect",
    "TransitionContext",
    "TransitionResult",
]
