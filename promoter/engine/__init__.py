"""Promotion engine: control plane, waiter, resolver and state machine."""

from .control_plane import CloudControlPlane, RdsControlPlane
from .credentials import CredentialRotator, generate_password
from .resolver import EnvironmentResolver, SlotLookup
from .state_machine import (
    DEV_ALWAYS_REFRESHED,
    TRANSITIONS,
    PromotionPlan,
    PromotionResult,
    PromotionStateMachine,
    build_state_machine,
    plan,
)
from .waiter import AsyncOperationWaiter, StatusEvent, SystemClock, WaitPolicy

__all__ = [
    "CloudControlPlane",
    "RdsControlPlane",
    "CredentialRotator",
    "generate_password",
    "EnvironmentResolver",
    "SlotLookup",
    "DEV_ALWAYS_REFRESHED",
    "TRANSITIONS",
    "PromotionPlan",
    "PromotionResult",
    "PromotionStateMachine",
    "build_state_machine",
    "plan",
    "AsyncOperationWaiter",
    "StatusEvent",
    "SystemClock",
    "WaitPolicy",
]
