"""Domain models for the promoter."""

from .environment import Environment, PromotionRequest, SlotExistenceSnapshot
from .resources import (
    AVAILABLE,
    FAILED_STATUSES,
    ClusterResource,
    Credential,
    InstanceResource,
)

__all__ = [
    "AVAILABLE",
    "FAILED_STATUSES",
    "ClusterResource",
    "Credential",
    "Environment",
    "InstanceResource",
    "PromotionRequest",
    "SlotExistenceSnapshot",
]
