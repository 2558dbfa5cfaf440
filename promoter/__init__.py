"""Promote an Aurora cluster through the dev, test and prod environment slots."""

from .models import Environment, PromotionRequest, SlotExistenceSnapshot

__all__ = [
    "Environment",
    "PromotionRequest",
    "SlotExistenceSnapshot",
]
