"""Environment slots and the per-run promotion inputs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict


class Environment(str, Enum):
    """Environment slots a cluster identifier can occupy."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"

    @classmethod
    def parse(cls, value: str) -> "Environment":
        """Parse a slot name, ignoring case."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(e.value for e in cls)
            raise ValueError(f"Unknown environment '{value}', expected one of: {choices}") from None

    def identifier(self, base_name: str) -> str:
        """
        Cluster (and instance) identifier for this slot.

        Prod uses the bare base name; the other slots append their name.
        """
        if self is Environment.PROD:
            return base_name
        return f"{base_name}-{self.value}"

    @property
    def publicly_accessible(self) -> bool:
        return self is Environment.DEV


@dataclass(frozen=True)
class PromotionRequest:
    """Target slot and base cluster name for one run."""

    target: Environment
    base_name: str

    def identifier(self, slot: Environment) -> str:
        return slot.identifier(self.base_name)


@dataclass(frozen=True)
class SlotExistenceSnapshot:
    """
    Point-in-time view of which slots hold a cluster.

    Computed once at the start of a run and never re-validated.
    """

    dev_exists: bool
    test_exists: bool
    prod_exists: bool
    endpoints: Dict[Environment, str] = field(default_factory=dict)

    def exists(self, slot: Environment) -> bool:
        return {
            Environment.DEV: self.dev_exists,
            Environment.TEST: self.test_exists,
            Environment.PROD: self.prod_exists,
        }[slot]

    def endpoint(self, slot: Environment) -> str:
        return self.endpoints.get(slot, "")

    def key(self) -> tuple:
        return (self.dev_exists, self.test_exists, self.prod_exists)
