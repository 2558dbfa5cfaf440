"""Remote RDS resources and the in-memory credential."""

from dataclasses import dataclass

from pydantic import SecretStr

# Only terminal status the promoter treats as operation-complete.
AVAILABLE = "available"

# Statuses that will never turn into "available" without operator action.
FAILED_STATUSES = frozenset(
    {
        "failed",
        "deleting",
        "deleted",
        "incompatible-restore",
        "incompatible-parameters",
        "incompatible-network",
        "incompatible-option-group",
        "incompatible-credentials",
        "inaccessible-encryption-credentials",
        "inaccessible-encryption-credentials-recoverable",
    }
)


@dataclass
class ClusterResource:
    identifier: str
    status: str
    endpoint: str = ""
    engine: str = ""

    @property
    def is_available(self) -> bool:
        return self.status == AVAILABLE


@dataclass
class InstanceResource:
    identifier: str
    cluster_identifier: str
    status: str
    publicly_accessible: bool = False

    @property
    def is_available(self) -> bool:
        return self.status == AVAILABLE


@dataclass(frozen=True)
class Credential:
    """Master user secret for a single cluster, held only in memory."""

    cluster_identifier: str
    password: SecretStr

    def reveal(self) -> str:
        return self.password.get_secret_value()
