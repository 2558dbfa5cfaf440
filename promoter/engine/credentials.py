"""Master credential generation and rotation."""

import secrets
import string
from typing import Callable, Optional

import structlog
from pydantic import SecretStr

from ..exceptions import CredentialGenerationError
from ..models import Credential
from .control_plane import CloudControlPlane
from .waiter import AsyncOperationWaiter

logger = structlog.get_logger()

# RDS master password bounds for MySQL-compatible Aurora.
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 41

DEFAULT_PASSWORD_LENGTH = 21
DEFAULT_PASSWORD_DIGITS = 5


def check_password_policy(length: int, digits: int) -> None:
    """
    Validate a password policy before any password is generated.

    Raises:
        CredentialGenerationError: If the policy cannot be satisfied
    """
    if not MIN_PASSWORD_LENGTH <= length <= MAX_PASSWORD_LENGTH:
        raise CredentialGenerationError(
            f"length must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH}, got {length}"
        )
    if not 0 <= digits <= min(length, len(string.digits)):
        raise CredentialGenerationError(f"cannot place {digits} unique digits in {length} characters")
    if length - digits > len(string.ascii_letters):
        raise CredentialGenerationError(f"cannot place {length - digits} unique letters")


def generate_password(
    length: int = DEFAULT_PASSWORD_LENGTH, digits: int = DEFAULT_PASSWORD_DIGITS
) -> str:
    """
    Generate a password of letters and digits with no repeated characters.

    Args:
        length: Total password length
        digits: Exact number of digits; the rest are mixed-case letters

    Returns:
        Generated password

    Raises:
        CredentialGenerationError: If the policy cannot be satisfied
    """
    check_password_policy(length, digits)

    letters = length - digits
    rng = secrets.SystemRandom()
    chars = rng.sample(string.digits, digits) + rng.sample(string.ascii_letters, letters)
    rng.shuffle(chars)
    return "".join(chars)


class CredentialRotator:
    """Generates a new master password and applies it to a cluster."""

    def __init__(
        self,
        control_plane: CloudControlPlane,
        waiter: AsyncOperationWaiter,
        length: int = DEFAULT_PASSWORD_LENGTH,
        digits: int = DEFAULT_PASSWORD_DIGITS,
        generator: Optional[Callable[[int, int], str]] = None,
    ):
        check_password_policy(length, digits)

        self.control_plane = control_plane
        self.waiter = waiter
        self.length = length
        self.digits = digits
        self.generator = generator or generate_password

    def generate(self, cluster_id: str) -> Credential:
        password = self.generator(self.length, self.digits)
        return Credential(cluster_identifier=cluster_id, password=SecretStr(password))

    def rotate(self, cluster_id: str, step: Optional[str] = None) -> Credential:
        """
        Reset the master password of a cluster and wait until it is available.

        Args:
            cluster_id: Cluster identifier
            step: Step name used for status events

        Returns:
            The applied credential
        """
        credential = self.generate(cluster_id)

        self.control_plane.modify_cluster_password(cluster_id, credential.reveal())
        self.waiter.wait_for_cluster(self.control_plane, cluster_id, step=step)

        logger.info("Master password reset", cluster_id=cluster_id)
        return credential
