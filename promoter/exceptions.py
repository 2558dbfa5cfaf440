from typing import Optional


class PromotionError(RuntimeError):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigFileNotFoundError(PromotionError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Config file not found: {path}")


class InvalidConfigError(PromotionError):
    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Invalid config file {path}: {message}")


class ControlPlaneError(PromotionError):
    """Base class for errors returned by the RDS control plane."""

    # Set by the waiter when the error interrupts a wait.
    last_status: Optional[str] = None

    def __init__(self, operation: str, identifier: str, code: str, message: str):
        self.operation = operation
        self.identifier = identifier
        self.code = code
        self.provider_message = message
        super().__init__(f"{operation} failed for {identifier}: {code}: {message}")


class ResourceNotFoundError(ControlPlaneError):
    pass


class ResourceAlreadyExistsError(ControlPlaneError):
    pass


class UnclassifiedProviderError(ControlPlaneError):
    pass


class WaitError(PromotionError):
    def __init__(self, resource: str, last_status: Optional[str], message: str):
        self.resource = resource
        self.last_status = last_status
        super().__init__(message)


class WaitTimeoutError(WaitError):
    def __init__(self, resource: str, last_status: Optional[str], polls: int, elapsed: float):
        self.polls = polls
        self.elapsed = elapsed
        super().__init__(
            resource,
            last_status,
            f"Timed out waiting for {resource} to become available: "
            f"{polls=} elapsed={elapsed:.0f}s {last_status=}",
        )


class RenameNotConvergedError(WaitError):
    def __init__(self, resource: str, attempts: int):
        self.attempts = attempts
        super().__init__(
            resource,
            None,
            f"Rename did not converge, {resource} still not found after {attempts} attempts",
        )


class TerminalStatusError(WaitError):
    def __init__(self, resource: str, status: str):
        super().__init__(resource, status, f"{resource} reached terminal status '{status}'")


class WaitCancelledError(WaitError):
    def __init__(self, resource: str, last_status: Optional[str]):
        super().__init__(resource, last_status, f"Wait for {resource} was cancelled")


class CredentialGenerationError(PromotionError):
    def __init__(self, message: str):
        super().__init__(f"Unable to generate credential: {message}")


class NothingToPromoteError(PromotionError):
    def __init__(self, target: str, source: str, source_id: str):
        self.target = target
        self.source = source
        super().__init__(
            f"Cannot promote to {target}: no {source} cluster found at '{source_id}'"
        )


class PromotionInProgressError(PromotionError):
    def __init__(self, base_name: str):
        self.base_name = base_name
        super().__init__(f"A promotion for '{base_name}' is already running")


class StepFailedError(PromotionError):
    """Terminal error for a promotion run, naming the step that failed."""

    def __init__(self, step: str, cause: Exception, last_status: Optional[str] = None):
        self.step = step
        self.cause = cause
        self.last_status = last_status
        super().__init__(f"Step '{step}' failed ({last_status=}): {cause}")
