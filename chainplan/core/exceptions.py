"""Custom exception hierarchy for the chainplan deployment orchestrator.

Provides structured exceptions with error codes and recovery hints.
Declaration and resolution errors are fatal and raised before any network
I/O; transport errors are isolated to the action that raised them.
"""

from typing import Any


class ChainplanError(Exception):
    """Base exception for deployment errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        recoverable: Whether the error is potentially recoverable.
    """

    def __init__(
        self,
        message: str,
        code: str,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error details.
        """
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class DuplicateActionName(ChainplanError):
    """Two actions share the same id.

    Raised by the module builder when a name is reused within a module, and
    by the resolver when two distinct modules produce the same action id.
    """

    def __init__(self, action_id: str) -> None:
        message = (
            f"Action '{action_id}' is already declared; "
            "pass an explicit id to disambiguate"
        )
        super().__init__(message, "DUPLICATE_ACTION", recoverable=False)
        self.action_id = action_id


class UnresolvedFuture(ChainplanError):
    """An action references a future whose source action was never declared."""

    def __init__(self, action_id: str, reference: str) -> None:
        message = f"Action '{action_id}' references undeclared action '{reference}'"
        super().__init__(message, "UNRESOLVED_FUTURE", recoverable=False)
        self.action_id = action_id
        self.reference = reference


class CyclicDependency(ChainplanError):
    """The declared actions form a dependency cycle."""

    def __init__(self, cycle: list[str]) -> None:
        message = "Dependency cycle detected: " + " -> ".join(cycle + cycle[:1])
        super().__init__(message, "CYCLIC_DEPENDENCY", recoverable=False)
        self.cycle = cycle


class MissingParameter(ChainplanError):
    """A module parameter has no value and no default."""

    def __init__(self, module: str, name: str) -> None:
        message = f"Module '{module}' requires parameter '{name}'"
        super().__init__(message, "MISSING_PARAMETER", recoverable=False)
        self.module = module
        self.name = name


class TransportFailure(ChainplanError):
    """Submission, confirmation or read through the transport failed.

    Raised by transports; the executor retries within its budget and then
    records the action as failed.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        retryable: bool = True,
    ) -> None:
        if cause:
            message += f": {cause}"
        super().__init__(message, "TRANSPORT_FAILURE", recoverable=True)
        self.cause = cause
        self.retryable = retryable


class ConfirmationTimeout(TransportFailure):
    """Confirmation was not observed within the configured bound."""

    def __init__(self, tx_reference: str, timeout: float) -> None:
        super().__init__(
            f"Transaction {tx_reference} not confirmed after {timeout}s"
        )
        self.code = "TIMEOUT"
        self.tx_reference = tx_reference
        self.timeout = timeout


class AlreadyFinalized(ChainplanError):
    """Journal consistency violation for an already confirmed action.

    Usually means a changed module graph is reusing the id of an action
    that was deployed with different content.
    """

    def __init__(self, action_id: str, reason: str = "result differs") -> None:
        message = f"Action '{action_id}' is already confirmed ({reason})"
        super().__init__(message, "ALREADY_FINALIZED", recoverable=False)
        self.action_id = action_id
        self.reason = reason


class ArtifactNotFound(ChainplanError):
    """No compiled artifact exists for a contract name."""

    def __init__(self, contract_name: str, location: str) -> None:
        message = f"No artifact for contract '{contract_name}' under {location}"
        super().__init__(message, "ARTIFACT_NOT_FOUND", recoverable=False)
        self.contract_name = contract_name


class ConfigurationError(ChainplanError):
    """Invalid configuration.

    Raised when configuration is invalid or missing required values.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, "CONFIG", recoverable=False)


class ModuleLoadError(ChainplanError):
    """A module file could not be loaded or validated."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "MODULE_LOAD", recoverable=False)
