"""Core types and exceptions."""

from .exceptions import (
    AlreadyFinalized,
    ArtifactNotFound,
    ChainplanError,
    ConfigurationError,
    ConfirmationTimeout,
    CyclicDependency,
    DuplicateActionName,
    MissingParameter,
    ModuleLoadError,
    TransportFailure,
    UnresolvedFuture,
)
from .types import (
    ArtifactFile,
    RpcError,
    RpcRequest,
    RpcResponse,
    TransactionReceipt,
)

__all__ = [
    # Types
    "ArtifactFile",
    "RpcError",
    "RpcRequest",
    "RpcResponse",
    "TransactionReceipt",
    # Exceptions
    "AlreadyFinalized",
    "ArtifactNotFound",
    "ChainplanError",
    "ConfigurationError",
    "ConfirmationTimeout",
    "CyclicDependency",
    "DuplicateActionName",
    "MissingParameter",
    "ModuleLoadError",
    "TransportFailure",
    "UnresolvedFuture",
]
