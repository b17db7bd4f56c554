"""Deployment: plan resolution, journaling and execution."""

from .artifacts import ArtifactProvider, FileArtifactProvider, StaticArtifactProvider
from .executor import Executor
from .journal import Journal, JournalStore
from .models import (
    ActionOutcome,
    Artifact,
    CompilerConfig,
    Confirmation,
    JournalEntry,
    JournalStatus,
    NetworkConfig,
    Plan,
    ProjectConfig,
    RunSummary,
    TransactionRequest,
)
from .networks import ProjectLoader
from .resolver import GraphResolver
from .transport import (
    CalldataEncoder,
    JsonRpcTransport,
    SimulatedTransport,
    Transport,
    create_transport,
)

__all__ = [
    "ActionOutcome",
    "Artifact",
    "ArtifactProvider",
    "CalldataEncoder",
    "CompilerConfig",
    "Confirmation",
    "Executor",
    "FileArtifactProvider",
    "GraphResolver",
    "Journal",
    "JournalEntry",
    "JournalStatus",
    "JournalStore",
    "JsonRpcTransport",
    "NetworkConfig",
    "Plan",
    "ProjectConfig",
    "ProjectLoader",
    "RunSummary",
    "SimulatedTransport",
    "StaticArtifactProvider",
    "Transport",
    "TransactionRequest",
    "create_transport",
]
