"""Pydantic models for plans, journal records, transport messages and runs."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ..core.exceptions import ConfigurationError
from ..modules.models import Action, ActionKind


# ============================================================================
# Project Configuration
# ============================================================================


class CompilerConfig(BaseModel):
    """Compiler settings, passed through to the artifact toolchain."""

    version: str | None = Field(None, description="Compiler version, e.g. '0.8.23'")
    evm_version: str | None = Field(None, description="Target EVM version, e.g. 'shanghai'")


class NetworkConfig(BaseModel):
    """One deployment target network."""

    url: str | None = Field(None, description="JSON-RPC endpoint URL")
    accounts: list[str] = Field(
        default_factory=list, description="Sender accounts managed by the node"
    )
    chain_id: int | None = Field(None, description="Expected chain id")
    evm_version: str | None = Field(None, description="Network EVM feature level")
    confirmations: int = Field(1, ge=1, description="Blocks to wait for a receipt")
    simulated: bool = Field(False, description="Use the in-memory simulated network")
    encoder: str | None = Field(
        None, description="Calldata encoder as 'module:Class'"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError(f"Network url must be http(s): {v}")
        return v


class ProjectConfig(BaseModel):
    """Complete project configuration file."""

    compiler: CompilerConfig = Field(default_factory=CompilerConfig)
    artifacts: str = Field("artifacts", description="Artifacts directory")
    networks: dict[str, NetworkConfig] = Field(default_factory=dict)
    unavailable: dict[str, str] = Field(
        default_factory=dict,
        description="Networks that cannot be used, with the reason (e.g. unset variables)",
    )

    def get_network(self, network_id: str) -> NetworkConfig | None:
        return self.networks.get(network_id)

    def require_network(self, network_id: str) -> NetworkConfig:
        """Get a network or explain why it cannot be used.

        Raises:
            ConfigurationError: If the network is unknown or unavailable
        """
        if network_id in self.unavailable:
            raise ConfigurationError(
                f"Network '{network_id}' is unavailable: {self.unavailable[network_id]}"
            )
        network = self.networks.get(network_id)
        if network is None:
            configured = ", ".join(sorted([*self.networks, *self.unavailable]))
            raise ConfigurationError(
                f"Unknown network '{network_id}' (configured: {configured})"
            )
        return network


# ============================================================================
# Plan (output of GraphResolver)
# ============================================================================


class Plan(BaseModel):
    """Dependency-ordered actions ready for execution."""

    modules: list[str] = Field(..., description="Flattened module names")
    actions: list[Action] = Field(..., description="Actions in execution order")
    dependencies: dict[str, list[str]] = Field(
        ..., description="Action id -> ids it depends on"
    )
    stages: list[list[str]] = Field(
        ..., description="Action ids grouped by dependency depth"
    )

    def action_ids(self) -> list[str]:
        return [action.id for action in self.actions]

    def get_action(self, action_id: str) -> Action | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def dependents(self, action_id: str) -> list[str]:
        """Ids of every action that transitively depends on ``action_id``."""
        result: list[str] = []
        frontier = [action_id]
        while frontier:
            current = frontier.pop()
            for other in self.action_ids():
                if current in self.dependencies.get(other, []) and other not in result:
                    result.append(other)
                    frontier.append(other)
        return result


# ============================================================================
# Journal
# ============================================================================


class JournalStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class JournalEntry(BaseModel):
    """Persisted record of one action's latest state on one network."""

    action_id: str
    status: JournalStatus
    tx_reference: str | None = None
    result: Any = None
    error: str | None = None
    fingerprint: str | None = None
    attempts: int = 0
    updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())


# ============================================================================
# Transport messages
# ============================================================================


class Artifact(BaseModel):
    """Compiled contract: what the deploy and call requests need."""

    contract_name: str
    abi: list[dict[str, Any]] = Field(default_factory=list)
    bytecode: str = "0x"


class TransactionRequest(BaseModel):
    """Materialized action handed to the transport.

    Futures have already been replaced by their resolved values.
    """

    network_id: str
    action_id: str
    kind: ActionKind
    sender: str
    to: str | None = Field(None, description="None for contract creation")
    contract: str | None = None
    abi: list[dict[str, Any]] = Field(default_factory=list)
    bytecode: str | None = None
    method: str | None = None
    args: list[Any] = Field(default_factory=list)
    value: int = 0


class Confirmation(BaseModel):
    """Outcome reported by the transport for a submitted transaction."""

    success: bool
    contract_address: str | None = None
    output: Any = None
    error: str | None = None
    block_number: int | None = None


# ============================================================================
# Run summary (output of Executor)
# ============================================================================


OutcomeStatus = Literal["confirmed", "failed", "skipped", "not_started"]


class ActionOutcome(BaseModel):
    """Terminal state of one action at the end of a run."""

    action_id: str
    kind: ActionKind
    status: OutcomeStatus
    tx_reference: str | None = None
    result: Any = None
    error: str | None = None
    resumed: bool = Field(False, description="Taken from the journal, not executed")


class RunSummary(BaseModel):
    """Result of one deployment run."""

    run_id: str
    network_id: str
    outcomes: list[ActionOutcome]
    submissions: int = Field(0, description="Transactions sent to the transport")
    stopped: bool = Field(False, description="Run halted by a stop signal")
    aborted: bool = Field(False, description="Run halted by the abort failure policy")
    start_time: str
    end_time: str

    @property
    def succeeded(self) -> bool:
        return all(outcome.status == "confirmed" for outcome in self.outcomes)

    def get(self, action_id: str) -> ActionOutcome | None:
        for outcome in self.outcomes:
            if outcome.action_id == action_id:
                return outcome
        return None

    def results(self) -> dict[str, Any]:
        """Confirmed results keyed by action id."""
        return {
            outcome.action_id: outcome.result
            for outcome in self.outcomes
            if outcome.status == "confirmed"
        }
