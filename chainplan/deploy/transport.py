"""Transports - submit transactions and observe their confirmation."""

import asyncio
import hashlib
import importlib
import itertools
import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from ..core.exceptions import ConfigurationError, ConfirmationTimeout, TransportFailure
from ..core.types import RpcRequest, RpcResponse, TransactionReceipt
from ..modules.models import ActionKind
from .models import Confirmation, NetworkConfig, TransactionRequest

logger = logging.getLogger(__name__)


# ============================================================================
# Base Transport Interface
# ============================================================================


class Transport(ABC):
    """Base class for network transports."""

    @abstractmethod
    async def submit(self, request: TransactionRequest) -> str:
        """Broadcast a transaction.

        Args:
            request: Materialized deploy or call request

        Returns:
            Transaction reference (hash)

        Raises:
            TransportFailure: If the transaction could not be submitted
        """

    @abstractmethod
    async def await_confirmation(self, tx_reference: str, timeout: float) -> Confirmation:
        """Wait for a submitted transaction to be mined.

        Args:
            tx_reference: Reference returned by submit
            timeout: Seconds to wait

        Returns:
            Confirmation with success flag and outputs

        Raises:
            ConfirmationTimeout: If no receipt appears in time
            TransportFailure: If the node cannot be queried
        """

    @abstractmethod
    async def static_call(self, request: TransactionRequest) -> Any:
        """Evaluate a read-only call and return its decoded output."""

    async def check_network(self) -> None:
        """Verify the transport reaches the expected network.

        Called once before the first action of a run is started.

        Raises:
            ConfigurationError: If the node belongs to another chain
        """

    async def aclose(self) -> None:
        """Release network resources."""


# ============================================================================
# Simulated Transport (in-memory network)
# ============================================================================


CallHandler = Callable[[list[Any]], Any]


class SimulatedTransport(Transport):
    """Deterministic in-memory network.

    Addresses and transaction hashes derive from network id, sender and
    nonce, so repeated runs against a fresh simulation give the same values.
    Call outputs come from handlers registered per ``(contract, method)``;
    failures can be injected per action id.

    With a ``state_file`` the chain (contracts, nonces, receipts) survives
    between processes, the same way the journal does.
    """

    def __init__(self, latency: float = 0.0, state_file: Path | str | None = None):
        self.latency = latency
        self.submissions: list[TransactionRequest] = []
        self.static_calls: list[TransactionRequest] = []
        self.contracts: dict[str, str | None] = {}
        self._handlers: dict[tuple[str | None, str], CallHandler] = {}
        self._nonces: dict[tuple[str, str], int] = {}
        self._receipts: dict[str, Confirmation] = {}
        self._tx_actions: dict[str, str] = {}
        self._submit_failures: dict[str, int] = {}
        self._reverts: dict[str, str] = {}
        self._hung: set[str] = set()
        self.state_file = Path(state_file) if state_file is not None else None
        if self.state_file is not None and self.state_file.exists():
            self._restore()

    # ------------------------------------------------------------------
    # Scenario setup
    # ------------------------------------------------------------------

    def on_call(self, contract: str | None, method: str, handler: CallHandler) -> None:
        """Register the behaviour of ``contract.method`` (None matches any contract)."""
        self._handlers[(contract, method)] = handler

    def add_contract(self, address: str, contract: str | None = None) -> None:
        """Pretend a contract already exists at ``address``."""
        self.contracts[address.lower()] = contract

    def fail_submission(self, action_id: str, times: int = 1) -> None:
        """Make the next ``times`` submissions (or static calls) of an action fail."""
        self._submit_failures[action_id] = times

    def revert(self, action_id: str, reason: str = "execution reverted") -> None:
        """Make an action's transaction revert once mined."""
        self._reverts[action_id] = reason

    def hang(self, action_id: str) -> None:
        """Never confirm an action's transactions."""
        self._hung.add(action_id)

    def heal(self, action_id: str) -> None:
        """Remove every failure injected for an action."""
        self._submit_failures.pop(action_id, None)
        self._reverts.pop(action_id, None)
        self._hung.discard(action_id)

    # ------------------------------------------------------------------
    # Chain state
    # ------------------------------------------------------------------

    def _restore(self) -> None:
        try:
            state = json.loads(self.state_file.read_text(encoding="utf-8"))
            self.contracts = dict(state["contracts"])
            self._nonces = {
                (item["network"], item["sender"]): item["nonce"] for item in state["nonces"]
            }
            self._receipts = {
                tx: Confirmation.model_validate(receipt)
                for tx, receipt in state["receipts"].items()
            }
            self._tx_actions = dict(state["tx_actions"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigurationError(
                f"Cannot read simulated chain state {self.state_file}: {e}"
            ) from e
        logger.debug(
            "Restored %d contracts from %s", len(self.contracts), self.state_file
        )

    def _persist(self) -> None:
        if self.state_file is None:
            return
        state = {
            "contracts": self.contracts,
            "nonces": [
                {"network": network, "sender": sender, "nonce": nonce}
                for (network, sender), nonce in self._nonces.items()
            ],
            "receipts": {
                tx: receipt.model_dump() for tx, receipt in self._receipts.items()
            },
            "tx_actions": self._tx_actions,
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.with_name(self.state_file.name + ".tmp")
        tmp_path.write_text(json.dumps(state, indent=2, default=str), encoding="utf-8")
        os.replace(tmp_path, self.state_file)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _check_injected_failure(self, request: TransactionRequest) -> None:
        remaining = self._submit_failures.get(request.action_id, 0)
        if remaining > 0:
            self._submit_failures[request.action_id] = remaining - 1
            raise TransportFailure(f"Simulated failure submitting {request.action_id}")

    def _handler_for(self, request: TransactionRequest) -> CallHandler | None:
        contract = self.contracts.get((request.to or "").lower(), request.contract)
        method = request.method or ""
        return self._handlers.get((contract, method)) or self._handlers.get((None, method))

    def _next_nonce(self, network_id: str, sender: str) -> int:
        key = (network_id, sender.lower())
        nonce = self._nonces.get(key, 0)
        self._nonces[key] = nonce + 1
        return nonce

    async def submit(self, request: TransactionRequest) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        self._check_injected_failure(request)

        nonce = self._next_nonce(request.network_id, request.sender)
        seed = f"{request.network_id}:{request.sender.lower()}:{nonce}"
        tx_reference = "0x" + hashlib.sha256(f"tx:{seed}".encode()).hexdigest()
        self.submissions.append(request)

        if request.action_id in self._reverts:
            receipt = Confirmation(success=False, error=self._reverts[request.action_id])
        elif request.kind == ActionKind.DEPLOY:
            address = "0x" + hashlib.sha256(f"create:{seed}".encode()).hexdigest()[:40]
            self.contracts[address] = request.contract
            receipt = Confirmation(success=True, contract_address=address)
        else:
            if (request.to or "").lower() not in self.contracts:
                receipt = Confirmation(success=False, error=f"No contract at {request.to}")
            else:
                receipt = self._execute(request)

        receipt.block_number = len(self._receipts) + 1
        self._receipts[tx_reference] = receipt
        self._tx_actions[tx_reference] = request.action_id
        self._persist()
        logger.debug("Simulated %s -> %s", request.action_id, tx_reference)
        return tx_reference

    def _execute(self, request: TransactionRequest) -> Confirmation:
        handler = self._handler_for(request)
        if handler is None:
            return Confirmation(success=True)
        try:
            return Confirmation(success=True, output=handler(request.args))
        except Exception as e:
            return Confirmation(success=False, error=f"execution reverted: {e}")

    async def await_confirmation(self, tx_reference: str, timeout: float) -> Confirmation:
        if tx_reference not in self._receipts:
            raise TransportFailure(f"Unknown transaction {tx_reference}", retryable=False)

        if self._tx_actions[tx_reference] in self._hung:
            await asyncio.sleep(timeout)
            raise ConfirmationTimeout(tx_reference, timeout)

        if self.latency:
            await asyncio.sleep(self.latency)
        return self._receipts[tx_reference]

    async def static_call(self, request: TransactionRequest) -> Any:
        self._check_injected_failure(request)
        self.static_calls.append(request)
        if (request.to or "").lower() not in self.contracts:
            raise TransportFailure(f"No contract at {request.to}", retryable=False)
        handler = self._handler_for(request)
        if handler is None:
            return None
        try:
            return handler(request.args)
        except Exception as e:
            raise TransportFailure("Static call reverted", cause=e, retryable=False) from e


# ============================================================================
# JSON-RPC Transport (EVM nodes)
# ============================================================================


class CalldataEncoder(ABC):
    """ABI encoding toolchain used by the JSON-RPC transport."""

    @abstractmethod
    def encode_deploy(self, bytecode: str, abi: list[dict[str, Any]], args: list[Any]) -> str:
        """Creation calldata: bytecode followed by encoded constructor args."""

    @abstractmethod
    def encode_call(self, abi: list[dict[str, Any]], method: str, args: list[Any]) -> str:
        """Call data: selector followed by encoded args."""

    @abstractmethod
    def decode_output(self, abi: list[dict[str, Any]], method: str, data: str) -> Any:
        """Decode the return data of ``method``."""


class BytecodeOnlyEncoder(CalldataEncoder):
    """Encoder for networks without an ABI toolchain configured.

    Supports deploying contracts whose constructor takes no arguments and
    nothing else.
    """

    def encode_deploy(self, bytecode: str, abi: list[dict[str, Any]], args: list[Any]) -> str:
        if args:
            raise ConfigurationError(
                "Constructor arguments need an ABI encoder; set 'encoder' on the network"
            )
        return bytecode

    def encode_call(self, abi: list[dict[str, Any]], method: str, args: list[Any]) -> str:
        raise ConfigurationError(
            f"Calling '{method}' needs an ABI encoder; set 'encoder' on the network"
        )

    def decode_output(self, abi: list[dict[str, Any]], method: str, data: str) -> Any:
        return data


def load_encoder(path: str) -> CalldataEncoder:
    """Instantiate an encoder from a ``'module:Class'`` path.

    Raises:
        ConfigurationError: If the path cannot be imported or is not an encoder
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ConfigurationError(f"Encoder must be 'module:Class', got '{path}'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import encoder module '{module_name}': {e}") from e

    encoder_class = getattr(module, class_name, None)
    if encoder_class is None:
        raise ConfigurationError(f"Encoder '{class_name}' not found in '{module_name}'")

    encoder = encoder_class()
    if not isinstance(encoder, CalldataEncoder):
        raise ConfigurationError(f"'{path}' is not a CalldataEncoder")
    return encoder


class JsonRpcTransport(Transport):
    """Talk to an EVM node over HTTP JSON-RPC.

    Transactions are sent with ``eth_sendTransaction`` from node-managed
    accounts; signing raw keys is left to the node or a signing proxy.
    """

    def __init__(
        self,
        url: str,
        encoder: CalldataEncoder | None = None,
        poll_interval: float = 1.0,
        confirmations: int = 1,
        chain_id: int | None = None,
        request_timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.chain_id = chain_id
        self.encoder = encoder or BytecodeOnlyEncoder()
        self.poll_interval = poll_interval
        self.confirmations = confirmations
        self._client = client or httpx.AsyncClient(timeout=request_timeout)
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload: RpcRequest = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            body: RpcResponse = response.json()
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} to {self.url} failed", cause=e) from e
        except ValueError as e:
            raise TransportFailure(f"{method} returned invalid JSON", cause=e) from e

        if "error" in body:
            error = body["error"]
            raise TransportFailure(
                f"{method} rejected: {error.get('message')} (code {error.get('code')})",
                retryable=False,
            )
        return body.get("result")

    def _transaction(self, request: TransactionRequest) -> dict[str, Any]:
        try:
            if request.kind == ActionKind.DEPLOY:
                data = self.encoder.encode_deploy(
                    request.bytecode or "0x", request.abi, request.args
                )
            else:
                data = self.encoder.encode_call(request.abi, request.method or "", request.args)
        except ConfigurationError:
            raise
        except Exception as e:
            raise TransportFailure(
                f"Cannot encode {request.action_id}", cause=e, retryable=False
            ) from e

        tx: dict[str, Any] = {"from": request.sender, "data": data}
        if request.to is not None:
            tx["to"] = request.to
        if request.value:
            tx["value"] = hex(request.value)
        return tx

    async def check_network(self) -> None:
        if self.chain_id is None:
            return
        actual = int(await self._rpc("eth_chainId", []), 16)
        if actual != self.chain_id:
            raise ConfigurationError(
                f"Node at {self.url} is on chain {actual}, expected {self.chain_id}"
            )
        logger.debug("Connected to chain %d at %s", actual, self.url)

    async def submit(self, request: TransactionRequest) -> str:
        tx_reference = await self._rpc("eth_sendTransaction", [self._transaction(request)])
        logger.info("Submitted %s as %s", request.action_id, tx_reference)
        return tx_reference

    async def await_confirmation(self, tx_reference: str, timeout: float) -> Confirmation:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            receipt: TransactionReceipt | None = await self._rpc(
                "eth_getTransactionReceipt", [tx_reference]
            )
            # Receipts of pending transactions carry no block number yet
            if receipt is not None and receipt.get("blockNumber"):
                block = int(receipt["blockNumber"], 16)
                if await self._has_confirmations(block):
                    return self._confirmation(receipt, block)

            if loop.time() + self.poll_interval > deadline:
                raise ConfirmationTimeout(tx_reference, timeout)
            await asyncio.sleep(self.poll_interval)

    async def _has_confirmations(self, block: int) -> bool:
        if self.confirmations <= 1:
            return True
        latest = int(await self._rpc("eth_blockNumber", []), 16)
        return latest - block + 1 >= self.confirmations

    @staticmethod
    def _confirmation(receipt: TransactionReceipt, block: int) -> Confirmation:
        if int(receipt["status"], 16) != 1:
            return Confirmation(success=False, error="execution reverted", block_number=block)
        return Confirmation(
            success=True,
            contract_address=receipt.get("contractAddress"),
            block_number=block,
        )

    async def static_call(self, request: TransactionRequest) -> Any:
        tx = self._transaction(request)
        raw = await self._rpc("eth_call", [tx, "latest"])
        try:
            return self.encoder.decode_output(request.abi, request.method or "", raw)
        except Exception as e:
            raise TransportFailure(
                f"Cannot decode {request.method} output", cause=e, retryable=False
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()


def create_transport(
    network: NetworkConfig,
    poll_interval: float = 1.0,
    state_file: Path | None = None,
) -> Transport:
    """Build the transport for a configured network.

    Args:
        network: Network configuration
        poll_interval: Receipt polling interval in seconds
        state_file: Where a simulated network keeps its chain between runs

    Raises:
        ConfigurationError: If the network has neither a url nor simulation
    """
    if network.simulated:
        return SimulatedTransport(state_file=state_file)
    if not network.url:
        raise ConfigurationError("Network needs a 'url' or 'simulated: true'")

    encoder = load_encoder(network.encoder) if network.encoder else None
    return JsonRpcTransport(
        network.url,
        encoder=encoder,
        poll_interval=poll_interval,
        confirmations=network.confirmations,
        chain_id=network.chain_id,
    )
