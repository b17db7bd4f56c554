"""TypedDict definitions for external wire and file formats.

Provides type safety and documentation for the raw JSON shapes exchanged
with the compiler toolchain and EVM JSON-RPC nodes.
"""

from typing import Any, NotRequired, TypedDict


class ArtifactFile(TypedDict):
    """Compiled contract artifact as written by the compiler toolchain.

    Hardhat layout: ``artifacts/contracts/<Source>.sol/<Name>.json``.
    """

    contractName: str
    abi: list[dict[str, Any]]
    bytecode: str
    sourceName: NotRequired[str]
    deployedBytecode: NotRequired[str]


class RpcRequest(TypedDict):
    """JSON-RPC 2.0 request envelope."""

    jsonrpc: str
    id: int
    method: str
    params: list[Any]


class RpcError(TypedDict):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: NotRequired[Any]


class RpcResponse(TypedDict):
    """JSON-RPC 2.0 response envelope."""

    jsonrpc: str
    id: int
    result: NotRequired[Any]
    error: NotRequired[RpcError]


class TransactionReceipt(TypedDict):
    """Subset of an ``eth_getTransactionReceipt`` result used here."""

    transactionHash: str
    status: str
    blockNumber: str
    contractAddress: str | None
    gasUsed: NotRequired[str]
