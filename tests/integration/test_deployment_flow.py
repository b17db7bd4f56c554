"""
End-to-end deployment flows on a simulated network.

Each test loads or builds modules, resolves them and executes the plan
against file-backed journals, reopening the journal between runs the way
separate CLI invocations would.

Run with: pytest -m integration
"""

import json
import textwrap
from pathlib import Path

import pytest

from chainplan.config import DeploySettings
from chainplan.deploy.artifacts import StaticArtifactProvider
from chainplan.deploy.executor import Executor
from chainplan.deploy.journal import JournalStore
from chainplan.deploy.models import JournalEntry, JournalStatus, TransactionRequest
from chainplan.deploy.resolver import GraphResolver
from chainplan.deploy.transport import SimulatedTransport
from chainplan.modules.builder import Module
from chainplan.modules.loader import ModuleLoader, load_parameters
from chainplan.modules.models import ActionKind

pytestmark = pytest.mark.integration

TOKEN = "TokenModule#Token"
MINT = "TokenModule#Token.mint"
PAIR = "0x" + "9c" * 20

EXCHANGE_YAML = """
modules:
  - name: TokenModule
    parameters:
      supply: 1000
    actions:
      - deploy: Token
      - call: mint
        target: "@Token"
        args: [{param: supply}]
    exports:
      token: "@Token"

  - name: ExchangeModule
    uses: [TokenModule]
    actions:
      - deploy: Factory
      - call: createPair
        target: "@Factory"
        args: ["@TokenModule#Token"]
      - read_address: "@Factory.createPair[0]"
        id: pairAddress
      - contract_at: Pair
        address: "@pairAddress"
      - call: sync
        target: "@Pair"
        after: ["@TokenModule#Token.mint"]
    exports:
      pair: "@Pair"
"""


def executor_for(
    store_dir: Path,
    transport: SimulatedTransport,
    settings: DeploySettings,
) -> Executor:
    """Executor over a freshly opened journal, as a new process would see it."""
    journal = JournalStore(store_dir).journal("local")
    return Executor(transport, journal, StaticArtifactProvider(), settings)


class TestTokenDeployment:
    """Token deploy followed by mint, across process restarts."""

    @pytest.mark.asyncio
    async def test_second_run_makes_no_submissions(
        self, token_module: Module, tmp_path: Path, fast_settings: DeploySettings
    ) -> None:
        plan = GraphResolver().resolve(token_module)

        first = await executor_for(tmp_path, SimulatedTransport(), fast_settings).execute(plan)

        assert first.succeeded
        assert first.submissions == 2
        token_address = first.get(TOKEN).result

        # A brand new network object proves nothing is re-read from the chain
        transport = SimulatedTransport()
        second = await executor_for(tmp_path, transport, fast_settings).execute(plan)

        assert second.succeeded
        assert second.submissions == 0
        assert transport.submissions == []
        assert second.get(TOKEN).result == token_address
        assert all(outcome.resumed for outcome in second.outcomes)

    @pytest.mark.asyncio
    async def test_timeout_then_resume(
        self, token_module: Module, tmp_path: Path, fast_settings: DeploySettings
    ) -> None:
        plan = GraphResolver().resolve(token_module)
        transport = SimulatedTransport()
        transport.hang(MINT)

        first = await executor_for(tmp_path, transport, fast_settings).execute(plan)

        assert first.get(TOKEN).status == "confirmed"
        assert first.get(MINT).status == "failed"

        transport.heal(MINT)
        second = await executor_for(tmp_path, transport, fast_settings).execute(plan)

        assert second.succeeded
        assert second.submissions == 1
        assert second.get(TOKEN).resumed
        mint = transport.submissions[-1]
        assert mint.action_id == MINT
        assert mint.to == first.get(TOKEN).result

    @pytest.mark.asyncio
    async def test_crash_after_broadcast(
        self, token_module: Module, tmp_path: Path, fast_settings: DeploySettings
    ) -> None:
        """A journal left at 'submitted' is polled instead of re-sent."""
        plan = GraphResolver().resolve(token_module)
        transport = SimulatedTransport()
        journal = JournalStore(tmp_path).journal("local")
        tx_reference = await transport.submit(
            TransactionRequest(
                network_id="local",
                action_id=TOKEN,
                kind=ActionKind.DEPLOY,
                sender=fast_settings.default_sender,
                contract="Token",
            )
        )
        journal.record(
            TOKEN,
            JournalEntry(
                action_id=TOKEN,
                status=JournalStatus.SUBMITTED,
                tx_reference=tx_reference,
                attempts=1,
            ),
        )

        summary = await executor_for(tmp_path, transport, fast_settings).execute(plan)

        assert summary.succeeded
        assert summary.submissions == 1
        assert summary.get(TOKEN).tx_reference == tx_reference

        lines = (tmp_path / "local.jsonl").read_text().splitlines()
        last = {}
        for line in lines:
            record = json.loads(line)
            last[record["action_id"]] = record["status"]
        assert last == {TOKEN: "confirmed", MINT: "confirmed"}


class TestYamlProject:
    """Module file, parameters file and executor wired together."""

    @pytest.mark.asyncio
    async def test_exchange_deployment(
        self, tmp_path: Path, fast_settings: DeploySettings
    ) -> None:
        module_file = tmp_path / "exchange.yaml"
        module_file.write_text(textwrap.dedent(EXCHANGE_YAML))
        params_file = tmp_path / "params.json"
        params_file.write_text(json.dumps({"TokenModule": {"supply": 5000}}))

        root = ModuleLoader().load(module_file)
        plan = GraphResolver().resolve(root, load_parameters(params_file))

        transport = SimulatedTransport()
        transport.add_contract(PAIR, "Pair")
        transport.on_call("Factory", "createPair", lambda args: [PAIR, 1])

        summary = await executor_for(tmp_path, transport, fast_settings).execute(plan)

        assert summary.succeeded, [o.error for o in summary.outcomes if o.error]
        assert plan.modules == ["TokenModule", "ExchangeModule"]

        sent = {request.action_id: request for request in transport.submissions}
        token = summary.get(TOKEN).result
        assert sent[MINT].args == [5000]
        assert sent["ExchangeModule#Factory.createPair"].args == [token]
        assert sent["ExchangeModule#Pair.sync"].to == PAIR
        assert summary.get("ExchangeModule#pairAddress").result == PAIR
        assert summary.get("ExchangeModule#Pair").result == PAIR
        # Actions without a transaction are never submitted
        assert "ExchangeModule#Pair" not in sent
        assert summary.submissions == 4


class TestExamples:
    """The bundled example modules deploy on the simulated network."""

    EXAMPLES = Path(__file__).parent.parent.parent / "examples"

    @pytest.mark.asyncio
    async def test_token_example(self, tmp_path: Path, fast_settings: DeploySettings) -> None:
        root = ModuleLoader().load(self.EXAMPLES / "token.yaml")
        params = load_parameters(self.EXAMPLES / "token-params.yaml")
        plan = GraphResolver().resolve(root, params)
        transport = SimulatedTransport()
        transport.on_call("Token", "totalSupply", lambda args: 250000)

        summary = await executor_for(tmp_path, transport, fast_settings).execute(plan)

        assert summary.succeeded
        assert summary.get("TokenModule#Token.totalSupply").result == 250000
        assert summary.submissions == 2

    @pytest.mark.asyncio
    async def test_ipup_example(self, tmp_path: Path, fast_settings: DeploySettings) -> None:
        root = ModuleLoader().load(self.EXAMPLES / "ipup" / "ipup.py")
        plan = GraphResolver().resolve(root)

        summary = await executor_for(tmp_path, SimulatedTransport(), fast_settings).execute(plan)

        assert summary.succeeded
        assert plan.action_ids() == ["IPUPModule#IPUP"]
        assert root.exports["ipup"].action_id == "IPUPModule#IPUP"
