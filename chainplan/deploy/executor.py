"""Executor - walk a plan, submit actions and journal their outcomes."""

import asyncio
import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from ..config import DeploySettings, settings as default_settings
from ..core.exceptions import (
    AlreadyFinalized,
    ConfigurationError,
    ConfirmationTimeout,
    MissingParameter,
    TransportFailure,
)
from ..modules.models import Action, ActionKind, Future, ModuleParameter, substitute
from ..observability.logging import LoggerAdapter
from .artifacts import ArtifactProvider
from .journal import Journal
from .models import (
    ActionOutcome,
    Artifact,
    Confirmation,
    JournalEntry,
    JournalStatus,
    Plan,
    RunSummary,
    TransactionRequest,
)
from .transport import Transport

logger = logging.getLogger(__name__)

_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _checked_address(value: Any, what: str) -> str:
    if not isinstance(value, str) or not _ADDRESS.match(value):
        raise ValueError(f"{what} is not an address: {value!r}")
    return value


class Executor:
    """Execute plans against one network, resumably and idempotently.

    Actions already confirmed in the journal are never executed again;
    actions left ``submitted`` by an interrupted run are re-polled instead of
    re-submitted. A failed action only blocks its own dependents unless the
    failure policy is ``abort``.
    """

    def __init__(
        self,
        transport: Transport,
        journal: Journal,
        artifacts: ArtifactProvider,
        settings: DeploySettings | None = None,
        sender: str | None = None,
    ):
        """Initialize executor.

        Args:
            transport: Network transport
            journal: Journal of the target network
            artifacts: Compiled contract provider
            settings: Retry, timeout and concurrency settings
            sender: Account sending transactions
        """
        self.transport = transport
        self.journal = journal
        self.artifacts = artifacts
        self.settings = settings or default_settings
        self.sender = sender or self.settings.default_sender
        self._artifacts: dict[str, Artifact] = {}
        self._submissions = 0

    @property
    def network_id(self) -> str:
        return self.journal.network_id

    async def execute(
        self, plan: Plan, stop_event: asyncio.Event | None = None
    ) -> RunSummary:
        """Run every not yet confirmed action of a plan.

        Args:
            plan: Resolved plan
            stop_event: When set, no further actions are started

        Returns:
            Summary with the terminal state of every action

        Raises:
            AlreadyFinalized: If a confirmed action changed since it ran
            ArtifactNotFound: If a contract has no compiled artifact
            ConfigurationError: If the transport reaches the wrong network
        """
        run_id = uuid.uuid4().hex[:12]
        log = LoggerAdapter(logger, run_id, network=self.network_id)
        start_time = datetime.now().isoformat()
        self._submissions = 0

        # Checks that must pass before any network I/O
        self._reconcile(plan)
        self._prefetch_artifacts(plan)

        outcomes: dict[str, ActionOutcome] = {}
        results: dict[str, Any] = {}

        for action in plan.actions:
            entry = self.journal.entry_for(action.id)
            if entry is not None and entry.status == JournalStatus.CONFIRMED:
                outcomes[action.id] = ActionOutcome(
                    action_id=action.id,
                    kind=action.kind,
                    status="confirmed",
                    tx_reference=entry.tx_reference,
                    result=entry.result,
                    resumed=True,
                )
                results[action.id] = entry.result

        log.info(
            "Executing %d actions on %s (%d already confirmed)",
            len(plan.actions),
            self.network_id,
            len(outcomes),
        )

        waiting = [action for action in plan.actions if action.id not in outcomes]
        if waiting:
            await self.transport.check_network()
        running: dict[asyncio.Task, str] = {}
        halted = False

        try:
            while waiting or running:
                self._skip_blocked(plan, waiting, outcomes, log)

                stopping = halted or (stop_event is not None and stop_event.is_set())
                if not stopping:
                    for action in list(waiting):
                        if len(running) >= self.settings.max_concurrency:
                            break
                        deps = plan.dependencies.get(action.id, [])
                        if all(d in results for d in deps):
                            waiting.remove(action)
                            task = asyncio.create_task(
                                self._run_action(action, plan, results, log)
                            )
                            running[task] = action.id

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    action_id = running.pop(task)
                    outcome = task.result()
                    outcomes[action_id] = outcome
                    if outcome.status == "confirmed":
                        results[action_id] = outcome.result
                    elif self.settings.failure_policy == "abort":
                        log.warning("Aborting run after %s failed", action_id)
                        halted = True
        except BaseException:
            for task in running:
                task.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        for action in waiting:
            outcomes[action.id] = ActionOutcome(
                action_id=action.id, kind=action.kind, status="not_started"
            )

        summary = RunSummary(
            run_id=run_id,
            network_id=self.network_id,
            outcomes=[outcomes[action.id] for action in plan.actions],
            submissions=self._submissions,
            stopped=bool(waiting) and not halted,
            aborted=halted,
            start_time=start_time,
            end_time=datetime.now().isoformat(),
        )
        log.info(
            "Run finished: %d/%d confirmed, %d submissions",
            sum(1 for o in summary.outcomes if o.status == "confirmed"),
            len(summary.outcomes),
            summary.submissions,
        )
        return summary

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _reconcile(self, plan: Plan) -> None:
        """Reject plans whose confirmed actions were since redeclared differently."""
        for action in plan.actions:
            entry = self.journal.entry_for(action.id)
            if (
                entry is not None
                and entry.status == JournalStatus.CONFIRMED
                and entry.fingerprint is not None
                and entry.fingerprint != action.fingerprint()
            ):
                raise AlreadyFinalized(action.id, "action changed since it was confirmed")

    def _contract_name(self, action: Action, plan: Plan) -> str | None:
        if action.contract:
            return action.contract
        if isinstance(action.target, Future) and not action.target.selector:
            source = plan.get_action(action.target.action_id)
            if source is not None and source.kind.yields_contract:
                return source.contract
        return None

    def _prefetch_artifacts(self, plan: Plan) -> None:
        """Fetch each contract's artifact once, before anything is submitted."""
        for action in plan.actions:
            if action.kind == ActionKind.READ_ADDRESS:
                continue
            entry = self.journal.entry_for(action.id)
            if entry is not None and entry.status == JournalStatus.CONFIRMED:
                continue
            name = self._contract_name(action, plan)
            if name and name not in self._artifacts:
                self._artifacts[name] = self.artifacts.get(name)

    def _skip_blocked(
        self,
        plan: Plan,
        waiting: list[Action],
        outcomes: dict[str, ActionOutcome],
        log: LoggerAdapter,
    ) -> None:
        """Mark actions whose dependencies ended without confirming."""
        for action in list(waiting):
            blocker = next(
                (
                    dep
                    for dep in plan.dependencies.get(action.id, [])
                    if dep in outcomes and outcomes[dep].status != "confirmed"
                ),
                None,
            )
            if blocker is not None:
                waiting.remove(action)
                outcomes[action.id] = ActionOutcome(
                    action_id=action.id,
                    kind=action.kind,
                    status="skipped",
                    error=f"Dependency {blocker} did not confirm",
                )
                log.warning("Skipping %s: %s did not confirm", action.id, blocker)

    # ------------------------------------------------------------------
    # Per-action state machine
    # ------------------------------------------------------------------

    def _record(self, action: Action, status: JournalStatus, **fields: Any) -> None:
        self.journal.record(
            action.id,
            JournalEntry(
                action_id=action.id,
                status=status,
                fingerprint=action.fingerprint(),
                **fields,
            ),
        )

    async def _run_action(
        self,
        action: Action,
        plan: Plan,
        results: dict[str, Any],
        log: LoggerAdapter,
    ) -> ActionOutcome:
        entry = self.journal.entry_for(action.id)
        tally = {"attempts": entry.attempts if entry is not None else 0}
        tx_reference: str | None = None
        extra = {"action_id": action.id}

        try:
            if (
                entry is not None
                and entry.status == JournalStatus.SUBMITTED
                and entry.tx_reference
            ):
                # Interrupted run: the transaction may already be mined
                tx_reference = entry.tx_reference
                log.info("Re-polling %s (%s)", action.id, tx_reference, extra=extra)
            else:
                self._record(action, JournalStatus.PENDING, attempts=tally["attempts"])

                if not action.kind.sends_transaction:
                    result = await self._evaluate(action, plan, results)
                    self._record(
                        action,
                        JournalStatus.CONFIRMED,
                        result=result,
                        attempts=tally["attempts"],
                    )
                    log.info("Resolved %s", action.id, extra=extra)
                    return ActionOutcome(
                        action_id=action.id,
                        kind=action.kind,
                        status="confirmed",
                        result=result,
                    )

                request = self._materialize(action, plan, results)
                tx_reference = await self._submit(request, tally)
                self._record(
                    action,
                    JournalStatus.SUBMITTED,
                    tx_reference=tx_reference,
                    attempts=tally["attempts"],
                )
                log.info("Submitted %s (%s)", action.id, tx_reference, extra=extra)

            confirmation = await self._confirm(tx_reference)
            if not confirmation.success:
                raise TransportFailure(
                    f"Transaction {tx_reference} failed: {confirmation.error or 'reverted'}",
                    retryable=False,
                )

            if action.kind == ActionKind.DEPLOY:
                result = _checked_address(
                    confirmation.contract_address, f"Deployed {action.contract}"
                )
            else:
                result = confirmation.output

            self._record(
                action,
                JournalStatus.CONFIRMED,
                tx_reference=tx_reference,
                result=result,
                attempts=tally["attempts"],
            )
            log.info("Confirmed %s", action.id, extra=extra)
            return ActionOutcome(
                action_id=action.id,
                kind=action.kind,
                status="confirmed",
                tx_reference=tx_reference,
                result=result,
            )

        except AlreadyFinalized:
            raise
        except (TransportFailure, ConfigurationError, KeyError, ValueError) as e:
            error = str(e)
            log.error("Action %s failed: %s", action.id, error, extra=extra)
        except Exception as e:
            # Anything else an encoder or transport raises
            error = f"{type(e).__name__}: {e}"
            log.exception("Action %s failed unexpectedly", action.id, extra=extra)

        self._record(
            action,
            JournalStatus.FAILED,
            tx_reference=tx_reference,
            error=error,
            attempts=tally["attempts"],
        )
        return ActionOutcome(
            action_id=action.id,
            kind=action.kind,
            status="failed",
            tx_reference=tx_reference,
            error=error,
        )

    async def _evaluate(
        self, action: Action, plan: Plan, results: dict[str, Any]
    ) -> Any:
        """Produce the output of an action that sends no transaction."""
        if action.kind == ActionKind.STATIC_CALL:
            request = self._materialize(action, plan, results)
            return await self._with_retries(
                lambda: self.transport.static_call(request), f"static call {action.id}"
            )

        address = self._value(action.address, results)
        return _checked_address(address, f"Address of {action.id}")

    def _value(self, value: Any, results: dict[str, Any]) -> Any:
        def resolve(ref: Future | ModuleParameter) -> Any:
            if isinstance(ref, Future):
                return ref.resolve(results[ref.action_id])
            if ref.has_default:
                return ref.default
            raise MissingParameter(ref.module, ref.name)

        return substitute(value, resolve)

    def _materialize(
        self, action: Action, plan: Plan, results: dict[str, Any]
    ) -> TransactionRequest:
        """Build the transport request with every future replaced by its value."""
        contract = self._contract_name(action, plan)
        artifact = self._artifacts.get(contract) if contract else None

        to = None
        if action.kind != ActionKind.DEPLOY:
            to = _checked_address(self._value(action.target, results), f"Target of {action.id}")

        return TransactionRequest(
            network_id=self.network_id,
            action_id=action.id,
            kind=action.kind,
            sender=self.sender,
            to=to,
            contract=contract,
            abi=artifact.abi if artifact else [],
            bytecode=artifact.bytecode if artifact and action.kind == ActionKind.DEPLOY else None,
            method=action.method,
            args=list(self._value(list(action.args), results)),
            value=int(self._value(action.value, results) or 0),
        )

    # ------------------------------------------------------------------
    # Transport with retries
    # ------------------------------------------------------------------

    async def _with_retries(
        self, operation: Callable[[], Awaitable[Any]], description: str
    ) -> Any:
        """Run an awaitable factory, retrying retryable transport failures."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except TransportFailure as e:
                if not e.retryable or attempt >= self.settings.max_retries:
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    description,
                    attempt,
                    self.settings.max_retries,
                    e,
                )
                await asyncio.sleep(self.settings.retry_backoff * attempt)

    async def _submit(self, request: TransactionRequest, tally: dict[str, int]) -> str:
        """Submit with retries, counting every attempt in ``tally``."""

        async def submit_once() -> str:
            tally["attempts"] += 1
            return await self.transport.submit(request)

        tx_reference = await self._with_retries(submit_once, f"Submitting {request.action_id}")
        self._submissions += 1
        return tx_reference

    async def _confirm(self, tx_reference: str) -> Confirmation:
        timeout = self.settings.confirmation_timeout
        guard = timeout + self.settings.poll_interval

        async def wait_once() -> Confirmation:
            try:
                return await asyncio.wait_for(
                    self.transport.await_confirmation(tx_reference, timeout), guard
                )
            except asyncio.TimeoutError as e:
                raise ConfirmationTimeout(tx_reference, timeout) from e

        return await self._with_retries(wait_once, f"Confirming {tx_reference}")
