"""
Cancellation pipeline orchestrator.

Runs the three cancellation stages strictly in order:

    1. document generation  -> ArtifactStore document slot
    2. mapping to BiPRO XML -> ArtifactStore structured-text slot
    3. confirmation         -> acknowledgment returned to the caller

Each stage consumes the output of the previous stage of the same run as a
local value; the store is only written, never read, while a run is in
flight. Every run starts by clearing the store, so artifacts of an earlier
run never sit next to those of a later one. The first failing stage ends the
run; artifacts written by its earlier stages are kept. Runs against one store
are serialized via its run lock.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

import httpx

from bipro_cancel.artifact_store import ArtifactStore
from bipro_cancel.clients import DownstreamClients
from bipro_cancel.config import ServiceSettings
from bipro_cancel.errors import (
    PreconditionError,
    PresentationError,
    StageError,
    TransportError,
)
from bipro_cancel.models import (
    Customer,
    DocumentArtifact,
    Policy,
    RunOutcome,
    RunState,
    Stage,
    StructuredTextArtifact,
)
from bipro_cancel.presenter import Presenter
from bipro_cancel.trace import TraceLogger, record_event, trace_step
from bipro_cancel.validate import require_complete

T = TypeVar("T")


# Allowed state transitions (FAILED is reachable from every active state)
_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.GENERATING_DOCUMENT},
    RunState.GENERATING_DOCUMENT: {RunState.DOCUMENT_READY, RunState.FAILED},
    RunState.DOCUMENT_READY: {RunState.MAPPING_TO_STRUCTURED_TEXT},
    RunState.MAPPING_TO_STRUCTURED_TEXT: {RunState.STRUCTURED_TEXT_READY, RunState.FAILED},
    RunState.STRUCTURED_TEXT_READY: {RunState.SUBMITTING_CONFIRMATION},
    RunState.SUBMITTING_CONFIRMATION: {RunState.COMPLETED, RunState.FAILED},
    RunState.COMPLETED: set(),
    RunState.FAILED: set(),
}

# (active state, ready state) per stage
_STAGE_STATES: dict[Stage, tuple[RunState, RunState]] = {
    Stage.DOCUMENT_GENERATION: (RunState.GENERATING_DOCUMENT, RunState.DOCUMENT_READY),
    Stage.MAPPING: (RunState.MAPPING_TO_STRUCTURED_TEXT, RunState.STRUCTURED_TEXT_READY),
    Stage.CONFIRMATION: (RunState.SUBMITTING_CONFIRMATION, RunState.COMPLETED),
}


def _generate_run_id() -> str:
    """
    Generate a run ID with timestamp and random suffix.

    Format: YYYY-MM-DDTHH-MM-SSZ_<random8hex>
    """
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
    return f"{ts}_{secrets.token_hex(4)}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineRun:
    """
    One execution of the stages for a (customer, policy) pair.

    Ephemeral: never persisted, no identity beyond run_id for tracing.
    """

    run_id: str = field(default_factory=_generate_run_id)
    state: RunState = RunState.IDLE
    failed_stage: Stage | None = None
    cause: BaseException | None = None
    history: list[RunState] = field(default_factory=lambda: [RunState.IDLE])

    def transition(self, new_state: RunState) -> None:
        """
        Move to new_state.

        Raises:
            RuntimeError: If the transition is not allowed from the current state.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal run transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, stage: Stage, cause: BaseException) -> None:
        self.transition(RunState.FAILED)
        self.failed_stage = stage
        self.cause = cause


class CancellationPipeline:
    """
    Drives cancellation runs against one ArtifactStore.

    At most one run (or document-only generation) is in flight per store;
    further callers wait for the store's run lock.
    """

    def __init__(
        self,
        clients: DownstreamClients,
        store: ArtifactStore,
        trace: TraceLogger,
        *,
        presenter: Presenter | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._clients = clients
        self._store = store
        self._trace = trace
        self._presenter = presenter
        self._clock = clock
        self._last_run: PipelineRun | None = None

    @classmethod
    def from_settings(
        cls,
        settings: ServiceSettings,
        http_client: httpx.AsyncClient,
        *,
        store: ArtifactStore | None = None,
        presenter: Presenter | None = None,
    ) -> CancellationPipeline:
        """Build a pipeline talking to the configured services over http_client."""
        return cls(
            DownstreamClients.over_http(http_client, settings),
            store if store is not None else ArtifactStore(),
            TraceLogger(settings.trace_path()),
            presenter=presenter,
        )

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @property
    def last_run(self) -> PipelineRun | None:
        """The most recently started run, for diagnostics."""
        return self._last_run

    async def run(
        self,
        customer: Customer | None,
        policy: Policy | None,
        *,
        preview: bool = True,
    ) -> RunOutcome:
        """
        Run all three stages for a customer and policy.

        Args:
            customer: The customer cancelling the policy.
            policy: The policy to cancel.
            preview: Surface the generated document to the presenter after
                stage 1. Ignored when no presenter is configured.

        Returns:
            RunOutcome with the confirmation acknowledgment and both artifacts.

        Raises:
            PreconditionError: If customer or policy is missing or incomplete.
                No stage is attempted.
            TransportError, ShapeError: If a stage fails. ``stage`` names it.
                Artifacts of earlier stages of this run remain in the store;
                anything cached by a previous run has been cleared.
        """
        customer, policy = self._check_inputs(customer, policy)

        async with self._store.run_lock:
            self._store.clear_all()
            run = self._start_run()
            with trace_step(
                self._trace,
                run_id=run.run_id,
                step="cancellation_run",
                inputs_ref=[f"policy:{policy.policy_number}"],
            ):
                document = await self._generate_document(run, customer, policy)
                if preview:
                    await self._show_preview(run, document)

                xml = await self._execute(
                    run,
                    Stage.MAPPING,
                    lambda: self._clients.mapping.map_to_xml(customer, policy, document.payload),
                )
                mapped = StructuredTextArtifact(payload=xml, generated_at=self._clock())
                self._store.set_structured_text(mapped.payload, mapped.generated_at)

                acknowledgment = await self._execute(
                    run,
                    Stage.CONFIRMATION,
                    lambda: self._clients.confirmation.submit_for_confirmation(mapped.payload),
                )

        return RunOutcome(
            run_id=run.run_id,
            acknowledgment=acknowledgment,
            document=document,
            structured_text=mapped,
            states=list(run.history),
        )

    async def generate_document_only(
        self,
        customer: Customer | None,
        policy: Policy | None,
    ) -> DocumentArtifact:
        """
        Run stage 1 only and return the stored document.

        Never opens a preview and never calls the mapping or confirmation
        services. Structured text cached by a previous run is dropped, since it
        was not mapped from the new document.

        Raises:
            PreconditionError: If customer or policy is missing or incomplete.
            TransportError, ShapeError: If document generation fails.
        """
        customer, policy = self._check_inputs(customer, policy)

        async with self._store.run_lock:
            self._store.clear_structured_text()
            run = self._start_run()
            with trace_step(self._trace, run_id=run.run_id, step="document_only"):
                return await self._generate_document(run, customer, policy)

    # --- internals ---

    def _check_inputs(
        self,
        customer: Customer | None,
        policy: Policy | None,
    ) -> tuple[Customer, Policy]:
        try:
            return require_complete(customer, policy)
        except PreconditionError as e:
            record_event(self._trace, run_id="", step="precondition", status="error", error=e)
            raise

    def _start_run(self) -> PipelineRun:
        run = PipelineRun()
        self._last_run = run
        return run

    async def _generate_document(
        self,
        run: PipelineRun,
        customer: Customer,
        policy: Policy,
    ) -> DocumentArtifact:
        payload = await self._execute(
            run,
            Stage.DOCUMENT_GENERATION,
            lambda: self._clients.document.generate_document(customer, policy),
        )
        document = DocumentArtifact(payload=payload, generated_at=self._clock())
        self._store.set_document(document.payload, document.generated_at)
        return document

    async def _execute(
        self,
        run: PipelineRun,
        stage: Stage,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run one stage call, tracking state and tracing it under the stage's name.

        Errors that are not StageErrors are wrapped in a TransportError for
        the stage, so every failure reaching the caller names its stage.
        """
        active, ready = _STAGE_STATES[stage]
        run.transition(active)
        try:
            with trace_step(self._trace, run_id=run.run_id, step=stage.step_name):
                result = await call()
        except StageError as e:
            run.fail(stage, e)
            raise
        except Exception as e:
            wrapped = TransportError(stage, f"{e.__class__.__name__}: {e}")
            run.fail(stage, wrapped)
            raise wrapped from e
        run.transition(ready)
        return result

    async def _show_preview(self, run: PipelineRun, document: DocumentArtifact) -> None:
        """Hand the document to the presenter; a failed preview does not fail the run."""
        if self._presenter is None:
            return
        try:
            # presenters write files synchronously; keep that off the event loop
            handle = await asyncio.to_thread(self._presenter.preview, document)
        except PresentationError as e:
            record_event(self._trace, run_id=run.run_id, step="preview", status="error", error=e)
            return
        record_event(
            self._trace,
            run_id=run.run_id,
            step="preview",
            outputs_ref=[str(handle.path)],
        )
