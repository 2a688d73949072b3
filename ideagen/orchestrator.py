# ideagen/orchestrator.py

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol
from uuid import uuid4

from ideagen import settings
from ideagen.base_utils import BaseUtils
from ideagen.credit_ledger import CreditLedgerClient, DebitReceipt
from ideagen.errors import (
    GenerationInProgress,
    InsufficientCredits,
    LedgerUnavailable,
    MalformedResponseError,
    PermanentGenerationError,
    TransientGenerationError,
)
from ideagen.feature_catalog import FeatureDescriptor
from ideagen.models import (
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    Idea,
    IdeaSelection,
    Principal,
    ProgressSample,
)
from ideagen.progress import ProgressEstimator
from ideagen.result_store import ResultStore
from ideagen.retry import MaxRetryErrorsException, with_retry

logger = logging.getLogger("ideagen")


class Phase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DEBITING = "debiting"
    GENERATING = "generating"
    PROCESSING = "processing"
    SAVING = "saving"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_PHASES = frozenset({Phase.SUCCESS, Phase.ERROR})
STARTABLE_PHASES = frozenset({Phase.IDLE, Phase.SUCCESS, Phase.ERROR})


class Notifier(Protocol):
    def success(self, message: str) -> None: ...
    def error(self, message: str) -> None: ...
    def info(self, message: str) -> None: ...


class LoggingNotifier(BaseUtils):
    def success(self, message: str) -> None:
        self.color_print(f"[TOAST] {message}", color="green")

    def error(self, message: str) -> None:
        self.color_print(f"[TOAST] {message}", color="red")

    def info(self, message: str) -> None:
        self.color_print(f"[TOAST] {message}", color="cyan")


def user_message_for(error: BaseException, feature: FeatureDescriptor) -> str:
    """
    One user-facing sentence per failure class. Raw errors only go to the log.
    """
    name = feature.display_name
    if isinstance(error, InsufficientCredits):
        return (
            f"Insufficient credits: {name} requires {error.required} credits "
            f"and you have {error.balance}."
        )
    if isinstance(error, LedgerUnavailable):
        return "Could not reserve credits right now. Nothing was charged, please try again."
    if isinstance(error, MaxRetryErrorsException):
        return f"{name} generation failed after {error.attempts} attempts. Please try again later."
    if isinstance(error, (TransientGenerationError, MalformedResponseError, PermanentGenerationError)):
        return f"Could not generate {name}. Please try again."
    return f"Unexpected error while generating {name}. Please try again."


class GenerationOrchestrator(BaseUtils):
    """
    Credit-metered generation for one feature:

        IDLE -> VALIDATING -> DEBITING -> GENERATING -> PROCESSING -> SAVING -> SUCCESS
                                     \\-> ERROR (any step up to PROCESSING)

    The debit always completes before the generation call starts, and a failed
    or refused debit never reaches GENERATING. Debited credits are not refunded
    when generation fails afterwards. Saving is best effort: a failed save is
    logged and the run still ends in SUCCESS.

    One orchestrator runs one generation at a time; a second run() while a
    run is in flight raises GenerationInProgress.
    """

    def __init__(
        self,
        feature: FeatureDescriptor,
        *,
        ledger: CreditLedgerClient,
        endpoint,
        recorder=None,
        store: Optional[ResultStore] = None,
        notifier: Optional[Notifier] = None,
        max_attempts: int = settings.GENERATION_MAX_ATTEMPTS,
        retry_delay: float = settings.GENERATION_RETRY_DELAY,
        progress_factory: Optional[Callable[[Callable[[ProgressSample], None]], ProgressEstimator]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.feature = feature
        self.ledger = ledger
        self.endpoint = endpoint
        self.recorder = recorder
        self.store = store or ResultStore(feature.name)
        self.notifier = notifier or LoggingNotifier()
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.progress_factory = progress_factory or (
            lambda on_sample: ProgressEstimator(on_sample, tick_interval=settings.PROGRESS_TICK_INTERVAL)
        )
        self._sleep = sleep

        self._state = Phase.IDLE
        self._result: Optional[GenerationResult] = None
        self._progress: Optional[ProgressEstimator] = None
        self._state_listeners: List[Callable[[Phase], None]] = []
        self._progress_listeners: List[Callable[[ProgressSample], None]] = []
        # phases entered by the current / last run
        self.history: List[Phase] = []

    # -----------------------
    # Observability
    # -----------------------

    @property
    def state(self) -> Phase:
        return self._state

    @property
    def result(self) -> Optional[GenerationResult]:
        return self._result

    @property
    def attempts(self) -> int:
        return self._result.attempts if self._result is not None else 0

    @property
    def is_running(self) -> bool:
        return self._state not in STARTABLE_PHASES

    def on_state_change(self, listener: Callable[[Phase], None]) -> None:
        self._state_listeners.append(listener)

    def on_progress(self, listener: Callable[[ProgressSample], None]) -> None:
        self._progress_listeners.append(listener)

    def snapshot(self) -> Dict[str, Any]:
        data = self.store.snapshot()
        data["state"] = self._state.value
        if self._result is not None:
            data["result"] = self._result.to_dict()
        return data

    # -----------------------
    # Workflow
    # -----------------------

    async def run(
        self,
        principal: Principal,
        selection: Optional[IdeaSelection] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        if self.is_running:
            raise GenerationInProgress(f"{self.feature.display_name} is already being generated")

        # InputError and PlanRequired leave the machine and the stored inputs untouched
        selection = selection if selection is not None else self.store.selection
        idea = selection.resolve()
        self.feature.check_plan(principal.plan)
        self.store.selection = selection

        request = GenerationRequest(
            feature=self.feature.name,
            payload=self.feature.build_payload(idea, params),
            cost_in_credits=self.feature.cost_for(principal.plan),
        )
        result = GenerationResult()
        self._result = result
        self.store.result = None
        self.store.progress = None
        self.history = []

        progress = self.progress_factory(self._on_progress_sample)
        self._progress = progress
        progress.start()

        try:
            self._enter(Phase.VALIDATING)

            self._enter(Phase.DEBITING)
            await self._debit(principal, idea, request)

            self._enter(Phase.GENERATING)
            data = await self._generate(request, result)

            self._enter(Phase.PROCESSING)
            artifact = self.feature.validate_response(data)

            self._enter(Phase.SAVING)
            await self._save(principal, idea, artifact)

        except asyncio.CancelledError:
            self._finish_error(result, idea, "Generation was interrupted.")
            raise
        except Exception as e:
            logger.warning(
                f"[GEN] {self.feature.name} failed in {self._state.value} "
                f"user={principal.user_id}: {e!r}"
            )
            self._finish_error(result, idea, user_message_for(e, self.feature))
            return result

        self._finish_success(result, idea, artifact)
        return result

    async def _debit(self, principal: Principal, idea: Idea, request: GenerationRequest) -> Optional[DebitReceipt]:
        if request.cost_in_credits <= 0:
            logger.info(f"[GEN] {request.feature} is free for plan={principal.plan}, debit waived")
            return None

        if self.feature.free_first_use and not principal.first_analysis_done:
            claimed = await asyncio.to_thread(self.ledger.claim_first_analysis, principal.user_id)
            if claimed:
                logger.info(f"[GEN] {request.feature}: first use is free for user={principal.user_id}, debit waived")
                return None

        receipt = await asyncio.to_thread(
            self.ledger.debit,
            principal.user_id,
            request.feature,
            request.cost_in_credits,
            f"{self.feature.display_name} generated for: {idea.title}",
            item_id=idea.id,
            idempotency_key=f"{request.feature}:{uuid4()}",
        )
        self.store.balance = receipt.new_balance
        return receipt

    async def _generate(self, request: GenerationRequest, result: GenerationResult) -> Dict[str, Any]:
        async def attempt():
            result.attempts += 1
            return await self.endpoint.invoke(request.feature, request.payload)

        def notify_retry(attempt_index: int, error: BaseException) -> None:
            self._notify(
                "info",
                f"{self.feature.display_name}: retrying (attempt {attempt_index + 1}/{self.max_attempts})",
            )

        return await with_retry(
            attempt,
            max_attempts=self.max_attempts,
            delay=self.retry_delay,
            on_retry=notify_retry,
            sleep=self._sleep,
        )

    async def _save(self, principal: Principal, idea: Idea, artifact: Any) -> None:
        if self.recorder is None:
            return
        try:
            await self.recorder.insert(
                user_id=principal.user_id,
                idea_id=idea.id,
                content_type=self.feature.content_type,
                title=f"{self.feature.title_prefix} - {idea.title}",
                content_data=artifact,
            )
        except Exception as e:
            logger.warning(f"[GEN] {self.feature.name}: saving the artifact failed (result still shown): {e!r}")

    def _finish_success(self, result: GenerationResult, idea: Idea, artifact: Any) -> None:
        result.succeed(artifact)
        self.store.publish(result, idea)
        if self._progress is not None:
            self._progress.complete()
        self._enter(Phase.SUCCESS)
        self._notify("success", f"{self.feature.display_name} generated successfully!")

    def _finish_error(self, result: GenerationResult, idea: Idea, message: str) -> None:
        if result.status is not GenerationStatus.PENDING:
            return
        result.fail(message)
        self.store.publish(result, idea)
        if self._progress is not None:
            self._progress.fail(message)
        self._enter(Phase.ERROR)
        self._notify("error", message)

    # -----------------------
    # UI actions
    # -----------------------

    def reset(self) -> bool:
        """
        Back to IDLE from a terminal state, clearing result, inputs and view
        state. Returns False when there was nothing to reset.
        """
        if self.is_running:
            raise GenerationInProgress("Cannot reset while a generation is running")

        if self._state is Phase.IDLE and self._result is None and self.store.is_empty:
            return False

        self._result = None
        self.history = []
        self.store.reset()
        self.detach()
        self._enter(Phase.IDLE)
        return True

    def detach(self) -> None:
        """
        The UI went away: stop progress updates. The remote call, if any, keeps
        going and its result still lands in the store.
        """
        if self._progress is not None:
            self._progress.close()

    # -----------------------
    # Internals
    # -----------------------

    def _enter(self, phase: Phase) -> None:
        if phase is self._state and phase is Phase.IDLE:
            return
        self._state = phase
        if phase is not Phase.IDLE:
            self.history.append(phase)
        logger.debug(f"[GEN] {self.feature.name} -> {phase.value}")

        if self._progress is not None and phase.value in self._progress.bands:
            self._progress.enter_phase(phase.value)

        for listener in list(self._state_listeners):
            try:
                listener(phase)
            except Exception as e:
                logger.warning(f"[GEN] state listener failed: {e!r}")

    def _on_progress_sample(self, sample: ProgressSample) -> None:
        self.store.progress = sample
        for listener in list(self._progress_listeners):
            listener(sample)

    def _notify(self, kind: str, message: str) -> None:
        try:
            getattr(self.notifier, kind)(message)
        except Exception as e:
            logger.warning(f"[GEN] notifier.{kind} failed: {e!r}")
