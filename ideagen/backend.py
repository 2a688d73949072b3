# ideagen/backend.py

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ideagen import settings
from ideagen.base_utils import BaseUtils
from ideagen.content_recorder import ContentRecorder
from ideagen.credit_ledger import CreditLedgerClient
from ideagen.entities import Idea as IdeaRow
from ideagen.errors import GenerationInProgress, InputError, LedgerUnavailable, UnknownPrincipal
from ideagen.feature_catalog import FEATURE_CATALOG, FeatureCatalog
from ideagen.generation_endpoint import LlmGenerationEndpoint
from ideagen.google_helpers import create_session_factory
from ideagen.models import Idea, IdeaSelection, Principal
from ideagen.orchestrator import GenerationOrchestrator, LoggingNotifier, Notifier
from ideagen.result_store import ResultStoreCache

logger = logging.getLogger("ideagen")


class Backend(BaseUtils):
    """
    Wires the ledger, generation endpoint, content recorder and result stores,
    and keeps one orchestrator per (user, feature).
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        catalog: FeatureCatalog = FEATURE_CATALOG,
        endpoint=None,
        notifier_factory: Optional[Callable[[str, str], Notifier]] = None,
        store_ttl: int = settings.RESULT_STORE_TTL,
        max_attempts: int = settings.GENERATION_MAX_ATTEMPTS,
        retry_delay: float = settings.GENERATION_RETRY_DELAY,
        progress_factory=None,
    ):
        self.SessionFactory = session_factory or create_session_factory(create_tables=True)
        self.catalog = catalog
        self.ledger = CreditLedgerClient(self.SessionFactory)
        self.recorder = ContentRecorder(self.SessionFactory)
        if endpoint is None:
            endpoint = LlmGenerationEndpoint(catalog)
        self.endpoint = endpoint
        self.notifier_factory = notifier_factory or (lambda user_id, feature: LoggingNotifier())
        self.stores = ResultStoreCache(ttl_seconds=store_ttl)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.progress_factory = progress_factory

        self._orchestrators: Dict[Tuple[str, str], GenerationOrchestrator] = {}
        self._tasks: Dict[Tuple[str, str], asyncio.Task] = {}

    # -----------------------
    # Accounts & ideas
    # -----------------------

    def principal_for(self, user_id: str) -> Principal:
        account = self.ledger.get_account(user_id)
        if account is None:
            raise UnknownPrincipal(f"No credit account for user {user_id}")
        return Principal(
            user_id=account.user_id,
            plan=account.plan,
            first_analysis_done=account.first_analysis_done,
        )

    def open_account(self, user_id: str, plan: str = "free") -> Dict[str, Any]:
        existing = self.ledger.get_account(user_id)
        if existing is not None:
            return {"user_id": existing.user_id, "plan": existing.plan, "balance": existing.balance}

        initial = self.catalog.initial_credits(plan)
        if initial <= 0:
            raise ValueError(f"Plan '{plan}' grants no initial credits")
        receipt = self.ledger.grant(user_id, initial, f"Welcome credits ({plan})", plan=plan)
        return {"user_id": str(user_id), "plan": plan, "balance": receipt.new_balance}

    def balance(self, user_id: str) -> Dict[str, Any]:
        principal = self.principal_for(user_id)
        return {
            "user_id": principal.user_id,
            "plan": principal.plan,
            "balance": self.ledger.get_balance(user_id),
            "monthly_credits": self.catalog.monthly_credits(principal.plan),
        }

    def transactions(self, user_id: str, limit: int = 50):
        self.principal_for(user_id)
        return self.ledger.list_entries(user_id, limit=limit)

    def create_idea(self, user_id: str, title: str, description: str) -> Idea:
        session = self.SessionFactory()
        try:
            row = IdeaRow(user_id=str(user_id), title=title, description=description)
            session.add(row)
            session.commit()
            return Idea(title=row.title, description=row.description, id=row.id, created_at=row.created_at)
        except SQLAlchemyError as e:
            session.rollback()
            raise LedgerUnavailable(f"Could not save idea: {e}") from e
        finally:
            session.close()

    def load_idea(self, user_id: str, idea_id: str) -> Idea:
        session = self.SessionFactory()
        try:
            row = (
                session.query(IdeaRow)
                    .filter(IdeaRow.id == str(idea_id))
                    .filter(IdeaRow.user_id == str(user_id))
                    .one_or_none()
            )
        finally:
            session.close()
        if row is None:
            raise InputError("The selected idea does not exist")
        return Idea(title=row.title, description=row.description, id=row.id, created_at=row.created_at)

    def build_selection(
        self,
        user_id: str,
        *,
        idea_id: Optional[str] = None,
        custom_text: str = "",
        use_custom: bool = False,
    ) -> IdeaSelection:
        selected = None
        if not use_custom and idea_id:
            selected = self.load_idea(user_id, idea_id)
        return IdeaSelection(selected_idea=selected, custom_text=custom_text or "", use_custom=use_custom)

    # -----------------------
    # Generation
    # -----------------------

    def list_features(self, plan: Optional[str] = None, *, first_use: bool = False):
        return [f.to_dict(plan, first_use=first_use) for f in self.catalog.list()]

    def orchestrator(self, user_id: str, feature: str) -> GenerationOrchestrator:
        descriptor = self.catalog.get(feature)
        self.principal_for(user_id)
        key = (str(user_id), descriptor.name)
        store = self.stores.get(*key)

        orch = self._orchestrators.get(key)
        if orch is not None and (orch.store is store or orch.is_running):
            return orch

        kwargs: Dict[str, Any] = {}
        if self.progress_factory is not None:
            kwargs["progress_factory"] = self.progress_factory
        orch = GenerationOrchestrator(
            descriptor,
            ledger=self.ledger,
            endpoint=self.endpoint,
            recorder=self.recorder,
            store=store,
            notifier=self.notifier_factory(str(user_id), descriptor.name),
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
            **kwargs,
        )
        self._orchestrators[key] = orch
        return orch

    async def generate(
        self,
        user_id: str,
        feature: str,
        selection: IdeaSelection,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        principal = self.principal_for(user_id)
        orch = self.orchestrator(user_id, feature)
        self._ensure_idle(user_id, orch)
        await orch.run(principal, selection, params)
        return orch.snapshot()

    def start_generation(
        self,
        user_id: str,
        feature: str,
        selection: IdeaSelection,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Validate, then run the workflow in a background task on the running
        loop. Returns the snapshot right after the task is scheduled.
        """
        principal = self.principal_for(user_id)
        orch = self.orchestrator(user_id, feature)
        self._ensure_idle(user_id, orch)
        selection.resolve()
        orch.feature.check_plan(principal.plan)

        key = (str(user_id), orch.feature.name)
        task = asyncio.get_running_loop().create_task(orch.run(principal, selection, params))
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._forget_task(key, t))
        return orch.snapshot()

    def _ensure_idle(self, user_id: str, orch: GenerationOrchestrator) -> None:
        # a scheduled task counts as running before its first step
        pending = self._tasks.get((str(user_id), orch.feature.name))
        if orch.is_running or (pending is not None and not pending.done()):
            raise GenerationInProgress(f"{orch.feature.display_name} is already being generated")

    def _forget_task(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[GEN] background generation {key} crashed: {task.exception()!r}")

    def state(self, user_id: str, feature: str) -> Dict[str, Any]:
        return self.orchestrator(user_id, feature).snapshot()

    def set_view(self, user_id: str, feature: str, **changes: Any) -> Dict[str, Any]:
        orch = self.orchestrator(user_id, feature)
        orch.store.set_view(**changes)
        return orch.snapshot()

    def reset(self, user_id: str, feature: str) -> Dict[str, Any]:
        orch = self.orchestrator(user_id, feature)
        changed = orch.reset()
        data = orch.snapshot()
        data["reset"] = changed
        return data

    def detach(self, user_id: str, feature: str) -> Dict[str, Any]:
        orch = self.orchestrator(user_id, feature)
        orch.detach()
        return orch.snapshot()

    async def latest_content(self, user_id: str, feature: str, idea_id: Optional[str] = None):
        descriptor = self.catalog.get(feature)
        self.principal_for(user_id)
        return await self.recorder.latest(user_id=user_id, content_type=descriptor.content_type, idea_id=idea_id)

    def sweep(self) -> int:
        removed = self.stores.sweep_expired()
        for key, orch in list(self._orchestrators.items()):
            if not orch.is_running and self.stores.peek(*key) is not orch.store:
                del self._orchestrators[key]
        if removed:
            logger.debug(f"ResultStoreCache sweep: removed {removed} expired stores")
        return removed
