from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from ideagen.credit_ledger import CreditLedgerClient
from ideagen.errors import TransientGenerationError
from ideagen.google_helpers import create_session_factory
from ideagen.llm_client import LlmReply, TokenUsage


@pytest.fixture
def session_factory():
    # one shared in-memory connection, usable from asyncio.to_thread workers
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = create_session_factory(engine, create_tables=True)
    yield factory
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return CreditLedgerClient(session_factory)


class FakeEndpoint:
    """
    Scripted generation endpoint. Each call pops the next outcome: an
    exception instance is raised, anything else is returned.
    """

    def __init__(self, outcomes=None, *, default: Any = None):
        self.outcomes: List[Any] = list(outcomes or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, feature: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append({"feature": feature, "payload": payload})
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class AlwaysFailingEndpoint(FakeEndpoint):
    async def invoke(self, feature: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append({"feature": feature, "payload": payload})
        raise TransientGenerationError("503 service unavailable")


class FakeLlm:
    """
    Stands in for LlmClient. `reply` is the raw text returned by every call,
    or an exception to raise. Each call reports its own token usage.
    """

    def __init__(self, reply, usage: TokenUsage | None = None):
        self.reply = reply
        self.usage = usage or TokenUsage(prompt_tokens=30, completion_tokens=12, total_tokens=42)
        self.prompts: List[str] = []

    def invoke(self, prompt: str) -> LlmReply:
        self.prompts.append(prompt)
        if isinstance(self.reply, BaseException):
            raise self.reply
        return LlmReply(self.reply, self.usage)


class RecordingNotifier:
    def __init__(self):
        self.messages: List[tuple] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def of_kind(self, kind: str) -> List[str]:
        return [m for k, m in self.messages if k == kind]


class FailingRecorder:
    def __init__(self):
        self.calls = 0

    async def insert(self, **kwargs) -> str:
        self.calls += 1
        raise RuntimeError("database is read-only")


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def notifier():
    return RecordingNotifier()
