# ideagen/models.py

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ideagen.errors import InputError

CUSTOM_IDEA_TITLE = "Custom idea"


@dataclass(frozen=True)
class Principal:
    user_id: str
    plan: str = "free"
    first_analysis_done: bool = False


@dataclass(frozen=True)
class Idea:
    title: str
    description: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_custom(self) -> bool:
        return self.id is None

    def as_payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "description": self.description}
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class IdeaSelection:
    """
    What the user picked in the idea selector.

    `use_custom` decides which source is active; only the active source is
    looked at, and it must be non-empty.
    """
    selected_idea: Optional[Idea] = None
    custom_text: str = ""
    use_custom: bool = False

    def resolve(self) -> Idea:
        if self.use_custom:
            text = (self.custom_text or "").strip()
            if not text:
                raise InputError("Describe your idea before generating")
            return Idea(title=CUSTOM_IDEA_TITLE, description=text)

        idea = self.selected_idea
        if idea is None:
            raise InputError("Select an idea or describe a custom one")
        if not (idea.title or "").strip() and not (idea.description or "").strip():
            raise InputError("The selected idea is empty")
        return idea

    def clear(self) -> None:
        self.selected_idea = None
        self.custom_text = ""
        self.use_custom = False


class GenerationStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class GenerationRequest:
    feature: str
    payload: Dict[str, Any]
    cost_in_credits: int


@dataclass
class GenerationResult:
    status: GenerationStatus = GenerationStatus.PENDING
    artifact: Optional[Dict[str, Any]] = None
    attempts: int = 0
    error_message: Optional[str] = None

    def succeed(self, artifact: Dict[str, Any]) -> None:
        if self.status is not GenerationStatus.PENDING:
            raise RuntimeError(f"GenerationResult already {self.status.value}")
        self.status = GenerationStatus.SUCCESS
        self.artifact = artifact

    def fail(self, message: str) -> None:
        if self.status is not GenerationStatus.PENDING:
            raise RuntimeError(f"GenerationResult already {self.status.value}")
        self.status = GenerationStatus.ERROR
        self.error_message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "artifact": self.artifact,
            "attempts": self.attempts,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class ProgressSample:
    percent: float
    phase_label: str


@dataclass
class ViewState:
    active_tab: str = "overview"
    fullscreen: bool = False
    page: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)
