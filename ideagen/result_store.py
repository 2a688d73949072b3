import threading
import time
from dataclasses import asdict
from typing import Any, Dict, Optional, Tuple

from ideagen.models import GenerationResult, Idea, IdeaSelection, ProgressSample, ViewState


class ResultStore:
    """
    Per-feature UI state: the last completed result, the idea it was built
    from, the selector inputs and the view state (tab, fullscreen, page).
    """

    def __init__(self, feature: str):
        self.feature = feature
        self.selection = IdeaSelection()
        self.view = ViewState()
        self.result: Optional[GenerationResult] = None
        self.idea: Optional[Idea] = None
        self.progress: Optional[ProgressSample] = None
        self.balance: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.result is None
            and self.idea is None
            and self.progress is None
            and self.selection == IdeaSelection()
            and self.view == ViewState()
        )

    def publish(self, result: GenerationResult, idea: Optional[Idea]) -> None:
        self.result = result
        self.idea = idea

    def set_view(self, **changes: Any) -> ViewState:
        for key, value in changes.items():
            if hasattr(self.view, key) and key != "extra":
                setattr(self.view, key, value)
            else:
                self.view.extra[key] = value
        return self.view

    def reset(self) -> bool:
        """
        Clear result, inputs and view state. Returns False when there was
        nothing to clear.
        """
        if self.is_empty:
            return False
        self.result = None
        self.idea = None
        self.progress = None
        self.selection.clear()
        self.view = ViewState()
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "feature": self.feature,
            "result": self.result.to_dict() if self.result else None,
            "idea": self.idea.as_payload() if self.idea else None,
            "progress": asdict(self.progress) if self.progress else None,
            "view": asdict(self.view),
            "balance": self.balance,
        }


class ResultStoreCache:
    """
    In-memory stores keyed by (user_id, feature), with:
    - sliding TTL (expires ttl_seconds after last touch)
    - thread-safe operations
    """

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # (user_id, feature) -> {"store": ResultStore, "expires_at": float}
        self._items: Dict[Tuple[str, str], Dict[str, object]] = {}

    def get(self, user_id: str, feature: str) -> ResultStore:
        key = (str(user_id), feature)
        now = time.time()
        with self._lock:
            item = self._items.get(key)
            if item is not None and float(item["expires_at"]) > now:
                item["expires_at"] = now + self.ttl_seconds
                return item["store"]  # type: ignore[return-value]

            store = ResultStore(feature)
            self._items[key] = {"store": store, "expires_at": now + self.ttl_seconds}
            return store

    def peek(self, user_id: str, feature: str) -> Optional[ResultStore]:
        with self._lock:
            item = self._items.get((str(user_id), feature))
            return item["store"] if item else None  # type: ignore[return-value]

    def sweep_expired(self) -> int:
        """
        Delete expired stores. Returns how many entries were removed.
        """
        now = time.time()
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
        return len(expired)
