# ideagen/feature_catalog.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import commentjson

from ideagen import settings
from ideagen.errors import MalformedResponseError, PlanRequired, UnknownFeatureError
from ideagen.models import Idea


@dataclass(frozen=True)
class FeatureDescriptor:
    name: str
    display_name: str
    cost: int
    payload_key: str
    content_type: str
    instructions: str = ""
    free_for_plans: Tuple[str, ...] = field(default_factory=tuple)
    required_plans: Tuple[str, ...] = field(default_factory=tuple)
    free_first_use: bool = False

    @property
    def title_prefix(self) -> str:
        return self.display_name

    def allows(self, plan: Optional[str]) -> bool:
        return not self.required_plans or plan in self.required_plans

    def check_plan(self, plan: Optional[str]) -> None:
        if not self.allows(plan):
            raise PlanRequired(self.name, plan, self.required_plans)

    def cost_for(self, plan: Optional[str], *, first_use: bool = False) -> int:
        """
        Credits charged for one generation on `plan`. `first_use` is True when
        the account has not used its free first run yet.
        """
        if plan and plan in self.free_for_plans:
            return 0
        if first_use and self.free_first_use:
            return 0
        return self.cost

    def build_payload(self, idea: Idea, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(params or {})
        payload["idea"] = idea.as_payload()
        return payload

    def validate_response(self, data: Any) -> Any:
        """
        Return the feature payload from a generator response, or raise
        MalformedResponseError when the key is missing or empty.
        """
        if not isinstance(data, Mapping):
            raise MalformedResponseError(
                f"{self.name}: expected an object response, got {type(data).__name__}"
            )
        payload = data.get(self.payload_key)
        if payload is None or (isinstance(payload, (dict, list, str)) and not payload):
            raise MalformedResponseError(f"{self.name}: response has no '{self.payload_key}' payload")
        return payload

    def to_dict(self, plan: Optional[str] = None, *, first_use: bool = False) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "cost": self.cost_for(plan, first_use=first_use),
            "available": self.allows(plan),
            "required_plans": list(self.required_plans),
            "payload_key": self.payload_key,
            "content_type": self.content_type,
        }


class FeatureCatalog:
    def __init__(self, features: Dict[str, FeatureDescriptor], plan_credits: Dict[str, Dict[str, int]]):
        self.features = features
        self.plan_credits = plan_credits

    def get(self, name: str) -> FeatureDescriptor:
        try:
            return self.features[name]
        except KeyError:
            raise UnknownFeatureError(name) from None

    def cost_for(self, name: str, plan: Optional[str] = None, *, first_use: bool = False) -> int:
        return self.get(name).cost_for(plan, first_use=first_use)

    def list(self) -> List[FeatureDescriptor]:
        return sorted(self.features.values(), key=lambda f: f.name)

    def initial_credits(self, plan: str) -> int:
        return int(self.plan_credits.get(plan, {}).get("initial", 0))

    def monthly_credits(self, plan: str) -> int:
        return int(self.plan_credits.get(plan, {}).get("monthly", 0))


def _parse_feature(name: str, raw: Mapping[str, Any]) -> FeatureDescriptor:
    cost = raw.get("cost")
    if not isinstance(cost, int) or isinstance(cost, bool) or cost < 0:
        raise ValueError(f"Feature '{name}': cost must be a non-negative integer, got {cost!r}")
    payload_key = raw.get("payload_key")
    if not payload_key or not isinstance(payload_key, str):
        raise ValueError(f"Feature '{name}': missing payload_key")

    return FeatureDescriptor(
        name=name,
        display_name=raw.get("display_name") or name,
        cost=cost,
        payload_key=payload_key,
        content_type=raw.get("content_type") or name,
        instructions=raw.get("instructions", ""),
        free_for_plans=tuple(raw.get("free_for_plans") or ()),
        required_plans=tuple(raw.get("required_plans") or ()),
        free_first_use=bool(raw.get("free_first_use", False)),
    )


def load_feature_catalog(path: str | Path) -> FeatureCatalog:
    """
    Load the feature cost table from a JSON-with-comments file.
    Fails fast if the file or required top-level keys are missing.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Feature cost table not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    for key in ("FEATURES", "PLAN_CREDITS"):
        if key not in data or not isinstance(data[key], dict):
            raise ValueError(f"Feature cost table missing or invalid key: {key}")

    features = {name: _parse_feature(name, raw) for name, raw in data["FEATURES"].items()}
    return FeatureCatalog(features, data["PLAN_CREDITS"])


FEATURE_CATALOG = load_feature_catalog(settings.FEATURE_COSTS_PATH)


def get_feature(name: str) -> FeatureDescriptor:
    return FEATURE_CATALOG.get(name)


def list_features() -> List[FeatureDescriptor]:
    return FEATURE_CATALOG.list()
