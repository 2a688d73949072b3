# ideagen/model_props.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

# verbosity, reasoning effort, service tier
_PRESETS: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
    "standard": ("low", "low", None),
    "fast": ("low", "none", None),
    "deep": ("medium", "high", None),
    "standard-flex": ("low", "low", "flex"),
    "fast-flex": ("low", "none", "flex"),
}

_VERBOSITY = {"low", "medium", "high"}
_REASONING = {"none", "minimal", "low", "medium", "high"}
_SERVICE_TIER = {"auto", "default", "flex", "priority"}


def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "o3", "o4")
    return any((model_name or "").startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Split 'gpt-5.1_fast' / 'gpt-5.1_low_medium_flex' into (base_model, openai_params).

    Suffix tokens are either a preset name or explicit verbosity / reasoning /
    service-tier values, first match wins per slot.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed.")

    base, *tokens = raw.split("_")
    if not tokens:
        return base, {}

    verbosity: Optional[str] = None
    reasoning: Optional[str] = None
    tier: Optional[str] = None
    unknown = []

    for tok in (t.strip().lower() for t in tokens):
        if not tok:
            continue
        if tok in _PRESETS:
            p_verb, p_reason, p_tier = _PRESETS[tok]
            verbosity = verbosity or p_verb
            reasoning = reasoning or p_reason
            tier = tier or p_tier
        elif verbosity is None and tok in _VERBOSITY:
            verbosity = tok
        elif reasoning is None and tok in _REASONING:
            reasoning = tok
        elif tier is None and tok in _SERVICE_TIER:
            tier = tok
        else:
            unknown.append(tok)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'.")

    params: Dict[str, Any] = {"service_tier": tier or "default"}
    if verbosity is not None:
        params["text"] = {"verbosity": verbosity}
    if reasoning is not None:
        params["reasoning"] = {"effort": reasoning}
    return base, params
