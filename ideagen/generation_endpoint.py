# ideagen/generation_endpoint.py

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Protocol

from ideagen import settings
from ideagen.base_utils import BaseUtils
from ideagen.errors import (
    MalformedResponseError,
    PermanentGenerationError,
    TransientGenerationError,
)
from ideagen.feature_catalog import FEATURE_CATALOG, FeatureCatalog
from ideagen.generation_prompts import GENERATION_PROMPT
from ideagen.llm_client import LlmClient
from ideagen.retry import is_retryable_error

logger = logging.getLogger("ideagen")


class GenerationEndpoint(Protocol):
    async def invoke(self, feature: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


def default_llm_factory(model_name: str) -> LlmClient:
    return LlmClient(
        model_name=model_name,
        vertex_project=settings.PROJECT_ID,
        vertex_region=settings.REGION,
        timeout=settings.LLM_TIMEOUT,
    )


class LlmGenerationEndpoint(BaseUtils):
    """
    Generation endpoint backed by an LLM: one prompt per feature, JSON out.

    Every invoke() is a single remote call. Failures are classified so the
    retry executor can tell transient errors from permanent ones.
    """

    def __init__(
        self,
        catalog: FeatureCatalog = FEATURE_CATALOG,
        *,
        llm_factory: Callable[[str], Any] = default_llm_factory,
        default_model: str = settings.LLM_MODEL,
    ):
        self.catalog = catalog
        self.llm_factory = llm_factory
        self.default_model = default_model
        self._llms: Dict[str, Any] = {}

    def _detect_llm_model_in_payload(self, payload) -> Optional[str]:
        for key in ("llm_model", "model", "model_name"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    def _llm_for(self, model_name: str):
        llm = self._llms.get(model_name)
        if llm is None:
            llm = self.llm_factory(model_name)
            self._llms[model_name] = llm
        return llm

    def build_prompt(self, feature: str, payload: Dict[str, Any]) -> str:
        descriptor = self.catalog.get(feature)
        idea = payload.get("idea") or {}
        params = {
            k: v for k, v in payload.items()
            if k not in ("idea", "llm_model", "model", "model_name")
        }
        return self.unsafe_string_format(
            GENERATION_PROMPT,
            display_name=descriptor.display_name,
            idea_title=idea.get("title", ""),
            idea_description=idea.get("description", ""),
            params=json.dumps(params, indent=2, ensure_ascii=False) if params else "(none)",
            instructions=descriptor.instructions,
            payload_key=descriptor.payload_key,
        )

    async def invoke(self, feature: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        descriptor = self.catalog.get(feature)
        prompt = self.build_prompt(feature, payload)
        model_name = self._detect_llm_model_in_payload(payload) or self.default_model

        try:
            llm = self._llm_for(model_name)
            reply = await asyncio.to_thread(llm.invoke, prompt)
        except Exception as e:
            if is_retryable_error(e):
                raise TransientGenerationError(f"{feature}: {e}") from e
            raise PermanentGenerationError(f"{feature}: {e}") from e

        if reply.usage is not None:
            logger.debug(f"[GEN] {feature} model={model_name} usage={reply.usage.to_dict()}")

        data = self.load_fault_tolerant_json(reply.text)
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{feature}: expected a JSON object")
        if "error" in data and descriptor.payload_key not in data:
            raise PermanentGenerationError(f"{feature}: {data['error']}")
        return data
