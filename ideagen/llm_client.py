# ideagen/llm_client.py

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from langchain_google_vertexai import VertexAI
from openai import OpenAI

from ideagen.model_props import is_openai_model, parse_model_name


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt: Any, completion: Any, total: Any) -> "TokenUsage":
        return cls(int(prompt or 0), int(completion or 0), int(total or 0))

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class LlmReply:
    text: str
    usage: Optional[TokenUsage] = None


def _vertex_usage(resp: Any) -> Optional[Any]:
    usage = getattr(resp, "usage_metadata", None)
    if usage is None and isinstance(getattr(resp, "response_metadata", None), dict):
        usage = resp.response_metadata.get("usage_metadata")
    return usage


class LlmClient:
    """
    One prompt in, one reply out:

        reply = LlmClient("gemini-2.5-flash-lite", vertex_project=..., vertex_region=...).invoke(prompt)
        reply.text, reply.usage

    Gemini models go through LangChain's VertexAI, OpenAI models through the
    Responses API with JSON output enforced. Exactly one HTTP call per
    invoke(); the SDK's own retries are off so attempts are counted by the
    caller. Token usage travels with each reply, so one client can be shared
    by concurrent requests.
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        json_output: bool = True,
    ):
        self.model_name = model_name
        self.provider = "openai" if is_openai_model(model_name) else "vertex"

        if self.provider == "openai":
            self.model_name, self._request_params = parse_model_name(model_name)
            if json_output:
                text_params = dict(self._request_params.get("text") or {})
                text_params["format"] = {"type": "json_object"}
                self._request_params["text"] = text_params
            kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                kwargs["timeout"] = timeout
            self._openai = OpenAI(**kwargs)
            self._vertex = None
        else:
            self._request_params = {}
            self._openai = None
            self._vertex = VertexAI(
                model_name=model_name,
                project=vertex_project,
                location=vertex_region,
                timeout=timeout,
                max_retries=0,
            )

    def invoke(self, prompt: str) -> LlmReply:
        if self.provider == "openai":
            return self._invoke_openai(prompt)
        return self._invoke_vertex(prompt)

    def _invoke_vertex(self, prompt: str) -> LlmReply:
        resp = self._vertex.invoke(prompt)
        usage = None
        raw_usage = _vertex_usage(resp)
        if raw_usage:
            read = raw_usage.get if isinstance(raw_usage, dict) else (lambda k, d=0: getattr(raw_usage, k, d))
            usage = TokenUsage.of(
                read("prompt_token_count", 0), read("candidates_token_count", 0), read("total_token_count", 0)
            )
        if isinstance(resp, str):
            return LlmReply(resp, usage)
        return LlmReply(getattr(resp, "content", None) or str(resp), usage)

    def _invoke_openai(self, prompt: str) -> LlmReply:
        resp = self._openai.responses.create(model=self.model_name, input=prompt, **self._request_params)
        usage = None
        raw_usage = getattr(resp, "usage", None)
        if raw_usage is not None:
            usage = TokenUsage.of(
                getattr(raw_usage, "input_tokens", 0),
                getattr(raw_usage, "output_tokens", 0),
                getattr(raw_usage, "total_tokens", 0),
            )
        return LlmReply((getattr(resp, "output_text", "") or "").strip(), usage)
