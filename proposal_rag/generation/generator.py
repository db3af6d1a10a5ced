"""
Completion Clients
-------------------
Two completion-service adapters with an identical complete(messages) interface:

  OpenAICompletion    -- OpenAI chat models (gpt-4o-mini default)
  AnthropicCompletion -- Anthropic Claude models

The orchestrator only assembles messages (build_messages) and hands them to
whichever client the config selects. SDK errors surface as
SynthesisUnavailable; nothing here ever fabricates an answer.
"""
from __future__ import annotations

from typing import Protocol

from langsmith import traceable
from loguru import logger

from proposal_rag.errors import SynthesisUnavailable
from proposal_rag.generation.prompts import (
    CONTEXT_SEPARATOR,
    CONTEXT_TEMPLATE,
    SYSTEM_PROMPT,
    USER_PROMPT,
    format_instructions,
)
from proposal_rag.retrieval.index import ScoredChunk
from proposal_rag.schemas import QueryType

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-haiku-4-5-20251001"


class CompletionClient(Protocol):
    model: str

    def complete(self, messages: list[dict]) -> str: ...


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def build_context(candidates: list[ScoredChunk]) -> str:
    return CONTEXT_SEPARATOR.join(
        CONTEXT_TEMPLATE.format(
            client=c.chunk.client, filename=c.chunk.filename, content=c.chunk.text
        )
        for c in candidates
    )


def build_messages(question: str, candidates: list[ScoredChunk], query_type: QueryType) -> list[dict]:
    """System + user messages grounding the question in the retrieved chunks."""
    return [
        {
            "role": "system",
            "content": SYSTEM_PROMPT.format(format_instructions=format_instructions(query_type)),
        },
        {
            "role": "user",
            "content": USER_PROMPT.format(question=question, context=build_context(candidates)),
        },
    ]


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAICompletion:
    def __init__(
        self,
        model: str = DEFAULT_OPENAI_MODEL,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_s: float = 60.0,
    ) -> None:
        from openai import OpenAI  # lazy import keeps import graph clean
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = OpenAI(timeout=timeout_s)

    @traceable(name="complete_openai", run_type="llm")
    def complete(self, messages: list[dict]) -> str:
        from openai import OpenAIError
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            logger.error(f"[OpenAICompletion] {self.model} failed: {exc}")
            raise SynthesisUnavailable(str(exc)) from exc

        usage = response.usage
        if usage is not None:
            logger.info(
                f"[OpenAICompletion] Done | prompt={usage.prompt_tokens} "
                f"completion={usage.completion_tokens}"
            )
        return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicCompletion:
    """
    The Anthropic SDK takes the system prompt as a separate `system`
    parameter, so it is lifted out of the message list here.
    """

    def __init__(
        self,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_s: float = 60.0,
    ) -> None:
        from anthropic import Anthropic  # lazy import
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = Anthropic(timeout=timeout_s)

    @traceable(name="complete_anthropic", run_type="llm")
    def complete(self, messages: list[dict]) -> str:
        from anthropic import AnthropicError
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat = [m for m in messages if m["role"] != "system"]
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=chat,
            )
        except AnthropicError as exc:
            logger.error(f"[AnthropicCompletion] {self.model} failed: {exc}")
            raise SynthesisUnavailable(str(exc)) from exc

        logger.info(
            f"[AnthropicCompletion] Done | input={response.usage.input_tokens} "
            f"output={response.usage.output_tokens}"
        )
        return response.content[0].text if response.content else ""


def completion_from_config(config: dict) -> CompletionClient:
    cfg = config.get("generation", {})
    provider = cfg.get("provider", "openai")
    kwargs = {
        "temperature": cfg.get("temperature", 0.3),
        "max_tokens": cfg.get("max_tokens", 1024),
        "timeout_s": cfg.get("timeout_s", 60.0),
    }
    if provider == "anthropic":
        return AnthropicCompletion(model=cfg.get("model", DEFAULT_ANTHROPIC_MODEL), **kwargs)
    if provider == "openai":
        return OpenAICompletion(model=cfg.get("model", DEFAULT_OPENAI_MODEL), **kwargs)
    raise ValueError(f"Unknown generation provider: {provider!r}")
