"""LLM Gateway: one choke point for every analysis and Oracle call.

The gateway is a CustomLLM, so it can be handed to anything that expects a
llama_index LLM (including ``Settings.llm``). Each call is tagged with a
purpose and counted per purpose: calls, failures, latency, token usage and
an estimated cost.

Calls are never retried here. A failed analysis becomes an ``error`` job
that the user can retry; a failed Oracle turn is rolled back for resend.
"""

import asyncio
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Iterator, Optional, Sequence, Tuple

from llama_index.core.base.llms.types import (
    ChatMessage,
    ChatResponse,
    CompletionResponse,
    LLMMetadata,
)
from llama_index.core.llms import CustomLLM
from pydantic import PrivateAttr

logger = logging.getLogger(__name__)

PURPOSE_ANALYSIS = "analysis"
PURPOSE_ORACLE = "oracle"

# USD per 1M tokens as (input, output)
_PRICING: Dict[str, Tuple[float, float]] = {
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-pro": (1.25, 10.00),
    "gemini-2.0-flash": (0.10, 0.40),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
}


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token count for providers that report no usage (~4 chars/token)."""
    return (len(text) + 3) // 4 if text else 0


def usage_from_raw(raw: Any) -> Tuple[Optional[int], Optional[int]]:
    """Pull (input, output) token counts out of a provider's raw response.

    Understands OpenAI's ``usage`` block and Gemini's ``usage_metadata``.
    """
    if raw is None:
        return None, None

    def _read(obj, name):
        return obj.get(name) if isinstance(obj, dict) else getattr(obj, name, None)

    usage = _read(raw, "usage")
    if usage is not None:
        return _read(usage, "prompt_tokens"), _read(usage, "completion_tokens")

    usage = _read(raw, "usage_metadata")
    if usage is not None:
        return _read(usage, "prompt_token_count"), _read(usage, "candidates_token_count")

    return None, None


# ── Metrics ────────────────────────────────────────────────────────────

@dataclass
class PurposeStats:
    calls: int = 0
    errors: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: float = 0.0
    cost_usd: float = 0.0

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "errors": self.errors,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "avg_latency_ms": round(self.latency_ms / max(self.calls, 1), 1),
            "cost_usd": round(self.cost_usd, 4),
        }


@dataclass
class LLMMetrics:
    """Per-purpose counters. Callers hold the gateway lock while mutating."""

    by_purpose: Dict[str, PurposeStats] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    def stats(self, purpose: str) -> PurposeStats:
        if purpose not in self.by_purpose:
            self.by_purpose[purpose] = PurposeStats()
        return self.by_purpose[purpose]

    def to_dict(self) -> dict:
        stats = self.by_purpose.values()
        calls = sum(s.calls for s in stats)
        latency = sum(s.latency_ms for s in stats)
        return {
            "total_calls": calls,
            "errors": sum(s.errors for s in stats),
            "total_tokens_in": sum(s.tokens_in for s in stats),
            "total_tokens_out": sum(s.tokens_out for s in stats),
            "avg_latency_ms": round(latency / max(calls, 1), 1),
            "estimated_cost_usd": round(sum(s.cost_usd for s in stats), 4),
            "calls_by_purpose": {p: s.calls for p, s in self.by_purpose.items() if s.calls},
            "errors_by_purpose": {p: s.errors for p, s in self.by_purpose.items() if s.errors},
            "purposes": {p: s.to_dict() for p, s in self.by_purpose.items()},
            "since": self.started_at,
        }


@dataclass
class _CallRecord:
    """Filled in by a gateway method once the wrapped LLM has answered."""
    prompt_text: str
    reply_text: str = ""
    raw: Any = None


# ── Gateway ────────────────────────────────────────────────────────────

class LLMGateway(CustomLLM):
    """Observing proxy around a llama_index LLM.

    Usage:
        from devdex.core.gateway import LLMGateway
        gateway = LLMGateway(Gemini(model="models/gemini-2.5-flash"))
        await gateway.acomplete(prompt)                      # tagged "analysis"
        await gateway.achat(messages)                        # tagged "oracle"
        await gateway.acomplete(prompt, gateway_purpose="x") # custom tag

    ``gateway_purpose`` is consumed here and never forwarded.
    """

    _llm: Any = PrivateAttr(default=None)
    _metrics: LLMMetrics = PrivateAttr(default_factory=LLMMetrics)
    _lock: Any = PrivateAttr(default_factory=threading.Lock)

    def __init__(self, llm: Any, **kwargs):
        super().__init__(**kwargs)
        self._llm = llm
        logger.info(f"LLMGateway wrapping {type(llm).__name__} (model={self.model})")

    @property
    def metadata(self) -> LLMMetadata:
        return self._llm.metadata

    @property
    def model(self) -> str:
        """Provider model name without Gemini's ``models/`` prefix."""
        name = getattr(self._llm, "model", None)
        if not isinstance(name, str) or not name:
            return "unknown"
        return name.split("/", 1)[1] if name.startswith("models/") else name

    # ── Call tracking ─────────────────────────────────────────────────

    @contextmanager
    def _track(self, purpose: str, prompt_text: str) -> Iterator[_CallRecord]:
        call = _CallRecord(prompt_text=prompt_text)
        started = time.monotonic()
        try:
            yield call
        except (Exception, asyncio.CancelledError) as e:
            # Timeouts via asyncio.wait_for arrive here as CancelledError
            with self._lock:
                self._metrics.stats(purpose).errors += 1
            logger.error(
                f"LLM {purpose} call failed (model={self.model}): {type(e).__name__} {e}"
            )
            raise

        latency_ms = (time.monotonic() - started) * 1000
        tokens_in, tokens_out = usage_from_raw(call.raw)
        tokens_in = int(tokens_in or estimate_tokens(call.prompt_text))
        tokens_out = int(tokens_out or estimate_tokens(call.reply_text))
        price_in, price_out = _PRICING.get(self.model, (0.0, 0.0))
        cost = (tokens_in * price_in + tokens_out * price_out) / 1_000_000

        with self._lock:
            stats = self._metrics.stats(purpose)
            stats.calls += 1
            stats.tokens_in += tokens_in
            stats.tokens_out += tokens_out
            stats.latency_ms += latency_ms
            stats.cost_usd += cost
        logger.debug(
            f"LLM {purpose} call: {tokens_in} in / {tokens_out} out, "
            f"{latency_ms:.0f}ms, model={self.model}"
        )

    @staticmethod
    def _messages_text(messages: Sequence[ChatMessage]) -> str:
        return "\n".join(m.content or "" for m in messages)

    @staticmethod
    def _chat_text(response: ChatResponse) -> str:
        return (response.message.content or "") if response.message else ""

    # ── LLM interface ─────────────────────────────────────────────────

    def complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponse:
        purpose = kwargs.pop("gateway_purpose", PURPOSE_ANALYSIS)
        with self._track(purpose, prompt) as call:
            response = self._llm.complete(prompt, formatted=formatted, **kwargs)
            call.reply_text, call.raw = response.text or "", response.raw
        return response

    async def acomplete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponse:
        purpose = kwargs.pop("gateway_purpose", PURPOSE_ANALYSIS)
        with self._track(purpose, prompt) as call:
            response = await self._llm.acomplete(prompt, formatted=formatted, **kwargs)
            call.reply_text, call.raw = response.text or "", response.raw
        return response

    def stream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> Generator[CompletionResponse, None, None]:
        """Pass tokens through; the call is recorded once the stream ends."""
        purpose = kwargs.pop("gateway_purpose", PURPOSE_ANALYSIS)
        with self._track(purpose, prompt) as call:
            pieces = []
            for chunk in self._llm.stream_complete(prompt, formatted=formatted, **kwargs):
                pieces.append(chunk.delta or "")
                yield chunk
            call.reply_text = "".join(pieces)

    def chat(self, messages: Sequence[ChatMessage], **kwargs: Any) -> ChatResponse:
        purpose = kwargs.pop("gateway_purpose", PURPOSE_ORACLE)
        with self._track(purpose, self._messages_text(messages)) as call:
            response = self._llm.chat(messages, **kwargs)
            call.reply_text, call.raw = self._chat_text(response), response.raw
        return response

    async def achat(self, messages: Sequence[ChatMessage], **kwargs: Any) -> ChatResponse:
        purpose = kwargs.pop("gateway_purpose", PURPOSE_ORACLE)
        with self._track(purpose, self._messages_text(messages)) as call:
            response = await self._llm.achat(messages, **kwargs)
            call.reply_text, call.raw = self._chat_text(response), response.raw
        return response

    # ── Metrics API ───────────────────────────────────────────────────

    def get_metrics(self) -> dict:
        with self._lock:
            snapshot = self._metrics.to_dict()
        snapshot["model"] = self.model
        return snapshot

    def reset_metrics(self):
        with self._lock:
            self._metrics = LLMMetrics()
        logger.info("LLMGateway metrics reset")

    @classmethod
    def class_name(cls) -> str:
        return "LLMGateway"
