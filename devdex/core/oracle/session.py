"""Oracle chat session: a conversation grounded in a fixed file context.

The context window is built once when the session is created and never
changes. Every turn re-sends the system context plus the whole history,
so the chat capability can stay stateless.

Turns are serialized: a second send() waits for the first to finish and
history is appended strictly in call order. A failed turn leaves the
history exactly as it was, so the caller can resend the same message.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence
from uuid import uuid4

from llama_index.core.base.llms.types import ChatMessage, MessageRole

from ..analysis.models import FileContext
from ..analysis.prompts import build_file_context, build_oracle_system_prompt
from ..constants import MAX_FILE_CHARS, ROLE_MODEL, ROLE_USER
from ..db.models import utcnow
from ..exceptions import ChatError, ContextTooLargeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_CHARS = 900_000
DEFAULT_TIMEOUT_SECONDS = 120.0

# Provider error fragments that mean the request exceeded the input limit
_CONTEXT_LIMIT_MARKERS = (
    "context length",
    "context_length",
    "too large",
    "too long",
    "token limit",
    "maximum context",
)

_ROLE_MAP = {
    ROLE_USER: MessageRole.USER,
    ROLE_MODEL: MessageRole.ASSISTANT,
}


@dataclass(frozen=True)
class ChatTurn:
    role: str        # user | model
    content: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


def is_context_limit_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CONTEXT_LIMIT_MARKERS)


class OracleSession:
    """One conversation about one project's files.

    Args:
        context_window: Concatenated, truncated file contents
        llm: Any object exposing ``async achat(messages)`` (llama_index LLM
            or LLMGateway)
        project_id: Owning project, for bookkeeping only
        max_input_chars: Upper bound on system context plus history plus
            the new message, checked before each call
        timeout: Seconds to wait for each reply
    """

    def __init__(
        self,
        context_window: str,
        llm: Any,
        project_id: Optional[str] = None,
        file_names: Optional[List[str]] = None,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.session_id = str(uuid4())
        self.project_id = project_id
        self.file_names = list(file_names or [])
        self._context_window = context_window
        self._system_prompt = build_oracle_system_prompt(context_window)
        self._llm = llm
        self.max_input_chars = max_input_chars
        self.timeout = timeout
        self._history: List[ChatTurn] = []
        self._lock = asyncio.Lock()
        self.created_at = utcnow()
        self.last_active_at = self.created_at

    @classmethod
    def create(
        cls,
        files: Sequence[FileContext],
        llm: Any,
        max_file_chars: int = MAX_FILE_CHARS,
        **kwargs,
    ) -> "OracleSession":
        """Build the immutable context window from ``files`` and open a session."""
        context_window = build_file_context(list(files), max_file_chars)
        session = cls(
            context_window,
            llm,
            file_names=[f.name for f in files],
            **kwargs,
        )
        logger.info(
            f"Oracle session {session.session_id} created over {len(files)} file(s), "
            f"context {len(context_window)} chars"
        )
        return session

    @property
    def context_window(self) -> str:
        return self._context_window

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def history(self) -> List[ChatTurn]:
        """Snapshot of the conversation so far."""
        return list(self._history)

    def input_size(self, message: str = "") -> int:
        return (
            len(self._system_prompt)
            + sum(len(t.content) for t in self._history)
            + len(message)
        )

    async def send(self, message: str) -> str:
        """Send one user message and return the model's reply.

        Raises:
            ValueError: empty message
            ContextTooLargeError: the request would exceed the input limit
            ChatError: capability unreachable, timed out, or returned no text
        """
        if not message or not message.strip():
            raise ValueError("Message must not be empty")

        async with self._lock:
            size = self.input_size(message)
            if size > self.max_input_chars:
                raise ContextTooLargeError(
                    f"Conversation input of {size} chars exceeds the "
                    f"{self.max_input_chars} char limit"
                )

            self._history.append(ChatTurn(role=ROLE_USER, content=message))
            try:
                reply = await self._call_capability()
            except BaseException:
                # Drop the unanswered user turn so the session is unchanged
                self._history.pop()
                raise

            self._history.append(ChatTurn(role=ROLE_MODEL, content=reply))
            self.last_active_at = utcnow()
            return reply

    async def _call_capability(self) -> str:
        messages = [ChatMessage(role=MessageRole.SYSTEM, content=self._system_prompt)]
        messages.extend(
            ChatMessage(role=_ROLE_MAP[t.role], content=t.content) for t in self._history
        )

        try:
            response = await asyncio.wait_for(self._llm.achat(messages), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ChatError(f"Oracle reply timed out after {self.timeout:.0f}s") from e
        except Exception as e:
            if is_context_limit_error(e):
                raise ContextTooLargeError(f"Chat capability rejected the input size: {e}") from e
            logger.error(f"Oracle session {self.session_id} call failed: {e}")
            raise ChatError(f"Chat capability failed: {e}") from e

        message = getattr(response, "message", None)
        text = ((message.content if message is not None else None) or "").strip()
        if not text:
            raise ChatError("Empty response from chat capability")
        return text

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "project_id": self.project_id,
            "file_names": self.file_names,
            "context_chars": len(self._context_window),
            "turns": len(self._history),
            "created_at": self.created_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
        }
