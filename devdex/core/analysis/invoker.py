"""Analysis invoker: project files in, validated AIAnalysisResult out.

Steps:
  1. Truncate each file and join them into one bounded prompt context
  2. Await the LLM (the single suspension point) under a timeout
  3. Strip code fences, parse strict JSON, validate against AIAnalysisResult

No retries happen here; the job state machine owns that decision.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..constants import DEFAULT_MODEL, MAX_FILE_CHARS
from ..exceptions import AnalysisError
from .models import AIAnalysisResult, FileContext
from . import prompts

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_code_fences(raw: str) -> str:
    """Remove a markdown code fence wrapped around the whole response."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def parse_analysis_output(raw: str) -> AIAnalysisResult:
    """Decode raw LLM text into an AIAnalysisResult or raise AnalysisError."""
    cleaned = strip_code_fences(raw)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Analysis response is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise AnalysisError(
            f"Analysis response must be a JSON object, got {type(payload).__name__}"
        )

    try:
        return AIAnalysisResult.model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise AnalysisError(
            f"Analysis response failed schema validation ({', '.join(fields)})"
        ) from e


class AnalysisInvoker:
    """Run one analysis call against an LLM capability.

    Args:
        llm: Any object exposing ``async acomplete(prompt)`` returning a
            response with ``.text`` (a llama_index LLM or LLMGateway).
            Falls back to ``llama_index.core.Settings.llm``.
        max_file_chars: Per-file truncation point
        timeout: Seconds to wait for the capability
    """

    def __init__(
        self,
        llm: Any = None,
        max_file_chars: int = MAX_FILE_CHARS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._llm = llm
        self.max_file_chars = max_file_chars
        self.timeout = timeout

    @property
    def llm(self):
        if self._llm is None:
            from llama_index.core import Settings
            self._llm = Settings.llm
        return self._llm

    @property
    def model_name(self) -> str:
        name = getattr(self._llm, "model", None)
        return name if isinstance(name, str) and name else DEFAULT_MODEL

    def build_prompt(self, files: List[FileContext]) -> str:
        context = prompts.build_file_context(files, self.max_file_chars)
        return prompts.build_project_analysis_prompt(context)

    async def analyze(self, files: List[FileContext]) -> AIAnalysisResult:
        """Analyze project files.

        Raises:
            AnalysisError: capability unreachable, timeout, empty response,
                invalid JSON, or schema violation
        """
        if not files:
            raise AnalysisError("No file contents to analyze")

        prompt = self.build_prompt(files)
        logger.info(
            f"Analyzing {len(files)} file(s), prompt {len(prompt)} chars, "
            f"model={self.model_name}"
        )

        try:
            llm = self.llm
        except Exception as e:
            raise AnalysisError(f"No LLM configured: {e}") from e
        if llm is None:
            raise AnalysisError("No LLM configured")

        try:
            response = await asyncio.wait_for(llm.acomplete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise AnalysisError(f"Analysis timed out after {self.timeout:.0f}s") from e
        except Exception as e:
            logger.error(f"Analysis capability call failed: {e}")
            raise AnalysisError(f"Analysis capability failed: {e}") from e

        raw_output = (getattr(response, "text", None) or "").strip()
        if not raw_output:
            raise AnalysisError("Empty response from analysis capability")

        result = parse_analysis_output(raw_output)
        logger.info(
            f"Analysis parsed: {len(result.tech_stack)} stack items, "
            f"confidence={result.confidence_score}"
        )
        return result

    @staticmethod
    def result_to_json(result: AIAnalysisResult) -> Dict[str, Any]:
        return result.model_dump(mode="json")

    @staticmethod
    def result_from_json(data: Optional[Dict[str, Any]]) -> Optional[AIAnalysisResult]:
        if data is None:
            return None
        return AIAnalysisResult.model_validate(data)
