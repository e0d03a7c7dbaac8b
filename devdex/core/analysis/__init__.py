"""Project analysis: turn uploaded files into structured metadata.

Public API:
    AnalysisInvoker   - bounded prompt + LLM call + strict JSON decode
    AIAnalysisResult  - the only accepted result shape
    FileContext       - name/content pair handed to the LLM
"""

from .invoker import AnalysisInvoker, parse_analysis_output, strip_code_fences
from .models import AIAnalysisResult, FileContext

__all__ = [
    "AnalysisInvoker",
    "parse_analysis_output",
    "strip_code_fences",
    "AIAnalysisResult",
    "FileContext",
]
