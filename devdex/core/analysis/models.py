"""Data models for project analysis.

AIAnalysisResult is the only shape the invoker accepts from the LLM.
It is validated strictly: missing required fields or wrong types are
parse failures, never partial results.
"""

from dataclasses import dataclass
from typing import List

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, field_validator

from ..constants import DEFAULT_DEPLOY_STATUS, DEPLOY_STATUSES


@dataclass(frozen=True)
class FileContext:
    """Text of one project file as handed to the LLM."""
    name: str
    content: str


class AIAnalysisResult(BaseModel):
    """Structured metadata extracted from project files."""

    model_config = ConfigDict(extra="ignore")

    one_liner: StrictStr
    description: StrictStr
    main_features: List[StrictStr]
    tech_stack: List[StrictStr]
    tags: List[StrictStr]
    confidence_score: StrictFloat | StrictInt
    chains: List[StrictStr]
    target_users: List[StrictStr]
    run_commands: List[StrictStr]
    key_decisions: List[StrictStr]

    deploy_status: str = DEFAULT_DEPLOY_STATUS
    missing_info: List[StrictStr] = []

    @field_validator("deploy_status", mode="before")
    @classmethod
    def _normalize_deploy_status(cls, value):
        if isinstance(value, str) and value.strip().lower() in DEPLOY_STATUSES:
            return value.strip().lower()
        return DEFAULT_DEPLOY_STATUS

    @field_validator("missing_info", mode="before")
    @classmethod
    def _default_missing_info(cls, value):
        return [] if value is None else value


# Field list sent to the LLM as the response schema
ANALYSIS_REQUIRED_FIELDS = [
    "one_liner", "description", "main_features", "tech_stack", "tags",
    "confidence_score", "chains", "target_users", "run_commands", "key_decisions",
]

ANALYSIS_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "one_liner": {
            "type": "string",
            "description": "A very short, catchy one-sentence summary of what the project does.",
        },
        "description": {
            "type": "string",
            "description": "A concise technical description of the project (2-3 sentences).",
        },
        "main_features": {"type": "array", "items": {"type": "string"}},
        "tech_stack": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Technologies, frameworks and libraries used.",
        },
        "chains": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Blockchain networks if applicable. Empty if not a dApp.",
        },
        "target_users": {"type": "array", "items": {"type": "string"}},
        "tags": {"type": "array", "items": {"type": "string"}},
        "run_commands": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Exact, full shell commands to run the project (e.g. 'npm run dev').",
        },
        "deploy_status": {"type": "string", "enum": list(DEPLOY_STATUSES)},
        "key_decisions": {"type": "array", "items": {"type": "string"}},
        "confidence_score": {
            "type": "number",
            "description": "Between 0 and 1: confidence in this analysis.",
        },
        "missing_info": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Questions about critical missing information.",
        },
    },
    "required": ANALYSIS_REQUIRED_FIELDS,
}
