"""Apply a validated analysis result onto a Project record.

Every AI-derived field is replaced as one batch; nothing is unioned with
earlier inferences. The human-facing ``name`` is only filled in when it is
empty or still a placeholder.

Concurrent user edits and merges race on the same row; the later write
wins and both refresh ``last_touched_at``. This is accepted behaviour.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..analysis.models import AIAnalysisResult
from ..constants import (
    DEFAULT_DEPLOY_STATUS,
    DEPLOY_STATUSES,
    FALLBACK_PROJECT_NAME,
    PLACEHOLDER_PROJECT_NAMES,
)
from ..db.models import Project, utcnow

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Merged project plus advisory follow-up prompts (never persisted)."""
    project: Project
    follow_up_questions: List[str] = field(default_factory=list)
    name_filled: bool = False


def clamp_confidence(value) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(1.0, max(0.0, score))


def is_placeholder_name(name: Optional[str]) -> bool:
    return name is None or name.strip() in PLACEHOLDER_PROJECT_NAMES


def derive_project_name(file_names: Optional[List[str]]) -> str:
    """Name a project after its first analyzed file, minus the extension."""
    if file_names:
        stem = file_names[0].split(".")[0].strip()
        if stem:
            return stem
    return FALLBACK_PROJECT_NAME


def merge_analysis(
    project: Project,
    result: AIAnalysisResult,
    file_names: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> MergeResult:
    """Overwrite the project's AI fields with ``result``.

    Args:
        project: Project row (attached or transient); mutated in place
        result: Validated analysis result
        file_names: Names of the analyzed files, used only to fill an empty name
        now: Merge timestamp (defaults to current UTC time)
    """
    now = now or utcnow()

    project.one_liner_ai = result.one_liner
    project.description_ai = result.description
    project.features_ai = list(result.main_features)
    project.stack_ai = list(result.tech_stack)
    project.chains_ai = list(result.chains)
    project.target_users_ai = list(result.target_users)
    project.tags_ai = list(result.tags)
    project.run_commands_ai = list(result.run_commands)
    project.key_decisions_ai = list(result.key_decisions)
    project.deploy_status_ai = (
        result.deploy_status if result.deploy_status in DEPLOY_STATUSES
        else DEFAULT_DEPLOY_STATUS
    )
    project.confidence_score = clamp_confidence(result.confidence_score)
    project.ai_updated_at = now

    name_filled = False
    if is_placeholder_name(project.name):
        project.name = derive_project_name(file_names)
        name_filled = True

    project.last_touched_at = now

    logger.info(
        f"Merged analysis into project {project.project_id} "
        f"(confidence={project.confidence_score:.2f}, name_filled={name_filled})"
    )
    return MergeResult(
        project=project,
        follow_up_questions=[q for q in result.missing_info if q.strip()],
        name_filled=name_filled,
    )
