"""Shared constants for DevDex.

This module contains constants that are used across multiple modules
to avoid duplication and ensure consistency.
"""

# =============================================================================
# Project Classification
# =============================================================================

PROJECT_TYPES = ("dApp", "Tool", "Web", "Library", "Other")
PROJECT_STATUSES = ("Active", "Paused", "Archived", "Idea")

DEFAULT_PROJECT_TYPE = "Web"
DEFAULT_PROJECT_STATUS = "Idea"

# Names that merge is allowed to replace
PLACEHOLDER_PROJECT_NAMES = ("", "New Project", "Untitled Project")
FALLBACK_PROJECT_NAME = "Untitled Project"

# =============================================================================
# AI-derived Fields
# =============================================================================

DEPLOY_STATUSES = ("production", "testnet", "local", "unknown")
DEFAULT_DEPLOY_STATUS = "unknown"

# =============================================================================
# Files
# =============================================================================

FILE_KINDS = ("readme", "docs", "config", "image")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")
DEFAULT_STORAGE_BUCKET = "project-files"

# Per-file character cutoff for analysis prompts and Oracle context
MAX_FILE_CHARS = 20_000

# =============================================================================
# Analysis Jobs
# =============================================================================

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_DONE = "done"
JOB_ERROR = "error"
JOB_STATUSES = (JOB_QUEUED, JOB_RUNNING, JOB_DONE, JOB_ERROR)

DEFAULT_MODEL = "gemini-2.5-flash"

# =============================================================================
# Oracle Chat
# =============================================================================

ROLE_USER = "user"
ROLE_MODEL = "model"
