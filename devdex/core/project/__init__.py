"""
Project Management Module

Exports:
- ProjectManager: CRUD operations for projects and file listing
- merge_analysis: Apply an analysis result onto a project
- export_database / import_database: Bulk catalog transfer
"""

from .merge import MergeResult, merge_analysis
from .project_manager import ProjectManager
from .transfer import ImportReport, export_database, import_database

__all__ = [
    "ProjectManager",
    "MergeResult",
    "merge_analysis",
    "ImportReport",
    "export_database",
    "import_database",
]
