from .service import AnalysisJobService, union_file_ids
from .dispatcher import AnalysisDispatcher

__all__ = ["AnalysisJobService", "AnalysisDispatcher", "union_file_ids"]
