from .file_ingestion import (
    FileIngestionService,
    FileOutcome,
    IncomingFile,
    IngestionResult,
    classify_file_kind,
)

__all__ = [
    "FileIngestionService",
    "FileOutcome",
    "IncomingFile",
    "IngestionResult",
    "classify_file_kind",
]
