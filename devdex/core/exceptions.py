"""Exception hierarchy for DevDex core services.

The API layer maps these onto HTTP status codes; services raise them
and never translate them into return values.
"""


class DevDexError(Exception):
    """Base class for all DevDex errors."""


class NotFoundError(DevDexError):
    pass


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = str(project_id)


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id):
        super().__init__(f"Analysis job not found: {job_id}")
        self.job_id = str(job_id)


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id):
        super().__init__(f"Oracle session not found: {session_id}")
        self.session_id = str(session_id)


class StorageError(DevDexError):
    """Blob storage read or write failed."""


class UploadError(DevDexError):
    """A single file could not be ingested."""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"Upload failed for {filename}: {reason}")
        self.filename = filename
        self.reason = reason


class AnalysisError(DevDexError):
    """The analysis capability failed or returned an unusable result."""


class ChatError(DevDexError):
    """The chat capability failed or returned no text."""


class ContextTooLargeError(ChatError):
    """Context plus history exceeds the capability's input limit."""


class ConflictError(DevDexError):
    """Concurrent job submission collided on the one-queued-job rule."""


class InvalidTransitionError(DevDexError):
    def __init__(self, job_id, current: str, action: str):
        super().__init__(f"Cannot {action} job {job_id} in state '{current}'")
        self.job_id = str(job_id)
        self.current = current
        self.action = action


class AuthorizationError(DevDexError):
    """Write operation attempted without a valid admin context."""
