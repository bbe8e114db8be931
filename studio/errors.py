"""Error taxonomy for studio jobs."""
from typing import Optional


class StudioError(Exception):
    """Base class for every engine failure."""


class ValidationError(StudioError):
    """Input is not ready for a job. Raised before any network call."""


class InvalidTransition(ValidationError):
    def __init__(self, local_id: str, current: str, target: str) -> None:
        super().__init__(f"shot {local_id}: cannot move from {current} to {target}")
        self.local_id = local_id
        self.current = current
        self.target = target


class NetworkError(StudioError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: str = "",
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body = body


class RemoteJobFailed(StudioError):
    def __init__(self, message: str, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class NoMediaFoundError(StudioError):
    """Response parsing exhausted every extraction strategy."""


class PersistenceError(StudioError):
    """Durable store rejected a write or delete."""


class JobCancelled(StudioError):
    """The owning shot was discarded while the job was in flight."""


# Failures that send a shot back to draft with an error message.
RECOVERABLE_ERRORS = (NetworkError, RemoteJobFailed, NoMediaFoundError)
