"""Exception types raised inside the job processing core."""


class FeedbackJobsError(Exception):
    """Base class for errors raised by this package."""


class AnalysisBackendError(FeedbackJobsError):
    """The AI backend was unavailable or returned unusable output."""


class RecordNotFoundError(FeedbackJobsError):
    """A collaborator record needed by a job does not exist."""

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} {record_id} not found")


class FeedbackNotFoundError(RecordNotFoundError):
    def __init__(self, feedback_id: str):
        super().__init__("Feedback", feedback_id)


class UnknownJobKindError(FeedbackJobsError):
    """No handler is registered for a job's kind."""
