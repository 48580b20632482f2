class TriageWorkerError(Exception):
    """Base exception for triage worker."""
    pass


class ClassifierServiceError(TriageWorkerError):
    """Raised when the classification service call fails."""
    pass
