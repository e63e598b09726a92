"""
Custom exceptions for the analyzer package.
"""


class AnalyzerError(Exception):
    """Base exception for analyzer errors."""
    pass


class StoreError(AnalyzerError):
    """Error in event store operations (including lock timeouts)."""
    pass


class AlertNotFoundError(StoreError):
    """Alert not found in store."""
    pass


class DuplicateAlertError(StoreError):
    """An alert already exists for the file event."""
    def __init__(self, message: str, existing_id: int = None):
        super().__init__(message)
        self.existing_id = existing_id


class PipelineError(AnalyzerError):
    """Error in the risk pipeline process."""
    pass
