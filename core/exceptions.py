"""
Centralized exception hierarchy for the track pipeline.

Configuration and programmer errors (an unknown generation mode, a malformed
request) are raised to the caller. Persistence failures are wrapped in
:class:`TrackPersistenceError` so pipeline steps can log them and treat the
unit of work as having produced nothing.
"""


class TrackPipelineError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(TrackPipelineError):
    """Exception raised when data validation fails."""


class InvalidGenerationModeError(ValidationError):
    """Exception raised for a generation mode outside the supported set."""


class ResourceNotFoundError(TrackPipelineError):
    """Exception raised when a requested resource is not found."""


class TrackPersistenceError(TrackPipelineError):
    """Exception raised when a track or its points cannot be written."""

