"""Custom exceptions for the scenario analysis engine."""

from typing import Optional


class ScenarioAnalysisException(Exception):
    """
    Base exception for the scenario analysis engine.

    Attributes:
        message: Human-readable description of the error.
        error_code: Machine-readable code identifying the error type.
        status_code: Suggested HTTP status code when translating to an HTTP response.
    """
    error_code: str = "unknown_error"
    status_code: int = 500

    def __init__(self, message: Optional[str] = None):
        # Use the class docstring as a default message if none provided
        default_msg = self.__class__.__doc__.strip().splitlines()[0] if self.__class__.__doc__ else ""
        self.message = message or default_msg
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class InvalidRequestException(ScenarioAnalysisException):
    "Raised when a request is missing required fields or holds out-of-range values."
    error_code = "invalid_request"
    status_code = 400


class NotFoundException(ScenarioAnalysisException):
    "Raised when a scenario or analysis job is not found."
    error_code = "not_found"
    status_code = 404


class ConflictException(ScenarioAnalysisException):
    "Raised when an analysis job is already active for a scenario."
    error_code = "conflict"
    status_code = 409


class ServiceBusyException(ScenarioAnalysisException):
    "Raised when the analysis queue is full or the worker pool is not running."
    error_code = "service_busy"
    status_code = 503


class ExecutionFailureException(ScenarioAnalysisException):
    "Raised when an analysis pipeline stage fails."
    error_code = "execution_failure"
    status_code = 500


class KafkaConnectionException(ScenarioAnalysisException):
    "Raised when Kafka connection fails."
    error_code = "kafka_connection_error"
    status_code = 503


class DatabaseConnectionException(ScenarioAnalysisException):
    "Raised when database connection fails."
    error_code = "database_connection_error"
    status_code = 503


# Public API
__all__ = [
    "ScenarioAnalysisException",
    "InvalidRequestException",
    "NotFoundException",
    "ConflictException",
    "ServiceBusyException",
    "ExecutionFailureException",
    "KafkaConnectionException",
    "DatabaseConnectionException",
]
