"""Error handling utilities for the hazard lifecycle engine."""

from dataclasses import dataclass
from typing import Optional, Dict, Any
from enum import Enum


class ErrorType(Enum):
    """Enumeration of error types in the hazard lifecycle engine."""

    # Bedrock API Errors
    BEDROCK_RATE_LIMIT = "BEDROCK_RATE_LIMIT"
    BEDROCK_TIMEOUT = "BEDROCK_TIMEOUT"
    BEDROCK_AUTH_ERROR = "BEDROCK_AUTH_ERROR"
    BEDROCK_MODEL_ERROR = "BEDROCK_MODEL_ERROR"
    BEDROCK_INVALID_REQUEST = "BEDROCK_INVALID_REQUEST"
    BEDROCK_SERVICE_ERROR = "BEDROCK_SERVICE_ERROR"

    # Forensics Oracle Errors
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    ANALYSIS_TIMEOUT = "ANALYSIS_TIMEOUT"
    ANALYSIS_MALFORMED = "ANALYSIS_MALFORMED"

    # Report Store Errors
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    STORE_DUPLICATE_ID = "STORE_DUPLICATE_ID"
    PHOTO_NOT_FOUND = "PHOTO_NOT_FOUND"

    # Configuration Errors
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"

    # System Errors
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"

    # General Errors
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class ErrorContext:
    """
    Context information for errors in the hazard lifecycle engine.

    Attributes:
        error_type: Type of error from ErrorType enum
        message: Human-readable error message
        recoverable: Whether the caller may retry the same submission
        fallback_action: Optional description of fallback action taken
        details: Optional additional error details
        original_exception: Optional original exception that caused this error
    """

    error_type: ErrorType
    message: str
    recoverable: bool
    fallback_action: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    original_exception: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error context to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error context
        """
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None
        }


class HazardEngineError(Exception):
    """
    Base exception for all hazard engine errors.

    Wraps errors with additional context so the engine can translate them
    into retryable submission outcomes instead of leaking raw exceptions.

    Attributes:
        context: ErrorContext with detailed error information
    """

    def __init__(self, context: ErrorContext):
        self.context = context
        super().__init__(context.message)

    def __str__(self) -> str:
        base = f"{self.context.error_type.value}: {self.context.message}"
        if self.context.fallback_action:
            base += f" (Fallback: {self.context.fallback_action})"
        return base

    @property
    def recoverable(self) -> bool:
        return self.context.recoverable

    def to_dict(self) -> Dict[str, Any]:
        return self.context.to_dict()


class BedrockAPIError(HazardEngineError):
    """Exception for AWS Bedrock API errors."""

    @classmethod
    def from_client_error(
        cls,
        error: Exception,
        operation: str,
        recoverable: bool = False,
        fallback_action: Optional[str] = None
    ) -> "BedrockAPIError":
        """
        Create BedrockAPIError from boto3 ClientError.

        Args:
            error: Original boto3 ClientError
            operation: Description of operation that failed
            recoverable: Whether error is recoverable
            fallback_action: Optional fallback action description

        Returns:
            BedrockAPIError instance
        """
        error_code = "Unknown"
        error_message = str(error)

        if hasattr(error, 'response'):
            error_info = error.response.get("Error", {})
            error_code = error_info.get("Code", "Unknown")
            error_message = error_info.get("Message", str(error))

        error_type_map = {
            "ThrottlingException": ErrorType.BEDROCK_RATE_LIMIT,
            "TooManyRequestsException": ErrorType.BEDROCK_RATE_LIMIT,
            "RequestTimeout": ErrorType.BEDROCK_TIMEOUT,
            "RequestTimeoutException": ErrorType.BEDROCK_TIMEOUT,
            "UnauthorizedException": ErrorType.BEDROCK_AUTH_ERROR,
            "AccessDeniedException": ErrorType.BEDROCK_AUTH_ERROR,
            "ValidationException": ErrorType.BEDROCK_INVALID_REQUEST,
            "ModelNotReadyException": ErrorType.BEDROCK_MODEL_ERROR,
            "ModelTimeoutException": ErrorType.BEDROCK_TIMEOUT,
            "ServiceUnavailableException": ErrorType.BEDROCK_SERVICE_ERROR,
            "InternalServerException": ErrorType.BEDROCK_SERVICE_ERROR,
        }

        error_type = error_type_map.get(error_code, ErrorType.BEDROCK_SERVICE_ERROR)

        context = ErrorContext(
            error_type=error_type,
            message=f"Bedrock API error during {operation}: {error_message}",
            recoverable=recoverable,
            fallback_action=fallback_action,
            details={
                "error_code": error_code,
                "operation": operation
            },
            original_exception=error
        )

        return cls(context)


class AnalysisError(HazardEngineError):
    """
    Exception for forensics oracle failures.

    Every constructor produces a recoverable error: the oracle being down,
    slow or incoherent never decides a submission, the caller retries.
    """

    @classmethod
    def unavailable(
        cls,
        operation: str,
        error: Exception,
        fallback_action: Optional[str] = None
    ) -> "AnalysisError":
        """
        Create error for an oracle call that could not be completed.

        Args:
            operation: Oracle verb that failed ("triage_hazard", "verify_repair")
            error: Original exception
            fallback_action: Optional fallback action

        Returns:
            AnalysisError instance
        """
        context = ErrorContext(
            error_type=ErrorType.ANALYSIS_FAILED,
            message=f"Forensics oracle failed during {operation}: {str(error)}",
            recoverable=True,
            fallback_action=fallback_action or "Retry the submission",
            details={"operation": operation},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def timeout(cls, operation: str, timeout_seconds: float) -> "AnalysisError":
        """
        Create error for an oracle call that exceeded its deadline.

        Args:
            operation: Oracle verb that timed out
            timeout_seconds: Deadline that was exceeded

        Returns:
            AnalysisError instance
        """
        context = ErrorContext(
            error_type=ErrorType.ANALYSIS_TIMEOUT,
            message=f"Forensics oracle did not answer {operation} within {timeout_seconds:.1f}s",
            recoverable=True,
            fallback_action="Retry the submission",
            details={"operation": operation, "timeout_seconds": timeout_seconds}
        )
        return cls(context)

    @classmethod
    def malformed(
        cls,
        operation: str,
        reason: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> "AnalysisError":
        """
        Create error for an oracle response that violates the required schema.

        Args:
            operation: Oracle verb whose response was rejected
            reason: Which required field was missing or invalid
            payload: Optional raw payload for diagnostics

        Returns:
            AnalysisError instance
        """
        context = ErrorContext(
            error_type=ErrorType.ANALYSIS_MALFORMED,
            message=f"Malformed {operation} response: {reason}",
            recoverable=True,
            fallback_action="Retry the submission",
            details={"operation": operation, "payload_keys": sorted((payload or {}).keys())}
        )
        return cls(context)


class StoreError(HazardEngineError):
    """Exception for report store and photo storage failures."""

    @classmethod
    def unavailable(
        cls,
        operation: str,
        error: Exception,
        fallback_action: Optional[str] = None
    ) -> "StoreError":
        """
        Create error for a storage operation that could not be completed.

        Args:
            operation: Description of the storage operation
            error: Original exception
            fallback_action: Optional fallback action

        Returns:
            StoreError instance
        """
        context = ErrorContext(
            error_type=ErrorType.STORE_UNAVAILABLE,
            message=f"Report store unavailable during {operation}: {str(error)}",
            recoverable=True,
            fallback_action=fallback_action or "Retry the submission",
            details={"operation": operation},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def duplicate_id(cls, report_id: str) -> "StoreError":
        """
        Create error for an append whose report id is already stored.

        Args:
            report_id: Conflicting report id

        Returns:
            StoreError instance
        """
        context = ErrorContext(
            error_type=ErrorType.STORE_DUPLICATE_ID,
            message=f"Report '{report_id}' already exists",
            recoverable=False,
            details={"report_id": report_id}
        )
        return cls(context)

    @classmethod
    def photo_not_found(cls, image_ref: str) -> "StoreError":
        context = ErrorContext(
            error_type=ErrorType.PHOTO_NOT_FOUND,
            message=f"Evidence photo not found: {image_ref}",
            recoverable=False,
            details={"image_ref": image_ref}
        )
        return cls(context)


class ConfigError(HazardEngineError):
    """Exception for missing or invalid configuration."""

    @classmethod
    def invalid(cls, field_name: str, reason: str) -> "ConfigError":
        context = ErrorContext(
            error_type=ErrorType.CONFIG_INVALID,
            message=f"Invalid configuration for '{field_name}': {reason}",
            recoverable=False,
            details={"field": field_name}
        )
        return cls(context)


def handle_bedrock_error(
    error: Exception,
    operation: str,
    logger,
    fallback_action: Optional[str] = None
) -> None:
    """
    Handle Bedrock API errors with logging.

    Logs the error and raises it as an AnalysisError so the engine can
    surface a retryable ANALYSIS_FAILED outcome.

    Args:
        error: Original exception from Bedrock API
        operation: Description of operation that failed
        logger: Logger instance for error logging
        fallback_action: Optional fallback action description

    Raises:
        AnalysisError: Wrapped error with context
    """
    bedrock_error = BedrockAPIError.from_client_error(
        error=error,
        operation=operation,
        recoverable=True,
        fallback_action=fallback_action
    )

    logger.warning(f"Recoverable Bedrock error: {bedrock_error}")

    raise AnalysisError.unavailable(
        operation=operation,
        error=bedrock_error,
        fallback_action=fallback_action
    ) from error
