"""
Custom Exceptions for Ticket Scanner Application

This module defines custom exception classes that provide specific
error handling for the different ways a ticket redemption attempt
or a scanner session can fail.
"""

from typing import Optional


class TicketScannerException(Exception):
    """
    Base exception for Ticket Scanner application

    All custom exceptions in the Ticket Scanner system should inherit
    from this base class for consistent error handling.
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        """
        Initialize Ticket Scanner exception

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        """String representation of the exception"""
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class DataValidationException(TicketScannerException):
    """
    Raised when data validation fails

    This exception is thrown when input or configuration data doesn't
    meet the required validation criteria.
    """

    def __init__(self, field_name: str, validation_error: str):
        """
        Initialize data validation exception

        Args:
            field_name: Name of the field that failed validation
            validation_error: Description of the validation error
        """
        message = f"Validation error in field '{field_name}': {validation_error}"
        super().__init__(message, "VALIDATION_ERROR")
        self.field_name = field_name
        self.validation_error = validation_error


class EmptyTicketIdException(DataValidationException):
    """Raised when a manual entry is submitted without a ticket ID"""

    def __init__(self):
        super().__init__("ticket_id", "Ticket ID is required")
        self.error_code = "EMPTY_TICKET_ID"


class InvalidQRCodeException(TicketScannerException):
    """
    Raised when a decoded QR payload cannot be turned into a redemption request

    Covers payloads that are not URLs, URLs without a ticket ID and,
    under the reject policy, URLs without a nonce.
    """

    def __init__(self, payload: str, reason: str):
        """
        Initialize invalid QR code exception

        Args:
            payload: The raw decoded payload
            reason: Why the payload was rejected
        """
        super().__init__(f"Invalid QR code: {reason}", "INVALID_QR")
        self.payload = payload
        self.reason = reason


class RedemptionServiceException(TicketScannerException):
    """
    Raised when the redemption service cannot be reached or answers garbage

    A service that answers with ``success: false`` is not an error; this
    exception covers transport failures and unusable responses only.
    """

    def __init__(self, details: str, status_code: Optional[int] = None):
        """
        Initialize redemption service exception

        Args:
            details: Detailed error information
            status_code: HTTP status code, when a response was received
        """
        super().__init__(f"Redemption service error: {details}", "REDEMPTION_SERVICE_ERROR")
        self.details = details
        self.status_code = status_code


class RedemptionTimeoutException(RedemptionServiceException):
    """Raised when the redemption service does not answer in time"""

    def __init__(self, timeout: float):
        super().__init__(f"Redemption timed out after {timeout:g}s")
        self.message = self.details
        self.error_code = "REDEMPTION_TIMEOUT"
        self.timeout = timeout


class CameraUnavailableException(TicketScannerException):
    """
    Raised when the capture device cannot be acquired

    This is fatal for the scanner session: the state machine moves to
    Unavailable and never reverts on its own.
    """

    def __init__(self, device: str, details: str):
        """
        Initialize camera unavailable exception

        Args:
            device: Identifier of the capture device
            details: Detailed error information
        """
        super().__init__(f"Camera '{device}' unavailable: {details}", "CAMERA_UNAVAILABLE")
        self.device = device
        self.details = details
