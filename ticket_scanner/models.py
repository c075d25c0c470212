"""
Data Models for Ticket Scanner Application

This module contains the data model classes that represent the core entities
of ticket admission: scan outcomes, redemption requests and results, and the
statistics derived from the scan history. These classes use dataclasses for
clean, type-safe data representation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict
from urllib.parse import parse_qs, urlsplit

from .exceptions import EmptyTicketIdException, InvalidQRCodeException


MANUAL_NONCE = "manual_redeem"
INVALID_QR_TICKET_ID = "Invalid QR"


class RedemptionStatus(Enum):
    """Enumeration for the state of the redemption state machine"""
    IDLE = "idle"
    SCANNING = "scanning"
    VALIDATING = "validating"
    SUCCESS = "success"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"

    def is_terminal(self) -> bool:
        """True for the outcomes that are shown until the cool-down elapses"""
        return self in (RedemptionStatus.SUCCESS, RedemptionStatus.FAILED)


class ScanStatus(Enum):
    """Enumeration for the outcome stored in a scan record"""
    SUCCESS = "success"
    FAILED = "failed"


class ScanMethod(Enum):
    """Enumeration for how a ticket ID reached the scanner"""
    QR = "qr"
    MANUAL = "manual"


class MissingNoncePolicy(Enum):
    """What to do with a QR payload that carries no nonce"""
    PASS_THROUGH = "pass_through"
    REJECT = "reject"


@dataclass(frozen=True)
class ScanRecord:
    """
    Data model for a single entry in the scan history

    A scan record is written once per terminal redemption outcome,
    including payloads rejected before the service was called.
    """
    id: str
    ticket_id: str
    event_name: str
    timestamp: datetime
    status: ScanStatus
    message: str
    scan_method: ScanMethod

    @classmethod
    def create_new(cls, record_id: str, ticket_id: str, event_name: str,
                   status: ScanStatus, message: str,
                   scan_method: ScanMethod) -> 'ScanRecord':
        """
        Create new scan record with current timestamp

        Args:
            record_id: Unique identifier assigned by the state machine
            ticket_id: Ticket ID the attempt was made for
            event_name: Event the scanner session is admitting to
            status: Outcome of the attempt
            message: Human-readable outcome text
            scan_method: How the ticket ID was obtained

        Returns:
            New ScanRecord instance
        """
        return cls(
            id=record_id,
            ticket_id=ticket_id,
            event_name=event_name,
            timestamp=datetime.now(timezone.utc),
            status=status,
            message=message,
            scan_method=scan_method
        )

    def to_dict(self) -> Dict:
        """
        Convert scan record to dictionary for JSON serialization

        Returns:
            Dictionary representation using the scanner UI's field names
        """
        return {
            'id': self.id,
            'ticketId': self.ticket_id,
            'eventName': self.event_name,
            'timestamp': self.timestamp.isoformat(),
            'status': self.status.value,
            'message': self.message,
            'scanMethod': self.scan_method.value
        }


@dataclass(frozen=True)
class RedemptionRequest:
    """
    Data model for one redemption attempt

    Built from a decoded QR payload or a manual entry, and handed
    to the redemption service client.
    """
    ticket_id: str
    nonce: str
    method: ScanMethod

    @classmethod
    def from_qr_payload(cls, payload: str,
                        nonce_policy: MissingNoncePolicy = MissingNoncePolicy.PASS_THROUGH
                        ) -> 'RedemptionRequest':
        """
        Parse a decoded QR payload

        The payload must be a URL; ``ticketId`` and ``nonce`` are read
        from its query string.

        Args:
            payload: Raw decoded string
            nonce_policy: How to treat a payload without a nonce

        Returns:
            RedemptionRequest instance

        Raises:
            InvalidQRCodeException: If the payload is not a usable ticket URL
        """
        text = (payload or "").strip()
        try:
            parts = urlsplit(text)
        except ValueError as e:
            raise InvalidQRCodeException(payload, f"not a URL ({e})")

        if not parts.scheme:
            raise InvalidQRCodeException(payload, "not a URL")

        params = parse_qs(parts.query, keep_blank_values=True)
        ticket_id = params.get("ticketId", [""])[0]
        if not ticket_id:
            raise InvalidQRCodeException(payload, "missing ticket ID")

        nonce = params.get("nonce", [None])[0]
        if not nonce and nonce_policy is MissingNoncePolicy.REJECT:
            raise InvalidQRCodeException(payload, "missing nonce")

        return cls(ticket_id=ticket_id, nonce=nonce or "", method=ScanMethod.QR)

    @classmethod
    def from_manual_entry(cls, ticket_id: str) -> 'RedemptionRequest':
        """
        Build a request from a typed ticket ID

        Raises:
            EmptyTicketIdException: If nothing but whitespace was entered
        """
        ticket_id = (ticket_id or "").strip()
        if not ticket_id:
            raise EmptyTicketIdException()
        return cls(ticket_id=ticket_id, nonce=MANUAL_NONCE, method=ScanMethod.MANUAL)


@dataclass
class RedemptionResult:
    """Answer of the redemption service for one request"""
    success: bool
    message: str = ""

    @classmethod
    def from_dict(cls, data: Dict) -> 'RedemptionResult':
        """
        Create RedemptionResult from the service's JSON body

        Args:
            data: Dictionary with ``success`` and ``message`` keys

        Returns:
            RedemptionResult instance
        """
        return cls(
            success=bool(data.get('success', False)),
            message=str(data.get('message') or "")
        )


@dataclass
class ScanStats:
    """Counts derived from a snapshot of the scan history"""
    total: int = 0
    successful: int = 0
    failed: int = 0
    by_method: Dict[str, int] = field(
        default_factory=lambda: {method.value: 0 for method in ScanMethod}
    )

    @property
    def success_rate(self) -> float:
        """Percentage of successful scans, 0 for an empty history"""
        return (self.successful / self.total * 100) if self.total else 0.0

    def to_dict(self) -> Dict:
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'by_method': dict(self.by_method),
            'success_rate': round(self.success_rate, 1)
        }
