"""
Business Logic Services for Ticket Scanner Application

This module contains the service classes that implement ticket admission:
the redemption state machine that serializes scan attempts, the statistics
computed over the scan history, and the scanner session that owns the
capture device and the history for one check-in session.
"""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, Iterable, List, Optional

from .clients import RedemptionServiceClient
from .decoder import DecodeSource
from .exceptions import (
    CameraUnavailableException,
    EmptyTicketIdException,
    InvalidQRCodeException,
    RedemptionServiceException,
    RedemptionTimeoutException
)
from .models import (
    INVALID_QR_TICKET_ID,
    MissingNoncePolicy,
    RedemptionRequest,
    RedemptionStatus,
    ScanMethod,
    ScanRecord,
    ScanStats,
    ScanStatus
)
from .repositories import DEFAULT_HISTORY_CAPACITY, InMemoryScanLedger, ScanHistoryRepository


logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 3.0
DEFAULT_REDEEM_TIMEOUT = 10.0

PROMPT_MESSAGE = "Point camera at a QR code"
READY_MESSAGE = "Ready for next scan..."
VALIDATING_MESSAGE = "Validating ticket..."
ADMITTED_MESSAGE = "ADMITTED: Ticket redeemed successfully!"
INVALID_QR_DISPLAY = "DENIED: Invalid QR code."
INVALID_QR_RECORD = "Invalid QR code format"
EMPTY_MANUAL_MESSAGE = "Please enter a Ticket ID."
CAMERA_UNAVAILABLE_MESSAGE = "Could not start camera. Please grant permission."
REDEMPTION_FAILED_MESSAGE = "Redemption failed."
SERVICE_UNAVAILABLE_DISPLAY = "DENIED: Redemption service unavailable."
TIMEOUT_DISPLAY = "DENIED: Redemption timed out."


def _start_daemon_timer(interval: float, function: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    timer.start()
    return timer


class StatsAggregator:
    """
    Computes scan statistics

    Stats are recomputed from a history snapshot on every read; nothing
    is maintained incrementally.
    """

    @staticmethod
    def compute(records: Iterable[ScanRecord]) -> ScanStats:
        """
        Count records by outcome and by scan method

        Args:
            records: Scan records to summarize

        Returns:
            ScanStats for the given records
        """
        stats = ScanStats()
        for record in records:
            stats.total += 1
            if record.status is ScanStatus.SUCCESS:
                stats.successful += 1
            else:
                stats.failed += 1
            stats.by_method[record.scan_method.value] += 1
        return stats


class RedemptionStateMachine:
    """
    Serializes ticket redemption attempts

    Decoded payloads and manual submissions are both attempts. An attempt
    is only accepted while the status is Scanning; leaving Scanning is an
    atomic check-and-set under ``_lock``, so at most one attempt is in
    flight no matter which thread submits it. Each Success or Failed
    outcome appends exactly one ScanRecord and starts a cool-down, after
    which the machine reverts to Scanning and resumes the decode source.
    """

    def __init__(self, redemption_client: RedemptionServiceClient,
                 ledger: ScanHistoryRepository,
                 decode_source: Optional[DecodeSource] = None,
                 event_name: str = "",
                 cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
                 redeem_timeout: Optional[float] = DEFAULT_REDEEM_TIMEOUT,
                 nonce_policy: MissingNoncePolicy = MissingNoncePolicy.PASS_THROUGH,
                 timer_factory: Callable[[float, Callable[[], None]], object] = _start_daemon_timer):
        """
        Initialize redemption state machine

        Args:
            redemption_client: Service that marks tickets as used
            ledger: Scan history the outcomes are appended to
            decode_source: Paused while an attempt is in flight
            event_name: Event the session admits to, stored on each record
            cooldown_seconds: How long a terminal outcome is shown
            redeem_timeout: Upper bound on one service call; None waits forever
            nonce_policy: Treatment of QR payloads without a nonce
            timer_factory: Starts a timer calling a function after a delay;
                the returned object must support ``cancel()``
        """
        self.redemption_client = redemption_client
        self.ledger = ledger
        self.decode_source = decode_source
        self.event_name = event_name
        self.cooldown_seconds = cooldown_seconds
        self.redeem_timeout = redeem_timeout
        self.nonce_policy = nonce_policy

        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._status = RedemptionStatus.IDLE
        self._message = PROMPT_MESSAGE
        self._record_ids = itertools.count(1)
        # Identifies the attempt that owns Validating
        self._attempt_seq = 0
        self._cooldown_timer = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def status(self) -> RedemptionStatus:
        with self._lock:
            return self._status

    @property
    def message(self) -> str:
        with self._lock:
            return self._message

    def snapshot(self) -> Dict:
        """Current status and status message as a dictionary"""
        with self._lock:
            return {
                'status': self._status.value,
                'message': self._message,
                'event_name': self.event_name,
                'cooldown_seconds': self.cooldown_seconds
            }

    def device_ready(self) -> None:
        """Idle -> Scanning once the capture device is available"""
        with self._lock:
            if self._status is not RedemptionStatus.IDLE:
                return
            try:
                if self.decode_source is not None:
                    self.decode_source.start()
            except CameraUnavailableException as e:
                self._become_unavailable(e)
                return
            self._status = RedemptionStatus.SCANNING
            self._message = PROMPT_MESSAGE
        logger.info("Scanner ready for %s", self.event_name or "event")

    def device_failed(self, error: Exception) -> None:
        """Idle -> Unavailable when the capture device cannot be started"""
        with self._lock:
            if self._status is not RedemptionStatus.IDLE:
                return
            self._become_unavailable(error)

    def _become_unavailable(self, error: Exception) -> None:
        self._status = RedemptionStatus.UNAVAILABLE
        self._message = CAMERA_UNAVAILABLE_MESSAGE
        logger.error("Scanner unavailable: %s", error)

    def handle_decoded(self, payload: str) -> Optional[ScanRecord]:
        """
        Process a payload from a decode source

        Args:
            payload: Raw decoded QR string

        Returns:
            The ScanRecord appended for this attempt, or None if the
            attempt was dropped because another one is in progress
        """
        return self._attempt(
            lambda: RedemptionRequest.from_qr_payload(payload, self.nonce_policy)
        )

    def submit_manual(self, ticket_id: str) -> Optional[ScanRecord]:
        """
        Process a typed ticket ID

        Args:
            ticket_id: Ticket ID entered by the operator

        Returns:
            The ScanRecord appended for this attempt, or None if dropped

        Raises:
            EmptyTicketIdException: If no ticket ID was entered; only the
                prompt message changes
        """
        if not (ticket_id or "").strip():
            with self._lock:
                if self._status is RedemptionStatus.SCANNING:
                    self._message = EMPTY_MANUAL_MESSAGE
            raise EmptyTicketIdException()
        return self._attempt(lambda: RedemptionRequest.from_manual_entry(ticket_id))

    def _attempt(self, build_request: Callable[[], RedemptionRequest]) -> Optional[ScanRecord]:
        with self._lock:
            if self._status is not RedemptionStatus.SCANNING:
                logger.debug("Attempt dropped while %s", self._status.value)
                return None
            try:
                request = build_request()
            except InvalidQRCodeException as e:
                logger.info("Rejected QR payload: %s", e.reason)
                record = self._conclude(
                    RedemptionStatus.FAILED, INVALID_QR_TICKET_ID, ScanMethod.QR,
                    INVALID_QR_RECORD, INVALID_QR_DISPLAY
                )
                request = None
            else:
                self._status = RedemptionStatus.VALIDATING
                self._attempt_seq += 1
                attempt = self._attempt_seq
                self._message = VALIDATING_MESSAGE
                logger.info("Validating ticket %s (%s)", request.ticket_id, request.method.value)

        self._pause_decoding()
        if request is None:
            self._schedule_cooldown()
            return record

        status, record_message, display = self._redeem(request)
        with self._lock:
            if attempt != self._attempt_seq or self._status is not RedemptionStatus.VALIDATING:
                logger.info("Discarding result for %s after shutdown", request.ticket_id)
                return None
            record = self._conclude(status, request.ticket_id, request.method,
                                    record_message, display)
        self._schedule_cooldown()
        return record

    def _redeem(self, request: RedemptionRequest):
        """Call the service and map its settlement to (status, record text, display text)"""
        try:
            future = self._get_executor().submit(
                self.redemption_client.redeem, request.ticket_id, request.nonce
            )
            result = future.result(timeout=self.redeem_timeout)
        except FuturesTimeoutError:
            future.cancel()
            logger.warning("Redemption of %s timed out after %ss",
                           request.ticket_id, self.redeem_timeout)
            return (RedemptionStatus.FAILED,
                    f"Redemption timed out after {self.redeem_timeout:g}s",
                    TIMEOUT_DISPLAY)
        except RedemptionTimeoutException as e:
            logger.warning("Redemption of %s timed out: %s", request.ticket_id, e)
            return RedemptionStatus.FAILED, e.message, TIMEOUT_DISPLAY
        except RedemptionServiceException as e:
            logger.warning("Redemption of %s failed: %s", request.ticket_id, e)
            return RedemptionStatus.FAILED, e.message, SERVICE_UNAVAILABLE_DISPLAY
        except Exception as e:
            logger.exception("Unexpected error redeeming %s", request.ticket_id)
            return (RedemptionStatus.FAILED,
                    str(e) or e.__class__.__name__,
                    SERVICE_UNAVAILABLE_DISPLAY)

        if result.success:
            return RedemptionStatus.SUCCESS, result.message, ADMITTED_MESSAGE

        reason = result.message or REDEMPTION_FAILED_MESSAGE
        return RedemptionStatus.FAILED, reason, f"DENIED: {reason}"

    def _conclude(self, status: RedemptionStatus, ticket_id: str, method: ScanMethod,
                  record_message: str, display: str) -> ScanRecord:
        # Caller holds _lock
        record = ScanRecord.create_new(
            record_id=str(next(self._record_ids)),
            ticket_id=ticket_id,
            event_name=self.event_name,
            status=ScanStatus.SUCCESS if status is RedemptionStatus.SUCCESS else ScanStatus.FAILED,
            message=record_message,
            scan_method=method
        )
        evicted = self.ledger.append(record)
        if evicted is not None:
            logger.debug("History full; dropped record %s for %s", evicted.id, evicted.ticket_id)
        self._status = status
        self._message = self._with_cooldown(display)
        logger.info("Ticket %s %s: %s", ticket_id, record.status.value, record_message)
        return record

    def _with_cooldown(self, display: str) -> str:
        if not display.endswith(('.', '!', '?')):
            display += '.'
        return f"{display} Next scan in {self.cooldown_seconds:g}s."

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="redeem")
            return self._executor

    def _pause_decoding(self) -> None:
        if self.decode_source is not None:
            self.decode_source.stop()

    def _schedule_cooldown(self) -> None:
        with self._lock:
            if not self._status.is_terminal():
                return
            self._cooldown_timer = self._timer_factory(self.cooldown_seconds, self._end_cooldown)

    def _end_cooldown(self) -> None:
        with self._lock:
            if not self._status.is_terminal():
                return
            self._cooldown_timer = None
            self._status = RedemptionStatus.SCANNING
            self._message = READY_MESSAGE
            try:
                if self.decode_source is not None:
                    self.decode_source.start()
            except CameraUnavailableException as e:
                self._become_unavailable(e)

    def shutdown(self) -> None:
        """Cancel any pending cool-down and return to Idle"""
        with self._lock:
            if self._cooldown_timer is not None:
                self._cooldown_timer.cancel()
                self._cooldown_timer = None
            self._status = RedemptionStatus.IDLE
            self._attempt_seq += 1
            self._message = PROMPT_MESSAGE
            executor, self._executor = self._executor, None
        self._pause_decoding()
        if executor is not None:
            executor.shutdown(wait=False)


class ScannerSession:
    """
    One check-in session at a scanning station

    The session owns the scan history and the capture device. It opens
    the device on activation and releases it on teardown; use it as a
    context manager to guarantee release.
    """

    def __init__(self, redemption_client: RedemptionServiceClient,
                 decode_source: Optional[DecodeSource] = None,
                 event_name: str = "",
                 history_capacity: int = DEFAULT_HISTORY_CAPACITY,
                 cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
                 redeem_timeout: Optional[float] = DEFAULT_REDEEM_TIMEOUT,
                 nonce_policy: MissingNoncePolicy = MissingNoncePolicy.PASS_THROUGH,
                 timer_factory: Optional[Callable] = None):
        self.decode_source = decode_source
        self.ledger = InMemoryScanLedger(history_capacity)
        self.stats_aggregator = StatsAggregator()

        options = {}
        if timer_factory is not None:
            options['timer_factory'] = timer_factory
        self.state_machine = RedemptionStateMachine(
            redemption_client,
            self.ledger,
            decode_source=decode_source,
            event_name=event_name,
            cooldown_seconds=cooldown_seconds,
            redeem_timeout=redeem_timeout,
            nonce_policy=nonce_policy,
            **options
        )
        if decode_source is not None:
            decode_source.bind(self.state_machine.handle_decoded)
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def activate(self) -> RedemptionStatus:
        """
        Acquire the capture device and start scanning

        Returns:
            Status after activation: Scanning, or Unavailable if the
            device could not be acquired
        """
        if self._active:
            return self.state_machine.status

        if self.decode_source is not None:
            try:
                self.decode_source.open()
            except CameraUnavailableException as e:
                self.decode_source.close()
                self.state_machine.device_failed(e)
                return self.state_machine.status

        self._active = True
        self.state_machine.device_ready()
        return self.state_machine.status

    def teardown(self) -> None:
        """Stop scanning and release the capture device"""
        try:
            self.state_machine.shutdown()
        finally:
            if self.decode_source is not None:
                self.decode_source.close()
            self._active = False

    def submit_manual(self, ticket_id: str) -> Optional[ScanRecord]:
        return self.state_machine.submit_manual(ticket_id)

    def submit_payload(self, payload: str) -> Optional[ScanRecord]:
        return self.state_machine.handle_decoded(payload)

    def status(self) -> Dict:
        return self.state_machine.snapshot()

    def history(self) -> List[ScanRecord]:
        return self.ledger.snapshot()

    def stats(self) -> ScanStats:
        return self.stats_aggregator.compute(self.ledger.snapshot())

    def __enter__(self) -> 'ScannerSession':
        self.activate()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.teardown()
        return False
