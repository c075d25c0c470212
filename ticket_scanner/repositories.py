"""
Scan History Repository Classes for Ticket Scanner Application

This module implements the Repository pattern for the scan history.
It provides an abstraction layer between the redemption state machine and
the storage of scan records. Scan history lives only as long as the scanner
session, so the one concrete repository is a bounded in-memory ledger.
"""

import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import List, Optional

from .exceptions import DataValidationException
from .models import ScanRecord


DEFAULT_HISTORY_CAPACITY = 20


class ScanHistoryRepository(ABC):
    """
    Abstract base class for scan history repositories

    This class defines the interface that all scan history stores
    must implement, following the Repository pattern.
    """

    @abstractmethod
    def append(self, record: ScanRecord) -> Optional[ScanRecord]:
        """
        Insert a record at the head of the history

        Args:
            record: The scan record to store

        Returns:
            The record evicted to stay within capacity, if any
        """
        pass

    @abstractmethod
    def snapshot(self) -> List[ScanRecord]:
        """
        Copy of the current history

        Returns:
            List of records, most recent first
        """
        pass

    @abstractmethod
    def clear(self) -> int:
        """
        Remove all records

        Returns:
            Number of records that were cleared
        """
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryScanLedger(ScanHistoryRepository):
    """
    Bounded in-memory scan ledger

    Records are inserted at the head; once the ledger holds ``capacity``
    records, every insertion evicts the oldest one. All operations are
    guarded by a lock so HTTP handlers can read while the state machine
    appends.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY):
        """
        Initialize in-memory ledger

        Args:
            capacity: Maximum number of records kept

        Raises:
            DataValidationException: If capacity is smaller than one
        """
        if not isinstance(capacity, int) or capacity < 1:
            raise DataValidationException(
                "history_capacity",
                f"must be a positive integer, got {capacity!r}"
            )
        self.capacity = capacity
        self._records = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, record: ScanRecord) -> Optional[ScanRecord]:
        with self._lock:
            evicted = self._records[-1] if len(self._records) == self.capacity else None
            self._records.appendleft(record)
            return evicted

    def snapshot(self) -> List[ScanRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
