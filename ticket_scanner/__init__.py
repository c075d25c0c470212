"""
Ticket Scanner Package

An event check-in station built with Flask. Tickets are admitted by
scanning their QR code or typing their ticket ID; each attempt is redeemed
exactly once against the ticketing backend and recorded in a bounded
session history.

Main Components:
- models: Scan records, redemption requests/results and statistics
- repositories: Bounded in-memory scan history
- clients: Redemption service client contract and HTTP adapter
- decoder: Camera-backed QR decode source
- services: Redemption state machine, stats aggregator and scanner session
- exceptions: Custom exception classes for error handling
- app: Main Flask application class

Usage:
    from ticket_scanner import create_app

    app = create_app({'EVENT_NAME': 'Hack Night'})
    app.run()
"""

__version__ = "1.0.0"
__author__ = "Ticket Scanner Team"

# Import main components for easy access
from .app import create_app, create_development_app, create_production_app
from .models import (
    RedemptionStatus,
    ScanStatus,
    ScanMethod,
    MissingNoncePolicy,
    ScanRecord,
    RedemptionRequest,
    RedemptionResult,
    ScanStats
)
from .services import RedemptionStateMachine, StatsAggregator, ScannerSession
from .repositories import ScanHistoryRepository, InMemoryScanLedger
from .clients import RedemptionServiceClient, HTTPRedemptionClient
from .decoder import DecodeSource, CameraDecodeSource
from .exceptions import (
    TicketScannerException,
    DataValidationException,
    EmptyTicketIdException,
    InvalidQRCodeException,
    RedemptionServiceException,
    RedemptionTimeoutException,
    CameraUnavailableException
)

__all__ = [
    # App factory functions
    'create_app',
    'create_development_app',
    'create_production_app',

    # Data models
    'RedemptionStatus',
    'ScanStatus',
    'ScanMethod',
    'MissingNoncePolicy',
    'ScanRecord',
    'RedemptionRequest',
    'RedemptionResult',
    'ScanStats',

    # Services
    'RedemptionStateMachine',
    'StatsAggregator',
    'ScannerSession',

    # Collaborators
    'ScanHistoryRepository',
    'InMemoryScanLedger',
    'RedemptionServiceClient',
    'HTTPRedemptionClient',
    'DecodeSource',
    'CameraDecodeSource',

    # Exceptions
    'TicketScannerException',
    'DataValidationException',
    'EmptyTicketIdException',
    'InvalidQRCodeException',
    'RedemptionServiceException',
    'RedemptionTimeoutException',
    'CameraUnavailableException'
]
