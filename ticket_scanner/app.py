"""
Main Application Module for Ticket Scanner

This module contains the Flask application class that wires the scanner
session to its collaborators and exposes the scanner's observable state
over HTTP. It serves as the entry point for a check-in station.
"""

import logging
import os
from typing import Optional

from flask import Flask, jsonify, request

from .clients import DEFAULT_REDEEM_PATH, HTTPRedemptionClient, RedemptionServiceClient
from .decoder import CameraDecodeSource, DecodeSource
from .exceptions import (
    CameraUnavailableException,
    DataValidationException,
    EmptyTicketIdException,
    TicketScannerException
)
from .models import MissingNoncePolicy
from .services import ScannerSession


logger = logging.getLogger(__name__)

ENV_PREFIX = "TICKET_SCANNER_"

DEFAULT_CONFIG = {
    'SECRET_KEY': 'ticket-scanner-dev',
    'DEBUG': True,
    'LOG_LEVEL': 'INFO',
    'EVENT_NAME': 'Tech Conference',
    'REDEMPTION_SERVICE_URL': 'http://localhost:5000',
    'REDEMPTION_PATH': DEFAULT_REDEEM_PATH,
    'REDEMPTION_SERVICE_TOKEN': None,
    'REDEMPTION_TIMEOUT': 10.0,
    'COOLDOWN_SECONDS': 3.0,
    'HISTORY_CAPACITY': 20,
    'CAMERA_ENABLED': True,
    'CAMERA_DEVICE_ID': 0,
    'MISSING_NONCE_POLICY': MissingNoncePolicy.PASS_THROUGH.value,
}


def _coerce(key: str, raw: str):
    """Convert an environment string to the type of the default value"""
    default = DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def load_environment_config() -> dict:
    """
    Read configuration overrides from ``TICKET_SCANNER_*`` variables

    Returns:
        Dictionary of the keys that were set in the environment

    Raises:
        DataValidationException: If a numeric variable cannot be parsed
    """
    overrides = {}
    for key in DEFAULT_CONFIG:
        raw = os.environ.get(ENV_PREFIX + key)
        if raw is None:
            continue
        try:
            overrides[key] = _coerce(key, raw)
        except ValueError:
            raise DataValidationException(ENV_PREFIX + key, f"invalid value {raw!r}")
    return overrides


class TicketScannerApp:
    """
    Main Flask application class for Ticket Scanner

    This class builds the scanner session for one event and handles the
    HTTP interface used by the station's UI.
    """

    def __init__(self, config: Optional[dict] = None,
                 redemption_client: Optional[RedemptionServiceClient] = None,
                 decode_source: Optional[DecodeSource] = None,
                 timer_factory=None):
        """
        Initialize the Ticket Scanner application

        Args:
            config: Optional configuration dictionary
            redemption_client: Overrides the HTTP client built from config
            decode_source: Overrides the camera built from config
            timer_factory: Overrides the cool-down timer, used by tests
        """
        # Initialize Flask app
        self.app = Flask(__name__)
        self.config = self._configure_app(config)
        self._configure_logging()

        # Initialize collaborators
        self.redemption_client = redemption_client or HTTPRedemptionClient(
            self.config['REDEMPTION_SERVICE_URL'],
            path=self.config['REDEMPTION_PATH'],
            token=self.config['REDEMPTION_SERVICE_TOKEN'],
            timeout=self.config['REDEMPTION_TIMEOUT']
        )
        if decode_source is None and self.config['CAMERA_ENABLED']:
            decode_source = CameraDecodeSource(device_id=self.config['CAMERA_DEVICE_ID'])

        # Initialize session
        try:
            nonce_policy = MissingNoncePolicy(self.config['MISSING_NONCE_POLICY'])
        except ValueError:
            raise DataValidationException(
                "MISSING_NONCE_POLICY",
                f"unknown policy {self.config['MISSING_NONCE_POLICY']!r}"
            )
        self.session = ScannerSession(
            self.redemption_client,
            decode_source=decode_source,
            event_name=self.config['EVENT_NAME'],
            history_capacity=self.config['HISTORY_CAPACITY'],
            cooldown_seconds=self.config['COOLDOWN_SECONDS'],
            redeem_timeout=self.config['REDEMPTION_TIMEOUT'],
            nonce_policy=nonce_policy,
            timer_factory=timer_factory
        )

        # Register routes
        self._register_routes()

        # Register error handlers
        self._register_error_handlers()

    def _configure_app(self, config: Optional[dict] = None) -> dict:
        """
        Configure Flask application settings

        Defaults are overridden by the environment, which is overridden
        by the explicit configuration dictionary.

        Args:
            config: Optional configuration dictionary

        Returns:
            The merged configuration
        """
        merged = dict(DEFAULT_CONFIG)
        merged.update(load_environment_config())
        if config:
            merged.update(config)

        self.app.secret_key = merged['SECRET_KEY']
        self.app.config['DEBUG'] = merged['DEBUG']
        self.app.config.update(merged)
        return merged

    def _configure_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, str(self.config['LOG_LEVEL']).upper(), logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
        )

    def _register_routes(self) -> None:
        """Register all Flask routes"""
        self.app.add_url_rule("/health", "health", self.health)
        self.app.add_url_rule("/scanner/status", "scanner_status", self.scanner_status)
        self.app.add_url_rule("/scanner/history", "scanner_history", self.scanner_history)
        self.app.add_url_rule("/scanner/stats", "scanner_stats", self.scanner_stats)
        self.app.add_url_rule("/scanner/redeem", "redeem", self.redeem, methods=["POST"])
        self.app.add_url_rule("/scanner/decode", "decode", self.decode, methods=["POST"])

    def _register_error_handlers(self) -> None:
        """Register error handlers for custom exceptions"""

        @self.app.errorhandler(DataValidationException)
        def handle_validation_error(e):
            return self._error_response(e, 400)

        @self.app.errorhandler(CameraUnavailableException)
        def handle_camera_unavailable(e):
            return self._error_response(e, 503)

        @self.app.errorhandler(TicketScannerException)
        def handle_ticket_scanner_exception(e):
            logger.error("Unhandled scanner error: %s", e)
            return self._error_response(e, 500)

    def _error_response(self, error: TicketScannerException, status_code: int):
        body = {
            "error": error.message,
            "error_code": error.error_code,
            "scanner": self.session.status()
        }
        return jsonify(body), status_code

    def health(self):
        """
        Health check route

        Returns:
            JSON with the service state and scanner status
        """
        return jsonify({
            "status": "healthy",
            "service": "ticket-scanner",
            "scanner": self.session.status()['status']
        })

    def scanner_status(self):
        """Current status and status message"""
        return jsonify(self.session.status())

    def scanner_history(self):
        """Scan history, most recent first"""
        return jsonify({
            "records": [record.to_dict() for record in self.session.history()],
            "capacity": self.session.ledger.capacity
        })

    def scanner_stats(self):
        """Statistics over the current scan history"""
        return jsonify(self.session.stats().to_dict())

    def redeem(self):
        """
        Manual redemption route

        Accepts ``ticket_id`` as JSON or form data.

        Returns:
            JSON with the attempt's record, 400 for an empty ticket ID,
            409 if another attempt is in progress
        """
        data = self._request_data()
        ticket_id = data.get("ticket_id", "") or ""

        try:
            record = self.session.submit_manual(str(ticket_id))
        except EmptyTicketIdException as e:
            return self._error_response(e, 400)

        return self._attempt_response(record)

    def decode(self):
        """
        Decoded payload route

        Accepts a ``payload`` decoded by a browser-side scanner and treats
        it exactly like a camera decode.
        """
        data = self._request_data()
        payload = data.get("payload")
        if not isinstance(payload, str) or not payload:
            raise DataValidationException("payload", "a decoded QR payload is required")

        return self._attempt_response(self.session.submit_payload(payload))

    def _request_data(self):
        """JSON object body, falling back to form data"""
        data = request.get_json(silent=True)
        if data is None:
            return request.form
        if not isinstance(data, dict):
            raise DataValidationException("body", "expected a JSON object")
        return data

    def _attempt_response(self, record):
        if record is None:
            return jsonify({
                "accepted": False,
                "scanner": self.session.status()
            }), 409
        return jsonify({
            "accepted": True,
            "record": record.to_dict(),
            "scanner": self.session.status()
        })

    def run(self, host: str = '127.0.0.1', port: int = 8000, debug: Optional[bool] = None) -> None:
        """
        Activate the scanner and run the Flask application

        The capture device is released when the server stops.

        Args:
            host: Host address to bind to
            port: Port number to listen on
            debug: Debug mode (overrides config if provided)
        """
        if debug is not None:
            self.app.config['DEBUG'] = debug

        try:
            with self.session:
                # The reloader would open the camera twice
                self.app.run(host=host, port=port, debug=self.app.config['DEBUG'],
                             use_reloader=False)
        finally:
            self.redemption_client.close()


def create_app(config: Optional[dict] = None, **kwargs) -> TicketScannerApp:
    """
    Factory function to create and configure the application

    The scanner session is activated here, so the returned app is ready
    to serve under any WSGI host. ``run()`` releases the device on exit.

    Args:
        config: Optional configuration dictionary
        **kwargs: Collaborator overrides passed to TicketScannerApp

    Returns:
        Configured TicketScannerApp instance with an active session
    """
    scanner_app = TicketScannerApp(config, **kwargs)
    scanner_app.session.activate()
    return scanner_app


def create_development_app() -> TicketScannerApp:
    """
    Create application configured for development

    Returns:
        TicketScannerApp configured for development
    """
    dev_config = {
        'DEBUG': True,
        'LOG_LEVEL': 'DEBUG',
        'SECRET_KEY': 'dev-secret-key-change-in-production'
    }
    return create_app(dev_config)


def create_production_app() -> TicketScannerApp:
    """
    Create application configured for production

    Returns:
        TicketScannerApp configured for production
    """
    prod_config = {
        'DEBUG': False,
        'SECRET_KEY': os.environ.get("FLASK_SECRET_KEY", "fallback_secret")
    }
    return create_app(prod_config)


def main() -> None:
    """Console entry point; production settings unless DEBUG is set"""
    if os.environ.get(ENV_PREFIX + "DEBUG", "False").lower() == "true":
        app = create_development_app()
    else:
        app = create_production_app()
    app.run(host=os.environ.get("HOST", "127.0.0.1"), port=int(os.environ.get("PORT", 8000)))


if __name__ == "__main__":
    main()
