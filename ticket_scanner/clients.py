"""
Redemption Service Clients for Ticket Scanner Application

The state machine only depends on ``RedemptionServiceClient.redeem``.
``HTTPRedemptionClient`` talks to the ticketing backend over HTTP.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from .exceptions import RedemptionServiceException, RedemptionTimeoutException
from .models import RedemptionResult


logger = logging.getLogger(__name__)

DEFAULT_REDEEM_PATH = "/api/tickets/redeem"


class RedemptionServiceClient(ABC):
    """
    Abstract redemption service

    Implementations settle exactly once per call: they return a
    RedemptionResult or raise.
    """

    @abstractmethod
    def redeem(self, ticket_id: str, nonce: str) -> RedemptionResult:
        """
        Mark a ticket as used

        Args:
            ticket_id: Ticket to redeem
            nonce: Nonce from the QR payload, or the manual sentinel

        Returns:
            RedemptionResult with the service's verdict

        Raises:
            RedemptionServiceException: If the service could not be asked
        """
        pass

    def close(self) -> None:
        """Release any held connections"""


class HTTPRedemptionClient(RedemptionServiceClient):
    """
    Redemption client backed by the ticketing REST API

    Posts ``{"ticketId": ..., "nonce": ...}`` and expects
    ``{"success": bool, "message": str}`` back. The backend answers
    rejected tickets with a 4xx status and the same JSON shape, so any
    body carrying ``success`` is treated as a verdict.
    """

    def __init__(self, base_url: str, path: str = DEFAULT_REDEEM_PATH,
                 token: Optional[str] = None, timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize HTTP redemption client

        Args:
            base_url: Root URL of the ticketing backend
            path: Path of the redeem endpoint
            token: Optional bearer token sent with every request
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.path = path
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport
        )

    def redeem(self, ticket_id: str, nonce: str) -> RedemptionResult:
        try:
            response = self._client.post(
                self.path,
                json={"ticketId": ticket_id, "nonce": nonce}
            )
        except httpx.TimeoutException:
            raise RedemptionTimeoutException(self.timeout)
        except httpx.HTTPError as e:
            raise RedemptionServiceException(f"{e.__class__.__name__}: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and "success" in body:
            result = RedemptionResult.from_dict(body)
            logger.debug("Redeem %s -> HTTP %s success=%s",
                         ticket_id, response.status_code, result.success)
            return result

        if response.is_success:
            raise RedemptionServiceException(
                "response did not contain a redemption verdict",
                response.status_code
            )
        raise RedemptionServiceException(
            f"HTTP {response.status_code} {response.reason_phrase}".strip(),
            response.status_code
        )

    def close(self) -> None:
        self._client.close()
