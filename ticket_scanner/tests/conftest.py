"""
Shared fakes and fixtures for the Ticket Scanner tests

The fakes stand in for the three things a scanner session talks to:
the cool-down timer, the capture device and the redemption service.
"""

import threading

import pytest

from ticket_scanner.clients import RedemptionServiceClient
from ticket_scanner.decoder import DecodeSource
from ticket_scanner.exceptions import CameraUnavailableException
from ticket_scanner.models import RedemptionResult
from ticket_scanner.repositories import InMemoryScanLedger
from ticket_scanner.services import RedemptionStateMachine


class FakeTimer:
    """Timer that only fires when the test says so"""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled and not self.fired:
            self.fired = True
            self.function()


class FakeTimerFactory:
    """Collects timers started by the state machine"""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_all(self):
        for timer in self.pending:
            timer.fire()


class FakeDecodeSource(DecodeSource):
    """Decode source driven by ``emit`` instead of a camera"""

    def __init__(self, fail_on_open=False):
        super().__init__()
        self.fail_on_open = fail_on_open
        self.opened = False
        self.closed = False
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0

    def open(self):
        if self.fail_on_open:
            raise CameraUnavailableException("fake", "permission denied")
        self.opened = True

    def close(self):
        self.running = False
        self.closed = True
        self.opened = False

    def start(self):
        self.start_calls += 1
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self.running = False

    def is_running(self):
        return self.running

    def emit(self, payload):
        """Deliver a payload the way the camera thread would"""
        self._emit(payload)


class StubRedemptionClient(RedemptionServiceClient):
    """
    Redemption client with scripted answers

    ``responses`` items are RedemptionResult instances or exceptions to
    raise; the last item repeats once the list is exhausted.
    """

    def __init__(self, *responses, on_call=None):
        self.responses = list(responses) or [RedemptionResult(True, "Ticket redeemed successfully")]
        self.on_call = on_call
        self.calls = []
        self.closed = False

    def redeem(self, ticket_id, nonce):
        self.calls.append((ticket_id, nonce))
        if self.on_call is not None:
            self.on_call(ticket_id, nonce)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class BlockingRedemptionClient(RedemptionServiceClient):
    """Redemption client that holds every call until released"""

    def __init__(self, result=None):
        self.result = result or RedemptionResult(True, "ok")
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = []

    def redeem(self, ticket_id, nonce):
        self.calls.append((ticket_id, nonce))
        self.entered.set()
        self.release.wait(timeout=5)
        return self.result


class GatedRedemptionClient(RedemptionServiceClient):
    """Redemption client that holds each ticket until its gate opens"""

    def __init__(self, *ticket_ids):
        self.entered = {ticket_id: threading.Event() for ticket_id in ticket_ids}
        self.gates = {ticket_id: threading.Event() for ticket_id in ticket_ids}

    def redeem(self, ticket_id, nonce):
        self.entered[ticket_id].set()
        self.gates[ticket_id].wait(timeout=5)
        return RedemptionResult(True, f"{ticket_id} redeemed")


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def decode_source():
    return FakeDecodeSource()


@pytest.fixture
def ledger():
    return InMemoryScanLedger(capacity=20)


@pytest.fixture
def make_machine(timers, decode_source, ledger):
    """Build a state machine already in Scanning"""
    machines = []

    def _make(client, **kwargs):
        kwargs.setdefault('event_name', "Tech Conference 2024")
        kwargs.setdefault('timer_factory', timers)
        machine = RedemptionStateMachine(client, ledger, decode_source=decode_source, **kwargs)
        machine.device_ready()
        machines.append(machine)
        return machine

    yield _make
    for machine in machines:
        machine.shutdown()
