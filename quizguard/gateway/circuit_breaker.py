"""Circuit Breaker: per-service availability state machine.

Implements the circuit breaker pattern per AI service:
  - CLOSED: normal operation, requests pass through
  - OPEN: too many failures, requests are rejected immediately
  - HALF_OPEN: testing recovery with a single probe request

Transitions:
  CLOSED    --(FAILURE_THRESHOLD consecutive failures)--> OPEN
  OPEN      --(RECOVERY_TIMEOUT elapsed, next check)-----> HALF_OPEN
  HALF_OPEN --(probe succeeds)---------------------------> CLOSED
  HALF_OPEN --(probe fails)------------------------------> OPEN
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from quizguard.core.exceptions import ServiceUnavailable
from quizguard.core.metrics import observe_breaker_state
from quizguard.gateway.types import BreakerConfig

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class ServiceHealthRecord:
    """Failure tracking for a single service's circuit."""

    failure_count: int = 0
    open_until: float = 0.0
    state: CircuitState = CircuitState.CLOSED
    probe_in_flight: bool = False
    total_failures: int = 0
    total_successes: int = 0


# Thresholds for opening the circuit
FAILURE_THRESHOLD = 5  # Consecutive failures to open circuit
RECOVERY_TIMEOUT = 60.0  # Seconds before trying half-open


class CircuitBreaker:
    """Per-service circuit breaker.

    Usage:
        cb = CircuitBreaker()

        cb.check_availability("openai")  # raises ServiceUnavailable when open
        try:
            ...
        except Exception:
            cb.record_failure("openai")
            raise
        cb.record_success("openai")
    """

    def __init__(
        self,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = config or BreakerConfig(failure_threshold=FAILURE_THRESHOLD, recovery_timeout=RECOVERY_TIMEOUT)
        self.failure_threshold = config.failure_threshold
        self.recovery_timeout = config.recovery_timeout
        self._clock = clock
        self._circuits: dict[str, ServiceHealthRecord] = {}
        self._lock = threading.Lock()

    def _get_circuit(self, service: str) -> ServiceHealthRecord:
        if service not in self._circuits:
            self._circuits[service] = ServiceHealthRecord()
        return self._circuits[service]

    def _transition(self, service: str, circuit: ServiceHealthRecord, state: CircuitState) -> None:
        circuit.state = state
        observe_breaker_state(service, state.value)

    def _open(self, service: str, circuit: ServiceHealthRecord, now: float) -> None:
        circuit.open_until = now + self.recovery_timeout
        circuit.probe_in_flight = False
        self._transition(service, circuit, CircuitState.OPEN)

    def check_availability(self, service: str) -> None:
        """Raise ServiceUnavailable unless a request to the service may proceed.

        An open circuit whose timeout has elapsed moves to HALF_OPEN and lets
        exactly one probe through; other callers are rejected until the probe
        outcome is recorded.
        """
        with self._lock:
            circuit = self._get_circuit(service)
            now = self._clock()

            if circuit.state == CircuitState.CLOSED:
                return

            if circuit.state == CircuitState.OPEN:
                if now < circuit.open_until:
                    retry_after = circuit.open_until - now
                    raise ServiceUnavailable(
                        f"Service {service} is temporarily unavailable. Please try again in {int(retry_after) + 1} seconds.",
                        service=service,
                        retry_after=retry_after,
                    )
                self._transition(service, circuit, CircuitState.HALF_OPEN)
                circuit.probe_in_flight = True
                logger.info("Circuit for %s transitioning to HALF_OPEN", service)
                return

            # HALF_OPEN: only one probe at a time
            if circuit.probe_in_flight:
                raise ServiceUnavailable(
                    f"Service {service} is recovering; a probe request is already in progress.",
                    service=service,
                )
            circuit.probe_in_flight = True

    def record_success(self, service: str) -> None:
        """Record a successful request; resets the failure counter and closes the circuit."""
        with self._lock:
            circuit = self._get_circuit(service)
            circuit.failure_count = 0
            circuit.total_successes += 1
            circuit.probe_in_flight = False

            if circuit.state != CircuitState.CLOSED:
                logger.info("Circuit for %s CLOSED (recovered)", service)
                self._transition(service, circuit, CircuitState.CLOSED)

    def record_failure(self, service: str) -> None:
        """Record a failure; opens the circuit at the threshold or on a failed probe."""
        with self._lock:
            circuit = self._get_circuit(service)
            circuit.failure_count += 1
            circuit.total_failures += 1
            now = self._clock()

            if circuit.state == CircuitState.HALF_OPEN:
                self._open(service, circuit, now)
                logger.warning("Circuit for %s re-OPENED after failed probe", service)
                return

            if circuit.state == CircuitState.CLOSED and circuit.failure_count >= self.failure_threshold:
                self._open(service, circuit, now)
                logger.warning(
                    "Circuit for %s OPENED after %d consecutive failures",
                    service,
                    circuit.failure_count,
                )

    def get_circuit_state(self, service: str) -> dict:
        """Get the current state of a service's circuit."""
        with self._lock:
            circuit = self._get_circuit(service)
            return {
                "service": service,
                "state": circuit.state.value,
                "failure_count": circuit.failure_count,
                "open_for_seconds": max(0.0, circuit.open_until - self._clock())
                if circuit.state == CircuitState.OPEN
                else 0.0,
                "total_failures": circuit.total_failures,
                "total_successes": circuit.total_successes,
            }

    def get_status(self) -> dict[str, dict]:
        """Circuit states for every service seen so far."""
        return {service: self.get_circuit_state(service) for service in list(self._circuits)}

    def reset(self, service: str) -> None:
        """Manually reset a service's circuit to CLOSED."""
        with self._lock:
            circuit = self._get_circuit(service)
            circuit.failure_count = 0
            circuit.open_until = 0.0
            circuit.probe_in_flight = False
            self._transition(service, circuit, CircuitState.CLOSED)
        logger.info("Circuit for %s manually RESET", service)

    def reset_all(self) -> None:
        """Forget all circuits."""
        with self._lock:
            self._circuits.clear()
        logger.info("All circuits RESET")
