"""
Healing Resilience Module
Per-site circuit breaker and retry decisions for failed healing attempts:
- Circuit breaker (CLOSED / OPEN / HALF_OPEN) persisted on the site record
- Retry eligibility by error classification
- Backoff delays by strategy
"""

import logging
import math
import re
import time
from typing import Dict, Any, Optional

from wp_healer.core.exceptions import RecordNotFound
from wp_healer.core.models import (
    Target, Execution, ExecutionStatus, CircuitBreakerState, RetryStrategy
)
from wp_healer.core.store import RecordStore

logger = logging.getLogger(__name__)

NON_RETRYABLE_PATTERNS = [
    re.compile(r'authentication', re.IGNORECASE),
    re.compile(r'permission denied', re.IGNORECASE),
    re.compile(r'not found', re.IGNORECASE),
    re.compile(r'invalid', re.IGNORECASE),
    re.compile(r'syntax error', re.IGNORECASE)
]

RETRYABLE_PATTERNS = [
    re.compile(r'timeout', re.IGNORECASE),
    re.compile(r'connection', re.IGNORECASE),
    re.compile(r'network', re.IGNORECASE),
    re.compile(r'ECONNREFUSED', re.IGNORECASE),
    re.compile(r'ETIMEDOUT', re.IGNORECASE),
    re.compile(r'temporary', re.IGNORECASE),
    re.compile(r'rate limit', re.IGNORECASE)
]


def is_retryable_error(message: str) -> bool:
    """
    Classify an error message

    Non-retryable patterns are checked first and take precedence.

    Args:
        message (str): Error message

    Returns:
        bool: True if the failure is worth retrying
    """
    message = message or ''
    if any(pattern.search(message) for pattern in NON_RETRYABLE_PATTERNS):
        return False
    return any(pattern.search(message) for pattern in RETRYABLE_PATTERNS)


def fibonacci(n: int) -> int:
    """fib(1) = fib(2) = 1"""
    if n <= 1:
        return 1
    a, b = 1, 1
    for _ in range(2, n):
        a, b = b, a + b
    return b


def compute_retry_delay(strategy: Optional[RetryStrategy], attempt: int, base_delay_ms: int) -> int:
    """
    Delay before the next attempt

    Args:
        strategy (RetryStrategy): Backoff strategy, unknown strategies use the base delay
        attempt (int): Number of the attempt that just failed, starting at 1
        base_delay_ms (int): Base delay in milliseconds

    Returns:
        int: Delay in milliseconds
    """
    if strategy == RetryStrategy.IMMEDIATE:
        return 0
    if strategy == RetryStrategy.LINEAR:
        return base_delay_ms * attempt
    if strategy == RetryStrategy.EXPONENTIAL:
        return base_delay_ms * int(math.pow(2, attempt - 1))
    if strategy == RetryStrategy.FIBONACCI:
        return base_delay_ms * fibonacci(attempt)
    return base_delay_ms


class CircuitBreakerService:
    """
    Circuit breaker persisted on each site record.

    CLOSED allows healing. OPEN denies it until reset_at, after which the
    breaker moves to HALF_OPEN and allows a single trial attempt. A success
    always closes the breaker; a failed trial re-opens it.
    """

    def __init__(self, store: RecordStore, reset_minutes: float = 30):
        """
        Initialize the circuit breaker service

        Args:
            store (RecordStore): Record store holding the sites
            reset_minutes (float): Time an opened breaker stays OPEN
        """
        self.store = store
        self.reset_minutes = reset_minutes

    @classmethod
    def from_config(cls, store: RecordStore, config) -> 'CircuitBreakerService':
        return cls(store, config.get('retry.circuit_breaker_reset_minutes', 30))

    def _load(self, site_id: str) -> Target:
        site = self.store.get('sites', site_id)
        if site is None:
            raise RecordNotFound('Site', site_id)
        return site

    def can_heal(self, site_id: str) -> Dict[str, Any]:
        """
        Check whether an automatic healing attempt is allowed, claiming the
        HALF_OPEN trial when it is granted

        Args:
            site_id (str): Site identifier

        Returns:
            Dict[str, Any]: 'allowed', 'state' and 'reason' when denied
        """
        site = self._load(site_id)
        state = site.circuit_breaker_state

        if state == CircuitBreakerState.CLOSED:
            return {'allowed': True, 'state': state.value}

        if state == CircuitBreakerState.OPEN:
            now = time.time()
            if site.circuit_breaker_reset_at is not None and now < site.circuit_breaker_reset_at:
                remaining = math.ceil((site.circuit_breaker_reset_at - now) / 60)
                logger.warning(f"Circuit breaker OPEN for site {site_id}, cooldown remaining: {remaining} minutes")
                return {
                    'allowed': False,
                    'state': state.value,
                    'reason': (
                        f"Circuit breaker is open. Too many consecutive failures ({site.consecutive_failures}). "
                        f"Healing will be available in {remaining} minutes."
                    )
                }
            self.to_half_open(site)

        if site.half_open_trial:
            return {
                'allowed': False,
                'state': CircuitBreakerState.HALF_OPEN.value,
                'reason': 'Circuit breaker is half-open and its trial attempt is already in progress.'
            }

        site.half_open_trial = True
        self.store.upsert('sites', site)
        logger.info(f"Circuit breaker in HALF_OPEN state for site {site_id}, allowing test healing")
        return {'allowed': True, 'state': CircuitBreakerState.HALF_OPEN.value}

    def record_success(self, site_id: str):
        """Close the breaker and zero the failure counter"""
        site = self._load(site_id)
        previous = site.circuit_breaker_state
        site.circuit_breaker_state = CircuitBreakerState.CLOSED
        site.circuit_breaker_reset_at = None
        site.consecutive_failures = 0
        site.half_open_trial = False
        self.store.upsert('sites', site)
        if previous != CircuitBreakerState.CLOSED:
            logger.info(f"Circuit breaker transitioned from {previous.value} to CLOSED for site {site_id}")

    def record_failure(self, site_id: str) -> CircuitBreakerState:
        """
        Count a failed healing attempt

        Args:
            site_id (str): Site identifier

        Returns:
            CircuitBreakerState: Breaker state after the failure
        """
        site = self._load(site_id)
        site.consecutive_failures += 1
        logger.warning(
            f"Recording failed healing for site {site_id} "
            f"(failures: {site.consecutive_failures}/{site.max_healing_attempts}, "
            f"state: {site.circuit_breaker_state.value})"
        )

        if site.circuit_breaker_state == CircuitBreakerState.HALF_OPEN:
            self._open(site, 'Trial attempt failed in HALF_OPEN state')
        elif site.circuit_breaker_state == CircuitBreakerState.CLOSED and \
                site.consecutive_failures >= site.max_healing_attempts:
            self._open(site, f"{site.consecutive_failures} consecutive failures")
        else:
            self.store.upsert('sites', site)
        return site.circuit_breaker_state

    def open(self, site_id: str, reason: str):
        """Open the breaker for a site"""
        self._open(self._load(site_id), reason)

    def release_trial(self, site_id: str):
        """Give back a HALF_OPEN trial that was claimed but never attempted"""
        site = self._load(site_id)
        if site.half_open_trial:
            site.half_open_trial = False
            self.store.upsert('sites', site)
            logger.info(f"Released unused HALF_OPEN trial for site {site_id}")

    def reset(self, site_id: str):
        """Manually close the breaker, also zeroing the healing attempt counter"""
        site = self._load(site_id)
        site.circuit_breaker_state = CircuitBreakerState.CLOSED
        site.circuit_breaker_reset_at = None
        site.consecutive_failures = 0
        site.healing_attempts = 0
        site.half_open_trial = False
        self.store.upsert('sites', site)
        logger.info(f"Circuit breaker manually reset for site {site_id}")

    def get_status(self, site_id: str) -> Dict[str, Any]:
        """Breaker status without claiming a trial attempt"""
        site = self._load(site_id)
        state = site.circuit_breaker_state
        if state == CircuitBreakerState.CLOSED:
            can_heal = True
        elif state == CircuitBreakerState.HALF_OPEN:
            can_heal = not site.half_open_trial
        else:
            can_heal = site.circuit_breaker_reset_at is None or time.time() >= site.circuit_breaker_reset_at
        return {
            'state': state.value,
            'consecutive_failures': site.consecutive_failures,
            'max_attempts': site.max_healing_attempts,
            'reset_at': site.circuit_breaker_reset_at,
            'last_opened_at': site.last_circuit_breaker_open,
            'can_heal': can_heal
        }

    def _open(self, site: Target, reason: str):
        now = time.time()
        site.circuit_breaker_state = CircuitBreakerState.OPEN
        site.circuit_breaker_reset_at = now + self.reset_minutes * 60
        site.last_circuit_breaker_open = now
        site.half_open_trial = False
        self.store.upsert('sites', site)

        reset_at = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(site.circuit_breaker_reset_at))
        self.store.create_alert(
            'circuit_breaker',
            'ERROR',
            f"Circuit breaker opened for site {site.id} ({reason}). Will reset at {reset_at}"
        )

    def to_half_open(self, site: Target, claim_trial: bool = False):
        """Move an elapsed OPEN breaker to HALF_OPEN, optionally claiming its trial attempt"""
        site.circuit_breaker_state = CircuitBreakerState.HALF_OPEN
        site.circuit_breaker_reset_at = None
        site.half_open_trial = claim_trial
        self.store.upsert('sites', site)
        logger.info(f"Circuit breaker transitioned to HALF_OPEN for site {site.id}")


class RetryService:
    """
    RetryService decides, after a failed attempt, whether and when to retry
    and creates the linked retry execution.
    """

    def __init__(self, store: RecordStore, breaker: CircuitBreakerService):
        self.store = store
        self.breaker = breaker

    def should_retry(self, execution: Execution, error_message: str) -> Dict[str, Any]:
        """
        Decide whether a failed execution is retried

        Args:
            execution (Execution): Failed execution
            error_message (str): Failure reason

        Returns:
            Dict[str, Any]: 'should_retry', 'delay_ms', 'reason', 'attempt_number'
        """
        site = self.store.get('sites', execution.site_id)
        if site is None:
            return self._decision(False, 0, 'Site not found', execution.attempt_number)

        if site.circuit_breaker_state == CircuitBreakerState.OPEN:
            if site.circuit_breaker_reset_at is not None and time.time() >= site.circuit_breaker_reset_at:
                self.breaker.to_half_open(site, claim_trial=True)
                return self._decision(True, 0, 'Circuit breaker transitioned to HALF_OPEN, testing recovery',
                                      execution.attempt_number + 1)
            return self._decision(False, 0, 'Circuit breaker is OPEN', execution.attempt_number)

        if execution.attempt_number >= execution.max_attempts:
            self.breaker.open(site.id, 'Max attempts reached')
            return self._decision(False, 0, 'Max attempts reached', execution.attempt_number)

        if not is_retryable_error(error_message):
            return self._decision(False, 0, 'Error is not retryable', execution.attempt_number)

        delay_ms = compute_retry_delay(site.retry_strategy, execution.attempt_number, site.retry_base_delay_ms)
        return self._decision(True, delay_ms, f"Retrying with {site.retry_strategy.value} strategy",
                              execution.attempt_number + 1)

    def _decision(self, should_retry: bool, delay_ms: int, reason: str, attempt_number: int) -> Dict[str, Any]:
        return {
            'should_retry': should_retry,
            'delay_ms': delay_ms,
            'reason': reason,
            'attempt_number': attempt_number
        }

    def create_retry_execution(self, original: Execution, attempt_number: int, retry_reason: str) -> Execution:
        """
        Create a PENDING execution linked to the failed one

        Args:
            original (Execution): Failed execution
            attempt_number (int): Number of the new attempt
            retry_reason (str): Why the retry was scheduled

        Returns:
            Execution: Stored retry execution
        """
        retry = Execution(
            original.site_id,
            original.trigger,
            original.triggered_by,
            original.diagnosis_type,
            ExecutionStatus.PENDING,
            diagnosis_details=original.diagnosis_details,
            confidence=original.confidence,
            suggested_action=original.suggested_action,
            suggested_commands=original.suggested_commands,
            pattern_id=original.pattern_id,
            custom_commands=original.custom_commands,
            attempt_number=attempt_number,
            max_attempts=original.max_attempts,
            previous_attempt_id=original.id,
            retry_reason=retry_reason,
            diagnosed_at=original.diagnosed_at
        )
        retry.add_log('INFO', f"Retry attempt {attempt_number} - {retry_reason}")
        self.store.upsert('executions', retry)
        logger.info(f"Created retry execution {retry.id} for {original.id} (attempt {attempt_number})")
        return retry
