"""
Circuit breaker pattern with Redis-backed state and health tracking.

Each breaker tracks failures per dependency in Redis, so every worker process
sees the same state. States:
  - CLOSED    → normal operation, calls pass through
  - OPEN      → too many failures, calls short-circuit with CircuitOpenError
  - HALF_OPEN → after reset_timeout, allows one probe call

Health metrics are stored in Redis hashes for the /api/stats endpoint.
"""
import logging
import time

logger = logging.getLogger('services.circuit_breaker')

# State constants
CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN, dependency unavailable")


class CircuitBreaker:
    """
    Redis-backed circuit breaker.

    Usage:
        cb = CircuitBreaker('eligibility_source', redis_client, failure_threshold=3)
        rows = cb.call(conn.execute, query, params)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout  # seconds before OPEN → HALF_OPEN

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    # ── State management ──────────────────────────────────────────────

    @property
    def state(self):
        try:
            s = self.redis.get(self._key('state'))
            if s is None:
                return CLOSED
            if s == OPEN:
                last = self.redis.get(self._key('last_failure'))
                if last and (time.time() - float(last)) > self.reset_timeout:
                    self._set_state(HALF_OPEN)
                    return HALF_OPEN
            return s
        except Exception:
            return CLOSED  # Redis down: let calls through, the dependency decides

    def _set_state(self, new_state):
        try:
            self.redis.set(self._key('state'), new_state)
        except Exception:
            logger.debug("Could not persist state for circuit '%s'", self.name)

    @property
    def failure_count(self):
        try:
            val = self.redis.get(self._key('failures'))
            return int(val) if val else 0
        except Exception:
            return 0

    def retry_after(self):
        """Seconds until an OPEN breaker lets a probe through, or None."""
        try:
            last = self.redis.get(self._key('last_failure'))
        except Exception:
            return None
        if not last:
            return None
        return max(0.0, self.reset_timeout - (time.time() - float(last)))

    # ── Health metrics ────────────────────────────────────────────────

    def _record(self, outcome, error_msg=''):
        try:
            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('health'), outcome, 1)
            pipe.hset(self._key('health'), f'last_{outcome}', str(time.time()))
            if error_msg:
                pipe.hset(self._key('health'), 'last_error', str(error_msg)[:200])
            pipe.execute()
        except Exception:
            logger.debug("Could not record %s for circuit '%s'", outcome, self.name)

    def get_health(self):
        """Return health metrics dict for this dependency."""
        try:
            data = self.redis.hgetall(self._key('health'))
            return {
                'name': self.name,
                'state': self.state,
                'failure_count': self.failure_count,
                'failure_threshold': self.failure_threshold,
                'reset_timeout': self.reset_timeout,
                'total_success': int(data.get('success', 0)),
                'total_failure': int(data.get('failure', 0)),
                'last_success': float(data['last_success']) if data.get('last_success') else None,
                'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
                'last_error': data.get('last_error', ''),
            }
        except Exception:
            return {
                'name': self.name,
                'state': 'unknown',
                'failure_count': 0,
                'failure_threshold': self.failure_threshold,
                'reset_timeout': self.reset_timeout,
                'total_success': 0,
                'total_failure': 0,
                'last_success': None,
                'last_failure': None,
                'last_error': '',
            }

    # ── Core call logic ───────────────────────────────────────────────

    def call(self, func, *args, **kwargs):
        """Execute func through the circuit breaker."""
        if self.state == OPEN:
            raise CircuitOpenError(self.name, retry_after=self.retry_after())

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        """Reset failure count, close circuit."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.execute()
        except Exception:
            logger.debug("Could not close circuit '%s'", self.name)
        self._record('success')

    def _on_failure(self, error):
        """Increment failures, open circuit if threshold reached."""
        try:
            new_count = self.redis.incr(self._key('failures'))
            self.redis.set(self._key('last_failure'), str(time.time()))
            if new_count >= self.failure_threshold:
                self._set_state(OPEN)
                logger.warning(
                    "Circuit '%s' OPENED after %d failures (threshold=%d): %s",
                    self.name, new_count, self.failure_threshold, error,
                )
            else:
                logger.info(
                    "Circuit '%s' failure %d/%d: %s",
                    self.name, new_count, self.failure_threshold, error,
                )
        except Exception:
            logger.debug("Could not count failure for circuit '%s'", self.name)
        self._record('failure', str(error))

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            logger.info("Circuit '%s' manually reset to CLOSED", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)


# ── Registry ──────────────────────────────────────────────────────────────

_registry = {}

# name → (failure_threshold, reset_timeout)
BREAKER_DEFAULTS = {
    'eligibility_source': (3, 120),
    'slack': (5, 300),
}


def get_breaker(name, redis_client=None, **kwargs):
    """Get or create a named circuit breaker (one per name per process)."""
    if name not in _registry:
        if redis_client is None:
            from leadqueue.extensions import redis_client as rc
            redis_client = rc
        threshold, timeout = BREAKER_DEFAULTS.get(name, (3, 300))
        kwargs.setdefault('failure_threshold', threshold)
        kwargs.setdefault('reset_timeout', timeout)
        _registry[name] = CircuitBreaker(name, redis_client, **kwargs)
    return _registry[name]


def get_all_breakers():
    """Return all registered circuit breakers."""
    return dict(_registry)


def init_breakers(redis_client):
    """Initialize the breakers for every external dependency."""
    breakers = {
        name: CircuitBreaker(name, redis_client, failure_threshold=threshold, reset_timeout=timeout)
        for name, (threshold, timeout) in BREAKER_DEFAULTS.items()
    }
    _registry.update(breakers)
    return breakers
