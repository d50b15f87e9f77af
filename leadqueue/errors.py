"""
Engine error taxonomy.

Lost claims are not errors: claim functions return False and the caller
moves on to the next candidate.
"""


class SourceUnavailableError(Exception):
    """The eligibility source could not be reached (or its breaker is open)."""


class DataIntegrityError(Exception):
    """A batch write touched a different number of rows than it selected."""

    def __init__(self, step, expected, affected):
        self.step = step
        self.expected = expected
        self.affected = affected
        super().__init__(f"{step}: expected {expected} rows, updated {affected}")


class InboundQueueFullError(Exception):
    """The inbound call queue is at capacity."""


class JobFailedError(Exception):
    """A scheduled job ran to a 'failed' summary; raised so RQ's retry policy applies."""

    def __init__(self, job, errors=None):
        self.job = job
        self.errors = errors or []
        detail = self.errors[0].get('message') if self.errors else 'no error recorded'
        super().__init__(f"{job} failed: {detail}")
