import asyncio

from .models import ErrorKind, ProbeOutcome

ALWAYS = float("inf")


class FailureInjector:
    """Stand-in probe engine that fails scripted targets a set number of times.

    ``fail_attempts`` maps a probe target to how many calls fail before it
    answers (``ALWAYS`` never answers). ``errors`` picks the ErrorKind per
    target. ``delay`` is either a number of seconds for every call or a
    target -> seconds mapping.
    """

    def __init__(self, fail_attempts=None, delay=0, errors=None):
        self.fail_map = fail_attempts or {}
        self.delay = delay
        self.errors = errors or {}
        self.attempts = {}

    def delay_seconds(self, target):
        if isinstance(self.delay, dict):
            return self.delay.get(target, 0)
        return self.delay

    def should_fail(self, target):
        self.attempts[target] = self.attempts.get(target, 0) + 1
        return self.attempts[target] <= self.fail_map.get(target, 0)

    async def probe(self, spec, connect_timeout_s, request_timeout_s):
        delay = self.delay_seconds(spec.target)
        if delay > 0:
            await asyncio.sleep(delay)

        if self.should_fail(spec.target):
            kind = self.errors.get(spec.target, ErrorKind.CONN_REFUSED)
            return ProbeOutcome(succeeded=False, observed_latency_s=delay, error=kind, detail="injected failure")
        return ProbeOutcome(succeeded=True, observed_latency_s=delay, detail="injected success")
