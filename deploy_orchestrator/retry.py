import asyncio
from dataclasses import replace

from .models import ErrorKind, Health, ServiceHealthRecord
from .probe import ProbeEngine
from .logger import get_logger


class RetryScheduler:
    """Drives bounded probe attempts for one service, escalating from primary to fallback.

    The attempt budget is shared: the primary probe gets ``spec.primary_budget``
    attempts and the fallback probe gets whatever is left of ``max_attempts``.
    Escalating to the fallback does not sleep; every other failed attempt except
    the last one is followed by ``retry_interval_s``.
    """

    def __init__(self, engine=None, sleep=asyncio.sleep):
        self.engine = engine if engine else ProbeEngine()
        self.sleep = sleep
        self.logger = get_logger("retry")

    async def verify(self, spec, record=None):
        """Probe ``spec`` until it succeeds or the attempt budget is spent.

        ``record`` may be supplied by a caller that needs to read partial
        progress after cancelling this coroutine; otherwise a fresh one is made.
        """
        if record is None:
            record = ServiceHealthRecord(service=spec)

        active = spec.primary_probe
        on_fallback = False
        attempt = 0

        while attempt < spec.max_attempts:
            attempt += 1
            outcome = await self.engine.probe(active, spec.connect_timeout_s, spec.request_timeout_s)
            outcome = replace(outcome, attempt=attempt, fallback=on_fallback)

            record.attempts_used = attempt
            record.history.append(outcome)

            if outcome.succeeded:
                record.final_state = Health.HEALTHY
                record.error = None
                label = "fallback" if on_fallback else "primary"
                self.logger.info(f"{spec.name} is healthy after {attempt} attempt(s) via {label} probe {active.target}")
                return record

            self.logger.info(
                f"{spec.name} attempt {attempt}/{spec.max_attempts} failed "
                f"({outcome.error.value if outcome.error else 'no match'}): {outcome.detail}"
            )

            if attempt >= spec.max_attempts:
                break

            if not on_fallback and spec.fallback_probe is not None and attempt >= spec.primary_budget:
                # Escalate immediately; the fallback draws from the same budget
                self.logger.info(f"{spec.name} switching to fallback probe {spec.fallback_probe.target}")
                active = spec.fallback_probe
                on_fallback = True
                record.used_fallback = True
                continue

            await self.sleep(spec.retry_interval_s)

        record.final_state = self.classify_exhausted(record)
        record.error = record.history[-1].error if record.history else None
        return record

    @staticmethod
    def classify_exhausted(record):
        """DEGRADED when the fallback got a response with the wrong content, else FAILED"""
        for outcome in record.history:
            if outcome.fallback and outcome.error == ErrorKind.BAD_RESPONSE:
                return Health.DEGRADED
        return Health.FAILED
