import asyncio
import math
from datetime import datetime, timezone

from .models import ErrorKind, Health, ProbeOutcome, ServiceHealthRecord
from .retry import RetryScheduler
from .reporter import Reporter
from .logger import get_logger

DEADLINE_SLACK_S = 1.0


class ServiceHealthTracker:
    """Verifies every service of a plan concurrently and aggregates the verdicts"""

    def __init__(self, scheduler=None, max_workers=8, global_deadline_s=None, reporter=None):
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self.scheduler = scheduler if scheduler else RetryScheduler()
        self.max_workers = max_workers
        self.global_deadline_s = global_deadline_s
        self.reporter = reporter if reporter else Reporter()
        self.logger = get_logger("tracker")

    @classmethod
    def from_config(cls, config, scheduler=None, reporter=None):
        return cls(scheduler, max_workers=config.max_workers, global_deadline_s=config.global_deadline_s, reporter=reporter)

    def pool_size(self, plan):
        return max(1, min(len(plan.services), self.max_workers))

    def deadline_for(self, plan):
        """Explicit deadline, or the worst case of the plan given the pool size"""
        if self.global_deadline_s is not None:
            return self.global_deadline_s
        if not plan.services:
            return 0.0
        waves = math.ceil(len(plan.services) / self.pool_size(plan))
        return waves * max(s.worst_case_s for s in plan.services) + DEADLINE_SLACK_S

    async def run(self, plan):
        started_at = datetime.now(timezone.utc)
        records = await self.verify_all(plan)
        finished_at = datetime.now(timezone.utc)
        return self.reporter.build(records, started_at, finished_at, order=plan.startup_order)

    async def verify_all(self, plan):
        """Return a name -> ServiceHealthRecord mapping with every record terminal"""
        if not plan.services:
            return {}

        semaphore = asyncio.Semaphore(self.pool_size(plan))
        deadline = self.deadline_for(plan)

        # Each task writes only its own record; the tracker reads them after join
        records = {spec.name: ServiceHealthRecord(service=spec) for spec in plan.services}

        async def run_one(spec):
            async with semaphore:
                return await self.scheduler.verify(spec, records[spec.name])

        tasks = {asyncio.create_task(run_one(spec)): spec.name for spec in plan.ordered_services()}
        self.logger.info(
            f"Verifying {len(tasks)} services with {self.pool_size(plan)} workers, deadline {deadline:.1f}s"
        )

        done, pending = await asyncio.wait(tasks, timeout=deadline)

        if pending:
            self.logger.error(f"Verification deadline of {deadline:.1f}s exceeded, cancelling {len(pending)} probe(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                self._mark_global_timeout(records[tasks[task]])

        for task in done:
            exc = task.exception()
            if exc is not None:
                # The probe engine never raises; anything here is a programming error
                raise exc

        return records

    def _mark_global_timeout(self, record):
        if record.terminal:
            return
        record.final_state = Health.FAILED
        record.error = ErrorKind.TIMEOUT_GLOBAL
        record.history.append(ProbeOutcome(
            succeeded=False,
            error=ErrorKind.TIMEOUT_GLOBAL,
            attempt=0,
            fallback=record.used_fallback,
            detail=f"verification deadline exceeded after {record.attempts_used} attempt(s)",
        ))
        self.logger.warning(f"{record.name} had no verdict at the deadline after {record.attempts_used} attempt(s)")
