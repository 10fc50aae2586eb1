from .models import DeploymentResult, Health, Overall
from .logger import get_logger

_MARKS = {
    Health.HEALTHY: "OK",
    Health.DEGRADED: "DEGRADED",
    Health.FAILED: "FAILED",
}


class Reporter:
    def __init__(self):
        self.logger = get_logger("reporter")

    @staticmethod
    def aggregate(records):
        """SUCCESS if every record is HEALTHY, FAILURE if every record is FAILED, PARTIAL otherwise"""
        states = [r.final_state for r in records]
        if all(s == Health.HEALTHY for s in states):
            return Overall.SUCCESS
        if all(s == Health.FAILED for s in states):
            return Overall.FAILURE
        return Overall.PARTIAL

    def build(self, records, started_at, finished_at, order=None):
        """Create the immutable result from terminal records"""
        names = list(order) if order else list(records)
        names += [n for n in records if n not in names]
        ordered = {n: records[n] for n in names if n in records}

        for name, record in ordered.items():
            if not record.terminal:
                raise ValueError(f"record for {name} has no verdict")
            self._log_verdict(record)

        overall = self.aggregate(ordered.values())
        self.logger.info(f"Deployment verdict: {overall.value.upper()}")
        return DeploymentResult(records=ordered, overall=overall, started_at=started_at, finished_at=finished_at)

    def _log_verdict(self, record):
        if record.final_state == Health.HEALTHY:
            self.logger.info(f"{record.name} is healthy")
            return
        message = f"{record.name} health check {record.final_state.value} after {record.attempts_used} attempt(s)"
        # Non-critical services (metrics, dashboards) only warn
        if record.service.critical:
            self.logger.error(message)
        else:
            self.logger.warning(message)

    @staticmethod
    def record_to_dict(record):
        spec = record.service
        return {
            "service": spec.name,
            "final_state": record.final_state.value if record.final_state else None,
            "attempts_used": record.attempts_used,
            "max_attempts": spec.max_attempts,
            "used_fallback": record.used_fallback,
            "error": record.error.value if record.error else None,
            "critical": spec.critical,
            "endpoints": list(spec.endpoints),
            "history": [
                {
                    "attempt": o.attempt,
                    "probe": "fallback" if o.fallback else "primary",
                    "succeeded": o.succeeded,
                    "latency_ms": round(o.observed_latency_s * 1000, 2),
                    "error": o.error.value if o.error else None,
                    "detail": o.detail,
                }
                for o in record.history
            ],
        }

    def to_dict(self, result):
        return {
            "overall": result.overall.value,
            "exit_code": int(result.exit_code),
            "started_at": result.started_at.isoformat(),
            "finished_at": result.finished_at.isoformat(),
            "duration_s": round((result.finished_at - result.started_at).total_seconds(), 3),
            "records": {name: self.record_to_dict(r) for name, r in result.records.items()},
        }

    def render(self, result):
        """Human-readable summary: verdict per service plus where to reach it"""
        lines = [f"Deployment {result.overall.value.upper()}", "=" * 40, ""]
        for name, record in result.records.items():
            spec = record.service
            mark = _MARKS.get(record.final_state, "?")
            detail = f"{record.attempts_used}/{spec.max_attempts} attempts"
            if record.used_fallback:
                detail += ", fallback probe used"
            if record.error:
                detail += f", last error {record.error.value}"
            lines.append(f"[{mark:>8}] {name} ({detail})")
            for endpoint in spec.endpoints or (spec.primary_probe.target,):
                lines.append(f"           - {endpoint}")
        lines.append("")
        lines.append("Management commands:")
        lines.append("  deploy-orchestrator status --plan <plan>")
        lines.append("  deploy-orchestrator teardown --plan <plan>")
        return "\n".join(lines)

    @staticmethod
    def render_aborted(state, error):
        return f"Deployment ABORTED during {state.value}: {error}"
