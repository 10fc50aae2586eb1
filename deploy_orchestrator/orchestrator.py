from dataclasses import dataclass, field
from typing import Optional

from .errors import DeploymentError
from .models import DeploymentResult, ExitCode, Ready, RunState, Started
from .reporter import Reporter
from .logger import get_logger

_TRANSITIONS = {
    RunState.INIT: {RunState.PREPARING},
    RunState.PREPARING: {RunState.STARTING, RunState.ABORTED},
    RunState.STARTING: {RunState.VERIFYING, RunState.ABORTED},
    RunState.VERIFYING: {RunState.REPORTED},
    RunState.REPORTED: set(),
    RunState.ABORTED: set(),
}


@dataclass
class RunOutcome:
    """Everything one run produced, whether it reached a verdict or aborted"""
    state: RunState
    result: Optional[DeploymentResult] = None
    error: Optional[DeploymentError] = None
    ready: Optional[Ready] = None
    started: Optional[Started] = None
    history: list = field(default_factory=list)

    @property
    def exit_code(self):
        if self.state == RunState.ABORTED or self.result is None:
            return ExitCode.ABORTED
        return self.result.exit_code


class DeploymentOrchestrator:
    """INIT -> PREPARING -> STARTING -> VERIFYING -> REPORTED, or ABORTED before verification.

    One instance handles exactly one run.
    """

    def __init__(self, lifecycle, tracker, reporter=None):
        self.lifecycle = lifecycle
        self.tracker = tracker
        self.reporter = reporter if reporter else Reporter()
        self.state = RunState.INIT
        self.history = []
        self.logger = get_logger("orchestrator")

    def _transition(self, new_state, **details):
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {new_state.value}")
        self.logger.info(f"{self.state.value.upper()} -> {new_state.value.upper()}")
        self.history.append({"event": "transition", "from": self.state.value, "to": new_state.value, **details})
        self.state = new_state

    def _abort(self, outcome, error):
        self.logger.error(f"DEPLOYMENT ABORTED during {self.state.value}: {error}")
        self._transition(RunState.ABORTED, reason=str(error), error=type(error).__name__)
        outcome.state = self.state
        outcome.error = error
        return outcome

    async def run(self, plan):
        if self.state != RunState.INIT:
            raise RuntimeError("orchestrator has already run")

        outcome = RunOutcome(state=self.state, history=self.history)

        self._transition(RunState.PREPARING)
        try:
            outcome.ready = self.lifecycle.prepare(plan)
        except DeploymentError as e:
            return self._abort(outcome, e)

        self._transition(RunState.STARTING)
        try:
            outcome.started = self.lifecycle.start(plan)
        except DeploymentError as e:
            return self._abort(outcome, e)

        # Health failures from here on degrade the verdict but never abort the run
        self._transition(RunState.VERIFYING)
        outcome.result = await self.tracker.run(plan)

        self._transition(RunState.REPORTED, overall=outcome.result.overall.value)
        outcome.state = self.state
        return outcome

    def to_dict(self, outcome):
        data = {
            "state": outcome.state.value,
            "exit_code": int(outcome.exit_code),
            "history": list(outcome.history),
        }
        if outcome.error is not None:
            data["error"] = {"type": type(outcome.error).__name__, "message": str(outcome.error)}
        if outcome.result is not None:
            data["result"] = self.reporter.to_dict(outcome.result)
        return data

    def render(self, outcome):
        if outcome.result is None:
            return self.reporter.render_aborted(RunState(outcome.history[-1]["from"]), outcome.error)
        return self.reporter.render(outcome.result)
