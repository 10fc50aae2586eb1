from .models import (
    Health, Overall, RunState, ExitCode, ProbeKind, ErrorKind,
    ProbeSpec, ServiceSpec, ProbeOutcome, ServiceHealthRecord,
    DeploymentPlan, DeploymentConfig, DeploymentResult
)
from .errors import DeploymentError, ConfigError, PrepError, StartError
from .probe import ProbeEngine
from .retry import RetryScheduler
from .tracker import ServiceHealthTracker
from .lifecycle import LifecycleController
from .reporter import Reporter
from .orchestrator import DeploymentOrchestrator, RunOutcome
from .failure import FailureInjector

__all__ = [
    "Health", "Overall", "RunState", "ExitCode", "ProbeKind", "ErrorKind",
    "ProbeSpec", "ServiceSpec", "ProbeOutcome", "ServiceHealthRecord",
    "DeploymentPlan", "DeploymentConfig", "DeploymentResult",
    "DeploymentError", "ConfigError", "PrepError", "StartError",
    "ProbeEngine", "RetryScheduler", "ServiceHealthTracker",
    "LifecycleController", "Reporter",
    "DeploymentOrchestrator", "RunOutcome", "FailureInjector"
]
