import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping, Optional


class Health(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


class Overall(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class RunState(str, Enum):
    INIT = "init"
    PREPARING = "preparing"
    STARTING = "starting"
    VERIFYING = "verifying"
    REPORTED = "reported"
    ABORTED = "aborted"


class ExitCode(IntEnum):
    SUCCESS = 0
    ABORTED = 1
    PARTIAL = 2
    FAILURE = 3


class ProbeKind(str, Enum):
    HTTP_BODY_CONTAINS = "http_body_contains"
    TCP_CONNECT = "tcp_connect"


class ErrorKind(str, Enum):
    CONN_REFUSED = "conn_refused"
    TIMEOUT = "timeout"
    DNS_FAIL = "dns_fail"
    BAD_RESPONSE = "bad_response"
    TRANSPORT = "transport"
    TIMEOUT_GLOBAL = "timeout_global"


@dataclass(frozen=True)
class ProbeSpec:
    """How to ask whether one endpoint is healthy"""
    target: str
    kind: ProbeKind = ProbeKind.HTTP_BODY_CONTAINS
    success_pattern: str = ""
    regex: bool = False  # False means a literal, case-sensitive substring

    def matches(self, body):
        if self.regex:
            return re.search(self.success_pattern, body) is not None
        return self.success_pattern in body


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    primary_probe: ProbeSpec
    fallback_probe: Optional[ProbeSpec] = None
    max_attempts: int = 1
    retry_interval_s: float = 0.0
    connect_timeout_s: float = 2.0
    request_timeout_s: float = 5.0
    primary_attempts: Optional[int] = None  # Attempts spent on the primary probe before escalating
    critical: bool = True
    endpoints: tuple = ()

    @property
    def primary_budget(self):
        """Number of attempts the primary probe gets before the fallback takes over"""
        if self.fallback_probe is None:
            return self.max_attempts
        if self.primary_attempts is not None:
            return self.primary_attempts
        return (self.max_attempts + 1) // 2

    @property
    def worst_case_s(self):
        per_attempt = self.retry_interval_s + self.connect_timeout_s + self.request_timeout_s
        return self.max_attempts * per_attempt


@dataclass(frozen=True)
class ProbeOutcome:
    succeeded: bool
    observed_latency_s: float = 0.0
    error: Optional[ErrorKind] = None
    attempt: int = 0
    fallback: bool = False  # Whether this outcome came from the fallback probe
    detail: str = ""


@dataclass
class ServiceHealthRecord:
    service: ServiceSpec
    attempts_used: int = 0
    used_fallback: bool = False
    final_state: Optional[Health] = None  # None until the record is terminal
    error: Optional[ErrorKind] = None  # Last error seen when the verdict is not HEALTHY
    history: list = field(default_factory=list)

    @property
    def name(self):
        return self.service.name

    @property
    def terminal(self):
        return self.final_state is not None


@dataclass(frozen=True)
class DirectorySpec:
    path: str
    owner: Optional[str] = None  # "uid:gid", granted best-effort


@dataclass(frozen=True)
class DeploymentPlan:
    """Validated description of which services to bring up and how to verify them"""
    services: tuple
    startup_order: tuple
    compose_file: str = "docker-compose.yml"
    required_files: tuple = ()
    directories: tuple = ()
    source_dir: Optional[str] = None
    configure_playbook: Optional[str] = None

    @property
    def service_names(self):
        return [s.name for s in self.services]

    def service(self, name):
        for spec in self.services:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def ordered_services(self):
        return [self.service(name) for name in self.startup_order]


@dataclass
class DeploymentConfig:
    """Configuration for run behavior"""
    max_workers: int = 8  # Cap on concurrently probed services
    global_deadline_s: float = None  # Verification deadline, derived from the plan when unset
    no_cache: bool = True  # Rebuild images without the layer cache
    detached: bool = True
    prune: bool = True  # Prune dangling runtime resources after teardown
    skip_tests: bool = True  # Passed through to the build tool
    skip_build: bool = False


@dataclass(frozen=True)
class Ready:
    """Result of a successful prepare()"""
    torn_down: tuple = ()
    directories: tuple = ()
    configurator_available: bool = False
    configured: bool = False


@dataclass(frozen=True)
class Started:
    """Result of a successful start()"""
    services: tuple = ()  # (name, status) pairs as reported by the runtime
    artifact: Optional[str] = None


@dataclass(frozen=True)
class DeploymentResult:
    records: Mapping
    overall: Overall
    started_at: datetime
    finished_at: datetime

    def __post_init__(self):
        object.__setattr__(self, "records", MappingProxyType(dict(self.records)))

    @property
    def exit_code(self):
        return ExitCode[self.overall.name]
