import pytest

from deploy_orchestrator.errors import BuildError, ImageBuildError, StartError
from deploy_orchestrator.models import DeploymentPlan, ProbeKind, ProbeSpec, ServiceSpec


class InMemoryRuntime:
    """Container runtime double that keeps services in a set and records every call"""

    def __init__(self, services=("app", "db"), available=True, fail_build=False, fail_up=False):
        self.defined = list(services)
        self.available = available
        self.fail_build = fail_build
        self.fail_up = fail_up
        self.running = set()
        self.calls = []

    def is_available(self):
        return self.available

    def validate_config(self, path):
        self.calls.append(("validate_config", path))
        return list(self.defined)

    def teardown(self, service_names):
        self.calls.append(("teardown", tuple(service_names)))
        for name in service_names:
            self.running.discard(name)

    def prune(self):
        self.calls.append(("prune",))

    def build_images(self, no_cache=True):
        self.calls.append(("build_images", no_cache))
        if self.fail_build:
            raise ImageBuildError("image build failed")

    def up(self, detached=True):
        self.calls.append(("up", detached))
        if self.fail_up:
            raise StartError("port already allocated")
        self.running = set(self.defined)

    def ps(self):
        return [(name, "running") for name in self.defined if name in self.running]

    def call_names(self):
        return [c[0] for c in self.calls]


class FakeBuildTool:
    def __init__(self, fail=False):
        self.fail = fail
        self.builds = []

    def build(self, source_dir, skip_tests=True):
        self.builds.append((source_dir, skip_tests))
        if self.fail:
            raise BuildError("compilation failure")
        return f"{source_dir}/target/app.jar"


class FakeConfigurator:
    def __init__(self, available=True):
        self.available = available
        self.playbooks = []

    def is_available(self):
        return self.available

    def configure(self, playbook):
        self.playbooks.append(playbook)


def http_service(name, target=None, pattern="UP", **kwargs):
    probe = ProbeSpec(target=target or f"http://{name}/health", success_pattern=pattern)
    return ServiceSpec(name=name, primary_probe=probe, **kwargs)


def tcp_service(name, target=None, **kwargs):
    probe = ProbeSpec(target=target or f"tcp://{name}:3306", kind=ProbeKind.TCP_CONNECT)
    return ServiceSpec(name=name, primary_probe=probe, **kwargs)


def make_plan(*services, **kwargs):
    return DeploymentPlan(services=tuple(services), startup_order=tuple(s.name for s in services), **kwargs)


@pytest.fixture
def runtime():
    return InMemoryRuntime()


@pytest.fixture
def build_tool():
    return FakeBuildTool()


@pytest.fixture
def configurator():
    return FakeConfigurator()


@pytest.fixture
def simple_plan():
    return make_plan(
        http_service("app", max_attempts=2),
        tcp_service("db", max_attempts=1),
    )
