import os

import pytest

from deploy_orchestrator.errors import BuildError, ConfigError, ImageBuildError, RuntimeNotFoundError, StartError
from deploy_orchestrator.lifecycle import LifecycleController, parse_owner
from deploy_orchestrator.models import DeploymentConfig, DirectorySpec
from conftest import FakeBuildTool, FakeConfigurator, InMemoryRuntime, http_service, make_plan, tcp_service


def plan_with(**kwargs):
    return make_plan(http_service("app"), tcp_service("db"), **kwargs)


class TestPrepare:
    """Teardown, provisioning and capability detection."""

    def test_tears_down_each_service_in_reverse_order(self, tmp_path, runtime):
        controller = LifecycleController(runtime, base_dir=tmp_path)
        ready = controller.prepare(plan_with())
        teardowns = [c[1] for c in runtime.calls if c[0] == "teardown"]
        assert teardowns == [("db",), ("app",)]
        assert ready.torn_down == ("db", "app")
        assert ("prune",) in runtime.calls

    def test_prune_can_be_disabled(self, tmp_path, runtime):
        controller = LifecycleController(runtime, config=DeploymentConfig(prune=False), base_dir=tmp_path)
        controller.prepare(plan_with())
        assert "prune" not in runtime.call_names()

    def test_missing_runtime_is_fatal(self, tmp_path):
        runtime = InMemoryRuntime(available=False)
        with pytest.raises(RuntimeNotFoundError):
            LifecycleController(runtime, base_dir=tmp_path).prepare(plan_with())
        assert runtime.calls == []

    def test_creates_directories(self, tmp_path, runtime):
        plan = plan_with(directories=(DirectorySpec("prometheus/data"), DirectorySpec("grafana/data")))
        ready = LifecycleController(runtime, base_dir=tmp_path).prepare(plan)
        assert (tmp_path / "prometheus" / "data").is_dir()
        assert (tmp_path / "grafana" / "data").is_dir()
        assert len(ready.directories) == 2

    def test_prepare_twice_is_idempotent(self, tmp_path, runtime):
        plan = plan_with(directories=(DirectorySpec("prometheus/data"),))
        controller = LifecycleController(runtime, base_dir=tmp_path)
        runtime.up()
        first = controller.prepare(plan)
        second = controller.prepare(plan)
        assert first == second
        assert runtime.running == set()
        assert [p.name for p in tmp_path.iterdir()] == ["prometheus"]

    @pytest.mark.skipif(not hasattr(os, "getuid"), reason="POSIX ownership only")
    def test_ownership_grant_for_current_user(self, tmp_path, runtime):
        owner = f"{os.getuid()}:{os.getgid()}"
        (tmp_path / "grafana" / "data").mkdir(parents=True)
        (tmp_path / "grafana" / "data" / "grafana.db").write_text("")
        plan = plan_with(directories=(DirectorySpec("grafana/data", owner=owner),))
        LifecycleController(runtime, base_dir=tmp_path).prepare(plan)
        assert (tmp_path / "grafana" / "data" / "grafana.db").stat().st_uid == os.getuid()

    def test_ownership_failure_only_warns(self, tmp_path, runtime):
        plan = plan_with(directories=(DirectorySpec("prometheus/data", owner="65534:65534"),))
        # Succeeds when running as root, warns otherwise; never raises
        LifecycleController(runtime, base_dir=tmp_path).prepare(plan)
        assert (tmp_path / "prometheus" / "data").is_dir()

    def test_directory_that_is_a_file_is_prep_error(self, tmp_path, runtime):
        from deploy_orchestrator.errors import PrepError
        (tmp_path / "monitoring").write_text("not a directory")
        plan = plan_with(directories=(DirectorySpec("monitoring/data"),))
        with pytest.raises(PrepError):
            LifecycleController(runtime, base_dir=tmp_path).prepare(plan)

    def test_runs_playbook_when_configurator_available(self, tmp_path, runtime):
        (tmp_path / "ansible").mkdir()
        (tmp_path / "ansible" / "setup-monitoring.yml").write_text("- hosts: all\n")
        configurator = FakeConfigurator()
        plan = plan_with(configure_playbook="ansible/setup-monitoring.yml")
        ready = LifecycleController(runtime, configurator=configurator, base_dir=tmp_path).prepare(plan)
        assert ready.configurator_available is True
        assert ready.configured is True
        assert configurator.playbooks == [str(tmp_path / "ansible" / "setup-monitoring.yml")]

    def test_skips_playbook_without_configurator(self, tmp_path, runtime):
        (tmp_path / "ansible").mkdir()
        (tmp_path / "ansible" / "setup-monitoring.yml").write_text("- hosts: all\n")
        configurator = FakeConfigurator(available=False)
        plan = plan_with(configure_playbook="ansible/setup-monitoring.yml")
        ready = LifecycleController(runtime, configurator=configurator, base_dir=tmp_path).prepare(plan)
        assert ready.configurator_available is False
        assert ready.configured is False
        assert configurator.playbooks == []


class TestStart:
    """Artifact checks, build and startup."""

    def test_start_builds_and_brings_services_up(self, tmp_path, runtime):
        (tmp_path / "docker-compose.yml").write_text("services: {}\n")
        plan = plan_with(required_files=("docker-compose.yml",))
        started = LifecycleController(runtime, base_dir=tmp_path).start(plan)
        assert runtime.call_names() == ["validate_config", "build_images", "up"]
        assert dict(started.services) == {"app": "running", "db": "running"}
        assert started.artifact is None

    def test_missing_required_file_fails_fast(self, tmp_path, runtime):
        plan = plan_with(required_files=("docker-compose.yml", "Dockerfile"))
        with pytest.raises(ConfigError, match="docker-compose.yml, Dockerfile"):
            LifecycleController(runtime, base_dir=tmp_path).start(plan)
        assert runtime.calls == []

    def test_service_unknown_to_runtime(self, tmp_path):
        runtime = InMemoryRuntime(services=("app",))
        with pytest.raises(ConfigError, match="db"):
            LifecycleController(runtime, base_dir=tmp_path).start(plan_with())
        assert "up" not in runtime.call_names()

    def test_build_tool_runs_before_images(self, tmp_path, runtime):
        build_tool = FakeBuildTool()
        plan = plan_with(source_dir="src")
        config = DeploymentConfig(skip_tests=False, no_cache=False)
        started = LifecycleController(runtime, build_tool=build_tool, config=config, base_dir=tmp_path).start(plan)
        assert build_tool.builds == [(str(tmp_path / "src"), False)]
        assert started.artifact == f"{tmp_path / 'src'}/target/app.jar"
        assert ("build_images", False) in runtime.calls

    def test_build_failure_stops_start(self, tmp_path, runtime):
        controller = LifecycleController(runtime, build_tool=FakeBuildTool(fail=True), base_dir=tmp_path)
        with pytest.raises(BuildError):
            controller.start(plan_with(source_dir="src"))
        assert "up" not in runtime.call_names()

    def test_skip_build(self, tmp_path, runtime):
        build_tool = FakeBuildTool()
        controller = LifecycleController(runtime, build_tool=build_tool,
                                         config=DeploymentConfig(skip_build=True), base_dir=tmp_path)
        controller.start(plan_with(source_dir="src"))
        assert build_tool.builds == []
        assert "build_images" not in runtime.call_names()

    def test_image_build_failure(self, tmp_path):
        runtime = InMemoryRuntime(fail_build=True)
        with pytest.raises(ImageBuildError):
            LifecycleController(runtime, base_dir=tmp_path).start(plan_with())

    def test_up_failure(self, tmp_path):
        runtime = InMemoryRuntime(fail_up=True)
        with pytest.raises(StartError, match="port already allocated"):
            LifecycleController(runtime, base_dir=tmp_path).start(plan_with())


def test_parse_owner():
    assert parse_owner("472:472") == (472, 472)
    assert parse_owner("65534") == (65534, 65534)
    with pytest.raises(ConfigError):
        parse_owner("grafana:grafana")
