import os
from pathlib import Path

from .errors import ConfigError, PrepError, RuntimeNotFoundError
from .models import DeploymentConfig, Ready, Started
from .logger import get_logger


def parse_owner(owner):
    """Turn "uid:gid" into a pair of ints"""
    uid, _, gid = str(owner).partition(":")
    try:
        return int(uid), int(gid or uid)
    except ValueError:
        raise ConfigError(f"owner must be 'uid:gid', got {owner!r}") from None


class LifecycleController:
    """Tears down the previous stack, provisions the host, then starts the new stack.

    All calls are synchronous and sequential. ``prepare`` can be repeated
    against the same plan without error or leftover state.
    """

    def __init__(self, runtime, build_tool=None, configurator=None, config=None, base_dir="."):
        self.runtime = runtime
        self.build_tool = build_tool
        self.configurator = configurator
        self.config = config if config else DeploymentConfig()
        self.base_dir = Path(base_dir)
        self.logger = get_logger("lifecycle")

    def _resolve(self, path):
        path = Path(path)
        return path if path.is_absolute() else self.base_dir / path

    def prepare(self, plan):
        self.logger.info("Checking prerequisites...")
        if not self.runtime.is_available():
            raise RuntimeNotFoundError("Container runtime is not available")

        configurator_available = self.configurator is not None and self.configurator.is_available()
        if configurator_available:
            self.logger.info("Configurator found - will use it for host configuration")
        else:
            self.logger.warning("Configurator not found - using basic configuration")

        self.logger.info("Cleaning up previous deployment...")
        # Reverse startup order, one service at a time, so ports and names free up predictably
        torn_down = []
        for name in reversed(plan.startup_order):
            self.runtime.teardown([name])
            torn_down.append(name)
        if self.config.prune:
            self.runtime.prune()

        directories = self._provision_directories(plan)
        configured = self._configure(plan, configurator_available)

        self.logger.info("Preparation completed")
        return Ready(
            torn_down=tuple(torn_down),
            directories=tuple(directories),
            configurator_available=configurator_available,
            configured=configured,
        )

    def _provision_directories(self, plan):
        created = []
        for directory in plan.directories:
            path = self._resolve(directory.path)
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PrepError(f"Could not create {path}: {e}") from e
            created.append(str(path))
            if directory.owner:
                self._grant(path, directory.owner)
        return created

    def _grant(self, path, owner):
        """Best-effort recursive chown; containers that run as a fixed uid need it"""
        uid, gid = parse_owner(owner)
        if not hasattr(os, "chown"):
            self.logger.warning(f"Cannot set ownership of {path} on this platform")
            return
        try:
            os.chown(path, uid, gid)
            for root, dirs, files in os.walk(path):
                for entry in dirs + files:
                    os.chown(os.path.join(root, entry), uid, gid)
        except OSError as e:
            self.logger.warning(f"Could not set {owner} ownership on {path}: {e}")

    def _configure(self, plan, configurator_available):
        if not plan.configure_playbook:
            return False
        playbook = self._resolve(plan.configure_playbook)
        if not configurator_available or not playbook.exists():
            self.logger.warning("Skipping host configuration")
            return False
        self.logger.info(f"Running host configuration {playbook}...")
        self.configurator.configure(str(playbook))
        return True

    def verify_files(self, plan):
        missing = [f for f in plan.required_files if not self._resolve(f).is_file()]
        if missing:
            raise ConfigError(f"Required file(s) missing: {', '.join(missing)}")
        self.logger.info("All required files present")

    def start(self, plan):
        """Build and start the stack; returns once the runtime reports the services started"""
        self.verify_files(plan)

        known = self.runtime.validate_config(str(self._resolve(plan.compose_file)))
        unknown = [name for name in plan.startup_order if name not in known]
        if unknown:
            raise ConfigError(f"Service(s) not defined in {plan.compose_file}: {', '.join(unknown)}")

        artifact = None
        if not self.config.skip_build:
            if self.build_tool is not None and plan.source_dir:
                self.logger.info(f"Building application from {plan.source_dir}...")
                artifact = self.build_tool.build(str(self._resolve(plan.source_dir)), self.config.skip_tests)
            self.logger.info("Building container images...")
            self.runtime.build_images(self.config.no_cache)

        self.logger.info("Starting services...")
        self.runtime.up(self.config.detached)

        services = tuple(self.runtime.ps())
        for name, status in services:
            self.logger.info(f"{name}: {status}")
        return Started(services=services, artifact=artifact)
