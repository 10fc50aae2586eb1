"""External collaborators driven through their command-line tools.

The orchestrator only needs a handful of operations from each of these, so
each wrapper shells out and maps non-zero exits onto the error taxonomy in
:mod:`deploy_orchestrator.errors`. Tests substitute in-memory doubles with
the same method names.
"""

import json
import shutil
import subprocess
from pathlib import Path

from .errors import BuildError, ConfigError, ImageBuildError, PrepError, RuntimeNotFoundError, StartError
from .logger import get_logger

logger = get_logger("runtime")


def _run(cmd, cwd=None, timeout=600):
    logger.debug(f"exec: {' '.join(cmd)}")
    return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, cwd=cwd)


class DockerComposeRuntime:
    """Container runtime backed by ``docker compose`` (or legacy ``docker-compose``)"""

    def __init__(self, compose_file="docker-compose.yml", project_dir=".", compose_cmd=None, timeout=900):
        self.compose_file = compose_file
        self.project_dir = str(project_dir)
        self.timeout = timeout
        self._compose_cmd = compose_cmd

    @property
    def compose_cmd(self):
        if self._compose_cmd is None:
            self._compose_cmd = self._find_compose()
        return self._compose_cmd

    @staticmethod
    def _find_compose():
        docker = shutil.which("docker")
        if docker is not None:
            return [docker, "compose"]
        legacy = shutil.which("docker-compose")
        if legacy is not None:
            return [legacy]
        raise RuntimeNotFoundError("Neither 'docker compose' nor 'docker-compose' was found on PATH")

    def is_available(self):
        """Check that the CLI exists and the daemon answers"""
        docker = shutil.which("docker")
        if docker is None:
            return shutil.which("docker-compose") is not None
        try:
            return _run([docker, "info"], timeout=10).returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    def _compose(self, args, timeout=None):
        cmd = [*self.compose_cmd, "-f", self.compose_file, *args]
        try:
            return _run(cmd, cwd=self.project_dir, timeout=timeout or self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise StartError(f"Compose command timed out after {exc.timeout}s: {' '.join(args)}") from exc
        except OSError as exc:
            raise StartError(f"Could not run {cmd[0]} in {self.project_dir}: {exc}") from exc

    def validate_config(self, path=None):
        """Return the service names declared in the compose file"""
        if path is not None:
            self.compose_file = str(path)
        result = self._compose(["config", "--services"], timeout=60)
        if result.returncode != 0:
            raise ConfigError(f"Compose file {self.compose_file} is invalid:\n{result.stderr.strip()}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def teardown(self, service_names):
        """Stop and remove the named services. Best effort: never raises."""
        for name in service_names:
            try:
                self._compose(["stop", name], timeout=120)
                result = self._compose(["rm", "-f", "-s", "-v", name], timeout=120)
                if result.returncode != 0:
                    logger.warning(f"Could not remove {name}: {result.stderr.strip()}")
            except (StartError, OSError) as e:
                logger.warning(f"Teardown of {name} failed: {e}")

    def prune(self):
        docker = shutil.which("docker")
        if docker is None:
            return
        try:
            _run([docker, "system", "prune", "-f"], timeout=300)
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"System prune failed: {e}")

    def build_images(self, no_cache=True):
        args = ["build"] + (["--no-cache"] if no_cache else [])
        result = self._compose(args)
        if result.returncode != 0:
            raise ImageBuildError(f"Image build failed (exit {result.returncode}):\n{result.stderr.strip()}")

    def up(self, detached=True):
        args = ["up"] + (["-d"] if detached else [])
        result = self._compose(args)
        if result.returncode != 0:
            raise StartError(f"Starting services failed (exit {result.returncode}):\n{result.stderr.strip()}")

    def ps(self):
        """Return [(name, status), ...] for the services of this project"""
        result = self._compose(["ps", "--all", "--format", "json"], timeout=60)
        if result.returncode != 0:
            logger.warning(f"Listing services failed: {result.stderr.strip()}")
            return []
        return parse_ps_output(result.stdout)


def parse_ps_output(text):
    """Parse ``compose ps --format json`` output (a JSON array or one object per line)"""
    text = text.strip()
    if not text:
        return []
    if text.startswith("["):
        rows = json.loads(text)
    else:
        rows = [json.loads(line) for line in text.splitlines() if line.strip()]
    services = []
    for row in rows:
        name = row.get("Service") or row.get("Name", "")
        status = row.get("State") or row.get("Status", "unknown")
        services.append((name, status))
    return services


class MavenBuildTool:
    """Packages a source tree with Maven and returns the built jar"""

    def __init__(self, command=None, timeout=1800):
        self.command = command or ["mvn", "-B", "clean", "package"]
        self.timeout = timeout

    def build(self, source_dir, skip_tests=True):
        source = Path(source_dir)
        if not source.is_dir():
            raise BuildError(f"Source directory not found: {source}")
        if shutil.which(self.command[0]) is None:
            raise BuildError(f"Build tool '{self.command[0]}' not found on PATH")

        cmd = list(self.command) + (["-DskipTests"] if skip_tests else [])
        try:
            result = _run(cmd, cwd=str(source), timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise BuildError(f"Build timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise BuildError(f"Could not run {self.command[0]}: {exc}") from exc
        if result.returncode != 0:
            tail = "\n".join(result.stdout.splitlines()[-20:])
            raise BuildError(f"Build failed (exit {result.returncode}):\n{tail}")

        jars = sorted((source / "target").glob("*.jar"), key=lambda p: p.stat().st_mtime)
        if not jars:
            raise BuildError(f"Build succeeded but no jar was found under {source / 'target'}")
        return str(jars[-1])


class PlaybookConfigurator:
    """Optional host configuration through ``ansible-playbook``"""

    def __init__(self, command="ansible-playbook", timeout=900):
        self.command = command
        self.timeout = timeout

    def is_available(self):
        return shutil.which(self.command) is not None

    def configure(self, playbook):
        path = Path(playbook)
        cmd = [self.command, path.name, "--connection=local"]
        inventory = path.parent / "inventory.yml"
        if inventory.exists():
            cmd[1:1] = ["-i", inventory.name]
        try:
            result = _run(cmd, cwd=str(path.parent), timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise PrepError(f"Playbook {playbook} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise PrepError(f"Could not run {self.command} for {playbook}: {exc}") from exc
        if result.returncode != 0:
            raise PrepError(f"Playbook {playbook} failed (exit {result.returncode}):\n{result.stdout.strip()}")
