import json
import math
import re

from .errors import ConfigError
from .models import DeploymentPlan, DirectorySpec, ProbeKind, ProbeSpec, ServiceSpec
from .probe import parse_tcp_target
from .lifecycle import parse_owner
from .logger import get_logger


def _number(data, key, default, where, minimum=0.0):
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}: {key} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{where}: {key} must be finite, got {value}")
    if value < minimum:
        raise ConfigError(f"{where}: {key} must be >= {minimum}, got {value}")
    return value


def parse_probe(data, where):
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: probe must be an object")
    target = data.get("target")
    if not target or not isinstance(target, str):
        raise ConfigError(f"{where}: probe target is missing")

    try:
        kind = ProbeKind(data.get("kind", ProbeKind.HTTP_BODY_CONTAINS.value))
    except ValueError:
        kinds = ", ".join(k.value for k in ProbeKind)
        raise ConfigError(f"{where}: unknown probe kind {data.get('kind')!r} (expected one of {kinds})") from None

    pattern = data.get("pattern", "")
    regex = bool(data.get("regex", False))
    if kind == ProbeKind.HTTP_BODY_CONTAINS:
        if not pattern:
            raise ConfigError(f"{where}: HTTP probes need a success pattern")
        if not target.startswith(("http://", "https://")):
            raise ConfigError(f"{where}: HTTP probe target must be an http(s) URL, got {target!r}")
        if regex:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"{where}: invalid pattern {pattern!r}: {e}") from None
    else:
        try:
            parse_tcp_target(target)
        except ValueError as e:
            raise ConfigError(f"{where}: {e}") from None

    return ProbeSpec(target=target, kind=kind, success_pattern=pattern, regex=regex)


def parse_service(data):
    if not isinstance(data, dict):
        raise ConfigError("service entries must be objects")
    name = data.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError("service name is missing")
    where = f"service {name!r}"

    if "primary_probe" not in data:
        raise ConfigError(f"{where}: primary_probe is missing")
    primary = parse_probe(data["primary_probe"], f"{where} primary_probe")
    fallback = None
    if data.get("fallback_probe") is not None:
        fallback = parse_probe(data["fallback_probe"], f"{where} fallback_probe")

    max_attempts = data.get("max_attempts", 1)
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts <= 0:
        raise ConfigError(f"{where}: max_attempts must be a positive integer, got {max_attempts!r}")

    primary_attempts = data.get("primary_attempts")
    if fallback is not None:
        if max_attempts < 2:
            raise ConfigError(f"{where}: a fallback probe needs max_attempts >= 2")
        if primary_attempts is not None and (
            isinstance(primary_attempts, bool)
            or not isinstance(primary_attempts, int)
            or not 1 <= primary_attempts < max_attempts
        ):
            raise ConfigError(f"{where}: primary_attempts must be between 1 and max_attempts - 1")
    elif primary_attempts is not None:
        raise ConfigError(f"{where}: primary_attempts requires a fallback_probe")

    endpoints = data.get("endpoints", [])
    if not isinstance(endpoints, list):
        raise ConfigError(f"{where}: endpoints must be a list")

    return ServiceSpec(
        name=name,
        primary_probe=primary,
        fallback_probe=fallback,
        max_attempts=max_attempts,
        retry_interval_s=_number(data, "retry_interval_s", 0.0, where),
        connect_timeout_s=_number(data, "connect_timeout_s", 2.0, where, minimum=0.001),
        request_timeout_s=_number(data, "request_timeout_s", 5.0, where, minimum=0.001),
        primary_attempts=primary_attempts,
        critical=bool(data.get("critical", True)),
        endpoints=tuple(str(e) for e in endpoints),
    )


def parse_plan(data):
    """Validate a plan document and build a DeploymentPlan. Pure: touches nothing outside."""
    if not isinstance(data, dict):
        raise ConfigError("plan must be a JSON object")
    entries = data.get("services")
    if not isinstance(entries, list) or not entries:
        raise ConfigError("plan must declare at least one service")

    services = [parse_service(entry) for entry in entries]
    names = [s.name for s in services]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"duplicate service name(s): {', '.join(duplicates)}")

    order = data.get("startup_order", names)
    if not isinstance(order, list):
        raise ConfigError("startup_order must be a list of service names")
    if len(order) != len(set(order)):
        raise ConfigError("startup_order lists a service more than once")
    unknown = [n for n in order if n not in names]
    if unknown:
        raise ConfigError(f"startup_order names unknown service(s): {', '.join(unknown)}")
    missing = [n for n in names if n not in order]
    if missing:
        raise ConfigError(f"startup_order omits service(s): {', '.join(missing)}")

    directories = []
    for entry in data.get("directories", []):
        if isinstance(entry, str):
            entry = {"path": entry}
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ConfigError("directories entries need a path")
        if entry.get("owner"):
            parse_owner(entry["owner"])
        directories.append(DirectorySpec(path=entry["path"], owner=entry.get("owner")))

    return DeploymentPlan(
        services=tuple(services),
        startup_order=tuple(order),
        compose_file=data.get("compose_file", "docker-compose.yml"),
        required_files=tuple(data.get("required_files", [])),
        directories=tuple(directories),
        source_dir=data.get("source_dir"),
        configure_playbook=data.get("configure_playbook"),
    )


def load_plan(path):
    logger = get_logger("config")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Error loading plan {path}: {e}")
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    except OSError as e:
        logger.error(f"Error loading plan {path}: {e}")
        raise ConfigError(f"cannot read plan {path}: {e}") from e
    plan = parse_plan(data)
    logger.info(f"Loaded plan with {len(plan.services)} services from {path}")
    return plan
