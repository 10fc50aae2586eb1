import argparse
import asyncio
import json
import sys
from pathlib import Path

from .config import load_plan
from .errors import ConfigError
from .lifecycle import LifecycleController
from .models import DeploymentConfig, ExitCode
from .orchestrator import DeploymentOrchestrator
from .reporter import Reporter
from .retry import RetryScheduler
from .runtime import DockerComposeRuntime, MavenBuildTool, PlaybookConfigurator
from .tracker import ServiceHealthTracker
from .logger import setup_logging, get_logger

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def project_dir_for(args):
    return Path(args.project_dir) if args.project_dir else Path(args.plan).resolve().parent


def make_runtime(plan, args):
    return DockerComposeRuntime(compose_file=plan.compose_file, project_dir=project_dir_for(args))


def make_tracker(config):
    return ServiceHealthTracker.from_config(config, RetryScheduler())


def make_config(args):
    """Run settings from the parsed command line; verify only carries the health options"""
    config = DeploymentConfig(max_workers=args.max_workers, global_deadline_s=args.deadline)
    if args.cmd == "deploy":
        config.no_cache = args.no_cache
        config.skip_build = args.skip_build
        config.skip_tests = not args.run_tests
    return config


def build_orchestrator(plan, args):
    config = make_config(args)
    lifecycle = LifecycleController(
        make_runtime(plan, args),
        build_tool=MavenBuildTool(),
        configurator=PlaybookConfigurator(),
        config=config,
        base_dir=project_dir_for(args),
    )
    return DeploymentOrchestrator(lifecycle, make_tracker(config))


def describe_plan(plan):
    lines = [f"Plan: {len(plan.services)} services, compose file {plan.compose_file}"]
    for spec in plan.ordered_services():
        probes = spec.primary_probe.target
        if spec.fallback_probe:
            probes += f" (fallback {spec.fallback_probe.target})"
        lines.append(f"  - {spec.name}: {probes}, up to {spec.max_attempts} attempts every {spec.retry_interval_s}s")
    return "\n".join(lines)


def add_plan_argument(parser):
    parser.add_argument("--plan", required=True, help="JSON deployment plan")
    parser.add_argument("--project-dir", help="Directory holding the compose file (default: the plan's directory)")


def add_health_arguments(parser):
    parser.add_argument("--max-workers", type=int, default=8)
    parser.add_argument("--deadline", type=float, help="Verification deadline in seconds")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")


def main():
    parser = argparse.ArgumentParser(prog="deploy-orchestrator", description="Deploy a container stack and verify it is healthy")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS)
    sub = parser.add_subparsers(dest="cmd", required=True)

    deploy = sub.add_parser("deploy", help="Tear down, start and verify the stack")
    add_plan_argument(deploy)
    add_health_arguments(deploy)
    deploy.add_argument("--cache", dest="no_cache", action="store_false", help="Allow the image layer cache")
    deploy.add_argument("--skip-build", action="store_true")
    deploy.add_argument("--run-tests", action="store_true", help="Run tests during the application build")
    deploy.add_argument("--dry-run", action="store_true")

    validate = sub.add_parser("validate", help="Validate a plan without side effects")
    add_plan_argument(validate)

    verify = sub.add_parser("verify", help="Only run health checks against a running stack")
    add_plan_argument(verify)
    add_health_arguments(verify)

    status = sub.add_parser("status", help="Show runtime status of the services")
    add_plan_argument(status)

    teardown = sub.add_parser("teardown", help="Stop and remove every service of the plan")
    add_plan_argument(teardown)

    args = parser.parse_args()
    setup_logging(args.log_level)
    logger = get_logger("cli")

    try:
        plan = load_plan(args.plan)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(int(ExitCode.ABORTED))

    if args.cmd == "validate":
        print(describe_plan(plan))
        return

    if args.cmd == "deploy":
        if args.dry_run:
            print("DRY RUN: nothing will be changed")
            print(describe_plan(plan))
            return

        orchestrator = build_orchestrator(plan, args)
        try:
            outcome = asyncio.run(orchestrator.run(plan))
        except KeyboardInterrupt:
            logger.error("Deployment interrupted!")
            sys.exit(int(ExitCode.ABORTED))

        if args.json:
            print(json.dumps(orchestrator.to_dict(outcome), indent=2))
        else:
            print(orchestrator.render(outcome))
        sys.exit(int(outcome.exit_code))

    if args.cmd == "verify":
        reporter = Reporter()
        try:
            result = asyncio.run(make_tracker(make_config(args)).run(plan))
        except KeyboardInterrupt:
            logger.error("Verification interrupted!")
            sys.exit(int(ExitCode.ABORTED))
        print(json.dumps(reporter.to_dict(result), indent=2) if args.json else reporter.render(result))
        sys.exit(int(result.exit_code))

    runtime = make_runtime(plan, args)
    if not runtime.is_available():
        print("Error: container runtime is not available")
        sys.exit(int(ExitCode.ABORTED))

    if args.cmd == "status":
        for name, state in runtime.ps():
            print(f"{name}: {state}")

    if args.cmd == "teardown":
        runtime.teardown(list(reversed(plan.startup_order)))
        print("Done.")


if __name__ == "__main__":
    main()
