import argparse
import asyncio
import json
import os
import signal
import sys

from .config import check_required_env, load_env_file, load_rollout_config
from .engine import RolloutExecutor
from .errors import ConfigurationError
from .logger import LOG_LEVELS, get_logger, setup_logging
from .planner import RolloutPlanner
from .templates import render_env_file

EXIT_CONFIG_ERROR = 2


def load_config(spec_path, env_file=None, environ=None):
    """Read the rollout spec and run the pre-flight environment check"""
    environ = dict(os.environ if environ is None else environ)
    if env_file:
        # variables already set in the process win over the file
        environ = {**load_env_file(env_file), **environ}
    config = load_rollout_config(spec_path, environ)
    check_required_env(config.required_env, environ)
    return config


def save_report(path, report):
    with open(path, "w") as f:
        json.dump(report.to_dict(), f, indent=2)


def parse_assignments(pairs):
    values = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"expected KEY=VALUE, got {pair!r}")
        values[key] = value
    return values


async def run_rollout(config, dry_run=False):
    logger = get_logger("cli")
    executor = RolloutExecutor(probe_timeout_s=config.probe_timeout_s,
                               startup_timeout_s=config.startup_timeout_s)

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, executor.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for {sig!r}; interrupt will not cancel cleanly")

    try:
        return await executor.execute(config.nodes, dry_run=dry_run)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def build_parser():
    parser = argparse.ArgumentParser(prog="rollout-orchestrator",
                                     description="Bring services up in dependency order and verify their health")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS)
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="start and health-check every node")
    run.add_argument("--spec", required=True, help="rollout spec (JSON)")
    run.add_argument("--env-file", help="dotenv file with variables used by the spec")
    run.add_argument("--format", choices=("text", "json"), default="text")
    run.add_argument("--report", help="also write the JSON report to this file")
    run.add_argument("--dry-run", action="store_true")

    plan = sub.add_parser("plan", help="print the bring-up order without starting anything")
    plan.add_argument("--spec", required=True)
    plan.add_argument("--env-file")

    render = sub.add_parser("render-env", help="render an env file for a deployment target")
    render.add_argument("--base", required=True, help="env file to start from")
    render.add_argument("--set", dest="overrides", action="append", metavar="KEY=VALUE")
    render.add_argument("--header", action="append", default=[])
    render.add_argument("--output")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    logger = get_logger("cli")

    if args.cmd == "run":
        try:
            config = load_config(args.spec, args.env_file)
        except (ConfigurationError, OSError) as e:
            logger.error(f"Rollout not started: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)

        try:
            report = asyncio.run(run_rollout(config, args.dry_run))
        except ConfigurationError as e:
            # planning fails before any startup action runs
            logger.error(f"Rollout not started: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)

        if args.format == "json":
            print(json.dumps(report.to_dict(), indent=2))
        else:
            for line in report.format_lines():
                print(line)
        if args.report:
            save_report(args.report, report)
        sys.exit(report.exit_code)

    if args.cmd == "plan":
        try:
            config = load_config(args.spec, args.env_file)
            planner = RolloutPlanner()
            plan = planner.plan(config.nodes)
            tiers = planner.tiers(config.nodes)
        except (ConfigurationError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)

        for position, name in enumerate(plan, start=1):
            print(f"{position}\t{name}")
        for depth, tier in enumerate(tiers):
            logger.info(f"Tier {depth}: {', '.join(tier)}")
        sys.exit(0)

    if args.cmd == "render-env":
        try:
            with open(args.base) as f:
                base = f.read()
            text = render_env_file(base, parse_assignments(args.overrides), args.header)
            if args.output:
                with open(args.output, "w") as f:
                    f.write(text)
            else:
                sys.stdout.write(text)
        except (ConfigurationError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)
        sys.exit(0)


if __name__ == "__main__":
    main()
