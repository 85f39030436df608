import argparse
import logging
import os
import signal
import sys
import threading

import botocore.exceptions
import sentry_sdk

from fleet_hygiene import __version__, log_format, logger
from fleet_hygiene import config as config_module
from fleet_hygiene.controller import Controller
from fleet_hygiene.errors import CollaboratorUnavailable, ConfigInvalid
from fleet_hygiene.utils import status_print

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_INVALID = 2

cancel_event = threading.Event()
terminate = 0


def handler(_signum, _frame):
    global terminate
    terminate += 1
    print("", file=sys.stderr)
    if terminate >= 2:
        print("*** double ctrl-c detected. exiting immediately!", file=sys.stderr)
        os._exit(EXIT_FAILURE)
    print(
        "*** ctrl-c detected. finishing in-flight actions, skipping the rest " "(one more to exit immediately).",
        file=sys.stderr,
    )
    cancel_event.set()


def init_sentry():
    # if SENTRY_DSN is set, then init sentry
    if "SENTRY_DSN" not in os.environ:
        return False
    sentry_sdk.init(dsn=os.environ["SENTRY_DSN"], traces_sample_rate=1.0)
    logger.info("SENTRY_DSN set, initialized sentry")
    return True


def build_parser():
    parser = argparse.ArgumentParser(
        description=(
            "cordons hosts with high disk usage and destroys drained hosts "
            "once they're nearly idle. runs a single pass."
        ),
    )
    parser.add_argument("cluster_id", nargs="?", help="cluster to inspect (may also come from --config)")
    parser.add_argument(
        "-u",
        "--utilization-threshold",
        type=float,
        metavar="FRACTION",
        help="cordon active hosts above this utilization. 0 to 1, defaults to %s."
        % config_module.DEFAULT_UTILIZATION_THRESHOLD,
    )
    parser.add_argument(
        "-c",
        "--task-count-threshold",
        type=int,
        metavar="COUNT",
        help="destroy draining hosts with fewer tasks than this, defaults to %s."
        % config_module.DEFAULT_TASK_COUNT_THRESHOLD,
    )
    parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        default=None,
        help="log intended actions but don't cordon or destroy anything",
    )
    parser.add_argument("--config", metavar="FILE", help="toml file with a [retirement] table")
    parser.add_argument("--region", help="aws region, defaults to the boto3 default")
    parser.add_argument(
        "--account",
        dest="account_name",
        help="datadog account_name tag, defaults to '%s'." % config_module.DEFAULT_ACCOUNT_NAME,
    )
    parser.add_argument(
        "-w",
        "--window-seconds",
        type=int,
        metavar="SECONDS",
        help="only use metric samples this recent, defaults to %s." % config_module.DEFAULT_WINDOW_SECONDS,
    )
    parser.add_argument(
        "-W",
        "--max-workers",
        type=int,
        metavar="COUNT",
        help="concurrent host actions, defaults to %s." % config_module.DEFAULT_MAX_WORKERS,
    )
    parser.add_argument(
        "-r",
        "--recheck",
        action="store_true",
        default=None,
        help="re-read each host from the registry right before destroying it",
    )
    parser.add_argument(
        "--percent-utilization",
        action="store_true",
        default=None,
        help="the metric reports 0-100 rather than a fraction",
    )
    parser.add_argument(
        "-j",
        "--json",
        action="store_true",
        help="print the pass report as json",
    )
    parser.add_argument(
        "-a",
        "--only-actions",
        action="store_true",
        help="leave kept hosts out of the human readable report",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        dest="log_level",
        default=0,
        help="specify multiple times for even more verbosity.",
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args):
    overrides = {
        "cluster_id": args.cluster_id,
        "utilization_threshold": args.utilization_threshold,
        "task_count_threshold": args.task_count_threshold,
        "dry_run": args.dry_run,
        "region": args.region,
        "account_name": args.account_name,
        "window_seconds": args.window_seconds,
        "max_workers": args.max_workers,
        "recheck": args.recheck,
        "percent_utilization": args.percent_utilization,
    }
    if args.config:
        return config_module.RetirementConfig.from_toml(args.config, **overrides).validate()
    if not args.cluster_id:
        raise ConfigInvalid("a cluster_id (or --config with one) is required")
    values = {key: value for key, value in overrides.items() if value is not None}
    return config_module.RetirementConfig(**values).validate()


def setup_logging(log_level, stream):
    logging.basicConfig(format=log_format, stream=stream, level=logging.WARNING)
    if log_level == 1:
        logger.setLevel(logging.INFO)
    elif log_level >= 2:
        logger.setLevel(logging.DEBUG)


def main(argv=None, controller_factory=Controller.from_config):
    parser = build_parser()
    args = parser.parse_args(argv)
    # keep stdout clean for the json report
    setup_logging(args.log_level, sys.stderr if args.json else sys.stdout)
    init_sentry()

    try:
        config = config_from_args(args)
    except ConfigInvalid as e:
        print(f"FATAL: invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_INVALID

    if not args.json:
        status_print(
            f"{config.cluster_id}: starting pass (utilization > {config.utilization_threshold}, "
            f"tasks < {config.task_count_threshold}{', dry run' if config.dry_run else ''})",
        )

    global terminate
    terminate = 0
    cancel_event.clear()
    previous_handler = signal.signal(signal.SIGINT, handler)
    try:
        controller = controller_factory(config)
        report = controller.run_pass(cancel_event=cancel_event)
    except CollaboratorUnavailable as e:
        print(f"FATAL: pass aborted, {e.__class__.__name__}: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except botocore.exceptions.BotoCoreError as e:
        # e.g. no region configured
        print(f"FATAL: aws setup failed, {e.__class__.__name__}: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except ConfigInvalid as e:
        print(f"FATAL: invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_INVALID
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.json:
        print(report.to_json())
    else:
        print(report.format_human(only_actions=args.only_actions))
        status_print(f"{config.cluster_id}: pass complete.")

    if report.exhausted:
        return EXIT_FAILURE
    return EXIT_OK
