#!/usr/bin/env python3
"""CLI entry point for kpt-deploy.

Usage:
    kpt-deploy deploy [--config FILE] [--dir DIR] [--artifact IMAGE=TAG ...] [--json-output]
    kpt-deploy cleanup [--config FILE] [--dir DIR]
    kpt-deploy reconcile [--config FILE] [--dir DIR] [--json-output]

Every verb accepts inventory overrides (--name, --inventory-id,
--inventory-namespace, --namespace, --force) which take precedence over the
config file.
"""

import argparse
import json
import logging
import signal
import sys
import threading
import time

from config import ConfigError, DeployConfig, load_deploy_config
from deployer.artifacts import Artifact
from deployer.errors import DeployError
from deployer.events import EventLog
from deployer.kpt import KptCli
from deployer.session import DeploySession

logger = logging.getLogger(__name__)

VERBS = {
    "deploy": "Reconcile the Kptfile and run kpt live apply",
    "cleanup": "Reconcile the Kptfile and run kpt live destroy",
    "reconcile": "Only make the Kptfile inventory match the config",
}


def _common_parser(verb: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'kpt-deploy {verb}',
        description=VERBS[verb],
    )
    parser.add_argument(
        '--config', '-c',
        help='Deploy config file (default: $KPT_DEPLOY_CONFIG or ./kpt-deploy.yaml)',
    )
    parser.add_argument(
        '--dir', '-d',
        help='Package directory (overrides config dir)',
    )
    parser.add_argument('--name', help='Inventory name')
    parser.add_argument('--inventory-id', help='Inventory ID')
    parser.add_argument('--inventory-namespace', help='Inventory namespace')
    parser.add_argument('--namespace', '-n', help='Namespace of the deployment unit')
    parser.add_argument(
        '--force',
        action='store_true',
        help='Pass --force to kpt live init',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs and kpt output to stderr)',
    )
    if verb == 'deploy':
        parser.add_argument(
            '--artifact', '-a',
            action='append',
            default=[],
            metavar='IMAGE=TAG',
            help='Built image to track after a successful apply (repeatable)',
        )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr if json_output else None,
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_config(args) -> DeployConfig:
    config = load_deploy_config(args.config)
    config.apply_overrides(
        directory=args.dir,
        name=args.name,
        inventory_id=args.inventory_id,
        inventory_namespace=args.inventory_namespace,
        namespace=args.namespace,
        force=args.force,
    )
    return config


def _install_cancel_handlers(cancel: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into cancellation of the running kpt command."""
    def _handle(signum, _frame):
        logger.warning(f"Received signal {signum}, cancelling")
        cancel.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def build_session(config: DeployConfig, json_output: bool, cancel: threading.Event) -> DeploySession:
    """Wire a DeploySession with the kpt CLI and a fresh event log."""
    kpt = KptCli(
        binary=config.kpt_binary,
        out=sys.stderr if json_output else sys.stdout,
        cancel=cancel,
        timeout=config.timeout,
    )
    return DeploySession(
        directory=config.dir,
        kpt=kpt,
        desired=config.desired_inventory(),
        flags=tuple(config.flags),
        apply_flags=tuple(config.apply_flags),
        events=EventLog(),
    )


def _emit_json(verb: str, success: bool, duration: float, **extra) -> None:
    """Emit structured JSON output."""
    data = {'verb': verb, 'success': success, 'duration': round(duration, 2)}
    data.update(extra)
    print(json.dumps(data, indent=2))


def run_verb(verb: str, argv: list) -> int:
    """Parse arguments for a verb and run it.

    Returns:
        Exit code
    """
    parser = _common_parser(verb)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = _load_config(args)
        artifacts = [Artifact.parse(a) for a in getattr(args, 'artifact', [])]
    except (ConfigError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    cancel = threading.Event()
    _install_cancel_handlers(cancel)
    session = build_session(config, args.json_output, cancel)

    start = time.time()
    result: dict = {}
    try:
        if verb == 'deploy':
            namespaces = session.deploy(artifacts)
            result['namespaces'] = namespaces
            if not args.json_output:
                print(f"Deployed {config.dir} into: {', '.join(namespaces) or '(none detected)'}")
        elif verb == 'cleanup':
            session.cleanup()
            if not args.json_output:
                print(f"Cleaned up {config.dir}")
        else:
            outcome = session.reconcile()
            result['reconcile'] = outcome.to_dict()
            if not args.json_output:
                print(f"Kptfile {outcome.outcome}: {outcome.inventory.to_dict()}")
    except DeployError as e:
        logger.error(str(e))
        if args.json_output:
            _emit_json(verb, False, time.time() - start, error=str(e),
                       events=[ev.to_dict() for ev in session.events.events])
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        _emit_json(verb, True, time.time() - start,
                   events=[ev.to_dict() for ev in session.events.events], **result)
    return 0


def main(argv=None) -> int:
    """Dispatch to a verb handler."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] in ('-h', '--help'):
        print("Usage: kpt-deploy <verb> [options]")
        print()
        print("Verbs:")
        for verb, description in VERBS.items():
            print(f"  {verb:<10} {description}")
        print()
        print("Run 'kpt-deploy <verb> --help' for verb-specific options.")
        return 1 if not argv else 0

    verb = argv[0]
    if verb not in VERBS:
        print(f"Error: Unknown verb '{verb}'", file=sys.stderr)
        print(f"Available verbs: {', '.join(VERBS)}", file=sys.stderr)
        return 1
    return run_verb(verb, argv[1:])


if __name__ == '__main__':
    sys.exit(main())
