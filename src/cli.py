#!/usr/bin/env python3
"""CLI entry point for nodeprofile.

Subcommands:
- configure: Answer the selected cluster type's questions
- prepare: Run a cluster type's one-time preparation script
- list: Show nodes with identity and status
- apply: Assign an identity to nodes and run its apply command
- remove: Run each node's remove command and forget the node
- view: Summarise a node's most recent job log
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import logview
from cluster_type import TypeRegistry
from config import ProfileConfig, load_config
from configure import configure, describe, parse_answers
from errors import PreconditionError, ProfileError
from hostrange import HostRangeError
from jobs import JobOrchestrator, RecoveryGuard
from nodes import NodeRegistry

logger = logging.getLogger(__name__)


def _selected_type(config: ProfileConfig, registry: Optional[TypeRegistry] = None):
    registry = registry or TypeRegistry(config)
    cluster_type = registry.selected()
    if cluster_type is None:
        raise PreconditionError("No cluster type has been configured. Please run `nodeprofile configure`.")
    return cluster_type


def _orchestrator(config: ProfileConfig) -> JobOrchestrator:
    return JobOrchestrator(
        config=config,
        registry=NodeRegistry(config.data_dir),
        cluster_type=_selected_type(config),
    )


def cmd_configure(args, config: ProfileConfig) -> int:
    """Handle 'configure' - resolve and save answers."""
    types = TypeRegistry(config)
    current = config.cluster_type

    if args.show:
        cluster_type = types.find(args.type, current)
        if cluster_type is None:
            print("No cluster type has been configured.")
            return 1
        print('\n'.join(describe(cluster_type)))
        return 0

    supplied = parse_answers(args.answers) if args.answers else None
    # Answers may name the type themselves
    requested = args.type
    if supplied is not None:
        answer_type = supplied.pop('cluster_type', None)
        requested = requested or answer_type

    if requested and current and requested != current and not args.reset_type:
        raise PreconditionError(
            f"Cluster type '{current}' is already configured. "
            "Use --reset-type to configure a different type."
        )

    # --reset-type with answers never falls back to the current type
    fallback = None if args.reset_type and supplied is not None else current
    cluster_type = types.find(requested, fallback)
    if cluster_type is None:
        available = [t.id for t in types.all()]
        raise PreconditionError("Please select a valid cluster type. Available:", available)

    if supplied is None and args.accept_defaults:
        supplied = {}
    configure(config, cluster_type, supplied=supplied, accept_defaults=args.accept_defaults)
    print(f"Cluster type '{cluster_type.name}' configured")
    return 0


def cmd_prepare(args, config: ProfileConfig) -> int:
    """Handle 'prepare' - run the type's prepare.sh."""
    cluster_type = TypeRegistry(config).find(args.type)
    if cluster_type is None:
        raise PreconditionError(f"Cluster type '{args.type}' not found")
    if cluster_type.prepared and not args.force:
        print(f"Cluster type '{cluster_type.name}' is already prepared")
        return 0

    rc = cluster_type.prepare()
    if rc != 0:
        print(f"Error: Preparation failed with exit status {rc}", file=sys.stderr)
        return 1
    print(f"Cluster type '{cluster_type.name}' prepared")
    return 0


def cmd_list(args, config: ProfileConfig) -> int:
    """Handle 'list' - tabulate nodes."""
    registry = NodeRegistry(config.data_dir)
    guard = RecoveryGuard(registry)

    stuck = guard.find_stuck()
    if args.release_stuck and stuck:
        guard.release(stuck)
        stuck = []
    stuck_names = {n.name for n in stuck}

    nodes = registry.all()
    if not nodes:
        print("No nodes found.")
        return 0

    rows = [("Node", "Identity", "Status")]
    for node in nodes:
        status = node.status + (' (stuck)' if node.name in stuck_names else '')
        rows.append((node.name, node.identity or '-', status))
    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    for row in rows:
        print('  '.join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
    return 0


def cmd_apply(args, config: ProfileConfig) -> int:
    """Handle 'apply' - assign an identity and run its apply command."""
    orchestrator = _orchestrator(config)
    jobs = orchestrator.apply(args.targets, args.identity, force=args.force, wait=args.wait)
    return _report(jobs, args.wait)


def cmd_remove(args, config: ProfileConfig) -> int:
    """Handle 'remove' - run remove commands and forget nodes."""
    orchestrator = _orchestrator(config)
    jobs = orchestrator.remove(
        args.targets,
        force=args.force,
        wait=args.wait,
        remove_hunter_entry=args.remove_hunter_entry,
    )
    return _report(jobs, args.wait)


def _report(jobs, waited: bool) -> int:
    if not waited:
        for job in jobs:
            print(f"Started {job.action} of {', '.join(job.nodes)} (PID {job.pid})")
        return 0
    failed = [job for job in jobs if job.exit_status != 0]
    for job in jobs:
        outcome = 'succeeded' if job.exit_status == 0 else f'failed (exit status {job.exit_status})'
        print(f"{job.action.capitalize()} of {', '.join(job.nodes)} {outcome}")
    return 1 if failed else 0


def cmd_view(args, config: ProfileConfig) -> int:
    """Handle 'view' - summarise a node's log."""
    node = NodeRegistry(config.data_dir).find(args.node)
    if node is None:
        raise PreconditionError(f"Node '{args.node}' not found")
    if not node.log_file or not Path(node.log_file).is_file():
        print(f"No log found for node '{node.name}'")
        return 1

    text = Path(node.log_file).read_text(encoding='utf-8', errors='replace')
    print(logview.render(logview.parse_log(text), node.status, raw=args.raw))
    return 0


COMMANDS = {
    'configure': cmd_configure,
    'prepare': cmd_prepare,
    'list': cmd_list,
    'apply': cmd_apply,
    'remove': cmd_remove,
    'view': cmd_view,
}


def _add_job_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "targets",
        nargs="+",
        help="Node names or host-range expressions (e.g. node[01-03])",
    )
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Signal the owners of busy nodes and continue",
    )
    parser.add_argument(
        "--wait", "-w",
        action="store_true",
        help="Block until every job has finished",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nodeprofile",
        description="Configure cluster types and run deployment jobs against nodes",
    )
    parser.add_argument(
        "--root",
        type=Path,
        help="Profile root (default: $NODEPROFILE_ROOT, /usr/local/etc/nodeprofile, ~/.nodeprofile)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    p = subparsers.add_parser("configure", help="Answer the cluster type's questions")
    p.add_argument("type", nargs="?", help="Cluster type id or name")
    p.add_argument("--answers", help="Answers as a JSON object (non-interactive)")
    p.add_argument(
        "--accept-defaults",
        action="store_true",
        help="Fill unanswered questions from saved answers, probes or defaults",
    )
    p.add_argument("--reset-type", action="store_true", help="Switch to a different cluster type")
    p.add_argument("--show", action="store_true", help="Show the current configuration")

    p = subparsers.add_parser("prepare", help="Run a cluster type's preparation script")
    p.add_argument("type", help="Cluster type id or name")
    p.add_argument("--force", "-f", action="store_true", help="Prepare again even if already prepared")

    p = subparsers.add_parser("list", help="List nodes")
    p.add_argument(
        "--release-stuck",
        action="store_true",
        help="Mark in-progress nodes whose job process has gone as failed",
    )

    p = subparsers.add_parser("apply", help="Apply an identity to nodes")
    p.add_argument("identity", help="Identity name")
    _add_job_args(p)

    p = subparsers.add_parser("remove", help="Remove nodes")
    _add_job_args(p)
    hunter = p.add_mutually_exclusive_group()
    hunter.add_argument(
        "--remove-hunter-entry",
        dest="remove_hunter_entry",
        action="store_true",
        default=None,
        help="Remove the nodes from hunter after a successful removal",
    )
    hunter.add_argument(
        "--keep-hunter-entry",
        dest="remove_hunter_entry",
        action="store_false",
        help="Keep the nodes in hunter",
    )

    p = subparsers.add_parser("view", help="Summarise a node's job log")
    p.add_argument("node", help="Node name")
    p.add_argument("--raw", action="store_true", help="Show raw log lines")

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.root)
        return COMMANDS[args.command](args, config)
    except ProfileError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except HostRangeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted", file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())
