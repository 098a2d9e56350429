#!/usr/bin/env python3
"""
farmctl - Operator CLI for the RDS Farm Coordinator

Inspect and repair the shared deployment records without going through a
scaling event.

Usage:
    farmctl --deployment MyFarm show
    farmctl --deployment MyFarm show --json
    farmctl --deployment MyFarm release-lease
    farmctl --deployment MyFarm reset --yes
    farmctl --backend file --table /tmp/farm --deployment Demo simulate

Commands:
    show            Print the deployment view (primary broker, role lists)
    release-lease   Delete the lease record regardless of holder
    reset           Delete the membership record and the lease
    simulate        Race concurrent membership writes (two primary claims,
                    two gateways, two web-access nodes) and print the result

Settings default to the coordinator's environment variables
(RDS_DEPLOYMENT_NAME, TABLE_NAME, FARM_STORE_BACKEND, AWS_REGION).
"""

import argparse
import json
import os
import random
import sys
import threading
import time
from typing import List, Optional

from ..config.settings import CoordinatorConfig, StoreBackend
from ..distributed.election import MembershipProtocol, MemberUpdate, PrimaryConflictError
from ..distributed.membership import ComponentType, DeploymentView, MemberStatus
from ..handler import build_coordinator, build_protocol
from ..logging_config import setup_logging


class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    GRAY = '\033[90m'

    @classmethod
    def disable(cls):
        for attr in ['RESET', 'BOLD', 'RED', 'GREEN', 'YELLOW', 'GRAY']:
            setattr(cls, attr, '')


STATUS_COLORS = {
    MemberStatus.NEW: 'YELLOW',
    MemberStatus.CONFIGURING: 'YELLOW',
    MemberStatus.CONFIGURED: 'GREEN',
    MemberStatus.REMOVING: 'RED',
    MemberStatus.REMOVED: 'GRAY',
}

SIMULATED_MEMBERS = [
    ("i-madeup1", ComponentType.BROKER, True),
    ("i-madeup2", ComponentType.BROKER, True),
    ("i-madeup3", ComponentType.GATEWAY, None),
    ("i-madeup4", ComponentType.GATEWAY, None),
    ("i-madeup5", ComponentType.WEB_ACCESS, None),
    ("i-madeup6", ComponentType.WEB_ACCESS, None),
]


def format_view(view: DeploymentView) -> str:
    """Human-readable deployment summary."""
    lines = [f"{Colors.BOLD}Deployment{Colors.RESET}", "=========="]
    primary = view.primary_broker
    lines.append(f"Primary Broker: {primary.instance_id if primary else '(none)'}")

    sections = [
        ("Brokers", view.brokers),
        ("Gateways", view.gateways),
        ("Web Access", view.web_access),
    ]
    for title, members in sections:
        lines.append(f"\n{title} ({len(members)}):")
        for member in members:
            color = getattr(Colors, STATUS_COLORS.get(member.status, 'RESET'))
            status = member.status.value if member.status else '?'
            marker = " [PRIMARY]" if member.is_primary else ""
            lines.append(f"  {member.instance_id:20} {color}{status}{Colors.RESET}{marker}")
    return "\n".join(lines)


def _config_from_args(args) -> CoordinatorConfig:
    if not args.deployment:
        raise SystemExit("farmctl: a deployment name is required (--deployment or RDS_DEPLOYMENT_NAME)")
    backend = StoreBackend(args.backend)
    if backend is not StoreBackend.SSM and not args.table:
        raise SystemExit(f"farmctl: --table is required for the {backend.value} backend")
    return CoordinatorConfig(
        table_name=args.table or '',
        sns_topic_arn=os.environ.get('SNS_TOPIC_ARN', ''),
        deployment_name=args.deployment,
        store_backend=backend,
        region_name=args.region,
    )


def _protocol(args) -> MembershipProtocol:
    config = _config_from_args(args)
    return build_protocol(config, build_coordinator(config))


def simulate(protocol: MembershipProtocol, max_delay: float = 1.0) -> DeploymentView:
    """Write the simulated members concurrently and return the settled view."""
    errors: List[BaseException] = []

    def add(instance_id: str, component_type: ComponentType, primary: Optional[bool]):
        time.sleep(random.random() * max_delay)
        update = MemberUpdate(instance_id, component_type, MemberStatus.NEW, primary)
        try:
            protocol.set_member(update)
        except PrimaryConflictError:
            protocol.set_member(MemberUpdate(instance_id, component_type, MemberStatus.NEW, False))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=add, args=member) for member in SIMULATED_MEMBERS]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    if errors:
        raise errors[0]
    return protocol.store.get_view()


def cmd_show(args) -> int:
    view = _protocol(args).store.get_view()
    if args.json:
        print(json.dumps(view.to_dict(), indent=2))
    else:
        print(format_view(view))
    return 0


def cmd_release_lease(args) -> int:
    protocol = _protocol(args)
    if protocol.lease.force_release():
        print(f"Released lease {protocol.lease.key}")
    else:
        print(f"No lease held ({protocol.lease.key})")
    return 0


def cmd_reset(args) -> int:
    if not args.yes:
        print("farmctl: reset deletes all membership data; pass --yes to confirm", file=sys.stderr)
        return 2
    protocol = _protocol(args)
    protocol.store.reset()
    protocol.lease.force_release()
    print(f"Deleted {protocol.store.key} and {protocol.lease.key}")
    return 0


def cmd_simulate(args) -> int:
    protocol = _protocol(args)
    protocol.store.reset()
    protocol.lease.force_release()
    view = simulate(protocol, max_delay=args.max_delay)
    if args.json:
        print(json.dumps(view.to_dict(), indent=2))
    else:
        print(format_view(view))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect and repair RDS farm deployment records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--deployment", "-d", default=os.environ.get('RDS_DEPLOYMENT_NAME'),
                        help="Deployment name")
    parser.add_argument("--backend", "-b", choices=[b.value for b in StoreBackend],
                        default=os.environ.get('FARM_STORE_BACKEND', StoreBackend.SSM.value),
                        help="Record store backend")
    parser.add_argument("--table", "-t", default=os.environ.get('TABLE_NAME'),
                        help="DynamoDB table or state directory")
    parser.add_argument("--region", default=os.environ.get('AWS_REGION'),
                        help="AWS region")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--no-color", action="store_true", help="Disable colors")

    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print the deployment view")
    show.add_argument("--json", action="store_true", help="JSON output")
    show.set_defaults(func=cmd_show)

    release = sub.add_parser("release-lease", help="Force-delete the lease record")
    release.set_defaults(func=cmd_release_lease)

    reset = sub.add_parser("reset", help="Delete membership record and lease")
    reset.add_argument("--yes", action="store_true", help="Confirm deletion")
    reset.set_defaults(func=cmd_reset)

    sim = sub.add_parser("simulate", help="Race concurrent membership writes")
    sim.add_argument("--json", action="store_true", help="JSON output")
    sim.add_argument("--max-delay", type=float, default=1.0,
                     help="Maximum random start delay per writer (seconds)")
    sim.set_defaults(func=cmd_simulate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color or not sys.stdout.isatty():
        Colors.disable()
    setup_logging(verbose=args.verbose, stream=sys.stderr)

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
