#!/usr/bin/env python3
"""
Farm Demo - Demonstration of deployment coordination
Simulates several coordinator invocations racing on a shared file-backed store.
"""

import sys
import threading
import argparse
from datetime import datetime, timedelta, timezone

from rdsfarm.cli.farmctl import format_view
from rdsfarm.distributed.coordinators import FileCoordinator
from rdsfarm.distributed.election import MembershipProtocol, MemberUpdate
from rdsfarm.distributed.lease import Lease, LeaseManager
from rdsfarm.distributed.membership import ComponentType, MemberStatus, MembershipStore
from rdsfarm.constants import RecordKeys


def build_protocol(data_dir: str, deployment: str, lease_ttl: int = 60) -> MembershipProtocol:
    coordinator = FileCoordinator(data_dir)
    store = MembershipStore(coordinator, RecordKeys.membership(deployment))
    lease = LeaseManager(
        coordinator,
        RecordKeys.lease(deployment),
        ttl=lease_ttl,
        acquire_timeout=10,
        wait_range=(0.01, 0.05),
    )
    return MembershipProtocol(store, lease)


def simulate_farm(num_brokers: int = 3, data_dir: str = '/tmp/rds-farm-demo',
                  deployment: str = 'DemoFarm'):
    """
    Simulate concurrent broker launches followed by gateway and web-access joins.

    Args:
        num_brokers: Number of brokers launching at once
        data_dir: Directory for shared deployment state
        deployment: Deployment name
    """
    print(f"\n{'='*70}")
    print(f"Simulating RDS farm '{deployment}' with {num_brokers} concurrent brokers")
    print(f"{'='*70}\n")

    protocol = build_protocol(data_dir, deployment)
    protocol.store.reset()
    protocol.lease.force_release()

    # Scenario 1: every broker tries to become primary at the same time
    print("Scenario 1: concurrent primary election")
    results = {}

    def elect(instance_id: str):
        results[instance_id] = protocol.elect_primary(instance_id)

    threads = [
        threading.Thread(target=elect, args=(f"i-broker{i+1}",))
        for i in range(num_brokers)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for instance_id, won in sorted(results.items()):
        print(f"  {instance_id}: {'won' if won else 'lost'}")
    winners = [i for i, won in results.items() if won]
    print(f"  Winners: {len(winners)} (expected 1)")
    print("\n" + format_view(protocol.store.get_view()))

    # Scenario 2: primary finishes bootstrapping, secondaries join
    print(f"\n{'='*70}")
    print("Scenario 2: primary configured, gateways and web access join")
    print(f"{'='*70}\n")

    primary = winners[0]
    protocol.set_member(MemberUpdate(primary, ComponentType.BROKER, MemberStatus.CONFIGURED))
    joiners = [
        ("i-gateway1", ComponentType.GATEWAY),
        ("i-gateway2", ComponentType.GATEWAY),
        ("i-web1", ComponentType.WEB_ACCESS),
    ]
    threads = [
        threading.Thread(
            target=protocol.set_member,
            args=(MemberUpdate(instance_id, component_type, MemberStatus.CONFIGURING),),
        )
        for instance_id, component_type in joiners
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    print(format_view(protocol.store.get_view()))

    # Scenario 3: a gateway is scaled in
    print(f"\n{'='*70}")
    print("Scenario 3: i-gateway2 terminates")
    print(f"{'='*70}\n")

    protocol.set_member(MemberUpdate("i-gateway2", status=MemberStatus.REMOVING))
    protocol.set_member(MemberUpdate("i-gateway2", status=MemberStatus.REMOVED))
    print(format_view(protocol.store.get_view()))

    # Scenario 4: a crashed writer left an expired lease behind
    print(f"\n{'='*70}")
    print("Scenario 4: stale lease left by a crashed writer is reclaimed")
    print(f"{'='*70}\n")

    expired = datetime.now(timezone.utc) - timedelta(seconds=5)
    stale = Lease(token="crashed-writer", expires_at=expired)
    protocol.lease.coordinator.put(protocol.lease.key, stale.to_value())
    protocol.set_member(MemberUpdate("i-web2", ComponentType.WEB_ACCESS, MemberStatus.NEW))
    print("  Write after stale lease succeeded")
    print("\n" + format_view(protocol.store.get_view()))

    protocol.store.reset()
    print("\nFarm simulation complete.\n")


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description='RDS Farm Coordination Demonstration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python farm_demo.py                          # 3 brokers racing for primary
  python farm_demo.py --brokers 5              # 5 brokers racing for primary
  python farm_demo.py --data-dir /tmp/my-farm  # Use custom data directory
"""
    )

    parser.add_argument('--brokers', type=int, default=3,
                        help='Number of brokers to launch concurrently (default: 3)')
    parser.add_argument('--data-dir', type=str, default='/tmp/rds-farm-demo',
                        help='Directory for deployment state (default: /tmp/rds-farm-demo)')

    args = parser.parse_args()

    if args.brokers < 1:
        print("Error: Number of brokers must be at least 1")
        return 1

    try:
        simulate_farm(args.brokers, args.data_dir)
        return 0
    except KeyboardInterrupt:
        print("\n\nSimulation interrupted by user.\n")
        return 130
    except Exception as e:
        print(f"\nError: {e}\n")
        return 1


if __name__ == '__main__':
    sys.exit(main())
