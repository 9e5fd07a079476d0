"""
Diagnostic script for the performance counter sampler.
Checks each step: provider selection, instance enumeration, current process
auto-detection and a few samples of one counter.

Usage:
  python scripts/diagnose_counters.py [category] [counter] [--provider auto|pdh|psutil]
"""

import argparse
import logging
import os
import sys
import time

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from perfcounter.core.counters.errors import PerfCounterError
from perfcounter.core.counters.instance import resolve_process_instance
from perfcounter.core.counters.provider import default_provider
from perfcounter.core.counters.sampler import RateSampler

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("category", nargs="?", default="Process")
    parser.add_argument("counter", nargs="?", default="% Processor Time")
    parser.add_argument("--provider", choices=["auto", "pdh", "psutil"], default="auto")
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

    print("=" * 70)
    print("STEP 1: Provider")
    print("=" * 70)
    provider = default_provider(args.provider)
    print(f"✓ Using {type(provider).__name__}")

    print("\n" + "=" * 70)
    print(f"STEP 2: Instances of {args.category!r}")
    print("=" * 70)
    try:
        instances = provider.instance_names(args.category)
    except PerfCounterError as e:
        print(f"✗ Enumeration failed: {e}")
        return 1
    print(f"✓ {len(instances)} instances")
    for name in instances[:10]:
        print(f"  - {name}")
    if len(instances) > 10:
        print(f"  ... and {len(instances) - 10} more")

    print("\n" + "=" * 70)
    print("STEP 3: Current process instance")
    print("=" * 70)
    instance = resolve_process_instance(provider, "Process")
    if instance:
        print(f"✓ pid {os.getpid()} is instance {instance!r}")
    else:
        print(f"✗ No Process instance reports ID Process == {os.getpid()}")

    print("\n" + "=" * 70)
    print(f"STEP 4: Sampling {args.category}\\{args.counter}")
    print("=" * 70)
    sampler = RateSampler(provider)
    try:
        sampler.open(args.category, args.counter)
        print(f"✓ Opened (instance={sampler.instance!r})")
        for i in range(args.samples):
            time.sleep(1.0)
            print(f"[{i + 1:4d}] {sampler.value():12.2f}")
    except PerfCounterError as e:
        print(f"✗ {type(e).__name__}: {e}")
        return 1
    finally:
        sampler.close()

    print("=" * 70)
    return 0


if __name__ == "__main__":
    sys.exit(main())
