"""
Log configured performance counters at a fixed interval.

    python -m apps.monitor.main --count 10
    python -m apps.monitor.main --config counters.json --interval 500
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from perfcounter.core.counters.errors import PerfCounterError
from perfcounter.core.counters.provider import default_provider
from perfcounter.core.logging_ import setup_logging
from perfcounter.core.rendering.renderer import PerformanceCounterFilter, PerformanceCounterRenderer
from perfcounter.shared.config import AppConfig
from perfcounter.shared.store import ConfigStore

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("perfcounter-monitor")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file (default: app data dir)")
    parser.add_argument("--interval", type=int, default=None, help="Sample interval in ms")
    parser.add_argument("--count", type=int, default=0, help="Stop after N samples (0 = run until Ctrl+C)")
    parser.add_argument("--provider", choices=["auto", "pdh", "psutil"], default=None)
    parser.add_argument("--log-file", type=Path, default=None, help="Log file (default: app data logs dir)")
    parser.add_argument("--debug", action="store_true")
    return parser


def open_renderers(cfg: AppConfig) -> List[PerformanceCounterRenderer]:
    """Open every configured counter; counters that fail to open are skipped."""
    try:
        provider = default_provider(cfg.provider)
    except RuntimeError as e:
        log.error(f"Counter provider '{cfg.provider}' unavailable: {e}")
        return []
    renderers = []
    for options in cfg.counters:
        renderer = PerformanceCounterRenderer(options, provider)
        try:
            renderer.initialize()
        except PerfCounterError as e:
            log.error(f"Disabled counter {options.category}\\{options.counter}: {e}")
            continue
        renderers.append(renderer)
    return renderers


def build_sample_logger(renderers: List[PerformanceCounterRenderer]) -> logging.Logger:
    sample_log = logging.getLogger("perfcounter.samples")
    sample_log.setLevel(logging.INFO)
    sample_log.propagate = False
    for old in list(sample_log.handlers):
        sample_log.removeHandler(old)

    fields = " ".join(f"{r.options.name}=%({r.options.name})s" for r in renderers)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(f"%(asctime)s {fields}"))
    for renderer in renderers:
        handler.addFilter(PerformanceCounterFilter(renderer))
    sample_log.addHandler(handler)
    return sample_log


def apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Command line values replace the config file values, validated like the file."""
    overrides = {}
    if args.interval is not None:
        overrides["sample_interval_ms"] = args.interval
    if args.provider is not None:
        overrides["provider"] = args.provider
    if not overrides:
        return cfg
    return AppConfig.model_validate({**cfg.model_dump(), **overrides})


def run(cfg: AppConfig, count: int, stop_evt: threading.Event) -> int:
    renderers = open_renderers(cfg)
    if not renderers:
        log.error("No performance counter could be opened")
        return 1

    sample_log = build_sample_logger(renderers)
    interval = cfg.sample_interval_ms / 1000.0
    samples = 0
    try:
        while not stop_evt.is_set():
            sample_log.info("sample")
            samples += 1
            if count and samples >= count:
                break
            stop_evt.wait(interval)
    finally:
        for renderer in renderers:
            renderer.close()
        log.info(f"Stopped after {samples} samples")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO, args.log_file)

    store = ConfigStore(args.config)
    cfg = store.load()
    log.info(f"Loaded config from {store.path()}")
    try:
        cfg = apply_overrides(cfg, args)
    except ValidationError as e:
        log.error(f"Invalid command line options: {e}")
        return 2

    stop_evt = threading.Event()

    def signal_handler(sig, frame):
        log.info("Received interrupt signal (Ctrl+C), shutting down...")
        stop_evt.set()

    if hasattr(signal, "SIGINT"):
        signal.signal(signal.SIGINT, signal_handler)

    return run(cfg, args.count, stop_evt)


if __name__ == "__main__":
    sys.exit(main())
