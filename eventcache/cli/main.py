#!/usr/bin/env python3
"""Command line entry point for building and inspecting sample caches.

Usage:
    # Slice a folder of .npy recordings into 50 ms windows and cache every slice
    eventcache build --root data/nmnist --time-window 50000 --cache-root cache/nmnist_50ms

    # Same, configured from YAML and filled with 8 threads
    eventcache build --root data/nmnist --config configs/nmnist_50ms.yaml --jobs 8

    # Inspect / wipe an existing cache
    eventcache status --cache-root cache/nmnist_50ms
    eventcache clear --cache-root cache/nmnist_50ms
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from eventcache.config import build_slicer, load_config, slicer_cache_params
from eventcache.data.cache_manager import SampleCacheManager
from eventcache.data.cached_dataset import CachedDataset
from eventcache.data.events import NumpyEventRecordings
from eventcache.data.sliced_dataset import SlicedDataset
from eventcache.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eventcache",
        description="Slice event recordings and cache the resulting samples on disk.",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Slice a recordings folder and warm its cache")
    build.add_argument("--root", type=Path, required=True, help="Folder with <class>/*.npy recordings")
    build.add_argument("--config", type=Path, default=None, help="YAML config file")
    build.add_argument("--cache-root", type=str, default=None, help="Cache directory")
    slicing = build.add_mutually_exclusive_group()
    slicing.add_argument("--time-window", type=float, default=None, help="Slice length (µs)")
    slicing.add_argument("--event-count", type=int, default=None, help="Events per slice")
    build.add_argument("--overlap", type=float, default=None, help="Overlap between slices")
    build.add_argument("--include-incomplete", action="store_true", help="Keep short trailing slice")
    build.add_argument("--jobs", type=int, default=None, help="Worker threads")
    build.add_argument("--reset", action="store_true", help="Delete existing entries first")
    build.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    build.add_argument("overrides", nargs="*", help="Extra config overrides (key=value)")

    status = sub.add_parser("status", help="Show cache statistics")
    status.add_argument("--cache-root", type=str, required=True)

    clear = sub.add_parser("clear", help="Delete all cache entries")
    clear.add_argument("--cache-root", type=str, required=True)

    return parser


def _build_overrides(args: argparse.Namespace) -> List[str]:
    overrides = list(args.overrides)
    if args.cache_root is not None:
        overrides.append(f"cache_root_path={args.cache_root}")
    if args.time_window is not None:
        overrides += [f"slice_time_window={args.time_window}", "slice_event_count=null"]
    if args.event_count is not None:
        overrides += [f"slice_event_count={args.event_count}", "slice_time_window=null"]
    if args.overlap is not None:
        overrides.append(f"slice_overlap={args.overlap}")
    if args.include_incomplete:
        overrides.append("include_incomplete=true")
    if args.jobs is not None:
        overrides.append(f"num_workers={args.jobs}")
    if args.reset:
        overrides.append("reset_cache=true")
    return overrides


def run_build(args: argparse.Namespace) -> int:
    config = load_config(args.config, _build_overrides(args))
    slicer = build_slicer(config)

    recordings = NumpyEventRecordings(args.root)
    sliced = SlicedDataset(recordings, slicer, metadata_path=config.metadata_path)
    cached = CachedDataset(
        sliced,
        cache_root_path=config.cache_root_path,
        reset_cache=config.reset_cache,
        cache_params=slicer_cache_params(config),
    )

    n_computed = cached.warm_cache(n_jobs=config.num_workers, show_progress=not args.no_progress)
    logger.info(f"[bold green]✓ Build complete:[/bold green] {n_computed} new, {len(cached)} total")
    cached.cache.print_status()
    return 0


def run_status(args: argparse.Namespace) -> int:
    cache_root = Path(args.cache_root)
    if not cache_root.is_dir():
        logger.error(f"✗ Cache directory not found: {cache_root}")
        return 1
    cache_mgr = SampleCacheManager(cache_root, read_only=True)
    cache_mgr.print_status()
    return 0


def run_clear(args: argparse.Namespace) -> int:
    cache_root = Path(args.cache_root)
    if not cache_root.is_dir():
        logger.error(f"✗ Cache directory not found: {cache_root}")
        return 1
    removed = SampleCacheManager(cache_root).clear()
    logger.info(f"✓ Removed {removed} entries")
    return 0


COMMANDS = {"build": run_build, "status": run_status, "clear": run_clear}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file, log_level=logging.DEBUG if args.verbose else logging.INFO)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
