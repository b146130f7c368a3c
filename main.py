#!/usr/bin/env python3
"""
Parcel Reconciler — Entry Point
================================

Imports a folder of scanned tax cards into the parcel catalog.

Usage:
    OPENAI_API_KEY=sk-... python main.py ~/Scans/TaxCards
    python main.py ~/Scans/TaxCards --no-create      # report unmatched APNs instead
    python main.py ~/Scans/TaxCards --delay 2 -v     # slower, with debug logging
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from parcel_reconciler.catalog import CatalogStore, LocalMirror
from parcel_reconciler.config import Settings, configure_logging
from parcel_reconciler.exceptions import ConfigurationError
from parcel_reconciler.extractor_llm import ExtractionClient
from parcel_reconciler.models import BatchItem, BatchReport, ItemStatus
from parcel_reconciler.pipeline import BatchReconciliationEngine, scan_folder
from parcel_reconciler.remote import RemoteParcelStore


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_BLUE = "\033[94m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_STATUS_STYLE: dict[ItemStatus, tuple[str, str]] = {
    ItemStatus.PENDING: (_DIM, "— Pending"),
    ItemStatus.PROCESSING: (_BLUE, "⟳ Processing"),
    ItemStatus.MATCHED: (_GREEN, "✓ Matched & Updated"),
    ItemStatus.CREATED: (_CYAN, "+ Created"),
    ItemStatus.NO_MATCH: (_YELLOW, "⚠ No Matching Parcel"),
    ItemStatus.ERROR: (_RED, "✕ Error"),
}


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_item(item: BatchItem) -> None:
    color, label = _STATUS_STYLE[item.status]
    apn = f"APN {item.apn}" if item.apn else ""
    print(f"  {item.file_name[:36]:<36} {_DIM}{apn:<18}{_RESET} {color}{label}{_RESET}")
    if item.error:
        print(f"    {_RED}{item.error}{_RESET}")
    if item.warning:
        print(f"    {_YELLOW}{item.warning}{_RESET}")


class _ProgressPrinter:
    """Prints each item once, when it reaches a terminal status."""

    def __init__(self) -> None:
        self._printed: set[int] = set()

    def __call__(self, items: list[BatchItem]) -> None:
        for index, item in enumerate(items):
            if item.is_done and index not in self._printed:
                self._printed.add(index)
                _print_item(item)


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_report(report: BatchReport) -> int:
    """Print the run summary.

    Returns:
        0 if no document ended in error, 1 otherwise.
    """
    print(f"{'─' * _WIDTH}")
    print(f"  Total:       {len(report.items)}")
    for status in (ItemStatus.MATCHED, ItemStatus.CREATED, ItemStatus.NO_MATCH, ItemStatus.ERROR):
        count = report.count(status)
        if count:
            color, label = _STATUS_STYLE[status]
            print(f"  {color}{label:<22}{_RESET} {count}")
    pending = report.count(ItemStatus.PENDING)
    if pending:
        print(f"  {_DIM}Not processed{_RESET}          {pending}")

    warnings = [i for i in report.items if i.warning]
    if warnings:
        print(f"\n  {_YELLOW}{_BOLD}WARNINGS ({len(warnings)}){_RESET}")
        for item in warnings:
            print(f"    {item.file_name}: {item.warning}")

    errors = report.count(ItemStatus.ERROR)
    print(f"{'=' * _WIDTH}")
    if report.cancelled:
        print(f"  {_YELLOW}{_BOLD}IMPORT CANCELLED{_RESET}")
    elif errors:
        print(f"  {_RED}{_BOLD}IMPORT FINISHED  --  {errors} error(s){_RESET}")
    else:
        print(f"  {_GREEN}{_BOLD}IMPORT FINISHED CLEAN{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 1 if errors else 0


# ─── Main ────────────────────────────────────────────────────────────


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import a folder of tax card PDFs.")
    parser.add_argument("folder", help="Folder holding the tax card PDFs")
    parser.add_argument(
        "--no-create",
        action="store_true",
        help="Report unmatched APNs instead of creating parcels",
    )
    parser.add_argument("--delay", type=float, help="Seconds to wait between documents")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Hydrate the catalog, run one batch and print the report."""
    load_dotenv()
    args = _parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        settings = Settings.from_env()
    except ConfigurationError as exc:
        print(f"{_RED}Configuration error:{_RESET} {exc}", file=sys.stderr)
        return 2
    if not settings.openai_api_key:
        print(f"{_RED}OPENAI_API_KEY is not set{_RESET}", file=sys.stderr)
        return 2

    try:
        items = scan_folder(args.folder)
    except OSError as exc:
        print(f"{_RED}{exc}{_RESET}", file=sys.stderr)
        return 2
    if not items:
        print("  No PDF files found in that folder.")
        return 0

    remote = (
        RemoteParcelStore(settings.remote_url, settings.remote_user, settings.remote_token)
        if settings.remote_enabled
        else None
    )
    catalog = CatalogStore(LocalMirror(settings.catalog_path), remote=remote)
    catalog.sync.add_error_listener(
        lambda failure: print(f"    {_YELLOW}sync: {failure}{_RESET}", file=sys.stderr)
    )
    loaded = catalog.hydrate()

    engine = BatchReconciliationEngine(
        catalog,
        ExtractionClient(
            api_key=settings.openai_api_key,
            model=settings.extraction_model,
            timeout=settings.extraction_timeout,
        ),
        folders_root=settings.folders_root,
        create_missing=settings.create_missing and not args.no_create,
        item_delay=settings.item_delay if args.delay is None else args.delay,
        extraction_retries=settings.extraction_retries,
    )

    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  BATCH TAX CARD IMPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Folder:      {args.folder}")
    print(f"  Documents:   {len(items)}")
    print(f"  Catalog:     {loaded} parcel(s)")
    print(f"{'─' * _WIDTH}")

    try:
        report = engine.run(items, on_progress=_ProgressPrinter())
    finally:
        catalog.close()
    return print_report(report)


if __name__ == "__main__":
    sys.exit(main())
