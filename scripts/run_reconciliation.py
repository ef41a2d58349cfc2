#!/usr/bin/env python
"""Run one reconciliation pass from cron.

Usage: python -m scripts.run_reconciliation [--at 2026-01-02T00:05:00+08:00]
"""
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone

from attendance_engine.logging_utils import setup_json_logging
from attendance_engine.services.reconciliation import run_reconciliation

logger = logging.getLogger("attendance_engine.cron")


def _parse_reference(raw: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mark missed check-outs and archive past attendance.")
    parser.add_argument(
        "--at",
        dest="at",
        type=_parse_reference,
        default=None,
        help="ISO-8601 reference time, defaults to now",
    )
    args = parser.parse_args(argv)

    setup_json_logging()
    reference_utc = args.at or datetime.now(timezone.utc)
    try:
        summary = run_reconciliation(reference_utc)
    except Exception:
        logger.exception("reconciliation_cron_failed", extra={"reference_utc": reference_utc.isoformat()})
        return 1

    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
