#!/usr/bin/env python3
"""
dev_runner.py -- Local development harness for the SimpleExpression rule.

The rule normally runs inside the notification service, which calls the
plugin entry points. This script drives the same entry points locally:

1. Loads a configuration category from a JSON file (or the plugin's
   default configuration when none is given) and calls ``plugin_init``.
2. Reads evaluation batches, one JSON object per line, from a file or
   stdin. Each batch maps asset names to ``{datapoint: value}`` objects.
3. Calls ``plugin_eval`` for every batch and logs the decision together
   with ``plugin_reason``.
4. Optionally applies a second configuration part-way through with
   ``plugin_reconfigure``.

Environment Variables:
    RULE_MAX_VARS           - Variables per asset (default: 20)
    RULE_TRUTHINESS_POLICY  - "nonzero" or "strict_one" (default: "nonzero")
    RULE_LOG_LEVEL          - Log level (default: "INFO")

Usage:
    python -m notification.rule.dev_runner --config rule.json readings.jsonl

    echo '{"modbus": {"humidity": 72.5}}' | \\
        python -m notification.rule.dev_runner
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, TextIO

from notification.rule.config import load_settings
from notification.rule.plugin import (
    SimpleExpressionRule,
    plugin_eval,
    plugin_info,
    plugin_init,
    plugin_reason,
    plugin_reconfigure,
    plugin_shutdown,
    plugin_triggers,
)

logger = logging.getLogger("dev_runner")


def _load_config(path: Path | None) -> dict[str, Any]:
    if path is None:
        return plugin_info().config
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)


def run(
    rule: SimpleExpressionRule,
    lines: TextIO,
    reconfigure_at: int | None = None,
    new_config: str | None = None,
) -> tuple[int, int]:
    """Evaluate every non-blank line of ``lines``.

    Returns
    -------
    tuple[int, int]
        (batches evaluated, batches that triggered)
    """
    evaluated = 0
    triggered = 0

    for lineno, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue

        if reconfigure_at is not None and evaluated == reconfigure_at and new_config:
            ok = plugin_reconfigure(rule, new_config)
            logger.info(
                "Reconfigure before batch %d: %s, triggers=%s",
                evaluated + 1,
                "applied" if ok else "rejected",
                plugin_triggers(rule),
            )

        fired = plugin_eval(rule, line)
        evaluated += 1
        triggered += int(fired)
        logger.info(
            "line %d: result=%s reason=%s", lineno, fired, plugin_reason(rule)
        )

    return evaluated, triggered


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Feed readings through the SimpleExpression rule plugin.",
    )
    parser.add_argument(
        "readings",
        nargs="?",
        type=Path,
        help="File with one JSON readings object per line (default: stdin)",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="JSON configuration category (default: plugin default config)",
    )
    parser.add_argument(
        "--reconfigure",
        type=Path,
        help="JSON configuration to apply with plugin_reconfigure",
    )
    parser.add_argument(
        "--reconfigure-at",
        type=int,
        default=0,
        help="Number of batches to evaluate before reconfiguring (default: 0)",
    )
    args = parser.parse_args(argv)

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    rule = plugin_init(_load_config(args.config))
    if rule is None:
        logger.error("Rule configuration rejected, see errors above")
        return 1

    logger.info("Triggers: %s", plugin_triggers(rule))
    logger.info(
        "max_vars=%d truthiness_policy=%s",
        settings.max_vars,
        settings.truthiness_policy.value,
    )

    new_config = None
    if args.reconfigure is not None:
        new_config = args.reconfigure.read_text(encoding="utf-8")

    try:
        if args.readings is None:
            evaluated, triggered = run(
                rule, sys.stdin, args.reconfigure_at, new_config
            )
        else:
            with args.readings.open(encoding="utf-8") as fh:
                evaluated, triggered = run(
                    rule, fh, args.reconfigure_at, new_config
                )
    finally:
        plugin_shutdown(rule)

    logger.info("Evaluated %d batch(es), %d triggered", evaluated, triggered)
    return 0


if __name__ == "__main__":
    sys.exit(main())
