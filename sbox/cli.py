"""
sbox-annotate: run one annotation pass over a saved Gmail HTML snapshot.

Uses the keyword fallback (no model is loaded) and prints one line per row:
identity, category, confidence, source and a truncated subject. With
``--output`` the annotated HTML is written back out.

Usage:
    sbox-annotate inbox.html
    sbox-annotate inbox.html --settings settings.yaml --show-confidence --output labelled.html
    sbox-annotate inbox.html --json --stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from sbox.classification.interfaces import NullClassifier
from sbox.config import APP_VERSION
from sbox.engine.controller import EngineController
from sbox.engine.identity import HASH_SCHEMES
from sbox.engine.processor import enumerate_items
from sbox.infrastructure.env import ensure_env_loaded
from sbox.infrastructure.settings import (
    EngineSettings,
    SettingsProvider,
    StaticSettingsProvider,
    YamlSettingsProvider,
)
from sbox.observability.logging import get_logger
from sbox.observability.sinks import NullTelemetrySink
from sbox.observability.telemetry import get_counters, get_latency_stats
from sbox.surface.soup import SoupSurface

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sbox-annotate", description="Annotate a Gmail HTML snapshot with SBOX categories"
    )
    parser.add_argument("snapshot", type=Path, help="Saved Gmail page (HTML)")
    parser.add_argument(
        "--location",
        default="https://mail.google.com/mail/u/0/#inbox",
        help="Page URL the snapshot was taken at",
    )
    parser.add_argument("--settings", type=Path, help="YAML settings file")
    parser.add_argument(
        "--show-confidence", action="store_true", help="Add confidence tooltip and indicator"
    )
    parser.add_argument(
        "--hash", choices=sorted(HASH_SCHEMES), default=None, help="Fallback identity hash"
    )
    parser.add_argument("--output", type=Path, help="Write the annotated HTML here")
    parser.add_argument("--json", action="store_true", help="Print rows as JSON lines")
    parser.add_argument("--stats", action="store_true", help="Print counters and pass latency")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    return parser


async def annotate_snapshot(
    html: str,
    location: str,
    settings_provider: SettingsProvider,
    identity_scheme: str | None = None,
) -> tuple[SoupSurface, list[dict[str, object]]]:
    """
    Run a single pass over ``html`` and describe every row.

    Returns:
        (annotated surface, one dict per row)
    """
    surface = SoupSurface(html, location=location)
    kwargs = {"identity_scheme": identity_scheme} if identity_scheme else {}
    engine = EngineController(
        surface, NullClassifier(), settings_provider, telemetry=NullTelemetrySink(), **kwargs
    )
    await engine.run_pass("cli")

    rows: list[dict[str, object]] = []
    for item in enumerate_items(surface, engine.profile):
        identity = engine.resolver.resolve(item)
        binding = engine.annotator.binding_for(item)
        record = engine.registry.get(identity)
        subject = engine.extractor.extract(item).subject
        rows.append(
            {
                "identity": identity,
                "category": binding.classification.category.value if binding else None,
                "confidence": round(binding.classification.confidence, 2) if binding else None,
                "source": record.source if record else None,
                "annotated": bool(record and record.annotated),
                "subject": subject,
            }
        )
    return surface, rows


def _print_rows(rows: list[dict[str, object]], as_json: bool) -> None:
    if as_json:
        for row in rows:
            print(json.dumps(row))
        return

    print(f"{'IDENTITY':<24} {'CATEGORY':<18} {'CONF':>5} {'SOURCE':<9} SUBJECT")
    print("-" * 90)
    for row in rows:
        confidence = row["confidence"]
        conf = f"{confidence:.2f}" if isinstance(confidence, float) else "-"
        subject = str(row["subject"] or "")
        if len(subject) > 40:
            subject = subject[:37] + "..."
        print(
            f"{str(row['identity'])[:24]:<24} {str(row['category'] or '-'):<18} "
            f"{conf:>5} {str(row['source'] or '-'):<9} {subject}"
        )
    annotated = sum(1 for row in rows if row["annotated"])
    print(f"\n{annotated}/{len(rows)} rows annotated")


def _print_stats() -> None:
    print("\nCounters:")
    for name, value in sorted(get_counters().items()):
        print(f"  {name:<40} {value:>6}")
    stats = get_latency_stats("engine.pass")
    if stats["count"]:
        print(f"\nPass latency: {stats['avg'] * 1000:.1f} ms avg over {int(stats['count'])} pass(es)")


def main(argv: list[str] | None = None) -> int:
    ensure_env_loaded()
    args = _build_parser().parse_args(argv)

    try:
        html = args.snapshot.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Cannot read {args.snapshot}: {e}", file=sys.stderr)
        return 1

    provider: SettingsProvider
    if args.settings:
        provider = YamlSettingsProvider(args.settings)
    else:
        provider = StaticSettingsProvider(EngineSettings())
    if args.show_confidence:
        base = asyncio.run(provider.load())
        provider = StaticSettingsProvider(base.model_copy(update={"show_confidence_on_annotation": True}))

    surface, rows = asyncio.run(annotate_snapshot(html, args.location, provider, args.hash))
    _print_rows(rows, args.json)
    if args.stats:
        _print_stats()

    if args.output:
        args.output.write_text(surface.html(), encoding="utf-8")
        logger.info("Wrote annotated snapshot to %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
