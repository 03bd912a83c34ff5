#!/usr/bin/env python3
"""
RCM Studio — CLI entrypoint.

Usage:
  python src/main.py                          # Run built-in example (centrifugal pump)
  python src/main.py context.txt              # Generate from an operational-context text file
  echo "..." | python src/main.py             # Read context from stdin
  python src/main.py --merge STUDY_ID         # Load a saved study and append new, non-duplicate items
  python src/main.py --sheets --intel         # Also generate inspection sheets / component intel
  python src/main.py --ask "Add a seal leak"  # Ask the copilot; --apply commits its proposals
  python src/main.py --study ID --optimize ITEM_ID "P-F about 6 weeks" --apply  # Optimize one interval
  python src/main.py --list                   # List saved studies
  python src/main.py --output-dir ./out       # Write JSON and TSV exports to a directory

The tool expects ANTHROPIC_API_KEY to be set in the environment.

Output:
  - JSON printed to stdout (the study's records)
  - <output_dir>/rcm_flat.tsv       one row per inspection step, all columns
  - <output_dir>/rcm_classical.tsv  one row per step, record columns on the first row only
  - The study is saved to the study store unless --no-save is given
"""

from __future__ import annotations

import argparse
import asyncio
import json
import locale
import logging
import os
import sys
from pathlib import Path

# Allow running from the project root as well as src/
sys.path.insert(0, str(Path(__file__).parent))

from agent import AnthropicGenerationService
from config import load_settings
from errors import RCMStudioError
from session import AnalysisSession
from study_store import JsonFileStudyStore
from view import top_risks

logger = logging.getLogger("rcm_studio")


# ── Built-in example: Centrifugal Pump ────────────────────────────────────────
EXAMPLE_CONTEXT = (
    "Centrifugal Pump P-101 transfers hot process water (85°C) from the deaerator to the boiler feed "
    "header. It is driven by a 75 kW induction motor through a flexible coupling, runs continuously "
    "at 2950 rpm, and has an installed spare (P-101B) that requires a manual changeover taking about "
    "20 minutes. Loss of feed flow trips the boiler within 3 minutes. The mechanical seal is a single "
    "cartridge type with a plan 11 flush. Bearings are oil-bath lubricated and checked weekly by "
    "operators. Vibration is measured monthly with a portable collector."
)


def _print_summary(session: AnalysisSession) -> None:
    s = session.stats()
    print("\n" + "=" * 60, file=sys.stderr)
    print(f"  RCM STUDY: {session.study_name}", file=sys.stderr)
    print("=" * 60, file=sys.stderr)
    print(f"  Total items   : {s.total_items}", file=sys.stderr)
    print(f"  High          : {s.high_risk}", file=sys.stderr)
    print(f"  Medium        : {s.medium_risk}", file=sys.stderr)
    print(f"  Low           : {s.low_risk}", file=sys.stderr)
    for task_type, count in sorted(s.task_type_counts.items()):
        print(f"  {task_type:<14}: {count}", file=sys.stderr)
    print(f"  Undo depth    : {len(session.engine.history)}", file=sys.stderr)
    risks = top_risks(session.records)
    if risks:
        print("  Top risks:", file=sys.stderr)
        for bar in risks:
            print(f"    RPN {bar['rpn']:>4}  {bar['name']}", file=sys.stderr)
    print("=" * 60, file=sys.stderr)


async def _run(args: argparse.Namespace, session: AnalysisSession, context_text: str) -> None:
    study_id = args.merge or args.study
    if study_id:
        matches = [s for s in session.list_studies() if s.id == study_id]
        if not matches:
            raise RCMStudioError(f"No saved study with id {study_id}")
        session.load_study(matches[0])
        logger.info("Opened study %s (%d items)", session.study_name, len(session.records))

    if args.merge:
        if context_text:
            session.context_text = context_text
        added = await session.generate(merge=True)
        logger.info("Appended %d new item(s) to %s", len(added), session.study_name)
    elif not args.study and (context_text or not (args.ask or args.optimize)):
        session.context_text = context_text
        records = await session.generate()
        logger.info("Generated %d item(s)", len(records))

    if args.ask:
        reply = await session.ask_copilot(args.ask)
        print(reply.text, file=sys.stderr)
        for proposal in reply.proposals:
            print(f"  [{proposal.type}] {proposal.reason or proposal.item.get('component', '')}", file=sys.stderr)
            if args.apply:
                session.apply_proposal(proposal.id)

    if args.optimize:
        record_id, message = args.optimize
        recommendation = await session.optimize_interval(record_id, message, apply=args.apply)
        if recommendation is None:
            raise RCMStudioError(f"No item with id {record_id}")
        print(recommendation.clean_text, file=sys.stderr)
        if recommendation.pf_value is not None:
            print(f"  P-F interval  : {recommendation.pf_value} {recommendation.pf_unit or ''}".rstrip(), file=sys.stderr)
        print(f"  Recommended   : {recommendation.interval or '(none)'}", file=sys.stderr)

    if args.intel:
        count = await session.generate_missing_intel()
        logger.info("Component intel attached to %d item(s)", count)
    if args.sheets:
        count = await session.generate_all_sheets()
        logger.info("Inspection sheets attached to %d item(s)", count)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="RCM Studio — SAE JA1011 / ISO 14224 FMECA generation and export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "input_file",
        nargs="?",
        help="Path to an operational-context text file (omit to use the built-in pump example)",
    )
    parser.add_argument("--name", default=None, help="Study name (default: 'Untitled Analysis')")
    parser.add_argument("--merge", metavar="STUDY_ID", help="Append new items to a saved study")
    parser.add_argument("--study", metavar="STUDY_ID", help="Open a saved study without generating")
    parser.add_argument("--sheets", action="store_true", help="Generate inspection sheets for every item")
    parser.add_argument("--intel", action="store_true", help="Generate missing component intel")
    parser.add_argument("--ask", metavar="MESSAGE", help="Send a request to the copilot")
    parser.add_argument("--apply", action="store_true", help="Apply copilot proposals and the optimized interval")
    parser.add_argument(
        "--optimize",
        nargs=2,
        metavar=("ITEM_ID", "MESSAGE"),
        help="Ask the interval optimizer about one item (e.g. its P-F interval)",
    )
    parser.add_argument("--list", action="store_true", help="List saved studies and exit")
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory to write TSV exports (default: no export files)",
    )
    parser.add_argument("--no-save", action="store_true", help="Do not save the study to the store")
    parser.add_argument("--env-file", default=None, help="Path to a .env file with settings")

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="[RCM Studio] %(message)s", stream=sys.stderr)
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as e:
        logger.warning("Using default string collation: %s", e)
    settings = load_settings(Path(args.env_file) if args.env_file else None)
    store = JsonFileStudyStore(settings.store_dir)

    if args.list:
        for study in store.list_all():
            print(f"{study.id}\t{study.name}\t{len(study.items)} items", file=sys.stdout)
        return

    # ── Check API key ──────────────────────────────────────────────────────────
    if not os.environ.get("ANTHROPIC_API_KEY"):
        print(
            "ERROR: ANTHROPIC_API_KEY environment variable is not set.\n"
            "  export ANTHROPIC_API_KEY=your-api-key",
            file=sys.stderr,
        )
        sys.exit(1)

    # ── Load context ───────────────────────────────────────────────────────────
    pipe_mode = not sys.stdin.isatty()
    if args.input_file:
        input_path = Path(args.input_file)
        if not input_path.exists():
            print(f"ERROR: Input file not found: {input_path}", file=sys.stderr)
            sys.exit(1)
        context_text = input_path.read_text(encoding="utf-8")
        logger.info("Loaded context from %s", input_path)
    elif pipe_mode:
        context_text = sys.stdin.read()
        logger.info("Loaded context from stdin")
    elif args.merge or args.study or args.ask or args.optimize:
        context_text = ""
    else:
        context_text = EXAMPLE_CONTEXT
        logger.info("Using built-in example: Centrifugal Pump P-101")

    session = AnalysisSession(AnthropicGenerationService(settings), store, settings)
    if args.name:
        session.study_name = args.name

    try:
        asyncio.run(_run(args, session, context_text.strip()))
    except (RCMStudioError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    # ── Output JSON to stdout ──────────────────────────────────────────────────
    print(json.dumps([r.to_wire() for r in session.records], indent=2))

    # ── Save exports and study ─────────────────────────────────────────────────
    if args.output_dir:
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "rcm_flat.tsv").write_text(session.export_flat(), encoding="utf-8")
        (output_dir / "rcm_classical.tsv").write_text(session.export_classical(), encoding="utf-8")
        logger.info("Exports saved to %s", output_dir)

    if not args.no_save:
        try:
            study = session.save()
        except RCMStudioError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            sys.exit(1)
        if study:
            logger.info("Study saved as %s", study.id)

    _print_summary(session)


if __name__ == "__main__":
    main()
