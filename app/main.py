"""Command-line entry point: analyse and score a recorded session."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

# Ensure project root is on the path when running as `python app/main.py`
_ROOT = Path(__file__).parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.config import Config
from app.controller import Controller
from domain.models import ProtocolId
from storage.session_store import REPORT_FILE, load_session, write_json

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocular-metrics",
        description="Oculomotor event detection and protocol scoring.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyse a recorded session directory.")
    analyze.add_argument("session_dir", type=Path)
    analyze.add_argument(
        "--protocol",
        choices=[p.value for p in ProtocolId],
        help="Protocol to score (defaults to the one stored with the session).",
    )
    analyze.add_argument("--config", type=Path, default=Path("config.json"))
    analyze.add_argument(
        "--out", type=Path, help=f"Report path (default: <session_dir>/{REPORT_FILE})."
    )
    analyze.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def _run_analyze(args: argparse.Namespace) -> int:
    config = Config.load(args.config)
    _configure_logging("DEBUG" if args.verbose else config.log_level)

    try:
        session = load_session(args.session_dir)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 1

    protocol = args.protocol or (session.meta.protocol if session.meta else None)
    if protocol is None:
        logger.error("No --protocol given and the session does not record one.")
        return 2

    try:
        controller = Controller(config)
        report = controller.analyze(session.samples, session.stimuli, protocol)
    except ValueError as exc:
        logger.error("Cannot analyse session: %s", exc)
        return 2

    out = args.out or args.session_dir / REPORT_FILE
    write_json(out, report.to_dict())

    score = report.score
    print(f"{score.protocol.value.upper()}: {score.score}/100  {score.metric}  [{score.status}]")
    logger.info("Report written to %s", out)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "analyze":
        return _run_analyze(args)
    return 2


if __name__ == "__main__":
    sys.exit(main())
