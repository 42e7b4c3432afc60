"""Write and read recorded protocol sessions (CSV samples, JSON reports)."""

from __future__ import annotations

import csv
import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from domain.models import GazeSample, StimulusEvent

logger = logging.getLogger(__name__)

SAMPLES_FILE = "samples.csv"
STIMULI_FILE = "stimuli.csv"
META_FILE = "session_meta.json"
REPORT_FILE = "analysis.json"

_SAMPLE_FIELDS = [
    "time", "x", "y", "confidence", "is_blinking",
    "head_x", "head_y", "target_x", "target_y", "target_visible", "vergence_x",
]
_STIMULUS_FIELDS = ["time", "from_x", "from_y", "to_x", "to_y"]


@dataclass
class SessionMeta:
    session_id: str
    protocol: str
    started_at: str               # ISO8601
    ended_at: Optional[str] = None
    calibration: str = "identity"

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass
class LoadedSession:
    samples: list[GazeSample]
    stimuli: Optional[list[StimulusEvent]]   # None when no schedule was recorded
    meta: Optional[SessionMeta]


class SessionWriter:
    """Creates a session directory and writes CSV/JSON files with line-buffering
    so data is not lost if the process crashes."""

    def __init__(self, session_dir: Path) -> None:
        self.session_dir = session_dir
        session_dir.mkdir(parents=True, exist_ok=True)

        self._sf = open(session_dir / SAMPLES_FILE, "w", newline="", buffering=1, encoding="utf-8")
        self._ef = open(session_dir / STIMULI_FILE, "w", newline="", buffering=1, encoding="utf-8")
        self._sw = csv.DictWriter(self._sf, fieldnames=_SAMPLE_FIELDS)
        self._ew = csv.DictWriter(self._ef, fieldnames=_STIMULUS_FIELDS)
        self._sw.writeheader()
        self._ew.writeheader()

        self._closed = False
        logger.info("SessionWriter opened at %s", session_dir)

    # ------------------------------------------------------------------
    # Write methods
    # ------------------------------------------------------------------

    def write_sample(self, s: GazeSample) -> None:
        if self._closed:
            return
        self._sw.writerow(
            {
                "time": f"{s.time:.3f}",
                "x": f"{s.x:.6f}",
                "y": f"{s.y:.6f}",
                "confidence": _opt(s.confidence, "{:.4f}"),
                "is_blinking": int(s.is_blinking),
                "head_x": _opt(s.head_x, "{:.6f}"),
                "head_y": _opt(s.head_y, "{:.6f}"),
                "target_x": f"{s.target_x:.4f}",
                "target_y": f"{s.target_y:.4f}",
                "target_visible": int(s.target_visible),
                "vergence_x": _opt(s.vergence_x, "{:.6f}"),
            }
        )

    def write_stimulus(self, ev: StimulusEvent) -> None:
        if self._closed:
            return
        self._ew.writerow(
            {
                "time": f"{ev.time:.3f}",
                "from_x": f"{ev.from_x:.4f}",
                "from_y": f"{ev.from_y:.4f}",
                "to_x": f"{ev.to_x:.4f}",
                "to_y": f"{ev.to_y:.4f}",
            }
        )

    def write_meta(self, meta: SessionMeta) -> None:
        write_json(self.session_dir / META_FILE, meta.to_dict())

    def write_report(self, report: dict[str, Any]) -> None:
        write_json(self.session_dir / REPORT_FILE, report)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sf.close()
        self._ef.close()
        logger.info("SessionWriter closed.")


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------

def load_session(session_dir: Path) -> LoadedSession:
    """Read a session directory written by :class:`SessionWriter`.

    Malformed rows are skipped with a warning.  Raises ``FileNotFoundError``
    if the directory or its samples file does not exist.
    """
    samples_path = session_dir / SAMPLES_FILE
    if not samples_path.exists():
        raise FileNotFoundError(f"No {SAMPLES_FILE} in {session_dir}")

    samples = _read_rows(samples_path, _parse_sample)

    stimuli: Optional[list[StimulusEvent]] = None
    stimuli_path = session_dir / STIMULI_FILE
    if stimuli_path.exists():
        stimuli = _read_rows(stimuli_path, _parse_stimulus)
        if not stimuli:
            stimuli = None

    meta: Optional[SessionMeta] = None
    meta_path = session_dir / META_FILE
    if meta_path.exists():
        try:
            with open(meta_path, encoding="utf-8") as fh:
                meta = SessionMeta(**json.load(fh))
        except (OSError, json.JSONDecodeError, TypeError) as exc:
            logger.warning("Ignoring unreadable session meta %s: %s", meta_path, exc)

    logger.info(
        "Session loaded from %s: %d samples, %s stimuli",
        session_dir, len(samples), "no" if stimuli is None else len(stimuli),
    )
    return LoadedSession(samples=samples, stimuli=stimuli, meta=meta)


def write_json(path: Path, data: Any) -> None:
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, default=str)
    except OSError as exc:
        logger.error("Failed to write %s: %s", path, exc)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _opt(value: Optional[float], fmt: str) -> str:
    return "" if value is None else fmt.format(value)


def _opt_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _parse_sample(row: dict[str, str]) -> GazeSample:
    return GazeSample(
        time=float(row["time"]),
        x=float(row["x"]),
        y=float(row["y"]),
        confidence=_opt_float(row.get("confidence")),
        is_blinking=_flag(row.get("is_blinking"), False),
        head_x=_opt_float(row.get("head_x")),
        head_y=_opt_float(row.get("head_y")),
        target_x=float(row.get("target_x") or 50.0),
        target_y=float(row.get("target_y") or 50.0),
        target_visible=_flag(row.get("target_visible"), True),
        vergence_x=_opt_float(row.get("vergence_x")),
    )


def _parse_stimulus(row: dict[str, str]) -> StimulusEvent:
    return StimulusEvent(
        time=float(row["time"]),
        from_x=float(row["from_x"]),
        from_y=float(row["from_y"]),
        to_x=float(row["to_x"]),
        to_y=float(row["to_y"]),
    )


def _read_rows(path: Path, parse):
    items = []
    bad = 0
    with open(path, newline="", encoding="utf-8") as fh:
        for row in csv.DictReader(fh):
            try:
                items.append(parse(row))
            except (KeyError, TypeError, ValueError):
                bad += 1
    if bad:
        logger.warning("Skipped %d malformed row(s) in %s", bad, path)
    return items
