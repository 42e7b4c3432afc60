"""Protocol scoring: metrics bundle -> 0-100 score with a status label."""

from __future__ import annotations

import logging
from typing import Callable, Union

from domain.models import MetricsBundle, ProtocolId, ProtocolScore

logger = logging.getLogger(__name__)

INCONCLUSIVE = "Inconclusive"

# Latency charged to a stimulus that drew no saccade in the window (VGST).
MISSED_LATENCY_MS = 700.0


def _clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _inconclusive(protocol: ProtocolId, metric: str) -> ProtocolScore:
    return ProtocolScore(protocol, 0, metric, INCONCLUSIVE)


def _score_fix(m: MetricsBundle) -> ProtocolScore:
    bcea = m.fixation.bcea
    if bcea is None:
        return _inconclusive(ProtocolId.FIX, "Low Quality Data")
    score = _clamp_score(100 - bcea * 3.0)
    if score > 70:
        status = "Normal Stability"
    elif score > 40:
        status = "Borderline Drift"
    else:
        status = "Clinical Follow-up Suggested"
    return ProtocolScore(ProtocolId.FIX, score, f"BCEA: {bcea:.2f}", status)


def _score_mgst(m: MetricsBundle) -> ProtocolScore:
    r = m.responses
    if r.trials == 0 or r.mean_latency is None:
        return _inconclusive(ProtocolId.MGST, "Insufficient Data")
    lat_score = max(0.0, 100 - max(0.0, r.mean_latency - 150) * 0.2)
    completion = min(r.matched / r.trials, 1.0)
    score = _clamp_score(lat_score * (0.5 + 0.5 * completion))
    return ProtocolScore(
        ProtocolId.MGST,
        score,
        f"Lat: {round(r.mean_latency)}ms ({r.matched}/{r.trials} trials)",
        "Normal Latency" if score > 65 else "Follow-up Suggested",
    )


def _score_ast(m: MetricsBundle) -> ProtocolScore:
    r = m.responses
    total = r.toward_target + r.away_from_target
    if total == 0:
        return _inconclusive(ProtocolId.AST, "Insufficient Data")
    # Looking toward the cue is a prosaccade error.
    error_rate = r.toward_target / total
    return ProtocolScore(
        ProtocolId.AST,
        _clamp_score(100 - error_rate * 100),
        f"Err: {round(error_rate * 100)}% ({r.toward_target}/{total})",
        "Normal Inhibition" if error_rate < 0.35 else "Follow-up Suggested",
    )


def _score_spt(m: MetricsBundle) -> ProtocolScore:
    gain = m.pursuit.median_gain
    if gain is None:
        return _inconclusive(ProtocolId.SPT, "Gain: N/A (low data)")
    return ProtocolScore(
        ProtocolId.SPT,
        _clamp_score(100 - abs(1 - gain) * 100),
        f"Gain: {gain:.2f} (n={m.pursuit.gain_samples})",
        "Normal" if 0.7 < gain < 1.3 else "Saccadic Pursuit",
    )


def _score_vgst(m: MetricsBundle) -> ProtocolScore:
    r = m.responses
    if r.trials == 0:
        return _inconclusive(ProtocolId.VGST, "Insufficient Data")
    matched_total = (r.mean_latency or 0.0) * r.matched
    avg_lat = (matched_total + MISSED_LATENCY_MS * r.missed) / r.trials
    if avg_lat < 300:
        status = "Normal"
    elif avg_lat < 500:
        status = "Borderline"
    else:
        status = "Delayed Response"
    return ProtocolScore(
        ProtocolId.VGST,
        _clamp_score(100 - max(0.0, avg_lat - 100) * 0.2),
        f"{round(avg_lat)}ms avg ({r.matched} saccades)",
        status,
    )


_SCORERS: dict[ProtocolId, Callable[[MetricsBundle], ProtocolScore]] = {
    ProtocolId.FIX: _score_fix,
    ProtocolId.MGST: _score_mgst,
    ProtocolId.AST: _score_ast,
    ProtocolId.SPT: _score_spt,
    ProtocolId.VGST: _score_vgst,
}


def score_protocol(protocol: Union[ProtocolId, str], bundle: MetricsBundle) -> ProtocolScore:
    """Score *bundle* for *protocol* (``fix|mgst|ast|spt|vgst``).

    Raises ``ValueError`` for an unknown protocol id.
    """
    pid = ProtocolId(protocol)
    if bundle.sample_count == 0:
        return _inconclusive(pid, "No Data")
    result = _SCORERS[pid](bundle)
    logger.info("%s score=%d  %s  [%s]", pid.value, result.score, result.metric, result.status)
    return result
