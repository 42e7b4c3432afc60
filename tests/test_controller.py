"""Tests for the recording controller and the offline command line."""

import json

import numpy as np
import pytest

from app.config import Config
from app.controller import Controller, new_session_dir
from app.main import main
from domain.models import GazeSample, ProtocolId, StimulusEvent
from domain.recording import TargetState
from storage.session_store import META_FILE, REPORT_FILE, SAMPLES_FILE, SessionMeta, SessionWriter
from vision.landmark_engine import LandmarkEngine


def _landmarks(iris_dx=0.0, face_width=0.4):
    pts = np.full((478, 3), 0.5, dtype=np.float64)
    pts[234, 0] = 0.5 - face_width / 2
    pts[454, 0] = 0.5 + face_width / 2
    for outer, inner, top, bottom, iris, ox, ix in (
        (33, 133, 159, 145, range(469, 473), 0.30, 0.40),
        (263, 362, 386, 374, range(474, 478), 0.70, 0.60),
    ):
        pts[outer, :2] = (ox, 0.4)
        pts[inner, :2] = (ix, 0.4)
        pts[top, 1] = 0.385
        pts[bottom, 1] = 0.415
        for i in iris:
            pts[i, :2] = ((ox + ix) / 2 + iris_dx, 0.4)
    return pts


class _Backend:
    def __init__(self, on_result):
        self.on_result = on_result
        self.points = _landmarks()

    def detect_async(self, frame_rgb, timestamp_ms):
        self.on_result(timestamp_ms, self.points)

    def close(self):
        pass


def _controller(**cfg):
    backends = []

    def factory(on_result):
        backends.append(_Backend(on_result))
        return backends[-1]

    controller = Controller(Config(**cfg), engine=LandmarkEngine(backend_factory=factory))
    assert controller.start_engine(1.0)
    return controller, backends


def _step_samples():
    samples = []
    for i in range(100):
        x = 50.0 if i <= 50 else {51: 50.0 + 10.0 / 3, 52: 50.0 + 20.0 / 3}.get(i, 60.0)
        samples.append(GazeSample(time=i * 10.0, x=x, y=50.0))
    return samples


def test_frame_without_recording():
    controller, _ = _controller()
    result = controller.process_frame(np.zeros((8, 8, 3), dtype=np.uint8), 0.0)
    assert result.face_detected
    assert result.sample is None
    assert result.screen_gaze == pytest.approx((50.0, 50.0))
    assert result.posture.ok


def test_screen_gaze_uses_calibration():
    controller, _ = _controller(calibration="linear")
    result = controller.process_landmarks(_landmarks(iris_dx=0.01), 0.0)
    # 60 gaze units -> 50 + 10 * 8
    assert result.screen_gaze[0] == pytest.approx(130.0)


def test_recording_round_trip(tmp_path):
    controller, backends = _controller()
    session_dir = tmp_path / "run1"
    controller.start_recording("vgst", session_dir)
    assert controller.is_recording

    frame = np.zeros((8, 8, 3), dtype=np.uint8)
    for i in range(60):
        if i == 30:
            backends[0].points = _landmarks(iris_dx=0.02)
            controller.mark_stimulus(StimulusEvent(i * 33.0, 50.0, 50.0, 70.0, 50.0))
        result = controller.process_frame(frame, i * 33.0, TargetState(x=50.0 if i < 30 else 70.0))
        assert result.sample is not None

    report = controller.stop_recording()
    assert not controller.is_recording
    assert report.protocol == ProtocolId.VGST
    assert report.metrics.sample_count == 60
    assert report.metrics.responses.trials == 1
    assert report.timeline

    for name in (SAMPLES_FILE, META_FILE, REPORT_FILE):
        assert (session_dir / name).exists()
    with open(session_dir / REPORT_FILE, encoding="utf-8") as fh:
        saved = json.load(fh)
    assert saved["protocol"] == "vgst"
    assert saved["score"]["score"] == report.score.score
    with open(session_dir / META_FILE, encoding="utf-8") as fh:
        assert json.load(fh)["ended_at"] is not None


def test_recording_lifecycle_errors():
    controller, _ = _controller()
    with pytest.raises(RuntimeError):
        controller.stop_recording()
    controller.start_recording(ProtocolId.SPT)
    with pytest.raises(RuntimeError):
        controller.start_recording(ProtocolId.SPT)
    with pytest.raises(ValueError):
        Controller(Config()).start_recording("bogus")


def test_analyze_scores_protocol():
    controller, _ = _controller()
    stim = StimulusEvent(time=300.0, from_x=50.0, from_y=50.0, to_x=60.0, to_y=50.0)
    report = controller.analyze(_step_samples(), [stim], "vgst")
    assert report.metrics.saccade_count == 1
    assert report.metrics.responses.mean_latency == pytest.approx(200.0)
    # 200 ms latency -> 100 - (200 - 100) * 0.2
    assert report.score.score == 80
    assert report.score.status == "Normal"
    assert set(report.to_dict()) == {"protocol", "score", "metrics", "timeline"}


def test_new_session_dir_names_protocol(tmp_path):
    path = new_session_dir("ast", tmp_path)
    assert path.parent == tmp_path
    assert path.name.endswith("_ast")


# ── Command line ──────────────────────────────────────────────────────────────

def _write_session(session_dir, protocol=None):
    writer = SessionWriter(session_dir)
    for s in _step_samples():
        writer.write_sample(s)
    writer.write_stimulus(StimulusEvent(300.0, 50.0, 50.0, 60.0, 50.0))
    if protocol:
        writer.write_meta(SessionMeta(session_id="s", protocol=protocol, started_at="2024-01-01"))
    writer.close()


def test_cli_analyze(tmp_path, capsys):
    session_dir = tmp_path / "session"
    _write_session(session_dir)
    code = main(["analyze", str(session_dir), "--protocol", "vgst",
                 "--config", str(tmp_path / "none.json")])
    assert code == 0
    assert "VGST: 80/100" in capsys.readouterr().out
    with open(session_dir / REPORT_FILE, encoding="utf-8") as fh:
        assert json.load(fh)["score"]["status"] == "Normal"


def test_cli_uses_stored_protocol(tmp_path):
    session_dir = tmp_path / "session"
    _write_session(session_dir, protocol="mgst")
    out = tmp_path / "report.json"
    code = main(["analyze", str(session_dir), "--config", str(tmp_path / "none.json"),
                 "--out", str(out)])
    assert code == 0
    with open(out, encoding="utf-8") as fh:
        assert json.load(fh)["protocol"] == "mgst"


def test_cli_errors(tmp_path):
    assert main(["analyze", str(tmp_path / "missing")]) == 1
    session_dir = tmp_path / "session"
    _write_session(session_dir)
    assert main(["analyze", str(session_dir), "--config", str(tmp_path / "none.json")]) == 2
