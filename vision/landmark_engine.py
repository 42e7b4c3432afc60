"""Process-wide MediaPipe FaceLandmarker service.

The landmarker runs in LIVE_STREAM mode: frames are submitted with
``detect_async`` and results arrive on a callback.  Each submitted frame gets
its own :class:`DetectionRequest` keyed by the frame timestamp, so a caller
only ever receives the result of the frame it submitted, and waits are
bounded.

The model is expensive to load, so one engine is shared by every tracker in
the process (:func:`shared_engine`).  Initialisation happens once; concurrent
callers of :meth:`LandmarkEngine.initialize` all wait on the same future.
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.request
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

import numpy as np

logger = logging.getLogger(__name__)

# ── Model file ────────────────────────────────────────────────────────────────
_MODEL_FILENAME = "face_landmarker.task"
_MODEL_PATH = Path("assets") / _MODEL_FILENAME
_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/"
    "face_landmarker/face_landmarker/float16/1/face_landmarker.task"
)

DEFAULT_TIMEOUT_S = 0.5


def ensure_model(model_path: Path = _MODEL_PATH) -> Path:
    """Return the model path, downloading it first if necessary.

    Raises ``RuntimeError`` on network failure.
    """
    if model_path.exists():
        return model_path

    model_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading FaceLandmarker model → %s", model_path)
    try:
        urllib.request.urlretrieve(_MODEL_URL, str(model_path))
    except OSError as exc:
        model_path.unlink(missing_ok=True)  # remove partial file
        raise RuntimeError(
            f"Model download failed ({exc}); fetch {_MODEL_URL} into {model_path.resolve()}"
        ) from exc
    logger.info("Model saved: %s", model_path)
    return model_path


# ── Result type ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LandmarkFrame:
    """Landmarks of the single tracked face in one frame."""

    timestamp_ms: int
    points: np.ndarray      # (N, 3) normalised x, y, z


# ── Backends ──────────────────────────────────────────────────────────────────

ResultCallback = Callable[[int, Optional[np.ndarray]], None]


class LandmarkBackend(Protocol):
    def detect_async(self, frame_rgb: np.ndarray, timestamp_ms: int) -> None: ...

    def close(self) -> None: ...


BackendFactory = Callable[[ResultCallback], LandmarkBackend]


class MediaPipeBackend:
    """FaceLandmarker (Tasks API) in LIVE_STREAM mode."""

    def __init__(self, on_result: ResultCallback, model_path: Optional[Path] = None) -> None:
        import mediapipe as mp
        from mediapipe.tasks.python import vision
        from mediapipe.tasks.python.core.base_options import BaseOptions

        path = model_path or ensure_model()
        self._mp = mp
        self._on_result = on_result
        options = vision.FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(path.resolve())),
            running_mode=vision.RunningMode.LIVE_STREAM,
            num_faces=1,
            min_face_detection_confidence=0.5,
            min_face_presence_confidence=0.5,
            min_tracking_confidence=0.5,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
            result_callback=self._handle_result,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        logger.info("FaceLandmarker created (LIVE_STREAM, model=%s)", path.name)

    def _handle_result(self, result, _output_image, timestamp_ms: int) -> None:
        if not result.face_landmarks:
            self._on_result(timestamp_ms, None)
            return
        lms = result.face_landmarks[0]
        points = np.array([[lm.x, lm.y, lm.z] for lm in lms], dtype=np.float64)
        self._on_result(timestamp_ms, points)

    def detect_async(self, frame_rgb: np.ndarray, timestamp_ms: int) -> None:
        image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=frame_rgb)
        self._landmarker.detect_async(image, timestamp_ms)

    def close(self) -> None:
        self._landmarker.close()


# ── Engine ────────────────────────────────────────────────────────────────────

class DetectionRequest:
    """Completion handle for exactly one submitted frame."""

    def __init__(
        self,
        timestamp_ms: int,
        future: "Future[Optional[LandmarkFrame]]",
        discard: Callable[[int], None],
    ) -> None:
        self.timestamp_ms = timestamp_ms
        self._future = future
        self._discard = discard

    def result(self, timeout_s: float = DEFAULT_TIMEOUT_S) -> Optional[LandmarkFrame]:
        """Wait for this frame's landmarks; ``None`` on no face or timeout."""
        try:
            return self._future.result(timeout=timeout_s)
        except FutureTimeout:
            self._discard(self.timestamp_ms)
            logger.warning("Landmark detection timed out after %.0f ms", timeout_s * 1000)
            return None

    @property
    def done(self) -> bool:
        return self._future.done()


class LandmarkEngine:
    def __init__(
        self,
        backend_factory: Optional[BackendFactory] = None,
        model_path: Optional[Path] = None,
    ) -> None:
        self._factory: BackendFactory = backend_factory or (
            lambda cb: MediaPipeBackend(cb, model_path)
        )
        self._lock = threading.Lock()
        self._ready: "Future[None]" = Future()
        self._init_started = False
        self._backend: Optional[LandmarkBackend] = None
        self._pending: dict[int, Future] = {}
        self._start_mono = time.monotonic()
        self._last_ts_ms = -1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> "Future[None]":
        """Start initialisation once; every caller gets the same future."""
        with self._lock:
            if self._init_started:
                return self._ready
            self._init_started = True

        try:
            backend = self._factory(self._on_result)
        except Exception as exc:
            logger.error("Landmark engine failed to initialise: %s", exc)
            err = RuntimeError(f"Landmark engine initialisation failed: {exc}")
            err.__cause__ = exc
            self._ready.set_exception(err)
            return self._ready

        with self._lock:
            self._backend = backend
        self._ready.set_result(None)
        logger.info("Landmark engine ready.")
        return self._ready

    def wait_ready(self, timeout_s: Optional[float] = None) -> bool:
        """Block until initialised; False on timeout or failed init."""
        try:
            self._ready.result(timeout=timeout_s)
        except FutureTimeout:
            return False
        except RuntimeError:
            return False
        return True

    @property
    def is_ready(self) -> bool:
        return self._ready.done() and self._ready.exception() is None

    def close(self) -> None:
        with self._lock:
            backend, self._backend = self._backend, None
            pending, self._pending = self._pending, {}
        for fut in pending.values():
            fut.set_result(None)
        if backend is not None:
            backend.close()
            logger.debug("Landmark engine closed.")

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def submit(self, frame_rgb: np.ndarray) -> DetectionRequest:
        fut: "Future[Optional[LandmarkFrame]]" = Future()
        with self._lock:
            backend = self._backend
            # Timestamps must be strictly increasing for LIVE_STREAM mode
            ts_ms = int((time.monotonic() - self._start_mono) * 1000)
            ts_ms = max(ts_ms, self._last_ts_ms + 1)
            self._last_ts_ms = ts_ms
            if backend is not None:
                self._pending[ts_ms] = fut

        if backend is None:
            fut.set_result(None)
            return DetectionRequest(ts_ms, fut, self._discard)

        try:
            backend.detect_async(frame_rgb, ts_ms)
        except (RuntimeError, ValueError) as exc:
            logger.warning("Frame submission failed: %s", exc)
            self._resolve(ts_ms, None)
        return DetectionRequest(ts_ms, fut, self._discard)

    def detect(
        self, frame_rgb: np.ndarray, timeout_s: float = DEFAULT_TIMEOUT_S
    ) -> Optional[LandmarkFrame]:
        return self.submit(frame_rgb).result(timeout_s)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _on_result(self, timestamp_ms: int, points: Optional[np.ndarray]) -> None:
        frame = LandmarkFrame(timestamp_ms, points) if points is not None else None
        self._resolve(timestamp_ms, frame)

    def _resolve(self, timestamp_ms: int, frame: Optional[LandmarkFrame]) -> None:
        with self._lock:
            fut = self._pending.pop(timestamp_ms, None)
        if fut is None:
            logger.debug("Dropped late landmark result for ts=%d", timestamp_ms)
            return
        fut.set_result(frame)

    def _discard(self, timestamp_ms: int) -> None:
        with self._lock:
            self._pending.pop(timestamp_ms, None)


# ── Shared instance ───────────────────────────────────────────────────────────

_shared: Optional[LandmarkEngine] = None
_shared_lock = threading.Lock()


def shared_engine(model_path: Optional[Path] = None) -> LandmarkEngine:
    """The one engine of this process, created on first use."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = LandmarkEngine(model_path=model_path)
        return _shared
