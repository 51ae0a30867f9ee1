"""Tests for frame sources and the capture protocol."""

import threading
import time

import cv2
import pytest

from conftest import FakeSource, blank_frame, face_frame
from facepass.capture import (
    CameraSource,
    CaptureOutcome,
    CaptureSession,
    ImageSource,
    open_source,
)
from facepass.errors import CaptureError, DetectionUnavailable


class TestAccumulate:
    """Test cases for the accumulate-until-budget mode."""

    def test_collects_faces_over_window(self, detector, capture_config):
        source = FakeSource([face_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.1, interval=0.01)

        assert result.outcome is CaptureOutcome.FACES
        assert result.total_frames >= 2
        assert result.frames_with_faces == result.total_frames
        assert len(result.faces) == result.frames_with_faces
        assert result.faces[0].shape == (56, 56, 3)

    def test_zero_duration_takes_one_good_frame(self, detector, capture_config):
        source = FakeSource([None, None, face_frame(), face_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.0, interval=0.0)

        assert result.total_frames == 1
        assert result.frames_with_faces == 1
        assert source.reads == 3

    def test_counts_frames_without_faces(self, detector, capture_config):
        source = FakeSource([blank_frame(), face_frame(), blank_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.1, interval=0.01)

        assert result.outcome is CaptureOutcome.FACES
        assert result.frames_with_faces == 1
        assert result.total_frames > result.frames_with_faces

    def test_falls_back_to_last_frame(self, detector, capture_config):
        source = FakeSource([blank_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.0, interval=0.0)

        assert result.outcome is CaptureOutcome.FALLBACK
        assert len(result.faces) == 1
        assert result.faces[0].shape == blank_frame().shape
        assert result.frames_with_faces == 0

    def test_fallback_disabled(self, detector, capture_config):
        source = FakeSource([blank_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.0, interval=0.0, fallback=False)

        assert result.outcome is CaptureOutcome.NO_FACE
        assert result.faces == []

    def test_detector_unavailable_uses_full_frame(self, no_detector, capture_config):
        source = FakeSource([face_frame()])
        session = CaptureSession(source, no_detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.0, interval=0.0)

        assert result.outcome is CaptureOutcome.FALLBACK
        assert result.faces[0].shape == face_frame().shape

    def test_no_frames_is_no_face(self, detector, capture_config):
        capture_config.max_read_failures = 1000
        source = FakeSource([None])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.05, interval=0.01)

        assert result.outcome is CaptureOutcome.NO_FACE
        assert result.total_frames == 0

    def test_warmup_frames_discarded(self, detector, capture_config):
        capture_config.warmup_frames = 2
        source = FakeSource([blank_frame(), blank_frame(), face_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.0, interval=0.0)

        assert result.outcome is CaptureOutcome.FACES
        assert result.total_frames == 1
        assert source.reads == 3

    def test_warmup_delay(self, detector, capture_config):
        source = FakeSource([face_frame()])
        session = CaptureSession(source, detector, capture_config)

        start = time.monotonic()
        session.accumulate(warmup=0.1, duration=0.0, interval=0.0)

        assert time.monotonic() - start >= 0.1
        assert source.reads > 1

    def test_static_source_read_once(self, detector, capture_config):
        source = FakeSource([face_frame()], is_static=True)
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=5.0, duration=5.0, interval=0.0)

        assert result.total_frames == 1
        assert source.reads == 1

    def test_source_released(self, detector, capture_config):
        source = FakeSource([face_frame()])
        CaptureSession(source, detector, capture_config).accumulate(0.0, 0.0, 0.0)

        assert source.released >= 1
        assert not source.is_open


class TestCancellation:
    """Cancellation is reported distinctly and honoured promptly."""

    def test_cancelled_before_start(self, detector, capture_config):
        cancel = threading.Event()
        cancel.set()
        source = FakeSource([face_frame()])

        result = CaptureSession(source, detector, capture_config, cancel).accumulate(0.0, 1.0, 0.01)

        assert result.outcome is CaptureOutcome.CANCELLED
        assert result.cancelled
        assert not source.is_open

    def test_cancel_mid_capture_returns_within_interval(self, detector, capture_config):
        cancel = threading.Event()
        source = FakeSource([blank_frame()])
        session = CaptureSession(source, detector, capture_config, cancel)
        threading.Timer(0.1, cancel.set).start()

        start = time.monotonic()
        result = session.accumulate(warmup=0.0, duration=30.0, interval=0.5)
        elapsed = time.monotonic() - start

        assert result.outcome is CaptureOutcome.CANCELLED
        assert result.outcome is not CaptureOutcome.NO_FACE
        assert elapsed < 0.1 + 0.5 + 0.2
        assert not source.is_open

    def test_cancel_keeps_partial_faces(self, detector, capture_config):
        cancel = threading.Event()
        source = FakeSource([face_frame()])
        session = CaptureSession(source, detector, capture_config, cancel)
        threading.Timer(0.1, cancel.set).start()

        result = session.accumulate(warmup=0.0, duration=30.0, interval=0.02)

        assert result.cancelled
        assert len(result.faces) == result.frames_with_faces
        assert result.frames_with_faces > 0


class TestReconnect:
    """Test cases for reconnection after read failures."""

    def test_reconnects_after_failures(self, detector, capture_config):
        source = FakeSource([None, None, None, None, face_frame()])
        session = CaptureSession(source, detector, capture_config)

        result = session.accumulate(warmup=0.0, duration=0.0, interval=0.0)

        assert result.outcome is CaptureOutcome.FACES
        assert source.opened == 2

    def test_reconnect_budget_exhausted(self, detector, capture_config):
        source = FakeSource([None])
        # Initial open succeeds, every reopen fails
        original_open = source.open

        def open_once():
            if source.opened:
                raise CaptureError("gone")
            original_open()

        source.open = open_once
        session = CaptureSession(source, detector, capture_config)

        with pytest.raises(CaptureError):
            session.accumulate(warmup=0.0, duration=0.0, interval=0.0)
        assert not source.is_open

    def test_open_failure(self, detector, capture_config):
        source = FakeSource([face_frame()], open_failures=1)

        with pytest.raises(CaptureError):
            CaptureSession(source, detector, capture_config).accumulate(0.0, 0.0, 0.0)
        assert source.released == 1


class TestUntilFace:
    """Test cases for the retry-until-found mode."""

    def test_retries_until_face(self, detector, capture_config):
        source = FakeSource([blank_frame(), None, blank_frame(), face_frame()])

        result = CaptureSession(source, detector, capture_config).until_face(interval=0.0)

        assert result.outcome is CaptureOutcome.FACES
        assert len(result.faces) == 1
        assert result.total_frames == 3
        assert not source.is_open

    def test_requires_detector(self, no_detector, capture_config):
        source = FakeSource([face_frame()])

        with pytest.raises(DetectionUnavailable):
            CaptureSession(source, no_detector, capture_config).until_face()
        assert source.opened == 0

    def test_static_without_face(self, detector, capture_config):
        source = FakeSource([blank_frame()], is_static=True)

        result = CaptureSession(source, detector, capture_config).until_face()

        assert result.outcome is CaptureOutcome.NO_FACE

    def test_cancel(self, detector, capture_config):
        cancel = threading.Event()
        source = FakeSource([blank_frame()])
        threading.Timer(0.1, cancel.set).start()

        result = CaptureSession(source, detector, capture_config, cancel).until_face(interval=0.01)

        assert result.outcome is CaptureOutcome.CANCELLED
        assert not source.is_open


class TestSources:
    """Test cases for concrete frame sources."""

    def test_image_source(self, tmp_path):
        path = tmp_path / "face.png"
        cv2.imwrite(str(path), face_frame())

        with ImageSource(path) as source:
            first = source.read()
            second = source.read()

        assert first.image.shape == (120, 160, 3)
        assert second.frame_number == 2
        assert not source.is_open

    def test_unreadable_image(self, tmp_path):
        with pytest.raises(CaptureError):
            ImageSource(tmp_path / "missing.png").open()

    def test_open_source_dispatch(self, tmp_path):
        image = tmp_path / "face.jpg"
        cv2.imwrite(str(image), face_frame())

        assert isinstance(open_source("/dev/video0"), CameraSource)
        assert isinstance(open_source("2"), CameraSource)
        assert isinstance(open_source(0), CameraSource)
        assert isinstance(open_source("rtsp://camera/stream"), CameraSource)
        assert isinstance(open_source(str(image)), ImageSource)
        assert isinstance(open_source("missing.png"), ImageSource)

    def test_camera_read_before_open(self):
        assert CameraSource("/dev/video99").read() is None
