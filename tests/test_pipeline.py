"""Tests for enrollment and one-shot queries."""

import threading

import pytest

from conftest import FakeExtractor, FakeSource, blank_frame, face_frame
from facepass.capture import CaptureOutcome
from facepass.errors import DetectionUnavailable
from facepass.pipeline import FacePipeline
from facepass.storage import EmbeddingStore


def make_pipeline(settings, detector, embedding, frames, is_static=True):
    sources = []

    def source_factory(spec):
        source = FakeSource(frames, is_static=is_static)
        sources.append(source)
        return source

    pipeline = FacePipeline(
        settings,
        detector=detector,
        extractor_factory=lambda: FakeExtractor(embedding),
        source_factory=source_factory,
    )
    return pipeline, sources


class TestEnroll:
    """Test cases for FacePipeline.enroll()."""

    def test_enroll_appends_samples(self, settings, detector, alice_embedding):
        pipeline, _ = make_pipeline(settings, detector, alice_embedding, [face_frame()])

        first = pipeline.enroll("photo.png", "alice")
        second = pipeline.enroll("photo.png", "alice")

        assert first.enrolled and first.sample_count == 1
        assert second.sample_count == 2
        with EmbeddingStore(settings.storage.path, read_only=True) as store:
            assert store.sample_count("alice") == 2

    def test_static_image_without_face(self, settings, detector, alice_embedding):
        pipeline, sources = make_pipeline(settings, detector, alice_embedding, [blank_frame()])

        result = pipeline.enroll("empty.png", "alice")

        assert not result.enrolled
        assert result.outcome is CaptureOutcome.NO_FACE
        assert sources[0].reads == 1
        assert not (settings.storage.path / "profiles.db").exists()

    def test_camera_retries_until_face(self, settings, detector, alice_embedding):
        frames = [blank_frame(), None, blank_frame(), face_frame()]
        pipeline, _ = make_pipeline(settings, detector, alice_embedding, frames, is_static=False)

        assert pipeline.enroll("/dev/video0", "alice").enrolled

    def test_requires_detector(self, settings, no_detector, alice_embedding):
        pipeline, sources = make_pipeline(settings, no_detector, alice_embedding, [face_frame()])

        with pytest.raises(DetectionUnavailable):
            pipeline.enroll("photo.png", "alice")
        assert sources[0].opened == 0

    def test_empty_name(self, settings, detector, alice_embedding):
        pipeline, _ = make_pipeline(settings, detector, alice_embedding, [face_frame()])
        with pytest.raises(ValueError):
            pipeline.enroll("photo.png", "")

    def test_cancelled(self, settings, detector, alice_embedding):
        pipeline, _ = make_pipeline(settings, detector, alice_embedding, [blank_frame()], is_static=False)
        cancel = threading.Event()
        cancel.set()

        result = pipeline.enroll("/dev/video0", "alice", cancel)

        assert result.outcome is CaptureOutcome.CANCELLED
        assert not result.enrolled


class TestQuery:
    """Test cases for FacePipeline.query()."""

    def test_best_match_across_profiles(self, settings, detector, alice_embedding, bob_embedding):
        with EmbeddingStore(settings.storage.path) as store:
            store.store("alice", alice_embedding)
            store.store("bob", bob_embedding)
        pipeline, _ = make_pipeline(settings, detector, bob_embedding, [face_frame()])

        result = pipeline.query("photo.png")

        assert result.candidate.name == "bob"
        assert result.candidate.meets(0.99)
        assert result.embeddings == 1
        assert result.frames_with_faces == 1

    def test_query_uses_full_frame_fallback(self, settings, detector, alice_embedding):
        with EmbeddingStore(settings.storage.path) as store:
            store.store("alice", alice_embedding)
        pipeline, _ = make_pipeline(settings, detector, alice_embedding, [blank_frame()])

        result = pipeline.query("photo.png")

        assert result.outcome is CaptureOutcome.FALLBACK
        assert result.candidate.name == "alice"

    def test_query_empty_store(self, settings, detector, alice_embedding):
        EmbeddingStore(settings.storage.path).close()
        pipeline, _ = make_pipeline(settings, detector, alice_embedding, [face_frame()])

        result = pipeline.query("photo.png")

        assert result.candidate is None
        assert result.embeddings == 1
