import asyncio

import numpy as np

from conftest import FakeDetector, FakeRecognizer
from providers.pipeline import analyze_image, get_heatmap
from providers.types import OutcomeStatus
from wordlens.core.overlay import word_color

BLOBS = [(10, 10, 20, 20), (60, 60, 20, 20)]


def run(image, detector, recognizer, settings, **kwargs):
    return asyncio.run(analyze_image(image, detector, recognizer, settings, **kwargs))


def white(h=200, w=300):
    return np.full((h, w, 3), 255, dtype=np.uint8)


def test_full_run(settings, det_config, reco_config):
    detector = FakeDetector(det_config, rects=BLOBS)
    recognizer = FakeRecognizer(reco_config, text_fn=lambda crop: "word")
    outcome = run(white(), detector, recognizer, settings, generation=4)

    assert outcome.status == OutcomeStatus.OK
    assert outcome.ok
    assert outcome.generation == 4
    assert len(outcome.shapes) == 2
    assert [w.id for w in outcome.words] == [s.id for s in outcome.shapes]
    assert all(w.text == "word" for w in outcome.words)
    assert all(w.color == word_color(w.id) for w in outcome.words)
    assert not any(w.is_active for w in outcome.words)
    assert outcome.meta["image_height"] == 200 and outcome.meta["image_width"] == 300
    assert outcome.meta["shape_count"] == 2
    assert outcome.meta["detection_model"] == "tiny_det"
    assert detector.inputs[0].shape == (1, 100, 100, 3)


def test_no_text_is_not_an_error(settings, det_config, reco_config):
    outcome = run(white(), FakeDetector(det_config), FakeRecognizer(reco_config), settings)
    assert outcome.status == OutcomeStatus.NO_TEXT
    assert outcome.ok
    assert outcome.shapes == [] and outcome.words == []


def test_missing_models_are_reported(settings, det_config, reco_config):
    outcome = run(white(), None, FakeRecognizer(reco_config), settings)
    assert outcome.status == OutcomeStatus.MODEL_UNAVAILABLE
    assert outcome.errors == ["detection model not loaded"]

    recognizer = FakeRecognizer(reco_config)
    recognizer.is_ready = False
    outcome = run(white(), FakeDetector(det_config, rects=BLOBS), recognizer, settings)
    assert outcome.status == OutcomeStatus.MODEL_UNAVAILABLE
    assert outcome.errors == ["recognition model not loaded"]
    assert not outcome.ok


def test_invalid_image(settings, det_config, reco_config):
    detector = FakeDetector(det_config, rects=BLOBS)
    outcome = run(np.zeros((0, 5, 3), dtype=np.uint8), detector, FakeRecognizer(reco_config), settings)
    assert outcome.status == OutcomeStatus.INVALID_IMAGE
    assert detector.inputs == []


def test_detector_crash_fails_the_run(settings, det_config, reco_config):
    detector = FakeDetector(det_config, error=RuntimeError("boom"))
    outcome = run(white(), detector, FakeRecognizer(reco_config), settings)
    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.errors == ["boom"]


def test_failed_batches_give_partial_outcome(settings, det_config, reco_config):
    recognizer = FakeRecognizer(reco_config, fail_if=lambda tensor: True)
    outcome = run(white(), FakeDetector(det_config, rects=BLOBS), recognizer, settings)
    assert outcome.status == OutcomeStatus.PARTIAL
    assert len(outcome.words) == 2
    assert all(w.text == "" for w in outcome.words)
    assert outcome.errors == ["recognizer exploded"]


def test_cancelled_run_is_stale(settings, det_config, reco_config):
    detector = FakeDetector(det_config, rects=BLOBS)
    outcome = run(white(), detector, FakeRecognizer(reco_config), settings, is_cancelled=lambda: True)
    assert outcome.status == OutcomeStatus.STALE
    assert outcome.words == []
    assert detector.inputs == []


def test_get_heatmap_requires_detector():
    assert asyncio.run(get_heatmap(white(), None)) is None
