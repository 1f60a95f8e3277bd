"""Tests for the learned specialist model."""

import pytest

from bartloop.lib.model import (
    SpecialistModel,
    SpecialistModelError,
    TaskFeatures,
    extract_features,
    significant_words,
    similarity,
)
from bartloop.lib.tasks import Task


def _task(title="Build login form", files=None, workstream="A"):
    return Task(id="A1", workstream=workstream, title=title, files=files or [])


class TestFeatures:
    """Tests for feature extraction and similarity."""

    def test_significant_words(self):
        assert significant_words("Add the login form, NOW!") == {"login", "form"}

    def test_extract_features(self):
        features = extract_features(_task(files=["src/App.tsx", "src/app.CSS", "README"]))
        assert features.extensions == [".css", ".tsx"]
        assert features.complexity == 3
        assert features.keywords == ["build", "form", "login"]
        assert features.workstream == "A"

    def test_identical_features(self):
        f = extract_features(_task(files=["a.py"]))
        assert similarity(f, f) == pytest.approx(1.0)

    def test_empty_sets_contribute_zero(self):
        empty = TaskFeatures()
        assert similarity(empty, empty) == pytest.approx(1 / 3)

    def test_complexity_closeness(self):
        a = TaskFeatures(complexity=2)
        b = TaskFeatures(complexity=4)
        assert similarity(a, b) == pytest.approx(0.5 / 3)


class TestSpecialistModel:
    """Tests for SpecialistModel load/record/confidence."""

    def test_missing_file_is_empty(self, tmp_path):
        model = SpecialistModel.load(tmp_path / "model.json")
        assert model.entries == []

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "model.json"
        path.write_text("{broken")
        with pytest.raises(SpecialistModelError):
            SpecialistModel.load(path)

    def test_wrong_shape_raises(self, tmp_path):
        path = tmp_path / "model.json"
        path.write_text('{"version": 1, "entries": [{"specialist": "x"}]}')
        with pytest.raises(SpecialistModelError):
            SpecialistModel.load(path)

    def test_record_persists(self, tmp_path):
        path = tmp_path / "model.json"
        SpecialistModel.load(path).record("frontend", _task(), True)

        reloaded = SpecialistModel.load(path)
        assert len(reloaded.entries) == 1
        assert reloaded.entries[0].specialist == "frontend"
        assert reloaded.entries[0].success is True
        assert reloaded.samples("frontend") == 1

    def test_confidence_below_min_samples(self, tmp_path):
        model = SpecialistModel(tmp_path / "m.json")
        for _ in range(4):
            model.record("frontend", _task(), True)
        assert model.confidence("frontend", extract_features(_task())) is None

    def test_confidence_all_successes(self, tmp_path):
        model = SpecialistModel(tmp_path / "m.json")
        for _ in range(5):
            model.record("frontend", _task(), True)
        assert model.confidence("frontend", extract_features(_task())) == pytest.approx(1.0)

    def test_confidence_mixed(self, tmp_path):
        model = SpecialistModel(tmp_path / "m.json")
        for success in (True, True, True, True, False):
            model.record("frontend", _task(), success)
        assert model.confidence("frontend", extract_features(_task())) == pytest.approx(0.8)

    def test_similar_outcomes_weigh_more(self, tmp_path):
        """Failures on unrelated work pull confidence down less than the global rate."""
        model = SpecialistModel(tmp_path / "m.json")
        similar = _task("Style the checkout page", files=["checkout.css"])
        unrelated = _task("Tune database replication lag", files=["a.sql", "b.sql", "c.sql", "d.sql"])
        for _ in range(3):
            model.record("frontend", similar, True)
        for _ in range(3):
            model.record("frontend", unrelated, False)

        confidence = model.confidence("frontend", extract_features(similar))
        assert confidence > 0.5

    def test_other_specialists_ignored(self, tmp_path):
        model = SpecialistModel(tmp_path / "m.json")
        for _ in range(5):
            model.record("backend", _task(), False)
        assert model.confidence("frontend", extract_features(_task()), min_samples=1) is None
