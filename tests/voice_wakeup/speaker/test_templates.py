"""Tests for VoiceprintTemplate and TemplateRegistry."""

import numpy as np
import pytest

from voice_wakeup.features.spectral import MelFeatureSequence
from voice_wakeup.providers import TemplateStore
from voice_wakeup.speaker.templates import TemplateRegistry, VoiceprintTemplate, l2_normalize


class MemoryStore(TemplateStore):
    def __init__(self, records=None):
        self.records = list(records or [])
        self.saves = 0

    def load(self) -> list[dict]:
        return list(self.records)

    def save(self, records: list[dict]) -> None:
        self.records = list(records)
        self.saves += 1


def _template(user_id="alice", vector=(1.0, 0.0, 0.0), exemplars=None):
    return VoiceprintTemplate(
        user_id=user_id,
        name=user_id.title(),
        embedding=np.asarray(vector),
        exemplars=exemplars or [],
    )


class TestTemplate:
    def test_embedding_is_normalized(self):
        template = _template(vector=(3.0, 4.0, 0.0))
        np.testing.assert_allclose(template.embedding, [0.6, 0.8, 0.0], atol=1e-6)

    def test_zero_vector_left_alone(self):
        assert not l2_normalize([0.0, 0.0]).any()

    def test_record_keeps_exemplars_and_timestamp(self):
        exemplar = MelFeatureSequence(
            features=np.ones((4, 3), dtype=np.float32), duration=0.4, condition="far"
        )
        template = _template(exemplars=[exemplar])

        restored = VoiceprintTemplate.from_record(template.to_record())

        assert restored.user_id == "alice"
        assert restored.name == "Alice"
        assert restored.created_at == template.created_at
        assert restored.has_exemplars
        assert restored.exemplars[0].condition == "far"
        assert restored.exemplars[0].features.shape == (4, 3)


class TestRegistry:
    def test_add_replaces_same_user(self):
        registry = TemplateRegistry()
        registry.add(_template("alice", (1.0, 0.0)))
        registry.add(_template("bob", (0.0, 1.0)))
        registry.add(_template("alice", (0.0, 1.0)))

        assert len(registry) == 2
        np.testing.assert_allclose(registry.get("alice").embedding, [0.0, 1.0])

    def test_remove(self):
        registry = TemplateRegistry([_template("alice")])
        assert registry.remove("alice")
        assert not registry.remove("alice")
        assert len(registry) == 0
        assert registry.get("alice") is None

    def test_snapshot_unaffected_by_later_writes(self):
        registry = TemplateRegistry([_template("alice")])
        snapshot = registry.snapshot()

        registry.add(_template("bob"))
        registry.remove("alice")

        assert [t.user_id for t in snapshot] == ["alice"]
        assert [t.user_id for t in registry.snapshot()] == ["bob"]

    def test_exemplars_span_all_templates(self):
        ex = MelFeatureSequence(features=np.zeros((5, 20), dtype=np.float32))
        registry = TemplateRegistry([
            _template("alice", exemplars=[ex, ex]),
            _template("bob", exemplars=[ex]),
        ])
        assert len(registry.exemplars()) == 3


class TestPersistence:
    def test_writes_go_to_store(self):
        store = MemoryStore()
        registry = TemplateRegistry(store=store)

        registry.add(_template("alice"))
        registry.add(_template("bob"))
        registry.remove("alice")

        assert store.saves == 3
        assert [r["user_id"] for r in store.records] == ["bob"]

    def test_load_from_store(self):
        records = [_template("alice").to_record(), _template("bob").to_record()]
        registry = TemplateRegistry(store=MemoryStore(records))

        assert registry.load() == 2
        assert registry.get("bob") is not None

    def test_load_without_store_keeps_templates(self):
        registry = TemplateRegistry([_template("alice")])
        assert registry.load() == 1

    def test_corrupt_record_raises(self):
        record = _template("alice").to_record()
        record["exemplars"] = [{"features": [1.0], "num_frames": 2, "num_bands": 2}]
        registry = TemplateRegistry(store=MemoryStore([record]))
        with pytest.raises(ValueError):
            registry.load()
