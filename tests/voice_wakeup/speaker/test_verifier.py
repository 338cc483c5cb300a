"""Tests for SpeakerVerifier and cosine scoring."""

from unittest.mock import MagicMock

import numpy as np
import pytest

from voice_wakeup.speaker.templates import TemplateRegistry, VoiceprintTemplate
from voice_wakeup.speaker.verifier import (
    NO_TEMPLATES,
    SpeakerVerifier,
    cosine_similarity,
)

PCM = b"\x00\x10" * 1600


def _provider(vector):
    provider = MagicMock()
    provider.extract_embedding.return_value = np.asarray(vector, dtype=np.float32)
    return provider


def _template(user_id, vector):
    return VoiceprintTemplate(user_id=user_id, name=user_id.title(), embedding=np.asarray(vector))


class TestCosine:
    def test_self_similarity_is_one(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(1.0)

    def test_orthogonal_is_zero(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_is_minus_one(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestVerify:
    def test_matching_speaker_verified(self):
        registry = TemplateRegistry([_template("alice", [1.0, 0.0, 0.0])])
        verifier = SpeakerVerifier(_provider([1.0, 0.0, 0.0]), registry, threshold=0.7)

        result = verifier.verify(PCM)

        assert result.is_verified
        assert result.confidence == pytest.approx(1.0)
        assert result.matched_user_id == "alice"
        assert result.similarity == pytest.approx(1.0)
        assert result.error is None

    def test_orthogonal_speaker_rejected(self):
        registry = TemplateRegistry([_template("alice", [1.0, 0.0, 0.0])])
        verifier = SpeakerVerifier(_provider([0.0, 1.0, 0.0]), registry, threshold=0.7)

        result = verifier.verify(PCM)

        assert not result.is_verified
        assert result.confidence == pytest.approx(0.5)
        assert result.matched_user_id is None

    def test_opposite_speaker_has_zero_confidence(self):
        registry = TemplateRegistry([_template("alice", [1.0, 0.0, 0.0])])
        verifier = SpeakerVerifier(_provider([-1.0, 0.0, 0.0]), registry, threshold=0.7)

        result = verifier.verify(PCM)

        assert not result.is_verified
        assert result.confidence == pytest.approx(0.0)
        assert result.matched_user_id is None

    def test_threshold_zero_accepts_orthogonal(self):
        registry = TemplateRegistry([_template("alice", [1.0, 0.0, 0.0])])
        verifier = SpeakerVerifier(_provider([0.0, 1.0, 0.0]), registry, threshold=0.0)

        result = verifier.verify(PCM)

        assert result.is_verified
        assert result.matched_user_id == "alice"

    def test_best_of_several_templates(self):
        registry = TemplateRegistry([
            _template("alice", [1.0, 0.0, 0.0]),
            _template("bob", [0.6, 0.8, 0.0]),
        ])
        verifier = SpeakerVerifier(_provider([0.0, 1.0, 0.0]), registry, threshold=0.7)

        result = verifier.verify(PCM)

        assert result.is_verified
        assert result.matched_user_id == "bob"
        assert result.similarity == pytest.approx(0.8)
        assert result.confidence == pytest.approx(0.9)

    def test_no_templates(self):
        provider = _provider([1.0, 0.0])
        verifier = SpeakerVerifier(provider, TemplateRegistry())

        result = verifier.verify(PCM)

        assert not result.is_verified
        assert result.confidence == 0.0
        assert result.error == NO_TEMPLATES
        provider.extract_embedding.assert_not_called()

    def test_provider_failure_becomes_result(self):
        provider = MagicMock()
        provider.extract_embedding.side_effect = RuntimeError("model not loaded")
        registry = TemplateRegistry([_template("alice", [1.0, 0.0])])
        verifier = SpeakerVerifier(provider, registry)

        result = verifier.verify(PCM)

        assert not result.is_verified
        assert result.confidence == 0.0
        assert "model not loaded" in result.error

    def test_explicit_templates_override_registry(self):
        registry = TemplateRegistry([_template("alice", [1.0, 0.0])])
        verifier = SpeakerVerifier(_provider([0.0, 1.0]), registry)

        result = verifier.verify(PCM, templates=[_template("bob", [0.0, 1.0])])

        assert result.matched_user_id == "bob"

    def test_provider_receives_float_samples(self):
        provider = _provider([1.0, 0.0])
        verifier = SpeakerVerifier(provider, TemplateRegistry([_template("a", [1.0, 0.0])]))

        verifier.verify(b"\x00\x40" * 4)

        samples = provider.extract_embedding.call_args.args[0]
        np.testing.assert_allclose(samples, np.full(4, 0.5, dtype=np.float32))
