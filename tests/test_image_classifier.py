"""Tests for the ImageNet classifier and its preprocessing."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from myrecognition.config import Settings
from myrecognition.ml.image_classifier import ImageNetClassifier, create_classifier
from myrecognition.ml.model_manager import MODEL_REGISTRY, Architecture
from myrecognition.ml.preprocessing import PreprocessConfig, preprocess_for_classification

if TYPE_CHECKING:
    from pathlib import Path

LABELS = ["tench", "goldfish", "great white shark", "tiger shark", "hammerhead", "cat"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_session(logits: list[float] | None = None) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [MagicMock()]
    session.get_inputs.return_value[0].name = "pixel_values"
    session.get_outputs.return_value = [MagicMock()]
    session.get_outputs.return_value[0].name = "logits"
    if logits is not None:
        session.run.return_value = [np.array([logits], dtype=np.float32)]
    return session


def _make_classifier(session: MagicMock) -> ImageNetClassifier:
    return ImageNetClassifier(MODEL_REGISTRY[Architecture.RESNET_18], session, list(LABELS))


def _rgba(width: int = 32, height: int = 24) -> np.ndarray:
    rng = np.random.default_rng(0)
    return rng.uniform(0, 255, size=(height, width, 4)).astype(np.float32)


# ---------------------------------------------------------------------------
# Preprocessing tests
# ---------------------------------------------------------------------------


class TestPreprocessing:
    def test_output_is_nchw_crop(self) -> None:
        tensor = preprocess_for_classification(_rgba(320, 240), PreprocessConfig())
        assert tensor.shape == (1, 3, 224, 224)
        assert tensor.dtype == np.float32

    def test_upscales_small_images(self) -> None:
        config = PreprocessConfig(resize=16, crop_size=8)
        tensor = preprocess_for_classification(_rgba(5, 3), config)
        assert tensor.shape == (1, 3, 8, 8)

    def test_extreme_aspect_ratio_only_resamples_crop(self) -> None:
        image = np.zeros((200_000, 1, 4), dtype=np.float32)

        with patch.object(Image.Image, "resize", autospec=True, side_effect=Image.Image.resize) as mock_resize:
            tensor = preprocess_for_classification(image, PreprocessConfig())

        assert tensor.shape == (1, 3, 224, 224)
        assert mock_resize.call_args.args[1] == (224, 224)

    def test_crop_window_matches_shortest_edge_ratio(self) -> None:
        image = np.zeros((256, 512, 4), dtype=np.float32)
        image[:, 256 - 112 : 256 + 112, :3] = 255.0

        tensor = preprocess_for_classification(image, PreprocessConfig(mean=(0, 0, 0), std=(1, 1, 1)))

        np.testing.assert_allclose(tensor, 1.0)

    def test_normalization(self) -> None:
        image = np.full((4, 4, 4), 255.0, dtype=np.float32)
        config = PreprocessConfig(resize=4, crop_size=4, mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5))

        tensor = preprocess_for_classification(image, config)

        np.testing.assert_allclose(tensor, 1.0)

    def test_rejects_rgb(self) -> None:
        with pytest.raises(ValueError, match="RGBA"):
            preprocess_for_classification(np.zeros((4, 4, 3), dtype=np.float32), PreprocessConfig())


# ---------------------------------------------------------------------------
# ImageNetClassifier tests
# ---------------------------------------------------------------------------


class TestImageNetClassifier:
    def test_classify_returns_top_class_and_softmax_confidence(self) -> None:
        logits = [0.0, 1.0, 0.0, 0.0, 0.0, 4.0]
        session = _make_session(logits)
        net = _make_classifier(session)

        class_index, confidence = net.classify(_rgba(), 32, 24)

        expected = np.exp(4.0) / np.exp(np.array(logits)).sum()
        assert class_index == 5
        assert confidence == pytest.approx(expected, rel=1e-5)
        assert 0.0 <= confidence <= 1.0

        (output_names, feeds), _ = session.run.call_args
        assert output_names == ["logits"]
        assert feeds["pixel_values"].shape == (1, 3, 224, 224)

    def test_dimension_mismatch_fails(self) -> None:
        session = _make_session([0.0] * len(LABELS))
        net = _make_classifier(session)

        assert net.classify(_rgba(32, 24), 24, 32) == (-1, 0.0)
        session.run.assert_not_called()

    def test_non_positive_dimensions_fail(self) -> None:
        net = _make_classifier(_make_session([0.0] * len(LABELS)))
        assert net.classify(np.zeros((0, 0, 4), dtype=np.float32), 0, 0) == (-1, 0.0)

    def test_runtime_error_fails(self) -> None:
        session = _make_session()
        session.run.side_effect = RuntimeError("CUDA out of memory")
        net = _make_classifier(session)

        assert net.classify(_rgba(), 32, 24) == (-1, 0.0)

    def test_label_count_mismatch_fails(self) -> None:
        net = _make_classifier(_make_session([0.0] * 1000))
        assert net.classify(_rgba(), 32, 24) == (-1, 0.0)

    def test_get_class_desc(self) -> None:
        net = _make_classifier(_make_session())
        assert net.get_class_desc(5) == "cat"
        assert net.num_classes == len(LABELS)
        assert net.model_name == "resnet-18"

    @pytest.mark.parametrize("class_index", [-1, len(LABELS)])
    def test_get_class_desc_out_of_range(self, class_index: int) -> None:
        net = _make_classifier(_make_session())
        with pytest.raises(IndexError, match="out of range"):
            net.get_class_desc(class_index)

    def test_classify_after_close_raises(self) -> None:
        with _make_classifier(_make_session([0.0] * len(LABELS))) as net:
            pass

        net.close()
        with pytest.raises(RuntimeError, match="closed"):
            net.classify(_rgba(), 32, 24)


# ---------------------------------------------------------------------------
# create_classifier tests
# ---------------------------------------------------------------------------


class TestCreateClassifier:
    @patch("myrecognition.ml.model_manager.InferenceSession")
    def test_creates_from_local_files(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        labels = tmp_path / "synset_words.txt"
        labels.write_text("n01440764 tench, Tinca tinca\nn01443537 goldfish, Carassius auratus\n")
        mock_session_cls.return_value = _make_session()
        settings = Settings(
            models_dir=tmp_path,
            model_path=tmp_path / "model.onnx",
            labels_path=labels,
        )

        net = create_classifier(Architecture.RESNET_50, settings)

        assert net is not None
        assert net.model_name == "resnet-50"
        assert net.get_class_desc(1) == "goldfish, Carassius auratus"
        assert mock_session_cls.call_args.args == (str(tmp_path / "model.onnx"),)

    @patch("myrecognition.ml.model_manager.InferenceSession")
    def test_defaults_to_configured_architecture(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        labels = tmp_path / "labels.txt"
        labels.write_text("cat\n")
        mock_session_cls.return_value = _make_session()
        settings = Settings(
            architecture="vit-base-patch16-224",
            models_dir=tmp_path,
            model_path=tmp_path / "model.onnx",
            labels_path=labels,
        )

        net = create_classifier(settings=settings)

        assert net is not None
        assert net.model_name == "vit-base-patch16-224"

    @patch("myrecognition.ml.model_manager.InferenceSession", side_effect=RuntimeError("bad model"))
    def test_session_failure_returns_none(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        labels = tmp_path / "labels.txt"
        labels.write_text("cat\n")
        settings = Settings(models_dir=tmp_path, model_path=tmp_path / "model.onnx", labels_path=labels)

        assert create_classifier(Architecture.RESNET_18, settings) is None

    def test_missing_labels_returns_none(self, tmp_path: Path) -> None:
        settings = Settings(models_dir=tmp_path, labels_path=tmp_path / "missing.txt")
        assert create_classifier(Architecture.RESNET_18, settings) is None

    def test_unknown_architecture_returns_none(self, tmp_path: Path) -> None:
        assert create_classifier("googlenet", Settings(models_dir=tmp_path)) is None
