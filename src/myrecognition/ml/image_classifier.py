"""ImageNet classifier backed by an ONNX Runtime session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from myrecognition.config import get_settings
from myrecognition.ml.model_manager import OnnxModelManager, get_spec, load_labels
from myrecognition.ml.preprocessing import preprocess_for_classification

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from myrecognition.config import Settings
    from myrecognition.ml.model_manager import ModelSpec

logger = logging.getLogger(__name__)

FAILED_CLASSIFICATION: tuple[int, float] = (-1, 0.0)


class ImageNetClassifier:
    """A loaded classification network and its label table.

    The instance owns its InferenceSession until ``close()`` is called.
    """

    def __init__(self, spec: ModelSpec, session: InferenceSession, labels: list[str]) -> None:
        self._spec = spec
        self._session: InferenceSession | None = session
        self._labels = labels
        self._input_name = session.get_inputs()[0].name
        self._output_name = session.get_outputs()[0].name

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        return self._spec.name

    @property
    def num_classes(self) -> int:
        return len(self._labels)

    def classify(self, image: NDArray[np.float32], width: int, height: int) -> tuple[int, float]:
        """Classify an image and return its top class.

        Args:
            image: HxWx4 float32 RGBA array (the device view of an ImageBuffer).
            width: Image width in pixels.
            height: Image height in pixels.

        Returns:
            ``(class_index, confidence)`` with confidence in [0, 1], or
            ``(-1, 0.0)`` if classification failed.

        Raises:
            RuntimeError: If the classifier has been closed.
        """
        if self._session is None:
            raise RuntimeError("Classifier has been closed")

        if width <= 0 or height <= 0 or image.shape[:2] != (height, width):
            logger.error("Image dimensions %dx%d do not match buffer shape %s", width, height, image.shape)
            return FAILED_CLASSIFICATION

        try:
            tensor = preprocess_for_classification(image, self._spec.preprocess)
            outputs = self._session.run([self._output_name], {self._input_name: tensor})
        except Exception:  # noqa: BLE001
            logger.exception("Inference failed for %s", self._spec.name)
            return FAILED_CLASSIFICATION

        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.size != self.num_classes:
            logger.error("Model produced %d scores for %d labels", logits.size, self.num_classes)
            return FAILED_CLASSIFICATION

        probs = np.exp(logits - logits.max())
        probs /= probs.sum()
        class_index = int(probs.argmax())
        return class_index, float(probs[class_index])

    def get_class_desc(self, class_index: int) -> str:
        """Return the human-readable label for a class index."""
        if not 0 <= class_index < self.num_classes:
            raise IndexError(f"Class index out of range: {class_index}")
        return self._labels[class_index]

    def close(self) -> None:
        """Release the inference session. Safe to call more than once."""
        if self._session is not None:
            self._session = None
            logger.debug("Closed classifier %s", self._spec.name)

    def __enter__(self) -> ImageNetClassifier:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def create_classifier(architecture: str | None = None, settings: Settings | None = None) -> ImageNetClassifier | None:
    """Load a classification network, or return None if it cannot be loaded."""
    settings = settings or get_settings()
    architecture = architecture or settings.architecture

    try:
        spec = get_spec(architecture)
        manager = OnnxModelManager(settings)
        labels = load_labels(manager.ensure_labels())
        session = manager.create_session(architecture)
        return ImageNetClassifier(spec, session, labels)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load %s", architecture)
        return None
