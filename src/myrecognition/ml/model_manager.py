"""Model manager: download ONNX classifiers and labels, build sessions.

Handles downloading models and the ImageNet label table from HuggingFace,
parsing label files, and creating ONNX InferenceSessions for the configured
execution device.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from myrecognition.ml.preprocessing import PreprocessConfig

if TYPE_CHECKING:
    from myrecognition.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class Architecture(StrEnum):
    RESNET_18 = "resnet-18"
    RESNET_50 = "resnet-50"
    VIT_BASE = "vit-base-patch16-224"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)


MODEL_REGISTRY: dict[Architecture, ModelSpec] = {
    Architecture.RESNET_18: ModelSpec(
        name="resnet-18",
        repo_id="Xenova/resnet-18",
        filename="model.onnx",
        subfolder="onnx",
    ),
    Architecture.RESNET_50: ModelSpec(
        name="resnet-50",
        repo_id="Xenova/resnet-50",
        filename="model.onnx",
        subfolder="onnx",
    ),
    Architecture.VIT_BASE: ModelSpec(
        name="vit-base-patch16-224",
        repo_id="Xenova/vit-base-patch16-224",
        filename="model.onnx",
        subfolder="onnx",
        preprocess=PreprocessConfig(resize=224, crop_size=224, mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5)),
    ),
}

LABELS_REPO_ID = "huggingface/label-files"
LABELS_FILENAME = "imagenet-1k-id2label.json"


def get_spec(architecture: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[Architecture(architecture)]
    except (KeyError, ValueError):
        raise KeyError(f"Unknown model: {architecture}") from None


def load_labels(path: Path) -> list[str]:
    """Read a class label table.

    Accepts a JSON ``{"0": "tench, Tinca tinca", ...}`` mapping or a text file
    with one label per line. Synset-words lines (``n01440764 tench, Tinca
    tinca``) have their leading synset id stripped.
    """
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        id2label: dict[str, str] = json.loads(text)
        labels = [id2label[key] for key in sorted(id2label, key=int)]
    else:
        labels = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            synset, _, description = line.partition(" ")
            if description and synset[:1] == "n" and synset[1:].isdigit():
                line = description.strip()
            labels.append(line)

    if not labels:
        raise ValueError(f"No class labels found in {path}")
    return labels


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads classifiers and labels, and creates ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, architecture: str) -> Path:
        """Download a model from HuggingFace unless a local path is configured."""
        spec = get_spec(architecture)

        if self._settings.model_path is not None:
            return Path(self._settings.model_path)

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir / spec.name),
            )
        )
        logger.info("Downloaded %s to %s", spec.name, downloaded)
        return downloaded

    def ensure_labels(self) -> Path:
        """Download the ImageNet label table unless a local path is configured."""
        if self._settings.labels_path is not None:
            return Path(self._settings.labels_path)

        return Path(
            hf_hub_download(
                repo_id=LABELS_REPO_ID,
                filename=LABELS_FILENAME,
                repo_type="dataset",
                local_dir=str(self._models_dir),
            )
        )

    def create_session(self, architecture: str) -> InferenceSession:
        """Create an InferenceSession for the given architecture."""
        model_path = self.ensure_downloaded(architecture)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Loaded session for %s on %s", architecture, self._settings.device)
        return session

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
