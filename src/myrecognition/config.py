"""Environment-based configuration for my-recognition."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from myrecognition.ml.model_manager import Architecture


class Settings(BaseSettings):
    """Application settings loaded from MYRECOGNITION_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MYRECOGNITION_",
        case_sensitive=False,
    )

    # Network selection
    architecture: Architecture = Architecture.RESNET_18

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model files (explicit paths skip the HuggingFace download)
    models_dir: Path = Path("models")
    model_path: Path | None = None
    labels_path: Path | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
