"""Configuration management."""

import os
from pathlib import Path
from dataclasses import dataclass, field

import yaml


def _expand_env(value: str, default: Path) -> Path:
    """Expand a ``${VAR}`` placeholder from the environment.

    An unset or empty variable falls back to ``default``.
    """
    if value.startswith("${") and value.endswith("}"):
        value = os.environ.get(value[2:-1], "")
        if not value:
            return default
    return Path(value)


@dataclass
class DecoderConfig:
    """Binary decoder limits."""
    max_record_length: int = 65535  # REC_LEN is a U2
    min_error_cap: int = 100
    error_cap_divisor: int = 10000
    byte_order: str = "auto"  # big, little or auto (detected from FAR)
    max_file_size: int = 500 * 1024 * 1024

    def __post_init__(self):
        if self.byte_order not in ("big", "little", "auto"):
            raise ValueError(f"decoder.byte_order must be big, little or auto, got {self.byte_order!r}")


@dataclass
class ValidationConfig:
    """Thresholds used by the cross-source validator."""
    bin1_variance_pct: float = 5.0
    cross_file_variance: int = 10
    yield_variance: float = 0.1
    yield_warning_variance: float = 1.0
    excellent_yield: float = 99.5
    low_yield: float = 70.0
    lot_tolerance: int = 1


@dataclass
class ProcessingConfig:
    """Processing configuration."""
    max_workers: int = 4
    compression: str = "snappy"


@dataclass
class StorageConfig:
    """Storage configuration."""
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    session_file: Path = field(default_factory=lambda: Path("./data/.sessions.json"))

    def __post_init__(self):
        if isinstance(self.data_dir, str):
            self.data_dir = _expand_env(self.data_dir, Path("./data"))
        if isinstance(self.session_file, str):
            self.session_file = _expand_env(self.session_file, Path("./data/.sessions.json"))


@dataclass
class Config:
    """Main configuration."""
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = Path("config.yaml")

        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()

        decoder_data = data.get("decoder", {}) or {}
        validation_data = data.get("validation", {}) or {}
        processing_data = data.get("processing", {}) or {}
        storage_data = data.get("storage", {}) or {}

        return cls(
            decoder=DecoderConfig(**decoder_data),
            validation=ValidationConfig(**validation_data),
            processing=ProcessingConfig(**processing_data),
            storage=StorageConfig(**storage_data),
        )

    def ensure_directories(self):
        """Create necessary directories."""
        self.storage.data_dir.mkdir(parents=True, exist_ok=True)
        self.storage.session_file.parent.mkdir(parents=True, exist_ok=True)
