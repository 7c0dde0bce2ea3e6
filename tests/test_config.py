from pathlib import Path

import pytest

from stdf_integrity.config import Config


def test_defaults_without_file(tmp_path):
    config = Config.load(tmp_path / "missing.yaml")
    assert config.decoder.byte_order == "auto"
    assert config.decoder.min_error_cap == 100
    assert config.validation.bin1_variance_pct == 5.0
    assert config.processing.max_workers == 4
    assert config.storage.data_dir == Path("./data")


def test_load_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "decoder:\n"
        "  byte_order: little\n"
        "  max_file_size: 1024\n"
        "validation:\n"
        "  bin1_variance_pct: 2.5\n"
        "  low_yield: 80\n"
        "processing:\n"
        "  max_workers: 8\n"
        "storage:\n"
        f"  data_dir: {tmp_path / 'out'}\n"
    )
    config = Config.load(path)
    assert config.decoder.byte_order == "little"
    assert config.decoder.max_file_size == 1024
    assert config.validation.bin1_variance_pct == 2.5
    assert config.validation.low_yield == 80
    assert config.processing.max_workers == 8
    assert config.storage.data_dir == tmp_path / "out"


def test_empty_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert Config.load(path).decoder.byte_order == "auto"


def test_env_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("STDF_DATA", str(tmp_path / "env-data"))
    path = tmp_path / "config.yaml"
    path.write_text("storage:\n  data_dir: ${STDF_DATA}\n")
    assert Config.load(path).storage.data_dir == tmp_path / "env-data"


def test_unset_env_keeps_default_path(tmp_path, monkeypatch):
    monkeypatch.delenv("STDF_DATA", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("storage:\n  data_dir: ${STDF_DATA}\n")
    assert Config.load(path).storage.data_dir == Path("./data")


def test_invalid_byte_order(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("decoder:\n  byte_order: middle\n")
    with pytest.raises(ValueError):
        Config.load(path)


def test_ensure_directories(config):
    config.ensure_directories()
    assert config.storage.data_dir.is_dir()
