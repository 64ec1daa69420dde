from pathlib import Path

import pytest

from cardioview.config import ENV_ENDPOINT_URL, ViewerConfig, load_config


@pytest.fixture(autouse=True)
def _no_env_endpoint(monkeypatch):
    monkeypatch.delenv(ENV_ENDPOINT_URL, raising=False)


def test_defaults() -> None:
    cfg = load_config(None)
    assert cfg.base_url == "http://127.0.0.1:5000"
    assert cfg.sync_tolerance_s == 0.1
    assert [s.kind for s in cfg.artifact_specs()] == ["video"]
    assert cfg.artifact_specs()[0].path == "/get-video"


def test_yaml_overrides_merge_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "viewer.yaml"
    path.write_text(
        "endpoint:\n  base_url: http://analysis:9000/\nartifacts:\n  mode: segmentation\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.base_url == "http://analysis:9000"
    assert cfg.timeout_s == 30.0
    assert [s.kind for s in cfg.artifact_specs()] == ["mask", "ecg"]


def test_explicit_kinds_win_over_mode(tmp_path: Path) -> None:
    path = tmp_path / "viewer.yaml"
    path.write_text(
        "artifacts:\n  mode: video\n  kinds:\n    - {kind: overlay, path: /overlay}\n",
        encoding="utf-8",
    )
    specs = load_config(path).artifact_specs()
    assert len(specs) == 1
    assert specs[0].kind == "overlay"
    assert specs[0].label == "overlay"


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path).port == 8780


def test_env_endpoint_override(monkeypatch) -> None:
    monkeypatch.setenv(ENV_ENDPOINT_URL, "http://remote:5000")
    assert load_config(None).base_url == "http://remote:5000"


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_non_mapping_rejected(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_bad_artifact_settings() -> None:
    with pytest.raises(ValueError):
        ViewerConfig(artifact_mode="hologram").artifact_specs()
    with pytest.raises(ValueError):
        ViewerConfig(artifact_kinds=[{"kind": "a", "path": "/a"}, {"kind": "a", "path": "/b"}]).artifact_specs()
    with pytest.raises(ValueError):
        ViewerConfig(artifact_kinds=[{"kind": "a"}]).artifact_specs()


def test_max_upload_bytes() -> None:
    assert ViewerConfig(max_upload_mb=1).max_upload_bytes == 1024 * 1024


def test_logging_section(tmp_path: Path) -> None:
    assert load_config(None).log_level == "INFO"
    assert load_config(None).log_file is None

    path = tmp_path / "viewer.yaml"
    path.write_text(
        "logging:\n  level: debug\n  file: logs/viewer.log\n  modules:\n    fetcher: WARNING\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file == Path("logs/viewer.log")
    assert cfg.log_modules == {"fetcher": "WARNING"}
