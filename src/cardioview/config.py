from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


ENV_ENDPOINT_URL = "CV_ENDPOINT_URL"

SYNC_TOLERANCE_S = 0.1


@dataclass(frozen=True)
class ArtifactSpec:
    """One kind of derived media served by the analysis endpoint."""
    kind: str
    path: str
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": self.path, "label": self.label}


# Artifact sets the analysis backend is known to serve. The backend either
# renders a single processed video, or a mask visualization plus an ECG trace.
ARTIFACT_MODES: Dict[str, List[ArtifactSpec]] = {
    "video": [
        ArtifactSpec(kind="video", path="/get-video", label="Segmentation Result"),
    ],
    "segmentation": [
        ArtifactSpec(kind="mask", path="/get-mask", label="Segmentation Mask"),
        ArtifactSpec(kind="ecg", path="/get-ecg", label="ECG"),
    ],
}


def default_config() -> Dict[str, Any]:
    return {
        "endpoint": {
            "base_url": "http://127.0.0.1:5000",
            "timeout_s": 30.0,
        },
        "artifacts": {
            "mode": "video",  # "video" or "segmentation"
            "kinds": None,  # explicit [{kind, path, label}] list overrides mode
        },
        "server": {
            "host": "127.0.0.1",
            "port": 8780,
            "upload_dir": "uploads",
            "max_upload_mb": 100,
        },
        "playback": {
            "sync_tolerance_s": SYNC_TOLERANCE_S,
        },
        "logging": {
            "level": "INFO",
            "file": None,
            "modules": {},  # {"fetcher": "DEBUG"}; names are relative to the package
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config_dict(config_path: Optional[Path]) -> Dict[str, Any]:
    data = default_config()
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Config YAML must be a mapping")
        data = _deep_merge(data, loaded)

    env_url = os.getenv(ENV_ENDPOINT_URL)
    if env_url:
        data["endpoint"]["base_url"] = env_url
    return data


@dataclass
class ViewerConfig:
    base_url: str = "http://127.0.0.1:5000"
    timeout_s: float = 30.0
    artifact_mode: str = "video"
    artifact_kinds: Optional[List[Dict[str, Any]]] = None
    host: str = "127.0.0.1"
    port: int = 8780
    upload_dir: Path = field(default_factory=lambda: Path("uploads"))
    max_upload_mb: float = 100
    sync_tolerance_s: float = SYNC_TOLERANCE_S
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_modules: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViewerConfig":
        endpoint = data.get("endpoint", {})
        artifacts = data.get("artifacts", {})
        server = data.get("server", {})
        playback = data.get("playback", {})
        log = data.get("logging") or {}
        log_file = log.get("file")
        return cls(
            base_url=str(endpoint.get("base_url", cls.base_url)).rstrip("/"),
            timeout_s=float(endpoint.get("timeout_s", cls.timeout_s)),
            artifact_mode=str(artifacts.get("mode", cls.artifact_mode)),
            artifact_kinds=artifacts.get("kinds"),
            host=str(server.get("host", cls.host)),
            port=int(server.get("port", cls.port)),
            upload_dir=Path(server.get("upload_dir", "uploads")),
            max_upload_mb=float(server.get("max_upload_mb", cls.max_upload_mb)),
            sync_tolerance_s=float(playback.get("sync_tolerance_s", SYNC_TOLERANCE_S)),
            log_level=str(log.get("level") or cls.log_level).upper(),
            log_file=Path(log_file) if log_file else None,
            log_modules={str(k): str(v) for k, v in (log.get("modules") or {}).items()},
        )

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * 1024 * 1024)

    def artifact_specs(self) -> List[ArtifactSpec]:
        """Resolve the configured artifact set.

        An explicit ``kinds`` list wins over ``mode``. Kind names must be
        unique since each kind owns exactly one media slot.
        """
        if self.artifact_kinds:
            specs = []
            for item in self.artifact_kinds:
                if "kind" not in item or "path" not in item:
                    raise ValueError(f"Artifact entry needs 'kind' and 'path': {item!r}")
                specs.append(
                    ArtifactSpec(
                        kind=str(item["kind"]),
                        path=str(item["path"]),
                        label=str(item.get("label", item["kind"])),
                    )
                )
        else:
            if self.artifact_mode not in ARTIFACT_MODES:
                known = ", ".join(sorted(ARTIFACT_MODES))
                raise ValueError(f"Unknown artifact mode {self.artifact_mode!r} (expected one of: {known})")
            specs = list(ARTIFACT_MODES[self.artifact_mode])

        kinds = [s.kind for s in specs]
        if len(set(kinds)) != len(kinds):
            raise ValueError(f"Duplicate artifact kinds: {kinds}")
        return specs


def load_config(config_path: Optional[Path] = None) -> ViewerConfig:
    return ViewerConfig.from_dict(load_config_dict(config_path))
