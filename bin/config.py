"""DK-API configuration: environment loading, config.yaml overrides, CLI args."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict


DEFAULT_SUPPORT = "TG: @DARK_SKINNED"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
STORE_BACKENDS = ("memory", "jsonl", "firebase")


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Config:
    """Runtime configuration for the API process."""

    gemini_api_key: str = ""  # Credential appended to every premium endpoint.
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL  # Premium endpoints hang off this.
    workers_api_url: str = ""  # Free-tier worker prefix; the encoded prompt is appended.
    store_backend: str = "memory"  # One of STORE_BACKENDS.
    state_file: Path = Path("sessions.jsonl")  # jsonl backend location.
    firebase_database_url: str = ""  # Realtime Database root (firebase backend).
    firebase_auth: str = ""  # Optional database secret / ID token (firebase backend).
    timeout_s: float = 30.0  # Provider call timeout.
    store_timeout_s: float = 10.0  # Firebase REST timeout.
    support: str = DEFAULT_SUPPORT  # Support contact echoed in every chat reply.
    bind_host: str = "0.0.0.0"
    bind_port: int = 3000


def _env_bool(name: str, default: bool) -> bool:
    """Read a permissive boolean env var with a default fallback."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_config(cfg_yaml: Dict[str, Any] | None = None) -> Config:
    """Build Config from environment variables, config.yaml, and safe defaults.

    Environment variables win over config.yaml; config.yaml wins over the
    built-in defaults.  Only non-secret values are read from YAML.
    """
    yaml_api = (cfg_yaml or {}).get("api", {}) if isinstance(cfg_yaml, dict) else {}
    if not isinstance(yaml_api, dict):
        yaml_api = {}

    store_backend = str(os.environ.get("DKAPI_STORE", yaml_api.get("store") or "memory")).strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ValueError(
            f"Unknown DKAPI_STORE '{store_backend}'. Expected one of: {', '.join(STORE_BACKENDS)}"
        )

    state_file = Path(
        os.environ.get("DKAPI_STATE_FILE", yaml_api.get("state_file", str(Path.cwd() / "sessions.jsonl")))
    ).expanduser().resolve()

    return Config(
        gemini_api_key=os.environ.get("GEMINI_API_KEY", "").strip(),
        gemini_base_url=os.environ.get("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL).rstrip("/"),
        workers_api_url=os.environ.get("WORKERS_API_URL", "").strip(),
        store_backend=store_backend,
        state_file=state_file,
        firebase_database_url=os.environ.get("FIREBASE_DATABASE_URL", "").strip().rstrip("/"),
        firebase_auth=os.environ.get("FIREBASE_AUTH", "").strip(),
        timeout_s=float(os.environ.get("DKAPI_TIMEOUT_S", yaml_api.get("timeout_s", 30))),
        store_timeout_s=float(os.environ.get("DKAPI_STORE_TIMEOUT_S", yaml_api.get("store_timeout_s", 10))),
        support=os.environ.get("DKAPI_SUPPORT", yaml_api.get("support", DEFAULT_SUPPORT)),
        bind_host=os.environ.get("DKAPI_BIND_HOST", yaml_api.get("bind_host", "0.0.0.0")),
        bind_port=int(os.environ.get("DKAPI_BIND_PORT", yaml_api.get("bind_port", 3000))),
    )


# ---------------------------------------------------------------------------
# config.yaml loader
# ---------------------------------------------------------------------------
_CONFIG_YAML_STATUS = ""  # human-readable load status for startup banner


def _load_config_yaml(project_root: Path | None = None) -> Dict[str, Any]:
    """Load config.yaml from the project directory.

    *project_root* defaults to the parent of the bin/ directory (i.e. the
    repo root).  DKAPI_CONFIG_YAML overrides the path entirely.
    """
    global _CONFIG_YAML_STATUS
    import yaml

    if os.environ.get("DKAPI_CONFIG_YAML"):
        cfg_path = Path(os.environ["DKAPI_CONFIG_YAML"]).expanduser()
    else:
        if project_root is None:
            project_root = Path(__file__).resolve().parent.parent
        cfg_path = project_root / "config.yaml"
    if not cfg_path.exists():
        _CONFIG_YAML_STATUS = f"not found at {cfg_path}"
        return {}
    try:
        with open(cfg_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        _CONFIG_YAML_STATUS = f"parse error: {exc}"
        return {}
    if not isinstance(data, dict):
        _CONFIG_YAML_STATUS = f"not a mapping at {cfg_path}"
        return {}
    _CONFIG_YAML_STATUS = f"loaded ({len(data)} keys) from {cfg_path}" if data else f"empty at {cfg_path}"
    return data


# ---------------------------------------------------------------------------
# Module-level mode flags (set by main() at startup)
# ---------------------------------------------------------------------------
DEBUG_MODE: bool = False


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv: list | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the server entry point."""
    parser = argparse.ArgumentParser(description="DK-API unified chat gateway")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    parser.add_argument("--store", choices=STORE_BACKENDS, default=None,
                        help="Session store backend (overrides DKAPI_STORE)")
    parser.add_argument("--host", default=None, help="Bind host (overrides DKAPI_BIND_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides DKAPI_BIND_PORT)")
    return parser.parse_args(argv)
