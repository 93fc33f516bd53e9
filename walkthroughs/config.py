from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    backend_url: str
    content_path: str
    namespace_suffix: str
    ready_timeout_sec: float
    http_timeout_sec: float
    kubectl: str
    log_level: str


def load_settings() -> Settings:
    return Settings(
        backend_url=os.getenv("WALKTHROUGHS_BACKEND_URL", "http://localhost:5001"),
        content_path=os.getenv("WALKTHROUGHS_CONTENT_PATH", "/walkthroughs/"),
        namespace_suffix=os.getenv("WALKTHROUGHS_NAMESPACE_SUFFIX", "walkthrough-projects"),
        ready_timeout_sec=_float_env("WALKTHROUGHS_READY_TIMEOUT", 600.0),
        http_timeout_sec=_float_env("WALKTHROUGHS_HTTP_TIMEOUT", 30.0),
        kubectl=os.getenv("KUBECTL", "kubectl"),
        log_level=os.getenv("WALKTHROUGHS_LOG_LEVEL", "INFO"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
