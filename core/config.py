"""Configuration loading."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "state_file": "output/jobs.json",
        "queue_file": "output/queue.json",
        "dead_letter_file": "output/dead_letter.json",
        "cache_dir": "output/cache",
        "storage_root": "output/storage",
        "temp_dir": "output/tmp",
        "log_file": "logs/v2doc.log",
    },
    "worker": {
        "max_concurrent_jobs": 3,
        "visibility_timeout": 600,
        "poll_interval": 5,
        "wait_time": 20,
        "base_delay_seconds": 60,
        "stop_poll_interval": 1,
        "output_bucket": "results",
    },
    "processing": {
        "max_duration": 7200,
        "max_retries": 3,
        "sync_timeout": 840,
    },
    "frames": {
        "interval": 60,
        "quality": "low",
    },
    "subtitle": {
        "languages": ["ko", "en"],
    },
    "translation": {
        "enabled": True,
        "default_language": "ko",
        "auto_translate": True,
    },
    "summary": {
        "enabled": True,
        "per_section": True,
        "max_length": 500,
        "style": "brief",
        "section_key_points": 3,
        "language": "ko",
    },
    "chapter": {
        "use_source_chapters": True,
        "auto_generate": True,
        "min_chapter_length": 60,
        "max_chapters": 15,
    },
    "enhance": {
        "enabled": True,
        "max_tokens": 80000,
        "max_items_per_batch": 10,
        "max_attempts": 3,
        "retry_base_delay": 1.0,
        "include_quotes": True,
    },
    "cache": {
        "enabled": True,
        "ttl_days": 30,
    },
    "llm": {
        "enabled": True,
        "model": "qwen3:8b",
        "base_url": "http://localhost:11434",
        "timeout": 600,
    },
    "asr": {
        "enabled": False,
        "model": "large-v3",
        "device": "auto",
    },
    "webhook": {
        "secret": "",
        "timeout": 10,
        "max_attempts": 3,
    },
    "sampling": {
        "enabled": False,
        "max_chapters": 2,
        "max_frames": 2,
        "max_enhanced_sections": 1,
    },
    "logging": {
        "level": "INFO",
    },
}

ENV_OVERRIDES = {
    "V2DOC_LLM_BASE_URL": ("llm", "base_url"),
    "V2DOC_WEBHOOK_SECRET": ("webhook", "secret"),
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[Path] = None, environ: Optional[dict] = None) -> dict[str, Any]:
    """Load configuration from YAML file, layered over the defaults.

    A missing file is only an error when the path was given explicitly.
    """
    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}\n"
                "Please copy config.example.yaml to config.yaml and adjust it."
            )
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")

    config = deep_merge(DEFAULT_CONFIG, data)

    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        if env.get(var):
            config.setdefault(section, {})[key] = env[var]
    return config


def resolve_path(config: dict[str, Any], key: str, root: Optional[Path] = None) -> Path:
    """Resolve a ``paths`` entry relative to ``root``."""
    value = Path(config.get("paths", {}).get(key, DEFAULT_CONFIG["paths"][key])).expanduser()
    if value.is_absolute() or root is None:
        return value
    return root / value
