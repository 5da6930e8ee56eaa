"""Prompt template loading."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

LANGUAGE_NAMES = {
    "ko": "Korean",
    "en": "English",
    "ja": "Japanese",
    "zh": "Chinese",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def load_prompt(name: str, prompts_dir: Optional[Path] = None, **values) -> str:
    """Load prompt template from file and fill ``{placeholders}``."""
    prompt_file = Path(prompts_dir or PROMPTS_DIR) / f"{name}.txt"
    if not prompt_file.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_file}")
    prompt = prompt_file.read_text(encoding="utf-8")
    for key, value in values.items():
        prompt = prompt.replace("{" + key + "}", str(value))
    return prompt
