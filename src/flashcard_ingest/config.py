"""Import configuration.

Loaded from an optional JSON file; missing keys fall back to defaults and a
missing file yields the defaults unchanged.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path


@dataclass(frozen=True)
class ImportConfig:
    similarity_threshold: float = 0.8
    min_question_length: int = 5
    max_comparison_limit: int = 1000
    max_import_size: int = 500
    max_export_size: int = 5000
    max_anki_bytes: int = 100 * 1024 * 1024
    max_mnemosyne_bytes: int = 10 * 1024 * 1024
    max_reported_errors: int = 100
    question_weight: float = 0.7
    answer_weight: float = 0.3
    long_text_threshold: int = 255

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_CONFIG = ImportConfig()


def load_config(path: str | Path | None) -> ImportConfig:
    """Load an ImportConfig from JSON, overlaying values on the defaults.

    Raises:
        ValueError: If the file is not valid JSON, not an object, or names a
            key that ImportConfig does not know.
    """
    if path is None:
        return DEFAULT_CONFIG
    path = Path(path)
    if not path.exists():
        return DEFAULT_CONFIG

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {path}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(ImportConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in {path}: {unknown}")

    cfg = replace(DEFAULT_CONFIG, **data)
    if abs(cfg.question_weight + cfg.answer_weight - 1.0) > 1e-9:
        raise ValueError("question_weight and answer_weight must sum to 1.0")
    if not 0.0 < cfg.similarity_threshold <= 1.0:
        raise ValueError("similarity_threshold must be in (0, 1]")
    return cfg
