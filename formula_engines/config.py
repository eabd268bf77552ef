from __future__ import annotations

"""config.py

Engine configuration: `.env` → environment variables → optional JSON file.

- every value has a default, so an empty environment is a valid setup.
- the JSON file (FORMULA_LAB_CONFIG, default <data_dir>/formula_lab_config.json)
  overrides env values key by key.
"""

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

ROOT = Path(__file__).resolve().parents[1]

VERIFY_BATCH_MIN = 20
VERIFY_BATCH_MAX = 50


@dataclass(frozen=True)
class EngineConfig:
    data_dir: Path = ROOT / "data"
    element_cache_size: int = 20000  # 0 = cache disabled
    verify_batch_size: int = 50
    progress_interval: int = 50
    search_time_budget: float = 60.0
    search_max_evaluations: int = 200000
    search_seed: Optional[int] = None
    default_zodiac_year: int = 7
    log_level: str = "INFO"
    allowed_origins: List[str] = None  # type: ignore[assignment]

    def __post_init__(self):
        if self.allowed_origins is None:
            object.__setattr__(self, "allowed_origins", ["*"])
        batch = min(max(int(self.verify_batch_size), VERIFY_BATCH_MIN), VERIFY_BATCH_MAX)
        object.__setattr__(self, "verify_batch_size", batch)
        object.__setattr__(self, "data_dir", Path(self.data_dir))

    @property
    def favorites_path(self) -> Path:
        return self.data_dir / "favorites.json"

    @property
    def settings_path(self) -> Path:
        return self.data_dir / "settings.json"


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _from_env() -> Dict[str, Any]:
    data_dir = os.getenv("FORMULA_LAB_DATA_DIR", "").strip()
    return {
        "data_dir": Path(data_dir) if data_dir else ROOT / "data",
        "element_cache_size": _env_int("FORMULA_LAB_CACHE_SIZE", 20000),
        "verify_batch_size": _env_int("FORMULA_LAB_VERIFY_BATCH", 50),
        "progress_interval": _env_int("FORMULA_LAB_PROGRESS_INTERVAL", 50),
        "search_time_budget": _env_float("FORMULA_LAB_SEARCH_SECONDS", 60.0),
        "search_max_evaluations": _env_int("FORMULA_LAB_SEARCH_MAX_EVALS", 200000),
        "search_seed": _env_int("FORMULA_LAB_SEARCH_SEED", None),
        "default_zodiac_year": _env_int("FORMULA_LAB_ZODIAC_YEAR", 7),
        "log_level": os.getenv("FORMULA_LAB_LOG_LEVEL", "INFO").upper(),
        "allowed_origins": os.getenv("ALLOWED_ORIGINS", "*").split(","),
    }


def _from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    raw = json.loads(path.read_text(encoding="utf-8"))
    known = {f.name for f in fields(EngineConfig)}
    # unknown keys are ignored so old config files keep working
    return {k: v for k, v in raw.items() if k in known}


def load_config(path: Optional[Path] = None) -> EngineConfig:
    values = _from_env()
    cfg_path = path or Path(os.getenv("FORMULA_LAB_CONFIG", "") or values["data_dir"] / "formula_lab_config.json")
    values.update(_from_file(Path(cfg_path)))
    return EngineConfig(**values)


_CONFIG: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reload_config(**overrides: Any) -> EngineConfig:
    global _CONFIG
    _CONFIG = replace(load_config(), **overrides) if overrides else load_config()
    return _CONFIG
