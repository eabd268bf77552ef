from __future__ import annotations

"""store.py

Favorites and settings, persisted as JSON files in the data dir.
Only formula text and numbers are stored.
"""

import json
import time
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from formula_engines.config import get_config

DEFAULT_GROUP_ID = "default"
DEFAULT_GROUP_NAME = "常用"


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(default, ensure_ascii=False), encoding="utf-8")
    return json.loads(path.read_text(encoding="utf-8"))


def _save_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


# ---------------------------
# Favorites
# ---------------------------
def _default_group() -> Dict[str, Any]:
    return {"id": DEFAULT_GROUP_ID, "name": DEFAULT_GROUP_NAME, "formulas": [], "created_at": int(time.time() * 1000)}


class FavoritesStore:
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_config().favorites_path

    def groups(self) -> List[Dict[str, Any]]:
        data = _load_json(self.path, [])
        if not data:
            data = [_default_group()]
            _save_json(self.path, data)
        return data

    def _find(self, groups: List[Dict[str, Any]], group_id: str) -> Optional[Dict[str, Any]]:
        for g in groups:
            if g["id"] == group_id:
                return g
        return None

    def add_group(self, name: str) -> Dict[str, Any]:
        groups = self.groups()
        now = int(time.time() * 1000)
        group_id = f"g_{now}"
        while self._find(groups, group_id) is not None:
            now += 1
            group_id = f"g_{now}"
        group = {"id": group_id, "name": name, "formulas": [], "created_at": now}
        groups.append(group)
        _save_json(self.path, groups)
        return group

    def delete_group(self, group_id: str) -> bool:
        groups = self.groups()
        kept = [g for g in groups if g["id"] != group_id]
        if len(kept) == len(groups):
            return False
        _save_json(self.path, kept)
        return True

    def add_formula(self, group_id: str, formula: str) -> bool:
        """False when the group is missing or already holds this text."""
        groups = self.groups()
        group = self._find(groups, group_id)
        if group is None or formula in group["formulas"]:
            return False
        group["formulas"].append(formula)
        _save_json(self.path, groups)
        return True

    def remove_formula(self, group_id: str, formula: str) -> bool:
        groups = self.groups()
        group = self._find(groups, group_id)
        if group is None or formula not in group["formulas"]:
            return False
        group["formulas"] = [f for f in group["formulas"] if f != formula]
        _save_json(self.path, groups)
        return True


# ---------------------------
# Settings
# ---------------------------
@dataclass
class Settings:
    offset: int = 0
    periods: int = 15
    left_expand: int = 0
    right_expand: int = 0
    target_period: Optional[int] = None   # None = verify the newest period
    zodiac_year: int = 7
    search_offset: int = 0
    search_periods: int = 15
    search_left: int = 0
    search_right: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SettingsStore:
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_config().settings_path

    def load(self) -> Settings:
        return Settings.from_dict(_load_json(self.path, {}))

    def save(self, **changes: Any) -> Settings:
        current = self.load().to_dict()
        current.update({k: v for k, v in changes.items() if k in current})
        settings = Settings.from_dict(current)
        _save_json(self.path, settings.to_dict())
        return settings
