from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from formula_engines.formula_parser import try_parse
from formula_engines.store import FavoritesStore, SettingsStore

router = APIRouter()


def get_favorites() -> FavoritesStore:
    return FavoritesStore()


def get_settings_store() -> SettingsStore:
    return SettingsStore()


class GroupCreate(BaseModel):
    name: str


class FormulaBody(BaseModel):
    formula: str


class SettingsUpdate(BaseModel):
    offset: Optional[int] = None
    periods: Optional[int] = None
    left_expand: Optional[int] = None
    right_expand: Optional[int] = None
    target_period: Optional[int] = None
    zodiac_year: Optional[int] = None
    search_offset: Optional[int] = None
    search_periods: Optional[int] = None
    search_left: Optional[int] = None
    search_right: Optional[int] = None


# ============================================================
# Favorites
# ============================================================
@router.get("/favorites")
def list_groups(store: FavoritesStore = Depends(get_favorites)):
    return store.groups()


@router.post("/favorites/groups")
def create_group(body: GroupCreate, store: FavoritesStore = Depends(get_favorites)):
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="group name is empty")
    return store.add_group(name)


@router.delete("/favorites/groups/{group_id}")
def delete_group(group_id: str, store: FavoritesStore = Depends(get_favorites)):
    if not store.delete_group(group_id):
        raise HTTPException(status_code=404, detail="group not found")
    return {"deleted": group_id}


@router.post("/favorites/groups/{group_id}/formulas")
def add_formula(group_id: str, body: FormulaBody, store: FavoritesStore = Depends(get_favorites)):
    text = body.formula.strip()
    if try_parse(text) is None:
        raise HTTPException(status_code=400, detail=f"not a valid formula: {text}")
    added = store.add_formula(group_id, text)
    if not added and not any(g["id"] == group_id for g in store.groups()):
        raise HTTPException(status_code=404, detail="group not found")
    return {"added": added}


@router.delete("/favorites/groups/{group_id}/formulas")
def remove_formula(group_id: str, formula: str = Query(...), store: FavoritesStore = Depends(get_favorites)):
    return {"removed": store.remove_formula(group_id, formula.strip())}


# ============================================================
# Settings
# ============================================================
@router.get("/settings")
def read_settings(store: SettingsStore = Depends(get_settings_store)):
    return store.load().to_dict()


@router.put("/settings")
def update_settings(body: SettingsUpdate, store: SettingsStore = Depends(get_settings_store)):
    changes = body.model_dump(exclude_unset=True)
    if changes.get("periods") is not None and changes["periods"] <= 0:
        raise HTTPException(status_code=400, detail="periods must be positive")
    return store.save(**changes).to_dict()
