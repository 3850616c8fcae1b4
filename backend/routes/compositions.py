"""API routes for the composition registry."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from services.compositions import UnknownCompositionError, get_composition, list_compositions

router = APIRouter()


@router.get("/")
async def get_compositions():
    return [asdict(c) for c in list_compositions()]


@router.get("/{composition_id}")
async def get_composition_info(composition_id: str):
    try:
        return asdict(get_composition(composition_id))
    except UnknownCompositionError as e:
        raise HTTPException(404, str(e))
