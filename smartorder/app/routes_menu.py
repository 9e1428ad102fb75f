"""Menu and category management routes."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from .deps import get_menu
from .services import MenuCatalog
from .utils.responses import ok

router = APIRouter(prefix="/api/menu")


class AvailabilityPayload(BaseModel):
    available: bool


@router.post("/setup")
async def setup_menu(menu: MenuCatalog = Depends(get_menu)) -> dict:
    """Seed the default categories and dishes that are missing."""

    categories = await menu.initialize_categories()
    items = await menu.initialize_menu()
    return ok({"categories": categories, "items": items})


@router.get("/categories")
async def list_categories(menu: MenuCatalog = Depends(get_menu)) -> dict:
    return ok([c.to_doc() for c in await menu.list_categories()])


@router.post("/categories")
async def add_category(payload: Dict[str, Any] = Body(...), menu: MenuCatalog = Depends(get_menu)) -> dict:
    return ok((await menu.add_category(payload)).to_doc())


@router.patch("/categories/{category_id}")
async def update_category(
    category_id: str, payload: Dict[str, Any] = Body(...), menu: MenuCatalog = Depends(get_menu)
) -> dict:
    return ok((await menu.update_category(category_id, payload)).to_doc())


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str, menu: MenuCatalog = Depends(get_menu)) -> dict:
    await menu.delete_category(category_id)
    return ok({"deleted": category_id})


@router.get("/items")
async def list_items(
    category: str | None = None, q: str | None = None, menu: MenuCatalog = Depends(get_menu)
) -> dict:
    if q:
        items = await menu.search(q)
        if category:
            items = [i for i in items if i.category == category]
    elif category:
        items = await menu.list_by_category(category)
    else:
        items = await menu.list_items()
    return ok([i.to_doc() for i in items])


@router.get("/items/{item_id}")
async def get_item(item_id: str, menu: MenuCatalog = Depends(get_menu)) -> dict:
    return ok((await menu.get_item(item_id)).to_doc())


@router.post("/items")
async def add_item(payload: Dict[str, Any] = Body(...), menu: MenuCatalog = Depends(get_menu)) -> dict:
    return ok((await menu.add_item(payload)).to_doc())


@router.patch("/items/{item_id}")
async def update_item(
    item_id: str, payload: Dict[str, Any] = Body(...), menu: MenuCatalog = Depends(get_menu)
) -> dict:
    return ok((await menu.update_item(item_id, payload)).to_doc())


@router.post("/items/{item_id}/availability")
async def toggle_availability(
    item_id: str, payload: AvailabilityPayload, menu: MenuCatalog = Depends(get_menu)
) -> dict:
    return ok((await menu.toggle_availability(item_id, payload.available)).to_doc())


@router.delete("/items/{item_id}")
async def delete_item(item_id: str, menu: MenuCatalog = Depends(get_menu)) -> dict:
    await menu.delete_item(item_id)
    return ok({"deleted": item_id})
