"""Typed access to the menu and category collections."""

from __future__ import annotations

import logging
from typing import Any, List

import pydantic

from ..domain import Category, MenuItem
from ..errors import ConcurrentUpdate, InvalidState, NotFound, ValidationError
from ..store import (
    CATEGORIES,
    MENU,
    ConcurrentModification,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    Subscription,
)
from ..utils.callbacks import invoke
from ..utils.text import slugify
from .seed import DEFAULT_CATEGORIES, DEFAULT_MENU

logger = logging.getLogger("menu")

# Fields that only the catalog manages itself.
_READ_ONLY = {"id"}


def _parse(model, data: dict[str, Any]):
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"{field}: {first['msg']}", entity=model.__name__.lower()) from exc


class MenuCatalog:
    """Read-mostly catalog of menu items and categories.

    The order engine only ever calls :meth:`get_item`; everything else backs
    the manager's menu screens.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    # items --------------------------------------------------------------

    async def get_item(self, item_id: str) -> MenuItem:
        doc = await self.store.get(MENU, item_id)
        if doc is None:
            raise NotFound("menu_item", item_id)
        return MenuItem.from_doc(doc)

    async def list_items(self) -> List[MenuItem]:
        items = [MenuItem.from_doc(doc) for doc in await self.store.query(MENU)]
        return sorted(items, key=lambda item: (item.category, item.name))

    async def list_by_category(self, category_id: str) -> List[MenuItem]:
        docs = await self.store.query(MENU, category=category_id)
        return sorted((MenuItem.from_doc(doc) for doc in docs), key=lambda item: item.name)

    async def search(self, term: str) -> List[MenuItem]:
        """Case-insensitive substring match on name and description."""

        needle = term.strip().lower()
        if not needle:
            return await self.list_items()
        return [
            item
            for item in await self.list_items()
            if needle in item.name.lower()
            or (item.description and needle in item.description.lower())
        ]

    async def add_item(self, data: dict[str, Any]) -> MenuItem:
        data = dict(data)
        if not data.get("name"):
            raise ValidationError("name is required", entity="menu_item")
        data.setdefault("id", slugify(data["name"]))
        item = _parse(MenuItem, data)
        await self._require_category(item.category)
        try:
            await self.store.create(MENU, item.id, item.to_doc())
        except DocumentExists as exc:
            raise InvalidState(
                "menu item already exists", entity="menu_item", entity_id=item.id
            ) from exc
        logger.info("menu item %s added at %d", item.id, item.price)
        return item

    async def update_item(self, item_id: str, changes: dict[str, Any]) -> MenuItem:
        """Apply ``changes`` to a menu item.

        Price changes never touch existing orders; they carry their own
        snapshot.
        """

        changes = {k: v for k, v in changes.items() if k not in _READ_ONLY}
        if "category" in changes:
            await self._require_category(changes["category"])

        def _apply(doc: dict) -> dict:
            return _parse(MenuItem, {**doc, **changes}).to_doc()

        try:
            doc = await self.store.update(MENU, item_id, _apply)
        except DocumentMissing as exc:
            raise NotFound("menu_item", item_id) from exc
        except ConcurrentModification as exc:
            raise ConcurrentUpdate("menu_item", item_id) from exc
        return MenuItem.from_doc(doc)

    async def toggle_availability(self, item_id: str, available: bool) -> MenuItem:
        return await self.update_item(item_id, {"available": bool(available)})

    async def delete_item(self, item_id: str) -> None:
        if not await self.store.delete(MENU, item_id):
            raise NotFound("menu_item", item_id)

    async def initialize_menu(self) -> int:
        """Create the default menu items that do not exist yet."""

        created = 0
        for data in DEFAULT_MENU:
            if await self.store.get(MENU, data["id"]) is None:
                await self.store.set(MENU, data["id"], MenuItem.model_validate(data).to_doc())
                created += 1
        return created

    # categories ---------------------------------------------------------

    async def list_categories(self) -> List[Category]:
        cats = [Category.from_doc(doc) for doc in await self.store.query(CATEGORIES)]
        return sorted(cats, key=lambda cat: (cat.sort, cat.name))

    async def add_category(self, data: dict[str, Any]) -> Category:
        data = dict(data)
        if not data.get("name"):
            raise ValidationError("name is required", entity="category")
        data.setdefault("id", slugify(data["name"]))
        category = _parse(Category, data)
        try:
            await self.store.create(CATEGORIES, category.id, category.to_doc())
        except DocumentExists as exc:
            raise InvalidState(
                "category already exists", entity="category", entity_id=category.id
            ) from exc
        return category

    async def update_category(self, category_id: str, changes: dict[str, Any]) -> Category:
        changes = {k: v for k, v in changes.items() if k not in _READ_ONLY}
        try:
            doc = await self.store.update(
                CATEGORIES,
                category_id,
                lambda doc: _parse(Category, {**doc, **changes}).to_doc(),
            )
        except DocumentMissing as exc:
            raise NotFound("category", category_id) from exc
        except ConcurrentModification as exc:
            raise ConcurrentUpdate("category", category_id) from exc
        return Category.from_doc(doc)

    async def delete_category(self, category_id: str) -> None:
        if await self.store.query(MENU, category=category_id):
            raise InvalidState(
                "category still has menu items", entity="category", entity_id=category_id
            )
        if not await self.store.delete(CATEGORIES, category_id):
            raise NotFound("category", category_id)

    async def initialize_categories(self) -> int:
        created = 0
        for data in DEFAULT_CATEGORIES:
            if await self.store.get(CATEGORIES, data["id"]) is None:
                await self.store.set(CATEGORIES, data["id"], Category.model_validate(data).to_doc())
                created += 1
        return created

    # live views ---------------------------------------------------------

    async def subscribe_menu(self, callback, category: str | None = None) -> Subscription:
        """Deliver the menu, or one category of it, in listing order."""

        async def _deliver(docs):
            items = (MenuItem.from_doc(doc) for doc in docs)
            await invoke(callback, sorted(items, key=lambda item: (item.category, item.name)))

        where = {"category": category} if category else {}
        return await self.store.subscribe(MENU, _deliver, **where)

    async def subscribe_categories(self, callback) -> Subscription:
        async def _deliver(docs):
            cats = (Category.from_doc(doc) for doc in docs)
            await invoke(callback, sorted(cats, key=lambda cat: (cat.sort, cat.name)))

        return await self.store.subscribe(CATEGORIES, _deliver)

    async def _require_category(self, category_id: str) -> None:
        if await self.store.get(CATEGORIES, category_id) is None:
            raise ValidationError(
                f"unknown category {category_id!r}", entity="category", entity_id=category_id
            )
