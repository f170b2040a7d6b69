import copy
import re
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

import main


def _matches(doc, filt):
    for key, cond in (filt or {}).items():
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$regex" in cond:
                flags = re.I if "i" in cond.get("$options", "") else 0
                if value is None or not re.search(cond["$regex"], value, flags):
                    return False
            if "$gte" in cond and (value is None or value < cond["$gte"]):
                return False
        elif value != cond:
            return False
    return True


class MemoryStore:
    """Stands in for the database helpers used by the API."""

    def __init__(self):
        self.collections = {}

    def _col(self, name):
        return self.collections.setdefault(name, {})

    async def create_document(self, collection_name, data):
        now = datetime.now(timezone.utc)
        doc_id = uuid4().hex[:24]
        doc = {**copy.deepcopy(data), "created_at": now, "updated_at": now, "id": doc_id}
        self._col(collection_name)[doc_id] = doc
        return copy.deepcopy(doc)

    async def get_documents(self, collection_name, filter_dict=None, limit=100, sort=None):
        docs = [d for d in self._col(collection_name).values() if _matches(d, filter_dict)]
        for key, direction in reversed(sort or []):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return copy.deepcopy(docs[:limit])

    async def get_document(self, collection_name, doc_id):
        doc = self._col(collection_name).get(doc_id)
        return copy.deepcopy(doc) if doc else None

    async def update_document(self, collection_name, doc_id, changes):
        doc = self._col(collection_name).get(doc_id)
        if doc is None:
            return None
        doc.update(copy.deepcopy(changes))
        doc["updated_at"] = datetime.now(timezone.utc)
        return copy.deepcopy(doc)

    async def delete_document(self, collection_name, doc_id):
        return self._col(collection_name).pop(doc_id, None) is not None

    async def count_documents(self, collection_name, filter_dict=None):
        return len([d for d in self._col(collection_name).values() if _matches(d, filter_dict)])

    def add(self, collection_name, **fields):
        doc_id = uuid4().hex[:24]
        now = datetime.now(timezone.utc)
        self._col(collection_name)[doc_id] = {"created_at": now, "updated_at": now, **fields, "id": doc_id}
        return doc_id


@pytest.fixture
def store(monkeypatch):
    memory = MemoryStore()
    for name in (
        "create_document",
        "get_documents",
        "get_document",
        "update_document",
        "delete_document",
        "count_documents",
    ):
        monkeypatch.setattr(main, name, getattr(memory, name))
    return memory


@pytest.fixture
def client(store):
    return TestClient(main.app)


@pytest.fixture
def catalog(store):
    """Three toppings and a 30.00 product with one free topping."""
    toppings = {
        "nuez": store.add("topping", name="Nuez", active=True),
        "coco": store.add("topping", name="Coco rallado", active=True),
        "krankys": store.add("topping", name="Krankys", active=True),
    }
    store.add("topping", name="Retired", active=False)
    classic = store.add(
        "product",
        name="Seli Clásico",
        price=30.0,
        kind="individual",
        included_toppings=1,
        package_items=[],
        active=True,
    )
    return {"toppings": toppings, "classic": classic}
