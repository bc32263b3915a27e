"""
Pytest configuration and fixtures for Nyumba tests.

Provides an in-memory stand-in for the Supabase query builder, an
in-memory object store, a mocked Gemini client and Pillow-generated
images.
"""
import copy
import io
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image, ImageDraw
from postgrest.exceptions import APIError

from nyumba.services import room_analyzer
from nyumba.storage import s3_client, supabase_client
from nyumba.storage.s3_client import StoredObject

# ---------------------------------------------------------------------------
# In-memory Supabase
# ---------------------------------------------------------------------------

UNIQUE_COLUMNS = {"room_analyses": "media_asset_id"}


class FakeQuery:
    """Chainable subset of the postgrest query builder."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.row_limit = None

    def select(self, *_columns):
        self.op = "select"
        return self

    def insert(self, row: dict):
        self.op = "insert"
        self.payload = row
        return self

    def update(self, row: dict):
        self.op = "update"
        self.payload = row
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def ilike(self, column, pattern):
        needle = pattern.strip("%").lower()
        self.filters.append(lambda r: needle in str(r.get(column) or "").lower())
        return self

    def or_(self, expression: str):
        clauses = []
        for clause in expression.split(","):
            column, op, value = clause.split(".", 2)
            if op == "is" and value == "null":
                clauses.append(lambda r, c=column: r.get(c) is None)
            else:
                clauses.append(lambda r, c=column, v=value: str(r.get(c)) == v)
        self.filters.append(lambda r: any(c(r) for c in clauses))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.row_limit = n
        return self

    def _matching(self):
        rows = [r for r in self.db.tables.setdefault(self.table_name, []) if all(f(r) for f in self.filters)]
        if self.order_by:
            column, desc = self.order_by
            rows.sort(key=lambda r: r.get(column), reverse=desc)
        if self.row_limit is not None:
            rows = rows[: self.row_limit]
        return rows

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            unique = UNIQUE_COLUMNS.get(self.table_name)
            if unique and any(r.get(unique) == self.payload.get(unique) for r in rows):
                raise APIError(
                    {
                        "message": "duplicate key value violates unique constraint",
                        "code": "23505",
                        "hint": None,
                        "details": None,
                    }
                )
            row = copy.deepcopy(self.payload)
            row["id"] = self.db.next_id(self.table_name)
            rows.append(row)
            return SimpleNamespace(data=[copy.deepcopy(row)])

        if self.op == "delete":
            matched = self._matching()
            self.db.tables[self.table_name] = [r for r in rows if r not in matched]
            return SimpleNamespace(data=matched)

        if self.op == "update":
            matched = self._matching()
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(matched))

        return SimpleNamespace(data=copy.deepcopy(self._matching()))


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self._ids: dict[str, int] = {}

    def next_id(self, table: str) -> int:
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def add_product(self, **fields) -> dict:
        row = {
            "name": "Product",
            "category": "Furniture",
            "description": None,
            "price_kes": 10000,
            "image_urls": "[]",
            "budget_tier": None,
            "is_active": True,
            **fields,
        }
        row["id"] = self.next_id("products")
        self.tables.setdefault("products", []).append(row)
        return row


@pytest.fixture
def fake_db(monkeypatch):
    """Route every Supabase call to an in-memory database."""
    db = FakeSupabase()
    monkeypatch.setattr(supabase_client, "_supabase", db)
    return db


# ---------------------------------------------------------------------------
# In-memory object store
# ---------------------------------------------------------------------------

class FakeObjectStore:
    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_on: set[str] = set()  # folder prefixes whose uploads fail

    def put_object(self, key: str, data: bytes, content_type: str) -> StoredObject:
        if any(key.startswith(prefix) for prefix in self.fail_on):
            raise ConnectionError(f"upload of {key} failed")
        self.objects[key] = (data, content_type)
        return StoredObject(key=key, url=s3_client.get_object_url(key))

    def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self.objects if k.startswith(prefix)]


@pytest.fixture
def fake_storage(monkeypatch):
    store = FakeObjectStore()
    monkeypatch.setattr(s3_client, "STORAGE_PUBLIC_URL", "https://cdn.test")
    monkeypatch.setattr(s3_client, "put_object", store.put_object)
    monkeypatch.setattr(s3_client, "delete_object", store.delete_object)
    return store


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def encode_image(img: Image.Image, fmt: str = "JPEG") -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image():
    """Factory: ``make_image(width, height, color, fmt)`` -> encoded bytes."""

    def _make(width: int, height: int, color="white", fmt: str = "JPEG") -> bytes:
        mode = "RGBA" if fmt == "PNG" else "RGB"
        return encode_image(Image.new(mode, (width, height), color=color), fmt)

    return _make


@pytest.fixture
def room_jpeg():
    """A 200x100 room photo: grey walls, brown floor."""
    img = Image.new("RGB", (200, 100), color="lightgray")
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 80, 200, 100], fill="brown")
    return encode_image(img)


@pytest.fixture
def product_png():
    """A 40x20 opaque red product cut-out."""
    return encode_image(Image.new("RGBA", (40, 20), color=(200, 0, 0, 255)), "PNG")


# ---------------------------------------------------------------------------
# Vision model
# ---------------------------------------------------------------------------

@pytest.fixture
def analysis_json():
    """A schema-conforming Gemini response for a living room."""
    return {
        "roomType": "living room",
        "roomSize": "medium",
        "currentStyle": "minimalist",
        "lightingCondition": "bright",
        "colorScheme": "Warm whites with terracotta accents",
        "suggestedStyles": ["Afro-contemporary", "Scandinavian"],
        "recommendations": [
            {
                "category": "Seating",
                "items": ["3-seater sofa", "accent chair"],
                "reasoning": "The room lacks a main seating area",
                "priceRange": "KES 40,000 - 90,000",
                "whereToFind": "Furniture shops on Ngong Road",
            },
            {
                "category": "Lighting",
                "items": ["floor lamp"],
                "reasoning": "Evening light is limited",
                "priceRange": "KES 3,000 - 8,000",
                "whereToFind": "Maasai Market",
            },
        ],
        "productSuggestions": [
            {
                "category": "Seating",
                "productName": "3-seater sofa",
                "reason": "Anchors the room",
                "placement": "Against the back wall",
                "priority": "high",
                "estimatedBudget": "KES 45,000",
                "position": {"x": 10, "y": 50},
                "size": {"width": 40, "height": 30},
            },
            {
                "category": "Lighting",
                "productName": "Floor lamp",
                "reason": "Adds warm evening light",
                "placement": "Next to the sofa",
                "priority": "medium",
                "estimatedBudget": "KES 4,000",
                "position": {"x": 60, "y": 30},
                "size": {"width": 10, "height": 40},
            },
        ],
        "analysisText": "A bright, airy room with plenty of potential.",
    }


@pytest.fixture
def mock_gemini(monkeypatch, analysis_json):
    """Replace the Gemini client; returns the ``generate_content`` mock."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(
        return_value=MagicMock(text=json.dumps(analysis_json))
    )
    monkeypatch.setattr(room_analyzer, "_client", client)
    return client.aio.models.generate_content
