"""Shared fixtures for the prebuilt component tests."""
from __future__ import annotations

from typing import Any

import pytest

from services.registry import PrebuiltRegistry
from services.store import InMemoryStorage
from services.styles import StyleStore


@pytest.fixture
def style_store() -> StyleStore:
    store = StyleStore()
    store.create_style_source("local", "card", source_id="s1")
    store.create_style_source("local", "card-body", source_id="s2")
    store.set_raw_entry("s1:color", "red")
    store.set_raw_entry("s2:bg", "blue")
    return store


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def registry(style_store: StyleStore, storage: InMemoryStorage) -> PrebuiltRegistry:
    return PrebuiltRegistry.load(style_store, storage)


@pytest.fixture
def card() -> dict[str, Any]:
    return {
        "id": "n1",
        "type": "Div",
        "styleSourceIds": ["s1"],
        "children": [
            {"id": "n2", "type": "Text", "props": {"children": "Hi"}, "styleSourceIds": ["s1", "s2"], "children": []},
        ],
    }
