"""
Tests for the PrebuiltRegistry.

The registry owns the captured prebuilt records and the set of instance ids
the editor highlights as prebuilt-derived.
"""
from __future__ import annotations

import json
from typing import Any

import pytest

from services.registry import DEFAULT_NAMESPACE, PrebuiltRegistry
from services.store import InMemoryStorage, JsonFileStorage


class FailingStorage(InMemoryStorage):
    """Storage whose writes fail until `broken` is cleared."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = True
        self.attempts = 0

    def save(self, namespace: str, data: dict[str, Any]) -> None:
        self.attempts += 1
        if self.broken:
            raise OSError("disk full")
        super().save(namespace, data)


class TestAdd:

    def test_scenario_card(self, registry, card) -> None:
        record = registry.add("Card", card)
        assert set(record["styles"]) == {"s1", "s2"}
        assert record["styles"]["s1"]["styleValues"] == {"s1:color": "red"}
        assert record["styles"]["s2"]["styleValues"] == {"s2:bg": "blue"}
        assert registry.linked_instance_ids == ["n1"]
        assert registry.records == [record]

    def test_add_twice_links_once(self, registry, card) -> None:
        registry.add("Card", card)
        registry.add("Card again", card)
        assert len(registry.records) == 2
        assert registry.linked_instance_ids == ["n1"]

    def test_created_at_non_decreasing(self, registry, card) -> None:
        stamps = [registry.add(f"c{i}", card)["createdAt"] for i in range(20)]
        assert stamps == sorted(stamps)

    def test_created_at_never_goes_back(self, registry, card, monkeypatch) -> None:
        first = registry.add("a", card)["createdAt"]
        monkeypatch.setattr("services.registry.now_ms", lambda: first - 10_000)
        assert registry.add("b", card)["createdAt"] == first

    def test_failed_capture_leaves_state_untouched(self, registry) -> None:
        with pytest.raises(ValueError):
            registry.add("bad", {"id": "x", "children": [{"id": "x", "children": []}]})
        assert registry.records == []
        assert registry.linked_instance_ids == []


class TestReadsAreCopies:

    def test_mutating_returned_record_changes_nothing(self, registry, storage, card) -> None:
        record = registry.add("Card", card)
        record["name"] = "hacked"
        record["instance"]["children"].clear()
        registry.get(record["id"])["styles"].clear()
        registry.records[0]["instance"]["id"] = "other"

        stored = registry.get(record["id"])
        assert stored["name"] == "Card"
        assert len(stored["instance"]["children"]) == 1
        assert set(stored["styles"]) == {"s1", "s2"}
        assert stored["instance"]["id"] == "n1"
        assert storage.load(DEFAULT_NAMESPACE)["prebuiltComponents"][0]["name"] == "Card"

    def test_linked_ids_are_a_copy(self, registry) -> None:
        registry.mark_linked("x")
        registry.linked_instance_ids.append("y")
        assert registry.linked_instance_ids == ["x"]


class TestUpdate:

    def test_update_recaptures_instance_and_styles(self, registry, style_store, card) -> None:
        record = registry.add("Card", card)
        style_store.set_raw_entry("s1:color", "green")
        changed = dict(card, styleSourceIds=["s1"], children=[])

        updated = registry.update(record["id"], changed)
        assert updated["id"] == record["id"]
        assert updated["name"] == "Card"
        assert updated["createdAt"] == record["createdAt"]
        assert updated["updatedAt"] >= record["createdAt"]
        assert updated["instance"]["children"] == []
        assert set(updated["styles"]) == {"s1"}
        assert updated["styles"]["s1"]["styleValues"] == {"s1:color": "green"}
        assert registry.get(record["id"]) == updated

    def test_update_moves_link_to_new_origin(self, registry, card) -> None:
        record = registry.add("Card", card)
        registry.update(record["id"], {"id": "n9", "type": "Div", "children": []})
        assert registry.linked_instance_ids == ["n9"]

    def test_update_keeps_origin_link_used_elsewhere(self, registry, card) -> None:
        first = registry.add("Card", card)
        registry.add("Card copy", card)
        registry.update(first["id"], {"id": "n9", "type": "Div", "children": []})
        assert registry.is_linked("n1")
        assert registry.is_linked("n9")

    def test_update_missing(self, registry, card) -> None:
        assert registry.update("prebuilt-nope", card) is None
        assert registry.records == []

    def test_failed_update_keeps_record(self, registry, card) -> None:
        record = registry.add("Card", card)
        with pytest.raises(ValueError):
            registry.update(record["id"], {"id": "x", "children": [{"id": "x", "children": []}]})
        assert registry.get(record["id"]) == record


class TestRemove:

    def test_scenario_remove_unlinks(self, registry, card) -> None:
        record = registry.add("Card", card)
        registry.remove(record["id"])
        assert registry.records == []
        assert registry.is_linked("n1") is False

    def test_remove_missing_is_noop(self, registry, card) -> None:
        registry.add("Card", card)
        registry.remove("prebuilt-nope")
        assert len(registry.records) == 1
        assert registry.is_linked("n1")

    def test_keeps_link_while_other_record_references_instance(self, registry, card) -> None:
        first = registry.add("Card", card)
        second = registry.add("Card v2", card)
        registry.remove(first["id"])
        assert registry.is_linked("n1")
        registry.remove(second["id"])
        assert not registry.is_linked("n1")


class TestRename:

    def test_rename_only_changes_name(self, registry, card) -> None:
        record = registry.add("Card", card)
        before = json.loads(json.dumps(record))
        registry.rename(record["id"], "Hero card")
        after = registry.get(record["id"])
        assert after["name"] == "Hero card"
        assert {k: v for k, v in after.items() if k != "name"} == \
            {k: v for k, v in before.items() if k != "name"}

    def test_rename_to_empty_is_verbatim(self, registry, card) -> None:
        record = registry.add("Card", card)
        registry.rename(record["id"], "")
        assert registry.get(record["id"])["name"] == ""

    def test_rename_missing_is_noop(self, registry) -> None:
        registry.rename("prebuilt-nope", "x")
        assert registry.records == []


class TestMembership:

    def test_mark_is_idempotent(self, registry) -> None:
        registry.mark_linked("x")
        once = registry.linked_instance_ids
        registry.mark_linked("x")
        assert registry.linked_instance_ids == once == ["x"]

    def test_unmark_is_idempotent(self, registry) -> None:
        registry.mark_linked("x")
        registry.unmark_linked("x")
        registry.unmark_linked("x")
        assert registry.linked_instance_ids == []
        assert not registry.is_linked("x")

    def test_membership_independent_of_records(self, registry, card) -> None:
        record = registry.add("Card", card)
        registry.unmark_linked("n1")
        assert registry.get(record["id"]) is not None
        registry.mark_linked("other")
        assert registry.is_linked("other")

    @pytest.mark.parametrize("bad", [None, 1, ("a",), object()])
    def test_non_string_id_rejected_before_change(self, registry, storage, bad) -> None:
        registry.mark_linked("x")
        with pytest.raises(TypeError):
            registry.mark_linked(bad)
        with pytest.raises(TypeError):
            registry.unmark_linked(bad)
        assert registry.linked_instance_ids == ["x"]
        assert storage.load(DEFAULT_NAMESPACE)["prebuiltInstanceIds"] == ["x"]


class TestInstantiate:

    def test_instantiate_links_new_root(self, registry, card) -> None:
        record = registry.add("Card", card)
        result = registry.instantiate(record["id"])
        new_id = result["instance"]["id"]
        assert new_id != "n1"
        assert registry.is_linked(new_id)
        assert result["styleIdMapping"] == {"s1": "s1", "s2": "s2"}

    def test_instantiate_missing(self, registry) -> None:
        assert registry.instantiate("prebuilt-nope") is None


class TestInstanceLinks:

    def test_instantiate_records_link(self, registry, card) -> None:
        record = registry.add("Card", card)
        new_id = registry.instantiate(record["id"])["instance"]["id"]
        assert registry.instance_link(new_id) == {
            "instanceId": new_id,
            "prebuiltId": record["id"],
            "styleIdMapping": {"s1": "s1", "s2": "s2"},
        }
        assert [l["instanceId"] for l in registry.linked_instances(record["id"])] == [new_id]

    def test_link_and_relink(self, registry, card) -> None:
        a = registry.add("A", card)
        b = registry.add("B", card)
        assert registry.link_instance("i1", a["id"], {"s1": "t1"})
        assert registry.link_instance("i1", b["id"])
        assert registry.instance_link("i1")["prebuiltId"] == b["id"]
        assert registry.linked_instances(a["id"]) == []
        assert registry.is_linked("i1")

    def test_link_to_missing_prebuilt(self, registry) -> None:
        assert registry.link_instance("i1", "prebuilt-nope") is False
        assert registry.instance_link("i1") is None
        assert not registry.is_linked("i1")

    def test_unlink_instance(self, registry, card) -> None:
        record = registry.add("Card", card)
        registry.link_instance("i1", record["id"])
        registry.unlink_instance("i1")
        registry.unlink_instance("i1")
        assert registry.instance_link("i1") is None
        assert not registry.is_linked("i1")

    def test_remove_prebuilt_drops_its_links(self, registry, card) -> None:
        record = registry.add("Card", card)
        new_id = registry.instantiate(record["id"])["instance"]["id"]
        registry.remove(record["id"])
        assert registry.instance_link(new_id) is None
        assert registry.linked_instance_ids == []

    def test_returned_link_is_a_copy(self, registry, card) -> None:
        record = registry.add("Card", card)
        registry.link_instance("i1", record["id"], {"s1": "t1"})
        registry.instance_link("i1")["styleIdMapping"]["s1"] = "zz"
        assert registry.instance_link("i1")["styleIdMapping"] == {"s1": "t1"}

    def test_links_survive_reload(self, style_store, storage, card) -> None:
        reg = PrebuiltRegistry.load(style_store, storage)
        record = reg.add("Card", card)
        new_id = reg.instantiate(record["id"])["instance"]["id"]

        again = PrebuiltRegistry.load(style_store, storage)
        assert again.instance_link(new_id) == reg.instance_link(new_id)
        assert again.is_linked(new_id)


class TestPersistence:

    def test_rehydrate_restores_both_collections(self, style_store, storage, card) -> None:
        reg = PrebuiltRegistry.load(style_store, storage)
        reg.add("Card", card)
        reg.mark_linked("manual")
        snapshot = json.loads(json.dumps(reg.snapshot()))

        again = PrebuiltRegistry.load(style_store, storage)
        assert again.snapshot() == snapshot
        assert again.linked_instance_ids == ["n1", "manual"]

    def test_persisted_shape(self, registry, storage, card) -> None:
        registry.add("Card", card)
        data = storage.load(DEFAULT_NAMESPACE)
        assert set(data) == {"prebuiltComponents", "prebuiltInstanceIds", "instanceLinks"}
        assert data["prebuiltInstanceIds"] == ["n1"]

    def test_load_drops_duplicate_links(self, style_store, storage) -> None:
        storage.save(DEFAULT_NAMESPACE, {"prebuiltComponents": [], "prebuiltInstanceIds": ["a", "b", "a"]})
        reg = PrebuiltRegistry.load(style_store, storage)
        assert reg.linked_instance_ids == ["a", "b"]

    def test_json_file_round_trip(self, style_store, card, tmp_path) -> None:
        reg = PrebuiltRegistry.load(style_store, JsonFileStorage(tmp_path))
        record = reg.add("Card", card)
        assert (tmp_path / f"{DEFAULT_NAMESPACE}.json").exists()

        again = PrebuiltRegistry.load(style_store, JsonFileStorage(tmp_path))
        assert again.records == [record]
        assert again.is_linked("n1")

    def test_storage_failure_keeps_state_and_retries(self, style_store, card) -> None:
        storage = FailingStorage()
        reg = PrebuiltRegistry(style_store, storage)
        record = reg.add("Card", card)
        assert reg.pending_write is True
        assert reg.get(record["id"]) is not None

        storage.broken = False
        reg.mark_linked("other")
        assert reg.pending_write is False
        assert storage.load(DEFAULT_NAMESPACE)["prebuiltInstanceIds"] == ["n1", "other"]

    def test_unreadable_file_loads_empty(self, style_store, tmp_path) -> None:
        (tmp_path / f"{DEFAULT_NAMESPACE}.json").write_text("{not json", encoding="utf-8")
        reg = PrebuiltRegistry.load(style_store, JsonFileStorage(tmp_path))
        assert reg.records == []
        assert reg.linked_instance_ids == []
