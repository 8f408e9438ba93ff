# services/registry.py
import logging
from typing import Dict, Any, List, Optional

from .capture import capture_prebuilt, clone_structure, instantiate_prebuilt, now_ms

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "prebuilt-components-storage"


def _require_id(instance_id: Any) -> str:
    # vor jeder Mutation prüfen, sonst scheitert erst das Serialisieren
    if not isinstance(instance_id, str):
        raise TypeError(f"instance id must be a string, got {type(instance_id).__name__}")
    return instance_id


class PrebuiltRegistry:
    """
    Prebuilt-Datensätze + Menge der "verlinkten" Instanz-IDs (nur fürs UI-Highlight)
    + Link-Einträge {instanceId, prebuiltId, styleIdMapping} für instanziierte Prebuilts.

    Jede Mutation schreibt danach synchron in den Storage (write-through).
    Schlägt das Schreiben fehl, bleibt der Zustand im Speicher, pending_write
    wird gesetzt und beim nächsten Schreibversuch nachgeholt.

    Nach außen gehen nur Kopien; geändert wird ausschließlich über die Methoden.
    """

    def __init__(self, style_store, storage, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.style_store = style_store
        self.storage = storage
        self.namespace = namespace
        self._records: List[Dict[str, Any]] = []
        self._linked: List[str] = []
        self._instance_links: List[Dict[str, Any]] = []
        self._last_created_at = 0
        self.pending_write = False

    @classmethod
    def load(cls, style_store, storage, namespace: str = DEFAULT_NAMESPACE) -> "PrebuiltRegistry":
        reg = cls(style_store, storage, namespace)
        data = storage.load(namespace) or {}
        reg._records = list(data.get("prebuiltComponents") or [])
        # Set-Semantik auch für ältere Dateien mit doppelten Einträgen
        reg._linked = list(dict.fromkeys(data.get("prebuiltInstanceIds") or []))
        reg._instance_links = list(data.get("instanceLinks") or [])
        reg._last_created_at = max((r.get("createdAt", 0) for r in reg._records), default=0)
        logger.info("Loaded %d prebuilt components, %d linked instances from '%s'",
                    len(reg._records), len(reg._linked), namespace)
        return reg

    # ---------- Persistenz ----------
    def snapshot(self) -> Dict[str, Any]:
        return {
            "prebuiltComponents": self._records,
            "prebuiltInstanceIds": self._linked,
            "instanceLinks": self._instance_links,
        }

    def flush(self) -> bool:
        try:
            self.storage.save(self.namespace, self.snapshot())
        except OSError as e:
            self.pending_write = True
            logger.warning("Persisting '%s' failed, keeping state in memory: %s", self.namespace, e)
            return False
        if self.pending_write:
            logger.info("Deferred write of '%s' succeeded", self.namespace)
        self.pending_write = False
        return True

    # ---------- Lesen ----------
    @property
    def records(self) -> List[Dict[str, Any]]:
        return [clone_structure(r) for r in self._records]

    @property
    def linked_instance_ids(self) -> List[str]:
        return list(self._linked)

    def _find(self, record_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in self._records if r["id"] == record_id), None)

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._find(record_id)
        return clone_structure(record) if record is not None else None

    def is_linked(self, instance_id: str) -> bool:
        return instance_id in self._linked

    # ---------- Prebuilts ----------
    def _next_created_at(self) -> int:
        # nie kleiner als der letzte Stempel (Uhr kann zurückspringen)
        self._last_created_at = max(now_ms(), self._last_created_at)
        return self._last_created_at

    def _unlink_origin_if_unused(self, origin: str) -> None:
        # nur entlinken, wenn kein anderer Datensatz dieselbe Instanz referenziert
        if not any(r["instance"].get("id") == origin for r in self._records):
            self._unlink(origin)

    def add(self, name: str, instance: Dict[str, Any]) -> Dict[str, Any]:
        record = capture_prebuilt(name, instance, self.style_store,
                                  created_at=self._next_created_at())
        self._records.append(record)
        self._link(record["instance"]["id"])
        logger.info("Captured prebuilt %s '%s' from instance %s (%d style sources)",
                    record["id"], name, record["instance"]["id"], len(record["styles"]))
        self.flush()
        return clone_structure(record)

    def update(self, record_id: str, instance: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Instanz + Styles neu erfassen; id, name und createdAt bleiben, updatedAt wird gesetzt."""
        record = self._find(record_id)
        if record is None:
            return None
        fresh = capture_prebuilt(record["name"], instance, self.style_store,
                                 record_id=record_id, created_at=record["createdAt"])
        fresh["updatedAt"] = max(now_ms(), record["createdAt"])
        old_origin = record["instance"].get("id")
        self._records = [fresh if r["id"] == record_id else r for r in self._records]
        new_origin = fresh["instance"]["id"]
        if new_origin != old_origin:
            self._unlink_origin_if_unused(old_origin)
        self._link(new_origin)
        logger.info("Updated prebuilt %s from instance %s", record_id, new_origin)
        self.flush()
        return clone_structure(fresh)

    def remove(self, record_id: str) -> None:
        record = self._find(record_id)
        if record is None:
            return
        self._records = [r for r in self._records if r["id"] != record_id]
        self._unlink_origin_if_unused(record["instance"].get("id"))
        # Instanzen, die aus diesem Prebuilt erzeugt wurden, verlieren ihren Link
        for link in [l for l in self._instance_links if l["prebuiltId"] == record_id]:
            self._instance_links.remove(link)
            self._unlink(link["instanceId"])
        logger.info("Removed prebuilt %s", record_id)
        self.flush()

    def rename(self, record_id: str, new_name: str) -> None:
        record = self._find(record_id)
        if record is None:
            return
        record["name"] = new_name
        self.flush()

    def instantiate(self, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._find(record_id)
        if record is None:
            return None
        instance, mapping = instantiate_prebuilt(record, self.style_store)
        self._set_instance_link(instance["id"], record_id, mapping)
        logger.info("Instantiated prebuilt %s as %s", record_id, instance["id"])
        self.flush()
        return {"instance": instance, "styleIdMapping": dict(mapping)}

    # ---------- Instanz-Links ----------
    def _set_instance_link(self, instance_id: str, record_id: str, mapping: Dict[str, str]) -> None:
        # höchstens ein Link pro Instanz
        self._instance_links = [l for l in self._instance_links if l["instanceId"] != instance_id]
        self._instance_links.append({
            "instanceId": instance_id,
            "prebuiltId": record_id,
            "styleIdMapping": dict(mapping),
        })
        self._link(instance_id)

    def link_instance(self, instance_id: str, record_id: str,
                      style_id_mapping: Optional[Dict[str, str]] = None) -> bool:
        _require_id(instance_id)
        if self._find(record_id) is None:
            return False
        self._set_instance_link(instance_id, record_id, clone_structure(style_id_mapping or {}))
        self.flush()
        return True

    def unlink_instance(self, instance_id: str) -> None:
        before = len(self._instance_links)
        self._instance_links = [l for l in self._instance_links if l["instanceId"] != instance_id]
        if len(self._instance_links) == before:
            return
        self._unlink_origin_if_unused(instance_id)
        self.flush()

    def instance_link(self, instance_id: str) -> Optional[Dict[str, Any]]:
        link = next((l for l in self._instance_links if l["instanceId"] == instance_id), None)
        return clone_structure(link) if link is not None else None

    def linked_instances(self, record_id: str) -> List[Dict[str, Any]]:
        return [clone_structure(l) for l in self._instance_links if l["prebuiltId"] == record_id]

    # ---------- Membership ----------
    def _link(self, instance_id: str) -> None:
        if instance_id not in self._linked:
            self._linked.append(instance_id)

    def _unlink(self, instance_id: str) -> None:
        if instance_id in self._linked:
            self._linked.remove(instance_id)

    def mark_linked(self, instance_id: str) -> None:
        self._link(_require_id(instance_id))
        self.flush()

    def unmark_linked(self, instance_id: str) -> None:
        self._unlink(_require_id(instance_id))
        self.flush()
