# services/capture.py
"""
Prebuilt-Capture: macht aus einer Live-Instanz + allen referenzierten Styles
einen eigenständigen Datensatz {id, name, instance, styles, createdAt}.

Keine I/O hier drin. Anhängen an die Registry und Persistenz erledigt
services.registry.
"""
import math
import time
from typing import Any, Dict, List, Tuple
from uuid import uuid4

from .collector import unique_style_source_ids, collect_instance_ids
from .styles import key_prefix

_SCALARS = (str, bool, int, type(None))


class UnsupportedValueError(ValueError):
    """Wert lässt sich nicht verlustfrei als JSON-Struktur kopieren."""

    def __init__(self, path: str, value: Any) -> None:
        self.path = path
        super().__init__(f"Unsupported value at {path}: {type(value).__name__} {value!r}")


def new_prebuilt_id() -> str:
    return f"prebuilt-{uuid4().hex}"


def new_instance_id() -> str:
    return f"instance-{uuid4().hex}"


def now_ms() -> int:
    return int(time.time() * 1000)


def _check_scalar(value: Any, path: str) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UnsupportedValueError(path, value)
        return value
    raise UnsupportedValueError(path, value)


def clone_structure(value: Any, root: str = "$") -> Any:
    """
    Strukturelle Tiefenkopie für JSON-förmige Werte (dict/list/tuple/Skalare).
    Iterativ, damit tiefe Instanzbäume kein Rekursionsproblem werden.
    NaN/Inf, Zyklen und alle anderen Typen -> UnsupportedValueError statt stiller Umwandlung.
    Mehrfach referenzierte (nicht zyklische) Container werden einfach doppelt kopiert.
    """
    if not isinstance(value, (dict, list, tuple)):
        return _check_scalar(value, root)

    out = {} if isinstance(value, dict) else []
    # ids der Container auf dem aktuellen Pfad
    on_path = set()
    # (Quelle, Ziel, Pfad); Ziel None = Container verlassen
    stack: List[Tuple[Any, Any, str]] = [(value, out, root)]
    while stack:
        src, dst, path = stack.pop()
        if dst is None:
            on_path.discard(id(src))
            continue
        on_path.add(id(src))
        stack.append((src, None, path))
        items = src.items() if isinstance(src, dict) else enumerate(src)
        for k, v in items:
            if isinstance(src, dict) and not isinstance(k, str):
                raise UnsupportedValueError(f"{path}.<key>", k)
            sub = f"{path}.{k}" if isinstance(src, dict) else f"{path}[{k}]"
            if isinstance(v, (dict, list, tuple)):
                if id(v) in on_path:
                    raise UnsupportedValueError(sub, "<cycle>")
                child = {} if isinstance(v, dict) else []
                stack.append((v, child, sub))
            else:
                child = _check_scalar(v, sub)
            if isinstance(dst, dict):
                dst[k] = child
            else:
                dst.append(child)
    return out


def _ensure_unique_ids(instance: Dict[str, Any]) -> None:
    seen = set()
    for _id in collect_instance_ids(instance):
        if _id in seen:
            raise ValueError(f"Duplicate instance id '{_id}' in captured tree")
        seen.add(_id)


def capture_styles(instance: Dict[str, Any], style_store) -> Dict[str, Dict[str, Any]]:
    """
    sourceId -> {source, styleValues}; styleValues = alle Einträge der flachen
    Tabelle mit Präfix "<sourceId>:" (Keys unverändert).
    Unbekannte Sources werden still übersprungen.
    """
    entries = style_store.get_all_style_entries()
    styles: Dict[str, Dict[str, Any]] = {}
    for sid in unique_style_source_ids(instance):
        source = style_store.get_style_source(sid)
        if source is None:
            continue
        prefix = key_prefix(sid)
        values = {k: v for k, v in entries.items() if k.startswith(prefix)}
        styles[sid] = {
            "source": clone_structure(source, f"styles.{sid}.source"),
            "styleValues": clone_structure(values, f"styles.{sid}.styleValues"),
        }
    return styles


def capture_prebuilt(
    name: str,
    instance: Dict[str, Any],
    style_store,
    *,
    record_id: str | None = None,
    created_at: int | None = None,
) -> Dict[str, Any]:
    """Name wird so übernommen wie übergeben (auch leer)."""
    if not instance or not isinstance(instance.get("id"), str):
        raise ValueError("instance with a string id is required")
    # erst kopieren: bricht bei Zyklen ab, bevor ein Baumlauf hängen kann
    copied = clone_structure(instance, "instance")
    _ensure_unique_ids(copied)
    styles = capture_styles(copied, style_store)
    return {
        "id": record_id or new_prebuilt_id(),
        "name": name,
        "instance": copied,
        "styles": styles,
        "createdAt": created_at if created_at is not None else now_ms(),
    }


def instantiate_prebuilt(record: Dict[str, Any], style_store) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """
    Gegenrichtung zum Capture: Styles des Prebuilts im Live-Store anlegen
    (gleicher Name + Typ -> vorhandene Source wiederverwenden), Einträge auf die
    neue ID umschlüsseln, Baum mit frischen IDs und umgemappten styleSourceIds kopieren.
    Rückgabe: (neue Instanz, {alteStyleId: neueStyleId})
    """
    mapping: Dict[str, str] = {}
    for old_id, data in (record.get("styles") or {}).items():
        source = data.get("source") or {}
        existing = style_store.find_style_source(source.get("name"), source.get("type"))
        if existing is not None:
            new_id = existing["id"]
        else:
            new_id = style_store.create_style_source(source.get("type", "local"), source.get("name"))
        old_prefix = key_prefix(old_id)
        for key, value in (data.get("styleValues") or {}).items():
            if key.startswith(old_prefix):
                style_store.set_raw_entry(key_prefix(new_id) + key[len(old_prefix):], value)
        mapping[old_id] = new_id

    root = clone_structure(record["instance"], "instance")
    stack = [root]
    while stack:
        cur = stack.pop()
        cur["id"] = new_instance_id()
        cur["styleSourceIds"] = [mapping.get(s, s) for s in (cur.get("styleSourceIds") or [])]
        stack.extend(cur.get("children") or [])
    return root, mapping
