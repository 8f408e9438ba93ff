# services/styles.py
import logging
from typing import Dict, Any, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)

STYLE_SOURCE_TYPES = ("local", "token", "preset")
KEY_SEPARATOR = ":"

DEFAULT_BREAKPOINTS: List[Dict[str, Any]] = [
    {"id": "base", "label": "Base"},
    {"id": "tablet", "label": "Tablet", "maxWidth": 991},
    {"id": "mobile", "label": "Mobile", "maxWidth": 767},
]


def style_key(style_source_id: str, property: str, breakpoint_id: str = "base") -> str:
    # flacher Compound-Key: "<sourceId>:<breakpoint>:<property>"
    return f"{style_source_id}:{breakpoint_id}:{property}"


def key_prefix(style_source_id: str) -> str:
    return f"{style_source_id}:"


def check_source_id(source_id: str) -> str:
    # ":" ist der Trenner im Compound-Key, "a:b" würde sonst unter Präfix "a:" landen
    if not isinstance(source_id, str) or not source_id or KEY_SEPARATOR in source_id:
        raise ValueError(f"Invalid style source id {source_id!r}: must be non-empty and must not contain '{KEY_SEPARATOR}'")
    return source_id


class StyleStore:
    """
    Prozessweite Style-Tabelle.
    - style_sources: sourceId -> Descriptor {id, type, name, metadata?}
    - styles: flache Tabelle "<sourceId>:<...>:<property>" -> Wert
    Der Capture-Teil liest nur über get_style_source / get_all_style_entries.
    """

    def __init__(self, breakpoints: Optional[List[Dict[str, Any]]] = None) -> None:
        self.style_sources: Dict[str, Dict[str, Any]] = {}
        self.styles: Dict[str, str] = {}
        self.breakpoints = [dict(bp) for bp in (breakpoints or DEFAULT_BREAKPOINTS)]
        self.current_breakpoint_id = self.breakpoints[0]["id"]

    # ---------- gelesen vom Capture ----------
    def get_style_source(self, source_id: str) -> Optional[Dict[str, Any]]:
        return self.style_sources.get(source_id)

    def get_all_style_entries(self) -> Dict[str, str]:
        return self.styles

    # ---------- Pflege ----------
    def create_style_source(self, type: str = "local", name: str | None = None,
                            source_id: str | None = None) -> str:
        if type not in STYLE_SOURCE_TYPES:
            raise ValueError(f"Unknown style source type '{type}'")
        sid = source_id or f"{type}-{uuid4().hex[:12]}"
        check_source_id(sid)
        self.style_sources[sid] = {"id": sid, "type": type, "name": name or f"{type}-class"}
        logger.debug("Created style source %s (%s)", sid, type)
        return sid

    def rename_style_source(self, source_id: str, new_name: str) -> bool:
        src = self.style_sources.get(source_id)
        if src is None:
            return False
        src["name"] = new_name
        return True

    def delete_style_source(self, source_id: str) -> bool:
        if self.style_sources.pop(source_id, None) is None:
            return False
        prefix = key_prefix(source_id)
        # zugehörige Einträge mit entfernen
        self.styles = {k: v for k, v in self.styles.items() if not k.startswith(prefix)}
        logger.debug("Deleted style source %s", source_id)
        return True

    def find_style_source(self, name: str, type: str) -> Optional[Dict[str, Any]]:
        for src in self.style_sources.values():
            if src.get("name") == name and src.get("type") == type:
                return src
        return None

    def set_style(self, source_id: str, property: str, value: str,
                  breakpoint_id: str | None = None) -> str:
        key = style_key(source_id, property, breakpoint_id or self.current_breakpoint_id)
        self.styles[key] = value
        return key

    def set_raw_entry(self, key: str, value: str) -> None:
        # fertiger Compound-Key (z.B. beim Instanziieren eines Prebuilts)
        self.styles[key] = value

    def entries_for(self, source_id: str) -> Dict[str, str]:
        prefix = key_prefix(source_id)
        return {k: v for k, v in self.styles.items() if k.startswith(prefix)}

    def set_current_breakpoint(self, breakpoint_id: str) -> None:
        if not any(bp["id"] == breakpoint_id for bp in self.breakpoints):
            raise ValueError(f"Unknown breakpoint '{breakpoint_id}'")
        self.current_breakpoint_id = breakpoint_id

    def dump(self) -> Dict[str, Any]:
        return {
            "styleSources": self.style_sources,
            "styles": self.styles,
            "breakpoints": self.breakpoints,
        }
