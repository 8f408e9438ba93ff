# services/loader.py
import io
import logging
import pandas as pd

from .styles import STYLE_SOURCE_TYPES, check_source_id

logger = logging.getLogger(__name__)

REQUIRED_COLS = ["Source", "Property", "Value"]


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    cols = [str(c).strip() for c in df.columns]
    # Toleranz für Groß-/Kleinschreibung und Synonyme
    map_norm = {}
    for c in cols:
        c_low = c.lower()
        if c_low in ("source", "style", "class", "source_id", "sourceid"):
            map_norm[c] = "Source"
        elif c_low in ("property", "prop", "eigenschaft"):
            map_norm[c] = "Property"
        elif c_low in ("value", "wert"):
            map_norm[c] = "Value"
        elif c_low in ("breakpoint", "bp"):
            map_norm[c] = "Breakpoint"
        elif c_low in ("type", "typ"):
            map_norm[c] = "Type"
        elif c_low in ("name", "label", "classname"):
            map_norm[c] = "Name"
        else:
            map_norm[c] = c
    df.columns = cols
    return df.rename(columns=map_norm)


def _clean(v, default: str = "") -> str:
    if v is None:
        return default
    s = str(v).strip()
    return default if s == "" or s.lower() == "nan" else s


def load_style_table(file_bytes: bytes, filename: str) -> list[dict]:
    """
    Liest eine Style-Tabelle (CSV oder XLSX), eine Zeile = ein Style-Eintrag.
    Pflicht: Source, Property, Value. Optional: Breakpoint, Type, Name.
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        # Trennzeichen heuristisch (Komma/Semikolon)
        df = pd.read_csv(io.BytesIO(file_bytes), dtype=str)
        if len(df.columns) == 1 and ";" in str(df.columns[0]):
            df = pd.read_csv(io.BytesIO(file_bytes), sep=";", dtype=str)
    else:
        df = pd.read_excel(io.BytesIO(file_bytes), dtype=str)  # braucht openpyxl

    df = _normalize_columns(df)

    # Pflichtspalten prüfen
    for c in REQUIRED_COLS:
        if c not in df.columns:
            raise ValueError(f"Column '{c}' missing in style table.")

    rows = []
    for _, row in df.iterrows():
        source = _clean(row.get("Source"))
        prop = _clean(row.get("Property"))
        if not source or not prop:
            continue
        check_source_id(source)
        typ = _clean(row.get("Type"), "local")
        if typ not in STYLE_SOURCE_TYPES:
            raise ValueError(f"Unknown style source type '{typ}' for source '{source}'.")
        rows.append({
            "source": source,
            "property": prop,
            "value": _clean(row.get("Value")),
            "breakpoint": _clean(row.get("Breakpoint"), "base"),
            "type": typ,
            "name": _clean(row.get("Name"), source),
        })
    logger.info("Parsed %d style rows from %s", len(rows), filename)
    return rows


def apply_style_rows(rows: list[dict], style_store) -> int:
    """Unbekannte Sources anlegen (ID aus der Tabelle), dann Einträge setzen."""
    for r in rows:
        if style_store.get_style_source(r["source"]) is None:
            style_store.create_style_source(r["type"], r["name"], source_id=r["source"])
        style_store.set_style(r["source"], r["property"], r["value"], r["breakpoint"])
    return len(rows)
