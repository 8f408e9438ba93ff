# services/collector.py
from typing import Any, Dict, List


def _children(node: Dict[str, Any]) -> List[Dict[str, Any]]:
    return node.get("children") or []


def collect_style_source_ids(instance: Dict[str, Any]) -> List[str]:
    """
    Alle styleSourceIds des Teilbaums (inkl. Wurzel), Duplikate bleiben drin.
    Reihenfolge = Pre-Order: erst die IDs des Knotens, dann die Kinder in ihrer Reihenfolge.
    Expliziter Stack statt Rekursion, damit tiefe Bäume nicht am Rekursionslimit scheitern.
    """
    out: List[str] = []
    stack = [instance]
    while stack:
        cur = stack.pop()
        out.extend(cur.get("styleSourceIds") or [])
        # rückwärts pushen -> erstes Kind liegt oben
        stack.extend(reversed(_children(cur)))
    return out


def unique_style_source_ids(instance: Dict[str, Any]) -> List[str]:
    # dict behält die Einfügereihenfolge -> first-seen Dedup
    return list(dict.fromkeys(collect_style_source_ids(instance)))


def collect_instance_ids(instance: Dict[str, Any]) -> List[str]:
    out: List[str] = []
    stack = [instance]
    while stack:
        cur = stack.pop()
        out.append(cur.get("id"))
        stack.extend(reversed(_children(cur)))
    return out


def instance_depth(instance: Dict[str, Any]) -> int:
    # tolerant gegenüber ungeprüften Request-Daten: nur dict-Kinder zählen
    deepest = 0
    stack = [(instance, 1)]
    while stack:
        cur, depth = stack.pop()
        deepest = max(deepest, depth)
        children = cur.get("children")
        if isinstance(children, list):
            stack.extend((ch, depth + 1) for ch in children if isinstance(ch, dict))
    return deepest
