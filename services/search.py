# services/search.py
import re
import unicodedata
from typing import List, Dict, Any


def _strip_accents(text: str) -> str:
    nfkd = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in nfkd if not unicodedata.combining(c))


def normalize(s: str) -> str:
    s = _strip_accents(str(s))
    s = s.lower()
    s = s.replace("-", " ").replace("_", " ").replace("/", " ")
    s = re.sub(r"\s+", " ", s).strip()
    return s


def to_words(q: str) -> List[str]:
    return [w for w in normalize(q).split(" ") if w]


def search_prebuilts(
    records: List[Dict[str, Any]],
    query: str | None,
    limit: int = 100
) -> List[Dict[str, Any]]:
    """
    Alle Wörter der Suche müssen im (normalisierten) Namen vorkommen.
    Leere Suche = alles. Neueste zuerst.
    """
    q_words = to_words(query or "")
    hits = []
    for r in records:
        name = normalize(r.get("name", ""))
        if all(w in name for w in q_words):
            hits.append(r)
    hits.sort(key=lambda r: r.get("createdAt", 0), reverse=True)
    return hits[: max(0, limit)]
