# services/store.py
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """Key-Value-Speicher pro Namespace, lebt nur so lange wie der Prozess (Tests, memory-Backend)."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def load(self, namespace: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(namespace)
        if raw is None:
            return None
        return json.loads(raw)

    def save(self, namespace: str, data: Dict[str, Any]) -> None:
        # als JSON ablegen, damit sich das Backend wie die Datei-Variante verhält
        self._data[namespace] = json.dumps(data)

    def has(self, namespace: str) -> bool:
        return namespace in self._data


class JsonFileStorage:
    """
    Ein Namespace = eine Datei <directory>/<namespace>.json.
    Schreiben läuft über Temp-Datei + os.replace, damit nie eine halbe Datei liegen bleibt.
    """

    def __init__(self, directory: str | os.PathLike) -> None:
        self.directory = Path(directory)

    def _path(self, namespace: str) -> Path:
        return self.directory / f"{namespace}.json"

    def load(self, namespace: str) -> Optional[Dict[str, Any]]:
        path = self._path(namespace)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            # kaputte Datei -> wie leerer Zustand behandeln, Datei bleibt zur Analyse liegen
            logger.warning("Ignoring unreadable storage file %s", path)
            return None

    def save(self, namespace: str, data: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(namespace)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{namespace}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Saved namespace %s to %s", namespace, path)

    def has(self, namespace: str) -> bool:
        return self._path(namespace).exists()
