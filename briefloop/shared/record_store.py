import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from briefloop.shared.logging_utils import error as log_error, info as log_info
from briefloop.specs.common.errors import ExternalServiceError

SESSIONS = "sessions"
SCHEDULING_RESPONSES = "scheduling_responses"
BRIEFING_CONTEXTS = "briefing_contexts"
WORKFLOW_STEPS = "workflow_steps"
APPROVAL_WORKFLOWS = "approval_workflows"

RECORD_KINDS = (
    SESSIONS,
    SCHEDULING_RESPONSES,
    BRIEFING_CONTEXTS,
    WORKFLOW_STEPS,
    APPROVAL_WORKFLOWS,
)


def _matches(doc: Mapping[str, Any], expected: Mapping[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in expected.items())


class RecordStore(ABC):
    """Keyed document store with no cross-record transactions.

    ``replace_if`` is the optimistic guard: the write lands only when the
    stored document still matches ``expected`` (typically ``{"status": ...}``).
    Storage unavailability surfaces as ``ExternalServiceError``.
    """

    @abstractmethod
    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored document or None."""

    @abstractmethod
    def put(self, kind: str, doc: Dict[str, Any]) -> None:
        """Insert or overwrite ``doc`` under ``doc['id']``."""

    @abstractmethod
    def replace_if(self, kind: str, record_id: str, expected: Mapping[str, Any], doc: Dict[str, Any]) -> bool:
        """Overwrite only if the current document matches ``expected``."""

    @abstractmethod
    def query(self, kind: str, **equals: Any) -> List[Dict[str, Any]]:
        """Return every document whose fields equal the given values."""


class FileRecordStore(RecordStore):
    """One JSON file per record kind; used locally and in tests."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    def _path(self, kind: str) -> Path:
        return self._base_dir / f"{kind}.json"

    def _read_all(self, kind: str) -> Dict[str, dict]:
        path = self._path(kind)
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            log_error(None, "record_store:file_corrupt", kind=kind, error=str(exc))
            return {}
        except OSError as exc:
            raise ExternalServiceError("record_store", f"read failed for {kind}: {exc}") from exc

    def _write_all(self, kind: str, data: Dict[str, dict]) -> None:
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            tmp = self._path(kind).with_suffix(".tmp")
            tmp.write_text(json.dumps(data), encoding="utf-8")
            os.replace(tmp, self._path(kind))
        except OSError as exc:
            raise ExternalServiceError("record_store", f"write failed for {kind}: {exc}") from exc

    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self._read_all(kind).get(record_id)

    def put(self, kind: str, doc: Dict[str, Any]) -> None:
        data = self._read_all(kind)
        data[doc["id"]] = doc
        self._write_all(kind, data)

    def replace_if(self, kind: str, record_id: str, expected: Mapping[str, Any], doc: Dict[str, Any]) -> bool:
        data = self._read_all(kind)
        current = data.get(record_id)
        if current is None or not _matches(current, expected):
            return False
        data[record_id] = doc
        self._write_all(kind, data)
        return True

    def query(self, kind: str, **equals: Any) -> List[Dict[str, Any]]:
        return [doc for doc in self._read_all(kind).values() if _matches(doc, equals)]


def select_record_store(settings) -> RecordStore:
    backend = (settings.recordStoreBackend or "auto").lower()
    if backend == "file":
        return FileRecordStore(settings.runtimeStateDir)
    from briefloop.shared.cosmos_client import CosmosRecordStore, cosmos_configured

    if backend == "cosmos" or (backend == "auto" and cosmos_configured()):
        store = CosmosRecordStore.from_env()
        log_info(None, "record_store:selected", backend="cosmos")
        return store
    log_info(None, "record_store:selected", backend="file", path=str(settings.runtimeStateDir))
    return FileRecordStore(settings.runtimeStateDir)
