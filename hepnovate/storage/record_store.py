"""Current diagnosis record slot on top of a pluggable key-value store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from threading import Lock

from pydantic import ValidationError

from hepnovate.config import settings
from hepnovate.models import DiagnosisResult

logger = logging.getLogger(__name__)

DIAGNOSIS_STORAGE_KEY = "currentDiagnosis"


class KeyValueStore(ABC):
    """String key-value persistence used for patient record slots."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileKeyValueStore(KeyValueStore):
    """All keys in one JSON object file, rewritten atomically on each change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.exception("Unreadable record store at %s; treating as empty.", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


def merge_rediagnosis(previous: DiagnosisResult | None, new: DiagnosisResult) -> DiagnosisResult:
    """Supersede ``previous`` wholesale, except that patient context the new
    call omitted (vitals, labs, lab date, history) carries over."""
    if previous is None:
        return new
    return new.model_copy(
        update={
            "vitals": new.vitals if new.vitals is not None else previous.vitals,
            "lab_results": (
                new.lab_results if new.lab_results is not None else previous.lab_results
            ),
            "lab_test_date": new.lab_test_date or previous.lab_test_date,
            "medical_history": (
                new.medical_history
                if new.medical_history is not None
                else previous.medical_history
            ),
        }
    )


class DiagnosisRecordStore:
    """Holds the single "current diagnosis" record."""

    def __init__(self, backend: KeyValueStore | None = None) -> None:
        self.backend = backend or InMemoryKeyValueStore()

    def get_current(self) -> DiagnosisResult | None:
        raw = self.backend.get(DIAGNOSIS_STORAGE_KEY)
        if not raw:
            return None
        try:
            return DiagnosisResult.model_validate_json(raw)
        except ValidationError:
            logger.exception("Stored diagnosis record is invalid; ignoring it.")
            return None

    def store_current(self, result: DiagnosisResult) -> DiagnosisResult:
        """Overwrite the slot, stamping the record if it has no timestamp."""
        if not result.timestamp:
            result = result.model_copy(
                update={"timestamp": datetime.now(timezone.utc).isoformat()}
            )
        self.backend.set(DIAGNOSIS_STORAGE_KEY, result.model_dump_json(by_alias=True))
        return result

    def supersede(self, result: DiagnosisResult) -> DiagnosisResult:
        return self.store_current(merge_rediagnosis(self.get_current(), result))

    def reset_keep_context(self) -> DiagnosisResult | None:
        """Drop diagnoses and scan data but keep symptoms and patient context."""
        current = self.get_current()
        if current is None:
            return None
        reset = DiagnosisResult(
            diagnoses=[],
            symptoms=current.symptoms,
            vitals=current.vitals,
            lab_results=current.lab_results,
            lab_test_date=current.lab_test_date,
            medical_history=current.medical_history,
        )
        return self.store_current(reset)

    def clear(self) -> None:
        self.backend.delete(DIAGNOSIS_STORAGE_KEY)


def build_record_store() -> DiagnosisRecordStore:
    if settings.record_store_path:
        logger.info("Diagnosis records persisted to %s", settings.record_store_path)
        return DiagnosisRecordStore(JsonFileKeyValueStore(settings.record_store_path))
    return DiagnosisRecordStore(InMemoryKeyValueStore())
