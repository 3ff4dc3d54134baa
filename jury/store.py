"""Case file history: every completed analysis, persisted as one keyed record.

The whole history is serialized as a JSON list under ``HISTORY_KEY``.  Each
operation writes the new snapshot first and only then updates memory, so a
failed write leaves both the stored and the in-memory history as they were.

Capacity pressure
-----------------
Image payloads are the only sacrificial data.  When a full snapshot does not
fit, ``append`` retries once with the new record's image removed; if that
still does not fit it raises ``StorageFailed``.

Stored record versions
----------------------
``version`` is absent on records written before names existed (version 0).
``upgrade_record`` walks a record through ``_UPGRADES`` up to
``CASE_FILE_VERSION``; upgraded histories are written back after loading.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from jury.db import RecordStorage
from jury.errors import NotFound, StorageFailed, StorageQuotaExceeded
from jury.models import CASE_FILE_VERSION, AnalysisResult, CaseFile, ImageData
from jury.utils import now_ms

log = logging.getLogger(__name__)

HISTORY_KEY = "THE_JURY_CASE_FILES"
NAME_EXCERPT_LIMIT = 15


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def pitch_excerpt_name(pitch_text: str) -> str:
    """First 15 characters of the pitch, trimmed, with ``...`` if it was longer."""
    head = pitch_text[:NAME_EXCERPT_LIMIT].strip()
    if not head:
        return ""
    return head + ("..." if len(pitch_text) > NAME_EXCERPT_LIMIT else "")


def derive_case_name(pitch_text: str, result: AnalysisResult, created_at: int) -> str:
    """Auto-name a new case: model title, else pitch excerpt, else dated placeholder."""
    title = result.case_title.strip()
    if title:
        return title
    name = pitch_excerpt_name(pitch_text)
    if name:
        return name
    date_str = datetime.fromtimestamp(created_at / 1000).strftime("%Y-%m-%d")
    return f"Unidentified Case [{date_str}]"


# ---------------------------------------------------------------------------
# Record upgrades
# ---------------------------------------------------------------------------


def _upgrade_v0(record: dict[str, Any]) -> dict[str, Any]:
    name = str(record.get("name") or "").strip()
    if not name:
        name = pitch_excerpt_name(str(record.get("pitchText") or ""))
    if not name:
        response = record.get("response")
        if isinstance(response, dict):
            name = str(response.get("case_title") or "").strip()
    if not name:
        name = f"Evidence #{str(record.get('id', ''))[:4]}"
    return {**record, "name": name, "version": 1}


_UPGRADES: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _upgrade_v0,
}


def upgrade_record(record: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Bring a stored record up to ``CASE_FILE_VERSION``.

    Returns ``(record, changed)``.  Raises ``ValueError`` for a version below
    ``CASE_FILE_VERSION`` that has no upgrade step.
    """
    changed = False
    version = record.get("version", 0)
    while isinstance(version, int) and version < CASE_FILE_VERSION:
        if version not in _UPGRADES:
            raise ValueError(f"No upgrade from record version {version}")
        record = _UPGRADES[version](record)
        version = record["version"]
        changed = True
    return record, changed


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CaseFileStore:
    """Chronological history of case files backed by ``RecordStorage``."""

    def __init__(self, storage: RecordStorage, clock: Callable[[], int] = now_ms):
        self._storage = storage
        self._clock = clock
        self._lock = threading.Lock()
        self._cases: list[CaseFile] = []
        self._last_id = 0

    # -- persistence --------------------------------------------------------

    def _persist(self, cases: list[CaseFile]) -> None:
        payload = json.dumps([c.to_record() for c in cases], ensure_ascii=False)
        self._storage.write(HISTORY_KEY, payload)

    def _persist_or_fail(self, cases: list[CaseFile]) -> None:
        try:
            self._persist(cases)
        except (StorageQuotaExceeded, SQLAlchemyError) as exc:
            raise StorageFailed(f"Could not save case history: {exc}") from exc

    def load(self) -> list[CaseFile]:
        """Load persisted history; corrupt data yields an empty history."""
        try:
            raw = self._storage.read(HISTORY_KEY)
        except SQLAlchemyError as exc:
            log.error("Failed to read case history: %s", exc)
            raw = None

        records: Any = []
        if raw:
            try:
                records = json.loads(raw)
            except (ValueError, RecursionError) as exc:
                log.error("Failed to parse case history, starting empty: %s", exc)
                records = []
        if not isinstance(records, list):
            log.error("Stored case history is not a list, starting empty")
            records = []

        cases: list[CaseFile] = []
        upgraded = False
        for record in records:
            if not isinstance(record, dict):
                log.warning("Skipping non-object case record: %r", record)
                continue
            try:
                record, changed = upgrade_record(record)
            except ValueError as exc:
                log.warning("Skipping case record %s: %s", record.get("id"), exc)
                continue
            try:
                cases.append(CaseFile.model_validate(record))
            except ValidationError as exc:
                log.warning("Skipping invalid case record %s: %s", record.get("id"), exc)
                continue
            upgraded = upgraded or changed

        with self._lock:
            self._cases = cases
            self._last_id = max((_id_number(c.id) for c in cases), default=0)
            if upgraded:
                try:
                    self._persist(cases)
                except (StorageQuotaExceeded, SQLAlchemyError) as exc:
                    log.warning("Could not write back upgraded case history: %s", exc)
            return list(self._cases)

    # -- operations ---------------------------------------------------------

    def _next_id(self) -> tuple[str, int]:
        created_at = self._clock()
        candidate = max(created_at, self._last_id + 1)
        return str(candidate), created_at

    def append(self, pitch_text: str, image: ImageData | None, result: AnalysisResult) -> CaseFile:
        """Add a case at the tail and persist, dropping its image if space runs out."""
        with self._lock:
            case_id, created_at = self._next_id()
            case = CaseFile(
                id=case_id,
                name=derive_case_name(pitch_text, result, created_at),
                created_at=created_at,
                pitch_text=pitch_text,
                image_base64=image.data if image else None,
                image_mime_type=image.mime_type if image else None,
                result=result,
            )
            try:
                self._persist([*self._cases, case])
            except StorageQuotaExceeded as exc:
                if case.image is None:
                    raise StorageFailed(f"Storage full, could not save case file: {exc}") from exc
                log.warning("Storage full, retrying case %s without its image: %s", case.id, exc)
                case = case.without_image()
                self._persist_or_fail([*self._cases, case])
            except SQLAlchemyError as exc:
                raise StorageFailed(f"Could not save case file: {exc}") from exc

            self._cases.append(case)
            self._last_id = int(case_id)
            return case

    def list_cases(self) -> list[CaseFile]:
        with self._lock:
            return list(self._cases)

    def get(self, case_id: str) -> CaseFile:
        with self._lock:
            return self._cases[self._index(case_id)]

    def rename(self, case_id: str, new_name: str) -> CaseFile:
        """Rename a case; a blank name leaves the record untouched."""
        with self._lock:
            idx = self._index(case_id)
            name = new_name.strip()
            if not name:
                return self._cases[idx]
            updated = self._cases[idx].model_copy(update={"name": name})
            cases = [*self._cases[:idx], updated, *self._cases[idx + 1:]]
            self._persist_or_fail(cases)
            self._cases = cases
            return updated

    def clear(self) -> None:
        with self._lock:
            self._persist_or_fail([])
            self._cases = []

    def _index(self, case_id: str) -> int:
        for idx, case in enumerate(self._cases):
            if case.id == case_id:
                return idx
        raise NotFound(f"Case file {case_id} not found")


def _id_number(case_id: str) -> int:
    try:
        return int(case_id)
    except ValueError:
        return 0
