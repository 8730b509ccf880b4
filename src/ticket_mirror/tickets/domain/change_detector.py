"""
Change Detector
===============

Decides whether a freshly fetched ticket differs from what the local store
already holds, using content hashes rather than field-by-field comparison.

Two hashes are kept per ticket:
- content hash: SHA-256 of the canonical ticket document (sorted keys)
- SLA hash: SHA-256 of the SLA measurements sorted by their id, so the
  order ServiceNow returns them in never matters
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ticket_mirror.config import ChangeType, SyncSource
from ticket_mirror.tickets.domain.entities import (
    BOOKKEEPING_FIELDS,
    DERIVED_FIELDS,
    FieldChange,
    SLAMeasurement,
    SyncRecord,
    Ticket,
)

_MISSING = object()


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _digest(value: Any) -> str:
    return hashlib.sha256(_canonical_json(value).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of comparing an incoming ticket with the stored sync record."""

    should_write: bool
    sync_record: SyncRecord


class ChangeDetector:
    """
    Pure functions for change detection.

    Stateless: safe to share between concurrent syncs.
    """

    @staticmethod
    def content_hash(ticket: Ticket) -> str:
        return _digest(ticket.to_document())

    @staticmethod
    def sla_hash(measurements: Iterable[SLAMeasurement]) -> str:
        ordered = sorted(measurements, key=lambda m: m.id)
        return _digest([m.to_dict() for m in ordered])

    @staticmethod
    def reconcile(
        existing: Optional[SyncRecord],
        ticket: Ticket,
        measurements: List[SLAMeasurement],
        now: Optional[datetime] = None,
        source: str = SyncSource.REMOTE,
    ) -> ReconcileResult:
        """
        Compare ``ticket`` and its measurements with the stored sync record.

        Returns ``should_write=False`` with the existing record untouched when
        both hashes match. Otherwise returns a new record whose version is
        exactly one above the existing one (1 for a first sync).
        """
        content_hash = ChangeDetector.content_hash(ticket)
        sla_hash = ChangeDetector.sla_hash(measurements)

        if (
            existing is not None
            and existing.content_hash == content_hash
            and existing.sla_hash == sla_hash
        ):
            return ReconcileResult(should_write=False, sync_record=existing)

        return ReconcileResult(
            should_write=True,
            sync_record=SyncRecord(
                content_hash=content_hash,
                sla_hash=sla_hash,
                version=(existing.version if existing else 0) + 1,
                synced_at=now or datetime.now(timezone.utc),
                source=source,
            ),
        )

    @staticmethod
    def diff(
        previous: Optional[Dict[str, Any]],
        current: Optional[Dict[str, Any]],
    ) -> List[FieldChange]:
        """
        Field-level differences between two ticket documents.

        Bookkeeping and derived fields are skipped. A missing previous
        document reports every field as ``create``; a missing current one
        reports every field as ``delete``.
        """
        previous = previous or {}
        current = current or {}
        changes: List[FieldChange] = []

        for key in sorted(set(previous) | set(current)):
            if key.startswith("_") or key in BOOKKEEPING_FIELDS or key in DERIVED_FIELDS:
                continue

            old_value = previous.get(key, _MISSING)
            new_value = current.get(key, _MISSING)

            if old_value is _MISSING:
                change_type = ChangeType.CREATE
            elif new_value is _MISSING:
                change_type = ChangeType.DELETE
            elif _canonical_json(old_value) == _canonical_json(new_value):
                continue
            else:
                change_type = ChangeType.UPDATE

            changes.append(FieldChange(
                field=key,
                old_value=None if old_value is _MISSING else old_value,
                new_value=None if new_value is _MISSING else new_value,
                change_type=change_type,
            ))

        return changes
