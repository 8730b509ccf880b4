"""
Record Normalizer
=================

Converts raw ServiceNow Table API records into canonical ``Ticket`` and
``SLAMeasurement`` objects. Pure functions, no I/O.

ServiceNow returns each field either as a plain string or, when queried
with ``sysparm_display_value=all``, as ``{"value": ..., "display_value": ...}``.
Both shapes are accepted. Timestamps are ``YYYY-MM-DD HH:MM:SS`` in UTC.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ticket_mirror.config import TicketTable, VALID_TABLES
from ticket_mirror.core.exceptions import InvalidTableException, ValidationException
from ticket_mirror.tickets.domain.entities import SLAMeasurement, Ticket

_SN_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S")


def field_value(raw: Dict[str, Any], name: str) -> Any:
    """Raw value of a field (the ``value`` part of reference fields)."""
    value = raw.get(name)
    if isinstance(value, dict):
        return value.get("value")
    return value


def display_value(raw: Dict[str, Any], name: str) -> Any:
    """Display value of a field, falling back to its raw value."""
    value = raw.get(name)
    if isinstance(value, dict):
        return value.get("display_value") or value.get("value")
    return value


def _text(raw: Dict[str, Any], name: str) -> Optional[str]:
    value = display_value(raw, name)
    if value is None or value == "":
        return None
    return str(value)


def _int(raw: Dict[str, Any], name: str) -> Optional[int]:
    value = field_value(raw, name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _float(raw: Dict[str, Any], name: str) -> Optional[float]:
    value = field_value(raw, name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1")


def parse_servicenow_datetime(value: Any) -> Optional[datetime]:
    """Parse a ServiceNow timestamp as an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    for fmt in _SN_DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso_field(raw: Dict[str, Any], name: str) -> Optional[str]:
    parsed = parse_servicenow_datetime(field_value(raw, name))
    return parsed.isoformat() if parsed else None


def parse_percentage(value: Any) -> float:
    """``"125.5 %"`` -> 125.5; anything unparseable -> 0."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace("%", "").replace(",", "").strip())
    except ValueError:
        return 0.0


def _incident_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "incident_state": _int(raw, "incident_state"),
        "severity": _int(raw, "severity"),
        "urgency": _int(raw, "urgency"),
        "impact": _int(raw, "impact"),
        "problem_id": _text(raw, "problem_id"),
        "cmdb_ci": _text(raw, "cmdb_ci"),
        "business_service": _text(raw, "business_service"),
        "sla_due": _iso_field(raw, "sla_due"),
    }


def _change_task_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "change_request": _text(raw, "change_request") or "",
        "planned_start_date": _iso_field(raw, "planned_start_date"),
        "planned_end_date": _iso_field(raw, "planned_end_date"),
        "implementation_plan": _text(raw, "implementation_plan"),
        "test_plan": _text(raw, "test_plan"),
    }


def _sc_task_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "request": _text(raw, "request") or "",
        "request_item": _text(raw, "request_item") or "",
        "requested_for": _text(raw, "requested_for") or "",
        "price": _float(raw, "price"),
        "quantity": _int(raw, "quantity"),
    }


_TYPE_SPECIFIC: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    TicketTable.INCIDENT: _incident_fields,
    TicketTable.CHANGE_TASK: _change_task_fields,
    TicketTable.SC_TASK: _sc_task_fields,
}


class RecordNormalizer:
    """Stateless mapping from ServiceNow records to domain objects."""

    @staticmethod
    def normalize(raw: Dict[str, Any], table: str) -> Ticket:
        """
        Build a canonical ticket from a raw record of ``table``.

        Raises:
            InvalidTableException: unknown table
            ValidationException: record lacks ``sys_id``
        """
        if table not in VALID_TABLES:
            raise InvalidTableException(table)

        sys_id = field_value(raw, "sys_id")
        if not sys_id:
            raise ValidationException("ServiceNow record has no sys_id", {"table": table})

        created_at = (
            parse_servicenow_datetime(field_value(raw, "sys_created_on"))
            or parse_servicenow_datetime(field_value(raw, "opened_at"))
        )
        updated_at = parse_servicenow_datetime(field_value(raw, "sys_updated_on")) or created_at
        if created_at is None:
            created_at = updated_at
        if created_at is None:
            raise ValidationException(
                "ServiceNow record has no timestamps",
                {"table": table, "sys_id": sys_id}
            )

        extra: Dict[str, Any] = {
            "opened_at": _iso_field(raw, "opened_at"),
            "resolved_at": _iso_field(raw, "resolved_at"),
            "closed_at": _iso_field(raw, "closed_at"),
            "category": _text(raw, "category"),
            "subcategory": _text(raw, "subcategory"),
            "sys_created_by": _text(raw, "sys_created_by"),
            "sys_updated_by": _text(raw, "sys_updated_by"),
        }
        extra.update(_TYPE_SPECIFIC[table](raw))

        active_raw = field_value(raw, "active")
        return Ticket(
            id=str(sys_id),
            number=_text(raw, "number") or "",
            ticket_type=table,
            short_description=_text(raw, "short_description") or "",
            description=_text(raw, "description"),
            state=_int(raw, "state") or 1,
            priority=_int(raw, "priority"),
            assignment_group=_text(raw, "assignment_group") or "",
            assigned_to=_text(raw, "assigned_to"),
            caller=_text(raw, "caller_id"),
            created_at=created_at,
            updated_at=updated_at,
            active=True if active_raw in (None, "") else _bool(active_raw),
            extra=extra,
        )

    @staticmethod
    def normalize_sla(raw: Dict[str, Any]) -> SLAMeasurement:
        """Build an SLA measurement from a ``task_sla`` record."""
        sys_id = field_value(raw, "sys_id")
        if not sys_id:
            raise ValidationException("task_sla record has no sys_id")
        return SLAMeasurement(
            id=str(sys_id),
            sla_name=_text(raw, "sla") or "Unknown SLA",
            stage=str(field_value(raw, "stage") or "unknown"),
            business_percentage=parse_percentage(field_value(raw, "business_percentage")),
            has_breached=_bool(field_value(raw, "has_breached")),
            start_time=parse_servicenow_datetime(field_value(raw, "start_time")),
            end_time=parse_servicenow_datetime(field_value(raw, "end_time")),
        )
