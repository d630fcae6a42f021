"""Parser for per-project machine usage exports (``W1234AB01A.json``)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from toolmanager.core.errors import ParseError
from toolmanager.core.identity import UNKNOWN, ProjectIdentity, normalize_tool_id
from toolmanager.core.sanitize import parse_sanitized
from toolmanager.core.schema import Operation, RawOperation, RawUsagePayload, UsageRecord, UsageRejection

logger = logging.getLogger(__name__)

TOP_LEVEL_KEYS = {
    "machine": "machine",
    "machinename": "machine",
    "operator": "operator",
    "project": "project",
    "projectname": "project",
    "position": "position",
    "positionname": "position",
    "operations": "operations",
}
OPERATION_KEYS = {
    "programname": "program_name",
    "program": "program_name",
    "toolname": "tool_name",
    "tool": "tool_name",
    "toolid": "tool_name",
    "operationtime": "operation_time",
    "elapsedminutes": "operation_time",
    "maxspeed": "max_speed",
    "maxfeed": "max_feed",
}


def _key(name: Any) -> str:
    return str(name).replace("_", "").replace("-", "").strip().lower()


def _normalise_keys(data: Mapping[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    normalised: dict[str, Any] = {}
    for name, value in data.items():
        target = mapping.get(_key(name))
        if target and target not in normalised:
            normalised[target] = value
    return normalised


def _text(value: Any) -> str:
    if value is None:
        return UNKNOWN
    return str(value).strip() or UNKNOWN


def _operation(raw: Any) -> Operation:
    if not isinstance(raw, Mapping):
        return Operation()
    fields = RawOperation(**_normalise_keys(raw, OPERATION_KEYS))
    return Operation(
        program_name=fields.program_name,
        tool_id=normalize_tool_id(fields.tool_name),
        elapsed_minutes=fields.operation_time,
        max_speed=fields.max_speed,
        max_feed=fields.max_feed,
    )


def extract(
    parsed_json: Any,
    identity: ProjectIdentity | None,
    source_file: str | Path | None = None,
) -> UsageRecord:
    """Build a :class:`UsageRecord` from a parsed usage document.

    Missing header fields default to ``UNKNOWN``.  A missing or non-list
    ``operations`` member yields a record without operations.
    """

    if not isinstance(parsed_json, Mapping):
        raise ParseError(f"usage document root is {type(parsed_json).__name__}, expected an object")

    payload = RawUsagePayload(**_normalise_keys(parsed_json, TOP_LEVEL_KEYS))
    name = str(source_file) if source_file is not None else None

    operations = payload.operations
    if isinstance(operations, (str, bytes, Mapping)) or not isinstance(operations, Iterable):
        logger.warning("No usable operations list in %s; recording zero operations", name or "usage document")
        operations = ()

    if identity is not None:
        project_id, position = identity.project_base, identity.position_name
    else:
        project_id, position = _text(payload.project), _text(payload.position)

    return UsageRecord(
        project_id=project_id,
        position=position,
        machine=_text(payload.machine),
        operator=_text(payload.operator),
        operations=tuple(_operation(raw) for raw in operations),
        source_file=name,
    )


def validate(
    parsed_json: Any,
    identity: ProjectIdentity | None,
    source_file: str | Path | None = None,
) -> UsageRecord | UsageRejection:
    """Like :func:`extract` but returns a rejection instead of raising."""

    name = str(source_file) if source_file is not None else None
    try:
        return extract(parsed_json, identity, source_file)
    except ParseError as exc:
        return UsageRejection(source_file=name, reason=str(exc))
    except ValidationError as exc:
        return UsageRejection(source_file=name, reason=f"invalid usage fields: {exc.error_count()} error(s)")


def load_usage_file(path: Path, identity: ProjectIdentity | None, source_file: str | Path | None = None) -> UsageRecord:
    """Read, sanitise and parse one usage file.

    ``path`` is the staged copy; ``source_file`` is the original location to
    report in the record.
    """

    raw_text = Path(path).read_text(encoding="utf-8-sig", errors="replace")
    parsed = parse_sanitized(raw_text)
    return extract(parsed, identity, source_file or path)
