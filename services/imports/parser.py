from __future__ import annotations

import json
import re

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ImportFailedError, ValidationError
from app.db.models.imports import ImportObjectType
from services.organizations.schemas import AddressIn, CoordinatesIn, LocationIn, OrganizationIn, Payload

RECORD_TYPES: dict[ImportObjectType, type[Payload]] = {
    ImportObjectType.ORGANIZATION: OrganizationIn,
    ImportObjectType.COORDINATES: CoordinatesIn,
    ImportObjectType.LOCATION: LocationIn,
    ImportObjectType.ADDRESS: AddressIn,
}

_PREFIX = re.compile(r"^(value error|assertion failed),\s*", re.IGNORECASE)


def describe_errors(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors to `field: message; field: message`, duplicates dropped."""
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = _PREFIX.sub("", str(err.get("msg", "")).strip())
        text = f"{loc}: {msg}" if loc else msg
        if text and text not in parts:
            parts.append(text)
    return "; ".join(parts) or "invalid record"


def concise(message: str) -> str:
    """Split a compound message, trim the pieces and drop repeats."""
    seen: list[str] = []
    for piece in re.split(r"[;\n]", message or ""):
        piece = piece.strip()
        if piece and piece not in seen:
            seen.append(piece)
    return "; ".join(seen) or "unknown error"


def record_error(index: int, message: str) -> ImportFailedError:
    return ImportFailedError(f"Error in record #{index}: {concise(message)}", index=index)


def parse_records(data: bytes, object_type: ImportObjectType) -> list[Payload]:
    """Decode a JSON array and validate every element as the object type's record shape."""
    if not data or not data.strip():
        raise ValidationError("The import file is empty")
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Could not read the import file: {exc}") from exc
    if not isinstance(raw, list):
        raise ValidationError("The import file must contain a JSON array of records")
    if not raw:
        raise ValidationError("The import file contains no records")

    model = RECORD_TYPES[object_type]
    records: list[Payload] = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise record_error(index, "record must be a JSON object")
        try:
            records.append(model.model_validate(item))
        except PydanticValidationError as exc:
            raise record_error(index, describe_errors(exc)) from exc
    return records
