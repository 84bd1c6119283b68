"""Validated partial updates of stored records."""

from typing import Any, Dict, TypeVar

from pydantic import BaseModel, ValidationError

from src.utils.errors import InvalidInputError

RecordT = TypeVar("RecordT", bound=BaseModel)


def validated_update(record: RecordT, changes: Dict[str, Any]) -> RecordT:
    """
    Apply ``changes`` to a record and validate the result.

    Unlike ``model_copy(update=...)`` this rejects values the record type
    does not accept, such as null for a required field.

    Raises:
        InvalidInputError: If the updated record is invalid
    """
    try:
        return type(record).model_validate({**record.model_dump(), **changes})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidInputError(
            f"Invalid value for {fields} on {type(record).__name__}",
            reference=getattr(record, "id", None),
        ) from e
