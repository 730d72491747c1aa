"""
Shared JSON helpers for promptkit's persisted formats.

Guards payload size before decoding and turns decoder failures into
MalformedDataError with line and column information.
"""
import json
from pathlib import Path
from typing import Any, Optional, Union

from .errors import InvalidArgumentError, MalformedDataError


# 10 MB cap on JSON text and files accepted for deserialization
MAX_JSON_PAYLOAD_BYTES = 10 * 1024 * 1024

PathLike = Union[str, Path]


def ensure_payload_size(text: str) -> None:
    """Reject JSON text larger than MAX_JSON_PAYLOAD_BYTES.

    Args:
        text: The JSON text to check.

    Raises:
        MalformedDataError: If the UTF-8 encoded size exceeds the limit.
    """
    if len(text.encode("utf-8")) > MAX_JSON_PAYLOAD_BYTES:
        raise MalformedDataError(
            f"JSON payload exceeds the maximum allowed size of "
            f"{MAX_JSON_PAYLOAD_BYTES // (1024 * 1024)} MB"
        )


def ensure_file_size(path: Path) -> None:
    """Reject files larger than MAX_JSON_PAYLOAD_BYTES."""
    size = path.stat().st_size
    if size > MAX_JSON_PAYLOAD_BYTES:
        raise MalformedDataError(
            f"File '{path}' is {size // (1024 * 1024)} MB, exceeding the maximum "
            f"allowed size of {MAX_JSON_PAYLOAD_BYTES // (1024 * 1024)} MB"
        )


def load_json_object(text: str, what: str) -> dict[str, Any]:
    """Decode JSON text that must contain an object at the top level.

    Args:
        text: JSON text.
        what: Human-readable name of the payload for error messages.

    Returns:
        The decoded dictionary.

    Raises:
        InvalidArgumentError: If the text is empty.
        MalformedDataError: If the text is too large, not valid JSON, or
            not a JSON object.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidArgumentError("JSON string cannot be null or empty.")

    ensure_payload_size(text)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDataError(
            f"Invalid {what} JSON: {e.msg}",
            line=e.lineno,
            column=e.colno,
        ) from e

    if not isinstance(data, dict):
        raise MalformedDataError(f"Invalid {what} JSON: top level must be an object")
    return data


def dump_json(data: Any, indent: Optional[int] = 2) -> str:
    """Serialize data to JSON without escaping non-ASCII characters."""
    return json.dumps(data, indent=indent, ensure_ascii=False)


def read_text_file(path: PathLike) -> str:
    """Read a persisted JSON file after checking existence and size.

    Raises:
        InvalidArgumentError: If the path is empty.
        FileNotFoundError: If the file does not exist.
        MalformedDataError: If the file is too large.
    """
    if not str(path).strip():
        raise InvalidArgumentError("File path cannot be null or empty.")

    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {file_path}")

    ensure_file_size(file_path)
    return file_path.read_text(encoding="utf-8")


def write_text_file(path: PathLike, text: str) -> Path:
    """Write JSON text to a file, creating parent directories as needed."""
    if not str(path).strip():
        raise InvalidArgumentError("File path cannot be null or empty.")

    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(text, encoding="utf-8")
    return file_path


def require_string_map(value: Any, field_name: str) -> dict[str, str]:
    """Validate an optional JSON object whose values are all strings.

    Args:
        value: The decoded value (None is treated as an empty mapping).
        field_name: Field name used in error messages.

    Returns:
        A new dict with the same entries.

    Raises:
        MalformedDataError: If the value is not an object of strings.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedDataError(f"Field '{field_name}' must be an object")

    result: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str):
            raise MalformedDataError(f"Field '{field_name}.{key}' must be a string")
        result[key] = item
    return result
