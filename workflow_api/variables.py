"""
Conversions between loosely typed variable maps, JSON and the engine's
typed-value format.

The engine REST API wants every variable as ``{"value": ..., "type": ...}``.
Callers written in other languages (the C# front office mostly) send plain
JSON maps or their own ``{"type": ..., "value": ...}`` tags; everything in
here normalises those shapes into plain Python values and back.
"""
import json
import re
import sys
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal

from pydantic import BaseModel

VARIABLE_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
DATE_STRING_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}.*")
_OFFSET_RE = re.compile(r"([+-])(\d{2})(\d{2})$")

INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1

_SCALARS = (str, bool, int, float, Decimal, datetime, date, time, uuid.UUID)


class ValidationResult(BaseModel):
    isValid: bool = True
    errors: list[str] = []
    warnings: list[str] = []


# ---------------------------------------------------------------------------
# dates
# ---------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _millis(value) -> str:
    return f"{value.microsecond // 1000:03d}"


def format_date(value: datetime) -> str:
    """ISO timestamp with millisecond precision and a ``Z`` suffix."""
    dt = _as_utc(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + _millis(dt) + "Z"


def format_engine_date(value) -> str:
    """Date in the engine's REST format: ``2024-05-01T10:00:00.000+0000``."""
    if isinstance(value, datetime):
        dt = _as_utc(value)
    else:
        dt = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + _millis(dt) + "+0000"


def is_date_string(value) -> bool:
    return isinstance(value, str) and DATE_STRING_RE.match(value) is not None


def parse_date(value: str) -> datetime:
    """Parse both ``...Z`` and engine style ``...+0000`` timestamps."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    elif "T" in text:
        m = _OFFSET_RE.search(text)
        if m:
            text = f"{text[:m.start()]}{m.group(1)}{m.group(2)}:{m.group(3)}"
    return datetime.fromisoformat(text)


# ---------------------------------------------------------------------------
# engine typed values
# ---------------------------------------------------------------------------

def to_engine_value(value) -> dict:
    if value is None:
        return {"value": None, "type": "Null"}
    if isinstance(value, bool):
        return {"value": value, "type": "Boolean"}
    if isinstance(value, int):
        kind = "Integer" if INT_MIN <= value <= INT_MAX else "Long"
        return {"value": value, "type": kind}
    if isinstance(value, (float, Decimal)):
        return {"value": float(value), "type": "Double"}
    if isinstance(value, str):
        return {"value": value, "type": "String"}
    if isinstance(value, (datetime, date)):
        return {"value": format_engine_date(value), "type": "Date"}
    return {"value": json.dumps(_java_value(value)), "type": "Json"}


def to_engine_variables(variables: dict) -> dict:
    return {name: to_engine_value(value) for name, value in (variables or {}).items()}


def from_engine_value(typed):
    if not isinstance(typed, dict) or "value" not in typed:
        return typed

    kind = (typed.get("type") or "").lower()
    value = typed.get("value")
    if value is None:
        return None

    if kind == "date" and isinstance(value, str):
        try:
            return parse_date(value)
        except ValueError:
            return value
    if kind in ("json", "object") and isinstance(value, str):
        info = typed.get("valueInfo") or {}
        if kind == "json" or info.get("serializationDataFormat") == "application/json":
            try:
                return json.loads(value)
            except ValueError:
                return value
    return value


def from_engine_variables(variables: dict) -> dict:
    return {name: from_engine_value(typed) for name, typed in (variables or {}).items()}


# ---------------------------------------------------------------------------
# {"type": ..., "value": ...} tags sent by callers
# ---------------------------------------------------------------------------

def _type_and_value(typed):
    if isinstance(typed, dict):
        return typed.get("type"), typed.get("value")
    return getattr(typed, "type", None), getattr(typed, "value", None)


def convert_typed_variable(typed):
    if typed is None:
        return None

    kind, value = _type_and_value(typed)
    if value is None:
        return None

    kind = (kind or "object").lower()
    if kind == "string":
        return str(value)
    if kind == "number":
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return float(value)
        return float(str(value))
    if kind == "boolean":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() == "true"
    if kind == "date":
        if isinstance(value, datetime):
            return value
        try:
            return parse_date(str(value))
        except ValueError:
            print(f"[variables] Failed to parse date: {value}", file=sys.stderr)
            return str(value)
    if kind == "list":
        if isinstance(value, (list, tuple, set)):
            return list(value)
        return [value]
    return process_complex_object(value)


def process_complex_object(obj):
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {str(k): process_complex_object(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [process_complex_object(item) for item in obj]
    if isinstance(obj, _SCALARS):
        return obj
    if isinstance(obj, BaseModel):
        return process_complex_object(obj.model_dump())
    if hasattr(obj, "__dict__"):
        return process_complex_object(
            {k: v for k, v in vars(obj).items() if not k.startswith("_")}
        )
    return obj


def typed_value(value) -> dict:
    """Tag a value with an explicit type name plus the Python type it came from."""
    if value is None:
        kind, out = "null", None
    elif isinstance(value, bool):
        kind, out = "boolean", value
    elif isinstance(value, int):
        kind, out = ("integer" if INT_MIN <= value <= INT_MAX else "long"), value
    elif isinstance(value, float):
        kind, out = "double", value
    elif isinstance(value, Decimal):
        kind, out = "decimal", str(value)
    elif isinstance(value, str):
        kind, out = "string", value
    elif isinstance(value, datetime):
        kind, out = "datetime", value.isoformat()
    elif isinstance(value, uuid.UUID):
        kind, out = "guid", str(value)
    elif isinstance(value, dict):
        kind, out = "map", value
    elif isinstance(value, (list, tuple, set)):
        kind, out = "list", list(value)
    else:
        kind, out = "object", value

    original = None
    if value is not None:
        cls = type(value)
        original = cls.__qualname__ if cls.__module__ == "builtins" else f"{cls.__module__}.{cls.__qualname__}"
    return {"type": kind, "value": out, "originalType": original}


def create_typed_dictionary(original: dict) -> dict:
    return {key: typed_value(value) for key, value in original.items()}


# ---------------------------------------------------------------------------
# cross-language friendly maps
# ---------------------------------------------------------------------------

def _java_value(value):
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return format_date(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M:%S.") + _millis(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):
        return to_java_friendly(value)
    if isinstance(value, (list, tuple, set)):
        return [_java_value(item) for item in value]

    converted = process_complex_object(value)
    if converted is value:
        return str(value)
    return _java_value(converted)


def to_java_friendly(original: dict) -> dict:
    return {str(key): _java_value(value) for key, value in original.items()}


def _convert_received(value):
    if value is None:
        return None
    if is_date_string(value):
        try:
            return parse_date(value)
        except ValueError:
            return value
    if isinstance(value, dict):
        return {k: _convert_received(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert_received(item) for item in value]
    return value


def receive_dictionary(original: dict) -> dict:
    """Normalise a map posted by a non-Python caller (date strings become datetimes)."""
    return {key: _convert_received(value) for key, value in original.items()}


# ---------------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------------

def is_serializable(value, _seen=None) -> bool:
    if value is None or isinstance(value, _SCALARS):
        return True

    _seen = _seen if _seen is not None else set()
    if id(value) in _seen:
        return False
    _seen = _seen | {id(value)}

    if isinstance(value, dict):
        return all(isinstance(k, str) and is_serializable(v, _seen) for k, v in value.items())
    if isinstance(value, (list, tuple, set)):
        return all(is_serializable(item, _seen) for item in value)
    if isinstance(value, BaseModel):
        return True
    if hasattr(value, "__dict__"):
        return all(
            is_serializable(v, _seen) for k, v in vars(value).items() if not k.startswith("_")
        )
    try:
        json.dumps(value)
        return True
    except (TypeError, ValueError):
        return False


def validate_for_serialization(dictionary: dict) -> list:
    errors = []
    for key, value in dictionary.items():
        if key is None or not str(key).strip():
            errors.append("Dictionary contains empty or null key")
        if not is_serializable(value):
            errors.append(f"Value for key '{key}' is not serializable")
    return errors


def _is_java_identifier(name: str) -> bool:
    if not name:
        return False
    if not (name[0].isalpha() or name[0] in "_$"):
        return False
    return all(c.isalnum() or c in "_$" for c in name)


def _validate_value(value, path: str, result: ValidationResult):
    if value is None or isinstance(value, _SCALARS):
        return
    if isinstance(value, dict):
        for k, v in value.items():
            _validate_value(v, f"{path}.{k}", result)
        return
    if isinstance(value, (list, tuple, set)):
        for i, item in enumerate(value):
            _validate_value(item, f"{path}[{i}]", result)
        return
    if not is_serializable(value):
        result.isValid = False
        result.errors.append(
            f"Type {type(value).__name__} at path '{path}' cannot be serialized to Java"
        )


def validate_for_java(dictionary) -> ValidationResult:
    result = ValidationResult()
    if dictionary is None:
        result.isValid = False
        result.errors.append("Dictionary cannot be null")
        return result

    for key, value in dictionary.items():
        if key is None or not str(key).strip():
            result.isValid = False
            result.errors.append("Dictionary key cannot be null or empty")
            continue
        if not _is_java_identifier(str(key)):
            result.warnings.append(f"Key '{key}' may not be a valid Java identifier")
        _validate_value(value, str(key), result)

    return result


def validate_variables(variables) -> bool:
    if variables is None:
        return True

    for name, value in variables.items():
        if not isinstance(name, str) or not VARIABLE_NAME_RE.match(name):
            print(f"[variables] Invalid variable name: {name}", file=sys.stderr)
            return False
        if not is_serializable(value):
            print(f"[variables] Non-serializable value for variable: {name}", file=sys.stderr)
            return False
    return True


# ---------------------------------------------------------------------------
# map helpers
# ---------------------------------------------------------------------------

def get_nested_value(variables: dict, path: str, expected_type=None):
    current = variables
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            return None

    if expected_type is not None and not isinstance(current, expected_type):
        return None
    return current


def merge_maps(left: dict, right: dict) -> dict:
    result = dict(left)
    for key, value in right.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = merge_maps(result[key], value)
        else:
            result[key] = value
    return result


def extract_string(data: dict, key: str):
    value = data.get(key)
    return str(value) if value is not None else None


def extract_map(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def extract_list(data: dict, key: str) -> list:
    value = data.get(key)
    return value if isinstance(value, list) else []


def extract_int(data: dict, key: str):
    value = data.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def extract_float(data: dict, key: str):
    value = data.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def extract_bool(data: dict, key: str):
    value = data.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return None
