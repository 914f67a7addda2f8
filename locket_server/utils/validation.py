"""Field parsers shared by the request DTOs.

Each parser takes the raw value, the field name and an ``errors`` dict. On
failure it records a reason under the field name and returns None, so a DTO
can collect every problem before raising a single ValidationError.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from bson import ObjectId

from locket_server.utils.time_utils import parse_iso_or_epoch

Errors = Dict[str, str]


def parse_object_id(value: Any, field: str, errors: Errors, required: bool = True) -> Optional[ObjectId]:
    if value is None or value == '':
        if required:
            errors[field] = f'{field} is required'
        return None
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        errors[field] = f'{field} must be a valid id'
        return None
    return ObjectId(value)


def parse_string(
    value: Any,
    field: str,
    errors: Errors,
    required: bool = False,
    min_length: int = 0,
    max_length: Optional[int] = None,
    strip: bool = True
) -> Optional[str]:
    if value is None:
        if required:
            errors[field] = f'{field} is required'
        return None
    if not isinstance(value, str):
        errors[field] = f'{field} must be a string'
        return None
    if strip:
        value = value.strip()
    if required and not value:
        errors[field] = f'{field} is required'
        return None
    if len(value) < min_length:
        errors[field] = f'{field} must be at least {min_length} characters'
        return None
    if max_length is not None and len(value) > max_length:
        errors[field] = f'{field} must be at most {max_length} characters'
        return None
    return value


def parse_user_id(value: Any, field: str, errors: Errors, required: bool = True) -> Optional[str]:
    return parse_string(value, field, errors, required=required, min_length=1 if required else 0, max_length=100)


def parse_user_id_list(value: Any, field: str, errors: Errors, allow_empty: bool = False) -> List[str]:
    if not isinstance(value, list) or (not value and not allow_empty):
        errors[field] = f'{field} must be a non-empty array'
        return []
    out = []
    for i, item in enumerate(value):
        uid = parse_user_id(item, f'{field}[{i}]', errors)
        if uid is not None and uid not in out:
            out.append(uid)
    return out


def parse_enum(value: Any, enum_cls: Type[Enum], field: str, errors: Errors, required: bool = False):
    if value is None or value == '':
        if required:
            errors[field] = f'{field} is required'
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        errors[field] = f'{field} must be one of: {allowed}'
        return None


def parse_int(
    value: Any,
    field: str,
    errors: Errors,
    default: Optional[int] = None,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None
) -> Optional[int]:
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[field] = f'{field} must be an integer'
        return None
    if (minimum is not None and number < minimum) or (maximum is not None and number > maximum):
        errors[field] = f'{field} must be between {minimum} and {maximum}'
        return None
    return number


def parse_number(value: Any, field: str, errors: Errors, minimum: float = 0):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors[field] = f'{field} must be a number'
        return None
    if value < minimum:
        errors[field] = f'{field} must be >= {minimum}'
        return None
    return value


def parse_bool(value: Any, field: str, errors: Errors) -> Optional[bool]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', '1', 'yes', 'false', '0', 'no'):
        return value.lower() in ('true', '1', 'yes')
    errors[field] = f'{field} must be a boolean'
    return None


def parse_datetime(value: Any, field: str, errors: Errors):
    if value is None or value == '':
        return None
    parsed = parse_iso_or_epoch(value)
    if parsed is None:
        errors[field] = f'{field} must be an ISO-8601 date'
    return parsed


def require_object(value: Any, field: str, errors: Errors, required: bool = False) -> Optional[Dict[str, Any]]:
    if value is None:
        if required:
            errors[field] = f'{field} is required'
        return None
    if not isinstance(value, dict):
        errors[field] = f'{field} must be an object'
        return None
    return value
