from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from flask import jsonify, request, has_request_context

from locket_server.utils.time_utils import isoformat
from locket_server.utils.translations import resolve_language, translate


def request_language() -> str:
    if not has_request_context():
        return 'en'
    return resolve_language(request.headers.get('Accept-Language'))


def respond_error(message_key: str, status=400, kind: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
    """Return a standardized error response with a localized message."""
    body = {
        'success': False,
        'message': translate(message_key, request_language()),
        'messageKey': message_key,
    }
    if kind:
        body['kind'] = kind
    if errors:
        body['errors'] = errors
    return jsonify(body), status


def respond_success(payload=None, status=200, message_key: str = 'success'):
    if payload is None:
        payload = {}
    body = {
        'success': True,
        'message': translate(message_key, request_language()),
        'messageKey': message_key,
    }
    if isinstance(payload, dict):
        body.update(payload)
    else:
        body['data'] = payload
    return jsonify(body), status


def normalize_doc(obj: Any) -> Any:
    """Recursively convert ObjectId and datetime values to JSON-serializable ones.

    Returns a new object; the input is not mutated.
    """
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {k: normalize_doc(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [normalize_doc(v) for v in obj]
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return isoformat(obj)
    return obj
