import json
import logging
from functools import wraps
from typing import Tuple

from django.http import JsonResponse

from .errors import CallError

logger = logging.getLogger("qrcall")


def json_body(request) -> Tuple[dict, JsonResponse]:
    try:
        body = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data, None
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        return None, JsonResponse({"error": f"invalid_json: {exc}"}, status=400)


def error_response(error: CallError) -> JsonResponse:
    return JsonResponse(error.to_dict(), status=error.status)


def handles_call_errors(view):
    """Translate CallError raised by a view into its JSON error response."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except CallError as e:
            log = logger.error if e.status >= 500 else logger.warning
            log(f"[HTTP] {request.method} {request.path} -> {e.status} {e.code}: {e.message}")
            return error_response(e)

    return wrapper
