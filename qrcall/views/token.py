import logging

from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..apps import get_services
from ..auth import authenticate_user
from ..constants import DEFAULT_TOKEN_EXPIRE_SECONDS
from ..http import handles_call_errors, json_body
from ..utils import parse_role

logger = logging.getLogger("qrcall")


@csrf_exempt
@handles_call_errors
def token(request):
    logger.info(f"[TOKEN] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        logger.warning(f"[TOKEN] Method not allowed: {request.method}")
        return HttpResponseNotAllowed(["POST"])

    user_id = authenticate_user(request)

    data, error = json_body(request)
    if error:
        logger.error("[TOKEN] Invalid JSON body")
        return error

    channel = data.get("channel") or data.get("channelName")
    if not channel:
        logger.error("[TOKEN] Missing channel")
        return JsonResponse({"error": "missing_channel"}, status=400)

    uid = data.get("uid")
    user_account = data.get("user_account") or data.get("account")
    if uid is None and not user_account:
        return JsonResponse({"error": "missing_uid_or_account"}, status=400)

    if parse_role(data.get("role")) is None:
        return JsonResponse({"error": "invalid_role"}, status=400)

    if not user_account:
        try:
            uid = int(uid)
        except (TypeError, ValueError):
            return JsonResponse({"error": "uid_must_be_int"}, status=400)

    credential = get_services().token_issuer.issue(
        channel,
        user_account or uid,
        role=data.get("role"),
        ttl=data.get("expire", DEFAULT_TOKEN_EXPIRE_SECONDS),
    )

    logger.info(f"[TOKEN] Success: channel={channel}, uid={credential.uid}, user={user_id}")
    return JsonResponse({
        "token": credential.token,
        "appId": credential.app_id,
        "channelName": credential.channel,
        "uid": credential.uid,
        "expire_at": credential.expire_at,
        "expire_in": credential.expire_in,
    })
