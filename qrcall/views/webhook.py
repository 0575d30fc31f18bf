import logging

from django.conf import settings
from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..apps import get_services
from ..http import handles_call_errors, json_body
from ..webhooks import SIGNATURE_HEADER, parse_masked_event, verify_signature

logger = logging.getLogger("qrcall")


@csrf_exempt
@handles_call_errors
def masked_webhook(request):
    """
    Masked-calling provider events. Anything that parses gets a 200, even
    when it does not change the call, so the provider stops retrying.
    """
    logger.info(f"[WEBHOOK] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    verify_signature(
        request.body,
        request.META.get(SIGNATURE_HEADER),
        settings.MASKED_CALLING_WEBHOOK_SECRET,
        allow_unsigned=settings.DEBUG,
    )

    data, error = json_body(request)
    if error:
        return error

    event = parse_masked_event(data)
    result = get_services().reconciler.reconcile(event)
    logger.info(f"[WEBHOOK] {event.raw_type} {event.call_id}: {result}")
    return JsonResponse({"success": True, "callId": event.call_id, "eventType": event.raw_type, **result})
