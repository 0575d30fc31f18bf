import logging

from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..apps import get_services
from ..errors import StoreUnavailable
from ..http import handles_call_errors

logger = logging.getLogger("qrcall")


@csrf_exempt
@handles_call_errors
def qr_info(request, qr_id):
    """Public scan landing: what a caller may see before placing a call."""
    logger.info(f"[QR/INFO] {request.method} {qr_id} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    services = get_services()
    if not services.store.is_available():
        raise StoreUnavailable("Firebase Firestore is not configured")
    return JsonResponse(services.resolver.lookup(qr_id))
