from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..apps import get_services


@csrf_exempt
def health(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    services = get_services()
    store_ok = services.store.is_available()

    return JsonResponse({
        "status": "ok",
        "store": "connected" if store_ok else "not_configured",
        "rtc": "configured" if services.token_issuer.is_configured() else "not_configured",
        "maskedCalling": "available" if services.masked_client.is_available() else "unavailable",
    })
