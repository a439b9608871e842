from django.http import HttpResponseNotFound
from django.views.decorators.csrf import csrf_exempt

from .gateway import get_gateway


@csrf_exempt
def listener_view(request):
    """Single callback URL for payment gateways.

    ``?listener=<gateway>-<channel>`` picks the gateway and the channel:
    ``return`` for the browser redirect, ``ipn`` for the server notification.
    PortPos cannot send a CSRF token; each gateway verifies with its provider.
    """
    listener = (request.GET.get("listener") or "").strip().lower()
    name, _, channel = listener.rpartition("-")
    gateway = get_gateway(name)
    if gateway is None:
        return HttpResponseNotFound("Unknown listener", content_type="text/plain; charset=utf-8")
    if channel == "return":
        return gateway.handle_return(request)
    if channel == "ipn":
        return gateway.handle_notification(request)
    return HttpResponseNotFound("Unknown listener", content_type="text/plain; charset=utf-8")
