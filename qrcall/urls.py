from django.urls import path
from . import views

urlpatterns = [
    # Health check
    path("health", views.health, name="health"),

    # Agora token
    path("token", views.token, name="token"),

    # QR scan landing
    path("qr/<str:qr_id>/info", views.qr_info, name="qr_info"),

    # Call management
    path("calls/initiate", views.call_initiate, name="call_initiate"),
    path("calls/history", views.call_history, name="call_history"),
    path("calls/methods", views.call_methods, name="call_methods"),
    path("calls/timeout/sweep", views.call_timeout_sweep, name="call_timeout_sweep"),
    path("calls/webhook/masked", views.masked_webhook, name="masked_webhook"),
    path("calls/<str:call_id>/answer", views.call_answer, name="call_answer"),
    path("calls/<str:call_id>/reject", views.call_reject, name="call_reject"),
    path("calls/<str:call_id>/end", views.call_end, name="call_end"),
    path("calls/<str:call_id>/status", views.call_status, name="call_status"),
    path("calls/<str:call_id>", views.call_detail, name="call_detail"),
]
