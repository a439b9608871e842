from django.urls import path
from . import views
app_name = "portpos"
urlpatterns = [
    # https://<domain>/payments/listener/?listener=portpos-return|portpos-ipn&payment_id=<id>
    path("listener/", views.listener_view, name="listener"),
]
