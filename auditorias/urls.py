from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    AjusteInventarioViewSet,
    AuditoriaViewSet,
    MetricaInventarioViewSet,
)

router = DefaultRouter()
router.register(r"auditorias", AuditoriaViewSet, basename="auditoria")
router.register(r"ajustes", AjusteInventarioViewSet, basename="ajuste")
router.register(r"metricas", MetricaInventarioViewSet, basename="metrica")


urlpatterns = [
    path("", include(router.urls)),
]
