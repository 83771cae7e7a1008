import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class AuditoriaError(Exception):
    """Errores de dominio del motor de auditorías y ajustes."""
    status_code = status.HTTP_400_BAD_REQUEST


class NoEncontrado(AuditoriaError):
    """Almacén, estante, auditoría, detalle, ajuste o stock inexistente."""
    status_code = status.HTTP_404_NOT_FOUND


class EstadoInvalido(AuditoriaError):
    """Operación fuera de su estado de origen permitido."""
    status_code = status.HTTP_409_CONFLICT


class EntradaInvalida(AuditoriaError):
    status_code = status.HTTP_400_BAD_REQUEST


class ViolacionInvariante(AuditoriaError):
    """
    El mundo real cambió desde la autorización (ej: el ajuste dejaría stock
    negativo). El llamador debe reevaluar, no reintentar.
    """
    status_code = status.HTTP_409_CONFLICT


class ServicioExternoError(AuditoriaError):
    status_code = status.HTTP_502_BAD_GATEWAY


def manejador_excepciones(exc, context):
    """
    EXCEPTION_HANDLER de DRF: traduce los errores de dominio a respuestas HTTP.
    """
    if isinstance(exc, AuditoriaError):
        return Response(
            {"detail": str(exc), "codigo": type(exc).__name__},
            status=exc.status_code,
        )
    return exception_handler(exc, context)
