# auditorias/services/codigos.py

from datetime import date

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from auditorias.models import SecuenciaCodigo

PREFIJO_AUDITORIA = "AUD"
PREFIJO_AJUSTE = "AJU"


def periodo_actual(fecha: date | None = None) -> str:
    """
    Devuelve el periodo YYYYMM de la fecha indicada (o de hoy en la zona local).
    """
    if fecha is None:
        fecha = timezone.localdate()
    return f"{fecha.year}{fecha.month:02d}"


@transaction.atomic
def siguiente_codigo(prefijo: str, fecha: date | None = None) -> str:
    """
    Genera el siguiente código PREFIJO-YYYYMM-#### de forma atómica.

    La numeración es correlativa dentro del mes y vuelve a 0001 cada mes.
    La fila de SecuenciaCodigo se bloquea con select_for_update y se
    incrementa con F(), así dos creaciones concurrentes nunca comparten número.
    """
    periodo = periodo_actual(fecha)

    secuencia, _ = SecuenciaCodigo.objects.select_for_update().get_or_create(
        prefijo=prefijo,
        periodo=periodo,
        defaults={"ultimo_numero": 0},
    )
    SecuenciaCodigo.objects.filter(pk=secuencia.pk).update(ultimo_numero=F("ultimo_numero") + 1)
    secuencia.refresh_from_db(fields=["ultimo_numero"])

    return f"{prefijo}-{periodo}-{secuencia.ultimo_numero:04d}"
