# auditorias/services/metricas.py

import logging
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from dateutil.relativedelta import relativedelta
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from auditorias.exceptions import EntradaInvalida
from auditorias.models import (
    AjusteInventario,
    AuditoriaDetalle,
    AuditoriaInventario,
    EstadoAjuste,
    EstadoAuditoria,
    MetricaInventario,
    TipoDiscrepancia,
    TipoPeriodo,
)

logger = logging.getLogger(__name__)

FORMATOS_PERIODO = {
    TipoPeriodo.MENSUAL: re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$"),
    TipoPeriodo.TRIMESTRAL: re.compile(r"^(\d{4})-Q([1-4])$"),
    TipoPeriodo.ANUAL: re.compile(r"^(\d{4})$"),
}


def ventana_periodo(periodo: str, tipo_periodo: str = TipoPeriodo.MENSUAL) -> tuple[datetime, datetime]:
    """
    Devuelve [inicio, fin) del periodo en la zona horaria local.

    MENSUAL "2024-03", TRIMESTRAL "2024-Q1", ANUAL "2024".
    """
    patron = FORMATOS_PERIODO.get(tipo_periodo)
    if patron is None:
        raise EntradaInvalida(f"Tipo de periodo inválido: {tipo_periodo}")

    coincidencia = patron.match(periodo or "")
    if coincidencia is None:
        raise EntradaInvalida(f"Periodo '{periodo}' inválido para tipo {tipo_periodo}")

    anio = int(coincidencia.group(1))
    if tipo_periodo == TipoPeriodo.MENSUAL:
        mes_inicio, meses = int(coincidencia.group(2)), 1
    elif tipo_periodo == TipoPeriodo.TRIMESTRAL:
        mes_inicio, meses = (int(coincidencia.group(2)) - 1) * 3 + 1, 3
    else:
        mes_inicio, meses = 1, 12

    tz = timezone.get_current_timezone()
    primer_dia = datetime(anio, mes_inicio, 1)
    inicio = timezone.make_aware(primer_dia, tz)
    fin = timezone.make_aware(primer_dia + relativedelta(months=meses), tz)
    return inicio, fin


@transaction.atomic
def calcular_metricas(
    periodo: str,
    tipo_periodo: str = TipoPeriodo.MENSUAL,
    almacen_id: int | None = None,
    categoria_id: int | None = None,
) -> MetricaInventario:
    """
    Recalcula los KPIs del periodo y los guarda sobre la fila de la clave natural
    (periodo, tipo_periodo, almacen, categoria). Recalcular dos veces deja una
    sola fila con los mismos valores.
    """
    inicio, fin = ventana_periodo(periodo, tipo_periodo)

    auditorias = AuditoriaInventario.objects.filter(
        estado=EstadoAuditoria.COMPLETADA,
        fecha_fin__gte=inicio,
        fecha_fin__lt=fin,
    )
    if almacen_id:
        auditorias = auditorias.filter(almacen_id=almacen_id)

    lineas = AuditoriaDetalle.objects.filter(auditoria__in=auditorias, fue_contado=True)
    if categoria_id:
        lineas = lineas.filter(producto__categoria_id=categoria_id)
    lineas = list(lineas.only("fue_contado", "tipo_discrepancia", "discrepancia_valor"))

    auditados = len(lineas)
    conformes = sum(1 for d in lineas if d.tipo_discrepancia == TipoDiscrepancia.CONFORME)
    con_discrepancia = sum(1 for d in lineas if d.tiene_discrepancia)

    positivas = Decimal("0")
    negativas = Decimal("0")
    for d in lineas:
        valor = d.discrepancia_valor or Decimal("0")
        if valor > 0:
            positivas += valor
        elif valor < 0:
            negativas += -valor

    accuracy = Decimal("0")
    if auditados:
        accuracy = (Decimal(conformes) / Decimal(auditados) * Decimal("100")).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )

    ajustes = AjusteInventario.objects.filter(fecha_solicitud__gte=inicio, fecha_solicitud__lt=fin)
    if almacen_id:
        ajustes = ajustes.filter(almacen_id=almacen_id)
    if categoria_id:
        ajustes = ajustes.filter(producto__categoria_id=categoria_id)

    aplicados = list(ajustes.filter(estado=EstadoAjuste.APLICADO))

    valores = {
        "total_auditorias_realizadas": auditorias.count(),
        "total_items_auditados": auditados,
        "total_items_conformes": conformes,
        "total_items_con_discrepancia": con_discrepancia,
        "accuracy_porcentaje": accuracy,
        "valor_discrepancias_positivas": positivas,
        "valor_discrepancias_negativas": negativas,
        "valor_neto_discrepancias": positivas - negativas,
        "total_ajustes": ajustes.count(),
        "total_ajustes_autorizados": ajustes.filter(
            Q(estado=EstadoAjuste.AUTORIZADO) | Q(estado=EstadoAjuste.APLICADO)
        ).count(),
        "total_ajustes_aplicados": len(aplicados),
        "valor_ajustes_aplicados": sum((a.valor_ajuste for a in aplicados), Decimal("0")),
    }

    metrica, creada = MetricaInventario.objects.update_or_create(
        periodo=periodo,
        tipo_periodo=tipo_periodo,
        almacen_id=almacen_id,
        categoria_id=categoria_id,
        defaults=valores,
    )

    logger.info(
        "Métricas %s %s (almacén=%s, categoría=%s) %s: %s auditorías, accuracy %s%%",
        tipo_periodo,
        periodo,
        almacen_id,
        categoria_id,
        "creadas" if creada else "recalculadas",
        valores["total_auditorias_realizadas"],
        accuracy,
    )
    return metrica


def obtener_metricas(
    periodo: str,
    tipo_periodo: str = TipoPeriodo.MENSUAL,
    almacen_id: int | None = None,
    categoria_id: int | None = None,
) -> MetricaInventario:
    """Devuelve la métrica guardada; si no existe la calcula."""
    ventana_periodo(periodo, tipo_periodo)

    metrica = MetricaInventario.objects.filter(
        periodo=periodo,
        tipo_periodo=tipo_periodo,
        almacen_id=almacen_id,
        categoria_id=categoria_id,
    ).first()
    if metrica is not None:
        return metrica
    return calcular_metricas(periodo, tipo_periodo, almacen_id, categoria_id)
