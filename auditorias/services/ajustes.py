# auditorias/services/ajustes.py

import logging
from datetime import date
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from auditorias.exceptions import (
    EntradaInvalida,
    EstadoInvalido,
    NoEncontrado,
    ViolacionInvariante,
)
from auditorias.models import (
    AjusteInventario,
    AuditoriaInventario,
    CausaDiscrepancia,
    EstadoAjuste,
    TipoDiscrepancia,
)
from auditorias.services.codigos import PREFIJO_AJUSTE, siguiente_codigo
from auditorias.services.conciliacion import a_cantidad
from auditorias.services.conteo import asegurar_pertenencia
from auditorias.services.planificacion import completar_auditoria, finalizar_auditoria
from auditorias.services.stock import (
    comparar_y_actualizar_cantidad,
    obtener_stock,
    registrar_movimiento_ajuste,
)

logger = logging.getLogger(__name__)


def obtener_ajuste(ajuste_id: int) -> AjusteInventario:
    try:
        return AjusteInventario.objects.select_related("auditoria", "producto", "almacen").get(pk=ajuste_id)
    except AjusteInventario.DoesNotExist:
        raise NoEncontrado(f"Ajuste con ID {ajuste_id} no encontrado")


def _bloquear(ajuste: AjusteInventario) -> AjusteInventario:
    return AjusteInventario.objects.select_for_update().get(pk=ajuste.pk)


@transaction.atomic
def generar_ajustes(
    auditoria: AuditoriaInventario,
    items: list[dict],
    usuario,
    *,
    motivo_detallado: str = "",
    documentos_soporte: str = "",
) -> list[AjusteInventario]:
    """
    Genera ajustes PENDIENTE_AUTORIZACION a partir de líneas con discrepancia.

    items: lista de dicts
        {
            "detalle_id": <int>,
            "cantidad_anterior": <opcional, por defecto la cantidad de sistema capturada>,
            "cantidad_nueva": <opcional, por defecto la cantidad física contada>,
            "causa_discrepancia": <opcional>,
            "observaciones": <opcional>,
        }

    - La auditoría debe estar PENDIENTE_REVISION o COMPLETADA.
    - Cada detalle debe pertenecer a la auditoría y no ser CONFORME.
    - Debe existir el stock vivo de (producto, almacén, estante).
    - cantidad_ajuste = cantidad_nueva - cantidad_anterior; costo_unitario se
      copia del costo promedio actual del stock.
    Todo o nada: un ítem inválido revierte los ajustes ya creados en la llamada.
    """
    auditoria = AuditoriaInventario.objects.select_for_update().get(pk=auditoria.pk)

    if not auditoria.admite_ajustes:
        raise EstadoInvalido(
            "Solo se pueden generar ajustes de auditorías en PENDIENTE_REVISION o COMPLETADA"
        )

    if not items:
        raise EntradaInvalida("Debe indicar al menos un ajuste.")

    ajustes: list[AjusteInventario] = []

    for item in items:
        if item.get("detalle_id") is None:
            raise EntradaInvalida("Cada ajuste debe indicar detalle_id.")

        detalle = asegurar_pertenencia(auditoria, detalle_id=item["detalle_id"])

        if not detalle.tiene_discrepancia:
            raise EntradaInvalida(
                f"Detalle {detalle.pk} no tiene discrepancia; solo se ajustan líneas "
                f"contadas FALTANTE o SOBRANTE"
            )

        producto_id = item.get("producto_id")
        if producto_id is not None and int(producto_id) != detalle.producto_id:
            raise EntradaInvalida(
                f"Producto {producto_id} no corresponde al detalle {detalle.pk}"
            )

        if detalle.ajustes.exclude(estado=EstadoAjuste.RECHAZADO).exists():
            raise EntradaInvalida(f"Detalle {detalle.pk} ya tiene un ajuste vigente")

        causa = item.get("causa_discrepancia")
        if causa and causa not in CausaDiscrepancia.values:
            raise EntradaInvalida(f"Causa de discrepancia inválida: {causa}")

        stock = obtener_stock(
            producto_id=detalle.producto_id,
            almacen_id=auditoria.almacen_id,
            estante_id=auditoria.estante_id,
        )

        anterior = a_cantidad(item.get("cantidad_anterior", detalle.cantidad_sistema), "Cantidad anterior")
        nueva = a_cantidad(item.get("cantidad_nueva", detalle.cantidad_fisica), "Cantidad nueva")
        delta = nueva - anterior
        if delta == 0:
            raise EntradaInvalida(f"El ajuste del detalle {detalle.pk} no modifica la cantidad")

        motivo = motivo_detallado or f"Ajuste por auditoría {auditoria.codigo}"
        if item.get("observaciones"):
            motivo = f"{motivo} - {item['observaciones']}"

        ajuste = AjusteInventario.objects.create(
            codigo=siguiente_codigo(PREFIJO_AJUSTE),
            auditoria=auditoria,
            detalle=detalle,
            producto_id=detalle.producto_id,
            almacen_id=auditoria.almacen_id,
            estante_id=auditoria.estante_id,
            cantidad_anterior=anterior,
            cantidad_ajuste=delta,
            cantidad_nueva=nueva,
            costo_unitario=stock.costo_promedio or Decimal("0"),
            motivo_detallado=motivo,
            tipo_discrepancia=detalle.tipo_discrepancia,
            causa_discrepancia=causa or None,
            documentos_soporte=documentos_soporte or "",
            estado=EstadoAjuste.PENDIENTE_AUTORIZACION,
            usuario_solicita=usuario,
        )
        ajustes.append(ajuste)

    logger.info(
        "Auditoría %s: generados %s ajustes (%s)",
        auditoria.codigo,
        len(ajustes),
        ", ".join(a.codigo for a in ajustes),
    )
    return ajustes


@transaction.atomic
def autorizar_ajuste(
    ajuste: AjusteInventario,
    usuario,
    *,
    autorizado: bool,
    motivo_rechazo: str = "",
    observaciones: str = "",
) -> AjusteInventario:
    """
    PENDIENTE_AUTORIZACION → AUTORIZADO | RECHAZADO.
    Rechazar exige motivo. Nunca toca el stock.
    """
    ajuste = _bloquear(ajuste)

    if ajuste.estado != EstadoAjuste.PENDIENTE_AUTORIZACION:
        raise EstadoInvalido("Solo se pueden autorizar ajustes en estado PENDIENTE_AUTORIZACION")

    if not autorizado and not (motivo_rechazo or "").strip():
        raise EntradaInvalida("Debe proporcionar un motivo de rechazo")

    ajuste.estado = EstadoAjuste.AUTORIZADO if autorizado else EstadoAjuste.RECHAZADO
    ajuste.usuario_autoriza = usuario
    ajuste.fecha_autorizacion = timezone.now()
    ajuste.observaciones_autorizacion = observaciones or ""
    ajuste.motivo_rechazo = "" if autorizado else motivo_rechazo.strip()
    ajuste.save()

    logger.info("Ajuste %s %s por usuario %s", ajuste.codigo, ajuste.estado, usuario.pk)
    return ajuste


@transaction.atomic
def aplicar_ajuste(ajuste: AjusteInventario, usuario) -> AjusteInventario:
    """
    Aplica un ajuste AUTORIZADO al stock vivo.

    - Relee el stock ACTUAL dentro de la misma transacción (bloqueado).
    - nueva_cantidad = cantidad_actual + cantidad_ajuste; si es < 0 → ViolacionInvariante
      (la autorización quedó desfasada respecto a movimientos posteriores).
    - Escribe la cantidad con compare-and-set, agrega un movimiento firmado
      y deja el ajuste APLICADO con el id del movimiento.

    Ante cualquier error se revierte todo y el ajuste sigue AUTORIZADO.
    """
    ajuste = _bloquear(ajuste)

    if ajuste.estado != EstadoAjuste.AUTORIZADO:
        raise EstadoInvalido("Solo se pueden aplicar ajustes AUTORIZADOS")

    stock = obtener_stock(
        producto_id=ajuste.producto_id,
        almacen_id=ajuste.almacen_id,
        estante_id=ajuste.estante_id,
        bloquear=True,
    )

    cantidad_actual = stock.cantidad_disponible or Decimal("0")
    nueva_cantidad = cantidad_actual + ajuste.cantidad_ajuste

    if nueva_cantidad < 0:
        logger.warning(
            "Ajuste %s rechazado: stock actual %s + ajuste %s = %s",
            ajuste.codigo,
            cantidad_actual,
            ajuste.cantidad_ajuste,
            nueva_cantidad,
        )
        raise ViolacionInvariante(
            f"El ajuste resultaría en cantidad negativa ({nueva_cantidad}); "
            f"el stock cambió desde la autorización, reevalúe el ajuste"
        )

    if not comparar_y_actualizar_cantidad(stock.pk, cantidad_actual, nueva_cantidad):
        raise ViolacionInvariante(
            f"El stock de {ajuste.producto_id} cambió durante la aplicación del ajuste {ajuste.codigo}"
        )

    auditoria = ajuste.auditoria
    movimiento = registrar_movimiento_ajuste(
        stock=stock,
        cantidad=ajuste.cantidad_ajuste,
        costo_unitario=ajuste.costo_unitario,
        usuario=usuario,
        motivo=f"Ajuste {ajuste.codigo} - Auditoría {auditoria.codigo} - {ajuste.motivo_detallado}",
        referencia=ajuste.codigo,
    )

    ajuste.estado = EstadoAjuste.APLICADO
    ajuste.fecha_aplicacion = timezone.now()
    ajuste.movimiento_generado = movimiento
    ajuste.save()

    logger.info(
        "Ajuste %s aplicado: stock %s → %s (movimiento %s)",
        ajuste.codigo,
        cantidad_actual,
        nueva_cantidad,
        movimiento.pk,
    )
    return ajuste


@transaction.atomic
def finalizar_y_aplicar_directo(
    auditoria: AuditoriaInventario,
    usuario,
    observaciones: str = "",
) -> tuple[AuditoriaInventario, list[AjusteInventario]]:
    """
    Levantamiento directo: finaliza la auditoría, genera ajustes para todas
    las líneas con discrepancia, los autoriza y aplica, y completa la auditoría.

    Una sola transacción: si algún ajuste dejaría stock negativo no queda nada aplicado.
    """
    auditoria = finalizar_auditoria(auditoria, usuario, observaciones)

    detalles = auditoria.detalle.filter(
        fue_contado=True,
        tipo_discrepancia__in=[TipoDiscrepancia.FALTANTE, TipoDiscrepancia.SOBRANTE],
    ).order_by("id")

    aplicados = []
    if detalles.exists():
        ajustes = generar_ajustes(
            auditoria,
            [{"detalle_id": d.pk} for d in detalles],
            usuario,
            motivo_detallado=f"Ajuste directo por auditoría {auditoria.codigo}",
        )
        for ajuste in ajustes:
            ajuste = autorizar_ajuste(
                ajuste,
                usuario,
                autorizado=True,
                observaciones="Aplicación directa al finalizar el levantamiento",
            )
            aplicados.append(aplicar_ajuste(ajuste, usuario))

    auditoria = completar_auditoria(auditoria, usuario, "Ajustes aplicados automáticamente")
    return auditoria, aplicados


def buscar_ajustes(
    *,
    estado: str | None = None,
    auditoria_id: int | None = None,
    producto_id: int | None = None,
    almacen_id: int | None = None,
    tipo_discrepancia: str | None = None,
    causa_discrepancia: str | None = None,
    usuario_solicita_id: int | None = None,
    usuario_autoriza_id: int | None = None,
    fecha_desde: date | None = None,
    fecha_hasta: date | None = None,
):
    qs = AjusteInventario.objects.select_related(
        "auditoria", "producto", "almacen", "usuario_solicita", "usuario_autoriza"
    )

    if estado:
        qs = qs.filter(estado=estado)
    if auditoria_id:
        qs = qs.filter(auditoria_id=auditoria_id)
    if producto_id:
        qs = qs.filter(producto_id=producto_id)
    if almacen_id:
        qs = qs.filter(almacen_id=almacen_id)
    if tipo_discrepancia:
        qs = qs.filter(tipo_discrepancia=tipo_discrepancia)
    if causa_discrepancia:
        qs = qs.filter(causa_discrepancia=causa_discrepancia)
    if usuario_solicita_id:
        qs = qs.filter(usuario_solicita_id=usuario_solicita_id)
    if usuario_autoriza_id:
        qs = qs.filter(usuario_autoriza_id=usuario_autoriza_id)
    if fecha_desde:
        qs = qs.filter(fecha_solicitud__date__gte=fecha_desde)
    if fecha_hasta:
        qs = qs.filter(fecha_solicitud__date__lte=fecha_hasta)

    return qs.order_by("-fecha_solicitud", "-id")
