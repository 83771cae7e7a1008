# auditorias/services/planificacion.py

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from dateutil.relativedelta import relativedelta
from django.db import transaction
from django.utils import timezone

from auditorias.exceptions import EntradaInvalida, EstadoInvalido, NoEncontrado
from auditorias.models import (
    Almacen,
    AuditoriaDetalle,
    AuditoriaInventario,
    CategoriasExplicitas,
    Estante,
    EstadoAuditoria,
    TipoAuditoria,
    TipoDiscrepancia,
    TodasLasCategorias,
)
from auditorias.services.codigos import PREFIJO_AUDITORIA, siguiente_codigo
from auditorias.services.snapshots import crear_snapshot
from auditorias.services.stock import consultar_stock_alcance

logger = logging.getLogger(__name__)

# Frecuencia → (meses entre auditorías, auditorías por año)
FRECUENCIAS = {
    "TRIMESTRAL": (3, 4),
    "SEMESTRAL": (6, 2),
    "ANUAL": (12, 1),
}


def obtener_auditoria(auditoria_id: int) -> AuditoriaInventario:
    try:
        return AuditoriaInventario.objects.select_related("almacen", "estante").get(pk=auditoria_id)
    except AuditoriaInventario.DoesNotExist:
        raise NoEncontrado(f"Auditoría con ID {auditoria_id} no encontrada")


def _bloquear(auditoria: AuditoriaInventario) -> AuditoriaInventario:
    """Relee la auditoría con bloqueo de fila (dentro de una transacción)."""
    return AuditoriaInventario.objects.select_for_update().get(pk=auditoria.pk)


def _validar_alcance(almacen_id: int, estante_id: int | None) -> tuple[Almacen, Estante | None]:
    """
    Valida que el almacén exista y, si se indica estante, que pertenezca a ese almacén.
    """
    almacen = Almacen.objects.filter(pk=almacen_id).first()
    if almacen is None:
        raise NoEncontrado(f"Almacén con ID {almacen_id} no encontrado")

    estante = None
    if estante_id:
        estante = Estante.objects.filter(pk=estante_id).first()
        if estante is None:
            raise NoEncontrado(f"Estante con ID {estante_id} no encontrado")
        if estante.almacen_id != almacen.id:
            raise EntradaInvalida(
                f"Estante con ID {estante_id} no pertenece al almacén {almacen_id}"
            )

    return almacen, estante


def _filtro_desde(categorias):
    """
    None → todas las categorías; iterable no vacío → conjunto explícito.
    """
    if categorias is None:
        return TodasLasCategorias()
    ids = frozenset(int(c) for c in categorias)
    if not ids:
        raise EntradaInvalida("Debe indicar al menos una categoría o incluir todas.")
    return CategoriasExplicitas(ids=ids)


@transaction.atomic
def crear_auditoria(
    *,
    almacen_id: int,
    tipo: str,
    usuario,
    estante_id: int | None = None,
    categorias=None,
    fecha_planificada: date | None = None,
    observaciones: str = "",
) -> AuditoriaInventario:
    """
    Crea una auditoría en estado PLANIFICADA con código AUD-YYYYMM-####.
    """
    if tipo not in TipoAuditoria.values:
        raise EntradaInvalida(f"Tipo de auditoría inválido: {tipo}")

    almacen, estante = _validar_alcance(almacen_id, estante_id)

    auditoria = AuditoriaInventario(
        codigo=siguiente_codigo(PREFIJO_AUDITORIA),
        tipo=tipo,
        estado=EstadoAuditoria.PLANIFICADA,
        almacen=almacen,
        estante=estante,
        usuario_planifica=usuario,
        fecha_planificada=fecha_planificada,
        observaciones=observaciones or "",
    )
    auditoria.filtro_categorias = _filtro_desde(categorias)
    auditoria.save()

    logger.info("Auditoría %s creada para almacén %s", auditoria.codigo, almacen.id)
    return auditoria


CAMPOS_EDITABLES = {"tipo", "estante_id", "categorias", "fecha_planificada", "observaciones"}


@transaction.atomic
def actualizar_auditoria(auditoria: AuditoriaInventario, **campos) -> AuditoriaInventario:
    """
    Modifica la planificación. Solo permitido en estado PLANIFICADA.

    `categorias`: None → todas; lista → conjunto explícito.
    """
    auditoria = _bloquear(auditoria)

    if not auditoria.es_editable:
        raise EstadoInvalido("Solo se pueden actualizar auditorías en estado PLANIFICADA")

    desconocidos = set(campos) - CAMPOS_EDITABLES
    if desconocidos:
        raise EntradaInvalida(f"Campos no editables: {', '.join(sorted(desconocidos))}")

    if "tipo" in campos:
        if campos["tipo"] not in TipoAuditoria.values:
            raise EntradaInvalida(f"Tipo de auditoría inválido: {campos['tipo']}")
        auditoria.tipo = campos["tipo"]

    if "estante_id" in campos:
        _, estante = _validar_alcance(auditoria.almacen_id, campos["estante_id"])
        auditoria.estante = estante

    if "categorias" in campos:
        auditoria.filtro_categorias = _filtro_desde(campos["categorias"])

    if "fecha_planificada" in campos:
        auditoria.fecha_planificada = campos["fecha_planificada"]

    if "observaciones" in campos:
        auditoria.observaciones = campos["observaciones"] or ""

    auditoria.save()
    return auditoria


@transaction.atomic
def cancelar_auditoria(auditoria: AuditoriaInventario, usuario, motivo: str = "") -> AuditoriaInventario:
    """
    Cancela la auditoría. No borra datos: solo cambia el estado y deja nota.
    """
    auditoria = _bloquear(auditoria)

    if auditoria.estado in (EstadoAuditoria.COMPLETADA, EstadoAuditoria.CANCELADA):
        raise EstadoInvalido("No se puede cancelar una auditoría completada o ya cancelada")

    nota = f"[CANCELADA por usuario {usuario.pk}]"
    if motivo:
        nota = f"{nota} {motivo}"

    auditoria.estado = EstadoAuditoria.CANCELADA
    auditoria.agregar_observacion(nota)
    auditoria.save(update_fields=["estado", "observaciones", "updated_at"])

    logger.info("Auditoría %s cancelada por usuario %s", auditoria.codigo, usuario.pk)
    return auditoria


@transaction.atomic
def iniciar_conteo(auditoria: AuditoriaInventario, usuario, observaciones: str = "") -> AuditoriaInventario:
    """
    Inicia el conteo físico:
    - Cambia estado a EN_PROGRESO.
    - Asigna usuario ejecutor y fecha de inicio.
    - Crea una línea de detalle por producto del alcance, capturando cantidad
      de sistema, reservada y costo promedio de este instante.

    Si la auditoría ya tiene detalle (inicialización previa parcial) no se
    regenera: solo se cambia estado, ejecutor y fecha.
    """
    auditoria = _bloquear(auditoria)

    if auditoria.estado != EstadoAuditoria.PLANIFICADA:
        raise EstadoInvalido("Solo se puede iniciar una auditoría en estado PLANIFICADA")

    if not auditoria.detalle.exists():
        stocks = list(consultar_stock_alcance(auditoria))
        if not stocks:
            raise EntradaInvalida(
                "No se encontró inventario para auditar con los filtros especificados"
            )

        AuditoriaDetalle.objects.bulk_create(
            [
                AuditoriaDetalle(
                    auditoria=auditoria,
                    producto_id=stock.producto_id,
                    stock=stock,
                    cantidad_sistema=stock.cantidad_disponible or Decimal("0"),
                    cantidad_reservada_sistema=stock.cantidad_reservada or Decimal("0"),
                    costo_promedio_sistema=stock.costo_promedio or Decimal("0"),
                    fue_contado=False,
                )
                for stock in stocks
            ]
        )

    auditoria.estado = EstadoAuditoria.EN_PROGRESO
    auditoria.usuario_ejecuta = usuario
    auditoria.fecha_inicio = timezone.now()
    auditoria.agregar_observacion(observaciones)
    auditoria.save()

    logger.info(
        "Conteo iniciado en auditoría %s (%s líneas)",
        auditoria.codigo,
        auditoria.detalle.count(),
    )
    return auditoria


@transaction.atomic
def finalizar_auditoria(auditoria: AuditoriaInventario, usuario, observaciones: str = "") -> AuditoriaInventario:
    """
    Cierra el conteo y calcula el resumen:

        total_items_auditados        = líneas contadas
        total_items_conformes        = contadas CONFORME
        total_items_con_discrepancia = contadas SOBRANTE o FALTANTE
        valor_total_discrepancias    = suma(discrepancia_valor)
        porcentaje_accuracy          = conformes / contadas * 100

    Pasa a PENDIENTE_REVISION y crea el snapshot (idempotente) en la misma transacción.
    """
    auditoria = _bloquear(auditoria)

    if auditoria.estado != EstadoAuditoria.EN_PROGRESO:
        raise EstadoInvalido("Solo se puede finalizar una auditoría EN_PROGRESO")

    contados = list(auditoria.detalle.filter(fue_contado=True))
    if not contados:
        raise EntradaInvalida("No se han registrado conteos. Debe contar al menos un producto.")

    conformes = sum(1 for d in contados if d.tipo_discrepancia == TipoDiscrepancia.CONFORME)
    con_discrepancia = sum(1 for d in contados if d.tiene_discrepancia)
    valor_total = sum((d.discrepancia_valor or Decimal("0") for d in contados), Decimal("0"))
    accuracy = (Decimal(conformes) / Decimal(len(contados)) * Decimal("100")).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )

    auditoria.estado = EstadoAuditoria.PENDIENTE_REVISION
    auditoria.fecha_fin = timezone.now()
    auditoria.total_items_auditados = len(contados)
    auditoria.total_items_conformes = conformes
    auditoria.total_items_con_discrepancia = con_discrepancia
    auditoria.valor_total_discrepancias = valor_total
    auditoria.porcentaje_accuracy = accuracy
    if observaciones:
        auditoria.agregar_observacion(f"[Finalización]: {observaciones}")
    auditoria.save()

    crear_snapshot(auditoria, usuario=usuario)

    logger.info(
        "Auditoría %s finalizada: %s contados, accuracy %s%%, valor discrepancias %s",
        auditoria.codigo,
        len(contados),
        accuracy,
        valor_total,
    )
    return auditoria


@transaction.atomic
def completar_auditoria(auditoria: AuditoriaInventario, usuario, observaciones: str = "") -> AuditoriaInventario:
    """
    Revisión aprobada: PENDIENTE_REVISION → COMPLETADA.
    """
    auditoria = _bloquear(auditoria)

    if auditoria.estado != EstadoAuditoria.PENDIENTE_REVISION:
        raise EstadoInvalido("Solo se puede completar una auditoría PENDIENTE_REVISION")

    auditoria.estado = EstadoAuditoria.COMPLETADA
    auditoria.usuario_revisa = usuario
    auditoria.fecha_revision = timezone.now()
    if observaciones:
        auditoria.agregar_observacion(f"[Revisión]: {observaciones}")
    auditoria.save()

    logger.info("Auditoría %s completada por usuario %s", auditoria.codigo, usuario.pk)
    return auditoria


@transaction.atomic
def programar_auditorias(
    *,
    frecuencia: str,
    tipo: str,
    fecha_inicio: date,
    usuario,
    almacen_id: int | None = None,
) -> list[AuditoriaInventario]:
    """
    Programa auditorías PLANIFICADAS para el próximo año a partir de fecha_inicio.

    - TRIMESTRAL → 4 auditorías cada 3 meses
    - SEMESTRAL  → 2 auditorías cada 6 meses
    - ANUAL      → 1 auditoría
    Una serie por almacén activo, o solo para el almacén indicado.
    """
    if frecuencia not in FRECUENCIAS:
        raise EntradaInvalida(f"Frecuencia inválida: {frecuencia}")
    if tipo not in (TipoAuditoria.COMPLETA, TipoAuditoria.PARCIAL):
        raise EntradaInvalida("Solo se pueden programar auditorías COMPLETA o PARCIAL")

    if almacen_id is not None:
        almacen, _ = _validar_alcance(almacen_id, None)
        almacenes = [almacen]
    else:
        almacenes = list(Almacen.objects.filter(activo=True))

    intervalo, cantidad = FRECUENCIAS[frecuencia]

    creadas = []
    for almacen in almacenes:
        for n in range(cantidad):
            creadas.append(
                crear_auditoria(
                    almacen_id=almacen.id,
                    tipo=tipo,
                    usuario=usuario,
                    fecha_planificada=fecha_inicio + relativedelta(months=n * intervalo),
                    observaciones=f"Auditoría programada ({frecuencia} {n + 1}/{cantidad})",
                )
            )

    logger.info("Programadas %s auditorías %s", len(creadas), frecuencia)
    return creadas


def buscar_auditorias(
    *,
    tipo: str | None = None,
    estado: str | None = None,
    almacen_id: int | None = None,
    estante_id: int | None = None,
    usuario_planifica_id: int | None = None,
    usuario_ejecuta_id: int | None = None,
    fecha_desde: date | None = None,
    fecha_hasta: date | None = None,
):
    """
    Lista auditorías con filtros opcionales, más recientes primero.
    """
    qs = AuditoriaInventario.objects.select_related(
        "almacen", "estante", "usuario_planifica", "usuario_ejecuta"
    )

    if tipo:
        qs = qs.filter(tipo=tipo)
    if estado:
        qs = qs.filter(estado=estado)
    if almacen_id:
        qs = qs.filter(almacen_id=almacen_id)
    if estante_id:
        qs = qs.filter(estante_id=estante_id)
    if usuario_planifica_id:
        qs = qs.filter(usuario_planifica_id=usuario_planifica_id)
    if usuario_ejecuta_id:
        qs = qs.filter(usuario_ejecuta_id=usuario_ejecuta_id)
    if fecha_desde:
        qs = qs.filter(created_at__date__gte=fecha_desde)
    if fecha_hasta:
        qs = qs.filter(created_at__date__lte=fecha_hasta)

    return qs.order_by("-created_at", "-id")
