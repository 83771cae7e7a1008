# auditorias/services/snapshots.py

import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from auditorias.models import AuditoriaInventario, SnapshotDetalle, SnapshotInventario
from auditorias.services.stock import consultar_stock_alcance

logger = logging.getLogger(__name__)


@transaction.atomic
def crear_snapshot(auditoria: AuditoriaInventario, usuario=None) -> SnapshotInventario:
    """
    Crea el snapshot de inventario post-auditoría.

    - Idempotente: si la auditoría ya tiene snapshot, lo devuelve sin cambios.
    - Relee el stock VIVO del alcance (no copia las líneas de detalle): entre el
      inicio del conteo y el cierre pueden haber ocurrido movimientos.
    - Cantidad total por producto = disponible + reservada.
    """
    existente = SnapshotInventario.objects.filter(auditoria=auditoria).first()
    if existente is not None:
        return existente

    ahora = timezone.localtime(timezone.now())
    periodo = f"{ahora.year}-{ahora.month:02d}"
    codigo = f"SNP-{ahora.year}{ahora.month:02d}-{auditoria.pk:04d}"

    stocks = list(consultar_stock_alcance(auditoria))

    filas = []
    total_cantidad = Decimal("0")
    valor_total = Decimal("0")
    for stock in stocks:
        disponible = stock.cantidad_disponible or Decimal("0")
        reservada = stock.cantidad_reservada or Decimal("0")
        costo = stock.costo_promedio or Decimal("0")
        cantidad = disponible + reservada
        valor = (cantidad * costo).quantize(Decimal("0.0001"))

        total_cantidad += cantidad
        valor_total += valor
        filas.append(
            SnapshotDetalle(
                producto_id=stock.producto_id,
                almacen_id=stock.almacen_id,
                estante_id=stock.estante_id,
                cantidad_disponible=disponible,
                cantidad_reservada=reservada,
                cantidad_total=cantidad,
                costo_promedio=costo,
                valor_total=valor,
            )
        )

    snapshot = SnapshotInventario.objects.create(
        codigo=codigo,
        auditoria=auditoria,
        almacen_id=auditoria.almacen_id,
        periodo=periodo,
        descripcion=f"Snapshot de auditoría {auditoria.codigo}",
        total_items=len(filas),
        total_cantidad=total_cantidad,
        valor_total_inventario=valor_total,
        creado_por=usuario or auditoria.usuario_ejecuta or auditoria.usuario_planifica,
    )

    for fila in filas:
        fila.snapshot = snapshot
    SnapshotDetalle.objects.bulk_create(filas)

    logger.info(
        "Snapshot %s creado para auditoría %s (%s productos, valor %s)",
        snapshot.codigo,
        auditoria.codigo,
        len(filas),
        valor_total,
    )
    return snapshot
