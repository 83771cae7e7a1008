# auditorias/services/stock.py
"""
Interfaz angosta sobre el libro de stock vivo.

El motor de auditorías lee el stock al iniciar el conteo y al crear el
snapshot, y solo lo escribe al aplicar un ajuste (comparar_y_actualizar_cantidad).
"""

from decimal import Decimal

from django.db.models import QuerySet
from django.utils import timezone

from auditorias.exceptions import NoEncontrado, ViolacionInvariante
from auditorias.models import (
    AuditoriaInventario,
    CategoriasExplicitas,
    MovimientoInventario,
    StockProducto,
    TodasLasCategorias,
)


def consultar_stock_alcance(auditoria: AuditoriaInventario) -> QuerySet:
    """
    Stock activo dentro del alcance de la auditoría:
    almacén + estante (opcional) + categorías (todas o un conjunto explícito).
    """
    qs = StockProducto.objects.select_related("producto", "estante").filter(
        almacen_id=auditoria.almacen_id,
        estado=StockProducto.ESTADO_ACTIVO,
    )

    if auditoria.estante_id:
        qs = qs.filter(estante_id=auditoria.estante_id)

    filtro = auditoria.filtro_categorias
    if isinstance(filtro, CategoriasExplicitas):
        qs = qs.filter(producto__categoria_id__in=filtro.ids)
    elif not isinstance(filtro, TodasLasCategorias):
        raise TypeError(f"Filtro de categorías no soportado: {filtro!r}")

    return qs.order_by("producto__nombre")


def obtener_stock(
    *,
    producto_id: int,
    almacen_id: int,
    estante_id: int | None = None,
    bloquear: bool = False,
) -> StockProducto:
    """
    Devuelve la fila de stock vivo de (producto, almacén[, estante]).
    Con bloquear=True se usa select_for_update (debe llamarse dentro de una transacción).
    """
    qs = StockProducto.objects.all()
    if bloquear:
        qs = qs.select_for_update()

    filtros = {"producto_id": producto_id, "almacen_id": almacen_id}
    if estante_id:
        filtros["estante_id"] = estante_id

    try:
        return qs.get(**filtros)
    except StockProducto.DoesNotExist:
        raise NoEncontrado(
            f"Inventario para producto {producto_id} no encontrado en el almacén {almacen_id}"
            + (f", estante {estante_id}" if estante_id else "")
        )


def obtener_cantidad(stock_id: int) -> Decimal:
    cantidad = (
        StockProducto.objects.filter(pk=stock_id)
        .values_list("cantidad_disponible", flat=True)
        .first()
    )
    if cantidad is None:
        raise NoEncontrado(f"Stock {stock_id} no encontrado")
    return cantidad


def comparar_y_actualizar_cantidad(stock_id: int, esperada: Decimal, nueva: Decimal) -> bool:
    """
    Escribe `nueva` solo si la cantidad disponible sigue siendo `esperada`.

    Devuelve True si se actualizó. Nunca permite cantidad negativa.
    """
    if nueva < 0:
        raise ViolacionInvariante(
            f"El ajuste resultaría en cantidad negativa ({nueva})"
        )

    actualizados = StockProducto.objects.filter(
        pk=stock_id,
        cantidad_disponible=esperada,
    ).update(cantidad_disponible=nueva, updated_at=timezone.now())

    return actualizados == 1


def registrar_movimiento_ajuste(
    *,
    stock: StockProducto,
    cantidad: Decimal,
    costo_unitario: Decimal,
    usuario,
    motivo: str,
    referencia: str,
) -> MovimientoInventario:
    """
    Agrega un movimiento firmado al libro:
    - cantidad > 0 → ENTRADA_AJUSTE
    - cantidad < 0 → SALIDA_AJUSTE
    """
    if cantidad > 0:
        tipo = MovimientoInventario.TIPO_ENTRADA_AJUSTE
    else:
        tipo = MovimientoInventario.TIPO_SALIDA_AJUSTE

    return MovimientoInventario.objects.create(
        producto_id=stock.producto_id,
        almacen_id=stock.almacen_id,
        tipo=tipo,
        cantidad=cantidad,
        costo_unitario=costo_unitario if costo_unitario else None,
        fecha_movimiento=timezone.now(),
        motivo=motivo,
        referencia=referencia,
        usuario=usuario,
    )
