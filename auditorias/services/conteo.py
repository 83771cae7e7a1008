# auditorias/services/conteo.py

import logging
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.core.files.storage import default_storage
from django.db import transaction
from django.utils import timezone

from auditorias.exceptions import EntradaInvalida, EstadoInvalido, NoEncontrado
from auditorias.models import (
    AuditoriaDetalle,
    AuditoriaEvidencia,
    AuditoriaInventario,
    AuditoriaSerie,
    EstadoAuditoria,
    SerieProducto,
    TipoDiscrepancia,
    TipoEvidencia,
)
from auditorias.services.conciliacion import a_cantidad, calcular_discrepancia

logger = logging.getLogger(__name__)


def asegurar_pertenencia(
    auditoria: AuditoriaInventario,
    *,
    producto_id: int | None = None,
    detalle_id: int | None = None,
) -> AuditoriaDetalle:
    """
    Única verificación de "la línea pertenece a la auditoría", usada por
    conteo, escaneo de series, evidencias y generación de ajustes.

    - Por producto: si el producto no tiene línea en la auditoría → NoEncontrado.
    - Por detalle: si el detalle no existe → NoEncontrado; si es de otra
      auditoría → EntradaInvalida.
    """
    if (producto_id is None) == (detalle_id is None):
        raise ValueError("Indique producto_id o detalle_id, no ambos.")

    if producto_id is not None:
        detalle = AuditoriaDetalle.objects.filter(
            auditoria_id=auditoria.pk,
            producto_id=producto_id,
        ).first()
        if detalle is None:
            raise NoEncontrado(f"Producto con ID {producto_id} no está en esta auditoría")
        return detalle

    detalle = AuditoriaDetalle.objects.filter(pk=detalle_id).first()
    if detalle is None:
        raise NoEncontrado(f"Detalle de auditoría {detalle_id} no encontrado")
    if detalle.auditoria_id != auditoria.pk:
        raise EntradaInvalida(f"Detalle {detalle_id} no pertenece a esta auditoría")
    return detalle


def _exigir_en_progreso(auditoria: AuditoriaInventario, accion: str) -> AuditoriaInventario:
    """
    Lee el estado con la fila bloqueada hasta el fin de la transacción:
    un finalizar concurrente espera a que termine el lote.
    """
    auditoria.estado = (
        AuditoriaInventario.objects.select_for_update()
        .values_list("estado", flat=True)
        .get(pk=auditoria.pk)
    )
    if auditoria.estado != EstadoAuditoria.EN_PROGRESO:
        raise EstadoInvalido(f"Solo se pueden {accion} en auditorías EN_PROGRESO")
    return auditoria


@transaction.atomic
def registrar_conteo(
    auditoria: AuditoriaInventario,
    conteos: list[dict],
    usuario,
    observaciones_generales: str = "",
) -> list[AuditoriaDetalle]:
    """
    Registra conteos físicos de varios productos en una sola transacción.

    conteos: lista de dicts
        {"producto_id": <int>, "cantidad_fisica": <Decimal | str | int>, "observaciones": <str>}

    Cada línea se recalcula con los valores capturados al iniciar el conteo
    (cantidad_sistema, costo_promedio_sistema), nunca con una lectura nueva del
    stock. Si algún producto no está en la auditoría, no se guarda nada.
    """
    _exigir_en_progreso(auditoria, "registrar conteos")

    if not conteos:
        raise EntradaInvalida("Debe registrar al menos un conteo.")

    ahora = timezone.now()
    actualizados = []

    for conteo in conteos:
        if conteo.get("producto_id") is None:
            raise EntradaInvalida("Cada conteo debe indicar producto_id.")
        detalle = asegurar_pertenencia(auditoria, producto_id=conteo["producto_id"])
        cantidad_fisica = a_cantidad(conteo.get("cantidad_fisica"), "Cantidad física")

        resultado = calcular_discrepancia(
            detalle.cantidad_sistema,
            cantidad_fisica,
            detalle.costo_promedio_sistema,
        )

        detalle.cantidad_fisica = cantidad_fisica
        detalle.fue_contado = True
        detalle.discrepancia = resultado.discrepancia
        detalle.discrepancia_valor = resultado.discrepancia_valor.quantize(
            Decimal("0.0001"), rounding=ROUND_HALF_UP
        )
        detalle.porcentaje_discrepancia = resultado.porcentaje.quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        detalle.tipo_discrepancia = resultado.tipo
        detalle.requiere_investigacion = resultado.requiere_investigacion
        detalle.observaciones_conteo = conteo.get("observaciones") or ""
        detalle.usuario_conteo = usuario
        detalle.fecha_conteo = ahora
        detalle.save()
        actualizados.append(detalle)

    if observaciones_generales:
        auditoria.agregar_observacion(f"[Conteo]: {observaciones_generales}")
        auditoria.save(update_fields=["observaciones", "updated_at"])

    logger.info(
        "Auditoría %s: %s conteos registrados por usuario %s",
        auditoria.codigo,
        len(actualizados),
        usuario.pk,
    )
    return actualizados


@transaction.atomic
def escanear_serie(
    auditoria: AuditoriaInventario,
    *,
    producto_id: int,
    numero_serie: str,
    usuario,
    encontrado_fisicamente: bool = True,
    observaciones: str = "",
) -> AuditoriaSerie:
    """
    Registra una serie escaneada contra el registro de series del sistema.
    Solo informativo: no modifica las discrepancias de la línea.
    """
    _exigir_en_progreso(auditoria, "escanear series")

    numero_serie = (numero_serie or "").strip()
    if not numero_serie:
        raise EntradaInvalida("El número de serie es obligatorio.")

    detalle = asegurar_pertenencia(auditoria, producto_id=producto_id)

    serie_sistema = (
        SerieProducto.objects.select_related("stock")
        .filter(numero_serie=numero_serie)
        .first()
    )
    almacen_esperado_id = None
    if serie_sistema is not None and serie_sistema.stock is not None:
        almacen_esperado_id = serie_sistema.stock.almacen_id

    return AuditoriaSerie.objects.create(
        detalle=detalle,
        numero_serie=numero_serie,
        encontrado_fisicamente=encontrado_fisicamente,
        existe_en_sistema=serie_sistema is not None,
        estado_en_sistema=serie_sistema.estado if serie_sistema else "",
        almacen_esperado_id=almacen_esperado_id,
        almacen_real_id=auditoria.almacen_id,
        observaciones=observaciones or "",
        usuario=usuario,
    )


def _ruta_evidencia(auditoria: AuditoriaInventario, nombre: str) -> str:
    prefijo = settings.AUDITORIAS["PREFIJO_EVIDENCIAS"]
    marca = timezone.now().strftime("%Y%m%d%H%M%S%f")
    return f"{prefijo}/{auditoria.pk}/{marca}_{nombre}"


def _guardar_blob(auditoria: AuditoriaInventario, archivo) -> tuple[str, str]:
    nombre = default_storage.save(_ruta_evidencia(auditoria, archivo.name), archivo)
    return nombre, default_storage.url(nombre)


def _borrar_blob(nombre: str) -> None:
    """
    Borra un blob de evidencia. Si ya no existe solo se registra una advertencia.
    """
    if not nombre:
        return
    if not default_storage.exists(nombre):
        logger.warning("Blob de evidencia %s no existe; se continúa sin borrarlo", nombre)
        return
    try:
        default_storage.delete(nombre)
    except FileNotFoundError:
        logger.warning("Blob de evidencia %s desapareció antes de borrarlo", nombre)


@transaction.atomic
def subir_evidencia(
    auditoria: AuditoriaInventario,
    archivo,
    usuario,
    *,
    tipo: str,
    titulo: str = "",
    descripcion: str = "",
    producto_id: int | None = None,
) -> AuditoriaEvidencia:
    """
    Guarda el archivo en el almacenamiento de blobs y registra sus metadatos.
    No afecta el estado de la auditoría.
    """
    if tipo not in TipoEvidencia.values:
        raise EntradaInvalida(f"Tipo de evidencia inválido: {tipo}")
    if archivo is None:
        raise EntradaInvalida("Debe adjuntar un archivo.")

    if producto_id is not None:
        asegurar_pertenencia(auditoria, producto_id=producto_id)

    ruta, url = _guardar_blob(auditoria, archivo)

    return AuditoriaEvidencia.objects.create(
        auditoria=auditoria,
        tipo=tipo,
        titulo=titulo or "",
        descripcion=descripcion or "",
        nombre_archivo=archivo.name,
        ruta_archivo=ruta,
        url=url,
        mimetype=getattr(archivo, "content_type", "") or "",
        size=archivo.size or 0,
        producto_id=producto_id,
        usuario_subida=usuario,
    )


@transaction.atomic
def reemplazar_evidencia(evidencia: AuditoriaEvidencia, archivo, usuario) -> AuditoriaEvidencia:
    """
    Sustituye el archivo de una evidencia. El blob anterior se borra al confirmar
    la transacción; si ya no existía, solo queda una advertencia en el log.
    """
    anterior = evidencia.ruta_archivo

    ruta, url = _guardar_blob(evidencia.auditoria, archivo)
    evidencia.nombre_archivo = archivo.name
    evidencia.ruta_archivo = ruta
    evidencia.url = url
    evidencia.mimetype = getattr(archivo, "content_type", "") or ""
    evidencia.size = archivo.size or 0
    evidencia.usuario_subida = usuario
    evidencia.save()

    transaction.on_commit(lambda: _borrar_blob(anterior))
    return evidencia


@transaction.atomic
def eliminar_evidencia(evidencia: AuditoriaEvidencia) -> None:
    ruta = evidencia.ruta_archivo
    evidencia.delete()
    transaction.on_commit(lambda: _borrar_blob(ruta))


def obtener_discrepancias(auditoria: AuditoriaInventario) -> dict:
    """
    Líneas con discrepancia (FALTANTE/SOBRANTE) y un resumen:
    cantidad por tipo, valor absoluto de faltantes y sobrantes y valor neto.
    """
    discrepancias = list(
        auditoria.detalle.select_related("producto", "producto__categoria")
        .filter(
            fue_contado=True,
            tipo_discrepancia__in=[TipoDiscrepancia.FALTANTE, TipoDiscrepancia.SOBRANTE],
        )
        .order_by("tipo_discrepancia", "-discrepancia_valor")
    )

    faltantes = [d for d in discrepancias if d.tipo_discrepancia == TipoDiscrepancia.FALTANTE]
    sobrantes = [d for d in discrepancias if d.tipo_discrepancia == TipoDiscrepancia.SOBRANTE]

    resumen = {
        "total_discrepancias": len(discrepancias),
        "total_faltantes": len(faltantes),
        "total_sobrantes": len(sobrantes),
        "valor_faltantes": sum((abs(d.discrepancia_valor or 0) for d in faltantes), Decimal("0")),
        "valor_sobrantes": sum((abs(d.discrepancia_valor or 0) for d in sobrantes), Decimal("0")),
        "valor_neto": sum((d.discrepancia_valor or Decimal("0") for d in discrepancias), Decimal("0")),
    }

    return {
        "resumen": resumen,
        "discrepancias": discrepancias,
        "faltantes": faltantes,
        "sobrantes": sobrantes,
    }
