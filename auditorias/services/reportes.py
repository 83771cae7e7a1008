# auditorias/services/reportes.py
"""
Reporte PDF de auditoría. El render lo hace un servicio externo tipo jsreport
(plantilla jsrender + receta chrome-pdf); aquí solo se arma el payload.
"""

import logging

import httpx
from django.conf import settings

from auditorias.exceptions import ServicioExternoError
from auditorias.models import AuditoriaInventario, SnapshotInventario
from auditorias.services.conteo import obtener_discrepancias

logger = logging.getLogger(__name__)

PLANTILLA_REPORTE = """
<h1>Auditoría {{:auditoria.codigo}}</h1>
<p>{{:auditoria.tipo}} - {{:auditoria.almacen}} - {{:auditoria.estado}}</p>
<p>Accuracy: {{:auditoria.porcentaje_accuracy}}%</p>
<table>
  <tr><th>Código</th><th>Producto</th><th>Sistema</th><th>Físico</th><th>Diferencia</th><th>Valor</th><th>Tipo</th></tr>
  {{for lineas}}
  <tr><td>{{:codigo}}</td><td>{{:producto}}</td><td>{{:cantidad_sistema}}</td><td>{{:cantidad_fisica}}</td>
      <td>{{:discrepancia}}</td><td>{{:discrepancia_valor}}</td><td>{{:tipo_discrepancia}}</td></tr>
  {{/for}}
</table>
<h2>Ajustes</h2>
<table>
  <tr><th>Código</th><th>Producto</th><th>Ajuste</th><th>Estado</th></tr>
  {{for ajustes}}
  <tr><td>{{:codigo}}</td><td>{{:producto}}</td><td>{{:cantidad_ajuste}}</td><td>{{:estado}}</td></tr>
  {{/for}}
</table>
"""


def _texto(valor) -> str:
    return "" if valor is None else str(valor)


def construir_datos_reporte(auditoria: AuditoriaInventario) -> dict:
    """
    Arma el payload del reporte: cabecera, líneas, resumen de discrepancias,
    ajustes y totales del snapshot (si existe). Solo tipos JSON.
    """
    lineas = [
        {
            "codigo": d.producto.codigo,
            "producto": d.producto.nombre,
            "cantidad_sistema": _texto(d.cantidad_sistema),
            "cantidad_fisica": _texto(d.cantidad_fisica),
            "discrepancia": _texto(d.discrepancia),
            "discrepancia_valor": _texto(d.discrepancia_valor),
            "tipo_discrepancia": d.tipo_discrepancia or "SIN_CONTAR",
            "requiere_investigacion": d.requiere_investigacion,
        }
        for d in auditoria.detalle.select_related("producto").order_by("producto__nombre")
    ]

    resumen = {
        clave: _texto(valor)
        for clave, valor in obtener_discrepancias(auditoria)["resumen"].items()
    }

    ajustes = [
        {
            "codigo": a.codigo,
            "producto": a.producto.nombre,
            "cantidad_ajuste": _texto(a.cantidad_ajuste),
            "valor_ajuste": _texto(a.valor_ajuste),
            "estado": a.estado,
        }
        for a in auditoria.ajustes.select_related("producto").order_by("codigo")
    ]

    snapshot = None
    try:
        snp = auditoria.snapshot
    except SnapshotInventario.DoesNotExist:
        snp = None
    if snp is not None:
        snapshot = {
            "codigo": snp.codigo,
            "periodo": snp.periodo,
            "total_items": snp.total_items,
            "total_cantidad": _texto(snp.total_cantidad),
            "valor_total_inventario": _texto(snp.valor_total_inventario),
        }

    return {
        "auditoria": {
            "codigo": auditoria.codigo,
            "tipo": auditoria.tipo,
            "estado": auditoria.estado,
            "almacen": str(auditoria.almacen),
            "estante": str(auditoria.estante) if auditoria.estante_id else "",
            "fecha_inicio": auditoria.fecha_inicio.isoformat() if auditoria.fecha_inicio else "",
            "fecha_fin": auditoria.fecha_fin.isoformat() if auditoria.fecha_fin else "",
            "total_items_auditados": auditoria.total_items_auditados,
            "total_items_conformes": auditoria.total_items_conformes,
            "total_items_con_discrepancia": auditoria.total_items_con_discrepancia,
            "valor_total_discrepancias": _texto(auditoria.valor_total_discrepancias),
            "porcentaje_accuracy": _texto(auditoria.porcentaje_accuracy),
            "observaciones": auditoria.observaciones,
        },
        "lineas": lineas,
        "resumen": resumen,
        "ajustes": ajustes,
        "snapshot": snapshot,
    }


def generar_reporte_pdf(auditoria: AuditoriaInventario) -> bytes:
    """
    Envía la plantilla y los datos al renderizador y devuelve el PDF.
    Errores de red o HTTP → ServicioExternoError (sin reintentos).
    """
    config = settings.AUDITORIAS
    url = config["REPORTES_URL"]
    payload = {
        "template": {
            "content": PLANTILLA_REPORTE,
            "engine": "jsrender",
            "recipe": "chrome-pdf",
        },
        "data": construir_datos_reporte(auditoria),
    }

    try:
        with httpx.Client(timeout=config["REPORTES_TIMEOUT"]) as client:
            resp = client.post(url, json=payload)
            resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.error(
            "Renderizador de reportes respondió %s para auditoría %s",
            exc.response.status_code,
            auditoria.codigo,
        )
        raise ServicioExternoError(
            f"El servicio de reportes respondió {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("No se pudo contactar el renderizador de reportes (%s): %s", url, exc)
        raise ServicioExternoError("No se pudo generar el reporte PDF") from exc

    logger.info("Reporte PDF generado para auditoría %s (%s bytes)", auditoria.codigo, len(resp.content))
    return resp.content
