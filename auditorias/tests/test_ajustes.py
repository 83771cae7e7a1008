from decimal import Decimal

from django.test import TestCase

from auditorias.exceptions import (
    EntradaInvalida,
    EstadoInvalido,
    NoEncontrado,
    ViolacionInvariante,
)
from auditorias.models import (
    AjusteInventario,
    CausaDiscrepancia,
    EstadoAjuste,
    EstadoAuditoria,
    MovimientoInventario,
    StockProducto,
    TipoAuditoria,
    TipoDiscrepancia,
)
from auditorias.services.ajustes import (
    aplicar_ajuste,
    autorizar_ajuste,
    buscar_ajustes,
    finalizar_y_aplicar_directo,
    generar_ajustes,
    obtener_ajuste,
)
from auditorias.services.conteo import registrar_conteo
from auditorias.services.planificacion import (
    completar_auditoria,
    crear_auditoria,
    finalizar_auditoria,
    iniciar_conteo,
)
from auditorias.tests.base import EscenarioAuditoriaMixin


class AjustesBaseMixin(EscenarioAuditoriaMixin):
    def setUp(self):
        super().setUp()
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.COMPLETA,
            usuario=self.user,
        )
        self.auditoria = iniciar_conteo(auditoria, self.user)
        registrar_conteo(
            self.auditoria,
            [
                {"producto_id": self.p1.id, "cantidad_fisica": Decimal("8")},
                {"producto_id": self.p2.id, "cantidad_fisica": Decimal("5")},
                {"producto_id": self.p3.id, "cantidad_fisica": Decimal("2")},
            ],
            self.user,
        )
        self.d1 = self.auditoria.detalle.get(producto=self.p1)
        self.d2 = self.auditoria.detalle.get(producto=self.p2)
        self.d3 = self.auditoria.detalle.get(producto=self.p3)

    def _finalizar(self):
        self.auditoria = finalizar_auditoria(self.auditoria, self.user)
        return self.auditoria

    def _ajuste_autorizado(self, detalle=None):
        self._finalizar()
        (ajuste,) = generar_ajustes(self.auditoria, [{"detalle_id": (detalle or self.d1).id}], self.user)
        return autorizar_ajuste(ajuste, self.supervisor, autorizado=True)


class GenerarAjustesTests(AjustesBaseMixin, TestCase):
    def test_genera_desde_lineas_con_discrepancia(self):
        self._finalizar()

        ajustes = generar_ajustes(
            self.auditoria,
            [
                {"detalle_id": self.d1.id, "causa_discrepancia": CausaDiscrepancia.MERMA},
                {"detalle_id": self.d3.id, "observaciones": "Ingreso sin registrar"},
            ],
            self.user,
            documentos_soporte="acta-12.pdf",
        )

        self.assertEqual(len(ajustes), 2)
        a1, a3 = ajustes
        self.assertRegex(a1.codigo, r"^AJU-\d{6}-0001$")
        self.assertRegex(a3.codigo, r"^AJU-\d{6}-0002$")

        self.assertEqual(a1.estado, EstadoAjuste.PENDIENTE_AUTORIZACION)
        self.assertEqual(a1.cantidad_anterior, Decimal("10"))
        self.assertEqual(a1.cantidad_nueva, Decimal("8"))
        self.assertEqual(a1.cantidad_ajuste, Decimal("-2"))
        self.assertEqual(a1.costo_unitario, Decimal("2"))
        self.assertEqual(a1.tipo_discrepancia, TipoDiscrepancia.FALTANTE)
        self.assertEqual(a1.causa_discrepancia, CausaDiscrepancia.MERMA)
        self.assertEqual(a1.motivo_detallado, f"Ajuste por auditoría {self.auditoria.codigo}")
        self.assertEqual(a1.documentos_soporte, "acta-12.pdf")
        self.assertEqual(a1.usuario_solicita, self.user)

        self.assertEqual(a3.cantidad_ajuste, Decimal("2"))
        self.assertIn("Ingreso sin registrar", a3.motivo_detallado)

    def test_no_toca_el_stock(self):
        self._finalizar()
        generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

        self.s1.refresh_from_db()
        self.assertEqual(self.s1.cantidad_disponible, Decimal("10"))
        self.assertFalse(MovimientoInventario.objects.exists())

    def test_costo_unitario_del_stock_actual(self):
        self._finalizar()
        self.s1.costo_promedio = Decimal("3.5")
        self.s1.save()

        (ajuste,) = generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

        self.assertEqual(ajuste.costo_unitario, Decimal("3.5"))

    def test_cantidades_explicitas(self):
        self._finalizar()

        (ajuste,) = generar_ajustes(
            self.auditoria,
            [{"detalle_id": self.d1.id, "cantidad_anterior": "10", "cantidad_nueva": "7"}],
            self.user,
        )

        self.assertEqual(ajuste.cantidad_ajuste, Decimal("-3"))

    def test_exige_pendiente_revision_o_completada(self):
        with self.assertRaises(EstadoInvalido):
            generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

    def test_permite_completada(self):
        self._finalizar()
        completar_auditoria(self.auditoria, self.supervisor)

        ajustes = generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

        self.assertEqual(len(ajustes), 1)

    def test_linea_conforme(self):
        self._finalizar()

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(self.auditoria, [{"detalle_id": self.d2.id}], self.user)

    def test_detalle_de_otra_auditoria(self):
        self._finalizar()
        otra = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.SORPRESA, usuario=self.user)
        otra = iniciar_conteo(otra, self.user)

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(self.auditoria, [{"detalle_id": otra.detalle.first().id}], self.user)

    def test_sin_stock_vivo(self):
        self._finalizar()
        StockProducto.objects.filter(pk=self.s1.pk).delete()

        with self.assertRaises(NoEncontrado):
            generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

    def test_ajuste_sin_cambio(self):
        self._finalizar()

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(
                self.auditoria,
                [{"detalle_id": self.d1.id, "cantidad_anterior": "8", "cantidad_nueva": "8"}],
                self.user,
            )

    def test_cantidad_con_mas_de_tres_decimales(self):
        self._finalizar()

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(
                self.auditoria,
                [{"detalle_id": self.d1.id, "cantidad_nueva": "7.0005"}],
                self.user,
            )
        self.assertFalse(AjusteInventario.objects.exists())

    def test_un_item_invalido_revierte_todos(self):
        self._finalizar()

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(
                self.auditoria,
                [{"detalle_id": self.d1.id}, {"detalle_id": self.d2.id}],
                self.user,
            )
        self.assertFalse(AjusteInventario.objects.exists())

    def test_no_duplica_ajuste_vigente(self):
        self._finalizar()
        generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

    def test_lista_vacia(self):
        self._finalizar()

        with self.assertRaises(EntradaInvalida):
            generar_ajustes(self.auditoria, [], self.user)


class AutorizarAjusteTests(AjustesBaseMixin, TestCase):
    def setUp(self):
        super().setUp()
        self._finalizar()
        (self.ajuste,) = generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

    def test_autorizar(self):
        ajuste = autorizar_ajuste(self.ajuste, self.supervisor, autorizado=True, observaciones="OK")

        self.assertEqual(ajuste.estado, EstadoAjuste.AUTORIZADO)
        self.assertEqual(ajuste.usuario_autoriza, self.supervisor)
        self.assertIsNotNone(ajuste.fecha_autorizacion)
        self.assertEqual(ajuste.observaciones_autorizacion, "OK")

    def test_rechazar_exige_motivo(self):
        with self.assertRaises(EntradaInvalida):
            autorizar_ajuste(self.ajuste, self.supervisor, autorizado=False)
        with self.assertRaises(EntradaInvalida):
            autorizar_ajuste(self.ajuste, self.supervisor, autorizado=False, motivo_rechazo="   ")

        self.ajuste.refresh_from_db()
        self.assertEqual(self.ajuste.estado, EstadoAjuste.PENDIENTE_AUTORIZACION)

    def test_rechazar(self):
        ajuste = autorizar_ajuste(
            self.ajuste,
            self.supervisor,
            autorizado=False,
            motivo_rechazo="Recontar",
        )

        self.assertEqual(ajuste.estado, EstadoAjuste.RECHAZADO)
        self.assertEqual(ajuste.motivo_rechazo, "Recontar")

    def test_rechazado_permite_generar_otro(self):
        autorizar_ajuste(self.ajuste, self.supervisor, autorizado=False, motivo_rechazo="Recontar")

        (nuevo,) = generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

        self.assertNotEqual(nuevo.codigo, self.ajuste.codigo)

    def test_solo_desde_pendiente(self):
        autorizar_ajuste(self.ajuste, self.supervisor, autorizado=True)

        with self.assertRaises(EstadoInvalido):
            autorizar_ajuste(self.ajuste, self.supervisor, autorizado=True)


class AplicarAjusteTests(AjustesBaseMixin, TestCase):
    def test_aplica_faltante(self):
        ajuste = self._ajuste_autorizado()

        ajuste = aplicar_ajuste(ajuste, self.supervisor)

        self.s1.refresh_from_db()
        self.assertEqual(self.s1.cantidad_disponible, Decimal("8"))
        self.assertEqual(ajuste.estado, EstadoAjuste.APLICADO)
        self.assertIsNotNone(ajuste.fecha_aplicacion)

        movimiento = ajuste.movimiento_generado
        self.assertEqual(MovimientoInventario.objects.count(), 1)
        self.assertEqual(movimiento.tipo, MovimientoInventario.TIPO_SALIDA_AJUSTE)
        self.assertEqual(movimiento.cantidad, Decimal("-2"))
        self.assertEqual(movimiento.costo_total, Decimal("-4"))
        self.assertEqual(movimiento.referencia, ajuste.codigo)
        self.assertIn(self.auditoria.codigo, movimiento.motivo)
        self.assertEqual(movimiento.usuario, self.supervisor)

    def test_aplica_sobrante(self):
        ajuste = self._ajuste_autorizado(self.d3)

        ajuste = aplicar_ajuste(ajuste, self.supervisor)

        self.s3.refresh_from_db()
        self.assertEqual(self.s3.cantidad_disponible, Decimal("2"))
        self.assertEqual(ajuste.movimiento_generado.tipo, MovimientoInventario.TIPO_ENTRADA_AJUSTE)

    def test_parte_del_stock_actual(self):
        ajuste = self._ajuste_autorizado()
        # Entró mercadería después de la autorización
        StockProducto.objects.filter(pk=self.s1.pk).update(cantidad_disponible=Decimal("15"))

        aplicar_ajuste(ajuste, self.supervisor)

        self.s1.refresh_from_db()
        self.assertEqual(self.s1.cantidad_disponible, Decimal("13"))

    def test_no_deja_stock_negativo(self):
        ajuste = self._ajuste_autorizado()
        StockProducto.objects.filter(pk=self.s1.pk).update(cantidad_disponible=Decimal("1"))

        with self.assertLogs("auditorias.services.ajustes", level="WARNING"):
            with self.assertRaises(ViolacionInvariante):
                aplicar_ajuste(ajuste, self.supervisor)

        self.s1.refresh_from_db()
        ajuste.refresh_from_db()
        self.assertEqual(self.s1.cantidad_disponible, Decimal("1"))
        self.assertEqual(ajuste.estado, EstadoAjuste.AUTORIZADO)
        self.assertFalse(MovimientoInventario.objects.exists())

    def test_exige_autorizado(self):
        self._finalizar()
        (ajuste,) = generar_ajustes(self.auditoria, [{"detalle_id": self.d1.id}], self.user)

        with self.assertRaises(EstadoInvalido):
            aplicar_ajuste(ajuste, self.supervisor)

    def test_segunda_aplicacion_falla_sin_efectos(self):
        ajuste = self._ajuste_autorizado()
        aplicar_ajuste(ajuste, self.supervisor)

        with self.assertRaises(EstadoInvalido):
            aplicar_ajuste(ajuste, self.supervisor)

        self.s1.refresh_from_db()
        self.assertEqual(self.s1.cantidad_disponible, Decimal("8"))
        self.assertEqual(MovimientoInventario.objects.count(), 1)

    def test_obtener_y_buscar(self):
        ajuste = self._ajuste_autorizado()

        self.assertEqual(obtener_ajuste(ajuste.id), ajuste)
        self.assertEqual(list(buscar_ajustes(estado=EstadoAjuste.AUTORIZADO)), [ajuste])
        self.assertFalse(buscar_ajustes(estado=EstadoAjuste.APLICADO).exists())
        self.assertEqual(list(buscar_ajustes(auditoria_id=self.auditoria.id)), [ajuste])
        with self.assertRaises(NoEncontrado):
            obtener_ajuste(555555)


class FinalizarYAplicarDirectoTests(AjustesBaseMixin, TestCase):
    def test_aplica_todas_las_discrepancias(self):
        auditoria, ajustes = finalizar_y_aplicar_directo(self.auditoria, self.supervisor, "Levantamiento")

        self.assertEqual(auditoria.estado, EstadoAuditoria.COMPLETADA)
        self.assertEqual(len(ajustes), 2)
        self.assertTrue(all(a.estado == EstadoAjuste.APLICADO for a in ajustes))

        self.s1.refresh_from_db()
        self.s2.refresh_from_db()
        self.s3.refresh_from_db()
        self.assertEqual(self.s1.cantidad_disponible, Decimal("8"))
        self.assertEqual(self.s2.cantidad_disponible, Decimal("5"))
        self.assertEqual(self.s3.cantidad_disponible, Decimal("2"))
        self.assertEqual(MovimientoInventario.objects.count(), 2)
        self.assertTrue(hasattr(auditoria, "snapshot"))

    def test_negativo_revierte_todo(self):
        StockProducto.objects.filter(pk=self.s1.pk).update(cantidad_disponible=Decimal("1"))

        with self.assertRaises(ViolacionInvariante):
            finalizar_y_aplicar_directo(self.auditoria, self.supervisor)

        self.auditoria.refresh_from_db()
        self.assertEqual(self.auditoria.estado, EstadoAuditoria.EN_PROGRESO)
        self.assertFalse(AjusteInventario.objects.exists())
        self.assertFalse(MovimientoInventario.objects.exists())
        self.s3.refresh_from_db()
        self.assertEqual(self.s3.cantidad_disponible, Decimal("0"))
