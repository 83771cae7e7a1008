from datetime import date
from decimal import Decimal

from django.test import TestCase

from auditorias.exceptions import EntradaInvalida, EstadoInvalido, NoEncontrado
from auditorias.models import (
    AuditoriaInventario,
    CategoriasExplicitas,
    EstadoAuditoria,
    SnapshotInventario,
    TipoAuditoria,
    TodasLasCategorias,
)
from auditorias.services.conteo import registrar_conteo
from auditorias.services.planificacion import (
    actualizar_auditoria,
    buscar_auditorias,
    cancelar_auditoria,
    completar_auditoria,
    crear_auditoria,
    finalizar_auditoria,
    iniciar_conteo,
    obtener_auditoria,
    programar_auditorias,
)
from auditorias.tests.base import EscenarioAuditoriaMixin


class CrearAuditoriaTests(EscenarioAuditoriaMixin, TestCase):
    def test_crea_planificada_con_codigo(self):
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.COMPLETA,
            usuario=self.user,
        )

        self.assertEqual(auditoria.estado, EstadoAuditoria.PLANIFICADA)
        self.assertRegex(auditoria.codigo, r"^AUD-\d{6}-0001$")
        self.assertEqual(auditoria.filtro_categorias, TodasLasCategorias())
        self.assertEqual(auditoria.usuario_planifica, self.user)

    def test_codigos_consecutivos(self):
        a1 = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.COMPLETA, usuario=self.user)
        a2 = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.CICLICA, usuario=self.user)

        self.assertTrue(a1.codigo.endswith("-0001"))
        self.assertTrue(a2.codigo.endswith("-0002"))

    def test_almacen_inexistente(self):
        with self.assertRaises(NoEncontrado):
            crear_auditoria(almacen_id=99999, tipo=TipoAuditoria.COMPLETA, usuario=self.user)

    def test_estante_inexistente(self):
        with self.assertRaises(NoEncontrado):
            crear_auditoria(
                almacen_id=self.almacen.id,
                tipo=TipoAuditoria.PARCIAL,
                usuario=self.user,
                estante_id=99999,
            )

    def test_estante_de_otro_almacen(self):
        with self.assertRaises(EntradaInvalida):
            crear_auditoria(
                almacen_id=self.almacen.id,
                tipo=TipoAuditoria.PARCIAL,
                usuario=self.user,
                estante_id=self.estante_otro.id,
            )
        self.assertEqual(AuditoriaInventario.objects.count(), 0)

    def test_categorias_explicitas(self):
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.POR_CATEGORIA,
            usuario=self.user,
            categorias=[self.pinturas.id],
        )

        self.assertEqual(
            auditoria.filtro_categorias,
            CategoriasExplicitas(ids=frozenset({self.pinturas.id})),
        )

    def test_lista_de_categorias_vacia_es_invalida(self):
        with self.assertRaises(EntradaInvalida):
            crear_auditoria(
                almacen_id=self.almacen.id,
                tipo=TipoAuditoria.POR_CATEGORIA,
                usuario=self.user,
                categorias=[],
            )

    def test_tipo_invalido(self):
        with self.assertRaises(EntradaInvalida):
            crear_auditoria(almacen_id=self.almacen.id, tipo="MENSUAL", usuario=self.user)


class ActualizarYCancelarTests(EscenarioAuditoriaMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.COMPLETA,
            usuario=self.user,
        )

    def test_actualiza_en_planificada(self):
        auditoria = actualizar_auditoria(
            self.auditoria,
            tipo=TipoAuditoria.PARCIAL,
            estante_id=self.estante_a.id,
            categorias=[self.ferreteria.id],
            fecha_planificada=date(2024, 6, 1),
        )

        self.assertEqual(auditoria.tipo, TipoAuditoria.PARCIAL)
        self.assertEqual(auditoria.estante, self.estante_a)
        self.assertFalse(auditoria.incluir_todas_categorias)
        self.assertEqual(auditoria.categorias_a_auditar, [self.ferreteria.id])

    def test_volver_a_todas_las_categorias(self):
        actualizar_auditoria(self.auditoria, categorias=[self.ferreteria.id])
        auditoria = actualizar_auditoria(self.auditoria, categorias=None)

        self.assertEqual(auditoria.filtro_categorias, TodasLasCategorias())

    def test_actualizar_con_estante_de_otro_almacen(self):
        with self.assertRaises(EntradaInvalida):
            actualizar_auditoria(self.auditoria, estante_id=self.estante_otro.id)

    def test_campo_no_editable(self):
        with self.assertRaises(EntradaInvalida):
            actualizar_auditoria(self.auditoria, estado=EstadoAuditoria.COMPLETADA)

    def test_no_actualiza_fuera_de_planificada(self):
        iniciar_conteo(self.auditoria, self.user)

        with self.assertRaises(EstadoInvalido):
            actualizar_auditoria(self.auditoria, observaciones="tarde")

    def test_cancelar_deja_nota(self):
        auditoria = cancelar_auditoria(self.auditoria, self.user, "Inventario de cierre movido")

        self.assertEqual(auditoria.estado, EstadoAuditoria.CANCELADA)
        self.assertIn(f"[CANCELADA por usuario {self.user.pk}]", auditoria.observaciones)
        self.assertIn("Inventario de cierre movido", auditoria.observaciones)

    def test_cancelar_en_progreso(self):
        iniciar_conteo(self.auditoria, self.user)
        auditoria = cancelar_auditoria(self.auditoria, self.user)

        self.assertEqual(auditoria.estado, EstadoAuditoria.CANCELADA)
        # El detalle se conserva
        self.assertEqual(auditoria.detalle.count(), 3)

    def test_no_cancelar_dos_veces(self):
        cancelar_auditoria(self.auditoria, self.user)

        with self.assertRaises(EstadoInvalido):
            cancelar_auditoria(self.auditoria, self.user)

    def test_obtener_auditoria_inexistente(self):
        with self.assertRaises(NoEncontrado):
            obtener_auditoria(424242)


class IniciarConteoTests(EscenarioAuditoriaMixin, TestCase):
    def test_crea_una_linea_por_producto_con_valores_capturados(self):
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.COMPLETA,
            usuario=self.user,
        )
        auditoria = iniciar_conteo(auditoria, self.supervisor, "Turno mañana")

        self.assertEqual(auditoria.estado, EstadoAuditoria.EN_PROGRESO)
        self.assertEqual(auditoria.usuario_ejecuta, self.supervisor)
        self.assertIsNotNone(auditoria.fecha_inicio)
        self.assertIn("Turno mañana", auditoria.observaciones)

        lineas = {d.producto_id: d for d in auditoria.detalle.all()}
        self.assertEqual(set(lineas), {self.p1.id, self.p2.id, self.p3.id})
        self.assertEqual(lineas[self.p1.id].cantidad_sistema, Decimal("10"))
        self.assertEqual(lineas[self.p2.id].cantidad_reservada_sistema, Decimal("1"))
        self.assertEqual(lineas[self.p2.id].costo_promedio_sistema, Decimal("10"))
        self.assertFalse(any(d.fue_contado for d in lineas.values()))

    def test_filtra_por_estante(self):
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.PARCIAL,
            usuario=self.user,
            estante_id=self.estante_b.id,
        )
        auditoria = iniciar_conteo(auditoria, self.user)

        self.assertEqual(
            list(auditoria.detalle.values_list("producto_id", flat=True)),
            [self.p3.id],
        )

    def test_filtra_por_categorias(self):
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.POR_CATEGORIA,
            usuario=self.user,
            categorias=[self.pinturas.id],
        )
        auditoria = iniciar_conteo(auditoria, self.user)

        self.assertEqual(
            set(auditoria.detalle.values_list("producto_id", flat=True)),
            {self.p2.id, self.p3.id},
        )

    def test_ignora_stock_inactivo(self):
        self.s2.estado = self.s2.ESTADO_INACTIVO
        self.s2.save()
        auditoria = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.COMPLETA, usuario=self.user)
        auditoria = iniciar_conteo(auditoria, self.user)

        self.assertFalse(auditoria.detalle.filter(producto=self.p2).exists())

    def test_alcance_vacio(self):
        auditoria = crear_auditoria(
            almacen_id=self.otro_almacen.id,
            tipo=TipoAuditoria.COMPLETA,
            usuario=self.user,
        )

        with self.assertRaises(EntradaInvalida):
            iniciar_conteo(auditoria, self.user)

        auditoria.refresh_from_db()
        self.assertEqual(auditoria.estado, EstadoAuditoria.PLANIFICADA)

    def test_no_reinicia_fuera_de_planificada(self):
        auditoria = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.COMPLETA, usuario=self.user)
        iniciar_conteo(auditoria, self.user)

        with self.assertRaises(EstadoInvalido):
            iniciar_conteo(auditoria, self.user)

    def test_reentrada_no_regenera_lineas(self):
        auditoria = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.COMPLETA, usuario=self.user)
        iniciar_conteo(auditoria, self.user)
        ids_originales = set(auditoria.detalle.values_list("id", flat=True))

        # Simula una inicialización previa que dejó líneas pero no cambió el estado
        AuditoriaInventario.objects.filter(pk=auditoria.pk).update(estado=EstadoAuditoria.PLANIFICADA)
        self.s1.cantidad_disponible = Decimal("99")
        self.s1.save()

        auditoria = iniciar_conteo(auditoria, self.user)

        self.assertEqual(set(auditoria.detalle.values_list("id", flat=True)), ids_originales)
        self.assertEqual(
            auditoria.detalle.get(producto=self.p1).cantidad_sistema,
            Decimal("10"),
        )


class FinalizarYCompletarTests(EscenarioAuditoriaMixin, TestCase):
    def setUp(self):
        super().setUp()
        auditoria = crear_auditoria(
            almacen_id=self.almacen.id,
            tipo=TipoAuditoria.COMPLETA,
            usuario=self.user,
        )
        self.auditoria = iniciar_conteo(auditoria, self.user)

    def _contar_todo(self):
        registrar_conteo(
            self.auditoria,
            [
                {"producto_id": self.p1.id, "cantidad_fisica": Decimal("8")},
                {"producto_id": self.p2.id, "cantidad_fisica": Decimal("5")},
                {"producto_id": self.p3.id, "cantidad_fisica": Decimal("2")},
            ],
            self.user,
        )

    def test_finalizar_calcula_resumen_y_snapshot(self):
        self._contar_todo()

        auditoria = finalizar_auditoria(self.auditoria, self.user, "Sin novedades")

        self.assertEqual(auditoria.estado, EstadoAuditoria.PENDIENTE_REVISION)
        self.assertIsNotNone(auditoria.fecha_fin)
        self.assertEqual(auditoria.total_items_auditados, 3)
        self.assertEqual(auditoria.total_items_conformes, 1)
        self.assertEqual(auditoria.total_items_con_discrepancia, 2)
        self.assertEqual(auditoria.valor_total_discrepancias, Decimal("-2"))
        self.assertEqual(auditoria.porcentaje_accuracy, Decimal("33.33"))
        self.assertIn("[Finalización]: Sin novedades", auditoria.observaciones)
        self.assertEqual(SnapshotInventario.objects.filter(auditoria=auditoria).count(), 1)

    def test_finalizar_ignora_lineas_sin_contar(self):
        registrar_conteo(
            self.auditoria,
            [{"producto_id": self.p2.id, "cantidad_fisica": Decimal("5")}],
            self.user,
        )

        auditoria = finalizar_auditoria(self.auditoria, self.user)

        self.assertEqual(auditoria.total_items_auditados, 1)
        self.assertEqual(auditoria.porcentaje_accuracy, Decimal("100.00"))

    def test_finalizar_sin_conteos(self):
        with self.assertRaises(EntradaInvalida):
            finalizar_auditoria(self.auditoria, self.user)

        self.auditoria.refresh_from_db()
        self.assertEqual(self.auditoria.estado, EstadoAuditoria.EN_PROGRESO)
        self.assertFalse(SnapshotInventario.objects.exists())

    def test_finalizar_fuera_de_en_progreso(self):
        self._contar_todo()
        finalizar_auditoria(self.auditoria, self.user)

        with self.assertRaises(EstadoInvalido):
            finalizar_auditoria(self.auditoria, self.user)

    def test_completar(self):
        self._contar_todo()
        finalizar_auditoria(self.auditoria, self.user)

        auditoria = completar_auditoria(self.auditoria, self.supervisor, "Revisado")

        self.assertEqual(auditoria.estado, EstadoAuditoria.COMPLETADA)
        self.assertEqual(auditoria.usuario_revisa, self.supervisor)
        self.assertIsNotNone(auditoria.fecha_revision)

    def test_completar_exige_pendiente_revision(self):
        with self.assertRaises(EstadoInvalido):
            completar_auditoria(self.auditoria, self.supervisor)

    def test_no_cancelar_completada(self):
        self._contar_todo()
        finalizar_auditoria(self.auditoria, self.user)
        completar_auditoria(self.auditoria, self.supervisor)

        with self.assertRaises(EstadoInvalido):
            cancelar_auditoria(self.auditoria, self.user)


class ProgramarYBuscarTests(EscenarioAuditoriaMixin, TestCase):
    def test_trimestral_por_almacen(self):
        creadas = programar_auditorias(
            frecuencia="TRIMESTRAL",
            tipo=TipoAuditoria.COMPLETA,
            fecha_inicio=date(2024, 1, 31),
            usuario=self.user,
            almacen_id=self.almacen.id,
        )

        self.assertEqual(len(creadas), 4)
        self.assertEqual(
            [a.fecha_planificada for a in creadas],
            [date(2024, 1, 31), date(2024, 4, 30), date(2024, 7, 31), date(2024, 10, 31)],
        )
        self.assertTrue(all(a.estado == EstadoAuditoria.PLANIFICADA for a in creadas))

    def test_semestral_para_todos_los_almacenes_activos(self):
        self.otro_almacen.activo = False
        self.otro_almacen.save()

        creadas = programar_auditorias(
            frecuencia="SEMESTRAL",
            tipo=TipoAuditoria.PARCIAL,
            fecha_inicio=date(2024, 3, 1),
            usuario=self.user,
        )

        self.assertEqual(len(creadas), 2)
        self.assertTrue(all(a.almacen_id == self.almacen.id for a in creadas))

    def test_frecuencia_o_tipo_invalidos(self):
        with self.assertRaises(EntradaInvalida):
            programar_auditorias(
                frecuencia="MENSUAL",
                tipo=TipoAuditoria.COMPLETA,
                fecha_inicio=date(2024, 1, 1),
                usuario=self.user,
            )
        with self.assertRaises(EntradaInvalida):
            programar_auditorias(
                frecuencia="ANUAL",
                tipo=TipoAuditoria.SORPRESA,
                fecha_inicio=date(2024, 1, 1),
                usuario=self.user,
            )

    def test_buscar_por_estado_y_almacen(self):
        a1 = crear_auditoria(almacen_id=self.almacen.id, tipo=TipoAuditoria.COMPLETA, usuario=self.user)
        a2 = crear_auditoria(almacen_id=self.otro_almacen.id, tipo=TipoAuditoria.COMPLETA, usuario=self.user)
        cancelar_auditoria(a2, self.user)

        self.assertEqual(list(buscar_auditorias(almacen_id=self.almacen.id)), [a1])
        self.assertEqual(list(buscar_auditorias(estado=EstadoAuditoria.CANCELADA)), [a2])
        self.assertEqual(buscar_auditorias().count(), 2)
