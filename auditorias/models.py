from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.db import models


class TimeStampedModel(models.Model):
    """
    Modelo base abstracto con timestamps estándar.
    """
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ---------------------------------------------------------------------------
# Datos maestros y libro de stock (colaboradores externos del motor)
# ---------------------------------------------------------------------------


class Almacen(TimeStampedModel):
    """
    Representa un almacén físico (bodega, sucursal, centro de distribución).
    """
    nombre = models.CharField(max_length=100)
    ubicacion = models.CharField(max_length=255, blank=True)
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Almacén"
        verbose_name_plural = "Almacenes"
        unique_together = ("nombre", "ubicacion")
        ordering = ["nombre"]

    def __str__(self):
        if self.ubicacion:
            return f"{self.nombre} - {self.ubicacion}"
        return self.nombre


class Estante(TimeStampedModel):
    """
    Estante o ubicación dentro de un almacén.
    """
    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="estantes",
    )
    nombre = models.CharField(max_length=100)
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Estante"
        verbose_name_plural = "Estantes"
        unique_together = ("almacen", "nombre")
        ordering = ["almacen", "nombre"]

    def __str__(self):
        return f"{self.nombre} ({self.almacen})"


class CategoriaProducto(TimeStampedModel):
    nombre = models.CharField(max_length=100, unique=True)
    codigo = models.CharField(max_length=20, blank=True)
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Categoría de producto"
        verbose_name_plural = "Categorías de producto"
        ordering = ["nombre"]

    def __str__(self):
        return self.nombre


class Producto(TimeStampedModel):
    """
    Catálogo de productos. El stock se maneja en StockProducto
    por almacén, no aquí.
    """
    codigo = models.CharField(max_length=50, unique=True)
    nombre = models.CharField(max_length=150)
    descripcion = models.TextField(blank=True)
    categoria = models.ForeignKey(
        CategoriaProducto,
        on_delete=models.SET_NULL,
        related_name="productos",
        null=True,
        blank=True,
    )
    maneja_series = models.BooleanField(default=False)
    activo = models.BooleanField(default=True)

    class Meta:
        ordering = ["nombre"]

    def __str__(self):
        return f"{self.codigo} - {self.nombre}"


class StockProducto(TimeStampedModel):
    """
    Stock vivo de un producto en un almacén (opcionalmente ubicado en un estante).

    Es el único recurso compartido que el motor de auditorías escribe, y solo
    lo hace a través de auditorias.services.stock.
    """

    ESTADO_ACTIVO = "ACTIVO"
    ESTADO_INACTIVO = "INACTIVO"

    ESTADO_CHOICES = [
        (ESTADO_ACTIVO, "Activo"),
        (ESTADO_INACTIVO, "Inactivo"),
    ]

    producto = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="stocks",
    )
    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="stocks",
    )
    estante = models.ForeignKey(
        Estante,
        on_delete=models.SET_NULL,
        related_name="stocks",
        null=True,
        blank=True,
    )
    cantidad_disponible = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=0,
        help_text="Cantidad disponible en este almacén, en unidad del producto.",
    )
    cantidad_reservada = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=0,
        help_text="Cantidad comprometida (reservas) que sigue físicamente en el almacén.",
    )
    costo_promedio = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        default=0,
        help_text="Costo promedio ponderado por unidad para este producto en este almacén.",
    )
    estado = models.CharField(
        max_length=10,
        choices=ESTADO_CHOICES,
        default=ESTADO_ACTIVO,
    )

    class Meta:
        verbose_name = "Stock de producto"
        verbose_name_plural = "Stocks de productos"
        unique_together = ("producto", "almacen")

    def __str__(self):
        return f"{self.producto} @ {self.almacen}: {self.cantidad_disponible}"

    @property
    def cantidad_total(self) -> Decimal:
        return (self.cantidad_disponible or Decimal("0")) + (self.cantidad_reservada or Decimal("0"))

    @property
    def valor_total(self) -> Decimal:
        """
        Valor total del stock (disponible + reservado) al costo promedio.
        """
        return self.cantidad_total * (self.costo_promedio or Decimal("0"))


class MovimientoInventario(TimeStampedModel):
    """
    Libro de movimientos de inventario (solo se agregan filas).
    La cantidad es positiva para entradas y negativa para salidas.
    """

    TIPO_ENTRADA_AJUSTE = "ENTRADA_AJUSTE"
    TIPO_SALIDA_AJUSTE = "SALIDA_AJUSTE"

    TIPO_CHOICES = [
        (TIPO_ENTRADA_AJUSTE, "Entrada por ajuste de auditoría"),
        (TIPO_SALIDA_AJUSTE, "Salida por ajuste de auditoría"),
    ]

    producto = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="movimientos",
    )
    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="movimientos",
    )
    tipo = models.CharField(
        max_length=30,
        choices=TIPO_CHOICES,
    )
    cantidad = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        help_text="Cantidad del movimiento. Positiva para entrada, negativa para salida.",
    )
    costo_unitario = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        null=True,
        blank=True,
    )
    costo_total = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        default=0,
        help_text="Costo total del movimiento (cantidad * costo_unitario) cuando aplica.",
    )
    fecha_movimiento = models.DateTimeField()
    motivo = models.TextField(blank=True)
    referencia = models.CharField(
        max_length=100,
        blank=True,
        help_text="Código del ajuste que originó el movimiento.",
    )
    usuario = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="movimientos_inventario",
    )

    class Meta:
        verbose_name = "Movimiento de inventario"
        verbose_name_plural = "Movimientos de inventario"
        ordering = ["-fecha_movimiento", "-created_at"]

    def __str__(self):
        return f"{self.tipo} - {self.producto} @ {self.almacen} ({self.cantidad})"

    def save(self, *args, **kwargs):
        if self.costo_unitario is not None and self.cantidad is not None:
            self.costo_total = (self.cantidad * self.costo_unitario).quantize(Decimal("0.0001"))
        super().save(*args, **kwargs)


class SerieProducto(TimeStampedModel):
    """
    Registro de números de serie conocidos por el sistema.
    """
    numero_serie = models.CharField(max_length=100, unique=True)
    stock = models.ForeignKey(
        StockProducto,
        on_delete=models.SET_NULL,
        related_name="series",
        null=True,
        blank=True,
    )
    estado = models.CharField(max_length=30, default="DISPONIBLE")

    class Meta:
        verbose_name = "Serie de producto"
        verbose_name_plural = "Series de productos"

    def __str__(self):
        return self.numero_serie


# ---------------------------------------------------------------------------
# Auditorías
# ---------------------------------------------------------------------------


class TipoAuditoria(models.TextChoices):
    COMPLETA = "COMPLETA", "Completa"
    PARCIAL = "PARCIAL", "Parcial"
    CICLICA = "CICLICA", "Cíclica"
    POR_CATEGORIA = "POR_CATEGORIA", "Por categoría"
    SORPRESA = "SORPRESA", "Sorpresa"


class EstadoAuditoria(models.TextChoices):
    PLANIFICADA = "PLANIFICADA", "Planificada"
    EN_PROGRESO = "EN_PROGRESO", "En progreso"
    PENDIENTE_REVISION = "PENDIENTE_REVISION", "Pendiente de revisión"
    COMPLETADA = "COMPLETADA", "Completada"
    CANCELADA = "CANCELADA", "Cancelada"


class TipoDiscrepancia(models.TextChoices):
    SOBRANTE = "SOBRANTE", "Sobrante"
    FALTANTE = "FALTANTE", "Faltante"
    CONFORME = "CONFORME", "Conforme"


class CausaDiscrepancia(models.TextChoices):
    ERROR_CONTEO = "ERROR_CONTEO", "Error de conteo"
    ERROR_REGISTRO = "ERROR_REGISTRO", "Error de registro"
    ROBO = "ROBO", "Robo"
    DANIO = "DANIO", "Daño"
    VENCIMIENTO = "VENCIMIENTO", "Vencimiento"
    MERMA = "MERMA", "Merma"
    OTRO = "OTRO", "Otro"


class EstadoAjuste(models.TextChoices):
    PENDIENTE_AUTORIZACION = "PENDIENTE_AUTORIZACION", "Pendiente de autorización"
    AUTORIZADO = "AUTORIZADO", "Autorizado"
    RECHAZADO = "RECHAZADO", "Rechazado"
    APLICADO = "APLICADO", "Aplicado"


class TipoEvidencia(models.TextChoices):
    ESTANTE = "ESTANTE", "Estante"
    PRODUCTO = "PRODUCTO", "Producto"
    GENERAL = "GENERAL", "General"
    DISCREPANCIA = "DISCREPANCIA", "Discrepancia"


class TipoPeriodo(models.TextChoices):
    MENSUAL = "MENSUAL", "Mensual"
    TRIMESTRAL = "TRIMESTRAL", "Trimestral"
    ANUAL = "ANUAL", "Anual"


@dataclass(frozen=True)
class TodasLasCategorias:
    """La auditoría cubre todas las categorías."""


@dataclass(frozen=True)
class CategoriasExplicitas:
    ids: frozenset


class AuditoriaInventario(TimeStampedModel):
    """
    Cabecera de una auditoría física de inventario.
    Ej: Auditoría cíclica del almacén principal, estante A1, categoría Herramientas.
    """

    codigo = models.CharField(max_length=20, unique=True)
    tipo = models.CharField(max_length=20, choices=TipoAuditoria.choices)
    estado = models.CharField(
        max_length=20,
        choices=EstadoAuditoria.choices,
        default=EstadoAuditoria.PLANIFICADA,
    )

    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="auditorias",
    )
    estante = models.ForeignKey(
        Estante,
        on_delete=models.PROTECT,
        related_name="auditorias",
        null=True,
        blank=True,
    )
    incluir_todas_categorias = models.BooleanField(default=True)
    categorias_a_auditar = models.JSONField(
        default=list,
        blank=True,
        help_text="IDs de categorías a auditar cuando no se incluyen todas.",
    )

    usuario_planifica = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="auditorias_planificadas",
    )
    usuario_ejecuta = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="auditorias_ejecutadas",
        null=True,
        blank=True,
    )
    usuario_revisa = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="auditorias_revisadas",
        null=True,
        blank=True,
    )

    fecha_planificada = models.DateField(null=True, blank=True)
    fecha_inicio = models.DateTimeField(null=True, blank=True)
    fecha_fin = models.DateTimeField(null=True, blank=True)
    fecha_revision = models.DateTimeField(null=True, blank=True)
    observaciones = models.TextField(blank=True)

    # Resumen calculado al finalizar
    total_items_auditados = models.PositiveIntegerField(default=0)
    total_items_conformes = models.PositiveIntegerField(default=0)
    total_items_con_discrepancia = models.PositiveIntegerField(default=0)
    valor_total_discrepancias = models.DecimalField(
        max_digits=26,
        decimal_places=4,
        default=0,
    )
    porcentaje_accuracy = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name = "Auditoría de inventario"
        verbose_name_plural = "Auditorías de inventario"

    def __str__(self):
        return f"{self.codigo} - {self.almacen} ({self.estado})"

    @property
    def filtro_categorias(self):
        """
        Devuelve TodasLasCategorias() o CategoriasExplicitas(ids).
        """
        if self.incluir_todas_categorias:
            return TodasLasCategorias()
        return CategoriasExplicitas(ids=frozenset(int(i) for i in self.categorias_a_auditar or []))

    @filtro_categorias.setter
    def filtro_categorias(self, filtro):
        if isinstance(filtro, TodasLasCategorias):
            self.incluir_todas_categorias = True
            self.categorias_a_auditar = []
        elif isinstance(filtro, CategoriasExplicitas):
            self.incluir_todas_categorias = False
            self.categorias_a_auditar = sorted(filtro.ids)
        else:
            raise TypeError(f"Filtro de categorías no soportado: {filtro!r}")

    @property
    def es_editable(self) -> bool:
        """Solo se puede modificar la planificación mientras está PLANIFICADA."""
        return self.estado == EstadoAuditoria.PLANIFICADA

    @property
    def admite_ajustes(self) -> bool:
        return self.estado in (EstadoAuditoria.PENDIENTE_REVISION, EstadoAuditoria.COMPLETADA)

    def agregar_observacion(self, texto: str) -> None:
        if not texto:
            return
        if self.observaciones:
            self.observaciones = f"{self.observaciones}\n{texto}"
        else:
            self.observaciones = texto


class AuditoriaDetalle(models.Model):
    """
    Detalle de la auditoría, por producto.

    cantidad_sistema, cantidad_reservada_sistema y costo_promedio_sistema se
    capturan al iniciar el conteo y no se vuelven a consultar.
    """

    auditoria = models.ForeignKey(
        AuditoriaInventario,
        on_delete=models.CASCADE,
        related_name="detalle",
    )
    producto = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="auditorias_detalle",
    )
    stock = models.ForeignKey(
        StockProducto,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="auditorias_detalle",
    )

    cantidad_sistema = models.DecimalField(max_digits=14, decimal_places=3)
    cantidad_reservada_sistema = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    costo_promedio_sistema = models.DecimalField(max_digits=12, decimal_places=4, default=0)

    fue_contado = models.BooleanField(default=False)
    cantidad_fisica = models.DecimalField(max_digits=14, decimal_places=3, null=True, blank=True)

    # Diferencia = cantidad_fisica - cantidad_sistema
    discrepancia = models.DecimalField(max_digits=14, decimal_places=3, null=True, blank=True)
    discrepancia_valor = models.DecimalField(max_digits=24, decimal_places=4, null=True, blank=True)
    # Con cantidades de 14 dígitos (3 decimales) el porcentaje llega a 17 dígitos enteros
    porcentaje_discrepancia = models.DecimalField(max_digits=20, decimal_places=2, null=True, blank=True)
    tipo_discrepancia = models.CharField(
        max_length=10,
        choices=TipoDiscrepancia.choices,
        null=True,
        blank=True,
    )
    requiere_investigacion = models.BooleanField(default=False)

    observaciones_conteo = models.CharField(max_length=255, blank=True)
    usuario_conteo = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="auditorias_conteos",
    )
    fecha_conteo = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Detalle de auditoría"
        verbose_name_plural = "Detalles de auditoría"
        unique_together = ("auditoria", "producto")
        ordering = ["producto__nombre"]

    def __str__(self):
        return f"{self.producto} - {self.auditoria.codigo}"

    @property
    def tiene_discrepancia(self) -> bool:
        return self.fue_contado and self.tipo_discrepancia in (
            TipoDiscrepancia.SOBRANTE,
            TipoDiscrepancia.FALTANTE,
        )


class AuditoriaSerie(models.Model):
    """
    Serie escaneada durante la auditoría. Solo informativa: no afecta discrepancias.
    """

    detalle = models.ForeignKey(
        AuditoriaDetalle,
        on_delete=models.CASCADE,
        related_name="series",
    )
    numero_serie = models.CharField(max_length=100)
    encontrado_fisicamente = models.BooleanField(default=True)
    existe_en_sistema = models.BooleanField(default=False)
    estado_en_sistema = models.CharField(max_length=30, blank=True)
    almacen_esperado = models.ForeignKey(
        Almacen,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    almacen_real = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="+",
    )
    observaciones = models.CharField(max_length=255, blank=True)
    usuario = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    fecha_escaneo = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Serie auditada"
        verbose_name_plural = "Series auditadas"

    def __str__(self):
        return self.numero_serie

    @property
    def ubicacion_correcta(self) -> bool:
        return self.almacen_esperado_id == self.almacen_real_id


class AuditoriaEvidencia(models.Model):
    auditoria = models.ForeignKey(
        AuditoriaInventario,
        on_delete=models.CASCADE,
        related_name="evidencias",
    )
    tipo = models.CharField(max_length=15, choices=TipoEvidencia.choices)
    titulo = models.CharField(max_length=200, blank=True)
    descripcion = models.TextField(blank=True)
    nombre_archivo = models.CharField(max_length=255)
    ruta_archivo = models.CharField(
        max_length=500,
        help_text="Nombre del archivo dentro del almacenamiento de blobs.",
    )
    url = models.CharField(max_length=500, blank=True)
    mimetype = models.CharField(max_length=100, blank=True)
    size = models.PositiveIntegerField(default=0)
    producto = models.ForeignKey(
        Producto,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    usuario_subida = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    fecha_subida = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Evidencia de auditoría"
        verbose_name_plural = "Evidencias de auditoría"
        ordering = ["-fecha_subida", "-id"]

    def __str__(self):
        return f"{self.tipo} - {self.nombre_archivo}"


class AjusteInventario(TimeStampedModel):
    """
    Corrección propuesta a partir de una discrepancia de auditoría.
    Solo aplicar_ajuste modifica el stock vivo.
    """

    codigo = models.CharField(max_length=20, unique=True)
    auditoria = models.ForeignKey(
        AuditoriaInventario,
        on_delete=models.PROTECT,
        related_name="ajustes",
    )
    detalle = models.ForeignKey(
        AuditoriaDetalle,
        on_delete=models.PROTECT,
        related_name="ajustes",
    )
    producto = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="ajustes",
    )
    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="ajustes",
    )
    estante = models.ForeignKey(
        Estante,
        on_delete=models.PROTECT,
        related_name="ajustes",
        null=True,
        blank=True,
    )

    cantidad_anterior = models.DecimalField(max_digits=14, decimal_places=3)
    cantidad_ajuste = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        help_text="cantidad_nueva - cantidad_anterior (con signo).",
    )
    cantidad_nueva = models.DecimalField(max_digits=14, decimal_places=3)
    costo_unitario = models.DecimalField(max_digits=12, decimal_places=4, default=0)

    motivo_detallado = models.TextField(blank=True)
    tipo_discrepancia = models.CharField(max_length=10, choices=TipoDiscrepancia.choices)
    causa_discrepancia = models.CharField(
        max_length=20,
        choices=CausaDiscrepancia.choices,
        null=True,
        blank=True,
    )
    documentos_soporte = models.TextField(blank=True)

    estado = models.CharField(
        max_length=25,
        choices=EstadoAjuste.choices,
        default=EstadoAjuste.PENDIENTE_AUTORIZACION,
    )
    usuario_solicita = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ajustes_solicitados",
    )
    fecha_solicitud = models.DateTimeField(auto_now_add=True)
    usuario_autoriza = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ajustes_autorizados",
        null=True,
        blank=True,
    )
    fecha_autorizacion = models.DateTimeField(null=True, blank=True)
    observaciones_autorizacion = models.TextField(blank=True)
    motivo_rechazo = models.TextField(blank=True)

    fecha_aplicacion = models.DateTimeField(null=True, blank=True)
    movimiento_generado = models.OneToOneField(
        MovimientoInventario,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="ajuste",
    )

    class Meta:
        verbose_name = "Ajuste de inventario"
        verbose_name_plural = "Ajustes de inventario"
        ordering = ["-fecha_solicitud", "-id"]

    def __str__(self):
        return f"{self.codigo} - {self.producto} ({self.cantidad_ajuste})"

    @property
    def valor_ajuste(self) -> Decimal:
        return (self.cantidad_ajuste * self.costo_unitario).quantize(Decimal("0.0001"))


class SnapshotInventario(models.Model):
    """
    Valoración inmutable del inventario auditado al finalizar la auditoría.
    """

    codigo = models.CharField(max_length=30, unique=True)
    auditoria = models.OneToOneField(
        AuditoriaInventario,
        on_delete=models.PROTECT,
        related_name="snapshot",
    )
    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.PROTECT,
        related_name="snapshots",
    )
    periodo = models.CharField(max_length=7)
    descripcion = models.CharField(max_length=255, blank=True)
    total_items = models.PositiveIntegerField(default=0)
    total_cantidad = models.DecimalField(max_digits=18, decimal_places=3, default=0)
    valor_total_inventario = models.DecimalField(max_digits=26, decimal_places=4, default=0)
    creado_por = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    fecha_creacion = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Snapshot de inventario"
        verbose_name_plural = "Snapshots de inventario"
        ordering = ["-fecha_creacion"]

    def __str__(self):
        return self.codigo

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Los snapshots de inventario son inmutables.")
        super().save(*args, **kwargs)


class SnapshotDetalle(models.Model):
    snapshot = models.ForeignKey(
        SnapshotInventario,
        on_delete=models.CASCADE,
        related_name="detalle",
    )
    producto = models.ForeignKey(Producto, on_delete=models.PROTECT, related_name="+")
    almacen = models.ForeignKey(Almacen, on_delete=models.PROTECT, related_name="+")
    estante = models.ForeignKey(
        Estante,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    cantidad_disponible = models.DecimalField(max_digits=14, decimal_places=3)
    cantidad_reservada = models.DecimalField(max_digits=14, decimal_places=3)
    cantidad_total = models.DecimalField(max_digits=15, decimal_places=3)
    costo_promedio = models.DecimalField(max_digits=12, decimal_places=4)
    valor_total = models.DecimalField(max_digits=24, decimal_places=4)

    class Meta:
        verbose_name = "Detalle de snapshot"
        verbose_name_plural = "Detalles de snapshot"

    def __str__(self):
        return f"{self.producto} ({self.cantidad_total})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Los snapshots de inventario son inmutables.")
        super().save(*args, **kwargs)


class MetricaInventario(TimeStampedModel):
    """
    KPIs periódicos de auditorías. Se recalculan (nunca se acumulan) por
    clave natural (periodo, tipo_periodo, almacen, categoria).
    """

    periodo = models.CharField(max_length=7)
    tipo_periodo = models.CharField(
        max_length=10,
        choices=TipoPeriodo.choices,
        default=TipoPeriodo.MENSUAL,
    )
    almacen = models.ForeignKey(
        Almacen,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="metricas",
    )
    categoria = models.ForeignKey(
        CategoriaProducto,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="metricas",
    )

    total_auditorias_realizadas = models.PositiveIntegerField(default=0)
    total_items_auditados = models.PositiveIntegerField(default=0)
    total_items_conformes = models.PositiveIntegerField(default=0)
    total_items_con_discrepancia = models.PositiveIntegerField(default=0)
    accuracy_porcentaje = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    valor_discrepancias_positivas = models.DecimalField(max_digits=26, decimal_places=4, default=0)
    valor_discrepancias_negativas = models.DecimalField(max_digits=26, decimal_places=4, default=0)
    valor_neto_discrepancias = models.DecimalField(max_digits=26, decimal_places=4, default=0)
    total_ajustes = models.PositiveIntegerField(default=0)
    total_ajustes_autorizados = models.PositiveIntegerField(default=0)
    total_ajustes_aplicados = models.PositiveIntegerField(default=0)
    valor_ajustes_aplicados = models.DecimalField(max_digits=26, decimal_places=4, default=0)

    class Meta:
        verbose_name = "Métrica de inventario"
        verbose_name_plural = "Métricas de inventario"
        ordering = ["-periodo"]
        constraints = [
            models.UniqueConstraint(
                fields=["periodo", "tipo_periodo", "almacen", "categoria"],
                name="metrica_unica_por_periodo",
            ),
        ]

    def __str__(self):
        return f"Métricas {self.tipo_periodo} {self.periodo}"


class SecuenciaCodigo(models.Model):
    """
    Contador atómico por (prefijo, periodo YYYYMM) para códigos AUD-/AJU-.
    """

    prefijo = models.CharField(max_length=5)
    periodo = models.CharField(max_length=6)
    ultimo_numero = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = "Secuencia de código"
        verbose_name_plural = "Secuencias de código"
        unique_together = ("prefijo", "periodo")

    def __str__(self):
        return f"{self.prefijo}-{self.periodo}: {self.ultimo_numero}"
