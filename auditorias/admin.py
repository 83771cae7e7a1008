from django.contrib import admin, messages

from .exceptions import AuditoriaError
from .models import (
    AjusteInventario,
    Almacen,
    AuditoriaDetalle,
    AuditoriaEvidencia,
    AuditoriaInventario,
    CategoriaProducto,
    EstadoAjuste,
    Estante,
    MetricaInventario,
    MovimientoInventario,
    Producto,
    SnapshotDetalle,
    SnapshotInventario,
    StockProducto,
)
from .services.ajustes import aplicar_ajuste

admin.site.site_header = "Administración de Auditorías de Inventario"
admin.site.site_title = "Auditorías de Inventario"


def aplicar_ajustes_autorizados(modeladmin, request, queryset):
    """
    Acción admin: aplica los ajustes AUTORIZADOS seleccionados, uno por uno.
    """
    exitosos = 0
    saltados = 0

    for ajuste in queryset:
        if ajuste.estado != EstadoAjuste.AUTORIZADO:
            saltados += 1
            continue
        try:
            aplicar_ajuste(ajuste, request.user)
        except AuditoriaError as exc:
            messages.error(request, f"{ajuste.codigo}: {exc}")
            continue
        exitosos += 1

    if exitosos:
        messages.success(request, f"{exitosos} ajustes aplicados correctamente.")

    if saltados:
        messages.warning(request, f"{saltados} ajustes omitidos (no estaban autorizados).")


aplicar_ajustes_autorizados.short_description = "Aplicar ajustes autorizados"


@admin.register(Almacen)
class AlmacenAdmin(admin.ModelAdmin):
    list_display = ("nombre", "ubicacion", "activo", "created_at")
    list_filter = ("activo",)
    search_fields = ("nombre", "ubicacion")


@admin.register(Estante)
class EstanteAdmin(admin.ModelAdmin):
    list_display = ("nombre", "almacen", "activo")
    list_filter = ("almacen", "activo")
    search_fields = ("nombre", "almacen__nombre")
    autocomplete_fields = ("almacen",)


@admin.register(CategoriaProducto)
class CategoriaProductoAdmin(admin.ModelAdmin):
    list_display = ("nombre", "codigo", "activo")
    list_filter = ("activo",)
    search_fields = ("nombre", "codigo")


@admin.register(Producto)
class ProductoAdmin(admin.ModelAdmin):
    list_display = ("codigo", "nombre", "categoria", "maneja_series", "activo")
    list_filter = ("activo", "categoria", "maneja_series")
    search_fields = ("codigo", "nombre")
    autocomplete_fields = ("categoria",)


@admin.register(StockProducto)
class StockProductoAdmin(admin.ModelAdmin):
    list_display = (
        "producto",
        "almacen",
        "estante",
        "cantidad_disponible",
        "cantidad_reservada",
        "costo_promedio",
        "valor_total",
        "estado",
        "updated_at",
    )
    list_filter = ("almacen", "estado")
    search_fields = ("producto__nombre", "producto__codigo", "almacen__nombre")
    autocomplete_fields = ("producto", "almacen", "estante")

    readonly_fields = ("created_at", "updated_at")

    def valor_total(self, obj):
        return obj.valor_total


@admin.register(MovimientoInventario)
class MovimientoInventarioAdmin(admin.ModelAdmin):
    list_display = (
        "tipo",
        "producto",
        "almacen",
        "cantidad",
        "costo_unitario",
        "costo_total",
        "fecha_movimiento",
        "referencia",
        "usuario",
    )
    list_filter = ("tipo", "almacen", "fecha_movimiento")
    search_fields = ("producto__nombre", "almacen__nombre", "motivo", "referencia")
    readonly_fields = [f.name for f in MovimientoInventario._meta.fields]

    def has_add_permission(self, request):
        # Los movimientos de auditoría solo nacen de aplicar_ajuste
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class AuditoriaDetalleInline(admin.TabularInline):
    model = AuditoriaDetalle
    extra = 0
    can_delete = False
    fields = (
        "producto",
        "cantidad_sistema",
        "cantidad_fisica",
        "discrepancia",
        "discrepancia_valor",
        "tipo_discrepancia",
        "requiere_investigacion",
    )
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class AuditoriaEvidenciaInline(admin.TabularInline):
    model = AuditoriaEvidencia
    extra = 0
    fields = ("tipo", "titulo", "nombre_archivo", "url", "usuario_subida", "fecha_subida")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(AuditoriaInventario)
class AuditoriaInventarioAdmin(admin.ModelAdmin):
    """
    Vista de consulta. Las transiciones de estado pasan por la API,
    así que la cabecera es de solo lectura.
    """

    list_display = (
        "codigo",
        "tipo",
        "estado",
        "almacen",
        "estante",
        "fecha_planificada",
        "total_items_auditados",
        "porcentaje_accuracy",
        "valor_total_discrepancias",
    )
    list_filter = ("estado", "tipo", "almacen")
    search_fields = ("codigo", "almacen__nombre", "observaciones")
    date_hierarchy = "created_at"
    inlines = [AuditoriaDetalleInline, AuditoriaEvidenciaInline]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(AjusteInventario)
class AjusteInventarioAdmin(admin.ModelAdmin):
    list_display = (
        "codigo",
        "auditoria",
        "producto",
        "almacen",
        "cantidad_anterior",
        "cantidad_ajuste",
        "cantidad_nueva",
        "estado",
        "usuario_solicita",
        "usuario_autoriza",
        "fecha_solicitud",
    )
    list_filter = ("estado", "tipo_discrepancia", "causa_discrepancia", "almacen")
    search_fields = ("codigo", "auditoria__codigo", "producto__nombre", "motivo_detallado")
    actions = [aplicar_ajustes_autorizados]

    fieldsets = (
        (None, {
            "fields": (
                "codigo",
                "auditoria",
                "detalle",
                "producto",
                "almacen",
                "estante",
                "cantidad_anterior",
                "cantidad_ajuste",
                "cantidad_nueva",
                "costo_unitario",
                "estado",
            )
        }),
        ("Justificación", {
            "fields": (
                "motivo_detallado",
                "tipo_discrepancia",
                "causa_discrepancia",
                "documentos_soporte",
            )
        }),
        ("Autorización y aplicación", {
            "classes": ("collapse",),
            "fields": (
                "usuario_solicita",
                "fecha_solicitud",
                "usuario_autoriza",
                "fecha_autorizacion",
                "observaciones_autorizacion",
                "motivo_rechazo",
                "fecha_aplicacion",
                "movimiento_generado",
            )
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False


class SnapshotDetalleInline(admin.TabularInline):
    model = SnapshotDetalle
    extra = 0
    can_delete = False
    readonly_fields = (
        "producto",
        "almacen",
        "estante",
        "cantidad_disponible",
        "cantidad_reservada",
        "cantidad_total",
        "costo_promedio",
        "valor_total",
    )

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SnapshotInventario)
class SnapshotInventarioAdmin(admin.ModelAdmin):
    list_display = (
        "codigo",
        "auditoria",
        "almacen",
        "periodo",
        "total_items",
        "total_cantidad",
        "valor_total_inventario",
        "fecha_creacion",
    )
    list_filter = ("almacen", "periodo")
    search_fields = ("codigo", "auditoria__codigo")
    inlines = [SnapshotDetalleInline]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(MetricaInventario)
class MetricaInventarioAdmin(admin.ModelAdmin):
    list_display = (
        "periodo",
        "tipo_periodo",
        "almacen",
        "categoria",
        "total_auditorias_realizadas",
        "accuracy_porcentaje",
        "valor_neto_discrepancias",
        "total_ajustes_aplicados",
    )
    list_filter = ("tipo_periodo", "almacen")
    search_fields = ("periodo",)
