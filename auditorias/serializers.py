from rest_framework import serializers

from .models import (
    AjusteInventario,
    Almacen,
    AuditoriaDetalle,
    AuditoriaEvidencia,
    AuditoriaInventario,
    AuditoriaSerie,
    CategoriasExplicitas,
    CausaDiscrepancia,
    Estante,
    MetricaInventario,
    Producto,
    SnapshotDetalle,
    SnapshotInventario,
    TipoAuditoria,
    TipoEvidencia,
    TipoPeriodo,
)
from .services.planificacion import FRECUENCIAS


class AlmacenSerializer(serializers.ModelSerializer):
    class Meta:
        model = Almacen
        fields = ["id", "nombre", "ubicacion", "activo"]
        read_only_fields = fields


class EstanteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Estante
        fields = ["id", "almacen", "nombre", "activo"]
        read_only_fields = fields


class ProductoSerializer(serializers.ModelSerializer):
    class Meta:
        model = Producto
        fields = ["id", "codigo", "nombre", "categoria", "maneja_series"]
        read_only_fields = fields


class AuditoriaInventarioSerializer(serializers.ModelSerializer):
    """
    Lectura de la cabecera. Las escrituras pasan por los serializers de
    entrada y los servicios de planificación, nunca por save().
    """

    almacen_detalle = AlmacenSerializer(source="almacen", read_only=True)
    estante_detalle = EstanteSerializer(source="estante", read_only=True)
    categorias = serializers.SerializerMethodField()

    class Meta:
        model = AuditoriaInventario
        fields = [
            "id",
            "codigo",
            "tipo",
            "estado",
            "almacen",
            "almacen_detalle",
            "estante",
            "estante_detalle",
            "incluir_todas_categorias",
            "categorias",
            "usuario_planifica",
            "usuario_ejecuta",
            "usuario_revisa",
            "fecha_planificada",
            "fecha_inicio",
            "fecha_fin",
            "fecha_revision",
            "observaciones",
            "total_items_auditados",
            "total_items_conformes",
            "total_items_con_discrepancia",
            "valor_total_discrepancias",
            "porcentaje_accuracy",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_categorias(self, obj):
        filtro = obj.filtro_categorias
        if isinstance(filtro, CategoriasExplicitas):
            return sorted(filtro.ids)
        return None


class AuditoriaCrearSerializer(serializers.Serializer):
    almacen = serializers.IntegerField()
    tipo = serializers.ChoiceField(choices=TipoAuditoria.choices)
    estante = serializers.IntegerField(required=False, allow_null=True)
    categorias = serializers.ListField(
        child=serializers.IntegerField(),
        required=False,
        allow_null=True,
        help_text="IDs de categorías. Omitir o null para auditar todas.",
    )
    fecha_planificada = serializers.DateField(required=False, allow_null=True)
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_categorias(self, value):
        if value is not None and not value:
            raise serializers.ValidationError(
                "Debe indicar al menos una categoría o enviar null para incluir todas."
            )
        return value


class AuditoriaActualizarSerializer(serializers.Serializer):
    tipo = serializers.ChoiceField(choices=TipoAuditoria.choices, required=False)
    estante = serializers.IntegerField(required=False, allow_null=True)
    categorias = serializers.ListField(
        child=serializers.IntegerField(),
        required=False,
        allow_null=True,
    )
    fecha_planificada = serializers.DateField(required=False, allow_null=True)
    observaciones = serializers.CharField(required=False, allow_blank=True)

    def a_campos(self) -> dict:
        """Traduce los datos validados a los kwargs de actualizar_auditoria."""
        campos = dict(self.validated_data)
        if "estante" in campos:
            campos["estante_id"] = campos.pop("estante")
        return campos


class ObservacionesSerializer(serializers.Serializer):
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")


class CancelarAuditoriaSerializer(serializers.Serializer):
    motivo = serializers.CharField(required=False, allow_blank=True, default="")


class ProgramarAuditoriasSerializer(serializers.Serializer):
    frecuencia = serializers.ChoiceField(choices=sorted(FRECUENCIAS))
    tipo = serializers.ChoiceField(
        choices=[TipoAuditoria.COMPLETA, TipoAuditoria.PARCIAL],
    )
    fecha_inicio = serializers.DateField()
    almacen = serializers.IntegerField(required=False, allow_null=True)


class AuditoriaDetalleSerializer(serializers.ModelSerializer):
    producto_detalle = ProductoSerializer(source="producto", read_only=True)

    class Meta:
        model = AuditoriaDetalle
        fields = [
            "id",
            "auditoria",
            "producto",
            "producto_detalle",
            "cantidad_sistema",
            "cantidad_reservada_sistema",
            "costo_promedio_sistema",
            "fue_contado",
            "cantidad_fisica",
            "discrepancia",
            "discrepancia_valor",
            "porcentaje_discrepancia",
            "tipo_discrepancia",
            "requiere_investigacion",
            "observaciones_conteo",
            "usuario_conteo",
            "fecha_conteo",
        ]
        read_only_fields = fields


class ConteoItemSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField()
    cantidad_fisica = serializers.DecimalField(max_digits=14, decimal_places=3)
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_cantidad_fisica(self, value):
        if value < 0:
            raise serializers.ValidationError("La cantidad física no puede ser negativa.")
        return value


class RegistrarConteoSerializer(serializers.Serializer):
    conteos = ConteoItemSerializer(many=True, allow_empty=False)
    observaciones_generales = serializers.CharField(required=False, allow_blank=True, default="")


class EscanearSerieSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField()
    numero_serie = serializers.CharField(max_length=100)
    encontrado_fisicamente = serializers.BooleanField(required=False, default=True)
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")


class AuditoriaSerieSerializer(serializers.ModelSerializer):
    ubicacion_correcta = serializers.BooleanField(read_only=True)

    class Meta:
        model = AuditoriaSerie
        fields = [
            "id",
            "detalle",
            "numero_serie",
            "encontrado_fisicamente",
            "existe_en_sistema",
            "estado_en_sistema",
            "almacen_esperado",
            "almacen_real",
            "ubicacion_correcta",
            "observaciones",
            "usuario",
            "fecha_escaneo",
        ]
        read_only_fields = fields


class SubirEvidenciaSerializer(serializers.Serializer):
    archivo = serializers.FileField()
    tipo = serializers.ChoiceField(choices=TipoEvidencia.choices)
    titulo = serializers.CharField(required=False, allow_blank=True, default="")
    descripcion = serializers.CharField(required=False, allow_blank=True, default="")
    producto_id = serializers.IntegerField(required=False, allow_null=True)


class ReemplazarEvidenciaSerializer(serializers.Serializer):
    archivo = serializers.FileField()


class AuditoriaEvidenciaSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditoriaEvidencia
        fields = [
            "id",
            "auditoria",
            "tipo",
            "titulo",
            "descripcion",
            "nombre_archivo",
            "ruta_archivo",
            "url",
            "mimetype",
            "size",
            "producto",
            "usuario_subida",
            "fecha_subida",
        ]
        read_only_fields = fields


class AjusteItemSerializer(serializers.Serializer):
    detalle_id = serializers.IntegerField()
    cantidad_anterior = serializers.DecimalField(max_digits=14, decimal_places=3, required=False)
    cantidad_nueva = serializers.DecimalField(max_digits=14, decimal_places=3, required=False)
    causa_discrepancia = serializers.ChoiceField(
        choices=CausaDiscrepancia.choices,
        required=False,
        allow_null=True,
    )
    observaciones = serializers.CharField(required=False, allow_blank=True)

    def validate_cantidad_nueva(self, value):
        if value < 0:
            raise serializers.ValidationError("La cantidad nueva no puede ser negativa.")
        return value


class GenerarAjustesSerializer(serializers.Serializer):
    ajustes = AjusteItemSerializer(many=True, allow_empty=False)
    motivo_detallado = serializers.CharField(required=False, allow_blank=True, default="")
    documentos_soporte = serializers.CharField(required=False, allow_blank=True, default="")


class AutorizarAjusteSerializer(serializers.Serializer):
    autorizado = serializers.BooleanField()
    motivo_rechazo = serializers.CharField(required=False, allow_blank=True, default="")
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not attrs["autorizado"] and not attrs.get("motivo_rechazo", "").strip():
            raise serializers.ValidationError({
                "motivo_rechazo": "Debe proporcionar un motivo de rechazo."
            })
        return attrs


class AjusteInventarioSerializer(serializers.ModelSerializer):
    producto_detalle = ProductoSerializer(source="producto", read_only=True)
    auditoria_codigo = serializers.CharField(source="auditoria.codigo", read_only=True)
    valor_ajuste = serializers.DecimalField(max_digits=24, decimal_places=4, read_only=True)

    class Meta:
        model = AjusteInventario
        fields = [
            "id",
            "codigo",
            "auditoria",
            "auditoria_codigo",
            "detalle",
            "producto",
            "producto_detalle",
            "almacen",
            "estante",
            "cantidad_anterior",
            "cantidad_ajuste",
            "cantidad_nueva",
            "costo_unitario",
            "valor_ajuste",
            "motivo_detallado",
            "tipo_discrepancia",
            "causa_discrepancia",
            "documentos_soporte",
            "estado",
            "usuario_solicita",
            "fecha_solicitud",
            "usuario_autoriza",
            "fecha_autorizacion",
            "observaciones_autorizacion",
            "motivo_rechazo",
            "fecha_aplicacion",
            "movimiento_generado",
        ]
        read_only_fields = fields


class SnapshotDetalleSerializer(serializers.ModelSerializer):
    class Meta:
        model = SnapshotDetalle
        fields = [
            "producto",
            "almacen",
            "estante",
            "cantidad_disponible",
            "cantidad_reservada",
            "cantidad_total",
            "costo_promedio",
            "valor_total",
        ]
        read_only_fields = fields


class SnapshotInventarioSerializer(serializers.ModelSerializer):
    detalle = SnapshotDetalleSerializer(many=True, read_only=True)

    class Meta:
        model = SnapshotInventario
        fields = [
            "id",
            "codigo",
            "auditoria",
            "almacen",
            "periodo",
            "descripcion",
            "total_items",
            "total_cantidad",
            "valor_total_inventario",
            "creado_por",
            "fecha_creacion",
            "detalle",
        ]
        read_only_fields = fields


class MetricaConsultaSerializer(serializers.Serializer):
    periodo = serializers.CharField(max_length=7)
    tipo_periodo = serializers.ChoiceField(
        choices=TipoPeriodo.choices,
        required=False,
        default=TipoPeriodo.MENSUAL,
    )
    almacen = serializers.IntegerField(required=False, allow_null=True, default=None)
    categoria = serializers.IntegerField(required=False, allow_null=True, default=None)


class MetricaInventarioSerializer(serializers.ModelSerializer):
    class Meta:
        model = MetricaInventario
        fields = [
            "id",
            "periodo",
            "tipo_periodo",
            "almacen",
            "categoria",
            "total_auditorias_realizadas",
            "total_items_auditados",
            "total_items_conformes",
            "total_items_con_discrepancia",
            "accuracy_porcentaje",
            "valor_discrepancias_positivas",
            "valor_discrepancias_negativas",
            "valor_neto_discrepancias",
            "total_ajustes",
            "total_ajustes_autorizados",
            "total_ajustes_aplicados",
            "valor_ajustes_aplicados",
            "updated_at",
        ]
        read_only_fields = fields
