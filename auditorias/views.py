from django.http import HttpResponse
from django.utils.dateparse import parse_date
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response

from .exceptions import NoEncontrado
from .models import AuditoriaEvidencia, SnapshotInventario
from .serializers import (
    AjusteInventarioSerializer,
    AuditoriaActualizarSerializer,
    AuditoriaCrearSerializer,
    AuditoriaDetalleSerializer,
    AuditoriaEvidenciaSerializer,
    AuditoriaInventarioSerializer,
    AuditoriaSerieSerializer,
    AutorizarAjusteSerializer,
    CancelarAuditoriaSerializer,
    EscanearSerieSerializer,
    GenerarAjustesSerializer,
    MetricaConsultaSerializer,
    MetricaInventarioSerializer,
    ObservacionesSerializer,
    ProgramarAuditoriasSerializer,
    ReemplazarEvidenciaSerializer,
    RegistrarConteoSerializer,
    SnapshotInventarioSerializer,
    SubirEvidenciaSerializer,
)
from .services import ajustes as ajustes_service
from .services import conteo as conteo_service
from .services import metricas as metricas_service
from .services import planificacion as planificacion_service
from .services.reportes import generar_reporte_pdf


class IsAuthenticatedOrReadOnly(permissions.IsAuthenticatedOrReadOnly):
    """
    Lectura libre; cualquier cambio de estado exige usuario autenticado,
    que queda registrado como actor de la operación.
    """
    pass


def _filtros_query(request, campos_enteros=(), campos_texto=(), campos_fecha=()):
    """
    Lee filtros opcionales de query params. Un entero o fecha mal formado → 400.
    """
    filtros = {}
    params = request.query_params

    for campo in campos_texto:
        if params.get(campo):
            filtros[campo] = params[campo]

    for campo in campos_enteros:
        valor = params.get(campo)
        if valor:
            try:
                filtros[campo] = int(valor)
            except ValueError:
                raise ValidationError({campo: "Debe ser un número entero."})

    for campo in campos_fecha:
        valor = params.get(campo)
        if valor:
            try:
                fecha = parse_date(valor)
            except ValueError:
                fecha = None
            if fecha is None:
                raise ValidationError({campo: "Formato de fecha inválido (YYYY-MM-DD)."})
            filtros[campo] = fecha

    return filtros


class AuditoriaViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Auditorías de inventario.

    Todas las transiciones de estado van por acciones explícitas;
    DELETE no borra, cancela.
    """

    serializer_class = AuditoriaInventarioSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def get_queryset(self):
        filtros = _filtros_query(
            self.request,
            campos_enteros=(
                "almacen_id",
                "estante_id",
                "usuario_planifica_id",
                "usuario_ejecuta_id",
            ),
            campos_texto=("tipo", "estado"),
            campos_fecha=("fecha_desde", "fecha_hasta"),
        )
        return planificacion_service.buscar_auditorias(**filtros)

    def _respuesta(self, auditoria, status_code=status.HTTP_200_OK):
        return Response(AuditoriaInventarioSerializer(auditoria).data, status=status_code)

    def create(self, request):
        serializer = AuditoriaCrearSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        auditoria = planificacion_service.crear_auditoria(
            almacen_id=data["almacen"],
            tipo=data["tipo"],
            usuario=request.user,
            estante_id=data.get("estante"),
            categorias=data.get("categorias"),
            fecha_planificada=data.get("fecha_planificada"),
            observaciones=data.get("observaciones", ""),
        )
        return self._respuesta(auditoria, status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        auditoria = self.get_object()
        serializer = AuditoriaActualizarSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        auditoria = planificacion_service.actualizar_auditoria(auditoria, **serializer.a_campos())
        return self._respuesta(auditoria)

    def destroy(self, request, pk=None):
        """
        DELETE /api/auditorias/<id>/  → cancela la auditoría (no se borra nada).
        """
        auditoria = self.get_object()
        serializer = CancelarAuditoriaSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        auditoria = planificacion_service.cancelar_auditoria(
            auditoria,
            request.user,
            serializer.validated_data["motivo"],
        )
        return self._respuesta(auditoria)

    @action(detail=False, methods=["post"], url_path="programar")
    def programar(self, request):
        """
        POST /api/auditorias/programar/
        Crea las auditorías PLANIFICADAS del próximo año según la frecuencia.
        """
        serializer = ProgramarAuditoriasSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        creadas = planificacion_service.programar_auditorias(
            frecuencia=data["frecuencia"],
            tipo=data["tipo"],
            fecha_inicio=data["fecha_inicio"],
            usuario=request.user,
            almacen_id=data.get("almacen"),
        )
        return Response(
            AuditoriaInventarioSerializer(creadas, many=True).data,
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="iniciar-conteo")
    def iniciar_conteo(self, request, pk=None):
        auditoria = self.get_object()
        serializer = ObservacionesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        auditoria = planificacion_service.iniciar_conteo(
            auditoria,
            request.user,
            serializer.validated_data["observaciones"],
        )
        return self._respuesta(auditoria)

    @action(detail=True, methods=["get"], url_path="detalle")
    def detalle(self, request, pk=None):
        auditoria = self.get_object()
        lineas = auditoria.detalle.select_related("producto")
        return Response(AuditoriaDetalleSerializer(lineas, many=True).data)

    @action(detail=True, methods=["post"], url_path="registrar-conteo")
    def registrar_conteo(self, request, pk=None):
        """
        POST /api/auditorias/<id>/registrar-conteo/
        {"conteos": [{"producto_id": 1, "cantidad_fisica": "8"}], "observaciones_generales": ""}
        """
        auditoria = self.get_object()
        serializer = RegistrarConteoSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        lineas = conteo_service.registrar_conteo(
            auditoria,
            data["conteos"],
            request.user,
            data["observaciones_generales"],
        )
        return Response(AuditoriaDetalleSerializer(lineas, many=True).data)

    @action(detail=True, methods=["post"], url_path="escanear-serie")
    def escanear_serie(self, request, pk=None):
        auditoria = self.get_object()
        serializer = EscanearSerieSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        serie = conteo_service.escanear_serie(
            auditoria,
            usuario=request.user,
            **serializer.validated_data,
        )
        return Response(AuditoriaSerieSerializer(serie).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get", "post"], url_path="evidencia")
    def evidencia(self, request, pk=None):
        """
        GET  → evidencias de la auditoría.
        POST → sube una evidencia (multipart: archivo, tipo, titulo, descripcion, producto_id).
        """
        auditoria = self.get_object()

        if request.method == "GET":
            return Response(
                AuditoriaEvidenciaSerializer(auditoria.evidencias.all(), many=True).data
            )

        serializer = SubirEvidenciaSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        evidencia = conteo_service.subir_evidencia(
            auditoria,
            data["archivo"],
            request.user,
            tipo=data["tipo"],
            titulo=data["titulo"],
            descripcion=data["descripcion"],
            producto_id=data.get("producto_id"),
        )
        return Response(
            AuditoriaEvidenciaSerializer(evidencia).data,
            status=status.HTTP_201_CREATED,
        )

    @action(
        detail=True,
        methods=["put", "delete"],
        url_path=r"evidencia/(?P<evidencia_id>\d+)",
    )
    def evidencia_detalle(self, request, pk=None, evidencia_id=None):
        auditoria = self.get_object()
        evidencia = AuditoriaEvidencia.objects.filter(
            pk=evidencia_id,
            auditoria=auditoria,
        ).first()
        if evidencia is None:
            raise NoEncontrado(f"Evidencia {evidencia_id} no encontrada en esta auditoría")

        if request.method == "DELETE":
            conteo_service.eliminar_evidencia(evidencia)
            return Response(status=status.HTTP_204_NO_CONTENT)

        serializer = ReemplazarEvidenciaSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        evidencia = conteo_service.reemplazar_evidencia(
            evidencia,
            serializer.validated_data["archivo"],
            request.user,
        )
        return Response(AuditoriaEvidenciaSerializer(evidencia).data)

    @action(detail=True, methods=["post"], url_path="finalizar")
    def finalizar(self, request, pk=None):
        auditoria = self.get_object()
        serializer = ObservacionesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        auditoria = planificacion_service.finalizar_auditoria(
            auditoria,
            request.user,
            serializer.validated_data["observaciones"],
        )
        return self._respuesta(auditoria)

    @action(detail=True, methods=["post"], url_path="completar")
    def completar(self, request, pk=None):
        auditoria = self.get_object()
        serializer = ObservacionesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        auditoria = planificacion_service.completar_auditoria(
            auditoria,
            request.user,
            serializer.validated_data["observaciones"],
        )
        return self._respuesta(auditoria)

    @action(detail=True, methods=["get"], url_path="discrepancias")
    def discrepancias(self, request, pk=None):
        auditoria = self.get_object()
        resultado = conteo_service.obtener_discrepancias(auditoria)

        return Response(
            {
                "auditoria": auditoria.id,
                "resumen": {k: str(v) for k, v in resultado["resumen"].items()},
                "faltantes": AuditoriaDetalleSerializer(resultado["faltantes"], many=True).data,
                "sobrantes": AuditoriaDetalleSerializer(resultado["sobrantes"], many=True).data,
            }
        )

    @action(detail=True, methods=["get"], url_path="snapshot")
    def snapshot(self, request, pk=None):
        auditoria = self.get_object()
        snapshot = SnapshotInventario.objects.filter(auditoria=auditoria).first()
        if snapshot is None:
            raise NoEncontrado(f"La auditoría {auditoria.codigo} no tiene snapshot")
        return Response(SnapshotInventarioSerializer(snapshot).data)

    @action(detail=True, methods=["post"], url_path="generar-ajustes")
    def generar_ajustes(self, request, pk=None):
        """
        POST /api/auditorias/<id>/generar-ajustes/
        {"ajustes": [{"detalle_id": 1, "causa_discrepancia": "MERMA"}], "motivo_detallado": ""}
        """
        auditoria = self.get_object()
        serializer = GenerarAjustesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ajustes = ajustes_service.generar_ajustes(
            auditoria,
            data["ajustes"],
            request.user,
            motivo_detallado=data["motivo_detallado"],
            documentos_soporte=data["documentos_soporte"],
        )
        return Response(
            AjusteInventarioSerializer(ajustes, many=True).data,
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="finalizar-y-aplicar")
    def finalizar_y_aplicar(self, request, pk=None):
        """
        Levantamiento directo: finaliza, genera, autoriza y aplica todos los ajustes.
        """
        auditoria = self.get_object()
        serializer = ObservacionesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        auditoria, ajustes = ajustes_service.finalizar_y_aplicar_directo(
            auditoria,
            request.user,
            serializer.validated_data["observaciones"],
        )
        return Response(
            {
                "auditoria": AuditoriaInventarioSerializer(auditoria).data,
                "ajustes_aplicados": AjusteInventarioSerializer(ajustes, many=True).data,
            }
        )

    @action(detail=True, methods=["get"], url_path="reporte")
    def reporte(self, request, pk=None):
        auditoria = self.get_object()
        pdf = generar_reporte_pdf(auditoria)

        response = HttpResponse(pdf, content_type="application/pdf")
        response["Content-Disposition"] = f'attachment; filename="auditoria-{auditoria.codigo}.pdf"'
        return response


class AjusteInventarioViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = AjusteInventarioSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]

    def get_queryset(self):
        filtros = _filtros_query(
            self.request,
            campos_enteros=(
                "auditoria_id",
                "producto_id",
                "almacen_id",
                "usuario_solicita_id",
                "usuario_autoriza_id",
            ),
            campos_texto=("estado", "tipo_discrepancia", "causa_discrepancia"),
            campos_fecha=("fecha_desde", "fecha_hasta"),
        )
        return ajustes_service.buscar_ajustes(**filtros)

    @action(detail=True, methods=["post"], url_path="autorizar")
    def autorizar(self, request, pk=None):
        """
        POST /api/ajustes/<id>/autorizar/
        {"autorizado": false, "motivo_rechazo": "..."}
        """
        ajuste = self.get_object()
        serializer = AutorizarAjusteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        ajuste = ajustes_service.autorizar_ajuste(ajuste, request.user, **serializer.validated_data)
        return Response(AjusteInventarioSerializer(ajuste).data)

    @action(detail=True, methods=["post"], url_path="aplicar")
    def aplicar(self, request, pk=None):
        ajuste = self.get_object()
        ajuste = ajustes_service.aplicar_ajuste(ajuste, request.user)
        return Response(AjusteInventarioSerializer(ajuste).data)


class MetricaInventarioViewSet(viewsets.GenericViewSet):
    serializer_class = MetricaInventarioSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]

    def _consulta(self, datos):
        serializer = MetricaConsultaSerializer(data=datos)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return (
            data["periodo"],
            data["tipo_periodo"],
            data["almacen"],
            data["categoria"],
        )

    @action(detail=False, methods=["get"], url_path="dashboard")
    def dashboard(self, request):
        """
        GET /api/metricas/dashboard/?periodo=2024-03&tipo_periodo=MENSUAL&almacen=1
        Devuelve la métrica guardada o la calcula si no existe.
        """
        metrica = metricas_service.obtener_metricas(*self._consulta(request.query_params))
        return Response(MetricaInventarioSerializer(metrica).data)

    @action(detail=False, methods=["post"], url_path="recalcular")
    def recalcular(self, request):
        metrica = metricas_service.calcular_metricas(*self._consulta(request.data))
        return Response(MetricaInventarioSerializer(metrica).data)
