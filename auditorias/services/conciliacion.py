# auditorias/services/conciliacion.py

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from auditorias.exceptions import EntradaInvalida
from auditorias.models import TipoDiscrepancia

# Porcentaje de discrepancia a partir del cual una línea requiere investigación.
UMBRAL_INVESTIGACION = Decimal("10")

# Cantidades: 14 dígitos con 3 decimales, igual que las columnas de stock y detalle.
PASO_CANTIDAD = Decimal("0.001")
CANTIDAD_MAXIMA = Decimal("100000000000")


@dataclass(frozen=True)
class ResultadoDiscrepancia:
    discrepancia: Decimal
    discrepancia_valor: Decimal
    porcentaje: Decimal
    tipo: str
    requiere_investigacion: bool


def _a_decimal(valor) -> Decimal:
    if valor is None:
        return Decimal("0")
    if isinstance(valor, Decimal):
        return valor
    return Decimal(str(valor))


def calcular_discrepancia(cantidad_sistema, cantidad_fisica, costo_promedio) -> ResultadoDiscrepancia:
    """
    Compara la cantidad de sistema contra la física y clasifica la diferencia.

        discrepancia       = fisica - sistema
        discrepancia_valor = discrepancia * costo_promedio
        porcentaje         = |discrepancia| / sistema * 100   (0 si sistema <= 0)
        tipo               = SOBRANTE (> 0) | FALTANTE (< 0) | CONFORME (= 0)
        investigar         = porcentaje > 10

    Función pura: no lee ni escribe en la base de datos.
    """
    sistema = _a_decimal(cantidad_sistema)
    fisica = _a_decimal(cantidad_fisica)
    costo = _a_decimal(costo_promedio)

    discrepancia = fisica - sistema
    discrepancia_valor = discrepancia * costo

    if sistema > 0:
        porcentaje = abs(discrepancia) / sistema * Decimal("100")
    else:
        porcentaje = Decimal("0")

    if discrepancia > 0:
        tipo = TipoDiscrepancia.SOBRANTE
    elif discrepancia < 0:
        tipo = TipoDiscrepancia.FALTANTE
    else:
        tipo = TipoDiscrepancia.CONFORME

    return ResultadoDiscrepancia(
        discrepancia=discrepancia,
        discrepancia_valor=discrepancia_valor,
        porcentaje=porcentaje,
        tipo=tipo,
        requiere_investigacion=porcentaje > UMBRAL_INVESTIGACION,
    )


def a_cantidad(valor, campo: str = "Cantidad") -> Decimal:
    """
    Convierte una cantidad de entrada a Decimal con 3 decimales.

    Negativa, no numérica, con más de 3 decimales o fuera del rango de las
    columnas → EntradaInvalida. Así lo que se clasifica es lo que se guarda.
    """
    try:
        cantidad = Decimal(str(valor))
    except (InvalidOperation, TypeError, ValueError):
        raise EntradaInvalida(f"{campo} inválida: {valor!r}")
    if not cantidad.is_finite() or cantidad < 0:
        raise EntradaInvalida(f"{campo} no puede ser negativa: {valor!r}")
    if cantidad >= CANTIDAD_MAXIMA:
        raise EntradaInvalida(f"{campo} fuera de rango: {valor!r}")

    redondeada = cantidad.quantize(PASO_CANTIDAD)
    if redondeada != cantidad:
        raise EntradaInvalida(f"{campo} admite hasta 3 decimales: {valor!r}")
    return redondeada
