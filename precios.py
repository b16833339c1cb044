"""
Cálculo del precio de una reserva.

El precio depende de la duración (descuento por tramos) y del tipo de
vehículo (multiplicador). Los importes se calculan con Decimal y se
redondean a centavos hacia arriba en el punto medio (ROUND_HALF_UP).
"""
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from errores import RangoFechasInvalido
from utils import parse_fecha

SEGUNDOS_POR_DIA = 24 * 60 * 60

# (días mínimos, porcentaje de descuento), del tramo más largo al más corto
DESCUENTOS_POR_DURACION = [
    (30, 30),
    (7, 15),
    (3, 5),
]

MULTIPLICADORES_TIPO = {
    "Compacto": Decimal("1.0"),
    "Sedan": Decimal("1.2"),
    "SUV": Decimal("1.5"),
    "Deportivo": Decimal("1.8"),
    "Camioneta": Decimal("1.6"),
    "Lujo": Decimal("2.0"),
}

CENTAVOS = Decimal("0.01")


@dataclass(frozen=True)
class Cotizacion:
    dias: int
    descuento: int
    multiplicador: float
    precio_base: float
    precio_total: float


def calcular_dias(fecha_inicio, fecha_fin) -> int:
    """Días completos de alquiler; una fracción de día cuenta como un día entero."""
    inicio = parse_fecha(fecha_inicio)
    fin = parse_fecha(fecha_fin)
    segundos = (fin - inicio).total_seconds()
    if segundos <= 0:
        raise RangoFechasInvalido("La fecha de inicio debe ser anterior a la fecha de fin")
    return math.ceil(segundos / SEGUNDOS_POR_DIA)


def descuento_por_dias(dias: int) -> int:
    for minimo, porcentaje in DESCUENTOS_POR_DURACION:
        if dias >= minimo:
            return porcentaje
    return 0


def multiplicador_tipo(tipo) -> Decimal:
    # Acepta tanto el enum TipoCoche como su valor en texto
    clave = getattr(tipo, "value", tipo)
    return MULTIPLICADORES_TIPO.get(clave, Decimal("1.0"))


def redondear(valor: Decimal) -> Decimal:
    return valor.quantize(CENTAVOS, rounding=ROUND_HALF_UP)


def cotizar(fecha_inicio, fecha_fin, precio_dia, tipo) -> Cotizacion:
    """
    Desglose completo del precio de alquilar un vehículo entre dos fechas.

    precio_base = precio_dia * dias
    precio_total = precio_base * (1 - descuento/100) * multiplicador(tipo)
    """
    dias = calcular_dias(fecha_inicio, fecha_fin)
    descuento = descuento_por_dias(dias)
    multiplicador = multiplicador_tipo(tipo)

    base = Decimal(str(precio_dia)) * dias
    con_descuento = base * (1 - Decimal(descuento) / 100)
    total = redondear(con_descuento * multiplicador)

    return Cotizacion(
        dias=dias,
        descuento=descuento,
        multiplicador=float(multiplicador),
        precio_base=float(redondear(base)),
        precio_total=float(total),
    )


def calcular_precio_total(fecha_inicio, fecha_fin, precio_dia, tipo) -> float:
    return cotizar(fecha_inicio, fecha_fin, precio_dia, tipo).precio_total
