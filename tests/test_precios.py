from datetime import date, datetime, timedelta, timezone

import pytest

import precios
from errores import RangoFechasInvalido
from models import TipoCoche


@pytest.mark.parametrize(
    "dias, descuento",
    [(1, 0), (2, 0), (3, 5), (6, 5), (7, 15), (29, 15), (30, 30), (45, 30)],
)
def test_descuento_por_dias(dias, descuento):
    assert precios.descuento_por_dias(dias) == descuento


@pytest.mark.parametrize(
    "tipo, multiplicador",
    [
        ("Compacto", 1.0),
        ("Sedan", 1.2),
        ("SUV", 1.5),
        ("Deportivo", 1.8),
        ("Camioneta", 1.6),
        ("Lujo", 2.0),
        ("Furgoneta", 1.0),
        (TipoCoche.SUV, 1.5),
    ],
)
def test_multiplicador_tipo(tipo, multiplicador):
    assert float(precios.multiplicador_tipo(tipo)) == multiplicador


def test_suv_una_semana():
    cotizacion = precios.cotizar("2024-03-01", "2024-03-08", 100, "SUV")

    assert cotizacion.dias == 7
    assert cotizacion.descuento == 15
    assert cotizacion.precio_base == 700.0
    assert cotizacion.precio_total == 892.5


def test_total_por_tipo_con_descuento():
    # 30 días de Lujo a 50: 1500 * 0.70 * 2.0
    assert precios.calcular_precio_total("2024-01-01", "2024-01-31", 50, "Lujo") == 2100.0
    # 3 días de Sedan a 40: 120 * 0.95 * 1.2
    assert precios.calcular_precio_total(date(2024, 5, 1), date(2024, 5, 4), 40, "Sedan") == 136.8


def test_fraccion_de_dia_cuenta_como_dia_entero():
    inicio = datetime(2024, 3, 1, 10, 0)
    assert precios.calcular_dias(inicio, inicio + timedelta(hours=1)) == 1
    assert precios.calcular_dias(inicio, inicio + timedelta(days=2, minutes=1)) == 3


def test_redondeo_hacia_arriba_en_el_punto_medio():
    assert precios.calcular_precio_total("2024-03-01", "2024-03-02", 0.125, "Compacto") == 0.13


def test_fechas_con_zona_horaria():
    inicio = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert precios.calcular_dias(inicio, "2024-03-03T12:00:00Z") == 2


@pytest.mark.parametrize(
    "inicio, fin",
    [
        ("2024-03-08", "2024-03-01"),
        ("2024-03-01", "2024-03-01"),
        ("no es fecha", "2024-03-01"),
        (None, "2024-03-01"),
    ],
)
def test_rango_invalido(inicio, fin):
    with pytest.raises(RangoFechasInvalido):
        precios.cotizar(inicio, fin, 100, "SUV")
