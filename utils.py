from datetime import date, datetime, time, timezone

from errores import RangoFechasInvalido


def ahora() -> datetime:
    """Fecha y hora actual en UTC, sin zona horaria (así se guardan en la base de datos)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_date_aware(d: datetime):
    return d.tzinfo is not None and d.tzinfo.utcoffset(d) is not None


def to_naive_utc(d: datetime) -> datetime:
    if is_date_aware(d):
        return d.astimezone(timezone.utc).replace(tzinfo=None)
    return d


def parse_fecha(valor) -> datetime:
    """
    Convierte una fecha recibida por la API en un datetime naive (UTC).
    Acepta datetime, date o texto ISO ("2024-03-01", "2024-03-01T10:00", "...Z").
    """
    if isinstance(valor, datetime):
        return to_naive_utc(valor)
    if isinstance(valor, date):
        return datetime.combine(valor, time.min)
    if not isinstance(valor, str) or not valor.strip():
        raise RangoFechasInvalido("Fechas inválidas")

    texto = valor.strip()
    if texto.endswith("Z"):
        texto = texto[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(texto))
    except ValueError:
        raise RangoFechasInvalido(f"Fecha inválida: {valor}")


def is_overlapping(inicio_a: datetime, fin_a: datetime, inicio_b: datetime, fin_b: datetime):
    """Dos rangos se solapan si cada uno empieza antes (o justo cuando) termina el otro."""
    return inicio_a <= fin_b and fin_a >= inicio_b


def parse_rango(inicio, fin):
    """Devuelve (inicio, fin) como datetime; el inicio debe ser anterior al fin."""
    inicio, fin = parse_fecha(inicio), parse_fecha(fin)
    if inicio >= fin:
        raise RangoFechasInvalido("La fecha de inicio debe ser anterior a la fecha de fin")
    return inicio, fin
