import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
import precios
import schemas
from auth import get_password_hash, verify_password
from config import IMPUESTO_FACTURA
from errores import (
    ArgumentoInvalido,
    Conflicto,
    Duplicado,
    ErrorInterno,
    NoAutorizado,
    NoEncontrado,
    RangoFechasInvalido,
)
from models import EstadoReserva
from utils import ahora

logger = logging.getLogger(__name__)

ADVERTENCIA_NO_SINCRONIZADO = (
    "Vehículo no sincronizado con la base de datos. "
    "Los cambios se guardarán cuando el vehículo sea sincronizado."
)


def _next_id(db: Session, model) -> int:
    # Ids numéricos secuenciales: el mayor existente + 1
    return (db.query(func.max(model.id)).scalar() or 0) + 1


# Operaciones de usuario
def create_user(db: Session, user: schemas.UserCreate, rol: str = models.Rol.CLIENTE.value):
    if get_user_by_email(db, user.email):
        raise Duplicado("El correo electrónico ya está registrado")

    hashed_password = get_password_hash(user.password)
    db_user = models.User(
        id=_next_id(db, models.User),
        nombre=user.nombre,
        apellido=user.apellido,
        email=user.email.strip().lower(),
        telefono=user.telefono,
        tipo_documento=user.tipo_documento,
        numero_documento=user.numero_documento,
        hashed_password=hashed_password,
        rol=rol,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_user(db: Session, user_id: int):
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def get_users(db: Session, skip: int = 0, limit: int = 100):
    return db.query(models.User).order_by(models.User.id).offset(skip).limit(limit).all()


def authenticate_user(db: Session, email: str, password: str):
    user = get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def _check_email_libre(db: Session, email: str, user_id: int):
    otro = get_user_by_email(db, email)
    if otro is not None and otro.id != user_id:
        raise Duplicado("El correo electrónico ya está en uso por otro usuario")


def update_user(db: Session, user_id: int, datos: schemas.UserUpdate, es_admin: bool = False):
    db_user = get_user(db, user_id)
    if db_user is None:
        raise NoEncontrado("Usuario no encontrado")

    cambios = datos.model_dump(exclude_unset=True, exclude_none=True)
    if "rol" in cambios and not es_admin:
        raise NoAutorizado("Solo un administrador puede cambiar el rol")
    if "email" in cambios:
        _check_email_libre(db, cambios["email"], user_id)
        cambios["email"] = cambios["email"].strip().lower()
    if "password" in cambios:
        db_user.hashed_password = get_password_hash(cambios.pop("password"))
    if "rol" in cambios:
        cambios["rol"] = models.Rol(cambios["rol"]).value

    for campo, valor in cambios.items():
        setattr(db_user, campo, valor)
    db.commit()
    db.refresh(db_user)
    return db_user


def update_perfil(db: Session, user_id: int, datos: schemas.PerfilUpdate):
    db_user = get_user(db, user_id)
    if db_user is None:
        raise NoEncontrado("Usuario no encontrado")
    _check_email_libre(db, datos.email, user_id)

    db_user.nombre = datos.nombre
    db_user.email = datos.email.strip().lower()
    for campo in ("apellido", "telefono", "tipo_documento", "numero_documento"):
        valor = getattr(datos, campo)
        if valor is not None:
            setattr(db_user, campo, valor)
    db.commit()
    db.refresh(db_user)
    return db_user


def delete_user(db: Session, user_id: int):
    db_user = get_user(db, user_id)
    if db_user is None:
        raise NoEncontrado("Usuario no encontrado")
    if db_user.reservas:
        raise Conflicto("El usuario tiene reservas asociadas")
    # Los checklists que revisó conservan sus datos, sin autor
    db.query(models.Checklist).filter(models.Checklist.ultima_actualizacion_por == user_id).update(
        {models.Checklist.ultima_actualizacion_por: None}, synchronize_session=False
    )
    db.delete(db_user)
    db.commit()


# Operaciones de vehículos
def create_vehiculo(db: Session, vehiculo: schemas.VehiculoCreate):
    if get_vehiculo_by_matricula(db, vehiculo.matricula):
        raise Duplicado("Ya existe un vehículo con esta matrícula")
    db_vehiculo = models.Vehiculo(id=_next_id(db, models.Vehiculo), **vehiculo.model_dump(mode="json"))
    db.add(db_vehiculo)
    db.commit()
    db.refresh(db_vehiculo)
    return db_vehiculo


def get_vehiculo(db: Session, vehiculo_id: int):
    return db.query(models.Vehiculo).filter(models.Vehiculo.id == vehiculo_id).first()


def get_vehiculo_by_matricula(db: Session, matricula: str):
    return db.query(models.Vehiculo).filter(models.Vehiculo.matricula == matricula).first()


def get_vehiculos(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    search: Optional[str] = None,
    tipo: Optional[str] = None,
    marca: Optional[str] = None,
    precio_min: Optional[float] = None,
    precio_max: Optional[float] = None,
    disponible: Optional[bool] = None,
    combustible: Optional[str] = None,
    transmision: Optional[str] = None,
    capacidad: Optional[int] = None,
):
    query = db.query(models.Vehiculo)

    if search:
        patron = f"%{search}%"
        query = query.filter(
            or_(
                models.Vehiculo.marca.ilike(patron),
                models.Vehiculo.modelo.ilike(patron),
                models.Vehiculo.matricula.ilike(patron),
            )
        )
    if tipo:
        query = query.filter(models.Vehiculo.tipo == getattr(tipo, "value", tipo))
    if marca:
        query = query.filter(models.Vehiculo.marca == marca)
    if disponible is not None:
        query = query.filter(models.Vehiculo.disponible == disponible)
    if combustible:
        query = query.filter(models.Vehiculo.combustible == combustible)
    if transmision:
        query = query.filter(models.Vehiculo.transmision == transmision)
    if capacidad is not None:
        query = query.filter(models.Vehiculo.capacidad == capacidad)
    if precio_min is not None:
        query = query.filter(models.Vehiculo.precio_dia >= precio_min)
    if precio_max is not None:
        query = query.filter(models.Vehiculo.precio_dia <= precio_max)

    return (
        query.order_by(models.Vehiculo.marca, models.Vehiculo.modelo)
        .offset(skip)
        .limit(limit)
        .all()
    )


def update_vehiculo(db: Session, vehiculo_id: int, vehiculo: schemas.VehiculoUpdate):
    db_vehiculo = get_vehiculo(db, vehiculo_id)
    if db_vehiculo is None:
        raise NoEncontrado("Vehículo no encontrado")

    cambios = vehiculo.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    nueva_matricula = cambios.get("matricula")
    if nueva_matricula and nueva_matricula != db_vehiculo.matricula:
        if get_vehiculo_by_matricula(db, nueva_matricula):
            raise Duplicado("Ya existe un vehículo con esta matrícula")

    for campo, valor in cambios.items():
        setattr(db_vehiculo, campo, valor)
    db.commit()
    db.refresh(db_vehiculo)
    return db_vehiculo


def delete_vehiculo(db: Session, vehiculo_id: int):
    db_vehiculo = get_vehiculo(db, vehiculo_id)
    if db_vehiculo is None:
        raise NoEncontrado("Vehículo no encontrado")
    if db_vehiculo.reservas:
        raise Conflicto("El vehículo tiene reservas asociadas")
    db.delete(db_vehiculo)
    db.commit()


# Disponibilidad
def get_reservas_solapadas(db: Session, vehiculo_id: int, fecha_inicio: datetime, fecha_fin: datetime):
    """Reservas no canceladas del vehículo que se cruzan con [fecha_inicio, fecha_fin]."""
    return (
        db.query(models.Reserva)
        .filter(
            models.Reserva.vehiculo_id == vehiculo_id,
            models.Reserva.estado != EstadoReserva.CANCELADA.value,
            models.Reserva.fecha_inicio <= fecha_fin,
            models.Reserva.fecha_fin >= fecha_inicio,
        )
        .all()
    )


def vehiculo_disponible_en(db: Session, vehiculo_id: int, fecha_inicio: datetime, fecha_fin: datetime):
    return not get_reservas_solapadas(db, vehiculo_id, fecha_inicio, fecha_fin)


def get_vehiculos_disponibles(db: Session, fecha_inicio: datetime, fecha_fin: datetime):
    # Vehículos que no tienen reservas activas en el rango de fechas
    subquery = (
        db.query(models.Reserva.vehiculo_id)
        .filter(
            models.Reserva.estado != EstadoReserva.CANCELADA.value,
            models.Reserva.fecha_inicio <= fecha_fin,
            models.Reserva.fecha_fin >= fecha_inicio,
        )
        .subquery()
    )

    return (
        db.query(models.Vehiculo)
        .filter(~models.Vehiculo.id.in_(db.query(subquery.c.vehiculo_id)))
        .order_by(models.Vehiculo.marca, models.Vehiculo.modelo)
        .all()
    )


# Operaciones de reservas
def _marcar_no_disponible(db: Session, vehiculo_id: int) -> bool:
    """
    Pone disponible=False solo si el vehículo sigue disponible.
    Devuelve False si otra reserva lo tomó primero.
    """
    filas = (
        db.query(models.Vehiculo)
        .filter(models.Vehiculo.id == vehiculo_id, models.Vehiculo.disponible == True)  # noqa: E712
        .update({models.Vehiculo.disponible: False}, synchronize_session=False)
    )
    return filas == 1


def create_reserva(
    db: Session,
    usuario_id: int,
    vehiculo_id: int,
    fecha_inicio: datetime,
    fecha_fin: datetime,
    precio_total: float,
    estado: EstadoReserva = EstadoReserva.PENDIENTE,
    metodo_pago: Optional[str] = None,
    datos_pago: Optional[dict] = None,
):
    """
    Crea la reserva y marca el vehículo como no disponible en una sola transacción.
    Si cualquiera de las dos escrituras falla no se aplica ninguna.
    """
    if None in (usuario_id, vehiculo_id, fecha_inicio, fecha_fin, precio_total):
        raise ArgumentoInvalido("Todos los campos son requeridos")
    if fecha_inicio >= fecha_fin:
        raise RangoFechasInvalido("La fecha de inicio debe ser anterior a la fecha de fin")

    if get_user(db, usuario_id) is None:
        raise NoEncontrado("Usuario no encontrado")
    vehiculo = get_vehiculo(db, vehiculo_id)
    if vehiculo is None:
        raise NoEncontrado("Vehículo no encontrado")
    if not vehiculo.disponible:
        raise Conflicto("El vehículo no está disponible")
    if get_reservas_solapadas(db, vehiculo_id, fecha_inicio, fecha_fin):
        raise Conflicto("El vehículo no está disponible en las fechas seleccionadas")

    try:
        db_reserva = models.Reserva(
            id=_next_id(db, models.Reserva),
            usuario_id=usuario_id,
            vehiculo_id=vehiculo_id,
            fecha_inicio=fecha_inicio,
            fecha_fin=fecha_fin,
            precio_total=precio_total,
            estado=EstadoReserva(estado).value,
            metodo_pago=metodo_pago,
            datos_pago=datos_pago,
        )
        db.add(db_reserva)
        db.flush()

        if not _marcar_no_disponible(db, vehiculo_id):
            raise Conflicto("El vehículo no está disponible")

        db.commit()
    except Conflicto:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error al crear la reserva para el vehículo %s", vehiculo_id)
        raise ErrorInterno("No se pudo crear la reserva") from e

    db.refresh(db_reserva)
    logger.info(
        "Reserva %s creada: vehículo %s, usuario %s, total %.2f",
        db_reserva.id, vehiculo_id, usuario_id, precio_total,
    )
    return db_reserva


def get_reserva(db: Session, reserva_id: int):
    return db.query(models.Reserva).filter(models.Reserva.id == reserva_id).first()


def get_reservas(db: Session, skip: int = 0, limit: int = 100):
    return db.query(models.Reserva).order_by(models.Reserva.id).offset(skip).limit(limit).all()


def get_reservas_usuario(db: Session, usuario_id: int, skip: int = 0, limit: int = 100):
    return (
        db.query(models.Reserva)
        .filter(models.Reserva.usuario_id == usuario_id)
        .order_by(models.Reserva.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def _liberar_vehiculo(db: Session, vehiculo_id: int):
    # Escritura independiente de la del estado: si falla se registra y no se propaga
    try:
        vehiculo = get_vehiculo(db, vehiculo_id)
        if vehiculo is not None:
            vehiculo.disponible = True
            db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("No se pudo marcar el vehículo %s como disponible", vehiculo_id)


def cancel_reserva(db: Session, reserva: models.Reserva):
    if reserva.estado == EstadoReserva.CANCELADA.value:
        raise Conflicto("La reserva ya está cancelada")
    if reserva.estado == EstadoReserva.COMPLETADA.value:
        raise Conflicto("No se puede cancelar una reserva completada")

    reserva.estado = EstadoReserva.CANCELADA.value
    db.commit()
    _liberar_vehiculo(db, reserva.vehiculo_id)

    db.refresh(reserva)
    logger.info("Reserva %s cancelada", reserva.id)
    return reserva


TRANSICIONES_RESERVA = {
    EstadoReserva.CONFIRMADA: {EstadoReserva.PENDIENTE},
    EstadoReserva.COMPLETADA: {EstadoReserva.PENDIENTE, EstadoReserva.CONFIRMADA},
}


def update_estado_reserva(db: Session, reserva: models.Reserva, nuevo_estado: EstadoReserva):
    """Confirma o completa una reserva. Completarla deja el vehículo libre otra vez."""
    nuevo_estado = EstadoReserva(nuevo_estado)
    permitidos = TRANSICIONES_RESERVA.get(nuevo_estado, set())
    if EstadoReserva(reserva.estado) not in permitidos:
        raise Conflicto(f"No se puede pasar de {reserva.estado} a {nuevo_estado.value}")

    reserva.estado = nuevo_estado.value
    db.commit()
    if nuevo_estado == EstadoReserva.COMPLETADA:
        _liberar_vehiculo(db, reserva.vehiculo_id)

    db.refresh(reserva)
    return reserva


def generar_factura(reserva: models.Reserva) -> dict:
    dias = precios.calcular_dias(reserva.fecha_inicio, reserva.fecha_fin)
    auto = reserva.vehiculo
    subtotal = auto.precio_dia * dias

    return {
        "numero_factura": f"INV-{reserva.id}-{str(int(time.time() * 1000))[-4:]}",
        "fecha": ahora(),
        "cliente": {
            "nombre": reserva.usuario.nombre,
            "email": reserva.usuario.email,
            "telefono": reserva.usuario.telefono,
        },
        "reserva": {
            "id": reserva.id,
            "fecha_inicio": reserva.fecha_inicio,
            "fecha_fin": reserva.fecha_fin,
            "dias": dias,
        },
        "auto": {
            "marca": auto.marca,
            "modelo": auto.modelo,
            "anio": auto.anio,
            "tipo": auto.tipo,
            "precio_dia": auto.precio_dia,
        },
        "detalles": {
            "subtotal": subtotal,
            "impuestos": float(precios.redondear(Decimal(str(subtotal)) * Decimal(str(IMPUESTO_FACTURA)))),
            "total": reserva.precio_total,
        },
    }


# Operaciones de checklists
def nuevo_checklist(vehiculo_id: int) -> models.Checklist:
    """
    Checklist con los valores por defecto: tanque lleno, sin rayones y el
    inventario básico completo y en buen estado. No se agrega a la sesión.
    """
    momento = ahora()
    return models.Checklist(
        vehiculo_id=vehiculo_id,
        nivel_gasolina="Lleno",
        porcentaje_gasolina=100,
        estado_general="Bueno",
        observaciones="",
        fecha_ultima_revision=momento,
        created_at=momento,
        updated_at=momento,
        rayones=[],
        inventario=[
            models.ItemInventario(nombre=nombre, presente=True, condicion="Bueno", notas="")
            for nombre in models.INVENTARIO_POR_DEFECTO
        ],
    )


def _find_checklist(db: Session, vehiculo_id: int):
    return db.query(models.Checklist).filter(models.Checklist.vehiculo_id == vehiculo_id).first()


def _get_or_add_checklist(db: Session, vehiculo_id: int):
    # (checklist, advertencia, es_nuevo); sin vehículo el checklist es temporal
    if get_vehiculo(db, vehiculo_id) is None:
        logger.info("Vehículo %s no encontrado, usando checklist temporal", vehiculo_id)
        return nuevo_checklist(vehiculo_id), ADVERTENCIA_NO_SINCRONIZADO, False

    checklist = _find_checklist(db, vehiculo_id)
    if checklist is None:
        checklist = nuevo_checklist(vehiculo_id)
        db.add(checklist)
        return checklist, None, True
    return checklist, None, False


def get_checklist(db: Session, vehiculo_id: int):
    checklist, advertencia, es_nuevo = _get_or_add_checklist(db, vehiculo_id)
    if es_nuevo:
        db.commit()
        db.refresh(checklist)
        logger.info("Checklist creado para el vehículo %s", vehiculo_id)
    return checklist, advertencia


def _guardar_checklist(db: Session, checklist: models.Checklist, advertencia, usuario_id):
    checklist.fecha_ultima_revision = ahora()
    if advertencia is not None:
        return
    if usuario_id is not None:
        checklist.ultima_actualizacion_por = usuario_id
    db.commit()
    db.refresh(checklist)


def update_checklist(
    db: Session, vehiculo_id: int, datos: schemas.ChecklistUpdate, usuario_id: Optional[int] = None
):
    """Actualiza solo los campos enviados; el resto del checklist queda igual."""
    checklist, advertencia, _ = _get_or_add_checklist(db, vehiculo_id)
    cambios = datos.model_dump(exclude_unset=True)

    for campo, valor in cambios.items():
        if valor is None:
            continue
        if campo == "rayones":
            checklist.rayones = [
                models.Rayon(
                    descripcion=r["descripcion"],
                    ubicacion=r["ubicacion"],
                    fecha=r.get("fecha") or ahora(),
                )
                for r in valor
            ]
        elif campo == "inventario":
            checklist.inventario = [models.ItemInventario(**item) for item in valor]
        else:
            setattr(checklist, campo, valor)

    _guardar_checklist(db, checklist, advertencia, usuario_id)
    return checklist, advertencia


def add_rayon(
    db: Session, vehiculo_id: int, descripcion: str, ubicacion: str, usuario_id: Optional[int] = None
):
    if not descripcion or not descripcion.strip() or not ubicacion or not ubicacion.strip():
        raise ArgumentoInvalido("Descripción y ubicación son requeridos")

    checklist, advertencia, _ = _get_or_add_checklist(db, vehiculo_id)
    checklist.rayones.append(
        models.Rayon(descripcion=descripcion.strip(), ubicacion=ubicacion.strip(), fecha=ahora())
    )
    _guardar_checklist(db, checklist, advertencia, usuario_id)
    return checklist, advertencia


def remove_rayon(db: Session, vehiculo_id: int, rayon_id: int, usuario_id: Optional[int] = None):
    checklist = _find_checklist(db, vehiculo_id)
    if checklist is None:
        raise NoEncontrado("Checklist no encontrado")

    restantes = [r for r in checklist.rayones if r.id != rayon_id]
    # Un rayón inexistente no es un error
    if len(restantes) != len(checklist.rayones):
        checklist.rayones = restantes
        _guardar_checklist(db, checklist, None, usuario_id)
    return checklist


def get_checklists(db: Session):
    return (
        db.query(models.Checklist)
        .order_by(models.Checklist.fecha_ultima_revision.desc())
        .all()
    )


def resumen_checklist(checklist: models.Checklist) -> dict:
    return {
        "id": checklist.id,
        "vehiculo_id": checklist.vehiculo_id,
        "nivel_gasolina": checklist.nivel_gasolina,
        "porcentaje_gasolina": checklist.porcentaje_gasolina,
        "cantidad_rayones": len(checklist.rayones),
        "items_inventario": len(checklist.inventario),
        "items_faltantes": len([i for i in checklist.inventario if not i.presente]),
        "estado_general": checklist.estado_general,
        "fecha_ultima_revision": checklist.fecha_ultima_revision,
        "observaciones": checklist.observaciones,
    }


def delete_checklist(db: Session, vehiculo_id: int):
    checklist = _find_checklist(db, vehiculo_id)
    if checklist is None:
        raise NoEncontrado("Checklist no encontrado")
    db.delete(checklist)
    db.commit()


# Dashboard
def get_estadisticas(db: Session):
    momento = ahora()
    activas = db.query(models.Reserva).filter(
        models.Reserva.estado.in_([EstadoReserva.PENDIENTE.value, EstadoReserva.CONFIRMADA.value]),
        models.Reserva.fecha_inicio <= momento,
        models.Reserva.fecha_fin >= momento,
    )
    no_canceladas = models.Reserva.estado != EstadoReserva.CANCELADA.value

    # Tipo de vehículo con más reservas
    tipo_mas_reservado = (
        db.query(models.Vehiculo.tipo, func.count(models.Reserva.id).label("total_reservas"))
        .join(models.Reserva, models.Reserva.vehiculo_id == models.Vehiculo.id)
        .group_by(models.Vehiculo.tipo)
        .order_by(func.count(models.Reserva.id).desc())
        .first()
    )

    # Vehículo con más reservas
    vehiculo_mas_reservado = (
        db.query(
            models.Vehiculo.marca,
            models.Vehiculo.modelo,
            func.count(models.Reserva.id).label("total_reservas"),
        )
        .join(models.Reserva, models.Reserva.vehiculo_id == models.Vehiculo.id)
        .group_by(models.Vehiculo.id, models.Vehiculo.marca, models.Vehiculo.modelo)
        .order_by(func.count(models.Reserva.id).desc())
        .first()
    )

    return {
        "total_vehiculos": db.query(models.Vehiculo).count(),
        "vehiculos_disponibles": db.query(models.Vehiculo)
        .filter(models.Vehiculo.disponible == True)  # noqa: E712
        .count(),
        "total_usuarios": db.query(models.User).count(),
        "total_reservas_activas": activas.count(),
        "reservas_ultimo_mes": db.query(models.Reserva)
        .filter(models.Reserva.created_at >= momento - timedelta(days=30))
        .count(),
        "ingresos_totales": float(
            db.query(func.coalesce(func.sum(models.Reserva.precio_total), 0))
            .filter(no_canceladas)
            .scalar()
        ),
        "tipo_mas_reservado": tipo_mas_reservado[0] if tipo_mas_reservado else None,
        "vehiculo_mas_reservado": (
            f"{vehiculo_mas_reservado[0]} {vehiculo_mas_reservado[1]}" if vehiculo_mas_reservado else None
        ),
    }
