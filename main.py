import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import crud
import models
import precios
import schemas
from auth import create_user_token, decode_access_token
from catalogo import ServicioCatalogo
from config import CORS_ORIGINS, ENTORNO, LOG_LEVEL
from database import SessionLocal, engine, get_db
from errores import ErrorInterno, ErrorRenta, NoAutorizado, NoEncontrado
from utils import parse_rango

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Crear las tablas en la base de datos
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="RentaCar API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

servicio_catalogo = ServicioCatalogo(SessionLocal)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


# Manejo de errores: toda respuesta usa el sobre {success, message, ...}
@app.exception_handler(ErrorRenta)
async def error_renta_handler(request: Request, exc: ErrorRenta):
    return JSONResponse(
        status_code=exc.codigo_http,
        content={"success": False, "message": exc.mensaje},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errores = []
    for e in exc.errors():
        campo = ".".join(str(p) for p in e["loc"] if p != "body")
        errores.append(f"{campo}: {e['msg']}" if campo else e["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Datos inválidos", "error": errores},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Error no controlado en %s %s", request.method, request.url.path)
    contenido = {"success": False, "message": "Error interno del servidor"}
    if ENTORNO == "development":
        contenido["error"] = str(exc)
    return JSONResponse(status_code=500, content=contenido)


# Dependencias de autenticación
def _no_autenticado(detalle: str):
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detalle,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    if not token:
        raise _no_autenticado("No se proporcionó un token de autenticación")
    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
        if user_id is None:
            raise _no_autenticado("Token inválido")
        token_data = schemas.TokenData(user_id=int(user_id))
    except ExpiredSignatureError:
        raise _no_autenticado("Token expirado")
    except (JWTError, ValueError):
        raise _no_autenticado("Token inválido")

    user = crud.get_user(db, user_id=token_data.user_id)
    if user is None:
        raise _no_autenticado("Token inválido")
    return user


async def get_admin_user(current_user: models.User = Depends(get_current_user)):
    if current_user.rol != models.Rol.ADMIN.value:
        raise HTTPException(status_code=403, detail="Se requieren privilegios de administrador")
    return current_user


def es_admin(user: models.User) -> bool:
    return user.rol == models.Rol.ADMIN.value


def ensure_owner_or_admin(user: models.User, propietario_id: int, mensaje: str):
    if propietario_id != user.id and not es_admin(user):
        raise NoAutorizado(mensaje)


@app.get("/api/test")
def test_api():
    return {"success": True, "message": "API funcionando correctamente"}


# Rutas de autenticación
@app.post("/api/auth/register", response_model=schemas.Respuesta[schemas.Sesion], status_code=201)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    db_user = crud.create_user(db=db, user=user)
    logger.info("Usuario %s registrado", db_user.id)
    return {
        "data": {"usuario": db_user, "token": create_user_token(db_user)},
        "message": "Usuario registrado correctamente",
    }


@app.post("/api/auth/login", response_model=schemas.Respuesta[schemas.Sesion])
def login(credenciales: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate_user(db, credenciales.email, credenciales.password)
    if not user:
        raise HTTPException(status_code=401, detail="Credenciales inválidas")
    return {"data": {"usuario": user, "token": create_user_token(user)}}


@app.post("/api/auth/token", response_model=schemas.Token)
def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    user = crud.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise _no_autenticado("Credenciales inválidas")
    return {"access_token": create_user_token(user), "token_type": "bearer"}


@app.get("/api/auth/me", response_model=schemas.Respuesta[schemas.User])
async def read_users_me(current_user: models.User = Depends(get_current_user)):
    return {"data": current_user}


# Rutas para vehículos
@app.get("/api/autos", response_model=schemas.Respuesta[List[schemas.Vehiculo]])
def read_vehiculos(
    skip: int = 0,
    limit: int = 100,
    tipo: Optional[models.TipoCoche] = None,
    marca: Optional[str] = None,
    precio_min: Optional[float] = None,
    precio_max: Optional[float] = None,
    disponible: Optional[bool] = None,
    combustible: Optional[str] = None,
    transmision: Optional[str] = None,
    capacidad: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Obtiene los vehículos ordenados por marca y modelo, con filtros opcionales"""
    return {
        "data": crud.get_vehiculos(
            db, skip=skip, limit=limit, tipo=tipo, marca=marca,
            precio_min=precio_min, precio_max=precio_max, disponible=disponible,
            combustible=combustible, transmision=transmision, capacidad=capacidad,
        )
    }


@app.get("/api/autos/search", response_model=schemas.Respuesta[List[schemas.Vehiculo]])
def search_vehiculos(
    query: Optional[str] = None,
    tipo: Optional[models.TipoCoche] = None,
    marca: Optional[str] = None,
    precio_min: Optional[float] = None,
    precio_max: Optional[float] = None,
    disponible: Optional[bool] = None,
    combustible: Optional[str] = None,
    transmision: Optional[str] = None,
    capacidad: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Busca por texto en marca, modelo o matrícula, además de los filtros"""
    return {
        "data": crud.get_vehiculos(
            db, search=query, tipo=tipo, marca=marca,
            precio_min=precio_min, precio_max=precio_max, disponible=disponible,
            combustible=combustible, transmision=transmision, capacidad=capacidad,
        )
    }


@app.get("/api/autos/disponibles", response_model=schemas.Respuesta[List[schemas.Vehiculo]])
def read_vehiculos_disponibles(fecha_inicio: str, fecha_fin: str, db: Session = Depends(get_db)):
    """Obtiene vehículos sin reservas activas en un rango de fechas"""
    inicio, fin = parse_rango(fecha_inicio, fecha_fin)
    return {"data": crud.get_vehiculos_disponibles(db, inicio, fin)}


@app.get("/api/autos/{vehiculo_id}", response_model=schemas.Respuesta[schemas.Vehiculo])
def read_vehiculo(vehiculo_id: int, db: Session = Depends(get_db)):
    db_vehiculo = crud.get_vehiculo(db, vehiculo_id=vehiculo_id)
    if db_vehiculo is None:
        raise NoEncontrado("Vehículo no encontrado")
    return {"data": db_vehiculo}


@app.post("/api/autos/{vehiculo_id}/disponibilidad", response_model=schemas.Respuesta[schemas.Disponibilidad])
def check_disponibilidad(vehiculo_id: int, rango: schemas.RangoFechas, db: Session = Depends(get_db)):
    """Indica si el vehículo no tiene reservas activas que se crucen con el rango"""
    if crud.get_vehiculo(db, vehiculo_id=vehiculo_id) is None:
        raise NoEncontrado("Vehículo no encontrado")
    inicio, fin = parse_rango(rango.fecha_inicio, rango.fecha_fin)
    conflictos = crud.get_reservas_solapadas(db, vehiculo_id, inicio, fin)
    return {
        "data": {
            "vehiculo_id": vehiculo_id,
            "disponible": not conflictos,
            "conflictos": len(conflictos),
        }
    }


@app.post("/api/autos", response_model=schemas.Respuesta[schemas.Vehiculo], status_code=201)
def create_vehiculo(
    vehiculo: schemas.VehiculoCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    """Crea un nuevo vehículo (solo administradores)"""
    db_vehiculo = crud.create_vehiculo(db=db, vehiculo=vehiculo)
    resultado = servicio_catalogo.agregar_auto(db_vehiculo.id)
    return {
        "data": db_vehiculo,
        "message": "Vehículo creado correctamente",
        "warning": None if resultado.ok else resultado.error,
    }


@app.put("/api/autos/{vehiculo_id}", response_model=schemas.Respuesta[schemas.Vehiculo])
def update_vehiculo(
    vehiculo_id: int,
    vehiculo: schemas.VehiculoUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    """Actualiza un vehículo (solo administradores)"""
    return {
        "data": crud.update_vehiculo(db=db, vehiculo_id=vehiculo_id, vehiculo=vehiculo),
        "message": "Vehículo actualizado correctamente",
    }


@app.delete("/api/autos/{vehiculo_id}", response_model=schemas.Respuesta[None])
def delete_vehiculo(
    vehiculo_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    """Elimina un vehículo (solo administradores)"""
    crud.delete_vehiculo(db=db, vehiculo_id=vehiculo_id)
    resultado = servicio_catalogo.quitar_auto(vehiculo_id)
    return {
        "message": "Vehículo eliminado correctamente",
        "warning": None if resultado.ok else resultado.error,
    }


# Rutas para checklists
@app.get("/api/checklists", response_model=schemas.Respuesta[List[schemas.ChecklistResumen]])
def read_checklists(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    """Resumen de todos los checklists, del más reciente al más antiguo (solo administradores)"""
    return {"data": [crud.resumen_checklist(c) for c in crud.get_checklists(db)]}


@app.get("/api/autos/{vehiculo_id}/checklist", response_model=schemas.Respuesta[schemas.Checklist])
def read_checklist(
    vehiculo_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    checklist, advertencia = crud.get_checklist(db, vehiculo_id)
    return {"data": checklist, "warning": advertencia}


@app.put("/api/autos/{vehiculo_id}/checklist", response_model=schemas.Respuesta[schemas.Checklist])
def update_checklist(
    vehiculo_id: int,
    datos: schemas.ChecklistUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    checklist, advertencia = crud.update_checklist(db, vehiculo_id, datos, usuario_id=current_user.id)
    return {"data": checklist, "message": "Checklist actualizado correctamente", "warning": advertencia}


@app.delete("/api/autos/{vehiculo_id}/checklist", response_model=schemas.Respuesta[None])
def delete_checklist(
    vehiculo_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    crud.delete_checklist(db, vehiculo_id)
    return {"message": "Checklist eliminado correctamente"}


@app.post(
    "/api/autos/{vehiculo_id}/checklist/rayones",
    response_model=schemas.Respuesta[schemas.Checklist],
    status_code=201,
)
def add_rayon(
    vehiculo_id: int,
    rayon: schemas.RayonCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    checklist, advertencia = crud.add_rayon(
        db, vehiculo_id, rayon.descripcion, rayon.ubicacion, usuario_id=current_user.id
    )
    return {"data": checklist, "message": "Rayón agregado correctamente", "warning": advertencia}


@app.delete(
    "/api/autos/{vehiculo_id}/checklist/rayones/{rayon_id}",
    response_model=schemas.Respuesta[schemas.Checklist],
)
def remove_rayon(
    vehiculo_id: int,
    rayon_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    checklist = crud.remove_rayon(db, vehiculo_id, rayon_id, usuario_id=current_user.id)
    return {"data": checklist, "message": "Rayón eliminado correctamente"}


# Rutas para el catálogo
@app.get("/api/catalogo", response_model=schemas.Respuesta[List[schemas.Vehiculo]])
def read_catalogo():
    return {"data": servicio_catalogo.ver_catalogo()}


@app.get("/api/catalogo/search", response_model=schemas.Respuesta[List[schemas.Vehiculo]])
def search_catalogo(query: Optional[str] = None):
    return {"data": servicio_catalogo.buscar(query)}


@app.post("/api/catalogo/reconciliar", response_model=schemas.Respuesta[List[int]])
def reconciliar_catalogo(current_user: models.User = Depends(get_admin_user)):
    """Agrega al catálogo los vehículos que falten (solo administradores)"""
    resultado = servicio_catalogo.reconciliar()
    if not resultado.ok:
        raise ErrorInterno(resultado.error)
    return {"data": resultado.valor, "message": "Catálogo reconciliado"}


@app.get("/api/catalogo/{vehiculo_id}", response_model=schemas.Respuesta[schemas.Vehiculo])
def read_catalogo_auto(vehiculo_id: int):
    auto = servicio_catalogo.ver_auto(vehiculo_id)
    if auto is None:
        raise NoEncontrado("Vehículo no encontrado en el catálogo")
    return {"data": auto}


# Rutas para usuarios
@app.get("/api/usuarios", response_model=schemas.Respuesta[List[schemas.User]])
def read_usuarios(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    return {"data": crud.get_users(db, skip=skip, limit=limit)}


@app.get("/api/usuarios/{user_id}", response_model=schemas.Respuesta[schemas.User])
def read_usuario(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    ensure_owner_or_admin(current_user, user_id, "No tienes permiso para ver este usuario")
    db_user = crud.get_user(db, user_id=user_id)
    if db_user is None:
        raise NoEncontrado("Usuario no encontrado")
    return {"data": db_user}


@app.put("/api/usuarios/{user_id}", response_model=schemas.Respuesta[schemas.User])
def update_usuario(
    user_id: int,
    datos: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    ensure_owner_or_admin(current_user, user_id, "No tienes permiso para modificar este usuario")
    db_user = crud.update_user(db, user_id, datos, es_admin=es_admin(current_user))
    return {"data": db_user, "message": "Usuario actualizado correctamente"}


@app.put("/api/usuarios/{user_id}/profile", response_model=schemas.Respuesta[schemas.User])
def update_perfil(
    user_id: int,
    datos: schemas.PerfilUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    ensure_owner_or_admin(current_user, user_id, "No tienes permiso para modificar este perfil")
    db_user = crud.update_perfil(db, user_id, datos)
    return {"data": db_user, "message": "Perfil actualizado correctamente"}


@app.delete("/api/usuarios/{user_id}", response_model=schemas.Respuesta[None])
def delete_usuario(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    crud.delete_user(db, user_id)
    return {"message": "Usuario eliminado correctamente"}


@app.get("/api/usuarios/{user_id}/reservas", response_model=schemas.Respuesta[List[schemas.ReservaDetalle]])
def read_reservas_de_usuario(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    ensure_owner_or_admin(current_user, user_id, "No tienes permiso para ver estas reservas")
    return {"data": crud.get_reservas_usuario(db, usuario_id=user_id)}


# Rutas para reservas
@app.post("/api/reservas", response_model=schemas.Respuesta[schemas.ReservaCreada], status_code=201)
def create_reserva(
    reserva: schemas.ReservaCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    """Crea una reserva; un administrador puede hacerla a nombre de otro usuario"""
    usuario_id = current_user.id
    if reserva.usuario_id is not None and reserva.usuario_id != current_user.id:
        ensure_owner_or_admin(current_user, reserva.usuario_id, "No puedes reservar a nombre de otro usuario")
        usuario_id = reserva.usuario_id

    vehiculo = crud.get_vehiculo(db, vehiculo_id=reserva.vehiculo_id)
    if vehiculo is None:
        raise NoEncontrado("Vehículo no encontrado")
    inicio, fin = parse_rango(reserva.fecha_inicio, reserva.fecha_fin)
    precio_total = precios.calcular_precio_total(inicio, fin, vehiculo.precio_dia, vehiculo.tipo)

    db_reserva = crud.create_reserva(
        db,
        usuario_id=usuario_id,
        vehiculo_id=vehiculo.id,
        fecha_inicio=inicio,
        fecha_fin=fin,
        precio_total=precio_total,
        metodo_pago=reserva.metodo_pago,
        datos_pago=reserva.datos_pago.model_dump(mode="json") if reserva.datos_pago else None,
    )
    return {
        "data": {"reserva": db_reserva, "precio_total": precio_total},
        "message": "Reserva creada correctamente",
    }


@app.get("/api/reservas", response_model=schemas.Respuesta[List[schemas.ReservaDetalle]])
def read_reservas(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    """Obtiene todas las reservas (solo administradores)"""
    return {"data": crud.get_reservas(db, skip=skip, limit=limit)}


@app.get("/api/reservas/me", response_model=schemas.Respuesta[List[schemas.ReservaDetalle]])
def read_mis_reservas(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    """Obtiene las reservas del usuario actual"""
    return {"data": crud.get_reservas_usuario(db, usuario_id=current_user.id, skip=skip, limit=limit)}


@app.post("/api/reservas/calcular-precio", response_model=schemas.Respuesta[schemas.Cotizacion])
def calcular_precio(pedido: schemas.CotizacionRequest, db: Session = Depends(get_db)):
    vehiculo = crud.get_vehiculo(db, vehiculo_id=pedido.vehiculo_id)
    if vehiculo is None:
        raise NoEncontrado("Vehículo no encontrado")
    cotizacion = precios.cotizar(pedido.fecha_inicio, pedido.fecha_fin, vehiculo.precio_dia, vehiculo.tipo)
    return {
        "data": {
            "dias": cotizacion.dias,
            "descuento": cotizacion.descuento,
            "multiplicador": cotizacion.multiplicador,
            "precio_base": cotizacion.precio_base,
            "precio_total": cotizacion.precio_total,
            "auto": vehiculo,
        }
    }


def _get_reserva(db: Session, reserva_id: int):
    db_reserva = crud.get_reserva(db, reserva_id=reserva_id)
    if db_reserva is None:
        raise NoEncontrado("Reserva no encontrada")
    return db_reserva


def _get_reserva_propia(db: Session, reserva_id: int, user: models.User, mensaje: str):
    db_reserva = _get_reserva(db, reserva_id)
    ensure_owner_or_admin(user, db_reserva.usuario_id, mensaje)
    return db_reserva


@app.get("/api/reservas/{reserva_id}", response_model=schemas.Respuesta[schemas.ReservaDetalle])
def read_reserva(
    reserva_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    """Obtiene una reserva específica (solo si pertenece al usuario o es admin)"""
    return {"data": _get_reserva_propia(db, reserva_id, current_user, "No tienes permiso para ver esta reserva")}


@app.put("/api/reservas/{reserva_id}/cancelar", response_model=schemas.Respuesta[schemas.Reserva])
def cancel_reserva(
    reserva_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    """Cancela una reserva y deja el vehículo disponible otra vez"""
    db_reserva = _get_reserva_propia(db, reserva_id, current_user, "No tienes permiso para cancelar esta reserva")
    return {"data": crud.cancel_reserva(db, db_reserva), "message": "Reserva cancelada correctamente"}


@app.put("/api/reservas/{reserva_id}/confirmar", response_model=schemas.Respuesta[schemas.Reserva])
def confirm_reserva(
    reserva_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    db_reserva = _get_reserva(db, reserva_id)
    db_reserva = crud.update_estado_reserva(db, db_reserva, models.EstadoReserva.CONFIRMADA)
    return {"data": db_reserva, "message": "Reserva confirmada"}


@app.put("/api/reservas/{reserva_id}/completar", response_model=schemas.Respuesta[schemas.Reserva])
def complete_reserva(
    reserva_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    db_reserva = _get_reserva(db, reserva_id)
    db_reserva = crud.update_estado_reserva(db, db_reserva, models.EstadoReserva.COMPLETADA)
    return {"data": db_reserva, "message": "Reserva completada"}


@app.get("/api/reservas/{reserva_id}/factura", response_model=schemas.Respuesta[schemas.Factura])
def read_factura(
    reserva_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    db_reserva = _get_reserva_propia(db, reserva_id, current_user, "No tienes permiso para ver esta factura")
    return {"data": crud.generar_factura(db_reserva)}


# Rutas para el dashboard
@app.get("/api/dashboard/estadisticas", response_model=schemas.Respuesta[schemas.Estadisticas])
def get_estadisticas(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_admin_user)
):
    """Obtiene estadísticas para el dashboard (solo administradores)"""
    return {"data": crud.get_estadisticas(db)}


# Configuración para producción
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
