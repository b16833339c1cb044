import os

# La configuración se lee al importar, antes de cargar la aplicación
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENTORNO"] = "test"

import pytest
from fastapi.testclient import TestClient

import crud
import models
import schemas
from auth import create_user_token
from database import Base, SessionLocal, engine
from main import app, servicio_catalogo


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    servicio_catalogo.reiniciar()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def crear_usuario(db, email="cliente@rentacar.com", rol=models.Rol.CLIENTE.value, nombre="Ana"):
    datos = schemas.UserCreate(nombre=nombre, email=email, password="secreto123")
    return crud.create_user(db, datos, rol=rol)


def crear_vehiculo(db, matricula="ABC123", tipo="SUV", precio_dia=100, **extra):
    datos = schemas.VehiculoCreate(
        marca=extra.pop("marca", "Toyota"),
        modelo=extra.pop("modelo", "RAV4"),
        anio=extra.pop("anio", 2022),
        tipo=tipo,
        matricula=matricula,
        precio_dia=precio_dia,
        **extra,
    )
    return crud.create_vehiculo(db, datos)


def headers_para(user):
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
def usuario(db):
    return crear_usuario(db)


@pytest.fixture
def admin(db):
    return crear_usuario(db, email="admin@rentacar.com", rol=models.Rol.ADMIN.value, nombre="Admin")


@pytest.fixture
def vehiculo(db):
    return crear_vehiculo(db)


@pytest.fixture
def user_headers(usuario):
    return headers_para(usuario)


@pytest.fixture
def admin_headers(admin):
    return headers_para(admin)
