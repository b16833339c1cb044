"""
Carga inicial de datos.

    python seed.py --admin
    python seed.py --autos autos.json

--admin crea la cuenta de administrador (o le da el rol si ya existe).
--autos importa vehículos desde un archivo JSON (se aceptan los nombres de
campo heredados) y reconcilia el catálogo al terminar.
"""
import argparse
import json
import logging
import os

from pydantic import ValidationError

import crud
import models
import schemas
from catalogo import ServicioCatalogo
from config import LOG_LEVEL
from database import SessionLocal, engine
from errores import Duplicado

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@rentacar.com"
ADMIN_PASSWORD = os.getenv("RENTACAR_ADMIN_PASSWORD", "admin123")


def crear_admin(db) -> models.User:
    user = crud.get_user_by_email(db, ADMIN_EMAIL)
    if user is None:
        datos = schemas.UserCreate(
            nombre="Administrador",
            apellido="Sistema",
            email=ADMIN_EMAIL,
            password=ADMIN_PASSWORD,
        )
        user = crud.create_user(db, datos, rol=models.Rol.ADMIN.value)
        logger.info("Administrador creado: %s", ADMIN_EMAIL)
    elif user.rol != models.Rol.ADMIN.value:
        user = crud.update_user(db, user.id, schemas.UserUpdate(rol=models.Rol.ADMIN), es_admin=True)
        logger.info("Usuario %s promovido a administrador", ADMIN_EMAIL)
    else:
        logger.info("El administrador ya existe")
    return user


def importar_autos(db, registros) -> dict:
    resumen = {"creados": 0, "duplicados": 0, "invalidos": 0}
    for registro in registros:
        try:
            datos = schemas.VehiculoCreate.model_validate(registro)
        except ValidationError as e:
            resumen["invalidos"] += 1
            logger.warning("Vehículo inválido %s: %s", registro.get("matricula"), e.errors()[0]["msg"])
            continue
        try:
            crud.create_vehiculo(db, datos)
        except Duplicado:
            resumen["duplicados"] += 1
            continue
        resumen["creados"] += 1
    return resumen


def main(argv=None):
    parser = argparse.ArgumentParser(description="Carga inicial de datos de RentaCar")
    parser.add_argument("--admin", action="store_true", help="crear o promover la cuenta de administrador")
    parser.add_argument("--autos", metavar="ARCHIVO", help="archivo JSON con una lista de vehículos")
    args = parser.parse_args(argv)

    if not args.admin and not args.autos:
        parser.error("indica --admin y/o --autos")

    logging.basicConfig(level=LOG_LEVEL)
    models.Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        if args.admin:
            crear_admin(db)
        if args.autos:
            with open(args.autos, encoding="utf-8") as f:
                registros = json.load(f)
            resumen = importar_autos(db, registros)
            logger.info(
                "Importación terminada: %(creados)d creados, %(duplicados)d duplicados, %(invalidos)d inválidos",
                resumen,
            )

    if args.autos:
        resultado = ServicioCatalogo(SessionLocal).reconciliar()
        if not resultado.ok:
            logger.warning(resultado.error)


if __name__ == "__main__":
    main()
