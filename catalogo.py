"""
Catálogo público de vehículos.

El catálogo es un único registro con la lista ordenada de ids de vehículos.
Se reconstruye a partir de la tabla vehiculos: cada vehículo que falte se
agrega al final, en orden de id, sin quitar ni duplicar ninguno. Las
operaciones devuelven un Resultado en lugar de lanzar excepciones, porque
un fallo del catálogo nunca debe romper el alta o la baja de un vehículo.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

import models
import schemas

logger = logging.getLogger(__name__)


@dataclass
class Resultado:
    ok: bool
    valor: Any = None
    error: Optional[str] = None

    @classmethod
    def exito(cls, valor=None):
        return cls(ok=True, valor=valor)

    @classmethod
    def fallo(cls, error: str):
        return cls(ok=False, error=error)


class ServicioCatalogo:
    def __init__(self, session_factory):
        self._session_factory = session_factory
        # Última lista leída con éxito, para cuando la base no responde
        self._ultima_lista: List[dict] = []

    def _obtener_o_crear(self, db) -> models.Catalogo:
        catalogo = db.query(models.Catalogo).order_by(models.Catalogo.id).first()
        if catalogo is None:
            catalogo = models.Catalogo(id=1, lista_autos=[])
            db.add(catalogo)
            db.commit()
            db.refresh(catalogo)
            logger.info("Catálogo creado vacío")
        return catalogo

    def _reconciliar(self, db) -> List[int]:
        catalogo = self._obtener_o_crear(db)
        actuales = list(catalogo.lista_autos or [])
        presentes = set(actuales)
        ids = [fila[0] for fila in db.query(models.Vehiculo.id).order_by(models.Vehiculo.id)]

        faltantes = [i for i in ids if i not in presentes]
        if faltantes:
            # Lista nueva para que SQLAlchemy detecte el cambio en la columna JSON
            catalogo.lista_autos = actuales + faltantes
            db.commit()
            logger.info("Catálogo reconciliado: %d vehículos agregados", len(faltantes))
        return list(catalogo.lista_autos)

    def cargar(self) -> Resultado:
        try:
            with self._session_factory() as db:
                return Resultado.exito(list(self._obtener_o_crear(db).lista_autos))
        except SQLAlchemyError as e:
            logger.warning("No se pudo cargar el catálogo: %s", e)
            return Resultado.fallo("No se pudo cargar el catálogo")

    def reconciliar(self) -> Resultado:
        try:
            with self._session_factory() as db:
                return Resultado.exito(self._reconciliar(db))
        except SQLAlchemyError as e:
            logger.warning("No se pudo reconciliar el catálogo: %s", e)
            return Resultado.fallo("No se pudo reconciliar el catálogo")

    def ver_catalogo(self) -> List[dict]:
        """
        Vehículos del catálogo en su orden. Si hay vehículos que el catálogo
        no tiene, primero se reconcilia. Nunca lanza: si la base no responde
        devuelve la última lista buena.
        """
        try:
            with self._session_factory() as db:
                catalogo = self._obtener_o_crear(db)
                lista = list(catalogo.lista_autos or [])
                total = db.query(models.Vehiculo).count()
                conocidos = (
                    db.query(models.Vehiculo).filter(models.Vehiculo.id.in_(lista)).count()
                    if lista
                    else 0
                )
                if conocidos < total:
                    lista = self._reconciliar(db)

                por_id = {
                    v.id: v
                    for v in db.query(models.Vehiculo).filter(models.Vehiculo.id.in_(lista))
                }
                autos = [
                    schemas.Vehiculo.model_validate(por_id[i]).model_dump(mode="json")
                    for i in lista
                    if i in por_id
                ]
        except SQLAlchemyError as e:
            logger.warning("Catálogo no disponible, usando la última lista: %s", e)
            return list(self._ultima_lista)

        self._ultima_lista = autos
        return list(autos)

    def buscar(self, texto: str) -> List[dict]:
        texto = (texto or "").strip().lower()
        autos = self.ver_catalogo()
        if not texto:
            return autos
        return [
            a for a in autos
            if texto in a["marca"].lower() or texto in a["modelo"].lower() or texto in a["tipo"].lower()
        ]

    def ver_auto(self, vehiculo_id: int) -> Optional[dict]:
        for auto in self.ver_catalogo():
            if auto["id"] == vehiculo_id:
                return auto
        return None

    def agregar_auto(self, vehiculo_id: int) -> Resultado:
        try:
            with self._session_factory() as db:
                catalogo = self._obtener_o_crear(db)
                lista = list(catalogo.lista_autos or [])
                if vehiculo_id not in lista:
                    catalogo.lista_autos = lista + [vehiculo_id]
                    db.commit()
                return Resultado.exito(list(catalogo.lista_autos))
        except SQLAlchemyError as e:
            logger.warning("No se pudo agregar el vehículo %s al catálogo: %s", vehiculo_id, e)
            return Resultado.fallo("No se pudo agregar el vehículo al catálogo")

    def quitar_auto(self, vehiculo_id: int) -> Resultado:
        try:
            with self._session_factory() as db:
                catalogo = self._obtener_o_crear(db)
                lista = list(catalogo.lista_autos or [])
                if vehiculo_id in lista:
                    catalogo.lista_autos = [i for i in lista if i != vehiculo_id]
                    db.commit()
                return Resultado.exito(list(catalogo.lista_autos))
        except SQLAlchemyError as e:
            logger.warning("No se pudo quitar el vehículo %s del catálogo: %s", vehiculo_id, e)
            return Resultado.fallo("No se pudo quitar el vehículo del catálogo")

    def reiniciar(self):
        self._ultima_lista = []
