"""
Cliente HTTP de la API con respaldo local.

Cada lectura o escritura intenta primero el servidor. Si no hay conexión,
vence el tiempo de espera o la respuesta no es exitosa, la operación se
resuelve contra una copia local (CacheLocal) y se devuelve
{"success": True, "data": ..., "source": "local"}.

Las escrituras hechas sin conexión solo quedan en la copia local: no se
reenvían al servidor. Una lectura completa exitosa reemplaza la copia; las
lecturas filtradas o paginadas se fusionan con ella.
"""
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

import config
import precios
import schemas
from models import INVENTARIO_POR_DEFECTO, EstadoReserva
from utils import ahora, is_overlapping, parse_fecha, parse_rango

logger = logging.getLogger(__name__)

ENTIDADES = ("autos", "usuarios", "reservas", "checklists")

# Reservas que ya no ocupan el vehículo
ESTADOS_LIBERADOS = (EstadoReserva.CANCELADA.value, EstadoReserva.COMPLETADA.value)


class ErrorCliente(Exception):
    def __init__(self, mensaje: str, codigo_http: Optional[int] = None):
        super().__init__(mensaje)
        self.mensaje = mensaje
        self.codigo_http = codigo_http


class CacheLocal:
    """
    Copia local normalizada: {entidad: {id: registro}}.
    Los suscriptores reciben (entidad, accion, registro) en cada cambio.
    """

    def __init__(self, ruta: Optional[str] = None):
        self.ruta = Path(ruta) if ruta else None
        self._datos: Dict[str, Dict[str, dict]] = {e: {} for e in ENTIDADES}
        self._suscriptores: List[Callable] = []
        if self.ruta is not None and self.ruta.exists():
            self._cargar()

    def _cargar(self):
        with self.ruta.open(encoding="utf-8") as f:
            contenido = json.load(f)
        for entidad in ENTIDADES:
            self._datos[entidad] = {str(k): v for k, v in contenido.get(entidad, {}).items()}

    def _persistir(self):
        if self.ruta is None:
            return
        self.ruta.parent.mkdir(parents=True, exist_ok=True)
        with self.ruta.open("w", encoding="utf-8") as f:
            json.dump(self._datos, f, ensure_ascii=False, indent=2, default=str)

    def _notificar(self, entidad: str, accion: str, registro):
        for callback in list(self._suscriptores):
            callback(entidad, accion, registro)

    def _tabla(self, entidad: str) -> Dict[str, dict]:
        if entidad not in self._datos:
            raise KeyError(f"Entidad desconocida: {entidad}")
        return self._datos[entidad]

    def suscribir(self, callback: Callable) -> Callable:
        """Registra un callback; devuelve la función que lo da de baja."""
        self._suscriptores.append(callback)

        def cancelar():
            if callback in self._suscriptores:
                self._suscriptores.remove(callback)

        return cancelar

    def obtener_todos(self, entidad: str) -> List[dict]:
        return list(self._tabla(entidad).values())

    def obtener(self, entidad: str, id) -> Optional[dict]:
        return self._tabla(entidad).get(str(id))

    def siguiente_id(self, entidad: str) -> int:
        ids = [int(k) for k in self._tabla(entidad) if k.isdigit()]
        return max(ids, default=0) + 1

    def reemplazar(self, entidad: str, registros: List[dict], clave: str = "id"):
        self._datos[entidad] = {str(r[clave]): r for r in registros}
        self._persistir()
        self._notificar(entidad, "reemplazar", registros)

    def guardar(self, entidad: str, registro: dict, clave: str = "id") -> dict:
        self._tabla(entidad)[str(registro[clave])] = registro
        self._persistir()
        self._notificar(entidad, "guardar", registro)
        return registro

    def eliminar(self, entidad: str, id) -> Optional[dict]:
        registro = self._tabla(entidad).pop(str(id), None)
        if registro is not None:
            self._persistir()
            self._notificar(entidad, "eliminar", registro)
        return registro


def checklist_por_defecto(vehiculo_id: int) -> dict:
    return {
        "id": None,
        "vehiculo_id": vehiculo_id,
        "nivel_gasolina": "Lleno",
        "porcentaje_gasolina": 100,
        "rayones": [],
        "inventario": [
            {"nombre": nombre, "presente": True, "condicion": "Bueno", "notas": ""}
            for nombre in INVENTARIO_POR_DEFECTO
        ],
        "estado_general": "Bueno",
        "observaciones": "",
        "fecha_ultima_revision": ahora().isoformat(),
    }


def filtrar_autos(
    autos: List[dict],
    skip: int = 0,
    limit: Optional[int] = None,
    tipo: Optional[str] = None,
    marca: Optional[str] = None,
    precio_min: Optional[float] = None,
    precio_max: Optional[float] = None,
    disponible: Optional[bool] = None,
    combustible: Optional[str] = None,
    transmision: Optional[str] = None,
    capacidad: Optional[int] = None,
) -> List[dict]:
    """Aplica a la copia local los filtros de GET /api/autos."""
    iguales = {
        "tipo": tipo,
        "marca": marca,
        "disponible": disponible,
        "combustible": combustible,
        "transmision": transmision,
        "capacidad": capacidad,
    }
    resultado = []
    for auto in sorted(autos, key=lambda a: (a.get("marca") or "", a.get("modelo") or "")):
        if any(valor is not None and auto.get(campo) != valor for campo, valor in iguales.items()):
            continue
        if precio_min is not None and auto["precio_dia"] < precio_min:
            continue
        if precio_max is not None and auto["precio_dia"] > precio_max:
            continue
        resultado.append(auto)

    fin = skip + limit if limit is not None else None
    return resultado[skip:fin]


class ClienteRentaCar:
    def __init__(
        self,
        base_url: str = config.API_URL,
        cache: Optional[CacheLocal] = None,
        timeout: float = config.CLIENTE_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.cache = cache if cache is not None else CacheLocal(config.CACHE_LOCAL)
        self.token: Optional[str] = None
        self.usuario_id: Optional[int] = None
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _solicitar(self, metodo: str, url: str, **kwargs) -> dict:
        try:
            respuesta = self._http.request(metodo, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise ErrorCliente(f"Sin conexión con el servidor: {e}") from e

        try:
            cuerpo = respuesta.json()
        except ValueError as e:
            raise ErrorCliente("Respuesta inválida del servidor", respuesta.status_code) from e

        if respuesta.is_error or not cuerpo.get("success", False):
            raise ErrorCliente(
                cuerpo.get("message") or f"Error {respuesta.status_code}", respuesta.status_code
            )
        return cuerpo

    def _con_respaldo(self, descripcion: str, remoto: Callable, local: Callable) -> dict:
        try:
            return remoto()
        except ErrorCliente as e:
            logger.warning("Error en %s, usando datos locales: %s", descripcion, e.mensaje)
        return {"success": True, "data": local(), "source": "local"}

    def _local_o_error(self, entidad: str, id) -> dict:
        registro = self.cache.obtener(entidad, id)
        if registro is None:
            raise ErrorCliente(f"{entidad} {id} no está disponible sin conexión", 404)
        return registro

    # Autenticación (sin respaldo)
    def _iniciar_sesion(self, cuerpo: dict) -> dict:
        usuario = cuerpo["data"]["usuario"]
        self.token = cuerpo["data"]["token"]
        self.usuario_id = usuario["id"]
        self.cache.guardar("usuarios", usuario)
        return cuerpo

    def login(self, email: str, password: str) -> dict:
        cuerpo = self._solicitar("POST", "/api/auth/login", json={"email": email, "password": password})
        return self._iniciar_sesion(cuerpo)

    def register(self, datos: dict) -> dict:
        return self._iniciar_sesion(self._solicitar("POST", "/api/auth/register", json=datos))

    def logout(self):
        self.token = None
        self.usuario_id = None

    # Lecturas genéricas
    def _sincronizar(self, entidad: str, registros: List[dict], completo: bool = True):
        # Una lectura filtrada o paginada trae solo una parte: se fusiona
        if completo:
            self.cache.reemplazar(entidad, registros)
        else:
            for registro in registros:
                self.cache.guardar(entidad, registro)

    def _listar(self, entidad: str, url: str) -> dict:
        def remoto():
            cuerpo = self._solicitar("GET", url)
            self._sincronizar(entidad, cuerpo["data"])
            return cuerpo

        return self._con_respaldo(f"{entidad}.listar", remoto, lambda: self.cache.obtener_todos(entidad))

    def _ver(self, entidad: str, url: str, id) -> dict:
        def remoto():
            cuerpo = self._solicitar("GET", url)
            self.cache.guardar(entidad, cuerpo["data"])
            return cuerpo

        return self._con_respaldo(f"{entidad}.ver({id})", remoto, lambda: self._local_o_error(entidad, id))

    def _eliminar(self, entidad: str, url: str, id) -> dict:
        def remoto():
            cuerpo = self._solicitar("DELETE", url)
            self.cache.eliminar(entidad, id)
            return cuerpo

        def local():
            self._local_o_error(entidad, id)
            self.cache.eliminar(entidad, id)
            return None

        return self._con_respaldo(f"{entidad}.eliminar({id})", remoto, local)

    # Vehículos
    def listar_autos(self, **filtros) -> dict:
        """
        Vehículos con los mismos filtros que GET /api/autos.

        Sin filtros, si /api/autos falla se intenta el catálogo público antes
        de la copia local. Sin conexión, los filtros se aplican sobre la copia.
        """
        filtros = {k: getattr(v, "value", v) for k, v in filtros.items() if v is not None}

        def remoto():
            try:
                cuerpo = self._solicitar("GET", "/api/autos", params=filtros or None)
            except ErrorCliente as e:
                if filtros:
                    raise
                logger.warning("Error en autos.listar, usando el catálogo: %s", e.mensaje)
                cuerpo = self._solicitar("GET", "/api/catalogo")
            self._sincronizar("autos", cuerpo["data"], completo=not filtros)
            return cuerpo

        def local():
            return filtrar_autos(self.cache.obtener_todos("autos"), **filtros)

        return self._con_respaldo("autos.listar", remoto, local)

    def ver_catalogo(self) -> dict:
        def remoto():
            cuerpo = self._solicitar("GET", "/api/catalogo")
            self._sincronizar("autos", cuerpo["data"], completo=False)
            return cuerpo

        return self._con_respaldo("catalogo.ver", remoto, lambda: self.cache.obtener_todos("autos"))

    def ver_auto(self, id: int) -> dict:
        return self._ver("autos", f"/api/autos/{id}", id)

    def crear_auto(self, datos: dict) -> dict:
        def remoto():
            cuerpo = self._solicitar("POST", "/api/autos", json=datos)
            self.cache.guardar("autos", cuerpo["data"])
            return cuerpo

        def local():
            auto = schemas.VehiculoCreate.model_validate(datos).model_dump(mode="json")
            auto["id"] = self.cache.siguiente_id("autos")
            return self.cache.guardar("autos", auto)

        return self._con_respaldo("autos.crear", remoto, local)

    def actualizar_auto(self, id: int, datos: dict) -> dict:
        def remoto():
            cuerpo = self._solicitar("PUT", f"/api/autos/{id}", json=datos)
            self.cache.guardar("autos", cuerpo["data"])
            return cuerpo

        def local():
            cambios = schemas.VehiculoUpdate.model_validate(datos).model_dump(
                mode="json", exclude_unset=True, exclude_none=True
            )
            auto = dict(self._local_o_error("autos", id), **cambios)
            return self.cache.guardar("autos", auto)

        return self._con_respaldo(f"autos.actualizar({id})", remoto, local)

    def eliminar_auto(self, id: int) -> dict:
        return self._eliminar("autos", f"/api/autos/{id}", id)

    # Usuarios
    def listar_usuarios(self) -> dict:
        return self._listar("usuarios", "/api/usuarios")

    def ver_usuario(self, id: int) -> dict:
        return self._ver("usuarios", f"/api/usuarios/{id}", id)

    def actualizar_usuario(self, id: int, datos: dict) -> dict:
        def remoto():
            cuerpo = self._solicitar("PUT", f"/api/usuarios/{id}", json=datos)
            self.cache.guardar("usuarios", cuerpo["data"])
            return cuerpo

        def local():
            # La contraseña nunca se guarda en la copia local
            cambios = {k: v for k, v in datos.items() if k != "password"}
            usuario = dict(self._local_o_error("usuarios", id), **cambios)
            return self.cache.guardar("usuarios", usuario)

        return self._con_respaldo(f"usuarios.actualizar({id})", remoto, local)

    def eliminar_usuario(self, id: int) -> dict:
        return self._eliminar("usuarios", f"/api/usuarios/{id}", id)

    # Reservas
    def listar_reservas(self) -> dict:
        return self._listar("reservas", "/api/reservas")

    def _reservas_locales(self, usuario_id: Optional[int]) -> List[dict]:
        return [r for r in self.cache.obtener_todos("reservas") if r.get("usuario_id") == usuario_id]

    def mis_reservas(self, usuario_id: Optional[int] = None) -> dict:
        def remoto():
            cuerpo = self._solicitar("GET", "/api/reservas/me")
            self._sincronizar("reservas", cuerpo["data"], completo=False)
            return cuerpo

        propietario = usuario_id if usuario_id is not None else self.usuario_id
        return self._con_respaldo("reservas.mis_reservas", remoto, lambda: self._reservas_locales(propietario))

    def reservas_de_usuario(self, usuario_id: int) -> dict:
        def remoto():
            cuerpo = self._solicitar("GET", f"/api/usuarios/{usuario_id}/reservas")
            self._sincronizar("reservas", cuerpo["data"], completo=False)
            return cuerpo

        return self._con_respaldo(
            f"reservas.de_usuario({usuario_id})", remoto, lambda: self._reservas_locales(usuario_id)
        )

    def ver_reserva(self, id: int) -> dict:
        return self._ver("reservas", f"/api/reservas/{id}", id)

    def calcular_precio(self, datos: dict) -> dict:
        def remoto():
            return self._solicitar("POST", "/api/reservas/calcular-precio", json=datos)

        def local():
            pedido = schemas.CotizacionRequest.model_validate(datos)
            auto = self._local_o_error("autos", pedido.vehiculo_id)
            cotizacion = precios.cotizar(pedido.fecha_inicio, pedido.fecha_fin, auto["precio_dia"], auto["tipo"])
            return dict(asdict(cotizacion), auto=auto)

        return self._con_respaldo("reservas.calcular_precio", remoto, local)

    def generar_factura(self, id: int) -> dict:
        # La factura la numera el servidor: no hay versión local
        return self._solicitar("GET", f"/api/reservas/{id}/factura")

    def _verificar_disponible_local(self, auto: dict, inicio: datetime, fin: datetime):
        if not auto.get("disponible", True):
            raise ErrorCliente("El vehículo no está disponible", 409)
        for reserva in self.cache.obtener_todos("reservas"):
            if reserva.get("vehiculo_id") != auto["id"] or reserva.get("estado") in ESTADOS_LIBERADOS:
                continue
            if is_overlapping(inicio, fin, parse_fecha(reserva["fecha_inicio"]), parse_fecha(reserva["fecha_fin"])):
                raise ErrorCliente("El vehículo ya está reservado en esas fechas", 409)

    def crear_reserva(self, datos: dict) -> dict:
        def remoto():
            cuerpo = self._solicitar("POST", "/api/reservas", json=datos)
            self.cache.guardar("reservas", cuerpo["data"]["reserva"])
            auto = self.cache.obtener("autos", cuerpo["data"]["reserva"].get("vehiculo_id"))
            if auto is not None:
                self.cache.guardar("autos", dict(auto, disponible=False))
            return cuerpo

        def local():
            pedido = schemas.ReservaCreate.model_validate(datos)
            usuario_id = pedido.usuario_id if pedido.usuario_id is not None else self.usuario_id
            if usuario_id is None:
                raise ErrorCliente("Inicia sesión para reservar sin conexión", 401)

            auto = self._local_o_error("autos", pedido.vehiculo_id)
            inicio, fin = parse_rango(pedido.fecha_inicio, pedido.fecha_fin)
            self._verificar_disponible_local(auto, inicio, fin)

            precio_total = precios.calcular_precio_total(inicio, fin, auto["precio_dia"], auto["tipo"])
            reserva = {
                "id": self.cache.siguiente_id("reservas"),
                "usuario_id": usuario_id,
                "vehiculo_id": pedido.vehiculo_id,
                "fecha_inicio": inicio.isoformat(),
                "fecha_fin": fin.isoformat(),
                "precio_total": precio_total,
                "estado": EstadoReserva.PENDIENTE.value,
                "metodo_pago": pedido.metodo_pago,
                "datos_pago": pedido.datos_pago.model_dump() if pedido.datos_pago else None,
                "created_at": ahora().isoformat(),
            }
            self.cache.guardar("reservas", reserva)
            self.cache.guardar("autos", dict(auto, disponible=False))
            return {"reserva": reserva, "precio_total": precio_total}

        return self._con_respaldo("reservas.crear", remoto, local)

    def _liberar_auto_local(self, vehiculo_id: int):
        auto = self.cache.obtener("autos", vehiculo_id)
        if auto is not None:
            self.cache.guardar("autos", dict(auto, disponible=True))

    def cancelar_reserva(self, id: int) -> dict:
        def remoto():
            cuerpo = self._solicitar("PUT", f"/api/reservas/{id}/cancelar")
            self.cache.guardar("reservas", cuerpo["data"])
            self._liberar_auto_local(cuerpo["data"].get("vehiculo_id"))
            return cuerpo

        def local():
            actual = self._local_o_error("reservas", id)
            if actual.get("estado") in ESTADOS_LIBERADOS:
                raise ErrorCliente(f"La reserva ya está {actual['estado']}", 409)
            reserva = self.cache.guardar("reservas", dict(actual, estado=EstadoReserva.CANCELADA.value))
            self._liberar_auto_local(reserva["vehiculo_id"])
            return reserva

        return self._con_respaldo(f"reservas.cancelar({id})", remoto, local)

    # Checklists
    def ver_checklist(self, vehiculo_id: int) -> dict:
        def remoto():
            cuerpo = self._solicitar("GET", f"/api/autos/{vehiculo_id}/checklist")
            self.cache.guardar("checklists", cuerpo["data"], clave="vehiculo_id")
            return cuerpo

        def local():
            return self.cache.obtener("checklists", vehiculo_id) or checklist_por_defecto(vehiculo_id)

        return self._con_respaldo(f"checklists.ver({vehiculo_id})", remoto, local)

    def actualizar_checklist(self, vehiculo_id: int, datos: dict) -> dict:
        def remoto():
            cuerpo = self._solicitar("PUT", f"/api/autos/{vehiculo_id}/checklist", json=datos)
            self.cache.guardar("checklists", cuerpo["data"], clave="vehiculo_id")
            return cuerpo

        def local():
            actual = self.cache.obtener("checklists", vehiculo_id) or checklist_por_defecto(vehiculo_id)
            cambios = schemas.ChecklistUpdate.model_validate(datos).model_dump(
                mode="json", exclude_unset=True, exclude_none=True
            )
            checklist = dict(actual, **cambios, fecha_ultima_revision=ahora().isoformat())
            return self.cache.guardar("checklists", checklist, clave="vehiculo_id")

        return self._con_respaldo(f"checklists.actualizar({vehiculo_id})", remoto, local)

    def agregar_rayon(self, vehiculo_id: int, descripcion: str, ubicacion: str) -> dict:
        def remoto():
            cuerpo = self._solicitar(
                "POST",
                f"/api/autos/{vehiculo_id}/checklist/rayones",
                json={"descripcion": descripcion, "ubicacion": ubicacion},
            )
            self.cache.guardar("checklists", cuerpo["data"], clave="vehiculo_id")
            return cuerpo

        def local():
            actual = self.cache.obtener("checklists", vehiculo_id) or checklist_por_defecto(vehiculo_id)
            rayon = {
                "id": max((r.get("id") or 0 for r in actual["rayones"]), default=0) + 1,
                "descripcion": descripcion,
                "ubicacion": ubicacion,
                "fecha": ahora().isoformat(),
            }
            checklist = dict(actual, rayones=list(actual["rayones"]) + [rayon])
            return self.cache.guardar("checklists", checklist, clave="vehiculo_id")

        return self._con_respaldo(f"checklists.agregar_rayon({vehiculo_id})", remoto, local)

    def quitar_rayon(self, vehiculo_id: int, rayon_id: int) -> dict:
        def remoto():
            cuerpo = self._solicitar("DELETE", f"/api/autos/{vehiculo_id}/checklist/rayones/{rayon_id}")
            self.cache.guardar("checklists", cuerpo["data"], clave="vehiculo_id")
            return cuerpo

        def local():
            actual = self._local_o_error("checklists", vehiculo_id)
            rayones = [r for r in actual["rayones"] if r.get("id") != rayon_id]
            return self.cache.guardar("checklists", dict(actual, rayones=rayones), clave="vehiculo_id")

        return self._con_respaldo(f"checklists.quitar_rayon({vehiculo_id}, {rayon_id})", remoto, local)
