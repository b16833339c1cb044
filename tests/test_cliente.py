import httpx
import pytest

from cliente import CacheLocal, ClienteRentaCar, ErrorCliente

AUTO = {
    "id": 1,
    "marca": "Toyota",
    "modelo": "RAV4",
    "anio": 2022,
    "tipo": "SUV",
    "matricula": "ABC123",
    "precio_dia": 100.0,
    "disponible": True,
}


def sin_conexion(request):
    raise httpx.ConnectError("servidor caído", request=request)


def cliente_con(handler, cache=None):
    return ClienteRentaCar(
        base_url="http://api.test",
        cache=cache if cache is not None else CacheLocal(),
        transport=httpx.MockTransport(handler),
    )


def test_lectura_exitosa_actualiza_la_copia_local():
    def handler(request):
        assert request.url.path == "/api/autos"
        return httpx.Response(200, json={"success": True, "data": [AUTO]})

    cliente = cliente_con(handler)
    cuerpo = cliente.listar_autos()

    assert "source" not in cuerpo
    assert cliente.cache.obtener("autos", 1)["marca"] == "Toyota"


def test_sin_conexion_usa_la_copia_local():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    cliente = cliente_con(sin_conexion, cache)

    cuerpo = cliente.listar_autos()

    assert cuerpo == {"success": True, "data": [AUTO], "source": "local"}
    assert cliente.ver_auto(1)["data"]["matricula"] == "ABC123"


def test_respuesta_no_exitosa_usa_la_copia_local():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)

    def handler(request):
        return httpx.Response(500, json={"success": False, "message": "Error interno del servidor"})

    cuerpo = cliente_con(handler, cache).ver_auto(1)

    assert cuerpo["source"] == "local"


def test_registro_desconocido_sin_conexion():
    with pytest.raises(ErrorCliente):
        cliente_con(sin_conexion).ver_auto(7)


def test_crear_auto_sin_conexion_asigna_id_local():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    cliente = cliente_con(sin_conexion, cache)

    cuerpo = cliente.crear_auto(
        {"marca": "Fiat", "modelo": "Uno", "año": 2010, "tipoCoche": "Compacto", "matricula": "F1", "precioDia": 30}
    )

    assert cuerpo["source"] == "local"
    assert cuerpo["data"]["id"] == 2
    assert cuerpo["data"]["anio"] == 2010
    assert cache.obtener("autos", 2)["precio_dia"] == 30


def test_reserva_local_calcula_el_precio():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    cliente = cliente_con(sin_conexion, cache)

    cuerpo = cliente.crear_reserva(
        {"autoId": 1, "fechaInicio": "2024-03-01", "fechaFin": "2024-03-08", "usuario_id": 3}
    )

    assert cuerpo["data"]["precio_total"] == 892.5
    assert cuerpo["data"]["reserva"]["estado"] == "Pendiente"
    assert [r["id"] for r in cliente.mis_reservas(3)["data"]] == [1]

    cancelada = cliente.cancelar_reserva(1)
    assert cancelada["data"]["estado"] == "Cancelada"


def test_checklist_local_por_defecto():
    cliente = cliente_con(sin_conexion)

    checklist = cliente.ver_checklist(5)["data"]
    assert checklist["vehiculo_id"] == 5
    assert len(checklist["inventario"]) == 8

    cliente.agregar_rayon(5, "Rayón", "Puerta")
    actualizado = cliente.actualizar_checklist(5, {"nivel_gasolina": "1/4"})["data"]
    assert actualizado["nivel_gasolina"] == "1/4"
    assert len(actualizado["rayones"]) == 1


def test_login_no_usa_respaldo():
    with pytest.raises(ErrorCliente):
        cliente_con(sin_conexion).login("ana@rentacar.com", "secreto123")


def test_login_guarda_el_token():
    usuario = {"id": 1, "nombre": "Ana", "email": "ana@rentacar.com", "rol": "cliente"}
    vistos = []

    def handler(request):
        vistos.append(request.headers.get("Authorization"))
        if request.url.path == "/api/auth/login":
            return httpx.Response(200, json={"success": True, "data": {"usuario": usuario, "token": "abc"}})
        return httpx.Response(200, json={"success": True, "data": []})

    cliente = cliente_con(handler)
    cliente.login("ana@rentacar.com", "secreto123")
    cliente.listar_reservas()

    assert vistos == [None, "Bearer abc"]


def test_suscripciones():
    cache = CacheLocal()
    eventos = []
    cancelar = cache.suscribir(lambda entidad, accion, registro: eventos.append((entidad, accion)))

    cache.guardar("autos", AUTO)
    cache.eliminar("autos", 1)
    cache.eliminar("autos", 1)
    cancelar()
    cache.guardar("autos", AUTO)

    assert eventos == [("autos", "guardar"), ("autos", "eliminar")]


def test_persistencia_en_archivo(tmp_path):
    ruta = tmp_path / "cache.json"
    CacheLocal(ruta).guardar("autos", AUTO)

    assert CacheLocal(ruta).obtener("autos", 1) == AUTO


SEDAN = dict(AUTO, id=2, marca="Honda", modelo="Civic", tipo="Sedan", matricula="XYZ789", precio_dia=60.0)


def servidor_con_corte(rutas):
    """Handler que responde según `rutas` hasta que se marca `caido`."""
    estado = {"caido": False}

    def handler(request):
        if estado["caido"]:
            raise httpx.ConnectError("servidor caído", request=request)
        return rutas(request)

    return handler, estado


def test_lectura_filtrada_se_fusiona_con_la_copia():
    def rutas(request):
        if request.url.params.get("tipo") == "SUV":
            return httpx.Response(200, json={"success": True, "data": [AUTO]})
        return httpx.Response(200, json={"success": True, "data": [AUTO, SEDAN]})

    handler, estado = servidor_con_corte(rutas)
    cliente = cliente_con(handler)
    cliente.listar_autos()
    cliente.listar_autos(tipo="SUV")
    estado["caido"] = True

    assert sorted(a["id"] for a in cliente.listar_autos()["data"]) == [1, 2]
    assert [a["id"] for a in cliente.listar_autos(tipo="Sedan")["data"]] == [2]


def test_filtros_sin_conexion():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    cache.guardar("autos", dict(SEDAN, disponible=False))
    cliente = cliente_con(sin_conexion, cache)

    def ids(**filtros):
        return [a["id"] for a in cliente.listar_autos(**filtros)["data"]]

    assert ids(marca="Toyota") == [1]
    assert ids(precio_max=80) == [2]
    assert ids(precio_min=80) == [1]
    assert ids(disponible=True) == [1]
    assert ids(tipo="Deportivo") == []


def test_autos_desde_el_catalogo_si_falla_la_api():
    vistos = []

    def handler(request):
        vistos.append(request.url.path)
        if request.url.path == "/api/autos":
            return httpx.Response(500, json={"success": False, "message": "Error interno del servidor"})
        return httpx.Response(200, json={"success": True, "data": [AUTO]})

    cliente = cliente_con(handler)
    cuerpo = cliente.listar_autos()

    assert vistos == ["/api/autos", "/api/catalogo"]
    assert "source" not in cuerpo
    assert cliente.cache.obtener("autos", 1)["marca"] == "Toyota"


def test_ver_catalogo_sin_conexion_usa_los_autos_locales():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)

    cuerpo = cliente_con(sin_conexion, cache).ver_catalogo()

    assert cuerpo == {"success": True, "data": [AUTO], "source": "local"}


def test_reserva_local_para_el_usuario_con_sesion():
    usuario = {"id": 4, "nombre": "Ana", "email": "ana@rentacar.com", "rol": "cliente"}

    def rutas(request):
        return httpx.Response(200, json={"success": True, "data": {"usuario": usuario, "token": "abc"}})

    handler, estado = servidor_con_corte(rutas)
    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    cliente = cliente_con(handler, cache)
    cliente.login("ana@rentacar.com", "secreto123")
    estado["caido"] = True

    reserva = cliente.crear_reserva({"autoId": 1, "fechaInicio": "2024-03-01", "fechaFin": "2024-03-08"})["data"]

    assert reserva["reserva"]["usuario_id"] == 4
    assert [r["id"] for r in cliente.mis_reservas()["data"]] == [1]
    assert cache.obtener("autos", 1)["disponible"] is False

    with pytest.raises(ErrorCliente) as error:
        cliente.crear_reserva({"autoId": 1, "fechaInicio": "2024-03-05", "fechaFin": "2024-03-10"})
    assert error.value.codigo_http == 409

    cliente.cancelar_reserva(1)
    assert cache.obtener("autos", 1)["disponible"] is True
    otra = cliente.crear_reserva({"autoId": 1, "fechaInicio": "2024-03-05", "fechaFin": "2024-03-10"})
    assert otra["data"]["reserva"]["id"] == 2


def test_reserva_local_sin_sesion():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)

    with pytest.raises(ErrorCliente):
        cliente_con(sin_conexion, cache).crear_reserva(
            {"autoId": 1, "fechaInicio": "2024-03-01", "fechaFin": "2024-03-08"}
        )


def test_reserva_local_solapada_con_otra_copiada():
    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    cache.guardar(
        "reservas",
        {
            "id": 9,
            "usuario_id": 2,
            "vehiculo_id": 1,
            "fecha_inicio": "2024-03-08T00:00:00",
            "fecha_fin": "2024-03-12T00:00:00",
            "estado": "Confirmada",
        },
    )
    cliente = cliente_con(sin_conexion, cache)

    with pytest.raises(ErrorCliente) as error:
        cliente.crear_reserva({"autoId": 1, "fechaInicio": "2024-03-01", "fechaFin": "2024-03-08", "usuario_id": 3})

    assert error.value.codigo_http == 409
    assert cache.obtener("autos", 1)["disponible"] is True


def test_quitar_rayon_sin_conexion():
    cliente = cliente_con(sin_conexion)

    with pytest.raises(ErrorCliente):
        cliente.quitar_rayon(5, 1)

    cliente.agregar_rayon(5, "Rayón", "Puerta")
    cliente.agregar_rayon(5, "Golpe", "Paragolpes")
    checklist = cliente.quitar_rayon(5, 1)["data"]

    assert [(r["id"], r["descripcion"]) for r in checklist["rayones"]] == [(2, "Golpe")]


def test_quitar_rayon_en_el_servidor():
    checklist = {"id": 1, "vehiculo_id": 5, "rayones": []}
    vistos = []

    def handler(request):
        vistos.append((request.method, request.url.path))
        return httpx.Response(200, json={"success": True, "data": checklist})

    cliente = cliente_con(handler)
    cliente.quitar_rayon(5, 3)

    assert vistos == [("DELETE", "/api/autos/5/checklist/rayones/3")]
    assert cliente.cache.obtener("checklists", 5) == checklist


def test_calcular_precio():
    pedido = {"autoId": 1, "fechaInicio": "2024-03-01", "fechaFin": "2024-03-08"}
    vistos = []

    def handler(request):
        vistos.append((request.method, request.url.path))
        return httpx.Response(200, json={"success": True, "data": {"precio_total": 892.5}})

    assert cliente_con(handler).calcular_precio(pedido)["data"]["precio_total"] == 892.5
    assert vistos == [("POST", "/api/reservas/calcular-precio")]

    cache = CacheLocal()
    cache.guardar("autos", AUTO)
    local = cliente_con(sin_conexion, cache).calcular_precio(pedido)

    assert local["source"] == "local"
    assert local["data"]["dias"] == 7
    assert local["data"]["descuento"] == 15
    assert local["data"]["precio_base"] == 700.0
    assert local["data"]["precio_total"] == 892.5
    assert local["data"]["auto"]["id"] == 1


def test_factura_solo_desde_el_servidor():
    def handler(request):
        assert request.url.path == "/api/reservas/7/factura"
        return httpx.Response(200, json={"success": True, "data": {"numero_factura": "INV-7-0001"}})

    assert cliente_con(handler).generar_factura(7)["data"]["numero_factura"] == "INV-7-0001"

    with pytest.raises(ErrorCliente):
        cliente_con(sin_conexion).generar_factura(7)


def test_reservas_de_usuario():
    reserva = {"id": 1, "usuario_id": 3, "vehiculo_id": 1, "estado": "Pendiente"}

    def handler(request):
        assert request.url.path == "/api/usuarios/3/reservas"
        return httpx.Response(200, json={"success": True, "data": [reserva]})

    cache = CacheLocal()
    cache.guardar("reservas", dict(reserva, id=2, usuario_id=8))
    cliente_con(handler, cache).reservas_de_usuario(3)

    assert cache.obtener("reservas", 2) is not None
    local = cliente_con(sin_conexion, cache).reservas_de_usuario(3)
    assert [r["id"] for r in local["data"]] == [1]
