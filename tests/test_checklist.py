import pytest
from sqlalchemy.exc import IntegrityError

import crud
import models
import schemas
from errores import ArgumentoInvalido, NoEncontrado


def test_checklist_por_defecto(db, vehiculo):
    checklist, advertencia = crud.get_checklist(db, vehiculo.id)

    assert advertencia is None
    assert checklist.id is not None
    assert checklist.nivel_gasolina == "Lleno"
    assert checklist.porcentaje_gasolina == 100
    assert checklist.estado_general == "Bueno"
    assert checklist.rayones == []
    assert len(checklist.inventario) == 8
    assert all(i.presente and i.condicion == "Bueno" for i in checklist.inventario)
    assert [i.nombre for i in checklist.inventario] == models.INVENTARIO_POR_DEFECTO


def test_segunda_lectura_no_duplica(db, vehiculo):
    primero, _ = crud.get_checklist(db, vehiculo.id)
    segundo, _ = crud.get_checklist(db, vehiculo.id)

    assert primero.id == segundo.id
    assert db.query(models.Checklist).count() == 1


def test_vehiculo_desconocido_devuelve_checklist_temporal(db):
    checklist, advertencia = crud.get_checklist(db, 404)

    assert advertencia is not None
    assert checklist.id is None
    assert checklist.vehiculo_id == 404
    assert len(checklist.inventario) == 8
    assert db.query(models.Checklist).count() == 0


def test_actualizacion_parcial(db, vehiculo, usuario):
    crud.update_checklist(
        db, vehiculo.id, schemas.ChecklistUpdate(observaciones="Limpio"), usuario_id=usuario.id
    )
    antes, _ = crud.get_checklist(db, vehiculo.id)
    revision_anterior = antes.fecha_ultima_revision

    checklist, advertencia = crud.update_checklist(
        db,
        vehiculo.id,
        schemas.ChecklistUpdate(nivel_gasolina="1/2", porcentaje_gasolina=50),
        usuario_id=usuario.id,
    )

    assert advertencia is None
    assert checklist.nivel_gasolina == "1/2"
    assert checklist.porcentaje_gasolina == 50
    assert checklist.observaciones == "Limpio"
    assert checklist.estado_general == "Bueno"
    assert len(checklist.inventario) == 8
    assert checklist.ultima_actualizacion_por == usuario.id
    assert checklist.fecha_ultima_revision >= revision_anterior


def test_reemplazar_inventario(db, vehiculo):
    datos = schemas.ChecklistUpdate(
        inventario=[{"nombre": "Extintor", "presente": False, "condicion": "Malo", "notas": "Vencido"}]
    )

    checklist, _ = crud.update_checklist(db, vehiculo.id, datos)

    assert [(i.nombre, i.presente) for i in checklist.inventario] == [("Extintor", False)]
    assert crud.resumen_checklist(checklist)["items_faltantes"] == 1


def test_actualizar_vehiculo_desconocido_no_persiste(db):
    checklist, advertencia = crud.update_checklist(
        db, 404, schemas.ChecklistUpdate(estado_general="Regular")
    )

    assert advertencia is not None
    assert checklist.estado_general == "Regular"
    assert db.query(models.Checklist).count() == 0


def test_agregar_y_quitar_rayon(db, vehiculo):
    checklist, _ = crud.add_rayon(db, vehiculo.id, "Rayón en la puerta", "Puerta trasera")
    rayon = checklist.rayones[0]

    assert rayon.descripcion == "Rayón en la puerta"
    assert rayon.fecha is not None

    checklist = crud.remove_rayon(db, vehiculo.id, rayon.id)
    assert checklist.rayones == []
    assert db.query(models.Rayon).count() == 0


@pytest.mark.parametrize("descripcion, ubicacion", [("", "Capó"), ("Abolladura", "  ")])
def test_rayon_requiere_descripcion_y_ubicacion(db, vehiculo, descripcion, ubicacion):
    with pytest.raises(ArgumentoInvalido):
        crud.add_rayon(db, vehiculo.id, descripcion, ubicacion)


def test_quitar_rayon_inexistente(db, vehiculo):
    crud.add_rayon(db, vehiculo.id, "Rayón", "Capó")

    checklist = crud.remove_rayon(db, vehiculo.id, 999)

    assert len(checklist.rayones) == 1
    with pytest.raises(NoEncontrado):
        crud.remove_rayon(db, 404, 1)


def test_listado_y_borrado(db, vehiculo):
    crud.get_checklist(db, vehiculo.id)

    resumenes = [crud.resumen_checklist(c) for c in crud.get_checklists(db)]
    assert resumenes[0]["items_inventario"] == 8
    assert resumenes[0]["cantidad_rayones"] == 0

    crud.delete_checklist(db, vehiculo.id)
    assert crud.get_checklists(db) == []
    with pytest.raises(NoEncontrado):
        crud.delete_checklist(db, vehiculo.id)


def test_nivel_de_gasolina_fuera_de_la_lista(db, vehiculo):
    checklist, _ = crud.get_checklist(db, vehiculo.id)
    checklist.nivel_gasolina = "Medio"

    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_condicion_de_inventario_fuera_de_la_lista(db, vehiculo):
    checklist, _ = crud.get_checklist(db, vehiculo.id)
    checklist.inventario[0].condicion = "Roto"

    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_borrar_usuario_que_reviso_un_checklist(db, vehiculo, usuario):
    usuario_id = usuario.id
    crud.update_checklist(
        db, vehiculo.id, schemas.ChecklistUpdate(observaciones="Revisado"), usuario_id=usuario_id
    )

    crud.delete_user(db, usuario_id)
    db.expire_all()

    checklist, _ = crud.get_checklist(db, vehiculo.id)
    assert crud.get_user(db, usuario_id) is None
    assert checklist.ultima_actualizacion_por is None
    assert checklist.observaciones == "Revisado"
