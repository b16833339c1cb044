"""
Definición de las tablas de la base de datos y sus relaciones.
Cada concepto tiene un único campo canónico (anio, tipo, precio_dia); los
nombres heredados se traducen en schemas.py.
"""
import enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base
from utils import ahora


class Rol(str, enum.Enum):
    ADMIN = "admin"
    CLIENTE = "cliente"


class TipoCoche(str, enum.Enum):
    COMPACTO = "Compacto"
    SEDAN = "Sedan"
    SUV = "SUV"
    DEPORTIVO = "Deportivo"
    CAMIONETA = "Camioneta"
    LUJO = "Lujo"


class EstadoReserva(str, enum.Enum):
    PENDIENTE = "Pendiente"
    CONFIRMADA = "Confirmada"
    CANCELADA = "Cancelada"
    COMPLETADA = "Completada"


NIVELES_GASOLINA = ["Vacío", "1/4", "1/2", "3/4", "Lleno"]
ESTADOS_GENERALES = ["Excelente", "Bueno", "Regular", "Malo", "Requiere atención"]
CONDICIONES = ["Excelente", "Bueno", "Regular", "Malo", "No funcional"]

INVENTARIO_POR_DEFECTO = [
    "Gato hidráulico",
    "Llanta de repuesto",
    "Llave de ruedas",
    "Triángulos de seguridad",
    "Botiquín de primeros auxilios",
    "Extintor",
    "Manual del vehículo",
    "Cables de arranque",
]


def _in_check(columna, valores):
    opciones = ", ".join(f"'{v}'" for v in valores)
    return f"{columna} IN ({opciones})"


class User(Base):
    __tablename__ = "usuarios"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(50), nullable=False)
    apellido = Column(String(50), default="")
    email = Column(String(100), unique=True, index=True, nullable=False)
    telefono = Column(String(30), default="")
    tipo_documento = Column(String(30), default="Cédula")
    numero_documento = Column(String(30), default="")
    hashed_password = Column(String(200), nullable=False)
    rol = Column(String(20), default=Rol.CLIENTE.value, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    reservas = relationship("Reserva", back_populates="usuario")

    __table_args__ = (
        CheckConstraint(_in_check("rol", [r.value for r in Rol]), name="usuario_rol_check"),
    )


class Vehiculo(Base):
    __tablename__ = "vehiculos"

    id = Column(Integer, primary_key=True, index=True)
    marca = Column(String(50), nullable=False)
    modelo = Column(String(50), nullable=False)
    anio = Column(Integer, nullable=False)
    tipo = Column(String(20), nullable=False)
    color = Column(String(30), default="No especificado")
    matricula = Column(String(20), unique=True, nullable=False)
    disponible = Column(Boolean, default=True, nullable=False)
    precio_dia = Column(Float, nullable=False)
    imagen = Column(String(300), default="default-car.jpg")
    descripcion = Column(Text, default="")
    caracteristicas = Column(JSON, default=list)
    kilometraje = Column(Integer, default=0)
    combustible = Column(String(30))
    transmision = Column(String(30))
    capacidad = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    reservas = relationship("Reserva", back_populates="vehiculo")
    checklist = relationship(
        "Checklist", back_populates="vehiculo", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(_in_check("tipo", [t.value for t in TipoCoche]), name="vehiculo_tipo_check"),
    )


class Reserva(Base):
    __tablename__ = "reservas"

    id = Column(Integer, primary_key=True, index=True)
    usuario_id = Column(Integer, ForeignKey("usuarios.id"), nullable=False)
    vehiculo_id = Column(Integer, ForeignKey("vehiculos.id"), nullable=False, index=True)
    fecha_inicio = Column(DateTime, nullable=False)
    fecha_fin = Column(DateTime, nullable=False)
    precio_total = Column(Float, nullable=False)
    estado = Column(String(20), default=EstadoReserva.PENDIENTE.value, nullable=False)
    metodo_pago = Column(String(30))
    datos_pago = Column(JSON)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    vehiculo = relationship("Vehiculo", back_populates="reservas")
    usuario = relationship("User", back_populates="reservas")

    __table_args__ = (
        CheckConstraint(
            _in_check("estado", [e.value for e in EstadoReserva]), name="reserva_estado_check"
        ),
        CheckConstraint("fecha_inicio < fecha_fin", name="reserva_fechas_check"),
    )


class Catalogo(Base):
    __tablename__ = "catalogo"

    id = Column(Integer, primary_key=True)
    # Lista ordenada de ids de vehículos; se reconstruye desde la tabla vehiculos
    lista_autos = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Checklist(Base):
    __tablename__ = "checklists"

    id = Column(Integer, primary_key=True, index=True)
    vehiculo_id = Column(Integer, ForeignKey("vehiculos.id"), unique=True, nullable=False)
    nivel_gasolina = Column(String(10), default="Lleno", nullable=False)
    porcentaje_gasolina = Column(Integer, default=100, nullable=False)
    estado_general = Column(String(30), default="Bueno", nullable=False)
    observaciones = Column(Text, default="")
    ultima_actualizacion_por = Column(Integer, ForeignKey("usuarios.id"))
    fecha_ultima_revision = Column(DateTime, default=ahora)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    vehiculo = relationship("Vehiculo", back_populates="checklist")
    rayones = relationship(
        "Rayon", back_populates="checklist", cascade="all, delete-orphan", order_by="Rayon.id"
    )
    inventario = relationship(
        "ItemInventario",
        back_populates="checklist",
        cascade="all, delete-orphan",
        order_by="ItemInventario.id",
    )

    __table_args__ = (
        CheckConstraint(
            "porcentaje_gasolina >= 0 AND porcentaje_gasolina <= 100",
            name="checklist_porcentaje_check",
        ),
        CheckConstraint(_in_check("nivel_gasolina", NIVELES_GASOLINA), name="checklist_nivel_check"),
        CheckConstraint(_in_check("estado_general", ESTADOS_GENERALES), name="checklist_estado_check"),
    )


class Rayon(Base):
    __tablename__ = "rayones"

    id = Column(Integer, primary_key=True)
    checklist_id = Column(Integer, ForeignKey("checklists.id"), nullable=False)
    descripcion = Column(String(300), nullable=False)
    ubicacion = Column(String(100), nullable=False)
    fecha = Column(DateTime, default=ahora)

    checklist = relationship("Checklist", back_populates="rayones")


class ItemInventario(Base):
    __tablename__ = "inventario"

    id = Column(Integer, primary_key=True)
    checklist_id = Column(Integer, ForeignKey("checklists.id"), nullable=False)
    nombre = Column(String(100), nullable=False)
    presente = Column(Boolean, default=True, nullable=False)
    condicion = Column(String(20), default="Bueno", nullable=False)
    notas = Column(String(300), default="")

    checklist = relationship("Checklist", back_populates="inventario")

    __table_args__ = (
        CheckConstraint(_in_check("condicion", CONDICIONES), name="inventario_condicion_check"),
    )
