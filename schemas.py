"""
Formatos de los datos que recibe y devuelve la API.
Las clases <Entidad>Create se usan al crear, <Entidad>Update al actualizar y
<Entidad> al devolver un registro de la base de datos.
Toda respuesta va dentro de Respuesta: {success, data, message, warning}.
"""
from datetime import datetime
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, model_validator

from models import EstadoReserva, Rol, TipoCoche

T = TypeVar("T")


class Respuesta(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None
    warning: Optional[str] = None


# Usuarios
class UserBase(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=50)
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    apellido: str = ""
    telefono: str = ""
    tipo_documento: str = "Cédula"
    numero_documento: str = ""


class UserUpdate(BaseModel):
    nombre: Optional[str] = Field(None, min_length=1, max_length=50)
    apellido: Optional[str] = None
    email: Optional[EmailStr] = None
    telefono: Optional[str] = None
    tipo_documento: Optional[str] = None
    numero_documento: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    rol: Optional[Rol] = None


class PerfilUpdate(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    apellido: Optional[str] = None
    telefono: Optional[str] = None
    tipo_documento: Optional[str] = None
    numero_documento: Optional[str] = None


class User(UserBase):
    id: int
    apellido: Optional[str] = ""
    telefono: Optional[str] = ""
    tipo_documento: Optional[str] = None
    numero_documento: Optional[str] = ""
    rol: Rol

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    user_id: Optional[int] = None


class Sesion(BaseModel):
    usuario: User
    token: str


# Vehículos
# Los nombres heredados (año, tipoCoche, precioDia, precioBase) solo se aceptan al recibir datos
class VehiculoBase(BaseModel):
    marca: str = Field(..., min_length=1, max_length=50)
    modelo: str = Field(..., min_length=1, max_length=50)
    anio: int = Field(..., ge=1900, le=2100, validation_alias=AliasChoices("anio", "año"))
    tipo: TipoCoche = Field(..., validation_alias=AliasChoices("tipo", "tipoCoche"))
    matricula: str = Field(..., min_length=1, max_length=20)
    precio_dia: float = Field(
        ..., gt=0, validation_alias=AliasChoices("precio_dia", "precioDia", "precioBase")
    )
    color: str = "No especificado"
    disponible: bool = True
    imagen: str = "default-car.jpg"
    descripcion: str = ""
    caracteristicas: List[str] = []
    kilometraje: int = Field(0, ge=0)
    combustible: Optional[str] = None
    transmision: Optional[str] = None
    capacidad: Optional[int] = Field(None, ge=1)


class VehiculoCreate(VehiculoBase):
    pass


class VehiculoUpdate(BaseModel):
    marca: Optional[str] = Field(None, min_length=1, max_length=50)
    modelo: Optional[str] = Field(None, min_length=1, max_length=50)
    anio: Optional[int] = Field(None, ge=1900, le=2100, validation_alias=AliasChoices("anio", "año"))
    tipo: Optional[TipoCoche] = Field(None, validation_alias=AliasChoices("tipo", "tipoCoche"))
    matricula: Optional[str] = Field(None, min_length=1, max_length=20)
    precio_dia: Optional[float] = Field(
        None, gt=0, validation_alias=AliasChoices("precio_dia", "precioDia", "precioBase")
    )
    color: Optional[str] = None
    disponible: Optional[bool] = None
    imagen: Optional[str] = None
    descripcion: Optional[str] = None
    caracteristicas: Optional[List[str]] = None
    kilometraje: Optional[int] = Field(None, ge=0)
    combustible: Optional[str] = None
    transmision: Optional[str] = None
    capacidad: Optional[int] = Field(None, ge=1)


class Vehiculo(VehiculoBase):
    id: int
    descripcion: Optional[str] = ""
    caracteristicas: Optional[List[str]] = []
    kilometraje: Optional[int] = 0

    model_config = ConfigDict(from_attributes=True)


class RangoFechas(BaseModel):
    fecha_inicio: str = Field(..., validation_alias=AliasChoices("fecha_inicio", "fechaInicio", "inicio"))
    fecha_fin: str = Field(..., validation_alias=AliasChoices("fecha_fin", "fechaFin", "fin"))


class Disponibilidad(BaseModel):
    vehiculo_id: int
    disponible: bool
    conflictos: int


# Reservas
MetodoPago = Literal["efectivo", "tarjeta", "mercadopago", "transferencia"]

CAMPOS_POR_METODO = {
    "efectivo": [],
    "tarjeta": ["tipo_tarjeta", "ultimos_digitos"],
    "mercadopago": ["email"],
    "transferencia": ["nombre_titular"],
}


class DatosPago(BaseModel):
    tipo_tarjeta: Optional[str] = None
    ultimos_digitos: Optional[str] = Field(None, pattern=r"^\d{4}$")
    email: Optional[EmailStr] = None
    nombre_titular: Optional[str] = None
    # Referencias a los documentos adjuntos (URL o "Pendiente de subir")
    foto_pasaporte: Optional[str] = None
    foto_licencia: Optional[str] = None


class ReservaCreate(RangoFechas):
    vehiculo_id: int = Field(..., validation_alias=AliasChoices("vehiculo_id", "autoId"))
    usuario_id: Optional[int] = None
    metodo_pago: Optional[MetodoPago] = None
    datos_pago: Optional[DatosPago] = None

    @model_validator(mode="after")
    def check_datos_pago(self):
        if self.metodo_pago is None:
            return self
        datos = self.datos_pago or DatosPago()
        faltantes = [c for c in CAMPOS_POR_METODO[self.metodo_pago] if not getattr(datos, c)]
        if faltantes:
            raise ValueError(
                f"Faltan datos de pago para {self.metodo_pago}: {', '.join(faltantes)}"
            )
        return self


class Reserva(BaseModel):
    id: int
    usuario_id: int
    vehiculo_id: int
    fecha_inicio: datetime
    fecha_fin: datetime
    precio_total: float
    estado: EstadoReserva
    metodo_pago: Optional[str] = None
    datos_pago: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReservaDetalle(Reserva):
    vehiculo: Optional[Vehiculo] = None
    usuario: Optional[User] = None


class ReservaCreada(BaseModel):
    reserva: Reserva
    precio_total: float


class CotizacionRequest(RangoFechas):
    vehiculo_id: int = Field(..., validation_alias=AliasChoices("vehiculo_id", "autoId"))


class Cotizacion(BaseModel):
    dias: int
    descuento: int
    multiplicador: float
    precio_base: float
    precio_total: float
    auto: Vehiculo


class FacturaCliente(BaseModel):
    nombre: str
    email: str
    telefono: Optional[str] = ""


class FacturaReserva(BaseModel):
    id: int
    fecha_inicio: datetime
    fecha_fin: datetime
    dias: int


class FacturaAuto(BaseModel):
    marca: str
    modelo: str
    anio: int
    tipo: str
    precio_dia: float


class FacturaDetalles(BaseModel):
    subtotal: float
    impuestos: float
    total: float


class Factura(BaseModel):
    numero_factura: str
    fecha: datetime
    cliente: FacturaCliente
    reserva: FacturaReserva
    auto: FacturaAuto
    detalles: FacturaDetalles


# Checklists
NivelGasolina = Literal["Vacío", "1/4", "1/2", "3/4", "Lleno"]
EstadoGeneral = Literal["Excelente", "Bueno", "Regular", "Malo", "Requiere atención"]
Condicion = Literal["Excelente", "Bueno", "Regular", "Malo", "No funcional"]


class RayonBase(BaseModel):
    descripcion: str
    ubicacion: str


class RayonCreate(RayonBase):
    pass


class RayonUpdate(RayonBase):
    fecha: Optional[datetime] = None


class Rayon(RayonBase):
    id: Optional[int] = None
    fecha: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ItemInventarioBase(BaseModel):
    nombre: str = Field(..., min_length=1)
    presente: bool = True
    condicion: Condicion = "Bueno"
    notas: str = ""


class ItemInventario(ItemInventarioBase):
    id: Optional[int] = None
    notas: Optional[str] = ""

    model_config = ConfigDict(from_attributes=True)


class ChecklistUpdate(BaseModel):
    nivel_gasolina: Optional[NivelGasolina] = None
    porcentaje_gasolina: Optional[int] = Field(None, ge=0, le=100)
    rayones: Optional[List[RayonUpdate]] = None
    inventario: Optional[List[ItemInventarioBase]] = None
    estado_general: Optional[EstadoGeneral] = None
    observaciones: Optional[str] = None


class Checklist(BaseModel):
    id: Optional[int] = None
    vehiculo_id: int
    nivel_gasolina: NivelGasolina
    porcentaje_gasolina: int
    rayones: List[Rayon]
    inventario: List[ItemInventario]
    estado_general: EstadoGeneral
    observaciones: Optional[str] = ""
    ultima_actualizacion_por: Optional[int] = None
    fecha_ultima_revision: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChecklistResumen(BaseModel):
    id: int
    vehiculo_id: int
    nivel_gasolina: str
    porcentaje_gasolina: int
    cantidad_rayones: int
    items_inventario: int
    items_faltantes: int
    estado_general: str
    fecha_ultima_revision: Optional[datetime] = None
    observaciones: Optional[str] = ""


# Dashboard
class Estadisticas(BaseModel):
    total_vehiculos: int
    vehiculos_disponibles: int
    total_usuarios: int
    total_reservas_activas: int
    reservas_ultimo_mes: int
    ingresos_totales: float
    tipo_mas_reservado: Optional[str] = None
    vehiculo_mas_reservado: Optional[str] = None
