# almacen/modules/movements/schemas.py
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum

# ===== ENUMS =====

class TipoMovimiento(str, Enum):
    ENTRADA = "entrada"
    SALIDA = "salida"

# Vocabulario de motivos creado al iniciar
MOTIVO_COMPRA = "Compra"
MOTIVO_AJUSTE = "Ajuste de inventario"
MOTIVO_TRANSFERENCIA = "Transferencia entre contenedores"
MOTIVO_RETIRO = "Retiro de contenedor"

MOTIVOS_PREDETERMINADOS: Dict[TipoMovimiento, List[str]] = {
    TipoMovimiento.ENTRADA: [MOTIVO_COMPRA, MOTIVO_AJUSTE, MOTIVO_TRANSFERENCIA],
    TipoMovimiento.SALIDA: [MOTIVO_RETIRO, MOTIVO_AJUSTE, MOTIVO_TRANSFERENCIA],
}

# ===== REQUEST SCHEMAS =====

class MovementCreate(BaseModel):
    """
    Registrar movimiento de inventario.

    El motivo se indica por ID o por nombre (se crea si no existe). En
    ingresos de productos por cajas basta con `numero_empaquetados`.
    """
    producto_id: int = Field(..., gt=0)
    contenedor_id: int = Field(..., gt=0)
    tipo_movimiento: TipoMovimiento
    cantidad: Optional[float] = Field(None, gt=0, description="Cantidad en unidades")
    motivo_movimiento_id: Optional[int] = Field(None, gt=0)
    motivo_nombre: Optional[str] = Field(None, min_length=1, max_length=255)
    observacion: Optional[str] = Field(None, max_length=1000)
    precio_real: Optional[Decimal] = Field(None, ge=0, description="Precio real por unidad")
    numero_documento: Optional[str] = Field(None, max_length=100)
    lote_id: Optional[int] = Field(None, gt=0, description="Lote a afectar")
    numero_empaquetados: Optional[int] = Field(None, gt=0, description="Empaquetados (cajas) ingresados")
    fecha_vencimiento: Optional[date] = None
    estado_producto_id: Optional[int] = Field(None, gt=0)
    actualizar_precio_lote: bool = Field(
        default=True,
        description="Al ingresar a un lote existente, reemplazar su precio por el nuevo"
    )

    @model_validator(mode="after")
    def check_motivo_y_cantidad(self):
        if self.motivo_movimiento_id is None and not (self.motivo_nombre or "").strip():
            raise ValueError("Debe indicar motivo_movimiento_id o motivo_nombre")
        if self.cantidad is None and self.numero_empaquetados is None:
            raise ValueError("Debe indicar cantidad o numero_empaquetados")
        if self.tipo_movimiento == TipoMovimiento.SALIDA and self.cantidad is None:
            raise ValueError("Las salidas requieren cantidad")
        return self

class MovementUpdate(BaseModel):
    """Campos editables de un movimiento activo"""
    cantidad: Optional[float] = Field(None, gt=0)
    motivo_movimiento_id: Optional[int] = Field(None, gt=0)
    observacion: Optional[str] = Field(None, max_length=1000)
    precio_real: Optional[Decimal] = Field(None, ge=0)

class MovementCancel(BaseModel):
    motivo_anulacion: str = Field(..., min_length=1, max_length=500, description="Motivo de la anulación")

    @field_validator("motivo_anulacion")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("El motivo de anulación es obligatorio")
        return value

class MovementFilters(BaseModel):
    producto_id: Optional[int] = None
    contenedor_id: Optional[int] = None
    tipo_movimiento: Optional[TipoMovimiento] = None
    fecha_desde: Optional[date] = None
    fecha_hasta: Optional[date] = None
    incluir_anulados: bool = False
    limit: int = Field(default=100, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

# ===== RESPONSE SCHEMAS =====

class ReasonResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nombre: str
    tipo_movimiento: TipoMovimiento
    descripcion: Optional[str] = None

class MovementResponse(BaseModel):
    id: int
    producto_id: int
    contenedor_id: int
    contenedor_nombre: Optional[str] = None
    tipo_movimiento: TipoMovimiento
    cantidad: float
    motivo_movimiento_id: int
    motivo: str
    observacion: Optional[str] = None
    numero_documento: Optional[str] = None
    precio_real: Optional[Decimal] = None
    stock_anterior: float
    stock_nuevo: float
    lote_id: Optional[int] = None
    fecha_movimiento: datetime
    fecha_actualizacion: Optional[datetime] = None
    anulado: bool = False
    motivo_anulacion: Optional[str] = None
    fecha_anulacion: Optional[datetime] = None
    advertencias: List[str] = Field(default_factory=list)

class MovementListResponse(BaseModel):
    total: int
    movimientos: List[MovementResponse]

class KardexEntry(BaseModel):
    """Fila del kardex: saldo acumulado tras el movimiento"""
    movimiento_id: int
    fecha: datetime
    tipo_movimiento: TipoMovimiento
    motivo: Optional[str] = None
    contenedor_origen: Optional[str] = None
    contenedor_destino: Optional[str] = None
    entrada: float = 0.0
    salida: float = 0.0
    saldo: float
    precio_real: Optional[Decimal] = None
    numero_documento: Optional[str] = None
    lote_id: Optional[int] = None

class KardexResponse(BaseModel):
    producto_id: int
    contenedor_id: Optional[int] = None
    total_entradas: float
    total_salidas: float
    saldo_final: float
    movimientos: List[KardexEntry]
