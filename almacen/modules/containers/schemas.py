# almacen/modules/containers/schemas.py
from datetime import date
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from almacen.modules.lots.schemas import LotResponse
from almacen.modules.movements.schemas import MovementResponse

# ===== REQUEST SCHEMAS =====

class ProductAssign(BaseModel):
    """Ingresar un producto a un contenedor (compra)"""
    producto_id: int = Field(..., gt=0)
    cantidad: Optional[float] = Field(None, gt=0, description="Cantidad total en unidades")
    numero_empaquetados: Optional[int] = Field(None, gt=0, description="Empaquetados o cajas")
    precio_real_unidad: Optional[Decimal] = Field(None, ge=0)
    fecha_vencimiento: Optional[date] = None
    estado_producto_id: Optional[int] = Field(None, gt=0)
    numero_documento: Optional[str] = Field(None, max_length=100)
    observacion: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_cantidad(self):
        if self.cantidad is None and self.numero_empaquetados is None:
            raise ValueError("Debe indicar cantidad o numero_empaquetados")
        return self

class LotAdjust(BaseModel):
    """Nuevos valores de un lote; la diferencia de cantidad queda en el kardex"""
    cantidad: float = Field(..., ge=0, description="Nueva cantidad total del lote")
    numero_empaquetados: Optional[int] = Field(None, gt=0)
    precio_real_unidad: Optional[Decimal] = Field(None, ge=0)
    fecha_vencimiento: Optional[date] = None
    estado_producto_id: Optional[int] = Field(None, gt=0)
    observacion: Optional[str] = Field(None, max_length=1000)

class LotRemove(BaseModel):
    observacion: Optional[str] = Field(None, max_length=1000)

class PackageTransfer(BaseModel):
    """Mover empaquetados completos de un lote a otro contenedor"""
    contenedor_destino_id: int = Field(..., gt=0)
    numero_empaquetados: int = Field(..., gt=0)
    observacion: Optional[str] = Field(None, max_length=1000)

# ===== RESPONSE SCHEMAS =====

class ContainerInfo(BaseModel):
    id: int
    codigo: Optional[str] = None
    nombre: str
    ubicacion: Optional[str] = None
    capacidad: Optional[float] = None

class ContainerLot(LotResponse):
    producto_nombre: str
    producto_codigo: Optional[str] = None
    valor_total: float

class ContainerStats(BaseModel):
    total_lotes: int
    total_productos: int
    cantidad_total: float
    valor_total: float

class ContainerContentsResponse(BaseModel):
    contenedor: ContainerInfo
    lotes: List[ContainerLot]
    estadisticas: ContainerStats

class LotAdjustResponse(BaseModel):
    lote: LotResponse
    movimiento: Optional[MovementResponse] = None

class TransferResponse(BaseModel):
    lote_origen_id: int
    lote_destino_id: int
    numero_empaquetados: int
    cantidad: float
    salida: MovementResponse
    entrada: MovementResponse
