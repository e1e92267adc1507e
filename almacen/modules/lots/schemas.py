# almacen/modules/lots/schemas.py
from dataclasses import dataclass
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

# ===== CLAVE DE LOTE =====

@dataclass(frozen=True)
class LotKey:
    """
    Coordenadas que identifican un lote. Dos ingresos con la misma clave se
    fusionan en un solo lote; `None` en vencimiento o estado solo coincide
    con `None`.
    """
    producto_id: int
    contenedor_id: int
    fecha_vencimiento: Optional[date] = None
    estado_producto_id: Optional[int] = None

    @classmethod
    def from_lote(cls, lote) -> "LotKey":
        return cls(
            producto_id=lote.producto_id,
            contenedor_id=lote.contenedor_id,
            fecha_vencimiento=lote.fecha_vencimiento,
            estado_producto_id=lote.estado_producto_id
        )

    def with_contenedor(self, contenedor_id: int) -> "LotKey":
        return LotKey(
            producto_id=self.producto_id,
            contenedor_id=contenedor_id,
            fecha_vencimiento=self.fecha_vencimiento,
            estado_producto_id=self.estado_producto_id
        )

# ===== RESPONSES =====

class LotResponse(BaseModel):
    """Lote visible de un producto en un contenedor"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    producto_id: int
    contenedor_id: int
    cantidad: float
    empaquetado: float = Field(..., description="Cantidad por empaquetado")
    numero_empaquetados: int = Field(..., description="Empaquetados completos en el lote")
    precio_real_unidad: Optional[Decimal] = None
    fecha_vencimiento: Optional[date] = None
    estado_producto_id: Optional[int] = None
    visible: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class LotListResponse(BaseModel):
    """Lotes de un producto+contenedor en orden FEFO"""
    producto_id: int
    contenedor_id: int
    stock_total: float
    lotes: List[LotResponse]

class ConsolidatedGroup(BaseModel):
    lote_id: int
    producto_id: int
    contenedor_id: int
    fecha_vencimiento: Optional[date] = None
    estado_producto_id: Optional[int] = None
    cantidad_consolidada: float
    lotes_ocultados: List[int]

class ConsolidationResponse(BaseModel):
    grupos_consolidados: int
    lotes_ocultados: int
    grupos: List[ConsolidatedGroup]
