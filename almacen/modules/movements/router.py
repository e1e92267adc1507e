# almacen/modules/movements/router.py
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.config.database import get_db
from almacen.config.settings import Settings
from almacen.core.clock import Clock
from almacen.core.dependencies import get_clock, get_event_bus, get_settings
from almacen.core.events import EventBus
from .service import MovementService
from .schemas import (
    KardexResponse, MovementCancel, MovementCreate, MovementFilters,
    MovementListResponse, MovementResponse, MovementUpdate, ReasonResponse, TipoMovimiento
)

router = APIRouter(prefix="/movements", tags=["Movimientos"])

async def get_movement_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    events: EventBus = Depends(get_event_bus),
    config: Settings = Depends(get_settings)
) -> MovementService:
    return MovementService(db, clock=clock, events=events, config=config)

# ==================== MOTIVOS ====================

@router.get("/reasons", response_model=List[ReasonResponse])
async def list_reasons(
    tipo_movimiento: Optional[TipoMovimiento] = Query(None, description="entrada o salida"),
    service: MovementService = Depends(get_movement_service)
):
    """Motivos de movimiento disponibles, opcionalmente por dirección"""
    return await service.list_reasons(tipo_movimiento)

@router.post("/reasons", response_model=ReasonResponse)
async def ensure_reason(
    nombre: str = Query(..., min_length=1, max_length=255),
    tipo_movimiento: TipoMovimiento = Query(...),
    service: MovementService = Depends(get_movement_service)
):
    """
    Obtener o crear motivo

    Idempotente: si ya existe un motivo con ese nombre y dirección se
    devuelve el existente.
    """
    return await service.ensure_reason(nombre, tipo_movimiento)

# ==================== KARDEX ====================

@router.get("/kardex/{producto_id}", response_model=KardexResponse)
async def get_kardex(
    producto_id: int,
    contenedor_id: Optional[int] = Query(None, description="Limitar a un contenedor"),
    fecha_desde: Optional[date] = Query(None),
    fecha_hasta: Optional[date] = Query(None),
    service: MovementService = Depends(get_movement_service)
):
    """
    Kardex de un producto

    **Incluye:**
    - Movimientos no anulados en orden cronológico
    - Entrada, salida y saldo acumulado por fila
    - Contenedor origen (salidas) o destino (entradas)
    """
    return await service.get_kardex(producto_id, contenedor_id, fecha_desde, fecha_hasta)

# ==================== MOVIMIENTOS ====================

@router.post("", response_model=MovementResponse, status_code=201)
async def create_movement(
    movement_data: MovementCreate,
    service: MovementService = Depends(get_movement_service)
):
    """
    Registrar movimiento de inventario

    **Entradas:**
    - Con `lote_id` se suma a ese lote
    - Sin lote se fusiona con el lote de igual vencimiento y estado, o se crea uno
    - Productos por cajas: `numero_empaquetados` son cajas completas

    **Salidas:**
    - Con un solo lote disponible se usa ese lote
    - Con varios lotes es obligatorio indicar `lote_id`
    - Un lote que queda en 0 se oculta
    """
    return await service.create_movement(movement_data)

@router.get("", response_model=MovementListResponse)
async def list_movements(
    producto_id: Optional[int] = Query(None),
    contenedor_id: Optional[int] = Query(None),
    tipo_movimiento: Optional[TipoMovimiento] = Query(None),
    fecha_desde: Optional[date] = Query(None),
    fecha_hasta: Optional[date] = Query(None),
    incluir_anulados: bool = Query(False, description="Incluir movimientos anulados"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: MovementService = Depends(get_movement_service)
):
    """Historial de movimientos, del más reciente al más antiguo"""
    filters = MovementFilters(
        producto_id=producto_id,
        contenedor_id=contenedor_id,
        tipo_movimiento=tipo_movimiento,
        fecha_desde=fecha_desde,
        fecha_hasta=fecha_hasta,
        incluir_anulados=incluir_anulados,
        limit=limit,
        offset=offset
    )
    return await service.list_movements(filters)

@router.get("/{movimiento_id}", response_model=MovementResponse)
async def get_movement(
    movimiento_id: int,
    service: MovementService = Depends(get_movement_service)
):
    return await service.get_movement(movimiento_id)

@router.put("/{movimiento_id}", response_model=MovementResponse)
async def update_movement(
    movimiento_id: int,
    update_data: MovementUpdate,
    service: MovementService = Depends(get_movement_service)
):
    """
    Editar movimiento activo

    **Campos editables:** cantidad, motivo (misma dirección), observación y
    precio. El efecto anterior sobre el lote se revierte y se vuelve a
    aplicar; las fotos de stock se recalculan.

    Movimientos antiguos sin lote se atribuyen al primer lote por
    vencimiento y se informa en `advertencias`.
    """
    return await service.update_movement(movimiento_id, update_data)

@router.post("/{movimiento_id}/cancel", response_model=MovementResponse)
async def cancel_movement(
    movimiento_id: int,
    cancel_data: MovementCancel,
    service: MovementService = Depends(get_movement_service)
):
    """
    Anular movimiento

    Solo dentro de las 24 horas siguientes a su registro y con motivo de
    anulación. La anulación es definitiva.
    """
    return await service.cancel_movement(movimiento_id, cancel_data)
