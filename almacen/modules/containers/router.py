# almacen/modules/containers/router.py
from typing import Optional
from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.config.database import get_db
from almacen.config.settings import Settings
from almacen.core.clock import Clock
from almacen.core.dependencies import get_clock, get_event_bus, get_settings
from almacen.core.events import EventBus
from almacen.modules.movements.schemas import MovementResponse
from .service import ContainerService
from .schemas import (
    ContainerContentsResponse, LotAdjust, LotAdjustResponse, LotRemove,
    PackageTransfer, ProductAssign, TransferResponse
)

router = APIRouter(prefix="/containers", tags=["Contenedores"])

async def get_container_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    events: EventBus = Depends(get_event_bus),
    config: Settings = Depends(get_settings)
) -> ContainerService:
    return ContainerService(db, clock=clock, events=events, config=config)

# ==================== LOTES ====================

@router.put("/lots/{lote_id}", response_model=LotAdjustResponse)
async def adjust_lot(
    lote_id: int,
    adjust_data: LotAdjust,
    service: ContainerService = Depends(get_container_service)
):
    """
    Ajustar lote

    Fija la nueva cantidad total; la diferencia se registra en el kardex
    como "Ajuste de inventario". También actualiza precio, vencimiento,
    estado y número de empaquetados.
    """
    return await service.adjust_lot(lote_id, adjust_data)

@router.post("/lots/{lote_id}/remove", response_model=MovementResponse)
async def remove_lot(
    lote_id: int,
    remove_data: Optional[LotRemove] = Body(None),
    service: ContainerService = Depends(get_container_service)
):
    """Retirar el lote completo del contenedor"""
    return await service.remove_lot(lote_id, remove_data)

@router.post("/lots/{lote_id}/transfer", response_model=TransferResponse)
async def transfer_packages(
    lote_id: int,
    transfer_data: PackageTransfer,
    service: ContainerService = Depends(get_container_service)
):
    """
    Transferir empaquetados a otro contenedor

    **Funcionalidad:**
    - Salida del lote origen y entrada en el contenedor destino
    - El destino se fusiona con un lote de igual vencimiento y estado
    - Transferir todos los empaquetados mueve la cantidad completa del lote
    """
    return await service.transfer_packages(lote_id, transfer_data)

# ==================== CONTENEDOR ====================

@router.get("/{contenedor_id}", response_model=ContainerContentsResponse)
async def get_container_contents(
    contenedor_id: int,
    service: ContainerService = Depends(get_container_service)
):
    """Lotes visibles del contenedor con cantidad, empaquetados y valor"""
    return await service.get_container_contents(contenedor_id)

@router.post("/{contenedor_id}/products", response_model=MovementResponse, status_code=201)
async def add_product_to_container(
    contenedor_id: int,
    product_data: ProductAssign,
    service: ContainerService = Depends(get_container_service)
):
    """
    Ingresar producto al contenedor

    Registra una entrada con motivo "Compra". Para productos por cajas se
    puede indicar solo el número de cajas.
    """
    return await service.add_product(contenedor_id, product_data)
