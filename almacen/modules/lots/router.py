# almacen/modules/lots/router.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.config.database import get_db
from almacen.core.dependencies import get_event_bus
from almacen.core.events import LOTES, MOVIMIENTOS, EventBus
from .service import LotService
from .schemas import LotListResponse, ConsolidationResponse

router = APIRouter(prefix="/lots", tags=["Lotes"])

# ==================== CONSULTA FEFO ====================

@router.get("", response_model=LotListResponse)
async def list_lots(
    producto_id: int = Query(..., description="ID del producto"),
    contenedor_id: int = Query(..., description="ID del contenedor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Lotes visibles de un producto en un contenedor

    **Orden FEFO:** vencimiento más próximo primero, lotes sin vencimiento
    al final y empates por ID. Es solo una sugerencia: las salidas se
    descuentan del lote que se elija.
    """
    service = LotService(db)
    return await service.list_lots_for(producto_id, contenedor_id)

# ==================== MANTENIMIENTO ====================

@router.post("/consolidate", response_model=ConsolidationResponse)
async def consolidate_duplicate_lots(
    db: AsyncSession = Depends(get_db),
    events: EventBus = Depends(get_event_bus)
):
    """
    Fusionar lotes duplicados

    Lotes visibles con el mismo producto, contenedor, vencimiento y estado
    se unen en el más antiguo. Los movimientos de los lotes ocultados pasan
    a apuntar al lote conservado.
    """
    service = LotService(db)
    result = await service.consolidate_duplicates()

    if result.grupos_consolidados:
        await events.entity_changed(LOTES)
        await events.entity_changed(MOVIMIENTOS)

    return result
