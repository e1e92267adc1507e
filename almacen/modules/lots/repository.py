# almacen/modules/lots/repository.py
from typing import List, Optional, Sequence
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.shared.database.models import Lote, Movimiento
from .schemas import LotKey

class LotRepository:
    """
    Acceso a la tabla detalle_contenedor.

    Sin reglas de negocio: solo igualdad de claves y la convención de
    borrado lógico. No hace commit; la transacción la cierra el servicio.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _fefo_order():
        # Vencimiento ascendente, sin vencimiento al final, empate por id
        return (
            Lote.fecha_vencimiento.is_(None),
            Lote.fecha_vencimiento.asc(),
            Lote.id.asc()
        )

    # ===== CONSULTAS =====

    async def get_lot(self, lote_id: int, for_update: bool = False) -> Optional[Lote]:
        """Obtener lote por ID, visible o no"""
        query = select(Lote).where(Lote.id == lote_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_lots_for(
        self,
        producto_id: int,
        contenedor_id: int,
        for_update: bool = False
    ) -> List[Lote]:
        """Lotes visibles de un producto en un contenedor, orden FEFO"""
        query = select(Lote)\
            .where(
                Lote.producto_id == producto_id,
                Lote.contenedor_id == contenedor_id,
                Lote.visible.is_(True)
            )\
            .order_by(*self._fefo_order())
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_matching_lot(self, key: LotKey, for_update: bool = False) -> Optional[Lote]:
        """Lote visible con exactamente las mismas coordenadas (None == None)"""
        query = select(Lote).where(
            Lote.producto_id == key.producto_id,
            Lote.contenedor_id == key.contenedor_id,
            Lote.visible.is_(True)
        )

        if key.fecha_vencimiento is None:
            query = query.where(Lote.fecha_vencimiento.is_(None))
        else:
            query = query.where(Lote.fecha_vencimiento == key.fecha_vencimiento)

        if key.estado_producto_id is None:
            query = query.where(Lote.estado_producto_id.is_(None))
        else:
            query = query.where(Lote.estado_producto_id == key.estado_producto_id)

        # Si hay duplicados heredados, se usa el más antiguo
        query = query.order_by(Lote.id.asc()).limit(1)
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_all_visible(self) -> List[Lote]:
        """Todos los lotes visibles, del más antiguo al más reciente"""
        query = select(Lote)\
            .where(Lote.visible.is_(True))\
            .order_by(Lote.created_at.asc(), Lote.id.asc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def current_stock(self, producto_id: int, contenedor_id: int) -> float:
        """Stock total = suma de cantidades de los lotes visibles"""
        query = select(func.coalesce(func.sum(Lote.cantidad), 0.0)).where(
            Lote.producto_id == producto_id,
            Lote.contenedor_id == contenedor_id,
            Lote.visible.is_(True)
        )
        result = await self.db.execute(query)
        return float(result.scalar_one())

    # ===== ESCRITURA =====

    async def upsert_lot(self, lote: Lote) -> Lote:
        """Registrar lote nuevo o cambios de uno existente"""
        self.db.add(lote)
        await self.db.flush()
        return lote

    async def soft_delete_lot(self, lote: Lote) -> Lote:
        """Ocultar lote dejando su cantidad en 0"""
        lote.cantidad = 0.0
        lote.visible = False
        await self.db.flush()
        return lote

    async def reassign_movements(self, from_lote_ids: Sequence[int], to_lote_id: int) -> None:
        """Apuntar los movimientos de lotes fusionados al lote que se conserva"""
        if not from_lote_ids:
            return
        await self.db.execute(
            update(Movimiento)
            .where(Movimiento.lote_id.in_(list(from_lote_ids)))
            .values(lote_id=to_lote_id)
        )
