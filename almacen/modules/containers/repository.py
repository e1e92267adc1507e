# almacen/modules/containers/repository.py
from typing import List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.shared.database.models import Contenedor, Lote, Producto

class ContainerRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_container(self, contenedor_id: int) -> Optional[Contenedor]:
        return await self.db.get(Contenedor, contenedor_id)

    async def get_product(self, producto_id: int) -> Optional[Producto]:
        return await self.db.get(Producto, producto_id)

    async def get_container_lots(self, contenedor_id: int) -> List[Tuple[Lote, Producto]]:
        """Lotes visibles del contenedor con su producto, por nombre y vencimiento"""
        query = select(Lote, Producto)\
            .join(Producto, Lote.producto_id == Producto.id)\
            .where(Lote.contenedor_id == contenedor_id, Lote.visible.is_(True))\
            .order_by(
                Producto.nombre.asc(),
                Lote.fecha_vencimiento.is_(None),
                Lote.fecha_vencimiento.asc(),
                Lote.id.asc()
            )
        result = await self.db.execute(query)
        return [(row[0], row[1]) for row in result.all()]
