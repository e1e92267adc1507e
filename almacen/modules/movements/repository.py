# almacen/modules/movements/repository.py
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.shared.database.models import Movimiento, MotivoMovimiento
from .schemas import MovementFilters

class MovementRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===== MOVIMIENTOS =====

    async def get_movement(self, movimiento_id: int, for_update: bool = False) -> Optional[Movimiento]:
        """Obtener movimiento con motivo y contenedor cargados"""
        query = select(Movimiento).where(Movimiento.id == movimiento_id)
        if for_update:
            # Solo se bloquea la fila del movimiento, no las del join
            query = query.with_for_update(of=Movimiento)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def add_movement(self, movimiento: Movimiento) -> Movimiento:
        self.db.add(movimiento)
        await self.db.flush()
        return movimiento

    def _filter_conditions(self, filters: MovementFilters) -> list:
        conditions = []

        if filters.producto_id is not None:
            conditions.append(Movimiento.producto_id == filters.producto_id)
        if filters.contenedor_id is not None:
            conditions.append(Movimiento.contenedor_id == filters.contenedor_id)
        if filters.tipo_movimiento is not None:
            conditions.append(MotivoMovimiento.tipo_movimiento == filters.tipo_movimiento.value)
        if filters.fecha_desde is not None:
            conditions.append(Movimiento.fecha_movimiento >= _start_of(filters.fecha_desde))
        if filters.fecha_hasta is not None:
            conditions.append(Movimiento.fecha_movimiento < _start_of(filters.fecha_hasta + timedelta(days=1)))
        if not filters.incluir_anulados:
            conditions.append(Movimiento.visible.is_(True))

        return conditions

    async def list_movements(self, filters: MovementFilters) -> Tuple[List[Movimiento], int]:
        """Movimientos filtrados, del más reciente al más antiguo, con total"""
        conditions = self._filter_conditions(filters)

        count_query = select(func.count(Movimiento.id))\
            .join(MotivoMovimiento, Movimiento.motivo_movimiento_id == MotivoMovimiento.id)\
            .where(*conditions)
        total = (await self.db.execute(count_query)).scalar_one()

        query = select(Movimiento)\
            .join(MotivoMovimiento, Movimiento.motivo_movimiento_id == MotivoMovimiento.id)\
            .where(*conditions)\
            .order_by(Movimiento.fecha_movimiento.desc(), Movimiento.id.desc())\
            .offset(filters.offset)\
            .limit(filters.limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_kardex_movements(
        self,
        producto_id: int,
        contenedor_id: Optional[int] = None,
        fecha_desde: Optional[date] = None,
        fecha_hasta: Optional[date] = None
    ) -> List[Movimiento]:
        """Movimientos no anulados de un producto en orden cronológico"""
        query = select(Movimiento).where(
            Movimiento.producto_id == producto_id,
            Movimiento.visible.is_(True)
        )

        if contenedor_id is not None:
            query = query.where(Movimiento.contenedor_id == contenedor_id)
        if fecha_desde is not None:
            query = query.where(Movimiento.fecha_movimiento >= _start_of(fecha_desde))
        if fecha_hasta is not None:
            query = query.where(Movimiento.fecha_movimiento < _start_of(fecha_hasta + timedelta(days=1)))

        query = query.order_by(Movimiento.fecha_movimiento.asc(), Movimiento.id.asc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ===== MOTIVOS =====

    async def get_reason(self, motivo_id: int) -> Optional[MotivoMovimiento]:
        return await self.db.get(MotivoMovimiento, motivo_id)

    async def get_reason_by_name(self, nombre: str, tipo_movimiento: str) -> Optional[MotivoMovimiento]:
        query = select(MotivoMovimiento).where(
            MotivoMovimiento.nombre == nombre,
            MotivoMovimiento.tipo_movimiento == tipo_movimiento
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_reasons(self, tipo_movimiento: Optional[str] = None) -> List[MotivoMovimiento]:
        query = select(MotivoMovimiento).where(MotivoMovimiento.visible.is_(True))
        if tipo_movimiento:
            query = query.where(MotivoMovimiento.tipo_movimiento == tipo_movimiento)
        query = query.order_by(MotivoMovimiento.tipo_movimiento, MotivoMovimiento.nombre)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def ensure_reason(self, nombre: str, tipo_movimiento: str) -> Tuple[MotivoMovimiento, bool]:
        """
        Buscar o crear motivo por (nombre, tipo). Devuelve (motivo, creado).

        La inserción va en un savepoint: si otra transacción creó el mismo
        motivo, la restricción única falla y se lee el existente.
        """
        existing = await self.get_reason_by_name(nombre, tipo_movimiento)
        if existing is not None:
            return existing, False

        motivo = MotivoMovimiento(nombre=nombre, tipo_movimiento=tipo_movimiento, visible=True)
        try:
            async with self.db.begin_nested():
                self.db.add(motivo)
        except IntegrityError:
            existing = await self.get_reason_by_name(nombre, tipo_movimiento)
            if existing is None:
                raise
            return existing, False

        return motivo, True


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min)
