# almacen/modules/lots/service.py
import logging
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.core.exceptions import (
    InsufficientStockError, InventoryValidationError, NoLotSelectedError,
    NotFoundError, OrphanedLotError
)
from almacen.shared.database.models import Lote, Movimiento, Producto
from .repository import LotRepository
from .schemas import (
    ConsolidatedGroup, ConsolidationResponse, LotKey, LotListResponse, LotResponse
)

logger = logging.getLogger(__name__)

# Diferencias menores se consideran cero (aritmética float)
EPSILON = 1e-9

ENTRADA = "entrada"
SALIDA = "salida"


def is_zero(value: float) -> bool:
    return abs(value) <= EPSILON


def resolve_packaging(
    producto: Producto,
    cantidad: Optional[float],
    numero_empaquetados: Optional[int]
) -> Tuple[float, float]:
    """
    Calcula (cantidad total, cantidad por empaquetado) de un ingreso.

    Productos por cajas: el empaquetado es siempre `unidades_por_caja` y, si
    se indican cajas, la cantidad es cajas x unidades_por_caja.
    Resto: la cantidad total se divide en `numero_empaquetados` (1 por
    defecto); el resultado no tiene que ser entero.
    """
    if numero_empaquetados is not None and numero_empaquetados <= 0:
        raise InventoryValidationError("El número de empaquetados debe ser un entero positivo")

    if producto.se_maneja_por_cajas:
        unidades_por_caja = float(producto.unidades_por_caja)
        if numero_empaquetados is not None:
            total = numero_empaquetados * unidades_por_caja
            if cantidad is not None and not is_zero(cantidad - total):
                raise InventoryValidationError(
                    f"{numero_empaquetados} cajas de {producto.unidades_por_caja} unidades "
                    f"son {total:g} unidades, no {cantidad:g}"
                )
            cantidad = total
        if cantidad is None or cantidad <= 0:
            raise InventoryValidationError("La cantidad debe ser mayor a 0")
        return cantidad, unidades_por_caja

    if cantidad is None or cantidad <= 0:
        raise InventoryValidationError("La cantidad debe ser mayor a 0")

    return cantidad, cantidad / (numero_empaquetados or 1)


class LotService:
    """
    Motor de resolución de lotes: traduce la intención de un movimiento en
    cambios concretos sobre detalle_contenedor.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = LotRepository(db)

    # ==================== CONSULTAS ====================

    async def list_lots_for(self, producto_id: int, contenedor_id: int) -> LotListResponse:
        """Lotes visibles en orden FEFO (vencimiento ascendente, sin fecha al final)"""
        lotes = await self.repository.find_lots_for(producto_id, contenedor_id)
        return LotListResponse(
            producto_id=producto_id,
            contenedor_id=contenedor_id,
            stock_total=sum(lote.cantidad for lote in lotes),
            lotes=[LotResponse.model_validate(lote) for lote in lotes]
        )

    async def current_stock(self, producto_id: int, contenedor_id: int) -> float:
        await self.db.flush()
        return await self.repository.current_stock(producto_id, contenedor_id)

    # ==================== ENTRADAS ====================

    async def resolve_entry(
        self,
        producto: Producto,
        contenedor_id: int,
        cantidad: Optional[float],
        lote_id: Optional[int] = None,
        numero_empaquetados: Optional[int] = None,
        precio: Optional[Decimal] = None,
        fecha_vencimiento: Optional[date] = None,
        estado_producto_id: Optional[int] = None,
        actualizar_precio: bool = True
    ) -> Tuple[Lote, float]:
        """
        Aplica un ingreso y devuelve (lote afectado, cantidad ingresada).

        Con `lote_id` se suma a ese lote. Sin él se busca un lote con la
        misma clave (producto, contenedor, vencimiento, estado) para
        fusionar; si no existe se crea uno nuevo.
        """
        cantidad, empaquetado = resolve_packaging(producto, cantidad, numero_empaquetados)

        if lote_id is not None:
            lote = await self.repository.get_lot(lote_id, for_update=True)
            self._check_lot_belongs(lote, lote_id, producto.id, contenedor_id)
            if not lote.visible:
                raise InventoryValidationError(f"El lote {lote_id} ya no está disponible")
        else:
            key = LotKey(
                producto_id=producto.id,
                contenedor_id=contenedor_id,
                fecha_vencimiento=fecha_vencimiento,
                estado_producto_id=estado_producto_id
            )
            lote = await self.repository.find_matching_lot(key, for_update=True)

        if lote is None:
            lote = Lote(
                producto_id=producto.id,
                contenedor_id=contenedor_id,
                cantidad=cantidad,
                empaquetado=empaquetado,
                precio_real_unidad=precio if precio is not None else Decimal("0"),
                fecha_vencimiento=fecha_vencimiento,
                estado_producto_id=estado_producto_id,
                visible=True
            )
            await self.repository.upsert_lot(lote)
            logger.info(
                f"Lote {lote.id} creado: producto {producto.id} en contenedor {contenedor_id}, "
                f"{cantidad:g} unidades ({empaquetado:g} por empaquetado)"
            )
            return lote, cantidad

        lote.cantidad = lote.cantidad + cantidad

        # Se conserva el último tamaño informado, sin promediar
        if producto.se_maneja_por_cajas:
            lote.empaquetado = empaquetado
        elif numero_empaquetados is not None or lote_id is None:
            lote.empaquetado = empaquetado

        # Último precio gana
        if precio is not None and actualizar_precio:
            lote.precio_real_unidad = precio

        await self.repository.upsert_lot(lote)
        logger.info(f"Lote {lote.id} incrementado en {cantidad:g} (total {lote.cantidad:g})")
        return lote, cantidad

    # ==================== SALIDAS ====================

    async def select_exit_lot(
        self,
        producto_id: int,
        contenedor_id: int,
        lote_id: Optional[int]
    ) -> Lote:
        """Lote del que se descuenta una salida; con varios lotes es obligatorio elegir"""
        lotes = await self.repository.find_lots_for(producto_id, contenedor_id, for_update=True)

        if not lotes:
            raise InsufficientStockError("No hay stock disponible para realizar la salida")

        if lote_id is None:
            if len(lotes) > 1:
                raise NoLotSelectedError(
                    f"Hay {len(lotes)} lotes de este producto en el contenedor; "
                    "selecciona un lote para la salida"
                )
            return lotes[0]

        for lote in lotes:
            if lote.id == lote_id:
                return lote

        lote = await self.repository.get_lot(lote_id)
        self._check_lot_belongs(lote, lote_id, producto_id, contenedor_id)
        raise InsufficientStockError(f"El lote {lote_id} ya no tiene stock disponible")

    async def resolve_exit(
        self,
        producto_id: int,
        contenedor_id: int,
        cantidad: float,
        lote_id: Optional[int] = None
    ) -> Lote:
        """Descuenta `cantidad` del lote elegido; si queda en 0 se oculta"""
        if cantidad is None or cantidad <= 0:
            raise InventoryValidationError("La cantidad debe ser mayor a 0")

        lote = await self.select_exit_lot(producto_id, contenedor_id, lote_id)

        if cantidad > lote.cantidad + EPSILON:
            raise InsufficientStockError(
                f"El lote seleccionado solo tiene {lote.cantidad:g} unidades disponibles"
            )

        await self._decrease(lote, cantidad)
        return lote

    # ==================== REVERSIÓN ====================

    async def revert_movement(
        self,
        movimiento: Movimiento,
        tipo_movimiento: str,
        lote: Optional[Lote],
        advertencias: Optional[List[str]] = None
    ) -> Optional[Lote]:
        """
        Deshace el efecto de un movimiento ya aplicado sobre su lote.

        Entrada: se resta la cantidad. Si el lote ya se consumió (total o
        parcialmente) falla con InsufficientStockError. Si la fila del lote
        no existe se omite la reversión y queda como advertencia.
        Salida: se devuelve la cantidad, reactivando el lote si se había
        ocultado. Sin lote no hay forma de devolverla: OrphanedLotError.
        """
        if tipo_movimiento == ENTRADA:
            if lote is None:
                mensaje = (
                    f"El lote {movimiento.lote_id} de la entrada {movimiento.id} no existe; "
                    "se omitió la reversión de su cantidad"
                )
                logger.warning(mensaje)
                if advertencias is not None:
                    advertencias.append(mensaje)
                return None

            if not lote.visible:
                raise InsufficientStockError(
                    f"No se puede revertir la entrada: el lote {lote.id} ya fue consumido "
                    f"por completo y no conserva las {movimiento.cantidad:g} unidades ingresadas"
                )

            if movimiento.cantidad > lote.cantidad + EPSILON:
                raise InsufficientStockError(
                    f"No se puede revertir la entrada: el lote {lote.id} solo conserva "
                    f"{lote.cantidad:g} de las {movimiento.cantidad:g} unidades ingresadas"
                )

            await self._decrease(lote, movimiento.cantidad)
            return lote

        if tipo_movimiento == SALIDA:
            if lote is None:
                logger.error(
                    f"Movimiento {movimiento.id}: el lote {movimiento.lote_id} no existe, "
                    "no se puede devolver la salida"
                )
                raise OrphanedLotError(
                    "El lote de esta salida ya no existe; no se puede revertir el movimiento"
                )

            if not lote.visible:
                lote.visible = True
                lote.cantidad = 0.0
                logger.info(f"Lote {lote.id} reactivado al revertir la salida {movimiento.id}")

            lote.cantidad = lote.cantidad + movimiento.cantidad
            await self.repository.upsert_lot(lote)
            return lote

        raise InventoryValidationError(f"Tipo de movimiento desconocido: {tipo_movimiento}")

    # ==================== CONSOLIDACIÓN ====================

    async def consolidate_duplicates(self) -> ConsolidationResponse:
        """
        Fusiona lotes visibles que comparten clave. Se conserva el más
        antiguo con la suma de cantidades y el precio del más reciente; los
        demás se ocultan y sus movimientos pasan a apuntar al conservado.
        """
        grupos: Dict[LotKey, List[Lote]] = OrderedDict()
        for lote in await self.repository.find_all_visible():
            grupos.setdefault(LotKey.from_lote(lote), []).append(lote)

        consolidados = []
        try:
            for key, lotes in grupos.items():
                if len(lotes) > 1:
                    consolidados.append(await self._merge_group(key, lotes))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return ConsolidationResponse(
            grupos_consolidados=len(consolidados),
            lotes_ocultados=sum(len(g.lotes_ocultados) for g in consolidados),
            grupos=consolidados
        )

    async def _merge_group(self, key: LotKey, lotes: List[Lote]) -> ConsolidatedGroup:
        base, duplicados = lotes[0], lotes[1:]
        base.cantidad = sum(lote.cantidad for lote in lotes)
        base.precio_real_unidad = lotes[-1].precio_real_unidad
        await self.repository.upsert_lot(base)

        ocultados = []
        for duplicado in duplicados:
            await self.repository.soft_delete_lot(duplicado)
            ocultados.append(duplicado.id)

        await self.repository.reassign_movements(ocultados, base.id)

        logger.info(
            f"Lotes {ocultados} consolidados en {base.id} "
            f"(producto {key.producto_id}, contenedor {key.contenedor_id})"
        )
        return ConsolidatedGroup(
            lote_id=base.id,
            producto_id=key.producto_id,
            contenedor_id=key.contenedor_id,
            fecha_vencimiento=key.fecha_vencimiento,
            estado_producto_id=key.estado_producto_id,
            cantidad_consolidada=base.cantidad,
            lotes_ocultados=ocultados
        )

    # ==================== HELPERS ====================

    async def _decrease(self, lote: Lote, cantidad: float) -> None:
        nueva_cantidad = lote.cantidad - cantidad

        if is_zero(nueva_cantidad) or nueva_cantidad < 0:
            await self.repository.soft_delete_lot(lote)
            logger.info(f"Lote {lote.id} agotado, marcado como no visible")
            return

        lote.cantidad = nueva_cantidad
        await self.repository.upsert_lot(lote)

    @staticmethod
    def _check_lot_belongs(
        lote: Optional[Lote],
        lote_id: int,
        producto_id: int,
        contenedor_id: int
    ) -> None:
        if lote is None:
            raise NotFoundError(f"Lote {lote_id} no encontrado")
        if lote.producto_id != producto_id or lote.contenedor_id != contenedor_id:
            raise InventoryValidationError(
                f"El lote {lote_id} no pertenece al producto y contenedor indicados"
            )
