# almacen/modules/containers/service.py
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.config.settings import Settings
from almacen.core.clock import Clock
from almacen.core.events import EventBus
from almacen.core.exceptions import InsufficientStockError, InventoryValidationError, NotFoundError
from almacen.modules.lots.schemas import LotKey, LotResponse
from almacen.modules.lots.service import EPSILON, resolve_packaging
from almacen.modules.movements.schemas import (
    MOTIVO_AJUSTE, MOTIVO_COMPRA, MOTIVO_RETIRO, MOTIVO_TRANSFERENCIA, MovementResponse, TipoMovimiento
)
from almacen.modules.movements.service import MovementService
from almacen.shared.database.models import Contenedor, Lote, Producto
from .repository import ContainerRepository
from .schemas import (
    ContainerContentsResponse, ContainerInfo, ContainerLot, ContainerStats, LotAdjust,
    LotAdjustResponse, LotRemove, PackageTransfer, ProductAssign, TransferResponse
)

logger = logging.getLogger(__name__)


class ContainerService:
    """
    Operaciones sobre el contenido de un contenedor. Cada una se registra
    como uno o más movimientos del kardex dentro de una sola transacción.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
        config: Optional[Settings] = None
    ):
        self.db = db
        self.repository = ContainerRepository(db)
        self.movements = MovementService(db, clock=clock, events=events, config=config)
        self.lots = self.movements.lots

    # ==================== CONTENIDO ====================

    async def get_container_contents(self, contenedor_id: int) -> ContainerContentsResponse:
        """Lotes visibles del contenedor con estadísticas"""
        contenedor = await self._get_container(contenedor_id)
        filas = await self.repository.get_container_lots(contenedor_id)

        lotes = []
        for lote, producto in filas:
            precio = float(lote.precio_real_unidad or 0)
            lotes.append(ContainerLot(
                **LotResponse.model_validate(lote).model_dump(),
                producto_nombre=producto.nombre,
                producto_codigo=producto.codigo,
                valor_total=lote.cantidad * precio
            ))

        stats = ContainerStats(
            total_lotes=len(lotes),
            total_productos=len({lote.producto_id for lote in lotes}),
            cantidad_total=sum(lote.cantidad for lote in lotes),
            valor_total=sum(lote.valor_total for lote in lotes)
        )

        return ContainerContentsResponse(
            contenedor=ContainerInfo(
                id=contenedor.id,
                codigo=contenedor.codigo,
                nombre=contenedor.nombre,
                ubicacion=contenedor.ubicacion,
                capacidad=contenedor.capacidad
            ),
            lotes=lotes,
            estadisticas=stats
        )

    # ==================== INGRESO ====================

    async def add_product(self, contenedor_id: int, data: ProductAssign) -> MovementResponse:
        """Ingresar producto al contenedor como compra"""
        try:
            producto = await self._get_product(data.producto_id)
            cantidad, empaquetado = resolve_packaging(producto, data.cantidad, data.numero_empaquetados)

            motivo = await self.movements.reason_by_name(MOTIVO_COMPRA, TipoMovimiento.ENTRADA)
            movimiento = await self.movements.apply_movement(
                producto_id=producto.id,
                contenedor_id=contenedor_id,
                motivo=motivo,
                cantidad=data.cantidad,
                numero_empaquetados=data.numero_empaquetados,
                precio=data.precio_real_unidad,
                fecha_vencimiento=data.fecha_vencimiento,
                estado_producto_id=data.estado_producto_id,
                numero_documento=data.numero_documento,
                observacion=data.observacion or self._packaging_note(producto, cantidad, empaquetado)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Producto {producto.id} ingresado al contenedor {contenedor_id}: {cantidad:g} unidades")
        await self.movements.notify_changes([movimiento.id], [movimiento.lote_id])
        return self.movements.build_movement_response(movimiento)

    # ==================== AJUSTE ====================

    async def adjust_lot(self, lote_id: int, data: LotAdjust) -> LotAdjustResponse:
        """
        Fijar la cantidad y datos de un lote.

        La diferencia de cantidad se registra como "Ajuste de inventario"
        (entrada si aumenta, salida si disminuye). Sin diferencia solo se
        actualizan precio, vencimiento, estado y empaquetado.
        """
        movimiento = None
        try:
            lote = await self._get_visible_lot(lote_id)
            await self._check_key_change(lote, data)
            cantidad_anterior = lote.cantidad
            diferencia = data.cantidad - cantidad_anterior

            if diferencia > EPSILON:
                motivo = await self.movements.reason_by_name(MOTIVO_AJUSTE, TipoMovimiento.ENTRADA)
            elif diferencia < -EPSILON:
                motivo = await self.movements.reason_by_name(MOTIVO_AJUSTE, TipoMovimiento.SALIDA)
            else:
                motivo = None

            if motivo is not None:
                movimiento = await self.movements.apply_movement(
                    producto_id=lote.producto_id,
                    contenedor_id=lote.contenedor_id,
                    motivo=motivo,
                    cantidad=abs(diferencia),
                    lote_id=lote.id,
                    precio=data.precio_real_unidad,
                    observacion=data.observacion or f"Ajuste de {cantidad_anterior:g} a {data.cantidad:g}",
                    actualizar_precio=False
                )

            if lote.visible:
                await self._apply_lot_fields(lote, data)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Lote {lote.id} ajustado a {data.cantidad:g}")
        await self.movements.notify_changes([movimiento.id] if movimiento else [], [lote.id])

        return LotAdjustResponse(
            lote=LotResponse.model_validate(lote),
            movimiento=self.movements.build_movement_response(movimiento) if movimiento else None
        )

    async def _check_key_change(self, lote: Lote, data: LotAdjust) -> None:
        """Un cambio de vencimiento o estado no puede duplicar otro lote visible"""
        actual = LotKey.from_lote(lote)
        nueva = LotKey(
            producto_id=lote.producto_id,
            contenedor_id=lote.contenedor_id,
            fecha_vencimiento=data.fecha_vencimiento if data.fecha_vencimiento is not None else lote.fecha_vencimiento,
            estado_producto_id=data.estado_producto_id if data.estado_producto_id is not None else lote.estado_producto_id
        )
        if nueva == actual:
            return

        otro = await self.lots.repository.find_matching_lot(nueva, for_update=True)
        if otro is not None and otro.id != lote.id:
            raise InventoryValidationError(
                f"Ya existe el lote {otro.id} con el mismo vencimiento y estado en este contenedor; "
                f"no se puede asignar al lote {lote.id}"
            )

    async def _apply_lot_fields(self, lote: Lote, data: LotAdjust) -> None:
        producto = await self._get_product(lote.producto_id)

        if data.precio_real_unidad is not None:
            lote.precio_real_unidad = data.precio_real_unidad
        if data.fecha_vencimiento is not None:
            lote.fecha_vencimiento = data.fecha_vencimiento
        if data.estado_producto_id is not None:
            lote.estado_producto_id = data.estado_producto_id

        if producto.se_maneja_por_cajas:
            lote.empaquetado = float(producto.unidades_por_caja)
        elif data.numero_empaquetados is not None:
            lote.empaquetado = lote.cantidad / data.numero_empaquetados

        await self.lots.repository.upsert_lot(lote)

    # ==================== RETIRO ====================

    async def remove_lot(self, lote_id: int, data: Optional[LotRemove] = None) -> MovementResponse:
        """Sacar todo el lote del contenedor; el lote queda oculto con cantidad 0"""
        try:
            lote = await self._get_visible_lot(lote_id)
            motivo = await self.movements.reason_by_name(MOTIVO_RETIRO, TipoMovimiento.SALIDA)
            movimiento = await self.movements.apply_movement(
                producto_id=lote.producto_id,
                contenedor_id=lote.contenedor_id,
                motivo=motivo,
                cantidad=lote.cantidad,
                lote_id=lote.id,
                observacion=(data.observacion if data else None) or "Retiro total del lote"
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Lote {lote_id} retirado del contenedor {lote.contenedor_id}")
        await self.movements.notify_changes([movimiento.id], [lote.id])
        return self.movements.build_movement_response(movimiento)

    # ==================== TRANSFERENCIA ====================

    async def transfer_packages(self, lote_id: int, data: PackageTransfer) -> TransferResponse:
        """
        Mover N empaquetados completos de un lote a otro contenedor.

        Salida del lote origen y entrada al destino (fusionando por clave,
        conservando precio, vencimiento, estado y tamaño de empaquetado).
        Si se mueven todos los empaquetados se mueve la cantidad completa
        del lote, incluido cualquier sobrante fraccionario.
        """
        try:
            origen = await self._get_visible_lot(lote_id)
            if data.contenedor_destino_id == origen.contenedor_id:
                raise InventoryValidationError("El contenedor destino debe ser distinto al de origen")
            destino = await self._get_container(data.contenedor_destino_id)

            if not origen.empaquetado or origen.empaquetado <= 0:
                raise InventoryValidationError(f"El lote {lote_id} no tiene tamaño de empaquetado definido")

            disponibles = origen.numero_empaquetados
            if data.numero_empaquetados > disponibles:
                raise InsufficientStockError(
                    f"El lote solo tiene {disponibles} empaquetados completos"
                )

            if data.numero_empaquetados == disponibles:
                cantidad = origen.cantidad
            else:
                cantidad = data.numero_empaquetados * origen.empaquetado

            # Datos del origen antes de que la salida pueda ocultarlo
            empaquetado = origen.empaquetado
            precio = origen.precio_real_unidad
            destino_key = LotKey.from_lote(origen).with_contenedor(destino.id)
            observacion = data.observacion or (
                f"{data.numero_empaquetados} empaquetados de {empaquetado:g} "
                f"hacia {destino.nombre}"
            )

            motivo_salida = await self.movements.reason_by_name(MOTIVO_TRANSFERENCIA, TipoMovimiento.SALIDA)
            motivo_entrada = await self.movements.reason_by_name(MOTIVO_TRANSFERENCIA, TipoMovimiento.ENTRADA)

            salida = await self.movements.apply_movement(
                producto_id=origen.producto_id,
                contenedor_id=origen.contenedor_id,
                motivo=motivo_salida,
                cantidad=cantidad,
                lote_id=origen.id,
                precio=precio,
                observacion=observacion
            )
            entrada = await self.movements.apply_movement(
                producto_id=origen.producto_id,
                contenedor_id=destino_key.contenedor_id,
                motivo=motivo_entrada,
                cantidad=cantidad,
                precio=precio,
                fecha_vencimiento=destino_key.fecha_vencimiento,
                estado_producto_id=destino_key.estado_producto_id,
                observacion=observacion
            )

            lote_destino = await self.lots.repository.get_lot(entrada.lote_id)
            lote_destino.empaquetado = empaquetado
            await self.lots.repository.upsert_lot(lote_destino)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Transferencia de {data.numero_empaquetados} empaquetados ({cantidad:g} unidades) "
            f"del lote {origen.id} al lote {lote_destino.id} (contenedor {destino.id})"
        )
        await self.movements.notify_changes([salida.id, entrada.id], [origen.id, lote_destino.id])

        return TransferResponse(
            lote_origen_id=origen.id,
            lote_destino_id=lote_destino.id,
            numero_empaquetados=data.numero_empaquetados,
            cantidad=cantidad,
            salida=self.movements.build_movement_response(salida),
            entrada=self.movements.build_movement_response(entrada)
        )

    # ==================== HELPERS ====================

    async def _get_container(self, contenedor_id: int) -> Contenedor:
        contenedor = await self.repository.get_container(contenedor_id)
        if contenedor is None:
            raise NotFoundError(f"Contenedor {contenedor_id} no encontrado")
        return contenedor

    async def _get_product(self, producto_id: int) -> Producto:
        producto = await self.repository.get_product(producto_id)
        if producto is None:
            raise NotFoundError(f"Producto {producto_id} no encontrado")
        return producto

    async def _get_visible_lot(self, lote_id: int) -> Lote:
        lote = await self.lots.repository.get_lot(lote_id, for_update=True)
        if lote is None:
            raise NotFoundError(f"Lote {lote_id} no encontrado")
        if not lote.visible:
            raise InventoryValidationError(f"El lote {lote_id} ya no está disponible")
        return lote

    @staticmethod
    def _packaging_note(producto: Producto, cantidad: float, empaquetado: float) -> str:
        empaquetados = int(cantidad / empaquetado + EPSILON) if empaquetado > 0 else 0
        unidad = "cajas" if producto.se_maneja_por_cajas else "empaquetados"
        return f"Ingreso de {empaquetados} {unidad} de {empaquetado:g} unidades ({cantidad:g} en total)"
