# almacen/modules/movements/service.py
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from almacen.config.settings import Settings, settings as default_settings
from almacen.core.clock import Clock, as_naive_utc, system_clock
from almacen.core.events import EventBus, LOTES, MOTIVOS, MOVIMIENTOS, event_bus
from almacen.core.exceptions import (
    AlreadyCancelledError, CancellationWindowExpiredError, CannotEditLegacyMovementError,
    InventoryValidationError, NotFoundError
)
from almacen.modules.lots.schemas import LotKey
from almacen.modules.lots.service import LotService
from almacen.shared.database.models import Contenedor, Lote, MotivoMovimiento, Movimiento, Producto
from .repository import MovementRepository
from .schemas import (
    KardexEntry, KardexResponse, MovementCancel, MovementCreate, MovementFilters,
    MovementListResponse, MovementResponse, MovementUpdate, MOTIVOS_PREDETERMINADOS,
    ReasonResponse, TipoMovimiento
)

logger = logging.getLogger(__name__)


class MovementService:
    """
    Ciclo de vida de un movimiento: Activo -> Anulado (terminal).

    Cada operación pública es una transacción: se bloquean los lotes del
    par producto+contenedor, se aplica el cambio, se hace commit y recién
    entonces se publican los eventos. Ante cualquier error se hace rollback.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
        config: Optional[Settings] = None
    ):
        self.db = db
        self.clock = clock or system_clock
        self.events = events or event_bus
        self.settings = config or default_settings
        self.repository = MovementRepository(db)
        self.lots = LotService(db)

    # ==================== REGISTRO ====================

    async def create_movement(self, data: MovementCreate) -> MovementResponse:
        """Registrar entrada o salida aplicándola sobre los lotes"""
        try:
            motivo = await self._resolve_reason(
                data.tipo_movimiento, data.motivo_movimiento_id, data.motivo_nombre
            )
            movimiento = await self.apply_movement(
                producto_id=data.producto_id,
                contenedor_id=data.contenedor_id,
                motivo=motivo,
                cantidad=data.cantidad,
                lote_id=data.lote_id,
                numero_empaquetados=data.numero_empaquetados,
                precio=data.precio_real,
                fecha_vencimiento=data.fecha_vencimiento,
                estado_producto_id=data.estado_producto_id,
                observacion=data.observacion,
                numero_documento=data.numero_documento,
                actualizar_precio=data.actualizar_precio_lote
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Movimiento {movimiento.id} registrado: {motivo.tipo_movimiento} de "
            f"{movimiento.cantidad:g} (producto {movimiento.producto_id}, "
            f"contenedor {movimiento.contenedor_id}, lote {movimiento.lote_id})"
        )
        await self.notify_changes(movimiento_ids=[movimiento.id], lote_ids=[movimiento.lote_id])

        return self.build_movement_response(movimiento)

    async def apply_movement(
        self,
        producto_id: int,
        contenedor_id: int,
        motivo: MotivoMovimiento,
        cantidad: Optional[float],
        lote_id: Optional[int] = None,
        numero_empaquetados: Optional[int] = None,
        precio: Optional[Decimal] = None,
        fecha_vencimiento: Optional[date] = None,
        estado_producto_id: Optional[int] = None,
        observacion: Optional[str] = None,
        numero_documento: Optional[str] = None,
        actualizar_precio: bool = True
    ) -> Movimiento:
        """
        Aplica un movimiento sobre los lotes y lo agrega al kardex, sin
        commit. Lo usan las operaciones de contenedor que encadenan varios
        movimientos en una sola transacción.
        """
        producto = await self._get_producto(producto_id)
        contenedor = await self._get_contenedor(contenedor_id)

        await self.lots.repository.find_lots_for(producto_id, contenedor_id, for_update=True)
        stock_anterior = await self.lots.current_stock(producto_id, contenedor_id)

        if motivo.tipo_movimiento == TipoMovimiento.ENTRADA.value:
            lote, cantidad = await self.lots.resolve_entry(
                producto,
                contenedor_id,
                cantidad,
                lote_id=lote_id,
                numero_empaquetados=numero_empaquetados,
                precio=precio,
                fecha_vencimiento=fecha_vencimiento,
                estado_producto_id=estado_producto_id,
                actualizar_precio=actualizar_precio
            )
        else:
            lote = await self.lots.resolve_exit(producto_id, contenedor_id, cantidad, lote_id=lote_id)

        stock_nuevo = await self.lots.current_stock(producto_id, contenedor_id)

        movimiento = Movimiento(
            producto_id=producto_id,
            contenedor_id=contenedor_id,
            cantidad=cantidad,
            motivo_movimiento_id=motivo.id,
            observacion=observacion,
            numero_documento=numero_documento,
            precio_real=precio if precio is not None else lote.precio_real_unidad,
            stock_anterior=stock_anterior,
            stock_nuevo=stock_nuevo,
            fecha_movimiento=self.clock.now(),
            lote_id=lote.id,
            visible=True
        )
        movimiento.motivo = motivo
        movimiento.contenedor = contenedor

        return await self.repository.add_movement(movimiento)

    # ==================== EDICIÓN ====================

    async def update_movement(self, movimiento_id: int, data: MovementUpdate) -> MovementResponse:
        """
        Editar cantidad, motivo (misma dirección), observación o precio.

        Se revierte el efecto original sobre el lote, se toma la foto del
        stock y se vuelve a aplicar con los valores nuevos.
        """
        advertencias: List[str] = []
        try:
            movimiento = await self._get_active_movement(movimiento_id)
            tipo = movimiento.tipo_movimiento

            nuevo_motivo = movimiento.motivo
            if data.motivo_movimiento_id is not None and data.motivo_movimiento_id != movimiento.motivo_movimiento_id:
                nuevo_motivo = await self.repository.get_reason(data.motivo_movimiento_id)
                if nuevo_motivo is None:
                    raise NotFoundError(f"Motivo {data.motivo_movimiento_id} no encontrado")
                if nuevo_motivo.tipo_movimiento != tipo:
                    raise InventoryValidationError(
                        f"El motivo '{nuevo_motivo.nombre}' es de {nuevo_motivo.tipo_movimiento}; "
                        f"el movimiento es de {tipo} y no puede cambiar de dirección"
                    )

            nueva_cantidad = data.cantidad if data.cantidad is not None else movimiento.cantidad

            await self.lots.repository.find_lots_for(
                movimiento.producto_id, movimiento.contenedor_id, for_update=True
            )
            lote = await self._locate_lot(movimiento, advertencias)
            revertido = await self.lots.revert_movement(movimiento, tipo, lote, advertencias)

            stock_anterior = await self.lots.current_stock(movimiento.producto_id, movimiento.contenedor_id)

            if tipo == TipoMovimiento.ENTRADA.value:
                lote = await self._reapply_entry(movimiento, lote, revertido, nueva_cantidad, data.precio_real)
            else:
                lote = await self.lots.resolve_exit(
                    movimiento.producto_id, movimiento.contenedor_id, nueva_cantidad, lote_id=lote.id
                )

            stock_nuevo = await self.lots.current_stock(movimiento.producto_id, movimiento.contenedor_id)

            movimiento.cantidad = nueva_cantidad
            movimiento.motivo_movimiento_id = nuevo_motivo.id
            movimiento.motivo = nuevo_motivo
            if data.observacion is not None:
                movimiento.observacion = data.observacion
            if data.precio_real is not None:
                movimiento.precio_real = data.precio_real
            movimiento.stock_anterior = stock_anterior
            movimiento.stock_nuevo = stock_nuevo
            movimiento.lote_id = lote.id
            movimiento.fecha_actualizacion = self.clock.now()

            await self.db.flush()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Movimiento {movimiento.id} editado: cantidad {nueva_cantidad:g}, "
            f"stock {stock_anterior:g} -> {stock_nuevo:g}"
        )
        await self.notify_changes(movimiento_ids=[movimiento.id], lote_ids=[lote.id])

        return self.build_movement_response(movimiento, advertencias)

    async def _reapply_entry(
        self,
        movimiento: Movimiento,
        lote: Optional[Lote],
        revertido: Optional[Lote],
        cantidad: float,
        precio: Optional[Decimal]
    ) -> Lote:
        """Vuelve a sumar una entrada editada a su lote, o al que coincida por clave"""
        if revertido is not None:
            if not revertido.visible:
                # El lote quedó en 0 al revertir: se reactiva salvo que ya
                # exista otro lote visible con la misma clave
                otro = await self.lots.repository.find_matching_lot(LotKey.from_lote(revertido), for_update=True)
                if otro is not None:
                    revertido = otro
                else:
                    revertido.visible = True
                    revertido.cantidad = 0.0

            revertido.cantidad = revertido.cantidad + cantidad
            if precio is not None:
                revertido.precio_real_unidad = precio
            return await self.lots.repository.upsert_lot(revertido)

        # Entrada sin lote aplicable: se ingresa como un ingreso nuevo
        key = LotKey.from_lote(lote) if lote is not None else LotKey(
            producto_id=movimiento.producto_id,
            contenedor_id=movimiento.contenedor_id
        )
        producto = await self._get_producto(movimiento.producto_id)
        nuevo_lote, _ = await self.lots.resolve_entry(
            producto,
            movimiento.contenedor_id,
            cantidad,
            precio=precio if precio is not None else movimiento.precio_real,
            fecha_vencimiento=key.fecha_vencimiento,
            estado_producto_id=key.estado_producto_id
        )
        return nuevo_lote

    # ==================== ANULACIÓN ====================

    async def cancel_movement(self, movimiento_id: int, data: MovementCancel) -> MovementResponse:
        """Anular movimiento dentro de la ventana permitida revirtiendo su efecto"""
        advertencias: List[str] = []
        motivo_anulacion = (data.motivo_anulacion or "").strip()
        if not motivo_anulacion:
            raise InventoryValidationError("El motivo de anulación es obligatorio")

        try:
            movimiento = await self._get_active_movement(movimiento_id)

            ahora = self.clock.now()
            ventana = timedelta(hours=self.settings.ventana_anulacion_horas)
            if ahora - as_naive_utc(movimiento.fecha_movimiento) > ventana:
                raise CancellationWindowExpiredError(
                    f"Solo se pueden anular movimientos de las últimas "
                    f"{self.settings.ventana_anulacion_horas} horas"
                )

            await self.lots.repository.find_lots_for(
                movimiento.producto_id, movimiento.contenedor_id, for_update=True
            )
            lote = await self._locate_lot(movimiento, advertencias)
            await self.lots.revert_movement(movimiento, movimiento.tipo_movimiento, lote, advertencias)

            movimiento.visible = False
            movimiento.motivo_anulacion = motivo_anulacion
            movimiento.fecha_anulacion = ahora

            await self.db.flush()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Movimiento {movimiento.id} anulado: {motivo_anulacion}")
        await self.notify_changes(
            movimiento_ids=[movimiento.id],
            lote_ids=[lote.id] if lote is not None else []
        )

        return self.build_movement_response(movimiento, advertencias)

    # ==================== CONSULTAS ====================

    async def get_movement(self, movimiento_id: int) -> MovementResponse:
        movimiento = await self.repository.get_movement(movimiento_id)
        if movimiento is None:
            raise NotFoundError(f"Movimiento {movimiento_id} no encontrado")
        return self.build_movement_response(movimiento)

    async def list_movements(self, filters: MovementFilters) -> MovementListResponse:
        movimientos, total = await self.repository.list_movements(filters)
        return MovementListResponse(
            total=total,
            movimientos=[self.build_movement_response(m) for m in movimientos]
        )

    async def get_kardex(
        self,
        producto_id: int,
        contenedor_id: Optional[int] = None,
        fecha_desde: Optional[date] = None,
        fecha_hasta: Optional[date] = None
    ) -> KardexResponse:
        """
        Kardex del producto: movimientos no anulados en orden cronológico
        acumulando entradas menos salidas en el saldo.
        """
        await self._get_producto(producto_id)
        if fecha_desde and fecha_hasta and fecha_desde > fecha_hasta:
            raise InventoryValidationError("fecha_desde no puede ser posterior a fecha_hasta")

        movimientos = await self.repository.get_kardex_movements(
            producto_id, contenedor_id, fecha_desde, fecha_hasta
        )

        saldo = 0.0
        total_entradas = 0.0
        total_salidas = 0.0
        filas = []

        for movimiento in movimientos:
            es_entrada = movimiento.tipo_movimiento == TipoMovimiento.ENTRADA.value
            contenedor = movimiento.contenedor.nombre if movimiento.contenedor else None

            if es_entrada:
                saldo += movimiento.cantidad
                total_entradas += movimiento.cantidad
            else:
                saldo -= movimiento.cantidad
                total_salidas += movimiento.cantidad

            filas.append(KardexEntry(
                movimiento_id=movimiento.id,
                fecha=movimiento.fecha_movimiento,
                tipo_movimiento=movimiento.tipo_movimiento,
                motivo=movimiento.motivo.nombre if movimiento.motivo else movimiento.observacion,
                contenedor_origen=None if es_entrada else contenedor,
                contenedor_destino=contenedor if es_entrada else None,
                entrada=movimiento.cantidad if es_entrada else 0.0,
                salida=0.0 if es_entrada else movimiento.cantidad,
                saldo=saldo,
                precio_real=movimiento.precio_real,
                numero_documento=movimiento.numero_documento,
                lote_id=movimiento.lote_id
            ))

        return KardexResponse(
            producto_id=producto_id,
            contenedor_id=contenedor_id,
            total_entradas=total_entradas,
            total_salidas=total_salidas,
            saldo_final=saldo,
            movimientos=filas
        )

    # ==================== MOTIVOS ====================

    async def list_reasons(self, tipo_movimiento: Optional[TipoMovimiento] = None) -> List[ReasonResponse]:
        motivos = await self.repository.list_reasons(tipo_movimiento.value if tipo_movimiento else None)
        return [ReasonResponse.model_validate(m) for m in motivos]

    async def ensure_reason(self, nombre: str, tipo_movimiento: TipoMovimiento) -> ReasonResponse:
        """Obtener o crear motivo por nombre y dirección (idempotente)"""
        nombre = (nombre or "").strip()
        if not nombre:
            raise InventoryValidationError("El nombre del motivo es obligatorio")

        try:
            motivo, creado = await self.repository.ensure_reason(nombre, tipo_movimiento.value)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if creado:
            logger.info(f"Motivo creado: {nombre} ({tipo_movimiento.value})")
            await self.events.entity_changed(MOTIVOS, motivo.id)

        return ReasonResponse.model_validate(motivo)

    async def seed_default_reasons(self) -> int:
        """Crea los motivos por defecto que falten; devuelve cuántos se crearon"""
        creados = 0
        try:
            for tipo, nombres in MOTIVOS_PREDETERMINADOS.items():
                for nombre in nombres:
                    _, creado = await self.repository.ensure_reason(nombre, tipo.value)
                    creados += int(creado)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if creados:
            logger.info(f"{creados} motivos de movimiento por defecto creados")
            await self.events.entity_changed(MOTIVOS)
        return creados

    async def reason_by_name(self, nombre: str, tipo_movimiento: TipoMovimiento) -> MotivoMovimiento:
        """Motivo del vocabulario por defecto, creándolo si falta (sin commit)"""
        motivo, _ = await self.repository.ensure_reason(nombre, tipo_movimiento.value)
        return motivo

    # ==================== EVENTOS ====================

    async def notify_changes(self, movimiento_ids: List[int], lote_ids: List[Optional[int]]) -> None:
        """Publicar cambios ya confirmados"""
        for movimiento_id in movimiento_ids:
            await self.events.entity_changed(MOVIMIENTOS, movimiento_id)
        for lote_id in dict.fromkeys(lote_ids):
            if lote_id is not None:
                await self.events.entity_changed(LOTES, lote_id)

    # ==================== HELPERS ====================

    async def _resolve_reason(
        self,
        tipo: TipoMovimiento,
        motivo_id: Optional[int],
        motivo_nombre: Optional[str]
    ) -> MotivoMovimiento:
        if motivo_id is not None:
            motivo = await self.repository.get_reason(motivo_id)
            if motivo is None:
                raise NotFoundError(f"Motivo {motivo_id} no encontrado")
            if motivo.tipo_movimiento != tipo.value:
                raise InventoryValidationError(
                    f"El motivo '{motivo.nombre}' es de {motivo.tipo_movimiento}, "
                    f"no se puede usar en una {tipo.value}"
                )
            return motivo

        nombre = (motivo_nombre or "").strip()
        if not nombre:
            raise InventoryValidationError("Debe indicar el motivo del movimiento")
        return await self.reason_by_name(nombre, tipo)

    async def _get_active_movement(self, movimiento_id: int) -> Movimiento:
        movimiento = await self.repository.get_movement(movimiento_id, for_update=True)
        if movimiento is None:
            raise NotFoundError(f"Movimiento {movimiento_id} no encontrado")
        if not movimiento.visible:
            raise AlreadyCancelledError(f"El movimiento {movimiento_id} ya fue anulado")
        return movimiento

    async def _locate_lot(self, movimiento: Movimiento, advertencias: List[str]) -> Optional[Lote]:
        """
        Lote al que se atribuye un movimiento ya registrado.

        Movimientos antiguos sin lote_id usan el primer lote FEFO del par,
        si la configuración lo permite; el uso queda como advertencia.
        """
        if movimiento.lote_id is not None:
            return await self.lots.repository.get_lot(movimiento.lote_id, for_update=True)

        if not self.settings.permitir_lote_legado:
            raise CannotEditLegacyMovementError(
                f"El movimiento {movimiento.id} no tiene lote asociado y no se puede modificar"
            )

        lotes = await self.lots.repository.find_lots_for(
            movimiento.producto_id, movimiento.contenedor_id, for_update=True
        )
        if not lotes:
            raise CannotEditLegacyMovementError(
                f"El movimiento {movimiento.id} no tiene lote asociado y no hay lotes "
                "disponibles del producto en el contenedor"
            )

        lote = lotes[0]
        mensaje = (
            f"El movimiento {movimiento.id} no tenía lote asociado; "
            f"se usó el lote {lote.id} (primer lote por vencimiento)"
        )
        logger.warning(mensaje)
        advertencias.append(mensaje)
        return lote

    async def _get_producto(self, producto_id: int) -> Producto:
        producto = await self.db.get(Producto, producto_id)
        if producto is None:
            raise NotFoundError(f"Producto {producto_id} no encontrado")
        return producto

    async def _get_contenedor(self, contenedor_id: int) -> Contenedor:
        contenedor = await self.db.get(Contenedor, contenedor_id)
        if contenedor is None:
            raise NotFoundError(f"Contenedor {contenedor_id} no encontrado")
        return contenedor

    def build_movement_response(
        self,
        movimiento: Movimiento,
        advertencias: Optional[List[str]] = None
    ) -> MovementResponse:
        return MovementResponse(
            id=movimiento.id,
            producto_id=movimiento.producto_id,
            contenedor_id=movimiento.contenedor_id,
            contenedor_nombre=movimiento.contenedor.nombre if movimiento.contenedor else None,
            tipo_movimiento=movimiento.motivo.tipo_movimiento,
            cantidad=movimiento.cantidad,
            motivo_movimiento_id=movimiento.motivo_movimiento_id,
            motivo=movimiento.motivo.nombre,
            observacion=movimiento.observacion,
            numero_documento=movimiento.numero_documento,
            precio_real=movimiento.precio_real,
            stock_anterior=movimiento.stock_anterior,
            stock_nuevo=movimiento.stock_nuevo,
            lote_id=movimiento.lote_id,
            fecha_movimiento=movimiento.fecha_movimiento,
            fecha_actualizacion=movimiento.fecha_actualizacion,
            anulado=not movimiento.visible,
            motivo_anulacion=movimiento.motivo_anulacion,
            fecha_anulacion=movimiento.fecha_anulacion,
            advertencias=advertencias or []
        )
