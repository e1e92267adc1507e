"""
Tests del ciclo de vida de movimientos (MovementService)
"""
from datetime import date
from decimal import Decimal

import pytest

from almacen.core.exceptions import (
    AlreadyCancelledError, CancellationWindowExpiredError, CannotEditLegacyMovementError,
    InsufficientStockError, InventoryValidationError, NoLotSelectedError, NotFoundError
)
from almacen.core.events import LOTES, MOVIMIENTOS
from almacen.modules.movements.schemas import (
    MovementCancel, MovementCreate, MovementFilters, MovementUpdate, TipoMovimiento
)
from almacen.modules.movements.service import MovementService
from almacen.shared.database.models import Movimiento

pytestmark = pytest.mark.anyio


async def stock(service, producto_id, contenedor_id):
    return await service.lots.current_stock(producto_id, contenedor_id)


async def quitar_lote(db, movimiento_id):
    """Simula un movimiento antiguo, registrado antes de guardar lote_id"""
    movimiento = await db.get(Movimiento, movimiento_id)
    movimiento.lote_id = None
    await db.commit()


class TestCreate:

    async def test_exit_from_lot_records_snapshots(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 100)
        salida = await registrar(
            "salida", catalog.arroz.id, catalog.bodega.id, 40, lote_id=entrada.lote_id
        )

        assert salida.stock_anterior == 100
        assert salida.stock_nuevo == 60
        assert salida.lote_id == entrada.lote_id
        assert salida.tipo_movimiento == TipoMovimiento.SALIDA
        assert await stock(movement_service, catalog.arroz.id, catalog.bodega.id) == 60

    async def test_beverage_entry_by_cases(self, registrar, movement_service, catalog):
        movimiento = await registrar(
            "entrada", catalog.cerveza.id, catalog.refrigerador.id, numero_empaquetados=10
        )

        lote = await movement_service.lots.repository.get_lot(movimiento.lote_id)
        assert movimiento.cantidad == 240
        assert movimiento.stock_nuevo == 240
        assert lote.empaquetado == 24

    async def test_reason_must_match_direction(self, movement_service, catalog):
        salidas = await movement_service.list_reasons(TipoMovimiento.SALIDA)

        with pytest.raises(InventoryValidationError):
            await movement_service.create_movement(MovementCreate(
                producto_id=catalog.arroz.id,
                contenedor_id=catalog.bodega.id,
                tipo_movimiento=TipoMovimiento.ENTRADA,
                cantidad=5,
                motivo_movimiento_id=salidas[0].id
            ))

    async def test_unknown_product_is_not_found(self, registrar, catalog):
        with pytest.raises(NotFoundError):
            await registrar("entrada", 9999, catalog.bodega.id, 5)

    async def test_exit_without_stock_fails(self, registrar, movement_service, catalog):
        with pytest.raises(InsufficientStockError):
            await registrar("salida", catalog.arroz.id, catalog.bodega.id, 1)

        listado = await movement_service.list_movements(MovementFilters(incluir_anulados=True))
        assert listado.total == 0

    async def test_exit_beyond_lot_never_goes_negative(self, registrar, movement_service, catalog):
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id
        entrada = await registrar("entrada", producto_id, contenedor_id, 20)

        with pytest.raises(InsufficientStockError):
            await registrar("salida", producto_id, contenedor_id, 20.5, lote_id=entrada.lote_id)

        assert await stock(movement_service, producto_id, contenedor_id) == 20
        listado = await movement_service.list_movements(MovementFilters(producto_id=producto_id))
        assert listado.total == 1

    async def test_exit_with_several_lots_needs_selection(self, registrar, catalog):
        await registrar("entrada", catalog.leche.id, catalog.refrigerador.id, 6, fecha_vencimiento=date(2025, 3, 1))
        await registrar("entrada", catalog.leche.id, catalog.refrigerador.id, 6, fecha_vencimiento=date(2025, 6, 1))

        with pytest.raises(NoLotSelectedError):
            await registrar("salida", catalog.leche.id, catalog.refrigerador.id, 2)

    async def test_reason_by_name_is_created_on_demand(self, registrar, movement_service, catalog):
        movimiento = await registrar(
            "entrada", catalog.arroz.id, catalog.bodega.id, 5, motivo_nombre="Donación"
        )

        entradas = await movement_service.list_reasons(TipoMovimiento.ENTRADA)
        assert movimiento.motivo == "Donación"
        assert "Donación" in [m.nombre for m in entradas]

    async def test_events_published_after_commit(self, registrar, events, catalog):
        movimiento = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 5)

        assert (MOVIMIENTOS, movimiento.id) in events.published
        assert (LOTES, movimiento.lote_id) in events.published

    async def test_stock_invariant_over_sequence(self, registrar, movement_service, catalog):
        pasos = [("entrada", 100), ("salida", 30), ("entrada", 12.5), ("salida", 82.5)]

        for tipo, cantidad in pasos:
            movimiento = await registrar(tipo, catalog.arroz.id, catalog.bodega.id, cantidad)
            signo = 1 if tipo == "entrada" else -1
            assert movimiento.stock_nuevo == pytest.approx(movimiento.stock_anterior + signo * cantidad)
            assert movimiento.stock_nuevo == pytest.approx(
                await stock(movement_service, catalog.arroz.id, catalog.bodega.id)
            )

        assert await stock(movement_service, catalog.arroz.id, catalog.bodega.id) == 0


class TestReasons:

    async def test_ensure_reason_is_idempotent(self, movement_service):
        primero = await movement_service.ensure_reason("Merma", TipoMovimiento.SALIDA)
        segundo = await movement_service.ensure_reason("Merma", TipoMovimiento.SALIDA)

        assert primero.id == segundo.id
        salidas = await movement_service.list_reasons(TipoMovimiento.SALIDA)
        assert [m.nombre for m in salidas].count("Merma") == 1

    async def test_entries_with_new_reason_create_one_row(self, registrar, movement_service, catalog):
        await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 5, motivo_nombre="Devolución de cliente")
        await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 3, motivo_nombre="Devolución de cliente")

        entradas = await movement_service.list_reasons(TipoMovimiento.ENTRADA)
        assert [m.nombre for m in entradas].count("Devolución de cliente") == 1

    async def test_failed_movement_does_not_keep_new_reason(self, registrar, movement_service, catalog):
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id

        with pytest.raises(InsufficientStockError):
            await registrar("salida", producto_id, contenedor_id, 5, motivo_nombre="Consumo interno")

        salidas = await movement_service.list_reasons(TipoMovimiento.SALIDA)
        assert "Consumo interno" not in [m.nombre for m in salidas]

    async def test_same_name_other_direction_is_distinct(self, movement_service):
        entrada = await movement_service.ensure_reason("Ajuste de inventario", TipoMovimiento.ENTRADA)
        salida = await movement_service.ensure_reason("Ajuste de inventario", TipoMovimiento.SALIDA)

        assert entrada.id != salida.id

    async def test_default_seed_is_idempotent(self, movement_service):
        assert await movement_service.seed_default_reasons() == 0
        assert len(await movement_service.list_reasons()) == 6


class TestUpdate:

    async def test_edit_exit_quantity(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 100)
        salida = await registrar("salida", catalog.arroz.id, catalog.bodega.id, 40, lote_id=entrada.lote_id)

        editado = await movement_service.update_movement(salida.id, MovementUpdate(cantidad=20))

        assert editado.cantidad == 20
        assert editado.stock_anterior == 100
        assert editado.stock_nuevo == 80
        assert editado.fecha_actualizacion is not None
        assert editado.advertencias == []
        assert await stock(movement_service, catalog.arroz.id, catalog.bodega.id) == 80

    async def test_edit_entry_keeps_same_lot(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 50, precio_real=Decimal("2.00"))

        editado = await movement_service.update_movement(
            entrada.id, MovementUpdate(cantidad=30, precio_real=Decimal("2.20"))
        )

        lote = await movement_service.lots.repository.get_lot(entrada.lote_id)
        assert editado.lote_id == entrada.lote_id
        assert editado.stock_anterior == 0
        assert editado.stock_nuevo == 30
        assert lote.visible is True
        assert lote.cantidad == 30
        assert lote.precio_real_unidad == Decimal("2.20")

    async def test_edit_entry_already_consumed_fails(self, registrar, movement_service, catalog):
        # El rollback expira los objetos del catálogo: se guardan los ids antes
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id
        entrada = await registrar("entrada", producto_id, contenedor_id, 50)
        await registrar("salida", producto_id, contenedor_id, 45)

        with pytest.raises(InsufficientStockError):
            await movement_service.update_movement(entrada.id, MovementUpdate(cantidad=60))

        assert await stock(movement_service, producto_id, contenedor_id) == 5

    async def test_edit_entry_fully_consumed_fails(self, registrar, movement_service, catalog):
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id
        entrada = await registrar("entrada", producto_id, contenedor_id, 50)
        await registrar("salida", producto_id, contenedor_id, 50, lote_id=entrada.lote_id)

        with pytest.raises(InsufficientStockError):
            await movement_service.update_movement(entrada.id, MovementUpdate(cantidad=60))

        assert await stock(movement_service, producto_id, contenedor_id) == 0
        kardex = await movement_service.get_kardex(producto_id)
        assert kardex.movimientos[-1].saldo == 0

    async def test_cancel_entry_fully_consumed_fails(self, registrar, movement_service, catalog):
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id
        entrada = await registrar("entrada", producto_id, contenedor_id, 50)
        await registrar("salida", producto_id, contenedor_id, 50, lote_id=entrada.lote_id)

        with pytest.raises(InsufficientStockError):
            await movement_service.cancel_movement(entrada.id, MovementCancel(motivo_anulacion="Error"))

        movimiento = await movement_service.get_movement(entrada.id)
        assert movimiento.anulado is False

    async def test_edit_exit_beyond_lot_fails_and_rolls_back(self, registrar, movement_service, catalog):
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id
        await registrar("entrada", producto_id, contenedor_id, 50)
        salida = await registrar("salida", producto_id, contenedor_id, 10)

        with pytest.raises(InsufficientStockError):
            await movement_service.update_movement(salida.id, MovementUpdate(cantidad=80))

        assert await stock(movement_service, producto_id, contenedor_id) == 40

    async def test_reason_change_must_keep_direction(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        salidas = await movement_service.list_reasons(TipoMovimiento.SALIDA)

        with pytest.raises(InventoryValidationError):
            await movement_service.update_movement(
                entrada.id, MovementUpdate(motivo_movimiento_id=salidas[0].id)
            )

    async def test_reason_change_same_direction(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        ajuste = await movement_service.ensure_reason("Ajuste de inventario", TipoMovimiento.ENTRADA)

        editado = await movement_service.update_movement(
            entrada.id, MovementUpdate(motivo_movimiento_id=ajuste.id, observacion="Conteo físico")
        )

        assert editado.motivo == "Ajuste de inventario"
        assert editado.observacion == "Conteo físico"
        assert editado.cantidad == 10

    async def test_legacy_movement_uses_first_lot(self, db, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 100)
        salida = await registrar("salida", catalog.arroz.id, catalog.bodega.id, 40)
        await quitar_lote(db, salida.id)

        editado = await movement_service.update_movement(salida.id, MovementUpdate(cantidad=20))

        assert editado.lote_id == entrada.lote_id
        assert len(editado.advertencias) == 1
        assert await stock(movement_service, catalog.arroz.id, catalog.bodega.id) == 80

    async def test_legacy_fallback_can_be_disabled(self, db, registrar, clock, events, test_settings, catalog):
        await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 100)
        salida = await registrar("salida", catalog.arroz.id, catalog.bodega.id, 40)
        await quitar_lote(db, salida.id)

        estricto = test_settings.model_copy(update={"permitir_lote_legado": False})
        service = MovementService(db, clock=clock, events=events, config=estricto)

        with pytest.raises(CannotEditLegacyMovementError):
            await service.update_movement(salida.id, MovementUpdate(cantidad=20))

    async def test_legacy_movement_without_lots(self, db, registrar, movement_service, catalog):
        await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        salida = await registrar("salida", catalog.arroz.id, catalog.bodega.id, 10)
        await quitar_lote(db, salida.id)

        with pytest.raises(CannotEditLegacyMovementError):
            await movement_service.update_movement(salida.id, MovementUpdate(cantidad=5))


class TestCancel:

    async def test_round_trip_hides_lot(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 30)

        anulado = await movement_service.cancel_movement(
            entrada.id, MovementCancel(motivo_anulacion="Registro duplicado")
        )

        lote = await movement_service.lots.repository.get_lot(entrada.lote_id)
        assert anulado.anulado is True
        assert anulado.motivo_anulacion == "Registro duplicado"
        assert lote.visible is False
        assert lote.cantidad == 0
        assert await stock(movement_service, catalog.arroz.id, catalog.bodega.id) == 0

    async def test_cancel_exit_returns_quantity(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 100)
        salida = await registrar("salida", catalog.arroz.id, catalog.bodega.id, 100, lote_id=entrada.lote_id)

        await movement_service.cancel_movement(salida.id, MovementCancel(motivo_anulacion="Error de conteo"))

        lote = await movement_service.lots.repository.get_lot(entrada.lote_id)
        assert lote.visible is True
        assert lote.cantidad == 100

    async def test_cancel_within_window(self, registrar, movement_service, clock, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        clock.advance(hours=23, minutes=59)

        anulado = await movement_service.cancel_movement(entrada.id, MovementCancel(motivo_anulacion="Error"))

        assert anulado.fecha_anulacion == clock.now()

    async def test_cancel_at_window_limit(self, registrar, movement_service, clock, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        clock.advance(hours=24)

        anulado = await movement_service.cancel_movement(entrada.id, MovementCancel(motivo_anulacion="Error"))

        assert anulado.anulado is True

    async def test_cancel_after_window_fails(self, registrar, movement_service, clock, catalog):
        producto_id, contenedor_id = catalog.arroz.id, catalog.bodega.id
        entrada = await registrar("entrada", producto_id, contenedor_id, 10)
        clock.advance(hours=24, minutes=1)

        with pytest.raises(CancellationWindowExpiredError):
            await movement_service.cancel_movement(entrada.id, MovementCancel(motivo_anulacion="Error"))

        assert await stock(movement_service, producto_id, contenedor_id) == 10

    async def test_cancelled_movement_is_terminal(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        await movement_service.cancel_movement(entrada.id, MovementCancel(motivo_anulacion="Error"))

        with pytest.raises(AlreadyCancelledError):
            await movement_service.cancel_movement(entrada.id, MovementCancel(motivo_anulacion="Otra vez"))
        with pytest.raises(AlreadyCancelledError):
            await movement_service.update_movement(entrada.id, MovementUpdate(cantidad=5))

    async def test_blank_reason_is_rejected(self, registrar, movement_service, catalog):
        entrada = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)

        with pytest.raises(InventoryValidationError):
            await movement_service.cancel_movement(
                entrada.id, MovementCancel.model_construct(motivo_anulacion="   ")
            )

    async def test_cancelled_movements_are_filtered(self, registrar, movement_service, catalog):
        primero = await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 10)
        await registrar("entrada", catalog.arroz.id, catalog.bodega.id, 5)
        await movement_service.cancel_movement(primero.id, MovementCancel(motivo_anulacion="Error"))

        activos = await movement_service.list_movements(MovementFilters())
        todos = await movement_service.list_movements(MovementFilters(incluir_anulados=True))

        assert activos.total == 1
        assert todos.total == 2
