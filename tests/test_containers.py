"""
Tests de operaciones de contenedor y consolidación de lotes
"""
from datetime import date
from decimal import Decimal

import pytest

from almacen.core.exceptions import InsufficientStockError, InventoryValidationError, NotFoundError
from almacen.modules.containers.schemas import LotAdjust, LotRemove, PackageTransfer, ProductAssign
from almacen.modules.movements.schemas import MovementFilters
from almacen.shared.database.models import Lote, Movimiento

pytestmark = pytest.mark.anyio


async def lote_de(service, lote_id):
    return await service.lots.repository.get_lot(lote_id)


class TestAddProduct:

    async def test_beverage_purchase_by_cases(self, container_service, catalog):
        movimiento = await container_service.add_product(
            catalog.refrigerador.id,
            ProductAssign(producto_id=catalog.cerveza.id, numero_empaquetados=10, precio_real_unidad=Decimal("1.50"))
        )

        lote = await lote_de(container_service, movimiento.lote_id)
        assert movimiento.motivo == "Compra"
        assert movimiento.cantidad == 240
        assert "10 cajas" in movimiento.observacion
        assert lote.numero_empaquetados == 10
        assert lote.empaquetado == 24

    async def test_unknown_container(self, container_service, catalog):
        with pytest.raises(NotFoundError):
            await container_service.add_product(9999, ProductAssign(producto_id=catalog.arroz.id, cantidad=5))

    async def test_contents_and_stats(self, container_service, catalog):
        await container_service.add_product(
            catalog.bodega.id,
            ProductAssign(producto_id=catalog.arroz.id, cantidad=50, numero_empaquetados=5, precio_real_unidad=Decimal("2.00"))
        )
        await container_service.add_product(
            catalog.bodega.id,
            ProductAssign(
                producto_id=catalog.leche.id, cantidad=12, precio_real_unidad=Decimal("1.25"),
                fecha_vencimiento=date(2025, 3, 1)
            )
        )

        contenido = await container_service.get_container_contents(catalog.bodega.id)

        assert contenido.contenedor.nombre == "Bodega principal"
        assert [l.producto_nombre for l in contenido.lotes] == ["Arroz", "Leche"]
        assert contenido.lotes[0].numero_empaquetados == 5
        assert contenido.estadisticas.total_lotes == 2
        assert contenido.estadisticas.total_productos == 2
        assert contenido.estadisticas.cantidad_total == 62
        assert contenido.estadisticas.valor_total == pytest.approx(115.0)


class TestAdjustAndRemove:

    async def test_adjust_up_records_entry(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.arroz.id, cantidad=50)
        )

        resultado = await container_service.adjust_lot(compra.lote_id, LotAdjust(cantidad=70, numero_empaquetados=7))

        assert resultado.lote.cantidad == 70
        assert resultado.lote.empaquetado == 10
        assert resultado.movimiento.tipo_movimiento == "entrada"
        assert resultado.movimiento.motivo == "Ajuste de inventario"
        assert resultado.movimiento.cantidad == 20
        assert resultado.movimiento.stock_nuevo == 70

    async def test_adjust_down_to_zero_hides_lot(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.arroz.id, cantidad=50)
        )

        resultado = await container_service.adjust_lot(compra.lote_id, LotAdjust(cantidad=0))

        assert resultado.movimiento.tipo_movimiento == "salida"
        assert resultado.movimiento.cantidad == 50
        assert resultado.lote.visible is False

    async def test_adjust_without_difference_only_updates_fields(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id,
            ProductAssign(producto_id=catalog.arroz.id, cantidad=50, precio_real_unidad=Decimal("2.00"))
        )

        resultado = await container_service.adjust_lot(
            compra.lote_id, LotAdjust(cantidad=50, precio_real_unidad=Decimal("2.40"))
        )

        assert resultado.movimiento is None
        assert resultado.lote.precio_real_unidad == Decimal("2.40")

    async def test_adjust_cannot_duplicate_lot_key(self, container_service, catalog):
        producto_id, contenedor_id = catalog.leche.id, catalog.refrigerador.id
        marzo = await container_service.add_product(
            contenedor_id, ProductAssign(producto_id=producto_id, cantidad=6, fecha_vencimiento=date(2025, 3, 1))
        )
        junio = await container_service.add_product(
            contenedor_id, ProductAssign(producto_id=producto_id, cantidad=4, fecha_vencimiento=date(2025, 6, 1))
        )

        with pytest.raises(InventoryValidationError):
            await container_service.adjust_lot(
                junio.lote_id, LotAdjust(cantidad=5, fecha_vencimiento=date(2025, 3, 1))
            )

        lote = await container_service.lots.repository.get_lot(junio.lote_id)
        assert lote.fecha_vencimiento == date(2025, 6, 1)
        assert lote.cantidad == 4
        assert marzo.lote_id != junio.lote_id
        assert await container_service.lots.current_stock(producto_id, contenedor_id) == 10

    async def test_remove_lot(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.arroz.id, cantidad=35.5)
        )

        retiro = await container_service.remove_lot(compra.lote_id, LotRemove(observacion="Vencido"))

        lote = await lote_de(container_service, compra.lote_id)
        assert retiro.motivo == "Retiro de contenedor"
        assert retiro.cantidad == 35.5
        assert retiro.stock_nuevo == 0
        assert lote.visible is False
        assert lote.cantidad == 0

    async def test_remove_hidden_lot_fails(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.arroz.id, cantidad=5)
        )
        await container_service.remove_lot(compra.lote_id)

        with pytest.raises(InventoryValidationError):
            await container_service.remove_lot(compra.lote_id)


class TestTransfer:

    async def test_transfer_some_packages(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id,
            ProductAssign(
                producto_id=catalog.cerveza.id, numero_empaquetados=10,
                precio_real_unidad=Decimal("1.50"), fecha_vencimiento=date(2025, 6, 1)
            )
        )

        resultado = await container_service.transfer_packages(
            compra.lote_id,
            PackageTransfer(contenedor_destino_id=catalog.refrigerador.id, numero_empaquetados=3)
        )

        origen = await lote_de(container_service, resultado.lote_origen_id)
        destino = await lote_de(container_service, resultado.lote_destino_id)
        assert resultado.cantidad == 72
        assert origen.cantidad == 168
        assert destino.cantidad == 72
        assert destino.contenedor_id == catalog.refrigerador.id
        assert destino.empaquetado == 24
        assert destino.fecha_vencimiento == date(2025, 6, 1)
        assert destino.precio_real_unidad == Decimal("1.50")
        assert resultado.salida.motivo == "Transferencia entre contenedores"
        assert resultado.entrada.motivo == "Transferencia entre contenedores"

    async def test_transfer_all_packages_moves_remainder(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.arroz.id, cantidad=50, numero_empaquetados=5)
        )
        await container_service.adjust_lot(compra.lote_id, LotAdjust(cantidad=53))

        resultado = await container_service.transfer_packages(
            compra.lote_id,
            PackageTransfer(contenedor_destino_id=catalog.refrigerador.id, numero_empaquetados=5)
        )

        origen = await lote_de(container_service, compra.lote_id)
        destino = await lote_de(container_service, resultado.lote_destino_id)
        assert resultado.cantidad == 53
        assert origen.visible is False
        assert destino.cantidad == 53
        assert destino.empaquetado == 10

    async def test_transfer_merges_into_matching_lot(self, container_service, catalog):
        en_bodega = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.cerveza.id, numero_empaquetados=4)
        )
        en_refri = await container_service.add_product(
            catalog.refrigerador.id, ProductAssign(producto_id=catalog.cerveza.id, numero_empaquetados=1)
        )

        resultado = await container_service.transfer_packages(
            en_bodega.lote_id,
            PackageTransfer(contenedor_destino_id=catalog.refrigerador.id, numero_empaquetados=2)
        )

        assert resultado.lote_destino_id == en_refri.lote_id
        assert resultado.entrada.stock_anterior == 24
        assert resultado.entrada.stock_nuevo == 72

    async def test_transfer_more_than_available(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.cerveza.id, numero_empaquetados=2)
        )

        with pytest.raises(InsufficientStockError):
            await container_service.transfer_packages(
                compra.lote_id,
                PackageTransfer(contenedor_destino_id=catalog.refrigerador.id, numero_empaquetados=3)
            )

    async def test_transfer_to_same_container(self, container_service, catalog):
        compra = await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.cerveza.id, numero_empaquetados=2)
        )

        with pytest.raises(InventoryValidationError):
            await container_service.transfer_packages(
                compra.lote_id,
                PackageTransfer(contenedor_destino_id=catalog.bodega.id, numero_empaquetados=1)
            )

        listado = await container_service.movements.list_movements(MovementFilters())
        assert listado.total == 1


class TestConsolidation:

    async def test_duplicates_merge_into_oldest(self, db, container_service, catalog):
        repo = container_service.lots.repository
        compra = await container_service.add_product(
            catalog.bodega.id,
            ProductAssign(producto_id=catalog.arroz.id, cantidad=10, precio_real_unidad=Decimal("1.00"))
        )
        duplicado = await repo.upsert_lot(Lote(
            producto_id=catalog.arroz.id, contenedor_id=catalog.bodega.id,
            cantidad=5, empaquetado=5, precio_real_unidad=Decimal("1.20"), visible=True
        ))
        movimiento = Movimiento(
            producto_id=catalog.arroz.id, contenedor_id=catalog.bodega.id, cantidad=5,
            motivo_movimiento_id=(await container_service.movements.list_reasons())[0].id,
            stock_anterior=10, stock_nuevo=15, lote_id=duplicado.id,
            fecha_movimiento=container_service.movements.clock.now()
        )
        db.add(movimiento)
        await db.commit()

        resultado = await container_service.lots.consolidate_duplicates()

        base = await lote_de(container_service, compra.lote_id)
        oculto = await lote_de(container_service, duplicado.id)
        reasignado = await db.get(Movimiento, movimiento.id, populate_existing=True)
        assert resultado.grupos_consolidados == 1
        assert resultado.grupos[0].lotes_ocultados == [duplicado.id]
        assert base.cantidad == 15
        assert base.precio_real_unidad == Decimal("1.20")
        assert oculto.visible is False
        assert reasignado.lote_id == compra.lote_id

    async def test_nothing_to_consolidate(self, container_service, catalog):
        await container_service.add_product(
            catalog.bodega.id, ProductAssign(producto_id=catalog.arroz.id, cantidad=10)
        )

        resultado = await container_service.lots.consolidate_duplicates()

        assert resultado.grupos_consolidados == 0
        assert resultado.lotes_ocultados == 0
