#!/usr/bin/env python3
"""
Consolidación de lotes duplicados

Une los lotes visibles que comparten producto, contenedor, vencimiento y
estado en el lote más antiguo. Los duplicados quedan ocultos con cantidad 0
y sus movimientos pasan a apuntar al lote conservado.

Uso:
    python scripts/consolidate_lots.py
"""
import asyncio
import logging

from almacen.config.database import SessionLocal, init_models
from almacen.core.logging_config import setup_logging
from almacen.modules.lots.service import LotService

logger = logging.getLogger("consolidate_lots")

async def main() -> int:
    setup_logging()
    await init_models()

    async with SessionLocal() as db:
        result = await LotService(db).consolidate_duplicates()

    if not result.grupos_consolidados:
        logger.info("No se encontraron lotes duplicados")
        return 0

    for grupo in result.grupos:
        logger.info(
            f"Producto {grupo.producto_id} / contenedor {grupo.contenedor_id}: "
            f"lotes {grupo.lotes_ocultados} unidos en {grupo.lote_id} "
            f"({grupo.cantidad_consolidada:g} unidades)"
        )

    logger.info(
        f"{result.grupos_consolidados} grupos consolidados, "
        f"{result.lotes_ocultados} lotes ocultados"
    )
    return result.grupos_consolidados

if __name__ == "__main__":
    asyncio.run(main())
