"""
Jerarquía de errores del módulo de inventario.

Todos heredan de InventoryError y llevan un mensaje apto para mostrarse
al usuario, un `code` estable y el `status_code` HTTP con el que se
responde. El manejador registrado en core.middleware los convierte en
respuestas JSON.

    InventoryError
    +-- InventoryValidationError
    +-- NotFoundError
    +-- InsufficientStockError
    +-- NoLotSelectedError
    +-- CannotEditLegacyMovementError
    +-- OrphanedLotError
    +-- AlreadyCancelledError
    +-- CancellationWindowExpiredError
"""
from fastapi import status


class InventoryError(Exception):
    """Excepción base para errores del módulo de inventario"""

    code = "INVENTORY_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InventoryValidationError(InventoryError):
    """Datos de entrada fuera de rango o inconsistentes"""

    code = "VALIDATION_ERROR"


class NotFoundError(InventoryError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStockError(InventoryError):
    """La operación dejaría un lote o el stock total en negativo"""

    code = "INSUFFICIENT_STOCK"
    status_code = status.HTTP_409_CONFLICT


class NoLotSelectedError(InventoryError):
    """Salida sin lote seleccionado habiendo varios lotes"""

    code = "NO_LOT_SELECTED"


class CannotEditLegacyMovementError(InventoryError):
    """Movimiento sin lote_id y sin lote al que atribuirlo"""

    code = "LEGACY_MOVEMENT"
    status_code = status.HTTP_409_CONFLICT


class OrphanedLotError(InventoryError):
    """El lote de una salida ya no existe; no se puede devolver la cantidad"""

    code = "ORPHANED_LOT"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class AlreadyCancelledError(InventoryError):
    code = "ALREADY_CANCELLED"
    status_code = status.HTTP_409_CONFLICT


class CancellationWindowExpiredError(InventoryError):
    code = "CANCELLATION_WINDOW_EXPIRED"
    status_code = status.HTTP_409_CONFLICT
