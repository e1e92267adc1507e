# almacen/modules/movements/__init__.py

"""
Módulo Movimientos - Kardex de inventario

- Registrar entradas y salidas sobre los lotes
- Editar movimientos activos (revertir y volver a aplicar)
- Anular movimientos dentro de la ventana de 24 horas
- Kardex con saldo acumulado por producto
- Catálogo de motivos por dirección

Arquitectura:
- router.py: Endpoints FastAPI
- service.py: Lógica de negocio
- repository.py: Acceso a datos
- schemas.py: Modelos Pydantic de request/response
"""

from .router import router as movements_router
from .service import MovementService
from .repository import MovementRepository

__all__ = [
    "movements_router",
    "MovementService",
    "MovementRepository"
]
