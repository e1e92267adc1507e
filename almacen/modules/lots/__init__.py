# almacen/modules/lots/__init__.py

"""
Módulo Lotes - Motor de resolución de lotes

Cada fila de detalle_contenedor es un lote: cantidad de un producto en un
contenedor con su vencimiento, estado y tamaño de empaquetado.

- Ingresos: se fusionan con el lote de igual clave o crean uno nuevo
- Salidas: se descuentan del lote elegido; un lote en 0 se oculta
- Reversión: deshace el efecto de un movimiento al editar o anular
- Consolidación de lotes duplicados

Arquitectura:
- router.py: Endpoints FastAPI
- service.py: Lógica de negocio
- repository.py: Acceso a datos
- schemas.py: Clave de lote y modelos Pydantic de respuesta
"""

from .router import router as lots_router
from .service import LotService
from .repository import LotRepository

__all__ = [
    "lots_router",
    "LotService",
    "LotRepository"
]
