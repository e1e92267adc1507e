# almacen/modules/containers/__init__.py

"""
Módulo Contenedores - Contenido y operaciones por lote

- Consultar contenido del contenedor con estadísticas
- Ingresar productos (compra)
- Ajustar, retirar y transferir lotes entre contenedores

Todas las operaciones se registran como movimientos del kardex.
"""

from .router import router as containers_router
from .service import ContainerService
from .repository import ContainerRepository

__all__ = [
    "containers_router",
    "ContainerService",
    "ContainerRepository"
]
