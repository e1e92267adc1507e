# almacen/api/v1/router.py
from fastapi import APIRouter

from almacen.config.settings import settings
from almacen.modules.containers import containers_router
from almacen.modules.lots import lots_router
from almacen.modules.movements import movements_router

# Router principal de la API v1
api_router = APIRouter()

# ==================== MÓDULOS ====================

api_router.include_router(movements_router)   # /api/v1/movements/...
api_router.include_router(lots_router)        # /api/v1/lots/...
api_router.include_router(containers_router)  # /api/v1/containers/...

# ==================== ENDPOINTS RAÍZ ====================

@api_router.get("/")
async def api_root():
    """Root endpoint de la API"""
    return {
        "message": f"{settings.app_name} v1",
        "version": settings.version,
        "status": "active",
        "available_endpoints": {
            "movements": "/api/v1/movements",
            "kardex": "/api/v1/movements/kardex/{producto_id}",
            "reasons": "/api/v1/movements/reasons",
            "lots": "/api/v1/lots",
            "containers": "/api/v1/containers/{contenedor_id}"
        }
    }

@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.version,
        "modules": {
            "movements": {"status": "active", "features": ["Registro", "Edición", "Anulación 24h", "Kardex"]},
            "lots": {"status": "active", "features": ["FEFO", "Fusión por clave", "Consolidación"]},
            "containers": {"status": "active", "features": ["Contenido", "Ingreso", "Ajuste", "Retiro", "Transferencia"]}
        }
    }
