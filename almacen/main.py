import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from almacen.config.database import SessionLocal, init_models
from almacen.config.settings import settings
from almacen.core.logging_config import setup_logging
from almacen.core.middleware import setup_exception_handlers, setup_middleware
from almacen.api.v1.router import api_router
from almacen.modules.movements.service import MovementService

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} iniciando...")
    logger.info(f"Versión: {settings.version}")
    logger.info(f"Entorno: {'Development' if settings.debug else 'Production'}")

    await init_models()

    if settings.sembrar_motivos:
        async with SessionLocal() as db:
            creados = await MovementService(db).seed_default_reasons()
        logger.info(f"Motivos por defecto verificados ({creados} nuevos)")

    yield

    # Shutdown
    logger.info(f"{settings.app_name} detenida")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Gestión de lotes, movimientos de inventario y kardex por contenedor",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Setup middleware
setup_middleware(app)
setup_exception_handlers(app)

# Include routers
app.include_router(api_router, prefix="/api/v1")

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": f"{settings.app_name} - Lotes y kardex",
        "version": settings.version,
        "status": "running",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "api": "/api/v1"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "almacen.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
