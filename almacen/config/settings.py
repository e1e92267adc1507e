from pydantic import Field
from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    # App Info
    app_name: str = "Almacén API"
    version: str = "1.0.0"
    debug: bool = False

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./almacen.db",
        description="URL async de la BD (postgresql+asyncpg://... en producción)"
    )

    # CORS
    allowed_origins: List[str] = ["http://localhost:3000"]

    # Logging
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Reglas de movimientos
    ventana_anulacion_horas: int = Field(
        default=24,
        description="Horas desde fecha_movimiento en las que se permite anular"
    )
    permitir_lote_legado: bool = Field(
        default=True,
        description="Al editar/anular movimientos sin lote_id, usar el primer lote FEFO"
    )
    sembrar_motivos: bool = Field(
        default=True,
        description="Crear el vocabulario de motivos por defecto al iniciar"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
