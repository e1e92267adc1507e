from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from .settings import settings

def build_engine(database_url: str, echo: bool = False):
    """Crea el engine async; SQLite abre una conexión por sesión"""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo, poolclass=NullPool)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_async_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=echo
    )

def _enable_sqlite_savepoints(engine) -> None:
    """
    El driver sqlite3 abre y cierra transacciones por su cuenta, lo que rompe
    los SAVEPOINT: un begin_nested() quedaría confirmado aunque la
    transacción externa haga rollback. Se desactiva ese manejo y el BEGIN lo
    emite SQLAlchemy.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

# Create engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

# Base class for models
Base = declarative_base()

# Database dependency
async def get_db():
    """Database dependency for FastAPI"""
    async with SessionLocal() as db:
        yield db

async def init_models(bind=None):
    """Crear tablas si no existen"""
    from almacen.shared.database import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
