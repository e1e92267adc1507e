"""
Fixtures compartidas.

Cada test usa su propia BD SQLite en un directorio temporal, un reloj fijo
y un bus de eventos que registra lo publicado.
"""
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from almacen.config.database import build_engine, get_db, init_models
from almacen.config.settings import Settings
from almacen.core.clock import FixedClock
from almacen.core.dependencies import get_clock, get_event_bus, get_settings
from almacen.core.events import EventBus
from almacen.modules.containers.service import ContainerService
from almacen.modules.lots.service import LotService
from almacen.modules.movements.schemas import MovementCreate, TipoMovimiento
from almacen.modules.movements.service import MovementService
from almacen.shared.database.models import Contenedor, EstadoProducto, Producto


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'almacen_test.db'}",
        log_dir=str(tmp_path / "logs"),
        ventana_anulacion_horas=24,
        permitir_lote_legado=True
    )


@pytest.fixture
async def engine(test_settings):
    engine = build_engine(test_settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock()


class RecordingBus(EventBus):
    """Bus que además guarda cada evento publicado"""

    def __init__(self):
        super().__init__()
        self.published = []

    async def entity_changed(self, entity_type, entity_id=None):
        self.published.append((entity_type, entity_id))
        await super().entity_changed(entity_type, entity_id)


@pytest.fixture
def events():
    return RecordingBus()


@pytest.fixture
async def catalog(db):
    """Productos, contenedores y estado de prueba"""
    arroz = Producto(codigo="ARR-001", nombre="Arroz", es_perecedero=False)
    leche = Producto(codigo="LAC-001", nombre="Leche", es_perecedero=True)
    cerveza = Producto(codigo="BEB-001", nombre="Cerveza", unidades_por_caja=24)
    bodega = Contenedor(codigo="BOD-01", nombre="Bodega principal")
    refrigerador = Contenedor(codigo="REF-01", nombre="Refrigerador 1")
    bueno = EstadoProducto(nombre="Bueno")

    db.add_all([arroz, leche, cerveza, bodega, refrigerador, bueno])
    await db.commit()

    return SimpleNamespace(
        arroz=arroz,
        leche=leche,
        cerveza=cerveza,
        bodega=bodega,
        refrigerador=refrigerador,
        bueno=bueno
    )


@pytest.fixture
def lot_service(db):
    return LotService(db)


@pytest.fixture
async def movement_service(db, clock, events, test_settings):
    service = MovementService(db, clock=clock, events=events, config=test_settings)
    await service.seed_default_reasons()
    events.published.clear()
    return service


@pytest.fixture
def container_service(db, clock, events, test_settings, movement_service):
    return ContainerService(db, clock=clock, events=events, config=test_settings)


@pytest.fixture
def registrar(movement_service):
    """Atajo para registrar movimientos con el motivo por defecto"""

    async def _registrar(
        tipo: str,
        producto_id: int,
        contenedor_id: int,
        cantidad: float = None,
        motivo_nombre: str = None,
        **kwargs
    ):
        if motivo_nombre is None:
            motivo_nombre = "Compra" if tipo == "entrada" else "Retiro de contenedor"
        data = MovementCreate(
            producto_id=producto_id,
            contenedor_id=contenedor_id,
            tipo_movimiento=TipoMovimiento(tipo),
            cantidad=cantidad,
            motivo_nombre=motivo_nombre,
            **kwargs
        )
        return await movement_service.create_movement(data)

    return _registrar


@pytest.fixture
async def client(session_factory, clock, events, test_settings):
    from almacen.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_event_bus] = lambda: events
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with session_factory() as session:
        await MovementService(session, clock=clock, events=events, config=test_settings).seed_default_reasons()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
