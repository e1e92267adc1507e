# almacen/core/dependencies.py
from almacen.config.settings import Settings, settings
from almacen.core.clock import Clock, system_clock
from almacen.core.events import EventBus, event_bus

# Los tests sobreescriben estas dependencias con app.dependency_overrides

def get_clock() -> Clock:
    return system_clock

def get_event_bus() -> EventBus:
    return event_bus

def get_settings() -> Settings:
    return settings
