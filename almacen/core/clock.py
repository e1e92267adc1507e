"""
Reloj inyectable.

Los servicios nunca llaman a datetime directamente para reglas de negocio
(ventana de anulación); reciben un Clock. Todas las horas son UTC sin zona,
igual que las columnas DateTime de la BD.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Hora actual UTC sin tzinfo"""
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """Reloj controlado para tests"""

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._fixed_time = fixed_time or datetime(2025, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._fixed_time

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time

    def advance(self, **kwargs) -> datetime:
        """Avanza el reloj; acepta los argumentos de timedelta"""
        self._fixed_time = self._fixed_time + timedelta(**kwargs)
        return self._fixed_time


def as_naive_utc(value: datetime) -> datetime:
    """Normaliza fechas leídas de BDs que devuelven tzinfo"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
