"""
Bus de eventos en proceso.

El núcleo publica `entity_changed(tipo_entidad, id)` después de cada commit
exitoso; las capas de caché o UI se suscriben por tipo de entidad. Un
manejador que falla se registra en el log y no afecta a los demás.
"""
import logging
from collections import defaultdict
from typing import Awaitable, Callable, DefaultDict, List, Optional

logger = logging.getLogger(__name__)

EntityHandler = Callable[[str, Optional[int]], Awaitable[None]]

# Tipos de entidad publicados por el núcleo
MOVIMIENTOS = "movimientos"
LOTES = "detalle_contenedor"
MOTIVOS = "motivos_movimiento"


class EventBus:

    def __init__(self):
        self._handlers: DefaultDict[str, List[EntityHandler]] = defaultdict(list)

    def subscribe(self, entity_type: str, handler: EntityHandler) -> None:
        self._handlers[entity_type].append(handler)

    def unsubscribe(self, entity_type: str, handler: EntityHandler) -> None:
        if handler in self._handlers.get(entity_type, []):
            self._handlers[entity_type].remove(handler)

    async def entity_changed(self, entity_type: str, entity_id: Optional[int] = None) -> None:
        for handler in list(self._handlers.get(entity_type, [])):
            try:
                await handler(entity_type, entity_id)
            except Exception:
                logger.exception(
                    "Error en suscriptor de %s (id=%s)", entity_type, entity_id
                )


event_bus = EventBus()
