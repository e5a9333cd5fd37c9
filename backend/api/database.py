"""
In-memory registry of mounted map screens.

Each session owns one MapSearchController; state lives only as long as the
session does. Clients should DELETE sessions they are done with; past
MAP_MAX_SESSIONS the least recently used session is evicted.
"""
import logging
import threading
import uuid
from collections import OrderedDict
from typing import Optional

from services.map_controller import MapSearchController
from settings import settings

logger = logging.getLogger(__name__)

# In-memory storage, oldest access first
sessions_db: "OrderedDict[str, MapSearchController]" = OrderedDict()
_sessions_lock = threading.Lock()


def add_session(controller: MapSearchController) -> str:
    session_id = str(uuid.uuid4())
    with _sessions_lock:
        sessions_db[session_id] = controller
        while len(sessions_db) > max(1, settings.MAP_MAX_SESSIONS):
            evicted_id, _ = sessions_db.popitem(last=False)
            logger.info("Evicted idle map session %s", evicted_id)
    return session_id


def get_session(session_id: str) -> Optional[MapSearchController]:
    with _sessions_lock:
        controller = sessions_db.get(session_id)
        if controller is not None:
            sessions_db.move_to_end(session_id)
        return controller


def remove_session(session_id: str) -> bool:
    with _sessions_lock:
        return sessions_db.pop(session_id, None) is not None
