import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

from backoffice.models.audit import ActionType, Actor, AuditEvent

logger = logging.getLogger(__name__)

# (action, details) -> None. Implementations must accept concurrent calls.
EventSink = Callable[[str, Dict[str, Any]], None]


def emit(sink: Optional[EventSink], action: str, details: Dict[str, Any]):
    """
    Send a structured finance event to the injected sink.
    A failing sink is logged and never breaks the calling operation.
    """
    logger.debug(f"{action}: {details}")
    if sink is None:
        return
    try:
        sink(action, details)
    except Exception as e:
        logger.warning(f"Event sink failed for {action}: {e}")


class FinanceEventLog:
    """
    Default event sink: keeps AuditEvent records in process and mirrors them
    to the logger. `module` and `actor` keys in the details are lifted onto
    the record.
    """

    def __init__(self, default_module: str = "finance"):
        self.default_module = default_module
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def __call__(self, action: str, details: Dict[str, Any]):
        self.log_event(action, details)

    def log_event(self, action: str, details: Dict[str, Any]) -> AuditEvent:
        details = dict(details or {})
        module = details.pop("module", None) or self.default_module
        actor_name = details.pop("actor", None) or "system"

        if action.endswith("_failed"):
            action_type = ActionType.ERROR
        elif action.startswith("access_") or actor_name != "system":
            action_type = ActionType.USER_ACTION
        else:
            action_type = ActionType.SYSTEM_EVENT

        event = AuditEvent(
            event_id=f"EVT-{uuid.uuid4().hex}",
            module=module,
            action=action,
            action_type=action_type,
            actor=Actor(
                id=actor_name,
                name=actor_name,
                type="SYSTEM" if actor_name == "system" else "USER"
            ),
            details=details,
            success=action_type != ActionType.ERROR,
            reference_id=self._reference_of(details)
        )

        with self._lock:
            self._events.append(event)

        if event.success:
            logger.info(f"AUDIT [{module}:{action}] by {actor_name}")
        else:
            logger.error(f"AUDIT [{module}:{action}] by {actor_name}: {details.get('error', '')}")
        return event

    @staticmethod
    def _reference_of(details: Dict[str, Any]) -> Optional[str]:
        for key in ("journal_id", "invoice_id", "rma_id", "payment_id", "quote_id"):
            if details.get(key):
                return str(details[key])
        return None

    @property
    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def for_action(self, action: str) -> List[AuditEvent]:
        return [e for e in self.events if e.action == action]

    def for_reference(self, reference_id: str) -> List[AuditEvent]:
        return [e for e in self.events if e.reference_id == reference_id]

    async def persist(self, repository) -> int:
        """Write the buffered events to an audit repository and clear the buffer."""
        with self._lock:
            pending, self._events = self._events, []
        for event in pending:
            await repository.put(event)
        return len(pending)
