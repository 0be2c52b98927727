import logging
from typing import Optional

from backoffice.config import settings
from backoffice.database import Database
from backoffice.guardrails.audit_logger import EventSink, FinanceEventLog
from backoffice.guardrails.permissions import PermissionChecker
from backoffice.services.billing import BillingService
from backoffice.services.payments import PaymentService
from backoffice.services.quoting import QuotePricingEngine
from backoffice.services.rma import RMAService
from backoffice.tools.benchmark_import import BenchmarkImporter

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(level=level or settings.LOG_LEVEL)


class Backoffice:
    """Wires the services around one Database and one event sink."""

    def __init__(self, db: Optional[Database] = None, sink: Optional[EventSink] = None):
        self.db = db or Database.in_memory()
        self.sink = sink if sink is not None else FinanceEventLog()
        self.permissions = PermissionChecker(self.sink)
        self.billing = BillingService(self.db, self.permissions, self.sink)
        self.payments = PaymentService(self.db, self.billing, self.permissions, self.sink)
        self.rma = RMAService(self.db, self.permissions, self.sink)
        self.quoting = QuotePricingEngine(self.db, self.sink)
        self.benchmarks = BenchmarkImporter(self.sink)
        logger.info(f"Backoffice services ready ({settings.ENVIRONMENT})")

    @classmethod
    def from_mongo(cls, sink: Optional[EventSink] = None) -> "Backoffice":
        return cls(Database.from_mongo(), sink)

    async def flush_audit(self) -> int:
        """Persist buffered audit events when the default event log is in use."""
        if isinstance(self.sink, FinanceEventLog):
            return await self.sink.persist(self.db.audit)
        return 0

    def close(self):
        self.db.close()
