import pytest

from backoffice.database import Database
from backoffice.guardrails.audit_logger import FinanceEventLog
from backoffice.guardrails.permissions import PermissionChecker
from backoffice.models.finance import Discount, LineItem
from backoffice.services.billing import BillingService
from backoffice.services.payments import PaymentService
from backoffice.services.rma import RMAService


@pytest.fixture
def db():
    return Database.in_memory()

@pytest.fixture
def event_log():
    return FinanceEventLog()

@pytest.fixture
def permissions(event_log):
    return PermissionChecker(event_log)

@pytest.fixture
def billing(db, permissions, event_log):
    return BillingService(db, permissions, event_log)

@pytest.fixture
def payments(db, billing, permissions, event_log):
    return PaymentService(db, billing, permissions, event_log)

@pytest.fixture
def rma_service(db, permissions, event_log):
    return RMAService(db, permissions, event_log)

@pytest.fixture
def sample_line_items():
    # Subtotal $100
    return [LineItem(id="L1", sku="A", description="Pick & pack", qty=2, unit_price=50)]

@pytest.fixture
def ten_percent_off():
    return Discount(id="D-PCT", type="percent", value=10, scope="all", description="10% off")
