import logging
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, IndexModel
from backoffice.config import settings
from backoffice.models.accounting import GlJournal
from backoffice.models.audit import AuditEvent
from backoffice.models.invoice import Invoice
from backoffice.models.payment import PaymentRecord
from backoffice.models.quote import QuoteResult
from backoffice.models.rma import RMA, CreditMemo
from backoffice.repositories.base import BaseRepository, Repository
from backoffice.repositories.memory import InMemoryRepository

logger = logging.getLogger(__name__)

class Database:
    """
    Container of repositories handed to the services at construction.
    Build one per application (or per test); there is no shared instance.
    """

    def __init__(self,
                 invoices: Repository[Invoice],
                 journals: Repository[GlJournal],
                 payments: Repository[PaymentRecord],
                 rmas: Repository[RMA],
                 credit_memos: Repository[CreditMemo],
                 quotes: Repository[QuoteResult],
                 audit: Repository[AuditEvent],
                 client: Optional[AsyncIOMotorClient] = None):
        self.invoices = invoices
        self.journals = journals
        self.payments = payments
        self.rmas = rmas
        self.credit_memos = credit_memos
        self.quotes = quotes
        self.audit = audit
        self.client = client

    @classmethod
    def in_memory(cls) -> "Database":
        return cls(
            invoices=InMemoryRepository(Invoice),
            journals=InMemoryRepository(GlJournal),
            payments=InMemoryRepository(PaymentRecord),
            rmas=InMemoryRepository(RMA),
            credit_memos=InMemoryRepository(CreditMemo),
            quotes=InMemoryRepository(QuoteResult),
            audit=InMemoryRepository(AuditEvent),
        )

    @classmethod
    def from_mongo(cls, client: Optional[AsyncIOMotorClient] = None, db_name: Optional[str] = None) -> "Database":
        """Repositories backed by MongoDB collections."""
        client = client or AsyncIOMotorClient(settings.MONGODB_URL)
        db = client[db_name or settings.DB_NAME]
        logger.info(f"Using MongoDB database {db_name or settings.DB_NAME}")
        return cls(
            invoices=BaseRepository(db.invoices, Invoice),
            journals=BaseRepository(db.gl_journals, GlJournal),
            payments=BaseRepository(db.payments, PaymentRecord),
            rmas=BaseRepository(db.rmas, RMA),
            credit_memos=BaseRepository(db.credit_memos, CreditMemo),
            quotes=BaseRepository(db.quotes, QuoteResult),
            audit=BaseRepository(db.audit_log, AuditEvent),
            client=client,
        )

    async def create_indexes(self):
        """Unique business keys and the lookups the services filter on. Mongo only."""
        if not self.client:
            return
        await self.invoices.collection.create_indexes([
            IndexModel([("invoice_id", ASCENDING)], unique=True),
            IndexModel([("client_id", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("vendor_id", ASCENDING)]),
        ])
        await self.journals.collection.create_indexes([
            IndexModel([("journal_id", ASCENDING)], unique=True),
            IndexModel([("module", ASCENDING), ("posted_at", DESCENDING)]),
        ])
        await self.payments.collection.create_indexes([
            IndexModel([("payment_id", ASCENDING)], unique=True),
            IndexModel([("invoice_id", ASCENDING)]),
            IndexModel([("payment_date", ASCENDING)]),
        ])
        await self.rmas.collection.create_indexes([
            IndexModel([("rma_id", ASCENDING)], unique=True),
            IndexModel([("original_invoice_id", ASCENDING)]),
        ])
        await self.credit_memos.collection.create_indexes([
            IndexModel([("credit_memo_id", ASCENDING)], unique=True),
            IndexModel([("rma_id", ASCENDING)]),
        ])
        await self.quotes.collection.create_indexes([
            IndexModel([("quote_id", ASCENDING)], unique=True),
        ])
        await self.audit.collection.create_indexes([
            IndexModel([("event_id", ASCENDING)], unique=True),
            IndexModel([("reference_id", ASCENDING)]),
            IndexModel([("timestamp", DESCENDING)]),
        ])
        logger.info("MongoDB indexes created")

    def close(self):
        """Close the database connection, if any."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")
