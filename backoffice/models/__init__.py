from backoffice.models.base import MongoModel
from backoffice.models.finance import LineItem, Discount, ProcessedLineItem, AppliedDiscount, CalculationResult
from backoffice.models.accounting import GlEntry, GlSource, GlSourceRef, GlPostResult, GlJournal
from backoffice.models.audit import AuditEvent, Actor, ActionType
from backoffice.models.invoice import Invoice, InvoiceStatus, InvoiceLifecycleEvent
from backoffice.models.payment import PaymentRecord, PaymentResult, PaymentSummary, MethodTotals, InvoicePaymentStatus
from backoffice.models.rma import RMA, RMALine, RMAEvent, RMAStatus, CreditMemo, CreditMemoLine, AccountingAdjustment, DispositionType, ReasonCode, DispositionResult, DispositionSimulationResult
from backoffice.models.quote import BenchmarkRate, ValueAddedOption, Lane, LaneEnd, QuoteInput, PricingContext, QuoteResult, QuoteComparison
from backoffice.models.benchmark import ImportRowError, ImportValidationResult, DryRunResult
