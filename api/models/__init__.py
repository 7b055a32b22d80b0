from models.subscription import Subscription
from models.ledger import PaymentLedgerEntry
from models.manual_payment import ManualPaymentSubmission, PaymentRecord

__all__ = [
    "Subscription", "PaymentLedgerEntry",
    "ManualPaymentSubmission", "PaymentRecord",
]
