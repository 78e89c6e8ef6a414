from app.settlement.handlers.charges import ChargeDispatcher
from app.settlement.handlers.payouts import PayoutHandler
from app.settlement.handlers.refunds import RefundHandler
from app.settlement.handlers.subscriptions import SubscriptionLifecycleHandler

__all__ = ["ChargeDispatcher", "PayoutHandler", "RefundHandler", "SubscriptionLifecycleHandler"]
