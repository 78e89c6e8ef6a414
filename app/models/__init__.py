from app.models.booking import AdditionalCharge, Booking, BookingEvent, BookingServiceLine
from app.models.custom_offer import Conversation, CustomOffer, CustomRequest, Message, Offering
from app.models.gift_card import GiftCard, GiftCardOrder, GiftCardRedemption
from app.models.ledger import FinanceTransaction, PaymentTransaction
from app.models.membership import MembershipOrder, UserMembership
from app.models.payout import Payout
from app.models.platform_settings import PlatformSettings
from app.models.promotion import Promotion, PromotionUsage
from app.models.reconciliation import PaymentReconciliationEntry
from app.models.subscription import ProviderSubscription, ProviderSubscriptionOrder, SubscriptionPlan
from app.models.user import PaymentMethod, Provider, User
from app.models.wallet import Wallet, WalletTopup, WalletTransaction
from app.models.webhook_event import WebhookEvent

__all__ = [
    "AdditionalCharge",
    "Booking",
    "BookingEvent",
    "BookingServiceLine",
    "Conversation",
    "CustomOffer",
    "CustomRequest",
    "FinanceTransaction",
    "GiftCard",
    "GiftCardOrder",
    "GiftCardRedemption",
    "MembershipOrder",
    "Message",
    "Offering",
    "PaymentMethod",
    "PaymentReconciliationEntry",
    "PaymentTransaction",
    "Payout",
    "PlatformSettings",
    "Promotion",
    "PromotionUsage",
    "Provider",
    "ProviderSubscription",
    "ProviderSubscriptionOrder",
    "SubscriptionPlan",
    "User",
    "UserMembership",
    "Wallet",
    "WalletTopup",
    "WalletTransaction",
    "WebhookEvent",
]
