# laundry_api/models.py

from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from pydantic import EmailStr
from pydantic import Field as PydanticField
from datetime import datetime, date, timezone
from typing import Annotated, Literal, Union
from enum import Enum


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    DELIVERY_PARTNER = "DELIVERY_PARTNER"
    ADMIN = "ADMIN"


class OrderStatus(str, Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    READY_FOR_PICKUP = "Ready for Pickup"
    PICKED_UP = "Picked Up"
    WASHING = "Washing"
    WASHED = "Washed"
    PICKING_UP = "Picking Up"
    DELIVERY_PICKED_UP = "Delivery Picked Up"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Transition(str, Enum):
    CANCEL = "cancel"
    ACCEPT = "accept"
    CLAIM_PICKUP = "claim_pickup"
    PICKUP = "pickup"
    VENDOR_RECEIVE = "vendor_receive"
    MARK_WASHED = "mark_washed"
    CLAIM_DELIVERY = "claim_delivery"
    DELIVERY_PICKUP = "delivery_pickup"
    DELIVER = "deliver"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    COD = "cod"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    COLLECTED = "collected"


class WithdrawalBucket(str, Enum):
    TODAY = "today"
    WITHDRAWABLE = "withdrawable"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class TransactionKind(str, Enum):
    CREDIT = "credit"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"


class CodSubmissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


# ------------------------------ Accounts ------------------------------

class Account(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    role: Role = Field(index=True, nullable=False)
    name: str = Field(nullable=False)
    mobile: str = Field(index=True, unique=True, nullable=False)
    email: str = Field(index=True, unique=True, nullable=False)
    hashed_password: str = Field(nullable=False)
    address: str|None = Field(default=None)
    vehicle_number: str|None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class ProfileBase(SQLModel):
    name: str
    mobile: str
    email: EmailStr


class CustomerProfile(ProfileBase):
    role: Literal["CUSTOMER"] = "CUSTOMER"
    address: str|None = None


class VendorProfile(ProfileBase):
    role: Literal["VENDOR"] = "VENDOR"
    address: str


class DeliveryPartnerProfile(ProfileBase):
    role: Literal["DELIVERY_PARTNER"] = "DELIVERY_PARTNER"
    vehicle_number: str|None = None


class AdminProfile(ProfileBase):
    role: Literal["ADMIN"] = "ADMIN"


Profile = Annotated[
    Union[CustomerProfile, VendorProfile, DeliveryPartnerProfile, AdminProfile],
    PydanticField(discriminator="role"),
]


class AccountCreate(SQLModel):
    profile: Profile
    password: str = Field(min_length=6)


class AccountRead(SQLModel):
    id: int
    profile: Profile


class Token(SQLModel):
    access_token: str
    token_type: str


class Principal(SQLModel):
    actor_id: int
    role: Role


# ------------------------------ Catalog ------------------------------

class ServiceCatalogEntry(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    vendor_id: int = Field(index=True, nullable=False)
    name: str = Field(nullable=False)
    description: str|None = Field(default=None)
    base_price: float = Field(nullable=False)
    app_price: float = Field(nullable=False)


class CatalogEntryCreate(SQLModel):
    name: str = Field(min_length=1)
    description: str|None = None
    base_price: float = Field(gt=0)
    app_price: float|None = Field(default=None, gt=0)


class CatalogEntryUpdate(SQLModel):
    description: str|None = None
    base_price: float|None = Field(default=None, gt=0)
    app_price: float|None = Field(default=None, gt=0)


class VendorRead(SQLModel):
    id: int
    name: str
    address: str|None


# ------------------------------ Orders ------------------------------

class Orders(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    customer_id: int = Field(index=True, nullable=False)
    customer_name: str = Field(nullable=False)
    customer_mobile: str = Field(nullable=False)
    customer_address: str = Field(nullable=False)
    vendor_id: int = Field(index=True, nullable=False)
    vendor_address: str|None = Field(default=None)
    pickup_partner_id: int|None = Field(default=None, index=True)
    delivery_partner_id: int|None = Field(default=None, index=True)
    items_total: float = Field(nullable=False)
    pickup_fee: float = Field(nullable=False)
    total_price: float = Field(nullable=False)
    payment_method: PaymentMethod = Field(nullable=False)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING, nullable=False)
    status: OrderStatus = Field(default=OrderStatus.SCHEDULED, index=True, nullable=False)
    otp: str|None = Field(default=None)
    cod_confirmed: bool = Field(default=False, nullable=False)
    vendor_credited: bool = Field(default=False, nullable=False)
    pickup_credited: bool = Field(default=False, nullable=False)
    delivery_credited: bool = Field(default=False, nullable=False)
    needs_review: bool = Field(default=False, nullable=False)
    review_note: str|None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, index=True, nullable=False)
    completed_at: datetime|None = Field(default=None)


class OrderLineItem(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True, nullable=False)
    position: int = Field(nullable=False)
    service_name: str = Field(nullable=False)
    quantity: int = Field(nullable=False)
    unit_price: float = Field(nullable=False)


class LineItemCreate(SQLModel):
    service_name: str
    quantity: int = 1


class LineItemRead(SQLModel):
    service_name: str
    quantity: int
    unit_price: float


class OrderCreate(SQLModel):
    vendor_id: int
    items: list[LineItemCreate]
    customer_name: str|None = None
    customer_mobile: str = Field(min_length=10, max_length=10)
    customer_address: str = Field(min_length=1)
    payment_method: PaymentMethod = PaymentMethod.ONLINE


class OrderRead(SQLModel):
    id: int
    customer_id: int
    customer_name: str
    customer_mobile: str
    customer_address: str
    vendor_id: int
    vendor_address: str|None
    pickup_partner_id: int|None
    delivery_partner_id: int|None
    items: list[LineItemRead]
    items_total: float
    pickup_fee: float
    total_price: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    cod_confirmed: bool
    needs_review: bool
    review_note: str|None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime|None


class OtpRead(SQLModel):
    order_id: int
    otp: str


class OtpVerify(SQLModel):
    otp: str = Field(min_length=4, max_length=4)
    transition: Transition


class CodConfirm(SQLModel):
    amount: float = Field(gt=0)


# ------------------------------ Settlement ------------------------------

class SettlementLine(SQLModel):
    service_name: str
    quantity: int
    base_price: float
    amount: float
    catalog_mismatch: bool = False


class Settlement(SQLModel):
    order_id: int
    actor_id: int
    role: Role
    amount: float
    lines: list[SettlementLine] = []
    already_credited: bool = False


class TransitionResult(SQLModel):
    order: OrderRead
    settlement: Settlement|None = None


# ------------------------------ Wallets ------------------------------

class Wallet(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("actor_id", "role"),)

    id: int|None = Field(default=None, primary_key=True)
    actor_id: int = Field(index=True, nullable=False)
    role: Role = Field(nullable=False)
    todays_earnings: float = Field(default=0, nullable=False)
    withdrawable_balance: float = Field(default=0, nullable=False)
    total_earnings: float = Field(default=0, nullable=False)
    total_withdrawn: float = Field(default=0, nullable=False)
    ledger_day: date = Field(nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class WalletRead(SQLModel):
    actor_id: int
    role: Role
    todays_earnings: float
    withdrawable_balance: float
    total_earnings: float
    total_withdrawn: float
    ledger_day: date


class WalletTransaction(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    wallet_id: int = Field(foreign_key="wallet.id", index=True, nullable=False)
    kind: TransactionKind = Field(nullable=False)
    amount: float = Field(nullable=False)
    order_id: int|None = Field(default=None, index=True)
    withdrawal_id: int|None = Field(default=None)
    note: str|None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class WithdrawalRequest(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    actor_id: int = Field(index=True, nullable=False)
    role: Role = Field(nullable=False)
    amount: float = Field(nullable=False)
    withdraw_from: WithdrawalBucket = Field(nullable=False)
    ledger_day: date = Field(nullable=False)
    upi_id: str = Field(nullable=False)
    full_name: str = Field(nullable=False)
    phone_number: str = Field(nullable=False)
    status: WithdrawalStatus = Field(default=WithdrawalStatus.PENDING, index=True, nullable=False)
    admin_note: str|None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    processed_at: datetime|None = Field(default=None)


class PayoutDetails(SQLModel):
    upi_id: str = Field(min_length=3)
    full_name: str = Field(min_length=1)
    phone_number: str = Field(min_length=10, max_length=10)


class WithdrawalCreate(PayoutDetails):
    amount: float = Field(gt=0)
    withdraw_from: WithdrawalBucket = WithdrawalBucket.WITHDRAWABLE


class WithdrawalDecision(SQLModel):
    admin_note: str|None = None


# ------------------------------ Cash on delivery ------------------------------

class CodCollection(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    partner_id: int = Field(index=True, nullable=False)
    order_id: int = Field(foreign_key="orders.id", unique=True, nullable=False)
    customer_name: str = Field(nullable=False)
    customer_mobile: str = Field(nullable=False)
    service_name: str = Field(nullable=False)
    quantity: int = Field(nullable=False)
    amount: float = Field(nullable=False)
    collected_at: datetime = Field(default_factory=utcnow, nullable=False)
    submitted_at: datetime|None = Field(default=None)
    submission_id: int|None = Field(default=None, foreign_key="codsubmission.id")


class CodSubmission(SQLModel, table=True):
    id: int|None = Field(default=None, primary_key=True)
    partner_id: int = Field(index=True, nullable=False)
    amount: float = Field(nullable=False)
    payment_ref: str|None = Field(default=None, index=True, unique=True)
    status: CodSubmissionStatus = Field(default=CodSubmissionStatus.PENDING, nullable=False)
    receipt_number: str|None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    paid_at: datetime|None = Field(default=None)


class CodCollectionRead(SQLModel):
    order_id: int
    customer_name: str
    customer_mobile: str
    service_name: str
    quantity: int
    amount: float
    collected_at: datetime
    submitted_at: datetime|None


class CodWalletRead(SQLModel):
    partner_id: int
    pending_submission: float
    total_collected: float
    total_submitted: float
    last_collection_date: datetime|None
    last_submission_date: datetime|None
    days_since_last_collection: int
    penalty_amount: float
    pending_collections: list[CodCollectionRead]
    submitted_collections: list[CodCollectionRead]


class CodSubmissionStart(SQLModel):
    submission_id: int
    payment_intent_id: str
    client_secret: str|None
    amount: float
    currency: str


class CodSubmissionVerify(SQLModel):
    payment_intent_id: str


class CodReceipt(SQLModel):
    submission_id: int
    receipt_number: str
    amount: float
    paid_at: datetime
