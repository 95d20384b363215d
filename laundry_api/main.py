# laundry_api/main.py

from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session
from typing import Annotated
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from aiokafka import AIOKafkaProducer
import logging
from laundry_api import accounts, catalog, cod, lifecycle, otp, settings, wallet
from laundry_api.db import create_db_and_tables, engine, get_session
from laundry_api.errors import LaundryError, laundry_error_handler
from laundry_api.events import (
    create_kafka_topics, produce_message, publish_order_event, publish_withdrawal_event
)
from laundry_api.models import (
    Account, AccountCreate, AccountRead, CatalogEntryCreate, CatalogEntryUpdate, CodCollectionRead,
    CodConfirm, CodReceipt, CodSubmissionStart, CodSubmissionVerify, CodWalletRead, OrderCreate,
    OrderRead, OrderStatus, OtpRead, OtpVerify, Principal, Role, ServiceCatalogEntry, Token,
    TransitionResult, VendorRead, WalletRead, WalletTransaction, WithdrawalCreate,
    WithdrawalDecision, WithdrawalRequest, WithdrawalStatus
)
from laundry_api.utils import (
    create_access_token,
    get_current_principal,
    get_current_admin_user,
    get_current_delivery_partner,
    get_current_vendor,
    get_current_earner,
)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan event to manage application startup and shutdown.
    """
    # Initialize the database and create tables
    create_db_and_tables()
    logger.info("Database created and tables ensured.")

    # Create default admin user if none exists
    with Session(engine) as session:
        accounts.ensure_default_admin(session)

    if settings.KAFKA_ENABLED:
        await create_kafka_topics([settings.KAFKA_ORDER_TOPIC, settings.KAFKA_WITHDRAWAL_TOPIC])
    yield


app = FastAPI(lifespan=lifespan, title="Laundry Order Service", version="1.0.0")
app.add_exception_handler(LaundryError, laundry_error_handler)

SessionDep = Annotated[Session, Depends(get_session)]
ProducerDep = Annotated[AIOKafkaProducer, Depends(produce_message)]


# ------------------------------ Accounts ------------------------------

@app.post("/register", response_model=AccountRead, status_code=201)
def register(payload: AccountCreate, session: SessionDep):
    """
    Self-registration for customers, vendors and delivery partners.
    """
    if payload.profile.role == Role.ADMIN.value:
        raise HTTPException(status_code=403, detail="Admin accounts are created by admins.")
    return accounts.profile_of(accounts.register(session, payload))


@app.post("/admin/accounts", response_model=AccountRead, status_code=201)
def create_admin_account(
    payload: AccountCreate,
    session: SessionDep,
    current_admin: Annotated[Principal, Depends(get_current_admin_user)],
):
    return accounts.profile_of(accounts.register(session, payload))


@app.post("/token", response_model=Token)
def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: SessionDep,
):
    """
    Authenticate with mobile number (or email) and password.

    The returned bearer token carries the account's role as an explicit claim.
    """
    account = accounts.authenticate(session, form_data.username, form_data.password)
    if account is None:
        raise HTTPException(status_code=400, detail="Incorrect username or password.")
    access_token = create_access_token(Principal(actor_id=account.id, role=account.role))
    logger.info(f"{account.role.value} {account.id} logged in.")
    return Token(access_token=access_token, token_type="bearer")


@app.get("/accounts/me", response_model=AccountRead)
def read_me(session: SessionDep, principal: Annotated[Principal, Depends(get_current_principal)]):
    account = session.get(Account, principal.actor_id)
    if account is None or account.role != principal.role:
        raise HTTPException(status_code=404, detail="Account not found.")
    return accounts.profile_of(account)


# ------------------------------ Catalog ------------------------------

@app.get("/vendors", response_model=list[VendorRead])
def get_vendors(session: SessionDep):
    return [VendorRead(id=v.id, name=v.name, address=v.address) for v in accounts.list_vendors(session)]


@app.get("/vendors/{vendor_id}/services", response_model=list[ServiceCatalogEntry])
def get_vendor_services(vendor_id: int, session: SessionDep):
    return catalog.list_services(session, vendor_id)


@app.post("/vendor/services", response_model=ServiceCatalogEntry, status_code=201)
def add_vendor_service(
    payload: CatalogEntryCreate,
    session: SessionDep,
    vendor: Annotated[Principal, Depends(get_current_vendor)],
):
    return catalog.add_service(session, vendor.actor_id, payload)


@app.patch("/vendor/services/{entry_id}", response_model=ServiceCatalogEntry)
def update_vendor_service(
    entry_id: int,
    payload: CatalogEntryUpdate,
    session: SessionDep,
    vendor: Annotated[Principal, Depends(get_current_vendor)],
):
    return catalog.update_service(session, vendor.actor_id, entry_id, payload)


@app.delete("/vendor/services/{entry_id}", status_code=204)
def remove_vendor_service(
    entry_id: int,
    session: SessionDep,
    vendor: Annotated[Principal, Depends(get_current_vendor)],
):
    catalog.remove_service(session, vendor.actor_id, entry_id)


# ------------------------------ Orders ------------------------------

def _reads(session: Session, orders) -> list[OrderRead]:
    return [lifecycle.order_read(session, order) for order in orders]


@app.post("/orders", response_model=OrderRead, status_code=201)
async def place_order(
    payload: OrderCreate,
    session: SessionDep,
    principal: Annotated[Principal, Depends(get_current_principal)],
    producer: ProducerDep,
):
    order = lifecycle.order_read(session, lifecycle.place_order(session, principal, payload))
    await publish_order_event(producer, order, "CREATE")
    return order


@app.get("/orders", response_model=list[OrderRead])
def get_orders(session: SessionDep, current_admin: Annotated[Principal, Depends(get_current_admin_user)]):
    return _reads(session, lifecycle.all_orders(session))


@app.get("/orders/me", response_model=list[OrderRead])
def get_my_orders(session: SessionDep, principal: Annotated[Principal, Depends(get_current_principal)]):
    """
    Orders placed by the current customer.
    """
    if principal.role != Role.CUSTOMER:
        raise HTTPException(status_code=403, detail="Insufficient permissions.")
    return _reads(session, lifecycle.customer_orders(session, principal.actor_id))


@app.get("/orders/changes", response_model=list[OrderRead])
def get_order_changes(
    since: datetime,
    session: SessionDep,
    current_admin: Annotated[Principal, Depends(get_current_admin_user)],
):
    """
    Change feed: orders updated after `since` (naive UTC), oldest change first.
    """
    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    return _reads(session, lifecycle.changes_since(session, since))


@app.get("/orders/review", response_model=list[OrderRead])
def get_review_queue(session: SessionDep, current_admin: Annotated[Principal, Depends(get_current_admin_user)]):
    return _reads(session, lifecycle.review_queue(session))


@app.get("/orders/unclaimed/pickup", response_model=list[OrderRead])
def get_unclaimed_pickups(session: SessionDep, partner: Annotated[Principal, Depends(get_current_delivery_partner)]):
    return _reads(session, lifecycle.unclaimed_pickups(session))


@app.get("/orders/unclaimed/delivery", response_model=list[OrderRead])
def get_unclaimed_deliveries(session: SessionDep, partner: Annotated[Principal, Depends(get_current_delivery_partner)]):
    return _reads(session, lifecycle.unclaimed_deliveries(session))


@app.get("/orders/deals", response_model=list[OrderRead])
def get_my_deals(session: SessionDep, partner: Annotated[Principal, Depends(get_current_delivery_partner)]):
    return _reads(session, lifecycle.partner_deals(session, partner.actor_id))


@app.get("/orders/assigned", response_model=list[OrderRead])
def get_assigned_orders(
    session: SessionDep,
    vendor: Annotated[Principal, Depends(get_current_vendor)],
    status: OrderStatus|None = None,
):
    return _reads(session, lifecycle.vendor_orders(session, vendor.actor_id, status))


@app.get("/orders/{order_id}", response_model=OrderRead)
def get_order(order_id: int, session: SessionDep, principal: Annotated[Principal, Depends(get_current_principal)]):
    return lifecycle.order_read(session, lifecycle.get_order(session, principal, order_id))


async def _transition(session, principal, producer, order_id, action) -> TransitionResult:
    result = action(session, principal, order_id)
    await publish_order_event(producer, result.order)
    return result


@app.post("/orders/{order_id}/cancel", response_model=TransitionResult)
async def cancel_order(order_id: int, session: SessionDep,
                       principal: Annotated[Principal, Depends(get_current_principal)], producer: ProducerDep):
    return await _transition(session, principal, producer, order_id, lifecycle.cancel_order)


@app.post("/orders/{order_id}/accept", response_model=TransitionResult)
async def accept_order(order_id: int, session: SessionDep,
                       principal: Annotated[Principal, Depends(get_current_principal)], producer: ProducerDep):
    return await _transition(session, principal, producer, order_id, lifecycle.accept_order)


@app.post("/orders/{order_id}/claim-pickup", response_model=TransitionResult)
async def claim_pickup(order_id: int, session: SessionDep,
                       principal: Annotated[Principal, Depends(get_current_principal)], producer: ProducerDep):
    return await _transition(session, principal, producer, order_id, lifecycle.claim_pickup)


@app.post("/orders/{order_id}/claim-delivery", response_model=TransitionResult)
async def claim_delivery(order_id: int, session: SessionDep,
                         principal: Annotated[Principal, Depends(get_current_principal)], producer: ProducerDep):
    return await _transition(session, principal, producer, order_id, lifecycle.claim_delivery)


@app.post("/orders/{order_id}/washed", response_model=TransitionResult)
async def mark_washed(order_id: int, session: SessionDep,
                      principal: Annotated[Principal, Depends(get_current_principal)], producer: ProducerDep):
    """
    Vendor finished washing; credits the vendor's wallet once.

    A repeated call answers 200 with code `AlreadyCredited` and changes nothing.
    """
    return await _transition(session, principal, producer, order_id, lifecycle.mark_washed)


@app.post("/orders/{order_id}/otp", response_model=OtpRead)
def generate_otp(order_id: int, session: SessionDep,
                 principal: Annotated[Principal, Depends(get_current_principal)]):
    return OtpRead(order_id=order_id, otp=otp.generate(session, principal, order_id))


@app.post("/orders/{order_id}/verify-otp", response_model=TransitionResult)
async def verify_otp(order_id: int, payload: OtpVerify, session: SessionDep,
                     principal: Annotated[Principal, Depends(get_current_principal)], producer: ProducerDep):
    result = otp.verify(session, principal, order_id, payload.otp, payload.transition)
    await publish_order_event(producer, result.order)
    return result


@app.post("/orders/{order_id}/cod/confirm", response_model=CodCollectionRead)
async def confirm_cod_collection(order_id: int, payload: CodConfirm, session: SessionDep,
                                 principal: Annotated[Principal, Depends(get_current_principal)],
                                 producer: ProducerDep):
    collection = cod.confirm_collection(session, principal, order_id, payload.amount)
    await publish_order_event(producer, lifecycle.order_read(session, lifecycle.load_order(session, order_id)))
    return collection


@app.post("/orders/{order_id}/review/clear", response_model=OrderRead)
def clear_order_review(order_id: int, session: SessionDep,
                       current_admin: Annotated[Principal, Depends(get_current_admin_user)]):
    return lifecycle.order_read(session, lifecycle.clear_review(session, order_id))


# ------------------------------ Wallet ------------------------------

@app.get("/wallet", response_model=WalletRead)
def get_wallet(session: SessionDep, earner: Annotated[Principal, Depends(get_current_earner)]):
    return wallet.get_wallet(session, earner.actor_id, earner.role)


@app.get("/wallet/transactions", response_model=list[WalletTransaction])
def get_wallet_transactions(session: SessionDep, earner: Annotated[Principal, Depends(get_current_earner)]):
    return wallet.wallet_transactions(session, earner.actor_id, earner.role)


@app.post("/wallet/withdrawals", response_model=WithdrawalRequest, status_code=201)
async def request_withdrawal(payload: WithdrawalCreate, session: SessionDep,
                             earner: Annotated[Principal, Depends(get_current_earner)], producer: ProducerDep):
    withdrawal = wallet.request_withdrawal(session, earner, payload)
    await publish_withdrawal_event(producer, withdrawal, "CREATE")
    return withdrawal


@app.get("/wallet/withdrawals", response_model=list[WithdrawalRequest])
def get_withdrawal_history(session: SessionDep, earner: Annotated[Principal, Depends(get_current_earner)]):
    return wallet.withdrawal_history(session, earner)


@app.get("/admin/withdrawals", response_model=list[WithdrawalRequest])
def get_withdrawals(
    session: SessionDep,
    current_admin: Annotated[Principal, Depends(get_current_admin_user)],
    role: Role|None = None,
    status: WithdrawalStatus|None = None,
):
    return wallet.list_withdrawals(session, role, status)


async def _decide(session, producer, withdrawal_id, decision, payload) -> WithdrawalRequest:
    withdrawal = decision(session, withdrawal_id, payload.admin_note)
    await publish_withdrawal_event(producer, withdrawal)
    return withdrawal


@app.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalRequest)
async def approve_withdrawal(withdrawal_id: int, payload: WithdrawalDecision, session: SessionDep,
                             current_admin: Annotated[Principal, Depends(get_current_admin_user)],
                             producer: ProducerDep):
    return await _decide(session, producer, withdrawal_id, wallet.approve_withdrawal, payload)


@app.post("/admin/withdrawals/{withdrawal_id}/paid", response_model=WithdrawalRequest)
async def mark_withdrawal_paid(withdrawal_id: int, payload: WithdrawalDecision, session: SessionDep,
                               current_admin: Annotated[Principal, Depends(get_current_admin_user)],
                               producer: ProducerDep):
    return await _decide(session, producer, withdrawal_id, wallet.mark_withdrawal_paid, payload)


@app.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalRequest)
async def reject_withdrawal(withdrawal_id: int, payload: WithdrawalDecision, session: SessionDep,
                            current_admin: Annotated[Principal, Depends(get_current_admin_user)],
                            producer: ProducerDep):
    return await _decide(session, producer, withdrawal_id, wallet.reject_withdrawal, payload)


# ------------------------------ Cash on delivery ------------------------------

@app.get("/cod/wallet", response_model=CodWalletRead)
def get_cod_wallet(session: SessionDep, partner: Annotated[Principal, Depends(get_current_delivery_partner)]):
    return cod.cod_wallet(session, partner.actor_id)


@app.post("/cod/submissions", response_model=CodSubmissionStart, status_code=status.HTTP_201_CREATED)
def start_cod_submission(session: SessionDep, partner: Annotated[Principal, Depends(get_current_delivery_partner)]):
    return cod.initiate_submission(session, partner)


@app.post("/cod/submissions/verify", response_model=CodReceipt)
def verify_cod_submission(payload: CodSubmissionVerify, session: SessionDep,
                          partner: Annotated[Principal, Depends(get_current_delivery_partner)]):
    return cod.verify_submission(session, partner, payload.payment_intent_id)
