# laundry_api/payments.py

import stripe
from laundry_api import settings
from laundry_api.errors import PaymentNotCompleted
from laundry_api.utils import to_paise
import logging

logger = logging.getLogger(__name__)

# Initialize Stripe
stripe.api_key = str(settings.STRIPE_SECRET_KEY)

CURRENCY = "inr"


def create_remittance_intent(amount: float, partner_id: int, submission_id: int) -> dict:
    """
    Open a Stripe PaymentIntent for a delivery partner's cash remittance.

    Returns the intent id and client secret the partner's app confirms the
    payment with. Stripe failures surface as PaymentNotCompleted.
    """
    logger.info(f"Creating remittance intent of {amount} for partner {partner_id}")
    try:
        payment_intent = stripe.PaymentIntent.create(
            amount=to_paise(amount),  # smallest currency unit (paise)
            currency=CURRENCY,
            payment_method_types=["card"],
            description=f"Cash on delivery remittance {submission_id}",
            metadata={
                "partner_id": str(partner_id),
                "submission_id": str(submission_id),
            },
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating remittance intent: {e.user_message or e}")
        raise PaymentNotCompleted(e.user_message or "Payment gateway error.")
    return {
        "payment_intent_id": payment_intent.id,
        "client_secret": payment_intent.client_secret,
    }


def _retrieve(payment_intent_id: str):
    try:
        return stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe error retrieving {payment_intent_id}: {e.user_message or e}")
        raise PaymentNotCompleted(e.user_message or "Payment gateway error.")


def remittance_client_secret(payment_intent_id: str) -> str|None:
    """Client secret of an intent opened earlier, for resuming an unfinished remittance."""
    return _retrieve(payment_intent_id).client_secret


def remittance_succeeded(payment_intent_id: str) -> bool:
    payment_intent = _retrieve(payment_intent_id)
    logger.info(f"PaymentIntent {payment_intent_id} status: {payment_intent.status}")
    return payment_intent.status == "succeeded"
