"""
Multi-step flows that span the database and an external service.

Route handlers validate input and map exceptions to HTTP responses; the
sequencing of credit spend, provider calls and record updates lives here.
"""
import json
import logging
import time
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .exceptions import GenerationFailed, InvalidSignature, UserNotFound
from .imaging import ImageGenerator, build_prompt, classify_garment
from .payments import RazorpayGateway, get_plan, verify_payment_signature, verify_webhook_signature
from .utils import ImageUpload

logger = logging.getLogger(__name__)


async def generate_views(db: Session, generator: ImageGenerator, user_id: int, garment_type: str,
                         front: ImageUpload, back: Optional[ImageUpload] = None) -> dict:
    """Spend a credit and render front, side and back views of a garment.

    The garment type is checked before the credit is spent. If rendering
    fails the generation is marked failed and the credit is refunded.
    """
    classify_garment(garment_type)
    remaining = crud.deduct_credit(db, user_id, description=f"Generated views for {garment_type}")

    generation = crud.create_generation(
        db,
        user_id,
        garment_type,
        front_view_url=front.as_data_url(),
        back_view_url=back.as_data_url() if back else None,
    )
    logger.info("Generation %s started for user %s (%s)", generation.id, user_id, garment_type)

    back_source = back or front
    try:
        rendered_front = await generator.render(build_prompt(garment_type, "front"), front.data, front.mime_type)
        crud.update_generation(db, user_id, generation.id,
                               generated_front1=_png(rendered_front),
                               selected_front_index=1,
                               status=models.GENERATION_FRONT_GENERATED)
        rendered_side = await generator.render(build_prompt(garment_type, "side"), front.data, front.mime_type)
        rendered_back = await generator.render(build_prompt(garment_type, "back"), back_source.data, back_source.mime_type)
    except Exception as e:
        logger.exception("Generation %s failed for user %s", generation.id, user_id)
        # a failed flush leaves the session unusable until it is rolled back
        db.rollback()
        crud.update_generation(db, user_id, generation.id, status=models.GENERATION_FAILED)
        crud.add_credits(db, user_id, 1, models.TX_REFUND, "Refund for failed generation",
                         generation_id=generation.id)
        if isinstance(e, GenerationFailed):
            raise
        raise GenerationFailed("Failed to generate views") from e

    generation = crud.update_generation(
        db,
        user_id,
        generation.id,
        generated_side=_png(rendered_side),
        generated_back=_png(rendered_back),
        status=models.GENERATION_COMPLETED,
    )
    return {
        "success": True,
        "generationId": generation.id,
        "credits": remaining,
        "generatedFront": generation.generated_front1,
        "generatedSide": generation.generated_side,
        "generatedBack": generation.generated_back,
    }


def _png(encoded: str) -> str:
    return f"data:image/png;base64,{encoded}"


async def start_order(db: Session, gateway: RazorpayGateway, plan_name: Optional[str], user_id: int) -> dict:
    plan = get_plan(plan_name)
    if plan is None:
        raise ValueError("Invalid plan selected")
    user = crud.get_user(db, user_id)
    if not user:
        raise UserNotFound(user_id)

    order = await gateway.create_order(
        amount=plan.amount,
        currency=plan.currency,
        receipt=f"order_{user.id}_{int(time.time() * 1000)}",
        notes={"userId": user.id, "plan": plan.name, "credits": plan.credits, "email": user.email},
    )
    logger.info("Created order %s for user %s (%s)", order.get("id"), user.id, plan.name)

    try:
        crud.create_payment_order(db, order["id"], user.id, plan.name, plan.amount, plan.credits, plan.currency)
    except Exception:
        # the order exists at the gateway; checkout can still proceed
        db.rollback()
        logger.exception("Error storing order %s", order.get("id"))

    return {
        "orderId": order["id"],
        "amount": order.get("amount", plan.amount),
        "currency": order.get("currency", plan.currency),
        "keyId": gateway.key_id,
    }


def confirm_checkout(db: Session, key_secret: str, order_id: str, payment_id: str, signature: str,
                     user_id: Optional[int] = None) -> dict:
    if not verify_payment_signature(order_id, payment_id, signature, key_secret):
        logger.warning("Invalid payment signature for order %s", order_id)
        raise InvalidSignature("Invalid payment signature")

    order = crud.get_payment_order(db, order_id)
    if user_id is not None and order.user_id != user_id:
        raise PermissionError("Order belongs to another user")

    credits = crud.complete_payment_order(db, order_id, payment_id, source="Checkout")
    if credits is None:
        user = crud.get_user(db, order.user_id)
        return {
            "success": True,
            "credits": user.credits if user else 0,
            "message": "Payment already processed",
        }
    return {
        "success": True,
        "credits": credits,
        "message": f"Successfully added {order.credits} credits to your account",
    }


def handle_webhook(db: Session, secret: str, body: bytes, signature: Optional[str]) -> str:
    """Verify and apply a gateway webhook; returns the event name."""
    if not signature:
        raise InvalidSignature("Missing signature")
    if not verify_webhook_signature(body, signature, secret):
        logger.error("Invalid webhook signature")
        raise InvalidSignature("Invalid signature")

    try:
        event = json.loads(body)
    except ValueError as e:
        raise ValueError("Malformed webhook body") from e
    if not isinstance(event, dict):
        raise ValueError("Malformed webhook body")
    name = event.get("event")
    logger.info("Razorpay webhook event: %s", name)

    payload = event.get("payload") or {}
    if name == "payment.captured":
        payment = payload["payment"]["entity"]
        _payment_captured(db, payment)
    elif name == "payment.failed":
        payment = payload["payment"]["entity"]
        logger.info("Payment failed: %s", payment.get("id"))
        crud.fail_payment_order(db, payment.get("order_id"), payment.get("id"))
    elif name == "order.paid":
        logger.info("Order paid: %s", payload.get("order", {}).get("entity", {}).get("id"))
    else:
        logger.info("Unhandled event type: %s", name)
    return name


def _payment_captured(db: Session, payment: dict):
    logger.info("Payment captured: %s", payment.get("id"))
    order_id = payment.get("order_id")
    order = db.query(models.PaymentOrder).filter(models.PaymentOrder.order_id == order_id).first()
    if not order or order.status == models.ORDER_COMPLETED:
        return
    credits = crud.complete_payment_order(db, order_id, payment.get("id"), source="Webhook")
    if credits is not None:
        logger.info("Credits added: %s to user %s", order.credits, order.user_id)

