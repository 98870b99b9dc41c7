from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .exceptions import (
    EmailAlreadyRegistered,
    GenerationNotFound,
    InsufficientCredits,
    OrderNotFound,
    UserNotFound,
)

GENERATION_FIELDS = (
    "generated_front1",
    "generated_front2",
    "generated_front3",
    "generated_side",
    "generated_back",
    "selected_front_index",
    "status",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -------------------- Users & sessions --------------------

def create_user(db: Session, email: str, password_hash: str, name: Optional[str] = None, credits: int = 0) -> models.User:
    db_user = models.User(email=email.lower(), name=name, password_hash=password_hash, credits=credits)
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise EmailAlreadyRegistered(email) from e
    db.refresh(db_user)
    return db_user


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.lower()).first()


def update_user(db: Session, user_id: int, name: Optional[str] = None, password_hash: Optional[str] = None) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise UserNotFound(user_id)
    if name is not None:
        user.name = name
    if password_hash is not None:
        user.password_hash = password_hash
    user.updated_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_session(db: Session, user_id: int, access_token: str) -> models.UserSession:
    session = models.UserSession(user_id=user_id, access_token=access_token, login_at=utcnow())
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def get_live_session(db: Session, access_token: str) -> Optional[models.UserSession]:
    return (
        db.query(models.UserSession)
        .filter(models.UserSession.access_token == access_token, models.UserSession.logout_at.is_(None))
        .first()
    )


def end_session(db: Session, access_token: str) -> bool:
    result = db.execute(
        update(models.UserSession)
        .where(models.UserSession.access_token == access_token, models.UserSession.logout_at.is_(None))
        .values(logout_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


# -------------------- Credits --------------------

def deduct_credit(db: Session, user_id: int, description: str = "View generation") -> int:
    """Spend one credit and return the remaining balance.

    Single conditional UPDATE: a zero balance matches no row, so two requests
    racing for the last credit cannot both win.
    """
    result = db.execute(
        update(models.User)
        .where(models.User.id == user_id, models.User.credits > 0)
        .values(credits=models.User.credits - 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        user = db.get(models.User, user_id)
        if not user:
            raise UserNotFound(user_id)
        raise InsufficientCredits(user_id, user.credits)

    db.add(models.CreditTransaction(user_id=user_id, amount=-1, type=models.TX_USAGE, description=description))
    db.commit()
    return _balance(db, user_id)


def add_credits(db: Session, user_id: int, amount: int, tx_type: str, description: str,
                order_id: Optional[str] = None, payment_id: Optional[str] = None,
                generation_id: Optional[int] = None) -> int:
    result = db.execute(
        update(models.User)
        .where(models.User.id == user_id)
        .values(credits=models.User.credits + amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise UserNotFound(user_id)
    db.add(models.CreditTransaction(
        user_id=user_id,
        amount=amount,
        type=tx_type,
        description=description,
        order_id=order_id,
        payment_id=payment_id,
        generation_id=generation_id,
    ))
    db.commit()
    return _balance(db, user_id)


def _balance(db: Session, user_id: int) -> int:
    return db.execute(select(models.User.credits).where(models.User.id == user_id)).scalar_one()


def list_transactions(db: Session, user_id: int) -> List[models.CreditTransaction]:
    return (
        db.query(models.CreditTransaction)
        .filter(models.CreditTransaction.user_id == user_id)
        .order_by(models.CreditTransaction.id)
        .all()
    )


# -------------------- Generations (always scoped to the owner) --------------------

def create_generation(db: Session, user_id: int, garment_type: str, status: Optional[str] = None, **fields) -> models.Generation:
    generation = models.Generation(
        user_id=user_id,
        garment_type=garment_type,
        status=status or models.GENERATION_PROCESSING,
        **fields,
    )
    db.add(generation)
    db.commit()
    db.refresh(generation)
    return generation


def get_generation(db: Session, user_id: int, generation_id: int) -> models.Generation:
    generation = (
        db.query(models.Generation)
        .filter(models.Generation.id == generation_id, models.Generation.user_id == user_id)
        .first()
    )
    if not generation:
        raise GenerationNotFound(generation_id)
    return generation


def list_generations(db: Session, user_id: int, page: int = 1, limit: int = 10) -> Tuple[List[models.Generation], int]:
    query = db.query(models.Generation).filter(models.Generation.user_id == user_id)
    total = query.count()
    rows = (
        query.order_by(models.Generation.created_at.desc(), models.Generation.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def count_generations(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(models.Generation.id)).where(models.Generation.user_id == user_id)
    ).scalar_one()


def update_generation(db: Session, user_id: int, generation_id: int, **changes) -> models.Generation:
    generation = get_generation(db, user_id, generation_id)
    for field, value in changes.items():
        if field in GENERATION_FIELDS:
            setattr(generation, field, value)
    generation.updated_at = utcnow()
    db.add(generation)
    db.commit()
    db.refresh(generation)
    return generation


def delete_generation(db: Session, user_id: int, generation_id: int) -> bool:
    generation = get_generation(db, user_id, generation_id)
    db.delete(generation)
    db.commit()
    return True


# -------------------- Payment orders --------------------

def create_payment_order(db: Session, order_id: str, user_id: int, plan: str, amount: int,
                         credits: int, currency: str = "INR") -> models.PaymentOrder:
    order = models.PaymentOrder(
        order_id=order_id,
        user_id=user_id,
        plan=plan,
        amount=amount,
        currency=currency,
        credits=credits,
        status=models.ORDER_CREATED,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def get_payment_order(db: Session, order_id: str) -> models.PaymentOrder:
    order = db.query(models.PaymentOrder).filter(models.PaymentOrder.order_id == order_id).first()
    if not order:
        raise OrderNotFound(order_id)
    return order


def complete_payment_order(db: Session, order_id: str, payment_id: str, source: str = "Checkout") -> Optional[int]:
    """Mark an order completed and credit its owner.

    Returns the new balance, or None when the order had already been completed
    (the claim UPDATE matched nothing and no credits are added).
    """
    order = get_payment_order(db, order_id)
    claimed = db.execute(
        update(models.PaymentOrder)
        .where(models.PaymentOrder.order_id == order_id, models.PaymentOrder.status != models.ORDER_COMPLETED)
        .values(status=models.ORDER_COMPLETED, payment_id=payment_id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        db.rollback()
        return None
    return add_credits(
        db,
        order.user_id,
        order.credits,
        models.TX_PURCHASE,
        f"{source}: Purchased {order.plan} plan - {order.credits} credits",
        order_id=order_id,
        payment_id=payment_id,
    )


def fail_payment_order(db: Session, order_id: str, payment_id: Optional[str]) -> bool:
    result = db.execute(
        update(models.PaymentOrder)
        .where(models.PaymentOrder.order_id == order_id, models.PaymentOrder.status != models.ORDER_COMPLETED)
        .values(status=models.ORDER_FAILED, payment_id=payment_id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0
