"""
Payment Status Relay.

Payment status of RSVPs, donations and dues payments only moves to
completed/failed through ``set_payment_status``, which is driven by verified
provider webhooks. What the client reports is never trusted.
"""

import logging
from typing import Any, Dict, Optional, Tuple, Type

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    ValidationError,
    InvalidStateError,
    ConflictError,
    PermissionDeniedError,
    RefundRequiredError,
)
from univo.core.logging_utils import log_business_event, error_tracker
from univo.core.validations import utcnow
from univo.clubs.models.notifications import NotificationType
from univo.clubs.services.notification_service import notify
from univo.activities.models.events import Event, Rsvp
from univo.activities.models.campaigns import Donation
from univo.activities.models.dues import ClubDues, DuesPayment
from univo.activities.models.payment_status import PaymentStatus
from univo.activities.crud.campaigns import adjust_campaign_amount

logger = logging.getLogger(__name__)

PAYMENT_RECORDS: Dict[str, Type] = {
    "rsvp": Rsvp,
    "donation": Donation,
    "dues_payment": DuesPayment,
}

ALLOWED_TRANSITIONS = {
    (PaymentStatus.pending, PaymentStatus.completed),
    (PaymentStatus.pending, PaymentStatus.failed),
    (PaymentStatus.failed, PaymentStatus.completed),
}

WEBHOOK_EVENTS = {
    "payment_intent.succeeded": PaymentStatus.completed,
    "payment_intent.payment_failed": PaymentStatus.failed,
    "payment_intent.canceled": PaymentStatus.failed,
}


def _record_model(kind: str):
    model = PAYMENT_RECORDS.get(kind)
    if model is None:
        raise ValidationError("Unknown payment record kind", {"kind": kind})
    return model


def record_amount(record) -> int:
    if isinstance(record, Rsvp):
        return record.total_amount
    return record.amount


async def _get_record(session: AsyncSession, kind: str, record_id: int, lock: bool = False):
    model = _record_model(kind)
    query = select(model).where(model.id == record_id).execution_options(
        populate_existing=True
    )
    if lock:
        query = query.with_for_update()

    record = (await session.execute(query)).scalar_one_or_none()
    if not record:
        raise NotFoundError(kind, str(record_id))
    return record


async def get_payable_record(
    session: AsyncSession,
    kind: str,
    record_id: int,
    amount: int,
    payer_id: Optional[int] = None,
):
    """
    Проверить, что запись можно оплатить указанной суммой.

    Сумма должна совпадать с рассчитанной сервером, запись - ждать оплаты
    (pending) или быть failed для повторной попытки. Запись пользователя
    оплачивает только он сам.
    """
    record = await _get_record(session, kind, record_id)

    if record.user_id is not None and record.user_id != payer_id:
        raise PermissionDeniedError("pay for", kind, "record belongs to another user")

    if record.payment_status == PaymentStatus.completed:
        raise InvalidStateError(
            "Payment is already completed", {"kind": kind, "record_id": record_id}
        )

    expected = record_amount(record)
    if expected != amount:
        raise ValidationError(
            "Amount does not match the record",
            {"kind": kind, "record_id": record_id, "expected": expected},
        )
    return record


async def attach_payment_intent(
    session: AsyncSession, kind: str, record_id: int, provider_payment_id: str
) -> None:
    """Сохранить id платёжного намерения на записи"""

    async def _attach_operation(session: AsyncSession):
        record = await _get_record(session, kind, record_id, lock=True)
        if record.payment_status == PaymentStatus.completed:
            raise InvalidStateError(
                "Payment is already completed", {"kind": kind, "record_id": record_id}
            )
        record.provider_payment_id = provider_payment_id
        await session.flush()

    await with_db_transaction(session, _attach_operation)


async def _ensure_slot_still_free(session: AsyncSession, kind: str, record) -> None:
    """
    Failed-запись не держит места события и разовый взнос, поэтому перед
    failed->completed они проверяются заново.
    """
    if isinstance(record, Rsvp):
        event = (
            await session.execute(
                select(Event).where(Event.id == record.event_id).with_for_update()
            )
        ).scalar_one_or_none()
        if event is None or event.capacity is None:
            return
        sold = (
            await session.execute(
                select(func.coalesce(func.sum(Rsvp.tickets_purchased), 0)).where(
                    Rsvp.event_id == event.id,
                    Rsvp.id != record.id,
                    Rsvp.payment_status != PaymentStatus.failed,
                )
            )
        ).scalar()
        if int(sold or 0) + record.tickets_purchased > event.capacity:
            raise RefundRequiredError(kind, record.id, "event capacity is taken")

    elif isinstance(record, DuesPayment):
        dues = (
            await session.execute(
                select(ClubDues).where(ClubDues.id == record.dues_id).with_for_update()
            )
        ).scalar_one_or_none()
        if dues is None or dues.is_recurring:
            return
        other = await session.execute(
            select(DuesPayment.id).where(
                DuesPayment.dues_id == record.dues_id,
                DuesPayment.user_id == record.user_id,
                DuesPayment.id != record.id,
                DuesPayment.payment_status != PaymentStatus.failed,
            )
        )
        if other.scalars().first() is not None:
            raise RefundRequiredError(kind, record.id, "dues are already paid")


async def set_payment_status(
    session: AsyncSession,
    kind: str,
    record_id: int,
    status: PaymentStatus,
    provider_payment_id: Optional[str] = None,
):
    """
    Единственный путь записи completed/failed.

    Разрешены pending->completed, pending->failed и failed->completed;
    completed окончателен, повтор текущего статуса ничего не меняет.
    Переход пожертвования в failed вычитает его сумму из кампании,
    последующее completed возвращает её. Отказ по намерению, которое уже
    заменено другим, запись не трогает.
    """
    status = PaymentStatus(status)
    model = _record_model(kind)

    async def _set_status_operation(session: AsyncSession):
        record = await _get_record(session, kind, record_id, lock=True)
        current = record.payment_status

        if current == status:
            return record, None

        if (current, status) not in ALLOWED_TRANSITIONS:
            raise InvalidStateError(
                f"Payment status cannot change from {current.value} to {status.value}",
                {"kind": kind, "record_id": record_id},
            )

        if (
            status == PaymentStatus.failed
            and provider_payment_id
            and record.provider_payment_id
            and provider_payment_id != record.provider_payment_id
        ):
            raise InvalidStateError(
                "Failure refers to a superseded payment intent",
                {"kind": kind, "record_id": record_id},
            )

        if current == PaymentStatus.failed:
            await _ensure_slot_still_free(session, kind, record)

        values: Dict[str, Any] = {"payment_status": status}
        if provider_payment_id and not record.provider_payment_id:
            values["provider_payment_id"] = provider_payment_id
        if model is DuesPayment and status == PaymentStatus.completed:
            values["paid_at"] = utcnow()

        result = await session.execute(
            update(model)
            .where(model.id == record_id, model.payment_status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                "Payment status changed concurrently",
                {"kind": kind, "record_id": record_id},
            )

        if model is Donation:
            if status == PaymentStatus.failed:
                await adjust_campaign_amount(session, record.campaign_id, -record.amount)
            elif current == PaymentStatus.failed:
                await adjust_campaign_amount(session, record.campaign_id, record.amount)

        if record.user_id is not None:
            if status == PaymentStatus.completed:
                title, message = "Payment received", "Your payment has been confirmed."
            else:
                title, message = "Payment failed", "Your payment could not be processed."
            await notify(
                session, record.user_id, NotificationType.payment, title, message, record.id
            )

        return record, current

    record, previous = await with_db_transaction(session, _set_status_operation)
    await session.refresh(record)

    if previous is not None:
        log_business_event(
            "payment_status_changed",
            kind,
            record_id,
            {"from": previous.value, "to": status.value},
        )
    return record


async def _locate_record(
    session: AsyncSession, intent: Dict[str, Any]
) -> Optional[Tuple[str, int]]:
    """Найти запись по metadata намерения, иначе по сохранённому id"""
    metadata = intent.get("metadata") or {}
    kind = metadata.get("kind")
    record_id = metadata.get("recordId")
    if kind in PAYMENT_RECORDS and record_id is not None:
        try:
            return kind, int(record_id)
        except (TypeError, ValueError):
            logger.warning("Webhook metadata has a malformed recordId")

    intent_id = intent.get("id")
    if not intent_id:
        return None

    for kind, model in PAYMENT_RECORDS.items():
        result = await session.execute(
            select(model.id).where(model.provider_payment_id == intent_id)
        )
        found = result.scalar_one_or_none()
        if found is not None:
            return kind, found
    return None


async def apply_webhook_event(session: AsyncSession, event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Применить проверенное событие провайдера.

    Неизвестные события и записи подтверждаются (провайдер не должен
    повторять доставку) и логируются.
    """
    event_type = event.get("type")
    status = WEBHOOK_EVENTS.get(event_type)
    if status is None:
        logger.info(
            f"Ignoring webhook event {event_type}",
            extra={"event_type": event_type, "event_id": event.get("id")},
        )
        return {"handled": False}

    intent = (event.get("data") or {}).get("object") or {}
    located = await _locate_record(session, intent)
    if located is None:
        logger.warning(
            "Webhook event does not match any payment record",
            extra={"event_type": event_type, "payment_intent": intent.get("id")},
        )
        return {"handled": False}

    kind, record_id = located
    try:
        await set_payment_status(session, kind, record_id, status, intent.get("id"))
    except NotFoundError:
        logger.warning(
            "Webhook references a missing payment record",
            extra={"kind": kind, "record_id": record_id},
        )
        return {"handled": False, "kind": kind, "record_id": record_id}
    except RefundRequiredError as e:
        # Деньги списаны, а запись остаётся failed: нужен возврат
        logger.error(
            f"Payment needs a refund: {e.details['reason']}",
            extra={
                "kind": kind,
                "record_id": record_id,
                "payment_intent": intent.get("id"),
            },
        )
        error_tracker.track_error(e.error_code, e.message, e.details)
        log_business_event(
            "payment_refund_required",
            kind,
            record_id,
            {"payment_intent": intent.get("id"), "reason": e.details["reason"]},
        )
        return {"handled": False, "kind": kind, "record_id": record_id}
    except InvalidStateError as e:
        logger.warning(
            f"Webhook transition rejected: {e.message}",
            extra={"kind": kind, "record_id": record_id, "status": status.value},
        )
        return {"handled": False, "kind": kind, "record_id": record_id}

    return {
        "handled": True,
        "kind": kind,
        "record_id": record_id,
        "status": status.value,
    }
