"""Simulated payments. A payment settles the task and marks it completed."""

from __future__ import annotations

import logging

from homeeasy.domain import User
from homeeasy.errors import Forbidden, InvalidArgument, NotFound
from homeeasy.ids import payment_intent_id
from homeeasy.models import PaymentListResponse, PaymentRequest, PaymentResponse
from homeeasy.services.views import payment_view
from homeeasy.state import AppState
from homeeasy.storage.base import FindOptions

logger = logging.getLogger("homeeasy.payments")

PAYMENT_KINDS = ("all", "sent", "received")


async def create_payment(services: AppState, payer: User, req: PaymentRequest) -> PaymentResponse:
    if req.amount <= 0:
        raise InvalidArgument("Payment amount must be positive")
    task = await services.store.get_task(req.task_id)
    if task is None:
        raise NotFound("Task not found")
    if task.posted_by != payer.id:
        raise Forbidden("Only the task owner can pay for this task")

    payment, task = await services.store.create_payment(
        {
            "task_id": task.id,
            "payer_id": payer.id,
            "amount": req.amount,
            "payment_intent_id": payment_intent_id(),
        }
    )
    logger.info("Payment %s of %.2f for task %s", payment.id, payment.amount, task.id)

    services.notifier.emit_to_user(
        payment.payee_id,
        "payment_received_notification",
        {
            "task_id": task.id,
            "task_title": task.title,
            "payment_id": payment.id,
            "amount": payment.amount,
            "payer_name": payer.display_name,
        },
    )
    return payment_view(payment)


async def payment_history(
    services: AppState, user: User, kind: str = "all", page: int = 1, limit: int = 20
) -> PaymentListResponse:
    if kind not in PAYMENT_KINDS:
        raise InvalidArgument(f"kind must be one of {', '.join(PAYMENT_KINDS)}")
    result = await services.store.find_payments(user.id, kind, FindOptions(page=page, limit=limit))
    return PaymentListResponse(
        payments=[payment_view(p) for p in result.items],
        total=result.total,
        page=page,
        limit=limit,
    )
