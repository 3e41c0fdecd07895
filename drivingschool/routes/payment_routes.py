import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from drivingschool.auth.dependencies import get_current_user, get_storage, require_admin
from drivingschool.core import config
from drivingschool.models.user import User
from drivingschool.services.payments import (
    WebhookSignatureError,
    get_stripe_client,
    to_minor_units,
    verify_webhook_signature,
)
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['payments'])


class CreatePaymentIntentRequest(BaseModel):
    course_id: str


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_id: str


class PaymentResponse(BaseModel):
    id: str
    course_id: str
    student_id: str
    amount: float
    currency: str
    status: str
    stripe_payment_intent_id: str | None = None
    paid_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class AdminPaymentResponse(PaymentResponse):
    course_name: str | None = None
    student_email: str | None = None
    student_name: str | None = None


@router.get('/payments', response_model=list[PaymentResponse])
def list_my_payments(current_user: User = Depends(get_current_user), storage: DatabaseStorage = Depends(get_storage)):
    return storage.get_payments_by_student(current_user.id)


@router.post('/create-payment-intent', response_model=PaymentIntentResponse)
def create_payment_intent(
    data: CreatePaymentIntentRequest,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if not config.payments_enabled():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Payments are not configured.',
        )

    course = storage.get_course(data.course_id)
    if course is None or not course.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Course not found')
    if course.price is None or course.price <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Course has no price')
    if storage.get_enrollment(course.id, current_user.id) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already enrolled in this course')

    intent = get_stripe_client().create_payment_intent(
        amount=to_minor_units(course.price),
        currency=config.PAYMENT_CURRENCY,
        metadata={'course_id': course.id, 'student_id': current_user.id},
    )
    payment = storage.create_payment(
        course_id=course.id,
        student_id=current_user.id,
        amount=course.price,
        currency=config.PAYMENT_CURRENCY,
        status='pending',
        stripe_payment_intent_id=intent['id'],
        stripe_client_secret=intent['client_secret'],
    )
    logger.info('Created payment %s for student %s in course %s', payment.id, current_user.id, course.id)
    return PaymentIntentResponse(client_secret=intent['client_secret'], payment_id=payment.id)


def handle_payment_succeeded(storage: DatabaseStorage, intent: dict) -> None:
    payment = storage.get_payment_by_intent_id(intent.get('id', ''))
    if payment is None:
        logger.warning('Received success for unknown payment intent %s', intent.get('id'))
        return

    if payment.status != 'paid':
        storage.update_payment(payment, {'status': 'paid', 'paid_at': datetime.now()})
        logger.info('Payment %s marked paid', payment.id)

    if storage.get_enrollment(payment.course_id, payment.student_id) is None:
        storage.create_enrollment(payment.course_id, payment.student_id)
        logger.info('Enrolled student %s in course %s after payment', payment.student_id, payment.course_id)


def handle_payment_failed(storage: DatabaseStorage, intent: dict) -> None:
    payment = storage.get_payment_by_intent_id(intent.get('id', ''))
    if payment is None:
        logger.warning('Received failure for unknown payment intent %s', intent.get('id'))
        return
    if payment.status == 'paid':
        return
    storage.update_payment(payment, {'status': 'failed'})
    logger.info('Payment %s marked failed', payment.id)


@router.post('/webhooks/stripe')
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias='Stripe-Signature'),
    storage: DatabaseStorage = Depends(get_storage),
):
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Missing payment signature')

    payload = await request.body()
    try:
        verify_webhook_signature(payload, stripe_signature, config.STRIPE_WEBHOOK_SECRET)
        event = json.loads(payload)
    except WebhookSignatureError as exc:
        logger.warning('Rejected webhook: %s', exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid payment signature') from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid webhook payload') from exc

    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid webhook payload')

    event_type = event.get('type')
    data = event.get('data')
    intent = data.get('object') if isinstance(data, dict) else None
    if not isinstance(intent, dict):
        logger.warning('Ignoring webhook event %s without a payment object', event_type)
    elif event_type == 'payment_intent.succeeded':
        handle_payment_succeeded(storage, intent)
    elif event_type == 'payment_intent.payment_failed':
        handle_payment_failed(storage, intent)
    else:
        logger.debug('Ignoring webhook event %s', event_type)

    return {'received': True}


@router.get('/admin/payments', response_model=list[AdminPaymentResponse])
def list_all_payments(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    payments = storage.get_all_payments()
    courses = storage.get_courses_by_ids({payment.course_id for payment in payments})
    students = storage.get_users_by_ids({payment.student_id for payment in payments})

    items = []
    for payment in payments:
        item = AdminPaymentResponse.model_validate(payment)
        course = courses.get(payment.course_id)
        student = students.get(payment.student_id)
        item.course_name = course.name if course else None
        item.student_email = student.email if student else None
        item.student_name = student.full_name if student else None
        items.append(item)
    return items
