"""Templated patient/provider emails.

Delivery goes through an HTTP email API. Callers treat every failure here as
non-fatal: a booking that committed stays committed.
"""

import logging
import re
from typing import Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookthevisit.core import config
from bookthevisit.core.errors import EmailDeliveryError
from bookthevisit.core.timezones import ensure_utc, slot_label, utc_to_local
from bookthevisit.models.email_template import EmailTemplate

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'{{\s*(\w+)\s*}}')

DEFAULT_TEMPLATES = {
    'confirmation': (
        'Your appointment with {{office_name}} is confirmed',
        'Hi {{patient_name}},\n\nYour {{service}} is booked for {{date}} at {{time}}.\n'
        'Need to change it? {{manage_link}}\n',
    ),
    'update': (
        'Your appointment with {{office_name}} was updated',
        'Hi {{patient_name}},\n\nYour {{service}} is now on {{date}} at {{time}}.\n'
        'Manage your appointment: {{manage_link}}\n',
    ),
    'cancellation': (
        'Your appointment with {{office_name}} was cancelled',
        'Hi {{patient_name}},\n\nYour {{service}} on {{date}} at {{time}} has been cancelled.\n',
    ),
    'reminder': (
        'Reminder: {{service}} on {{date}} at {{time}}',
        'Hi {{patient_name}},\n\nThis is a reminder of your {{service}} on {{date}} at {{time}}.\n'
        'Manage your appointment: {{manage_link}}\n',
    ),
    'provider_confirmation': (
        'New booking: {{patient_name}} on {{date}} at {{time}}',
        '{{patient_name}} ({{patient_email}}, {{patient_phone}}) booked {{service}} '
        'on {{date}} at {{time}}.\n\nNote: {{patient_note}}\n',
    ),
    'provider_update': (
        'Rescheduled: {{patient_name}} on {{date}} at {{time}}',
        '{{patient_name}} moved their {{service}} to {{date}} at {{time}}.\n',
    ),
    'provider_cancellation': (
        'Cancelled: {{patient_name}} on {{date}} at {{time}}',
        '{{patient_name}} cancelled their {{service}} on {{date}} at {{time}}.\n',
    ),
}


class EmailSender(Protocol):
    def send(self, template_type: str, to: str, provider_id: int, data: dict[str, str]) -> None:
        ...


def fill_placeholders(template: str | None, data: dict[str, str]) -> str:
    if not template:
        return ''
    return PLACEHOLDER_PATTERN.sub(lambda match: str(data.get(match.group(1)) or ''), template)


def manage_link(provider, appointment) -> str:
    return (
        f'https://{provider.subdomain}.{config.BOOKING_SITE_DOMAIN}'
        f'/manage/{appointment.id}?token={appointment.manage_token}'
    )


def build_appointment_email_data(provider, patient, service, appointment) -> dict[str, str]:
    local_start = utc_to_local(ensure_utc(appointment.start_time), provider.timezone)
    return {
        'patient_name': f'{patient.first_name} {patient.last_name}' if patient else '',
        'patient_email': (patient.email or '') if patient else '',
        'patient_phone': (patient.cell_phone or '') if patient else '',
        'patient_note': appointment.patient_note or '',
        'office_name': provider.office_name or 'Your Provider',
        'provider_phone': provider.phone or '',
        'service': service.name if service else 'Appointment',
        'date': f'{local_start:%B} {local_start.day}, {local_start.year}',
        'time': slot_label(local_start),
        'appointment_id': str(appointment.id),
        'manage_link': manage_link(provider, appointment),
    }


class TemplatedEmailSender:
    def __init__(self, db: Session, api_url: str | None = None, client: httpx.Client | None = None):
        self.db = db
        self.api_url = api_url if api_url is not None else config.EMAIL_API_URL
        self.client = client

    def load_template(self, template_type: str, provider_id: int) -> tuple[str, str]:
        try:
            template = self.db.query(EmailTemplate).filter(
                EmailTemplate.provider_id == provider_id,
                EmailTemplate.template_type == template_type,
            ).first()
        except SQLAlchemyError as exc:
            raise EmailDeliveryError(f'Could not load {template_type} template.') from exc

        if template is not None:
            return template.subject, template.body
        if template_type in DEFAULT_TEMPLATES:
            return DEFAULT_TEMPLATES[template_type]
        raise EmailDeliveryError(f'No {template_type} template configured.')

    def send(self, template_type: str, to: str, provider_id: int, data: dict[str, str]) -> None:
        subject, body = self.load_template(template_type, provider_id)
        payload = {
            'to': to,
            'subject': fill_placeholders(subject, data),
            'text': fill_placeholders(body, data),
        }

        if not config.SEND_EMAILS:
            logger.info('Email sending disabled; skipped %s email to %s', template_type, to)
            return
        if not self.api_url:
            raise EmailDeliveryError('EMAIL_API_URL is not configured.')

        try:
            if self.client is not None:
                response = self.client.post(self.api_url, json=payload, timeout=config.EMAIL_TIMEOUT_SECONDS)
            else:
                response = httpx.post(self.api_url, json=payload, timeout=config.EMAIL_TIMEOUT_SECONDS)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f'{template_type} email to {to} failed: {exc}') from exc

        logger.info('%s email sent to %s', template_type, to)


def send_appointment_emails(
    sender: EmailSender | None,
    provider,
    patient,
    service,
    appointment,
    patient_template: str | None,
    provider_template: str | None,
) -> list[str]:
    """Send the patient and provider copies. Returns the failures instead of raising."""
    if sender is None:
        return []

    data = build_appointment_email_data(provider, patient, service, appointment)
    deliveries = []
    if patient_template and patient is not None and patient.email and patient.allow_email:
        deliveries.append((patient_template, patient.email))
    if provider_template and provider.email:
        deliveries.append((provider_template, provider.email))

    errors: list[str] = []
    for template_type, to in deliveries:
        try:
            sender.send(template_type, to, provider.id, data)
        except EmailDeliveryError as exc:
            logger.warning('Appointment %s: %s', appointment.id, exc.message)
            errors.append(exc.message)

    return errors
