"""Email notifications for appointment workflow events.

Sending is best effort: the dispatcher turns every delivery problem into a
``NotificationFailure`` record and never raises, so a committed status change
is never undone by a mail server.
"""

import asyncio
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Protocol

import structlog

from clinic_backend.config import Settings
from clinic_backend.core.exceptions import NotificationFailure
from clinic_backend.schemas.appointments import Appointment
from clinic_backend.schemas.users import Doctor, MedicalSpecialty, ProvisioningResult
from clinic_backend.services.status_transitions import SideEffect

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    """Outbound email transport."""

    async def send(self, to: str, subject: str, body: str) -> None:
        """Send one plain-text email, raising on failure."""
        ...


class LoggingNotifier:
    """Notifier that only logs messages. Used in development."""

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info("email_logged", to=to, subject=subject, body_length=len(body))


class SmtpNotifier:
    """Notifier sending through an SMTP server."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool,
        sender: str,
        timeout: float = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def _send_sync(self, to: str, subject: str, body: str) -> None:
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to

        if self.use_tls and self.port == 465:
            context = ssl.create_default_context()
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                self.host, self.port, context=context, timeout=self.timeout
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)

        with server:
            if self.use_tls and self.port != 465:
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password)
            server.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        await asyncio.to_thread(self._send_sync, to, subject, body)
        logger.info("email_sent", to=to, subject=subject)


def build_notifier(settings: Settings) -> Notifier:
    """Create the notifier selected by ``EMAIL_BACKEND``."""
    if settings.email_backend.lower() == "smtp":
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.mail_from,
        )
    return LoggingNotifier()


def _department_name(code: str) -> str:
    try:
        return MedicalSpecialty(code).display_name
    except ValueError:
        return code


class NotificationDispatcher:
    """Renders workflow side effects into emails and sends them."""

    def __init__(
        self,
        notifier: Notifier,
        timeout_seconds: float,
        clinic_name: str,
        contact_email: str,
        contact_phone: str,
        default_password: str,
    ):
        """Initialize dispatcher with a transport and clinic details."""
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds
        self.clinic_name = clinic_name
        self.contact_email = contact_email
        self.contact_phone = contact_phone
        self.default_password = default_password

    @classmethod
    def from_settings(cls, notifier: Notifier, settings: Settings) -> "NotificationDispatcher":
        """Build a dispatcher from application settings."""
        return cls(
            notifier=notifier,
            timeout_seconds=settings.notification_timeout_seconds,
            clinic_name=settings.clinic_name,
            contact_email=settings.clinic_contact_email,
            contact_phone=settings.clinic_contact_phone,
            default_password=settings.default_patient_password,
        )

    def _signature(self) -> str:
        return (
            f"\n\nFor any questions contact {self.contact_email} or {self.contact_phone}."
            f"\n\nBest regards,\n{self.clinic_name}"
        )

    def _appointment_summary(self, appointment: Appointment) -> str:
        lines = [
            f"Appointment: #{appointment.id}",
            f"Date: {appointment.appointment_date.isoformat()}",
            f"Time: {appointment.appointment_time.strftime('%H:%M')}",
            f"Department: {_department_name(appointment.department)}",
        ]
        return "\n".join(lines)

    def recipient(
        self,
        effect: SideEffect,
        appointment: Appointment,
        doctor: Doctor | None = None,
        account: ProvisioningResult | None = None,
    ) -> str | None:
        """Address an effect's email goes to, or None when there is nobody to tell."""
        if effect == SideEffect.NOTIFY_DOCTOR_ASSIGNED:
            return doctor.email if doctor else None
        if effect == SideEffect.NOTIFY_ACCOUNT_CREATED and account and account.email:
            return account.email
        return appointment.email or None

    def render(
        self,
        effect: SideEffect,
        appointment: Appointment,
        doctor: Doctor | None = None,
        reason: str | None = None,
        account: ProvisioningResult | None = None,
    ) -> tuple[str | None, str, str]:
        """
        Build recipient, subject and body for a side effect.

        Returns:
            Tuple of (recipient or None, subject, body)
        """
        summary = self._appointment_summary(appointment)
        greeting = f"Dear {appointment.full_name},\n\n"

        if effect == SideEffect.NOTIFY_BOOKING_RECEIVED:
            return (
                appointment.email,
                f"Appointment request received - {self.clinic_name}",
                greeting
                + "We have received your appointment request. Our staff will contact you "
                "to confirm it.\n\n"
                + summary
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_DOCTOR_ASSIGNED:
            name = doctor.full_name if doctor else "Doctor"
            return (
                doctor.email if doctor else None,
                f"New appointment awaiting your approval - {self.clinic_name}",
                f"Dear {name},\n\nYou have been assigned appointment #{appointment.id} "
                f"for {appointment.full_name}. Please accept or decline it.\n\n"
                + summary
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_APPOINTMENT_CONFIRMED:
            return (
                appointment.email,
                f"Appointment confirmed - {self.clinic_name}",
                greeting
                + "Your appointment has been confirmed by the doctor.\n\n"
                + summary
                + "\n\nPlease arrive 15 minutes before your appointment."
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_PAYMENT_REQUESTED:
            amount = (
                f"{appointment.payment_amount:,.0f}"
                if appointment.payment_amount is not None
                else "the requested amount"
            )
            return (
                appointment.email,
                f"Payment request for your appointment - {self.clinic_name}",
                greeting
                + f"Please complete the payment of {amount} for your appointment.\n\n"
                + summary
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_PAYMENT_CONFIRMED:
            amount_line = (
                f"\nAmount paid: {appointment.payment_amount:,.0f}"
                if appointment.payment_amount is not None
                else ""
            )
            return (
                appointment.email,
                f"Payment received - {self.clinic_name}",
                greeting
                + "We confirm that we have received the payment for your appointment.\n\n"
                + summary
                + amount_line
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_CANCELLATION:
            return (
                appointment.email,
                f"Appointment cancelled - {self.clinic_name}",
                greeting
                + "Your appointment has been cancelled.\n"
                + f"Reason: {reason or appointment.cancellation_reason or 'not specified'}\n\n"
                + summary
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_ACCOUNT_CREATED:
            username = account.email if account and account.email else appointment.email
            return (
                username,
                f"Your {self.clinic_name} account",
                greeting
                + "An account has been created for you so you can follow your appointments.\n"
                + f"- Username: {username}\n"
                + f"- Password: {self.default_password}\n\n"
                + "Please log in and change your password."
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_APPOINTMENT_REMINDER:
            return (
                appointment.email,
                f"Appointment reminder - {self.clinic_name}",
                greeting
                + "This is a reminder of your appointment tomorrow.\n\n"
                + summary
                + "\n\nPlease arrive 15 minutes before your appointment."
                + self._signature(),
            )

        if effect == SideEffect.NOTIFY_DETAILS_UPDATED:
            return (
                appointment.email,
                f"Appointment updated - {self.clinic_name}",
                greeting
                + "The details of your appointment have changed. The updated appointment is:\n\n"
                + summary
                + self._signature(),
            )

        raise ValueError(f"No email template for side effect {effect.value}")

    async def dispatch(
        self,
        appointment: Appointment,
        effects: list[SideEffect] | tuple[SideEffect, ...],
        doctor: Doctor | None = None,
        reason: str | None = None,
        account: ProvisioningResult | None = None,
    ) -> list[NotificationFailure]:
        """
        Send the emails for ``effects``, each independently.

        Args:
            appointment: Appointment after the committed change
            effects: Notification side effects to run
            doctor: Assigned doctor, for doctor-facing emails
            reason: Cancellation reason
            account: Provisioning outcome, for the welcome email

        Returns:
            One failure record per email that could not be sent
        """
        effects = [effect for effect in effects if effect != SideEffect.PROVISION_ACCOUNT]
        if not effects:
            return []

        results = await asyncio.gather(
            *(
                self._send_one(effect, appointment, doctor, reason, account)
                for effect in effects
            )
        )
        return [failure for failure in results if failure is not None]

    async def _send_one(
        self,
        effect: SideEffect,
        appointment: Appointment,
        doctor: Doctor | None,
        reason: str | None,
        account: ProvisioningResult | None,
    ) -> NotificationFailure | None:
        to = self.recipient(effect, appointment, doctor, account)
        if not to:
            logger.info(
                "notification_skipped_no_recipient",
                appointment_id=appointment.id,
                effect=effect.value,
            )
            return None

        try:
            _, subject, body = self.render(effect, appointment, doctor, reason, account)
        except Exception as e:
            logger.error(
                "notification_render_failed",
                appointment_id=appointment.id,
                effect=effect.value,
                error=str(e),
            )
            return NotificationFailure(appointment.id, effect.value, f"{effect.value}: {e}")

        try:
            await asyncio.wait_for(
                self.notifier.send(to, subject, body),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "notification_timed_out",
                appointment_id=appointment.id,
                effect=effect.value,
                timeout=self.timeout_seconds,
            )
            return NotificationFailure(
                appointment.id,
                effect.value,
                f"{effect.value}: email not sent within {self.timeout_seconds}s",
            )
        except Exception as e:
            logger.warning(
                "notification_failed",
                appointment_id=appointment.id,
                effect=effect.value,
                error=str(e),
            )
            return NotificationFailure(appointment.id, effect.value, f"{effect.value}: {e}")

        logger.info("notification_sent", appointment_id=appointment.id, effect=effect.value)
        return None
