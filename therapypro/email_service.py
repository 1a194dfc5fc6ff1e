"""
Email Service using Resend
Templates are written in MJML and compiled to responsive HTML before sending
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, FRONTEND_URL, RESEND_API_KEY
from .email_templates import (
    payout_requested_template,
    payout_sent_template,
    security_notification_template,
    session_reminder_template,
    twofa_code_template,
    twofa_reset_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    """Raised when an email cannot be handed to the provider"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {str(e)}") from e

    if isinstance(result, dict):
        if result.get("errors"):
            logger.warning(f"MJML compilation warnings: {result['errors']}")
        return result.get("html", "")
    return str(result)


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (compiled to HTML here)
        from_address: Optional custom from address

    Returns:
        Resend response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ RESEND_API_KEY missing - email service not configured")
        raise EmailDeliveryError("Email service not configured")

    recipients = [to] if isinstance(to, str) else to
    html_content = compile_mjml_to_html(mjml_content)

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info("✅ Email sent successfully via Resend")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e


async def send_twofa_code_email(to: str, code: str) -> dict:
    return await send_email(
        to=to,
        subject="Seu código de verificação - TherapyPro",
        mjml_content=twofa_code_template(code),
    )


async def send_twofa_reset_email(to: str, token: str) -> dict:
    reset_link = f"{FRONTEND_URL}/reset-2fa?token={token}"
    return await send_email(
        to=to,
        subject="Redefinição de 2FA - TherapyPro",
        mjml_content=twofa_reset_template(reset_link),
    )


async def send_security_notification(to: str, event: str, details: str) -> dict:
    return await send_email(
        to=to,
        subject=f"Alerta de segurança: {event}",
        mjml_content=security_notification_template(event, details),
    )


async def send_payout_sent_email(to: str, user_name: str, amount: str, method: str) -> dict:
    return await send_email(
        to=to,
        subject="Sua comissão foi paga - TherapyPro",
        mjml_content=payout_sent_template(user_name, amount, method),
    )


async def send_payout_requested_email(to: str, user_name: str, amount: str) -> dict:
    return await send_email(
        to=to,
        subject="Solicitação de saque recebida - TherapyPro",
        mjml_content=payout_requested_template(user_name, amount),
    )


async def send_session_reminder_email(to: str, user_name: str, sessions: list[dict]) -> dict:
    return await send_email(
        to=to,
        subject="Lembrete: suas sessões de amanhã",
        mjml_content=session_reminder_template(user_name, sessions),
    )
