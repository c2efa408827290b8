"""
Async-safe email sender.

smtplib is blocking; every send is wrapped in asyncio.get_running_loop().run_in_executor
so that the FastAPI event loop is never blocked waiting for SMTP.
"""
import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from app.core.config import settings

logger = logging.getLogger("santa.mailer")

STATUS_SUBJECTS = {
    "APPROVED": "approved",
    "ORDERED": "ordered",
    "SHIPPED": "on its way",
    "DELIVERED": "delivered",
    "CANCELLED": "cancelled",
    "FAILED": "could not be fulfilled",
}


def _get_base_html_template(
    title: str,
    content: str,
    button_text: Optional[str] = None,
    button_link: Optional[str] = None,
) -> str:
    """
    Base HTML layout for Spirit of Santa emails.

    All user-provided values are escaped with html.escape().
    """
    safe_title = html.escape(title)
    safe_content = html.escape(content).replace("\n", "<br>")

    button_html = ""
    if button_text and button_link:
        safe_button_text = html.escape(button_text)
        safe_button_link = button_link.replace('"', '&quot;').replace("'", '&#x27;')
        button_html = f'''
        <div style="text-align: center; margin: 30px 0;">
            <a href="{safe_button_link}" style="display: inline-block; padding: 14px 28px; background-color: #b91c1c; color: #ffffff; text-decoration: none; border-radius: 8px; font-weight: 600; font-size: 16px;">
                {safe_button_text}
            </a>
        </div>'''

    return f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{safe_title}</title>
</head>
<body style="margin: 0; padding: 0; background-color: #f3f4f6; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <tr>
            <td style="background-color: #ffffff; border-radius: 16px; padding: 40px;">
                <div style="text-align: center; margin-bottom: 30px;">
                    <h1 style="margin: 0; font-size: 28px; color: #b91c1c; font-weight: 700;">
                        🎅 Spirit of Santa
                    </h1>
                </div>
                <h2 style="margin: 0 0 20px 0; font-size: 22px; color: #1f2937; text-align: center;">
                    {safe_title}
                </h2>
                <div style="color: #4b5563; font-size: 16px; line-height: 1.6;">
                    {safe_content}
                </div>
                {button_html}
                <div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; text-align: center;">
                    <p style="margin: 0; color: #9ca3af; font-size: 12px;">
                        You can turn these notifications off in your gift settings.
                    </p>
                </div>
            </td>
        </tr>
    </table>
</body>
</html>'''


def _build_message(subject: str, text_body: str, html_body: str, to_email: str) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.smtp_from_email
    message["To"] = to_email
    message.attach(MIMEText(text_body, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))
    return message


def _send_sync(msg: MIMEMultipart) -> None:
    """Blocking SMTP send – must be run in an executor."""
    if settings.smtp_use_tls:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)
    else:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)


async def _send_async(msg: MIMEMultipart) -> None:
    """Run blocking SMTP send in a thread pool without blocking the event loop."""
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _send_sync, msg)
        logger.info("Email sent to %s subject=%r", msg["To"], msg["Subject"])
    except Exception:
        logger.exception("Failed to send email to %s subject=%r", msg["To"], msg["Subject"])


def _dispatch(to_email: str | None, subject: str, text_body: str, button_text: str, button_link: str) -> bool:
    """Schedule a send; returns False when nothing was scheduled."""
    if not to_email:
        return False
    if not settings.email_notifications_enabled:
        logger.info("Email notifications disabled. Skipping email to %s: %s", to_email, subject)
        return False
    if not settings.smtp_host:
        logger.info("SMTP not configured. Email for %s would be sent: %s", to_email, subject)
        return False
    html_body = _get_base_html_template(subject, text_body, button_text, button_link)
    msg = _build_message(subject, f"{text_body}\n\n{button_link}", html_body, to_email)
    asyncio.ensure_future(_send_async(msg))
    return True


def send_gift_request_email(
    to_email: str | None,
    child_name: str,
    gift_title: str,
    magic_points: int,
    requires_approval: bool,
) -> bool:
    link = f"{settings.frontend_url}/parent/gift-approvals"
    if requires_approval:
        subject = f"{child_name} asked for a gift"
        body = (
            f"{child_name} would like \"{gift_title}\" for {magic_points} magic points.\n"
            "The request is waiting for your approval."
        )
    else:
        subject = f"{child_name}'s gift was approved"
        body = (
            f"\"{gift_title}\" was approved automatically and "
            f"{magic_points} magic points were spent."
        )
    return _dispatch(to_email, subject, body, "Review gift requests", link)


def send_gift_status_email(
    to_email: str | None,
    child_name: str,
    gift_title: str,
    status: str,
    tracking_number: str | None = None,
) -> bool:
    label = STATUS_SUBJECTS.get(status, status.lower())
    subject = f"{child_name}'s gift is {label}"
    body = f"\"{gift_title}\" for {child_name} is {label}."
    if tracking_number:
        body += f"\nTracking number: {tracking_number}"
    return _dispatch(to_email, subject, body, "See gift history", f"{settings.frontend_url}/children")


def send_special_request_email(
    to_email: str | None,
    child_name: str,
    kind: str,
    gift_title: str,
    magic_points: int,
) -> bool:
    what = "an early gift" if kind == "early_gift" else "a gift for a friend"
    subject = f"{child_name} asked for {what}"
    body = (
        f"{child_name} asked for {what}: \"{gift_title}\" ({magic_points} magic points).\n"
        "Points are only spent if you approve."
    )
    return _dispatch(to_email, subject, body, "Review requests", f"{settings.frontend_url}/parent/dashboard")
