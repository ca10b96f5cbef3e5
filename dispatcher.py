"""Notification dispatcher for Necessity Reminder.

This module turns a claimed reminder into a rendered notification and hands it
to a delivery channel. Delivery problems never escape from here: every send
ends in a DispatchResult, so one failing or hanging send cannot abort or stall
the rest of a batch.

Channels:
- EmailChannel: SMTP e-mail (plain text + HTML)
- WebhookChannel: JSON POST to an HTTP endpoint
- LogChannel: only logs the notification (no transport configured)
"""

import asyncio
import html
import smtplib
import ssl
from dataclasses import dataclass, asdict
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import List, Optional, Protocol, Sequence

import httpx

from clock import ensure_utc
from crud import DueReminder
from database import CategoryEnum
from exceptions import DeliveryFailure
from logger_config import setup_logger

logger = setup_logger(__name__, 'scheduler.log')

CATEGORY_EMOJIS = {
    CategoryEnum.MEDICINE: "💊",
    CategoryEnum.WORKOUT: "🏋️",
    CategoryEnum.MEETING: "📅",
    CategoryEnum.OTHER: "📌",
}

DEFAULT_DASHBOARD_URL = "http://localhost/necessity-reminder/dashboard.html"
DEFAULT_LOGIN_URL = "http://localhost/necessity-reminder/login.html"


@dataclass
class Notification:
    """A rendered notification, independent of how it is delivered."""
    subject: str
    text: str
    html: str
    reminder_id: Optional[int] = None
    category: str = ""
    title: str = ""
    due_at: str = ""


@dataclass
class DispatchResult:
    reminder_id: Optional[int]
    delivered: bool
    error: Optional[str] = None


class DeliveryChannel(Protocol):
    """Anything that can deliver a notification to one recipient.

    ``send`` returns on success and raises DeliveryFailure otherwise.
    """

    name: str

    async def send(self, recipient_address: str, recipient_name: str, notification: Notification) -> None:
        ...


def format_due_time(value) -> str:
    return ensure_utc(value).strftime("%a, %d %b %Y %H:%M UTC")


def category_label(category: CategoryEnum) -> str:
    return f"{CATEGORY_EMOJIS.get(category, '📌')} {category.value.upper()}"


def render_notification(
    title: str,
    category: CategoryEnum,
    reminder_time,
    notes: Optional[str],
    recipient_name: str,
    reminder_id: Optional[int] = None,
    dashboard_url: str = DEFAULT_DASHBOARD_URL
) -> Notification:
    """Render the subject, plain-text and HTML bodies for one reminder."""
    label = category_label(category)
    due_at = format_due_time(reminder_time)

    text_lines = [
        f"Hi {recipient_name},",
        "",
        "This is a friendly reminder about:",
        "",
        f"  [{label}] {title}",
        f"  Scheduled Time: {due_at}",
    ]
    if notes:
        text_lines.append(f"  Notes: {notes}")
    text_lines += [
        "",
        "Don't forget to complete this task!",
        f"View your dashboard: {dashboard_url}",
    ]

    notes_html = ""
    if notes:
        notes_html = (
            '<div style="background:#fff3cd;padding:15px;border-radius:5px;'
            'margin-top:15px;border-left:3px solid #ffc107;">'
            f"<strong>📝 Notes:</strong><br>{html.escape(notes)}</div>"
        )

    body_html = f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="background:#667eea;color:white;padding:30px;text-align:center;border-radius:10px 10px 0 0;">⏰ Reminder Alert!</h1>
    <p>Hi <strong>{html.escape(recipient_name)}</strong>,</p>
    <p>This is a friendly reminder about:</p>
    <div style="background:white;padding:20px;border-radius:8px;border-left:4px solid #667eea;margin:20px 0;">
      <span style="padding:5px 15px;background:#667eea;color:white;border-radius:20px;font-size:14px;">{label}</span>
      <h2 style="margin: 15px 0;">{html.escape(title)}</h2>
      <p style="color:#666;">⏰ Scheduled Time: {due_at}</p>
      {notes_html}
    </div>
    <p>Don't forget to complete this task!</p>
    <p style="text-align:center;"><a href="{html.escape(dashboard_url)}">View Dashboard</a></p>
    <p style="text-align:center;color:#999;font-size:12px;">You received this email because you set up a reminder in Necessity Reminder app.</p>
  </div>
</body>
</html>
"""

    return Notification(
        subject=f"⏰ Reminder: {title}",
        text="\n".join(text_lines),
        html=body_html,
        reminder_id=reminder_id,
        category=category.value,
        title=title,
        due_at=due_at,
    )


def render_due_reminder(due: DueReminder, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> Notification:
    reminder = due.reminder
    return render_notification(
        title=reminder.title,
        category=reminder.category,
        reminder_time=reminder.reminder_time,
        notes=reminder.notes,
        recipient_name=due.owner_name,
        reminder_id=reminder.reminder_id,
        dashboard_url=dashboard_url,
    )


def render_welcome(full_name: str, login_url: str = DEFAULT_LOGIN_URL) -> Notification:
    """Render the one-off greeting sent after a successful signup."""
    features = [
        "💊 Set medicine reminders",
        "🏋️ Track your workouts",
        "📅 Never miss meetings",
        "📌 Manage all your important tasks",
    ]
    text = "\n".join(
        [f"Hi {full_name}!", "", "Thank you for signing up! Your account has been created successfully.",
         "", "You can now:"]
        + [f"  - {item}" for item in features]
        + ["", f"Login now: {login_url}"]
    )
    items_html = "".join(f"<li>{item}</li>" for item in features)
    body_html = f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background:#667eea;color:white;padding:30px;text-align:center;">
    <h1>Welcome to Necessity Reminder! 🎉</h1>
  </div>
  <div style="padding:30px;background:#f9f9f9;">
    <h2>Hi {html.escape(full_name)}!</h2>
    <p>Thank you for signing up! Your account has been created successfully.</p>
    <p>You can now:</p>
    <ul>{items_html}</ul>
    <p style="text-align:center;margin-top:30px;"><a href="{html.escape(login_url)}">Login Now</a></p>
  </div>
</body>
</html>
"""
    return Notification(
        subject="🎉 Welcome to Necessity Reminder!",
        text=text,
        html=body_html,
        title="Welcome",
    )


# ==================== CHANNELS ====================

class EmailChannel:
    """SMTP delivery. STARTTLS by default, implicit SSL on port 465."""

    name = "email"

    def __init__(self, host: str, port: int, username: str, password: str,
                 sender: str = "", timeout: float = 30.0):
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _build_message(self, recipient_address: str, recipient_name: str, notification: Notification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.subject
        # a bare display name is not a valid From; pair it with the login address
        if self.sender and "@" in self.sender:
            msg["From"] = self.sender
        else:
            msg["From"] = formataddr((self.sender or "Necessity Reminder", self.username))
        msg["To"] = formataddr((recipient_name, recipient_address))
        msg.attach(MIMEText(notification.text, "plain", "utf-8"))
        msg.attach(MIMEText(notification.html, "html", "utf-8"))
        return msg

    def _send_sync(self, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                server.login(self.username, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                server.login(self.username, self.password)
                server.send_message(msg)

    async def send(self, recipient_address: str, recipient_name: str, notification: Notification) -> None:
        if not self.username or not self.password:
            raise DeliveryFailure("SMTP credentials not configured")

        msg = self._build_message(recipient_address, recipient_name, notification)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailure(f"SMTP error: {e}") from e


class WebhookChannel:
    """POSTs the rendered notification as JSON to a configured URL."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(self, recipient_address: str, recipient_name: str, notification: Notification) -> None:
        if not self.url:
            raise DeliveryFailure("WEBHOOK_URL not configured")

        payload = {
            "recipient": {"address": recipient_address, "name": recipient_name},
            "notification": asdict(notification),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise DeliveryFailure(f"Timeout posting to {self.url}") from e
        except httpx.RequestError as e:
            raise DeliveryFailure(f"Network error posting to {self.url}: {e}") from e

        if response.status_code >= 300:
            raise DeliveryFailure(
                f"Webhook rejected notification. Status: {response.status_code}, Response: {response.text}"
            )


class LogChannel:
    """Writes notifications to the log instead of delivering them."""

    name = "log"

    async def send(self, recipient_address: str, recipient_name: str, notification: Notification) -> None:
        logger.info(f"[LOG CHANNEL] To {recipient_name} <{recipient_address}>: {notification.subject}")


def build_channel(settings) -> DeliveryChannel:
    """Create the channel selected by ``settings.DELIVERY_CHANNEL``."""
    channel = settings.DELIVERY_CHANNEL.lower()
    if channel == "email":
        if not settings.email_configured:
            logger.warning("Email notifications not configured (SMTP_USERNAME/SMTP_PASSWORD), using log channel")
            return LogChannel()
        return EmailChannel(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            sender=settings.EMAIL_FROM,
            timeout=settings.DELIVERY_TIMEOUT_SECONDS,
        )
    if channel == "webhook":
        return WebhookChannel(settings.WEBHOOK_URL, timeout=settings.DELIVERY_TIMEOUT_SECONDS)
    if channel == "log":
        return LogChannel()
    raise ValueError(f"Unknown DELIVERY_CHANNEL '{settings.DELIVERY_CHANNEL}' (expected email, webhook or log)")


# ==================== DISPATCHER ====================

class NotificationDispatcher:
    """Sends one notification per claimed reminder.

    Args:
        channel: Delivery channel
        timeout_seconds: Upper bound for one send; a timeout is a failed delivery
        concurrency: Maximum number of sends in flight during a batch
        dashboard_url: Link rendered into the notification
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        timeout_seconds: float = 30.0,
        concurrency: int = 5,
        dashboard_url: str = DEFAULT_DASHBOARD_URL
    ):
        self.channel = channel
        self.timeout_seconds = timeout_seconds
        self.concurrency = max(1, int(concurrency))
        self.dashboard_url = dashboard_url

    async def send(self, recipient_address: str, recipient_name: str, notification: Notification) -> DispatchResult:
        """Deliver an already rendered notification and report the outcome."""
        reminder_id = notification.reminder_id
        what = f"reminder {reminder_id}" if reminder_id is not None else f"\"{notification.subject}\""
        try:
            await asyncio.wait_for(
                self.channel.send(recipient_address, recipient_name, notification),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"Timeout after {self.timeout_seconds}s delivering {what} to {recipient_address}")
            return DispatchResult(reminder_id, False, "timeout")
        except DeliveryFailure as e:
            logger.warning(f"Delivery failed for {what} to {recipient_address}: {e}")
            return DispatchResult(reminder_id, False, str(e))
        except Exception as e:
            logger.error(f"Unexpected error delivering {what}: {e}", exc_info=True)
            return DispatchResult(reminder_id, False, str(e))

        logger.info(f"✅ Notification sent to {recipient_address} for {what}")
        return DispatchResult(reminder_id, True)

    async def dispatch(self, due: DueReminder) -> DispatchResult:
        """Render and deliver the notification for one claimed reminder."""
        try:
            notification = render_due_reminder(due, self.dashboard_url)
        except Exception as e:
            logger.error(f"Could not render reminder {due.reminder.reminder_id}: {e}", exc_info=True)
            return DispatchResult(due.reminder.reminder_id, False, str(e))
        return await self.send(due.owner_email, due.owner_name, notification)

    async def dispatch_batch(self, items: Sequence[DueReminder]) -> List[DispatchResult]:
        """Dispatch every item, at most ``concurrency`` at a time. Never raises."""
        if not items:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(due: DueReminder) -> DispatchResult:
            async with semaphore:
                return await self.dispatch(due)

        return list(await asyncio.gather(*(_bounded(due) for due in items)))
