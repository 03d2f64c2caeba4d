"""
Transactional email notifications.

Delivery is fire-and-forget: callers dispatch after their transaction commits
and never wait on, or fail because of, the email provider.
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple, Union

import resend
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import Settings, settings

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "emails"


class EmailTemplate(str, Enum):
    ASSESSOR_ASSIGNED = "assessor_assigned"
    ASSESSMENT_SUBMITTED = "assessment_submitted"
    ASSESSMENT_APPROVED = "assessment_approved"
    ASSESSMENT_REJECTED = "assessment_rejected"
    ORGANIC_SUBMISSION = "organic_submission"
    EMAIL_VERIFICATION = "email_verification"
    PORTAL_ACCESS = "portal_access"
    PORTAL_OTP = "portal_otp"


SUBJECTS = {
    EmailTemplate.ASSESSOR_ASSIGNED: "New lead assigned: {company_name}",
    EmailTemplate.ASSESSMENT_SUBMITTED: "Assessment submitted for review: {company_name}",
    EmailTemplate.ASSESSMENT_APPROVED: "IPO readiness assessment approved: {company_name}",
    EmailTemplate.ASSESSMENT_REJECTED: "Assessment returned with comments: {company_name}",
    EmailTemplate.ORGANIC_SUBMISSION: "New company submission: {company_name}",
    EmailTemplate.EMAIL_VERIFICATION: "Verify your email address",
    EmailTemplate.PORTAL_ACCESS: "Your IPO readiness report portal",
    EmailTemplate.PORTAL_OTP: "Your login code",
}


class EmailSink(Protocol):
    async def send(self, to: List[str], subject: str, html: str) -> None:
        """Deliver one message or raise."""


class ResendEmailSink:
    """Sends through the Resend API. The SDK is synchronous, so it runs in a thread."""

    def __init__(self, api_key: str, sender: str):
        self.sender = sender
        resend.api_key = api_key

    async def send(self, to: List[str], subject: str, html: str) -> None:
        params = {"from": self.sender, "to": to, "subject": subject, "html": html}
        response = await asyncio.to_thread(resend.Emails.send, params)
        logger.debug("email_sent", provider_id=response.get("id") if response else None)


class LogEmailSink:
    """Development sink used when no API key is configured."""

    async def send(self, to: List[str], subject: str, html: str) -> None:
        logger.info("email_not_sent_no_provider", to=to, subject=subject)


def build_email_sink(config: Settings = settings) -> EmailSink:
    if config.RESEND_API_KEY:
        return ResendEmailSink(config.RESEND_API_KEY, config.EMAIL_FROM)
    return LogEmailSink()


class NotificationDispatcher:
    """Renders email templates and hands them to a sink in background tasks."""

    def __init__(
        self,
        sink: EmailSink,
        template_dir: Path = TEMPLATE_DIR,
        frontend_url: str = settings.FRONTEND_URL,
    ):
        self.sink = sink
        self.frontend_url = frontend_url.rstrip("/")
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self._tasks: Set[asyncio.Task] = set()
        self.sent = 0
        self.failures = 0

    def render(self, template: EmailTemplate, data: Dict[str, Any]) -> Tuple[str, str]:
        context = {"frontend_url": self.frontend_url, **data}
        subject = SUBJECTS[template].format_map(_Defaulting(context))
        html = self.env.get_template(f"{template.value}.html").render(**context)
        return subject, html

    async def send(
        self, template: EmailTemplate, recipient: Union[str, List[str]], data: Dict[str, Any]
    ) -> bool:
        """Render and deliver. Returns False on failure instead of raising."""
        recipients = [recipient] if isinstance(recipient, str) else list(recipient)
        log = logger.bind(template=template.value, recipients=recipients)
        if not recipients:
            log.warning("email_skipped_no_recipient")
            return False
        try:
            subject, html = self.render(template, data)
            await self.sink.send(recipients, subject, html)
        except Exception as exc:
            self.failures += 1
            log.error("email_failed", error=str(exc), error_type=type(exc).__name__)
            return False
        self.sent += 1
        log.info("email_delivered")
        return True

    def dispatch(
        self, template: EmailTemplate, recipient: Union[str, List[str]], data: Dict[str, Any]
    ) -> asyncio.Task:
        """Schedule delivery on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(self.send(template, recipient, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight delivery."""
        while True:
            in_flight = [task for task in self._tasks if not task.done()]
            if not in_flight:
                return
            await asyncio.gather(*in_flight, return_exceptions=True)


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return ""


_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(build_email_sink())
    return _dispatcher
