"""
Outbound email and SMS.

Both capabilities render a named template with ``string.Template`` variables
and raise ``DeliveryError`` when the provider cannot be reached or refuses the
message. The console backends only log, which is what dev and tests use.
"""

import smtplib
import ssl
from email.message import EmailMessage
from string import Template

import httpx
import structlog

from accounts.core.config import settings
from accounts.core.errors import DeliveryError

logger = structlog.get_logger(__name__)

SMS_TEMPLATE_VERIFICATION = "sms_verification"
EMAIL_TEMPLATE_VERIFICATION = "email_verification"

SMS_TEMPLATES = {
    SMS_TEMPLATE_VERIFICATION: Template("$MESSAGE Your code: $VERIFICATION_CODE"),
}

EMAIL_TEMPLATES = {
    EMAIL_TEMPLATE_VERIFICATION: (
        Template("$MESSAGE\n\n$VERIFICATION_CODE\n"),
        Template(
            "<html><body>"
            "<p>$MESSAGE</p>"
            "<p style=\"font-size:24px;letter-spacing:4px\"><strong>$VERIFICATION_CODE</strong></p>"
            "</body></html>"
        ),
    ),
}


def _mask(value: str) -> str:
    if "@" in value:
        user, domain = value.split("@", 1)
        return f"{user[:1]}***@{domain}"
    return f"***{value[-4:]}"


class EmailSender:
    def send(self, to: str, subject: str, template: str, variables: dict) -> None:
        raise NotImplementedError

    def render(self, template: str, variables: dict) -> tuple[str, str]:
        try:
            text, html = EMAIL_TEMPLATES[template]
        except KeyError:
            raise DeliveryError(f"Unknown email template {template}")
        return text.safe_substitute(variables), html.safe_substitute(variables)


class ConsoleEmailSender(EmailSender):
    def send(self, to: str, subject: str, template: str, variables: dict) -> None:
        text, _ = self.render(template, variables)
        logger.info("email_console", to=_mask(to), subject=subject, template=template)
        if settings.ENV == "dev":
            logger.info("email_console_body", body=text)


class SmtpEmailSender(EmailSender):
    def __init__(
        self,
        host: str,
        port: int,
        user: str | None = None,
        password: str | None = None,
        sender: str = "no-reply@example.com",
        starttls: bool = True,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.starttls = starttls
        self.timeout = timeout

    def send(self, to: str, subject: str, template: str, variables: dict) -> None:
        text, html = self.render(template, variables)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls(context=ssl.create_default_context())
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email_send_failed", to=_mask(to), template=template, error=str(exc))
            raise DeliveryError() from exc
        logger.info("email_sent", to=_mask(to), template=template)


class SmsSender:
    def send(self, to: str, template: str, variables: dict) -> None:
        raise NotImplementedError

    def render(self, template: str, variables: dict) -> str:
        try:
            return SMS_TEMPLATES[template].safe_substitute(variables)
        except KeyError:
            raise DeliveryError(f"Unknown SMS template {template}")


class ConsoleSmsSender(SmsSender):
    def send(self, to: str, template: str, variables: dict) -> None:
        body = self.render(template, variables)
        logger.info("sms_console", to=_mask(to), template=template)
        if settings.ENV == "dev":
            logger.info("sms_console_body", body=body)


class TwilioSmsSender(SmsSender):
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_: str,
        api_base: str = "https://api.twilio.com/2010-04-01",
        timeout: int = 10,
        transport: httpx.BaseTransport | None = None,
    ):
        self.from_ = from_
        self.url = f"{api_base}/Accounts/{account_sid}/Messages.json"
        self._auth = (account_sid, auth_token)
        self._timeout = timeout
        self._transport = transport

    def send(self, to: str, template: str, variables: dict) -> None:
        body = self.render(template, variables)
        try:
            # one short-lived client per message; the pool is closed before returning
            with httpx.Client(auth=self._auth, timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self.url, data={"To": to, "From": self.from_, "Body": body})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("sms_send_failed", to=_mask(to), template=template, error=str(exc))
            raise DeliveryError() from exc
        logger.info("sms_sent", to=_mask(to), template=template, sid=response.json().get("sid"))


def get_email_sender() -> EmailSender:
    if settings.EMAIL_BACKEND == "smtp":
        return SmtpEmailSender(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            sender=settings.MAIL_FROM,
            starttls=settings.SMTP_STARTTLS,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        )
    return ConsoleEmailSender()


def get_sms_sender() -> SmsSender:
    if settings.SMS_BACKEND == "twilio":
        if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM):
            raise DeliveryError("SMS provider is not configured")
        return TwilioSmsSender(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_=settings.TWILIO_FROM,
            api_base=settings.TWILIO_API_BASE,
            timeout=settings.SMS_TIMEOUT_SECONDS,
        )
    return ConsoleSmsSender()
