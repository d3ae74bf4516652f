# services/api/core/email_sender.py
from __future__ import annotations
import html
import logging
from datetime import datetime
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import List, Optional, Protocol, Sequence

import aiosmtplib

from core.errors import DeliveryError
from core.rasterizer import PageAsset

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_NAME = "Document"


# ---------- Links ----------

def build_view_url(base_url: str, selection_id: str) -> str:
    return f"{base_url.rstrip('/')}/view/{selection_id}"


def build_download_all_url(base_url: str, selection_id: str) -> str:
    return f"{build_view_url(base_url, selection_id)}?download=all"


def format_expiry(expires_at: datetime) -> str:
    return expires_at.strftime("%B %d, %Y")


def build_subject(source_name: Optional[str]) -> str:
    return f"Selected Pages from {source_name or DEFAULT_DOCUMENT_NAME}"


def _pages_str(pages: Sequence[int]) -> str:
    # Caller order, never sorted
    return ", ".join(str(p) for p in pages)


# ---------- Bodies ----------

def render_text_body(
    *,
    recipient: str,
    source_name: Optional[str],
    selected_pages: Sequence[int],
    view_url: str,
    download_url: str,
    expires_at: datetime,
    attached_count: int,
) -> str:
    name = source_name or DEFAULT_DOCUMENT_NAME
    return f"""
===============================================================
                YOUR SELECTED PDF PAGES
===============================================================

Hello {recipient}!

We're sending you the pages you selected from "{name}".

SELECTED PAGES: {_pages_str(selected_pages)}
ATTACHED IMAGES: {attached_count}

---------------------------------------------------------------
                   VIEW PAGES ONLINE
---------------------------------------------------------------

We've created an online viewer where you can:

- View high-quality images of your selected pages
- Download individual pages as needed
- Access anytime for the next 7 days

>> VIEW YOUR PAGES ONLINE:
   {view_url}

>> DOWNLOAD ALL PAGES DIRECTLY:
   {download_url}

NOTE: These links will expire on {format_expiry(expires_at)}.

---------------------------------------------------------------

Thank you for using our service!

If you have any questions, just reply to this email.
===============================================================
"""


def render_html_body(
    *,
    recipient: str,
    source_name: Optional[str],
    selected_pages: Sequence[int],
    view_url: str,
    download_url: str,
    expires_at: datetime,
    assets: Sequence[PageAsset],
) -> str:
    name = html.escape(source_name or DEFAULT_DOCUMENT_NAME)
    pages = html.escape(_pages_str(selected_pages))
    view = html.escape(view_url, quote=True)
    download = html.escape(download_url, quote=True)
    expiry = html.escape(format_expiry(expires_at))

    images_html = ""
    if assets:
        blocks = "".join(
            f'<p style="margin:0 0 10px 0;font-weight:bold;color:#333333;">Page {a.page_number}</p>'
            f'<img src="cid:{a.content_id}" alt="Page {a.page_number}" '
            f'style="max-width:100%;display:block;border:1px solid #E5E7EB;border-radius:8px;margin-bottom:25px;">'
            for a in assets
        )
        images_html = (
            '<h2 style="color:#4F46E5;font-size:20px;">High-Quality Page Images:</h2>'
            f"{blocks}"
        )

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta http-equiv="Content-Type" content="text/html; charset=utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Your Selected PDF Pages</title>
</head>
<body style="font-family: Arial, 'Helvetica Neue', Helvetica, sans-serif; margin:0; padding:0; background-color:#f8f9fa;">
  <div style="max-width:600px; margin:0 auto; padding:40px; background-color:#ffffff; border-radius:8px;">
    <h1 style="color:#4F46E5; margin-top:0; font-size:24px;">Your Selected PDF Pages</h1>
    <p style="color:#333333; font-size:16px;">Hello {html.escape(recipient)},</p>
    <p style="color:#333333; font-size:16px;">Here are the pages you selected from <strong>"{name}"</strong>:</p>
    <p style="color:#333333; font-size:16px;"><strong>Pages:</strong> {pages}</p>

    <div style="margin:30px 0; padding:20px; background-color:#F3F4FD; border:1px solid #D4D7FF; border-radius:8px; text-align:center;">
      <h2 style="color:#4F46E5; margin-top:0; font-size:20px;">View Your Selected Pages Online</h2>
      <p><a href="{view}" target="_blank" style="display:inline-block; padding:14px 28px; background-color:#4F46E5; color:#ffffff; font-weight:bold; text-decoration:none; border-radius:6px;">View Pages Online</a></p>
      <p><a href="{download}" target="_blank" style="display:inline-block; padding:10px 20px; background-color:#10B981; color:#ffffff; font-weight:bold; text-decoration:none; border-radius:6px;">Download All Pages</a></p>
      <p style="color:#6B7280; font-size:13px; font-style:italic;">This secure link will expire on {expiry}</p>
      <p style="color:#4B5563; font-size:14px;">If the buttons don't work, copy and paste this link into your browser:</p>
      <p style="word-break:break-all; color:#4F46E5; font-size:13px;">{view}</p>
    </div>

    {images_html}

    <p style="color:#6B7280; font-size:14px; border-top:1px solid #E5E7EB; padding-top:20px;">Thank you for using our service!</p>
  </div>
</body>
</html>
"""


# ---------- MIME assembly ----------

def build_message(
    *,
    from_email: str,
    from_name: str,
    recipient: str,
    subject: str,
    text_body: str,
    html_body: str,
    assets: Sequence[PageAsset],
) -> MIMEMultipart:
    """
    multipart/mixed
      └─ multipart/related
           ├─ multipart/alternative (text/plain, text/html)
           └─ image/png per asset: Content-ID for the inline <img>, and
              Content-Disposition: attachment so clients list it as a file
    """
    msg = MIMEMultipart("mixed")
    msg["From"] = formataddr((from_name, from_email)) if from_name else from_email
    msg["To"] = recipient
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain=from_email.split("@")[-1] if "@" in from_email else None)

    related = MIMEMultipart("related")
    alternative = MIMEMultipart("alternative")
    alternative.attach(MIMEText(text_body, "plain", "utf-8"))
    alternative.attach(MIMEText(html_body, "html", "utf-8"))
    related.attach(alternative)

    for asset in assets:
        part = MIMEImage(asset.read_bytes(), _subtype=asset.content_type.split("/")[-1])
        part.add_header("Content-ID", f"<{asset.content_id}>")
        part.add_header("Content-Disposition", "attachment", filename=asset.filename)
        related.attach(part)

    msg.attach(related)
    return msg


# ---------- Transport ----------

class EmailDispatcher(Protocol):
    async def send(
        self,
        *,
        recipient: str,
        subject: str,
        text_body: str,
        html_body: str,
        assets: Sequence[PageAsset],
    ) -> str:
        """Send and return the Message-ID."""
        ...


class SmtpMailer:
    """
    SMTP transport configured from settings.

    secure=True  -> implicit TLS (usually port 465)
    secure=False -> plain connect, STARTTLS when the server offers it

    verify() and the verify step of send() raise DeliveryError(stage="verify");
    a failure after that raises DeliveryError(stage="send"). Nothing is retried.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        secure: bool,
        user: str,
        password: str,
        from_email: str,
        from_name: str,
    ) -> None:
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.from_email = from_email
        self.from_name = from_name

    def _client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            use_tls=self.secure,
            start_tls=False if self.secure else None,
        )

    async def _connect(self) -> aiosmtplib.SMTP:
        smtp = self._client()
        try:
            await smtp.connect()
            if self.user:
                await smtp.login(self.user, self.password)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"❌ SMTP verification failed: {e}")
            if smtp.is_connected:
                smtp.close()
            raise DeliveryError(f"Email server configuration error: {e}", stage="verify") from e
        return smtp

    async def verify(self) -> None:
        smtp = await self._connect()
        try:
            await smtp.quit()
        except aiosmtplib.SMTPException:
            smtp.close()
        logger.info("✅ SMTP connection verified successfully")

    async def send(
        self,
        *,
        recipient: str,
        subject: str,
        text_body: str,
        html_body: str,
        assets: Sequence[PageAsset],
    ) -> str:
        msg = build_message(
            from_email=self.from_email,
            from_name=self.from_name,
            recipient=recipient,
            subject=subject,
            text_body=text_body,
            html_body=html_body,
            assets=assets,
        )

        smtp = await self._connect()
        logger.info("✅ SMTP connection verified successfully")
        try:
            logger.info(f"Sending email to {recipient} with {len(assets)} attachments...")
            await smtp.send_message(msg)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"❌ Failed to send email: {e}")
            raise DeliveryError(f"Failed to send email: {e}", stage="send") from e
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except aiosmtplib.SMTPException:
                    smtp.close()

        message_id = msg["Message-ID"]
        logger.info(f"✅ Email sent: {message_id}")
        return message_id


def attached_assets(assets: Sequence[PageAsset]) -> List[PageAsset]:
    """Only assets that actually have image bytes go into the message."""
    return [a for a in assets if a.ok]
