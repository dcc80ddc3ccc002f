"""
SMTP email sender for notification channels.

Handles:
  - SMTP connection with optional STARTTLS
  - MIME multipart construction (HTML + plaintext alternative)
  - To / Cc / Bcc recipients

No external dependencies beyond Python stdlib (email, smtplib, ssl).
"""
import ssl
import html
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate

logger = logging.getLogger("aimonitor.notifications.email_sender")

EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5;">
    <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 8px; overflow: hidden;">
        <div style="background-color: {color}; color: #ffffff; padding: 20px; text-align: center;">
            <h1 style="margin: 0 0 8px 0;">{title}</h1>
            <span style="display: inline-block; padding: 4px 8px; border-radius: 4px; font-size: 12px;
                         font-weight: bold; border: 1px solid #ffffff;">{severity}</span>
        </div>
        <div style="padding: 20px;">
            <p>{content}</p>
            {tags}
        </div>
        <div style="background-color: #f8f9fa; padding: 15px; text-align: center; font-size: 12px; color: #6c757d;">
            <p>AI Monitor System - {timestamp}</p>
        </div>
    </div>
</body>
</html>
"""

TAG_TEMPLATE = ('<span style="display: inline-block; background-color: #e9ecef; padding: 2px 6px; '
                'border-radius: 3px; font-size: 11px; margin: 2px;">{key}: {value}</span>')


def render_email_html(title, content, severity, labels, color, timestamp):
    tags = ""
    if labels:
        spans = "\n".join(
            TAG_TEMPLATE.format(key=html.escape(str(k)), value=html.escape(str(v)))
            for k, v in sorted(labels.items())
        )
        tags = f'<div style="margin-top: 15px;"><strong>Tags:</strong><br>{spans}</div>'
    return EMAIL_TEMPLATE.format(
        title=html.escape(title),
        content=html.escape(content),
        severity=html.escape(severity.upper()),
        color=color,
        tags=tags,
        timestamp=timestamp.strftime("%Y-%m-%d %H:%M:%S"),
    )


class EmailSender:
    """SMTP sender bound to one channel's EmailConfig."""

    def __init__(self, config, timeout=15):
        self.config = config
        self.timeout = timeout

    def build_message(self, subject: str, html_content: str, plaintext: str) -> MIMEMultipart:
        cfg = self.config
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((cfg.from_name, cfg.from_address))
        msg["To"] = ", ".join(cfg.to_addresses)
        if cfg.cc_addresses:
            msg["Cc"] = ", ".join(cfg.cc_addresses)
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(plaintext, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))
        return msg

    def recipients(self) -> list:
        cfg = self.config
        return list(cfg.to_addresses) + list(cfg.cc_addresses) + list(cfg.bcc_addresses)

    def send(self, subject: str, html_content: str, plaintext: str) -> None:
        """Send one message. SMTP and socket errors propagate to the caller."""
        cfg = self.config
        msg = self.build_message(subject, html_content, plaintext)
        context = ssl.create_default_context()
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=self.timeout) as server:
            server.ehlo()
            if cfg.use_tls:
                server.starttls(context=context)
                server.ehlo()
            server.login(cfg.username, cfg.password)
            server.send_message(msg, to_addrs=self.recipients())
        logger.info(f"Email sent to {msg['To']}: {subject}")
