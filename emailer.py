import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

from config import EMAIL_CONFIG
from logger import get_logger

log = get_logger("emailer")

def send_email(to_addrs: List[str], subject: str, html: str) -> bool:
    """Send an HTML email. Failures are logged, never raised."""
    if not to_addrs:
        log.warning(f"No recipients for email {subject!r}; skipping.")
        return False
    if not EMAIL_CONFIG["smtp_server"] or not EMAIL_CONFIG["from_addr"]:
        log.warning(f"SMTP not configured; email {subject!r} not sent.")
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = EMAIL_CONFIG["from_addr"]
    msg["To"] = ", ".join(to_addrs)

    msg.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(EMAIL_CONFIG["smtp_server"], EMAIL_CONFIG["smtp_port"], timeout=30) as server:
            server.starttls()
            if EMAIL_CONFIG["smtp_password"]:
                server.login(EMAIL_CONFIG["smtp_username"], EMAIL_CONFIG["smtp_password"])
            server.sendmail(msg["From"], to_addrs, msg.as_string())
        log.info(f"Email sent: {subject} -> {to_addrs}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        log.error(f"Failed sending email {subject!r}: {e}")
        return False
