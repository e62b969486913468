from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .console import log_warning
from .settings import Settings, settings


def send_email(subject: str, body: str, cfg: Settings = settings) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - ODS_ENABLE_EMAIL=true
      - ODS_SMTP_HOST / ODS_SMTP_PORT
      - ODS_SMTP_USER / ODS_SMTP_PASSWORD
      - ODS_EMAIL_FROM / ODS_EMAIL_TO
    """
    if not cfg.enable_email:
        return False
    if not all(
        [
            cfg.smtp_host,
            cfg.smtp_port,
            cfg.smtp_user,
            cfg.smtp_password,
            cfg.email_from,
            cfg.email_to,
        ]
    ):
        log_warning("Email alerts are enabled but SMTP settings are incomplete.")
        return False

    msg = MIMEMultipart()
    msg["From"] = cfg.email_from
    msg["To"] = cfg.email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port) as server:
            server.starttls()
            server.login(cfg.smtp_user, cfg.smtp_password)
            server.sendmail(cfg.email_from, [cfg.email_to], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        # The run has already failed; a broken mail relay must not mask why.
        log_warning(f"Could not send alert email: {e}")
        return False
    return True


def alert_failure(mode: str, stage: str, reason: str, cfg: Settings = settings) -> bool:
    subject = f"🚨 odoostack {mode} failed at {stage}"
    body = f"Mode: {mode}\nStage: {stage}\nDetail: {reason}"
    return send_email(subject, body, cfg)
