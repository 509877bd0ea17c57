"""
Notification Service

E-mails each newly provisioned peer its client profile.

- Preconditions (server, sender, credentials) are checked before any send
- Port 465 uses implicit TLS, anything else upgrades with STARTTLS, unless
  the protocol is set explicitly
- Every recipient gets its own SMTP session; a failure is recorded for that
  recipient and the loop continues
- A fixed delay separates consecutive sends
- No retries
"""

import logging
import smtplib
import ssl
import time
from email.message import EmailMessage
from pathlib import Path
from typing import Iterable, List

from wgbulk.config import NotifyConfig
from wgbulk.models.wireguard.provisioning import DispatchSummary, ProvisioningResult
from wgbulk.services.exceptions import NotifyConfigInvalidError

logger = logging.getLogger(__name__)


INSTRUCTIONS = """\
Dear {greeting},

Your WireGuard VPN configuration has been created. Your client configuration
file for {name} is attached to this email.

Installation Instructions:

1. Download and install WireGuard for your platform:
   - Windows: https://download.wireguard.com/windows-client/wireguard-installer.exe
   - macOS: Download from App Store or use brew install wireguard-tools
   - Linux: sudo apt install wireguard (Ubuntu/Debian)
   - Android/iOS: Download from respective app stores

2. Import the attached {filename} as a new tunnel in WireGuard

3. Connect to the VPN

Keep this file private: it contains your private key.

If you encounter any issues, please contact your system administrator.

Best regards,
VPN Administrator
"""


class NotificationService:
    """
    Sends client profiles by e-mail

    Usage:
        service = NotificationService(NotifyConfig.from_env(smtp_server="mail.example.com",
                                                            from_email="vpn@example.com"))
        summary = service.dispatch(report.succeeded)
    """

    def __init__(self, config: NotifyConfig):
        """
        Initialize notification service

        Args:
            config: SMTP settings and throttling delay
        """
        self.config = config

    def validate(self) -> None:
        """
        Check preconditions for the notification phase

        Raises:
            NotifyConfigInvalidError: If server, sender or credentials are missing
        """
        missing = self.config.missing_fields()
        if missing:
            raise NotifyConfigInvalidError(
                f"Notification settings missing: {', '.join(missing)}"
            )

    def build_message(self, recipient: str, name: str, profile_path: Path) -> EmailMessage:
        """
        Compose the e-mail for one peer

        The profile travels as a base64 attachment.
        """
        filename = f"{name}.conf"
        message = EmailMessage()
        message["To"] = recipient
        message["From"] = self.config.from_email
        message["Subject"] = self.config.subject
        message.set_content(INSTRUCTIONS.format(
            greeting=recipient.split("@", 1)[0],
            name=name,
            filename=filename,
        ))
        message.add_attachment(
            Path(profile_path).read_bytes(),
            maintype="application",
            subtype="octet-stream",
            filename=filename,
        )
        return message

    def _open_session(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.config.uses_implicit_tls():
            session = smtplib.SMTP_SSL(
                self.config.smtp_server,
                self.config.smtp_port,
                timeout=self.config.timeout,
                context=context,
            )
        else:
            session = smtplib.SMTP(
                self.config.smtp_server,
                self.config.smtp_port,
                timeout=self.config.timeout,
            )
            try:
                session.starttls(context=context)
            except BaseException:
                session.close()
                raise
        return session

    def send(self, recipient: str, name: str, profile_path: Path) -> None:
        """
        Deliver one profile in its own SMTP session

        Raises:
            smtplib.SMTPException, OSError: On transport or authentication failure
        """
        message = self.build_message(recipient, name, profile_path)
        with self._open_session() as session:
            session.login(self.config.smtp_user, self.config.smtp_pass)
            session.send_message(message)

    def dispatch(self, succeeded: Iterable[ProvisioningResult]) -> DispatchSummary:
        """
        E-mail every provisioned peer its profile

        Args:
            succeeded: Successful provisioning results

        Returns:
            DispatchSummary with sent/failed counts

        Raises:
            NotifyConfigInvalidError: Before any send, if preconditions fail
        """
        self.validate()

        results: List[ProvisioningResult] = list(succeeded)
        summary = DispatchSummary()
        logger.info("Sending configuration emails...")

        for index, result in enumerate(results):
            recipient = result.recipient
            if not recipient or result.profile_path is None:
                logger.warning(f"No recipient or profile for {result.name}, not sending")
                summary.failed += 1
                summary.failures.append((result.name, "no recipient or profile"))
                continue

            logger.info(f"Sending email to {recipient} for {result.name}")
            try:
                self.send(recipient, result.name, result.profile_path)
            except (smtplib.SMTPException, OSError) as e:
                logger.error(f"Failed to send email to {recipient}: {e}")
                summary.failed += 1
                summary.failures.append((recipient, str(e)))
            else:
                logger.info(f"Email sent to {recipient}")
                summary.sent += 1

            if index < len(results) - 1 and self.config.delay > 0:
                time.sleep(self.config.delay)

        logger.info(
            f"Email sending complete: {summary.sent}/{len(results)} emails sent successfully"
        )
        return summary
