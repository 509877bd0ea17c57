"""
Bulk WireGuard client generator - command line entry point.

Usage:
    wgbulk --input-file emails.txt
    wgbulk --input-file emails.txt --send-email --smtp-server smtp.example.com \\
        --from-email vpn@example.com

SMTP credentials are read from SMTP_USER and SMTP_PASS.

Exit codes:
    0  clients created, or nothing to do
    1  fatal precondition (input file, server configuration, key material,
       notification settings)
    2  address pool exhausted and no client could be created
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from wgbulk.config import (
    DEFAULT_EMAIL_SUBJECT,
    NotifyConfig,
    ProvisioningSettings,
    SmtpProtocol,
)
from wgbulk.models.wireguard.provisioning import BatchReport, DispatchSummary
from wgbulk.networking.wireguard_keys import CryptographyKeyGenerator, WgToolKeyGenerator
from wgbulk.services.bulk_provisioning_service import BulkProvisioningService
from wgbulk.services.exceptions import NotifyConfigInvalidError, StoreUnavailableError
from wgbulk.services.notification_service import NotificationService

logger = logging.getLogger(__name__)
console = Console()

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_POOL_EXHAUSTED = 2

app = typer.Typer(
    help="Provision WireGuard clients in bulk from a list of e-mail addresses",
    add_completion=False,
)


class KeyBackend(str, Enum):
    PYTHON = "python"
    WG = "wg"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    logging.getLogger("wgbulk").setLevel(level)


def _read_input(input_file: Path) -> list:
    if not input_file.exists():
        console.print(f"[red]Error:[/red] Input file not found: {escape(str(input_file))}")
        raise typer.Exit(EXIT_FATAL)
    try:
        return input_file.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Error:[/red] Input file not readable: {escape(str(input_file))} ({escape(str(e))})")
        raise typer.Exit(EXIT_FATAL)


def render_report(report: BatchReport) -> None:
    """Print created peers with their profile paths, then skips and failures"""
    if report.succeeded:
        table = Table(title=f"Successfully created {len(report.succeeded)} client(s)")
        table.add_column("Client", style="cyan")
        table.add_column("Address")
        table.add_column("Profile")
        for result in report.succeeded:
            table.add_row(escape(result.name), str(result.address), escape(str(result.profile_path)))
        console.print(table)
    else:
        console.print("No new clients were created")

    stats = report.pool_stats
    if stats:
        console.print(
            f"Address pool: {stats['allocated_addresses']} allocated, "
            f"{stats['available_addresses']} available "
            f"({stats['utilization_percent']}% used)"
        )

    if report.skipped:
        console.print(f"[yellow]Skipped {len(report.skipped)}:[/yellow]")
        for result in report.skipped:
            console.print(f"  • {escape(result.name)}: {escape(result.detail or '')}")

    if report.failed:
        console.print(f"[red]Failed {len(report.failed)}:[/red]")
        for result in report.failed:
            console.print(f"  • {escape(result.name)}: {result.reason.value} ({escape(result.detail or '')})")


def render_dispatch(summary: DispatchSummary, total: int) -> None:
    console.print(
        f"Email sending complete: {summary.sent}/{total} emails sent successfully"
    )
    for recipient, error in summary.failures:
        console.print(f"  • [red]{escape(recipient)}[/red]: {escape(error)}")


@app.command()
def provision(
    input_file: Path = typer.Option(
        ...,
        "--input-file",
        help="File with one e-mail address per line",
    ),
    send_email: bool = typer.Option(
        False,
        "--send-email",
        help="E-mail each new client its configuration",
    ),
    smtp_server: Optional[str] = typer.Option(None, "--smtp-server", help="SMTP host"),
    smtp_port: int = typer.Option(587, "--smtp-port", help="SMTP port"),
    smtp_protocol: SmtpProtocol = typer.Option(
        SmtpProtocol.AUTO,
        "--smtp-protocol",
        help="auto picks implicit TLS on port 465 and STARTTLS otherwise",
        case_sensitive=False,
    ),
    from_email: Optional[str] = typer.Option(None, "--from-email", help="Sender address"),
    email_subject: str = typer.Option(
        DEFAULT_EMAIL_SUBJECT, "--email-subject", help="Subject line"
    ),
    email_delay: float = typer.Option(
        2.0, "--email-delay", min=0, help="Seconds to wait between e-mails"
    ),
    wg_dir: Optional[Path] = typer.Option(
        None, "--wg-dir", help="WireGuard directory (default: $WG_DIR or /etc/wireguard)"
    ),
    interface: Optional[str] = typer.Option(
        None, "--interface", help="WireGuard interface (default: $WG_INTERFACE or wg0)"
    ),
    key_backend: KeyBackend = typer.Option(
        KeyBackend.PYTHON,
        "--key-backend",
        help="Generate keys in-process or with the wg tool",
        case_sensitive=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Create a WireGuard client for every e-mail address in the input file.

    Existing clients are skipped, so the command can be re-run safely.
    """
    _setup_logging(verbose)
    console.print("=== WireGuard Bulk Client Generator ===")

    identities = _read_input(input_file)
    settings = ProvisioningSettings.from_env(wg_dir=wg_dir, interface=interface)
    key_generator = WgToolKeyGenerator() if key_backend == KeyBackend.WG else CryptographyKeyGenerator()
    service = BulkProvisioningService(settings, key_generator=key_generator)

    try:
        report = service.run(identities)
    except StoreUnavailableError as e:
        logger.error(str(e))
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_FATAL)

    render_report(report)

    if report.exhausted_without_success():
        raise typer.Exit(EXIT_POOL_EXHAUSTED)

    if not send_email or not report.succeeded:
        raise typer.Exit(EXIT_OK)

    notify_config = NotifyConfig.from_env(
        smtp_server=smtp_server,
        smtp_port=smtp_port,
        protocol=smtp_protocol,
        from_email=from_email,
        subject=email_subject,
        delay=email_delay,
    )
    notifier = NotificationService(notify_config)
    try:
        summary = notifier.dispatch(report.succeeded)
    except NotifyConfigInvalidError as e:
        logger.error(str(e))
        console.print(
            f"[red]Error:[/red] {escape(str(e))}. Clients were created; their profiles are in "
            f"{escape(str(settings.clients_dir))}"
        )
        raise typer.Exit(EXIT_FATAL)

    render_dispatch(summary, len(report.succeeded))


def main() -> None:
    app()
