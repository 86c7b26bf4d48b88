import logging
import os
import sys
from typing import Any

import click
from click.core import ParameterSource

from .config import DEFAULT_RETENTION_DAYS, load_config
from .errors import InvalidConfiguration, MailDeliveryFailed
from .mailer import credentials_for, send_report
from .report import render_report, report_subject
from .retention import run_retention
from .vsphere import VSphereDirectory

logger = logging.getLogger("snapshot_cleanup")


def _given(value: Any, name: str) -> Any:
    """Return *value* only when the option was set on the command line."""
    source = click.get_current_context().get_parameter_source(name)
    if source in (None, ParameterSource.DEFAULT):
        return None
    return value


@click.command()
@click.option("--config", "-c", "config_file", type=click.Path(exists=True, dir_okay=False), help="YAML file with default settings.")
@click.option("--retention-days", "-d", type=int, help=f"Minimum snapshot age in days before deletion (default: {DEFAULT_RETENTION_DAYS}).")
@click.option("--cluster", "clusters", multiple=True, help="vCenter to process; repeat for several, processed in order.")
@click.option("--mail-server", help="SMTP server used to send the report.")
@click.option("--mail-port", type=int, help="SMTP port (default: 25).")
@click.option("--mail-from", help="Sender address for the report.")
@click.option("--recipient", "-r", "recipients", multiple=True, help="Report recipient; repeat for several.")
@click.option("--tag", "-t", "tags", multiple=True, help="Only process VMs carrying this tag; repeat for several.")
@click.option("--dry-run", is_flag=True, default=False, help="Evaluate and report only, delete nothing.")
@click.option("--interactive-mail-credentials", is_flag=True, default=False, help="Prompt for SMTP credentials instead of sending as the service identity.")
@click.option("--vc-user", envvar="VC_USER", help="vCenter user name (env: VC_USER). Password is read from VC_PASSWORD or prompted.")
@click.option("--validate-certs/--no-validate-certs", default=None, help="Verify vCenter TLS certificates (default: off, or the config file value).")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug-level logging.")
def main(
    config_file: str | None,
    retention_days: int | None,
    clusters: tuple[str, ...],
    mail_server: str | None,
    mail_port: int | None,
    mail_from: str | None,
    recipients: tuple[str, ...],
    tags: tuple[str, ...],
    dry_run: bool,
    interactive_mail_credentials: bool,
    vc_user: str | None,
    validate_certs: bool | None,
    verbose: bool,
) -> None:
    """Delete VM snapshots older than the retention threshold and mail a summary."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )

    overrides = {
        "retention_days": retention_days,
        "clusters": clusters,
        "mail_server": mail_server,
        "mail_port": mail_port,
        "mail_from": mail_from,
        "recipients": recipients,
        "tags": tags,
        "vcenter_user": vc_user,
        "validate_certs": _given(validate_certs, "validate_certs"),
        # These flags only ever switch a file setting on.
        "dry_run": dry_run or None,
        "interactive_mail_credentials": interactive_mail_credentials or None,
    }
    try:
        config = load_config(config_file, overrides)
    except InvalidConfiguration as exc:
        raise click.UsageError(str(exc)) from exc

    if not config.clusters:
        logger.warning("No clusters configured; the report will be empty")

    mail_credentials = credentials_for(config.interactive_mail_credentials)

    user = config.vcenter_user
    password = os.environ.get("VC_PASSWORD")
    if config.clusters:
        user = user or click.prompt("vCenter user")
        password = password or click.prompt("vCenter password", hide_input=True)
    directory = VSphereDirectory(user or "", password or "", validate_certs=config.validate_certs)

    if config.dry_run:
        click.echo("Dry run: no snapshots will be deleted.")
    click.echo(f"Processing {len(config.clusters)} cluster(s), retention {config.retention_days} days...")

    run = run_retention(directory, config)

    for result in run.clusters:
        if result.ok:
            click.echo(
                f"{result.cluster}: {result.vms_scanned} VMs scanned, "
                f"{len(result.vms)} with expired snapshots, {result.deleted} deleted, "
                f"{result.failed_deletions} failed"
            )
        else:
            click.echo(f"{result.cluster}: SKIPPED ({result.error})", err=True)

    body = render_report(run)
    try:
        send_report(
            config.mail_server,
            config.mail_from,
            config.recipients,
            report_subject(run),
            body,
            credentials=mail_credentials,
            port=config.mail_port,
        )
    except MailDeliveryFailed as exc:
        logger.error("%s", exc)
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Done! Report sent to {', '.join(config.recipients)}")


if __name__ == "__main__":
    main()
