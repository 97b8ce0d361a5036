#!/usr/bin/env python3
"""
InsureFlow Control CLI - Command Line Interface for InsureFlow.

Provides commands for signing in, managing policies and claims, uploading
claim evidence, pricing quotes, viewing the audit trail, and running the
development API server.
"""

import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..actions import ActionRunner
from ..audit import AuditLogger
from ..auth import RequestContext, Session, SessionStore
from ..config import load_settings
from ..connectors import InsureFlowAPI, PresignedTransfer
from ..engine import LifecycleManager, TransitionTable
from ..engine.validation import validate_registration
from ..exceptions import InsureFlowError
from ..models import ActionOutcome, ClaimStatus, PolicyStatus, Role, STATUS_ALL
from .formatting import format_currency, format_number, format_percentage

# Setup logging
logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

VARIANT_STYLES = {
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "info": "blue",
}

# Reads are silent on success
_ANNOUNCED = {
    "create_policy", "renew_policy", "suspend_policy", "reinstate_policy",
    "create_claim", "submit_claim", "adjudicate_claim", "attach_evidence", "calculate_quote",
}


class InsureFlowController:
    """Main controller for InsureFlow operations."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize the controller from settings and the persisted session."""
        self.settings = load_settings(config_path)

        self.session = Session.restore(SessionStore(self.settings.session_file))
        self.api = InsureFlowAPI(self.settings.api_base_url, self.settings.quote_base_url)
        self.transfer = PresignedTransfer(self.api.http)

        table = TransitionTable(self.settings.lifecycle_config_dir)
        audit_logger = AuditLogger(self.settings.audit_dir) if self.settings.audit_dir else None
        self.audit_logger = audit_logger

        self.manager = LifecycleManager(self.api, table, audit_logger, transfer=self.transfer)
        self.runner = ActionRunner(self.session)

    @property
    def context(self) -> RequestContext:
        return RequestContext(self.session, timeout=self.settings.timeout)

    def run(self, action: str, operation: Callable[..., Any], *args: Any,
            entity_id: Optional[str] = None, **kwargs: Any) -> Any:
        """Run an action, print its notification, and exit non-zero on failure."""
        outcome = self.runner.run(action, operation, self.context, *args,
                                  entity_id=entity_id, **kwargs)
        show_notification(outcome)
        if not outcome.success:
            sys.exit(1)
        return outcome.result


def show_notification(outcome: ActionOutcome):
    """Print an action outcome the way the console shows a toast."""
    notification = outcome.notification
    style = VARIANT_STYLES.get(notification.variant, "white")

    if outcome.success and outcome.action not in _ANNOUNCED:
        return

    icon = "✓" if outcome.success else "✗"
    console.print(f"[{style}]{icon} {notification.title}[/{style}]")
    if notification.description:
        console.print(f"  {notification.description}")
    elif outcome.error:
        console.print(f"  [dim]{outcome.error}[/dim]")


@click.group()
@click.option('--config', '-c', help='Path to configuration file (YAML or JSON)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, verbose):
    """InsureFlow Control CLI - Policy and Claim Lifecycle Management"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    try:
        ctx.obj['controller'] = InsureFlowController(config)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(2)


# Session

@cli.command()
@click.option('--username', prompt='Username')
@click.option('--password', prompt='Password', hide_input=True)
@click.pass_context
def login(ctx, username, password):
    """Sign in and store the session token."""
    controller = ctx.obj['controller']

    try:
        token = controller.api.login(username, password)
        user = controller.session.establish(token.access_token)
    except InsureFlowError as e:
        console.print(f"[red]✗ Login failed[/red]\n  [dim]{e}[/dim]")
        sys.exit(1)

    console.print(f"[green]✓ Signed in as {user.username} ({user.role.value})[/green]")


@cli.command()
@click.option('--email', prompt='Email')
@click.option('--password', prompt='Password', hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice([r.value for r in Role]), help='Account role')
@click.pass_context
def register(ctx, email, password, role):
    """Create an account and sign in."""
    controller = ctx.obj['controller']

    try:
        request = validate_registration(email, password, role)
        token = controller.api.register(request)
        user = controller.session.establish(token.access_token)
    except InsureFlowError as e:
        console.print(f"[red]✗ Registration failed[/red]\n  [dim]{e}[/dim]")
        sys.exit(1)

    console.print(f"[green]✓ Registered and signed in as {user.username}[/green]")


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the stored session."""
    ctx.obj['controller'].session.logout()
    console.print("[blue]Signed out[/blue]")


@cli.command()
@click.pass_context
def whoami(ctx):
    """Show the signed-in user."""
    session = ctx.obj['controller'].session
    if not session.is_authenticated:
        console.print("[yellow]Not signed in[/yellow]")
        sys.exit(1)

    user = session.user
    console.print(Panel.fit(f"[bold blue]{user.username}[/bold blue]\n"
                            f"Role: {user.role.value}\nUser ID: {user.user_id}"))


# Policies

@cli.command()
@click.option('--status', default=STATUS_ALL,
              type=click.Choice([STATUS_ALL] + [s.value for s in PolicyStatus], case_sensitive=False),
              help='Filter by status')
@click.option('--refresh', is_flag=True, help='Bypass cached results')
@click.pass_context
def policies(ctx, status, refresh):
    """List policies."""
    controller = ctx.obj['controller']
    result = controller.run("list_policies", controller.manager.list_policies,
                            status=status, refresh=refresh)

    if not result:
        console.print("[yellow]No policies found[/yellow]")
        return

    table = Table(title=f"Policies ({len(result)})")
    table.add_column("Policy ID", style="cyan")
    table.add_column("User ID", style="blue")
    table.add_column("Status", style="magenta")
    table.add_column("Coverage", justify="right")
    table.add_column("Premium", justify="right")
    table.add_column("Term", justify="right")
    table.add_column("Actions", style="green")

    for policy in result:
        actions = controller.manager.available_actions(controller.context, policy)
        table.add_row(
            policy.policy_id,
            policy.user_id,
            policy.status.value,
            format_currency(policy.coverage_amount),
            format_currency(policy.premium),
            f"{policy.term_months} mo",
            ", ".join(actions) or "-",
        )

    console.print(table)


@cli.command()
@click.argument('policy_id')
@click.pass_context
def policy(ctx, policy_id):
    """Show a single policy."""
    controller = ctx.obj['controller']
    result = controller.run("get_policy", controller.manager.get_policy, policy_id,
                            entity_id=policy_id)

    console.print(Panel.fit(f"[bold blue]{result.policy_id}[/bold blue]\nOwner: {result.user_id}"))
    console.print(f"Status: {result.status.value}")
    if result.suspended_reason:
        console.print(f"Suspended: {result.suspended_reason}")
    console.print(f"Coverage: {format_currency(result.coverage_amount)}")
    console.print(f"Premium: {format_currency(result.premium)}")
    console.print(f"Term: {result.term_months} months")
    if result.created_at:
        console.print(f"Created: {result.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
    if result.updated_at:
        console.print(f"Updated: {result.updated_at.strftime('%Y-%m-%d %H:%M:%S')}")


@cli.command()
@click.option('--user-id', help='Owner of the policy (defaults to the signed-in user)')
@click.option('--coverage', type=float, required=True, help='Coverage amount')
@click.option('--term', 'term_months', type=int, default=12, help='Term in months')
@click.option('--premium', type=float, required=True, help='Premium, usually from a quote')
@click.option('--quote-id', help='Quote the premium came from')
@click.pass_context
def create_policy(ctx, user_id, coverage, term_months, premium, quote_id):
    """Create a new ACTIVE policy."""
    controller = ctx.obj['controller']
    if not user_id and controller.session.user:
        user_id = controller.session.user.user_id

    result = controller.run("create_policy", controller.manager.create_policy,
                            user_id, coverage, term_months, premium, quote_id)
    console.print(f"Policy ID: [cyan]{result.policy_id}[/cyan]")


@cli.command()
@click.argument('policy_id')
@click.option('--months', 'extend_months', type=int, default=12, help='Months to extend by')
@click.pass_context
def renew(ctx, policy_id, extend_months):
    """Extend a policy's term."""
    controller = ctx.obj['controller']
    result = controller.run("renew_policy", controller.manager.renew_policy, policy_id,
                            extend_months, entity_id=policy_id)
    console.print(f"Term is now {result.term_months} months")


@cli.command()
@click.argument('policy_id')
@click.option('--reason', prompt='Reason for suspension')
@click.pass_context
def suspend(ctx, policy_id, reason):
    """Suspend an ACTIVE policy (administrators only)."""
    controller = ctx.obj['controller']
    controller.run("suspend_policy", controller.manager.suspend_policy, policy_id, reason,
                   entity_id=policy_id)


@cli.command()
@click.argument('policy_id')
@click.pass_context
def reinstate(ctx, policy_id):
    """Reinstate a SUSPENDED policy (administrators only)."""
    controller = ctx.obj['controller']
    controller.run("reinstate_policy", controller.manager.reinstate_policy, policy_id,
                   entity_id=policy_id)


# Claims

@cli.command()
@click.option('--status', default=STATUS_ALL,
              type=click.Choice([STATUS_ALL] + [s.value for s in ClaimStatus], case_sensitive=False),
              help='Filter by status')
@click.option('--policy-id', help='Only claims against this policy')
@click.option('--refresh', is_flag=True, help='Bypass cached results')
@click.pass_context
def claims(ctx, status, policy_id, refresh):
    """List claims."""
    controller = ctx.obj['controller']
    result = controller.run("list_claims", controller.manager.list_claims,
                            status=status, policy_id=policy_id, refresh=refresh)

    if not result:
        console.print("[yellow]No claims found[/yellow]")
        return

    table = Table(title=f"Claims ({len(result)})")
    table.add_column("Claim ID", style="cyan")
    table.add_column("Policy ID", style="blue")
    table.add_column("Status", style="magenta")
    table.add_column("Payout", justify="right")
    table.add_column("Description", style="yellow")
    table.add_column("Actions", style="green")

    for claim in result:
        actions = controller.manager.available_actions(controller.context, claim)
        table.add_row(
            claim.claim_id,
            claim.policy_id,
            claim.status.value,
            format_currency(claim.payout_amount) if claim.payout_amount is not None else "-",
            claim.description,
            ", ".join(actions) or "-",
        )

    console.print(table)


@cli.command()
@click.argument('policy_id')
@click.option('--description', prompt='Describe the claim')
@click.pass_context
def create_claim(ctx, policy_id, description):
    """Create a DRAFT claim against a policy."""
    controller = ctx.obj['controller']
    result = controller.run("create_claim", controller.manager.create_claim, policy_id,
                            description)
    console.print(f"Claim ID: [cyan]{result.claim_id}[/cyan]")


@cli.command()
@click.argument('claim_id')
@click.pass_context
def submit(ctx, claim_id):
    """Submit a DRAFT claim for review."""
    controller = ctx.obj['controller']
    controller.run("submit_claim", controller.manager.submit_claim, claim_id, entity_id=claim_id)


@cli.command()
@click.argument('claim_id')
@click.option('--decision', type=click.Choice([ClaimStatus.APPROVED.value, ClaimStatus.DENIED.value],
                                              case_sensitive=False), required=True)
@click.option('--payout', type=float, required=True, help='Payout amount (ignored when denied)')
@click.pass_context
def adjudicate(ctx, claim_id, decision, payout):
    """Approve or deny a SUBMITTED claim (administrators only)."""
    controller = ctx.obj['controller']
    result = controller.run("adjudicate_claim", controller.manager.adjudicate_claim, claim_id,
                            decision.upper(), payout, entity_id=claim_id)
    console.print(f"{result.status.value}, payout {format_currency(result.payout_amount or 0)}")


# Documents

@cli.command()
@click.argument('claim_id')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--content-type', help='Content type (guessed from the file name by default)')
@click.pass_context
def upload(ctx, claim_id, file_path, content_type):
    """Upload a file as claim evidence."""
    controller = ctx.obj['controller']
    path = Path(file_path)
    content_type = content_type or mimetypes.guess_type(path.name)[0]

    result = controller.run("attach_evidence", controller.manager.attach_evidence, claim_id,
                            path.name, path.read_bytes(), content_type, entity_id=claim_id)
    console.print(f"Stored as {result.key} ({len(result.documents)} documents on claim)")


@cli.command()
@click.argument('claim_id')
@click.pass_context
def documents(ctx, claim_id):
    """List a claim's documents."""
    controller = ctx.obj['controller']
    result = controller.run("list_documents", controller.manager.list_documents, claim_id,
                            entity_id=claim_id)

    if not result:
        console.print("[yellow]No documents uploaded yet[/yellow]")
        return

    table = Table(title=f"Documents for {claim_id}")
    table.add_column("Key", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Last Modified", style="green")

    for doc in result:
        table.add_row(
            doc.key,
            f"{format_number(doc.size)} B" if doc.size is not None else "-",
            doc.last_modified.strftime("%Y-%m-%d %H:%M:%S") if doc.last_modified else "-",
        )

    console.print(table)


@cli.command()
@click.argument('key')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Save to this file')
@click.pass_context
def download(ctx, key, output):
    """Resolve a download link, optionally saving the file."""
    controller = ctx.obj['controller']
    url = controller.run("get_download_url", controller.manager.get_download_url, key)

    if not output:
        console.print(url)
        return

    try:
        content = controller.transfer.download(url, timeout=controller.settings.timeout)
    except InsureFlowError as e:
        console.print(f"[red]✗ Download failed[/red]\n  [dim]{e}[/dim]")
        sys.exit(1)

    Path(output).write_bytes(content)
    console.print(f"[green]Saved {format_number(len(content))} bytes to {output}[/green]")


# Pricing, health and reporting

@cli.command()
@click.option('--age', type=int, required=True)
@click.option('--coverage', type=float, required=True, help='Coverage amount')
@click.option('--risk', 'risk_factors', multiple=True, help='Risk factor (repeatable)')
@click.pass_context
def quote(ctx, age, coverage, risk_factors):
    """Price a prospective policy."""
    controller = ctx.obj['controller']
    result = controller.run("calculate_quote", controller.manager.calculate_quote, age, coverage,
                            list(risk_factors))

    rate = result.premium / coverage * 100 if coverage else 0.0
    console.print(Panel.fit(f"[bold green]{format_currency(result.premium)}[/bold green] "
                            f"{result.currency}\nRate: {format_percentage(rate)} of coverage"))


@cli.command()
@click.pass_context
def health(ctx):
    """Show collaborator component health (administrators only)."""
    controller = ctx.obj['controller']
    result = controller.run("get_health", controller.manager.get_health)

    styles = {"ok": "green", "error": "red", "checking": "yellow"}
    table = Table(title="Component Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    for name, value in result.to_wire().items():
        table.add_row(name, f"[{styles.get(value, 'white')}]{value}[/{styles.get(value, 'white')}]")

    console.print(table)


@cli.command()
@click.option('--refresh', is_flag=True, help='Bypass cached results')
@click.pass_context
def summary(ctx, refresh):
    """Show portfolio statistics."""
    controller = ctx.obj['controller']
    result = controller.run("portfolio_summary", controller.manager.portfolio_summary,
                            refresh=refresh)

    console.print("[bold blue]Portfolio Summary[/bold blue]")
    console.print(f"Total Policies: {format_number(result.total_policies)}")
    console.print(f"Active Policies: {format_number(result.active_policies)}")
    console.print(f"Pending Claims: {format_number(result.pending_claims)}")
    console.print(f"Approved Payouts: {format_currency(result.approved_payout)}")
    console.print(f"Average Premium: {format_currency(result.average_premium)}")

    if result.policies_by_status:
        console.print("\nPolicies by Status:")
        for status, count in result.policies_by_status.items():
            console.print(f"  {status}: {count}")

    if result.claims_by_status:
        console.print("\nClaims by Status:")
        for status, count in result.claims_by_status.items():
            console.print(f"  {status}: {count}")


@cli.command()
@click.option('--actor', help='Filter by acting username')
@click.option('--entity-id', help='Filter by policy or claim ID')
@click.option('--limit', default=50, help='Maximum number of records to show')
@click.pass_context
def audit(ctx, actor, entity_id, limit):
    """Show the local audit trail of lifecycle actions."""
    controller = ctx.obj['controller']
    if not controller.audit_logger:
        console.print("[yellow]Auditing is disabled; set audit_dir or INSUREFLOW_AUDIT_DIR[/yellow]")
        return

    records = controller.audit_logger.get_events(actor=actor, entity_id=entity_id, limit=limit)
    if not records:
        console.print("[yellow]No audit records found[/yellow]")
        return

    table = Table(title=f"Audit Trail ({len(records)})")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Actor", style="green")
    table.add_column("Action", style="magenta")
    table.add_column("Entity", style="blue")
    table.add_column("Transition", style="yellow")
    table.add_column("Success", style="red")

    for record in records:
        transition = f"{record.from_status or '-'} → {record.to_status or '-'}"
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.actor,
            record.action,
            f"{record.entity_type.value} {record.entity_id or ''}".strip(),
            transition,
            "✓" if record.success else "✗",
        )

    console.print(table)


@cli.command()
@click.option('--port', default=8000, help='Port to run the API server on')
@click.option('--host', default='127.0.0.1', help='Host to bind the API server to')
def serve(port, host):
    """Start the InsureFlow development API server."""
    from ..api.server import start_server

    console.print(f"[green]Starting InsureFlow API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        start_server(host=host, port=port, reload=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
