"""FlowGuard - Main CLI Entry Point

Verifies code changes against epic specifications with a local LLM and
records reviewer decisions on the resulting issues.
"""

import asyncio
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, List, Tuple
from urllib.parse import urlparse

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.markdown import Markdown
from rich import box

from flowguard import __version__
from flowguard.config import ConfigLoader, FlowGuardConfig, get_default_config
from flowguard.exceptions import ConfigError, FlowGuardError
from flowguard.llm_client import OllamaClient
from flowguard.models import SEVERITY_LEVELS, Verification
from flowguard.state import ArtifactStore
from plugins.registry import RuleRegistry
from plugins.security import load_builtin_rules
from verification.adapters import (
    GitDiffAdapter,
    create_adapter,
    detect_format_from_input,
)
from verification.engine import VerificationEngine
from verification.reports import ReportWriter
from verification.review import VerificationReviewer
from verification.types import DiffInput, VerificationInput, VerificationOptions

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/flowguard-config.yaml'

SEVERITY_STYLES = {
    'Critical': 'bold red',
    'High': 'red',
    'Medium': 'yellow',
    'Low': 'cyan',
}

STATUS_STYLES = {
    'approved': 'green',
    'approved_with_conditions': 'yellow',
    'changes_requested': 'red',
    'pending': 'dim',
}


class FlowGuardCLI:
    """FlowGuard CLI application."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize CLI application.

        Args:
            config_path: Optional path to configuration file
        """
        self.console = Console()
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.config: Optional[FlowGuardConfig] = None

    def load_configuration(self) -> bool:
        """Load and validate configuration.

        A missing configuration file is not an error: defaults are used.

        Returns:
            True if configuration loaded successfully, False otherwise
        """
        try:
            if Path(self.config_path).exists():
                local_override = str(Path(self.config_path).with_suffix('.local.yaml'))
                self.config = ConfigLoader.load_config(self.config_path, local_override)
            else:
                self.console.print(
                    f"[yellow]⚠ Configuration file not found: {self.config_path}, using defaults[/yellow]"
                )
                self.config = get_default_config()
                ConfigLoader.validate_paths(self.config)

            self._setup_logging()
            return True

        except ConfigError as e:
            self.console.print(Panel(
                f"[red]Configuration error: {str(e)}[/red]",
                title="Configuration Error",
                border_style="red"
            ))
            return False

    def _setup_logging(self):
        """Setup logging based on configuration."""
        if not self.config:
            return

        log_config = self.config.logging
        log_level = getattr(logging, log_config.level.upper(), logging.INFO)

        log_path = Path(log_config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handlers: List[logging.Handler] = [
            RotatingFileHandler(
                log_config.file_path,
                maxBytes=log_config.max_file_size_mb * 1024 * 1024,
                backupCount=log_config.backup_count,
            )
        ]
        if log_config.console_enabled:
            handlers.append(logging.StreamHandler())

        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=handlers
        )

        logger.info("Logging initialized", extra={
            "level": log_config.level,
            "file": log_config.file_path
        })

    def build_rule_registry(self) -> RuleRegistry:
        """Registry with the built-in rules when they are enabled."""
        registry = RuleRegistry()
        if self.config.plugins.builtin_rules_enabled:
            count = load_builtin_rules(registry)
            logger.debug(f"Loaded {count} built-in verification rules")
        return registry

    def _gitlab_host(self) -> str:
        return urlparse(self.config.integrations.gitlab_url).netloc or 'gitlab.com'

    async def collect_diff(
        self,
        source: Optional[str],
        diff_format: str,
        repo: Optional[str] = None,
        staged: bool = False,
        base: Optional[str] = None,
    ) -> DiffInput:
        """Turn the verify command's input into a DiffInput.

        source may be a diff file, '-' for stdin, a pull/merge request URL or
        raw diff text. With repo set, the diff comes from the local repository.
        """
        if repo:
            return GitDiffAdapter().from_repository(repo, staged=staged, base=base)

        if source is None:
            raise click.UsageError("Provide a diff file, '-', a PR/MR URL, or --repo")

        if source == '-':
            text = click.get_text_stream('stdin').read()
        elif '\n' not in source and Path(source).is_file():
            text = Path(source).read_text(encoding='utf-8')
        else:
            text = source

        if diff_format == 'auto':
            diff_format = detect_format_from_input(text, self._gitlab_host())
            logger.info(f"Detected diff format: {diff_format}")

        stripped = text.strip()
        if diff_format in ('github', 'gitlab') and stripped.startswith(('http://', 'https://')):
            integrations = self.config.integrations
            token = integrations.github_token if diff_format == 'github' else integrations.gitlab_token
            adapter = create_adapter(diff_format, token)
            return await adapter.adapt(stripped)

        if diff_format == 'git':
            return GitDiffAdapter().adapt(text)

        return DiffInput(format=diff_format, content=text)

    async def run_verification(
        self,
        verification_input: VerificationInput,
        output_dir: Optional[str] = None
    ) -> Tuple[Verification, Path, Path]:
        """Run the engine and write the markdown and JSON reports."""
        async with ArtifactStore(self.config.storage.db_path) as store:
            async with OllamaClient.from_config(self.config.llm) as llm:
                if not await llm.health_check():
                    self.console.print(
                        f"[yellow]⚠ Ollama is not reachable at {self.config.llm.host}, "
                        f"analysis steps will report failures[/yellow]"
                    )

                engine = VerificationEngine(llm, store, self.config, self.build_rule_registry())
                with self.console.status("[cyan]Verifying changes...[/cyan]"):
                    verification = await engine.verify_changes(verification_input)

        md_path, json_path = ReportWriter().write_reports(
            verification, Path(output_dir or self.config.storage.reports_path)
        )
        return verification, md_path, json_path

    def display_verification(self, verification: Verification):
        """Render a verification summary panel and its issues."""
        summary = verification.summary
        status_style = STATUS_STYLES.get(summary.approval_status, 'white')
        counts = ", ".join(
            f"{summary.issue_counts.get(severity, 0)} {severity}" for severity in SEVERITY_LEVELS
        )

        self.console.print(Panel(
            f"[cyan]Verification ID:[/cyan] {verification.id}\n"
            f"[cyan]Epic:[/cyan] {verification.epic_id}\n"
            f"[cyan]Created:[/cyan] {verification.created_at.strftime('%Y-%m-%d %H:%M')}\n"
            f"[cyan]Source:[/cyan] {verification.diff_source.pr_url or verification.diff_source.branch} "
            f"({verification.diff_source.commit_hash[:12]})\n"
            f"[cyan]Files:[/cyan] {verification.analysis.total_files} "
            f"(+{verification.analysis.additions} / -{verification.analysis.deletions})\n\n"
            f"[cyan]Status:[/cyan] [{status_style}]{summary.approval_status}[/{status_style}]\n"
            f"[cyan]Issues:[/cyan] {summary.total_issues} ({counts})\n\n"
            f"{summary.recommendation}",
            title="Verification",
            border_style=status_style
        ))

        if not verification.issues:
            return

        table = Table(box=box.ROUNDED)
        table.add_column("Issue ID", style="dim")
        table.add_column("Severity", justify="center")
        table.add_column("Category")
        table.add_column("Location", style="cyan")
        table.add_column("Message")
        table.add_column("Resolution", justify="center")

        for issue in verification.issues:
            style = SEVERITY_STYLES.get(issue.severity, 'white')
            location = f"{issue.file}:{issue.line}" if issue.line else issue.file
            message = issue.message.splitlines()[0] if issue.message else ''
            table.add_row(
                issue.id,
                f"[{style}]{issue.severity}[/{style}]",
                issue.category,
                location,
                message,
                issue.resolution,
            )

        self.console.print(table)

    def display_verification_list(self, verifications: List[Verification]):
        table = Table(box=box.ROUNDED)
        table.add_column("Verification ID", style="cyan")
        table.add_column("Epic")
        table.add_column("Created", style="dim")
        table.add_column("Status", justify="center")
        table.add_column("Issues", justify="right")
        table.add_column("Open", justify="right")

        for verification in verifications:
            summary = verification.summary
            style = STATUS_STYLES.get(summary.approval_status, 'white')
            table.add_row(
                verification.id,
                verification.epic_id,
                verification.created_at.strftime("%Y-%m-%d %H:%M"),
                f"[{style}]{summary.approval_status}[/{style}]",
                str(summary.total_issues),
                str(len(verification.open_issues)),
            )

        self.console.print(table)

    def display_config(self):
        """Display configuration in organized format."""
        if not self.config:
            return

        llm_table = Table(title="LLM Settings", box=box.ROUNDED)
        llm_table.add_column("Setting", style="cyan")
        llm_table.add_column("Value", style="white")
        llm_table.add_row("Host", self.config.llm.host)
        llm_table.add_row("Model", self.config.llm.model)
        llm_table.add_row("Temperature", str(self.config.llm.temperature))
        llm_table.add_row("Timeout", f"{self.config.llm.timeout}s")
        llm_table.add_row("Max Retries", str(self.config.llm.max_retries))
        self.console.print(llm_table)
        self.console.print()

        verif = self.config.verification
        verif_table = Table(title="Verification Settings", box=box.ROUNDED)
        verif_table.add_column("Setting", style="cyan")
        verif_table.add_column("Value", style="white")
        verif_table.add_row("Skip Low Severity", "✓" if verif.skip_low_severity else "✗")
        verif_table.add_row("Auto Approve", "✓" if verif.auto_approve else "✗")
        verif_table.add_row("Code Examples", "✓" if verif.include_code_examples else "✗")
        verif_table.add_row("Max Issues", str(verif.max_issues) if verif.max_issues is not None else "unlimited")
        verif_table.add_row("Rating Concurrency", str(verif.rating_concurrency))
        self.console.print(verif_table)
        self.console.print()

        storage_table = Table(title="Storage & Plugins", box=box.ROUNDED)
        storage_table.add_column("Setting", style="cyan")
        storage_table.add_column("Value", style="white")
        storage_table.add_row("Database", self.config.storage.db_path)
        storage_table.add_row("Reports", self.config.storage.reports_path)
        storage_table.add_row(
            "Built-in Rules", "✓" if self.config.plugins.builtin_rules_enabled else "✗"
        )
        for rule_id, enabled in self.config.plugins.verification_rules.items():
            storage_table.add_row(f"Rule {rule_id}", "✓" if enabled else "✗")
        self.console.print(storage_table)
        self.console.print()

        self.console.print("[green]✓ Configuration is valid[/green]")

    async def with_store(self, action):
        """Open the artifact store, run action(store) and return its result."""
        async with ArtifactStore(self.config.storage.db_path) as store:
            return await action(store)


def _load_app(ctx) -> FlowGuardCLI:
    app = FlowGuardCLI(ctx.obj['config_path'])
    if not app.load_configuration():
        sys.exit(1)
    return app


def _fail(app: FlowGuardCLI, error: Exception):
    app.console.print(f"[red]Error: {error}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name='flowguard')
@click.option('--config', '-c', default=DEFAULT_CONFIG_PATH, help='Path to configuration file')
@click.pass_context
def cli(ctx, config):
    """FlowGuard - verify code changes against epic specifications.

    Diffs are matched against the requirements of an epic's specs by a local
    LLM; deviations become rated issues and an approval recommendation.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config


@cli.command()
@click.argument('source', required=False)
@click.option('--epic', '-e', 'epic_id', required=True, help='Epic whose specs the changes implement')
@click.option('--spec', '-s', 'spec_ids', multiple=True, help='Spec ID to verify against (repeatable)')
@click.option(
    '--format', '-f', 'diff_format', default='auto',
    type=click.Choice(['auto', 'git', 'github', 'gitlab', 'unified']),
    help='Diff format (detected when auto)'
)
@click.option('--repo', type=click.Path(exists=True, file_okay=False), help='Verify a local repository diff')
@click.option('--staged', is_flag=True, help='With --repo, diff the index instead of the working tree')
@click.option('--base', help='With --repo, diff against this revision')
@click.option('--skip-low/--include-low', default=None, help='Drop Low severity issues')
@click.option('--auto-approve/--no-auto-approve', default=None, help='Approve when only Medium/Low issues remain')
@click.option('--code-examples/--no-code-examples', default=None, help='Ask the LLM for fix suggestions')
@click.option('--max-issues', type=click.IntRange(min=0), help='Keep at most this many issues')
@click.option('--output', '-o', type=click.Path(file_okay=False), help='Report output directory')
@click.pass_context
def verify(ctx, source, epic_id, spec_ids, diff_format, repo, staged, base,
           skip_low, auto_approve, code_examples, max_issues, output):
    """Verify a diff against the specs of an epic.

    SOURCE is a diff file, '-' for stdin, or a GitHub PR / GitLab MR URL.
    Exits with status 1 when the verification does not pass.
    """
    app = _load_app(ctx)

    async def _verify():
        diff_input = await app.collect_diff(source, diff_format, repo, staged, base)
        verification_input = VerificationInput(
            epic_id=epic_id,
            diff_input=diff_input,
            spec_ids=list(spec_ids) or None,
            options=VerificationOptions(
                skip_low_severity=skip_low,
                auto_approve=auto_approve,
                include_code_examples=code_examples,
                max_issues=max_issues,
            ),
        )
        return await app.run_verification(verification_input, output)

    try:
        verification, md_path, json_path = asyncio.run(_verify())
    except FlowGuardError as e:
        _fail(app, e)

    app.display_verification(verification)
    app.console.print(f"\n[dim]Reports: {md_path}, {json_path}[/dim]")
    sys.exit(0 if verification.summary.passed else 1)


@cli.command()
@click.argument('verification_id')
@click.option('--markdown', '-m', is_flag=True, help='Render the markdown report instead')
@click.pass_context
def show(ctx, verification_id, markdown):
    """Show a stored verification and its issues."""
    app = _load_app(ctx)

    try:
        verification = asyncio.run(
            app.with_store(lambda store: store.load_verification(verification_id))
        )
    except FlowGuardError as e:
        _fail(app, e)

    if markdown:
        app.console.print(Markdown(ReportWriter().render_markdown(verification)))
    else:
        app.display_verification(verification)


@cli.command('list')
@click.option('--epic', '-e', 'epic_id', help='Only verifications of this epic')
@click.option('--limit', '-n', default=20, type=click.IntRange(min=1), help='Maximum rows')
@click.pass_context
def list_verifications(ctx, epic_id, limit):
    """List recent verifications, newest first."""
    app = _load_app(ctx)

    try:
        verifications = asyncio.run(
            app.with_store(lambda store: store.list_verifications(epic_id, limit))
        )
    except FlowGuardError as e:
        _fail(app, e)

    if not verifications:
        app.console.print("[yellow]No verifications found.[/yellow]")
        return

    app.display_verification_list(verifications)
    app.console.print("\n[dim]Use 'python main.py show <verification_id>' for details[/dim]")


@cli.command('import-spec')
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_spec(ctx, paths):
    """Import markdown specs with YAML frontmatter (id, epicId, title)."""
    app = _load_app(ctx)

    async def _import(store):
        return [await store.import_spec_file(path) for path in paths]

    try:
        specs = asyncio.run(app.with_store(_import))
    except FlowGuardError as e:
        _fail(app, e)

    for spec in specs:
        app.console.print(f"[green]✓ Imported spec {spec.id}[/green] ({spec.title}, epic {spec.epic_id})")


def _resolve_issue(ctx, verification_id: str, issue_id: str, resolution: str):
    app = _load_app(ctx)

    async def _apply(store):
        reviewer = VerificationReviewer(store)
        if resolution == 'fixed':
            return await reviewer.mark_issue_fixed(verification_id, issue_id)
        if resolution == 'ignored':
            return await reviewer.mark_issue_ignored(verification_id, issue_id)
        return await reviewer.reopen_issue(verification_id, issue_id)

    try:
        issue = asyncio.run(app.with_store(_apply))
    except FlowGuardError as e:
        _fail(app, e)

    app.console.print(f"[green]✓ Issue {issue.id} marked {issue.resolution}[/green]")


@cli.command()
@click.argument('verification_id')
@click.argument('issue_id')
@click.pass_context
def fix(ctx, verification_id, issue_id):
    """Mark an issue as fixed."""
    _resolve_issue(ctx, verification_id, issue_id, 'fixed')


@cli.command()
@click.argument('verification_id')
@click.argument('issue_id')
@click.pass_context
def ignore(ctx, verification_id, issue_id):
    """Mark an issue as ignored."""
    _resolve_issue(ctx, verification_id, issue_id, 'ignored')


@cli.command()
@click.argument('verification_id')
@click.argument('issue_id')
@click.pass_context
def reopen(ctx, verification_id, issue_id):
    """Reopen a fixed or ignored issue."""
    _resolve_issue(ctx, verification_id, issue_id, 'open')


@cli.command()
@click.argument('verification_id')
@click.option('--conditions', help='Approve with these conditions')
@click.pass_context
def approve(ctx, verification_id, conditions):
    """Approve a verification, optionally with conditions."""
    app = _load_app(ctx)
    status = 'approved_with_conditions' if conditions else 'approved'

    try:
        verification = asyncio.run(app.with_store(
            lambda store: VerificationReviewer(store).approve(verification_id, status, conditions)
        ))
    except FlowGuardError as e:
        _fail(app, e)

    app.console.print(f"[green]✓ Verification {verification.id} {status}[/green]")


@cli.command('request-changes')
@click.argument('verification_id')
@click.option('--comment', '-m', required=True, help='What needs to change')
@click.pass_context
def request_changes(ctx, verification_id, comment):
    """Request changes on a verification."""
    app = _load_app(ctx)

    try:
        verification = asyncio.run(app.with_store(
            lambda store: VerificationReviewer(store).request_changes(verification_id, comment)
        ))
    except FlowGuardError as e:
        _fail(app, e)

    app.console.print(f"[yellow]Changes requested on verification {verification.id}[/yellow]")


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Validate and display configuration."""
    app = _load_app(ctx)
    app.console.print(f"[cyan]Configuration: {app.config_path}[/cyan]\n")
    app.display_config()


if __name__ == '__main__':
    cli(obj={})
