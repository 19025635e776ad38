#!/usr/bin/env python3
"""
Command-line entry point for cyberbrief.

Subcommands:
    run               fetch feeds, analyse, write the markdown briefing
    collect           fetch feeds and write articles.json only
    skills            install the agent skill documents
    prompt            print the agent task prompt
    render            render analysis.json to markdown
    validate          lint and schema-check the Kestra flow files
    create-namespace  scaffold a new namespace with an example flow
    list-flows        list flow files and their ids
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from .config import ConfigError, load_config
from .flows import FlowError, discover_flows, load_flow, validate_tree
from .namespace import NamespaceError, create_namespace, list_namespaces
from .pipeline import collect_articles, render_analysis_file, run_pipeline
from .report import ReportError
from .rss_client import RSSClientError
from .skills import ANALYSIS_FILENAME, ARTICLES_FILENAME, build_agent_prompt, write_skill_files


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)

_installed_handlers: list[logging.Handler] = []


def _setup_logging(logs_dir: Path, verbose: bool = False) -> Path:
    """
    Configure logging to both console and file.

    Creates a timestamped log file in logs_dir.

    Returns:
        Path to the log file.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"run_{timestamp}.log"
    level = logging.DEBUG if verbose else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Repeated invocations in one process replace the previous handlers
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    for handler in (console_handler, file_handler):
        root_logger.addHandler(handler)
        _installed_handlers.append(handler)

    return log_file


def _get_trace_logger(logs_dir: Path) -> logging.Logger:
    """Logger writing full agent container output to its own file."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    trace_path = logs_dir / f"agent_trace_{timestamp}.log"

    trace_logger = logging.getLogger("cyberbrief.agent_trace")
    trace_logger.setLevel(logging.DEBUG)
    trace_logger.propagate = False
    for handler in list(trace_logger.handlers):
        trace_logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(trace_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s]\n%(message)s\n", DATE_FORMAT))
    trace_logger.addHandler(file_handler)

    logger.info(f"Agent trace logging to: {trace_path}")
    return trace_logger


@click.group()
@click.option("--env-file", type=click.Path(dir_okay=False, path_type=Path), help="Load settings from this .env file")
@click.option("--logs-dir", default="logs", show_default=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, env_file: Optional[Path], logs_dir: Path, verbose: bool) -> None:
    """Cyberbrief - daily cybersecurity news briefing and Kestra flow tooling."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file
    ctx.obj["logs_dir"] = logs_dir
    ctx.obj["log_file"] = _setup_logging(logs_dir, verbose)


@cli.command("run")
@click.option("--date", "report_date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Report date (default: today)")
@click.option("--no-agent", is_flag=True, help="Use local keyword analysis instead of the agent container")
@click.pass_context
def run(ctx: click.Context, report_date: Optional[datetime], no_agent: bool) -> None:
    """Fetch feeds, analyse them and write the markdown briefing."""
    logger.info(f"Log file: {ctx.obj['log_file'].absolute()}")

    try:
        config = load_config(ctx.obj["env_file"], agent_enabled=False if no_agent else None)
        logger.info("Configuration loaded successfully")
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    trace_logger = _get_trace_logger(ctx.obj["logs_dir"]) if config.agent_enabled else None

    try:
        result = run_pipeline(
            config,
            report_date=report_date.date() if report_date else None,
            trace_logger=trace_logger,
        )
    except ReportError as e:
        logger.error(f"Failed to save report: {e}")
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not result.succeeded:
        click.echo(f"❌ Briefing written with errors: {result.report_path}", err=True)
        sys.exit(1)

    click.echo(
        f"✅ Briefing written: {result.report_path} "
        f"({result.analysis.total_articles} articles, {result.feeds_failed} feeds failed)"
    )


@cli.command("collect")
@click.option("--output", default=ARTICLES_FILENAME, show_default=True, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def collect(ctx: click.Context, output: Path) -> None:
    """Fetch the configured feeds and write the articles file."""
    try:
        config = load_config(ctx.obj["env_file"], agent_enabled=False)
    except ConfigError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    try:
        fetch = collect_articles(config, output)
    except RSSClientError as e:
        logger.error(f"Feed collection failed: {e}")
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ {len(fetch.articles)} articles written to {output} ({fetch.feeds_failed} feeds failed)")


@cli.command("skills")
@click.option("--output", default=".", show_default=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--hours-back", default=24, show_default=True, type=click.IntRange(min=1))
def skills(output: Path, hours_back: int) -> None:
    """Install the agent skill documents into a working directory."""
    for path in write_skill_files(output, hours_back):
        click.echo(f"📄 {path}")


@cli.command("prompt")
@click.option("--articles", default=ARTICLES_FILENAME, show_default=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--hours-back", default=24, show_default=True, type=click.IntRange(min=1))
def prompt(articles: Path, hours_back: int) -> None:
    """Print the agent task prompt for an articles file."""
    try:
        records = json.loads(articles.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        click.echo(f"❌ {articles} is not valid JSON: {e}", err=True)
        sys.exit(1)
    except (OSError, UnicodeDecodeError) as e:
        click.echo(f"❌ Could not read {articles}: {e}", err=True)
        sys.exit(1)
    if not isinstance(records, list):
        click.echo(f"❌ {articles} must contain a JSON list of articles", err=True)
        sys.exit(1)

    click.echo(build_agent_prompt(article_count=len(records), hours_back=hours_back))


@cli.command("render")
@click.option("--analysis", "analysis_path", default=ANALYSIS_FILENAME, show_default=True, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--output", default="report.md", show_default=True, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--date", "report_date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Report date (default: today)")
def render(analysis_path: Path, output: Path, report_date: Optional[datetime]) -> None:
    """Render an analysis file to the markdown briefing."""
    try:
        document = render_analysis_file(
            analysis_path,
            output,
            report_date=report_date.date() if report_date else None,
        )
    except ReportError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if document.is_error:
        click.echo(f"❌ Briefing written with errors: {output}", err=True)
        sys.exit(1)
    click.echo(f"✅ Briefing written: {output} ({document.total_articles} articles)")


@cli.command("validate")
@click.argument("paths", nargs=-1, type=click.Path(exists=True, path_type=Path))
@click.option("--flows-dir", default="_flows", show_default=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--strict", is_flag=True, help="Treat warnings as failures")
def validate(paths: tuple, flows_dir: Path, strict: bool) -> None:
    """Lint and schema-check flow files (all of FLOWS_DIR by default)."""
    files: Optional[list[Path]] = None
    if paths:
        files = []
        for path in paths:
            files.extend(discover_flows(path) if path.is_dir() else [path])

    click.echo("🔍 Validating flows...")
    try:
        result = validate_tree(flows_dir, paths=files)
    except FlowError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not result.files:
        click.echo(f"❌ No flow files found in {flows_dir}", err=True)
        sys.exit(1)

    for path in result.files:
        found = result.issues.get(path, [])
        marker = "❌" if any(issue.is_error for issue in found) else ("⚠️ " if found else "✅")
        click.echo(f"{marker} {path}")
        for issue in found:
            click.echo(f"    {issue}")

    click.echo("")
    click.echo(
        f"📋 {len(result.files)} flow files, {result.error_count} errors, {result.warning_count} warnings"
    )

    if not result.ok or (strict and result.warning_count):
        sys.exit(1)
    click.echo("✨ All validations complete!")


@cli.command("create-namespace")
@click.argument("name")
@click.option("--flows-dir", default="_flows", show_default=True, type=click.Path(file_okay=False, path_type=Path))
def create_namespace_command(name: str, flows_dir: Path) -> None:
    """Create a namespace directory with an example flow."""
    try:
        example = create_namespace(name, flows_dir)
    except NamespaceError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Namespace '{name}' created successfully!")
    click.echo(f"📄 Example flow created at: {example}")
    click.echo("")
    click.echo("Next steps:")
    click.echo(f"  1. Edit {example} or create new flows")
    click.echo(f"  2. Run: cyberbrief validate {example.parent}")
    click.echo("  3. Commit your changes")


@cli.command("list-flows")
@click.option("--flows-dir", default="_flows", show_default=True, type=click.Path(file_okay=False, path_type=Path))
def list_flows(flows_dir: Path) -> None:
    """List namespaces and their flow files."""
    namespaces = list_namespaces(flows_dir)
    if not namespaces:
        click.echo(f"No namespaces in {flows_dir}")
        return

    for namespace in namespaces:
        click.echo(f"📁 {namespace}")
        for path in discover_flows(Path(flows_dir) / namespace):
            try:
                flow = load_flow(path)
                label = f"{flow.namespace}.{flow.id} ({len(flow.tasks)} tasks)"
            except FlowError as e:
                label = f"unreadable: {e}"
            click.echo(f"    {path.name}: {label}")


def main() -> None:
    """CLI entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
