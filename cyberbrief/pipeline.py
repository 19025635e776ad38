"""
The daily briefing sequence.

fetch feeds -> invoke agent container -> render markdown -> persist file -> log
"""

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from .agent_runner import (
    AgentError,
    AgentRunConfig,
    collect_agent_output,
    run_agent,
    write_articles_file,
)
from .analysis import (
    AnalysisDocument,
    ArticleRecord,
    build_error_document,
    build_local_analysis,
    save_analysis,
)
from .config import Config
from .report import render_report, save_report, write_report
from .rss_client import FeedFetchResult, RSSClientError, fetch_multiple_feeds
from .skills import ANALYSIS_FILENAME, ARTICLES_FILENAME, build_agent_prompt, write_skill_files


logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """What a run produced."""

    report_path: Path
    analysis_path: Path
    analysis: AnalysisDocument
    articles_fetched: int
    feeds_processed: int
    feeds_failed: int

    @property
    def succeeded(self) -> bool:
        return not self.analysis.is_error


def _prepare_workdir(config: Config, report_date: date) -> Path:
    """Create the run's working directory, dropping a stale analysis file."""
    workdir = Path(config.work_dir) / report_date.isoformat()
    workdir.mkdir(parents=True, exist_ok=True)
    stale = workdir / ANALYSIS_FILENAME
    if stale.exists():
        stale.unlink()
    return workdir


def _run_agent_step(
    config: Config,
    workdir: Path,
    fetch: FeedFetchResult,
    trace_logger: Optional[logging.Logger],
) -> AnalysisDocument:
    """Invoke the agent container and collect its analysis."""
    metadata = {
        "feeds_processed": fetch.feeds_processed,
        "feeds_failed": fetch.feeds_failed,
        "time_window_hours": config.hours_back,
        "analysis_source": "agent",
    }

    write_skill_files(workdir, config.hours_back)
    prompt = build_agent_prompt(
        article_count=len(fetch.articles),
        feeds_processed=fetch.feeds_processed,
        hours_back=config.hours_back,
    )
    agent_config = AgentRunConfig(
        image=config.agent_image,
        api_key=config.anthropic_api_key,
        timeout_seconds=config.agent_timeout_seconds,
        max_attempts=config.agent_max_attempts,
        retry_interval_seconds=config.agent_retry_interval_seconds,
    )

    try:
        run_agent(agent_config, workdir, prompt, trace_logger=trace_logger)
    except AgentError as e:
        logger.error(f"Agent step failed: {e}")
        document = build_error_document(str(e), metadata=metadata)
        save_analysis(document, workdir / ANALYSIS_FILENAME)
        return document

    document = collect_agent_output(workdir, metadata=metadata)
    for key, value in metadata.items():
        document.metadata.setdefault(key, value)
    return document


def collect_articles(config: Config, output: Path) -> FeedFetchResult:
    """
    Fetch the configured feeds and write the articles file only.

    Raises:
        RSSClientError: If every enabled feed failed.
    """
    fetch = fetch_multiple_feeds(config.feeds, hours_back=config.hours_back)
    records = [ArticleRecord.from_article(a).to_dict() for a in fetch.articles]
    output = Path(output)
    write_articles_file(output.parent, output.name, records)
    logger.info(
        f"Collected {len(records)} articles from {fetch.feeds_processed} feeds "
        f"({fetch.feeds_failed} failed) -> {output}"
    )
    return fetch


def render_analysis_file(analysis_path: Path, output: Path, report_date: Optional[date] = None) -> AnalysisDocument:
    """
    Render an analysis file written elsewhere (e.g. by a flow task) to markdown.

    A missing or invalid analysis file is replaced by an error document, and
    the error report is still written.
    """
    analysis_path = Path(analysis_path)
    document = collect_agent_output(analysis_path.parent, filename=analysis_path.name)
    write_report(render_report(document, report_date or date.today()), output)
    return document


def run_pipeline(
    config: Config,
    report_date: Optional[date] = None,
    trace_logger: Optional[logging.Logger] = None,
) -> PipelineResult:
    """
    Execute one briefing run.

    Steps:
    1. Fetch all feeds (failing feeds are skipped)
    2. Write the articles file for the agent
    3. Analyse with the agent container, or locally when disabled
    4. Render the markdown report
    5. Save it to the namespace file store

    A failed analysis still produces a report describing the error;
    check ``PipelineResult.succeeded``.
    """
    report_date = report_date or date.today()
    logger.info(f"Starting cybersecurity briefing for {report_date.isoformat()}")

    workdir = _prepare_workdir(config, report_date)
    analysis_path = workdir / ANALYSIS_FILENAME

    # 1. Fetch feeds
    try:
        fetch = fetch_multiple_feeds(config.feeds, hours_back=config.hours_back)
    except RSSClientError as e:
        logger.error(f"Feed collection failed: {e}")
        fetch = FeedFetchResult(feeds_failed=len([f for f in config.feeds if f.enabled]), errors=[str(e)])
        analysis = build_error_document(str(e), metadata={
            "feeds_failed": fetch.feeds_failed,
            "time_window_hours": config.hours_back,
        })
        save_analysis(analysis, analysis_path)
    else:
        # 2. Articles file
        records = [ArticleRecord.from_article(a).to_dict() for a in fetch.articles]
        write_articles_file(workdir, ARTICLES_FILENAME, records)
        logger.info(f"Wrote {len(records)} articles to {workdir / ARTICLES_FILENAME}")

        # 3. Analysis
        if not fetch.articles:
            logger.info("No recent articles; skipping analysis")
            analysis = build_local_analysis([], fetch.feeds_processed, config.hours_back, fetch.feeds_failed)
            save_analysis(analysis, analysis_path)
        elif config.agent_enabled:
            analysis = _run_agent_step(config, workdir, fetch, trace_logger)
        else:
            logger.info("Agent disabled; using local keyword analysis")
            analysis = build_local_analysis(
                fetch.articles, fetch.feeds_processed, config.hours_back, fetch.feeds_failed
            )
            save_analysis(analysis, analysis_path)

    # 4. Render and 5. persist
    markdown = render_report(analysis, report_date)
    report_path = save_report(markdown, config.output_dir, config.flow_namespace, report_date)

    if analysis.is_error:
        logger.warning(f"Briefing written with errors: {analysis.error}")
    else:
        logger.info(
            f"Briefing complete: {analysis.total_articles} articles in "
            f"{len(analysis.categories)} categories -> {report_path}"
        )

    return PipelineResult(
        report_path=report_path,
        analysis_path=analysis_path,
        analysis=analysis,
        articles_fetched=len(fetch.articles),
        feeds_processed=fetch.feeds_processed,
        feeds_failed=fetch.feeds_failed,
    )
