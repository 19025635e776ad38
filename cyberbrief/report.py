"""
Markdown report rendering and persistence.

Turns an analysis document into the daily markdown briefing and stores it in
the namespace file store (output_dir/<namespace>/).
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from .analysis import AnalysisDocument, ArticleRecord
from .classifier import CATEGORIES


logger = logging.getLogger(__name__)


REPORT_FILENAME_PREFIX = "cybersecurity-news"


# Section display configuration with emoji icons
CATEGORY_EMOJI = {
    "Vulnerabilities & Exploits": "🛡️",
    "Malware & Ransomware": "🦠",
    "Data Breaches": "🔓",
    "Threat Actors & Campaigns": "🎯",
    "Policy & Industry": "🏛️",
}
DEFAULT_EMOJI = "📰"


REPORT_TEMPLATE = """# Cybersecurity News Briefing – {formatted_date}

> {total_articles} articles from {feeds_processed} feeds · last {time_window} · generated {generated_at}

## Executive Summary

{executive_summary}

{sections_md}
---

{footer}
"""

ERROR_REPORT_TEMPLATE = """# Cybersecurity News Briefing – {formatted_date}

> ⚠️ The analysis step failed. No articles were categorized for this run.

## Error

```
{error}
```

---

{footer}
"""

SECTION_TEMPLATE = """## {emoji} {category} ({count})

{articles_md}
"""

ARTICLE_TEMPLATE = """### [{title}]({url})

*{source} · {published}*

{summary}
"""

FOOTER_TEMPLATE = "*Generated by cyberbrief · analysis: {analysis_source}*"


class ReportError(Exception):
    """Raised when the report cannot be written."""
    pass


def _escape_link_text(text: str) -> str:
    """Escape characters that would break a markdown link label."""
    return text.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")


def _format_published(published: Optional[str]) -> str:
    if not published:
        return "date unknown"
    try:
        parsed = datetime.fromisoformat(published.replace("Z", "+00:00"))
    except ValueError:
        return published
    return parsed.strftime("%b %d, %H:%M UTC") if parsed.utcoffset() is not None else parsed.strftime("%b %d, %H:%M")


def _render_article(record: ArticleRecord) -> str:
    return ARTICLE_TEMPLATE.format(
        title=_escape_link_text(record.title),
        url=record.url,
        source=record.source or "Unknown source",
        published=_format_published(record.published),
        summary=record.summary.strip() or "_No summary available._",
    )


def _ordered_categories(categories: dict[str, list[ArticleRecord]]) -> list[str]:
    """Known categories in report order first, then any others as they appear."""
    known = [name for name in CATEGORIES if name in categories]
    extra = [name for name in categories if name not in CATEGORIES]
    return known + extra


def _render_sections(document: AnalysisDocument) -> str:
    parts = []
    for name in _ordered_categories(document.categories):
        records = document.categories[name]
        if not records:
            continue
        parts.append(SECTION_TEMPLATE.format(
            emoji=CATEGORY_EMOJI.get(name, DEFAULT_EMOJI),
            category=name,
            count=len(records),
            articles_md="\n".join(_render_article(record) for record in records),
        ))

    if not parts:
        return "_No articles in this period._\n"
    return "\n".join(parts)


def render_report(document: AnalysisDocument, report_date: date) -> str:
    """
    Render the markdown report for one run.

    Args:
        document: Analysis produced by the agent (or the local fallback).
        report_date: Date shown in the title.

    Returns:
        Markdown text.
    """
    formatted_date = report_date.strftime("%A, %B %d, %Y")
    metadata = document.metadata
    footer = FOOTER_TEMPLATE.format(analysis_source=metadata.get("analysis_source", "agent"))

    if document.is_error:
        return ERROR_REPORT_TEMPLATE.format(
            formatted_date=formatted_date,
            error=document.error,
            footer=footer,
        )

    hours = metadata.get("time_window_hours")
    return REPORT_TEMPLATE.format(
        formatted_date=formatted_date,
        total_articles=metadata.get("total_articles", document.total_articles),
        feeds_processed=metadata.get("feeds_processed", 0),
        time_window=f"{hours} hours" if hours else "period",
        generated_at=metadata.get("generated_at", "unknown"),
        executive_summary=document.executive_summary.strip() or "_No summary provided._",
        sections_md=_render_sections(document),
        footer=footer,
    )


def report_filename(report_date: date) -> str:
    """File name of the report for a given day."""
    return f"{REPORT_FILENAME_PREFIX}-{report_date.isoformat()}.md"


def write_report(markdown: str, target: Path) -> Path:
    """Write markdown to target, creating parent directories."""
    target = Path(target)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(markdown, encoding="utf-8")
    except OSError as e:
        raise ReportError(f"Failed to write report {target}: {e}")

    logger.info(f"Report saved: {target}")
    return target


def save_report(markdown: str, output_dir: Path, namespace: str, report_date: date) -> Path:
    """
    Write the report into the namespace file store.

    An existing report for the same day is overwritten.

    Raises:
        ReportError: If the file cannot be written.
    """
    return write_report(markdown, Path(output_dir) / namespace / report_filename(report_date))
