"""
Analysis document exchanged between the pipeline steps.

The agent container writes this JSON document; the report step reads it.
Shape::

    {
      "executive_summary": "...",
      "categories": {"<category>": [{"title", "url", "source", "published", "summary"}]},
      "metadata": {"total_articles": 0, "feeds_processed": 0, "generated_at": "..."},
      "error": "..."            # only on failure
    }
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .classifier import CATEGORIES, bucket_articles
from .rss_client import Article


logger = logging.getLogger(__name__)


REQUIRED_METADATA_COUNTS = ("total_articles", "feeds_processed")


class AnalysisError(Exception):
    """Raised when an analysis document cannot be read or written."""
    pass


@dataclass
class ArticleRecord:
    """One article as it appears in the analysis document."""

    title: str
    url: str
    source: Optional[str] = None
    published: Optional[str] = None
    summary: str = ""

    @classmethod
    def from_article(cls, article: Article) -> "ArticleRecord":
        return cls(
            title=article.title,
            url=article.url,
            source=article.source,
            published=article.published_at.isoformat(),
            summary=article.summary,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ArticleRecord":
        return cls(
            title=data["title"],
            url=data["url"],
            source=data.get("source"),
            published=data.get("published"),
            summary=data.get("summary") or "",
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "url": self.url,
            "source": self.source,
            "published": self.published,
            "summary": self.summary,
        }


@dataclass
class AnalysisDocument:
    """Executive summary, categorized articles and run metadata."""

    executive_summary: str
    categories: dict[str, list[ArticleRecord]] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def total_articles(self) -> int:
        return sum(len(records) for records in self.categories.values())

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisDocument":
        categories = {
            name: [ArticleRecord.from_dict(record) for record in records]
            for name, records in (data.get("categories") or {}).items()
        }
        return cls(
            executive_summary=data.get("executive_summary") or "",
            categories=categories,
            metadata=dict(data.get("metadata") or {}),
            error=data.get("error"),
        )

    def to_dict(self) -> dict:
        data = {
            "executive_summary": self.executive_summary,
            "categories": {
                name: [record.to_dict() for record in records]
                for name, records in self.categories.items()
            },
            "metadata": self.metadata,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ValidationResult:
    """Result of schema validation."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _check_records(name: str, records: Any, errors: list[str]) -> int:
    """Validate one category's record list, returning the record count."""
    if not isinstance(records, list):
        errors.append(f"categories.{name} must be a list")
        return 0

    for index, record in enumerate(records):
        where = f"categories.{name}[{index}]"
        if not isinstance(record, dict):
            errors.append(f"{where} must be an object")
            continue
        for key in ("title", "url"):
            value = record.get(key)
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{where}.{key} must be a non-empty string")
        for key in ("source", "published", "summary"):
            value = record.get(key)
            if value is not None and not isinstance(value, str):
                errors.append(f"{where}.{key} must be a string")
    return len(records)


def _check_metadata(metadata: Any, record_count: int, errors: list[str]) -> None:
    if not isinstance(metadata, dict):
        errors.append("metadata must be an object")
        return

    for key in REQUIRED_METADATA_COUNTS:
        value = metadata.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors.append(f"metadata.{key} must be a non-negative integer")

    generated_at = metadata.get("generated_at")
    if not isinstance(generated_at, str):
        errors.append("metadata.generated_at must be a timestamp string")
    else:
        try:
            datetime.fromisoformat(generated_at.replace("Z", "+00:00"))
        except ValueError:
            errors.append(f"metadata.generated_at is not an ISO 8601 timestamp: {generated_at}")

    total = metadata.get("total_articles")
    if isinstance(total, int) and not isinstance(total, bool) and total != record_count:
        errors.append(
            f"metadata.total_articles is {total} but categories hold {record_count} articles"
        )


def validate_analysis(data: Any) -> ValidationResult:
    """
    Check a decoded JSON value against the analysis document schema.

    Returns:
        ValidationResult listing every problem found.
    """
    if not isinstance(data, dict):
        return ValidationResult(is_valid=False, errors=["document must be a JSON object"])

    errors: list[str] = []

    if not isinstance(data.get("executive_summary"), str):
        errors.append("executive_summary must be a string")

    record_count = 0
    categories = data.get("categories")
    if not isinstance(categories, dict):
        errors.append("categories must be an object mapping category names to lists")
    else:
        for name, records in categories.items():
            record_count += _check_records(name, records, errors)

    _check_metadata(data.get("metadata"), record_count, errors)

    error = data.get("error")
    if error is not None and not isinstance(error, str):
        errors.append("error must be a string")

    return ValidationResult(is_valid=not errors, errors=errors)


def build_error_document(reason: str, metadata: Optional[dict] = None) -> AnalysisDocument:
    """Build the document written in place of a missing or invalid agent output."""
    meta = {
        "total_articles": 0,
        "feeds_processed": 0,
        "generated_at": _utc_now_iso(),
        "status": "error",
    }
    meta.update(metadata or {})
    meta["total_articles"] = 0
    return AnalysisDocument(
        executive_summary=f"Analysis unavailable: {reason}",
        categories={},
        metadata=meta,
        error=reason,
    )


def _local_summary(buckets: dict[str, list[Article]], total: int, hours_back: int) -> str:
    if total == 0:
        return f"No cybersecurity articles were published in the last {hours_back} hours."

    counts = ", ".join(
        f"{len(articles)} {name}" for name, articles in buckets.items() if articles
    )
    top = max(buckets.values(), key=len)[0]
    return (
        f"{total} articles collected in the last {hours_back} hours ({counts}). "
        f"Most recent in the largest category: {top.title}."
    )


def build_local_analysis(
    articles: list[Article],
    feeds_processed: int,
    hours_back: int,
    feeds_failed: int = 0,
) -> AnalysisDocument:
    """
    Build an analysis document from keyword classification alone.

    Used when the agent container is disabled. Empty categories are omitted.
    """
    buckets = bucket_articles(articles)
    categories = {
        name: [ArticleRecord.from_article(article) for article in buckets[name]]
        for name in CATEGORIES
        if buckets[name]
    }
    return AnalysisDocument(
        executive_summary=_local_summary(buckets, len(articles), hours_back),
        categories=categories,
        metadata={
            "total_articles": len(articles),
            "feeds_processed": feeds_processed,
            "feeds_failed": feeds_failed,
            "time_window_hours": hours_back,
            "generated_at": _utc_now_iso(),
            "analysis_source": "local",
        },
    )


def load_analysis(path: Path) -> AnalysisDocument:
    """
    Read and validate an analysis document.

    Raises:
        AnalysisError: If the file is missing or unreadable, not JSON, or fails validation.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise AnalysisError(f"Analysis file not found: {path}")
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Analysis file is not valid JSON: {path}: {e}")
    except UnicodeDecodeError as e:
        raise AnalysisError(f"Analysis file is not UTF-8 text: {path}: {e}")
    except OSError as e:
        raise AnalysisError(f"Analysis file could not be read: {path}: {e}")

    result = validate_analysis(data)
    if not result.is_valid:
        raise AnalysisError(f"Analysis file failed validation: {'; '.join(result.errors)}")

    return AnalysisDocument.from_dict(data)


def save_analysis(document: AnalysisDocument, path: Path) -> Path:
    """Write an analysis document as indented JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.debug(f"Analysis written to {path}")
    return path
