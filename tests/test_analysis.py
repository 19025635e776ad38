"""Tests for the analysis document contract."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from cyberbrief.analysis import (
    AnalysisDocument,
    AnalysisError,
    ArticleRecord,
    build_error_document,
    build_local_analysis,
    load_analysis,
    save_analysis,
    validate_analysis,
)
from cyberbrief.classifier import BREACHES, MALWARE
from cyberbrief.rss_client import Article


NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def valid_document():
    return {
        "executive_summary": "Two notable incidents today.",
        "categories": {
            MALWARE: [
                {
                    "title": "LockBit returns",
                    "url": "https://example.com/lockbit",
                    "source": "Wire",
                    "published": "2024-01-15T10:00:00+00:00",
                    "summary": "The group resumed operations.",
                }
            ],
            BREACHES: [
                {"title": "Retailer breach", "url": "https://example.com/retail"},
            ],
        },
        "metadata": {
            "total_articles": 2,
            "feeds_processed": 3,
            "generated_at": "2024-01-15T12:00:00Z",
        },
    }


class TestValidateAnalysis:
    """Tests for validate_analysis function."""

    def test_valid_document(self):
        """Test that a well-formed document passes."""
        result = validate_analysis(valid_document())
        assert result.is_valid
        assert result.errors == []

    def test_not_an_object(self):
        """Test that non-object JSON is rejected."""
        result = validate_analysis(["not", "a", "dict"])
        assert not result.is_valid

    def test_missing_title_and_url(self):
        """Test that records need a title and a URL."""
        data = valid_document()
        data["categories"][BREACHES][0] = {"title": " ", "summary": "x"}
        data["metadata"]["total_articles"] = 2

        result = validate_analysis(data)

        assert not result.is_valid
        assert f"categories.{BREACHES}[0].title must be a non-empty string" in result.errors
        assert f"categories.{BREACHES}[0].url must be a non-empty string" in result.errors

    def test_total_mismatch(self):
        """Test that total_articles must match the record count."""
        data = valid_document()
        data["metadata"]["total_articles"] = 5

        result = validate_analysis(data)

        assert not result.is_valid
        assert any("total_articles is 5" in error for error in result.errors)

    def test_boolean_count_rejected(self):
        """Test that booleans are not accepted as counts."""
        data = valid_document()
        data["metadata"]["feeds_processed"] = True

        assert not validate_analysis(data).is_valid

    def test_bad_timestamp(self):
        """Test that generated_at must be ISO 8601."""
        data = valid_document()
        data["metadata"]["generated_at"] = "this morning"

        result = validate_analysis(data)

        assert any("generated_at" in error for error in result.errors)

    def test_categories_must_be_mapping(self):
        """Test that categories must be an object of lists."""
        data = valid_document()
        data["categories"] = [valid_document()["categories"][MALWARE]]
        data["metadata"]["total_articles"] = 0

        assert not validate_analysis(data).is_valid


class TestAnalysisDocument:
    """Tests for the document dataclasses."""

    def test_from_dict_and_total(self):
        """Test decoding and the article count."""
        document = AnalysisDocument.from_dict(valid_document())

        assert document.total_articles == 2
        assert document.categories[BREACHES][0].summary == ""
        assert document.categories[BREACHES][0].source is None
        assert not document.is_error

    def test_to_dict_omits_error_when_unset(self):
        """Test that successful documents carry no error key."""
        document = AnalysisDocument.from_dict(valid_document())
        assert "error" not in document.to_dict()

    def test_record_from_article(self):
        """Test conversion of a collected article."""
        article = Article(
            id="1", title="T", url="https://u", summary="S",
            published_at=NOW, source="Src",
        )
        record = ArticleRecord.from_article(article)
        assert record.published == "2024-01-15T12:00:00+00:00"
        assert record.to_dict()["source"] == "Src"


class TestBuildDocuments:
    """Tests for error and local documents."""

    def test_error_document(self):
        """Test the error document written on failure."""
        document = build_error_document("agent timed out", metadata={"feeds_processed": 4, "total_articles": 9})

        assert document.is_error
        assert document.error == "agent timed out"
        assert document.executive_summary == "Analysis unavailable: agent timed out"
        assert document.metadata["status"] == "error"
        assert document.metadata["feeds_processed"] == 4
        assert document.metadata["total_articles"] == 0
        assert validate_analysis(document.to_dict()).is_valid

    def test_local_analysis(self):
        """Test keyword analysis output."""
        articles = [
            Article(id="a", title="Ransomware hits port", url="https://a", summary="",
                    published_at=NOW - timedelta(hours=1), source="Wire"),
            Article(id="b", title="Bank discloses data breach", url="https://b", summary="",
                    published_at=NOW - timedelta(hours=2), source="Wire"),
        ]

        document = build_local_analysis(articles, feeds_processed=2, hours_back=24, feeds_failed=1)

        assert set(document.categories) == {MALWARE, BREACHES}
        assert document.metadata["analysis_source"] == "local"
        assert document.metadata["feeds_failed"] == 1
        assert document.metadata["time_window_hours"] == 24
        assert "2 articles" in document.executive_summary
        assert validate_analysis(document.to_dict()).is_valid

    def test_local_analysis_empty(self):
        """Test the summary when nothing was published."""
        document = build_local_analysis([], feeds_processed=3, hours_back=12)

        assert document.categories == {}
        assert document.total_articles == 0
        assert "No cybersecurity articles" in document.executive_summary


class TestLoadSave:
    """Tests for reading and writing analysis files."""

    def test_round_trip(self, tmp_path):
        """Test that a saved document loads back unchanged."""
        document = AnalysisDocument.from_dict(valid_document())
        path = save_analysis(document, tmp_path / "nested" / "analysis.json")

        assert load_analysis(path) == document

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises AnalysisError."""
        with pytest.raises(AnalysisError) as exc_info:
            load_analysis(tmp_path / "analysis.json")
        assert "not found" in str(exc_info.value)

    def test_invalid_json(self, tmp_path):
        """Test that malformed JSON raises AnalysisError."""
        path = tmp_path / "analysis.json"
        path.write_text("{not json")

        with pytest.raises(AnalysisError) as exc_info:
            load_analysis(path)
        assert "not valid JSON" in str(exc_info.value)

    def test_schema_failure(self, tmp_path):
        """Test that schema violations raise AnalysisError."""
        path = tmp_path / "analysis.json"
        path.write_text(json.dumps({"executive_summary": "x"}))

        with pytest.raises(AnalysisError) as exc_info:
            load_analysis(path)
        assert "failed validation" in str(exc_info.value)
