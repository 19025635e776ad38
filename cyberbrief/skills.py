"""
Skill prompt documents for the analysis agent.

Each skill is a markdown document installed in the agent's working directory
under .claude/skills/<name>/SKILL.md. The task prompt built here tells the
agent which files to read and the exact JSON document to write.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from .classifier import CATEGORIES


logger = logging.getLogger(__name__)


ARTICLES_FILENAME = "articles.json"
ANALYSIS_FILENAME = "analysis.json"
SKILLS_DIRNAME = ".claude/skills"


RSS_COLLECTION_SKILL = """---
name: rss-collection
description: Read the collected cybersecurity RSS articles and prepare them for analysis.
---

# RSS collection

The articles have already been fetched for you and written to `{articles_file}`.
Each entry has `title`, `url`, `source`, `published` (ISO 8601, UTC) and `summary`.

1. Load every entry from `{articles_file}`. Do not fetch any other URL.
2. Drop entries that are not about cybersecurity (threats, vulnerabilities,
   malware, breaches, threat actors, security policy).
3. Treat two entries with the same `url` as one article. Keep the first.
4. Keep only entries published within the last {hours_back} hours.
5. If the file is empty, continue with zero articles. Never invent articles.
"""

THREAT_ANALYSIS_SKILL = """---
name: threat-analysis
description: Categorize cybersecurity articles and write a short analyst summary for each.
---

# Threat analysis

Assign every kept article to exactly one of these categories:

{category_list}

For each article write a `summary` of one or two factual sentences: what
happened, who is affected, and any CVE identifiers, affected products or
named threat actors mentioned in the source. Do not speculate beyond the
source text.

Then write an `executive_summary` of three to five sentences highlighting the
most significant items of the period for a security team lead.
"""

REPORT_GENERATION_SKILL = """---
name: report-generation
description: Write the analysis as a JSON document with a fixed schema.
---

# Report generation

Write a single JSON object to `{analysis_file}` with exactly this shape:

```json
{schema}
```

Rules:

- `categories` only contains categories with at least one article.
- Articles inside a category are ordered newest first.
- `metadata.total_articles` equals the number of articles across all categories.
- `metadata.generated_at` is the current UTC time in ISO 8601.
- Write valid JSON only: no comments, no trailing commas, no markdown fences
  in the file itself.
"""

AGENT_TASK_PROMPT = """You are a cybersecurity news analyst.
Use the skills rss-collection, threat-analysis and report-generation in that order.

Input file: {articles_file} ({article_count} articles{feeds_note})
Time window: last {hours_back} hours
Output file: {analysis_file}

Do not ask questions and do not wait for confirmation. When {analysis_file} has
been written, reply with the single word DONE."""


def _schema_example() -> str:
    example = {
        "executive_summary": "string",
        "categories": {
            CATEGORIES[0]: [
                {
                    "title": "string",
                    "url": "string",
                    "source": "string",
                    "published": "ISO 8601 timestamp",
                    "summary": "string",
                }
            ]
        },
        "metadata": {
            "total_articles": 0,
            "feeds_processed": 0,
            "time_window_hours": 0,
            "generated_at": "ISO 8601 timestamp",
        },
    }
    return json.dumps(example, indent=2)


def render_skills(hours_back: int) -> dict[str, str]:
    """Return skill name -> markdown document."""
    category_list = "\n".join(f"- {name}" for name in CATEGORIES)
    return {
        "rss-collection": RSS_COLLECTION_SKILL.format(
            articles_file=ARTICLES_FILENAME,
            hours_back=hours_back,
        ),
        "threat-analysis": THREAT_ANALYSIS_SKILL.format(category_list=category_list),
        "report-generation": REPORT_GENERATION_SKILL.format(
            analysis_file=ANALYSIS_FILENAME,
            schema=_schema_example(),
        ),
    }


def write_skill_files(directory: Path, hours_back: int) -> list[Path]:
    """
    Install the skill documents into an agent working directory.

    Returns:
        Paths of the written SKILL.md files.
    """
    written = []
    for name, document in render_skills(hours_back).items():
        path = Path(directory) / SKILLS_DIRNAME / name / "SKILL.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(document, encoding="utf-8")
        written.append(path)

    logger.debug(f"Installed {len(written)} skills into {directory}")
    return written


def build_agent_prompt(
    article_count: int,
    hours_back: int,
    feeds_processed: Optional[int] = None,
) -> str:
    """Compose the task prompt passed to the agent container."""
    feeds_note = f" from {feeds_processed} feeds" if feeds_processed is not None else ""
    return AGENT_TASK_PROMPT.format(
        articles_file=ARTICLES_FILENAME,
        analysis_file=ANALYSIS_FILENAME,
        article_count=article_count,
        feeds_note=feeds_note,
        hours_back=hours_back,
    )
