"""
Article classification based on content keywords.

Sorts articles into the report categories when the agent container is not
used to analyse them.
"""

from .rss_client import Article


VULNERABILITIES = "Vulnerabilities & Exploits"
MALWARE = "Malware & Ransomware"
BREACHES = "Data Breaches"
THREAT_ACTORS = "Threat Actors & Campaigns"
POLICY = "Policy & Industry"

# Report order; POLICY is the fallback bucket
CATEGORIES = [VULNERABILITIES, MALWARE, BREACHES, THREAT_ACTORS, POLICY]


# Keywords for classification (lowercase)
CATEGORY_KEYWORDS = {
    VULNERABILITIES: [
        "cve-", "vulnerability", "vulnerabilities", "zero-day", "0-day",
        "exploit", "exploited", "patch", "patches", "security update",
        "remote code execution", "privilege escalation",
        "authentication bypass", "buffer overflow", "sql injection", "xss",
        "kev catalog", "advisory", "cvss", "flaw", "bug bounty",
    ],
    MALWARE: [
        "malware", "ransomware", "trojan", "botnet", "backdoor", "infostealer",
        "stealer", "loader", "worm", "spyware", "rootkit", "wiper",
        "cryptominer", "rat ", "payload", "encrypts files", "lockbit",
        "blackcat", "clop", "emotet", "qakbot",
    ],
    BREACHES: [
        "data breach", "breach", "breached", "leaked", "leak", "exposed",
        "stolen data", "records", "customer data", "personal information",
        "compromised accounts", "credential", "credentials", "exfiltrated",
        "data theft", "notification letters",
    ],
    THREAT_ACTORS: [
        "apt28", "apt29", "apt41", "apt group", "threat actor", "nation-state", "state-sponsored",
        "campaign", "espionage", "lazarus", "fancy bear", "sandworm",
        "volt typhoon", "salt typhoon", "phishing", "spear-phishing",
        "social engineering", "hacktivist", "attribution", "cybercrime group",
    ],
}


def _score_category(text: str, keywords: list[str]) -> int:
    """Return the number of keyword occurrences found in text."""
    return sum(text.count(keyword) for keyword in keywords)


def classify_article(article: Article) -> str:
    """
    Classify an article into a report category.

    The title counts twice. Ties go to the category listed first in
    CATEGORIES; articles matching nothing land in POLICY.
    """
    title = article.title.lower()
    text = " ".join([title, title, (article.summary or "").lower()])

    best_category = POLICY
    best_score = 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        score = _score_category(text, keywords)
        if score > best_score:
            best_category = category
            best_score = score

    return best_category


def bucket_articles(articles: list[Article]) -> dict[str, list[Article]]:
    """
    Bucket articles by category.

    Returns:
        Every category in CATEGORIES mapped to its articles,
        each list sorted newest first.
    """
    buckets: dict[str, list[Article]] = {category: [] for category in CATEGORIES}

    for article in articles:
        buckets[classify_article(article)].append(article)

    for category in buckets:
        buckets[category].sort(key=lambda a: a.published_at, reverse=True)

    return buckets
