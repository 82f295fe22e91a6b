"""Label taxonomy and keyword tables used by the triage policy."""

import re

from ..models import Classification, PriorityLevel

# Evaluated top to bottom; the first classification with a matching label wins
LABEL_TAXONOMY: tuple[tuple[Classification, frozenset[str]], ...] = (
    (
        Classification.SECURITY,
        frozenset({"security", "vulnerability", "cve", "security-issue", "secops"}),
    ),
    (
        Classification.BUG_CRITICAL,
        frozenset(
            {"critical", "p0", "sev0", "sev1", "sev-0", "sev-1", "outage", "data-loss"}
        ),
    ),
    (Classification.BUG_MINOR, frozenset({"bug", "defect", "regression"})),
    (
        Classification.FEATURE,
        frozenset({"feature", "enhancement", "feature-request", "improvement"}),
    ),
    (
        Classification.TECH_DEBT,
        frozenset(
            {"tech-debt", "techdebt", "refactor", "chore", "cleanup", "dependencies"}
        ),
    ),
    (Classification.DOCUMENTATION, frozenset({"documentation", "docs"})),
)

SECURITY_KEYWORDS = re.compile(
    r"\b(vulnerabilit(y|ies)|cve-\d{4}-\d+|xss|csrf|sql injection|"
    r"remote code execution|privilege escalation|security advisory)\b",
    re.IGNORECASE,
)

DEFECT_KEYWORDS = re.compile(
    r"\b(bug|fix(es|ed)?|error|crash(es|ed)?|fail(s|ed|ure|ing)?|broken|"
    r"exception|regression|data loss|outage)\b",
    re.IGNORECASE,
)

# Conventional-commit style title prefixes, e.g. "feat(api): ..." or "fix!: ..."
TITLE_PREFIX = re.compile(r"^\s*(\w+)(\([^)]*\))?!?:", re.IGNORECASE)

TITLE_PREFIX_CLASSES = {
    "feat": Classification.FEATURE,
    "feature": Classification.FEATURE,
    "fix": Classification.BUG_MINOR,
    "bugfix": Classification.BUG_MINOR,
    "docs": Classification.DOCUMENTATION,
    "doc": Classification.DOCUMENTATION,
    "refactor": Classification.TECH_DEBT,
    "chore": Classification.TECH_DEBT,
    "perf": Classification.TECH_DEBT,
    "build": Classification.TECH_DEBT,
    "ci": Classification.TECH_DEBT,
    "test": Classification.TECH_DEBT,
}

BASE_PRIORITY = {
    Classification.BUG_CRITICAL: PriorityLevel.CRITICAL,
    Classification.SECURITY: PriorityLevel.HIGH,
    Classification.BUG_MINOR: PriorityLevel.MEDIUM,
    Classification.FEATURE: PriorityLevel.MEDIUM,
    Classification.TECH_DEBT: PriorityLevel.LOW,
    Classification.DOCUMENTATION: PriorityLevel.LOW,
    Classification.UNCATEGORIZED: PriorityLevel.LOW,
}

_unmapped = set(Classification) - set(BASE_PRIORITY)
if _unmapped:
    raise RuntimeError(f"No base priority for {sorted(c.value for c in _unmapped)}")

# Classifications that never drop below this priority
PRIORITY_FLOOR = {Classification.SECURITY: PriorityLevel.HIGH}

_STOPWORDS = frozenset({"the", "and", "for", "with", "from", "into", "that", "this"})


def normalize_label(label: str) -> str:
    """Reduce scoped labels such as ``type::bug`` or ``Priority: P0`` to a key."""
    value = label.strip().lower()
    for separator in ("::", ":", "/"):
        if separator in value:
            value = value.rsplit(separator, 1)[1]
    return "-".join(value.replace("_", " ").split())


def classify_labels(labels: frozenset[str]) -> tuple[Classification, str] | None:
    """Match labels against the taxonomy.

    Returns:
        The winning classification and the label that matched, or None
    """
    normalized = {normalize_label(label): label for label in sorted(labels)}
    for classification, keys in LABEL_TAXONOMY:
        for key in sorted(keys):
            if key in normalized:
                return classification, normalized[key]
    return None


def classify_title_prefix(title: str) -> tuple[Classification, str] | None:
    """Map a conventional-commit title prefix onto a classification."""
    match = TITLE_PREFIX.match(title)
    if not match:
        return None
    prefix = match.group(1).lower()
    if prefix not in TITLE_PREFIX_CLASSES:
        return None
    return TITLE_PREFIX_CLASSES[prefix], prefix


def mentions(phrase: str, text: str) -> bool:
    """Whole-word, case-insensitive phrase match."""
    phrase = phrase.strip()
    if not phrase:
        return False
    return re.search(rf"\b{re.escape(phrase)}\b", text, re.IGNORECASE) is not None


def significant_tokens(phrase: str) -> set[str]:
    """Lower-cased words of four or more letters, minus stopwords."""
    return {
        token
        for token in re.findall(r"[a-z0-9][a-z0-9-]+", phrase.lower())
        if len(token) >= 4 and token not in _STOPWORDS
    }
