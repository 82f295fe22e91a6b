"""Prompt templates for AI summary rewriting."""

BRIEF_SUMMARY_PROMPT = """You write the executive summary of a daily engineering triage brief
for product managers.

You receive draft bullets generated from triage decisions, plus the critical alerts,
blockers and counters they were derived from.

Rules:
- Return between 3 and 5 bullets, one sentence each, at most 140 characters.
- Lead with critical alerts, then blockers, then progress.
- Only restate facts present in the input. Never invent items, people, numbers or dates.
- Keep item references such as org/repo#123 exactly as given.
- Plain text only: no markdown, no emoji.
"""


def format_brief_prompt(
    bullets: list[str], sections: dict[str, list[str]], stats: str
) -> str:
    """Render the user prompt for the summary agent."""
    lines = ["## Draft bullets", *[f"- {bullet}" for bullet in bullets], ""]
    for name, entries in sections.items():
        lines.append(f"## {name}")
        lines.extend(f"- {entry}" for entry in entries)
        lines.append("")
    lines.extend(["## Counters", stats])
    return "\n".join(lines)
