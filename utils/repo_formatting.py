"""
Formatting helpers for repository notifications and status output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

if TYPE_CHECKING:
    from storage.snapshot_store import TrackedRepository


@dataclass
class RepoEnrichment:
    """Optional extra lines attached to a repository notification."""
    languages: Optional[str] = None
    latest_commit: Optional[str] = None
    commit_activity: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.languages or self.latest_commit or self.commit_activity)


LANGUAGE_COLORS: Dict[str, str] = {
    "JavaScript": "#f1e05a",
    "TypeScript": "#2b7489",
    "Python": "#3572A5",
    "Java": "#b07219",
    "C#": "#178600",
    "PHP": "#4F5D95",
    "C++": "#f34b7d",
    "C": "#555555",
    "Ruby": "#701516",
    "Go": "#00ADD8",
    "Swift": "#ffac45",
    "Kotlin": "#F18E33",
    "Rust": "#dea584",
    "HTML": "#e34c26",
    "CSS": "#563d7c",
    "Shell": "#89e051",
    "PowerShell": "#012456",
    "Dart": "#00B4AB",
    "Elixir": "#6e4a7e",
    "Vue": "#2c3e50",
    "Lua": "#000080",
    "Haskell": "#5e5086",
    "Clojure": "#db5855",
}
DEFAULT_LANGUAGE_COLOR = "#858585"

LANGUAGE_EMOJIS: Dict[str, str] = {
    "JavaScript": "🟨",
    "TypeScript": "🔷",
    "Python": "🐍",
    "Java": "☕",
    "C#": "🟢",
    "PHP": "🐘",
    "C++": "🔴",
    "C": "⚪",
    "Ruby": "💎",
    "Go": "🔵",
    "Swift": "🟠",
    "Kotlin": "🟠",
    "Rust": "⚙️",
    "HTML": "🌐",
    "CSS": "🎨",
    "Shell": "🐚",
    "PowerShell": "💠",
    "Dart": "🎯",
    "Vue": "🟩",
}
DEFAULT_LANGUAGE_EMOJI = "📄"


def get_language_color(language: Optional[str]) -> str:
    return LANGUAGE_COLORS.get(language or "", DEFAULT_LANGUAGE_COLOR)


def get_language_emoji(language: Optional[str]) -> str:
    return LANGUAGE_EMOJIS.get(language or "", DEFAULT_LANGUAGE_EMOJI)


def generate_repository_summary(repo: TrackedRepository) -> str:
    """Multi-line plain summary used in list output and message fallbacks."""
    lines = [f"📦 *{repo.name}*"]
    if repo.description:
        lines.append(f"📝 {repo.description}")

    lines.append(f"⭐ {repo.stars} | 🍴 {repo.forks} | 👀 {repo.watchers}")

    if repo.language:
        lines.append(f"{get_language_emoji(repo.language)} {repo.language}")

    lines.append(
        f"📅 Created: {repo.created_at.strftime('%Y-%m-%d')} | "
        f"Updated: {repo.updated_at.strftime('%Y-%m-%d')}"
    )
    return "\n".join(lines)


def format_language_breakdown(languages: Mapping[str, int], top: int = 5) -> str:
    """
    Render a GitHub languages payload ({language: bytes}) as percentages.

    >>> format_language_breakdown({"Python": 750, "Shell": 250})
    '🐍 Python 75.0% · 🐚 Shell 25.0%'
    """
    total = sum(languages.values())
    if total <= 0:
        return ""

    ranked = sorted(languages.items(), key=lambda item: item[1], reverse=True)[:top]
    return " · ".join(
        f"{get_language_emoji(name)} {name} {size / total * 100:.1f}%"
        for name, size in ranked
    )


def format_latest_commit(commit: Mapping[str, Any]) -> str:
    """One-line summary of a GitHub commit object."""
    sha = str(commit.get("sha") or "")[:7]
    details = commit.get("commit") or {}
    message = str(details.get("message") or "").splitlines()
    headline = message[0] if message else "(no message)"
    author = (details.get("author") or {}).get("name") or "unknown"
    return f"`{sha}` {headline} ({author})"


def format_commit_activity(weeks: List[Mapping[str, Any]], last_weeks: int = 4) -> str:
    """Summarise /stats/commit_activity as commits over the last N weeks."""
    recent = weeks[-last_weeks:] if weeks else []
    total = sum(int(week.get("total") or 0) for week in recent)
    return f"{total} commits in the last {len(recent)} weeks"


def format_uptime(seconds: float) -> str:
    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
