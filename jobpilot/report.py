"""Markdown report of one workflow session."""
from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

from jobpilot.config import REPORTS_DIR
from jobpilot.log import get_logger
from jobpilot.models import ApplicationAttempt, AttemptStatus, WorkflowSession

log = get_logger(__name__)

STATUS_LABELS: dict[AttemptStatus, tuple[str, str]] = {
    AttemptStatus.SUCCESS: ("✅", "Submitted"),
    AttemptStatus.FAILED: ("❌", "Failed"),
    AttemptStatus.REQUIRES_MANUAL: ("✋", "Needs you"),
    AttemptStatus.SKIPPED: ("⏭️", "Skipped"),
    AttemptStatus.PENDING_CONFIRMATION: ("⏸️", "Awaiting confirmation"),
    AttemptStatus.IN_PROGRESS: ("⏳", "In progress"),
}

_FAIL_HINTS: dict[str, str] = {
    "executable doesn't exist": "Browser not installed — run `playwright install chromium`",
    "manual auth required": "Login wall — sign in and apply manually",
    "captcha": "CAPTCHA — apply manually",
    "no required field": "Profile is missing a value the form requires",
    "no value for required field": "Profile is missing a value the form requires",
    "timeout": "Page timed out",
    "could not find apply action": "No Apply button detected on page",
    "rate limit": "Platform rate limit reached",
}


def _short_reason(reason: str) -> str:
    low = reason.lower()
    for key, msg in _FAIL_HINTS.items():
        if key in low:
            return msg
    return reason[:80] + ("…" if len(reason) > 80 else "")


def _short_url_label(url: str) -> str:
    host = (urlparse(url).hostname or "").replace("www.", "")
    parts = host.split(".")
    return parts[0].capitalize() if parts and parts[0] else "Link"


def build_session_report(
    session: WorkflowSession,
    attempts: list[ApplicationAttempt],
    scores: dict[str, float] | None = None,
) -> str:
    scores = scores or {}
    started = session.started_at.strftime("%Y-%m-%d %H:%M")
    lines: list[str] = [f"# Application Session — {started}", ""]

    counts = {s: sum(1 for a in attempts if a.status is s) for s in AttemptStatus}
    lines.append(
        f"**Status:** {session.status.value} | **Progress:** "
        f"{session.processed_items}/{session.total_items} ({session.progress:.0f}%)"
    )
    lines.append(
        " | ".join(
            f"**{counts[s]}** {STATUS_LABELS[s][1].lower()}"
            for s in (AttemptStatus.SUCCESS, AttemptStatus.REQUIRES_MANUAL, AttemptStatus.FAILED,
                      AttemptStatus.SKIPPED, AttemptStatus.PENDING_CONFIRMATION)
        )
    )
    if session.error_message:
        lines.append("")
        lines.append(f"> **Session error:** {session.error_message}")
    lines.append("")

    manual = [a for a in attempts if a.status is AttemptStatus.REQUIRES_MANUAL]
    if manual:
        lines.append("## Needs your attention")
        lines.append("")
        lines.append("These are not errors: the site wants a human (login wall, CAPTCHA).")
        lines.append("")
        for a in manual:
            link = f"[{_short_url_label(a.url)}]({a.url})" if a.url else ""
            lines.append(f"- ✋ **{a.job_title}** @ {a.company} — {_short_reason(a.message)} {link}".rstrip())
        lines.append("")

    if attempts:
        lines.append("## Attempts")
        lines.append("")
        lines.append("| # | Role | Company | Score | Status | Note |")
        lines.append("|--:|------|---------|------:|--------|------|")
        for i, a in enumerate(attempts, 1):
            badge, label = STATUS_LABELS[a.status]
            title = a.job_title[:40] + ("…" if len(a.job_title) > 40 else "")
            company = a.company[:22] + ("…" if len(a.company) > 22 else "")
            score = f"{scores[a.job_id]:.0f}" if a.job_id in scores else "—"
            note = _short_reason(a.message) if a.message and a.status is not AttemptStatus.SUCCESS else ""
            if a.screenshot_path:
                note += f" ([screenshot]({a.screenshot_path}))"
            lines.append(f"| {i} | {title} | {company} | {score} | {badge} {label} | {note.strip()} |")
        lines.append("")

    log.info("Built session report: %d attempts", len(attempts))
    return "\n".join(lines)


def write_session_report(content: str, session_id: str, directory: Path | None = None) -> Path:
    directory = directory or REPORTS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"session_{session_id[:8]}.md"
    path.write_text(content, encoding="utf-8")
    log.info("Report written → %s", path)
    return path
