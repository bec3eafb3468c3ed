"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync passes:

- ``format_reconcile_report`` -- full post-reconciliation summary.
- ``format_mirror_report`` -- full post-mirror summary.
- ``format_reconcile_alert`` / ``format_mirror_alert`` -- one-line
  messages for user-facing alerts.
- ``reconcile_report_to_json`` / ``mirror_report_to_json`` -- structured
  dicts for logging or host-app consumption.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import MirrorReport, ReconcileReport

from .models import MirrorStatus, ReconcileStatus

# ------------------------------------------------------------------
# Human-readable reports
# ------------------------------------------------------------------


def format_reconcile_report(report: ReconcileReport) -> str:
    """Format a reconciliation report as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        report: The completed reconciliation report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"Reconciliation ({report.trigger})")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.skipped:
        lines.append("Skipped: another reconciliation was in progress.")
        return "\n".join(lines).rstrip()

    failed = sum(len(r.failed) for r in report.results)
    lines.append(
        f"{len(report.results)} projects: "
        f"{report.synced_task_count} tasks synced, "
        f"{failed} kept for retry, "
        f"{report.dropped_task_count} dropped"
    )
    lines.append("")

    synced = [r for r in report.results if r.synced]
    if synced:
        lines.append("Synced:")
        for r in synced:
            lines.append(f"  {r.project_id}: {', '.join(r.synced)}")
        lines.append("")

    retrying = [r for r in report.results if r.failed]
    if retrying:
        lines.append("Kept for retry:")
        for r in retrying:
            lines.append(f"  {r.project_id}: {', '.join(r.failed)}")
        lines.append("")

    dropped = [r for r in report.results if r.dropped]
    if dropped:
        lines.append("Dropped:")
        for r in dropped:
            reason = (
                "project deleted"
                if r.status == ReconcileStatus.PROJECT_DELETED
                else "retry limit reached"
            )
            lines.append(f"  {r.project_id}: {', '.join(r.dropped)} ({reason})")
        lines.append("")

    errors = [r for r in report.results if r.error]
    if errors:
        lines.append("Errors:")
        for r in errors:
            lines.append(f"  {r.project_id}: {r.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_mirror_report(report: MirrorReport) -> str:
    """Format a team mirror report as human-readable text.

    Args:
        report: The completed mirror report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    header = f"Mirror report for team '{report.team_id}'"
    if report.aborted:
        header += " (ABORTED)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.error:
        lines.append(f"Error: {report.error}")
        lines.append("")

    media = sum(r.uploaded_media for r in report.results)
    docs = sum(r.uploaded_documents for r in report.results)
    lines.append(
        f"{len(report.results)} projects: "
        f"{len(report.synced)} synced, "
        f"{len(report.unchanged)} unchanged, "
        f"{len(report.errors)} failed; "
        f"{media} media and {docs} documents uploaded"
    )
    lines.append("")

    if report.errors:
        lines.append("Problems:")
        for r in report.errors:
            name = r.project_name or r.project_id
            detail = r.error or ", ".join(r.failed_media + r.failed_documents)
            line = f"  {name}: {r.status.value}"
            if detail:
                line += f" ({detail})"
            lines.append(line)
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Alert messages
# ------------------------------------------------------------------


def format_reconcile_alert(report: ReconcileReport) -> str:
    if report.skipped:
        return "A sync is already in progress."
    if report.success:
        return f"Sync complete: {report.synced_task_count} tasks uploaded."
    failed = sum(len(r.failed) for r in report.results)
    return (
        f"Sync incomplete: {failed} tasks will be retried, "
        f"{report.dropped_task_count} could not be synced."
    )


def format_mirror_alert(report: MirrorReport) -> str:
    if report.success:
        return "Mirror sync complete."
    if report.aborted:
        return "Mirror sync stopped: connection changed."
    if any(r.status == MirrorStatus.NOT_CONNECTED for r in report.results):
        return "Mirror sync failed: storage account not connected."
    return "Mirror sync failed. Please try again."


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def reconcile_report_to_json(report: ReconcileReport) -> dict:
    """Convert a reconciliation report to a JSON-serialisable dict."""
    return {
        "trigger": report.trigger,
        "skipped": report.skipped,
        "success": report.success,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "projects": len(report.results),
            "synced": report.synced_task_count,
            "retrying": sum(len(r.failed) for r in report.results),
            "dropped": report.dropped_task_count,
        },
        "results": [r.model_dump(mode="json") for r in report.results],
    }


def mirror_report_to_json(report: MirrorReport) -> dict:
    """Convert a mirror report to a JSON-serialisable dict."""
    return {
        "team_id": report.team_id,
        "success": report.success,
        "aborted": report.aborted,
        "error": report.error,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "projects": len(report.results),
            "synced": len(report.synced),
            "unchanged": len(report.unchanged),
            "errors": len(report.errors),
            "uploaded_media": sum(r.uploaded_media for r in report.results),
            "uploaded_documents": sum(
                r.uploaded_documents for r in report.results
            ),
        },
        "results": [r.model_dump(mode="json") for r in report.results],
    }
