"""Tests for sync report formatting."""

from __future__ import annotations

import json

from worksync.sync.models import (
    MirrorReport,
    MirrorResult,
    MirrorStatus,
    ReconcileReport,
    ReconcileResult,
    ReconcileStatus,
)
from worksync.sync.reporter import (
    format_mirror_alert,
    format_mirror_report,
    format_reconcile_alert,
    format_reconcile_report,
    mirror_report_to_json,
    reconcile_report_to_json,
)

STARTED = "2026-01-01T00:00:00+00:00"


def _reconcile_report(**kwargs) -> ReconcileReport:
    return ReconcileReport(trigger="user", started_at=STARTED, **kwargs)


def _mirror_report(**kwargs) -> MirrorReport:
    return MirrorReport(team_id="team1", started_at=STARTED, **kwargs)


class TestReconcileReport:
    def test_sections_only_when_non_empty(self):
        report = _reconcile_report(
            results=[
                ReconcileResult(
                    project_id="p1",
                    status=ReconcileStatus.SYNCED,
                    synced=["a", "b"],
                )
            ]
        )
        text = format_reconcile_report(report)
        assert "1 projects: 2 tasks synced, 0 kept for retry, 0 dropped" in text
        assert "  p1: a, b" in text
        assert "Kept for retry:" not in text
        assert "Dropped:" not in text

    def test_drop_reasons(self):
        report = _reconcile_report(
            results=[
                ReconcileResult(
                    project_id="gone",
                    status=ReconcileStatus.PROJECT_DELETED,
                    dropped=["a"],
                ),
                ReconcileResult(
                    project_id="p2",
                    status=ReconcileStatus.SYNCED,
                    dropped=["b"],
                ),
            ]
        )
        text = format_reconcile_report(report)
        assert "gone: a (project deleted)" in text
        assert "p2: b (retry limit reached)" in text

    def test_skipped(self):
        text = format_reconcile_report(_reconcile_report(skipped=True))
        assert text.endswith("Skipped: another reconciliation was in progress.")

    def test_alerts(self):
        ok = _reconcile_report(
            results=[
                ReconcileResult(
                    project_id="p1", status=ReconcileStatus.SYNCED, synced=["a"]
                )
            ]
        )
        failed = _reconcile_report(
            results=[
                ReconcileResult(
                    project_id="p1",
                    status=ReconcileStatus.WRITE_FAILED,
                    failed=["a", "b"],
                )
            ]
        )
        assert format_reconcile_alert(ok) == "Sync complete: 1 tasks uploaded."
        assert format_reconcile_alert(failed) == (
            "Sync incomplete: 2 tasks will be retried, 0 could not be synced."
        )
        assert format_reconcile_alert(_reconcile_report(skipped=True)) == (
            "A sync is already in progress."
        )

    def test_json_is_serialisable(self):
        report = _reconcile_report(
            results=[
                ReconcileResult(
                    project_id="p1",
                    status=ReconcileStatus.READ_FAILED,
                    failed=["a"],
                    error="boom",
                )
            ]
        )
        data = reconcile_report_to_json(report)
        assert data["success"] is False
        assert data["counts"]["retrying"] == 1
        assert data["results"][0]["status"] == "read_failed"
        json.dumps(data)


class TestMirrorReport:
    def test_summary_and_problems(self):
        report = _mirror_report(
            results=[
                MirrorResult(
                    project_id="p1",
                    project_name="Site A",
                    status=MirrorStatus.SYNCED,
                    uploaded_media=3,
                    uploaded_documents=1,
                ),
                MirrorResult(
                    project_id="p2",
                    project_name="Site B",
                    status=MirrorStatus.PARTIAL,
                    failed_media=["t1/photo_1"],
                ),
            ]
        )
        text = format_mirror_report(report)
        assert "2 projects: 1 synced, 0 unchanged, 1 failed" in text
        assert "3 media and 1 documents uploaded" in text
        assert "Site B: partial (t1/photo_1)" in text

    def test_aborted_header(self):
        text = format_mirror_report(_mirror_report(aborted=True))
        assert text.startswith("Mirror report for team 'team1' (ABORTED)")

    def test_alerts(self):
        assert format_mirror_alert(_mirror_report()) == "Mirror sync complete."
        assert format_mirror_alert(_mirror_report(aborted=True)) == (
            "Mirror sync stopped: connection changed."
        )
        not_connected = _mirror_report(
            error="mirror target not connected",
            results=[
                MirrorResult(
                    project_id="p1", status=MirrorStatus.NOT_CONNECTED
                )
            ],
        )
        assert format_mirror_alert(not_connected) == (
            "Mirror sync failed: storage account not connected."
        )
        assert format_mirror_alert(_mirror_report(error="x")) == (
            "Mirror sync failed. Please try again."
        )

    def test_json_counts(self):
        report = _mirror_report(
            results=[
                MirrorResult(
                    project_id="p1",
                    status=MirrorStatus.UNCHANGED,
                ),
                MirrorResult(
                    project_id="p2",
                    status=MirrorStatus.SYNCED,
                    uploaded_media=2,
                ),
            ]
        )
        data = mirror_report_to_json(report)
        assert data["success"] is True
        assert data["counts"]["unchanged"] == 1
        assert data["counts"]["uploaded_media"] == 2
        json.dumps(data)


class TestReportProperties:
    def test_mirror_success_needs_one_success(self):
        failed_only = _mirror_report(
            results=[MirrorResult(project_id="p1", status=MirrorStatus.FAILED)]
        )
        assert not failed_only.success

    def test_reconcile_counts(self):
        report = _reconcile_report(
            results=[
                ReconcileResult(
                    project_id="p1",
                    status=ReconcileStatus.SYNCED,
                    synced=["a"],
                    dropped=["b", "c"],
                )
            ]
        )
        assert report.synced_task_count == 1
        assert report.dropped_task_count == 2
        assert report.errors == []
