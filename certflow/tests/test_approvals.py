import pytest
from sqlalchemy import select

from certflow.common.enums import EntityType
from certflow.common.exceptions import (
    ChainInProgressError,
    IllegalTransitionError,
    MissingPayloadError,
    UnauthorizedTransitionError,
)
from certflow.config import settings
from certflow.core.approvals.service import ApprovalCoordinator
from certflow.core.workflow.service import WorkflowEngine
from certflow.db.models.notification import Notification
from certflow.db.models.project import Project
from certflow.db.models.report import Report


async def _draft_report(db, project, drafter) -> Report:
    report = Report(project_id=project.id, drafter_id=drafter.id, title="SLF Technical Report", status="draft")
    db.add(report)
    await db.flush()
    await db.refresh(report)
    return report


async def _report_under_review(db, project, drafter, project_lead) -> Report:
    report = await _draft_report(db, project, drafter)
    engine = WorkflowEngine(db)
    await engine.request_transition(EntityType.REPORT, report.id, "submitted", drafter)
    result = await engine.request_transition(EntityType.REPORT, report.id, "under_review", project_lead)
    assert result.chain_id is not None
    return report


async def _notifications_for(db, user, category):
    result = await db.execute(
        select(Notification).where(Notification.user_id == user.id, Notification.category == category)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_entering_review_opens_default_chain(db_session, project, drafter, project_lead):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    chain = await ApprovalCoordinator(db_session).open_chain(EntityType.REPORT, report.id)

    assert chain.name == "report_standard"
    assert [s["role"] for s in chain.steps] == ["project_lead", "admin_lead", "head_consultant"]
    assert chain.current_step == 0


@pytest.mark.asyncio
async def test_three_step_chain_rejected_at_last_step(
    db_session, project, drafter, project_lead, admin_lead, head_consultant
):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    coordinator = ApprovalCoordinator(db_session)

    await coordinator.record_decision(EntityType.REPORT, report.id, project_lead, "approved", "Findings consistent")
    await coordinator.record_decision(EntityType.REPORT, report.id, admin_lead, "approved")
    chain = await coordinator.record_decision(
        EntityType.REPORT, report.id, head_consultant, "rejected", "Structural findings lack photos"
    )
    assert chain.status == "returned"

    stored = await coordinator.store.get(Report, report.id)
    assert stored.status == "rejected"
    assert stored.reviewed_by == head_consultant.id
    assert stored.review_notes == "Structural findings lack photos"

    [(history_chain, decisions)] = await coordinator.chain_history(EntityType.REPORT, report.id, head_consultant)
    assert history_chain.id == chain.id
    assert [(d.step_index, d.role, d.decision) for d in decisions] == [
        (0, "project_lead", "approved"),
        (1, "admin_lead", "approved"),
        (2, "head_consultant", "rejected"),
    ]
    # the drafter hears about the revision request
    assert await _notifications_for(db_session, drafter, "revision_requested")


@pytest.mark.asyncio
async def test_full_approval(db_session, project, drafter, project_lead, admin_lead, head_consultant):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    coordinator = ApprovalCoordinator(db_session)

    await coordinator.record_decision(EntityType.REPORT, report.id, project_lead, "approved")
    assert await _notifications_for(db_session, admin_lead, "approval_required")
    await coordinator.record_decision(EntityType.REPORT, report.id, admin_lead, "approved")
    chain = await coordinator.record_decision(EntityType.REPORT, report.id, head_consultant, "approved")

    assert chain.status == "approved"
    assert chain.current_step == 3
    stored = await coordinator.store.get(Report, report.id)
    assert stored.status == "approved"
    assert stored.reviewed_by == head_consultant.id
    assert stored.reviewed_at is not None
    assert stored.review_notes == ""


@pytest.mark.asyncio
async def test_decisions_follow_chain_order(db_session, project, drafter, project_lead, admin_lead):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    coordinator = ApprovalCoordinator(db_session)

    with pytest.raises(IllegalTransitionError) as exc:
        await coordinator.record_decision(EntityType.REPORT, report.id, admin_lead, "approved")
    assert "awaiting decision from project_lead (step 1 of 3)" in exc.value.detail


@pytest.mark.asyncio
async def test_role_outside_chain_cannot_decide(db_session, project, drafter, project_lead):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    with pytest.raises(UnauthorizedTransitionError):
        await ApprovalCoordinator(db_session).record_decision(EntityType.REPORT, report.id, drafter, "approved")


@pytest.mark.asyncio
async def test_rejection_needs_notes(db_session, project, drafter, project_lead):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    with pytest.raises(MissingPayloadError):
        await ApprovalCoordinator(db_session).record_decision(
            EntityType.REPORT, report.id, project_lead, "rejected", " "
        )


@pytest.mark.asyncio
async def test_direct_transition_blocked_while_chain_open(db_session, project, drafter, project_lead, head_consultant):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    with pytest.raises(IllegalTransitionError) as exc:
        await WorkflowEngine(db_session).request_transition(
            EntityType.REPORT, report.id, "approved", head_consultant
        )
    assert "approval chain" in exc.value.detail


@pytest.mark.asyncio
async def test_rework_opens_a_fresh_chain(db_session, project, drafter, project_lead, head_consultant):
    report = await _report_under_review(db_session, project, drafter, project_lead)
    coordinator = ApprovalCoordinator(db_session)
    await coordinator.record_decision(EntityType.REPORT, report.id, project_lead, "rejected", "Missing MEP section")

    engine = coordinator.engine
    await engine.request_transition(EntityType.REPORT, report.id, "draft", drafter)
    await engine.request_transition(EntityType.REPORT, report.id, "submitted", drafter)
    await engine.request_transition(EntityType.REPORT, report.id, "under_review", project_lead)

    history = await coordinator.chain_history(EntityType.REPORT, report.id, head_consultant)
    assert sorted(chain.status for chain, _ in history) == ["in_progress", "returned"]


@pytest.mark.asyncio
async def test_submit_for_review_is_idempotent(db_session, project, drafter, project_lead):
    report = await _draft_report(db_session, project, drafter)
    coordinator = ApprovalCoordinator(db_session)
    await coordinator.engine.request_transition(EntityType.REPORT, report.id, "submitted", drafter)

    first = await coordinator.submit_for_review(EntityType.REPORT, report.id, "report_low_risk", project_lead)
    again = await coordinator.submit_for_review(EntityType.REPORT, report.id, "report_low_risk", project_lead)
    assert first.id == again.id
    assert [s["role"] for s in first.steps] == ["project_lead", "head_consultant"]

    stored = await coordinator.store.get(Report, report.id)
    assert stored.status == "under_review"

    with pytest.raises(ChainInProgressError):
        await coordinator.submit_for_review(EntityType.REPORT, report.id, "report_standard", project_lead)


@pytest.mark.asyncio
async def test_reports_approved_can_advance_project(
    db_session, project, drafter, project_lead, admin_lead, head_consultant, monkeypatch
):
    monkeypatch.setattr(settings, "AUTO_ADVANCE_ON_REPORTS_APPROVED", True)
    project.status = "inspection_completed"
    await db_session.flush()

    report = await _report_under_review(db_session, project, drafter, project_lead)
    coordinator = ApprovalCoordinator(db_session)
    for reviewer in (project_lead, admin_lead, head_consultant):
        await coordinator.record_decision(EntityType.REPORT, report.id, reviewer, "approved")

    stored = await coordinator.store.get(Project, project.id, fresh=True)
    assert stored.status == "report_submitted"


@pytest.mark.asyncio
async def test_report_review_over_http(client, project, drafter, project_lead, admin_lead, head_consultant, auth):
    resp = await client.post(
        f"/api/v1/projects/{project.id}/reports",
        headers=auth(drafter),
        json={"title": "Inspection Report - Block C", "summary": "All structural items compliant"},
    )
    assert resp.status_code == 201
    report = resp.json()
    assert report["drafter_id"] == str(drafter.id)
    assert report["status"] == "draft"

    resp = await client.post(
        f"/api/v1/reports/{report['id']}/transition",
        headers=auth(drafter),
        json={"target_state": "submitted", "expected_version": report["version"]},
    )
    assert resp.status_code == 200

    resp = await client.post(
        f"/api/v1/reports/{report['id']}/submit-for-review",
        headers=auth(project_lead),
        json={"chain": ["project_lead", "head_consultant"]},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["report"]["status"] == "under_review"
    assert body["chain"]["awaiting_role"] == "project_lead"

    resp = await client.post(
        f"/api/v1/reports/{report['id']}/decision",
        headers=auth(head_consultant),
        json={"decision": "approved"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "illegal_transition"

    resp = await client.post(
        f"/api/v1/reports/{report['id']}/decision",
        headers=auth(project_lead),
        json={"decision": "approved", "notes": "OK from the lead"},
    )
    assert resp.json()["chain"]["awaiting_role"] == "head_consultant"

    resp = await client.get(f"/api/v1/reports/{report['id']}/approvals", headers=auth(admin_lead))
    [chain] = resp.json()
    assert [d["decision"] for d in chain["decisions"]] == ["approved"]
