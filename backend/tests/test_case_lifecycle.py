"""
Test Suite for the Case Lifecycle Orchestrator

Key tests:
1. Submission and the automatic verification / 91 CrPC cascade
2. Scammer deduplication across cases
3. Partial notification failure and retry
4. Rejection and resubmission loop
5. Police investigation through closure
6. Transition, role and assignment enforcement
7. All-or-nothing transitions when a side effect fails
8. Read scoping, listing and dashboard
9. Case-worker comments
"""
import pytest

from caseflow import config
from caseflow.models.db_models import (
    CaseActionDB, CaseDB, CaseStage, EntryStatus, LegalDocumentDB, ScammerProfileDB, TimelineEntryDB,
)
from caseflow.services.lifecycle import CaseService
from caseflow.services.lifecycle.errors import (
    ValidationError, NotFound, InvalidTransition, Forbidden, DependencyFailure,
)
from caseflow.services.lifecycle.locks import KeyedLockRegistry

from conftest import fake_renderer, failing_renderer


SCAMMER = {"name": "Fake Courier", "phoneNumber": "9999999999", "upiId": "courier@upi"}


# =============================================================================
# HELPERS
# =============================================================================

def completed_entries(db, case_id, stage=None):
    query = db.query(TimelineEntryDB).filter(
        TimelineEntryDB.case_id == case_id,
        TimelineEntryDB.status == EntryStatus.COMPLETED,
    )
    if stage is not None:
        query = query.filter(TimelineEntryDB.stage == stage)
    return query.all()


def assert_status_matches_ledger(service, case_id):
    case = service.db.query(CaseDB).filter(CaseDB.id == case_id).one()
    assert service.ledger.derive_status(case.id, case.revision) == case.status


def advance_to_emails_sent(service, make_intake, reporter, admin):
    case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
    service.advance_stage(case["id"], "emails_sent", admin)
    return case


def advance_to_assigned(service, make_intake, reporter, admin, officer):
    case = advance_to_emails_sent(service, make_intake, reporter, admin)
    service.advance_stage(case["id"], "authorized", admin, "Verified with bank nodal desk")
    service.advance_stage(case["id"], "assigned_to_police", admin, details={"officer_id": officer.id})
    return case


# =============================================================================
# SUBMISSION & CASCADE
# =============================================================================

class TestSubmission:

    def test_without_scammer_details_case_waits_for_verification(self, db, service, make_intake, reporter):
        """Scenario A: no suspect identifiers, no automatic 91 CrPC."""
        case = service.submit_case(make_intake(amount=15000), reporter)

        assert case["status"] == "report_submitted"
        assert case["scammer_id"] is None
        assert case["legal_document_id"] is None
        pending = db.query(TimelineEntryDB).filter(
            TimelineEntryDB.case_id == case["id"],
            TimelineEntryDB.stage == CaseStage.INFORMATION_VERIFIED,
        ).one()
        assert pending.status == EntryStatus.PENDING
        assert db.query(LegalDocumentDB).count() == 0
        assert_status_matches_ledger(service, case["id"])

    def test_scammer_details_cascade_to_crpc_generated(self, db, service, make_intake, reporter):
        """Scenario B: verification and document generation run automatically."""
        case = service.submit_case(make_intake(scammer={"phone": "9999999999"}), reporter)

        assert case["status"] == "crpc_generated"
        profile = db.query(ScammerProfileDB).one()
        assert profile.phone == "9999999999"
        assert profile.case_count == 1
        assert case["scammer_id"] == profile.id

        document = db.query(LegalDocumentDB).one()
        assert case["legal_document_id"] == document.id
        assert document.document_number.startswith("91CRPC/")
        assert len(document.checksum) == 64

        stages = [e.stage for e in completed_entries(db, case["id"])]
        assert stages == [CaseStage.REPORT_SUBMITTED, CaseStage.INFORMATION_VERIFIED, CaseStage.CRPC_GENERATED]
        system_entries = [e for e in completed_entries(db, case["id"]) if e.actor_id == "system"]
        assert len(system_entries) == 2
        assert_status_matches_ledger(service, case["id"])

    def test_second_report_links_to_the_same_scammer(self, db, service, make_intake, reporter, other_reporter):
        """Scenario C: a shared phone number links both cases to one profile."""
        first = service.submit_case(make_intake(scammer={"phone": "9999999999"}), reporter)
        second = service.submit_case(
            make_intake(scammer={"phone": "9999999999", "email": "other@scam.io"}, description="Loan app fee"),
            other_reporter,
        )

        profile = db.query(ScammerProfileDB).one()
        assert profile.case_count == 2
        assert set(profile.case_ids) == {first["id"], second["id"]}
        assert profile.total_amount == 30000
        assert first["scammer_id"] == second["scammer_id"] == profile.id

    def test_case_code_format(self, service, make_intake, reporter):
        case = service.submit_case(make_intake(), reporter)
        prefix, digits, suffix = case["case_code"].split("-")
        assert prefix == "FRD"
        assert len(digits) == 6 and digits.isdigit()
        assert len(suffix) == 4 and suffix.isalnum() and suffix.upper() == suffix

    def test_case_code_taken_concurrently_is_regenerated(self, db, service, make_intake, reporter, monkeypatch):
        first = service.submit_case(make_intake(), reporter)
        codes = iter([first["case_code"], "FRD-000002-BBBB"])
        monkeypatch.setattr(
            "caseflow.services.lifecycle.case_service.generate_case_code", lambda *args, **kwargs: next(codes)
        )
        # Another submission committed the code between the check and the insert
        monkeypatch.setattr(CaseService, "_code_in_use", lambda self, code: False)

        second = service.submit_case(make_intake(description="Loan app fee"), reporter)

        assert second["case_code"] == "FRD-000002-BBBB"
        assert db.query(CaseDB).count() == 2
        assert_status_matches_ledger(service, second["id"])

    def test_case_code_collisions_exhaust_to_dependency_failure(self, db, service, make_intake, reporter, monkeypatch):
        first = service.submit_case(make_intake(), reporter)
        monkeypatch.setattr(
            "caseflow.services.lifecycle.case_service.generate_case_code", lambda *args, **kwargs: first["case_code"]
        )
        monkeypatch.setattr(CaseService, "_code_in_use", lambda self, code: False)

        with pytest.raises(DependencyFailure):
            service.submit_case(make_intake(description="Loan app fee"), reporter)
        assert db.query(CaseDB).count() == 1
        assert db.query(TimelineEntryDB).filter(TimelineEntryDB.case_id != first["id"]).count() == 0

    def test_intake_sections_are_stored(self, service, make_intake, reporter):
        case = service.submit_case(make_intake(referralSource="newspaper"), reporter)
        assert case["reporter_name"] == "Asha Verma"
        assert case["contact_info"]["phone"] == "9876500000"
        assert case["intake_form"]["extra"] == {"referralSource": "newspaper"}

    @pytest.mark.parametrize("overrides", [
        {"description": "   "},
        {"amount": -1},
        {"amount": None},
        {"location": ""},
        {"incidentDate": "not a date"},
        {"extra": ["x"], "unknownKey": 1},
        {"extra": ["x"]},
    ])
    def test_invalid_intake_writes_nothing(self, db, service, make_intake, reporter, overrides):
        with pytest.raises(ValidationError) as exc_info:
            service.submit_case(make_intake(**overrides), reporter)
        assert exc_info.value.details["errors"]
        assert db.query(CaseDB).count() == 0
        assert db.query(TimelineEntryDB).count() == 0

    def test_police_cannot_submit(self, service, make_intake, officer):
        with pytest.raises(Forbidden):
            service.submit_case(make_intake(), officer)


# =============================================================================
# MANUAL VERIFICATION
# =============================================================================

class TestVerification:

    def test_admin_verifies_with_inline_scammer(self, db, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        result = service.advance_stage(case["id"], "information_verified", admin, details={"scammer": SCAMMER})

        assert result["status"] == "information_verified"
        assert result["output"]["scammer_id"] == db.query(ScammerProfileDB).one().id

        generated = service.advance_stage(case["id"], "crpc_generated", admin)
        assert generated["status"] == "crpc_generated"
        assert generated["output"]["document_number"].startswith("91CRPC/")
        assert_status_matches_ledger(service, case["id"])

    def test_verification_requires_scammer_or_override(self, db, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)

        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "information_verified", admin)
        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "information_verified", admin, details={"override": True})

        result = service.advance_stage(
            case["id"], "information_verified", admin, "Suspect unknown; verified via bank statement",
            details={"override": True},
        )
        assert result["output"] == {"override": True}

    def test_crpc_refused_without_scammer(self, db, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        service.advance_stage(case["id"], "information_verified", admin, "override", details={"override": True})

        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "crpc_generated", admin)

        assert service.get_case(case["id"])["status"] == "information_verified"
        assert completed_entries(db, case["id"], CaseStage.CRPC_GENERATED) == []
        assert db.query(LegalDocumentDB).count() == 0

    def test_unverified_case_cannot_skip_to_crpc(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        with pytest.raises(InvalidTransition) as exc_info:
            service.advance_stage(case["id"], "crpc_generated", admin)
        assert exc_info.value.details["allowed_next"] == ["information_verified", "rejected"]


# =============================================================================
# NOTIFICATION
# =============================================================================

class TestNotification:

    def test_partial_failure_still_completes_emails_sent(self, db, service, mailer, make_intake, reporter, admin):
        """Scenario D: banking fails, telecom and nodal succeed."""
        mailer.fail_for.add(config.DEFAULT_RECIPIENTS["banking"])
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)

        result = service.advance_stage(case["id"], "emails_sent", admin)

        assert result["status"] == "emails_sent"
        assert result["output"]["failed_categories"] == ["banking"]
        entry = completed_entries(db, case["id"], CaseStage.EMAILS_SENT)[0]
        results = entry.entry_metadata["results"]
        assert results["banking"]["success"] is False
        assert results["telecom"]["success"] is True
        assert results["nodal"]["success"] is True
        assert entry.entry_metadata["partial_failure"] is True
        assert service.get_case(case["id"])["notification_results"]["banking"]["success"] is False
        assert all(m["attachments"] for m in mailer.sent)

    def test_retry_resends_failed_categories_only(self, db, service, mailer, make_intake, reporter, admin):
        mailer.fail_for.add(config.DEFAULT_RECIPIENTS["banking"])
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        service.advance_stage(case["id"], "emails_sent", admin)
        mailer.fail_for.clear()
        mailer.sent.clear()

        retry = service.retry_notifications(case["id"], admin)

        assert retry["retried"] == ["banking"]
        assert retry["failed_categories"] == []
        assert mailer.addresses() == [config.DEFAULT_RECIPIENTS["banking"]]
        entries = completed_entries(db, case["id"], CaseStage.EMAILS_SENT)
        assert len(entries) == 1
        assert entries[0].entry_metadata["retries"][0]["categories"] == ["banking"]
        assert service.get_case(case["id"])["notification_results"]["banking"]["success"] is True
        assert len(service.notification_history(case["id"])) == 4

    def test_retry_with_nothing_failed_sends_nothing(self, service, mailer, make_intake, reporter, admin):
        case = advance_to_emails_sent(service, make_intake, reporter, admin)
        mailer.sent.clear()
        assert service.retry_notifications(case["id"], admin)["retried"] == []
        assert mailer.sent == []

    def test_retry_requires_emails_sent(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        with pytest.raises(InvalidTransition):
            service.retry_notifications(case["id"], admin)

    def test_retry_is_admin_only(self, service, make_intake, reporter, admin, officer):
        case = advance_to_emails_sent(service, make_intake, reporter, admin)
        with pytest.raises(Forbidden):
            service.retry_notifications(case["id"], officer)


# =============================================================================
# REJECTION LOOP
# =============================================================================

class TestRejection:

    def test_reject_and_resubmit_starts_a_new_revision(self, db, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        rejected = service.advance_stage(case["id"], "rejected", admin, "Suspect details missing")
        assert rejected["status"] == "rejected"
        assert service.get_case(case["id"])["rejection_reason"] == "Suspect details missing"
        assert_status_matches_ledger(service, case["id"])

        result = service.advance_stage(
            case["id"], "report_submitted", reporter, "Added the caller's number",
            details={"scammer": SCAMMER},
        )

        assert result["status"] == "crpc_generated"
        detail = service.get_case(case["id"])
        assert detail["revision"] == 1
        assert detail["rejection_reason"] is None
        assert len(completed_entries(db, case["id"], CaseStage.REPORT_SUBMITTED)) == 2
        assert_status_matches_ledger(service, case["id"])

        timeline = service.get_timeline(case["id"], reporter)
        assert timeline["revision"] == 1
        assert "rejected" not in [s["stage"] for s in timeline["stages"]]
        assert timeline["progress"]["completed"] == 3
        assert len(timeline["entries"]) > timeline["progress"]["completed"]

    def test_rejection_needs_a_reason(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "rejected", admin, "   ")

    def test_only_the_reporter_may_resubmit(self, service, make_intake, reporter, other_reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        service.advance_stage(case["id"], "rejected", admin, "Duplicate of an earlier report")
        with pytest.raises(Forbidden):
            service.advance_stage(case["id"], "report_submitted", other_reporter)

    def test_rejected_timeline_shows_rejection(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        service.advance_stage(case["id"], "rejected", admin, "Incomplete")
        stages = [s["stage"] for s in service.get_timeline(case["id"], reporter)["stages"]]
        assert stages[:2] == ["report_submitted", "rejected"]


# =============================================================================
# POLICE WORKFLOW
# =============================================================================

class TestPoliceWorkflow:

    def test_full_flow_to_closed(self, db, service, make_intake, reporter, admin, officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        assert service.get_case(case["id"])["assigned_to"] == officer.id

        service.advance_stage(case["id"], "under_investigation", officer)
        evidence = service.advance_stage(
            case["id"], "evidence_collected", officer,
            details={"evidence": {"evidence_type": "call_records", "details": "CDR obtained"}},
        )
        assert evidence["output"]["evidence_count"] == 1
        service.advance_stage(case["id"], "resolved", officer, "Account frozen; suspect identified")
        closed = service.advance_stage(case["id"], "closed", officer, "Victim informed")

        assert closed["status"] == "closed"
        detail = service.get_case(case["id"])
        assert detail["resolution"]["summary"] == "Account frozen; suspect identified"
        assert detail["closure"]["notes"] == "Victim informed"
        assert detail["police_evidence"][0]["evidence_type"] == "call_records"

        stages = [e.stage for e in completed_entries(db, case["id"])]
        assert len(stages) == len(set(stages)) == 10
        assert_status_matches_ledger(service, case["id"])

        actions = service.list_actions(case["id"])
        assert [a["action"] for a in actions][-1] == "closed"
        assert actions[-1]["actor"] == officer.to_dict()

    def test_closed_is_terminal(self, service, make_intake, reporter, admin, officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        service.advance_stage(case["id"], "under_investigation", officer)
        service.advance_stage(case["id"], "resolved", officer, "Settled")
        service.advance_stage(case["id"], "closed", admin)

        for stage in CaseStage:
            with pytest.raises(InvalidTransition):
                service.advance_stage(case["id"], stage, admin, "reopen")

    def test_unassigned_case_self_assigns(self, service, make_intake, reporter, admin, officer):
        case = advance_to_emails_sent(service, make_intake, reporter, admin)
        result = service.advance_stage(case["id"], "under_investigation", officer)

        assert result["output"]["self_assigned"] is True
        assert service.get_case(case["id"])["assigned_to"] == officer.id

    def test_other_officer_is_refused(self, service, make_intake, reporter, admin, officer, other_officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        with pytest.raises(Forbidden):
            service.advance_stage(case["id"], "under_investigation", other_officer)
        with pytest.raises(Forbidden):
            service.get_case(case["id"], other_officer)

    def test_assignment_needs_a_police_officer(self, service, make_intake, reporter, admin, other_reporter):
        case = advance_to_emails_sent(service, make_intake, reporter, admin)
        service.advance_stage(case["id"], "authorized", admin)

        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "assigned_to_police", admin)
        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "assigned_to_police", admin, details={"officer_id": other_reporter.id})
        with pytest.raises(NotFound):
            service.advance_stage(case["id"], "assigned_to_police", admin, details={"officer_id": "nobody"})
        assert service.get_case(case["id"])["status"] == "authorized"

    def test_evidence_requires_a_type(self, service, make_intake, reporter, admin, officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        service.advance_stage(case["id"], "under_investigation", officer)
        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "evidence_collected", officer, details={"evidence": {"details": "x"}})

    def test_resolution_requires_a_summary(self, service, make_intake, reporter, admin, officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        service.advance_stage(case["id"], "under_investigation", officer)
        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "resolved", officer)

    def test_list_assigned_cases(self, service, make_intake, reporter, admin, officer, other_officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        service.submit_case(make_intake(), reporter)

        assert [c["id"] for c in service.list_assigned_cases(officer)["items"]] == [case["id"]]
        assert service.list_assigned_cases(other_officer)["total"] == 0
        with pytest.raises(Forbidden):
            service.list_assigned_cases(admin)


# =============================================================================
# ENFORCEMENT
# =============================================================================

class TestEnforcement:

    def test_role_not_permitted_for_stage(self, service, make_intake, reporter, officer):
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        with pytest.raises(Forbidden):
            service.advance_stage(case["id"], "emails_sent", officer)
        with pytest.raises(Forbidden):
            service.advance_stage(case["id"], "emails_sent", reporter)

    def test_target_outside_table(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        with pytest.raises(InvalidTransition) as exc_info:
            service.advance_stage(case["id"], "closed", admin)
        assert exc_info.value.http_status == 400
        assert exc_info.value.details["current_status"] == "crpc_generated"

    def test_unknown_stage_name(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "verified", admin)

    def test_unknown_case(self, service, admin):
        with pytest.raises(NotFound):
            service.advance_stage("missing", "information_verified", admin)

    def test_case_code_works_as_reference(self, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        result = service.advance_stage(case["case_code"], "rejected", admin, "Spam")
        assert result["case_id"] == case["id"]

    def test_failed_advance_leaves_no_trace(self, db, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        before = db.query(TimelineEntryDB).count()

        with pytest.raises(ValidationError):
            service.advance_stage(case["id"], "information_verified", admin, details={"scammer": {"name": "only a name"}})

        assert db.query(TimelineEntryDB).count() == before
        assert db.query(ScammerProfileDB).count() == 0
        assert service.list_actions(case["id"]) == []


# =============================================================================
# SIDE EFFECT FAILURES
# =============================================================================

class TestRenderFailure:

    def test_cascade_records_failed_generation(self, db, mailer, make_intake, reporter):
        service = CaseService(db, mailer=mailer, renderer=failing_renderer, locks=KeyedLockRegistry())
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)

        assert case["status"] == "information_verified"
        entries = db.query(TimelineEntryDB).filter(
            TimelineEntryDB.case_id == case["id"],
            TimelineEntryDB.stage == CaseStage.CRPC_GENERATED,
        ).all()
        assert [e.status for e in entries] == [EntryStatus.FAILED]
        assert "font cache unavailable" in entries[0].entry_metadata["error"]
        assert db.query(LegalDocumentDB).count() == 0
        assert_status_matches_ledger(service, case["id"])

    def test_manual_generation_failure_then_success(self, db, mailer, make_intake, reporter, admin):
        service = CaseService(db, mailer=mailer, renderer=failing_renderer, locks=KeyedLockRegistry())
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)

        with pytest.raises(DependencyFailure) as exc_info:
            service.advance_stage(case["id"], "crpc_generated", admin)
        assert exc_info.value.http_status == 503
        assert completed_entries(db, case["id"], CaseStage.CRPC_GENERATED) == []

        service.renderer = fake_renderer
        result = service.advance_stage(case["id"], "crpc_generated", admin)
        assert result["status"] == "crpc_generated"
        assert len(completed_entries(db, case["id"], CaseStage.CRPC_GENERATED)) == 1


# =============================================================================
# READS
# =============================================================================

class TestReads:

    def test_reporter_sees_only_own_cases(self, service, make_intake, reporter, other_reporter, admin):
        mine = service.submit_case(make_intake(), reporter)
        service.submit_case(make_intake(), other_reporter)

        listed = service.list_cases(principal=reporter)
        assert [c["id"] for c in listed["items"]] == [mine["id"]]
        assert service.list_cases(principal=admin)["total"] == 2
        with pytest.raises(Forbidden):
            service.get_case(mine["id"], other_reporter)

    def test_list_filters_and_pagination(self, service, make_intake, reporter, admin):
        service.submit_case(make_intake(caseType="loan-app"), reporter)
        service.submit_case(make_intake(scammer=SCAMMER), reporter)
        coded = service.submit_case(make_intake(), reporter)

        assert service.list_cases({"status": "crpc_generated"}, principal=admin)["total"] == 1
        assert service.list_cases({"case_type": "loan-app"}, principal=admin)["total"] == 1
        assert service.list_cases({"q": coded["case_code"].lower()}, principal=admin)["total"] == 1
        page = service.list_cases(skip=1, limit=1, principal=admin)
        assert page["total"] == 3 and len(page["items"]) == 1
        assert service.list_cases(limit=500, principal=admin)["limit"] == config.MAX_PAGE_SIZE
        with pytest.raises(ValidationError):
            service.list_cases({"status": "verified"}, principal=admin)

    def test_get_case_includes_scammer_and_document(self, service, make_intake, reporter):
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        detail = service.get_case(case["id"], reporter)

        assert detail["scammer"]["phone"] == "9999999999"
        assert detail["legal_document"]["size_bytes"] > 0
        assert "pdf_bytes" not in detail["legal_document"]

    def test_get_scammer_lists_linked_cases(self, service, make_intake, reporter, other_reporter):
        first = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        second = service.submit_case(make_intake(scammer={"upiId": "COURIER@UPI"}), other_reporter)

        scammer = service.get_scammer(first["scammer_id"])
        assert {c["id"] for c in scammer["cases"]} == {first["id"], second["id"]}

    def test_available_actions_follow_role(self, service, make_intake, reporter, admin, officer):
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)

        admin_actions = service.available_actions(case["id"], admin)["available_actions"]
        assert [a["stage"] for a in admin_actions] == ["emails_sent"]
        assert service.available_actions(case["id"], officer)["available_actions"] == []
        assert service.available_actions(case["id"], reporter)["available_actions"] == []

    def test_dashboard(self, service, mailer, make_intake, reporter, admin):
        mailer.fail_for.add(config.DEFAULT_RECIPIENTS["nodal"])
        service.submit_case(make_intake(amount=1000), reporter)
        case = service.submit_case(make_intake(scammer=SCAMMER, amount=2500), reporter)
        service.advance_stage(case["id"], "emails_sent", admin)

        stats = service.dashboard_stats()
        assert stats["total_cases"] == 2
        assert stats["by_status"]["report_submitted"] == 1
        assert stats["by_status"]["emails_sent"] == 1
        assert stats["open_cases"] == 2
        assert stats["total_amount"] == 3500
        assert stats["scammer_count"] == 1
        assert stats["cases_with_failed_notifications"] == 1

    def test_scammer_status_update_is_staff_only(self, service, make_intake, reporter, officer):
        case = service.submit_case(make_intake(scammer=SCAMMER), reporter)
        updated = service.update_scammer_status(case["scammer_id"], "under_investigation", officer)
        assert updated["status"] == "under_investigation"
        with pytest.raises(Forbidden):
            service.update_scammer_status(case["scammer_id"], "blocked", reporter)

    def test_recipient_update_is_admin_only(self, service, officer, admin):
        with pytest.raises(Forbidden):
            service.update_recipients({"telecom": "x@gov.example"}, officer)
        updated = service.update_recipients({"telecom": "x@gov.example"}, admin)
        assert updated["telecom"]["address"] == "x@gov.example"

    def test_police_officers_count_only_open_assignments(self, service, make_intake, reporter, admin, officer, other_officer):
        active = advance_to_assigned(service, make_intake, reporter, admin, officer)
        finished = advance_to_assigned(service, make_intake, reporter, admin, officer)
        service.advance_stage(finished["id"], "under_investigation", officer)
        service.advance_stage(finished["id"], "resolved", officer, "Settled")
        service.advance_stage(finished["id"], "closed", admin)

        officers = service.list_police_officers()
        assert [o["full_name"] for o in officers] == ["SI Khan", "SI Rao"]
        rao = officers[1]
        assert rao["id"] == officer.id
        assert rao["open_cases"] == 1
        assert officers[0]["open_cases"] == 0
        assert service.get_case(active["id"])["assigned_to"] == officer.id


# =============================================================================
# COMMENTS
# =============================================================================

class TestComments:

    def test_assigned_officer_comments(self, service, make_intake, reporter, admin, officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        recorded = service.add_comment(case["id"], officer, "  Spoke to the bank  ")

        assert recorded["comment"] == "Spoke to the bank"
        assert recorded["created_at"] is not None
        assert recorded["from_status"] == recorded["to_status"] == "assigned_to_police"
        assert recorded["actor"] == officer.to_dict()
        assert service.get_case(case["id"])["status"] == "assigned_to_police"
        assert service.list_actions(case["id"])[-1]["action"] == "comment"

    def test_other_officer_cannot_comment(self, service, make_intake, reporter, admin, officer, other_officer):
        case = advance_to_assigned(service, make_intake, reporter, admin, officer)
        with pytest.raises(Forbidden):
            service.add_comment(case["id"], other_officer, "Not my case")

    def test_reporter_cannot_comment(self, service, make_intake, reporter):
        case = service.submit_case(make_intake(), reporter)
        with pytest.raises(Forbidden):
            service.add_comment(case["id"], reporter, "Any update?")

    def test_blank_comment_writes_nothing(self, db, service, make_intake, reporter, admin):
        case = service.submit_case(make_intake(), reporter)
        with pytest.raises(ValidationError):
            service.add_comment(case["id"], admin, "   ")
        assert db.query(CaseActionDB).count() == 0

    def test_unknown_case(self, service, admin):
        with pytest.raises(NotFound):
            service.add_comment("FRD-000000-NONE", admin, "hello")
