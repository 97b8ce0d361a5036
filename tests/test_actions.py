"""
Tests for the action boundary.
"""

import threading

import pytest

from insureflow.actions import ActionRunner
from insureflow.exceptions import (
    AuthenticationError,
    CollaboratorError,
    InvalidTransitionError,
    UploadError,
)


class TestActionRunner:

    @pytest.fixture
    def runner(self, user_session):
        return ActionRunner(user_session)

    def test_success_notification(self, runner):
        outcome = runner.run("renew_policy", lambda policy_id: {"id": policy_id}, "pol-1",
                             entity_id="pol-1")

        assert outcome.success
        assert outcome.result == {"id": "pol-1"}
        assert outcome.notification.title == "Policy renewed"
        assert outcome.notification.variant == "success"

    def test_suspend_success_is_a_warning(self, runner):
        outcome = runner.run("suspend_policy", lambda: None)
        assert outcome.notification.title == "Policy suspended"
        assert outcome.notification.variant == "warning"

    @pytest.mark.parametrize("action, title", [
        ("renew_policy", "Renewal failed"),
        ("submit_claim", "Submission failed"),
        ("adjudicate_claim", "Failed to review claim"),
        ("create_policy", "Failed to create policy"),
    ])
    def test_failure_titles(self, runner, action, title):
        def fail():
            raise CollaboratorError("HTTP 500", status_code=500)

        outcome = runner.run(action, fail)

        assert not outcome.success
        assert outcome.notification.title == title
        assert outcome.notification.variant == "error"
        assert outcome.notification.description is None
        assert outcome.error_type == "CollaboratorError"

    def test_upload_failure_carries_message(self, runner):
        def fail():
            raise UploadError("Upload failed: 403 - SignatureDoesNotMatch", status_code=403)

        outcome = runner.run("attach_evidence", fail)

        assert outcome.notification.title == "Upload failed"
        assert outcome.notification.description == "Upload failed: 403 - SignatureDoesNotMatch"

    def test_validation_failure(self, runner):
        def fail():
            raise InvalidTransitionError("Cannot submit claim in status SUBMITTED")

        outcome = runner.run("submit_claim", fail, entity_id="clm-1")

        assert not outcome.success
        assert outcome.error_type == "InvalidTransitionError"
        assert not runner.is_pending("submit_claim", "clm-1")

    def test_authentication_failure_logs_out(self, runner, user_session):
        def fail():
            raise AuthenticationError("Session expired")

        runner.run("renew_policy", fail)

        assert not user_session.is_authenticated

    def test_unexpected_errors_propagate(self, runner):
        def fail():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            runner.run("renew_policy", fail, entity_id="pol-1")
        assert not runner.is_pending("renew_policy", "pol-1")

    def test_duplicate_in_flight_rejected(self, runner):
        started = threading.Event()
        release = threading.Event()
        outcomes = []

        def slow():
            started.set()
            release.wait(timeout=5)
            return "done"

        worker = threading.Thread(
            target=lambda: outcomes.append(runner.run("submit_claim", slow, entity_id="clm-1"))
        )
        worker.start()
        started.wait(timeout=5)

        assert runner.is_pending("submit_claim", "clm-1")
        duplicate = runner.run("submit_claim", slow, entity_id="clm-1")
        other_claim = runner.run("submit_claim", lambda: "ok", entity_id="clm-2")

        release.set()
        worker.join(timeout=5)

        assert not duplicate.success
        assert duplicate.error_type == "DuplicateActionError"
        assert duplicate.notification.variant == "warning"
        assert other_claim.success
        assert outcomes[0].success
        assert not runner.is_pending("submit_claim", "clm-1")
