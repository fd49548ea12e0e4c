"""Tests for shared adapter types."""

from django.test import SimpleTestCase

from apps.integrations.base import RefInfo, TestRunReport, TestRunState, evaluate_test_status


class EvaluateTestStatusTests(SimpleTestCase):
    def test_completed_run_at_threshold_is_ready(self):
        report = TestRunReport(run_id="1", status=TestRunState.COMPLETED, total=200, passed=180)
        evaluation = evaluate_test_status(report, threshold=90)

        assert evaluation.pass_percentage == 90.0
        assert evaluation.is_passing_threshold
        assert evaluation.ready_for_approval
        assert "report" not in evaluation.to_dict()

    def test_percentage_is_rounded(self):
        report = TestRunReport(run_id="1", status=TestRunState.COMPLETED, total=3, passed=2)
        assert evaluate_test_status(report, threshold=50).pass_percentage == 66.67

    def test_unfinished_run_is_never_ready(self):
        report = TestRunReport(run_id="1", status=TestRunState.IN_PROGRESS, total=10, passed=10)
        evaluation = evaluate_test_status(report, threshold=100)

        assert evaluation.is_passing_threshold
        assert not evaluation.ready_for_approval

    def test_empty_run_scores_zero(self):
        report = TestRunReport(run_id="1", status=TestRunState.COMPLETED)
        evaluation = evaluate_test_status(report, threshold=0)

        assert evaluation.pass_percentage == 0.0
        assert evaluation.ready_for_approval


class RefInfoTests(SimpleTestCase):
    def test_object_type(self):
        assert RefInfo(sha="a").is_commit
        assert RefInfo(sha="a", object_type="tag").is_tag
