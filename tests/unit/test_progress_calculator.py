"""ProgressCalculator tests."""

import pytest

from onboardkit.progress import ProgressCalculator, ProgressService, parse_progress
from onboardkit.progress.phases import PhaseTable, normalize_phase_name, underscore


def _percentage(raw):
    return ProgressCalculator().percentage(parse_progress(raw))


def test_default_table_requires_fourteen_fields():
    table = PhaseTable()
    assert table.order == [
        "welcome",
        "parent_info",
        "child_info",
        "concerns",
        "insurance",
        "assessment",
    ]
    assert table.total_required == 14
    assert table.required_fields("assessment") == 0


def test_parent_info_flag_alone_is_42_percent():
    assert _percentage({"intake": {"parentInfoComplete": True}}) == 42


def test_empty_payload_is_zero():
    assert _percentage({}) == 0
    assert _percentage(None) == 0


def test_all_phases_complete_is_100():
    raw = {
        "intake": {
            "parentInfoComplete": True,
            "childInfoComplete": True,
            "concerns": {"primaryConcerns": ["sleep"]},
        },
        "insurance": {"selfPay": True},
    }
    assert _percentage(raw) == 100


def test_individual_fields_count_when_flag_missing():
    raw = {
        "intake": {
            "parent": {
                "firstName": "Ada",
                "lastName": "  ",
                "email": "ada@example.com",
                "isGuardian": False,
            },
            "child": {"firstName": "Tim", "dateOfBirth": "2018-04-01"},
        }
    }
    # 2 parent + 2 child fields
    assert _percentage(raw) == 4 * 100 // 14


def test_insurance_self_pay_or_verified_awards_full_phase():
    assert _percentage({"insurance": {"selfPay": True}}) == 21
    assert _percentage({"insurance": {"verificationStatus": "Verified"}}) == 21
    assert _percentage({"insurance": {"verificationStatus": "pending"}}) == 0
    assert _percentage({"insurance": {"payerName": "Aetna", "memberId": "M1"}}) == 14


def test_concerns_phase():
    assert _percentage({"intake": {"concerns": {"primaryConcerns": ["speech"]}}}) == 7
    assert _percentage({"intake": {"concerns": {"primaryConcerns": []}}}) == 0


def test_watermark_keeps_percentage_from_dropping():
    assert _percentage({"last_percentage": 80}) == 80
    assert _percentage({"last_percentage": 10, "intake": {"parentInfoComplete": True}}) == 42
    assert _percentage({"last_percentage": 250}) == 100


def test_malformed_sections_degrade_to_zero():
    raw = {"intake": "garbage", "insurance": 7, "completedSteps": "welcome"}
    calc = ProgressCalculator()
    payload = parse_progress(raw)
    assert calc.percentage(payload) == 0
    assert calc.completed_phases(payload) == []


def test_current_phase_defaults_to_first():
    calc = ProgressCalculator()
    assert calc.current_phase(parse_progress({})) == "welcome"


@pytest.mark.parametrize(
    "marker,expected",
    [
        ("intro", "welcome"),
        ("guardianInfo", "parent_info"),
        ("guardian_info", "parent_info"),
        ("Insurance Info", "insurance"),
        ("screening", "assessment"),
        ("childInfo", "child_info"),
        ("Payment-Details", "payment_details"),
    ],
)
def test_phase_name_normalization(marker, expected):
    assert normalize_phase_name(marker) == expected


def test_blank_phase_name_is_none():
    assert normalize_phase_name("  ") is None
    assert normalize_phase_name(None) is None


def test_underscore():
    assert underscore("parentInfo") == "parent_info"
    assert underscore("HTTPRequest") == "http_request"
    assert underscore("child-info") == "child_info"


def test_completed_phases_are_normalized_and_deduplicated():
    calc = ProgressCalculator()
    payload = parse_progress(
        {"completedSteps": ["intro", "welcome", "parentInfo", "", "parent_info"]}
    )
    assert calc.completed_phases(payload) == ["welcome", "parent_info"]


def test_next_phase():
    calc = ProgressCalculator()
    assert calc.next_phase("child_info") == "concerns"
    assert calc.next_phase("assessment") is None
    assert calc.next_phase("payment_details") is None


def test_snapshot_for_unknown_current_step():
    service = ProgressService(repository=None, cache=None)
    snapshot = service.snapshot_for({"currentStep": "somewhere_else"})
    assert snapshot.current_phase == "somewhere_else"
    assert snapshot.next_phase is None
    assert snapshot.estimated_minutes_remaining == 0


def test_snapshot_for_fresh_session():
    service = ProgressService(repository=None, cache=None)
    snapshot = service.snapshot_for({})
    assert snapshot.percentage == 0
    assert snapshot.current_phase == "welcome"
    assert snapshot.next_phase == "parent_info"
    assert snapshot.completed_phases == []
    # 2 + 3 + 2 + 4 + 5 baseline minutes after welcome
    assert snapshot.estimated_minutes_remaining == 16
