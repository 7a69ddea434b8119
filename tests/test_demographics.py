"""Tests for age/sex plausibility rules."""

import pytest

from agents.demographics import check_age_sex


@pytest.mark.parametrize(
    "code, code_type, age, sex",
    [
        ("O80", "icd10", 30, "M"),
        ("N73.9", "icd10", 40, "M"),
        ("Z12.31", "icd10", 50, "M"),
        ("N40.0", "icd10", 60, "F"),
        ("77067", "cpt", 30, "M"),
        ("77067", "cpt", 16, "F"),
        ("P07.30", "icd10", 25, "F"),
    ],
)
def test_flagged(code, code_type, age, sex):
    assert check_age_sex(code, code_type, age, sex)


@pytest.mark.parametrize(
    "code, code_type, age, sex",
    [
        ("O80", "icd10", 30, "F"),
        ("N40.0", "icd10", 60, "M"),
        ("77067", "cpt", 50, "F"),
        ("P07.30", "icd10", 0, "M"),
        ("M54.50", "icd10", 45, "M"),
        ("99214", "cpt", 45, "F"),
    ],
)
def test_not_flagged(code, code_type, age, sex):
    assert check_age_sex(code, code_type, age, sex) == []


def test_male_screening_mammogram_under_18_reports_both_rules():
    issues = check_age_sex("77067", "cpt", 15, "M")
    assert len(issues) == 2
