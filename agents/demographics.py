"""
Age / sex plausibility checks for ICD-10 and CPT codes.

Deterministic, no API call. Each check returns a list of human-readable issue
strings; an empty list means the code is consistent with the demographics.
"""

from __future__ import annotations

from typing import Literal

CodeType = Literal["icd10", "cpt"]
Sex = Literal["M", "F"]

_SCREENING_MAMMOGRAPHY_CPT = {"77065", "77066", "77067"}
_FEMALE_PID_PREFIXES = ("N70", "N71", "N72", "N73")
_PROSTATE_PREFIXES = ("N40", "N41", "N42")

ADULT_AGE = 18


def normalize_code(code: str) -> str:
    return code.replace(".", "").strip().upper()


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


def check_female_only_icd10(code: str, sex: Sex) -> list[str]:
    if sex != "M":
        return []
    issues: list[str] = []
    if code.startswith("O"):
        issues.append("Pregnancy/childbirth codes (O-codes) are designated for female patients.")
    if code.startswith(_FEMALE_PID_PREFIXES):
        issues.append("Female pelvic inflammatory disease codes are designated for female patients.")
    if code == "Z1231":
        issues.append("Z12.31 (encounter for screening mammogram) is designated for female patients.")
    return issues


def check_male_only_icd10(code: str, sex: Sex) -> list[str]:
    if sex == "F" and code.startswith(_PROSTATE_PREFIXES):
        return ["Prostate-related codes are designated for male patients."]
    return []


def check_cpt_sex(code: str, sex: Sex) -> list[str]:
    if sex == "M" and code in _SCREENING_MAMMOGRAPHY_CPT:
        return [
            "Screening mammography CPT codes are designated for female patients. "
            "Will almost certainly be denied for a male patient."
        ]
    return []


def check_cpt_age(code: str, age: float) -> list[str]:
    if age < ADULT_AGE and code in _SCREENING_MAMMOGRAPHY_CPT:
        return ["Screening mammography is not typically indicated for patients under 18."]
    return []


def check_perinatal_on_adult(code: str, age: float) -> list[str]:
    if age >= ADULT_AGE and code.startswith("P"):
        return ["Perinatal condition codes (P-codes) are typically for newborns/infants."]
    return []


def check_age_sex(code: str, code_type: CodeType, age: float, sex: Sex) -> list[str]:
    """Run every applicable rule for one code and collect the issues."""
    normalized = normalize_code(code)
    issues: list[str] = []
    if code_type == "icd10":
        issues.extend(check_female_only_icd10(normalized, sex))
        issues.extend(check_male_only_icd10(normalized, sex))
        issues.extend(check_perinatal_on_adult(normalized, age))
    else:
        issues.extend(check_cpt_sex(normalized, sex))
        issues.extend(check_cpt_age(normalized, age))
    return issues
