import re
from typing import List, Optional

from pydantic import BaseModel

STUDENT_ID_PATTERN = re.compile(r"S\d{3}-\d{4}-\d{3}", re.ASCII)
STUDENT_ID_LENGTH = 13
FORMAT_MESSAGE = "Student ID must be in format S000-0000-000"


class IdentifierValidation(BaseModel):
    valid: bool
    normalized: Optional[str] = None
    error: Optional[str] = None


class DetailedIdentifierValidation(BaseModel):
    valid: bool
    normalized: Optional[str] = None
    errors: List[str] = []


def normalize_student_id(raw: str) -> str:
    """Boşlukları kırpar ve büyük harfe çevirir."""
    return raw.strip().upper()


def validate_format(raw) -> IdentifierValidation:
    """
    Öğrenci numarasını S###-####-### kuralına göre doğrular.
    Saf fonksiyondur; string olmayan girdi de geçersiz sayılır, hata fırlatılmaz.
    """
    if not isinstance(raw, str):
        return IdentifierValidation(valid=False, error="Student ID must be a string")

    normalized = normalize_student_id(raw)
    if not normalized:
        return IdentifierValidation(valid=False, error="Student ID is required")
    if len(normalized) != STUDENT_ID_LENGTH:
        return IdentifierValidation(valid=False, error="Student ID must be exactly 13 characters")
    if not STUDENT_ID_PATTERN.fullmatch(normalized):
        return IdentifierValidation(valid=False, error=FORMAT_MESSAGE)

    return IdentifierValidation(valid=True, normalized=normalized)


def validate_format_detailed(raw) -> DetailedIdentifierValidation:
    """
    Arayüzde kesin geri bildirim için ihlal edilen her kuralı tek tek listeler.
    """
    if not isinstance(raw, str):
        return DetailedIdentifierValidation(valid=False, errors=["Student ID must be a string"])

    normalized = normalize_student_id(raw)
    errors: List[str] = []

    if len(normalized) != STUDENT_ID_LENGTH:
        errors.append("Student ID must be exactly 13 characters long")

    if not STUDENT_ID_PATTERN.fullmatch(normalized):
        errors.append(f"{FORMAT_MESSAGE} (S followed by 3 digits, dash, 4 digits, dash, 3 digits)")

        if not normalized.startswith("S"):
            errors.append("Student ID must start with the letter S")

        parts = normalized.split("-")
        if len(parts) != 3:
            errors.append("Student ID must have exactly 2 dashes separating the parts")
        else:
            first, second, third = parts
            if not re.fullmatch(r"S\d{3}", first, re.ASCII):
                errors.append("First part must be S followed by 3 digits")
            if not re.fullmatch(r"\d{4}", second, re.ASCII):
                errors.append("Second part must be 4 digits")
            if not re.fullmatch(r"\d{3}", third, re.ASCII):
                errors.append("Third part must be 3 digits")

    if errors:
        return DetailedIdentifierValidation(valid=False, errors=errors)
    return DetailedIdentifierValidation(valid=True, normalized=normalized)
