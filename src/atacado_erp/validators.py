"""Input validators for Brazilian tax ids and e-mail addresses."""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D+")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CNPJ_WEIGHTS = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def only_digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def validate_cpf(value: str) -> bool:
    """Check a CPF (individual taxpayer id) including both check digits."""

    digits = [int(char) for char in only_digits(value)]
    if len(digits) != 11 or len(set(digits)) == 1:
        return False

    for position in (9, 10):
        total = sum(digit * weight for digit, weight in zip(digits[:position], range(position + 1, 1, -1)))
        check = (total * 10) % 11 % 10
        if check != digits[position]:
            return False
    return True


def validate_cnpj(value: str) -> bool:
    """Check a CNPJ (company taxpayer id) including both check digits."""

    digits = [int(char) for char in only_digits(value)]
    if len(digits) != 14 or len(set(digits)) == 1:
        return False

    for position in (12, 13):
        weights = _CNPJ_WEIGHTS[13 - position:]
        total = sum(digit * weight for digit, weight in zip(digits[:position], weights))
        check = 11 - total % 11
        if check > 9:
            check = 0
        if check != digits[position]:
            return False
    return True


def is_valid_cpf_cnpj(value: str) -> bool:
    """Accept either a valid CPF (11 digits) or a valid CNPJ (14 digits)."""

    digits = only_digits(value)
    if len(digits) == 11:
        return validate_cpf(digits)
    if len(digits) == 14:
        return validate_cnpj(digits)
    return False


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL.match((value or "").strip()))
