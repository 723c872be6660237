"""Tests for CPF/CNPJ and e-mail validation."""

from __future__ import annotations

import pytest

from atacado_erp import validators


@pytest.mark.parametrize("value", ["529.982.247-25", "52998224725", "111.444.777-35"])
def test_validate_cpf_accepts_valid_numbers(value):
    assert validators.validate_cpf(value)


@pytest.mark.parametrize("value", ["529.982.247-26", "111.111.111-11", "1234567890", ""])
def test_validate_cpf_rejects_invalid_numbers(value):
    assert not validators.validate_cpf(value)


def test_validate_cnpj_checks_both_digits():
    assert validators.validate_cnpj("11.222.333/0001-81")
    assert not validators.validate_cnpj("11.222.333/0001-82")
    assert not validators.validate_cnpj("11.222.333/0001-91")
    assert not validators.validate_cnpj("00.000.000/0000-00")


def test_is_valid_cpf_cnpj_dispatches_on_length():
    assert validators.is_valid_cpf_cnpj("529.982.247-25")
    assert validators.is_valid_cpf_cnpj("11222333000181")
    assert not validators.is_valid_cpf_cnpj("123")


def test_only_digits_strips_punctuation():
    assert validators.only_digits("11.222.333/0001-81") == "11222333000181"


@pytest.mark.parametrize(
    "value, expected",
    [("ana@loja.com.br", True), ("  ana@loja.com ", True), ("ana@loja", False), ("ana loja@x.com", False), ("", False)],
)
def test_is_valid_email(value, expected):
    assert validators.is_valid_email(value) is expected
