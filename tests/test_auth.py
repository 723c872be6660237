"""Tests for the authentication collaborator."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from atacado_erp import auth, data_manager
from atacado_erp.constants import UserRole
from atacado_erp.errors import (
    InvalidCredentialError,
    PermissionDeniedError,
    ReauthenticationRequired,
    ValidationError,
)

from conftest import PASSWORD

OTHER_CPF = "390.533.447-05"


def _client_command(**overrides) -> auth.SignUpCommand:
    values = dict(name="Padaria Pão", email="pao@padaria.com", password=PASSWORD, cpf_cnpj=OTHER_CPF)
    values.update(overrides)
    return auth.SignUpCommand(**values)


def test_sign_up_client_stores_hash_and_digits(runtime_context):
    user = auth.sign_up(runtime_context, _client_command(email="  PAO@Padaria.com "))

    assert user.role is UserRole.CLIENT
    assert user.email == "pao@padaria.com"
    assert user.cpf_cnpj == "39053344705"
    assert user.password_hash != PASSWORD
    stored = data_manager.get_document(runtime_context.workbook, data_manager.USERS_SHEET, user.user_id)
    assert stored["PasswordHash"].startswith("pbkdf2:sha256")


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"email": "not-an-email"}, "e-mail"),
        ({"password": "123"}, "at least 6"),
        ({"cpf_cnpj": "123.456.789-00"}, "CPF/CNPJ"),
        ({"cpf_cnpj": None}, "CPF or CNPJ"),
        ({"name": "  "}, "Name"),
    ],
)
def test_sign_up_rejects_invalid_input(runtime_context, overrides, message):
    with pytest.raises(ValidationError, match=message):
        auth.sign_up(runtime_context, _client_command(**overrides))


def test_sign_up_rejects_duplicate_email(runtime_context, cast):
    with pytest.raises(ValidationError, match="already registered"):
        auth.sign_up(runtime_context, _client_command(email=cast.client.email.upper()))


def test_staff_accounts_need_a_manager(runtime_context, cast):
    command = auth.SignUpCommand(name="Nova", email="nova@atacado.com", password=PASSWORD, role=UserRole.SELLER)

    with pytest.raises(PermissionDeniedError):
        auth.sign_up(runtime_context, command)
    with pytest.raises(PermissionDeniedError):
        auth.sign_up(runtime_context, command, created_by=cast.seller_session)

    seller = auth.sign_up(runtime_context, command, created_by=cast.manager_session)
    assert seller.role is UserRole.SELLER
    assert seller.cpf_cnpj is None


def test_bootstrap_manager_only_once(runtime_context, cast):
    with pytest.raises(PermissionDeniedError, match="already exists"):
        auth.bootstrap_manager(
            runtime_context,
            auth.SignUpCommand(name="Outro", email="outro@atacado.com", password=PASSWORD),
        )


def test_sign_in_returns_session(runtime_context, cast):
    session = auth.sign_in(runtime_context, "SOL@mercearia.com", PASSWORD)

    assert session.user_id == cast.client.user_id
    assert session.role is UserRole.CLIENT
    assert session.name == "Mercearia Sol"


@pytest.mark.parametrize("email, password", [("sol@mercearia.com", "errada"), ("ninguem@x.com", PASSWORD)])
def test_sign_in_rejects_bad_credentials(runtime_context, cast, email, password):
    with pytest.raises(InvalidCredentialError, match="Invalid e-mail or password"):
        auth.sign_in(runtime_context, email, password)


def test_disabled_user_cannot_sign_in(runtime_context, cast):
    auth.set_user_active(runtime_context, cast.manager_session, cast.client.user_id, False)

    with pytest.raises(InvalidCredentialError):
        auth.sign_in(runtime_context, cast.client.email, PASSWORD)


def test_set_user_active_is_manager_only(runtime_context, cast):
    with pytest.raises(PermissionDeniedError):
        auth.set_user_active(runtime_context, cast.seller_session, cast.client.user_id, False)
    with pytest.raises(ValidationError):
        auth.set_user_active(runtime_context, cast.manager_session, cast.manager.user_id, False)


def test_change_password_requires_fresh_session(runtime_context, cast):
    stale = replace(cast.client_session, authenticated_at=cast.client_session.authenticated_at - timedelta(hours=1))

    with pytest.raises(ReauthenticationRequired):
        auth.change_password(runtime_context, stale, "nova-senha")

    fresh = auth.reauthenticate(runtime_context, stale, PASSWORD)
    auth.change_password(runtime_context, fresh, "nova-senha")

    assert auth.sign_in(runtime_context, cast.client.email, "nova-senha").user_id == cast.client.user_id


def test_reauthenticate_rejects_wrong_password(runtime_context, cast):
    with pytest.raises(InvalidCredentialError):
        auth.reauthenticate(runtime_context, cast.client_session, "errada")


def test_password_reset_token_is_single_use(runtime_context, cast):
    token = auth.send_password_reset(runtime_context, cast.other_client.email)
    assert token

    auth.complete_password_reset(runtime_context, cast.other_client.email, token, "trocada1")

    assert auth.sign_in(runtime_context, cast.other_client.email, "trocada1")
    with pytest.raises(InvalidCredentialError):
        auth.complete_password_reset(runtime_context, cast.other_client.email, token, "outra-vez")


def test_password_reset_for_unknown_email_returns_none(runtime_context):
    assert auth.send_password_reset(runtime_context, "ninguem@x.com") is None

