"""Authentication collaborator backed by the ``Users`` collection.

Passwords and reset tokens are never stored in clear text: both go through
``werkzeug.security`` hashing. Sign-in produces a :class:`~atacado_erp.core_logic.Session`
which callers pass explicitly to every BLL operation.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from . import data_manager, log
from .constants import UserRole
from .core_logic import (
    RuntimeContext,
    Session,
    _resolve_timestamp,
    cached_rows,
    generate_document_id,
    invalidate_cache,
    require_text,
)
from .errors import (
    InvalidCredentialError,
    NotFoundError,
    PermissionDeniedError,
    ReauthenticationRequired,
    ValidationError,
)
from .validators import is_valid_cpf_cnpj, is_valid_email, only_digits

MIN_PASSWORD_LENGTH = 6
USERS = data_manager.USERS_SHEET
HASH_METHOD = "pbkdf2:sha256"


@dataclass(frozen=True)
class SignUpCommand:
    """Registration request for a new portal user."""

    name: str
    email: str
    password: str
    role: UserRole = UserRole.CLIENT
    cpf_cnpj: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


def _hash(secret: str) -> str:
    return generate_password_hash(secret, method=HASH_METHOD, salt_length=16)


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _require_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        log.error("Password rejected: shorter than %d characters", MIN_PASSWORD_LENGTH)
        raise ValidationError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters")


def list_users(context: RuntimeContext, *, role: Optional[UserRole] = None) -> List[data_manager.UserRow]:
    """Return cached users, optionally restricted to one role."""

    users = cached_rows(context, USERS, data_manager.deserialize_user)
    if role is None:
        return users
    return [user for user in users if user.role is role]


def get_user(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Resolve a user by id.

    Raises:
        NotFoundError: If ``user_id`` is unknown.
    """

    for user in list_users(context):
        if user.user_id == user_id:
            return user
    log.warning("User lookup failed for id '%s'", user_id)
    raise NotFoundError(f"Unknown user id: {user_id}")


def find_user_by_email(context: RuntimeContext, email: str) -> Optional[data_manager.UserRow]:
    wanted = _normalize_email(email)
    for user in list_users(context):
        if user.email == wanted:
            return user
    return None


def sign_up(
    context: RuntimeContext,
    command: SignUpCommand,
    *,
    created_by: Optional[Session] = None,
    now: Optional[datetime] = None,
) -> data_manager.UserRow:
    """Register a new user.

    Clients may register themselves. Sellers and managers can only be
    created by a manager session passed as ``created_by``.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        command (SignUpCommand): Registration data.
        created_by (Session | None): Session of the manager creating staff
            accounts.
        now (datetime | None): Creation timestamp override.

    Returns:
        data_manager.UserRow: The persisted user.

    Raises:
        ValidationError: For a blank name, a malformed e-mail, a short
            password, a duplicate e-mail or an invalid CPF/CNPJ.
        PermissionDeniedError: When a staff account is requested without a
            manager session.
    """

    if command.role is not UserRole.CLIENT and (created_by is None or created_by.role is not UserRole.MANAGER):
        log.warning("Sign-up of %s account '%s' attempted without a manager", command.role.value, command.email)
        raise PermissionDeniedError(f"Only managers can create {command.role.value} accounts")
    return _create_user(context, command, now=now)


def bootstrap_manager(
    context: RuntimeContext,
    command: SignUpCommand,
    *,
    now: Optional[datetime] = None,
) -> data_manager.UserRow:
    """Create the first manager of an empty workbook.

    Raises:
        PermissionDeniedError: If a manager already exists.
    """

    if list_users(context, role=UserRole.MANAGER):
        log.warning("Bootstrap refused: a manager account already exists")
        raise PermissionDeniedError("A manager account already exists")
    return _create_user(context, replace(command, role=UserRole.MANAGER), now=now)


def _create_user(
    context: RuntimeContext,
    command: SignUpCommand,
    *,
    now: Optional[datetime],
) -> data_manager.UserRow:
    name = require_text(command.name, label="Name")
    email = _normalize_email(command.email)
    if not is_valid_email(email):
        log.error("Sign-up rejected: malformed e-mail '%s'", command.email)
        raise ValidationError(f"Invalid e-mail address: {command.email!r}")
    _require_password(command.password)

    cpf_cnpj = None
    if command.cpf_cnpj:
        if not is_valid_cpf_cnpj(command.cpf_cnpj):
            log.error("Sign-up rejected: invalid CPF/CNPJ for '%s'", email)
            raise ValidationError(f"Invalid CPF/CNPJ: {command.cpf_cnpj!r}")
        cpf_cnpj = only_digits(command.cpf_cnpj)
    elif command.role is UserRole.CLIENT:
        raise ValidationError("Clients must provide a CPF or CNPJ")

    if find_user_by_email(context, email) is not None:
        log.warning("Sign-up rejected: e-mail '%s' already registered", email)
        raise ValidationError(f"E-mail already registered: {email}")

    timestamp = _resolve_timestamp(now)
    user = data_manager.UserRow(
        user_id=generate_document_id(prefix="U", when=timestamp),
        name=name,
        email=email,
        role=command.role,
        is_active=True,
        password_hash=_hash(command.password),
        cpf_cnpj=cpf_cnpj,
        phone=(command.phone or "").strip() or None,
        address=(command.address or "").strip() or None,
        created_at=timestamp,
    )
    data_manager.create_document(context.workbook, USERS, data_manager.serialize_user(user))
    invalidate_cache(context, USERS)
    log.info("Registered %s '%s' (%s)", user.role.value, user.user_id, user.email)
    return user


def sign_in(context: RuntimeContext, email: str, password: str, *, now: Optional[datetime] = None) -> Session:
    """Check credentials and open a session.

    Raises:
        InvalidCredentialError: On an unknown e-mail, a wrong password or an
            inactive account. The message does not reveal which.
    """

    user = find_user_by_email(context, email)
    if user is None or not check_password_hash(user.password_hash, password or ""):
        log.warning("Failed sign-in for '%s'", _normalize_email(email))
        raise InvalidCredentialError("Invalid e-mail or password")
    if not user.is_active:
        log.warning("Sign-in refused for inactive user '%s'", user.user_id)
        raise InvalidCredentialError("Invalid e-mail or password")
    log.info("User '%s' signed in as %s", user.user_id, user.role.value)
    return Session(
        user_id=user.user_id,
        name=user.name,
        role=user.role,
        authenticated_at=_resolve_timestamp(now),
    )


def reauthenticate(
    context: RuntimeContext,
    session: Session,
    password: str,
    *,
    now: Optional[datetime] = None,
) -> Session:
    """Confirm the password again and return a freshly authenticated session."""

    user = get_user(context, session.user_id)
    if not user.is_active or not check_password_hash(user.password_hash, password or ""):
        log.warning("Re-authentication failed for user '%s'", session.user_id)
        raise InvalidCredentialError("Invalid password")
    log.debug("User '%s' re-authenticated", session.user_id)
    return session.refreshed(_resolve_timestamp(now))


def require_fresh_session(context: RuntimeContext, session: Session, *, now: Optional[datetime] = None) -> None:
    """Raise :class:`ReauthenticationRequired` for stale sessions."""

    window = context.settings.reauth_window_minutes
    if not session.is_fresh(window_minutes=window, now=now):
        log.warning("User '%s' must re-authenticate (window %d min)", session.user_id, window)
        raise ReauthenticationRequired("Please re-authenticate before performing this operation")


def change_password(
    context: RuntimeContext,
    session: Session,
    new_password: str,
    *,
    now: Optional[datetime] = None,
) -> None:
    """Replace the caller's password; needs a recently authenticated session."""

    require_fresh_session(context, session, now=now)
    _require_password(new_password)
    data_manager.update_document(
        context.workbook,
        USERS,
        session.user_id,
        {"PasswordHash": _hash(new_password), "ResetToken": None},
    )
    invalidate_cache(context, USERS)
    log.info("Password changed for user '%s'", session.user_id)


def send_password_reset(context: RuntimeContext, email: str) -> Optional[str]:
    """Issue a single-use reset token for ``email``.

    Only the token hash is stored. Delivering the token to the user is the
    caller's job.

    Returns:
        str | None: The clear token, or ``None`` when the e-mail is unknown
            (callers should answer the same way in both cases).
    """

    user = find_user_by_email(context, email)
    if user is None:
        log.info("Password reset requested for unknown e-mail '%s'", _normalize_email(email))
        return None
    token = secrets.token_urlsafe(24)
    data_manager.update_document(
        context.workbook,
        USERS,
        user.user_id,
        {"ResetToken": _hash(token)},
    )
    invalidate_cache(context, USERS)
    log.info("Password reset token issued for user '%s'", user.user_id)
    return token


def complete_password_reset(context: RuntimeContext, email: str, token: str, new_password: str) -> None:
    """Consume a reset token and set a new password.

    Raises:
        InvalidCredentialError: If no token is pending or it does not match.
        ValidationError: If the new password is too short.
    """

    user = find_user_by_email(context, email)
    if user is None or user.reset_token is None or not check_password_hash(user.reset_token, token or ""):
        log.warning("Invalid password reset attempt for '%s'", _normalize_email(email))
        raise InvalidCredentialError("Invalid or expired reset token")
    _require_password(new_password)
    data_manager.update_document(
        context.workbook,
        USERS,
        user.user_id,
        {"PasswordHash": _hash(new_password), "ResetToken": None},
    )
    invalidate_cache(context, USERS)
    log.info("Password reset completed for user '%s'", user.user_id)


def set_user_active(
    context: RuntimeContext,
    session: Session,
    user_id: str,
    is_active: bool,
) -> data_manager.UserRow:
    """Enable or disable an account. Managers only."""

    if session.role is not UserRole.MANAGER:
        log.warning("User '%s' tried to toggle account '%s'", session.user_id, user_id)
        raise PermissionDeniedError("Only managers can enable or disable accounts")
    if user_id == session.user_id and not is_active:
        raise ValidationError("Managers cannot disable their own account")
    user = get_user(context, user_id)
    data_manager.update_document(context.workbook, USERS, user_id, {"IsActive": bool(is_active)})
    invalidate_cache(context, USERS)
    log.info("User '%s' is_active set to %s", user_id, bool(is_active))
    return replace(user, is_active=bool(is_active))
