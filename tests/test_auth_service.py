from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from storefront.config import Config
from storefront.models import User, UserRole
from storefront.services.auth_service import AuthService, create_access_token, decode_access_token
from storefront.services.errors import AuthenticationError, ConflictError, StorefrontError, ValidationError


@pytest.fixture
def email_stub(stub_email_service):
    return stub_email_service()


@pytest.fixture
def auth(db_session, email_stub):
    return AuthService(db_session, email_service=email_stub)


def test_register_then_login(auth):
    user = auth.register({"email": "New@Example.com", "password": "secret123", "firstName": "Hina", "city": "Lahore"})
    assert user.email == "new@example.com"
    assert user.role == UserRole.USER
    assert user.first_name == "Hina"
    assert user.passwordHash != "secret123"

    result = auth.login("new@example.com", "secret123")
    identity = decode_access_token(result["token"])
    assert identity == {"id": user.userID, "role": "user", "email": "new@example.com"}
    assert result["user"]["city"] == "Lahore"


def test_register_rejects_duplicates_and_bad_input(auth):
    auth.register({"email": "dup@example.com", "password": "secret123"})
    with pytest.raises(ConflictError):
        auth.register({"email": "DUP@example.com", "password": "secret123"})
    with pytest.raises(ValidationError):
        auth.register({"email": "not-an-email", "password": "secret123"})
    with pytest.raises(ValidationError):
        auth.register({"email": "short@example.com", "password": "123"})


def test_login_failures(auth, sample_user):
    with pytest.raises(AuthenticationError):
        auth.login(sample_user.email, "wrong-password")
    with pytest.raises(AuthenticationError):
        auth.login("nobody@example.com", "password123")


def test_tokens_carry_role_and_expire(admin_user):
    identity = decode_access_token(create_access_token(admin_user))
    assert identity["role"] == "admin"

    expired = create_access_token(admin_user, expires_minutes=-1)
    with pytest.raises(AuthenticationError):
        decode_access_token(expired)

    forged = jwt.encode({"sub": str(admin_user.userID), "role": "admin"}, "other-secret", algorithm=Config.JWT_ALGORITHM)
    with pytest.raises(AuthenticationError):
        decode_access_token(forged)
    with pytest.raises(AuthenticationError):
        decode_access_token("garbage")


def test_forgot_password_issues_token_and_emails_it(auth, email_stub, sample_user, db_session):
    assert auth.forgot_password(sample_user.email) is True

    db_session.refresh(sample_user)
    assert sample_user.reset_token
    assert email_stub.calls == [("password_reset", (sample_user.email, sample_user.reset_token))]


def test_forgot_password_for_unknown_email_is_silent(auth, email_stub):
    assert auth.forgot_password("ghost@example.com") is False
    assert email_stub.calls == []


def test_forgot_password_reports_email_failure(db_session, stub_email_service, sample_user):
    service = AuthService(db_session, email_service=stub_email_service(succeed=False))
    with pytest.raises(StorefrontError) as excinfo:
        service.forgot_password(sample_user.email)
    assert excinfo.value.status_code == 500


def test_reset_password_flow(auth, sample_user, db_session):
    auth.forgot_password(sample_user.email)
    db_session.refresh(sample_user)
    token = sample_user.reset_token

    auth.reset_password(token, "brand-new-pass")

    db_session.refresh(sample_user)
    assert sample_user.reset_token is None
    assert auth.login(sample_user.email, "brand-new-pass")["token"]
    with pytest.raises(ValidationError):
        auth.reset_password(token, "another-pass")


def test_reset_password_rejects_expired_token(auth, sample_user, db_session):
    issued = datetime.now(timezone.utc) - timedelta(minutes=Config.PASSWORD_RESET_EXPIRY_MINUTES + 1)
    auth.forgot_password(sample_user.email, now=issued)
    db_session.refresh(sample_user)

    with pytest.raises(ValidationError):
        auth.reset_password(sample_user.reset_token, "brand-new-pass")


def test_get_user(auth, sample_user):
    assert isinstance(auth.get_user(sample_user.userID), User)
