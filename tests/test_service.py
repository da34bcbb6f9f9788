"""Unit tests for auth/service.py -- SessionService control flow.

Covers:
- register: validation, normalization, duplicate email/username ordering
- login: identical error for unknown email and wrong password, dummy bcrypt
  on unknown email, deactivated accounts, last_login stamping
- refresh: typed-token rules, missing/inactive principals
- profile updates and the admin status rules (self-deactivation, last admin)
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import Role
from auth.passwords import PasswordHasher
from auth.service import ACCOUNT_DEACTIVATED, INVALID_CREDENTIALS, SessionService
from auth.store import PrincipalStore
from auth.tokens import ACCESS, REFRESH, TokenCodec
from conftest import PASSWORD
from core.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError


def _register(service: SessionService, username: str = "alice", email: str = "a@x.com"):
    return service.register(username, email, PASSWORD)


class TestRegister:
    def test_creates_principal_and_issues_pair(self, service: SessionService, codec: TokenCodec) -> None:
        result = _register(service)
        assert result.principal.id
        assert result.principal.role == Role.user
        assert result.principal.hashed_password is None
        assert codec.verify(result.access_token, ACCESS).subject == result.principal.id
        assert codec.verify(result.refresh_token, REFRESH).subject == result.principal.id

    def test_email_normalized(self, service: SessionService, store: PrincipalStore) -> None:
        service.register("alice", "  Alice@X.COM ", PASSWORD)
        assert store.get_by_email("alice@x.com") is not None

    def test_password_stored_hashed(self, service: SessionService, store: PrincipalStore) -> None:
        result = _register(service)
        stored = store.get_by_id(result.principal.id)
        assert stored.hashed_password != PASSWORD
        assert stored.hashed_password.startswith("$2")

    @pytest.mark.parametrize(
        ("username", "email", "password"),
        [
            ("al", "a@x.com", PASSWORD),
            ("bad name", "a@x.com", PASSWORD),
            ("alice", "not-an-email", PASSWORD),
            ("alice", "a@x.com", "short"),
            ("alice", "a@x.com", "x" * 73),
        ],
    )
    def test_invalid_input_rejected(self, service: SessionService, username, email, password) -> None:
        with pytest.raises(ValidationError):
            service.register(username, email, password)

    def test_duplicate_email_reported_first(self, service: SessionService) -> None:
        _register(service)
        with pytest.raises(ConflictError, match="Email already in use"):
            service.register("alice", "A@x.com", PASSWORD)

    def test_duplicate_username(self, service: SessionService) -> None:
        _register(service)
        with pytest.raises(ConflictError, match="Username already taken"):
            service.register("alice", "other@x.com", PASSWORD)

    def test_distinct_registrations_both_succeed(self, service: SessionService) -> None:
        first = _register(service)
        second = service.register("bob", "b@x.com", PASSWORD)
        assert first.principal.id != second.principal.id

    def test_insert_race_maps_to_conflict(self, service: SessionService, store: PrincipalStore) -> None:
        """A duplicate that slips past the pre-check is still reported as a conflict."""
        _register(service)
        with patch.object(store, "get_by_email", return_value=None):
            with pytest.raises(ConflictError, match="Email already in use"):
                service.register("alice2", "a@x.com", PASSWORD)
        with patch.object(store, "get_by_username", return_value=None):
            with pytest.raises(ConflictError, match="Username already taken"):
                service.register("alice", "other@x.com", PASSWORD)

    def test_overlong_name_rejected(self, service: SessionService) -> None:
        with pytest.raises(ValidationError):
            service.register("alice", "a@x.com", PASSWORD, first_name="x" * 51)


class TestLogin:
    def test_success(self, service: SessionService, store: PrincipalStore) -> None:
        registered = _register(service)
        result = service.login("A@X.com", PASSWORD)
        assert result.principal.id == registered.principal.id
        assert result.principal.hashed_password is None
        assert store.get_by_id(registered.principal.id).last_login is not None

    def test_unknown_email_and_wrong_password_identical(self, service: SessionService) -> None:
        _register(service)
        with pytest.raises(UnauthorizedError) as unknown:
            service.login("nobody@x.com", PASSWORD)
        with pytest.raises(UnauthorizedError) as wrong:
            service.login("a@x.com", "WrongPass1!")
        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS
        assert unknown.value.code == wrong.value.code

    def test_unknown_email_still_runs_bcrypt(self, service: SessionService) -> None:
        with patch.object(PasswordHasher, "dummy_verify") as dummy:
            with pytest.raises(UnauthorizedError):
                service.login("nobody@x.com", PASSWORD)
        dummy.assert_called_once_with(PASSWORD)

    @pytest.mark.parametrize(("email", "password"), [("", PASSWORD), ("a@x.com", ""), ("", "")])
    def test_missing_fields(self, service: SessionService, email, password) -> None:
        with pytest.raises(ValidationError, match="Please provide email and password"):
            service.login(email, password)

    def test_deactivated_account_rejected(self, service: SessionService, store: PrincipalStore) -> None:
        principal_id = _register(service).principal.id
        store.update(principal_id, is_active=False)
        with pytest.raises(UnauthorizedError, match=ACCOUNT_DEACTIVATED):
            service.login("a@x.com", PASSWORD)

    def test_last_login_write_failure_does_not_fail_login(
        self, service: SessionService, store: PrincipalStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        registered = _register(service)
        locked = OperationalError("UPDATE principals", {}, Exception("database is locked"))
        with patch.object(store, "record_login", side_effect=locked):
            result = service.login("a@x.com", PASSWORD)
        assert result.principal.id == registered.principal.id
        assert result.access_token
        assert "Could not record last login" in caplog.text

    def test_each_login_issues_fresh_tokens(self, service: SessionService) -> None:
        registered = _register(service)
        first = service.login("a@x.com", PASSWORD)
        assert first.access_token != registered.access_token
        assert first.refresh_token != registered.refresh_token


class TestRefresh:
    def test_refresh_token_yields_access_token(self, service: SessionService, codec: TokenCodec) -> None:
        result = _register(service)
        access = service.refresh(result.refresh_token)
        assert codec.verify(access, ACCESS).subject == result.principal.id

    def test_missing_token(self, service: SessionService) -> None:
        with pytest.raises(UnauthorizedError, match="No refresh token provided"):
            service.refresh(None)

    def test_access_token_not_accepted(self, service: SessionService) -> None:
        result = _register(service)
        with pytest.raises(UnauthorizedError, match="Invalid or expired refresh token"):
            service.refresh(result.access_token)

    def test_garbage_token(self, service: SessionService) -> None:
        with pytest.raises(UnauthorizedError, match="Invalid or expired refresh token"):
            service.refresh("not-a-token")

    def test_unknown_principal(self, service: SessionService, codec: TokenCodec) -> None:
        orphan = codec.issue("does-not-exist", 3600, REFRESH)
        with pytest.raises(UnauthorizedError, match="Invalid or expired refresh token"):
            service.refresh(orphan)

    def test_deactivated_principal(self, service: SessionService, store: PrincipalStore) -> None:
        result = _register(service)
        store.update(result.principal.id, is_active=False)
        with pytest.raises(UnauthorizedError, match=ACCOUNT_DEACTIVATED):
            service.refresh(result.refresh_token)


class TestProfile:
    def test_update_names_and_avatar(self, service: SessionService) -> None:
        principal = _register(service).principal
        updated = service.update_profile(principal, first_name="Alice", last_name="Liddell", avatar=" a.png ")
        assert updated.full_name == "Alice Liddell"
        assert updated.avatar == "a.png"

    def test_same_password_not_rehashed(self, service: SessionService, store: PrincipalStore) -> None:
        principal = _register(service).principal
        before = store.get_by_id(principal.id).hashed_password
        service.update_profile(principal, password=PASSWORD)
        assert store.get_by_id(principal.id).hashed_password == before

    def test_new_password_rehashed(self, service: SessionService) -> None:
        principal = _register(service).principal
        service.update_profile(principal, password="NewSecret456!")
        assert service.login("a@x.com", "NewSecret456!").principal.id == principal.id
        with pytest.raises(UnauthorizedError):
            service.login("a@x.com", PASSWORD)

    def test_get_profile_unknown(self, service: SessionService) -> None:
        with pytest.raises(NotFoundError):
            service.get_profile("missing")


class TestSetStatus:
    def _admin(self, service: SessionService, store: PrincipalStore, username: str = "root", email: str = "root@x.com"):
        principal = service.register(username, email, PASSWORD).principal
        store.update(principal.id, role=Role.admin)
        return store.get_by_id(principal.id)

    def test_deactivate_other_principal(self, service: SessionService, store: PrincipalStore) -> None:
        admin = self._admin(service, store)
        target = _register(service).principal
        updated = service.set_status(admin, target.id, is_active=False)
        assert updated.is_active is False

    def test_change_role(self, service: SessionService, store: PrincipalStore) -> None:
        admin = self._admin(service, store)
        target = _register(service).principal
        assert service.set_status(admin, target.id, role=Role.moderator).role == Role.moderator

    def test_self_deactivation_forbidden(self, service: SessionService, store: PrincipalStore) -> None:
        admin = self._admin(service, store)
        self._admin(service, store, "root2", "root2@x.com")
        with pytest.raises(ForbiddenError):
            service.set_status(admin, admin.id, is_active=False)

    def test_last_admin_cannot_be_demoted(self, service: SessionService, store: PrincipalStore) -> None:
        admin = self._admin(service, store)
        with pytest.raises(ConflictError):
            service.set_status(admin, admin.id, role=Role.user)

    def test_no_fields(self, service: SessionService, store: PrincipalStore) -> None:
        admin = self._admin(service, store)
        target = _register(service).principal
        with pytest.raises(ValidationError):
            service.set_status(admin, target.id)

    def test_unknown_target(self, service: SessionService, store: PrincipalStore) -> None:
        admin = self._admin(service, store)
        with pytest.raises(NotFoundError):
            service.set_status(admin, "missing", is_active=False)
