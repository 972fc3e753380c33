import pytest
from pymongo.errors import OperationFailure, PyMongoError

import auth
import database
from auth import ACCOUNTS, AuthContext, AuthError, AuthProvider, is_missing_account_table_error


@pytest.fixture
def provider():
    return AuthProvider(secret="unit-secret", exp_minutes=5)


def failing_accounts(monkeypatch, exc):
    real_get_document = database.get_document

    def get_document(collection, doc_id):
        if collection == ACCOUNTS:
            raise exc
        return real_get_document(collection, doc_id)

    monkeypatch.setattr(database, "get_document", get_document)


def test_user_without_account_row_is_user(provider, account_table):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    account_table.delete_many({})
    with AuthContext(provider, session.access_token) as ctx:
        assert ctx.user["email"] == "rookie@alpinepatrol.org"
        assert ctx.role == "user"
        assert ctx.account is None
        assert not ctx.is_admin
        assert ctx.loading is False


def test_missing_account_table_defaults_to_user(provider, mongo):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    assert ACCOUNTS not in mongo.list_collection_names()
    with AuthContext(provider, session.access_token) as ctx:
        assert ctx.account_table_exists is False
        assert ctx.role == "user"
        assert not ctx.is_admin


def test_failed_lookup_defaults_to_user(provider, account_table, monkeypatch):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    database.update_document(ACCOUNTS, session.user["id"], {"role": "admin"})
    failing_accounts(monkeypatch, PyMongoError("connection reset"))
    with AuthContext(provider, session.access_token) as ctx:
        assert ctx.role == "user"
        assert ctx.account is None
        assert ctx.account_table_exists is True
        assert not ctx.is_admin


def test_missing_table_error_during_lookup_marks_table_missing(provider, account_table, monkeypatch):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    failing_accounts(monkeypatch, OperationFailure("ns not found", code=26))
    with AuthContext(provider, session.access_token) as ctx:
        assert ctx.role == "user"
        assert ctx.account_table_exists is False


def test_admin_row_resolves_admin(provider, account_table):
    session = provider.sign_up("chief@alpinepatrol.org", "avalanche1", full_name="Patrol Chief")
    database.update_document(ACCOUNTS, session.user["id"], {"role": "admin"})
    with AuthContext(provider, session.access_token) as ctx:
        assert ctx.role == "admin"
        assert ctx.is_admin
        assert ctx.account["full_name"] == "Patrol Chief"


def test_metadata_role_source(provider):
    session = provider.sign_up("chief@alpinepatrol.org", "avalanche1")
    with AuthContext(provider, session.access_token, role_source="metadata") as ctx:
        assert ctx.role == "user"
        assert ctx.account_table_exists is None
    provider.update_user(session.user["id"], user_metadata={"role": "admin"})
    with AuthContext(provider, session.access_token, role_source="metadata") as ctx:
        assert ctx.is_admin


def test_anonymous_context(provider):
    with AuthContext(provider, None) as ctx:
        assert ctx.user is None
        assert ctx.role is None
        assert not ctx.is_admin
        assert ctx.loading is False


def test_role_is_resolved_again_on_user_updated(provider, account_table):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    with AuthContext(provider, session.access_token) as ctx:
        assert ctx.role == "user"
        database.update_document(ACCOUNTS, session.user["id"], {"role": "admin"})
        provider.update_user(session.user["id"], user_metadata={"full_name": "Promoted"})
        assert ctx.role == "admin"
        assert ctx.user["user_metadata"]["full_name"] == "Promoted"


def test_events_for_other_users_are_ignored(provider, account_table):
    mine = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    other = provider.sign_up("chief@alpinepatrol.org", "avalanche1")
    with AuthContext(provider, mine.access_token) as ctx:
        provider.sign_out(other.access_token)
        assert ctx.user is not None


def test_close_unsubscribes(provider, account_table):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    ctx = AuthContext(provider, session.access_token).init()
    ctx.close()
    database.update_document(ACCOUNTS, session.user["id"], {"role": "admin"})
    provider.update_user(session.user["id"], user_metadata={"full_name": "Later"})
    assert ctx.role == "user"


def test_sign_out_clears_context_and_invalidates_token(provider, account_table):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    with AuthContext(provider, session.access_token) as ctx:
        ctx.sign_out()
        assert ctx.user is None
        assert ctx.role is None
        assert ctx.session is None
    assert provider.get_session(session.access_token) is None


def test_sign_in_and_errors(provider):
    provider.sign_up("Rookie@AlpinePatrol.org", "powderday")
    session = provider.sign_in_with_password("rookie@alpinepatrol.org", "powderday")
    assert "password_hash" not in session.user
    assert provider.get_user(session.access_token)["email"] == "rookie@alpinepatrol.org"

    with pytest.raises(AuthError, match="Invalid login credentials"):
        provider.sign_in_with_password("rookie@alpinepatrol.org", "wrong-pass")
    with pytest.raises(AuthError, match="already registered"):
        provider.sign_up("rookie@alpinepatrol.org", "powderday")
    with pytest.raises(AuthError):
        provider.sign_up("short@alpinepatrol.org", "abc")


def test_tokens_from_another_secret_are_rejected(provider):
    session = provider.sign_up("rookie@alpinepatrol.org", "powderday")
    assert AuthProvider(secret="other-secret").get_session(session.access_token) is None
    assert provider.get_session("not-a-token") is None


def test_password_recovery(provider):
    provider.sign_up("rookie@alpinepatrol.org", "powderday")
    events = []
    provider.on_auth_state_change(lambda event, user_id, session: events.append(event))

    assert provider.reset_password_for_email("nobody@alpinepatrol.org") is None
    token = provider.reset_password_for_email("rookie@alpinepatrol.org")
    provider.reset_password(token, "freshpowder")

    assert provider.sign_in_with_password("rookie@alpinepatrol.org", "freshpowder")
    assert "PASSWORD_RECOVERY" in events
    with pytest.raises(AuthError):
        provider.reset_password("bogus", "freshpowder")


def test_recovery_token_is_not_an_access_token(provider):
    provider.sign_up("rookie@alpinepatrol.org", "powderday")
    token = provider.reset_password_for_email("rookie@alpinepatrol.org")
    assert provider.get_session(token) is None


def test_list_users_hides_password_hashes(provider):
    provider.sign_up("rookie@alpinepatrol.org", "powderday")
    users = provider.list_users()
    assert [u["email"] for u in users] == ["rookie@alpinepatrol.org"]
    assert "password_hash" not in users[0]


def test_update_unknown_user(provider):
    with pytest.raises(AuthError) as exc_info:
        provider.update_user("64b7f0c2a1b2c3d4e5f60718", user_metadata={"role": "admin"})
    assert exc_info.value.status_code == 404


@pytest.mark.parametrize("error,expected", [
    (None, False),
    (OperationFailure("anything", code=26), True),
    (PyMongoError('relation "public.account" does not exist'), True),
    (PyMongoError("ns not found"), True),
    (PyMongoError("upstream returned 500"), True),
    (PyMongoError("connection reset"), False),
])
def test_is_missing_account_table_error(error, expected):
    assert is_missing_account_table_error(error) is expected


def test_module_provider_is_shared():
    assert auth.get_auth_provider() is auth.provider
