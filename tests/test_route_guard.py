"""Route guard decisions for each session state."""

import pytest

from route_guard import GuardDecision, check_access
from session_client import ApiClient, CookieJar, SessionState, SessionStore


def _session(state, user=None, token="token"):
    store = SessionStore(api=ApiClient(base_url="http://testserver"), cookies=CookieJar())
    store.state = state
    if state is SessionState.AUTHENTICATED:
        store.token = token
        store.user = user or {"id": "u1", "role": "buyer", "is_verified_seller": False}
    return store


def test_waits_while_loading():
    assert check_access(_session(SessionState.LOADING)) == GuardDecision("wait")


def test_redirects_anonymous_to_login():
    decision = check_access(_session(SessionState.UNAUTHENTICATED), login_path="/signin")
    assert decision == GuardDecision("redirect", "/signin")


def test_renders_for_authenticated_user():
    assert check_access(_session(SessionState.AUTHENTICATED)).action == "render"


@pytest.mark.parametrize(
    "user, kwargs, expected",
    [
        ({"role": "buyer"}, {"require_role": "seller"}, GuardDecision("redirect", "/unauthorized")),
        ({"role": "seller"}, {"require_role": "seller"}, GuardDecision("render")),
        ({"role": "seller", "is_verified_seller": False}, {"require_verified_seller": True}, GuardDecision("redirect", "/verify-seller")),
        ({"role": "seller", "is_verified_seller": True}, {"require_role": "seller", "require_verified_seller": True}, GuardDecision("render")),
        # role is checked before verification
        ({"role": "buyer", "is_verified_seller": False}, {"require_role": "admin", "require_verified_seller": True}, GuardDecision("redirect", "/unauthorized")),
    ],
)
def test_role_and_verification_requirements(user, kwargs, expected):
    assert check_access(_session(SessionState.AUTHENTICATED, user=user), **kwargs) == expected


def test_authenticated_state_without_token_is_treated_as_anonymous():
    store = _session(SessionState.AUTHENTICATED)
    store.token = None
    assert check_access(store) == GuardDecision("redirect", "/login")
