"""
View gating on top of ``SessionStore``.

The guard only decides what a client should show. API handlers re-check the
bearer token and role on every request regardless of what the guard said.
"""

from dataclasses import dataclass
from typing import Literal, Optional

from session_client import SessionStore

UNAUTHORIZED_PATH = "/unauthorized"
VERIFY_SELLER_PATH = "/verify-seller"


@dataclass(frozen=True)
class GuardDecision:
    action: Literal["wait", "render", "redirect"]
    location: Optional[str] = None


WAIT = GuardDecision("wait")
RENDER = GuardDecision("render")


def check_access(
    session: SessionStore,
    require_role: Optional[str] = None,
    require_verified_seller: bool = False,
    login_path: str = "/login",
) -> GuardDecision:
    if session.is_loading:
        return WAIT
    if not session.is_authenticated:
        return GuardDecision("redirect", login_path)

    user = session.user or {}
    if require_role and user.get("role") != require_role:
        return GuardDecision("redirect", UNAUTHORIZED_PATH)
    if require_verified_seller and not user.get("is_verified_seller"):
        return GuardDecision("redirect", VERIFY_SELLER_PATH)
    return RENDER
