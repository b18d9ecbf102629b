"""
Navigation guard – decides, for the current viewer and requested path,
whether to render the protected page or where to send the viewer instead.

`decide` is a pure function of its inputs. `NavigationGuard` applies a
decision through a navigator object exposing `push(path)` and
`replace(path)`.
"""

from typing import FrozenSet, Iterable, Optional, Tuple
from urllib.parse import quote

from medportal.config import (
    DOCTOR_HOME,
    LOGIN_PATH,
    ONBOARDING_PATH,
    PATIENT_HOME,
)
from medportal.models import (
    Action,
    GuardDecision,
    Outcome,
    Profile,
    Session,
    ViewerState,
)

VERIFYING_LABEL = "Verifying session..."
SETTING_UP_LABEL = "Setting up your profile..."


# ── Path helpers ─────────────────────────────────────────────────────

def is_under(path: str, prefix: str) -> bool:
    """True when *path* is *prefix* or one of its sub-paths."""
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def home_dashboard(role: Optional[str]) -> str:
    return DOCTOR_HOME if role == "doctor" else PATIENT_HOME


def infer_allowed_roles(path: str) -> Optional[FrozenSet[str]]:
    """Roles implied by the dashboard subtree; None means unrestricted."""
    if is_under(path, DOCTOR_HOME):
        return frozenset({"doctor"})
    if is_under(path, PATIENT_HOME):
        return frozenset({"patient"})
    return None


def login_target(path: str) -> str:
    return f"{LOGIN_PATH}?redirect={quote(path, safe='')}"


def viewer_state(session: Session, profile: Optional[Profile]) -> ViewerState:
    if session.is_loading:
        return ViewerState.LOADING
    if not session.is_authenticated:
        return ViewerState.UNAUTHENTICATED
    if profile is None:
        return ViewerState.AUTHENTICATED_NO_PROFILE
    if not profile.is_onboarded:
        return ViewerState.AUTHENTICATED_NOT_ONBOARDED
    return ViewerState.AUTHENTICATED_ONBOARDED


# ── Decision ─────────────────────────────────────────────────────────

def _onboarding_redirect(path: str, outcome: Outcome) -> GuardDecision:
    # The onboarding page itself is what an incomplete profile should see.
    if is_under(path, ONBOARDING_PATH):
        return GuardDecision(Action.RENDER, outcome)
    return GuardDecision(
        Action.REDIRECT, outcome,
        target=ONBOARDING_PATH, placeholder=SETTING_UP_LABEL,
    )


def decide(
    session: Session,
    profile: Optional[Profile],
    path: str,
    allowed_roles: Optional[Iterable[str]] = None,
) -> GuardDecision:
    """Evaluate the guard rules in order; the first matching rule wins."""
    state = viewer_state(session, profile)

    if state is ViewerState.LOADING:
        return GuardDecision(
            Action.PLACEHOLDER, Outcome.SESSION_UNRESOLVED,
            placeholder=VERIFYING_LABEL,
        )

    if state is ViewerState.UNAUTHENTICATED:
        if is_under(path, LOGIN_PATH):
            return GuardDecision(Action.BLANK, Outcome.NO_IDENTITY)
        return GuardDecision(Action.REDIRECT, Outcome.NO_IDENTITY, target=login_target(path))

    if state is ViewerState.AUTHENTICATED_NO_PROFILE:
        outcome = Outcome.PROFILE_FETCH_FAILED if session.profile_error else Outcome.NO_PROFILE
        return _onboarding_redirect(path, outcome)

    if state is ViewerState.AUTHENTICATED_NOT_ONBOARDED:
        return _onboarding_redirect(path, Outcome.NOT_ONBOARDED)

    if is_under(path, ONBOARDING_PATH):
        return GuardDecision(
            Action.REDIRECT, Outcome.ALREADY_ONBOARDED,
            target=home_dashboard(profile.role), replace=True,
        )

    # Role-based access control
    if allowed_roles is not None:
        effective = frozenset(allowed_roles)
    else:
        effective = infer_allowed_roles(path)

    if effective is not None and profile.role not in effective:
        target = home_dashboard(profile.role)
        if is_under(path, target):
            return GuardDecision(Action.BLANK, Outcome.WRONG_ROLE)
        return GuardDecision(Action.REDIRECT, Outcome.WRONG_ROLE, target=target)

    return GuardDecision(Action.RENDER, Outcome.AUTHORIZED)


# ── Executor ─────────────────────────────────────────────────────────

class NavigationGuard:
    """Applies guard decisions through a navigator, once per distinct target."""

    def __init__(self, navigator, allowed_roles: Optional[Iterable[str]] = None):
        self.navigator = navigator
        self.allowed_roles = frozenset(allowed_roles) if allowed_roles is not None else None
        self._last_navigation: Optional[Tuple[str, bool]] = None

    def evaluate(self, session: Session, profile: Optional[Profile], path: str) -> GuardDecision:
        decision = decide(session, profile, path, self.allowed_roles)
        self.apply(decision)
        return decision

    def apply(self, decision: GuardDecision) -> None:
        if decision.action is not Action.REDIRECT:
            self._last_navigation = None
            return

        navigation = (decision.target, decision.replace)
        if navigation == self._last_navigation:
            return
        self._last_navigation = navigation

        mode = "replace" if decision.replace else "push"
        print(f"[guard] {decision.outcome.value}: {mode} -> {decision.target}")
        if decision.replace:
            self.navigator.replace(decision.target)
        else:
            self.navigator.push(decision.target)
