"""
Wiring for the auth core.

One AuthContainer holds every component, built against one store and one
settings object. The API keeps it on ``app.state.container``; tests build
their own with a fast password verifier and a controllable clock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from hestia.auth.assignments import AssignmentResolver
from hestia.auth.passwords import PasswordVerifier
from hestia.auth.policies import AuthorizationDecisionPoint
from hestia.auth.roles import RoleGraph
from hestia.auth.service import AuthenticationService
from hestia.auth.tokens import TokenIssuer
from hestia.config import Settings, get_settings
from hestia.core.events import EventBus
from hestia.core.utils import utc_now
from hestia.integrations.email import EmailService
from hestia.storage import AuthStore, create_local_storage


class AuthContainer:
    """All auth components, sharing one store, clock and event bus."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: AuthStore | None = None,
        verifier: PasswordVerifier | None = None,
        email: EmailService | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.store = store or create_local_storage()
        self.events = events or EventBus()
        self.email = email or EmailService(self.settings)
        self.clock = clock

        self.verifier = verifier or PasswordVerifier(settings=self.settings)
        self.issuer = TokenIssuer(self.store, self.settings, clock=clock, events=self.events)
        self.roles = RoleGraph(self.store, self.settings, events=self.events)
        self.resolver = AssignmentResolver(
            self.store,
            self.roles,
            self.settings,
            clock=clock,
            events=self.events,
        )
        self.auth = AuthenticationService(
            self.store,
            self.verifier,
            self.issuer,
            self.resolver,
            self.settings,
            clock=clock,
            events=self.events,
            email=self.email,
        )
        self.decision_point = AuthorizationDecisionPoint(self.issuer, self.resolver)
