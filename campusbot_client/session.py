"""
session.py — Session Manager

Owns the current authenticated identity and token.

Lifecycle:
    1. init(): hydrate {token, user} from durable storage and revalidate it
       against the Session service (state LOADING until the check completes).
    2. login()/register(): replace the session wholesale and persist it.
    3. logout(): purely local clear.
    4. SessionInvalidated on the AuthEventBus: clear if the rejected request
       carried the current token, whatever the cause.

Consumers read `session` / `token` and never mutate them.
"""

import logging
from enum import Enum
from typing import Optional

from .clients import AuthClient
from .config import TOKEN_STORAGE_KEY, USER_STORAGE_KEY
from .errors import CampusBotError
from .events import AuthEventBus, Observable, SessionInvalidated
from .models import Role, Session, User
from .storage import KeyValueStorage

log = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "LOADING"
    AUTHENTICATED = "AUTHENTICATED"
    ANONYMOUS = "ANONYMOUS"


class SessionManager(Observable):
    """
    Holds at most one live Session per process.

    Args:
        auth_client (AuthClient): Session service client.
        storage (KeyValueStorage): Durable storage; only the token and user keys are written.
        auth_events (AuthEventBus): Channel on which authorization failures arrive.
    """

    def __init__(self, auth_client: AuthClient, storage: KeyValueStorage, auth_events: AuthEventBus):
        super().__init__()
        self._auth = auth_client
        self._storage = storage
        self._session: Optional[Session] = None
        self._state = SessionState.LOADING
        self._unsubscribe = auth_events.subscribe(self._on_session_invalidated)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def user(self) -> Optional[User]:
        return self._session.user if self._session else None

    @property
    def token(self) -> Optional[str]:
        return self._session.token if self._session else None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state is SessionState.LOADING

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def has_role(self, *roles: Role) -> bool:
        return self._session is not None and self._session.user.role in roles

    async def init(self):
        """
        Restores and revalidates the persisted session. Never raises: any
        verification failure clears the stored session.
        """
        stored = self._load_persisted()
        if stored is None:
            # also drops a half-written or malformed leftover
            self.clear()
            return

        self._session = stored
        try:
            user = await self._auth.current_user(token=stored.token)
        except CampusBotError as e:
            log.warning(f"Stored session for {stored.user.email} rejected, clearing it: {e}")
            if self._session in (stored, None):
                self.clear()
            return

        if self._session is not stored:
            # login/register or invalidation happened while verifying
            log.info("Session changed during verification; keeping the newer state.")
            return
        self._install(Session(user=user, token=stored.token))
        log.info(f"Session restored for {user.email} ({user.role.value}).")

    async def login(self, email: str, password: str) -> User:
        """
        Logs in and installs the returned session.

        Raises:
            RequestRejectedError: With the service's message unchanged (e.g. 'Invalid email or password').
            ServiceUnavailableError: If the Session service cannot be reached.
        """
        response = await self._auth.login(email, password)
        self._install(Session(user=response.user, token=response.token))
        log.info(f"Logged in as {response.user.email}.")
        return response.user

    async def register(self, email: str, name: str, password: str, role: Role = Role.STUDENT) -> User:
        response = await self._auth.register(email, name, password, role)
        self._install(Session(user=response.user, token=response.token))
        log.info(f"Registered {response.user.email} as {response.user.role.value}.")
        return response.user

    def logout(self):
        log.info("Logged out.")
        self.clear()

    def clear(self):
        self._storage.remove_item(TOKEN_STORAGE_KEY)
        self._storage.remove_item(USER_STORAGE_KEY)
        self._session = None
        self._state = SessionState.ANONYMOUS
        self._notify()

    def close(self):
        """Detaches from the authorization event bus."""
        self._unsubscribe()

    def _install(self, session: Session):
        self._storage.set_item(TOKEN_STORAGE_KEY, session.token)
        self._storage.set_item(USER_STORAGE_KEY, session.user.model_dump_json())
        self._session = session
        self._state = SessionState.AUTHENTICATED
        self._notify()

    def _load_persisted(self) -> Optional[Session]:
        token = self._storage.get_item(TOKEN_STORAGE_KEY)
        raw_user = self._storage.get_item(USER_STORAGE_KEY)
        if not token or not raw_user:
            return None
        try:
            user = User.model_validate_json(raw_user)
        except ValueError as e:
            log.warning(f"Discarding malformed persisted user: {e}")
            return None
        return Session(user=user, token=token)

    def _on_session_invalidated(self, event: SessionInvalidated):
        if event.token != self.token:
            # rejected credential was already replaced
            log.info(f"Ignoring rejection of {event.method} {event.path} sent with an outdated token.")
            return
        log.info(f"Clearing session after {event.method} {event.path} was rejected.")
        self.clear()
