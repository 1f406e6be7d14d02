"""Session identity consumed from the authentication collaborator."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .exceptions import Unauthorized


@dataclass(frozen=True)
class Caller:
    """The signed-in user and their paired partner, if any."""

    user_id: int
    partner_id: int | None = None

    @property
    def is_paired(self) -> bool:
        return self.partner_id is not None

    @property
    def calendar_members(self) -> frozenset[int]:
        """Identities whose events belong to the shared calendar."""
        members = {self.user_id}
        if self.partner_id is not None:
            members.add(self.partner_id)
        return frozenset(members)


class SessionProvider(ABC):
    """Source of the current caller and their session credential."""

    @abstractmethod
    def current_caller(self) -> Caller:
        """Get the signed-in caller.

        Raises:
            Unauthorized: If nobody is signed in.
        """
        pass

    @abstractmethod
    def credential(self) -> str:
        """Get the bearer credential for remote and realtime calls.

        Raises:
            Unauthorized: If nobody is signed in.
        """
        pass

    @property
    def is_authenticated(self) -> bool:
        try:
            self.current_caller()
            self.credential()
        except Unauthorized:
            return False
        return True


class StaticSession(SessionProvider):
    """Session with a fixed caller and token, e.g. from configuration."""

    def __init__(
        self,
        user_id: int | None,
        token: str | None,
        partner_id: int | None = None,
    ):
        self._user_id = user_id
        self._token = token
        self._partner_id = partner_id

    def current_caller(self) -> Caller:
        if self._user_id is None:
            raise Unauthorized("Not signed in")
        return Caller(user_id=self._user_id, partner_id=self._partner_id)

    def credential(self) -> str:
        if not self._token:
            raise Unauthorized("No session token")
        return self._token

    def pair(self, partner_id: int | None) -> None:
        """Record a new (or removed) partner pairing."""
        self._partner_id = partner_id

    def logout(self) -> None:
        self._user_id = None
        self._token = None
        self._partner_id = None
