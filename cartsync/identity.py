"""
Authentication signal observed by the cart engine.

The host application owns login/logout and publishes changes through an
``AuthSignal``; the cart controller and the remote gateway only read it.
"""
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from cartsync.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Either anonymous (no ``user_id``) or identified as one user."""
    user_id: Optional[str] = None
    token: Optional[str] = None

    @property
    def is_identified(self) -> bool:
        return bool(self.user_id)

    @classmethod
    def identified(cls, user_id: str, token: Optional[str] = None) -> "Identity":
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        return cls(user_id=user_id, token=token)

    def __str__(self) -> str:
        if not self.is_identified:
            return "anonymous"
        return f"user:{sanitize_id_for_logging(self.user_id)}"


ANONYMOUS = Identity()

IdentityListener = Callable[[Identity, Identity], Union[None, Awaitable[None]]]


class AuthSignal:
    """
    Reactive holder for the current identity.

    Listeners receive ``(previous, current)`` and may be plain functions or
    coroutine functions; ``set`` awaits coroutine listeners in subscription
    order so a login is fully reconciled when ``set`` returns.
    """

    def __init__(self, initial: Identity = ANONYMOUS):
        self._current = initial
        self._listeners: list[IdentityListener] = []

    @property
    def current(self) -> Identity:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set(self, identity: Identity) -> None:
        """Publish a new identity. Re-publishing the same identity is a no-op."""
        previous = self._current
        if identity == previous:
            return

        self._current = identity
        logger.info(f"Auth signal changed: {previous} -> {identity}")

        for listener in list(self._listeners):
            result = listener(previous, identity)
            if inspect.isawaitable(result):
                await result

    async def login(self, user_id: str, token: Optional[str] = None) -> None:
        await self.set(Identity.identified(user_id, token))

    async def logout(self) -> None:
        await self.set(ANONYMOUS)
