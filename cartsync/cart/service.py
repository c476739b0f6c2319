"""Cart controller reconciling the local cart with the remote cart service."""
import asyncio
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from cartsync import config
from cartsync.errors import (
    ERROR_ADD_FAILED,
    ERROR_CLEAR_FAILED,
    ERROR_INVALID_QUANTITY,
    ERROR_REMOVE_FAILED,
    ERROR_UPDATE_FAILED,
    MSG_CART_CLEARED,
    MSG_ITEM_ADDED,
    MSG_ITEM_REMOVED,
    MSG_QUANTITY_UPDATED,
    CartValidationError,
    GatewayError,
    RetryableGatewayError,
)
from cartsync.identity import ANONYMOUS, AuthSignal, Identity
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.notifications import LoggingNotifier, Notifier, notify
from .gateway import RemoteCartGateway
from .models import (
    CartLine,
    CartOrigin,
    CartState,
    CartStatus,
    Product,
    add_line,
    remove_line,
    set_quantity,
    validate_quantity,
)
from .storage import LocalCartStore, create_backend

logger = get_logger(__name__)

StateListener = Callable[[CartState], None]
TransitionHook = Callable[[str, CartState], None]


def _noop_transition(event: str, state: CartState) -> None:
    return None


@dataclass(frozen=True)
class CartOp:
    """One requested mutation, replayable against either store."""
    kind: str  # add | update | remove | clear
    product_id: Optional[str] = None
    quantity: int = 0
    product: Optional[Product] = None

    def apply_local(self, lines: tuple[CartLine, ...]) -> tuple[CartLine, ...]:
        """Local mutation rule. Raises ``CartValidationError`` if the op cannot be applied."""
        if self.kind == "add":
            return add_line(lines, self.product.to_line(self.quantity))
        if self.kind == "update":
            return set_quantity(lines, self.product_id, self.quantity)
        if self.kind == "remove":
            return remove_line(lines, self.product_id)
        if self.kind == "clear":
            return ()
        raise ValueError(f"Unknown cart operation: {self.kind}")

    async def apply_remote(self, gateway: RemoteCartGateway) -> list[CartLine]:
        if self.kind == "add":
            return await gateway.add_line(self.product_id, self.quantity)
        if self.kind == "update":
            return await gateway.update_line(self.product_id, self.quantity)
        if self.kind == "remove":
            return await gateway.remove_line(self.product_id)
        if self.kind == "clear":
            return await gateway.clear()
        raise ValueError(f"Unknown cart operation: {self.kind}")

    def describe(self) -> str:
        if self.product_id:
            return f"{self.kind}({sanitize_id_for_logging(self.product_id)}, {self.quantity})"
        return self.kind


class CartController:
    """
    Single owner of the in-memory cart.

    Features:
    - Anonymous carts live in the Local Cart Store, identified carts on the server
    - Login merges the local cart into the server cart, logout reloads the local one
    - Mutations are serialized in arrival order through one lock
    - Remote failures degrade to local mutation; the user still sees success
    - Changes applied locally while identified are replayed on the next remote call
    """

    def __init__(
        self,
        store: LocalCartStore,
        gateway: RemoteCartGateway,
        auth: AuthSignal,
        notifier: Optional[Notifier] = None,
        on_transition: Optional[TransitionHook] = None,
        refresh_attempts: int = config.CART_REFRESH_ATTEMPTS,
        refresh_backoff: float = config.CART_REFRESH_BACKOFF,
    ):
        self._store = store
        self._gateway = gateway
        self._auth = auth
        self._notifier = notifier or LoggingNotifier()
        self._on_transition = on_transition or _noop_transition
        self._refresh_attempts = max(1, refresh_attempts)
        self._refresh_backoff = refresh_backoff

        self._state = CartState()
        self._identity: Identity = ANONYMOUS  # identity the current state was reconciled for
        self._deferred: deque[CartOp] = deque()
        self._needs_merge = False  # login merge failed; the next remote call retries it
        self._listeners: list[StateListener] = []
        self._lock = asyncio.Lock()
        self._unsubscribe_auth: Optional[Callable[[], None]] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> CartState:
        """Load the initial cart and start observing the auth signal."""
        async with self._lock:
            await self._initialize()
        return self._state

    async def _initialize(self) -> None:
        # Runs under the lock so requests made before start keep their arrival order
        if self._state.status != CartStatus.UNINITIALIZED:
            return

        self._set_state("start", status=CartStatus.LOADING)
        self._unsubscribe_auth = self._auth.subscribe(self._on_auth_change)

        local_lines = await self._store.load()
        identity = self._auth.current
        if identity.is_identified:
            await self._merge(identity, local_lines)
        else:
            self._identity = ANONYMOUS
            self._set_state("loaded", lines=local_lines, origin=CartOrigin.LOCAL, status=CartStatus.READY)

    async def close(self) -> None:
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        await self._gateway.aclose()

    # =========================================================================
    # Read side
    # =========================================================================

    def get_state(self) -> CartState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener(state)`` after every settled change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_total(self) -> Decimal:
        return self._state.total

    def get_item_count(self) -> int:
        return self._state.item_count

    def is_in_cart(self, product_id: str) -> bool:
        return self._state.contains(product_id)

    def get_line(self, product_id: str) -> Optional[CartLine]:
        return self._state.get_line(product_id)

    @property
    def pending_changes(self) -> int:
        """Number of locally applied changes not yet confirmed by the server."""
        return len(self._deferred)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def add_to_cart(self, product: Union[Product, Mapping], quantity: int = 1) -> CartState:
        if isinstance(product, Mapping):
            product = Product.from_dict(product)

        try:
            if not product.id:
                raise CartValidationError("Product id is required")
            quantity = validate_quantity(quantity)
        except CartValidationError as e:
            return self._reject(ERROR_ADD_FAILED, e)

        op = CartOp("add", product_id=product.id, quantity=quantity, product=product)
        name = product.name or "Item"
        return await self._dispatch(op, MSG_ITEM_ADDED.format(name=name), ERROR_ADD_FAILED)

    async def remove_from_cart(self, product_id: str) -> CartState:
        if not product_id:
            return self._reject(ERROR_REMOVE_FAILED, CartValidationError("Product id is required"))
        op = CartOp("remove", product_id=product_id)
        return await self._dispatch(op, MSG_ITEM_REMOVED, ERROR_REMOVE_FAILED)

    async def update_quantity(self, product_id: str, quantity: int) -> CartState:
        """Set an absolute quantity; zero or less removes the line."""
        if not product_id:
            return self._reject(ERROR_UPDATE_FAILED, CartValidationError("Product id is required"))
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            return self._reject(ERROR_UPDATE_FAILED, CartValidationError(ERROR_INVALID_QUANTITY))

        if quantity <= 0:
            op = CartOp("remove", product_id=product_id)
        else:
            op = CartOp("update", product_id=product_id, quantity=quantity)
        return await self._dispatch(op, MSG_QUANTITY_UPDATED, ERROR_UPDATE_FAILED)

    async def clear_cart(self) -> CartState:
        return await self._dispatch(CartOp("clear"), MSG_CART_CLEARED, ERROR_CLEAR_FAILED)

    async def checkout_completed(self) -> CartState:
        """Forget the cart after an order was placed. The order service empties the server cart."""
        async with self._lock:
            await self._initialize()
            self._deferred.clear()
            await self._store.clear()
            self._set_state("checkout_completed", lines=(), status=CartStatus.READY)
        return self._state

    async def refresh(self) -> CartState:
        """
        Re-read the authoritative cart.

        Identified: replays pending local changes, then fetches the server
        cart (retried on transient failures). Anonymous: reloads the Local
        Cart Store. Never contacts the server for an anonymous user.
        """
        async with self._lock:
            await self._initialize()
            identity = self._auth.current
            if identity != self._identity:
                await self._apply_identity(identity)
                return self._state

            if not identity.is_identified:
                lines = await self._store.load()
                self._set_state("refreshed", lines=lines, origin=CartOrigin.LOCAL, status=CartStatus.READY)
                return self._state

            self._set_state("refresh_started", status=CartStatus.SYNCING)
            try:
                await self._reconcile()
                lines = await self._fetch_with_retry()
                await self._adopt_remote("refreshed", lines)
            except GatewayError as e:
                logger.warning(f"Cart refresh failed, keeping current cart: {e}")
                self._set_state("refresh_failed", status=CartStatus.READY)
                return self._state
            finally:
                self._settle("refresh_aborted")
        return self._state

    async def debug_snapshot(self) -> dict:
        """Diagnostic view of the controller and the persisted local cart."""
        return {
            "status": self._state.status.value,
            "origin": self._state.origin.value,
            "identity": str(self._identity),
            "auth": str(self._auth.current),
            "pending_changes": len(self._deferred),
            "merge_pending": self._needs_merge,
            "item_count": self._state.item_count,
            "total": str(self._state.total),
            "lines": [
                {"product_id": line.product_id, "name": line.name, "quantity": line.quantity}
                for line in self._state.lines
            ],
            "persisted": await self._store.read_raw(),
        }

    # =========================================================================
    # Internals
    # =========================================================================

    async def _dispatch(self, op: CartOp, success_message: str, failure_message: str) -> CartState:
        async with self._lock:
            await self._initialize()
            logger.debug(f"Cart {op.describe()} as {self._identity}")

            if not self._identity.is_identified:
                await self._apply_local(op, success_message, failure_message)
                return self._state

            self._set_state(f"{op.kind}_started", status=CartStatus.SYNCING)
            try:
                try:
                    await self._reconcile()
                    lines = await op.apply_remote(self._gateway)
                except RetryableGatewayError as e:
                    logger.warning(f"Remote cart unavailable, applying {op.describe()} locally: {e}")
                    applied = await self._apply_local(op, success_message, failure_message)
                    # A pending merge already carries every local line
                    if applied and not self._needs_merge:
                        self._deferred.append(op)
                    return self._state
                except GatewayError as e:
                    logger.warning(f"Remote cart rejected {op.describe()}, continuing as anonymous: {e}")
                    await self._drop_identity()
                    await self._apply_local(op, success_message, failure_message)
                    return self._state

                await self._adopt_remote(f"{op.kind}_synced", lines)
                notify(self._notifier, "success", success_message)
                return self._state
            finally:
                self._settle(f"{op.kind}_aborted")

    async def _apply_local(self, op: CartOp, success_message: str, failure_message: str) -> bool:
        try:
            lines = op.apply_local(self._state.lines)
        except CartValidationError as e:
            self._set_state(f"{op.kind}_failed", status=CartStatus.READY)
            notify(self._notifier, "error", f"{failure_message}: {e}")
            return False

        # Persisted before the state settles so no mutation lives only in memory
        await self._store.save(lines)
        self._set_state(f"{op.kind}_local", lines=lines, origin=CartOrigin.LOCAL, status=CartStatus.READY)
        notify(self._notifier, "success", success_message)
        return True

    async def _adopt_remote(self, event: str, lines: list[CartLine], status: CartStatus = CartStatus.READY) -> None:
        """Take server lines wholesale. Local copies made while degraded are now subsumed."""
        was_local = self._state.origin == CartOrigin.LOCAL
        self._set_state(event, lines=lines, origin=CartOrigin.REMOTE, status=status)
        if was_local:
            await self._store.clear()

    async def _reconcile(self) -> None:
        """Bring the server up to date with changes made while it was unreachable."""
        if self._needs_merge:
            lines = await self._gateway.fetch_or_merge(self._state.lines)
            self._needs_merge = False
            logger.info(f"Deferred cart merge for {self._identity} completed")
            await self._adopt_remote("merged", lines, status=CartStatus.SYNCING)
        elif not await self._replay_deferred():
            raise RetryableGatewayError("Pending cart changes could not be replayed")

    async def _replay_deferred(self) -> bool:
        """Push changes made while the server was unreachable. False if it still is."""
        while self._deferred:
            op = self._deferred[0]
            try:
                await op.apply_remote(self._gateway)
            except RetryableGatewayError as e:
                logger.info(f"Replay of {op.describe()} postponed: {e}")
                return False
            except GatewayError as e:
                logger.warning(f"Server rejected replayed {op.describe()}, dropping it: {e}")
            self._deferred.popleft()
        return True

    async def _fetch_with_retry(self) -> list[CartLine]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._refresh_attempts),
            wait=wait_exponential(multiplier=self._refresh_backoff, max=10),
            retry=retry_if_exception_type(RetryableGatewayError),
            reraise=True,
        ):
            with attempt:
                return await self._gateway.fetch()

    async def _merge(self, identity: Identity, local_lines) -> bool:
        """Merge protocol: push local lines to the server and adopt the result."""
        self._identity = identity
        try:
            lines = await self._gateway.fetch_or_merge(local_lines)
        except GatewayError as e:
            logger.warning(f"Cart merge for {identity} failed, keeping local cart: {e}")
            self._needs_merge = True
            self._set_state("merge_failed", lines=local_lines, origin=CartOrigin.LOCAL, status=CartStatus.READY)
            return False

        self._needs_merge = False
        self._set_state("merged", lines=lines, origin=CartOrigin.REMOTE, status=CartStatus.READY)
        await self._store.clear()
        logger.info(f"Cart merged for {identity}: {len(local_lines)} local lines, {len(lines)} after merge")
        return True

    async def _drop_identity(self) -> None:
        """Identified -> anonymous: forget remote state and pending replays, reload the local cart."""
        self._identity = ANONYMOUS
        self._needs_merge = False
        self._deferred.clear()
        lines = await self._store.load()
        self._set_state("logged_out", lines=lines, origin=CartOrigin.LOCAL, status=CartStatus.READY)

    async def _apply_identity(self, identity: Identity) -> None:
        current = self._identity

        if identity.is_identified and current.is_identified and identity.user_id == current.user_id:
            # Same user, new credentials
            self._identity = identity
            return

        if current.is_identified:
            await self._drop_identity()

        if identity.is_identified:
            if self._state.origin == CartOrigin.LOCAL and self._state.status != CartStatus.UNINITIALIZED:
                local_lines = self._state.lines
            else:
                local_lines = tuple(await self._store.load())
            self._set_state("merge_started", status=CartStatus.SYNCING)
            try:
                await self._merge(identity, local_lines)
            finally:
                self._settle("merge_aborted")

    async def _on_auth_change(self, previous: Identity, current: Identity) -> None:
        if self._state.status == CartStatus.UNINITIALIZED:
            return
        async with self._lock:
            if current != self._identity:
                await self._apply_identity(current)

    def _settle(self, event: str) -> None:
        """Leave SYNCING if an unexpected error escaped a remote call."""
        if self._state.status == CartStatus.SYNCING:
            logger.error(f"Cart {event}: unexpected error during sync, keeping current lines")
            self._set_state(event, status=CartStatus.READY)

    def _reject(self, failure_message: str, error: Exception) -> CartState:
        logger.info(f"Cart request rejected: {error}")
        notify(self._notifier, "error", f"{failure_message}: {error}")
        return self._state

    def _set_state(self, event: str, **changes) -> None:
        self._state = self._state.evolve(**changes)
        logger.debug(
            f"Cart {event}: status={self._state.status.value}, origin={self._state.origin.value}, "
            f"lines={len(self._state.lines)}"
        )
        try:
            self._on_transition(event, self._state)
        except Exception:
            logger.exception("Cart transition hook failed")

        if self._state.status == CartStatus.READY:
            for listener in list(self._listeners):
                try:
                    listener(self._state)
                except Exception:
                    logger.exception("Cart state listener failed")


# Singleton instance
_cart_controller: Optional[CartController] = None


def build_cart_controller(
    auth: AuthSignal,
    notifier: Optional[Notifier] = None,
    backend_kind: str = config.CART_STORAGE_BACKEND,
) -> CartController:
    """Wire a controller from the environment configuration."""
    backend = create_backend(backend_kind, config.CART_STORAGE_PATH)
    store = LocalCartStore(backend, key=config.CART_STORAGE_KEY)
    gateway = RemoteCartGateway(auth, base_url=config.CART_API_URL, timeout=config.CART_REQUEST_TIMEOUT)
    return CartController(store, gateway, auth, notifier=notifier)


def get_cart_controller(auth: Optional[AuthSignal] = None) -> CartController:
    """Get CartController singleton. ``auth`` is required on first call."""
    global _cart_controller
    if _cart_controller is None:
        if auth is None:
            raise ValueError("An AuthSignal is required to create the cart controller")
        _cart_controller = build_cart_controller(auth)
    return _cart_controller
