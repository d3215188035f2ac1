import threading
from typing import Callable, Dict, Generic, Hashable, List, Optional, TypeVar

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


class RateLimiter:
    """
    Token bucket shared by the protocol loops.
        - capacity: bucket size, also the number of tokens available at creation
        - refill_interval: one token is added per tick (default 1/capacity seconds),
          independent of consumption; a full bucket drops the token
    """

    def __init__(self, capacity: int, refill_interval: float | None = None, autostart: bool = True) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self.capacity = capacity
        self.refill_interval = refill_interval if refill_interval is not None else 1.0 / capacity
        self._tokens = capacity
        self._cond = threading.Condition()
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

        if autostart:
            self._thread = threading.Thread(target=self._refill_loop, name="rate-limiter", daemon=True)
            self._thread.start()

    def _refill_loop(self) -> None:
        while not self._closed.wait(self.refill_interval):
            self.refill()

    def refill(self) -> bool:
        """Add one token. Returns False if the bucket was already full."""
        with self._cond:
            if self._tokens >= self.capacity:
                return False
            self._tokens += 1
            self._cond.notify()
            return True

    def try_wait(self) -> bool:
        with self._cond:
            if self._tokens > 0:
                self._tokens -= 1
                return True
            return False

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a token is available. Returns False on close or timeout."""
        with self._cond:
            ok = self._cond.wait_for(lambda: self._tokens > 0 or self._closed.is_set(), timeout=timeout)
            if not ok or self._closed.is_set():
                return False
            self._tokens -= 1
            return True

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()
        with self._cond:
            self._cond.notify_all()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)


class ClientPool(Generic[T]):
    """
    Reusable client handles. get() pops the most recently returned handle or
    builds a new one; put() silently drops handles once the pool holds max_size.
    """

    def __init__(self, factory: Callable[[], T], max_size: int) -> None:
        self._factory = factory
        self.max_size = max_size
        self._lock = threading.Lock()
        self._clients: List[T] = []

    def get(self) -> T:
        with self._lock:
            if self._clients:
                return self._clients.pop()
        return self._factory()

    def put(self, client: Optional[T]) -> None:
        if client is None:
            return

        with self._lock:
            # a handle is either checked out or pooled, never both
            if any(c is client for c in self._clients):
                return
            if len(self._clients) < self.max_size:
                self._clients.append(client)
                return

        close = getattr(client, "close", None)
        if callable(close):
            close()

    def clear(self) -> None:
        with self._lock:
            clients, self._clients = self._clients, []
        for client in clients:
            close = getattr(client, "close", None)
            if callable(close):
                close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


class KeyedClientPool(Generic[K, T]):
    """One ClientPool per key (for RADIUS, per server and port). factory(key) builds a handle."""

    def __init__(self, factory: Callable[[K], T], max_size: int) -> None:
        self._factory = factory
        self.max_size = max_size
        self._lock = threading.Lock()
        self._pools: Dict[K, ClientPool[T]] = {}

    def _pool(self, key: K) -> ClientPool[T]:
        with self._lock:
            pool = self._pools.get(key)
            if pool is None:
                pool = ClientPool(lambda: self._factory(key), self.max_size)
                self._pools[key] = pool
            return pool

    def get(self, key: K) -> T:
        return self._pool(key).get()

    def put(self, key: K, client: Optional[T]) -> None:
        self._pool(key).put(client)

    def size(self, key: K) -> int:
        with self._lock:
            pool = self._pools.get(key)
        return len(pool) if pool is not None else 0

    def clear(self) -> None:
        with self._lock:
            pools, self._pools = list(self._pools.values()), {}
        for pool in pools:
            pool.clear()
