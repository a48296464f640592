from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass, field
from threading import Lock
from typing import Generic, TypeVar

from workflow_testenv.observability.logging import EventLog

T = TypeVar("T")

SESSION_SCOPE = "session"


@dataclass(frozen=True, slots=True)
class ScopeKey:
    # Stable identity of one test scope plus the topology it asked for.
    scope_id: str
    variant: Hashable = None

    def __str__(self) -> str:
        if self.variant is None:
            return self.scope_id
        return f"{self.scope_id}[{self.variant}]"


def class_scope_key(scope_id: str, variant: Hashable = None) -> ScopeKey:
    # scope_id is the collector id of the owning class (or module for plain test functions).
    if not scope_id:
        raise ValueError("class scope id must be a non-empty string")
    return ScopeKey(scope_id=scope_id, variant=variant)


def session_scope_key(variant: Hashable = None) -> ScopeKey:
    return ScopeKey(scope_id=SESSION_SCOPE, variant=variant)


def with_connector_secrets(scope_key: ScopeKey, secrets: Mapping[str, str] | None) -> ScopeKey:
    # Secrets become connectors env, so scopes asking for different secrets get different environments.
    if not secrets:
        return scope_key
    frozen = tuple(sorted(secrets.items()))
    return ScopeKey(scope_id=scope_key.scope_id, variant=(scope_key.variant, frozen))


@dataclass(slots=True)
class _Entry(Generic[T]):
    lock: Lock = field(default_factory=Lock)
    value: T | None = None
    created: bool = False
    failure: BaseException | None = None
    release: Callable[[], None] | None = None
    released: bool = False


class ScopeCache(Generic[T]):
    # Memoizes one value per scope key; first access builds it exactly once and a build failure is remembered.
    def __init__(self, log: EventLog | None = None) -> None:
        self._lock = Lock()
        self._entries: dict[ScopeKey, _Entry[T]] = {}
        self._log = log or EventLog()

    def get_or_create(
        self,
        scope_key: ScopeKey,
        factory: Callable[[], T],
        *,
        release: Callable[[T], None] | None = None,
    ) -> T:
        with self._lock:
            entry = self._entries.get(scope_key)
            if entry is None:
                entry = _Entry()
                self._entries[scope_key] = entry

        # Per-key guard: other scopes are not blocked while this one is built.
        with entry.lock:
            if entry.released:
                raise LookupError(f"Scope '{scope_key}' was already released")
            if entry.failure is not None:
                raise entry.failure
            if entry.created:
                return entry.value  # type: ignore[return-value]
            self._log.info("creating scope value", scope=str(scope_key))
            try:
                value = factory()
            except BaseException as exc:
                entry.failure = exc
                raise
            entry.value = value
            entry.created = True
            if release is not None:
                entry.release = lambda: release(value)
            return value

    def release(self, scope_key: ScopeKey) -> None:
        # Scope end: run the release action once and forget the entry.
        with self._lock:
            entry = self._entries.pop(scope_key, None)
        if entry is None:
            return
        with entry.lock:
            if entry.released:
                return
            entry.released = True
            action = entry.release
            entry.release = None
            entry.value = None
        if action is not None:
            self._log.info("releasing scope value", scope=str(scope_key))
            action()

    def release_all(self) -> None:
        # End of run: release every live scope; one failing release does not block the rest.
        with self._lock:
            keys = list(self._entries)
        errors: list[BaseException] = []
        for key in keys:
            try:
                self.release(key)
            except Exception as exc:  # noqa: BLE001 - keep releasing other scopes
                self._log.warning("scope release failed", scope=str(key), error=repr(exc))
                errors.append(exc)
        if errors:
            raise errors[0]

    def __contains__(self, scope_key: object) -> bool:
        with self._lock:
            entry = self._entries.get(scope_key)  # type: ignore[arg-type]
        return entry is not None and entry.created

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.created)
