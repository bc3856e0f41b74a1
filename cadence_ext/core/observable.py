"""Explicit observable state holders.

``ObservableValue`` holds a current value; ``set()`` stores the new value
and then synchronously calls every observer with it. ``DerivedValue``
recomputes from its sources whenever any of them is set and publishes the
result to its own observers.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, List, Sequence, TypeVar

from .logging_utils import LoggerLike, ensure_structured_logger

T = TypeVar("T")

Observer = Callable[[T], None]


class ObservableValue(Generic[T]):

    def __init__(self, initial: T, *, name: str = "value", logger: LoggerLike = None) -> None:
        self._value = initial
        self._name = name
        self._observers: List[Observer] = []
        self._logger = ensure_structured_logger(logger, fallback_name="Observable")

    @property
    def value(self) -> T:
        return self._value

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        old = self._value
        self._value = value
        if old != value:
            self._logger.debug("%s: %s -> %s", self._name, old, value)
        self._notify(value)

    def subscribe(self, observer: Observer, *, replay: bool = True) -> Callable[[], None]:
        """Register ``observer``; with ``replay`` it first receives the current value."""
        if observer not in self._observers:
            self._observers.append(observer)
        if replay:
            observer(self._value)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self, value: T) -> None:
        for observer in list(self._observers):
            try:
                observer(value)
            except Exception:
                self._logger.exception("Observer %r of %s failed", observer, self._name)


class DerivedValue(ObservableValue[T]):
    """Value computed from other observables, pushed eagerly on every change."""

    def __init__(
        self,
        sources: Sequence[ObservableValue[Any]],
        compute: Callable[..., T],
        *,
        name: str = "derived",
        logger: LoggerLike = None,
    ) -> None:
        self._sources = list(sources)
        self._compute = compute
        super().__init__(self._evaluate(), name=name, logger=logger)
        for source in self._sources:
            source.subscribe(self._on_source_changed, replay=False)

    def _evaluate(self) -> T:
        return self._compute(*(source.get() for source in self._sources))

    def _on_source_changed(self, _value: Any) -> None:
        ObservableValue.set(self, self._evaluate())

    def set(self, value: T) -> None:
        raise AttributeError(f"{self._name} is derived and cannot be set directly")


__all__ = ["ObservableValue", "DerivedValue", "Observer"]
