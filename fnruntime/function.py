"""Event and context objects handed to the user function."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_STATUS = 200


class FrozenDict(dict):
    """A dict that rejects mutation but still encodes with ``json``."""

    def _read_only(self, *args: Any, **kwargs: Any) -> Any:
        raise TypeError(f"{type(self).__name__} is read-only")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only


@dataclass(slots=True, frozen=True)
class FunctionEvent:
    """Normalized view of one inbound request."""

    body: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    method: str = "GET"
    query: Mapping[str, Any] = field(default_factory=dict)
    path: str = "/"

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", FrozenDict(self.headers))
        object.__setattr__(self, "query", FrozenDict(self.query))


@dataclass(slots=True, frozen=True)
class Outcome:
    failed: bool
    error: Any = None
    value: Any = None

    @classmethod
    def success(cls, value: Any) -> Outcome:
        return cls(failed=False, value=value)

    @classmethod
    def failure(cls, error: Any) -> Outcome:
        return cls(failed=True, error=error)


class CompletionSlot:
    """Single-assignment result channel; the first outcome offered wins.

    ``offer`` may be called from any thread. Fulfilment is always marshalled
    onto the owning loop, so offers are applied in call order.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[Outcome] = self._loop.create_future()

    def offer(self, outcome: Outcome) -> None:
        self._loop.call_soon_threadsafe(self._fulfil, outcome)

    def _fulfil(self, outcome: Outcome) -> None:
        if not self._future.done():
            self._future.set_result(outcome)

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> Outcome:
        return await asyncio.shield(self._future)


class FunctionContext:
    """Per-request response control: status, headers and completion."""

    def __init__(self, slot: CompletionSlot) -> None:
        self.status_code = DEFAULT_STATUS
        self.header_values: dict[str, str] = {}
        self.cb_called = 0
        self._slot = slot

    def get_status(self) -> int:
        return self.status_code

    def set_status(self, status_code: int) -> FunctionContext:
        if isinstance(status_code, bool) or not isinstance(status_code, int):
            raise TypeError(f"status code must be an int, got {type(status_code).__name__}")
        if not 100 <= status_code <= 599:
            raise ValueError(f"status code out of range: {status_code}")
        self.status_code = status_code
        return self

    def get_headers(self) -> dict[str, str]:
        return self.header_values

    def set_headers(self, values: Mapping[str, str]) -> FunctionContext:
        self.header_values = {str(name): str(value) for name, value in values.items()}
        return self

    def status(self, status_code: int | None = None) -> int | FunctionContext:
        """Getter without an argument, chaining setter with one."""
        if status_code is None:
            return self.get_status()
        return self.set_status(status_code)

    def headers(self, values: Mapping[str, str] | None = None) -> dict[str, str] | FunctionContext:
        """Getter without an argument, chaining setter with one."""
        if values is None:
            return self.get_headers()
        return self.set_headers(values)

    @property
    def completed(self) -> bool:
        return self.cb_called > 0

    def succeed(self, value: Any = None) -> None:
        self.cb_called += 1
        self._slot.offer(Outcome.success(value))

    def fail(self, error: Any) -> None:
        self.cb_called += 1
        self._slot.offer(Outcome.failure(error))

    def callback(self, error: Any = None, value: Any = None) -> None:
        """Node-style ``callback(error, value)`` handed to three-argument handlers."""
        if error:
            self.fail(error)
        else:
            self.succeed(value)
