from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


EVENTS = (
    "program_start",
    "before_instruction",
    "after_instruction",
    "on_error",
    "program_end",
)


class HookError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    span: Any  # Span | None
    extra: Optional[Dict[str, Any]]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, owner)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, owner, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0, owner: str = ""):
        if event not in EVENTS:
            raise HookError(f"Unknown event '{event}'")
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self.on_event(event, fn, priority=priority, owner=owner)
                return fn
            return deco
        self._events.setdefault(event, []).append((priority, handler, owner))
        self._events[event].sort(key=lambda t: t[0], reverse=True)
        return handler

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _owner in self._events.get(event, []):
            handler(*args, **kwargs)

    def has_handlers(self, event: str) -> bool:
        return bool(self._events.get(event))

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], owner: str = "") -> None:
        if every_n <= 0:
            raise HookError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, owner, name))

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self.add_step_rule(name=name or fn.__name__, every_n=every_n, handler=fn)
                return fn
            return deco
        self.add_step_rule(name=name or handler.__name__, every_n=every_n, handler=handler)
        return handler

    @property
    def has_step_rules(self) -> bool:
        return bool(self._step_rules)

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _owner, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)
