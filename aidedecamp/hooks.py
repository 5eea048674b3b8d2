"""
Hooks: side observers of the conversation lifecycle.

Drop a Python file in the hooks/ directory (or list it in config.yaml) and
the orchestrator will call it as turns progress. Each hook file defines any
of these functions, all taking a single context dict:

    def on_stream_started(context)   # a turn began streaming
    def on_tick(context)             # a text snapshot arrived
    def on_success(context)          # the turn finished normally
    def on_error(context)            # the turn ended with a user-visible error
    def on_messages_changed(context) # the visible message list changed

Common context keys: event, message_id, text, error, messages.
Observers may also be registered in-process with HookManager.register().
If a hook raises, it's logged and skipped and never blocks the conversation.
"""

import importlib.util
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

STREAM_STARTED = "on_stream_started"
TICK = "on_tick"
SUCCESS = "on_success"
ERROR = "on_error"
MESSAGES_CHANGED = "on_messages_changed"

EVENTS = (STREAM_STARTED, TICK, SUCCESS, ERROR, MESSAGES_CHANGED)


@dataclass
class Hook:
    """A loaded hook with the callbacks it provides."""
    name: str
    path: str = ""
    callbacks: dict[str, Callable] = field(default_factory=dict)
    enabled: bool = True


class TickThrottle:
    """Lets at most one tick through per min_interval seconds."""

    def __init__(self, min_interval: float = 0.12, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._last: float | None = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.min_interval:
            return False
        self._last = now
        return True


class HookManager:
    """Loads lifecycle hooks and fans events out to them."""

    def __init__(self, hooks_dir: str | None = None, hook_configs: list[dict] | None = None):
        self.hooks: list[Hook] = []

        if hooks_dir:
            self._load_directory(hooks_dir)

        if hook_configs:
            self._load_from_config(hook_configs)

    def _load_module(self, path: str, name: str) -> Hook:
        """Load a Python file as a hook module."""
        try:
            spec = importlib.util.spec_from_file_location(f"aidedecamp_hook_{name}", path)
            if spec is None or spec.loader is None:
                logger.error("Could not load hook '%s' from %s", name, path)
                return Hook(name=name, path=path, enabled=False)

            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as e:
            logger.error("Failed to load hook '%s' from %s: %s", name, path, e)
            return Hook(name=name, path=path, enabled=False)

        callbacks = {
            event: getattr(module, event)
            for event in EVENTS
            if callable(getattr(module, event, None))
        }
        if callbacks:
            logger.info("Loaded hook '%s': %s", name, ", ".join(callbacks))
        else:
            logger.warning("Hook '%s' defines no lifecycle functions", name)
        return Hook(name=name, path=path, callbacks=callbacks, enabled=bool(callbacks))

    def _load_directory(self, hooks_dir: str):
        """Load all .py files from a directory as hooks."""
        hooks_path = Path(hooks_dir)
        if not hooks_path.exists():
            logger.debug("Hooks directory %s does not exist, skipping", hooks_dir)
            return

        for py_file in sorted(hooks_path.glob("*.py")):
            if py_file.name.startswith("_"):
                continue
            hook = self._load_module(str(py_file), py_file.stem)
            if hook.enabled:
                self.hooks.append(hook)

    def _load_from_config(self, hook_configs: list[dict]):
        """Load hooks specified in config.yaml."""
        for hc in hook_configs:
            path = hc.get("path", "")
            name = hc.get("name", Path(path).stem if path else "unknown")

            if not hc.get("enabled", True):
                logger.debug("Hook '%s' disabled in config", name)
                continue

            if not path or not Path(path).exists():
                logger.warning("Hook '%s' path not found: %s", name, path)
                continue

            hook = self._load_module(path, name)
            if hook.enabled:
                self.hooks.append(hook)

    def register(self, name: str, **callbacks: Callable) -> Hook:
        """Attach an in-process observer, e.g. register("ui", on_tick=redraw)."""
        unknown = set(callbacks) - set(EVENTS)
        if unknown:
            raise ValueError(f"unknown hook events: {sorted(unknown)}")
        hook = Hook(name=name, callbacks=dict(callbacks))
        self.hooks.append(hook)
        return hook

    def emit(self, event: str, **context):
        """Call every hook listening for `event`. Failures are logged, not raised."""
        context["event"] = event
        for hook in self.hooks:
            callback = hook.callbacks.get(event)
            if not hook.enabled or callback is None:
                continue
            try:
                callback(context)
            except Exception as e:
                logger.error("Hook '%s' %s failed: %s", hook.name, event, e)

    def list_hooks(self) -> list[str]:
        """Return names of all loaded hooks."""
        return [h.name for h in self.hooks if h.enabled]
