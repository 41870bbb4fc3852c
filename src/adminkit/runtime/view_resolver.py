"""
View resolution for controllers.

Two ordered candidate lists drive rendering:

- :func:`hook_candidates` names the view-preparation hooks for an action,
  method and sub-action; every registered hook among them runs, in order.
- :func:`template_candidates` names the templates tried for an action; the
  first one the template locator knows wins.

Hooks are registered on controller methods with :func:`view_hook` and
collected per controller class into a :class:`ViewHookRegistry`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

HOOK_PREFIX = "prepareView"


def ucfirst(value: str | None) -> str:
    if not value:
        return ""
    return value[0].upper() + value[1:]


def hook_candidates(action: str, method: str, sub_action: str | None = "") -> list[str]:
    """
    Ordered, de-duplicated hook names for one pass of view preparation.

    Example:
        >>> hook_candidates("search", "post")
        ['prepareViewSearch', 'prepareViewPostSearch']
        >>> hook_candidates("search", "post", "quick")[:2]
        ['prepareViewSearchQuick', 'prepareViewSearch']
    """
    a, m, s = ucfirst(action), ucfirst(method), ucfirst(sub_action)
    names = [
        f"{HOOK_PREFIX}{a}{s}",
        f"{HOOK_PREFIX}{a}",
        f"{HOOK_PREFIX}{m}{a}{s}",
        f"{HOOK_PREFIX}{m}{a}",
    ]
    return list(dict.fromkeys(names))


def template_candidates(controller_type: str, action: str, method: str) -> list[str]:
    """
    Ordered template names tried by ``get_view``.

    ``list`` is displayed with the ``search`` view; POST requests and the
    ``list`` action use the ``process`` naming, everything else ``display``.
    """
    controller_dir = controller_type.lower()
    view = "search" if action == "list" else action.lower()
    mode = "process" if method == "post" or action == "list" else "display"
    return [
        f"{controller_dir}/{view}",
        f"{controller_dir}/{mode}{view}",
        view,
        f"{mode}{view}",
    ]


# =============================================================================
# Hook Registry
# =============================================================================


def view_hook(suffix: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Mark a controller method as the ``prepareView<suffix>`` hook.

    Example:
        @view_hook("PostSearch")
        def prepare_view_post_search(self) -> None:
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        func._view_hook = f"{HOOK_PREFIX}{suffix}"  # type: ignore[attr-defined]
        return func

    return decorator


@dataclass
class ViewHookRegistry:
    """Hook name → controller method name, matched case-insensitively."""

    _hooks: dict[str, str] = field(default_factory=dict)

    def register(self, hook_name: str, method_name: str) -> None:
        self._hooks[hook_name.lower()] = method_name

    def get(self, hook_name: str) -> str | None:
        return self._hooks.get(hook_name.lower())

    def resolve(self, candidates: list[str]) -> list[str]:
        """Method names of the registered hooks among ``candidates``, in order."""
        return [name for name in (self.get(c) for c in candidates) if name]

    def copy(self) -> ViewHookRegistry:
        return ViewHookRegistry(dict(self._hooks))

    @property
    def count(self) -> int:
        return len(self._hooks)

    def __contains__(self, hook_name: object) -> bool:
        return isinstance(hook_name, str) and hook_name.lower() in self._hooks
