"""
Collaborator interfaces reached by the dispatcher.

The controller never talks to authentication, template files, settings
persistence or the HTTP layer directly; it goes through the small contracts
defined here. Simple in-process implementations are provided for the API
application and for tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import UserDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from adminkit.runtime.config import AdminConfig
    from adminkit.runtime.storage import Storage

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================


@runtime_checkable
class Result(Protocol):
    """Anything that can be flattened into its full data form."""

    def get_all(self) -> Any: ...


# =============================================================================
# Users and Permissions
# =============================================================================


@dataclass
class User:
    """
    The user a request runs as.

    Attributes:
        id: Positive for a real user, 0 for anonymous
        name: Display name
        resources: Controller type (lower-cased) → permitted components;
            ``"*"`` as a component grants every component of that type
        is_admin: Grants every component of every type
    """

    id: int = 0
    name: str = ""
    resources: dict[str, set[str]] = field(default_factory=dict)
    is_admin: bool = False

    @property
    def is_valid(self) -> bool:
        return self.id > 0

    def has_resource(self, resource_type: str, component: str) -> bool:
        if self.is_admin:
            return True
        components = self.resources.get(resource_type.lower(), set())
        return "*" in components or component.lower() in components


ANONYMOUS = User()


class PermissionOracle(ABC):
    """Answers who the current user is and what they may do."""

    @abstractmethod
    def current_user(self) -> User | None:
        """The user of the current request, or None when anonymous."""

    @abstractmethod
    def user_has_permission(self, resource_type: str, component: str) -> bool:
        """Whether the current user may use ``component`` of ``resource_type``."""


class UserPermissionOracle(PermissionOracle):
    """Permission oracle backed by the resources attached to one user."""

    def __init__(self, user: User | None):
        self.user = user

    def current_user(self) -> User | None:
        return self.user

    def user_has_permission(self, resource_type: str, component: str) -> bool:
        if self.user is None:
            return False
        allowed = self.user.has_resource(resource_type, component)
        if not allowed:
            logger.info(
                "User %s denied %s on %s", self.user.id or "anonymous", component, resource_type
            )
        return allowed


# =============================================================================
# Templates
# =============================================================================


class TemplateLocator(ABC):
    """Maps a candidate view name onto an existing template."""

    @abstractmethod
    def resolve_view(self, name: str) -> str | None:
        """Path of the template for ``name``, or None when there is none."""


class DirectoryTemplateLocator(TemplateLocator):
    """
    Looks templates up in a views directory.

    ``resolve_view("widget/search")`` finds ``<views_dir>/widget/search.html``
    (or another configured extension) and returns the path relative to the
    views directory.
    """

    def __init__(
        self, views_dir: str | Path, extensions: Iterable[str] = (".html", ".jinja2", ".txt")
    ):
        self.views_dir = Path(views_dir)
        self.extensions = tuple(extensions)

    def resolve_view(self, name: str) -> str | None:
        for extension in self.extensions:
            candidate = self.views_dir / f"{name}{extension}"
            if candidate.is_file():
                return candidate.relative_to(self.views_dir).as_posix()
        return None


class StaticTemplateLocator(TemplateLocator):
    """Resolves a fixed set of view names to themselves."""

    def __init__(self, names: Iterable[str]):
        self.names = {name.lower() for name in names}

    def resolve_view(self, name: str) -> str | None:
        return name if name.lower() in self.names else None


# =============================================================================
# Settings
# =============================================================================


class SettingsStore(ABC):
    """Persistence for per-controller settings."""

    @abstractmethod
    def load(self, resource_type: str) -> dict[str, Any]:
        """Saved settings of ``resource_type`` (empty when none were saved)."""

    @abstractmethod
    def save(self, resource_type: str, settings: Mapping[str, Any]) -> bool:
        """Persist the settings; returns True on success."""


class MemorySettingsStore(SettingsStore):
    def __init__(self) -> None:
        self._settings: dict[str, dict[str, Any]] = {}

    def load(self, resource_type: str) -> dict[str, Any]:
        return dict(self._settings.get(resource_type.lower(), {}))

    def save(self, resource_type: str, settings: Mapping[str, Any]) -> bool:
        self._settings[resource_type.lower()] = dict(settings)
        return True


# =============================================================================
# Request and View Data
# =============================================================================


@dataclass
class RequestContext:
    """
    The parts of an inbound request the dispatcher looks at.

    Attributes:
        method: Lower-cased HTTP method
        controller: Controller type from the route
        action: Route action (may be empty)
        sub_action: Route sub-action (may be empty)
        id: Record id from the route, if any
        ajax: Whether the request came from script
        query: Query string parameters
        body: Decoded request body
        headers: Lower-cased request headers
    """

    method: str = "get"
    controller: str = ""
    action: str = ""
    sub_action: str = ""
    id: str | None = None
    ajax: bool = False
    query: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = (self.method or "get").lower()
        self.headers = {key.lower(): value for key, value in self.headers.items()}


class ViewData(UserDict[str, Any]):
    """Values the view-preparation hooks hand over to the renderer."""


# =============================================================================
# Services
# =============================================================================


@dataclass
class AdminServices:
    """
    Everything a controller needs from the application for one request.

    Attributes:
        storage: Storage holding the admin tables
        permissions: Permission oracle for the current user
        config: Runtime configuration
        templates: Template locator used by ``get_view``
        settings: Per-controller settings persistence
        base_uri: Prefix of generated URIs
    """

    storage: Storage
    permissions: PermissionOracle
    config: AdminConfig
    templates: TemplateLocator | None = None
    settings: SettingsStore = field(default_factory=MemorySettingsStore)
    base_uri: str = ""

    def generate_uri(self, *parts: str) -> str:
        """Build an application URI, e.g. ``generate_uri("Widget", "5")`` → ``/widget/5``."""
        path = "/".join(str(part).strip("/").lower() for part in parts if str(part))
        return f"{self.base_uri.rstrip('/')}/{path}"
