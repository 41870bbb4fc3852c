"""
Request dispatch for admin controllers.

A :class:`Controller` handles one request for one controller type. It
resolves the current action, gates HTTP methods and actions on the user's
permissions, dispatches API requests to per-method handlers, and drives the
view-preparation cascade and template lookup for rendered requests.

Controllers register themselves by type::

    @register_controller("Widget")
    class WidgetController(ModelController):
        ...

    controller = controller_factory("widget", services, request)
    payload = controller.process_api()
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any, ClassVar, Literal, TypeVar

from adminkit.runtime.collaborators import AdminServices, RequestContext, ViewData
from adminkit.runtime.errors import (
    AdminKitError,
    HookCascadeError,
    MethodNotAllowedError,
    NotFoundError,
    UnauthorizedError,
)
from adminkit.runtime.logging import get_logger
from adminkit.runtime.query_builder import is_empty_criterion
from adminkit.runtime.view_resolver import (
    ViewHookRegistry,
    hook_candidates,
    template_candidates,
    view_hook,
)

logger = get_logger("dispatch")

C = TypeVar("C", bound=type["Controller"])

# HTTP method → component required to use it ("" means none)
HTTP_METHODS: dict[str, str] = {
    "head": "search",
    "get": "search",
    "post": "create",
    "put": "edit",
    "delete": "delete",
    "options": "",
}

_CAMEL_BOUNDARY_RE = re.compile(r"([a-z])([A-Z])")
_ID_COLUMN_RE = re.compile(r"^(.+?)ID$")
_ID_SUFFIX_RE = re.compile(r"^(.*?)id$", re.IGNORECASE)


# =============================================================================
# Controller Registry
# =============================================================================


_controller_classes: dict[str, type[Controller]] = {}


def register_controller(controller_type: str | None = None) -> Callable[[C], C]:
    """Class decorator registering a controller under its type (default: class name)."""

    def decorator(cls: C) -> C:
        cls.controller_type = controller_type or cls.controller_type or cls.__name__
        _controller_classes[cls.controller_type.lower()] = cls
        logger.debug("Registered controller %s", cls.controller_type)
        return cls

    return decorator


def unregister_controller(controller_type: str) -> None:
    _controller_classes.pop(controller_type.lower(), None)


def get_controller_class(controller_type: str) -> type[Controller] | None:
    return _controller_classes.get(controller_type.lower())


def controller_factory(
    controller_type: str, services: AdminServices, request: RequestContext
) -> Controller:
    """
    Create the controller registered for ``controller_type``.

    Raises:
        NotFoundError: If no controller is registered for the type
    """
    controller_class = get_controller_class(controller_type)
    if controller_class is None:
        raise NotFoundError(f"Controller not found: {controller_type}")
    return controller_class(services, request)


# =============================================================================
# Controller
# =============================================================================


def _collect_view_hooks(cls: type) -> ViewHookRegistry:
    registry = ViewHookRegistry()
    for klass in reversed(cls.__mro__):
        for attr_name, attr in vars(klass).items():
            hook_name = getattr(attr, "_view_hook", None)
            if hook_name:
                registry.register(hook_name, attr_name)
    return registry


class Controller:
    """
    Base controller: method/permission gating and view resolution.

    Class attributes describe the controller type; per-request state (current
    action, permission cache, response status and headers, view data) lives
    on the instance.
    """

    controller_type: ClassVar[str] = ""
    group: ClassVar[str] = "Admin"

    components: ClassVar[dict[str, str]] = {
        "search": "This is the ability to search and display data.",
        "edit": "The ability to edit existing data.",
        "create": "The ability to create new data.",
        "delete": "The ability to delete existing data.",
    }

    # Setting name (lower-cased) → description; non-empty enables the settings action
    settings_fields: ClassVar[dict[str, str]] = {}

    http_methods: ClassVar[dict[str, str]] = HTTP_METHODS

    # None uses AdminConfig.default_action
    default_action: ClassVar[str | None] = None
    allowed_actions: list[str] = ["search", "create", "editcolumn", "edit", "list", "view"]
    menu_items: dict[str, str] = {"list": "List", "search": "Search", "create": "Create"}
    sub_menu_items: dict[str, str] = {"view": "View", "edit": "Edit"}
    quick_search: ClassVar[dict[str, str]] = {}

    # Fields left out per purpose: edit, create, search, view, boolean
    ignore: ClassVar[dict[str, tuple[str, ...]]] = {}
    static_columns: ClassVar[tuple[str, ...]] = ("Name",)

    _view_hooks: ClassVar[ViewHookRegistry] = ViewHookRegistry()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._view_hooks = _collect_view_hooks(cls)
        if "controller_type" not in cls.__dict__:
            cls.controller_type = cls.__name__

    def __init__(self, services: AdminServices, request: RequestContext):
        self.services = services
        self.request = request
        self.status_code = 200
        self.headers: dict[str, str] = {}
        self.view_data = ViewData()

        self.menu_items = dict(type(self).menu_items)
        self.sub_menu_items = dict(type(self).sub_menu_items)
        self.allowed_actions = list(type(self).allowed_actions)
        self._allow: dict[str, bool] = {}

        self._settings: dict[str, Any] = {}
        self._settings_changed = False
        if self.settings_fields:
            self.menu_items["settings"] = "Settings"
            self.allowed_actions.append("settings")
            self._settings = services.settings.load(self.type)
            if not self._settings:
                self._settings = self.default_settings()
                self._settings_changed = True
                self.save_settings()

        self.init()

        default_action = type(self).default_action or services.config.default_action
        self.current_action = (
            request.action if request.action in self.allowed_actions else default_action
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.type} action={self.current_action!r}>"

    def __enter__(self) -> Controller:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init(self) -> None:
        """Per-request setup for subclasses; runs before the current action is resolved."""

    def close(self) -> None:
        """Finish the request; unsaved setting changes are persisted."""
        self.save_settings()

    @property
    def type(self) -> str:
        return type(self).controller_type

    def get_type(self) -> str:
        return self.type

    @classmethod
    def get_components(cls) -> dict[str, str]:
        return dict(cls.components)

    @classmethod
    def get_group(cls) -> str:
        return cls.group

    def get_http_methods(self) -> dict[str, str]:
        return dict(self.http_methods)

    def get_current_action(self) -> str:
        return self.current_action

    def is_search(self) -> bool:
        return self.request.action in ("search", "list")

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    def get_component(self, action: str) -> str:
        """Component guarding ``action``: ``list`` → ``search``, ``editcolumn`` → ``edit``."""
        if action == "list":
            return "search"
        if action == "editcolumn":
            return "edit"
        return action

    def allow(self, component: str) -> bool:
        """Whether the user may use ``component``; computed once per component."""
        if component not in self._allow:
            self._allow[component] = self.services.permissions.user_has_permission(
                self.type, self.get_component(component)
            )
        return self._allow[component]

    def valid_user(self) -> bool:
        user = self.services.permissions.current_user()
        return user is not None and user.is_valid

    # -------------------------------------------------------------------------
    # API dispatch
    # -------------------------------------------------------------------------

    def process_api(self) -> Any:
        """
        Dispatch an API request to the handler of its HTTP method.

        Returns:
            The handler's result; OPTIONS returns None

        Raises:
            UnauthorizedError: Without a valid user
            MethodNotAllowedError: For unknown methods or missing permission
            NotFoundError: When the method's handler is not implemented
        """
        self.status_code = 200
        method = self.request.method

        if not self.valid_user():
            raise UnauthorizedError("Authentication required")

        if method not in self.http_methods:
            raise MethodNotAllowedError(f"HTTP method ({method}) not allowed")

        component = self.http_methods[method]
        if component and not self.allow(component):
            raise MethodNotAllowedError("Action not allowed to user")

        if method == "head":
            return self.process_api_head()
        if method == "get":
            return self.process_api_get()
        if method == "put":
            return self.process_api_put()
        if method == "post":
            self.status_code = 201
            return self.process_api_post()
        if method == "delete":
            self.status_code = 204
            return self.process_api_delete()
        if method == "options":
            self.headers["Allow"] = ",".join(self.http_methods).upper()
            return None

        raise MethodNotAllowedError(f"HTTP method ({method}) not recognized")

    def _not_implemented(self) -> Any:
        raise NotFoundError(f"Action not implemented by {self.type}")

    def process_api_head(self) -> Any:
        return self._not_implemented()

    def process_api_get(self) -> Any:
        return self._not_implemented()

    def process_api_put(self) -> Any:
        return self._not_implemented()

    def process_api_post(self) -> Any:
        return self._not_implemented()

    def process_api_delete(self) -> Any:
        return self._not_implemented()

    # -------------------------------------------------------------------------
    # View preparation
    # -------------------------------------------------------------------------

    def populate_view_data(self) -> None:
        """Values every view receives; runs before each round of hooks."""
        self.view_data["controller"] = self
        self.view_data["method"] = self.current_action

    def prepare_view(self) -> None:
        """
        Run every view-preparation hook for the current action.

        When a hook switches the current action the hooks of the new action
        run as well, up to ``hook_cascade_limit`` switches.

        Raises:
            HookCascadeError: If the action keeps changing past the limit
        """
        limit = self.services.config.hook_cascade_limit
        actions = [self.current_action]

        while True:
            original_action = self.current_action
            self.populate_view_data()

            candidates = hook_candidates(
                self.current_action, self.request.method, self.request.sub_action
            )
            for method_name in self._view_hooks.resolve(candidates):
                getattr(self, method_name)()

            if self.current_action == original_action:
                return

            actions.append(self.current_action)
            logger.debug("View action switched %s -> %s", original_action, self.current_action)
            if len(actions) - 1 > limit:
                raise HookCascadeError(actions, limit)

    def get_view(self) -> str | Literal[False]:
        """
        Template for the current action, or False when the user may not see it.

        Raises:
            NotFoundError: If no candidate template exists
        """
        if not self.allow(self.current_action):
            return False

        templates = self.services.templates
        for name in template_candidates(self.type, self.current_action, self.request.method):
            view = templates.resolve_view(name) if templates is not None else None
            if view:
                return view

        raise NotFoundError(
            f'The action "{self.current_action}" does *not* exist in {self.type}!!!'
        )

    def get_admin_output(self) -> dict[str, Any]:
        return {"controller_type": self.type, "action": self.current_action}

    # -------------------------------------------------------------------------
    # Menus and titles
    # -------------------------------------------------------------------------

    def get_menu_items(self) -> dict[str, str]:
        return dict(self.menu_items)

    def get_quick_search(self) -> dict[str, str]:
        return dict(self.quick_search)

    def get_sub_menu_items(self, only_user_allowed: bool = False) -> dict[str, str]:
        if not only_user_allowed:
            return dict(self.sub_menu_items)
        return {
            action: title for action, title in self.sub_menu_items.items() if self.allow(action)
        }

    def get_title(self) -> str:
        """Readable title of the controller type: ``"ResourceKey"`` → ``"Resource Key"``."""
        spaced = _CAMEL_BOUNDARY_RE.sub(r"\1 \2", self.type.replace("_", " "))
        return " ".join(word[:1].upper() + word[1:] for word in spaced.strip().split(" "))

    def get_column_title(self, column: str) -> str:
        """Readable column title; ``OwnerID`` becomes ``Owner`` when an Owner table exists."""
        match = _ID_COLUMN_RE.match(column)
        if match and self.services.storage.has_table(match.group(1)):
            column = match.group(1)
        return _CAMEL_BOUNDARY_RE.sub(r"\1 \2", column)

    def get_column_value(self, record: Any, column: str) -> Any:
        """Display value of ``column``; relation columns show the related record's name."""
        match = _ID_SUFFIX_RE.match(column)
        if match and record.has(match.group(1)):
            try:
                related = record.get(match.group(1))
            except AdminKitError:
                related = None
            if related is not None and hasattr(related, "has") and related.has("name"):
                return "None" if not related.is_created() else related.get("name")
        return record.get(column)

    def get_static_columns(self) -> list[str]:
        return list(self.static_columns)

    def remove_ignored_fields(self, kind: str, data: Mapping[str, Any]) -> dict[str, Any]:
        ignored = self.ignore.get(kind.lower(), ())
        return {key: value for key, value in data.items() if key not in ignored}

    def generate_uri(self, *parts: Any) -> str:
        return self.services.generate_uri(self.type, *(str(part) for part in parts))

    # -------------------------------------------------------------------------
    # Search terms
    # -------------------------------------------------------------------------

    def process_search_terms(self, terms: Mapping[str, Any] | None) -> dict[str, Any]:
        """Drop empty search terms."""
        if not terms:
            return {}
        return {key: value for key, value in terms.items() if not is_empty_criterion(value)}

    def process_search_get_criteria(self) -> dict[str, Any]:
        """
        Search criteria of the request.

        Values nested under the controller type (``Widget[Name]=...``) win,
        body before query string; otherwise the flat body or query is used.
        """
        for source in (self.request.body, self.request.query):
            nested = source.get(self.type)
            if isinstance(nested, Mapping):
                return dict(nested)
        return dict(self.request.body or self.request.query)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_settings_fields(self) -> dict[str, str]:
        return dict(self.settings_fields)

    def default_settings(self) -> dict[str, Any]:
        return {}

    def get_setting(self, name: str | None = None) -> Any:
        """One setting by name (case-insensitive), or all settings when no name is given."""
        if not self._settings:
            return None
        if not name:
            return dict(self._settings)
        return self._settings.get(name.lower())

    def set_setting(self, name: str, value: Any) -> bool:
        """Change a setting; only names listed in ``settings_fields`` are accepted."""
        lower = name.lower()
        if lower not in self.settings_fields:
            return False
        self._settings[lower] = value
        self._settings_changed = True
        return True

    def save_settings(self) -> bool:
        if not self._settings_changed:
            return True
        if self.services.settings.save(self.type, self._settings):
            self._settings_changed = False
            return True
        logger.warning("Failed to save settings for %s", self.type)
        return False

    @view_hook("PostSettings")
    def prepare_view_post_settings(self) -> None:
        posted = self.request.body.get(self.type)
        if not isinstance(posted, Mapping):
            raise AdminKitError("Nothing to save!")
        for key, value in posted.items():
            self.set_setting(key, value)
        self.save_settings()


Controller._view_hooks = _collect_view_hooks(Controller)
