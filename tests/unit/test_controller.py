"""Tests for controller dispatch, permissions and view preparation."""

from __future__ import annotations

from dataclasses import replace

import pytest

from adminkit.runtime.collaborators import (
    AdminServices,
    MemorySettingsStore,
    RequestContext,
    StaticTemplateLocator,
    User,
    UserPermissionOracle,
)
from adminkit.runtime.controller import (
    Controller,
    controller_factory,
    get_controller_class,
    register_controller,
    unregister_controller,
)
from adminkit.runtime.errors import (
    AdminKitError,
    HookCascadeError,
    MethodNotAllowedError,
    NotFoundError,
    UnauthorizedError,
)
from adminkit.runtime.record_registry import record_from_id
from adminkit.runtime.view_resolver import view_hook


@register_controller()
class Gizmo(Controller):
    def init(self) -> None:
        self.view_data["calls"] = []
        self.view_data["rounds"] = 0

    def _called(self, name: str) -> None:
        self.view_data["calls"].append(name)

    def populate_view_data(self) -> None:
        super().populate_view_data()
        self.view_data["rounds"] += 1

    def process_api_post(self):
        return {"created": True}

    @view_hook("Search")
    def prepare_search(self):
        self._called("Search")

    @view_hook("SearchQuick")
    def prepare_search_quick(self):
        self._called("SearchQuick")

    @view_hook("PostSearch")
    def prepare_post_search(self):
        self._called("PostSearch")

    @view_hook("PostSearchQuick")
    def prepare_post_search_quick(self):
        self._called("PostSearchQuick")

    @view_hook("Create")
    def prepare_create(self):
        self._called("Create")
        self.current_action = "view"

    @view_hook("View")
    def prepare_view_view(self):
        self._called("View")


@register_controller()
class PingPong(Controller):
    allowed_actions = ["ping", "pong"]
    default_action = "ping"

    @view_hook("Ping")
    def ping(self):
        self.current_action = "pong"

    @view_hook("Pong")
    def pong(self):
        self.current_action = "ping"


@register_controller("Gadget")
class GadgetController(Controller):
    settings_fields = {"rows": "Rows per page", "columns": "Visible columns"}

    def default_settings(self):
        return {"rows": 25}


def make_controller(services, controller_type="Gizmo", **request_kwargs):
    return controller_factory(controller_type, services, RequestContext(**request_kwargs))


@pytest.fixture()
def searcher():
    return User(
        id=2, name="Searcher", resources={"gizmo": {"search", "view"}, "gadget": {"search"}}
    )


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_type_defaults_to_class_name(self):
        assert Gizmo.controller_type == "Gizmo"
        assert get_controller_class("gizmo") is Gizmo

    def test_explicit_type(self):
        assert GadgetController.controller_type == "Gadget"

    def test_unknown_controller(self, make_services):
        with pytest.raises(NotFoundError, match="Controller not found: Nope"):
            make_controller(make_services(), "Nope")

    def test_unregister(self):
        @register_controller("Temporary")
        class Temporary(Controller):
            pass

        unregister_controller("temporary")
        assert get_controller_class("Temporary") is None


# =============================================================================
# API dispatch
# =============================================================================


class TestProcessApi:
    def test_requires_valid_user(self, make_services):
        controller = make_controller(make_services(None), method="get")
        with pytest.raises(UnauthorizedError, match="Authentication required") as excinfo:
            controller.process_api()
        assert excinfo.value.response_code == 401

    def test_unknown_method(self, make_services, admin_user):
        controller = make_controller(make_services(admin_user), method="patch")
        with pytest.raises(MethodNotAllowedError, match=r"HTTP method \(patch\) not allowed"):
            controller.process_api()

    def test_denied_delete_keeps_status(self, make_services, searcher):
        controller = make_controller(make_services(searcher), method="delete")
        with pytest.raises(MethodNotAllowedError, match="Action not allowed to user") as excinfo:
            controller.process_api()
        assert excinfo.value.response_code == 405
        assert controller.status_code == 200

    def test_options(self, make_services, searcher):
        controller = make_controller(make_services(searcher), method="options")
        assert controller.process_api() is None
        assert controller.headers["Allow"] == "HEAD,GET,POST,PUT,DELETE,OPTIONS"

    def test_post_sets_created_status(self, make_services, admin_user):
        controller = make_controller(make_services(admin_user), method="post")
        assert controller.process_api() == {"created": True}
        assert controller.status_code == 201

    def test_unimplemented_handler(self, make_services, admin_user):
        controller = make_controller(make_services(admin_user), method="get")
        with pytest.raises(NotFoundError, match="Action not implemented by Gizmo"):
            controller.process_api()


# =============================================================================
# Actions and permissions
# =============================================================================


class TestActions:
    def test_allowed_action_is_used(self, make_services):
        assert make_controller(make_services(), action="view").current_action == "view"

    def test_unknown_action_falls_back_to_default(self, make_services):
        assert make_controller(make_services(), action="bogus").current_action == "list"

    def test_class_default_action(self, make_services):
        controller = make_controller(make_services(), "PingPong", action="bogus")
        assert controller.current_action == "ping"

    def test_component_mapping(self, make_services):
        controller = make_controller(make_services())
        assert controller.get_component("list") == "search"
        assert controller.get_component("editcolumn") == "edit"
        assert controller.get_component("delete") == "delete"

    def test_allow_is_cached(self, storage, config, searcher):
        class CountingOracle(UserPermissionOracle):
            calls = 0

            def user_has_permission(self, resource_type, component):
                CountingOracle.calls += 1
                return super().user_has_permission(resource_type, component)

        services = AdminServices(
            storage=storage, permissions=CountingOracle(searcher), config=config
        )
        controller = make_controller(services)
        assert controller.allow("list")
        assert controller.allow("list")
        assert not controller.allow("edit")
        assert CountingOracle.calls == 2

    def test_sub_menu_filtered_by_permission(self, make_services, searcher):
        controller = make_controller(make_services(searcher))
        assert controller.get_sub_menu_items() == {"view": "View", "edit": "Edit"}
        assert controller.get_sub_menu_items(only_user_allowed=True) == {"view": "View"}

    def test_context_manager_closes(self, make_services):
        settings = MemorySettingsStore()
        with make_controller(make_services(settings=settings), "Gadget") as controller:
            controller.set_setting("rows", 5)
        assert settings.load("Gadget") == {"rows": 5}


# =============================================================================
# View preparation
# =============================================================================


class TestPrepareView:
    def test_post_search_hook_order(self, make_services):
        controller = make_controller(
            make_services(), method="post", action="search", sub_action="quick"
        )
        controller.prepare_view()
        assert controller.view_data["calls"] == [
            "SearchQuick",
            "Search",
            "PostSearchQuick",
            "PostSearch",
        ]

    def test_get_search_runs_only_matching_hooks(self, make_services):
        controller = make_controller(make_services(), action="search")
        controller.prepare_view()
        assert controller.view_data["calls"] == ["Search"]
        assert controller.view_data["method"] == "search"
        assert controller.view_data["controller"] is controller

    def test_action_switch_runs_new_hooks(self, make_services):
        controller = make_controller(make_services(), action="create")
        controller.prepare_view()
        assert controller.current_action == "view"
        assert controller.view_data["calls"] == ["Create", "View"]
        assert controller.view_data["rounds"] == 2

    def test_cascade_limit(self, storage, config, admin_user):
        services = AdminServices(
            storage=storage,
            permissions=UserPermissionOracle(admin_user),
            config=replace(config, hook_cascade_limit=3),
        )
        controller = make_controller(services, "PingPong", action="ping")
        with pytest.raises(HookCascadeError) as excinfo:
            controller.prepare_view()
        assert excinfo.value.limit == 3
        assert excinfo.value.actions[:3] == ["ping", "pong", "ping"]


class TestGetView:
    def test_first_known_template_wins(self, make_services, admin_user):
        templates = StaticTemplateLocator(["search", "gizmo/processsearch"])
        controller = make_controller(make_services(admin_user, templates=templates), action="list")
        assert controller.get_view() == "gizmo/processsearch"

    def test_not_allowed(self, make_services, searcher):
        templates = StaticTemplateLocator(["create"])
        controller = make_controller(make_services(searcher, templates=templates), action="create")
        assert controller.get_view() is False

    def test_missing_template(self, make_services, admin_user):
        controller = make_controller(make_services(admin_user), action="view")
        with pytest.raises(NotFoundError, match=r'The action "view" does \*not\* exist in Gizmo'):
            controller.get_view()


# =============================================================================
# Settings
# =============================================================================


class TestSettings:
    def test_defaults_saved_on_first_use(self, make_services):
        settings = MemorySettingsStore()
        controller = make_controller(make_services(settings=settings), "Gadget")
        assert settings.load("Gadget") == {"rows": 25}
        assert "settings" in controller.allowed_actions
        assert controller.get_menu_items()["settings"] == "Settings"

    def test_saved_settings_are_loaded(self, make_services):
        settings = MemorySettingsStore()
        settings.save("Gadget", {"rows": 100})
        controller = make_controller(make_services(settings=settings), "Gadget")
        assert controller.get_setting("Rows") == 100
        assert controller.get_setting() == {"rows": 100}

    def test_only_declared_settings(self, make_services):
        controller = make_controller(make_services(), "Gadget")
        assert controller.set_setting("Columns", "Name")
        assert not controller.set_setting("bogus", 1)
        assert controller.get_setting("bogus") is None

    def test_post_settings(self, make_services):
        settings = MemorySettingsStore()
        controller = make_controller(
            make_services(settings=settings),
            "Gadget",
            method="post",
            action="settings",
            body={"Gadget": {"rows": 10, "bogus": 1}},
        )
        controller.prepare_view()
        assert settings.load("Gadget") == {"rows": 10}

    def test_post_settings_without_data(self, make_services):
        controller = make_controller(make_services(), "Gadget", method="post", action="settings")
        with pytest.raises(AdminKitError, match="Nothing to save!"):
            controller.prepare_view()

    def test_no_settings_without_fields(self, make_services):
        controller = make_controller(make_services())
        assert controller.get_setting() is None
        assert "settings" not in controller.allowed_actions


# =============================================================================
# Titles, columns and search terms
# =============================================================================


class TestHelpers:
    def test_title(self, make_services):
        assert make_controller(make_services(), "Gadget").get_title() == "Gadget"

        @register_controller("resource_key")
        class ResourceKey(Controller):
            pass

        try:
            assert make_controller(make_services(), "resource_key").get_title() == "Resource Key"
        finally:
            unregister_controller("resource_key")

    def test_column_title(self, make_services):
        controller = make_controller(make_services())
        assert controller.get_column_title("OwnerID") == "Owner"
        assert controller.get_column_title("GadgetID") == "Gadget ID"
        assert controller.get_column_title("DueDate") == "Due Date"

    def test_column_value_follows_relations(self, make_services, seeded_storage):
        controller = make_controller(make_services())
        bolt = record_from_id("Widget", 1, seeded_storage)
        washer = record_from_id("Widget", 3, seeded_storage)
        assert controller.get_column_value(bolt, "OwnerID") == "Alice"
        assert controller.get_column_value(washer, "OwnerID") == "None"
        assert controller.get_column_value(bolt, "Name") == "Bolt"

    def test_search_terms_drop_empty_values(self, make_services):
        controller = make_controller(make_services())
        terms = {"Name": "Bolt", "OwnerID": "0", "Status": "", "Tags": []}
        assert controller.process_search_terms(terms) == {"Name": "Bolt"}
        assert controller.process_search_terms(None) == {}

    def test_search_criteria_prefer_nested_values(self, make_services):
        controller = make_controller(
            make_services(),
            body={"Gizmo": {"Name": "Bolt"}, "Name": "ignored"},
            query={"Name": "also ignored"},
        )
        assert controller.process_search_get_criteria() == {"Name": "Bolt"}

    def test_search_criteria_fall_back_to_query(self, make_services):
        controller = make_controller(make_services(), query={"Name": "Nut"})
        assert controller.process_search_get_criteria() == {"Name": "Nut"}

    def test_remove_ignored_fields(self, make_services):
        class Quiet(Gizmo):
            ignore = {"edit": ("Secret",)}

        controller = Quiet(make_services(), RequestContext())
        assert controller.remove_ignored_fields("Edit", {"Secret": 1, "Name": 2}) == {"Name": 2}

    def test_admin_output_and_uri(self, make_services):
        controller = make_controller(make_services(), action="view")
        assert controller.get_admin_output() == {"controller_type": "Gizmo", "action": "view"}
        assert controller.generate_uri(5, "edit") == "/admin/gizmo/5/edit"
