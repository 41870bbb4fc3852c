"""Tests for the JSON API run loop and its FastAPI transport."""

from __future__ import annotations

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

from adminkit.runtime.admin_model import ModelController
from adminkit.runtime.api import (
    ApiApp,
    ApiResponse,
    TokenUserResolver,
    create_api_app,
    flatten_result,
    split_route,
)
from adminkit.runtime.collaborators import ANONYMOUS, RequestContext, User
from adminkit.runtime.controller import Controller, register_controller
from adminkit.runtime.record_registry import search_records


@register_controller("Widgets")
class WidgetsController(ModelController):
    record_table = "Widget"


@register_controller("Broken")
class BrokenController(Controller):
    def process_api_get(self):
        print("debug noise")
        raise ValueError("boom")


@register_controller("Noisy")
class NoisyController(Controller):
    def process_api_get(self):
        print("stray output")
        return {"ok": True}


@register_controller("Chatty")
class ChattyController(Controller):
    started = threading.Event()
    release = threading.Event()

    def process_api_get(self):
        print("inside handler")
        self.started.set()
        self.release.wait(5)
        return {"ok": True}


@register_controller("Loopcheck")
class LoopCheckController(Controller):
    def process_api_get(self):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return {"on_event_loop": False}
        return {"on_event_loop": True}


TOKEN = "secret-token"


@pytest.fixture()
def api(seeded_storage, config, admin_user) -> ApiApp:
    reader = User(id=7, name="Reader", resources={"widgets": {"search"}})
    resolver = TokenUserResolver(
        auth_tokens={TOKEN: admin_user}, api_keys={"reader-key": reader}
    )
    return ApiApp(seeded_storage, config=config, user_resolver=resolver, base_uri="/admin")


def authed(**kwargs) -> RequestContext:
    headers = kwargs.pop("headers", {"X-Auth-Token": TOKEN})
    return RequestContext(headers=headers, **kwargs)


# =============================================================================
# User resolution
# =============================================================================


class TestTokenUserResolver:
    def test_auth_token(self, admin_user):
        resolver = TokenUserResolver(auth_tokens={"t": admin_user})
        assert resolver(RequestContext(headers={"X-Auth-Token": "t"})) is admin_user

    def test_api_key(self, admin_user):
        resolver = TokenUserResolver(api_keys={"k": admin_user})
        assert resolver(RequestContext(headers={"X-Api-Key": "k"})) is admin_user

    def test_unknown_or_missing(self, admin_user):
        resolver = TokenUserResolver(auth_tokens={"t": admin_user})
        assert resolver(RequestContext(headers={"X-Auth-Token": "bad"})) is ANONYMOUS
        assert resolver(RequestContext()) is ANONYMOUS


# =============================================================================
# Run loop
# =============================================================================


class TestRun:
    def test_list(self, api):
        response = api.run(authed(controller="widgets"))
        assert response.status_code == 200
        assert [row["Name"] for row in response.body] == ["Bolt", "Nut", "Washer"]

    def test_single_record(self, api):
        response = api.run(authed(controller="widgets", id="2"))
        assert response.body["Name"] == "Nut"
        assert response.body["ID"] == 2

    def test_create(self, api, seeded_storage):
        response = api.run(authed(controller="widgets", method="post", body={"Name": "Gear"}))
        assert response.status_code == 201
        assert response.body["ID"] == 4

    def test_delete(self, api, seeded_storage):
        response = api.run(authed(controller="widgets", method="delete", id="1"))
        assert response.status_code == 204
        assert response.body is None
        assert seeded_storage.load("Widget", "ID", 1) is None

    def test_head_has_no_body(self, api):
        response = api.run(authed(controller="widgets", method="head"))
        assert response.status_code == 200
        assert response.body is None

    def test_options(self, api):
        response = api.run(authed(controller="widgets", method="options"))
        assert response.status_code == 200
        assert response.body is None
        assert response.headers["Allow"] == "HEAD,GET,POST,PUT,DELETE,OPTIONS"

    def test_anonymous(self, api):
        response = api.run(RequestContext(controller="widgets"))
        assert response.status_code == 401
        assert response.body == {"code": 0, "message": "Authentication required"}

    def test_denied_delete(self, api, seeded_storage):
        request = authed(
            controller="widgets", method="delete", id="1", headers={"X-Api-Key": "reader-key"}
        )
        response = api.run(request)
        assert response.status_code == 405
        assert response.body == {"code": 0, "message": "Action not allowed to user"}
        assert seeded_storage.load("Widget", "ID", 1) is not None

    def test_unknown_controller(self, api):
        response = api.run(authed(controller="nope"))
        assert response.status_code == 404
        assert response.body == {"code": 0, "message": "Controller not found: nope"}

    def test_missing_controller(self, api):
        response = api.run(authed())
        assert response.status_code == 400
        assert response.body["message"] == "No controller found"

    def test_missing_record(self, api):
        response = api.run(authed(controller="widgets", id="99"))
        assert response.status_code == 404
        assert "does not contain" in response.body["message"]

    def test_identity_conflict(self, api):
        response = api.run(authed(controller="widgets", method="put", id="1", body={"ID": 2}))
        assert response.status_code == 409

    def test_generic_error(self, api, capsys):
        response = api.run(authed(controller="broken"))
        assert response.status_code == 400
        assert response.body == {"code": 0, "message": "boom"}
        assert "debug noise" not in capsys.readouterr().out

    def test_stray_output_is_discarded(self, api, capsys):
        response = api.run(authed(controller="noisy"))
        assert response.body == {"ok": True}
        assert capsys.readouterr().out == ""


    def test_capture_is_per_thread(self, api, capsys):
        ChattyController.started.clear()
        ChattyController.release.clear()
        results = []
        worker = threading.Thread(
            target=lambda: results.append(api.run(authed(controller="chatty")))
        )
        worker.start()
        assert ChattyController.started.wait(5)
        print("outside handler")
        ChattyController.release.set()
        worker.join(5)

        out = capsys.readouterr().out
        assert "outside handler" in out
        assert "inside handler" not in out
        assert results[0].body == {"ok": True}


class TestHelpers:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("", (None, "", "")),
            ("5", ("5", "", "")),
            ("5/edit", ("5", "edit", "")),
            ("search/Quick", (None, "search", "quick")),
            ("/12/view/", ("12", "view", "")),
        ],
    )
    def test_split_route(self, path, expected):
        assert split_route(path) == expected

    def test_flatten_result(self, seeded_storage):
        found = search_records("Widget", seeded_storage, {"Name": "Nut"})
        assert flatten_result(found)[0]["Name"] == "Nut"
        assert flatten_result({"x": 1}) == {"x": 1}

    def test_response_json(self):
        assert ApiResponse(body={"a": 1}).to_json() == '{"a": 1}'


# =============================================================================
# FastAPI transport
# =============================================================================


@pytest.fixture()
def client(api) -> TestClient:
    return TestClient(create_api_app(api))


AUTH = {"X-Auth-Token": TOKEN}


class TestHttp:
    def test_get_collection(self, client):
        response = client.get("/widgets", params={"Status": "open"}, headers=AUTH)
        assert response.status_code == 200
        assert [row["Name"] for row in response.json()] == ["Bolt", "Washer"]

    def test_get_record(self, client):
        response = client.get("/widgets/1", headers=AUTH)
        assert response.json()["Name"] == "Bolt"

    def test_post_json(self, client):
        response = client.post("/widgets", json={"Name": "Gear", "Price": "$3"}, headers=AUTH)
        assert response.status_code == 201
        assert response.json()["Price"] == 3.0

    def test_post_form(self, client):
        response = client.post("/widgets", data={"Name": "Gear"}, headers=AUTH)
        assert response.status_code == 201
        assert response.json()["Name"] == "Gear"

    def test_put(self, client):
        response = client.put("/widgets/2/edit", json={"Name": "Screw"}, headers=AUTH)
        assert response.status_code == 200
        assert response.json()["Name"] == "Screw"

    def test_delete(self, client):
        response = client.delete("/widgets/3", headers=AUTH)
        assert response.status_code == 204
        assert response.content == b""

    def test_options(self, client):
        response = client.options("/widgets", headers=AUTH)
        assert response.headers["allow"] == "HEAD,GET,POST,PUT,DELETE,OPTIONS"

    def test_unauthenticated(self, client):
        response = client.get("/widgets")
        assert response.status_code == 401
        assert response.json() == {"code": 0, "message": "Authentication required"}

    def test_invalid_json(self, client):
        response = client.post(
            "/widgets",
            content=b"{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid JSON body")

    def test_ignores_unknown_query_keys(self, client):
        response = client.get("/widgets", params={"_": "1712345"}, headers=AUTH)
        assert response.status_code == 200
        assert len(response.json()) == 3

    def test_post_cannot_overwrite_existing_row(self, client, seeded_storage):
        response = client.post("/widgets", json={"ID": 1, "Name": "Hijacked"}, headers=AUTH)
        assert response.status_code == 201
        assert response.json()["ID"] == 4
        assert seeded_storage.load("Widget", "ID", 1)["Name"] == "Bolt"

    def test_handlers_run_off_the_event_loop(self, client):
        response = client.get("/loopcheck", headers=AUTH)
        assert response.json() == {"on_event_loop": False}

    def test_app_state(self, client, api):
        assert client.app.state.adminkit is api
