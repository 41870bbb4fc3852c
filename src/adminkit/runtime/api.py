"""
JSON API application.

:class:`ApiApp` runs one request end to end: it resolves the user, builds the
controller, dispatches, flattens the result and maps every error onto a
status code and a ``{"code", "message"}`` body. Output written to stdout or
stderr while handling is captured and discarded so nothing leaks into the
response.

:func:`create_api_app` mounts an ApiApp on FastAPI with one catch-all route::

    /{controller}[/{id}][/{action}[/{sub_action}]]
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TextIO

from fastapi import FastAPI, Request
from fastapi.responses import Response

from adminkit.runtime.collaborators import (
    ANONYMOUS,
    AdminServices,
    MemorySettingsStore,
    RequestContext,
    Result,
    SettingsStore,
    TemplateLocator,
    User,
    UserPermissionOracle,
)
from adminkit.runtime.controller import HTTP_METHODS, controller_factory
from adminkit.runtime.errors import AdminKitError, WebError
from adminkit.runtime.logging import get_logger, log_with_context

if TYPE_CHECKING:
    from adminkit.runtime.config import AdminConfig
    from adminkit.runtime.storage import Storage

logger = get_logger("api")

UserResolver = Callable[[RequestContext], User | None]

AUTH_TOKEN_HEADER = "x-auth-token"
API_KEY_HEADER = "x-api-key"


# =============================================================================
# User Resolution
# =============================================================================


class TokenUserResolver:
    """
    Resolves the user from the ``X-Auth-Token`` or ``X-Api-Key`` header.

    The auth token is checked first; a request carrying neither (or an
    unknown one) runs as the anonymous user.
    """

    def __init__(
        self,
        auth_tokens: Mapping[str, User] | None = None,
        api_keys: Mapping[str, User] | None = None,
    ):
        self.auth_tokens = dict(auth_tokens or {})
        self.api_keys = dict(api_keys or {})

    def __call__(self, request: RequestContext) -> User:
        token = request.headers.get(AUTH_TOKEN_HEADER)
        if token:
            return self.auth_tokens.get(token, ANONYMOUS)

        api_key = request.headers.get(API_KEY_HEADER)
        if api_key:
            return self.api_keys.get(api_key, ANONYMOUS)

        return ANONYMOUS


# =============================================================================
# Output Capture
# =============================================================================


_capture = threading.local()
_streams_lock = threading.Lock()
_capturing_threads = 0


class _ThreadRoutedStream(io.TextIOBase):
    """
    Stand-in for ``sys.stdout``/``sys.stderr`` while requests are handled.

    Writes from a thread that is capturing go to that thread's buffer; every
    other thread still writes to the wrapped stream.
    """

    def __init__(self, target: TextIO):
        self.target = target

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        buffer = getattr(_capture, "buffer", None)
        if buffer is not None:
            return buffer.write(text)
        return self.target.write(text)

    def flush(self) -> None:
        if getattr(_capture, "buffer", None) is None:
            self.target.flush()


@contextmanager
def captured_output() -> Iterator[io.StringIO]:
    """Collect what the current thread prints; other threads are unaffected."""
    global _capturing_threads

    buffer = io.StringIO()
    with _streams_lock:
        if _capturing_threads == 0:
            sys.stdout = _ThreadRoutedStream(sys.stdout)
            sys.stderr = _ThreadRoutedStream(sys.stderr)
        _capturing_threads += 1
    _capture.buffer = buffer
    try:
        yield buffer
    finally:
        _capture.buffer = None
        with _streams_lock:
            _capturing_threads -= 1
            if _capturing_threads == 0:
                for name in ("stdout", "stderr"):
                    stream = getattr(sys, name)
                    if isinstance(stream, _ThreadRoutedStream):
                        setattr(sys, name, stream.target)


# =============================================================================
# Run Loop
# =============================================================================


@dataclass
class ApiResponse:
    """Status, headers and JSON body of a handled request."""

    status_code: int = 200
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(self.body, default=str)


def flatten_result(result: Any) -> Any:
    """Records, record collections and other results become their full data form."""
    if isinstance(result, Result):
        return result.get_all()
    return result


class ApiApp:
    """Handles API requests against one storage."""

    def __init__(
        self,
        storage: Storage,
        *,
        config: AdminConfig | None = None,
        user_resolver: UserResolver | None = None,
        templates: TemplateLocator | None = None,
        settings: SettingsStore | None = None,
        base_uri: str = "",
    ):
        if config is None:
            from adminkit.runtime.config import get_config

            config = get_config()

        self.storage = storage
        self.config = config
        self.user_resolver: UserResolver = user_resolver or TokenUserResolver()
        self.templates = templates
        self.settings = settings or MemorySettingsStore()
        self.base_uri = base_uri

    def generate_user(self, request: RequestContext) -> User | None:
        return self.user_resolver(request)

    def services_for(self, user: User | None) -> AdminServices:
        return AdminServices(
            storage=self.storage,
            permissions=UserPermissionOracle(user),
            config=self.config,
            templates=self.templates,
            settings=self.settings,
            base_uri=self.base_uri,
        )

    def render(self, request: RequestContext, response: ApiResponse) -> Any:
        """Dispatch to the request's controller and return the flattened result."""
        if not request.controller:
            raise AdminKitError("No controller found")

        services = self.services_for(self.generate_user(request))
        controller = controller_factory(request.controller, services, request)
        try:
            result = controller.process_api()
        finally:
            response.status_code = controller.status_code
            response.headers.update(controller.headers)
            controller.close()
        return flatten_result(result)

    def run(self, request: RequestContext) -> ApiResponse:
        """
        Handle one request; always produces a response.

        WebError subclasses keep their response code; any other error is
        answered with 400. Both carry ``{"code", "message"}`` as the body.
        """
        response = ApiResponse()
        discarded = ""
        try:
            with captured_output() as buffer:
                try:
                    response.body = self.render(request, response)
                finally:
                    discarded = buffer.getvalue()
        except WebError as e:
            log_with_context(
                logger,
                logging.INFO,
                f"{request.method.upper()} {request.controller} -> {e.response_code}: {e}",
                action=request.action,
                record_id=request.id,
            )
            response.status_code = e.response_code
            response.headers.pop("Allow", None)
            response.body = e.to_body()
        except Exception as e:
            logger.warning(
                "%s %s failed: %s", request.method.upper(), request.controller, e, exc_info=True
            )
            response.status_code = 400
            response.body = {"code": 0, "message": str(e)}
        if discarded:
            logger.debug("Discarded %d characters of handler output", len(discarded))

        if request.method == "head" or response.status_code == 204:
            response.body = None
        return response


# =============================================================================
# FastAPI Transport
# =============================================================================


def split_route(path: str) -> tuple[str | None, str, str]:
    """
    Split the part of a route after the controller into id, action and sub-action.

    Example:
        >>> split_route("5/edit")
        ('5', 'edit', '')
        >>> split_route("search/quick")
        (None, 'search', 'quick')
    """
    parts = [part for part in path.split("/") if part]
    record_id: str | None = None
    if parts and parts[0].isdigit():
        record_id = parts.pop(0)
    action = parts[0].lower() if parts else ""
    sub_action = parts[1].lower() if len(parts) > 1 else ""
    return record_id, action, sub_action


async def request_context_from(request: Request) -> RequestContext:
    """Build a RequestContext from a request matched by the admin route."""
    record_id, action, sub_action = split_route(request.path_params.get("path", ""))

    body: dict[str, Any] = {}
    raw = await request.body()
    if raw:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError as e:
                raise AdminKitError(f"Invalid JSON body: {e}") from e
            body = decoded if isinstance(decoded, dict) else {"data": decoded}
        else:
            form = await request.form()
            body = dict(form)

    return RequestContext(
        method=request.method.lower(),
        controller=request.path_params["controller"],
        action=action,
        sub_action=sub_action,
        id=record_id,
        ajax=request.headers.get("x-requested-with", "").lower() == "xmlhttprequest",
        query=dict(request.query_params),
        body=body,
        headers=dict(request.headers),
    )


def create_api_app(api: ApiApp, *, title: str = "adminkit API") -> FastAPI:
    """
    Create a FastAPI application serving ``api``.

    Args:
        api: The API application requests are handed to
        title: OpenAPI title

    Returns:
        FastAPI application with the catch-all admin route
    """
    from adminkit import __version__
    from adminkit.runtime.exception_handlers import register_exception_handlers

    app = FastAPI(title=title, version=__version__)
    register_exception_handlers(app)
    app.state.adminkit = api

    methods = [method.upper() for method in HTTP_METHODS]

    async def handle(request: Request) -> Response:
        context = await request_context_from(request)
        # Controllers and storages are synchronous; keep them off the event loop.
        result = await asyncio.to_thread(api.run, context)
        content = None if result.body is None else result.to_json()
        return Response(
            content=content,
            status_code=result.status_code,
            headers=result.headers,
            media_type="application/json" if content is not None else None,
        )

    app.add_api_route("/{controller}", handle, methods=methods, include_in_schema=False)
    app.add_api_route("/{controller}/{path:path}", handle, methods=methods, include_in_schema=False)
    return app
