"""
adminkit runtime

Active-record data access and admin request dispatch.

This module provides:
- Record / RecordCollection: dynamic field bags bound to table schemas
- Storage backends: in-memory, SQLite and PostgreSQL
- Controller / ModelController: HTTP-method dispatch and view preparation
- ApiApp / create_api_app: the JSON API run loop and its FastAPI transport

Example usage:
    >>> from adminkit.runtime import MemoryStorage, record_factory
    >>> from adminkit.specs import ColumnDescriptor
    >>>
    >>> storage = MemoryStorage()
    >>> storage.create_table("Widget", [
    ...     ColumnDescriptor(name="ID", type="int", default=0, primary_key=True),
    ...     ColumnDescriptor(name="Name", type="varchar(40)", default=""),
    ... ])
    >>> widget = record_factory("Widget", storage)
    >>> widget["name"] = "Bolt"
    >>> widget.save()
    1
"""

from adminkit.runtime.admin_model import ModelController
from adminkit.runtime.api import ApiApp, ApiResponse, TokenUserResolver, create_api_app
from adminkit.runtime.collaborators import (
    AdminServices,
    DirectoryTemplateLocator,
    MemorySettingsStore,
    PermissionOracle,
    RequestContext,
    SettingsStore,
    StaticTemplateLocator,
    TemplateLocator,
    User,
    UserPermissionOracle,
    ViewData,
)
from adminkit.runtime.config import AdminConfig, get_config
from adminkit.runtime.controller import (
    Controller,
    controller_factory,
    register_controller,
)
from adminkit.runtime.errors import (
    AdminKitError,
    ConflictError,
    ForbiddenError,
    HookCascadeError,
    MethodNotAllowedError,
    NotFoundError,
    OutOfBoundsError,
    TransportError,
    UnauthorizedError,
    WebError,
)
from adminkit.runtime.query_builder import QueryBuilder, make_search_query
from adminkit.runtime.record import MISSING, Record, RecordCollection, field_setter
from adminkit.runtime.record_registry import (
    record_factory,
    record_from_dict,
    record_from_id,
    register_record,
    search_records,
)
from adminkit.runtime.schema_cache import SchemaCache, get_schema_cache
from adminkit.runtime.storage import MemoryStorage, Storage, create_storage
from adminkit.runtime.view_resolver import hook_candidates, template_candidates, view_hook

__all__ = [
    # Records
    "MISSING",
    "Record",
    "RecordCollection",
    "field_setter",
    "record_factory",
    "record_from_dict",
    "record_from_id",
    "register_record",
    "search_records",
    # Schema and queries
    "SchemaCache",
    "get_schema_cache",
    "QueryBuilder",
    "make_search_query",
    # Storage
    "Storage",
    "MemoryStorage",
    "create_storage",
    # Controllers
    "Controller",
    "ModelController",
    "controller_factory",
    "register_controller",
    "hook_candidates",
    "template_candidates",
    "view_hook",
    # Collaborators
    "AdminServices",
    "DirectoryTemplateLocator",
    "MemorySettingsStore",
    "PermissionOracle",
    "RequestContext",
    "SettingsStore",
    "StaticTemplateLocator",
    "TemplateLocator",
    "User",
    "UserPermissionOracle",
    "ViewData",
    # API
    "ApiApp",
    "ApiResponse",
    "TokenUserResolver",
    "create_api_app",
    # Configuration
    "AdminConfig",
    "get_config",
    # Errors
    "AdminKitError",
    "ConflictError",
    "ForbiddenError",
    "HookCascadeError",
    "MethodNotAllowedError",
    "NotFoundError",
    "OutOfBoundsError",
    "TransportError",
    "UnauthorizedError",
    "WebError",
]
