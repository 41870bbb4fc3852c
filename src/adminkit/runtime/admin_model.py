"""
Record-backed admin controller.

:class:`ModelController` binds a controller type to a table: the request's
record is loaded from the route id, the view hooks implement list, search,
create, edit and view screens, and the API handlers expose the table as a
REST resource.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, ClassVar

from adminkit.runtime.controller import Controller
from adminkit.runtime.errors import AdminKitError, NotFoundError
from adminkit.runtime.query_builder import is_empty_criterion
from adminkit.runtime.record import Record, RecordCollection
from adminkit.runtime.record_registry import record_factory, search_records
from adminkit.runtime.view_resolver import view_hook
from adminkit.specs.column import ColumnDescriptor, ColumnType

logger = logging.getLogger(__name__)

# Query parameters of API searches that are not criteria
RESERVED_QUERY_KEYS = frozenset({"order", "sort"})

_TINYINT_BOOLEAN = "tinyint(1)"


class ModelController(Controller):
    """
    Controller whose type names a table.

    Class attributes:
        record_table: Table behind the controller; defaults to the controller type
    """

    record_table: ClassVar[str | None] = None

    def init(self) -> None:
        self.record: Record = record_factory(self.table, self.services.storage)
        if self.request.id:
            self.record.load(self.request.id)
        if self.record.is_created():
            self._enable_record_action()

    @property
    def table(self) -> str:
        return type(self).record_table or self.type

    def _enable_record_action(self) -> None:
        self.menu_items["record"] = "Record"
        if "record" not in self.allowed_actions:
            self.allowed_actions.append("record")

    # -------------------------------------------------------------------------
    # Columns
    # -------------------------------------------------------------------------

    def column_order(self) -> list[str]:
        """Columns to show first, in order; the rest follow in table order."""
        return []

    def get_columns(self, kind: str | None = None) -> dict[str, ColumnDescriptor]:
        """
        Columns shown for a purpose (``create``, ``edit``, ``search``, ``view``).

        The identity column and the purpose's ignored columns are left out.
        Search forms see ``text`` columns as ``varchar`` and ``date`` columns
        as ``searchdate``.
        """
        lower_kind = (kind or "").lower()
        columns = self.record.get_columns()
        columns.pop(self.record.id_column or "", None)

        for ignored in self.ignore.get(lower_kind, ()):
            columns.pop(ignored, None)

        if lower_kind == "search":
            for name, column in columns.items():
                if column.type == "text":
                    columns[name] = column.model_copy(update={"type": "varchar"})
                elif column.type == "date":
                    columns[name] = column.model_copy(update={"type": "searchdate"})

        ordered: dict[str, ColumnDescriptor] = {}
        for name in self.column_order():
            if name in columns:
                ordered[name] = columns.pop(name)
        ordered.update(columns)
        return ordered

    def get_current_record_title(self) -> str:
        return self.record.get("name", "") if self.record.has("name") else ""

    def get_admin_output(self) -> dict[str, Any]:
        output = super().get_admin_output()
        if self.record.is_created():
            output.update(
                {
                    "record_title": self.get_current_record_title(),
                    "sub_menu": self.get_sub_menu_items(True),
                    "id": self.record.id,
                    "record_uri": self.generate_uri(self.record.id),
                }
            )
        return output

    # -------------------------------------------------------------------------
    # Submitted data
    # -------------------------------------------------------------------------

    def _posted(self) -> dict[str, Any]:
        nested = self.request.body.get(self.type)
        if isinstance(nested, Mapping):
            return dict(nested)
        return dict(self.request.body)

    def _without_identity(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Drop the identity column; new rows always get a storage-assigned id."""
        id_column = self.record.id_column
        return {
            key: value
            for key, value in data.items()
            if not id_column or self.record.has_column(key) != id_column
        }

    def _boolean_columns(self) -> list[str]:
        return [
            name
            for name, column in self.record.get_columns().items()
            if column.type.lower() == _TINYINT_BOOLEAN or column.base_type == ColumnType.BOOLEAN
        ]

    def process_create_get_data(self) -> dict[str, Any]:
        """Submitted create form: empty values dropped, checkbox columns set by presence."""
        nested = self.request.body.get(self.type)
        data = dict(nested) if isinstance(nested, Mapping) else {}
        data = {key: value for key, value in data.items() if not is_empty_criterion(value)}
        for name in self._boolean_columns():
            data[name] = name in data
        return data

    def edit_get_data(self) -> dict[str, Any]:
        """
        Submitted edit form; checkbox columns are set by presence.

        Raises:
            AdminKitError: If nothing was posted
        """
        data = self._posted()
        if not data:
            raise AdminKitError("No POST data found")

        ignored = self.ignore.get("boolean", ())
        for name in self._boolean_columns():
            if name not in ignored:
                data[name] = name in data
        return data

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def process_search_get_sort_column(self) -> str | list[str] | None:
        return self.record.id_column

    def process_search_get_data(self, criteria: Mapping[str, Any]) -> RecordCollection:
        return search_records(
            self.table, self.services.storage, criteria, self.process_search_get_sort_column()
        )

    # -------------------------------------------------------------------------
    # View hooks
    # -------------------------------------------------------------------------

    def populate_view_data(self) -> None:
        self.view_data["current_record"] = self.record
        super().populate_view_data()

    @view_hook("List")
    def prepare_view_list(self) -> None:
        self.prepare_view_post_search()

    @view_hook("GetCreate")
    def prepare_view_get_create(self) -> None:
        self.record.set_all(self._without_identity(self.request.query), trusted=False)

    @view_hook("Create")
    def prepare_view_create(self) -> None:
        self.view_data["fields"] = self.get_columns("create")

    @view_hook("Edit")
    def prepare_view_edit(self) -> None:
        if not self.allow("edit") or "No" in self.request.body:
            self.view_data["close"] = True
            return
        self.view_data["fields"] = self.get_columns("edit")

    @view_hook("Search")
    def prepare_view_search(self) -> None:
        self.view_data["fields"] = self.get_columns("search")

    @view_hook("View")
    def prepare_view_view(self) -> None:
        self.view_data["fields"] = self.get_columns("view")

    @view_hook("PostCreate")
    def prepare_view_post_create(self) -> None:
        try:
            data = self._without_identity(self.process_create_get_data())
            self.record.set_all(data, trusted=False)
            self.record.save()
            self.view_data["success"] = f"Successfully created new {self.type}"
            self.view_data["create_uri"] = self.generate_uri("create")
        except AdminKitError as e:
            logger.warning("Creating %s failed: %s", self.type, e)
            self.view_data["failure"] = f"Failed creating new {self.type}: {e}"

        self.current_action = "view"

    @view_hook("PostEdit")
    def prepare_view_post_edit(self) -> None:
        try:
            self.record.set_all(self.edit_get_data(), trusted=False)
            self.record.save()
            self.view_data["success"] = f"This {self.type} update has been successful."
        except AdminKitError as e:
            logger.warning("Updating %s %s failed: %s", self.type, self.record.id, e)
            self.view_data["failure"] = f"This {self.type} update has failed: {e}"

        self.current_action = "view"

    @view_hook("PostSearch")
    def prepare_view_post_search(self) -> None:
        criteria = self.process_search_terms(self.process_search_get_criteria())
        data = self.process_search_get_data(criteria)

        if data.count() == 1:
            if self.request.ajax:
                self.record = data[0]
                self._enable_record_action()
                self.current_action = "view"
                return

            if self.request.sub_action == "quick":
                self.status_code = 302
                self.headers["Location"] = self.generate_uri(data[0].id)

        self.view_data["data"] = data
        self.view_data["id_column"] = self.record.id_column
        self.view_data["data_columns"] = list(self.get_columns("search"))

    # -------------------------------------------------------------------------
    # API handlers
    # -------------------------------------------------------------------------

    def _require_record(self) -> Record:
        if not self.record.is_created():
            raise NotFoundError(f"No {self.type} specified")
        return self.record

    def process_api_get(self) -> Record | RecordCollection:
        if self.record.is_created():
            return self.record

        criteria = {
            key: value
            for key, value in self.request.query.items()
            if key not in RESERVED_QUERY_KEYS
        }
        order = self.request.query.get("order") or self.request.query.get("sort")
        return search_records(
            self.table,
            self.services.storage,
            self.process_search_terms(criteria),
            order or self.process_search_get_sort_column(),
        )

    def process_api_head(self) -> None:
        self.process_api_get()
        return None

    def process_api_post(self) -> Record:
        if self.record.is_created():
            raise AdminKitError(f"The {self.type} already exists; use PUT to change it")
        self.record.set_all(self._without_identity(self._posted()), trusted=False)
        self.record.save()
        return self.record

    def process_api_put(self) -> Record:
        record = self._require_record()
        record.set_all(self._posted(), trusted=False)
        record.save()
        return record

    def process_api_delete(self) -> None:
        record = self._require_record()
        record.delete()
        return None
