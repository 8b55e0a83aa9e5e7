"""Generic shape of snapshots, builders and the adapters between them.

Every resource kind supplies a `ResourceAdapter` subclass. The
reconciliation engine (`ocean.reconcile`) and the poll loop (`ocean.poll`)
only depend on the adapter, never on a concrete kind.
"""
from datetime import timedelta
from typing import Any, Callable, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, PrivateAttr

import ocean.poll
import ocean.reconcile
from ocean.errors import ResourceNotFoundError
from ocean.transport import Transport, get_list


class Snapshot(BaseModel):
    """Immutable state of a resource at the time it was fetched."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    # The adapter that fetched this snapshot.
    _adapter: Any = PrivateAttr(default=None)

    def reload(self):
        """Return a fresh snapshot of the same resource."""
        return self._adapter.get(self.id)


class ManagedSnapshot(Snapshot):
    """Snapshot of a resource the caller can update and delete."""

    def matches(self, target) -> bool:
        """Return `True` if the resource already has the state of `target`."""
        return self._adapter.matches(self, target)

    def update(self, target):
        """Converge the resource towards `target` and return the new snapshot."""
        return ocean.reconcile.update(self._adapter, self, target)

    def destroy(self):
        self._adapter.destroy(self)

    def wait_for_destroy(self, timeout: float | timedelta):
        ocean.poll.wait_for_destroy(self._adapter, self, timeout)


class Builder(BaseModel):
    """Desired state of a resource.

    Every assignment is validated immediately, ie a builder can never hold
    invalid values.
    """

    model_config = ConfigDict(
        validate_assignment=True, extra="forbid", arbitrary_types_allowed=True
    )

    _adapter: Any = PrivateAttr(default=None)

    def create(self) -> ocean.reconcile.CreateResult:
        return ocean.reconcile.create(self._adapter, self)

    def to_server(self) -> dict:
        raise NotImplementedError


class ResourceAdapter:
    """Capabilities of a resource kind.

    The defaults implement the common REST conventions, ie a collection at
    `collection_path` that lists its elements under `collection_key` and
    individual resources at `collection_path/{id}` under `item_key`.
    """

    label = "resource"
    collection_path = ""
    collection_key = ""
    item_key = ""

    create_statuses: Tuple[int, ...] = (201,)
    update_method = "PUT"
    update_statuses: Tuple[int, ...] = (200, 202, 204)

    # Lower case fragments of 422 messages that indicate a name collision.
    conflict_phrases: Tuple[str, ...] = ()

    # State after which the server removes the resource, if any.
    destroyed_state: Any = None

    def __init__(self, transport: Transport):
        self.transport = transport

    def bind(self, snapshot):
        snapshot._adapter = self
        return snapshot

    def resource_path(self, resource_id) -> str:
        return f"{self.collection_path}/{resource_id}"

    def parse(self, data: dict):
        """Return the snapshot for the JSON representation `data`."""
        raise NotImplementedError

    def parse_page(self, page: dict) -> List:
        return [self.parse(_) for _ in get_list(page, self.collection_key)]

    # ----------------------------------------------------------------------
    # Queries.
    # ----------------------------------------------------------------------
    def get(self, resource_id):
        """Return the resource or raise `ResourceNotFoundError`."""
        path = self.resource_path(resource_id)
        return self.transport.get_resource(path, self.item_key, self.parse, resource_id)

    def list(self, predicate: Callable[[Any], bool] | None = None) -> List:
        items = self.transport.get_elements(self.collection_path, None, self.parse_page)
        return [_ for _ in items if predicate is None or predicate(_)]

    def find(self, predicate: Callable[[Any], bool]):
        """Return the first resource that satisfies `predicate` or `None`."""
        return self.transport.get_element(
            self.collection_path, None, self.parse_page, predicate
        )

    def state_of(self, snapshot):
        raise NotImplementedError

    # ----------------------------------------------------------------------
    # Creation.
    # ----------------------------------------------------------------------
    def is_conflict(self, message: str) -> bool:
        message = message.lower()
        return any(phrase in message for phrase in self.conflict_phrases)

    def find_conflict(self, builder):
        return self.find(lambda live: live.name == builder.name)

    def on_unprocessable(self, builder, message: str):
        """Raise a meaningful error for a 422 response, if possible."""

    # ----------------------------------------------------------------------
    # Reconciliation.
    # ----------------------------------------------------------------------
    def unchangeable(self, live, target) -> Dict[str, Tuple[Any, Any]]:
        """Return the current and wanted values of all immutable fields."""
        return {}

    def matches(self, live, target) -> bool:
        raise NotImplementedError

    def build_patch(self, live, target) -> dict:
        raise NotImplementedError

    def write_patch(self, live, patch: dict):
        path = self.resource_path(live.id)
        response = self.transport.request(self.update_method, path, patch)
        if response.status_code == 404:
            raise ResourceNotFoundError(live.id)
        self.transport.check(response, self.update_statuses)

    def destroy(self, snapshot):
        self.transport.destroy_resource(self.resource_path(snapshot.id))


def changed(current, wanted) -> bool:
    """Return `True` if `wanted` is set and differs from `current`.

    Unset values (`None`) in a builder accept whatever the server chose.
    """
    return wanted is not None and wanted != current
