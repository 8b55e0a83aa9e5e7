"""Create resources and converge live resources towards a desired state.

The functions in this module work for every resource kind. They only talk
to the server through the kind's adapter (see `ocean.resource.ResourceAdapter`).
"""
import logging
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from ocean.errors import ImmutableFieldError
from ocean.transport import get_dict

# Convenience.
logit = logging.getLogger("ocean")


class Created(BaseModel):
    """The server created a new resource."""

    model_config = ConfigDict(frozen=True)

    resource: Any


class ConflictedWith(BaseModel):
    """A resource with the same identity already existed."""

    model_config = ConfigDict(frozen=True)

    resource: Any


CreateResult = Union[Created, ConflictedWith]


def create(adapter, builder) -> CreateResult:
    """Submit `builder` and return the new or the conflicting resource.

    All responses other than success or a name collision raise an error.
    """
    transport = adapter.transport
    response = transport.request("POST", adapter.collection_path, builder.to_server())
    status = response.status_code

    if status in adapter.create_statuses:
        body = transport.response_body(response)
        resource = adapter.parse(get_dict(body, adapter.item_key))
        logit.info(f"created {adapter.label} {resource.id}")
        return Created(resource=resource)

    if status == 422:
        message = transport.server_message(response)
        if adapter.is_conflict(message):
            # The server just told us that the resource exists.
            existing = adapter.find_conflict(builder)
            if existing is None:
                raise transport.unexpected(response)
            logit.info(f"{adapter.label} {existing.id} already exists")
            return ConflictedWith(resource=existing)
        adapter.on_unprocessable(builder, message)

    transport.raise_for_common(response)
    raise transport.unexpected(response)


def ensure_unchangeable(adapter, live, target):
    """Raise `ImmutableFieldError` if `target` changes an immutable field."""
    for field, (current, wanted) in adapter.unchangeable(live, target).items():
        # Unset fields accept whatever the server chose.
        if wanted is not None and current != wanted:
            raise ImmutableFieldError(field, current, wanted)


def update(adapter, live, target):
    """Return the snapshot of `live` after applying the changes in `target`.

    Return `live` itself without contacting the server if nothing changed.
    Otherwise send only the differing fields and return a fresh snapshot.
    """
    ensure_unchangeable(adapter, live, target)
    if adapter.matches(live, target):
        logit.debug(f"{adapter.label} {live.id} is up to date")
        return live

    patch = adapter.build_patch(live, target)
    adapter.write_patch(live, patch)
    logit.info(f"updated {adapter.label} {live.id}", {"fields": sorted(patch)})
    return adapter.get(live.id)
