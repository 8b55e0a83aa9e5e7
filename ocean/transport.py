"""HTTP plumbing shared by all resource kinds.

The transport never retries failed requests. Network errors and timeouts
propagate to the caller unmodified.
"""
import json
import logging
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Iterator, List

import httpx

from ocean.config import REST_SERVER
from ocean.errors import (
    AccessDeniedError,
    ClientClosedError,
    ResourceNotFoundError,
    ResponseParseError,
    TooManyRequestsError,
    UnexpectedResponseError,
)

# The largest page size the server supports.
MAX_ENTRIES_PER_PAGE = 200

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("ocean")

_MISSING = object()


class Transport:
    """Authenticated HTTP client for the REST API.

    Inputs:
        base_url: str
            Eg `https://api.digitalocean.com`.
        timeout: float
            Seconds before an individual request times out.
        httpclient: httpx.Client | None
            Use this client instead of creating a new one, eg to share
            connection pools or to install a custom CA bundle.

    """

    def __init__(
        self,
        base_url: str = REST_SERVER,
        timeout: float = 30,
        httpclient: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpclient or httpx.Client(timeout=timeout)
        self.token = ""
        self.closed = False

    def login(self, token: str) -> "Transport":
        if token is None:
            raise TypeError("token must not be None")
        if token.strip() == "":
            raise ValueError("token must be nonempty")
        if token.strip() != token:
            raise ValueError("token must not have leading or trailing whitespace")
        self.token = token
        return self

    @property
    def is_closed(self) -> bool:
        return self.closed

    def ensure_open(self):
        if self.closed:
            raise ClientClosedError()

    def close(self):
        if not self.closed:
            self.closed = True
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def url(self, path: str) -> str:
        # Pagination links are already absolute.
        if path.startswith(("http://", "https://")):
            return path
        return self.base_url + path

    def create_request(
        self,
        method: str,
        path: str,
        body: dict | list | None = None,
        params: dict | None = None,
    ) -> httpx.Request:
        """Return an authenticated request for `path`, eg `/v2/droplets`."""
        self.ensure_open()
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        return self.client.build_request(
            method, self.url(path), json=body, params=params, headers=headers
        )

    def send(self, request: httpx.Request) -> httpx.Response:
        self.ensure_open()
        response = self.client.send(request)

        # Log the entire request in debug mode.
        logit.debug(
            f"{request.method} {response.status_code} {request.url}\n"
            f"Payload: {request.content.decode(errors='replace')}\n"
        )
        return response

    def request(
        self,
        method: str,
        path: str,
        body: dict | list | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        """Convenience: create and send a request in one go."""
        return self.send(self.create_request(method, path, body, params))

    def response_body(self, response: httpx.Response) -> Dict[str, Any]:
        """Return the decoded JSON body of `response`."""
        try:
            body = json.loads(response.text)
        except json.decoder.JSONDecodeError as err:
            msg = (
                f"JSON error - {err.msg} in line {err.lineno} column {err.colno}",
                "-" * 80 + "\n" + err.doc + "\n" + "-" * 80,
            )
            logit.error(str.join("\n", msg))
            req = response.request
            raise ResponseParseError(f"{req.method} {req.url}: {err.msg}") from err

        if not isinstance(body, dict):
            raise self.unexpected(response)
        return body

    def server_message(self, response: httpx.Response) -> str:
        """Return the `message` field of an error response."""
        try:
            message = json.loads(response.text).get("message")
        except (json.decoder.JSONDecodeError, AttributeError):
            message = None
        return message or response.text or response.reason_phrase

    def raise_for_common(self, response: httpx.Response):
        """Raise the typed error for responses every endpoint may return."""
        status = response.status_code
        if status in (401, 403):
            raise AccessDeniedError(self.server_message(response))
        if status == 429:
            raise too_many_requests(response, self.server_message(response))

    def unexpected(self, response: httpx.Response) -> UnexpectedResponseError:
        msg = (
            "Unexpected response:",
            describe_response(response),
            "",
            "Request:",
            describe_request(response.request),
        )
        return UnexpectedResponseError(str.join("\n", msg), response.status_code)

    def check(self, response: httpx.Response, expected: tuple) -> httpx.Response:
        """Return `response` if its status is `expected` and raise otherwise."""
        if response.status_code not in expected:
            self.raise_for_common(response)
            raise self.unexpected(response)
        return response

    # ----------------------------------------------------------------------
    # Paginated collections.
    # ----------------------------------------------------------------------
    def pages(self, path: str, params: dict | None = None) -> Iterator[dict]:
        """Yield the decoded pages of a collection until there is no `next` link."""
        query: dict | None = dict(params or {}) | {"per_page": MAX_ENTRIES_PER_PAGE}
        url: str | None = path
        while url is not None:
            response = self.check(self.request("GET", url, params=query), (200,))
            body = self.response_body(response)
            yield body

            # The `next` link already contains all query parameters.
            pages = (body.get("links") or {}).get("pages") or {}
            url, query = pages.get("next"), None

    def get_elements(
        self,
        path: str,
        params: dict | None,
        mapper: Callable[[dict], List],
    ) -> List:
        """Return all elements of a collection.

        Inputs:
            path: str
                Collection path, eg `/v2/droplets`.
            params: dict | None
                Additional query parameters.
            mapper: Callable
                Converts a page into a list of elements.

        """
        ret = []
        for page in self.pages(path, params):
            ret.extend(mapper(page))
        return ret

    def get_element(
        self,
        path: str,
        params: dict | None,
        mapper: Callable[[dict], List],
        predicate: Callable[[Any], bool],
    ) -> Any | None:
        """Return the first element that satisfies `predicate` or `None`.

        This will not fetch the remaining pages once it found a match.
        """
        for page in self.pages(path, params):
            for element in mapper(page):
                if predicate(element):
                    return element
        return None

    # ----------------------------------------------------------------------
    # Individual resources.
    # ----------------------------------------------------------------------
    def get_resource(
        self, path: str, key: str, mapper: Callable[[dict], Any], resource_id=None
    ) -> Any:
        """Return the mapped `key` field of the resource at `path`."""
        response = self.request("GET", path)
        if response.status_code == 404:
            raise ResourceNotFoundError(path if resource_id is None else resource_id)
        self.check(response, (200,))
        return mapper(get_dict(self.response_body(response), key))

    def destroy_resource(self, path: str):
        """Delete the resource at `path`.

        A 404 is not an error because it means the resource is already gone.
        """
        response = self.request("DELETE", path)
        self.check(response, (200, 202, 204, 404))
        logit.info(f"deleted {path}", {"status": response.status_code})


# ----------------------------------------------------------------------
# Diagnostics.
# ----------------------------------------------------------------------
def describe_request(request: httpx.Request) -> str:
    lines = [f"> HTTP {request.method} {request.url}"]
    for key, val in request.headers.items():
        if key.lower() == "authorization":
            val = "Bearer <redacted>"
        lines.append(f"> {key}: {val}")
    if request.content:
        lines += [">", "> " + request.content.decode(errors="replace")]
    return str.join("\n", lines)


def describe_response(response: httpx.Response) -> str:
    lines = [f"< HTTP {response.status_code} {response.reason_phrase}"]
    lines += [f"< {key}: {val}" for key, val in response.headers.items()]
    if response.text:
        lines += ["<", "< " + response.text]
    return str.join("\n", lines)


def too_many_requests(response: httpx.Response, message: str) -> TooManyRequestsError:
    """Compile the rate limit information from the response headers."""

    def as_int(name: str) -> int | None:
        try:
            return int(response.headers[name])
        except (KeyError, ValueError):
            return None

    reset = as_int("ratelimit-reset")
    return TooManyRequestsError(
        message,
        limit=as_int("ratelimit-limit"),
        reset_at=datetime.fromtimestamp(reset, UTC) if reset is not None else None,
        retry_after=as_int("retry-after"),
    )


# ----------------------------------------------------------------------
# Typed access to JSON nodes.
# ----------------------------------------------------------------------
def get_value(node: dict, name: str, default: Any = _MISSING) -> Any:
    if name not in node or node[name] is None:
        if default is not _MISSING:
            return default
        raise UnexpectedResponseError(f"response has no field <{name}>: {node}")
    return node[name]


def _typed(node: dict, name: str, kind: type, default: Any) -> Any:
    val = get_value(node, name, default)
    if val is default and default is not _MISSING:
        return val
    if isinstance(val, bool) and kind is not bool or not isinstance(val, kind):
        raise UnexpectedResponseError(
            f"field <{name}> must be {kind.__name__} (got {val!r})"
        )
    return val


def get_str(node: dict, name: str, default: Any = _MISSING) -> str:
    return _typed(node, name, str, default)


def get_int(node: dict, name: str, default: Any = _MISSING) -> int:
    return _typed(node, name, int, default)


def get_bool(node: dict, name: str, default: Any = _MISSING) -> bool:
    return _typed(node, name, bool, default)


def get_dict(node: dict, name: str, default: Any = _MISSING) -> dict:
    return _typed(node, name, dict, default)


def get_list(node: dict, name: str) -> list:
    """Return the list `name`; absent and `null` lists are empty."""
    return _typed(node, name, list, [])


def parse_time(value: str) -> datetime:
    """Return the server timestamp `value`, eg `2018-11-15T16:00:11Z`."""
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as err:
        raise UnexpectedResponseError(f"invalid timestamp <{value}>") from err


def get_enum(node: dict, name: str, kind: type, default: Any = _MISSING) -> Any:
    """Return the enum member `kind(node[name])`."""
    val = get_value(node, name, default)
    if val is default and default is not _MISSING:
        return val
    try:
        return kind(val)
    except ValueError:
        raise UnexpectedResponseError(
            f"field <{name}> has unknown {kind.__name__} <{val}>"
        ) from None


def get_time(node: dict, name: str, default: Any = _MISSING) -> datetime:
    val = get_str(node, name, default)
    if val is default and default is not _MISSING:
        return val
    return parse_time(val)
