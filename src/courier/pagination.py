"""Iterate items across paginated API responses."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from yarl import URL

from .core.request import maybe_await
from .core.response import Response

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)


def parse_link_header(value: str) -> list[dict[str, Any]]:
    """
    Parse an RFC 8288 ``Link`` header.

    Args:
        value: Header value, e.g. ``<https://api.example.com/items?page=2>; rel="next"``

    Returns:
        One ``{"reference": str, "parameters": dict}`` per link, in order.
        Parameter values are kept verbatim, quotes included.

    Raises:
        ValueError: On a malformed reference or parameter
    """
    parsed = []
    for item in value.split(","):
        raw_reference, *raw_parameters = item.split(";")
        reference = raw_reference.strip()
        if not (reference.startswith("<") and reference.endswith(">")):
            raise ValueError(f"Invalid format of the Link header reference: {reference}")
        if not raw_parameters:
            raise ValueError(f"Unexpected end of Link header parameters: {item.strip()}")

        parameters: dict[str, str] = {}
        for raw_parameter in raw_parameters:
            name, separator, parameter_value = raw_parameter.strip().partition("=")
            if not separator:
                raise ValueError(f"Failed to parse Link header: {value}")
            parameters[name.strip()] = parameter_value.strip()

        parsed.append({"reference": reference[1:-1], "parameters": parameters})
    return parsed


def default_transform(response: Response) -> Any:
    """Items of a page: the parsed JSON body."""
    options = response.request_options
    if options is not None and options.response_type == "json":
        return response.body
    parse_json = options.parse_json if options is not None else json.loads
    return parse_json(response.text())


def next_link(response: Response, current_items: list[Any], all_items: list[Any]) -> Union[Mapping[str, Any], bool]:
    """Follow ``Link: <...>; rel="next"``; stop when there is none."""
    header = response.headers.get("link")
    if not header:
        return False
    for link in parse_link_header(header):
        if link["parameters"].get("rel") in ('"next"', "next"):
            return {"url": URL(response.url).join(URL(link["reference"])), "search_params": None}
    return False


def _accept_all(item: Any, current_items: list[Any], all_items: list[Any]) -> bool:
    return True


@dataclass
class PaginationOptions:
    """
    How to walk a paginated resource.

    Attributes:
        transform: Response to an iterable of items (may be async)
        filter: ``(item, current_items, all_items)``; False skips the item
        should_continue: ``(item, current_items, all_items)``; False stops before the item
        paginate: ``(response, current_items, all_items)`` to an options patch
            for the next page, or False to stop
        count_limit: Maximum number of items yielded
        backoff: Seconds to wait between page requests
        request_limit: Maximum number of page requests
        stack_all_items: Keep every yielded item in ``all_items``
    """

    transform: Callable[[Response], Any] = default_transform
    filter: Callable[[Any, list[Any], list[Any]], bool] = _accept_all
    should_continue: Callable[[Any, list[Any], list[Any]], bool] = _accept_all
    paginate: Callable[[Response, list[Any], list[Any]], Any] = next_link
    count_limit: Optional[int] = None
    backoff: float = 0.0
    request_limit: int = 10000
    stack_all_items: bool = False

    def __post_init__(self) -> None:
        if self.count_limit is not None and self.count_limit < 0:
            raise ValueError("count_limit must be >= 0")
        if self.backoff < 0:
            raise ValueError("backoff must be >= 0")
        if self.request_limit < 0:
            raise ValueError("request_limit must be >= 0")


async def paginate(
    client: Client,
    url: Union[str, URL, None] = None,
    *,
    pagination: Optional[PaginationOptions] = None,
    **options: Any,
) -> AsyncIterator[Any]:
    """
    Yield items from successive pages.

    Each page is requested through ``client``; the patch returned by
    ``pagination.paginate`` is folded into the options of the next request.

    Example:
        async for issue in paginate(client, "https://api.github.com/repos/o/r/issues"):
            print(issue["title"])
    """
    pagination = pagination or PaginationOptions()
    request_options: dict[str, Any] = dict(options)
    if url is not None:
        request_options["url"] = url

    all_items: list[Any] = []
    yielded = 0
    if pagination.count_limit == 0:
        return

    for request_number in range(pagination.request_limit):
        if request_number and pagination.backoff:
            await asyncio.sleep(pagination.backoff)

        response = await client.request(**{**request_options, "resolve_body_only": False})
        items = await maybe_await(pagination.transform(response))
        if not isinstance(items, Iterable):
            raise TypeError(f"Pagination transform must return an iterable, got {type(items).__name__}")

        current_items: list[Any] = []
        for item in items:
            if not pagination.filter(item, current_items, all_items):
                continue
            if not pagination.should_continue(item, current_items, all_items):
                return

            yield item
            if pagination.stack_all_items:
                all_items.append(item)
            current_items.append(item)

            yielded += 1
            if pagination.count_limit is not None and yielded >= pagination.count_limit:
                return

        patch = await maybe_await(pagination.paginate(response, current_items, all_items))
        if patch is False or patch is None:
            return
        request_options.update(patch)
        logger.debug(f"Requesting next page: {request_options.get('url')}")

    logger.debug(f"Stopped paginating after {pagination.request_limit} requests")
