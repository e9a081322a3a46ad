"""HTTP client for GraphQL queries, mutations and file uploads."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

import aiohttp

from .errors import (
    GraphQLClientError,
    GraphQLError,
    GraphQLResponseError,
)
from .files import as_file_list
from .multipart import build_multipart_request, needs_multipart

_LOGGER = logging.getLogger(__name__)

API_KEY_HEADER: Final = "x-api-key"
MISSING_URL_MESSAGE: Final = (
    "GraphQL API URL is required. Either provide it in the request or set a default URL."
)


@dataclass(slots=True)
class GraphQLResponse:
    """Uniform result of a GraphQL HTTP request."""

    data: Any = None
    errors: list[dict[str, Any]] | None = None

    @classmethod
    def from_json(cls, body: Any) -> GraphQLResponse:
        """Build a response from a decoded JSON body."""
        if not isinstance(body, Mapping):
            raise GraphQLClientError("GraphQL response is not a JSON object")
        errors = body.get("errors")
        if not errors:
            return cls(data=body.get("data"))
        if not isinstance(errors, list):
            errors = [errors]
        return cls(
            data=body.get("data"),
            errors=[
                dict(error) if isinstance(error, Mapping) else {"message": str(error)}
                for error in errors
            ],
        )

    @classmethod
    def from_error(cls, message: str) -> GraphQLResponse:
        """Build a response carrying a single error message."""
        return cls(errors=[{"message": message}])


def error_message_from_body(body: Any, reason: str) -> str:
    """Pick the message for a non-success response.

    Order: ``error`` (string), ``message``, ``error.message``, then reason.
    """
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, str) and error:
            return error
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
        if isinstance(error, Mapping):
            nested = error.get("message")
            if isinstance(nested, str) and nested:
                return nested
    return reason


class GraphQLHttpClient:
    """HTTP client wrapper for a GraphQL endpoint.

    Requests with file leaves in their variables, or with explicit files,
    are sent as multipart uploads; everything else is sent as JSON.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str | None = None,
        *,
        api_key: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        self._session = session
        self._url = url
        self._api_key = api_key
        self._headers = dict(headers or {})
        self._timeout = timeout

    def _build_headers(
        self,
        headers: Mapping[str, str] | None,
        api_key: str | None,
        *,
        json_body: bool,
    ) -> dict[str, str]:
        # Later layers override earlier ones: API key, instance, per-call.
        merged: dict[str, str] = {}
        if json_body:
            merged["Content-Type"] = "application/json"
        if api_key:
            merged[API_KEY_HEADER] = api_key
        merged.update(self._headers)
        merged.update(headers or {})
        if not json_body:
            # aiohttp sets the multipart content type with its boundary.
            merged = {k: v for k, v in merged.items() if k.lower() != "content-type"}
        return merged

    async def request(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        files: Any = None,
        headers: Mapping[str, str] | None = None,
        url: str | None = None,
        api_key: str | None = None,
    ) -> GraphQLResponse:
        """Send a GraphQL operation.

        Network failures, non-success statuses and encoding problems never
        raise; they come back as a response with a single error.

        Args:
            query: GraphQL document, forwarded verbatim
            variables: Operation variables, may contain file leaves
            files: Extra files mapped to ``variables.files.<i>``
            headers: Per-call headers, overriding instance headers
            url: Endpoint override
            api_key: API key override

        Returns:
            GraphQLResponse with data and/or errors
        """
        target = url or self._url
        effective_key = api_key or self._api_key
        explicit_files = as_file_list(files)

        _LOGGER.debug(
            "GraphQL request to %s (api_key=%s, files=%d)",
            target,
            "[REDACTED]" if effective_key else None,
            len(explicit_files),
        )

        if not target:
            return GraphQLResponse.from_error(MISSING_URL_MESSAGE)

        try:
            if needs_multipart(variables, explicit_files):
                multipart = build_multipart_request(query, variables, explicit_files)
                body: Any = multipart.to_form_data()
                request_headers = self._build_headers(headers, effective_key, json_body=False)
            else:
                body = json.dumps({"query": query, "variables": variables})
                request_headers = self._build_headers(headers, effective_key, json_body=True)

            async with self._session.post(
                target,
                data=body,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    try:
                        error_body: Any = json.loads(text)
                    except ValueError:
                        error_body = {"error": text}
                    _LOGGER.error("GraphQL request error: %s", error_body)
                    raise GraphQLResponseError(
                        resp.status,
                        error_message_from_body(error_body, resp.reason or f"HTTP {resp.status}"),
                    )
                return GraphQLResponse.from_json(await resp.json(content_type=None))
        except TimeoutError:
            _LOGGER.error("GraphQL request to %s timed out", target)
            return GraphQLResponse.from_error("GraphQL request timed out")
        except aiohttp.ClientError as err:
            _LOGGER.error("GraphQL request error: %s", err)
            return GraphQLResponse.from_error(str(err) or "GraphQL request failed")
        except (GraphQLClientError, ValueError, TypeError) as err:
            _LOGGER.error("GraphQL request error: %s", err)
            return GraphQLResponse.from_error(str(err) or "An error occurred")

    async def execute(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        files: Any = None,
        headers: Mapping[str, str] | None = None,
        url: str | None = None,
        api_key: str | None = None,
    ) -> Any:
        """Send a GraphQL operation and return its data.

        Raises:
            GraphQLClientError: If no URL is configured
            GraphQLError: If the response carries errors or no data
        """
        if not (url or self._url):
            raise GraphQLClientError(MISSING_URL_MESSAGE)

        response = await self.request(
            query, variables, files=files, headers=headers, url=url, api_key=api_key
        )

        if response.errors:
            message = response.errors[0].get("message") or "Unknown error occurred."
            raise GraphQLError(message, response.errors)

        if response.data is None:
            raise GraphQLError("No data returned from GraphQL response.")

        return response.data
