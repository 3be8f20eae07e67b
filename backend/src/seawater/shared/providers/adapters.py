"""Default provider adapter: query dict in, decoded JSON body out."""

from __future__ import annotations

from typing import Any

from seawater.domain.exceptions import SourceResponseError
from seawater.ports.outbound import SourceAdapter
from seawater.shared.providers.types import HttpResponse, SourceConfig, SourceRequest


class QueryParamsAdapter(SourceAdapter):
    """Sends the query as URL parameters against the provider's base URL.

    A ``path`` entry in the query is appended to the base URL rather than
    sent as a parameter; ``None`` values are dropped.
    """

    def __init__(self, config: SourceConfig) -> None:
        self._config = config

    def build_request(self, query: dict[str, Any]) -> SourceRequest:
        cfg = self._config
        params = {k: v for k, v in query.items() if v is not None and k != "path"}
        url = cfg.base_url.rstrip("/")
        if query.get("path"):
            url = f"{url}/{str(query['path']).lstrip('/')}"

        headers = {"Accept": "application/json", **cfg.headers}
        if cfg.api_key:
            if cfg.auth_param:
                params[cfg.auth_param] = cfg.api_key
            elif cfg.auth_header.lower() == "authorization":
                headers["Authorization"] = f"Bearer {cfg.api_key}"
            else:
                headers[cfg.auth_header] = cfg.api_key
        return SourceRequest(url=url, headers=headers, params=params or None)

    def parse_response(self, response: HttpResponse) -> Any:
        if response.data is None or response.data == "":
            raise SourceResponseError(self._config.source_id, "Empty response body")
        return response.data
