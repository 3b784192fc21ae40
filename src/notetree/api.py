"""HTTP client for the notepad server's file API."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import requests

from notetree.config import API_BASE_URL, REQUEST_TIMEOUT
from notetree.errors import NotFoundError, TransportError, ValidationError
from notetree.models.node import Node, NodeFilter, NodePatch


class HttpNodeBackend:
    """Node store reached over HTTP.

    Every response is an envelope ``{"code": 0, "message": ..., "data": ...}``;
    a non-zero code is an application error.
    """

    def __init__(self, base_url: str = API_BASE_URL, *, timeout: float = REQUEST_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sess = requests.Session()
        self.logger = logging.getLogger("api")
        self.logger.debug(f"API ready: base_url {self.base_url!r}, timeout {self.timeout!r}")

    def call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Invoke the API, return the envelope's ``data``."""
        self.logger.debug(f"Making request: {method} {path!r} {repr(body or params)[:32]}")
        try:
            r = self.sess.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"API call failed: ({method} {path!r}) -> {e}"
            raise TransportError(msg) from e

        if r.status_code >= 500:
            msg = f"API call failed: ({method} {path!r}) -> HTTP {r.status_code}"
            raise TransportError(msg)

        try:
            rv: dict[str, Any] = r.json()
        except ValueError as e:
            if r.status_code == 404:
                msg = f"Not found: {path!r}"
                raise NotFoundError(msg) from e
            msg = f"API call failed: ({method} {path!r}) -> unreadable response"
            raise TransportError(msg) from e

        code = rv.get("code", r.status_code if r.status_code >= 400 else 0)
        if r.status_code == 404 or code == 404:
            msg = rv.get("message") or f"Not found: {path!r}"
            raise NotFoundError(msg)
        if r.status_code >= 400 or code != 0:
            msg = f"API call failed: ({method} {path!r}) -> ({code!r}, {rv.get('message')!r})"
            raise ValidationError(msg)
        return rv.get("data")

    # --- NodeBackend ---

    async def list_nodes(self, node_filter: NodeFilter | None = None) -> list[Node]:
        node_filter = node_filter or NodeFilter()
        params = {"q": node_filter.query, "include_deleted": str(node_filter.include_deleted).lower()}
        data = await asyncio.to_thread(self.call, "GET", "/api/files", params=params)
        return [Node.from_dict(item) for item in data or []]

    async def create_node(
        self,
        title: str,
        is_folder: bool,
        parent_id: str,
        content: str | None = None,
    ) -> Node:
        body = {
            "title": title,
            "is_folder": is_folder,
            "parent_id": parent_id or None,
            "content": None if is_folder else (content or ""),
        }
        data = await asyncio.to_thread(self.call, "POST", "/api/files", body=body)
        return Node.from_dict(data)

    async def update_node(self, node_id: str, patch: NodePatch) -> Node:
        body = patch.as_dict()
        if "deleted" in body:
            body["is_deleted"] = body.pop("deleted")
        if body.get("parent_id") == "":
            body["parent_id"] = None
        data = await asyncio.to_thread(self.call, "PUT", f"/api/files/{node_id}", body=body)
        return Node.from_dict(data)

    async def delete_node(self, node_id: str) -> None:
        await asyncio.to_thread(self.call, "DELETE", f"/api/files/{node_id}")

    async def batch_delete_nodes(self, node_ids: Sequence[str]) -> None:
        await asyncio.to_thread(
            self.call, "POST", "/api/files/batch-delete", body={"ids": list(node_ids)}
        )

    def close(self) -> None:
        self.sess.close()
