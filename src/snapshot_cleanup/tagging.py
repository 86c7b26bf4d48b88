"""vSphere inventory tags through the vCenter REST tagging service.

Inventory tags are not visible on the pyVmomi managed objects, so the tag
filter resolves tag names to the VMs they are attached to over ``/api``.
"""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

logger = logging.getLogger(__name__)

SESSION_HEADER = "vmware-api-session-id"


class TaggingClient:
    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        validate_certs: bool = False,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._user = user
        self._password = password
        self._client = httpx.Client(
            base_url=f"https://{host}/api",
            verify=validate_certs,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "TaggingClient":
        try:
            resp = self._client.post("/session", auth=(self._user, self._password))
            resp.raise_for_status()
        except httpx.HTTPError:
            self._client.close()
            raise
        self._client.headers[SESSION_HEADER] = resp.json()
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            if SESSION_HEADER in self._client.headers:
                self._client.delete("/session")
        except httpx.HTTPError as exc:
            logger.warning("Tagging session logout failed: %s", exc)
        finally:
            self._client.close()

    def tag_ids_by_name(self, names: Sequence[str]) -> dict[str, str]:
        """Map tag id to tag name for every tag whose name is in *names*."""
        wanted = set(names)
        resp = self._client.get("/cis/tagging/tag")
        resp.raise_for_status()
        found: dict[str, str] = {}
        for tag_id in resp.json():
            detail = self._client.get(f"/cis/tagging/tag/{tag_id}")
            detail.raise_for_status()
            name = detail.json().get("name")
            if name in wanted:
                found[tag_id] = name
        missing = wanted.difference(found.values())
        if missing:
            logger.warning("Tags not defined on this vCenter: %s", ", ".join(sorted(missing)))
        return found

    def vm_tags(self, names: Sequence[str]) -> dict[str, list[str]]:
        """Return ``{vm_moid: [tag names]}`` for VMs carrying any of *names*."""
        tag_names = self.tag_ids_by_name(names)
        if not tag_names:
            return {}
        resp = self._client.post(
            "/cis/tagging/tag-association",
            params={"action": "list-attached-objects-on-tags"},
            json={"tag_ids": list(tag_names)},
        )
        resp.raise_for_status()
        attached: dict[str, list[str]] = {}
        for item in resp.json():
            name = tag_names.get(item.get("tag_id"))
            for obj in item.get("object_ids") or []:
                if obj.get("type") != "VirtualMachine":
                    continue
                attached.setdefault(obj["id"], [])
                if name and name not in attached[obj["id"]]:
                    attached[obj["id"]].append(name)
        return attached
