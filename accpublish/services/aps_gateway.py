"""
Autodesk Data Management gateway for publishing cloud-workshared models.

Resolves item URNs to version URNs and sends the C4R publish command. Projects
and items live in one of several regional deployments and there is no
cross-region lookup, so every call discovers the region by probing. A known
region is only used as a hint for the probe order.

Two Autodesk quirks are handled here:
- 404 on a regional endpoint means "not in this region": the next region is tried.
- Some endpoints want project ids without the "b." prefix: on 404 the call is
  repeated once with the prefix stripped.
"""

from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import quote

import httpx

from accpublish.config import PublishConfig, get_config
from accpublish.core.errors import ResolutionError, RetryableStatusError
from accpublish.core.logging import get_logger
from accpublish.core.retry import RetryConfig, retry_with_backoff
from accpublish.schemas.publish import is_lineage_urn, is_version_urn

logger = get_logger(__name__)

JSONAPI_CONTENT_TYPE = "application/vnd.api+json"


def region_label(region: str | None) -> str:
    return region.upper() if region else "N/A"


def safe_body(response: httpx.Response, limit: int = 1200) -> str:
    """Response body truncated for logs and error messages."""
    try:
        return response.text[:limit]
    except Exception:
        return "<unreadable>"


def _quote(value: str) -> str:
    return quote(value, safe="")


@dataclass
class ResolvedVersion:
    """Version URN an item resolved to, and the region it was found in."""

    version_urn: str
    region: str | None


@dataclass
class PublishOutcome:
    """Final outcome of a publish command across regions."""

    outcome: Literal["accepted", "failed"]
    http: int
    region: str | None
    body: Any = field(default=None, repr=False)

    @property
    def accepted(self) -> bool:
        return self.outcome == "accepted"


class ApsGateway:
    """Region-aware client for the Data Management v2 endpoints used by publishing."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        config: PublishConfig | None = None,
    ) -> None:
        self.client = client
        self.access_token = access_token
        self.config = config or get_config().publish
        # (region, project id as given) -> id form that region answers to
        self._project_ids: dict[tuple[str, str], str] = {}

    # --- URLs and ids -----------------------------------------------------

    @property
    def regions(self) -> list[str]:
        return self.config.regions

    def region_order(self, hint: str | None) -> list[str]:
        """Hint first (when supported), then the remaining regions in fixed order."""
        hint = hint.lower() if hint else None
        if hint and hint in self.regions:
            return [hint, *[r for r in self.regions if r != hint]]
        return list(self.regions)

    def project_url(self, region: str, project_id: str) -> str:
        return f"{self.config.base_url}/data/v2/regions/{region}/projects/{_quote(project_id)}"

    def strip_prefix(self, value: str) -> str:
        for prefix in self.config.removable_id_prefixes:
            if value.startswith(prefix):
                return value[len(prefix) :]
        return value

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        region: str,
        project_id: str,
        path: str = "",
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Call a project-scoped endpoint, retrying once without the id prefix on 404.

        The id form a region accepted is remembered, so later calls (and
        retries) to that region go straight to it.
        """
        headers = self._headers(kwargs.pop("headers", None))
        timeout = timeout if timeout is not None else self.config.item_timeout_seconds

        async def send(pid: str) -> httpx.Response:
            return await self.client.request(
                method,
                self.project_url(region, pid) + path,
                headers=headers,
                timeout=timeout,
                **kwargs,
            )

        key = (region, project_id)
        if key in self._project_ids:
            return await send(self._project_ids[key])

        response = await send(project_id)
        if response.is_success:
            self._project_ids[key] = project_id
        elif response.status_code == 404:
            stripped = self.strip_prefix(project_id)
            if stripped != project_id:
                logger.bind(region=region, project_id=project_id, path=path).debug(
                    "aps_retry_without_prefix"
                )
                response = await send(stripped)
                if response.status_code != 404:
                    self._project_ids[key] = stripped
        return response

    # --- Region discovery ---------------------------------------------------

    async def detect_region(self, project_id: str) -> str | None:
        """Probe each region for the project; first 200 wins, None if none answer."""
        for region in self.regions:
            try:
                response = await self._request(
                    "GET", region, project_id, timeout=self.config.probe_timeout_seconds
                )
            except httpx.HTTPError as e:
                logger.bind(region=region, project_id=project_id, error=str(e)).warning(
                    "aps_region_probe_error"
                )
                continue
            if response.status_code == 200:
                logger.bind(region=region_label(region), project_id=project_id).info(
                    "aps_region_detected"
                )
                return region

        logger.bind(project_id=project_id, regions=self.regions).warning("aps_region_not_detected")
        return None

    async def item_exists(self, region: str, project_id: str, item_urn: str) -> bool:
        try:
            response = await self._request(
                "HEAD",
                region,
                project_id,
                f"/items/{_quote(item_urn)}",
                timeout=self.config.probe_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.bind(region=region, item=item_urn, error=str(e)).warning("aps_item_probe_error")
            return False
        return response.status_code == 200

    async def find_item_region(
        self, project_id: str, item_urn: str, hint: str | None = None
    ) -> str | None:
        for region in self.region_order(hint):
            if await self.item_exists(region, project_id, item_urn):
                return region
        return None

    # --- Version resolution -------------------------------------------------

    async def _tip_from_item(self, region: str, project_id: str, item_urn: str) -> str:
        response = await self._request("GET", region, project_id, f"/items/{_quote(item_urn)}")
        if response.status_code != 200:
            raise ResolutionError(
                f"items GET {region} {response.status_code}: {safe_body(response)}"
            )

        payload = response.json()
        tip = ((payload.get("data") or {}).get("relationships") or {}).get("tip") or {}
        tip_id = (tip.get("data") or {}).get("id")
        if tip_id:
            return tip_id

        for entry in payload.get("included") or []:
            if isinstance(entry, dict) and entry.get("type") == "versions" and entry.get("id"):
                return entry["id"]

        raise ResolutionError("Tip version not found in item details")

    async def _latest_from_versions(self, region: str, project_id: str, item_urn: str) -> str:
        response = await self._request(
            "GET", region, project_id, f"/items/{_quote(item_urn)}/versions"
        )
        if response.status_code != 200:
            raise ResolutionError(
                f"versions GET {region} {response.status_code}: {safe_body(response)}"
            )

        versions = response.json().get("data") or []
        if not versions:
            raise ResolutionError("No versions returned")
        # Most recent first
        return versions[0]["id"]

    async def resolve_to_version(
        self, project_id: str, identifier: str, hint: str | None = None
    ) -> ResolvedVersion:
        """
        Resolve an item identifier to the URN of its latest version.

        Version URNs are returned unchanged with the hint as region. Lineage
        URNs are looked up in the hinted region first, then in the others, and
        resolved through the item's tip relationship with the versions list as
        fallback.

        Raises:
            ResolutionError: Item not found in any region, or no version found
        """
        if is_version_urn(identifier):
            logger.bind(item=identifier).debug("aps_input_already_version")
            return ResolvedVersion(version_urn=identifier, region=hint)

        if not is_lineage_urn(identifier):
            logger.bind(item=identifier).warning("aps_unexpected_urn_format")

        region = await self.find_item_region(project_id, identifier, hint)
        if region is None:
            raise ResolutionError(
                f"Item not found in any region ({'/'.join(map(region_label, self.regions))})"
            )

        try:
            version_urn = await self._tip_from_item(region, project_id, identifier)
            logger.bind(item=identifier, version=version_urn, region=region).info(
                "aps_resolved_via_tip"
            )
        except (ResolutionError, httpx.HTTPError, ValueError) as tip_error:
            logger.bind(item=identifier, error=str(tip_error)).warning("aps_tip_failed_try_versions")
            try:
                version_urn = await self._latest_from_versions(region, project_id, identifier)
            except (ResolutionError, httpx.HTTPError, ValueError, KeyError) as e:
                raise ResolutionError(f"Unable to resolve version: {e}") from e
            logger.bind(item=identifier, version=version_urn, region=region).info(
                "aps_resolved_via_versions"
            )

        return ResolvedVersion(version_urn=version_urn, region=region)

    # --- Publish command ----------------------------------------------------

    def build_command(self, version_urn: str) -> dict[str, Any]:
        return {
            "jsonapi": {"version": "1.0"},
            "data": {
                "type": "commands",
                "attributes": {
                    "extension": {"type": self.config.command_type, "version": "1.0.0"},
                },
                "relationships": {
                    "resources": {"data": [{"type": "versions", "id": version_urn}]},
                },
            },
        }

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.config.max_retries + 1,
            backoff_base=self.config.retry_base_seconds,
            backoff_max=self.config.retry_backoff_max_seconds,
            jitter=False,
            retryable_exceptions=(httpx.TransportError, RetryableStatusError),
        )

    async def _publish_in_region(
        self, region: str, project_id: str, version_urn: str
    ) -> PublishOutcome:
        """Send the command to one region, retrying 5xx, 429 and network errors."""
        payload = self.build_command(version_urn)

        async def attempt() -> httpx.Response:
            response = await self._request(
                "POST",
                region,
                project_id,
                "/commands",
                json=payload,
                headers={"Content-Type": JSONAPI_CONTENT_TYPE, "Accept": JSONAPI_CONTENT_TYPE},
            )
            if response.status_code >= 500 or response.status_code == 429:
                raise RetryableStatusError(response.status_code, safe_body(response))
            return response

        try:
            response = await retry_with_backoff(
                attempt,
                config=self.retry_config(),
                operation_name=f"publish:{region}:{version_urn}",
            )
        except RetryableStatusError as e:
            return PublishOutcome(outcome="failed", http=e.upstream_status, region=region, body=e.body)
        except httpx.TransportError as e:
            return PublishOutcome(outcome="failed", http=0, region=region, body=str(e))

        try:
            body = response.json()
        except ValueError:
            body = safe_body(response)

        if 200 <= response.status_code < 300:
            return PublishOutcome(outcome="accepted", http=response.status_code, region=region, body=body)
        return PublishOutcome(outcome="failed", http=response.status_code, region=region, body=body)

    async def publish(
        self, project_id: str, version_urn: str, hint: str | None = None
    ) -> PublishOutcome:
        """
        Publish a version, trying the hinted region first.

        2xx accepts. A 404 moves on to the next region, as does exhausting the
        retries on transient errors. Any other 4xx stops immediately.
        """
        order = self.region_order(hint)
        logger.bind(
            version=version_urn,
            command=self.config.command,
            regions=[region_label(r) for r in order],
        ).debug("aps_publish_region_order")

        last: PublishOutcome | None = None
        for region in order:
            outcome = await self._publish_in_region(region, project_id, version_urn)
            last = outcome

            if outcome.accepted:
                logger.bind(
                    region=region_label(region),
                    project_id=project_id,
                    version=version_urn,
                    http=outcome.http,
                ).info("aps_publish_accepted")
                return outcome

            if outcome.http == 404:
                logger.bind(region=region_label(region), version=version_urn).warning(
                    "aps_publish_not_in_region"
                )
                continue

            if 400 <= outcome.http < 500 and outcome.http != 429:
                logger.bind(
                    region=region_label(region),
                    version=version_urn,
                    http=outcome.http,
                    body=str(outcome.body)[:1200],
                ).warning("aps_publish_rejected")
                return outcome

            logger.bind(region=region_label(region), version=version_urn, http=outcome.http).warning(
                "aps_publish_retries_exhausted"
            )

        logger.bind(version=version_urn, regions=[region_label(r) for r in order]).error(
            "aps_publish_failed_all_regions"
        )
        if last is None:
            return PublishOutcome(outcome="failed", http=0, region=None)
        return last

    # --- Diagnostics ----------------------------------------------------------

    async def get_version_details(
        self, project_id: str, version_urn: str, hint: str | None = None
    ) -> dict[str, Any]:
        """Version attributes from the first region that knows the version."""
        last_status = 0
        for region in self.region_order(hint):
            response = await self._request(
                "GET", region, project_id, f"/versions/{_quote(version_urn)}"
            )
            last_status = response.status_code
            if response.status_code == 404:
                continue
            if response.status_code != 200:
                break

            data = response.json().get("data") or {}
            attributes = data.get("attributes") or {}
            return {
                "version_urn": version_urn,
                "project_id": project_id,
                "region": region,
                "type": data.get("type"),
                "display_name": attributes.get("displayName"),
                "create_time": attributes.get("createTime"),
                "last_modified_time": attributes.get("lastModifiedTime"),
                "version_number": attributes.get("versionNumber"),
                "extension": attributes.get("extension"),
                "storage_size": attributes.get("storageSize"),
                "file_type": attributes.get("fileType"),
                "relationships": sorted((data.get("relationships") or {}).keys()),
            }

        raise ResolutionError(f"Unable to read version details: HTTP {last_status}")

    async def list_folder_items(
        self, project_id: str, folder_urn: str | None = None, limit: int = 50
    ) -> dict[str, Any]:
        """List a folder's contents (the project root folder when none is given)."""
        region = await self.detect_region(project_id)
        if region is None:
            raise ResolutionError("Unable to determine the project's region")

        if not folder_urn:
            response = await self._request("GET", region, project_id)
            if response.status_code == 200:
                relationships = (response.json().get("data") or {}).get("relationships") or {}
                folder_urn = ((relationships.get("rootFolder") or {}).get("data") or {}).get("id")
            if not folder_urn:
                raise ResolutionError("Root folder not found")

        response = await self._request(
            "GET",
            region,
            project_id,
            f"/folders/{_quote(folder_urn)}/contents",
            params={"page[limit]": limit},
        )
        if response.status_code != 200:
            raise ResolutionError(f"Unable to list folder contents: HTTP {response.status_code}")

        items = [
            {
                "id": entry.get("id"),
                "type": entry.get("type"),
                "name": (entry.get("attributes") or {}).get("displayName"),
                "create_time": (entry.get("attributes") or {}).get("createTime"),
                "modify_time": (entry.get("attributes") or {}).get("lastModifiedTime"),
                "extension": ((entry.get("attributes") or {}).get("extension") or {}).get("type"),
            }
            for entry in response.json().get("data") or []
        ]
        return {
            "project_id": project_id,
            "region": region,
            "folder_urn": folder_urn,
            "item_count": len(items),
            "items": items,
        }
