"""Cluster configuration read from the GCE metadata server."""

from __future__ import annotations

import logging
import os
import urllib.request
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_DEFAULT_HOST = "169.254.169.254"
_HOST_ENV = "GCE_METADATA_HOST"
_FLAVOR_HEADER = "Metadata-Flavor"
_FLAVOR = "Google"


@dataclass(frozen=True)
class GceConfig:
    """All GCE related configuration parameters."""

    project: str = ""
    location: str = ""
    cluster: str = ""
    instance: str = ""


class MetadataClient:
    """Minimal client for the GCE instance metadata server."""

    def __init__(self, host: str | None = None, timeout: float = 2.0) -> None:
        self._explicit_host = host is not None
        self.host = host or os.environ.get(_HOST_ENV) or _DEFAULT_HOST
        self.timeout = timeout

    def _get(self, suffix: str) -> str:
        request = urllib.request.Request(
            f"http://{self.host}/computeMetadata/v1/{suffix}",
            headers={_FLAVOR_HEADER: _FLAVOR},
        )
        with urllib.request.urlopen(request, timeout=self.timeout) as response:
            return response.read().decode("utf-8")

    def on_gce(self) -> bool:
        """Report whether the metadata server is reachable."""
        if not self._explicit_host and os.environ.get(_HOST_ENV):
            return True
        request = urllib.request.Request(f"http://{self.host}", headers={_FLAVOR_HEADER: _FLAVOR})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.headers.get(_FLAVOR_HEADER) == _FLAVOR
        except OSError:
            return False

    def project_id(self) -> str:
        """Return the project ID of the instance."""
        return self._get("project/project-id").strip()

    def instance_attribute(self, name: str) -> str:
        """Return the raw value of a custom instance attribute."""
        return self._get(f"instance/attributes/{name}")

    def zone(self) -> str:
        """Return the zone the instance runs in."""
        return self._get("instance/zone").strip().rsplit("/", 1)[-1]

    def hostname(self) -> str:
        """Return the instance hostname."""
        return self._get("instance/hostname").strip()


def get_gce_config(client: MetadataClient | None = None) -> GceConfig:
    """Build a GceConfig from the metadata server; raises RuntimeError on failure."""
    client = client or MetadataClient()
    if not client.on_gce():
        raise RuntimeError("Not running on GCE.")

    try:
        project = client.project_id()
    except OSError as exc:
        raise RuntimeError(f"error while getting project id: {exc}") from exc

    try:
        location = client.instance_attribute("cluster-location")
    except OSError as exc:
        logger.warning("Failed to retrieve cluster location, falling back to local zone: %s", exc)
        try:
            location = client.zone()
        except OSError as zone_exc:
            raise RuntimeError(f"error while getting cluster location: {zone_exc}") from zone_exc

    try:
        cluster = client.instance_attribute("cluster-name")
    except OSError as exc:
        raise RuntimeError(f"error while getting cluster name: {exc}") from exc

    try:
        instance = client.hostname()
    except OSError as exc:
        raise RuntimeError(f"error while getting instance hostname: {exc}") from exc

    return GceConfig(
        project=project,
        location=location.strip(),
        cluster=cluster.strip(),
        instance=instance,
    )