"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time

import httpx

from ...config import settings
from ...models.domain import Coordinate
from .errors import OracleUnavailable

logger = logging.getLogger(__name__)


class OSRMClient:
    """Network-backed distance oracle using the OSRM route endpoint.

    Retries belong to this client; callers only ever see a final answer or
    ``OracleUnavailable``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.base_url = self.base_url.rstrip("/")
        self.profile = profile or settings.osrm_profile
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.timeout = timeout or settings.osrm_timeout_seconds
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        # One client per call; lookups run from solver worker threads.
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            transport=self._transport,
        )

    def lookup(self, origin: Coordinate, destination: Coordinate) -> tuple[float, float]:
        """Return (distance_meters, duration_seconds) for a single directed pair."""
        coordinate_str = (
            f"{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
        )
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"
        params = {"overview": "false", "steps": "false", "alternatives": "false"}

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    return _parse_route_response(response.json())
                except httpx.HTTPStatusError as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise OracleUnavailable(
                            f"OSRM returned HTTP {e.response.status_code} for {coordinate_str}",
                            origin=origin,
                            destination=destination,
                        ) from e
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM route request timed out after {self.max_retries} attempts: {e}")
                        raise OracleUnavailable(
                            f"OSRM request timed out for {coordinate_str}", origin=origin, destination=destination
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.NetworkError, OSError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise OracleUnavailable(
                            f"Failed to connect to OSRM service at {self.base_url}: {e}",
                            origin=origin,
                            destination=destination,
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError, KeyError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise OracleUnavailable(
                            f"OSRM route request failed for {coordinate_str}: {e}",
                            origin=origin,
                            destination=destination,
                        ) from e
                    time.sleep(self.backoff_seconds * attempt)
        finally:
            client.close()


def _parse_route_response(data: dict) -> tuple[float, float]:
    if data.get("code") != "Ok":
        raise ValueError(data.get("message", "Unknown OSRM route error"))
    routes = data.get("routes") or []
    if not routes:
        raise ValueError("OSRM response contained no routes.")
    first = routes[0]
    return float(first["distance"]), float(first["duration"])


def check_health(base_url: str | None = None, transport: httpx.BaseTransport | None = None) -> bool:
    """Check OSRM service health by routing between two fixed points."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    test_coords = "13.388860,52.517037;13.385983,52.496891"
    url = f"{base.rstrip('/')}/route/v1/{settings.osrm_profile}/{test_coords}"
    try:
        with httpx.Client(timeout=5.0, transport=transport) as client:
            response = client.get(url, params={"overview": "false"})
            response.raise_for_status()
            return response.json().get("code") == "Ok"
    except (httpx.HTTPError, ValueError):
        return False
