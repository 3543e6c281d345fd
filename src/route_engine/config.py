"""Application configuration and settings management."""

from typing import Any, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEOPT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Route Optimization Engine"
    api_prefix: str = "/api"
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_max_retries: int = Field(default=3, ge=0)
    osrm_backoff_seconds: float = Field(default=1.0, ge=0.0)
    osrm_timeout_seconds: float = Field(default=10.0, gt=0.0)
    haversine_speed_mps: float = Field(
        default=13.4,
        gt=0.0,
        description="Average speed used to turn great-circle distance into travel time (30 mph).",
    )

    exact_max_nodes: int = Field(default=10, ge=1)
    local_search_max_nodes: int = Field(default=25, ge=1)
    local_search_pass_factor: int = Field(default=10, ge=1)
    genetic_population_cap: int = Field(default=200, ge=2)
    genetic_population_factor: int = Field(default=10, ge=1)
    genetic_elite_fraction: float = Field(default=0.05, ge=0.0, le=1.0)
    genetic_max_generations: int = Field(default=2000, ge=1)
    genetic_tournament_size: int = Field(default=3, ge=1)
    optimize_time_budget_seconds: float = Field(default=5.0, gt=0.0)
    reoptimize_time_budget_seconds: float = Field(default=2.0, gt=0.0)
    balanced_distance_weight: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Share of normalized distance in the 'balanced' objective; the rest is normalized duration.",
    )
    coalesce_concurrent_optimizations: bool = Field(
        default=True,
        description="Join an in-flight optimization for the same route instead of rejecting the request.",
    )
    optimizer_max_workers: int = Field(default=4, ge=1)

    default_route_start_seconds: int = Field(
        default=8 * 3600,
        ge=0,
        description="Departure time used when a route has no scheduled start (accepts 'HH:MM').",
    )
    default_stop_priority: int = Field(default=5, ge=1, le=10)
    default_service_duration_seconds: int = Field(default=300, ge=0)
    max_service_duration_seconds: int = Field(default=7200, ge=0)
    max_stops_per_route: int = Field(default=100, ge=1)

    @field_validator("default_route_start_seconds", mode="before")
    @classmethod
    def _parse_clock_from_env(cls, value: Any) -> int:
        """Accept either seconds since midnight or an 'HH:MM[:SS]' string."""
        if isinstance(value, str) and ":" in value:
            parts = [int(part) for part in value.strip().split(":")]
            while len(parts) < 3:
                parts.append(0)
            hours, minutes, seconds = parts[:3]
            return hours * 3600 + minutes * 60 + seconds
        return value


settings = Settings()
