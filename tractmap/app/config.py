from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

NYC_COUNTIES = {
    "061": "Manhattan",
    "047": "Brooklyn",
    "081": "Queens",
    "005": "Bronx",
    "085": "Staten Island",
}

# NYC borough codes (BoroCode) to county FIPS.
BOROUGH_TO_COUNTY = {
    "1": "061",
    "2": "005",
    "3": "047",
    "4": "081",
    "5": "085",
}


class Settings(BaseSettings):
    PROJECT_NAME: str = "NYC Tract Mobility Atlas"

    # Anonymous requests work, they are just rate limited harder.
    CENSUS_API_KEY: str | None = None
    ACS_YEAR: str = "2023"
    STATE_FIPS: str = "36"
    COUNTY_CODES: list[str] = list(NYC_COUNTIES.keys())

    BOUNDS_MIN_LON: float = -74.5
    BOUNDS_MAX_LON: float = -73.5
    BOUNDS_MIN_LAT: float = 40.4
    BOUNDS_MAX_LAT: float = 41.0

    STATISTICS_CACHE_TTL_SECONDS: float = 3600.0
    TRACT_CACHE_TTL_SECONDS: float = 1800.0

    HTTP_TIMEOUT_SECONDS: float = 20.0
    HTTP_RETRIES: int = 2
    SOURCE_TIMEOUT_SECONDS: float = 60.0

    LOCAL_BOUNDARY_PATH: str | None = None
    NYC_OPEN_DATA_TRACTS_URL: str = "https://data.cityofnewyork.us/resource/63ge-mke6.geojson"
    TIGERWEB_TRACTS_URL: str = (
        "https://tigerweb.geo.census.gov/arcgis/rest/services/TIGERweb/Tracts_Blocks/MapServer/0/query"
    )

    RESTRICT_TO_COUNTIES: bool = True
    EXCLUDE_WATER_TRACTS: bool = True

    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        origins = [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
        return origins or ["*"]


settings = Settings()
