"""
=============================================================================
WEATHER.PY — Weather Client + Activity Classification
=============================================================================
Wraps OpenWeatherMap "current conditions" (imperial units, US zip codes).

  get_current(zip)  → WeatherConditions (cached per zip for a TTL window)
  classify(conds)   → WeatherClassification (outdoor / indoor friendly + hints)

Errors are raised with the shared taxonomy:
  configuration       → no API key
  validation          → malformed zip
  not_found           → the API does not know the zip (404)
  rate_limit          → 429
  service_unavailable → 5xx
  network             → anything else (timeouts, DNS, odd status codes)

Only successful answers are cached. A cache hit returns exactly what the
original call returned.
"""

import logging
import re
import time
from typing import Callable, Optional

import httpx
from pydantic import BaseModel

from errors import (
    ConfigurationError, ValidationFailed, NotFound,
    RateLimited, ServiceUnavailable, NetworkError
)

logger = logging.getLogger("liferpg.weather")

BASE_URL = "https://api.openweathermap.org/data/2.5/weather"
ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")


class WeatherConditions(BaseModel):
    zip_code: str
    location: str = ""
    temperature: float
    # °F
    feels_like: Optional[float] = None
    humidity: Optional[int] = None
    wind_speed: float = 0
    # mph
    condition: str
    # "Clear", "Rain", "Snow", "Clouds"...
    description: str = ""


class WeatherClassification(BaseModel):
    condition: str
    temperature: float
    is_outdoor_friendly: bool
    is_indoor_friendly: bool
    suggestion_keywords: list[str] = []
    recommended_activities: list[str] = []
    avoid_activities: list[str] = []


# =============================================================================
# ===================== CLASSIFICATION ========================================
# =============================================================================

def classify(weather: WeatherConditions) -> WeatherClassification:
    """
    Outdoor-friendly unless something rules it out:
      - below 32°F or above 95°F
      - rain, storm or snow (whatever the temperature)
      - wind above 20 mph
    Indoor activities are always possible.
    """
    temp = weather.temperature
    condition = weather.condition.lower()
    description = weather.description.lower()

    outdoor = True
    keywords, recommended, avoid = [], [], []

    # ── Temperature ──
    if temp < 32:
        outdoor = False
        keywords += ["indoor", "cozy", "warm"]
        avoid += ["swimming", "outdoor sports"]
    elif temp > 95:
        outdoor = False
        keywords += ["indoor", "cooling"]
        avoid += ["hiking", "running", "outdoor exercise"]
    elif 65 <= temp <= 85:
        keywords += ["outdoor", "nature"]
        recommended += ["walking", "hiking", "outdoor sports"]

    # ── Condition ──
    if any(word in condition for word in ("rain", "drizzle", "storm")):
        outdoor = False
        keywords += ["indoor", "reading", "creative projects"]
        avoid += ["hiking", "picnics"]
        recommended += ["cooking", "organizing", "indoor hobbies"]
    elif "snow" in condition:
        outdoor = False
        keywords += ["indoor", "warm beverages"]
        avoid += ["cycling", "running"]
    elif "clear" in condition or "sun" in condition:
        keywords += ["outdoor", "adventure", "vitamin D"]
        recommended += ["gardening", "outdoor exercise"]
    elif "cloud" in condition:
        keywords += ["outdoor", "comfortable weather"]
        recommended += ["sightseeing"]

    # ── Wind ──
    if weather.wind_speed > 20:
        outdoor = False
        keywords += ["indoor", "protected areas"]
        avoid += ["cycling", "outdoor sports"]

    # ── Visibility ──
    if "fog" in description or "mist" in description:
        avoid += ["driving", "cycling"]

    return WeatherClassification(
        condition=weather.condition,
        temperature=temp,
        is_outdoor_friendly=outdoor,
        is_indoor_friendly=True,
        suggestion_keywords=list(dict.fromkeys(keywords)),
        recommended_activities=list(dict.fromkeys(recommended)),
        avoid_activities=list(dict.fromkeys(avoid)),
    )


# =============================================================================
# ===================== CLIENT ================================================
# =============================================================================

class WeatherService:
    """
    Built once by create_app() and shared by every request.

    `http_client` and `clock` are injectable so tests can use
    httpx.MockTransport and a fake clock.
    """

    def __init__(
        self,
        api_key: Optional[str],
        ttl_seconds: int = 300,
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.ttl_seconds = ttl_seconds
        self._http = http_client or httpx.Client(timeout=timeout)
        self._clock = clock
        self._cache: dict[str, tuple[float, WeatherConditions]] = {}
        # zip → (stored_at, conditions)

    def close(self):
        self._http.close()

    def clear_cache(self):
        self._cache.clear()

    def _cached(self, zip_code: str) -> Optional[WeatherConditions]:
        hit = self._cache.get(zip_code)
        if hit is None:
            return None
        stored_at, conditions = hit
        if self._clock() - stored_at >= self.ttl_seconds:
            self._cache.pop(zip_code, None)
            return None
        return conditions.model_copy(deep=True)

    def get_current(self, zip_code: str) -> WeatherConditions:
        if not self.api_key:
            raise ConfigurationError("Weather service is not configured (WEATHER_API_KEY missing)")

        zip_code = (zip_code or "").strip()
        if not ZIP_RE.match(zip_code):
            raise ValidationFailed("Invalid zip code format (expected 12345 or 12345-6789)")

        cached = self._cached(zip_code)
        if cached is not None:
            logger.debug(f"Weather cache hit for {zip_code}")
            return cached

        params = {
            "zip": f"{zip_code[:5]},US",
            "appid": self.api_key,
            "units": "imperial",
        }
        try:
            response = self._http.get(BASE_URL, params=params)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Weather request failed for {zip_code}: {type(e).__name__}")
            raise NetworkError("Could not reach the weather service") from e

        self._raise_for_status(response, zip_code)

        try:
            data = response.json()
            conditions = WeatherConditions(
                zip_code=zip_code,
                location=data.get("name", ""),
                temperature=data["main"]["temp"],
                feels_like=data["main"].get("feels_like"),
                humidity=data["main"].get("humidity"),
                wind_speed=(data.get("wind") or {}).get("speed", 0),
                condition=data["weather"][0]["main"],
                description=data["weather"][0].get("description", ""),
            )
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise NetworkError("Unexpected response from the weather service") from e

        self._cache[zip_code] = (self._clock(), conditions)
        logger.info(f"🌤️ Weather for {zip_code}: {conditions.condition}, {conditions.temperature}°F")
        return conditions.model_copy(deep=True)

    @staticmethod
    def _raise_for_status(response: httpx.Response, zip_code: str):
        code = response.status_code
        if 200 <= code < 300:
            return
        if code == 404:
            raise NotFound(f"Location not found for zip code {zip_code}")
        if code == 429:
            raise RateLimited("Weather service rate limit reached, try again later")
        if code >= 500:
            raise ServiceUnavailable("Weather service is temporarily unavailable")
        raise NetworkError(f"Weather service answered with status {code}")

    def get_classified(self, zip_code: str) -> tuple[WeatherConditions, WeatherClassification]:
        conditions = self.get_current(zip_code)
        return conditions, classify(conditions)
