"""
Sun Times Service
=================

Sunrise / sunset lookups for sunset-relative schedules.
Uses the free sunrise-sunset.org API (no authentication, rate-limited).

Features:
- Sunset (and sunrise / civil dusk) for any date and location
- Caching to minimize API calls
- Seasonal fallback table if the API fails
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests

from neighborsync.domain.neighborhood import Coordinates

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.sunrise-sunset.org/json"

# Approximate sunrise/sunset by month for ~40 deg N, used when the API is down
_SEASONAL_TIMES = {
    1: (time(7, 20), time(17, 0)),
    2: (time(6, 50), time(17, 40)),
    3: (time(6, 10), time(18, 15)),
    4: (time(6, 25), time(19, 50)),
    5: (time(5, 50), time(20, 20)),
    6: (time(5, 30), time(20, 45)),
    7: (time(5, 45), time(20, 35)),
    8: (time(6, 15), time(20, 0)),
    9: (time(6, 45), time(19, 15)),
    10: (time(7, 15), time(18, 30)),
    11: (time(6, 50), time(16, 55)),
    12: (time(7, 15), time(16, 40)),
}


@dataclass
class SunTimes:
    """Sun times for a specific date and location (local wall-clock times)."""

    date: date
    sunrise: time
    sunset: time
    day_length_hours: float
    civil_twilight_end: Optional[time] = None
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        def time_str(t: Optional[time]) -> Optional[str]:
            return t.strftime("%H:%M") if t else None

        return {
            "date": self.date.isoformat(),
            "sunrise": time_str(self.sunrise),
            "sunset": time_str(self.sunset),
            "day_length_hours": self.day_length_hours,
            "civil_twilight_end": time_str(self.civil_twilight_end),
            "is_fallback": self.is_fallback,
        }


class SunTimesService:
    """
    Sunset provider backed by sunrise-sunset.org.

    Times come back from the API in UTC and are converted to ``timezone``
    (or the host's local zone when none is configured).
    """

    def __init__(
        self,
        timezone: Optional[str] = None,
        cache_hours: int = 24,
        api_url: str = DEFAULT_API_URL,
        request_timeout: float = 10.0,
    ):
        """
        Initialize sun times service.

        Args:
            timezone: Timezone string (e.g., 'America/New_York')
            cache_hours: Hours to cache sun times (default 24)
            api_url: sunrise-sunset.org compatible endpoint
            request_timeout: HTTP timeout in seconds
        """
        self.timezone = timezone
        self.cache_hours = cache_hours
        self.api_url = api_url
        self.request_timeout = request_timeout

        # {(lat, lng, date_str): (SunTimes, cached_at)}
        self._cache: Dict[Tuple[float, float, str], Tuple[SunTimes, datetime]] = {}

        logger.info("SunTimesService initialized (timezone=%s)", timezone or "local")

    def sunset_time(self, target_date: date, coordinates: Coordinates) -> Optional[time]:
        """Local sunset time for ``target_date`` at ``coordinates``."""
        sun_times = self.get_sun_times(target_date, coordinates)
        return sun_times.sunset if sun_times else None

    def get_sun_times(self, target_date: Optional[date], coordinates: Optional[Coordinates]) -> Optional[SunTimes]:
        """
        Get sun times for a specific date and location.

        Args:
            target_date: Date to get sun times for (default: today)
            coordinates: Location; None means no lookup is possible

        Returns:
            SunTimes (possibly a seasonal fallback) or None without a location
        """
        if coordinates is None:
            logger.warning("No location configured for sun times calculation")
            return None

        target_date = target_date or date.today()

        cache_key = (coordinates.latitude, coordinates.longitude, target_date.isoformat())
        cached = self._get_cached(cache_key)
        if cached:
            return cached

        sun_times = self._fetch_sun_times(coordinates, target_date)
        if sun_times and not sun_times.is_fallback:
            self._cache[cache_key] = (sun_times, datetime.now())
        return sun_times

    def _get_cached(self, cache_key: Tuple[float, float, str]) -> Optional[SunTimes]:
        if cache_key not in self._cache:
            return None

        sun_times, cached_at = self._cache[cache_key]
        if datetime.now() - cached_at > timedelta(hours=self.cache_hours):
            del self._cache[cache_key]
            return None

        return sun_times

    def _fetch_sun_times(self, coordinates: Coordinates, target_date: date) -> SunTimes:
        params = {
            "lat": coordinates.latitude,
            "lng": coordinates.longitude,
            "date": target_date.isoformat(),
            "formatted": 0,  # ISO 8601 output
        }
        try:
            response = requests.get(self.api_url, params=params, timeout=self.request_timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Failed to fetch sun times: %s", e)
            return self._fallback_sun_times(target_date)

        if data.get("status") != "OK":
            logger.error("Sun times API error: %s", data.get("status"))
            return self._fallback_sun_times(target_date)

        return self._parse_api_response(data.get("results", {}), target_date)

    def _to_local(self, iso_str: Optional[str]) -> Optional[time]:
        if not iso_str:
            return None
        try:
            dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            return None
        if self.timezone:
            try:
                return dt.astimezone(ZoneInfo(self.timezone)).time()
            except ZoneInfoNotFoundError:
                logger.debug("Invalid timezone '%s' for sun times; using host zone", self.timezone)
        return dt.astimezone().time()

    def _parse_api_response(self, results: Dict[str, Any], target_date: date) -> SunTimes:
        sunrise = self._to_local(results.get("sunrise"))
        sunset = self._to_local(results.get("sunset"))

        day_length = 0.0
        api_day_length = results.get("day_length")
        if isinstance(api_day_length, (int, float)):
            day_length = api_day_length / 3600.0
        elif sunrise and sunset:
            sunrise_minutes = sunrise.hour * 60 + sunrise.minute
            sunset_minutes = sunset.hour * 60 + sunset.minute
            if sunset_minutes > sunrise_minutes:
                day_length = (sunset_minutes - sunrise_minutes) / 60.0

        return SunTimes(
            date=target_date,
            sunrise=sunrise or time(6, 0),
            sunset=sunset or time(18, 0),
            day_length_hours=day_length,
            civil_twilight_end=self._to_local(results.get("civil_twilight_end")),
        )

    def _fallback_sun_times(self, target_date: date) -> SunTimes:
        """Approximate sun times for temperate latitudes, by month."""
        sunrise, sunset = _SEASONAL_TIMES.get(target_date.month, (time(6, 0), time(18, 0)))
        day_length = ((sunset.hour * 60 + sunset.minute) - (sunrise.hour * 60 + sunrise.minute)) / 60.0
        return SunTimes(
            date=target_date,
            sunrise=sunrise,
            sunset=sunset,
            day_length_hours=day_length,
            is_fallback=True,
        )

    def clear_cache(self):
        self._cache.clear()
        logger.info("Sun times cache cleared")
