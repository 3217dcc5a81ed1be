# location_geocoder.py
# Resolves candidate location strings to coordinates with Google Maps,
# falling back through progressively looser query variants.

import logging
import re
import time
from dataclasses import dataclass, field

import googlemaps

import settings
from errors import ConfigurationError, GeocodeExhausted

logger = logging.getLogger(__name__)

# --- Constants ---
HIGH_ACCURACY_TYPES = frozenset({"street_address", "premise", "route", "establishment"})
MIN_LOCATION_LENGTH = 3          # Cleaned candidates shorter than this are skipped
CANDIDATE_STAGGER_SECONDS = 0.7  # Pause between successive candidates (quota)

_EDGE_QUOTES_LEADING = re.compile(r"^[\"'\s]*")
_EDGE_QUOTES_TRAILING = re.compile(r"[\"'\s]*$")
_ENUMERATION = re.compile(r"^\d+\.\s*")
_DASH = re.compile(r"^-\s*")
_BULLET = re.compile(r"^[•\-*]\s*")


@dataclass(frozen=True)
class GeocodeAttempt:
    query_variant: str
    strategy_index: int
    region: str = None

    def describe(self):
        bias = f", region={self.region}" if self.region else ""
        return f"#{self.strategy_index + 1} '{self.query_variant}'{bias}"


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    accuracy_high: bool
    matched_types: frozenset = field(default_factory=frozenset)
    formatted_address: str = None
    query: str = None
    strategy_index: int = 0

    @property
    def accuracy_label(self):
        return "HIGH" if self.accuracy_high else "MODERATE"


def clean_location(text):
    """Strips quotes, whitespace and list markers the model sometimes leaves around a place name."""
    cleaned = str(text).strip()
    for pattern in (_EDGE_QUOTES_LEADING, _EDGE_QUOTES_TRAILING, _ENUMERATION, _DASH, _BULLET):
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def build_geocode_attempts(location, region=None, country_suffix=None):
    """The five query variants, most specific first."""
    config = settings.get_settings()
    region = region or config.region_bias
    country_suffix = country_suffix or config.country_suffix

    segments = [segment.strip() for segment in location.split(",")]
    variants = [
        (location, region),
        (location, None),
        (f"{location}, {country_suffix}", None),
        (segments[0], None),
        (f"{segments[0]}, {segments[-1]}", None),
    ]
    return [
        GeocodeAttempt(query_variant=query, strategy_index=index, region=bias)
        for index, (query, bias) in enumerate(variants)
    ]


def build_maps_client(api_key=None):
    api_key = api_key or settings.get_maps_api_key()
    try:
        return googlemaps.Client(key=api_key, timeout=settings.MAPS_REQUEST_TIMEOUT)
    except ValueError as e:
        # googlemaps rejects keys that are not shaped like a Maps API key.
        logger.error(f"GOOGLE_MAPS_API_KEY rejected by the Maps client: {e}")
        raise ConfigurationError(f"GOOGLE_MAPS_API_KEY is not a valid Maps API key: {e}") from e


def _result_from(top, location, attempt):
    point = top["geometry"]["location"]
    types = frozenset(top.get("types", []))
    return GeocodeResult(
        latitude=float(point["lat"]),
        longitude=float(point["lng"]),
        accuracy_high=bool(types & HIGH_ACCURACY_TYPES),
        matched_types=types,
        formatted_address=top.get("formatted_address"),
        query=location,
        strategy_index=attempt.strategy_index,
    )


def try_geocode(client, attempt):
    """One geocoding call. Returns the raw top result, or None if the provider gave nothing usable."""
    kwargs = {"region": attempt.region} if attempt.region else {}
    try:
        results = client.geocode(attempt.query_variant, **kwargs)
    except (googlemaps.exceptions.ApiError, googlemaps.exceptions.TransportError,
            googlemaps.exceptions.Timeout) as e:
        logger.warning(f"Geocoding failed with strategy {attempt.describe()}: {e}")
        return None
    if not results:
        logger.info(f"Geocoding returned no results with strategy {attempt.describe()}")
        return None
    return results[0]


def geocode_with_fallback(location, client=None, attempts=None):
    """
    Geocodes one cleaned location string. The attempts are tried strictly in
    order and the first usable result wins; GeocodeExhausted is raised when
    none succeeds.
    """
    if client is None:
        client = build_maps_client()
    attempts = attempts if attempts is not None else build_geocode_attempts(location)

    for attempt in attempts:
        top = try_geocode(client, attempt)
        if top is None:
            continue
        result = _result_from(top, location, attempt)
        logger.info(
            f"Geocoding success for '{location}' with strategy {attempt.describe()}: "
            f"{result.latitude:.6f}, {result.longitude:.6f} ({result.accuracy_label})"
        )
        return result

    raise GeocodeExhausted(f"All geocoding strategies failed for '{location}'")


def geocode_candidates(candidates, client=None, stagger_seconds=CANDIDATE_STAGGER_SECONDS, sleep=time.sleep):
    """
    Geocodes several candidates one after another, pausing between them.
    Candidates that are too short or that no strategy can place are dropped.
    """
    placed = []
    issued = 0
    for candidate in candidates:
        raw = getattr(candidate, "text", candidate)
        location = clean_location(raw)
        if len(location) < MIN_LOCATION_LENGTH:
            logger.info(f"Skipping candidate {raw!r}: too short after cleaning.")
            continue

        if client is None:
            client = build_maps_client()
        if issued and stagger_seconds:
            sleep(stagger_seconds)
        issued += 1

        logger.info(f"Attempting geocoding for location {issued}: '{location}'")
        try:
            placed.append(geocode_with_fallback(location, client=client))
        except GeocodeExhausted as e:
            logger.warning(f"Could not place candidate: {e.message}")

    logger.info(f"Placed {len(placed)} of {len(candidates)} candidate locations.")
    return placed
