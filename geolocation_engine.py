# geolocation_engine.py
# Core flow for the AI-Powered Image Geolocation Engine:
# image -> vision model answer -> candidate locations -> geocoded markers -> map view

import io
import logging
import time
from dataclasses import dataclass, field, replace
from urllib.parse import urlencode

from PIL import Image

import settings
from ai_analysis import AnalysisRequest, analyze_image
from errors import InvalidImageError
from location_geocoder import geocode_candidates
from location_parser import parse_location_candidates

logger = logging.getLogger(__name__)

# --- Constants ---
WORLD_CENTER = (20.0, 0.0)   # Initial view before anything is placed
WORLD_ZOOM = 2
HIGH_ACCURACY_ZOOM = 16      # Street/building level
MODERATE_ACCURACY_ZOOM = 12  # City level
STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"
STATIC_MAP_SIZE = "600x300"
VISION_MIME_TYPES = {"image/png", "image/jpeg", "image/webp", "image/heic", "image/heif"}
FORMAT_MIME_OVERRIDES = {"MPO": "image/jpeg"}  # Multi-picture JPEGs from phone cameras


# --- Map state ---
# Marker and view state is passed in and handed back; the renderer keeps it
# between requests.

@dataclass(frozen=True)
class Marker:
    title: str
    latitude: float
    longitude: float
    accuracy_high: bool
    formatted_address: str = None
    types: tuple = ()

    @classmethod
    def from_geocode(cls, result):
        return cls(
            title=result.query,
            latitude=result.latitude,
            longitude=result.longitude,
            accuracy_high=result.accuracy_high,
            formatted_address=result.formatted_address,
            types=tuple(sorted(result.matched_types)),
        )

    def to_dict(self):
        return {
            "title": self.title,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": "HIGH" if self.accuracy_high else "MODERATE",
            "address": self.formatted_address,
            "types": list(self.types),
        }


@dataclass(frozen=True)
class MapState:
    center_lat: float = WORLD_CENTER[0]
    center_lng: float = WORLD_CENTER[1]
    zoom: int = WORLD_ZOOM
    markers: tuple = field(default_factory=tuple)

    def to_dict(self):
        return {
            "center": {"lat": self.center_lat, "lng": self.center_lng},
            "zoom": self.zoom,
            "markers": [marker.to_dict() for marker in self.markers],
        }


def place_markers(state, markers):
    """
    Replaces the markers of a map state. The view follows the first
    high-accuracy marker, else the first marker; with no markers the
    previous view is kept.
    """
    markers = tuple(markers)
    if not markers:
        return replace(state, markers=())

    focus = next((marker for marker in markers if marker.accuracy_high), markers[0])
    zoom = HIGH_ACCURACY_ZOOM if focus.accuracy_high else MODERATE_ACCURACY_ZOOM
    return MapState(center_lat=focus.latitude, center_lng=focus.longitude, zoom=zoom, markers=markers)


def static_map_url(state, api_key):
    """Google Static Maps link showing the current view and its markers."""
    if not api_key:
        return None
    params = [
        ("center", f"{state.center_lat},{state.center_lng}"),
        ("zoom", state.zoom),
        ("size", STATIC_MAP_SIZE),
        ("maptype", "roadmap"),
    ]
    for marker in state.markers:
        label = "H" if marker.accuracy_high else "M"
        params.append(("markers", f"color:red|label:{label}|{marker.latitude},{marker.longitude}"))
    params.append(("key", api_key))
    return f"{STATIC_MAP_URL}?{urlencode(params)}"


# --- Image intake ---
def verify_image(request):
    """
    Checks the image bytes with Pillow. The MIME type Pillow reports wins
    over the one the request was built with, as long as the vision model
    accepts it.
    """
    image = None
    try:
        image = Image.open(io.BytesIO(request.image_bytes))
        image_format = image.format
        image.verify()
    except Image.UnidentifiedImageError:
        logger.warning("Submitted payload is not a recognised image format.")
        raise InvalidImageError("Image data is not a recognised image format")
    except (OSError, SyntaxError) as e:
        logger.warning(f"Submitted image is corrupt: {e}")
        raise InvalidImageError("Image data is corrupt")
    finally:
        if image is not None:
            image.close()

    detected = FORMAT_MIME_OVERRIDES.get(image_format) or Image.MIME.get(image_format)
    if detected in VISION_MIME_TYPES:
        mime_type = detected
    else:
        mime_type = request.mime_type
        logger.warning(f"Pillow format {image_format} ({detected}) is not accepted by the vision model; "
                       f"keeping declared type {mime_type}.")
    logger.info(f"Image format identified by Pillow: {image_format} ({mime_type})")
    return replace(request, mime_type=mime_type)


def load_analysis_request(image_data):
    """Decodes a submitted data URL / base64 image."""
    return verify_image(AnalysisRequest.from_data_url(image_data))


def load_image_file(image_path):
    """Reads a local image file into a verified analysis request."""
    logger.info(f"Opening image: {image_path}")
    try:
        with open(image_path, 'rb') as f:
            content = f.read()
    except OSError as e:
        raise InvalidImageError(f"Could not read image file: {e}")
    return verify_image(AnalysisRequest(image_bytes=content))


# --- Main Processing Function ---
def process_image_geolocation(request, map_state=None, model=None, maps_client=None,
                              all_candidates=False, sleep=time.sleep):
    """
    Runs one submission through the whole flow and returns
    (results dict, new MapState).

    Provider and configuration errors propagate and end the flow. An answer
    with no usable location, or candidates that cannot be geocoded, give a
    result with success=False and no markers.
    """
    logger.info("--- Starting Geolocation Engine ---")
    map_state = map_state or MapState()

    # --- Stage 1: Vision model ---
    logger.info("--- Stage 1: AI Analysis ---")
    analysis = analyze_image(request, model=model, sleep=sleep)

    # --- Stage 2: Candidate extraction ---
    logger.info("--- Stage 2: Parsing Candidate Locations ---")
    candidates = parse_location_candidates(analysis.raw_text)
    results = {
        "success": False,
        "ai_output": analysis.raw_text,
        "attempts": analysis.attempts,
        "locations": [candidate.text for candidate in candidates],
        "primary_location": candidates[0].text if candidates else None,
        "markers": [],
        "map": map_state.to_dict(),
        "map_url": None,
    }
    if not candidates:
        logger.warning("No valid locations found in AI response; map left unchanged.")
        return results, map_state

    # --- Stage 3: Geocoding ---
    logger.info("--- Stage 3: Geocoding ---")
    targets = candidates if all_candidates else candidates[:1]
    # Without an injected client, geocode_candidates builds one (and needs the
    # key) only once a candidate survives cleaning.
    placed = geocode_candidates(targets, client=maps_client, sleep=sleep)

    markers = [Marker.from_geocode(result) for result in placed]
    new_state = place_markers(map_state, markers)
    maps_api_key = settings.get_maps_api_key() if markers and maps_client is None else None
    results.update({
        "success": bool(markers),
        "markers": [marker.to_dict() for marker in markers],
        "map": new_state.to_dict(),
        "map_url": static_map_url(new_state, maps_api_key) if markers else None,
    })

    logger.info(f"--- Geolocation Engine Finished. Success: {results['success']}, Markers: {len(markers)} ---")
    return results, new_state
