# ai_analysis.py
# Sends an image to the Gemini vision model and returns its raw text answer

import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass

import google.generativeai as genai
import requests

import settings
from errors import ProviderError, TransientProviderOverload, InvalidImageError

logger = logging.getLogger(__name__)

# --- Constants ---
MAX_ATTEMPTS = 3            # Total attempts, the first call included
RETRY_DELAY_SECONDS = 2.0   # Pause between attempts after an overload
OVERLOAD_STATUS = 503       # Provider status meaning "temporarily overloaded"
DEFAULT_MIME_TYPE = "image/jpeg"

LOCATION_PROMPT = """Analyze this image to determine the most precise location where it was taken. Look for:

1. Readable street signs, building numbers, or addresses
2. Distinctive landmarks, monuments, or recognizable buildings
3. License plates with regional identifiers
4. Business names, storefronts, or signage
5. Architectural styles specific to regions
6. Natural landmarks or geographical features
7. Public transportation signs or station names
8. Language on signs or text visible in the image

Provide the SINGLE most specific and accurate location you can determine. Format your response as a JSON array with one location string. Examples:
- ["1600 Pennsylvania Avenue NW, Washington, DC, USA"]
- ["Eiffel Tower, Champ de Mars, Paris, France"]
- ["Times Square, New York, NY, USA"]

If you cannot determine a specific location with reasonable confidence, return ["Unknown location - insufficient visual markers"].

Be as specific as possible (street address > landmark > neighborhood > city > country)."""

LIST_PROMPT = (
    "List all countries, cities, districts, street addresses, postal codes, and landmarks "
    "this photo satisfies in a string array in square brackets. "
    "If it doesn't satisfy any, return an empty array."
)

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?,(?P<data>.*)$", re.DOTALL)


@dataclass(frozen=True)
class AnalysisRequest:
    """One user submission: the image bytes and their MIME type."""
    image_bytes: bytes
    mime_type: str = DEFAULT_MIME_TYPE

    def encoded(self):
        """Base64 text form of the image, as it travels to the provider."""
        return base64.b64encode(self.image_bytes).decode("ascii")

    @classmethod
    def from_data_url(cls, image_data):
        """
        Builds a request from a browser data URL (data:image/png;base64,....)
        or from a bare base64 string.
        """
        if not isinstance(image_data, str) or not image_data.strip():
            raise InvalidImageError("Image data is required")

        mime_type = DEFAULT_MIME_TYPE
        payload = image_data.strip()
        match = _DATA_URL_PATTERN.match(payload)
        if match:
            mime_type = match.group("mime") or DEFAULT_MIME_TYPE
            payload = match.group("data")

        try:
            image_bytes = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidImageError("Image data is not valid base64")
        if not image_bytes:
            raise InvalidImageError("Image data is empty")
        return cls(image_bytes=image_bytes, mime_type=mime_type)


@dataclass(frozen=True)
class AnalysisResult:
    raw_text: str
    attempts: int = 1


def build_model(model_name=None):
    """Creates the Gemini model client. Fails before any network call if the key is missing."""
    api_key = settings.get_gemini_api_key()
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(model_name or settings.get_settings().gemini_model)


def is_overload_error(error):
    """True when the provider error carries the overload status (503)."""
    code = getattr(error, "code", None)
    if code == OVERLOAD_STATUS:
        return True
    return str(OVERLOAD_STATUS) in str(error)


def analyze_image(request, prompt=LOCATION_PROMPT, model=None, sleep=time.sleep):
    """
    Asks the vision model where the image was taken.

    Overload errors are retried up to MAX_ATTEMPTS with RETRY_DELAY_SECONDS
    between attempts; every other failure is raised at once as ProviderError.
    """
    if model is None:
        model = build_model()

    encoded_size = (len(request.encoded()) * 3) // 4
    logger.info(f"Submitting image for AI analysis ({request.mime_type}, base64 byte size: {encoded_size} bytes)")
    image_part = {"mime_type": request.mime_type, "data": request.image_bytes}

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            response = model.generate_content([prompt, image_part])
            text = response.text
        except Exception as e:
            logger.error(f"AI analysis attempt {attempt} failed: {e}")
            if is_overload_error(e):
                if attempt < MAX_ATTEMPTS:
                    logger.info(f"Retrying in {RETRY_DELAY_SECONDS:.0f}s... (attempt {attempt + 1}/{MAX_ATTEMPTS})")
                    sleep(RETRY_DELAY_SECONDS)
                    continue
                raise TransientProviderOverload() from e
            raise ProviderError(str(e) or None) from e

        logger.info(f"AI analysis succeeded on attempt {attempt}: {text[:100]!r}")
        return AnalysisResult(raw_text=text, attempts=attempt)


def analyze_image_url(url, mime_type=DEFAULT_MIME_TYPE, prompt=LIST_PROMPT, model=None,
                      sleep=time.sleep, session=None):
    """Downloads an image and runs it through analyze_image."""
    http = session or requests
    logger.info(f"Downloading image for analysis: {url}")
    try:
        response = http.get(url, timeout=settings.IMAGE_DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"Image download failed for {url}: {e}")
        raise ProviderError(f"Could not download image: {e}") from e

    request = AnalysisRequest(image_bytes=response.content, mime_type=mime_type)
    return analyze_image(request, prompt=prompt, model=model, sleep=sleep)
