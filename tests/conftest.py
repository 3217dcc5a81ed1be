import sys
from pathlib import Path

import pytest

# Ensure the project modules are importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import settings  # noqa: E402

ENV_VARS = (
    "GEMINI_API_KEY",
    "GOOGLE_MAPS_API_KEY",
    "GEMINI_MODEL",
    "GEOCODE_REGION_BIAS",
    "GEOCODE_COUNTRY_SUFFIX",
    "MAX_UPLOAD_BYTES",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # A developer's .env must not leak keys into the tests.
    monkeypatch.setattr(settings, "load_dotenv", lambda *args, **kwargs: False)
    settings.get_settings.cache_clear()
    yield
    settings.get_settings.cache_clear()


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """Stands in for genai.GenerativeModel; each outcome is a text or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def generate_content(self, contents):
        self.calls.append(contents)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


class FakeMapsClient:
    """Stands in for googlemaps.Client; each outcome is a result list or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def geocode(self, address, **kwargs):
        self.calls.append((address, kwargs))
        outcome = self.outcomes.pop(0) if self.outcomes else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def geocode_hit(lat, lng, types, address="Somewhere"):
    return [{
        "geometry": {"location": {"lat": lat, "lng": lng}},
        "types": list(types),
        "formatted_address": address,
    }]


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()
