import base64
import io
from urllib.parse import parse_qs, urlparse

import pytest
from PIL import Image

from ai_analysis import AnalysisRequest
from conftest import FakeMapsClient, FakeModel, geocode_hit
from errors import ConfigurationError, InvalidImageError, TransientProviderOverload
from geolocation_engine import (
    MapState,
    Marker,
    load_analysis_request,
    load_image_file,
    place_markers,
    process_image_geolocation,
    static_map_url,
)

REQUEST = AnalysisRequest(image_bytes=b"image", mime_type="image/jpeg")


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def marker(title, lat, lng, high):
    return Marker(title=title, latitude=lat, longitude=lng, accuracy_high=high)


def test_default_map_state_is_world_view():
    state = MapState()
    assert (state.center_lat, state.center_lng, state.zoom) == (20.0, 0.0, 2)
    assert state.markers == ()


def test_place_markers_centres_on_high_accuracy_marker():
    markers = [marker("City", 1.0, 2.0, False), marker("Building", 3.0, 4.0, True)]

    state = place_markers(MapState(), markers)

    assert (state.center_lat, state.center_lng, state.zoom) == (3.0, 4.0, 16)
    assert state.markers == tuple(markers)


def test_place_markers_without_high_accuracy_uses_first_marker():
    state = place_markers(MapState(), [marker("City", 1.0, 2.0, False), marker("Town", 5.0, 6.0, False)])
    assert (state.center_lat, state.center_lng, state.zoom) == (1.0, 2.0, 12)


def test_place_markers_with_nothing_keeps_view_and_clears_markers():
    previous = MapState(center_lat=1.0, center_lng=2.0, zoom=12, markers=(marker("Old", 1.0, 2.0, False),))

    state = place_markers(previous, [])

    assert (state.center_lat, state.center_lng, state.zoom) == (1.0, 2.0, 12)
    assert state.markers == ()


def test_static_map_url():
    state = place_markers(MapState(), [marker("Eiffel Tower", 48.8584, 2.2945, True)])

    url = static_map_url(state, "maps-key")

    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://maps.googleapis.com/maps/api/staticmap?")
    assert query["center"] == ["48.8584,2.2945"]
    assert query["zoom"] == ["16"]
    assert query["markers"] == ["color:red|label:H|48.8584,2.2945"]
    assert query["key"] == ["maps-key"]
    assert static_map_url(state, None) is None


def test_load_analysis_request_uses_detected_mime_type():
    # Declared as JPEG, actually PNG.
    data_url = "data:image/jpeg;base64," + base64.b64encode(png_bytes()).decode()

    request = load_analysis_request(data_url)

    assert request.mime_type == "image/png"


def test_load_analysis_request_rejects_non_images():
    data_url = "data:image/png;base64," + base64.b64encode(b"definitely not an image").decode()
    with pytest.raises(InvalidImageError):
        load_analysis_request(data_url)


def test_multi_picture_jpeg_is_sent_as_jpeg():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(10, 20, 30)).save(
        buffer, format="MPO", save_all=True, append_images=[Image.new("RGB", (4, 4))],
    )
    data_url = "data:image/jpeg;base64," + base64.b64encode(buffer.getvalue()).decode()

    request = load_analysis_request(data_url)

    assert request.mime_type == "image/jpeg"


def test_unsupported_detected_format_keeps_declared_type():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4)).save(buffer, format="BMP")
    data_url = "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()

    assert load_analysis_request(data_url).mime_type == "image/png"


def test_load_image_file(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(png_bytes())

    assert load_image_file(str(path)).mime_type == "image/png"
    with pytest.raises(InvalidImageError):
        load_image_file(str(tmp_path / "missing.png"))


def test_process_places_primary_candidate(sleep):
    model = FakeModel('["Eiffel Tower, Champ de Mars, Paris, France", "Paris, France"]')
    maps = FakeMapsClient([], geocode_hit(48.8584, 2.2945, ["establishment"], address="Av. Gustave Eiffel"))

    results, state = process_image_geolocation(REQUEST, model=model, maps_client=maps, sleep=sleep)

    assert results["success"] is True
    assert results["locations"] == ["Eiffel Tower, Champ de Mars, Paris, France", "Paris, France"]
    assert results["primary_location"] == "Eiffel Tower, Champ de Mars, Paris, France"
    assert results["markers"] == [{
        "title": "Eiffel Tower, Champ de Mars, Paris, France",
        "latitude": 48.8584,
        "longitude": 2.2945,
        "accuracy": "HIGH",
        "address": "Av. Gustave Eiffel",
        "types": ["establishment"],
    }]
    assert results["map"]["zoom"] == 16
    assert results["map_url"] is None  # injected client, no key to sign the link with
    assert state.zoom == 16 and len(state.markers) == 1
    assert len(maps.calls) == 2


def test_process_all_candidates(sleep):
    model = FakeModel('["Big Ben, London", "London Eye, London"]')
    maps = FakeMapsClient(
        geocode_hit(51.5007, -0.1246, ["locality"]),
        geocode_hit(51.5033, -0.1196, ["establishment"]),
    )

    results, state = process_image_geolocation(
        REQUEST, model=model, maps_client=maps, all_candidates=True, sleep=sleep,
    )

    assert [m["title"] for m in results["markers"]] == ["Big Ben, London", "London Eye, London"]
    assert (state.center_lat, state.center_lng) == (51.5033, -0.1196)
    assert sleep.delays == [0.7]


def test_process_without_candidates_leaves_map_alone(sleep):
    previous = MapState(center_lat=10.0, center_lng=10.0, zoom=12)
    model = FakeModel('["Unknown location - insufficient visual markers"]')

    results, state = process_image_geolocation(
        REQUEST, map_state=previous, model=model, maps_client=FakeMapsClient(), sleep=sleep,
    )

    assert results["success"] is False
    assert results["locations"] == []
    assert results["primary_location"] is None
    assert state is previous


def test_process_unplaceable_candidate_is_not_fatal(sleep):
    maps = FakeMapsClient()

    results, state = process_image_geolocation(
        REQUEST, model=FakeModel('["Atlantis"]'), maps_client=maps, sleep=sleep,
    )

    assert results["success"] is False
    assert results["locations"] == ["Atlantis"]
    assert results["markers"] == []
    assert state.markers == ()
    assert len(maps.calls) == 5


def test_process_builds_map_link_with_maps_key(monkeypatch, sleep):
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "maps-key")
    maps = FakeMapsClient(geocode_hit(40.758, -73.9855, ["route"]))
    monkeypatch.setattr("location_geocoder.build_maps_client", lambda api_key=None: maps)

    results, _ = process_image_geolocation(REQUEST, model=FakeModel('["Times Square, New York, NY, USA"]'), sleep=sleep)

    assert "key=maps-key" in results["map_url"]


def test_process_requires_maps_key_when_geocoding(sleep):
    with pytest.raises(ConfigurationError):
        process_image_geolocation(REQUEST, model=FakeModel('["Rome, Italy"]'), sleep=sleep)


def test_process_propagates_overload(sleep):
    overloaded = RuntimeError("503 overloaded")
    model = FakeModel(overloaded, overloaded, overloaded)

    with pytest.raises(TransientProviderOverload):
        process_image_geolocation(REQUEST, model=model, maps_client=FakeMapsClient(), sleep=sleep)


def test_process_skipped_candidate_needs_no_maps_key(sleep):
    # "ab" survives parsing but is too short to geocode once cleaned.
    results, state = process_image_geolocation(REQUEST, model=FakeModel('["ab"]'), sleep=sleep)

    assert results["locations"] == ["ab"]
    assert results["success"] is False
    assert results["map_url"] is None
    assert state.markers == ()
