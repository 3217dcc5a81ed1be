# errors.py
# Exception types shared by the geolocation engine, the web app and the CLI


class GeolocationError(Exception):
    """Base class for failures surfaced to the caller of the engine."""

    default_message = "Unknown error occurred"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(GeolocationError):
    """A required credential or setting is missing. Never retried."""

    default_message = "Required configuration is missing"


class TransientProviderOverload(GeolocationError):
    """The AI provider stayed overloaded after every retry attempt."""

    default_message = "The AI service is currently overloaded. Please try again in a few minutes."


class ProviderError(GeolocationError):
    """Any other AI or geocoding provider failure."""


class InvalidImageError(GeolocationError):
    """The submitted payload could not be decoded as an image."""

    default_message = "Image data could not be decoded"


class GeocodeExhausted(GeolocationError):
    """Every geocoding strategy failed for a candidate. Recovered per candidate."""

    default_message = "All geocoding strategies failed"
