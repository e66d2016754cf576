# =============================================================================
# Google Places Client — Text Search (Places API, New)
# =============================================================================
#
# One POST to `{base_url}/places:searchText` per search, authenticated with
# the X-Goog-Api-Key header and trimmed with a field mask. Results are
# normalised to PlaceResult, given a distance from the search point, sorted
# nearest-first and capped.
#
# Quota accounting lives in the route (services/quota.py); this module only
# talks to Google.
# =============================================================================

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field

import httpx

from grooshub.config import settings

logger = logging.getLogger(__name__)

FIELD_MASK = ",".join((
    "places.id",
    "places.displayName",
    "places.formattedAddress",
    "places.location",
    "places.types",
    "places.rating",
    "places.userRatingCount",
    "places.priceLevel",
    "places.businessStatus",
    "places.currentOpeningHours",
))

MAX_RESULTS = 20
LANGUAGE_CODE = "nl"
REGION_CODE = "nl"

# Price levels excluded from the mid-range restaurant category
_BUDGET_PRICES = {"PRICE_LEVEL_FREE", "PRICE_LEVEL_INEXPENSIVE"}
_UPSCALE_PRICES = {"PRICE_LEVEL_EXPENSIVE", "PRICE_LEVEL_VERY_EXPENSIVE"}


class PlacesError(RuntimeError):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class PlaceResult:
    place_id: str
    name: str
    latitude: float
    longitude: float
    types: list[str] = field(default_factory=list)
    formatted_address: str | None = None
    rating: float | None = None
    user_ratings_total: int | None = None
    price_level: str | None = None
    business_status: str | None = None
    open_now: bool | None = None
    distance_m: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres."""
    r = 6_371_000.0
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * r * math.asin(math.sqrt(a))


def parse_place(raw: dict, origin: tuple[float, float] | None = None) -> PlaceResult:
    location = raw.get("location") or {}
    lat = location.get("latitude", 0.0)
    lng = location.get("longitude", 0.0)
    hours = raw.get("currentOpeningHours") or {}

    place = PlaceResult(
        place_id=raw.get("id", ""),
        name=(raw.get("displayName") or {}).get("text", "Unknown"),
        latitude=lat,
        longitude=lng,
        types=raw.get("types") or [],
        formatted_address=raw.get("formattedAddress"),
        rating=raw.get("rating"),
        user_ratings_total=raw.get("userRatingCount"),
        price_level=raw.get("priceLevel"),
        business_status=raw.get("businessStatus"),
        open_now=hours.get("openNow"),
    )
    if origin is not None:
        place.distance_m = round(haversine_m(origin[0], origin[1], lat, lng), 1)
    return place


def build_text_search_body(
    text_query: str,
    latitude: float,
    longitude: float,
    radius_m: float,
    price_levels: list[str] | None = None,
) -> dict:
    body: dict = {
        "textQuery": text_query,
        "maxResultCount": MAX_RESULTS,
        "locationBias": {
            "circle": {
                "center": {"latitude": latitude, "longitude": longitude},
                "radius": radius_m,
            }
        },
        "languageCode": LANGUAGE_CODE,
        "regionCode": REGION_CODE,
    }
    if price_levels:
        body["priceLevels"] = price_levels
    return body


async def text_search(
    text_query: str,
    latitude: float,
    longitude: float,
    radius_m: float = 5000,
    category_id: str | None = None,
    price_levels: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[PlaceResult]:
    """
    Run a Places Text Search around a point.

    The "restaurants_midrange" category sends no price filter and instead
    drops budget and upscale results locally, so places without price data
    are kept.

    Raises:
        ValueError: GOOGLE_PLACES_API_KEY is not configured.
        PlacesError: Google returned an error or could not be reached.
    """
    if not settings.google_places_api_key:
        raise ValueError(
            "No Google Places API key configured. Set GOOGLE_PLACES_API_KEY in .env"
        )

    midrange = category_id == "restaurants_midrange"
    body = build_text_search_body(
        text_query,
        latitude,
        longitude,
        radius_m,
        None if midrange else price_levels,
    )
    headers = {
        "Content-Type": "application/json",
        "X-Goog-Api-Key": settings.google_places_api_key,
        "X-Goog-FieldMask": FIELD_MASK,
    }
    url = f"{settings.google_places_base_url}/places:searchText"

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=15.0)
    try:
        response = await client.post(url, json=body, headers=headers)
    except httpx.HTTPError as exc:
        raise PlacesError(f"Google Places request failed: {exc}") from exc
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code >= 400:
        logger.error(
            "Google Places returned %d: %s", response.status_code, response.text[:500],
        )
        raise PlacesError(
            f"Google Places returned HTTP {response.status_code}",
            status_code=502 if response.status_code >= 500 else response.status_code,
        )

    origin = (latitude, longitude)
    places = [parse_place(raw, origin) for raw in response.json().get("places", [])]

    if midrange:
        places = [
            p for p in places
            if p.price_level not in _BUDGET_PRICES | _UPSCALE_PRICES
        ]

    places.sort(key=lambda p: p.distance_m if p.distance_m is not None else math.inf)
    return places[:MAX_RESULTS]
