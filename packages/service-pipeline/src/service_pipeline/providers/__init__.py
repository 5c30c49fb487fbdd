from service_pipeline.providers.base import BaseProviderAdapter
from service_pipeline.providers.factory import build_provider_adapters, find_adapter
from service_pipeline.providers.geocoder import CountryResolver, GoogleGeocodingResolver
from service_pipeline.providers.osm import OsmAdapter
from service_pipeline.providers.places import PlacesAdapter
from service_pipeline.providers.relief import ReliefFeedAdapter

__all__ = [
    "BaseProviderAdapter",
    "CountryResolver",
    "GoogleGeocodingResolver",
    "OsmAdapter",
    "PlacesAdapter",
    "ReliefFeedAdapter",
    "build_provider_adapters",
    "find_adapter",
]
