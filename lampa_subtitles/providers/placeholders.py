"""Sources the player lists in its settings but that have no client yet.

Each one is always disabled; see DisabledProvider.
"""

from lampa_subtitles.providers import register_provider
from lampa_subtitles.providers.base import DisabledProvider


@register_provider
class SubSourceProvider(DisabledProvider):
    name = "subsource"


@register_provider
class SubDLProvider(DisabledProvider):
    name = "subdl"


@register_provider
class SubHeroProvider(DisabledProvider):
    name = "subhero"
