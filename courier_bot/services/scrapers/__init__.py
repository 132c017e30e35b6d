from .nkiri import (
    host_matches,
    is_generic_label,
    parse_direct_links,
    parse_gateway_buttons,
    parse_hidden_form_fields,
    parse_search_results,
    relabel_from_url,
)
from .site_config import default_site_config, load_site_config

__all__ = [
    "host_matches",
    "is_generic_label",
    "parse_direct_links",
    "parse_gateway_buttons",
    "parse_hidden_form_fields",
    "parse_search_results",
    "relabel_from_url",
    "default_site_config",
    "load_site_config",
]
