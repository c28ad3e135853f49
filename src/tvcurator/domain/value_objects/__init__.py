"""Domain value objects."""

from tvcurator.domain.value_objects.episode_parsing import (
    ParsedEpisode,
    parse_episode_filename,
    parse_show_folder,
    show_name_match_key,
)

__all__ = [
    "ParsedEpisode",
    "parse_episode_filename",
    "parse_show_folder",
    "show_name_match_key",
]
