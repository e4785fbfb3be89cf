"""
Topic filter matching for the message bus.

Topics are hierarchical, with '/'-separated segments:
  <root>/<category>/<item>

Filters may contain broker wildcards:
  + - matches exactly one segment
  # - matches zero or more trailing segments (last segment only)
"""

SEPARATOR = "/"
WILDCARD_SINGLE = "+"
WILDCARD_MULTI = "#"


def split_topic(topic: str) -> list[str]:
    """Split a topic or filter into segments."""
    return topic.split(SEPARATOR)


def has_wildcards(topic_filter: str) -> bool:
    """Check if a filter contains any wildcard segment."""
    return any(
        segment in (WILDCARD_SINGLE, WILDCARD_MULTI)
        for segment in split_topic(topic_filter)
    )


def matches(topic_filter: str, topic: str) -> bool:
    """
    Check if a published topic matches a subscription filter.

    Never raises: malformed filters (e.g. '#' before the last segment)
    simply do not match.
    """
    filter_parts = split_topic(topic_filter)
    topic_parts = split_topic(topic)
    last = len(filter_parts) - 1

    for index, part in enumerate(filter_parts):
        if part == WILDCARD_MULTI:
            return index == last
        if index >= len(topic_parts):
            return False
        if part != WILDCARD_SINGLE and part != topic_parts[index]:
            return False

    return len(filter_parts) == len(topic_parts)
