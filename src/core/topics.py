"""Broker topic naming helpers.

Topics follow ``raw.<domain>.<kind>`` for producer-originated records and
``derived.<model>.<variant>`` for records produced by downstream processing.
Every dot-separated segment is lowercase kebab-case.
"""

from __future__ import annotations

import re

from core.constants import DERIVED_TOPIC_PREFIX, RAW_TOPIC_PREFIX
from core.errors import OpenSensorConfigError

_SEGMENT_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def raw_topic(domain: str, *names: str) -> str:
    """Build a topic for data read directly off a sensor.

    Args:
        domain: Measurement domain (e.g. ``surface``, ``air``).
        names: Optional subdomains followed by the data name.

    Returns:
        Validated topic name.
    """
    return validate_topic_name(".".join((RAW_TOPIC_PREFIX, domain, *names)))


def derived_topic(model: str, *names: str) -> str:
    """Build a topic for data computed from one or more raw streams.

    Args:
        model: Producing model or algorithm name.
        names: Variant segments.

    Returns:
        Validated topic name.
    """
    return validate_topic_name(".".join((DERIVED_TOPIC_PREFIX, model, *names)))


def validate_topic_name(topic: str) -> str:
    """Check a topic name against the naming convention.

    Args:
        topic: Candidate topic name.

    Returns:
        The unchanged topic name.

    Raises:
        OpenSensorConfigError: If the topic does not follow the convention.
    """
    segments = topic.split(".")
    if segments[0] not in (RAW_TOPIC_PREFIX, DERIVED_TOPIC_PREFIX) or len(segments) < 3:
        raise OpenSensorConfigError(
            f"Invalid topic '{topic}': expected raw.<domain>.<kind> "
            "or derived.<model>.<variant>."
        )
    for segment in segments[1:]:
        if not _SEGMENT_PATTERN.match(segment):
            raise OpenSensorConfigError(
                f"Invalid topic '{topic}': segment '{segment}' must be lowercase kebab-case."
            )
    return topic
