from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

OPERATOR_EQUAL = "Equal"
OPERATOR_EXISTS = "Exists"
VALID_OPERATORS = (OPERATOR_EQUAL, OPERATOR_EXISTS)

EFFECT_NO_SCHEDULE = "NoSchedule"
VALID_EFFECTS = (EFFECT_NO_SCHEDULE, "PreferNoSchedule", "NoExecute")

DEFAULT_PLATFORM = "linux/arm64"

# os/architecture[/variant], as rendered from OCI platform descriptors
_PLATFORM_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*/[a-z0-9][a-z0-9._-]*(/[a-z0-9][a-z0-9._-]*)?$")


@dataclass(frozen=True)
class Toleration:
    key: str
    value: str = ""
    operator: str = OPERATOR_EQUAL
    effect: str = EFFECT_NO_SCHEDULE
    toleration_seconds: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"key": self.key, "operator": self.operator}
        if self.value:
            data["value"] = self.value
        if self.effect:
            data["effect"] = self.effect
        if self.toleration_seconds is not None:
            data["tolerationSeconds"] = self.toleration_seconds
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Toleration":
        seconds = data.get("tolerationSeconds")
        return cls(
            key=str(data.get("key") or ""),
            value=str(data.get("value") or ""),
            operator=str(data.get("operator") or ""),
            effect=str(data.get("effect") or ""),
            toleration_seconds=int(seconds) if seconds is not None else None,
        )


@dataclass(frozen=True)
class PlatformTolerationMapping:
    platform: str
    toleration: Toleration


DEFAULT_MAPPING = PlatformTolerationMapping(
    platform=DEFAULT_PLATFORM,
    toleration=Toleration(
        key="k8smultiarcher",
        value="arm64Supported",
        operator=OPERATOR_EQUAL,
        effect=EFFECT_NO_SCHEDULE,
    ),
)


@dataclass(frozen=True)
class PlatformTolerationConfig:
    """Ordered platform to toleration table, loaded once and shared read-only."""

    mappings: Tuple[PlatformTolerationMapping, ...]

    def __init__(self, mappings: Iterable[PlatformTolerationMapping]) -> None:
        object.__setattr__(self, "mappings", tuple(mappings))

    def platforms(self) -> List[str]:
        return [mapping.platform for mapping in self.mappings]

    def tolerations_for(self, supported_platforms: Sequence[str]) -> List[Toleration]:
        # OCI platform strings are case sensitive; compare them verbatim
        supported = set(supported_platforms)
        return [mapping.toleration for mapping in self.mappings if mapping.platform in supported]


def validate_operator(operator: Optional[str]) -> str:
    if not operator:
        return OPERATOR_EQUAL
    if operator not in VALID_OPERATORS:
        logger.error("invalid toleration operator %r, using default %s", operator, OPERATOR_EQUAL)
        return OPERATOR_EQUAL
    return operator


def validate_effect(effect: Optional[str]) -> str:
    if not effect:
        return EFFECT_NO_SCHEDULE
    if effect not in VALID_EFFECTS:
        logger.error("invalid toleration effect %r, using default %s", effect, EFFECT_NO_SCHEDULE)
        return EFFECT_NO_SCHEDULE
    return effect


def validate_platform(platform: Optional[str]) -> str:
    if not platform:
        return DEFAULT_PLATFORM
    if not _PLATFORM_PATTERN.match(platform):
        logger.error("invalid platform %r, using default %s", platform, DEFAULT_PLATFORM)
        return DEFAULT_PLATFORM
    return platform


def _mappings_from_json(raw: str) -> List[PlatformTolerationMapping]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("failed to parse PLATFORM_TOLERATIONS, ignoring JSON config: %s", exc)
        return []
    if not isinstance(data, list):
        logger.error("PLATFORM_TOLERATIONS must be a JSON array, ignoring JSON config")
        return []

    mappings: List[PlatformTolerationMapping] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            logger.error("PLATFORM_TOLERATIONS[%d] is not an object, skipping", index)
            continue
        key = str(entry.get("key") or "").strip()
        if not key:
            logger.error("PLATFORM_TOLERATIONS[%d] has no toleration key, skipping", index)
            continue
        mappings.append(
            PlatformTolerationMapping(
                platform=validate_platform(entry.get("platform")),
                toleration=Toleration(
                    key=key,
                    value=str(entry.get("value") or ""),
                    operator=validate_operator(entry.get("operator")),
                    effect=validate_effect(entry.get("effect")),
                ),
            )
        )
    return mappings


def _mapping_from_simple_env(environ: Mapping[str, str]) -> Optional[PlatformTolerationMapping]:
    key = environ.get("TOLERATION_KEY", "")
    if not key:
        return None
    return PlatformTolerationMapping(
        platform=validate_platform(environ.get("TOLERATION_PLATFORM")),
        toleration=Toleration(
            key=key,
            value=environ.get("TOLERATION_VALUE", ""),
            operator=validate_operator(environ.get("TOLERATION_OPERATOR")),
            effect=validate_effect(environ.get("TOLERATION_EFFECT")),
        ),
    )


def load_platform_toleration_config(
    environ: Optional[Mapping[str, str]] = None,
) -> PlatformTolerationConfig:
    """Build the mapping table from the environment.

    The JSON form (``PLATFORM_TOLERATIONS``) wins when it yields at least one
    mapping; the two forms are never mixed. Otherwise the single-mapping form
    (``TOLERATION_KEY`` and friends) is used, and failing that the built-in
    ``linux/arm64`` default.
    """
    env = os.environ if environ is None else environ
    mappings: List[PlatformTolerationMapping] = []

    raw_json = env.get("PLATFORM_TOLERATIONS", "")
    if raw_json:
        mappings = _mappings_from_json(raw_json)
        if mappings:
            logger.info("loaded %d platform-toleration mapping(s) from JSON", len(mappings))

    if not mappings:
        simple = _mapping_from_simple_env(env)
        if simple is not None:
            mappings = [simple]
            logger.info("loaded platform-toleration mapping from simple env vars")

    if not mappings:
        logger.info(
            "using default platform-toleration mapping platform=%s key=%s",
            DEFAULT_MAPPING.platform,
            DEFAULT_MAPPING.toleration.key,
        )
        return PlatformTolerationConfig([DEFAULT_MAPPING])

    for mapping in mappings:
        logger.info(
            "configured platform-toleration mapping platform=%s key=%s value=%s",
            mapping.platform,
            mapping.toleration.key,
            mapping.toleration.value,
        )
    return PlatformTolerationConfig(mappings)


__all__ = [
    "DEFAULT_MAPPING",
    "DEFAULT_PLATFORM",
    "PlatformTolerationConfig",
    "PlatformTolerationMapping",
    "Toleration",
    "load_platform_toleration_config",
    "validate_effect",
    "validate_operator",
    "validate_platform",
]
