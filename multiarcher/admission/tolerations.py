from __future__ import annotations

from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence

from multiarcher.config.tolerations import PlatformTolerationConfig, Toleration


def apply_tolerations(
    config: PlatformTolerationConfig,
    existing: Optional[Sequence[Mapping[str, Any]]],
    supported_platforms: Sequence[str],
) -> List[Dict[str, Any]]:
    """Return ``existing`` plus the tolerations of every supported platform.

    A toleration already present field for field is not added again, so
    applying the same platforms twice changes nothing. The input is not
    modified.
    """
    result: List[Dict[str, Any]] = [dict(item) for item in existing or []]
    present = {Toleration.from_dict(item) for item in result}
    for toleration in config.tolerations_for(supported_platforms):
        if toleration in present:
            continue
        result.append(toleration.to_dict())
        present.add(toleration)
    return result


def add_tolerations_to_pod_spec(
    config: PlatformTolerationConfig,
    pod_spec: MutableMapping[str, Any],
    supported_platforms: Sequence[str],
) -> None:
    pod_spec["tolerations"] = apply_tolerations(config, pod_spec.get("tolerations"), supported_platforms)


__all__ = ["add_tolerations_to_pod_spec", "apply_tolerations"]
