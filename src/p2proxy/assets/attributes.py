"""Component identity attributes for p2 bundles."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

FEATURE_SUFFIX = ".feature"
PLUGIN_SUFFIX = ".plugin"


def normalize_component_name(name: str | None) -> str | None:
    """Strip a `;qualifier` tail and a trailing `.feature` / `.plugin` suffix."""

    if name is None:
        return None
    # org.tigris.subversion.clientadapter.svnkit;singleton:=true
    result = name.split(";", 1)[0].strip()
    for suffix in (FEATURE_SUFFIX, PLUGIN_SUFFIX):
        if result.endswith(suffix):
            result = result[: -len(suffix)]
    return result


@dataclass(frozen=True, slots=True)
class ComponentAttributes:
    """Identity of a feature, plugin or binary, plus where it is stored."""

    component_name: str | None = None
    component_version: str | None = None
    plugin_name: str | None = None
    path: str | None = None
    extension: str | None = None

    def merged_over(self, seed: ComponentAttributes) -> ComponentAttributes:
        """Return attributes taking each field from self, falling back to `seed`."""

        values = {}
        for item in fields(self):
            own = getattr(self, item.name)
            values[item.name] = own if own else getattr(seed, item.name)
        return ComponentAttributes(**values)

    @property
    def is_complete(self) -> bool:
        return bool(self.component_name and self.component_version)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def merge_attributes(
    seed: ComponentAttributes, extracted: ComponentAttributes | None
) -> ComponentAttributes:
    """Merge extractor output into a caller-supplied seed."""

    if extracted is None:
        return seed
    return extracted.merged_over(seed)
