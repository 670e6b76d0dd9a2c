"""
Immutable records for kernel specs and running kernels, parsed from the
Jupyter server REST payloads.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from jupyter_client.jsonutil import parse_date
from jupyter_client.kernelspec import KernelSpec

_logger = logging.getLogger("tether.models")

_KERNELSPEC_TRAITS = frozenset(KernelSpec.class_trait_names())


def _freeze(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class KernelSpecModel:
    """One installable kernel type as reported by the server."""

    name: str
    display_name: str
    language: str
    argv: Tuple[str, ...] = ()
    resource_dir: str = ""
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    interrupt_mode: str = "signal"
    resources: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_json(cls, name: str, payload: Dict[str, Any]) -> "KernelSpecModel":
        """
        Build a spec from one entry of GET /api/kernelspecs.

        The nested 'spec' block goes through jupyter_client's KernelSpec so
        malformed fields are rejected the same way a local kernelspec would be.

        Args:
            name: Key of the entry in the 'kernelspecs' mapping
            payload: The entry, {'name', 'spec': {...}, 'resources': {...}}

        Raises:
            ValueError: If the entry cannot be parsed as a kernel spec
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("spec"), dict):
            raise ValueError(f"Kernel spec '{name}' has no 'spec' block")

        raw = {
            key: value for key, value in payload["spec"].items() if key in _KERNELSPEC_TRAITS and key != "name"
        }
        try:
            spec = KernelSpec(name=payload.get("name", name), **raw)
        except Exception as e:
            raise ValueError(f"Invalid kernel spec '{name}': {e}") from e

        if not spec.display_name:
            raise ValueError(f"Kernel spec '{name}' has no display_name")

        return cls(
            name=spec.name,
            display_name=spec.display_name,
            language=spec.language,
            argv=tuple(spec.argv),
            resource_dir=spec.resource_dir,
            metadata=_freeze(spec.metadata),
            env=_freeze(spec.env),
            interrupt_mode=spec.interrupt_mode,
            resources=_freeze(payload.get("resources")),
        )


@dataclass(frozen=True)
class SpecCollection:
    """
    All kernel specs on the server plus the default spec name.

    `default` is always a key of `specs` when `specs` is non-empty.
    """

    default: Optional[str]
    specs: Mapping[str, KernelSpecModel] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        if not isinstance(self.specs, MappingProxyType):
            object.__setattr__(self, "specs", _freeze(self.specs))
        if self.specs and self.default not in self.specs:
            raise ValueError(f"Default kernel spec '{self.default}' is not among {sorted(self.specs)}")

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "SpecCollection":
        """
        Build a collection from the GET /api/kernelspecs response body.

        Invalid entries are skipped with a warning. An unknown default falls
        back to the first valid spec name. A server without any (valid) kernel
        specs yields an empty collection with no default.

        Raises:
            ValueError: If the payload has no 'kernelspecs' mapping
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("kernelspecs"), dict):
            raise ValueError("Kernel spec payload has no 'kernelspecs' mapping")

        specs: Dict[str, KernelSpecModel] = {}
        for name, entry in payload["kernelspecs"].items():
            try:
                specs[name] = KernelSpecModel.from_json(name, entry)
            except ValueError as e:
                _logger.warning(f"Skipping kernel spec: {e}")

        if not specs:
            return cls(default=None)

        default = payload.get("default")
        if default not in specs:
            fallback = next(iter(specs))
            _logger.warning(f"Default kernel spec '{default}' not found, using '{fallback}'")
            default = fallback

        return cls(default=default, specs=specs)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self.specs)

    def __contains__(self, name: object) -> bool:
        return name in self.specs

    def __len__(self) -> int:
        return len(self.specs)


@dataclass(frozen=True)
class KernelModel:
    """A running kernel instance as reported by GET /api/kernels."""

    id: str
    name: str
    connections: int = 0
    last_activity: Optional[Union[datetime, str]] = None
    execution_state: str = "unknown"

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "KernelModel":
        """
        Raises:
            ValueError: If the payload lacks a kernel id or name
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Kernel model must be an object, got {type(payload).__name__}")
        kernel_id = payload.get("id")
        name = payload.get("name")
        if not isinstance(kernel_id, str) or not kernel_id:
            raise ValueError(f"Kernel model has no id: {payload!r}")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Kernel model {kernel_id} has no name")

        return cls(
            id=kernel_id,
            name=name,
            connections=int(payload.get("connections") or 0),
            last_activity=parse_date(payload.get("last_activity")),
            execution_state=payload.get("execution_state") or "unknown",
        )

    def to_json(self) -> Dict[str, Any]:
        last_activity = self.last_activity
        if isinstance(last_activity, datetime):
            last_activity = last_activity.isoformat()
        return {
            "id": self.id,
            "name": self.name,
            "connections": self.connections,
            "last_activity": last_activity,
            "execution_state": self.execution_state,
        }
