"""
Provider configuration registry backed by a JSON file.

The file holds a list of provider mappings (camelCase or snake_case keys).
Secrets never live here; headers reference them as {{API_KEY}} and the
values come from the SecretStore.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from llm_consensus.ai.provider_spec import ProviderSpec
from llm_consensus.errors import ConfigurationError
from llm_consensus.safety.provider_health import ProviderHealthTracker
from llm_consensus.state.store import SecretStore

logger = structlog.get_logger(__name__)

CAMEL_CASE_KEYS = {
    "timeout_ms": "timeoutMs",
    "max_retries": "maxRetries",
    "request_template": "requestTemplate",
}


class ProviderRegistry:
    """
    List, fetch, save and remove provider specs.

    spec_defaults fills fields a stored spec leaves out, e.g.
    {"timeout_ms": 15000, "max_retries": 2}.
    """

    def __init__(self, path: Path, spec_defaults: Optional[dict[str, Any]] = None):
        self.path = Path(path)
        self.spec_defaults = dict(spec_defaults or {})

    def _with_defaults(self, raw: dict[str, Any]) -> dict[str, Any]:
        merged = dict(raw)
        for name, value in self.spec_defaults.items():
            camel = CAMEL_CASE_KEYS.get(name)
            if name not in merged and camel not in merged:
                merged[name] = value
        return merged

    def _load_document(self) -> tuple[Any, list[Any]]:
        """Parsed file and its provider list; (None, []) when the file is missing."""
        if not self.path.exists():
            return None, []
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Provider file {self.path} is not valid JSON: {e}") from e

        entries = document.get("providers", []) if isinstance(document, dict) else document
        if not isinstance(entries, list):
            raise ConfigurationError(f"Provider file {self.path} must contain a list of providers")
        return document, entries

    def _write(self, document: Any, entries: list[Any]) -> None:
        """Write entries back, keeping a {"providers": [...]} wrapper if the file had one."""
        if isinstance(document, dict):
            document = {**document, "providers": entries}
        else:
            document = entries

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def list_specs(self) -> list[ProviderSpec]:
        """
        All valid specs in file order.

        Invalid entries are skipped with a warning so one bad provider does
        not take the others down.
        """
        _, entries = self._load_document()
        specs = []
        for index, raw in enumerate(entries):
            if not isinstance(raw, dict):
                logger.warning("provider_spec_skipped", index=index, error="not an object")
                continue
            try:
                specs.append(ProviderSpec.from_config(self._with_defaults(raw)))
            except ConfigurationError as e:
                logger.warning("provider_spec_skipped", index=index, error=str(e))
        return specs

    def get_spec(self, provider_id: str) -> Optional[ProviderSpec]:
        for spec in self.list_specs():
            if spec.id == provider_id:
                return spec
        return None

    def save_spec(self, spec: Union[ProviderSpec, dict[str, Any]]) -> ProviderSpec:
        """
        Validate and insert or replace a spec by id.

        Other entries are written back untouched, including ones that
        currently fail validation. Registry defaults are applied on read and
        never stored.

        Raises:
            ConfigurationError: If the spec is invalid
        """
        if isinstance(spec, ProviderSpec):
            entry = spec.to_config()
        else:
            entry = dict(spec)
            spec = ProviderSpec.from_config(entry)

        document, entries = self._load_document()
        for index, raw in enumerate(entries):
            if _entry_id(raw) == spec.id:
                entries[index] = entry
                break
        else:
            entries.append(entry)

        self._write(document, entries)
        logger.info("provider_spec_saved", provider_id=spec.id, endpoint=spec.endpoint)
        return ProviderSpec.from_config(self._with_defaults(entry))

    def remove_spec(self, provider_id: str) -> bool:
        """Drop every entry with this id, valid or not."""
        document, entries = self._load_document()
        remaining = [raw for raw in entries if _entry_id(raw) != provider_id]
        if len(remaining) == len(entries):
            return False
        self._write(document, remaining)
        logger.info("provider_spec_removed", provider_id=provider_id)
        return True


def _entry_id(raw: Any) -> Optional[str]:
    return raw.get("id") if isinstance(raw, dict) else None


async def remove_provider(
    registry: ProviderRegistry,
    secrets: SecretStore,
    health: ProviderHealthTracker,
    provider_id: str,
) -> bool:
    """Remove a provider's spec along with its secrets and health record."""
    removed = registry.remove_spec(provider_id)
    await secrets.delete_secrets(provider_id)
    await health.reset(provider_id)
    return removed
