"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads a partner settings YAML document and parses it into typed
``PartnerSettings`` values.  A document carries shared ``defaults`` and
per-partner overrides:

    defaults:
      default_revision_limit: 2
      invoice_trigger: manual_only
    partners:
      studio-7:
        invoice_trigger: on_delivered
        invoice_status: authorised

Invariants enforced
-------------------
* Unknown keys raise ``ValueError``; nothing is silently ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from ``PartnerSettings.__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import PartnerSettings
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.utils.hashing import hash_payload

logger = get_logger("config.loader")

_TOP_LEVEL_KEYS = frozenset({"defaults", "partners"})


@dataclass(frozen=True)
class SettingsDocument:
    """Parsed settings document with its checksum."""

    defaults: dict[str, Any]
    partners: dict[str, PartnerSettings]
    checksum: str
    source: str | None = None

    def for_partner(self, partner_id: str) -> PartnerSettings:
        """Settings for ``partner_id``; partners without overrides get the defaults."""
        settings = self.partners.get(partner_id)
        if settings is not None:
            return settings
        return PartnerSettings.from_dict({**self.defaults, "partner_id": partner_id})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings document {path} must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    return hash_payload(data)


def parse_settings_document(
    data: dict[str, Any],
    source: str | None = None,
) -> SettingsDocument:
    """
    Parse a settings document dict.

    Raises:
        ValueError: On unknown top-level keys or invalid settings.
    """
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ValueError(f"Unknown settings document keys: {unknown}")

    defaults = dict(data.get("defaults") or {})
    if "partner_id" in defaults:
        raise ValueError("defaults cannot set partner_id")

    partners: dict[str, PartnerSettings] = {}
    for partner_id, overrides in (data.get("partners") or {}).items():
        merged = {**defaults, **(overrides or {}), "partner_id": str(partner_id)}
        partners[str(partner_id)] = PartnerSettings.from_dict(merged)

    # Validate defaults on their own so a bad default fails at load time
    PartnerSettings.from_dict({**defaults, "partner_id": "default"})

    checksum = compute_checksum(
        {
            "defaults": defaults,
            "partners": {pid: s.to_dict() for pid, s in sorted(partners.items())},
        }
    )
    logger.info(
        "settings_document_loaded",
        extra={
            "source": source,
            "partner_count": len(partners),
            "checksum": checksum,
        },
    )
    return SettingsDocument(
        defaults=defaults,
        partners=partners,
        checksum=checksum,
        source=source,
    )


def load_settings_document(path: Path | str) -> SettingsDocument:
    """Load and parse a settings YAML file."""
    path = Path(path)
    return parse_settings_document(load_yaml_file(path), source=str(path))


def load_partner_settings(path: Path | str, partner_id: str) -> PartnerSettings:
    """Convenience: load a settings file and return one partner's settings."""
    return load_settings_document(path).for_partner(partner_id)
