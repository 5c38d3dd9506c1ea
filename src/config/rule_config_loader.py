"""
Rule Configuration Loader.

Loads seed rule parameters from YAML configuration files, enabling:
- Annual updates of limits and allotments without code changes
- Environment-specific overrides
- Audit trail of configuration changes
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from rules.models import RuleDraft
from rules.rule_types import RuleType

logger = logging.getLogger(__name__)

# Default config directory
CONFIG_DIR = Path(__file__).parent / "rule_parameters"


@dataclass
class ConfigMetadata:
    """Metadata about a rule configuration file."""
    version: str
    program: str
    jurisdiction: str
    effective_date: str
    source: str  # "USDA FNS", "IRS", state agency
    references: List[str] = field(default_factory=list)
    last_updated: str = ""
    updated_by: str = ""
    notes: str = ""


@dataclass
class ConfigChange:
    """Record of a configuration change."""
    parameter: str
    old_value: Any
    new_value: Any
    changed_at: str
    changed_by: str
    reason: str
    reference: Optional[str] = None


@dataclass
class RuleSeed:
    """One rule definition read from a configuration file."""
    program_code: str
    jurisdiction: str
    rule_type: RuleType
    effective_date: date
    parameters: Dict[str, Any]
    expiration_date: Optional[date] = None
    source_citation: str = ""
    description: str = ""
    depends_on: List[RuleType] = field(default_factory=list)
    source_file: str = ""

    def to_draft(self, depends_on_ids: Optional[List[str]] = None) -> RuleDraft:
        return RuleDraft(
            program_code=self.program_code,
            rule_type=self.rule_type,
            jurisdiction=self.jurisdiction,
            parameters=self.parameters,
            effective_date=self.effective_date,
            expiration_date=self.expiration_date,
            source_citation=self.source_citation,
            description=self.description,
            depends_on=depends_on_ids or [],
        )


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class RuleConfigLoader:
    """
    Loads and manages seed rule configuration from YAML files.

    Features:
    - One file per program/jurisdiction/rule year
    - Environment variable overrides of top-level parameters
    - Change tracking
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize the config loader.

        Args:
            config_dir: Directory containing YAML config files.
                       Defaults to src/config/rule_parameters/
        """
        self.config_dir = Path(config_dir) if config_dir else CONFIG_DIR
        self._seeds: Dict[str, List[RuleSeed]] = {}
        self._metadata: Dict[str, ConfigMetadata] = {}
        self._changes: List[ConfigChange] = []

    def available_files(self) -> List[str]:
        """Config file stems, sorted."""
        if not self.config_dir.exists():
            logger.warning(f"Rule config directory not found: {self.config_dir}")
            return []
        return sorted(p.stem for p in self.config_dir.glob("*.yaml"))

    def load_file(self, name: str) -> List[RuleSeed]:
        """
        Load rule seeds from one configuration file.

        Args:
            name: File stem, e.g. "snap_md_fy2025"
        """
        if name in self._seeds:
            return self._seeds[name]

        path = self.config_dir / f"{name}.yaml"
        logger.info(f"Loading rule config from {path}")
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        if "_metadata" not in raw:
            raise ValueError(f"Rule config {path} has no _metadata section")
        metadata = ConfigMetadata(**raw.pop("_metadata"))
        self._metadata[name] = metadata

        seeds = []
        for entry in raw.get("rules", []):
            rule_type = RuleType(entry["rule_type"])
            seed = RuleSeed(
                program_code=metadata.program.upper(),
                jurisdiction=metadata.jurisdiction.upper(),
                rule_type=rule_type,
                effective_date=_parse_date(entry.get("effective_date", metadata.effective_date)),
                expiration_date=_parse_date(entry.get("expiration_date")),
                parameters=dict(entry.get("parameters") or {}),
                source_citation=entry.get("source_citation", ""),
                description=entry.get("description", ""),
                depends_on=[RuleType(t) for t in entry.get("depends_on", [])],
                source_file=name,
            )
            self._apply_env_overrides(seed)
            seeds.append(seed)

        self._validate_seeds(seeds, name)
        self._seeds[name] = seeds
        return seeds

    def load_all(self) -> List[RuleSeed]:
        """Seeds from every configuration file."""
        seeds: List[RuleSeed] = []
        for name in self.available_files():
            seeds.extend(self.load_file(name))
        return seeds

    def _apply_env_overrides(self, seed: RuleSeed) -> None:
        """Apply environment variable overrides to top-level parameters."""
        # Environment variables like RULE_SNAP_MD_ALLOTMENT_BENEFIT_REDUCTION_RATE=0.3
        prefix = f"RULE_{seed.program_code}_{seed.jurisdiction}_{seed.rule_type.value.upper()}_"

        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue
            param_name = key[len(prefix):].lower()
            old_value = seed.parameters.get(param_name)
            if value.lower() in ("true", "false"):
                new_value: Any = value.lower() == "true"
            else:
                new_value = value
            seed.parameters[param_name] = new_value
            self.record_change(
                parameter=f"{seed.program_code}.{seed.jurisdiction}.{seed.rule_type.value}.{param_name}",
                old_value=old_value,
                new_value=new_value,
                reason=f"Environment override {key}",
                changed_by="environment",
            )

    def _validate_seeds(self, seeds: List[RuleSeed], name: str) -> None:
        """Dependencies must refer to rule types defined in the same file."""
        defined = {s.rule_type for s in seeds}
        for seed in seeds:
            missing = [t.value for t in seed.depends_on if t not in defined]
            if missing:
                raise ValueError(
                    f"{name}: {seed.rule_type.value} depends on undefined rule types {missing}"
                )

    def get_metadata(self, name: str) -> Optional[ConfigMetadata]:
        """Get metadata for a configuration file."""
        self.load_file(name)
        return self._metadata.get(name)

    def record_change(
        self,
        parameter: str,
        old_value: Any,
        new_value: Any,
        reason: str,
        changed_by: str = "system",
        reference: Optional[str] = None
    ) -> None:
        """Record a configuration change for audit purposes."""
        change = ConfigChange(
            parameter=parameter,
            old_value=old_value,
            new_value=new_value,
            changed_at=datetime.utcnow().isoformat(),
            changed_by=changed_by,
            reason=reason,
            reference=reference
        )
        self._changes.append(change)
        logger.info(f"Config change recorded: {parameter} {old_value} -> {new_value}")

    def get_change_history(self) -> List[ConfigChange]:
        """Get history of configuration changes."""
        return self._changes.copy()


def seed_rule_store(rule_store, loader: Optional[RuleConfigLoader] = None, approved_by: str = "seed") -> int:
    """
    Create and approve every configured rule not yet present in the store.

    A seed is skipped when its key already has a version with the same
    effective date, so seeding twice is a no-op.

    Returns:
        Number of rules created
    """
    loader = loader or RuleConfigLoader()
    created = 0

    for name in loader.available_files():
        ids_by_type: Dict[RuleType, str] = {}
        seeds = loader.load_file(name)

        # Dependencies first; files list at most a handful of rule types
        pending = list(seeds)
        while pending:
            progressed = False
            for seed in list(pending):
                if any(dep not in ids_by_type for dep in seed.depends_on):
                    continue
                pending.remove(seed)
                progressed = True

                existing = [
                    r for r in rule_store.list_rules(seed.program_code, seed.rule_type, seed.jurisdiction)
                    if r.effective_date == seed.effective_date
                ]
                if existing:
                    ids_by_type[seed.rule_type] = existing[0].id
                    continue

                draft = seed.to_draft([ids_by_type[dep] for dep in seed.depends_on])
                rule = rule_store.add_rule(draft, created_by=approved_by)
                rule_store.approve_rule(rule.id, approved_by=approved_by)
                ids_by_type[seed.rule_type] = rule.id
                created += 1
            if not progressed:
                raise ValueError(f"{name}: circular depends_on between rule types")

    logger.info(f"Seeded {created} rules from {loader.config_dir}")
    return created
