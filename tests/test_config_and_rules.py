"""
Tests for the YAML rule configuration loader and store seeding.
"""

from datetime import date
from decimal import Decimal

import pytest

from config.rule_config_loader import RuleConfigLoader, seed_rule_store
from rules.rule_types import RuleStatus, RuleType


class TestRuleConfigLoader:
    """Tests for RuleConfigLoader."""

    def test_available_files(self):
        loader = RuleConfigLoader()
        assert loader.available_files() == ["eitc_us_2024", "medicaid_md", "snap_md_fy2025", "tanf_md"]

    def test_load_snap_file(self):
        """Test the SNAP file yields five typed seeds with dependencies."""
        loader = RuleConfigLoader()
        seeds = loader.load_file("snap_md_fy2025")

        by_type = {s.rule_type: s for s in seeds}
        assert len(seeds) == 5
        assert all(s.program_code == "SNAP" and s.jurisdiction == "MD" for s in seeds)
        assert all(s.effective_date == date(2024, 10, 1) for s in seeds)
        assert RuleType.DEDUCTION in by_type[RuleType.INCOME_LIMIT].depends_on
        assert RuleType.DEDUCTION in by_type[RuleType.ALLOTMENT].depends_on

    def test_metadata(self):
        loader = RuleConfigLoader()
        metadata = loader.get_metadata("eitc_us_2024")
        assert metadata.program == "EITC"
        assert metadata.jurisdiction == "US"

    def test_load_all(self):
        assert len(RuleConfigLoader().load_all()) == 13

    def test_env_override(self, monkeypatch):
        """Test RULE_<PROGRAM>_<JURIS>_<TYPE>_<PARAM> overrides a top-level parameter."""
        monkeypatch.setenv("RULE_SNAP_MD_ALLOTMENT_BENEFIT_REDUCTION_RATE", "0.25")
        loader = RuleConfigLoader()

        seeds = loader.load_file("snap_md_fy2025")
        allotment = next(s for s in seeds if s.rule_type == RuleType.ALLOTMENT)

        assert allotment.parameters["benefit_reduction_rate"] == "0.25"
        history = loader.get_change_history()
        assert len(history) == 1
        assert history[0].parameter == "SNAP.MD.allotment.benefit_reduction_rate"
        assert history[0].changed_by == "environment"

    def test_missing_metadata_rejected(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("rules: []\n")
        loader = RuleConfigLoader(tmp_path)
        with pytest.raises(ValueError, match="_metadata"):
            loader.load_file("broken")

    def test_undefined_dependency_rejected(self, tmp_path):
        (tmp_path / "partial.yaml").write_text(
            "_metadata:\n"
            "  version: '1'\n"
            "  program: SNAP\n"
            "  jurisdiction: VA\n"
            "  effective_date: '2024-10-01'\n"
            "  source: test\n"
            "rules:\n"
            "  - rule_type: allotment\n"
            "    depends_on: [deduction]\n"
            "    parameters:\n"
            "      rows: {1: {max_benefit: 292}}\n"
        )
        with pytest.raises(ValueError, match="undefined rule types"):
            RuleConfigLoader(tmp_path).load_file("partial")

    def test_missing_directory(self, tmp_path):
        assert RuleConfigLoader(tmp_path / "nope").available_files() == []


class TestSeedRuleStore:
    """Tests for seed_rule_store()."""

    def test_seeds_every_program(self, store):
        created = seed_rule_store(store)

        assert created == 13
        rules = store.list_rules()
        assert len(rules) == 13
        assert all(r.status == RuleStatus.APPROVED for r in rules)
        assert {r.program_code for r in rules} == {"SNAP", "TANF", "MEDICAID", "EITC"}

    def test_seeding_is_idempotent(self, store):
        seed_rule_store(store)
        assert seed_rule_store(store) == 0
        assert len(store.list_rules()) == 13

    def test_seeded_dependencies(self, seeded_store):
        """Test income limit and allotment depend on the deduction lineage."""
        deduction = seeded_store.list_rules("SNAP", RuleType.DEDUCTION, "MD")[0]
        dependents = {r.rule_type for r in seeded_store.dependents_of(deduction.id)}
        assert dependents == {RuleType.INCOME_LIMIT, RuleType.ALLOTMENT}

    def test_env_override_reaches_store(self, store, monkeypatch):
        monkeypatch.setenv("RULE_SNAP_MD_ALLOTMENT_BENEFIT_REDUCTION_RATE", "0.25")
        seed_rule_store(store, RuleConfigLoader())

        allotment = store.list_rules("SNAP", RuleType.ALLOTMENT, "MD")[0]
        assert allotment.parameters.benefit_reduction_rate == Decimal("0.25")
