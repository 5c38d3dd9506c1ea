#!/usr/bin/env python3
"""
Rule Seeding Script

Creates the database tables and loads the YAML rule parameters under
src/config/rule_parameters into the rule store as approved rules.

Usage:
    python scripts/seed_rules.py
    python scripts/seed_rules.py --file snap_md_fy2025   # One file only
    python scripts/seed_rules.py --list                  # Show available files
"""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config.rule_config_loader import RuleConfigLoader, seed_rule_store  # noqa: E402
from core.service_registry import register_default_services, services  # noqa: E402
from database.connection import get_sync_engine, init_database  # noqa: E402
from middleware.correlation import configure_logging  # noqa: E402


class SingleFileLoader(RuleConfigLoader):
    """Loader restricted to one configuration file."""

    def __init__(self, name: str):
        super().__init__()
        self.only = name

    def available_files(self):
        return [n for n in super().available_files() if n == self.only]


def main():
    parser = argparse.ArgumentParser(description="Seed benefit rules from YAML parameters")
    parser.add_argument("--file", help="Seed only this configuration file (name without .yaml)")
    parser.add_argument("--list", action="store_true", help="List configuration files and exit")
    parser.add_argument("--approved-by", default="seed", help="Recorded as the approver")
    args = parser.parse_args()

    load_dotenv()

    configure_logging("INFO")
    loader = SingleFileLoader(args.file) if args.file else RuleConfigLoader()

    if args.list:
        for name in loader.available_files():
            print(name)
        return

    if args.file and not loader.available_files():
        print(f"Unknown rule file: {args.file}")
        sys.exit(1)

    init_database(get_sync_engine())
    register_default_services()
    created = seed_rule_store(services.require("rule_store"), loader, approved_by=args.approved_by)
    print(f"Seeded {created} rules")


if __name__ == "__main__":
    main()
