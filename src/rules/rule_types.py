"""
Rule type definitions.

Provides the enums shared by the rule store, the program calculators
and the provision pipeline.
"""

from enum import Enum


class RuleType(str, Enum):
    """Kinds of codified program rules."""
    INCOME_LIMIT = "income_limit"
    DEDUCTION = "deduction"
    ALLOTMENT = "allotment"
    CATEGORICAL_ELIGIBILITY = "categorical_eligibility"
    DOCUMENT_REQUIREMENT = "document_requirement"


class RuleStatus(str, Enum):
    """Lifecycle status of a rule version."""
    DRAFT = "draft"
    APPROVED = "approved"
    SUPERSEDED = "superseded"


# Statuses that participate in effective-date resolution
RESOLVABLE_STATUSES = (RuleStatus.APPROVED, RuleStatus.SUPERSEDED)


class ProgramCode(str, Enum):
    """Supported benefit programs."""
    SNAP = "SNAP"
    TANF = "TANF"
    MEDICAID = "MEDICAID"
    EITC = "EITC"


class BenefitPeriod(str, Enum):
    """Period an amount is expressed in."""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SizeBasis(str, Enum):
    """What a size-indexed table is keyed on."""
    HOUSEHOLD_SIZE = "household_size"
    QUALIFYING_CHILDREN = "qualifying_children"


class IncomeBasis(str, Enum):
    """Which income figure an allotment reduction applies to."""
    NET = "net"
    GROSS = "gross"
    EARNED = "earned"


class RequiredWhen(str, Enum):
    """Household conditions that trigger a document requirement."""
    ALWAYS = "always"
    HAS_EARNED_INCOME = "has_earned_income"
    HAS_UNEARNED_INCOME = "has_unearned_income"
    HAS_SELF_EMPLOYMENT = "has_self_employment"
    HAS_DEPENDENT_CARE = "has_dependent_care"
    HAS_MEDICAL_EXPENSES = "has_medical_expenses"
    HAS_SHELTER_COSTS = "has_shelter_costs"
    HAS_ASSETS = "has_assets"
    HAS_ELDERLY_OR_DISABLED = "has_elderly_or_disabled"
