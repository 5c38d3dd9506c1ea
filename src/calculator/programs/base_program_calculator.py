"""Base class for benefit program calculators."""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from calculator.decimal_math import (
    ZERO,
    add,
    annualize,
    floor_at_zero,
    max_decimal,
    min_decimal,
    money,
    multiply,
    subtract,
    whole_units,
)
from models.determination import Determination
from models.household import HouseholdProfile
from rules.models import Rule, RuleSet
from rules.rule_parameters import (
    AllotmentParameters,
    CategoricalEligibilityParameters,
    DeductionParameters,
    IncomeLimitParameters,
)
from rules.rule_types import BenefitPeriod, IncomeBasis, RuleType, SizeBasis


@dataclass
class CalculationContext:
    """Mutable scratchpad for a single determination."""

    household: HouseholdProfile
    ruleset: RuleSet
    applied_rules: List[str] = field(default_factory=list)
    values: Dict[str, Decimal] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    breakdown: List[Dict[str, Any]] = field(default_factory=list)

    # Set by the categorical step
    bypass_income_tests: bool = False
    bypass_asset_test: bool = False
    categorically_eligible: bool = False

    def apply(self, rule: Rule) -> None:
        if rule.id not in self.applied_rules:
            self.applied_rules.append(rule.id)

    def set(self, name: str, value: Decimal) -> Decimal:
        self.values[name] = money(value)
        return value

    def step(self, name: str, **values: Any) -> None:
        self.breakdown.append({"step": name, **values})

    @property
    def eligible(self) -> bool:
        return not self.reasons


class BaseProgramCalculator(ABC):
    """
    Shared determination pipeline.

    Steps run in a fixed order:
    gross income -> categorical eligibility -> deductions -> net income
    -> income tests -> asset test -> benefit.

    Subclasses declare which rule types they need and override the hooks
    for program-specific behaviour.
    """

    program_code: str = ""
    required_rule_types: Tuple[RuleType, ...] = ()
    pays_benefit: bool = True
    # A computed benefit of zero makes the household ineligible
    zero_benefit_ineligible: bool = False
    zero_benefit_reason: str = "Computed benefit is zero"

    def calculate(self, household: HouseholdProfile, ruleset: RuleSet) -> Determination:
        ctx = CalculationContext(household=household, ruleset=ruleset)

        gross = ctx.set("gross_income", household.gross_income)
        ctx.step("gross_income", earned=household.income.earned,
                 unearned=household.income.unearned,
                 self_employment=household.income.self_employment, total=money(gross))

        self.pre_checks(ctx)
        self.apply_categorical(ctx)
        self.apply_deductions(ctx)

        if not ctx.bypass_income_tests:
            self.apply_income_tests(ctx)
        if not ctx.bypass_asset_test:
            self.apply_asset_test(ctx)

        monthly_benefit: Optional[Decimal] = None
        annual_credit: Optional[Decimal] = None
        if self.pays_benefit and ctx.eligible:
            amount, period = self.compute_benefit(ctx)
            if amount == ZERO and self.zero_benefit_ineligible:
                ctx.reasons.append(self.zero_benefit_reason)
            if period == BenefitPeriod.ANNUAL:
                annual_credit = amount
            else:
                monthly_benefit = amount

        if not ctx.eligible:
            monthly_benefit = None
            annual_credit = None
            if self.pays_benefit:
                ineligible_amount = ZERO.quantize(Decimal("0.01"))
                if self._benefit_period(ruleset) == BenefitPeriod.ANNUAL:
                    annual_credit = ineligible_amount
                else:
                    monthly_benefit = ineligible_amount

        return Determination(
            program=self.program_code,
            jurisdiction=household.jurisdiction,
            as_of_date=ruleset.as_of_date,
            eligible=ctx.eligible,
            monthly_benefit=monthly_benefit,
            annual_credit=annual_credit,
            applied_rules=ctx.applied_rules,
            intermediate_values=ctx.values,
            ineligibility_reasons=ctx.reasons,
            notes=ctx.notes,
            calculation_breakdown=ctx.breakdown,
        )

    # =========================================================================
    # HOOKS
    # =========================================================================

    def pre_checks(self, ctx: CalculationContext) -> None:
        """Program-specific preconditions; append to ctx.reasons to deny."""

    def household_size_for(self, ctx: CalculationContext, basis: SizeBasis) -> int:
        if basis == SizeBasis.QUALIFYING_CHILDREN:
            return ctx.household.qualifying_children
        return ctx.household.size

    # =========================================================================
    # CATEGORICAL ELIGIBILITY
    # =========================================================================

    def apply_categorical(self, ctx: CalculationContext) -> None:
        rule = ctx.ruleset.get(RuleType.CATEGORICAL_ELIGIBILITY)
        if rule is None:
            return
        params: CategoricalEligibilityParameters = rule.parameters
        matched = ctx.household.receives_any(params.qualifying_programs)
        if not matched:
            return

        ctx.apply(rule)
        ctx.categorically_eligible = True
        ctx.bypass_income_tests = params.bypass_income_tests
        ctx.bypass_asset_test = params.bypass_asset_test
        ctx.notes.append(
            f"Categorically eligible through {', '.join(matched)}; "
            f"income tests {'waived' if params.bypass_income_tests else 'applied'}"
        )
        ctx.step("categorical_eligibility", programs=matched,
                 bypass_income_tests=params.bypass_income_tests,
                 bypass_asset_test=params.bypass_asset_test)

    # =========================================================================
    # DEDUCTIONS
    # =========================================================================

    def apply_deductions(self, ctx: CalculationContext) -> None:
        """
        Apply the deduction schedule in fixed order and set net_income.

        Programs without a deduction rule use gross income as net income.
        """
        household = ctx.household
        gross = household.gross_income
        rule = ctx.ruleset.get(RuleType.DEDUCTION)
        if rule is None:
            ctx.set("net_income", gross)
            return

        params: DeductionParameters = rule.parameters
        ctx.apply(rule)
        elderly_or_disabled = household.has_elderly_or_disabled

        # 1. Standard deduction by size
        standard = params.standard_for(household.size)

        # 2. Earned income: flat disregard, then a percentage of the remainder
        earned = household.earned_total
        flat = min_decimal(earned, params.earned_income_flat_disregard)
        earned_deduction = add(flat, multiply(subtract(earned, flat), params.earned_income_percent))

        # 3. Dependent care
        dependent_care = ZERO
        if params.dependent_care_allowed:
            dependent_care = household.expenses.dependent_care
            if params.dependent_care_cap is not None:
                dependent_care = min_decimal(dependent_care, params.dependent_care_cap)

        # 4. Medical expenses above threshold
        medical = ZERO
        if params.medical_threshold is not None and (
            elderly_or_disabled or not params.medical_elderly_disabled_only
        ):
            medical = floor_at_zero(subtract(household.expenses.medical, params.medical_threshold))

        # 5. Excess shelter
        shelter = ZERO
        shelter_capped = False
        if params.shelter_income_share is not None:
            prior = add(standard, earned_deduction, dependent_care, medical)
            income_after_prior = floor_at_zero(subtract(gross, prior))
            shelter_costs = add(household.expenses.shelter, household.expenses.utilities)
            shelter = floor_at_zero(
                subtract(shelter_costs, multiply(income_after_prior, params.shelter_income_share))
            )
            cap_applies = params.shelter_cap is not None and not (
                params.shelter_cap_exempt_elderly_disabled and elderly_or_disabled
            )
            if cap_applies and shelter > params.shelter_cap:
                shelter = params.shelter_cap
                shelter_capped = True
            ctx.set("income_after_prior_deductions", income_after_prior)

        total = add(standard, earned_deduction, dependent_care, medical, shelter)
        net = floor_at_zero(subtract(gross, total))

        ctx.set("standard_deduction", standard)
        ctx.set("earned_income_deduction", earned_deduction)
        ctx.set("dependent_care_deduction", dependent_care)
        ctx.set("medical_deduction", medical)
        ctx.set("excess_shelter_deduction", shelter)
        ctx.set("total_deductions", total)
        ctx.set("net_income", net)
        if shelter_capped:
            ctx.notes.append(f"Excess shelter deduction capped at {money(params.shelter_cap)}")

        ctx.step("deductions", standard=money(standard), earned_income=money(earned_deduction),
                 dependent_care=money(dependent_care), medical=money(medical),
                 excess_shelter=money(shelter), total=money(total), net_income=money(net))

    # =========================================================================
    # INCOME AND ASSET TESTS
    # =========================================================================

    def _income_for_period(self, amount: Decimal, period: BenefitPeriod) -> Decimal:
        return annualize(amount) if period == BenefitPeriod.ANNUAL else amount

    def apply_income_tests(self, ctx: CalculationContext) -> None:
        rule = ctx.ruleset.get(RuleType.INCOME_LIMIT)
        if rule is None:
            return
        params: IncomeLimitParameters = rule.parameters
        ctx.apply(rule)

        size = self.household_size_for(ctx, params.size_basis)
        limits = params.limit_for(size)
        gross = self._income_for_period(ctx.household.gross_income, params.period)
        net = self._income_for_period(ctx.values["net_income"], params.period)

        if limits.gross_limit is not None:
            ctx.set("gross_limit", limits.gross_limit)
            exempt = params.elderly_disabled_exempt_from_gross_test and ctx.household.has_elderly_or_disabled
            if exempt:
                ctx.notes.append("Gross income test waived for elderly or disabled member")
            elif gross > limits.gross_limit:
                ctx.reasons.append(
                    f"Gross income {money(gross)} exceeds limit {money(limits.gross_limit)}"
                )

        if limits.net_limit is not None:
            ctx.set("net_limit", limits.net_limit)
            if net > limits.net_limit:
                ctx.reasons.append(
                    f"Net income {money(net)} exceeds limit {money(limits.net_limit)}"
                )

        ctx.step("income_tests", size=size, gross_limit=limits.gross_limit,
                 net_limit=limits.net_limit, passed=ctx.eligible)

    def apply_asset_test(self, ctx: CalculationContext) -> None:
        rule = ctx.ruleset.get(RuleType.INCOME_LIMIT)
        if rule is None:
            return
        params: IncomeLimitParameters = rule.parameters
        limit = params.asset_limit
        if ctx.household.has_elderly_or_disabled and params.asset_limit_elderly_disabled is not None:
            limit = params.asset_limit_elderly_disabled
        if limit is None:
            return

        ctx.apply(rule)
        ctx.set("asset_limit", limit)
        if ctx.household.assets > limit:
            ctx.reasons.append(f"Countable assets {money(ctx.household.assets)} exceed limit {money(limit)}")
        ctx.step("asset_test", assets=money(ctx.household.assets), limit=money(limit))

    # =========================================================================
    # BENEFIT
    # =========================================================================

    def _benefit_period(self, ruleset: RuleSet) -> BenefitPeriod:
        rule = ruleset.get(RuleType.ALLOTMENT)
        return rule.parameters.period if rule is not None else BenefitPeriod.MONTHLY

    def benefit_income(self, ctx: CalculationContext, params: AllotmentParameters) -> Decimal:
        if params.income_basis == IncomeBasis.GROSS:
            return ctx.household.gross_income
        if params.income_basis == IncomeBasis.EARNED:
            return ctx.household.earned_total
        return ctx.values["net_income"]

    def compute_benefit(self, ctx: CalculationContext) -> Tuple[Decimal, BenefitPeriod]:
        """
        max_benefit(size), limited by phase-in on earnings, minus the
        reduction on income above the threshold; floored at zero, then
        raised to the minimum benefit for qualifying small households.
        """
        rule = ctx.ruleset.require(RuleType.ALLOTMENT)
        params: AllotmentParameters = rule.parameters
        ctx.apply(rule)

        size = self.household_size_for(ctx, params.size_basis)
        row = params.row_for(size)
        income = self._income_for_period(self.benefit_income(ctx, params), params.period)
        earned = self._income_for_period(ctx.household.earned_total, params.period)

        rate = row.reduction_rate if row.reduction_rate is not None else params.benefit_reduction_rate
        threshold = row.reduction_threshold if row.reduction_threshold is not None else params.reduction_threshold

        base = row.max_benefit
        if row.phase_in_rate is not None:
            base = min_decimal(base, multiply(earned, row.phase_in_rate))
        reduction = multiply(rate, floor_at_zero(subtract(income, threshold)))
        benefit = floor_at_zero(subtract(base, reduction))

        if params.minimum_benefit is not None and ctx.household.size <= params.minimum_benefit_max_household_size:
            if ctx.household.has_elderly_or_disabled or not params.minimum_benefit_requires_elderly_disabled:
                if benefit < params.minimum_benefit:
                    ctx.notes.append(f"Minimum benefit of {money(params.minimum_benefit)} applied")
                    benefit = max_decimal(benefit, params.minimum_benefit)

        amount = whole_units(benefit)
        ctx.set("max_benefit", row.max_benefit)
        ctx.set("benefit_reduction", reduction)
        ctx.step("benefit", size=size, max_benefit=money(row.max_benefit), income=money(income),
                 reduction_rate=rate, reduction=money(reduction), amount=amount,
                 period=params.period.value)
        return amount, params.period
