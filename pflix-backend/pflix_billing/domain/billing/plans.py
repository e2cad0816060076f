from dataclasses import dataclass

from pflix_billing.domain.billing.enums import Plan


@dataclass(frozen=True)
class PlanConfig:
    name: str
    price_cents: int
    screens: int


PLAN_CONFIG: dict[Plan, PlanConfig] = {
    Plan.basic: PlanConfig(name="Plano Basic", price_cents=1000, screens=1),
    Plan.duo: PlanConfig(name="Plano Duo", price_cents=1499, screens=2),
}


def plan_config(plan: Plan) -> PlanConfig:
    return PLAN_CONFIG[plan]


def plan_display_name(plan: Plan | None) -> str:
    if plan is None:
        return PLAN_CONFIG[Plan.basic].name
    return PLAN_CONFIG[plan].name
