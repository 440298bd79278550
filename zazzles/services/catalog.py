"""Credit packs and subscription plans; Stripe price ids come from settings."""

from dataclasses import dataclass

from zazzles.core.config import get_settings


@dataclass(frozen=True)
class CreditPack:
    id: str
    credits: int
    price: int  # whole currency units

    @property
    def price_id(self) -> str:
        return getattr(get_settings(), f"stripe_{self.id}_price_id", "") or ""

    @property
    def amount_cents(self) -> int:
        return self.price * 100


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    credits: int
    price: int

    @property
    def price_id(self) -> str:
        return getattr(get_settings(), f"stripe_{self.id}_price_id", "") or ""


CREDIT_PACKS: dict[str, CreditPack] = {
    p.id: p
    for p in (
        CreditPack("pack_4", credits=4, price=5),
        CreditPack("pack_9", credits=9, price=10),
        CreditPack("pack_23", credits=23, price=25),
        CreditPack("pack_48", credits=48, price=50),
    )
}

PLANS: dict[str, Plan] = {
    p.id: p
    for p in (
        Plan("lite", "Lite", credits=15, price=15),
        Plan("starter", "Starter", credits=30, price=25),
        Plan("pro", "Pro", credits=100, price=80),
        Plan("business", "Business", credits=300, price=180),
    )
}


def get_pack(pack_id: str | None) -> CreditPack | None:
    if not pack_id:
        return None
    return CREDIT_PACKS.get(pack_id)


def get_pack_by_price_id(price_id: str) -> CreditPack | None:
    if not price_id:
        return None
    for pack in CREDIT_PACKS.values():
        if pack.price_id == price_id:
            return pack
    return None


def get_plan_by_price_id(price_id: str) -> Plan | None:
    if not price_id:
        return None
    for plan in PLANS.values():
        if plan.price_id == price_id:
            return plan
    return None


def get_plan_credits(plan_id: str | None) -> int:
    plan = PLANS.get(plan_id or "")
    return plan.credits if plan else 0


def list_packs() -> list[dict]:
    return [
        {"id": p.id, "credits": p.credits, "price": p.price, "price_per_credit": round(p.price / p.credits, 2)}
        for p in CREDIT_PACKS.values()
    ]
