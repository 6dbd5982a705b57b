"""
Plan catalog + operator pre-provisioned links.

Plans are defined once at import time and never mutated. `amount` (integer
centavos) is the only authoritative money field; the display strings are
presentation only.

Pre-provisioned links are resolved from settings into a frozen mapping.
When the provider credential is available, startup feeds the observed link
amounts through `reconcile_links`, which swaps links that were configured
against the wrong plan before the mapping is frozen.
"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from paylink.config import Settings

import structlog

logger = structlog.get_logger()

LINK_ID_PATTERN = re.compile(r"pl_[A-Za-z0-9]+")


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    subtitle: str
    original_price: str
    price: str
    installments: str
    features: tuple[str, ...]
    amount: int
    static_fallback_url: str
    cta: str = "Comprar"
    featured: bool = False
    badge: str | None = None


@dataclass(frozen=True)
class PrecreatedLink:
    link_id: str
    url: str


PrecreatedLinks = Mapping[str, PrecreatedLink]

_PLANS: dict[str, Plan] = {
    plan.id: plan
    for plan in (
        Plan(
            id="experience",
            name="1 unidade",
            subtitle="Primeira compra",
            original_price="R$ 499,99",
            price="R$ 399,99",
            installments="ou 6x de R$ 66,67",
            features=(
                "1 pote EU+ (30 porções)",
                "Frete Grátis — Melhor Envio",
                "Garantia de 90 dias",
                "Acesso ao grupo VIP",
            ),
            cta="Comprar 1 unidade",
            badge="1ª compra",
            amount=39999,
            static_fallback_url="https://payment-link-v3.pagar.me/pl_zl8mvbaRwpMqnzYs2SlA5e4ZKVjo3Qr0",
        ),
        Plan(
            id="last_option",
            name="2 unidades",
            subtitle="Melhor custo",
            original_price="R$ 999,98",
            price="R$ 759,98 (R$ 379,99/unidade)",
            installments="ou 6x de R$ 126,66",
            features=(
                "2 potes EU+ (60 porções)",
                "Frete Grátis — Melhor Envio",
                "Garantia 90 dias",
            ),
            cta="Comprar 2 unidades",
            amount=75998,
            static_fallback_url="https://payment-link-v3.pagar.me/pl_okertjn0DjM2v1mWp31SW3hwnvfubv56GHFSVD7r",
        ),
        Plan(
            id="transformation",
            name="3 unidades",
            subtitle="Maior economia",
            original_price="R$ 1.499,97",
            price="R$ 1.079,97 (R$ 359,99/unidade)",
            installments="ou 6x de R$ 180,00",
            features=(
                "3 potes EU+ (90 porções)",
                "Frete Grátis — Melhor Envio",
                "Garantia 90 dias",
                "E-book: Guia da Juventude Funcional",
                "Acesso ao grupo VIP",
            ),
            featured=True,
            cta="Comprar 3 unidades",
            badge="Mais Vendido",
            amount=107997,
            static_fallback_url="https://payment-link-v3.pagar.me/pl_zygDjM2v1mWp31SW3hw74dPbZwAJVEle",
        ),
    )
}


def get_plan(plan_id: str) -> Plan | None:
    return _PLANS.get(plan_id)


def list_plans() -> list[Plan]:
    return list(_PLANS.values())


def plan_payload(plan: Plan, links: PrecreatedLinks) -> dict:
    """Public shape of a plan for the landing page."""
    precreated = links.get(plan.id)
    return {
        "id": plan.id,
        "name": plan.name,
        "subtitle": plan.subtitle or plan.name,
        "originalPrice": plan.original_price or None,
        "price": plan.price or None,
        "installments": plan.installments or None,
        "features": list(plan.features),
        "featured": plan.featured,
        "cta": plan.cta,
        "badge": plan.badge,
        "hrefButton": precreated.url if precreated else plan.static_fallback_url,
        "amount": plan.amount,
    }


# ---------------------------------------------------------------------------
# Pre-provisioned links
# ---------------------------------------------------------------------------

def parse_link_reference(raw: str, base_url: str) -> PrecreatedLink:
    """Accept either a bare link id or a full hosted-checkout URL."""
    raw = raw.strip()
    if raw.startswith("http"):
        match = LINK_ID_PATTERN.search(raw)
        link_id = match.group(0) if match else raw.rstrip("/").split("/")[-1]
        return PrecreatedLink(link_id=link_id, url=raw)
    return PrecreatedLink(link_id=raw, url=f"{base_url.rstrip('/')}/{raw}")


def configured_links(settings: Settings) -> PrecreatedLinks:
    """Operator-configured links, unverified, as a read-only mapping."""
    links = {
        plan_id: parse_link_reference(value, settings.payment_link_base_url)
        for plan_id, value in settings.precreated_link_values().items()
        if plan_id in _PLANS
    }
    return MappingProxyType(links)


def reconcile_links(
    links: PrecreatedLinks,
    observed_amounts: Mapping[str, int | None],
) -> PrecreatedLinks:
    """
    Swap links configured against the wrong plan.

    `observed_amounts` maps link_id → amount reported by the provider
    (None when unknown). Plans are visited in catalog order; a link whose
    amount belongs to another plan trades places with that plan's link.
    Links with an amount no plan charges are kept and logged.
    """
    resolved = dict(links)
    by_amount = {plan.amount: plan.id for plan in _PLANS.values()}

    for plan in _PLANS.values():
        link = resolved.get(plan.id)
        if link is None:
            continue
        amount = observed_amounts.get(link.link_id)
        if amount is None or amount == plan.amount:
            continue

        other_id = by_amount.get(amount)
        if other_id is None:
            logger.warning(
                "precreated_link_amount_unknown",
                plan_id=plan.id,
                link_id=link.link_id,
                amount=amount,
            )
            continue

        logger.warning(
            "precreated_link_swapped",
            plan_id=plan.id,
            other_plan_id=other_id,
            link_id=link.link_id,
        )
        other_link = resolved.get(other_id)
        resolved[other_id] = link
        if other_link is None:
            del resolved[plan.id]
        else:
            resolved[plan.id] = other_link

    return MappingProxyType(resolved)
