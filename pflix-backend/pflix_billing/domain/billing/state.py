from pflix_billing.domain.billing.enums import SubscriptionStatus

# Transitions the reconciliation engine and the expiry sweep may apply.
# Activation is accepted from every state because a confirmed payment must
# never be dropped; it always re-stamps the period.
ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.active: frozenset(SubscriptionStatus),
    SubscriptionStatus.overdue: frozenset({SubscriptionStatus.pending, SubscriptionStatus.active}),
    SubscriptionStatus.canceled: frozenset(
        {SubscriptionStatus.pending, SubscriptionStatus.active, SubscriptionStatus.overdue}
    ),
    SubscriptionStatus.expired: frozenset({SubscriptionStatus.active}),
    SubscriptionStatus.pending: frozenset(),
}


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


def sources_for(target: SubscriptionStatus) -> list[SubscriptionStatus]:
    return sorted(ALLOWED_TRANSITIONS.get(target, frozenset()), key=lambda item: item.value)
