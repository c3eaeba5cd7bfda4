"""Which content a subscription unlocks.

Everything here is recomputed from the plan and the storefront's current
catalog on each call, so plan edits and catalog changes apply immediately.
"""
from __future__ import annotations

import logging
from typing import FrozenSet

from apps.catalog.models import Course, DigitalProduct
from apps.catalog.refs import ContentKind, ContentRef
from apps.memberships.models import Subscription

log = logging.getLogger("memberships.index")


def unlocked_content_ids(subscription: Subscription) -> FrozenSet[ContentRef]:
    if not subscription.is_live:
        return frozenset()
    plan = subscription.plan
    if plan is None:
        log.warning(
            "subscription_without_plan",
            extra={"subscription_id": subscription.pk, "user_id": subscription.user_id},
        )
        return frozenset()

    storefront_id = subscription.storefront_id
    if plan.all_courses:
        course_ids = Course.objects.published().filter(storefront_id=storefront_id).values_list("id", flat=True)
    else:
        course_ids = plan.courses.values_list("id", flat=True)
    if plan.all_products:
        product_ids = DigitalProduct.objects.filter(storefront_id=storefront_id).values_list("id", flat=True)
    else:
        product_ids = plan.products.values_list("id", flat=True)

    refs = {ContentRef.course(pk) for pk in course_ids}
    refs.update(ContentRef.product(pk) for pk in product_ids)
    return frozenset(refs)


def unlocks(subscription: Subscription, ref: ContentRef) -> bool:
    """Membership test without materialising the whole set when possible."""

    if ref.kind not in (ContentKind.COURSE, ContentKind.PRODUCT):
        return False
    if not subscription.is_live or subscription.plan is None:
        return False
    plan = subscription.plan
    if ref.kind == ContentKind.COURSE:
        if plan.all_courses:
            return Course.objects.published().filter(storefront_id=subscription.storefront_id, pk=ref.id).exists()
        return plan.courses.filter(pk=ref.id).exists()
    if plan.all_products:
        return DigitalProduct.objects.filter(storefront_id=subscription.storefront_id, pk=ref.id).exists()
    return plan.products.filter(pk=ref.id).exists()


__all__ = ["unlocked_content_ids", "unlocks"]
