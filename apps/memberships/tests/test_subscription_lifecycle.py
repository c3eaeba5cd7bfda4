from django.test import TestCase

from apps.billing.models import Grant, GrantRoute
from apps.billing.services import get_grant_ledger
from apps.common.errors import InvalidInput
from apps.common.testing import make_course, make_storefront, make_user
from apps.memberships.domain.errors import DuplicateSubscription, InvalidTransition, PlanRetired
from apps.memberships.domain.state import SubscriptionEvent
from apps.memberships.models import Subscription, SubscriptionPlan, SubscriptionStatus
from apps.memberships.services import get_subscription_service


class SubscriptionServiceTests(TestCase):
    def setUp(self) -> None:
        self.owner = make_user("owner")
        self.member = make_user("member")
        self.storefront = make_storefront(self.owner)
        self.course = make_course(self.storefront)
        self.plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="All access", all_courses=True)
        self.service = get_subscription_service()

    def test_start_denormalises_storefront(self) -> None:
        subscription = self.service.start(self.member, self.plan, status=SubscriptionStatus.TRIALING)
        self.assertEqual(subscription.storefront_id, self.storefront.pk)
        self.assertEqual(subscription.status, SubscriptionStatus.TRIALING)

    def test_second_open_subscription_is_refused(self) -> None:
        self.service.start(self.member, self.plan)
        with self.assertRaises(DuplicateSubscription):
            self.service.start(self.member, self.plan)

    def test_resubscribe_after_cancel(self) -> None:
        first = self.service.start(self.member, self.plan)
        self.service.transition(first, SubscriptionEvent.CANCEL)
        second = self.service.start(self.member, self.plan)
        self.assertNotEqual(first.pk, second.pk)

    def test_start_rejects_bad_status_and_retired_plan(self) -> None:
        with self.assertRaises(InvalidInput):
            self.service.start(self.member, self.plan, status=SubscriptionStatus.PAST_DUE)
        self.plan.is_active = False
        self.plan.save()
        with self.assertRaises(PlanRetired):
            self.service.start(self.member, self.plan)

    def test_cancel_sets_canceled_at(self) -> None:
        subscription = self.service.start(self.member, self.plan)
        subscription = self.service.transition(subscription, SubscriptionEvent.CANCEL)
        self.assertEqual(subscription.status, SubscriptionStatus.CANCELED)
        self.assertIsNotNone(subscription.canceled_at)
        with self.assertRaises(InvalidTransition):
            self.service.transition(subscription, SubscriptionEvent.ACTIVATE)

    def test_transition_to_target_status(self) -> None:
        subscription = self.service.start(self.member, self.plan)
        subscription = self.service.transition_to(subscription, "past_due")
        self.assertEqual(subscription.status, SubscriptionStatus.PAST_DUE)
        subscription = self.service.transition_to(subscription, "active")
        self.assertEqual(subscription.status, SubscriptionStatus.ACTIVE)
        with self.assertRaises(InvalidInput):
            self.service.transition_to(subscription, "paused")

    def test_transition_to_current_status_is_a_noop(self) -> None:
        subscription = self.service.start(self.member, self.plan, status=SubscriptionStatus.TRIALING)
        updated_at = subscription.updated_at
        subscription = self.service.transition_to(subscription, "trialing")
        self.assertEqual(subscription.status, SubscriptionStatus.TRIALING)
        subscription.refresh_from_db()
        self.assertEqual(subscription.updated_at, updated_at)
        self.assertEqual(self.service.transition_to(subscription, "active").status, SubscriptionStatus.ACTIVE)

    def test_retire_plan_without_subscribers_deletes_it(self) -> None:
        self.assertTrue(self.service.retire_plan(self.plan))
        self.assertFalse(SubscriptionPlan.objects.filter(pk=self.plan.pk).exists())

    def test_retire_plan_with_subscribers_keeps_grants(self) -> None:
        subscription = self.service.start(self.member, self.plan)
        grant = get_grant_ledger().record_subscription_grant(subscription, amount=1500, external_txn_id="inv_1")

        self.assertFalse(self.service.retire_plan(self.plan))
        self.plan.refresh_from_db()
        self.assertFalse(self.plan.is_active)
        self.assertTrue(Grant.objects.completed().filter(pk=grant.pk, route=GrantRoute.SUBSCRIPTION).exists())

        with self.assertRaises(PlanRetired):
            get_grant_ledger().record_subscription_grant(subscription, amount=1500, external_txn_id="inv_2")

    def test_retire_plan_after_all_cancel_keeps_history(self) -> None:
        subscription = self.service.start(self.member, self.plan)
        self.service.transition(subscription, SubscriptionEvent.CANCEL)
        self.assertTrue(self.service.retire_plan(self.plan))
        subscription = Subscription.objects.get(pk=subscription.pk)
        self.assertIsNone(subscription.plan_id)
        self.assertEqual(subscription.storefront_id, self.storefront.pk)
