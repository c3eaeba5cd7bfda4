import threading
import time
from unittest import mock

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings

from apps.billing import tasks
from apps.billing.models import Grant, GrantRoute
from apps.billing.services import GrantLedger, get_grant_ledger
from apps.billing.services.telemetry import get_touch_publisher
from apps.catalog.capabilities import AccessCapabilities
from apps.catalog.models import Bundle
from apps.catalog.refs import ContentRef
from apps.common.errors import InvalidInput
from apps.common.testing import add_chapters, make_course, make_product, make_storefront, make_user
from apps.content.access import AccessDecision, EntitlementResolver, resolve
from apps.memberships.models import Subscription, SubscriptionPlan, SubscriptionStatus
from apps.memberships.services import get_subscription_service

class AccessDecisionStatusTests(SimpleTestCase):
    def test_status_mapping(self) -> None:
        self.assertEqual(AccessDecision(True, route=GrantRoute.PURCHASE, reason="purchase").status, 200)
        self.assertEqual(AccessDecision(False, reason="not_found").status, 404)
        self.assertEqual(AccessDecision(False, reason="timeout").status, 503)
        self.assertEqual(AccessDecision(False, reason="unavailable").status, 503)
        self.assertEqual(AccessDecision(False, reason="no_entitlement").status, 403)

class ResolverTestCase(TestCase):
    def setUp(self) -> None:
        self.owner = make_user("owner")
        self.buyer = make_user("buyer")
        self.storefront = make_storefront(self.owner)
        self.course = make_course(self.storefront)
        self.free_chapter, self.paid_chapter = add_chapters(self.course, 2, free=1)
        self.course_ref = ContentRef.course(self.course.pk)
        self.ledger = get_grant_ledger()
        self.resolver = EntitlementResolver()

    def _purchase(self, ref=None, txn: str = "txn_1") -> Grant:
        return self.ledger.record_purchase_grant(self.buyer, ref or self.course_ref, self.storefront, 4900, txn)

class FreeChapterTests(ResolverTestCase):
    def test_anonymous_reader_gets_free_chapter(self) -> None:
        decision = resolve(None, self.storefront, ContentRef.chapter(self.free_chapter.pk))
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.route, GrantRoute.ADMIN_OVERRIDE)
        self.assertEqual(decision.reason, "free_chapter")
        self.assertIsNone(decision.grant)

    def test_free_chapter_never_reads_the_ledger(self) -> None:
        with mock.patch.object(GrantLedger, "completed_purchase") as completed_purchase:
            decision = self.resolver.resolve(self.buyer, self.storefront, ContentRef.chapter(self.free_chapter.pk))
        self.assertTrue(decision.has_access)
        completed_purchase.assert_not_called()

    def test_anonymous_reader_on_gated_content_is_an_error(self) -> None:
        with self.assertRaises(InvalidInput):
            self.resolver.resolve(None, self.storefront, ContentRef.chapter(self.paid_chapter.pk))
        with self.assertRaises(InvalidInput):
            self.resolver.resolve(None, self.storefront, self.course_ref)

    def test_free_chapter_outside_published_tree_is_gated(self) -> None:
        ref = ContentRef.chapter(self.free_chapter.pk)
        lesson = self.free_chapter.lesson
        lesson.is_published = False
        lesson.save()
        with self.assertRaises(InvalidInput):
            self.resolver.resolve(None, self.storefront, ref)
        self.assertFalse(self.resolver.resolve(self.buyer, self.storefront, ref).has_access)
        self.assertEqual(self.resolver.accessible_chapter_ids(None, self.storefront, self.course), frozenset())

        self._purchase()
        self.assertEqual(self.resolver.resolve(self.buyer, self.storefront, ref).route, GrantRoute.PURCHASE)

    def test_reference_must_be_a_content_ref(self) -> None:
        with self.assertRaises(InvalidInput):
            self.resolver.resolve(self.buyer, self.storefront, ("course", self.course.pk))

class PurchaseAndBundleTests(ResolverTestCase):
    def test_purchase_grants_course_and_its_chapters(self) -> None:
        grant = self._purchase()
        for ref in (self.course_ref, ContentRef.chapter(self.paid_chapter.pk)):
            with self.subTest(ref=str(ref)):
                decision = self.resolver.resolve(self.buyer, self.storefront, ref)
                self.assertTrue(decision.has_access)
                self.assertEqual(decision.route, GrantRoute.PURCHASE)
                self.assertEqual(decision.grant, grant)

    def test_no_entitlement_is_denied(self) -> None:
        decision = self.resolver.resolve(self.buyer, self.storefront, ContentRef.chapter(self.paid_chapter.pk))
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.reason, "no_entitlement")
        self.assertEqual(decision.status, 403)

    def test_refund_revokes_access_on_next_call(self) -> None:
        grant = self._purchase()
        self.assertTrue(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)
        self.ledger.record_refund(grant.pk)
        self.assertFalse(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)

    def test_bundle_purchase_propagates_to_members(self) -> None:
        product = make_product(self.storefront)
        bundle = Bundle.objects.create(storefront=self.storefront, slug="pack", name="Pack")
        bundle.courses.add(self.course)
        bundle.products.add(product)
        grant = self._purchase(ContentRef.bundle(bundle.pk), txn="txn_pack")

        for ref in (self.course_ref, ContentRef.product(product.pk), ContentRef.chapter(self.paid_chapter.pk)):
            with self.subTest(ref=str(ref)):
                decision = self.resolver.resolve(self.buyer, self.storefront, ref)
                self.assertTrue(decision.has_access)
                self.assertEqual(decision.route, GrantRoute.BUNDLE)
                self.assertEqual(decision.grant, grant)

        # Withdrawing the bundle from sale keeps existing buyers entitled.
        bundle.is_active = False
        bundle.save()
        self.assertTrue(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)

    def test_direct_purchase_wins_over_bundle(self) -> None:
        bundle = Bundle.objects.create(storefront=self.storefront, slug="pack", name="Pack")
        bundle.courses.add(self.course)
        self._purchase(ContentRef.bundle(bundle.pk), txn="txn_pack")
        direct = self._purchase()
        decision = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertEqual(decision.route, GrantRoute.PURCHASE)
        self.assertEqual(decision.grant, direct)

class SubscriptionRouteTests(ResolverTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="All access", all_courses=True)

    def test_live_subscription_unlocks_course(self) -> None:
        subscription = get_subscription_service().start(self.buyer, self.plan)
        decision = self.resolver.resolve(self.buyer, self.storefront, ContentRef.chapter(self.paid_chapter.pk))
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.route, GrantRoute.SUBSCRIPTION)
        self.assertIsNone(decision.grant)

        period = self.ledger.record_subscription_grant(subscription, amount=1500, external_txn_id="inv_1")
        decision = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertEqual(decision.grant, period)

    def test_lapse_mid_session_denies_next_call(self) -> None:
        subscription = get_subscription_service().start(self.buyer, self.plan)
        first = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertTrue(first.has_access)

        get_subscription_service().transition_to(subscription, SubscriptionStatus.PAST_DUE)
        second = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertFalse(second.has_access)
        self.assertEqual(second.reason, "no_entitlement")
        self.assertTrue(first.has_access)

    def test_cancellation_denies_next_call(self) -> None:
        subscription = get_subscription_service().start(self.buyer, self.plan)
        self.assertTrue(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)
        get_subscription_service().transition_to(subscription, SubscriptionStatus.CANCELED)
        self.assertFalse(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)

    def test_purchase_survives_subscription_lapse(self) -> None:
        subscription = get_subscription_service().start(self.buyer, self.plan)
        self._purchase()
        get_subscription_service().transition_to(subscription, SubscriptionStatus.CANCELED)
        decision = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertEqual(decision.route, GrantRoute.PURCHASE)

    def test_plan_narrowing_removes_access(self) -> None:
        self.plan.all_courses = False
        self.plan.save()
        self.plan.courses.add(self.course)
        get_subscription_service().start(self.buyer, self.plan)
        self.assertTrue(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)

        self.plan.courses.clear()
        self.assertFalse(self.resolver.resolve(self.buyer, self.storefront, self.course_ref).has_access)

    def test_multiple_open_subscriptions_are_reported(self) -> None:
        narrow = SubscriptionPlan.objects.create(storefront=self.storefront, name="Narrow")
        Subscription.objects.create(user=self.buyer, plan=narrow)
        Subscription.objects.create(user=self.buyer, plan=self.plan, status=SubscriptionStatus.TRIALING)

        with self.assertLogs("entitlements.resolver", level="WARNING") as logs:
            decision = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.route, GrantRoute.SUBSCRIPTION)
        self.assertTrue(any("multiple_open_subscriptions" in line for line in logs.output))

class AdminOverrideTests(ResolverTestCase):
    def test_owner_capability_grants_access(self) -> None:
        capabilities = AccessCapabilities.for_owner(self.owner)
        decision = self.resolver.resolve(self.owner, self.storefront, self.course_ref, capabilities=capabilities)
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.route, GrantRoute.ADMIN_OVERRIDE)
        self.assertEqual(decision.reason, "admin_capability")

    def test_capabilities_are_never_derived_by_the_resolver(self) -> None:
        decision = self.resolver.resolve(self.owner, self.storefront, self.course_ref)
        self.assertFalse(decision.has_access)

    def test_capability_for_another_storefront_does_not_apply(self) -> None:
        capabilities = AccessCapabilities.admin_of([self.storefront.pk + 100])
        decision = self.resolver.resolve(self.buyer, self.storefront, self.course_ref, capabilities=capabilities)
        self.assertFalse(decision.has_access)

    def test_standing_admin_grant(self) -> None:
        grant = self.ledger.record_admin_grant(self.buyer, self.course_ref, self.storefront, granted_by=self.owner)
        decision = self.resolver.resolve(self.buyer, self.storefront, ContentRef.chapter(self.paid_chapter.pk))
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.reason, "admin_grant")
        self.assertEqual(decision.grant, grant)

class FailureModeTests(ResolverTestCase):
    def test_unknown_content_is_not_found(self) -> None:
        decision = self.resolver.resolve(self.buyer, self.storefront, ContentRef.course(987654))
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.reason, "not_found")
        self.assertEqual(decision.status, 404)

    def test_storefront_mismatch_is_not_found(self) -> None:
        self._purchase()
        other = make_storefront(make_user("rival"), slug="rival")
        decision = self.resolver.resolve(self.buyer, other, self.course_ref)
        self.assertEqual(decision.reason, "not_found")

    def test_exhausted_budget_fails_closed(self) -> None:
        self._purchase()
        resolver = EntitlementResolver(budget_ms=0)
        decision = resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.reason, "timeout")
        self.assertEqual(decision.status, 503)
        self.assertTrue(resolver.resolve(None, self.storefront, ContentRef.chapter(self.free_chapter.pk)).has_access)

    @override_settings(ENTITLEMENTS_RESOLVER_BUDGET_MS=0)
    def test_budget_comes_from_settings(self) -> None:
        self._purchase()
        self.assertEqual(EntitlementResolver().resolve(self.buyer, self.storefront, self.course_ref).reason, "timeout")

    def test_store_errors_fail_closed(self) -> None:
        with mock.patch.object(GrantLedger, "completed_purchase", side_effect=DatabaseError("ledger down")):
            decision = self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.reason, "unavailable")

class AccessTelemetryTests(ResolverTestCase):
    def test_granted_read_touches_the_grant_after_commit(self) -> None:
        grant = self._purchase()
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertEqual(len(callbacks), 1)
        grant.refresh_from_db()
        self.assertEqual(grant.access_count, 1)
        self.assertIsNotNone(grant.last_accessed_at)

    @override_settings(ENTITLEMENTS_TOUCH_ACCESS_ENABLED=False)
    def test_telemetry_can_be_disabled(self) -> None:
        self._purchase()
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.resolver.resolve(self.buyer, self.storefront, self.course_ref)
        self.assertEqual(callbacks, [])

@override_settings(ENTITLEMENTS_TOUCH_ACCESS_ASYNC=True, ENTITLEMENTS_RESOLVER_BUDGET_MS=300)
class AccessTelemetryOutsideTransactionTests(TransactionTestCase):
    """Autocommit runs on_commit callbacks immediately, inside resolve()."""

    def setUp(self) -> None:
        owner = make_user("owner")
        self.buyer = make_user("buyer")
        self.storefront = make_storefront(owner)
        self.course = make_course(self.storefront)
        self.course_ref = ContentRef.course(self.course.pk)

    def test_slow_broker_does_not_delay_the_decision(self) -> None:
        grant = get_grant_ledger().record_purchase_grant(self.buyer, self.course_ref, self.storefront, 4900, "txn_slow")
        publishing = threading.Event()
        release = threading.Event()

        def slow_publish(*args, **kwargs):
            publishing.set()
            release.wait(2.0)

        with mock.patch.object(tasks.touch_grant_access, "apply_async", side_effect=slow_publish) as publish:
            started = time.monotonic()
            decision = EntitlementResolver().resolve(self.buyer, self.storefront, self.course_ref)
            elapsed = time.monotonic() - started
            self.assertTrue(publishing.wait(2.0))
            release.set()
            self.assertTrue(get_touch_publisher().join(2.0))

        self.assertTrue(decision.has_access)
        self.assertEqual(decision.route, GrantRoute.PURCHASE)
        self.assertLess(elapsed, 0.3)
        publish.assert_called_once_with(args=[grant.pk], retry=False)

class AccessibleChaptersTests(ResolverTestCase):
    def test_free_chapters_only_without_entitlement(self) -> None:
        hidden = add_chapters(self.course, 1)[0]
        hidden.is_published = False
        hidden.save()

        ids = self.resolver.accessible_chapter_ids(None, self.storefront, self.course)
        self.assertEqual(ids, frozenset({self.free_chapter.pk}))

        self._purchase()
        ids = self.resolver.accessible_chapter_ids(self.buyer, self.storefront, self.course)
        self.assertEqual(ids, frozenset({self.free_chapter.pk, self.paid_chapter.pk}))
