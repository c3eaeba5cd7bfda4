from django.test import TestCase

from apps.catalog.refs import ContentRef
from apps.common.testing import make_course, make_product, make_storefront, make_user
from apps.memberships.models import Subscription, SubscriptionPlan, SubscriptionStatus
from apps.memberships.services import unlocked_content_ids, unlocks


class SubscriptionIndexTests(TestCase):
    def setUp(self) -> None:
        self.owner = make_user("owner")
        self.member = make_user("member")
        self.storefront = make_storefront(self.owner)
        self.course_a = make_course(self.storefront, "course-a")
        self.course_b = make_course(self.storefront, "course-b")
        self.draft = make_course(self.storefront, "draft", published=False)
        self.product = make_product(self.storefront)

        other_storefront = make_storefront(make_user("rival"), slug="rival")
        self.foreign_course = make_course(other_storefront, "foreign")

    def _subscribe(self, plan, status=SubscriptionStatus.ACTIVE) -> Subscription:
        return Subscription.objects.create(user=self.member, plan=plan, storefront=self.storefront, status=status)

    def test_all_courses_means_published_courses_of_the_storefront(self) -> None:
        plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="All access", all_courses=True)
        refs = unlocked_content_ids(self._subscribe(plan))
        self.assertEqual(refs, frozenset({ContentRef.course(self.course_a.pk), ContentRef.course(self.course_b.pk)}))
        self.assertNotIn(ContentRef.course(self.draft.pk), refs)
        self.assertNotIn(ContentRef.course(self.foreign_course.pk), refs)

    def test_explicit_lists_are_unioned(self) -> None:
        plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="Starter")
        plan.courses.add(self.course_a)
        plan.products.add(self.product)
        subscription = self._subscribe(plan)
        self.assertEqual(
            unlocked_content_ids(subscription),
            frozenset({ContentRef.course(self.course_a.pk), ContentRef.product(self.product.pk)}),
        )
        self.assertTrue(unlocks(subscription, ContentRef.product(self.product.pk)))
        self.assertFalse(unlocks(subscription, ContentRef.course(self.course_b.pk)))

    def test_all_products_flag(self) -> None:
        plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="Downloads", all_products=True)
        subscription = self._subscribe(plan)
        self.assertEqual(unlocked_content_ids(subscription), frozenset({ContentRef.product(self.product.pk)}))

    def test_only_trialing_and_active_unlock(self) -> None:
        plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="All access", all_courses=True)
        for status in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED):
            with self.subTest(status=status):
                subscription = self._subscribe(plan, status=status)
                self.assertEqual(unlocked_content_ids(subscription), frozenset())
                self.assertFalse(unlocks(subscription, ContentRef.course(self.course_a.pk)))
        trial = self._subscribe(plan, status=SubscriptionStatus.TRIALING)
        self.assertTrue(unlocks(trial, ContentRef.course(self.course_a.pk)))

    def test_plan_narrowing_applies_immediately(self) -> None:
        plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="Starter")
        plan.courses.add(self.course_a, self.course_b)
        subscription = self._subscribe(plan)
        self.assertTrue(unlocks(subscription, ContentRef.course(self.course_b.pk)))

        plan.courses.remove(self.course_b)
        subscription.refresh_from_db()
        self.assertFalse(unlocks(subscription, ContentRef.course(self.course_b.pk)))

    def test_higher_tier_does_not_inherit_lower_tier_lists(self) -> None:
        basic = SubscriptionPlan.objects.create(storefront=self.storefront, name="Basic", tier=1)
        basic.courses.add(self.course_a)
        premium = SubscriptionPlan.objects.create(storefront=self.storefront, name="Premium", tier=2)
        premium.courses.add(self.course_b)

        subscription = self._subscribe(premium)
        self.assertFalse(unlocks(subscription, ContentRef.course(self.course_a.pk)))
        self.assertTrue(unlocks(subscription, ContentRef.course(self.course_b.pk)))

    def test_chapter_and_bundle_refs_are_never_unlocked_directly(self) -> None:
        plan = SubscriptionPlan.objects.create(storefront=self.storefront, name="All access", all_courses=True)
        subscription = self._subscribe(plan)
        self.assertFalse(unlocks(subscription, ContentRef.bundle(1)))
        self.assertFalse(unlocks(subscription, ContentRef.chapter(1)))

    def test_subscription_without_plan_unlocks_nothing(self) -> None:
        subscription = Subscription.objects.create(user=self.member, plan=None, storefront=self.storefront)
        self.assertEqual(unlocked_content_ids(subscription), frozenset())
