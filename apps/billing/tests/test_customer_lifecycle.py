from django.core import mail
from django.test import TestCase, override_settings

from apps.billing.models import Customer, CustomerType, Grant, GrantRoute, GrantStatus
from apps.billing.services import get_customer_service, get_grant_ledger
from apps.billing.tasks import send_purchase_notification, sync_customer_from_grant
from apps.catalog.refs import ContentRef
from apps.common.testing import make_course, make_product, make_storefront, make_user


class CustomerLifecycleTests(TestCase):
    def setUp(self) -> None:
        self.owner = make_user("owner")
        self.buyer = make_user("buyer", email="Buyer@Example.com")
        self.storefront = make_storefront(self.owner)
        self.course = make_course(self.storefront)
        self.product = make_product(self.storefront)
        self.ledger = get_grant_ledger()
        self.service = get_customer_service()

    def _purchase(self, ref, amount, txn):
        return self.ledger.record_purchase_grant(self.buyer, ref, self.storefront, amount, txn)

    def test_paid_grant_promotes_to_paying(self) -> None:
        grant = self._purchase(ContentRef.course(self.course.pk), 4900, "txn_1")
        customer = self.service.apply_grant(grant)

        self.assertEqual(customer.email, "buyer@example.com")
        self.assertEqual(customer.type, CustomerType.PAYING)
        self.assertEqual(customer.total_spent, 4900)
        self.assertEqual(customer.source, GrantRoute.PURCHASE)
        grant.refresh_from_db()
        self.assertIsNotNone(grant.customer_synced_at)

    def test_redelivery_counts_a_grant_once(self) -> None:
        grant = self._purchase(ContentRef.course(self.course.pk), 4900, "txn_1")
        self.service.apply_grant(grant.pk)
        customer = self.service.apply_grant(grant.pk)
        self.assertEqual(customer.total_spent, 4900)
        self.assertEqual(Customer.objects.count(), 1)

    def test_type_and_total_never_go_down(self) -> None:
        admin_grant = self.ledger.record_admin_grant(
            self.buyer, ContentRef.product(self.product.pk), self.storefront, granted_by=self.owner
        )
        customer = self.service.apply_grant(admin_grant)
        self.assertEqual(customer.type, CustomerType.LEAD)
        self.assertEqual(customer.total_spent, 0)

        paid = self._purchase(ContentRef.course(self.course.pk), 4900, "txn_1")
        customer = self.service.apply_grant(paid)
        self.assertEqual(customer.type, CustomerType.PAYING)

        self.ledger.record_refund(paid.pk)
        free = self._purchase(ContentRef.product(self.product.pk), 0, "txn_free")
        customer = self.service.apply_grant(free)
        self.assertEqual(customer.type, CustomerType.PAYING)
        self.assertEqual(customer.total_spent, 4900)

    def test_pending_grant_only_registers_a_lead(self) -> None:
        pending = Grant.objects.create(
            user=self.buyer,
            storefront=self.storefront,
            content_kind="course",
            content_id=self.course.pk,
            route=GrantRoute.PURCHASE,
            amount=4900,
            status=GrantStatus.PENDING,
        )
        customer = self.service.apply_grant(pending)
        self.assertEqual(customer.type, CustomerType.LEAD)
        self.assertEqual(customer.total_spent, 0)
        pending.refresh_from_db()
        self.assertIsNone(pending.customer_synced_at)

    def test_user_without_email_is_keyed_by_pk(self) -> None:
        anonymous_buyer = make_user("no-email", email="")
        grant = self.ledger.record_purchase_grant(
            anonymous_buyer, ContentRef.course(self.course.pk), self.storefront, 100, "txn_x"
        )
        customer = self.service.apply_grant(grant)
        self.assertEqual(customer.email, str(anonymous_buyer.pk))

    def test_stats(self) -> None:
        self.service.apply_grant(self._purchase(ContentRef.course(self.course.pk), 4900, "txn_1"))
        lead = make_user("lead")
        self.service.apply_grant(
            self.ledger.record_admin_grant(lead, ContentRef.course(self.course.pk), self.storefront, granted_by=self.owner)
        )
        stats = self.service.stats(self.storefront)
        self.assertEqual(stats.as_dict(), {"total": 2, "leads": 1, "paying": 1, "revenue": 4900})


class SideEffectTaskTests(TestCase):
    def setUp(self) -> None:
        self.owner = make_user("owner")
        self.buyer = make_user("buyer")
        self.storefront = make_storefront(self.owner)
        self.course = make_course(self.storefront, "candle-making")
        self.ref = ContentRef.course(self.course.pk)

    def test_purchase_dispatches_sync_and_notification_on_commit(self) -> None:
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            grant = get_grant_ledger().record_purchase_grant(self.buyer, self.ref, self.storefront, 4900, "txn_1")
        self.assertEqual(len(callbacks), 2)

        customer = Customer.objects.get(storefront=self.storefront)
        self.assertEqual(customer.total_spent, 4900)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("Candle Making", mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ["buyer@example.com"])

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            again = get_grant_ledger().record_purchase_grant(self.buyer, self.ref, self.storefront, 4900, "txn_2")
        self.assertEqual(again.pk, grant.pk)
        self.assertEqual(callbacks, [])

    @override_settings(ENTITLEMENTS_SEND_PURCHASE_EMAILS=False)
    def test_notification_can_be_disabled(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            get_grant_ledger().record_purchase_grant(self.buyer, self.ref, self.storefront, 4900, "txn_1")
        self.assertEqual(mail.outbox, [])
        self.assertTrue(Customer.objects.filter(storefront=self.storefront).exists())

    def test_tasks_tolerate_missing_grants(self) -> None:
        self.assertIsNone(sync_customer_from_grant(987654))
        self.assertIsNone(send_purchase_notification(987654))
