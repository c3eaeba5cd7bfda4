import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("memberships", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Grant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "content_kind",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("course", "Course"),
                            ("product", "Digital product"),
                            ("bundle", "Bundle"),
                            ("chapter", "Chapter"),
                        ],
                        default="",
                        max_length=16,
                    ),
                ),
                ("content_id", models.PositiveBigIntegerField(blank=True, null=True)),
                (
                    "route",
                    models.CharField(
                        choices=[
                            ("purchase", "Purchase"),
                            ("subscription", "Subscription"),
                            ("bundle", "Bundle"),
                            ("admin_override", "Admin override"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.PositiveIntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)]),
                ),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("completed", "Completed"), ("refunded", "Refunded")],
                        default="completed",
                        max_length=16,
                    ),
                ),
                ("external_txn_id", models.CharField(blank=True, default="", max_length=200)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("last_accessed_at", models.DateTimeField(blank=True, null=True)),
                ("access_count", models.PositiveIntegerField(default=0)),
                ("customer_synced_at", models.DateTimeField(blank=True, null=True)),
                (
                    "granted_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="issued_grants",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "storefront",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="grants",
                        to="catalog.storefront",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="grants",
                        to="memberships.subscription",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="grants",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["user", "content_kind", "content_id"], name="billing_grant_user_content_idx"),
                    models.Index(fields=["user", "storefront"], name="billing_grant_user_store_idx"),
                    models.Index(fields=["external_txn_id"], name="billing_grant_txn_idx"),
                    models.Index(fields=["status"], name="billing_grant_status_idx"),
                ],
            },
        ),
        migrations.AddConstraint(
            model_name="grant",
            constraint=models.UniqueConstraint(
                condition=models.Q(route="purchase", status="completed"),
                fields=("user", "content_kind", "content_id"),
                name="billing_unique_completed_purchase",
            ),
        ),
        migrations.AddConstraint(
            model_name="grant",
            constraint=models.UniqueConstraint(
                condition=models.Q(route="admin_override", status="completed"),
                fields=("user", "content_kind", "content_id"),
                name="billing_unique_completed_admin_override",
            ),
        ),
        migrations.CreateModel(
            name="Enrollment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("enrolled_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "course",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="enrollments",
                        to="catalog.course",
                    ),
                ),
                (
                    "grant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="enrollments",
                        to="billing.grant",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="enrollments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["user", "course"], name="billing_enroll_user_course_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("user", "course"), name="billing_unique_enrollment"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.CharField(max_length=254)),
                ("name", models.CharField(blank=True, default="", max_length=180)),
                ("source", models.CharField(blank=True, default="", max_length=60)),
                (
                    "type",
                    models.CharField(
                        choices=[("lead", "Lead"), ("paying", "Paying")],
                        default="lead",
                        max_length=10,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("inactive", "Inactive")],
                        default="active",
                        max_length=10,
                    ),
                ),
                ("total_spent", models.PositiveBigIntegerField(default=0)),
                ("last_activity_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "storefront",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="customers",
                        to="catalog.storefront",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="customer_records",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-last_activity_at"],
                "indexes": [
                    models.Index(fields=["storefront", "type"], name="billing_cust_store_type_idx"),
                    models.Index(fields=["last_activity_at"], name="billing_cust_last_activity_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("email", "storefront"), name="billing_unique_customer_per_storefront"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=200, unique=True)),
                ("event_type", models.CharField(max_length=120)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processed", "Processed"),
                            ("skipped", "Skipped"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("correlation_id", models.CharField(blank=True, default="", max_length=64)),
                ("raw_payload", models.JSONField(blank=True, default=dict)),
                ("signature", models.CharField(blank=True, default="", max_length=255)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("last_error", models.TextField(blank=True, default="")),
                (
                    "grant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_events",
                        to="billing.grant",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["event_type"], name="billing_event_type_idx"),
                    models.Index(fields=["status"], name="billing_event_status_idx"),
                    models.Index(fields=["created_at"], name="billing_event_created_idx"),
                ],
            },
        ),
    ]
