from __future__ import annotations
import uuid
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.text import slugify


class Storefront(models.Model):
    """Namespace owned by one creator; courses, products, plans and bundles live under it."""

    slug = models.SlugField(max_length=120, unique=True)
    name = models.CharField(max_length=180)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="storefronts",
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name or self.slug

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)[:120]
        super().save(*args, **kwargs)


class CourseQuerySet(models.QuerySet):
    def published(self):
        return self.filter(is_published=True)

    def for_storefront(self, storefront):
        return self.filter(storefront=storefront)


class Course(models.Model):
    DIFFICULTY_CHOICES = [
        ("beginner", "Beginner"),
        ("intermediate", "Intermediate"),
        ("advanced", "Advanced"),
    ]

    course_key = models.UUIDField(default=uuid.uuid4, unique=True, editable=False, db_index=True)
    storefront = models.ForeignKey(Storefront, on_delete=models.CASCADE, related_name="courses")
    slug = models.SlugField(max_length=220)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    difficulty = models.CharField(max_length=16, choices=DIFFICULTY_CHOICES, default="beginner")
    price_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")

    # Publication
    is_published = models.BooleanField(default=False)
    published_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CourseQuerySet.as_manager()

    class Meta:
        ordering = ['-published_at', '-created_at']
        constraints = [
            models.UniqueConstraint(fields=["storefront", "slug"], name="catalog_unique_course_slug_per_storefront"),
        ]

    def __str__(self) -> str:
        return self.title or self.slug or str(self.pk)

    def save(self, *args, **kwargs):
        creating = self.pk is None
        if creating and not self.slug:
            self.slug = slugify(self.title)[:220]
        if self.is_published and not self.published_at:
            self.published_at = timezone.now()
        super().save(*args, **kwargs)


class DigitalProductQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)


class DigitalProduct(models.Model):
    storefront = models.ForeignKey(Storefront, on_delete=models.CASCADE, related_name="products")
    slug = models.SlugField(max_length=220)
    title = models.CharField(max_length=180)
    description = models.TextField(blank=True)
    price_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DigitalProductQuerySet.as_manager()

    class Meta:
        ordering = ["title"]
        constraints = [
            models.UniqueConstraint(fields=["storefront", "slug"], name="catalog_unique_product_slug_per_storefront"),
        ]

    def __str__(self) -> str:
        return self.title or self.slug

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.title)[:220]
        super().save(*args, **kwargs)


class Bundle(models.Model):
    """Courses and products sold together as one purchase.

    ``is_active`` only controls whether the bundle is still on sale; buyers
    keep entitlement to the members after it is withdrawn.
    """

    storefront = models.ForeignKey(Storefront, on_delete=models.CASCADE, related_name="bundles")
    slug = models.SlugField(max_length=220)
    name = models.CharField(max_length=180)
    description = models.TextField(blank=True)
    price_cents = models.PositiveIntegerField(default=0, validators=[MinValueValidator(0)])
    currency = models.CharField(max_length=3, default="USD")
    courses = models.ManyToManyField(Course, blank=True, related_name="bundles")
    products = models.ManyToManyField(DigitalProduct, blank=True, related_name="bundles")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(fields=["storefront", "slug"], name="catalog_unique_bundle_slug_per_storefront"),
        ]

    def __str__(self) -> str:
        return self.name or self.slug

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)[:220]
        super().save(*args, **kwargs)
