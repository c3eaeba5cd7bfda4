from django.contrib import admin
from django.utils import timezone

from apps.catalog.models import Bundle, Course, DigitalProduct, Storefront
from apps.content.models import Module


class ModuleInline(admin.TabularInline):
    model = Module
    extra = 0
    fields = ("position", "title", "is_published")
    ordering = ("position",)
    show_change_link = True


@admin.register(Storefront)
class StorefrontAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "slug", "owner", "created_at")
    search_fields = ("name", "slug", "owner__username", "owner__email")
    prepopulated_fields = {"slug": ("name",)}


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "storefront", "slug", "price_cents", "is_published", "updated_at")
    list_filter = ("storefront", "is_published", "difficulty")
    search_fields = ("title", "slug", "description")
    readonly_fields = ("course_key", "published_at", "created_at", "updated_at")
    prepopulated_fields = {"slug": ("title",)}
    inlines = [ModuleInline]
    actions = ["publish", "unpublish"]
    fieldsets = (
        ("Content", {"fields": ("storefront", "title", "slug", "description", "difficulty")}),
        ("Pricing", {"fields": ("price_cents", "currency")}),
        ("Publication", {"fields": ("is_published", "published_at")}),
        ("Tech", {"fields": ("course_key", "created_at", "updated_at")}),
    )

    @admin.action(description="Publish selected courses")
    def publish(self, request, queryset):
        queryset.filter(published_at__isnull=True).update(published_at=timezone.now())
        queryset.update(is_published=True)

    @admin.action(description="Unpublish selected courses")
    def unpublish(self, request, queryset):
        queryset.update(is_published=False)


@admin.register(DigitalProduct)
class DigitalProductAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "storefront", "price_cents", "currency", "is_active")
    list_filter = ("storefront", "is_active")
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}


@admin.register(Bundle)
class BundleAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "storefront", "price_cents", "currency", "is_active")
    list_filter = ("storefront", "is_active")
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}
    filter_horizontal = ("courses", "products")
