from django.contrib import admin

from .models import Chapter, Lesson, Module


class LessonInline(admin.TabularInline):
    model = Lesson
    extra = 0
    fields = ("position", "title", "is_published")
    ordering = ("position",)
    show_change_link = True


class ChapterInline(admin.TabularInline):
    model = Chapter
    extra = 0
    fields = ("position", "title", "type", "is_published", "is_free")
    ordering = ("position",)


@admin.register(Module)
class ModuleAdmin(admin.ModelAdmin):
    list_display = ("course", "position", "title", "is_published")
    list_filter = ("course__storefront", "is_published")
    search_fields = ("title", "course__title")
    ordering = ("course", "position")
    inlines = [LessonInline]


@admin.register(Lesson)
class LessonAdmin(admin.ModelAdmin):
    list_display = ("module", "position", "title", "is_published")
    list_filter = ("is_published", "module__course")
    search_fields = ("title", "module__title")
    ordering = ("module", "position")
    inlines = [ChapterInline]


@admin.register(Chapter)
class ChapterAdmin(admin.ModelAdmin):
    list_display = ("lesson", "position", "title", "type", "is_published", "is_free")
    list_filter = ("type", "is_published", "is_free", "lesson__module__course")
    search_fields = ("title", "lesson__title", "lesson__module__course__title")
    ordering = ("lesson", "position")
