import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Module",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("position", models.PositiveIntegerField(default=1)),
                ("is_published", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "course",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="modules",
                        to="catalog.course",
                    ),
                ),
            ],
            options={
                "ordering": ("course", "position", "id"),
                "indexes": [models.Index(fields=["course", "position"], name="content_module_course_pos_idx")],
            },
        ),
        migrations.CreateModel(
            name="Lesson",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("position", models.PositiveIntegerField(default=1)),
                ("is_published", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "module",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lessons",
                        to="content.module",
                    ),
                ),
            ],
            options={
                "ordering": ("module", "position", "id"),
                "indexes": [models.Index(fields=["module", "position"], name="content_lesson_module_pos_idx")],
            },
        ),
        migrations.CreateModel(
            name="Chapter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("position", models.PositiveIntegerField(default=1)),
                (
                    "type",
                    models.CharField(
                        choices=[("video", "Video"), ("article", "Article"), ("document", "Document")],
                        default="article",
                        max_length=16,
                    ),
                ),
                ("duration_seconds", models.PositiveIntegerField(blank=True, null=True)),
                ("is_published", models.BooleanField(default=True)),
                ("is_free", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "lesson",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="chapters",
                        to="content.lesson",
                    ),
                ),
            ],
            options={
                "ordering": ("lesson", "position", "id"),
                "indexes": [
                    models.Index(fields=["lesson", "position"], name="content_chapter_lesson_pos_idx"),
                    models.Index(fields=["is_free"], name="content_chapter_is_free_idx"),
                ],
            },
        ),
    ]
