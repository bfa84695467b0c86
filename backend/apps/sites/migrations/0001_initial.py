import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


MONTH_VALIDATOR = django.core.validators.RegexValidator("^\\d{4}-(0[1-9]|1[0-2])$", "Use the YYYY-MM format.")


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=128)),
                ("address", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Project",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=128)),
                ("code", models.CharField(blank=True, max_length=32)),
                ("owner_name", models.CharField(blank=True, max_length=128)),
                ("owner_email", models.EmailField(blank=True, max_length=254)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "active"),
                            ("demobilized", "demobilized"),
                            ("remobilized", "remobilized"),
                        ],
                        default="active",
                        max_length=16,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="projects",
                        to="sites.organization",
                    ),
                ),
            ],
            options={
                "ordering": ["name", "id"],
            },
        ),
        migrations.CreateModel(
            name="Site",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=128)),
                ("code", models.CharField(blank=True, max_length=32)),
                ("address", models.CharField(blank=True, max_length=255)),
                ("project_duration_months", models.PositiveIntegerField(blank=True, null=True)),
                ("normal_rate", models.FloatField(blank=True, null=True)),
                ("start_month", models.CharField(blank=True, max_length=7, validators=[MONTH_VALIDATOR])),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sites",
                        to="sites.project",
                    ),
                ),
            ],
            options={
                "ordering": ["project__name", "name", "id"],
            },
        ),
        migrations.CreateModel(
            name="MonthlyProgress",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("month", models.CharField(max_length=7, validators=[MONTH_VALIDATOR])),
                (
                    "total_progress",
                    models.FloatField(default=0, validators=[django.core.validators.MinValueValidator(0)]),
                ),
                ("monthly_progress", models.FloatField(default=0)),
                ("target_rate", models.FloatField(default=0)),
                ("normal_rate", models.FloatField(default=0)),
                ("delay_rate", models.FloatField(default=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("good", "good"),
                            ("problematic", "problematic"),
                            ("critical", "critical"),
                        ],
                        default="critical",
                        editable=False,
                        max_length=16,
                    ),
                ),
                ("observations", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "site",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="progress_entries",
                        to="sites.site",
                    ),
                ),
            ],
            options={
                "ordering": ["site_id", "month"],
                "unique_together": {("site", "month")},
            },
        ),
    ]
