from django.conf import settings
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models

from apps.common.progress_metrics import DEFAULT_NORMAL_RATE, normal_rate_for
from apps.common.status_evaluator import STATUS_CHOICES, STATUS_CRITICAL, classify

PROJECT_STATUS_ACTIVE = "active"
PROJECT_STATUS_DEMOBILIZED = "demobilized"
PROJECT_STATUS_REMOBILIZED = "remobilized"
PROJECT_STATUS_CHOICES = [
    (PROJECT_STATUS_ACTIVE, "active"),
    (PROJECT_STATUS_DEMOBILIZED, "demobilized"),
    (PROJECT_STATUS_REMOBILIZED, "remobilized"),
]

month_validator = RegexValidator(r"^\d{4}-(0[1-9]|1[0-2])$", "Use the YYYY-MM format.")


class Organization(models.Model):
    name = models.CharField(max_length=128)
    address = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Project(models.Model):
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="projects",
    )
    name = models.CharField(max_length=128)
    code = models.CharField(max_length=32, blank=True)
    owner_name = models.CharField(max_length=128, blank=True)
    owner_email = models.EmailField(blank=True)
    status = models.CharField(max_length=16, choices=PROJECT_STATUS_CHOICES, default=PROJECT_STATUS_ACTIVE)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return f"{self.name} ({self.code})" if self.code else self.name


class Site(models.Model):
    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="sites",
    )
    name = models.CharField(max_length=128)
    code = models.CharField(max_length=32, blank=True)
    address = models.CharField(max_length=255, blank=True)
    project_duration_months = models.PositiveIntegerField(null=True, blank=True)
    normal_rate = models.FloatField(null=True, blank=True)
    start_month = models.CharField(max_length=7, blank=True, validators=[month_validator])
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["project__name", "name", "id"]

    def __str__(self) -> str:
        return f"{self.project.name} / {self.name}"

    def effective_normal_rate(self) -> float:
        if self.normal_rate:
            return self.normal_rate
        fallback = settings.SITE_PROGRESS.get("DEFAULT_NORMAL_RATE", DEFAULT_NORMAL_RATE)
        return normal_rate_for(self.project_duration_months, fallback=fallback)


class MonthlyProgress(models.Model):
    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name="progress_entries",
    )
    month = models.CharField(max_length=7, validators=[month_validator])
    total_progress = models.FloatField(default=0, validators=[MinValueValidator(0)])
    monthly_progress = models.FloatField(default=0)
    target_rate = models.FloatField(default=0)
    normal_rate = models.FloatField(default=0)
    delay_rate = models.FloatField(default=100)
    # Cached projection of monthly_progress, rewritten on every save.
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_CRITICAL, editable=False)
    observations = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["site_id", "month"]
        unique_together = ("site", "month")

    def __str__(self) -> str:
        return f"{self.site.name} {self.month}"

    def save(self, *args, **kwargs):
        self.status = classify(self.monthly_progress)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = {*update_fields, "status", "updated_at"}
        super().save(*args, **kwargs)
