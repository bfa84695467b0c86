from django.contrib import admin

from .models import MonthlyProgress, Organization, Project, Site
from .services import delete_progress, record_progress, update_progress


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ("name", "created_at")
    search_fields = ("name",)


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "organization", "status", "is_active")
    list_filter = ("status", "is_active")
    search_fields = ("name", "code")


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ("name", "project", "project_duration_months", "normal_rate", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "code")


@admin.register(MonthlyProgress)
class MonthlyProgressAdmin(admin.ModelAdmin):
    list_display = ("site", "month", "total_progress", "monthly_progress", "target_rate", "delay_rate", "status")
    list_filter = ("status",)
    readonly_fields = ("monthly_progress", "target_rate", "delay_rate", "status")
    ordering = ("site", "month")

    def get_readonly_fields(self, request, obj=None):
        if obj is None:
            return self.readonly_fields
        return ("site", "month", *self.readonly_fields)

    def save_model(self, request, obj, form, change):
        if change:
            update_progress(
                progress=obj,
                total_progress=obj.total_progress,
                normal_rate=obj.normal_rate,
                observations=obj.observations,
            )
        else:
            saved = record_progress(
                site=obj.site,
                month=obj.month,
                total_progress=obj.total_progress,
                normal_rate=obj.normal_rate or None,
                observations=obj.observations,
            )
            obj.pk = saved.pk

    def delete_model(self, request, obj):
        delete_progress(progress=obj)

    def delete_queryset(self, request, queryset):
        for obj in queryset:
            delete_progress(progress=obj)
