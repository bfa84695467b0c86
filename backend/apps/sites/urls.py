from django.urls import path

from .views import project_summary, site_progress, site_status

urlpatterns = [
    path("sites/<int:site_id>/status/", site_status, name="site_status"),
    path("sites/<int:site_id>/progress/", site_progress, name="site_progress"),
    path("projects/<int:project_id>/summary/", project_summary, name="project_summary"),
]
