"""
URL configuration for the scheduling app.
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import RecurrenceRuleViewSet, SessionInstanceViewSet, check_conflicts_view

# Create router for viewsets
router = DefaultRouter()
router.register(r'rules', RecurrenceRuleViewSet)
router.register(r'instances', SessionInstanceViewSet)

urlpatterns = [
    # Include viewset URLs
    path('', include(router.urls)),

    # Conflict check for a single window
    path('conflicts/check/', check_conflicts_view, name='check-conflicts'),
]
