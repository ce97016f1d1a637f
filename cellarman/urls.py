"""
URL routes for the cellar JSON endpoints.

Usage in the project's urls.py:
    path("cellar/", include("cellarman.urls")),
"""

from django.urls import path

from cellarman import views

app_name = 'cellarman'

urlpatterns = [
    path('tanks/candidates/', views.candidate_tanks, name='candidate-tanks'),
    path('tanks/availability/', views.availability, name='availability'),
    path('lots/active/', views.active_lots, name='active-lots'),
    path('batches/<int:batch_id>/plan/', views.plan_batch, name='plan-batch'),
    path('lots/<int:lot_id>/transition/', views.transition_lot, name='transition-lot'),
]
