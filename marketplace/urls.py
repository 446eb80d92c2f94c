"""
URL configuration for marketplace project.
"""
from django.contrib import admin
from django.urls import path

from fulfillment.api.ops import refund_sweep_view
from fulfillment.api.views import graphql_view

urlpatterns = [
    path('admin/', admin.site.urls),
    path('graphql/', graphql_view, name='graphql'),
    path('ops/refund-sweep/', refund_sweep_view, name='ops-refund-sweep'),
]
