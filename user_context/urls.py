from django.urls import path

from .views import DecodeUserContextView

urlpatterns = [
    path('decode/', DecodeUserContextView.as_view(), name='user-context-decode'),
]
