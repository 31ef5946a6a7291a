from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from .views import MeView, UserDetailView, UserListCreateView, UserLoginView

urlpatterns = [
    path("auth/login/", UserLoginView.as_view(), name="login"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("auth/me/", MeView.as_view(), name="me"),
    path("users/", UserListCreateView.as_view(), name="user-list-create"),
    path("users/<uuid:user_id>/", UserDetailView.as_view(), name="user-detail"),
]
