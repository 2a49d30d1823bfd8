"""
Core App Views - User API
"""

from rest_framework import viewsets, permissions
from rest_framework.decorators import action
from rest_framework.response import Response
from django.contrib.auth import get_user_model

from .serializers import UserSerializer
from .models import UserRole

User = get_user_model()


class IsAdminUser(permissions.BasePermission):
    """Permission for admin users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.ADMIN


class IsCarrier(permissions.BasePermission):
    """Permission for carrier users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.CARRIER


class UserViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for User model.

    - List: Admin only
    - Retrieve: self (admin: anyone)
    """

    queryset = User.objects.all()
    serializer_class = UserSerializer

    def get_permissions(self):
        if self.action in ['list', 'carriers']:
            return [IsAdminUser()]
        return [permissions.IsAuthenticated()]

    def get_queryset(self):
        user = self.request.user
        if user.role == UserRole.ADMIN:
            return User.objects.all()
        # Non-admin can only see their own profile
        return User.objects.filter(pk=user.pk)

    @action(detail=False, methods=['get'])
    def me(self, request):
        """Get current user profile."""
        serializer = self.get_serializer(request.user)
        return Response(serializer.data)

    @action(detail=False, methods=['get'])
    def carriers(self, request):
        """List all carriers (Admin only)."""
        carriers = User.objects.filter(role=UserRole.CARRIER)
        serializer = self.get_serializer(carriers, many=True)
        return Response(serializer.data)
