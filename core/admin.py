"""
Django Admin configuration for CORE app.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils import timezone

from .models import CarrierProfile, User


class CarrierProfileInline(admin.StackedInline):
    model = CarrierProfile
    can_delete = False
    extra = 0
    fields = ('carrier_type', 'display_name', 'profile_image_url', 'is_online', 'is_active')
    readonly_fields = ('is_online',)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Custom admin for User model with phone-based auth."""

    list_display = (
        'phone_number',
        'full_name',
        'role',
        'is_active',
        'date_joined'
    )
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('phone_number', 'full_name', 'email')
    ordering = ('-date_joined',)
    inlines = [CarrierProfileInline]

    fieldsets = (
        (None, {
            'fields': ('phone_number', 'password')
        }),
        ('Profile', {
            'fields': ('full_name', 'email', 'role')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',)
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('phone_number', 'role', 'password1', 'password2'),
        }),
    )

    readonly_fields = ('date_joined',)

    actions = ['block_users', 'unblock_users']

    @admin.action(description="Block selected users")
    def block_users(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} user(s) blocked.")

    @admin.action(description="Unblock selected users")
    def unblock_users(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} user(s) unblocked.")

    def get_inline_instances(self, request, obj=None):
        # Only carriers have a presence record
        if obj is None or not obj.is_carrier:
            return []
        return super().get_inline_instances(request, obj)


@admin.register(CarrierProfile)
class CarrierProfileAdmin(admin.ModelAdmin):
    """Presence records: who is online, where, and since when."""

    list_display = (
        'name',
        'phone_number',
        'carrier_type',
        'is_setup_complete',
        'is_online',
        'has_location',
        'location_updated_at',
        'is_active',
    )
    list_filter = ('carrier_type', 'is_setup_complete', 'is_online', 'is_active')
    search_fields = ('display_name', 'user__phone_number', 'user__full_name')
    ordering = ('-updated_at',)
    readonly_fields = (
        'id', 'is_online', 'latitude', 'longitude',
        'location_updated_at', 'last_online_at', 'created_at', 'updated_at',
    )

    actions = ['deactivate_profiles', 'reactivate_profiles']

    def phone_number(self, obj):
        return obj.user.phone_number
    phone_number.short_description = "Phone"

    def has_location(self, obj):
        return obj.has_location
    has_location.boolean = True
    has_location.short_description = "Location"

    def get_readonly_fields(self, request, obj=None):
        # carrier_type is the matching key: fixed once the profile is set up
        if obj is not None and obj.is_setup_complete:
            return self.readonly_fields + ('carrier_type',)
        return self.readonly_fields

    @admin.action(description="Deactivate (and take offline)")
    def deactivate_profiles(self, request, queryset):
        updated = queryset.update(is_active=False, is_online=False, updated_at=timezone.now())
        self.message_user(request, f"{updated} profile(s) deactivated.")

    @admin.action(description="Reactivate")
    def reactivate_profiles(self, request, queryset):
        updated = queryset.update(is_active=True, updated_at=timezone.now())
        self.message_user(request, f"{updated} profile(s) reactivated.")
