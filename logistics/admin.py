"""
Django Admin configuration for LOGISTICS app.
"""

import csv
from django.contrib import admin
from django.http import HttpResponse

from .models import DeliveryRequest, DeliveryStatus
from .services.ledger import request_ledger


@admin.register(DeliveryRequest)
class DeliveryRequestAdmin(admin.ModelAdmin):
    """Admin for the request ledger. Assignment fields are read-only: claims go through the ledger."""

    list_display = (
        'short_id',
        'status',
        'carrier_type',
        'requester_phone',
        'carrier_name',
        'item_type',
        'price',
        'retry_count',
        'created_at'
    )
    list_filter = ('status', 'carrier_type', 'delivery_method', 'created_at')
    search_fields = (
        'id',
        'requester__phone_number',
        'receiver_contact',
        'assigned_carrier__phone_number',
    )
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'

    readonly_fields = (
        'id',
        'status',
        'assigned_carrier',
        'created_at',
        'assigned_at',
        'reopened_at',
        'retry_count',
    )

    fieldsets = (
        ('Identification', {
            'fields': ('id', 'status', 'carrier_type')
        }),
        ('Actors', {
            'fields': ('requester', 'assigned_carrier')
        }),
        ('Sender', {
            'fields': ('sender_name', 'sender_contact', 'sender_location', 'sender_latitude', 'sender_longitude')
        }),
        ('Receiver', {
            'fields': (
                'receiver_name', 'receiver_contact', 'receiver_location',
                'receiver_latitude', 'receiver_longitude'
            )
        }),
        ('Package', {
            'fields': ('item_type', 'quantity', 'insurance', 'is_inter_state', 'delivery_method')
        }),
        ('Pricing', {
            'fields': ('price', 'distance_km', 'eta_minutes')
        }),
        ('History', {
            'fields': ('created_at', 'assigned_at', 'reopened_at', 'retry_count'),
            'classes': ('collapse',)
        }),
    )

    def short_id(self, obj):
        return str(obj.id)[:8]
    short_id.short_description = "ID"

    def requester_phone(self, obj):
        return obj.requester.phone_number
    requester_phone.short_description = "Requester"

    def carrier_name(self, obj):
        if obj.assigned_carrier:
            return obj.assigned_carrier.full_name or obj.assigned_carrier.phone_number
        return "-"
    carrier_name.short_description = "Carrier"

    # Quick actions
    actions = ['rebroadcast', 'export_requests_csv']

    @admin.action(description="Re-broadcast (skips accepted requests)")
    def rebroadcast(self, request, queryset):
        reopened = sum(
            request_ledger.reopen(pk)
            for pk in queryset.exclude(status=DeliveryStatus.ACCEPTED).values_list('pk', flat=True)
        )
        self.message_user(request, f"{reopened} request(s) re-broadcast.")

    @admin.action(description="Export as CSV")
    def export_requests_csv(self, request, queryset):
        response = HttpResponse(content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="delivery_requests.csv"'
        response.write('\ufeff')  # BOM for Excel UTF-8

        writer = csv.writer(response)
        writer.writerow([
            'ID', 'Status', 'Carrier type', 'Requester', 'Carrier',
            'From', 'To', 'Item', 'Quantity', 'Price', 'Created'
        ])
        for obj in queryset.select_related('requester', 'assigned_carrier'):
            writer.writerow([
                str(obj.id)[:8],
                obj.get_status_display(),
                obj.get_carrier_type_display(),
                obj.requester.phone_number,
                obj.assigned_carrier.phone_number if obj.assigned_carrier else '',
                obj.sender_location,
                obj.receiver_location,
                obj.item_type,
                obj.quantity,
                obj.price,
                obj.created_at.strftime('%d/%m/%Y %H:%M'),
            ])
        return response
