import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='DeliveryRequest',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('carrier_type', models.CharField(choices=[('CARRIER', 'Carrier'), ('BICYCLE', 'Bicycle'), ('BIKE', 'Bike'), ('CAR', 'Car')], db_index=True, max_length=10, verbose_name='Carrier type')),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('ACCEPTED', 'Accepted'), ('DECLINED', 'Declined')], default='PENDING', max_length=10, verbose_name='Status')),
                ('sender_name', models.CharField(blank=True, max_length=150)),
                ('sender_contact', models.CharField(blank=True, max_length=32)),
                ('sender_location', models.CharField(max_length=255)),
                ('sender_latitude', models.FloatField(blank=True, null=True)),
                ('sender_longitude', models.FloatField(blank=True, null=True)),
                ('receiver_name', models.CharField(blank=True, max_length=150)),
                ('receiver_contact', models.CharField(max_length=32)),
                ('receiver_location', models.CharField(max_length=255)),
                ('receiver_latitude', models.FloatField(blank=True, null=True)),
                ('receiver_longitude', models.FloatField(blank=True, null=True)),
                ('item_type', models.CharField(max_length=100)),
                ('quantity', models.PositiveIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('insurance', models.BooleanField(default=False)),
                ('is_inter_state', models.BooleanField(default=False)),
                ('delivery_method', models.CharField(choices=[('ARRIVAL', 'Pick up on arrival'), ('HOME', 'Home delivery')], default='HOME', max_length=10)),
                ('price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))], verbose_name='Price (NGN)')),
                ('distance_km', models.FloatField(blank=True, null=True)),
                ('eta_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('assigned_at', models.DateTimeField(blank=True, null=True)),
                ('reopened_at', models.DateTimeField(blank=True, null=True)),
                ('retry_count', models.PositiveIntegerField(default=0)),
                ('assigned_carrier', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='assigned_requests', to=settings.AUTH_USER_MODEL, verbose_name='Assigned carrier')),
                ('requester', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='delivery_requests', to=settings.AUTH_USER_MODEL, verbose_name='Requester')),
            ],
            options={
                'verbose_name': 'Delivery request',
                'verbose_name_plural': 'Delivery requests',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['carrier_type', 'status', 'created_at'], name='request_type_status_idx'),
                    models.Index(fields=['assigned_carrier', 'status'], name='request_assignee_status_idx'),
                ],
            },
        ),
    ]
