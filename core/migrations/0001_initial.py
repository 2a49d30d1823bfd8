import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('phone_number', models.CharField(max_length=16, unique=True, validators=[django.core.validators.RegexValidator(message='Format: +2348012345678 (7 to 15 digits)', regex='^\\+?[0-9]{7,15}$')], verbose_name='Phone number')),
                ('email', models.EmailField(blank=True, max_length=254)),
                ('full_name', models.CharField(blank=True, max_length=150, verbose_name='Full name')),
                ('role', models.CharField(choices=[('ADMIN', 'Administrator'), ('SENDER', 'Sender'), ('CARRIER', 'Carrier')], default='SENDER', max_length=20, verbose_name='Role')),
                ('is_active', models.BooleanField(default=True)),
                ('is_staff', models.BooleanField(default=False)),
                ('date_joined', models.DateTimeField(auto_now_add=True)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'User',
                'verbose_name_plural': 'Users',
                'ordering': ['-date_joined'],
            },
        ),
        migrations.CreateModel(
            name='CarrierProfile',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('carrier_type', models.CharField(choices=[('CARRIER', 'Carrier'), ('BICYCLE', 'Bicycle'), ('BIKE', 'Bike'), ('CAR', 'Car')], db_index=True, default='CARRIER', max_length=10, verbose_name='Carrier type')),
                ('display_name', models.CharField(blank=True, max_length=150, verbose_name='Display name')),
                ('profile_image_url', models.URLField(blank=True, max_length=500, verbose_name='Profile photo')),
                ('is_online', models.BooleanField(default=False, verbose_name='Online')),
                ('latitude', models.FloatField(blank=True, null=True)),
                ('longitude', models.FloatField(blank=True, null=True)),
                ('location_updated_at', models.DateTimeField(blank=True, null=True)),
                ('last_online_at', models.DateTimeField(blank=True, null=True)),
                ('is_active', models.BooleanField(default=True, help_text='Deactivated profiles keep their history but cannot go online', verbose_name='Active')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='carrier_profile', to=settings.AUTH_USER_MODEL, verbose_name='Carrier')),
            ],
            options={
                'verbose_name': 'Carrier profile',
                'verbose_name_plural': 'Carrier profiles',
                'ordering': ['-updated_at'],
                'indexes': [models.Index(fields=['carrier_type', 'is_online'], name='carrier_type_online_idx')],
            },
        ),
    ]
