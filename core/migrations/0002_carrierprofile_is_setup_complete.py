from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('core', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='carrierprofile',
            name='is_setup_complete',
            field=models.BooleanField(default=True, help_text='False for profiles created by a go-online write before the carrier chose a type', verbose_name='Setup complete'),
        ),
    ]
