# Generated migration for patients app

import uuid
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Patient',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('clinic_id', models.CharField(db_index=True, max_length=64, verbose_name='Clinic')),
                ('name', models.CharField(max_length=255, verbose_name='Name')),
                ('hn_code', models.CharField(help_text='Hospital number', max_length=64, verbose_name='HN Code')),
                ('id_code', models.CharField(blank=True, help_text='National ID', max_length=64, verbose_name='ID Code')),
                ('last_visit', models.DateTimeField(blank=True, null=True, verbose_name='Last Visit')),
                ('history', models.JSONField(blank=True, default=list, verbose_name='History')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
            ],
            options={
                'verbose_name': 'Patient',
                'verbose_name_plural': 'Patients',
                'db_table': 'patients',
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddIndex(
            model_name='patient',
            index=models.Index(fields=['clinic_id', 'hn_code'], name='patients_clinic_hn_idx'),
        ),
        migrations.AddIndex(
            model_name='patient',
            index=models.Index(fields=['-created_at'], name='patients_created_idx'),
        ),
    ]
