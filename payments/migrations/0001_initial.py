from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('category', models.CharField(choices=[('room', 'Room'), ('services', 'Services')], default='room', max_length=10)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('failed', 'Failed')], default='pending', max_length=10)),
                ('payment_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('payment_method', models.CharField(choices=[('mpesa', 'M-Pesa')], default='mpesa', max_length=10)),
                ('reference_number', models.CharField(max_length=40, unique=True)),
                ('month', models.CharField(max_length=7)),
                ('items', models.JSONField(blank=True, default=list)),
                ('checkout_request_id', models.CharField(blank=True, max_length=128, null=True)),
                ('merchant_request_id', models.CharField(blank=True, max_length=128, null=True)),
                ('transaction_code', models.CharField(blank=True, max_length=64, null=True)),
                ('result_code', models.CharField(blank=True, max_length=16, null=True)),
                ('result_desc', models.CharField(blank=True, max_length=256, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-payment_date'],
                'indexes': [models.Index(fields=['student', 'month', 'status'], name='payment_student_month_idx')],
                'constraints': [models.UniqueConstraint(condition=models.Q(('category', 'room'), models.Q(('status', 'failed'), _negated=True)), fields=('student', 'month'), name='one_open_room_payment_per_month')],
            },
        ),
    ]
