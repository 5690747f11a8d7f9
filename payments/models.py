import uuid
from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


def generate_reference_number(student_id, month):
    return f"PAY-{str(student_id)[:4]}-{month.replace('-', '')}-{uuid.uuid4().hex[:8]}".upper()


class PaymentQuerySet(models.QuerySet):
    def pending(self):
        return self.filter(status=Payment.Status.PENDING)

    def non_failed_room(self, student, month):
        return self.filter(student=student, month=month, category=Payment.Category.ROOM).exclude(
            status=Payment.Status.FAILED
        )


class Payment(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    class Method(models.TextChoices):
        MPESA = 'mpesa', 'M-Pesa'

    class Category(models.TextChoices):
        ROOM = 'room', 'Room'
        SERVICES = 'services', 'Services'

    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    category = models.CharField(max_length=10, choices=Category.choices, default=Category.ROOM)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    payment_date = models.DateTimeField(default=timezone.now)
    payment_method = models.CharField(max_length=10, choices=Method.choices, default=Method.MPESA)
    reference_number = models.CharField(max_length=40, unique=True)
    month = models.CharField(max_length=7)  # YYYY-MM
    items = models.JSONField(default=list, blank=True)

    # Provider-specific references
    checkout_request_id = models.CharField(max_length=128, blank=True, null=True)
    merchant_request_id = models.CharField(max_length=128, blank=True, null=True)
    transaction_code = models.CharField(max_length=64, blank=True, null=True)
    result_code = models.CharField(max_length=16, blank=True, null=True)
    result_desc = models.CharField(max_length=256, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ['-payment_date']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'month'],
                condition=Q(category='room') & ~Q(status='failed'),
                name='one_open_room_payment_per_month',
            ),
        ]
        indexes = [
            models.Index(fields=['student', 'month', 'status'], name='payment_student_month_idx'),
        ]

    def __str__(self):
        return f"{self.reference_number} {self.amount} - {self.status}"

    @property
    def is_terminal(self):
        return self.status in (self.Status.COMPLETED, self.Status.FAILED)

    # Terminal transitions are conditional updates on status=pending, so a row
    # that reached completed or failed never changes again.
    def _still_pending(self):
        return Payment.objects.filter(pk=self.pk, status=self.Status.PENDING)

    def _completed_fields(self, receipt_number, result_code, result_desc):
        now = timezone.now()
        return dict(
            status=self.Status.COMPLETED,
            transaction_code=receipt_number or self.reference_number,
            payment_date=now,
            result_code=result_code,
            result_desc=(result_desc or '')[:256] or None,
            updated_at=now,
        )

    def _failed_fields(self, result_code, result_desc):
        return dict(
            status=self.Status.FAILED,
            transaction_code=None,
            result_code=result_code,
            result_desc=(result_desc or '')[:256] or None,
            updated_at=timezone.now(),
        )

    def mark_completed(self, receipt_number=None, result_code='0', result_desc=None):
        updated = self._still_pending().update(**self._completed_fields(receipt_number, result_code, result_desc))
        self.refresh_from_db()
        return bool(updated)

    def mark_failed(self, result_code=None, result_desc=None):
        updated = self._still_pending().update(**self._failed_fields(result_code, result_desc))
        self.refresh_from_db()
        return bool(updated)

    async def amark_completed(self, receipt_number=None, result_code='0', result_desc=None):
        updated = await self._still_pending().aupdate(**self._completed_fields(receipt_number, result_code, result_desc))
        await self.arefresh_from_db()
        return bool(updated)

    async def amark_failed(self, result_code=None, result_desc=None):
        updated = await self._still_pending().aupdate(**self._failed_fields(result_code, result_desc))
        await self.arefresh_from_db()
        return bool(updated)
