from datetime import timedelta

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.exceptions import PaymentError
from payments.models import Payment
from payments.services.reconciliation import PaymentReconciler


class Command(BaseCommand):
    help = 'Re-query M-Pesa for payments left pending (e.g. the student closed the page mid-poll)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--older-than',
            type=int,
            default=5,
            help='Only reconcile payments created at least this many minutes ago (default: 5)',
        )

    def handle(self, *args, **options):
        cutoff = timezone.now() - timedelta(minutes=options['older_than'])
        pending = Payment.objects.pending().filter(
            created_at__lte=cutoff,
            checkout_request_id__isnull=False,
        ).order_by('created_at')

        if not pending.exists():
            self.stdout.write('No pending payments to reconcile.')
            return

        reconciler = PaymentReconciler()
        counts = {Payment.Status.COMPLETED: 0, Payment.Status.FAILED: 0, Payment.Status.PENDING: 0}
        for payment in pending:
            try:
                payment = async_to_sync(reconciler.reconcile)(payment)
            except PaymentError as e:
                self.stdout.write(self.style.WARNING(f'{payment.reference_number}: {e.message}'))
                counts[Payment.Status.PENDING] += 1
                continue
            counts[payment.status] += 1
            self.stdout.write(f'{payment.reference_number}: {payment.status}')

        self.stdout.write(self.style.SUCCESS(
            f"Reconciled: {counts['completed']} completed, {counts['failed']} failed, "
            f"{counts['pending']} still pending"
        ))
