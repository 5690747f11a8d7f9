from decimal import Decimal

from django.conf import settings

ROOM_ITEM = 'room'


def billable_items(room=None):
    """Catalog of line items as dicts, with room rent taken from ``room``."""
    items = []
    for code, (label, amount) in settings.HOSTEL_BILLABLE_ITEMS.items():
        if code == ROOM_ITEM:
            amount = room.price_per_month if room is not None else 0
        items.append({'id': code, 'name': label, 'amount': Decimal(str(amount))})
    return items


def total_for(codes, room=None):
    """Sum the selected line items. Unknown codes raise KeyError."""
    catalog = {item['id']: item['amount'] for item in billable_items(room)}
    return sum((catalog[code] for code in codes), Decimal('0'))
