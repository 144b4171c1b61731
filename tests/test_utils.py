from datetime import timedelta
from decimal import Decimal
from hangar.modules.utils import SequenceGenerator, hours, money, overlaps

from conftest import aware


def test_money():
    assert money(10) == Decimal('10.00')
    assert money('0.005') == Decimal('0.01')
    assert money('0.004') == Decimal('0.00')
    assert money(Decimal('41.6662')) == Decimal('41.67')

    # floats are taken by their string representation
    assert money(1.005) == Decimal('1.01')
    assert money(0.1 + 0.2) == Decimal('0.30')


def test_hours():
    assert hours(timedelta(hours=2)) == Decimal(2)
    assert hours(timedelta(minutes=90)) == Decimal('1.5')
    assert hours(timedelta(days=1)) == Decimal(24)


def test_overlaps():
    assert overlaps(aware(10), aware(12), aware(11), aware(13))
    assert overlaps(aware(10), aware(12), aware(9), aware(13))
    assert not overlaps(aware(10), aware(12), aware(12), aware(13))
    assert not overlaps(aware(10), aware(12), aware(8), aware(10))


def test_sequence_generator():
    numbers = SequenceGenerator(year=2026)

    assert numbers('REQ') == 'REQ-2026-00001'
    assert numbers('REQ') == 'REQ-2026-00002'
    assert numbers('INV') == 'INV-2026-00001'

    numbers = SequenceGenerator(start=100, year=2027)
    assert numbers('INV') == 'INV-2027-00100'
