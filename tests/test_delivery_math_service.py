from __future__ import annotations

import unittest

from fieldsales.services.delivery_math_service import (
    SubItem,
    distribute_delivery,
    total_pending,
    validate_delivery,
)


class DeliveryMathServiceTests(unittest.TestCase):
    def test_delivery_fills_rows_in_listed_order(self) -> None:
        sub_items = [SubItem(id=11, pending_qty=5, delivered_qty=0), SubItem(id=12, pending_qty=3, delivered_qty=2)]
        allocations = distribute_delivery(sub_items, 6)
        self.assertEqual([a.sub_item_id for a in allocations], [11, 12])
        self.assertEqual([a.increment for a in allocations], [5, 1])
        self.assertEqual([a.new_delivered_qty for a in allocations], [5, 3])

    def test_rows_without_increment_are_omitted(self) -> None:
        sub_items = [
            SubItem(id=1, pending_qty=0, delivered_qty=4),
            SubItem(id=2, pending_qty=4, delivered_qty=0),
            SubItem(id=3, pending_qty=4, delivered_qty=0),
        ]
        allocations = distribute_delivery(sub_items, 3)
        self.assertEqual(len(allocations), 1)
        self.assertEqual(allocations[0].sub_item_id, 2)
        self.assertEqual(allocations[0].increment, 3)

    def test_increments_sum_to_delivered_quantity(self) -> None:
        sub_items = [SubItem(id=i, pending_qty=q, delivered_qty=0) for i, q in enumerate([2, 7, 1, 4])]
        allocations = distribute_delivery(sub_items, 10)
        self.assertEqual(sum(a.increment for a in allocations), 10)
        for allocation, sub_item in zip(allocations, sub_items):
            self.assertLessEqual(allocation.increment, sub_item.pending_qty)

    def test_over_delivery_is_rejected(self) -> None:
        sub_items = [SubItem(id=1, pending_qty=5, delivered_qty=0), SubItem(id=2, pending_qty=3, delivered_qty=0)]
        self.assertEqual(total_pending(sub_items), 8)
        with self.assertRaisesRegex(ValueError, r'Cannot deliver more than pending \(8\)'):
            distribute_delivery(sub_items, 9)

    def test_non_positive_quantity_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Invalid quantity'):
            distribute_delivery([SubItem(id=1, pending_qty=5, delivered_qty=0)], 0)

    def test_validate_delivery_messages(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Invalid quantity'):
            validate_delivery(-1, pending_qty=5, available_stock=5)
        with self.assertRaisesRegex(ValueError, r'Cannot deliver more than pending \(5\)'):
            validate_delivery(6, pending_qty=5, available_stock=10)
        with self.assertRaisesRegex(ValueError, r'Not enough stock \(Available: 2\)'):
            validate_delivery(3, pending_qty=5, available_stock=2)
        validate_delivery(2, pending_qty=5, available_stock=2)


if __name__ == '__main__':
    unittest.main()
