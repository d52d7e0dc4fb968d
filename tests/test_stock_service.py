from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from fieldsales.services.backend_client import BackendError, BackendUnavailableError
from fieldsales.services.memory_backend import MemoryBackend
from fieldsales.services.stock_service import (
    central_inventory,
    central_stock_qty,
    outlet_inventory,
    positive_quantities,
    process_customer_returns,
    record_store_action,
    rep_balances,
    rep_inventory_history,
    rep_stock,
    rep_stock_balances,
    return_to_storekeeper,
    storekeeper_dashboard,
    storekeeper_history,
    transfer_between_shops,
    transfer_salesman_to_rep,
)


class RepLedgerTests(unittest.TestCase):
    def test_ledger_types_add_and_subtract(self) -> None:
        balances = rep_stock_balances(
            [
                {'item_id': 1, 'qty': 10, 'type': 'OUT'},
                {'item_id': 1, 'qty': 4, 'type': 'RETURN_IN'},
                {'item_id': 1, 'qty': 3, 'type': 'SALE'},
                {'item_id': 1, 'qty': 2, 'type': 'RETURN'},
                {'item_id': 1, 'qty': 1, 'type': 'TRANSFER_OUT'},
                {'item_id': 1, 'qty': 5, 'type': 'RETURN_TO_HQ'},
                {'item_id': 2, 'qty': 7, 'type': 'out'},
                {'item_id': 2, 'qty': 100, 'type': 'IN'},
            ]
        )
        self.assertEqual(balances, {1: 3, 2: 7})

    def test_positive_quantities_drops_blanks_and_normalizes_ids(self) -> None:
        self.assertEqual(positive_quantities({'1': '3', '2': 0, '3': 'x', 'abc': 2, 4: -1}), {1: 3, 'abc': 2})


class StorekeeperActionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_add_increases_central_stock(self) -> None:
        result = record_store_action(self.backend, action='add', item_id=1, qty=10)
        self.assertEqual(result['new_qty'], 130)
        self.assertEqual(central_stock_qty(self.backend, 1), 130)
        self.assertEqual(result['transaction']['type'], 'IN')
        self.assertEqual(result['transaction']['remarks'], 'Added by storekeeper')

    def test_add_creates_missing_central_row(self) -> None:
        record_store_action(self.backend, action='ADD', item_id=5, qty=6)
        self.assertEqual(central_stock_qty(self.backend, 5), 6)

    def test_return_prefixes_reason(self) -> None:
        result = record_store_action(self.backend, action='RETURN', item_id=3, qty=2, reason='Damaged', remarks='box torn')
        self.assertEqual(result['transaction']['remarks'], 'Damaged - box torn')
        self.assertEqual(result['new_qty'], 62)

    def test_issue_requires_rep_and_stock(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Insufficient stock. Available: 4'):
            record_store_action(self.backend, action='ISSUE', item_id=2, qty=5, rep_id='u-rep')
        with self.assertRaisesRegex(ValueError, 'Please select a Representative.'):
            record_store_action(self.backend, action='ISSUE', item_id=2, qty=1)

    def test_issue_moves_stock_to_rep(self) -> None:
        result = record_store_action(self.backend, action='ISSUE', item_id=4, qty=5, rep_id='u-rep', remarks='route run')
        self.assertEqual(result['new_qty'], 30)
        self.assertEqual(result['transaction']['type'], 'OUT')
        self.assertEqual(result['transaction']['rep_id'], 'u-rep')
        self.assertEqual(result['transaction']['remarks'], 'Issued to Ravi Rep - route run')
        self.assertEqual(rep_balances(self.backend, rep_id='u-rep')[4], 5)

    def test_invalid_quantity_and_action(self) -> None:
        with self.assertRaisesRegex(ValueError, 'valid quantity'):
            record_store_action(self.backend, action='ADD', item_id=1, qty=0)
        with self.assertRaisesRegex(ValueError, 'Unknown stock action'):
            record_store_action(self.backend, action='STEAL', item_id=1, qty=1)

    def test_dashboard_counts_today_and_low_stock(self) -> None:
        now = datetime.now(tz=timezone.utc)
        record_store_action(self.backend, action='ISSUE', item_id=1, qty=3, rep_id='u-rep', now=now)
        record_store_action(self.backend, action='RETURN', item_id=1, qty=2, now=now)
        summary = storekeeper_dashboard(self.backend, now=now)
        self.assertEqual(summary['total_items'], 5)
        # Coconut Oil (4 < 5) and Sugar (no central row, 0 < 8).
        self.assertEqual(summary['low_stock'], 2)
        self.assertEqual(summary['today_issued'], 3 + 30 + 15)
        self.assertEqual(summary['today_returned'], 2)

    def test_central_inventory_flags_low_stock(self) -> None:
        inventory = {row['id']: row for row in central_inventory(self.backend)}
        self.assertTrue(inventory[2]['low_stock'])
        self.assertFalse(inventory[1]['low_stock'])
        self.assertEqual(inventory[5]['qty'], 0)

    def test_history_groups_by_day(self) -> None:
        record_store_action(self.backend, action='ADD', item_id=1, qty=1)
        history = storekeeper_history(self.backend)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]['total_qty'], 30 + 15 + 1)
        self.assertEqual(history[0]['transactions'][0]['item_name'], 'Basmati Rice 5kg')


class RepStockTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_rep_stock_lists_positive_balances(self) -> None:
        stock = {row['id']: row['qty'] for row in rep_stock(self.backend, rep_id='u-rep')}
        self.assertEqual(stock, {1: 30, 3: 15})

    def test_inventory_history_direction(self) -> None:
        return_to_storekeeper(self.backend, rep_id='u-rep', quantities={'1': 5})
        history = rep_inventory_history(self.backend, rep_id='u-rep')
        directions = {entry['type']: entry['direction'] for group in history for entry in group['items']}
        self.assertEqual(directions, {'OUT': 'ISSUED', 'RETURN_TO_HQ': 'RETURNED'})

    def test_inventory_history_direction_ignores_type_case(self) -> None:
        self.backend.insert('stock_transactions', [{'item_id': 3, 'rep_id': 'u-rep', 'qty': 2, 'type': 'out'}])
        self.backend.insert('stock_transactions', [{'item_id': 3, 'rep_id': 'u-rep', 'qty': 1, 'type': 'return_in'}])
        history = rep_inventory_history(self.backend, rep_id='u-rep')
        directions = {entry['type']: entry['direction'] for group in history for entry in group['items']}
        self.assertEqual(directions['out'], 'ISSUED')
        self.assertEqual(directions['return_in'], 'ISSUED')

    def test_return_to_storekeeper_calls_rpc_per_item(self) -> None:
        returned = return_to_storekeeper(self.backend, rep_id='u-rep', quantities={'1': 10, '3': 5, '4': 0})
        self.assertEqual(returned, 2)
        self.assertEqual(self.backend.calls.count(('rpc', 'return_rep_to_storekeeper')), 2)
        self.assertEqual(rep_balances(self.backend, rep_id='u-rep'), {1: 20, 3: 10})
        self.assertEqual(central_stock_qty(self.backend, 1), 130)

    def test_return_more_than_held_is_rejected_before_rpc(self) -> None:
        with self.assertRaisesRegex(ValueError, r'Available: 15'):
            return_to_storekeeper(self.backend, rep_id='u-rep', quantities={'3': 16})
        self.assertNotIn(('rpc', 'return_rep_to_storekeeper'), self.backend.calls)

    def test_return_aborts_on_first_rpc_error(self) -> None:
        backend = MagicMock()
        backend.select.return_value = [
            {'item_id': 1, 'qty': 10, 'type': 'OUT'},
            {'item_id': 2, 'qty': 10, 'type': 'OUT'},
        ]
        backend.rpc.side_effect = BackendError('permission denied')
        with self.assertRaises(BackendError):
            return_to_storekeeper(backend, rep_id='u-rep', quantities={1: 1, 2: 1})
        self.assertEqual(backend.rpc.call_count, 1)


class ShopStockTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_transfer_counts_successes(self) -> None:
        result = transfer_between_shops(
            self.backend,
            from_shop_id=1,
            to_shop_id=2,
            quantities={'1': 4, '2': 50},
            notes=None,
            user_id='u-salesman',
        )
        self.assertEqual(result.requested, 2)
        self.assertEqual(result.succeeded, 1)
        self.assertEqual(result.failures[0]['item_id'], 2)
        shop_two = {row['id']: row['qty'] for row in outlet_inventory(self.backend, shop_id=2)}
        self.assertEqual(shop_two[1], 4)

    def test_transfer_to_same_shop_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'same shop'):
            transfer_between_shops(self.backend, from_shop_id=1, to_shop_id='1', quantities={'1': 1}, notes=None, user_id=None)

    def test_customer_returns_add_to_shop_stock(self) -> None:
        result = process_customer_returns(
            self.backend,
            shop_id=1,
            quantities={'1': 2},
            reasons={'1': 'Expired'},
            user_id='u-salesman',
        )
        self.assertEqual(result.as_dict(), {'requested': 1, 'succeeded': 1, 'failures': []})
        shop_one = {row['id']: row['qty'] for row in outlet_inventory(self.backend, shop_id=1)}
        self.assertEqual(shop_one[1], 16)

    def test_salesman_to_rep_credits_rep_ledger(self) -> None:
        result = transfer_salesman_to_rep(self.backend, salesman_id='u-salesman', rep_id='u-rep', quantities={'2': 3})
        self.assertEqual(result.succeeded, 1)
        self.assertEqual(rep_balances(self.backend, rep_id='u-rep')[2], 3)

    def test_network_failure_aborts_batch(self) -> None:
        backend = MagicMock()
        backend.rpc.side_effect = BackendUnavailableError('timed out')
        with self.assertRaises(BackendUnavailableError):
            process_customer_returns(backend, shop_id=1, quantities={1: 1, 2: 1}, reasons=None, user_id=None)
        self.assertEqual(backend.rpc.call_count, 1)


if __name__ == '__main__':
    unittest.main()
