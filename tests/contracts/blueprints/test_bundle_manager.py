from apelaunch.contracts.blueprints.bundle_ledger import Allocation
from apelaunch.contracts.blueprints.bundle_manager import (
    InvalidSwap,
    KeptAmountTooLarge,
    LengthMismatch,
    NotAvailableTokens,
    NotMergeable,
    NothingToSplit,
    carve,
)
from apelaunch.contracts.blueprints.sale_ledger import NotEnoughTokens
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from tests.contracts.blueprints.unittest import DAY, TOKEN, PlatformTestCase


class BundleManagerTestCase(PlatformTestCase):
    """Split, merge, swap and withdraw."""

    def setUp(self):
        super().setUp()
        self.manager = self.deployment.bundle_manager
        self.bundle_ledger = self.deployment.bundle_ledger
        self.sale_id, self.sale_address = self._create_sale()

    def _mint(self, owner, allocations):
        return self.call_public(self.bundle_ledger, "mint", self.manager, owner, allocations)

    def _totals(self, sale_id):
        """Sum of full and remaining amounts of a sale over every live bundle."""
        full = remaining = 0
        for owner in (self.investor_address, self.investor2_address, self.fee_wallet):
            for bundle_id in self._bundles_of(owner):
                for allocation in self._get_bundle(bundle_id):
                    if allocation.sale_id == sale_id:
                        full += allocation.full_amount
                        remaining += allocation.remaining_amount
        return full, remaining

    # Split

    def test_split(self):
        bundle_id = self._mint(self.investor_address, [Allocation(self.sale_id, 100, 100)])
        new_bundle_id = self.call_public(self.manager, "split", self.investor_address, bundle_id, [30])

        self.assertEqual(self._get_bundle(new_bundle_id), [Allocation(self.sale_id, 30, 30)])
        self.assertEqual(self._get_bundle(bundle_id), [Allocation(self.sale_id, 69, 69)])
        fee_bundles = self._bundles_of(self.fee_wallet)
        self.assertEqual(self._get_bundle(fee_bundles[0]), [Allocation(self.sale_id, 1, 1)])
        self.assertEqual(self._bundles_of(self.investor_address), [bundle_id, new_bundle_id])
        self.assertEqual(self._totals(self.sale_id), (100, 100))
        self.assertEventEmitted("BundleSplit", bundle_id=bundle_id, new_bundle_id=new_bundle_id, fees=[1])

    def test_split_partially_withdrawn_allocation(self):
        bundle_id = self._mint(self.investor_address, [Allocation(self.sale_id, 1_000, 800)])
        new_bundle_id = self.call_public(self.manager, "split", self.investor_address, bundle_id, [400])

        self.assertEqual(self._get_bundle(new_bundle_id), [Allocation(self.sale_id, 500, 400)])
        self.assertEqual(self._get_bundle(bundle_id), [Allocation(self.sale_id, 490, 392)])
        self.assertEqual(self._totals(self.sale_id), (1_000, 800))

    def test_split_multiple_allocations(self):
        other_sale_id, _ = self._create_sale(min_amount=10)
        bundle_id = self._mint(
            self.investor_address,
            [Allocation(self.sale_id, 1_000, 1_000), Allocation(other_sale_id, 500, 500)],
        )
        new_bundle_id = self.call_public(self.manager, "split", self.investor_address, bundle_id, [0, 100])

        self.assertEqual(self._get_bundle(new_bundle_id), [Allocation(other_sale_id, 100, 100)])
        self.assertEqual(
            self._get_bundle(bundle_id),
            [Allocation(self.sale_id, 990, 990), Allocation(other_sale_id, 395, 395)],
        )
        self.assertEqual(self._totals(self.sale_id), (1_000, 1_000))
        self.assertEqual(self._totals(other_sale_id), (500, 500))

    def test_split_burns_emptied_original(self):
        bundle_id = self._mint(self.investor_address, [Allocation(self.sale_id, 100, 100)])
        new_bundle_id = self.call_public(self.manager, "split", self.investor_address, bundle_id, [99])

        self.assertFalse(self.call_view(self.bundle_ledger, "exists", bundle_id))
        self.assertEqual(self._bundles_of(self.investor_address), [new_bundle_id])
        self.assertEventEmitted("BundleBurned", bundle_id=bundle_id)

    def test_split_errors(self):
        bundle_id = self._mint(self.investor_address, [Allocation(self.sale_id, 100, 100)])

        with self.assertRaises(LengthMismatch) as cm:
            self.call_public(self.manager, "split", self.investor_address, bundle_id, [10, 10])
        self.assertEqual(str(cm.exception), "length of SAs does not match split")

        with self.assertRaises(KeptAmountTooLarge) as cm:
            self.call_public(self.manager, "split", self.investor_address, bundle_id, [101])
        self.assertEqual(str(cm.exception), "kept amounts cannot be larger than remaining amounts")

        with self.assertRaises(KeptAmountTooLarge) as cm:
            self.call_public(self.manager, "split", self.investor_address, bundle_id, [100])
        self.assertEqual(str(cm.exception), "remaining amounts cannot cover the split fee")

        with self.assertRaises(NothingToSplit) as cm:
            self.call_public(self.manager, "split", self.investor_address, bundle_id, [0])
        self.assertEqual(str(cm.exception), "nothing to split")

        with self.assertRaises(UnauthorizedCall) as cm:
            self.call_public(self.manager, "split", self.investor2_address, bundle_id, [10])
        self.assertEqual(str(cm.exception), "caller is not the bundle owner")

        self.assertEqual(self._get_bundle(bundle_id), [Allocation(self.sale_id, 100, 100)])
        self.assertEqual(self._bundles_of(self.fee_wallet), [])

    def test_carve(self):
        piece, rest = carve(Allocation(1, 1_000, 300), 300)
        self.assertEqual(piece, Allocation(1, 1_000, 300))
        self.assertEqual(rest, Allocation(1, 0, 0))

        piece, rest = carve(Allocation(1, 1_000, 300), 0)
        self.assertIsNone(piece)
        self.assertEqual(rest, Allocation(1, 1_000, 300))

    # Merge

    def test_merge(self):
        other_sale_id, _ = self._create_sale(min_amount=10)
        first = self._mint(self.investor_address, [Allocation(other_sale_id, 2_000, 2_000)])
        second = self._mint(self.investor_address, [Allocation(self.sale_id, 1_000, 1_000)])
        third = self._mint(self.investor_address, [Allocation(self.sale_id, 500, 500)])

        self.assertEqual(
            self.call_view(self.manager, "are_mergeable", [first, second, third]), (True, "NFTs are mergeable")
        )
        merged_id = self.call_public(self.manager, "merge", self.investor_address, [first, second, third])

        self.assertEqual(
            self._get_bundle(merged_id),
            [Allocation(self.sale_id, 1_485, 1_485), Allocation(other_sale_id, 1_980, 1_980)],
        )
        self.assertEqual(self._bundles_of(self.investor_address), [merged_id])
        for bundle_id in (first, second, third):
            self.assertFalse(self.call_view(self.bundle_ledger, "exists", bundle_id))
        self.assertEqual(self._totals(self.sale_id), (1_500, 1_500))
        self.assertEqual(self._totals(other_sale_id), (2_000, 2_000))
        self.assertEventEmitted("BundleMerged", bundle_ids=[first, second, third], new_bundle_id=merged_id,
                                fees=[15, 20])

    def test_merge_errors(self):
        first = self._mint(self.investor_address, [Allocation(self.sale_id, 100, 100)])
        second = self._mint(self.investor_address, [Allocation(self.sale_id, 100, 100)])
        foreign = self._mint(self.investor2_address, [Allocation(self.sale_id, 100, 100)])

        cases = [
            ([first], "at least two NFTs are required to merge"),
            ([first, first], "NFTs to merge must be distinct"),
            ([first, 99], "NFT does not exist"),
            ([first, foreign], "All NFTs must be owned by same owner"),
        ]
        for bundle_ids, message in cases:
            with self.subTest(message=message):
                self.assertEqual(self.call_view(self.manager, "are_mergeable", bundle_ids), (False, message))
                with self.assertRaises(NotMergeable) as cm:
                    self.call_public(self.manager, "merge", self.investor_address, bundle_ids)
                self.assertEqual(str(cm.exception), message)

        # the caller must own them too
        self.assertEqual(self.call_view(self.manager, "are_mergeable", [first, second]), (True, "NFTs are mergeable"))
        with self.assertRaises(NotMergeable) as cm:
            self.call_public(self.manager, "merge", self.investor2_address, [first, second])
        self.assertEqual(str(cm.exception), "All NFTs must be owned by same owner")

    def test_merge_without_fee(self):
        self.call_public(self.manager, "set_fee_points", self.owner_address, 0)
        first = self._mint(self.investor_address, [Allocation(self.sale_id, 1_000, 600)])
        second = self._mint(self.investor_address, [Allocation(self.sale_id, 500, 500)])
        merged_id = self.call_public(self.manager, "merge", self.investor_address, [first, second])

        self.assertEqual(self._get_bundle(merged_id), [Allocation(self.sale_id, 1_500, 1_100)])
        self.assertEqual(self._bundles_of(self.fee_wallet), [])

    # Swap

    def test_swap(self):
        future_sale_id, _ = self._create_sale(is_future_token=True)
        real_sale_id, _ = self._create_sale(future_token_sale_id=future_sale_id)
        bundle_id = self._mint(self.investor_address, [Allocation(future_sale_id, 100 * TOKEN, 100 * TOKEN)])

        self.call_public(self.manager, "swap", self.investor_address, bundle_id, real_sale_id)

        self.assertEqual(self._get_bundle(bundle_id), [Allocation(real_sale_id, 100 * TOKEN, 100 * TOKEN)])
        info = self.call_view(self.deployment.sale_ledger, "get_sale_info", real_sale_id)
        self.assertEqual(info.remaining_amount, 50_000 - 200)
        self.assertEqual(info.committed_tokens, 100 * TOKEN)
        self.assertEventEmitted("BundleSwapped", bundle_id=bundle_id, old_sale_id=future_sale_id,
                                new_sale_id=real_sale_id)

    def test_swap_errors(self):
        future_sale_id, _ = self._create_sale(is_future_token=True)
        real_sale_id, _ = self._create_sale(future_token_sale_id=future_sale_id)
        unlaunched_sale_id, _ = self._create_sale(launch=False, future_token_sale_id=future_sale_id, min_amount=10)

        multiple = self._mint(
            self.investor_address,
            [Allocation(future_sale_id, 100, 100), Allocation(self.sale_id, 100, 100)],
        )
        with self.assertRaises(InvalidSwap) as cm:
            self.call_public(self.manager, "swap", self.investor_address, multiple, real_sale_id)
        self.assertEqual(str(cm.exception), "only bundles with a single allocation can be swapped")

        not_future = self._mint(self.investor_address, [Allocation(self.sale_id, 100, 100)])
        with self.assertRaises(InvalidSwap) as cm:
            self.call_public(self.manager, "swap", self.investor_address, not_future, real_sale_id)
        self.assertEqual(str(cm.exception), "sale is not a future token")

        future = self._mint(self.investor_address, [Allocation(future_sale_id, 100, 100)])
        with self.assertRaises(InvalidSwap) as cm:
            self.call_public(self.manager, "swap", self.investor_address, future, self.sale_id)
        self.assertEqual(str(cm.exception), "new sale is not linked to the future token")

        with self.assertRaises(ContractFail) as cm:
            self.call_public(self.manager, "swap", self.investor_address, future, unlaunched_sale_id)
        self.assertEqual(str(cm.exception), "sale not launched yet")

        with self.assertRaises(UnauthorizedCall):
            self.call_public(self.manager, "swap", self.investor2_address, future, real_sale_id)

        self.assertEqual(self._get_bundle(future), [Allocation(future_sale_id, 100, 100)])

    def test_swap_above_capacity(self):
        future_sale_id, _ = self._create_sale(is_future_token=True)
        real_sale_id, _ = self._create_sale(future_token_sale_id=future_sale_id, total_value=100)
        bundle_id = self._mint(self.investor_address, [Allocation(future_sale_id, 51 * TOKEN, 51 * TOKEN)])

        with self.assertRaises(NotEnoughTokens) as cm:
            self.call_public(self.manager, "swap", self.investor_address, bundle_id, real_sale_id)
        self.assertEqual(str(cm.exception), "Not enough tokens available")
        self.assertEqual(self._get_bundle(bundle_id), [Allocation(future_sale_id, 51 * TOKEN, 51 * TOKEN)])

    # Withdraw

    def test_withdraw(self):
        self._invest(self.sale_id, self.sale_address, self.investor_address, 6_000)
        bundle_id = self._bundles_of(self.investor_address)[0]

        with self.assertRaises(NotAvailableTokens) as cm:
            self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [0])
        self.assertEqual(str(cm.exception), "Cannot withdraw not available tokens")

        self._list_token(self.sale_id)
        self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [0])
        self.assertEqual(self._balance(self.selling_token, self.investor_address), 600 * TOKEN)
        self.assertEqual(self._get_bundle(bundle_id), [Allocation(self.sale_id, 3_000 * TOKEN, 2_400 * TOKEN)])
        self.assertEventEmitted("Withdrawn", bundle_id=bundle_id, sale_ids=[self.sale_id], amounts=[600 * TOKEN])

        with self.assertRaises(NotAvailableTokens):
            self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [1])

        with self.assertRaises(LengthMismatch) as cm:
            self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [0, 0])
        self.assertEqual(str(cm.exception), "length of amounts does not match bundle")

        later = self.now + 31 * DAY
        self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [500 * TOKEN],
                         timestamp=later)
        self.assertEqual(self._get_bundle(bundle_id), [Allocation(self.sale_id, 3_000 * TOKEN, 1_900 * TOKEN)])
        with self.assertRaises(NotAvailableTokens):
            self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [400 * TOKEN + 1],
                             timestamp=later)

        self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [0],
                         timestamp=self.now + 91 * DAY)
        self.assertEqual(self._balance(self.selling_token, self.investor_address), 3_000 * TOKEN)
        self.assertFalse(self.call_view(self.bundle_ledger, "exists", bundle_id))
        self.assertEqual(self._bundles_of(self.investor_address), [])

    def test_withdraw_drops_emptied_allocations(self):
        other_sale_id, _ = self._create_sale(min_amount=10)
        bundle_id = self._mint(
            self.investor_address,
            [Allocation(self.sale_id, 1_000, 1_000), Allocation(other_sale_id, 1_000, 1_000)],
        )
        self._list_token(self.sale_id)
        self.call_public(self.bundle_ledger, "withdraw", self.investor_address, bundle_id, [0, 0],
                         timestamp=self.now + 91 * DAY)

        self.assertEqual(self._get_bundle(bundle_id), [Allocation(other_sale_id, 1_000, 1_000)])
        self.assertEqual(self._balance(self.selling_token, self.investor_address), 1_000)
        self.assertEventEmitted("Withdrawn", bundle_id=bundle_id, sale_ids=[self.sale_id], amounts=[1_000])

    # Administration

    def test_fee_settings(self):
        info = self.call_view(self.manager, "get_manager_info")
        self.assertEqual(info.fee_points, self.settings.DEFAULT_BUNDLE_FEE_POINTS)
        self.assertEqual(info.fee_wallet, self.fee_wallet)
        self.assertEqual(info.owner, self.owner_address)

        with self.assertRaises(UnauthorizedCall):
            self.call_public(self.manager, "set_fee_points", self.investor_address, 50)
        with self.assertRaises(ContractFail) as cm:
            self.call_public(self.manager, "set_fee_points", self.owner_address, 1_001)
        self.assertEqual(str(cm.exception), "fee points above maximum")

        self.call_public(self.manager, "set_fee_points", self.owner_address, 200)
        bundle_id = self._mint(self.investor_address, [Allocation(self.sale_id, 1_000, 1_000)])
        self.call_public(self.manager, "split", self.investor_address, bundle_id, [100])
        fee_bundle = self._bundles_of(self.fee_wallet)[0]
        self.assertEqual(self._get_bundle(fee_bundle), [Allocation(self.sale_id, 20, 20)])

    def test_fees_follow_the_sale_ledger_fee_wallet(self):
        new_wallet, _ = self._get_any_address()
        self.call_public(self.deployment.sale_ledger, "set_fee_wallet", self.owner_address, new_wallet)
        self.assertEqual(self.call_view(self.manager, "get_manager_info").fee_wallet, new_wallet)

        first = self._mint(self.investor_address, [Allocation(self.sale_id, 1_000, 1_000)])
        second = self._mint(self.investor_address, [Allocation(self.sale_id, 500, 500)])
        self.call_public(self.manager, "split", self.investor_address, first, [100])
        self.call_public(self.manager, "merge", self.investor_address, [first, second])

        # split fee 10, merge fee 1% of 1_390
        fee_bundle, = self._bundles_of(new_wallet)
        self.assertEqual(self._get_bundle(fee_bundle), [Allocation(self.sale_id, 23, 23)])
        self.assertEqual(self._bundles_of(self.fee_wallet), [])
        self.assertFalse(hasattr(self.get_readonly_contract(self.manager), "set_fee_wallet"))
