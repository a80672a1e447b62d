from typing import Optional

from apelaunch.contracts.blueprint import Blueprint
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import (
    ContractAlreadyExists,
    ContractDoesNotExist,
    ContractFail,
    MethodNotFound,
)
from apelaunch.contracts.runner import Runner
from apelaunch.contracts.types import CallerId, ContractId, public, view
from tests.contracts.blueprints.unittest import BlueprintTestCase


class Counter(Blueprint):
    count: int
    last_caller: Optional[CallerId]
    children: list[ContractId]

    @public
    def initialize(self, ctx: Context, start: int = 0) -> None:
        self.count = start
        self.last_caller = None
        self.children = []

    @public
    def increment(self, ctx: Context, amount: int) -> int:
        self.count += amount
        self.last_caller = ctx.caller_id
        self.syscall.emit_event("Incremented", count=self.count)
        if self.count > 10:
            raise ContractFail("count above 10")
        return self.count

    @public
    def increment_other(self, ctx: Context, other: ContractId, amount: int) -> None:
        self.count += 1
        self.syscall.call_public_method(other, "increment", amount)

    @public
    def spawn(self, ctx: Context, fail: bool) -> ContractId:
        child = self.syscall.create_contract(Counter, 5)
        self.children.append(child)
        if fail:
            raise ContractFail("spawn failed")
        return child

    @view
    def get_count(self) -> int:
        return self.count

    def helper(self) -> int:
        return self.count


class RunnerTestCase(BlueprintTestCase):
    def setUp(self):
        super().setUp()
        self.caller, _ = self._get_any_address()
        self.counter = self._create_counter(self.runner)
        self.other = self._create_counter(self.runner)

    def _create_counter(self, runner: Runner, start: int = 0) -> ContractId:
        return runner.create_contract(None, Counter, self.create_context(self.caller), start)

    def _counter(self, contract_id: ContractId) -> Counter:
        contract = self.get_readonly_contract(contract_id)
        assert isinstance(contract, Counter)
        return contract

    def test_public_and_view_methods(self):
        self.assertEqual(self.call_public(self.counter, "increment", self.caller, 3), 3)
        self.assertEqual(self.call_view(self.counter, "get_count"), 3)
        self.assertEqual(self._counter(self.counter).last_caller, self.caller)
        self.assertEventEmitted("Incremented", count=3)
        self.assertEqual(self.runner.get_events("Incremented", contract_id=self.other), [])

    def test_method_not_found(self):
        with self.assertRaises(MethodNotFound):
            self.call_public(self.counter, "get_count", self.caller)
        with self.assertRaises(MethodNotFound):
            self.call_view(self.counter, "increment", 1)
        with self.assertRaises(MethodNotFound):
            self.call_view(self.counter, "helper")
        with self.assertRaises(MethodNotFound):
            self.call_public(self.counter, "unknown", self.caller)

    def test_contract_does_not_exist(self):
        address, _ = self._get_any_address()
        self.assertFalse(self.runner.has_contract(address))
        with self.assertRaises(ContractDoesNotExist):
            self.call_view(address, "get_count")
        with self.assertRaises(ContractDoesNotExist):
            self.call_public(address, "increment", self.caller, 1)

    def test_contract_already_exists(self):
        with self.assertRaises(ContractAlreadyExists):
            self.runner.create_contract(self.counter, Counter, self.create_context(self.caller))

    def test_failed_call_is_rolled_back(self):
        self.call_public(self.counter, "increment", self.caller, 4)
        with self.assertRaises(ContractFail) as cm:
            self.call_public(self.counter, "increment", self.caller, 7)
        self.assertEqual(str(cm.exception), "count above 10")
        self.assertEqual(self.call_view(self.counter, "get_count"), 4)
        self.assertEqual(len(self.runner.get_events("Incremented")), 1)

    def test_nested_call(self):
        self.call_public(self.counter, "increment_other", self.caller, self.other, 2)
        self.assertEqual(self.call_view(self.counter, "get_count"), 1)
        self.assertEqual(self.call_view(self.other, "get_count"), 2)
        # the nested call is made by the calling contract
        self.assertEqual(self._counter(self.other).last_caller, self.counter)

    def test_nested_failure_rolls_back_every_contract(self):
        with self.assertRaises(ContractFail):
            self.call_public(self.counter, "increment_other", self.caller, self.other, 11)
        self.assertEqual(self.call_view(self.counter, "get_count"), 0)
        self.assertEqual(self.call_view(self.other, "get_count"), 0)
        self.assertIsNone(self._counter(self.other).last_caller)
        self.assertEqual(self.runner.get_events(), [])

    def test_created_contracts_are_rolled_back(self):
        with self.assertRaises(ContractFail):
            self.call_public(self.counter, "spawn", self.caller, True)
        self.assertEqual(self._counter(self.counter).children, [])
        child = self.call_public(self.counter, "spawn", self.caller, False)

        # a runner that never saw the failed call hands out the same id
        runner = Runner(settings=self.settings)
        counter = self._create_counter(runner)
        self._create_counter(runner)
        expected = runner.call_public_method(counter, "spawn", self.create_context(self.caller), False)
        self.assertEqual(child, expected)
        self.assertEqual(self.call_view(child, "get_count"), 5)
        self.assertEqual(self._counter(self.counter).children, [child])

    def test_failed_initialize_leaves_nothing_behind(self):
        runner = Runner(settings=self.settings)
        with self.assertRaises(TypeError):
            runner.create_contract(None, Counter, self.create_context(self.caller), 1, 2, 3)
        self.assertIsNone(runner._snapshot)
        contract_id = self._create_counter(runner)
        self.assertEqual(contract_id, self._create_counter(Runner(settings=self.settings)))

    def test_no_current_context_outside_calls(self):
        with self.assertRaises(ContractFail):
            self.runner.current_context
