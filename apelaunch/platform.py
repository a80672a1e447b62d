"""Deployment of the sale platform.

`deploy_platform` creates every component, registers them under their
well-known names and lets the registry push the addresses to each of them.
"""

import logging
from typing import NamedTuple, Optional, Sequence

from apelaunch.contracts.blueprints.bundle_ledger import BundleLedger
from apelaunch.contracts.blueprints.bundle_manager import BundleManager
from apelaunch.contracts.blueprints.registry import (
    BUNDLE_LEDGER,
    BUNDLE_MANAGER,
    SALE_FACTORY,
    SALE_LEDGER,
    SALE_SETUP_HASHER,
    Registry,
)
from apelaunch.contracts.blueprints.sale_factory import SaleFactory
from apelaunch.contracts.blueprints.sale_ledger import SaleLedger
from apelaunch.contracts.blueprints.setup_hasher import SaleSetupHasher
from apelaunch.contracts.context import Context
from apelaunch.contracts.runner import Runner
from apelaunch.contracts.types import Address, ContractId, Timestamp

logger = logging.getLogger(__name__)


class Deployment(NamedTuple):
    registry: ContractId
    setup_hasher: ContractId
    sale_ledger: ContractId
    sale_factory: ContractId
    bundle_ledger: ContractId
    bundle_manager: ContractId


def deploy_platform(
    runner: Runner,
    owner: Address,
    fee_wallet: Address,
    operators: Sequence[Address] = (),
    validators: Sequence[Address] = (),
    bundle_fee_points: Optional[int] = None,
    timestamp: Timestamp = Timestamp(0),
) -> Deployment:
    """Create and wire every platform contract, all owned by `owner`."""
    ctx = Context(caller_id=owner, timestamp=timestamp)

    registry = runner.create_contract(None, Registry, ctx)
    setup_hasher = runner.create_contract(None, SaleSetupHasher, ctx)
    sale_ledger = runner.create_contract(None, SaleLedger, ctx, registry, fee_wallet)
    sale_factory = runner.create_contract(None, SaleFactory, ctx, registry, list(operators), list(validators))
    bundle_ledger = runner.create_contract(None, BundleLedger, ctx, registry)
    bundle_manager = runner.create_contract(None, BundleManager, ctx, registry, bundle_fee_points)

    deployment = Deployment(
        registry=registry,
        setup_hasher=setup_hasher,
        sale_ledger=sale_ledger,
        sale_factory=sale_factory,
        bundle_ledger=bundle_ledger,
        bundle_manager=bundle_manager,
    )
    runner.call_public_method(
        registry,
        "register",
        ctx,
        [SALE_SETUP_HASHER, SALE_LEDGER, SALE_FACTORY, BUNDLE_LEDGER, BUNDLE_MANAGER],
        [setup_hasher, sale_ledger, sale_factory, bundle_ledger, bundle_manager],
    )
    logger.info("platform deployed: %r", deployment)
    return deployment
