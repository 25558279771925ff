"""
Engine startup and shutdown procedures
"""

import os
from dataclasses import dataclass
from typing import Optional

from cardano.cli import CardanoCli, CardanoCliChain, CardanoCliDelegate
from cardano.metadata import load_template
from config.config import MinterConfig
from deposits.blockfrost import BlockfrostAssetRegistry, BlockfrostClient
from deposits.sources import BlockfrostDepositSource, DepositSource, FixtureDepositSource
from engine.scheduler import Scheduler
from engine.workflow import MintWorkflow
from events.event_bus import EventBus, event_bus
from events.notifier import WebhookNotifier
from log_utils import get_logger
from monitoring.health import HealthMonitor, record_state
from state.state import StateStore

logger = get_logger(__name__)


@dataclass
class Engine:
    config: MinterConfig
    state: StateStore
    workflow: MintWorkflow
    scheduler: Scheduler
    health: HealthMonitor
    bus: EventBus
    notifier: Optional[WebhookNotifier] = None


def build_source(config: MinterConfig, state: StateStore,
                 client: Optional[BlockfrostClient]) -> DepositSource:
    if config.DEPOSIT_SOURCE == "fixture":
        logger.info(f"Using fixture deposit source: {config.FIXTURE_FILE}")
        return FixtureDepositSource(config.MONITOR_ADDRESS, state, config.FIXTURE_FILE)
    logger.info(f"Using Blockfrost deposit source: {config.blockfrost_url}")
    return BlockfrostDepositSource(config.MONITOR_ADDRESS, state, client)


async def startup(config: MinterConfig, bus: Optional[EventBus] = None) -> Engine:
    """Load durable state, wire the collaborators and reconcile with the chain.

    Any ConfigurationError or PersistenceError here is fatal: the engine must
    not poll with state it cannot trust.
    """
    logger.info("Starting mint engine initialization")
    config.validate()
    logger.info(f"Configuration: {config.to_dict()}")

    state = StateStore.load(config.STATE_FILE)
    logger.info(
        f"State loaded from {config.STATE_FILE}: next_sequence={state.next_sequence}, "
        f"pending={len(state.pending)}, processed={state.processed_count}"
    )
    record_state(state)

    bus = bus if bus is not None else event_bus
    if not bus.running:
        await bus.start()
        logger.info("Event bus started")

    notifier = WebhookNotifier(config.DISCORD_WEBHOOK_URL, timeout=config.HTTP_TIMEOUT)
    notifier.register(bus)

    os.makedirs(config.WORK_DIR, exist_ok=True)
    cli = CardanoCli(
        network=config.CARDANO_NETWORK,
        testnet_magic=config.TESTNET_MAGIC,
        socket_path=config.CARDANO_NODE_SOCKET_PATH,
        binary=config.CARDANO_CLI,
        timeout=config.COMMAND_TIMEOUT,
    )
    chain = CardanoCliChain(cli, config.WORK_DIR)
    await chain.ensure_available()
    logger.info(f"{config.CARDANO_CLI} available on {config.CARDANO_NETWORK}")

    delegate = CardanoCliDelegate(
        cli,
        policy_id=config.POLICY_ID,
        script_file=config.SCRIPT_FILE,
        signing_key_file=config.SIGNING_KEY_FILE,
        work_dir=config.WORK_DIR,
        metadata_template=load_template(config.METADATA_TEMPLATE_FILE),
    )

    client = None
    registry = None
    if config.BLOCKFROST_API_KEY:
        client = BlockfrostClient(config.blockfrost_url, config.BLOCKFROST_API_KEY,
                                  timeout=config.HTTP_TIMEOUT)
        registry = BlockfrostAssetRegistry(client, config.POLICY_ID, config.ASSET_NAME_PREFIX)
    else:
        logger.warning("No BLOCKFROST_API_KEY; on-chain reconciliation disabled")

    workflow = MintWorkflow(
        state=state,
        source=build_source(config, state, client),
        chain=chain,
        delegate=delegate,
        monitor_address=config.MONITOR_ADDRESS,
        mint_price=config.MINT_PRICE,
        registry=registry,
        fee_buffer=config.FEE_BUFFER,
        validity_horizon=config.VALIDITY_HORIZON,
        asset_prefix=config.ASSET_NAME_PREFIX,
        bus=bus,
    )

    recovered = await workflow.reconcile()
    if recovered:
        logger.info(f"Recovered {recovered} pending reservation(s) from on-chain assets")

    health = HealthMonitor(state=state, poll_interval=config.POLL_INTERVAL)
    scheduler = Scheduler(workflow, config.POLL_INTERVAL, health=health)

    logger.info(
        f"Mint engine ready: watching {config.MONITOR_ADDRESS} for "
        f"{config.MINT_PRICE} lovelace deposits"
    )
    return Engine(
        config=config,
        state=state,
        workflow=workflow,
        scheduler=scheduler,
        health=health,
        bus=bus,
        notifier=notifier if notifier.enabled else None,
    )


async def shutdown(engine: Optional[Engine]):
    """Stop polling and flush queued notifications"""
    logger.info("Starting mint engine shutdown")
    if engine is None:
        return

    engine.scheduler.stop()
    if engine.bus.running:
        await engine.bus.stop()
        logger.info("Event bus stopped")

    record_state(engine.state)
    logger.info(
        f"Shutdown complete: next_sequence={engine.state.next_sequence}, "
        f"pending={len(engine.state.pending)}"
    )
