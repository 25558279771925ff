"""
cardano-cli adapters: chain queries and the build/sign/submit delegate.

Every command runs as an asyncio subprocess bounded by a timeout; a timeout or
non-zero exit becomes a CommandError which the callers translate into the
workflow's error taxonomy (SourceError for queries, DelegationError for mints).
"""

import asyncio
import json
import os
import shutil
from typing import Any, Dict, List, Optional

from cardano.metadata import build_metadata, write_metadata
from cardano.utxo import parse_utxo_json
from config.config import COMMAND_TIMEOUT, MIN_UTXO_LOVELACE
from errors.exceptions import (
    CommandError, ConfigurationError, DelegationError, SourceError
)
from log_utils import get_logger, log_performance
from models.models import FundUnit, MintRequest

logger = get_logger(__name__)


class CardanoCli:
    """Thin async runner around the cardano-cli binary"""

    def __init__(self, network: str = "mainnet", testnet_magic: str = "",
                 socket_path: str = "", binary: str = "cardano-cli",
                 timeout: float = COMMAND_TIMEOUT):
        self.network = network
        self.testnet_magic = testnet_magic
        self.socket_path = socket_path
        self.binary = binary
        self.timeout = timeout

    def network_args(self) -> List[str]:
        if self.network in ("mainnet", ""):
            return ["--mainnet"]
        return ["--testnet-magic", str(self.testnet_magic)]

    def node_args(self) -> List[str]:
        """Network flags plus the node socket, which every node query needs"""
        if not self.socket_path:
            raise ConfigurationError(
                "CARDANO_NODE_SOCKET_PATH is not set; cardano-cli requires a running node"
            )
        return self.network_args() + ["--socket-path", self.socket_path]

    def is_installed(self) -> bool:
        return shutil.which(self.binary) is not None

    async def run(self, *args: str) -> str:
        command = " ".join(args[:3])
        logger.debug(f"Running {self.binary} {' '.join(args)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise CommandError(command, f"could not start {self.binary}: {e}")

        try:
            out, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandError(command, f"timed out after {self.timeout}s")

        text = out.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise CommandError(command, f"exit status {proc.returncode}", text)
        return text


class CardanoCliChain:
    """Chain position and UTxO queries against the local node"""

    def __init__(self, cli: CardanoCli, work_dir: str):
        self.cli = cli
        self.work_dir = work_dir

    async def ensure_available(self):
        """Fail fast at startup if the binary or node socket is unusable"""
        if not self.cli.is_installed():
            raise ConfigurationError(f"{self.cli.binary} not found in PATH")
        await self.current_slot()

    async def current_slot(self) -> int:
        try:
            out = await self.cli.run("query", "tip", *self.cli.node_args())
        except CommandError as e:
            raise SourceError(f"Failed to query tip: {e.message}")
        try:
            return int(json.loads(out)["slot"])
        except (ValueError, KeyError, TypeError) as e:
            raise SourceError(f"Failed to parse slot from tip response: {e}; raw={out}")

    async def fund_units(self, address: str) -> List[FundUnit]:
        out_file = os.path.join(self.work_dir, "utxos.json")
        try:
            os.makedirs(self.work_dir, exist_ok=True)
        except OSError as e:
            raise SourceError(f"Cannot create work dir {self.work_dir}: {e}")
        try:
            await self.cli.run(
                "query", "utxo",
                "--address", address,
                "--out-file", out_file,
                *self.cli.node_args(),
            )
        except CommandError as e:
            raise SourceError(f"Failed to query utxos at {address}: {e.message}")

        try:
            with open(out_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SourceError(f"Failed to read utxos file {out_file}: {e}")
        return parse_utxo_json(data)


class CardanoCliDelegate:
    """Builds, signs and submits one mint transaction with cardano-cli"""

    def __init__(self, cli: CardanoCli, policy_id: str, script_file: str,
                 signing_key_file: str, work_dir: str,
                 metadata_template: Optional[Dict[str, Any]] = None,
                 min_utxo: int = MIN_UTXO_LOVELACE):
        self.cli = cli
        self.policy_id = policy_id
        self.script_file = script_file
        self.signing_key_file = signing_key_file
        self.work_dir = work_dir
        self.metadata_template = metadata_template or {}
        self.min_utxo = min_utxo

    def _path(self, request: MintRequest, suffix: str) -> str:
        return os.path.join(self.work_dir, f"{request.asset_name_hex}.{suffix}")

    def build_args(self, request: MintRequest, metadata_file: str, tx_file: str) -> List[str]:
        asset = f"{request.quantity} {self.policy_id}.{request.asset_name_hex}"
        args = ["conway", "transaction", "build"]
        for txin in request.inputs:
            args += ["--tx-in", txin]
        args += [
            "--mint", asset,
            "--minting-script-file", self.script_file,
            "--tx-out", f"{request.recipient}+{self.min_utxo}+{asset}",
            "--invalid-hereafter", str(request.invalid_hereafter),
            "--metadata-json-file", metadata_file,
            "--change-address", request.change_address,
            "--witness-override", "1",
            "--out-file", tx_file,
        ]
        return args + self.cli.node_args()

    async def build(self, request: MintRequest) -> str:
        metadata = build_metadata(
            self.policy_id, request.asset_name, request.asset_name_hex,
            self.metadata_template,
        )
        try:
            metadata_file = write_metadata(metadata, self._path(request, "json"))
        except OSError as e:
            raise DelegationError("build", f"cannot write metadata: {e}")

        tx_file = self._path(request, "raw")
        try:
            await self.cli.run(*self.build_args(request, metadata_file, tx_file))
        except (CommandError, ConfigurationError) as e:
            raise DelegationError("build", e.message, getattr(e, "output", ""))
        return tx_file

    async def sign(self, tx_file: str) -> str:
        signed_file = os.path.splitext(tx_file)[0] + ".signed"
        try:
            await self.cli.run(
                "conway", "transaction", "sign",
                "--tx-body-file", tx_file,
                "--signing-key-file", self.signing_key_file,
                "--out-file", signed_file,
                *self.cli.network_args(),
            )
        except CommandError as e:
            raise DelegationError("sign", e.message, e.output)
        return signed_file

    async def txid(self, signed_file: str) -> str:
        try:
            out = await self.cli.run("conway", "transaction", "txid", "--tx-file", signed_file)
        except CommandError as e:
            raise DelegationError("txid", e.message, e.output)
        # Newer releases print {"txhash": ...}, older ones the bare hash
        try:
            parsed = json.loads(out)
        except ValueError:
            return out
        if isinstance(parsed, dict) and "txhash" in parsed:
            return parsed["txhash"]
        return out

    async def submit(self, signed_file: str) -> str:
        try:
            return await self.cli.run(
                "conway", "transaction", "submit",
                "--tx-file", signed_file,
                *self.cli.node_args(),
            )
        except (CommandError, ConfigurationError) as e:
            raise DelegationError("submit", e.message, getattr(e, "output", ""))

    @log_performance(logger, "cardano_cli_mint")
    async def mint(self, request: MintRequest) -> str:
        """Run build, sign and submit; returns the submitted transaction id"""
        tx_file = await self.build(request)
        logger.info(f"Built transaction: {tx_file}", extra={"asset_name": request.asset_name})
        signed_file = await self.sign(tx_file)
        # Resolve the id before submitting so nothing can fail after submission
        tx_hash = await self.txid(signed_file)
        output = await self.submit(signed_file)
        logger.info(
            f"Submitted transaction: {output}",
            extra={"tx_hash": tx_hash, "asset_name": request.asset_name},
        )
        return tx_hash
