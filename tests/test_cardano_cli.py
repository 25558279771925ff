"""
cardano-cli adapters with the subprocess runner replaced by a recorder.
"""

import json
import os

import pytest

from cardano.cli import CardanoCli, CardanoCliChain, CardanoCliDelegate
from errors.exceptions import CommandError, ConfigurationError, DelegationError, SourceError
from models.models import MintRequest

POLICY = "cd" * 28
NAME = "Token 7"
NAME_HEX = NAME.encode().hex()


class RecordingCli(CardanoCli):
    """Answers by sub-command; writes `--out-file` content when configured."""

    def __init__(self, responses=None, out_file_content=None, **kwargs):
        kwargs.setdefault("socket_path", "/tmp/node.socket")
        super().__init__(**kwargs)
        self.responses = responses or {}
        self.out_file_content = out_file_content
        self.commands = []

    async def run(self, *args):
        self.commands.append(list(args))
        key = " ".join(a for a in args[:3])
        response = self.responses.get(key, "")
        if isinstance(response, Exception):
            raise response
        if self.out_file_content is not None and "--out-file" in args:
            path = args[args.index("--out-file") + 1]
            with open(path, "w") as f:
                json.dump(self.out_file_content, f)
        return response


def _request(**overrides):
    fields = dict(
        inputs=["aa#0", "bb#1"],
        recipient="addr_test1buyer",
        change_address="addr_test1monitor",
        asset_name=NAME,
        asset_name_hex=NAME_HEX,
        invalid_hereafter=11000,
    )
    fields.update(overrides)
    return MintRequest(**fields)


# ──────────────────────────────── runner ────────────────────────────────────
def test_network_flags():
    assert CardanoCli("mainnet").network_args() == ["--mainnet"]
    assert CardanoCli("preprod", "1").network_args() == ["--testnet-magic", "1"]
    assert CardanoCli("preview", "2", socket_path="/s").node_args() == [
        "--testnet-magic", "2", "--socket-path", "/s",
    ]


def test_node_queries_require_a_socket():
    with pytest.raises(ConfigurationError):
        CardanoCli("mainnet").node_args()


@pytest.mark.asyncio
async def test_run_returns_stripped_output():
    cli = CardanoCli(binary="echo")
    assert await cli.run("hello", "world") == "hello world"


@pytest.mark.asyncio
async def test_run_missing_binary_raises_command_error():
    cli = CardanoCli(binary="cardano-cli-that-does-not-exist")
    with pytest.raises(CommandError):
        await cli.run("query", "tip")


# ──────────────────────────────── chain ─────────────────────────────────────
@pytest.mark.asyncio
async def test_current_slot_from_tip(tmp_path):
    cli = RecordingCli(responses={"query tip --testnet-magic": '{"slot": 1234, "epoch": 5}'},
                       network="preprod", testnet_magic="1")
    chain = CardanoCliChain(cli, str(tmp_path))

    assert await chain.current_slot() == 1234
    assert cli.commands[0] == ["query", "tip", "--testnet-magic", "1", "--socket-path", "/tmp/node.socket"]


@pytest.mark.asyncio
async def test_unparseable_tip_is_a_source_error(tmp_path):
    cli = RecordingCli(responses={"query tip --mainnet": "not json"})
    with pytest.raises(SourceError):
        await CardanoCliChain(cli, str(tmp_path)).current_slot()


@pytest.mark.asyncio
async def test_fund_units_reads_out_file(tmp_path):
    cli = RecordingCli(out_file_content={
        "aa#0": {"address": "addr_test1monitor", "value": {"lovelace": 30000000}},
    })
    chain = CardanoCliChain(cli, str(tmp_path / "work"))

    units = await chain.fund_units("addr_test1monitor")

    assert [(u.id, u.value) for u in units] == [("aa#0", 30_000_000)]
    assert "--address" in cli.commands[0]


@pytest.mark.asyncio
async def test_fund_units_query_failure_is_a_source_error(tmp_path):
    cli = RecordingCli(responses={"query utxo --address": CommandError("query utxo", "exit status 1")})
    with pytest.raises(SourceError):
        await CardanoCliChain(cli, str(tmp_path)).fund_units("addr_test1monitor")


@pytest.mark.asyncio
async def test_unusable_work_dir_is_a_source_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    cli = RecordingCli()
    chain = CardanoCliChain(cli, str(blocker / "work"))

    with pytest.raises(SourceError, match="Cannot create work dir"):
        await chain.fund_units("addr_test1monitor")
    assert cli.commands == []


# ─────────────────────────────── delegate ───────────────────────────────────
def test_build_args(tmp_path):
    delegate = CardanoCliDelegate(RecordingCli(), POLICY, "policy.script", "payment.skey", str(tmp_path))

    args = delegate.build_args(_request(), "meta.json", "tx.raw")

    asset = f"1 {POLICY}.{NAME_HEX}"
    assert args[:3] == ["conway", "transaction", "build"]
    assert args.count("--tx-in") == 2
    assert args[args.index("--mint") + 1] == asset
    assert args[args.index("--tx-out") + 1] == f"addr_test1buyer+1400000+{asset}"
    assert args[args.index("--invalid-hereafter") + 1] == "11000"
    assert args[args.index("--witness-override") + 1] == "1"
    assert args[args.index("--change-address") + 1] == "addr_test1monitor"
    assert args[-3:] == ["--mainnet", "--socket-path", "/tmp/node.socket"]


@pytest.mark.asyncio
async def test_mint_builds_signs_and_submits(tmp_path):
    cli = RecordingCli(responses={
        "conway transaction txid": json.dumps({"txhash": "f00d" * 16}),
        "conway transaction submit": "Transaction successfully submitted.",
    })
    delegate = CardanoCliDelegate(cli, POLICY, "policy.script", "payment.skey", str(tmp_path),
                                  metadata_template={"image": "ipfs://QmImage"})

    tx_hash = await delegate.mint(_request())

    assert tx_hash == "f00d" * 16
    assert [c[2] for c in cli.commands] == ["build", "sign", "txid", "submit"]

    with open(os.path.join(str(tmp_path), f"{NAME_HEX}.json")) as f:
        metadata = json.load(f)
    assert metadata == {
        "721": {
            POLICY: {NAME_HEX: {"image": "ipfs://QmImage", "name": NAME}},
            "version": 2,
        }
    }


@pytest.mark.asyncio
async def test_bare_txid_output_is_accepted(tmp_path):
    cli = RecordingCli(responses={"conway transaction txid": "beef" * 16})
    delegate = CardanoCliDelegate(cli, POLICY, "policy.script", "payment.skey", str(tmp_path))

    assert await delegate.mint(_request()) == "beef" * 16


@pytest.mark.asyncio
@pytest.mark.parametrize("failing,stage", [
    ("conway transaction build", "build"),
    ("conway transaction sign", "sign"),
    ("conway transaction submit", "submit"),
])
async def test_failed_step_raises_delegation_error(tmp_path, failing, stage):
    cli = RecordingCli(responses={
        "conway transaction txid": "beef" * 16,
        failing: CommandError(failing, "exit status 1", "BadInputsUTxO"),
    })
    delegate = CardanoCliDelegate(cli, POLICY, "policy.script", "payment.skey", str(tmp_path))

    with pytest.raises(DelegationError) as exc:
        await delegate.mint(_request())

    assert exc.value.stage == stage
    assert "BadInputsUTxO" in exc.value.output
