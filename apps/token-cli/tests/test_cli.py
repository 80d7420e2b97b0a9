import io
import json
import pathlib
import subprocess
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from tokencli import chain, cli  # noqa: E402
from tokencli.errors import ChainError  # noqa: E402

PRIVATE_KEY = "00" * 31 + "01"
SENDER = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
TOKEN = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
RECEIVER = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
TX_HASH = "0x" + "ab" * 32


class FakeFoundry:
    """Records subprocess calls and answers like cast/forge would."""

    def __init__(self, decimals: int = 6, send_status: str | None = "0x1", send_returncode: int = 0):
        self.commands: list[list[str]] = []
        self.decimals = decimals
        self.send_status = send_status
        self.send_returncode = send_returncode

    def __call__(self, cmd: list[str], text: bool = True, capture_output: bool = True, **kwargs):  # type: ignore[override]
        self.commands.append(cmd)
        tool, action = cmd[0], cmd[1]
        if tool == "forge" and action == "create":
            out = "Compiling 1 files\n" + json.dumps(
                {"deployer": SENDER, "deployedTo": TOKEN.lower(), "transactionHash": "0x" + "cd" * 32}
            )
            return mock.Mock(returncode=0, stdout=out, stderr="")
        if action == "call":
            signature = next(part for part in cmd if "(" in part)
            answers = {
                "name()(string)": '"Test Token"',
                "symbol()(string)": '"TKN"',
                "decimals()(uint8)": str(self.decimals),
                "totalSupply()(uint256)": "1000000000000 [1e12]",
                "balanceOf(address)(uint256)": "1500000 [1.5e6]",
            }
            return mock.Mock(returncode=0, stdout=answers[signature] + "\n", stderr="")
        if action == "nonce":
            return mock.Mock(returncode=0, stdout="7\n", stderr="")
        if action == "gas-price":
            return mock.Mock(returncode=0, stdout="1000000000\n", stderr="")
        if action == "estimate":
            return mock.Mock(returncode=0, stdout="52000\n", stderr="")
        if action == "chain-id":
            return mock.Mock(returncode=0, stdout="31337\n", stderr="")
        if action == "send":
            if self.send_returncode:
                return mock.Mock(returncode=self.send_returncode, stdout="", stderr="execution reverted")
            receipt = {"transactionHash": TX_HASH}
            if self.send_status is not None:
                receipt["status"] = self.send_status
            return mock.Mock(returncode=0, stdout=json.dumps(receipt), stderr="")
        raise AssertionError(f"Unexpected command {cmd}")

    def actions(self) -> list[str]:
        return [cmd[1] for cmd in self.commands]

    def command(self, action: str) -> list[str]:
        matches = [cmd for cmd in self.commands if cmd[1] == action]
        assert len(matches) == 1, matches
        return matches[0]


class TokenCliTests(unittest.TestCase):
    def _run(self, fake: FakeFoundry, *argv: str) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with mock.patch.object(chain, "find_foundry_bin", side_effect=lambda tool: tool), mock.patch.object(
            chain.subprocess, "run", side_effect=fake
        ), redirect_stdout(out), redirect_stderr(err):
            code = cli.main(list(argv))
        self.assertIsInstance(code, int)
        return code, out.getvalue().strip(), err.getvalue().strip()

    def _run_json(self, fake: FakeFoundry, *argv: str) -> tuple[int, dict]:
        code, out, _ = self._run(fake, *argv, "--json")
        self.assertTrue(out, "expected JSON on stdout")
        return code, json.loads(out)

    def test_transfer_builds_payload_and_sends_once(self) -> None:
        fake = FakeFoundry(decimals=6)
        code, payload = self._run_json(
            fake, "transfer", "1.5", "--from", PRIVATE_KEY, "--to", RECEIVER.lower(), "--token", TOKEN
        )
        self.assertEqual(code, 0)
        self.assertEqual(payload["txHash"], TX_HASH)
        self.assertEqual(payload["amountUnits"], "1500000")
        self.assertEqual(payload["sender"], SENDER)
        self.assertEqual(payload["to"], RECEIVER)
        self.assertEqual(fake.actions(), ["call", "nonce", "gas-price", "estimate", "chain-id", "send"])

        expected_data = "0xa9059cbb" + "00" * 12 + RECEIVER[2:].lower() + format(1500000, "064x")
        self.assertIn(expected_data, fake.command("estimate"))
        send_cmd = fake.command("send")
        self.assertEqual(send_cmd[-2:], [TOKEN, expected_data])
        for flag, value in [("--nonce", "7"), ("--gas-price", "1000000000"), ("--gas-limit", "52000"), ("--chain", "31337")]:
            self.assertEqual(send_cmd[send_cmd.index(flag) + 1], value)
        self.assertIn("--legacy", send_cmd)

    def test_transfer_text_output(self) -> None:
        code, out, _ = self._run(
            FakeFoundry(), "transfer", "2", "--from", "0x" + PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 0)
        self.assertEqual(out, f"Transaction sent.\nHash: {TX_HASH}")

    def test_transfer_truncated_to_zero_is_not_sent(self) -> None:
        fake = FakeFoundry(decimals=6)
        code, payload = self._run_json(
            fake, "transfer", "0.0000001", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "invalid_amount")
        self.assertNotIn("send", fake.actions())

    def test_transfer_invalid_inputs_fail_before_node_access(self) -> None:
        cases = [
            (["abc", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN], "invalid_amount"),
            (["-1", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN], "invalid_amount"),
            (["1e3", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN], "invalid_amount"),
            (["1_000", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN], "invalid_amount"),
            (["1", "--from", SENDER, "--to", RECEIVER, "--token", TOKEN], "invalid_private_key"),
            (["1", "--from", PRIVATE_KEY, "--to", "0x1234", "--token", TOKEN], "invalid_address"),
            (["1", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", "0x" + "11" * 21], "invalid_address"),
        ]
        for argv, expected_code in cases:
            fake = FakeFoundry()
            with self.subTest(argv=argv):
                code, payload = self._run_json(fake, "transfer", *argv)
                self.assertEqual(code, 2)
                self.assertEqual(payload["code"], expected_code)
                self.assertEqual(fake.commands, [])

    def test_transfer_overflow_reported(self) -> None:
        fake = FakeFoundry(decimals=18)
        code, payload = self._run_json(
            fake, "transfer", str(2**256), "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "amount_overflow")
        self.assertNotIn("send", fake.actions())

    def test_transfer_missing_key_uses_environment(self) -> None:
        fake = FakeFoundry()
        with mock.patch.dict("os.environ", {"TOKENCLI_PRIVATE_KEY": PRIVATE_KEY}):
            code, payload = self._run_json(fake, "transfer", "1", "--to", RECEIVER, "--token", TOKEN)
        self.assertEqual(code, 0)
        self.assertEqual(payload["sender"], SENDER)

    def test_transfer_missing_key_rejected(self) -> None:
        fake = FakeFoundry()
        with mock.patch.dict("os.environ", {"TOKENCLI_PRIVATE_KEY": ""}):
            code, payload = self._run_json(fake, "transfer", "1", "--to", RECEIVER, "--token", TOKEN)
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "invalid_private_key")
        self.assertEqual(fake.commands, [])

    def test_send_failure_is_not_retried(self) -> None:
        fake = FakeFoundry(send_returncode=1)
        code, payload = self._run_json(
            fake, "transfer", "1", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 1)
        self.assertEqual(payload["code"], "chain_error")
        self.assertIn("execution reverted", payload["message"])
        self.assertEqual(fake.actions().count("send"), 1)

    def test_failed_receipt_status_reported(self) -> None:
        fake = FakeFoundry(send_status="0x0")
        code, payload = self._run_json(
            fake, "transfer", "1", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 1)
        self.assertEqual(payload["code"], "chain_error")
        self.assertEqual(payload["details"]["txHash"], TX_HASH)

    def test_receipt_without_status_reported(self) -> None:
        fake = FakeFoundry(send_status=None)
        code, payload = self._run_json(
            fake, "transfer", "1", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 1)
        self.assertEqual(payload["code"], "chain_error")
        self.assertIn("no status", payload["message"])
        self.assertEqual(payload["details"]["txHash"], TX_HASH)
        self.assertEqual(fake.actions().count("send"), 1)

    def test_timeout_does_not_leak_private_key(self) -> None:
        def timeout_run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout", 1))

        code, payload = self._run_json(
            timeout_run, "transfer", "1", "--from", PRIVATE_KEY, "--to", RECEIVER, "--token", TOKEN
        )
        self.assertEqual(code, 1)
        self.assertEqual(payload["code"], "chain_timeout")
        self.assertNotIn(PRIVATE_KEY, json.dumps(payload))

    def test_info_reports_formatted_supply(self) -> None:
        fake = FakeFoundry(decimals=6)
        code, out, _ = self._run(fake, "info", TOKEN, "--ethclient", "http://node:8545")
        self.assertEqual(code, 0)
        self.assertEqual(out, "NAME: Test Token\nSYMBOL: TKN\nDECIMALS: 6\nSUPPLY: 1000000")
        for cmd in fake.commands:
            self.assertEqual(cmd[cmd.index("--rpc-url") + 1], "http://node:8545")

    def test_info_json(self) -> None:
        code, payload = self._run_json(FakeFoundry(decimals=9), "info", TOKEN.lower())
        self.assertEqual(code, 0)
        self.assertEqual(payload["token"], TOKEN)
        self.assertEqual(payload["totalSupply"], "1000")
        self.assertEqual(payload["totalSupplyUnits"], "1000000000000")

    def test_balance(self) -> None:
        code, out, _ = self._run(FakeFoundry(decimals=6), "balance", "--token", TOKEN, "--wallet", RECEIVER)
        self.assertEqual(code, 0)
        self.assertEqual(out, f"Wallet address: {RECEIVER}\nCurrent balance: 1.5 TKN")

    def test_balance_invalid_wallet(self) -> None:
        code, out, err = self._run(FakeFoundry(), "balance", "--token", TOKEN, "--wallet", "nope")
        self.assertEqual(code, 2)
        self.assertEqual(out, "")
        self.assertTrue(err.startswith("Fatal: "))

    def test_create_scales_supply_by_contract_decimals(self) -> None:
        fake = FakeFoundry()
        code, payload = self._run_json(fake, "create", "Test Token", "TKN", "1000", "--account", PRIVATE_KEY)
        self.assertEqual(code, 0)
        self.assertEqual(payload["contractAddress"], TOKEN)
        self.assertEqual(payload["supplyUnits"], str(1000 * 10**9))
        create_cmd = fake.command("create")
        self.assertEqual(create_cmd[-3:], ["Test Token", "TKN", str(1000 * 10**9)])
        self.assertTrue(create_cmd[2].endswith("Token.sol:Token"))
        self.assertIn("--broadcast", create_cmd)

    def test_create_rejects_fractional_supply(self) -> None:
        fake = FakeFoundry()
        code, payload = self._run_json(fake, "create", "Test Token", "TKN", "1.5", "--account", PRIVATE_KEY)
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "invalid_amount")
        self.assertEqual(fake.commands, [])

    def test_encode_transfer_offline(self) -> None:
        fake = FakeFoundry()
        code, out, _ = self._run(
            fake, "encode-transfer", "--to", "0x000000000000000000000000000000000000dEaD", "--amount", "1000"
        )
        self.assertEqual(code, 0)
        self.assertEqual(out, "0xa9059cbb" + "00" * 12 + "00" * 18 + "dead" + format(1000, "064x"))
        self.assertEqual(fake.commands, [])

    def test_encode_transfer_with_decimals(self) -> None:
        code, payload = self._run_json(FakeFoundry(), "encode-transfer", "--to", RECEIVER, "--amount", "1.5", "--decimals", "6")
        self.assertEqual(code, 0)
        self.assertEqual(payload["amountUnits"], "1500000")

    def test_encode_transfer_amount_too_large(self) -> None:
        code, payload = self._run_json(FakeFoundry(), "encode-transfer", "--to", RECEIVER, "--amount", str(2**256))
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "amount_too_large")

    def test_status(self) -> None:
        code, payload = self._run_json(FakeFoundry(), "status")
        self.assertEqual(code, 0)
        self.assertEqual(payload["chainId"], 31337)
        self.assertTrue(payload["hasCast"])

    def test_no_command_prints_help(self) -> None:
        code, out, _ = self._run(FakeFoundry())
        self.assertEqual(code, 2)
        self.assertIn("usage: tokencli", out)


class ParseOutputTests(unittest.TestCase):
    def test_parse_uint_text_variants(self) -> None:
        self.assertEqual(chain.parse_uint_text("20000000000000000000000 [2e22]"), 20000000000000000000000)
        self.assertEqual(chain.parse_uint_text("0x1f"), 31)
        self.assertEqual(chain.parse_uint_text("42"), 42)
        self.assertEqual(chain.parse_uint_text(" 007\n"), 7)
        self.assertEqual(chain.parse_uint_text("0x1f [3.1e1]"), 31)

    def test_parse_uint_text_rejects_trailing_garbage(self) -> None:
        for raw in ["", "12abc", "0x", "1.5", "-3", "42 extra", "[2e22]"]:
            with self.subTest(raw=raw):
                with self.assertRaises(ChainError):
                    chain.parse_uint_text(raw)

    def test_find_foundry_bin_search_order(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            override = pathlib.Path(tmp) / "override" / "cast"
            foundry = pathlib.Path(tmp) / "foundry" / "cast"
            for path in (override, foundry):
                path.parent.mkdir()
                path.write_text("#!/bin/sh\n")
                path.chmod(0o755)
            env = {"PATH": "", "FOUNDRY_BIN": str(foundry.parent)}
            with mock.patch.dict("os.environ", env, clear=True), mock.patch.object(
                chain.pathlib.Path, "home", return_value=pathlib.Path(tmp) / "nohome"
            ):
                self.assertEqual(chain.find_foundry_bin("cast"), str(foundry))
                self.assertIsNone(chain.find_foundry_bin("forge"))
            env["TOKENCLI_CAST_BIN"] = str(override)
            with mock.patch.dict("os.environ", env, clear=True):
                self.assertEqual(chain.find_foundry_bin("cast"), str(override))
            env["TOKENCLI_CAST_BIN"] = str(pathlib.Path(tmp) / "missing")
            with mock.patch.dict("os.environ", env, clear=True):
                self.assertIsNone(chain.find_foundry_bin("cast"))

    def test_extract_tx_hash_from_text(self) -> None:
        self.assertEqual(chain.extract_tx_hash(f"blockHash 0x{'00' * 32}"), "0x" + "00" * 32)

    def test_redact_private_key(self) -> None:
        self.assertEqual(chain._redact(["cast", "send", "--private-key", "secret", "0xto"]), ["cast", "send", "--private-key", "<redacted>", "0xto"])


if __name__ == "__main__":
    unittest.main()
