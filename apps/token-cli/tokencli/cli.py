#!/usr/bin/env python3
"""tokencli: create, inspect, query and transfer ERC20 tokens.

Each command validates its input locally, then talks to a node through
Foundry (`cast` / `forge`). Output is plain text by default and one JSON
object per line with --json.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from tokencli import chain, config
from tokencli.errors import InvalidAmountError, InvalidPrivateKeyError, TokenCliError
from tokencli.keys import derive_address, normalize_private_key
from tokencli.payload import TRANSFER_SIGNATURE, build_transfer_call, to_checksum_address
from tokencli.units import format_pretty, parse_amount, parse_whole_number, to_decimal, to_minimal_units

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def emit(payload: dict) -> int:
    print(json.dumps(payload, separators=(",", ":")))
    return 0


def ok(args: argparse.Namespace, message: str, text: str, **extra: object) -> int:
    if getattr(args, "json", False):
        payload = {"ok": True, "code": "ok", "message": message}
        payload.update(extra)
        return emit(payload)
    print(text)
    return 0


def fail(
    args: argparse.Namespace,
    code: str,
    message: str,
    action_hint: str | None = None,
    details: dict | None = None,
    exit_code: int = 1,
) -> int:
    if getattr(args, "json", False):
        payload: dict[str, object] = {"ok": False, "code": code, "message": message}
        if action_hint:
            payload["actionHint"] = action_hint
        if details:
            payload["details"] = details
        emit(payload)
        return exit_code
    print(f"Fatal: {message}", file=sys.stderr)
    if action_hint:
        print(f"Hint: {action_hint}", file=sys.stderr)
    return exit_code


def fail_from_error(args: argparse.Namespace, exc: TokenCliError, details: dict[str, Any] | None = None) -> int:
    merged = dict(details or {})
    merged.update(exc.details)
    logger.debug("%s failed with %s", getattr(args, "command", "command"), exc.code)
    return fail(args, exc.code, str(exc), exc.action_hint, merged, exit_code=exc.exit_code)


def _ethclient(args: argparse.Namespace) -> str:
    return (getattr(args, "ethclient", None) or "").strip() or config.default_ethclient()


def _signing_key(value: str | None, flag: str) -> str:
    raw = value or config.env_private_key()
    if not raw:
        raise InvalidPrivateKeyError(
            f"No signing key given for {flag}.",
            f"Pass {flag} with the account private key or set TOKENCLI_PRIVATE_KEY.",
        )
    return normalize_private_key(raw)


def cmd_create(args: argparse.Namespace) -> int:
    rpc_url = _ethclient(args)
    try:
        private_key_hex = _signing_key(args.account, "--account")
        whole_supply = parse_whole_number(args.supply, "supply")
        # Smallest representation: supply * 10^decimals of the bundled contract.
        supply_units = to_minimal_units(whole_supply, chain.TOKEN_DECIMALS)
        deployer = derive_address(private_key_hex)
        logger.info("Deploying %s (%s) from %s with supply %s", args.name, args.symbol, deployer, supply_units)

        deployment = chain.Node(rpc_url).deploy_token(args.name, args.symbol, supply_units, private_key_hex)
        return ok(
            args,
            "Token deployed.",
            f"{args.name} ({args.symbol}) has been successfully deployed.\n"
            f"Contract address: {deployment.address}\n"
            f"Transaction: {deployment.tx_hash}",
            name=args.name,
            symbol=args.symbol,
            decimals=chain.TOKEN_DECIMALS,
            supply=str(whole_supply),
            supplyUnits=str(supply_units),
            deployer=deployment.deployer or deployer,
            contractAddress=deployment.address,
            txHash=deployment.tx_hash,
            ethclient=rpc_url,
        )
    except TokenCliError as exc:
        return fail_from_error(args, exc, {"ethclient": rpc_url})
    except Exception as exc:
        return fail(args, "create_failed", str(exc), "Inspect the deploy configuration and retry.", {"ethclient": rpc_url})


def cmd_info(args: argparse.Namespace) -> int:
    rpc_url = _ethclient(args)
    try:
        token_address = to_checksum_address(args.token_address)
        token = chain.TokenContract(token_address, chain.Node(rpc_url))
        name = token.name()
        symbol = token.symbol()
        decimals = token.decimals()
        supply_units = token.total_supply()
        supply = to_decimal(supply_units, decimals)
        return ok(
            args,
            "Token info fetched.",
            f"NAME: {name}\nSYMBOL: {symbol}\nDECIMALS: {decimals}\nSUPPLY: {supply}",
            token=token_address,
            name=name,
            symbol=symbol,
            decimals=decimals,
            totalSupply=supply,
            totalSupplyUnits=str(supply_units),
            totalSupplyPretty=format_pretty(supply_units, decimals),
        )
    except TokenCliError as exc:
        return fail_from_error(args, exc, {"token": args.token_address, "ethclient": rpc_url})
    except Exception as exc:
        return fail(args, "info_failed", str(exc), "Verify the token address and node URL, then retry.", {"token": args.token_address})


def cmd_balance(args: argparse.Namespace) -> int:
    rpc_url = _ethclient(args)
    try:
        token_address = to_checksum_address(args.token)
        wallet_address = to_checksum_address(args.wallet)
        token = chain.TokenContract(token_address, chain.Node(rpc_url))
        balance_units = token.balance_of(wallet_address)
        decimals = token.decimals()
        symbol = token.symbol()
        balance = to_decimal(balance_units, decimals)
        return ok(
            args,
            "Token balance fetched.",
            f"Wallet address: {wallet_address}\nCurrent balance: {balance} {symbol}".rstrip(),
            token=token_address,
            wallet=wallet_address,
            balance=balance,
            balanceUnits=str(balance_units),
            balancePretty=format_pretty(balance_units, decimals),
            decimals=decimals,
            symbol=symbol or None,
        )
    except TokenCliError as exc:
        return fail_from_error(args, exc, {"token": args.token, "wallet": args.wallet, "ethclient": rpc_url})
    except Exception as exc:
        return fail(args, "balance_failed", str(exc), "Verify wallet, token, and node connectivity, then retry.", {"token": args.token})


def cmd_transfer(args: argparse.Namespace) -> int:
    rpc_url = _ethclient(args)
    details = {"token": args.token, "to": args.to, "ethclient": rpc_url}
    try:
        # Everything up to send_raw_call is validation or a read-only query; a
        # failure anywhere before it leaves nothing submitted.
        private_key_hex = _signing_key(args.sender_key, "--from")
        sender = derive_address(private_key_hex)
        destination = to_checksum_address(args.to)
        token_address = to_checksum_address(args.token)
        quantity = parse_amount(args.quantity)

        node = chain.Node(rpc_url)
        decimals = chain.TokenContract(token_address, node).decimals()
        amount_units = to_minimal_units(quantity, decimals)
        if amount_units == 0:
            raise InvalidAmountError(
                f"Amount '{args.quantity}' is zero after conversion to {decimals} decimals.",
                "Transfer at least one minimal unit of the token.",
                {"quantity": args.quantity, "decimals": decimals},
            )
        data = build_transfer_call(destination, amount_units)
        logger.info("Transferring %s units of %s from %s to %s", amount_units, token_address, sender, destination)

        plan = node.plan_call(sender, token_address, data)
        receipt = node.send_raw_call(plan, private_key_hex)
        tx_hash = str(receipt["transactionHash"])
        return ok(
            args,
            "Transaction sent.",
            f"Transaction sent.\nHash: {tx_hash}",
            token=token_address,
            sender=sender,
            to=destination,
            quantity=to_decimal(amount_units, decimals),
            amountUnits=str(amount_units),
            decimals=decimals,
            nonce=plan.nonce,
            gasPrice=str(plan.gas_price),
            gasLimit=plan.gas_limit,
            chainId=plan.chain_id,
            txHash=tx_hash,
        )
    except TokenCliError as exc:
        return fail_from_error(args, exc, details)
    except Exception as exc:
        return fail(args, "transfer_failed", str(exc), "Inspect the transfer configuration and retry.", details)


def cmd_encode_transfer(args: argparse.Namespace) -> int:
    try:
        if args.decimals is None:
            amount_units = parse_whole_number(args.amount, "amount")
        else:
            amount_units = to_minimal_units(args.amount, args.decimals)
        destination = to_checksum_address(args.to)
        data = build_transfer_call(destination, amount_units)
        return ok(
            args,
            "Transfer calldata encoded.",
            "0x" + data.hex(),
            signature=TRANSFER_SIGNATURE,
            to=destination,
            amountUnits=str(amount_units),
            data="0x" + data.hex(),
        )
    except TokenCliError as exc:
        return fail_from_error(args, exc, {"to": args.to, "amount": args.amount})


def cmd_status(args: argparse.Namespace) -> int:
    rpc_url = _ethclient(args)
    cast_bin = chain.find_foundry_bin("cast")
    forge_bin = chain.find_foundry_bin("forge")
    chain_id: int | None = None
    warnings: list[dict[str, str]] = []
    if cast_bin:
        try:
            chain_id = chain.Node(rpc_url).chain_id()
        except TokenCliError as exc:
            warnings.append({"code": exc.code, "message": str(exc)})
    lines = [
        f"Node: {rpc_url}",
        f"Chain id: {chain_id if chain_id is not None else 'unreachable'}",
        f"cast: {cast_bin or 'missing'}",
        f"forge: {forge_bin or 'missing'}",
    ]
    return ok(
        args,
        "Runtime status checked.",
        "\n".join(lines),
        ethclient=rpc_url,
        chainId=chain_id,
        hasCast=cast_bin is not None,
        hasForge=forge_bin is not None,
        warnings=warnings or None,
        timestamp=utc_now(),
    )


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Print one JSON object instead of text")
    common.add_argument("--verbose", action="store_true", help="Log node interactions to stderr")

    node = argparse.ArgumentParser(add_help=False)
    node.add_argument("--ethclient", help=f"Ethereum client to connect (default {config.DEFAULT_ETHCLIENT})")

    p = argparse.ArgumentParser(prog="tokencli", description="the erc20 token command line interface")
    sub = p.add_subparsers(dest="command")

    create = sub.add_parser(
        "create",
        parents=[common, node],
        help="Create an ERC20 token",
        description="Deploys an ERC20 contract with 9 decimals and mints the whole supply to the deploying account.",
    )
    create.add_argument("name", help="Token name")
    create.add_argument("symbol", help="Token symbol")
    create.add_argument("supply", help="Whole number of tokens to mint")
    create.add_argument("--account", help="Private key of the account which will deploy the contract")
    create.set_defaults(func=cmd_create)

    info = sub.add_parser(
        "info",
        parents=[common, node],
        help="Retrieve basic information about an ERC20 token",
        description="Displays the token name, its symbol, the decimals and the total supply.",
    )
    info.add_argument("token_address", metavar="tokenAddress", help="Token contract address")
    info.set_defaults(func=cmd_info)

    balance = sub.add_parser(
        "balance",
        parents=[common, node],
        help="Check the balance of an ERC20 token for a given wallet address",
    )
    balance.add_argument("--token", required=True, help="Token contract address")
    balance.add_argument("--wallet", required=True, help="Wallet address")
    balance.set_defaults(func=cmd_balance)

    transfer = sub.add_parser(
        "transfer",
        parents=[common, node],
        help="Transfer ERC20 tokens",
        description=(
            "Transfer ERC20 tokens between two addresses. The sender is given by its private key. "
            "Any error before submission aborts the command and no tokens are transferred."
        ),
    )
    transfer.add_argument("quantity", help="Amount of tokens in human units, e.g. 1.5")
    transfer.add_argument("--from", dest="sender_key", help="Sender private key")
    transfer.add_argument("--to", required=True, help="Receiver address")
    transfer.add_argument("--token", required=True, help="Token contract address")
    transfer.set_defaults(func=cmd_transfer)

    encode = sub.add_parser(
        "encode-transfer",
        parents=[common],
        help="Print transfer(address,uint256) calldata without contacting a node",
    )
    encode.add_argument("--to", required=True, help="Receiver address")
    encode.add_argument("--amount", required=True, help="Amount; base units unless --decimals is given")
    encode.add_argument("--decimals", type=int, help="Token decimals used to scale a human amount")
    encode.set_defaults(func=cmd_encode_transfer)

    status = sub.add_parser("status", parents=[common, node], help="Check Foundry binaries and node reachability")
    status.set_defaults(func=cmd_status)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    try:
        level = config.log_level(getattr(args, "verbose", False))
    except TokenCliError as exc:
        return fail_from_error(args, exc)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
