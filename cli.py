#!/usr/bin/env python3
"""
Batch Distributor — CLI for dual-signature batch payments.

Usage:
    batch-distributor build --file <recipients> --asset <token> [--decimals <n>] --output <batch.json>
    batch-distributor typed-data --batch <batch.json>
    batch-distributor sign --batch <batch.json> --output <approval.json> [--key-env <VAR>]
    batch-distributor recover --approval <approval.json>
    batch-distributor preflight --approval <approval.json> --executor <address>
    batch-distributor simulate --approval <approval.json> --executor <address>
    batch-distributor validate --file <recipients>
    batch-distributor new-batch-id
    batch-distributor generate-template --output <path> [--format csv|json] [--count <n>]

Domain options (--chain-id, --contract, --max-batch-size) default to the
BATCH_DISTRIBUTOR_* environment variables.

Examples:
    # Submitter: build a USDT batch and sign it (no transaction, no gas)
    batch-distributor build --file recipients.csv --asset 0x55d3...7955 --decimals 18 --output batch.json
    SUBMITTER_PRIVATE_KEY=0x... batch-distributor sign --batch batch.json --output approval.json

    # Executor: check the approval before broadcasting
    batch-distributor preflight --approval approval.json --executor 0xVerifier...
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from batch_distributor import __version__
from batch_distributor.assets import InMemoryAssetBackend
from batch_distributor.batch import (
    Batch,
    format_units,
    parse_recipients,
    random_batch_id,
    validate_recipients,
)
from batch_distributor.companion import (
    SubmitterApproval,
    companion_digest,
    preflight,
    sign_batch,
    typed_data_json,
    who_signed,
)
from batch_distributor.config import ZERO_ADDRESS, DistributorConfig
from batch_distributor.digest import SigningDomain
from batch_distributor.distributor import BatchDistributor
from batch_distributor.errors import DistributorError


DEFAULT_KEY_ENV = "SUBMITTER_PRIVATE_KEY"


def _config(args: argparse.Namespace) -> DistributorConfig:
    return DistributorConfig.from_env().with_overrides(
        chain_id=getattr(args, "chain_id", None),
        verifying_contract=getattr(args, "contract", None),
        max_batch_size=getattr(args, "max_batch_size", None),
    )


def _domain(args: argparse.Namespace) -> SigningDomain:
    config = _config(args)
    if int(config.verifying_contract, 16) == 0:
        raise ValueError(
            "no distributor contract configured "
            "(use --contract or BATCH_DISTRIBUTOR_VERIFYING_CONTRACT)"
        )
    return SigningDomain.from_config(config)


def _load_batch(path: str) -> Batch:
    return Batch.from_json(Path(path).read_text())


def _load_approval(path: str) -> SubmitterApproval:
    return SubmitterApproval.from_json(Path(path).read_text())


def cmd_build(args: argparse.Namespace) -> int:
    """Build a batch payload from a recipient list."""
    try:
        recipients = parse_recipients(args.file)
    except (OSError, ValueError) as e:
        print(f"Error parsing file: {e}")
        return 1

    try:
        max_batch_size = _config(args).max_batch_size
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    is_valid, errors = validate_recipients(recipients, max_batch_size=max_batch_size)
    if not is_valid:
        print("Validation errors:")
        for err in errors:
            print(f"  ✗ {err}")
        return 1

    try:
        batch = Batch.from_recipients(
            recipients,
            asset=args.asset,
            decimals=args.decimals,
            batch_id=args.batch_id,
            deadline=args.deadline,
        )
    except (DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    Path(args.output).write_text(batch.to_json() + "\n")
    print(f"Batch {batch.batch_id_hex}")
    print(f"  {len(batch.recipients)} recipients, total {batch.total_amount} base units "
          f"({format_units(batch.total_amount, args.decimals)})")
    print(f"  deadline {batch.deadline}")
    print(f"Written to {args.output}")
    return 0


def cmd_typed_data(args: argparse.Namespace) -> int:
    """Print the EIP-712 payload a wallet would sign."""
    try:
        batch = _load_batch(args.batch)
        domain = _domain(args)
        print(typed_data_json(domain, batch))
        print(f"Digest: 0x{companion_digest(domain, batch).hex()}", file=sys.stderr)
    except (OSError, DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    """Sign a batch as the submitter."""
    key = os.environ.get(args.key_env)
    if not key:
        print(f"Error: set {args.key_env} to the submitter's private key")
        return 1

    try:
        batch = _load_batch(args.batch)
        domain = _domain(args)
        total = batch.total_amount
    except (OSError, DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    print(f"Signing batch {batch.batch_id_hex} for {domain.verifying_contract} "
          f"on chain {domain.chain_id}")
    print(f"  {len(batch.recipients)} recipients, total {total}")

    if not args.yes:
        response = input("\nSign this batch? [y/N]: ")
        if response.lower() not in ("y", "yes"):
            print("Aborted.")
            return 0

    try:
        approval = sign_batch(key, domain, batch)
    except (DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    Path(args.output).write_text(approval.to_json() + "\n")
    print()
    print(approval.summary())
    print(f"\nWritten to {args.output}")
    return 0


def cmd_recover(args: argparse.Namespace) -> int:
    """Show who signed an approval."""
    try:
        approval = _load_approval(args.approval)
        signer = who_signed(_domain(args), approval.batch, approval.signature)
    except (OSError, DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    if signer == ZERO_ADDRESS:
        print("✗ Signature is malformed: no signer recovered")
        return 1
    print(f"Signed by: {signer}")
    if signer != approval.submitter:
        print(f"✗ Declared submitter is {approval.submitter}")
        return 1
    return 0


def cmd_preflight(args: argparse.Namespace) -> int:
    """Executor check before execution."""
    try:
        approval = _load_approval(args.approval)
        domain = _domain(args)
        config = _config(args)
    except (OSError, DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    batch = approval.batch
    problems = []
    if not batch.recipients:
        problems.append("batch has no recipients")
    if len(batch.recipients) != len(batch.amounts):
        problems.append(
            f"{len(batch.recipients)} recipients but {len(batch.amounts)} amounts"
        )
    if len(batch.recipients) > config.max_batch_size:
        problems.append(
            f"{len(batch.recipients)} recipients exceed the limit of {config.max_batch_size}"
        )
    if batch.is_expired():
        problems.append(f"deadline {batch.deadline} has passed")

    try:
        signer = preflight(domain, approval, executor=args.executor)
    except DistributorError as e:
        problems.append(f"{e.code}: {e}")
        signer = None

    if problems:
        print(f"✗ Batch {batch.batch_id_hex} is not ready:")
        for problem in problems:
            print(f"  ✗ {problem}")
        return 1

    print(f"✓ Batch {batch.batch_id_hex} signed by {signer}")
    print(f"  Ready for execution by {args.executor}")
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    """Dry-run an approval through the execution engine on a funded in-memory distributor."""
    try:
        approval = _load_approval(args.approval)
        _domain(args)
        config = _config(args)
        batch = approval.batch
        assets = InMemoryAssetBackend()
        assets.mint(batch.asset, config.verifying_contract, batch.total_amount)
        distributor = BatchDistributor.create(
            args.executor, assets, config=config, allowed_assets={batch.asset}
        )
    except (OSError, DistributorError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    try:
        record = distributor.execute_dual_sig(
            args.executor, batch, approval.submitter, approval.signature
        )
    except DistributorError as e:
        print(f"✗ Execution would fail: {e.code}: {e}")
        return 1

    print(record.summary())
    print("\nDry run only: nothing was broadcast.")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a recipient list."""
    try:
        recipients = parse_recipients(args.file)
    except (OSError, ValueError) as e:
        print(f"Error parsing file: {e}")
        return 1

    print(f"Loaded {len(recipients)} recipients from {args.file}")

    try:
        max_batch_size = _config(args).max_batch_size
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    is_valid, errors = validate_recipients(
        recipients,
        max_batch_size=max_batch_size,
        allow_duplicates=not args.strict,
    )

    if is_valid:
        total = sum(r.amount for r in recipients)
        print(f"\n✓ All {len(recipients)} recipients are valid")
        print(f"  Total amount: {total}")
        print(f"  Min: {min(r.amount for r in recipients)}")
        print(f"  Max: {max(r.amount for r in recipients)}")

        print(f"\nPreview (first 5):")
        for r in recipients[:5]:
            label = f" ({r.label})" if r.label else ""
            print(f"  {r.address[:10]}...{r.address[-6:]} → {r.amount}{label}")
        if len(recipients) > 5:
            print(f"  ... and {len(recipients) - 5} more")

        return 0
    else:
        print(f"\n✗ Found {len(errors)} validation errors:")
        for err in errors:
            print(f"  ✗ {err}")
        return 1


def cmd_new_batch_id(args: argparse.Namespace) -> int:
    """Print a fresh random batch id."""
    print("0x" + random_batch_id().hex())
    return 0


def cmd_generate_template(args: argparse.Namespace) -> int:
    """Generate a template recipient file."""
    count = args.count
    output = Path(args.output)

    recipients = []
    labels = ["Alice", "Bob", "Charlie", "Dave", "Eve"]
    for i in range(count):
        # 0x1111..., 0x2222..., placeholders to be replaced
        digit = "123456789abcdef"[i % 15]
        recipients.append({
            "address": "0x" + digit * 40,
            "amount": str(1 + i),
            "label": labels[i] if i < len(labels) else f"Recipient_{i + 1}",
        })

    if args.format == "json":
        with open(output, "w") as f:
            json.dump(recipients, f, indent=2)
    else:
        with open(output, "w", newline="") as f:
            f.write("address,amount,label\n")
            for r in recipients:
                f.write(f"{r['address']},{r['amount']},{r['label']}\n")

    print(f"Generated template with {count} recipients: {output}")
    print(f"Format: {args.format.upper()}")
    print(f"\nEdit the file with your actual recipient addresses and amounts,")
    print(f"then run: batch-distributor validate --file {output}")
    return 0


def _add_domain_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--chain-id", type=int, default=None, help="Chain id of the signing domain"
    )
    parser.add_argument(
        "--contract", default=None, help="Distributor contract address (verifyingContract)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batch-distributor",
        description="Dual-signature batch payments for EVM chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"batch-distributor {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    build_parser_ = subparsers.add_parser(
        "build", help="Build a batch payload from a recipient list"
    )
    build_parser_.add_argument(
        "--file", "-f", required=True, help="Path to recipient list (CSV or JSON)"
    )
    build_parser_.add_argument(
        "--asset", "-a", required=True, help="Token contract address"
    )
    build_parser_.add_argument(
        "--decimals", "-d", type=int, default=18, help="Token decimals. Default: 18"
    )
    build_parser_.add_argument(
        "--batch-id", default=None, help="32-byte hex batch id. Default: random"
    )
    build_parser_.add_argument(
        "--deadline", type=int, default=None,
        help="Unix timestamp after which the batch is stale. Default: now + 1h"
    )
    build_parser_.add_argument(
        "--max-batch-size", type=int, default=None, help="Maximum recipients per batch"
    )
    build_parser_.add_argument(
        "--output", "-o", default="batch.json", help="Output batch file"
    )

    typed_parser = subparsers.add_parser(
        "typed-data", help="Print the EIP-712 typed data for a batch"
    )
    typed_parser.add_argument("--batch", "-b", required=True, help="Batch JSON file")
    _add_domain_args(typed_parser)

    sign_parser = subparsers.add_parser(
        "sign", help="Sign a batch as the submitter"
    )
    sign_parser.add_argument("--batch", "-b", required=True, help="Batch JSON file")
    sign_parser.add_argument(
        "--output", "-o", default="approval.json", help="Output approval file"
    )
    sign_parser.add_argument(
        "--key-env", default=DEFAULT_KEY_ENV,
        help=f"Environment variable holding the private key. Default: {DEFAULT_KEY_ENV}"
    )
    sign_parser.add_argument(
        "--yes", "-y", action="store_true", help="Skip confirmation prompt"
    )
    _add_domain_args(sign_parser)

    recover_parser = subparsers.add_parser(
        "recover", help="Show who signed an approval"
    )
    recover_parser.add_argument(
        "--approval", required=True, help="Approval JSON file"
    )
    _add_domain_args(recover_parser)

    preflight_parser = subparsers.add_parser(
        "preflight", help="Check an approval before execution"
    )
    preflight_parser.add_argument(
        "--approval", required=True, help="Approval JSON file"
    )
    preflight_parser.add_argument(
        "--executor", "-e", required=True, help="Address that will execute the batch"
    )
    preflight_parser.add_argument(
        "--max-batch-size", type=int, default=None, help="Maximum recipients per batch"
    )
    _add_domain_args(preflight_parser)

    simulate_parser = subparsers.add_parser(
        "simulate", help="Dry-run an approval through the execution engine"
    )
    simulate_parser.add_argument(
        "--approval", required=True, help="Approval JSON file"
    )
    simulate_parser.add_argument(
        "--executor", "-e", required=True, help="Address that will execute the batch"
    )
    simulate_parser.add_argument(
        "--max-batch-size", type=int, default=None, help="Maximum recipients per batch"
    )
    _add_domain_args(simulate_parser)

    validate_parser = subparsers.add_parser(
        "validate", help="Validate a recipient list"
    )
    validate_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list"
    )
    validate_parser.add_argument(
        "--max-batch-size", type=int, default=None, help="Maximum recipients per batch"
    )
    validate_parser.add_argument(
        "--strict", action="store_true", help="Treat duplicate addresses as errors"
    )

    subparsers.add_parser("new-batch-id", help="Print a random batch id")

    template_parser = subparsers.add_parser(
        "generate-template", help="Generate a template recipient file"
    )
    template_parser.add_argument(
        "--output", "-o", default="recipients.csv", help="Output file path"
    )
    template_parser.add_argument(
        "--format", choices=["csv", "json"], default="csv", help="File format"
    )
    template_parser.add_argument(
        "--count", "-c", type=int, default=5, help="Number of sample recipients"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "build": cmd_build,
        "typed-data": cmd_typed_data,
        "sign": cmd_sign,
        "recover": cmd_recover,
        "preflight": cmd_preflight,
        "simulate": cmd_simulate,
        "validate": cmd_validate,
        "new-batch-id": cmd_new_batch_id,
        "generate-template": cmd_generate_template,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
