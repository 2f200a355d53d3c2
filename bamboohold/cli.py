#!/usr/bin/env python3
"""
BambooHold Command Line Interface

Usage:
    bamboohold keygen [--output <file>]
    bamboohold reference --emotional <n> --social <n> --sleep <n>
    bamboohold simulate --emotional <n> --social <n> --sleep <n> [--wallet <file>]
"""

import argparse
import json
import logging
import sys


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args):
    """Generate an Ed25519 wallet."""
    from bamboohold import Wallet

    wallet = Wallet()
    data = {
        "address": wallet.address,
        "public_key_b64": wallet.public_key_b64,
        "private_key_b64": wallet.export_private_key_b64(),
    }

    if args.output:
        save_json(data, args.output)
        print(f"Wallet saved to: {args.output}")
    else:
        print(json.dumps(data, indent=2))

    print(f"\nAddress: {wallet.address}", file=sys.stderr)
    return 0


def cmd_reference(args):
    """Plaintext preview of a classification. Nothing is encrypted or stored."""
    from bamboohold import DEFAULT_MODEL, display_score, reference_classify

    try:
        DEFAULT_MODEL.validate_inputs(args.emotional, args.social, args.sleep)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    total, tier = reference_classify(args.emotional, args.social, args.sleep)
    print(json.dumps({
        "scaled_total": total,
        "display_score": display_score(total),
        "tier": int(tier),
        "tier_label": tier.label,
    }, indent=2))
    return 0


def cmd_simulate(args):
    """Run a full encrypted submit-and-disclose round trip in process."""
    from bamboohold import (
        KmsDecryptionOracle,
        MockCoprocessor,
        RiskClient,
        RiskRegistry,
        Wallet,
    )

    wallet = Wallet.from_b64(load_json(args.wallet)["private_key_b64"]) if args.wallet else Wallet()
    coprocessor = MockCoprocessor()
    registry = RiskRegistry(args.contract, coprocessor)
    oracle = KmsDecryptionOracle(coprocessor, registry.acl)
    client = RiskClient(registry, coprocessor, wallet, oracle)

    print("=" * 60)
    print("BambooHold Local Simulation")
    print("=" * 60)
    print(f"Principal: {wallet.address}")
    print(f"Contract:  {registry.address}")
    print(f"Status before submit: {client.status().value}")

    try:
        index = client.submit(args.emotional, args.social, args.sleep)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    print(f"\nSubmitted record #{index} ({client.status().value})")
    print(f"Encrypted operations: {dict(coprocessor.operations)}")

    record = client.decrypt_record(index)
    print("\nDisclosed record (one signature):")
    print(json.dumps(record.to_dict(), indent=2))

    summary = client.summary()
    print(f"\nTotal submissions: {summary.total_submissions}")
    print(f"Signatures requested: {wallet.signature_count}")
    print("=" * 60)
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="BambooHold confidential risk classification CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bamboohold keygen -o wallet.json
  bamboohold reference -e 45 -s 30 -p 50
  bamboohold simulate -e 45 -s 30 -p 50 -w wallet.json
        """
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a wallet key")
    keygen_parser.add_argument("-o", "--output", help="Output file for the wallet")

    for name, help_text in (("reference", "Plaintext classification preview"),
                            ("simulate", "Encrypted round trip against an in-process registry")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-e", "--emotional", type=int, required=True, help="Emotional fluctuation (0-100)")
        sub.add_argument("-s", "--social", type=int, required=True, help="Social fatigue (0-100)")
        sub.add_argument("-p", "--sleep", type=int, required=True, help="Sleep debt (0-100)")
        if name == "simulate":
            sub.add_argument("-w", "--wallet", help="Wallet JSON file from keygen")
            sub.add_argument("-c", "--contract", default="0x" + "b4" * 20, help="Registry contract address")

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.command == "keygen":
        sys.exit(cmd_keygen(args))
    elif args.command == "reference":
        sys.exit(cmd_reference(args))
    elif args.command == "simulate":
        sys.exit(cmd_simulate(args))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
