"""
Agent Wallet CLI - Command Line Interface
=========================================

Simple CLI for common agentwallet operations.
"""

import sys
import argparse
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import DEFAULT_POLICY_STORE_ADDRESS, NETWORKS, AgentWalletConfig
from .errors import ConfigurationError


EXAMPLE_CONFIG = f"""# agentwallet configuration
# PKP the agent acts for
pkp_token_id: 1
pkp_address: "0x0000000000000000000000000000000000000001"

# Delegatee running tools on behalf of the PKP
delegatee_address: "0x0000000000000000000000000000000000000002"

# Ledger
network: datil-dev
policy_store_address: "{DEFAULT_POLICY_STORE_ADDRESS}"

# Audit log of tool executions (JSON lines)
log_file: ./agentwallet.log

debug: false
"""


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        prog="agentwallet",
        description="agentwallet - tool policy and permission enforcement for PKP agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"agentwallet {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Init command
    init_parser = subparsers.add_parser(
        "init",
        help="Write an example configuration file"
    )
    init_parser.add_argument(
        "--config",
        default="./agentwallet.yaml",
        help="Path of the configuration file to create (default: ./agentwallet.yaml)"
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing configuration file"
    )

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate a configuration file"
    )
    validate_parser.add_argument(
        "config_file",
        help="YAML or JSON configuration file"
    )

    # Info command
    subparsers.add_parser(
        "info",
        help="Show configuration from the environment"
    )

    # Networks command
    subparsers.add_parser(
        "networks",
        help="List supported networks"
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "init":
        return cmd_init(args.config, args.force)
    elif args.command == "validate":
        return cmd_validate(args.config_file)
    elif args.command == "info":
        return cmd_info()
    elif args.command == "networks":
        return cmd_networks()

    return 0


def cmd_init(config_path: str, force: bool = False) -> int:
    """Write an example configuration"""
    print("🚀 Initializing agentwallet configuration...")

    path = Path(config_path)
    if path.exists() and not force:
        print(f"❌ Error: {config_path} already exists (use --force to overwrite)")
        return 1

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        f.write(EXAMPLE_CONFIG)
    print(f"✓ Created configuration: {config_path}")

    print("\n✅ agentwallet initialized!")
    print("\nNext steps:")
    print(f"  1. Set your PKP and delegatee in {config_path}")
    print(f"  2. Run: agentwallet validate {config_path}")
    return 0


def cmd_validate(config_file: str) -> int:
    """Validate a configuration file"""
    print(f"🔍 Validating {config_file}...")

    try:
        config = AgentWalletConfig.from_file(config_file)
    except ConfigurationError as e:
        print(f"❌ {e.message}")
        return 1
    except Exception as e:
        print(f"❌ Parse error: {e}")
        return 1

    warnings = []
    if config.pkp_token_id is None:
        warnings.append("pkp_token_id is not set")
    if not config.delegatee_address:
        warnings.append("delegatee_address is not set")
    if not config.has_policy_store:
        warnings.append("policy_store_address is empty; tools run without policies")

    for warning in warnings:
        print(f"⚠️  Warning: {warning}")

    print(f"\n✅ {config_file} is valid")
    return 0


def cmd_info() -> int:
    """Show configuration and system info"""
    print(f"agentwallet v{__version__}")
    print("=" * 50)

    try:
        config = AgentWalletConfig.from_env()
    except ConfigurationError as e:
        print(f"\n❌ Error loading configuration: {e.message}")
        return 1

    print("\nConfiguration:")
    print(f"  PKP Token ID:   {config.pkp_token_id if config.pkp_token_id is not None else '(not set)'}")
    print(f"  PKP Address:    {config.pkp_address or '(not set)'}")
    print(f"  Delegatee:      {config.delegatee_address or '(not set)'}")
    print(f"  Network:        {config.network}")
    print(f"  RPC URL:        {config.rpc_url}")
    print(f"  Chain ID:       {config.chain_id}")
    print(f"  Policy Store:   {config.policy_store_address or '(not set)'}")
    print(f"  Log File:       {config.log_file or '(disabled)'}")
    print(f"  Debug:          {config.debug}")
    return 0


def cmd_networks() -> int:
    """List supported networks"""
    for name, description in NETWORKS.items():
        print(f"  {name:<12} {description}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
