#!/usr/bin/env python3
"""
Safe Rebalance Bot Startup Script

This script helps you safely start the bot by:
1. Checking that .env / config file exist
2. Resolving dry-run vs live mode from flags and environment
3. Refusing live mode without confirmation
4. Starting bot with proper error handling
"""

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from rebalancer.config.config import env_bool
from rebalancer.config.file_config import resolve_config_path
from rebalancer.utils import network_from_rpc_url


def check_env_file():
    """Warn when neither .env nor a config file is present."""
    env_file = Path('.env')
    config_file = resolve_config_path()

    if not env_file.exists() and not config_file.exists():
        print("❌ ERROR: neither .env nor", config_file, "found")
        print("\nSet at least:")
        print("  WALLET_ADDRESS=0x...")
        print("  POOL_ID=0x...")
        print("  TOKEN_A_TYPE=0x...::coin::COIN")
        print("  TOKEN_B_TYPE=0x...::coin::COIN")
        return False

    if env_file.exists():
        print("✅ .env file present")
    if config_file.exists():
        print(f"✅ Config file present ({config_file})")
    return True


def check_state_directory():
    """Ensure the state file's directory exists."""
    state_dir = Path(os.getenv('STATE_FILE', 'state/state.json')).parent
    state_dir.mkdir(parents=True, exist_ok=True)
    print("✅ State directory ready")
    return True


def check_logs_directory():
    """Ensure the log file's directory exists, when file logging is on."""
    log_file = os.getenv('LOG_FILE')
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        print("✅ Logs directory ready")
    return True


def resolve_mode(args):
    """Apply flags on top of the environment. Returns (dry_run, confirm)."""
    dry_run = env_bool('DRY_RUN', True)
    confirm = env_bool('CONFIRM', False)
    if args.dry_run:
        dry_run = True
    if args.live:
        dry_run = False
    if args.confirm:
        confirm = True
    os.environ['DRY_RUN'] = 'true' if dry_run else 'false'
    os.environ['CONFIRM'] = 'true' if confirm else 'false'
    return dry_run, confirm


def print_mode(dry_run):
    rpc_url = os.getenv('SUI_RPC_URL', 'https://fullnode.mainnet.sui.io:443')
    network = network_from_rpc_url(rpc_url)
    color = '🔴' if network == 'mainnet' else '🟡'
    print(f"\n{color} Network: {network.upper()}")
    print(f"   RPC: {rpc_url}")
    if dry_run:
        print("==> Starting bot in DRY-RUN mode (no transactions will be broadcast)")
    else:
        print("==> Starting bot in LIVE mode")
        print("    WARNING: Real transactions will be broadcast!")


def main():
    """Run pre-flight checks and start bot."""
    parser = argparse.ArgumentParser(description='Cetus CLMM Rebalance Bot')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--dry-run', action='store_true', help='Simulate only, never broadcast (default)')
    mode.add_argument('--live', action='store_true', help='Broadcast real transactions')
    parser.add_argument('--confirm', action='store_true',
                        help='Required together with --live to actually broadcast')
    args = parser.parse_args()

    load_dotenv()

    print("=" * 60)
    print("PRE-FLIGHT CHECKS")
    print("=" * 60)
    checks = [check_env_file, check_state_directory, check_logs_directory]
    if not all([check() for check in checks]):
        print("\n❌ Pre-flight checks FAILED")
        sys.exit(1)

    dry_run, confirm = resolve_mode(args)
    if not dry_run and not confirm:
        print("ERROR: Live mode requires --confirm flag or CONFIRM=true env var.")
        sys.exit(1)
    print_mode(dry_run)

    try:
        import asyncio
        from rebalancer.main import main as bot_main
        code = asyncio.run(bot_main())
    except KeyboardInterrupt:
        print("\n\n⏹️  Bot shutdown requested (Ctrl+C)")
        code = 0
    sys.exit(code)


if __name__ == '__main__':
    main()
