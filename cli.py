#!/usr/bin/env python3
"""Simple CLI for checking private swaps locally"""

import argparse
import asyncio
from decimal import Decimal, InvalidOperation

from waveswap.core.recovery import RecoveryAssessment
from waveswap.core.resilience import OrchestratorError
from waveswap.core.swap import TOKEN_REGISTRY, resolve_token_metadata
from waveswap.core.swap.models import from_base_units, to_base_units
from waveswap.core.swap.service import SwapService
from waveswap.logging_config import setup_logging


def resolve_mint(value: str) -> str:
    """Accept either a mint address or a registry symbol (SOL, USDC, WAVE)."""
    for mint, metadata in TOKEN_REGISTRY.items():
        if metadata.symbol.lower() == value.lower():
            return mint
    return value


def print_assessment(assessment: RecoveryAssessment):
    """Pretty print a recovery assessment"""
    print("\nRecovery Assessment")
    print("=" * 50)
    print(f"Signature: {assessment.signature}")
    print(f"Type:      {assessment.declared_type.value}")
    print(f"Outcome:   {assessment.action.value}")
    print(f"\n{assessment.message}")

    if assessment.tokens_found:
        symbols = [TOKEN_REGISTRY[m].symbol if m in TOKEN_REGISTRY else m for m in assessment.tokens_found]
        print(f"\nPrivate tokens found: {', '.join(symbols)}")

    print("\nNext steps:")
    for i, step in enumerate(assessment.next_steps, 1):
        print(f"{i:2d}. {step}")

    if assessment.support_contact:
        print(f"\nSupport: {assessment.support_contact}")


async def cli_recover(user: str, signature: str, declared_type: str):
    """CLI command to classify a stuck transaction"""
    print(f"🔍 Checking {declared_type} {signature[:16]}...")

    async with SwapService() as service:
        try:
            assessment = await service.recover(user, signature, declared_type)
        except OrchestratorError as e:
            print(f"❌ {e.category.value}: {e.message}")
            return
        print_assessment(assessment)


async def cli_status(order_id: str):
    """CLI command for a single order status query"""
    async with SwapService() as service:
        try:
            status = await service.order_status(order_id)
        except OrchestratorError as e:
            print(f"❌ {e.category.value}: {e.message}")
            return

    print(f"\nOrder:  {status.order_status_identifier}")
    print(f"Status: {status.status.value}")
    if status.details:
        print(f"Details: {status.details}")


async def cli_quote(input_token: str, output_token: str, amount: str):
    """CLI command to fetch a private swap quote"""
    input_mint = resolve_mint(input_token)
    output_mint = resolve_mint(output_token)

    try:
        input_meta = resolve_token_metadata(input_mint)
        output_meta = resolve_token_metadata(output_mint)
        display_amount = Decimal(amount)
    except (OrchestratorError, InvalidOperation) as e:
        print(f"❌ Invalid request: {e}")
        return

    async with SwapService() as service:
        try:
            quote = await service.quote(input_mint, output_mint, to_base_units(display_amount, input_meta.decimals))
        except OrchestratorError as e:
            print(f"❌ {e.category.value}: {e.message}")
            return

    out_amount = from_base_units(quote.expected_out_amount, output_meta.decimals)
    print(f"\n{display_amount} {input_meta.symbol} → {out_amount} {output_meta.symbol}")
    if quote.price_impact is not None:
        print(f"Price impact: {quote.price_impact}")
    if quote.route:
        print(f"Route: {quote.route}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WaveSwap private swap CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    recover_parser = subparsers.add_parser("recover", help="Classify a stuck deposit or withdrawal")
    recover_parser.add_argument("user", help="User wallet address")
    recover_parser.add_argument("signature", help="Transaction signature")
    recover_parser.add_argument(
        "--type",
        dest="declared_type",
        choices=["deposit", "withdrawal"],
        default="deposit",
        help="Transaction type (default: deposit)",
    )

    status_parser = subparsers.add_parser("status", help="Query a private swap order once")
    status_parser.add_argument("order_id", help="Order status identifier")

    quote_parser = subparsers.add_parser("quote", help="Get a private swap quote")
    quote_parser.add_argument("input_token", help="Input mint or symbol")
    quote_parser.add_argument("output_token", help="Output mint or symbol")
    quote_parser.add_argument("amount", help="Input amount in display units")

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level)
    command = args.command.lower()

    if command == "recover":
        await cli_recover(args.user, args.signature, args.declared_type)

    elif command == "status":
        await cli_status(args.order_id)

    elif command == "quote":
        await cli_quote(args.input_token, args.output_token, args.amount)

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()


if __name__ == "__main__":
    asyncio.run(main())
