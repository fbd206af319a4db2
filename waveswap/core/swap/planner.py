"""
Swap Flow Planner

Decides which stages a private swap needs and produces the ordered step
plan. The quote is fetched here exactly once and carried into execution.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from ...providers.encifher import BalanceProof, EncifherClient
from .constants import STEP_DURATIONS, resolve_token_metadata
from .models import (
    StepStatus,
    SwapFlowPlan,
    SwapRequest,
    SwapStep,
    SwapStepKind,
    TokenResolver,
    from_base_units,
    to_base_units,
)


def _format_amount(amount: Decimal) -> str:
    return format(amount.normalize(), "f")


class SwapFlowPlanner:
    """Builds SwapFlowPlan values. Stateless apart from its collaborators."""

    def __init__(
        self,
        client: EncifherClient,
        token_resolver: TokenResolver = resolve_token_metadata,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.resolve_token = token_resolver
        self.logger = logger or logging.getLogger(__name__)

    async def private_balances(
        self,
        identity: str,
        tokens: List[str],
        proof: BalanceProof,
    ) -> Dict[str, Decimal]:
        """Private balances in display units, suitable for ``plan``."""
        raw = await self.client.get_private_balance(identity, tokens, proof)
        return {
            mint: from_base_units(entry.balance, self.resolve_token(mint).decimals)
            for mint, entry in raw.items()
        }

    async def plan(
        self,
        request: SwapRequest,
        current_private_balance: Mapping[str, Decimal],
        withdrawal_requested: bool = True,
    ) -> SwapFlowPlan:
        input_token = self.resolve_token(request.input_mint)
        output_token = self.resolve_token(request.output_mint)
        amount = request.amount

        private_input = Decimal(str(current_private_balance.get(request.input_mint, 0)))
        requires_deposit = private_input < amount

        quote = await self.client.quote(
            request.input_mint,
            request.output_mint,
            to_base_units(amount, input_token.decimals),
        )
        estimated_output = from_base_units(quote.expected_out_amount, output_token.decimals)

        steps: List[SwapStep] = []

        if requires_deposit:
            steps.append(
                SwapStep(
                    kind=SwapStepKind.DEPOSIT,
                    description=f"Deposit {_format_amount(amount)} {input_token.symbol} to private pool",
                    estimated_duration=STEP_DURATIONS["deposit"],
                )
            )

        # Planning already paid for the quote
        steps.append(
            SwapStep(
                kind=SwapStepKind.QUOTE,
                description=(
                    f"Swap {_format_amount(amount)} {input_token.symbol} -> "
                    f"{_format_amount(estimated_output)} {output_token.symbol} privately"
                ),
                estimated_duration=STEP_DURATIONS["quote"],
                status=StepStatus.COMPLETED,
            )
        )
        steps.append(
            SwapStep(
                kind=SwapStepKind.SWAP,
                description="Execute private swap transaction",
                estimated_duration=STEP_DURATIONS["swap"],
            )
        )
        steps.append(
            SwapStep(
                kind=SwapStepKind.STATUS_POLL,
                description="Monitor private swap completion",
                estimated_duration=STEP_DURATIONS["status_poll"],
            )
        )

        if withdrawal_requested:
            steps.append(
                SwapStep(
                    kind=SwapStepKind.WITHDRAW,
                    description=f"Withdraw {output_token.symbol} to public wallet",
                    estimated_duration=STEP_DURATIONS["withdraw"],
                )
            )

        total_seconds = sum(step.estimated_duration[1] for step in steps)

        self.logger.info(
            f"Planned {input_token.symbol}->{output_token.symbol} swap: "
            f"{[step.kind.value for step in steps]}, deposit={requires_deposit}"
        )

        return SwapFlowPlan(
            request=request,
            input_token=input_token,
            output_token=output_token,
            quote=quote,
            steps=steps,
            requires_deposit=requires_deposit,
            requires_withdrawal=withdrawal_requested,
            estimated_output_amount=estimated_output,
            total_estimated_seconds=total_seconds,
        )
