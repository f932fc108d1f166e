"""Context module - Token budget tracking and conversation pruning."""

from .budget import (
	ContextBudgetManager,
	ContextBudgetSettings,
	ContextUsage,
	PruneResult,
	WarningLatch,
	estimate_message_tokens,
	format_token_count,
)

__all__ = [
	"ContextBudgetManager",
	"ContextBudgetSettings",
	"ContextUsage",
	"PruneResult",
	"WarningLatch",
	"estimate_message_tokens",
	"format_token_count",
]
