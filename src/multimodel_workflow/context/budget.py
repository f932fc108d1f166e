"""
Context budget manager.

Tracks token usage of a conversation against the active model's context
window and prunes old turns once usage reaches the critical threshold:

1. System messages are never pruned
2. The most recent min_messages_to_keep conversation messages are always kept
3. Older messages are kept, newest first, while they fit the target budget;
   everything before the first message that does not fit is dropped
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

ContextStatus = Literal["normal", "warning", "critical"]

# A message is an OpenAI-style dict or any object with role/content attributes
Message = Any
TokenCounter = Callable[[Message], int]


class ContextBudgetSettings(BaseModel):
	"""Thresholds for context warnings and pruning, in percent of the window."""
	warning_threshold: float = Field(default=80, ge=0, le=100)
	critical_threshold: float = Field(default=90, ge=0, le=100)
	min_messages_to_keep: int = Field(default=6, ge=0)
	target_percent_after_prune: float = Field(default=70, gt=0, le=100)

	@model_validator(mode="after")
	def _check_order(self):
		if self.warning_threshold > self.critical_threshold:
			raise ValueError("warning_threshold must not exceed critical_threshold")
		return self


@dataclass
class ContextUsage:
	current_tokens: int
	max_tokens: int
	percent_used: int
	status: ContextStatus
	display_string: str
	has_context_limit: bool


@dataclass
class PruneResult:
	pruned: bool
	messages: list
	removed_count: int


def message_role(message: Message) -> Optional[str]:
	if isinstance(message, dict):
		return message.get("role")
	return getattr(message, "role", None)


def message_content(message: Message) -> str:
	content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
	if content is None:
		return ""
	return content if isinstance(content, str) else str(content)


def estimate_message_tokens(message: Message) -> int:
	"""Rough token estimate of about four characters per token."""
	return (len(message_content(message)) + 3) // 4


def format_token_count(tokens: int) -> str:
	"""Format a token count for display (2500 -> "2.5k", 128000 -> "128k")."""
	if tokens >= 1000:
		k = tokens / 1000
		if k >= 100:
			return f"{round(k)}k"
		formatted = f"{k:.1f}"
		if formatted.endswith(".0"):
			formatted = formatted[:-2]
		return f"{formatted}k"
	return str(tokens)


class ContextBudgetManager:
	"""
	Pure computation over a message list for one model's context window.

	A max_context_size of 0 means the limit is unknown: usage is reported
	but nothing is ever pruned.
	"""

	def __init__(
		self,
		max_context_size: int,
		token_counter: TokenCounter = estimate_message_tokens,
		settings: Optional[ContextBudgetSettings] = None,
	):
		self.max_context_size = max(0, max_context_size)
		self.token_counter = token_counter
		self.settings = settings or ContextBudgetSettings()

	def count_tokens(self, messages: list) -> int:
		return sum(self.token_counter(m) for m in messages)

	def _status_for(self, percent_used: float) -> ContextStatus:
		if percent_used >= self.settings.critical_threshold:
			return "critical"
		if percent_used >= self.settings.warning_threshold:
			return "warning"
		return "normal"

	def usage(self, messages: list) -> ContextUsage:
		"""Report token usage of a conversation."""
		total = self.count_tokens(messages)
		has_limit = self.max_context_size > 0
		percent_used = round(total / self.max_context_size * 100) if has_limit else 0

		if has_limit:
			display = f"{format_token_count(total)} / {format_token_count(self.max_context_size)}"
		else:
			display = f"{format_token_count(total)} tokens"

		return ContextUsage(
			current_tokens=total,
			max_tokens=self.max_context_size,
			percent_used=percent_used,
			status=self._status_for(percent_used),
			display_string=display,
			has_context_limit=has_limit,
		)

	def needs_pruning(self, messages: list) -> bool:
		return self.max_context_size > 0 and self.usage(messages).status == "critical"

	def prune(self, messages: list) -> PruneResult:
		"""
		Drop older conversation turns to bring usage back under the target.

		Returns the input unchanged (pruned=False) when there is nothing to
		prune, the limit is unknown, or usage is below the critical threshold.
		"""
		unchanged = PruneResult(pruned=False, messages=messages, removed_count=0)
		if not messages or self.max_context_size == 0:
			return unchanged

		current_percent = self.count_tokens(messages) / self.max_context_size * 100
		if current_percent < self.settings.critical_threshold:
			return unchanged

		system_messages = [m for m in messages if message_role(m) == "system"]
		conversation = [m for m in messages if message_role(m) != "system"]

		min_keep = self.settings.min_messages_to_keep
		if len(conversation) <= min_keep:
			return unchanged

		target_tokens = self.max_context_size * self.settings.target_percent_after_prune / 100
		available_tokens = target_tokens - self.count_tokens(system_messages)

		kept: list = []
		kept_tokens = 0
		for message in reversed(conversation):
			tokens = self.token_counter(message)
			if len(kept) < min_keep:
				kept.append(message)
				kept_tokens += tokens
				continue
			if kept_tokens + tokens > available_tokens:
				break
			kept.append(message)
			kept_tokens += tokens

		kept.reverse()
		result = system_messages + kept
		removed = len(messages) - len(result)

		if removed > 0:
			logger.info(
				f"Pruned {removed} messages: {len(messages)} -> {len(result)} "
				f"(kept {len(system_messages)} system + {len(kept)} recent, ~{kept_tokens} tokens)"
			)

		return PruneResult(pruned=removed > 0, messages=result, removed_count=removed)

	def would_exceed_limit(self, current_total: int, additional_tokens: int) -> bool:
		"""Check if adding tokens would reach the critical threshold."""
		if self.max_context_size == 0:
			return False
		new_percent = (current_total + additional_tokens) / self.max_context_size * 100
		return new_percent >= self.settings.critical_threshold

	def estimate_tokens(self, content: str) -> int:
		"""Estimate tokens for a new user message before adding it."""
		return self.token_counter({"role": "user", "content": content})


@dataclass
class WarningLatch:
	"""
	Caller-owned "warning already shown" flag.

	The manager only reports status; whoever displays the warning keeps
	this latch and resets it when the conversation is cleared.
	"""
	shown: bool = False

	def should_show(self, usage: ContextUsage) -> bool:
		return usage.status == "warning" and not self.shown and usage.has_context_limit

	def mark_shown(self) -> None:
		self.shown = True

	def reset(self) -> None:
		self.shown = False
