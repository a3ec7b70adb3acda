"""Collaborator interfaces the worker hands results and notices to."""

from __future__ import annotations

from typing import Protocol

from qagen.generation.models import BillPush, IndexPush, InformPush


class BillingSink(Protocol):
    def push_bill(self, bill: BillPush) -> None:
        """Record token usage for one generated job."""


class IndexingSink(Protocol):
    def push_data(self, push: IndexPush) -> int:
        """Hand QA pairs to the indexing stage; return how many were accepted."""


class Notifier(Protocol):
    def send_inform(self, inform: InformPush) -> None:
        """Deliver one out-of-band notice to a user."""


class BalanceGuard(Protocol):
    def ensure_balance(self, user_id: str) -> None:
        """Raise ``QuotaExhaustedError`` when the user cannot pay for a model call."""
