"""
Per-account forwarding cycle.

One cycle lists the source mailbox, drops messages that were already
forwarded, rewrites and sends the rest to the destination, and records the
ids that were actually sent. Each phase reports a ``PhaseResult``; failures
only affect this account's current cycle and leave its connections ready to
be re-established on the next one.
"""

from __future__ import annotations
from email.message import EmailMessage
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from mail_relay.errors import InitializationError
from mail_relay.logging import logger
from mail_relay.mail.base import InboundMailbox, OutboundSender
from mail_relay.mail.connection import ConnectionManager
from mail_relay.mail.rewrite import rewrite_for_forwarding
from mail_relay.mail.smtp import is_connection_error
from mail_relay.results import CycleResult, CycleState, Outcome, PhaseResult
from mail_relay.rules import ForwardingRule
from mail_relay.storage.forwarded_ids import ForwardedIdStore

Pending = List[Tuple[str, EmailMessage]]


def select_unforwarded(uids: Sequence[str], store: ForwardedIdStore) -> List[Tuple[int, str]]:
    """Return ``(index, uid)`` for every uid not yet forwarded, in mailbox order."""
    return [(index, uid) for index, uid in enumerate(uids) if not store.contains(uid)]


class AccountForwarder:
    """
    Forwarding engine for one rule.

    Owns the account's forwarded-ID store and its inbound/outbound connection
    managers; none of them are shared with other accounts.
    """

    def __init__(
        self,
        rule: ForwardingRule,
        connect_inbound: Callable[[], Awaitable[InboundMailbox]],
        connect_outbound: Callable[[], Awaitable[OutboundSender]],
        store_path: str | Path,
    ) -> None:
        """
        Args:
            rule: Forwarding rule this engine serves
            connect_inbound: Coroutine factory returning an authenticated mailbox session
            connect_outbound: Coroutine factory returning an authenticated SMTP session
            store_path: Backing file of the forwarded-ID store
        """
        self.rule = rule
        self.log = logger.bind(account=rule.source_address)
        self.inbound: ConnectionManager[InboundMailbox] = ConnectionManager(connect_inbound, "inbound", self.log)
        self.outbound: ConnectionManager[OutboundSender] = ConnectionManager(connect_outbound, "outbound", self.log)
        self.store_path = Path(store_path)
        self.store: Optional[ForwardedIdStore] = None

    @property
    def account(self) -> str:
        return self.rule.source_address

    async def init(self) -> None:
        """
        Open the store and check that both directions connect and authenticate.

        Both sessions are disconnected again right away.

        Raises:
            InitializationError: If the store cannot be opened or a login fails
        """
        try:
            if self.store is None:
                self.store = ForwardedIdStore.open(self.store_path)
            await self.inbound.get_or_connect()
            await self.outbound.get_or_connect()
        except Exception as e:
            await self.close()
            raise InitializationError(f"Failed to initialize forwarder for '{self.account}': {e}") from e
        await self.inbound.release()
        await self.outbound.release()
        self.log.info(f"Forwarder initialized ({len(self.store)} messages already forwarded)")

    async def forward_messages(self) -> CycleResult:
        """Run one forwarding cycle; never raises except on cancellation."""
        store = self.store
        if store is None or store.closed:
            return CycleResult(
                self.account, CycleState.CONNECTING, Outcome.FATAL,
                error="forwarder is not initialized",
            )

        self.log.info("Begin forwarding messages from mailbox")
        received = await self._receive(store)
        if not received.succeeded:
            return CycleResult(
                self.account, CycleState.RECONNECT_INBOUND, received.outcome,
                error=str(received.error),
            )

        pending: Pending = received.value or []
        if not pending:
            self.log.info("No pending messages")
            return CycleResult(self.account, CycleState.DONE, Outcome.SUCCESS)

        self.log.info(f"Messages to be forwarded: {len(pending)}")
        sent_result = await self._send(pending)
        sent, failed = sent_result.value or ([], [uid for uid, _ in pending])

        persisted = self._persist(store, sent)
        if not persisted.succeeded:
            return CycleResult(
                self.account, CycleState.PERSISTING, Outcome.FATAL,
                forwarded=len(sent), failed=[uid for uid, _ in pending], error=str(persisted.error),
            )

        if not sent_result.succeeded:
            return CycleResult(
                self.account, CycleState.RECONNECT_OUTBOUND, sent_result.outcome,
                forwarded=len(sent), failed=failed, error=str(sent_result.error),
            )
        return CycleResult(self.account, CycleState.DONE, Outcome.SUCCESS, forwarded=len(sent), failed=failed)

    async def _receive(self, store: ForwardedIdStore) -> PhaseResult[Pending]:
        """Connect, list, filter and fetch within one inbound session."""
        state = CycleState.CONNECTING
        try:
            async with self.inbound.session() as mailbox:
                state = CycleState.LISTING_IDS
                uids = await mailbox.list_uids()

                state = CycleState.FILTERING
                selected = select_unforwarded(uids, store)
                self.log.debug(f"{len(uids)} messages in mailbox, {len(selected)} not yet forwarded")
                if not selected:
                    return PhaseResult.ok([])

                state = CycleState.FETCHING
                messages = await mailbox.fetch([index for index, _ in selected])
        except Exception as e:
            self.log.error(f"Failed to receive messages ({state.value}): {e}")
            return PhaseResult.retry(e)

        if len(messages) != len(selected):
            error = RuntimeError(f"Fetched {len(messages)} messages, expected {len(selected)}")
            self.log.error(str(error))
            return PhaseResult.retry(error)
        return PhaseResult.ok([(uid, message) for (_, uid), message in zip(selected, messages)])

    async def _send(self, pending: Pending) -> PhaseResult[Tuple[List[str], List[str]]]:
        """
        Send every pending message in one outbound session.

        Returns ``(sent, failed)`` uids. A message-level error only withholds
        that message; a session-level error stops the batch and everything not
        yet sent counts as failed.
        """
        sent: List[str] = []
        failed: List[str] = []
        try:
            async with self.outbound.session() as client:
                for uid, message in pending:
                    subject = _raw_header(message, "Subject")
                    original_from = _raw_header(message, "From")
                    try:
                        await self._send_one(client, uid, message)
                    except Exception as e:
                        if is_connection_error(e):
                            raise
                        self.log.opt(exception=e).error(
                            f"Error forwarding message subject '{subject}' "
                            f"and id '{uid}' from '{original_from}'"
                        )
                        failed.append(uid)
                    else:
                        sent.append(uid)
        except Exception as e:
            done = set(sent) | set(failed)
            failed.extend(uid for uid, _ in pending if uid not in done)
            self.log.error(f"Error sending messages: {e}")
            return PhaseResult.retry(e, (sent, failed))
        return PhaseResult.ok((sent, failed))

    async def _send_one(self, client: OutboundSender, uid: str, message: EmailMessage) -> None:
        subject = message.get("Subject", "")
        original = rewrite_for_forwarding(message, self.rule.source_address)
        await client.send(message, self.rule.source_address, self.rule.destination_address)
        self.log.info(
            f"Message '{uid}' with subject '{subject}' originally sent by {original.addr_spec}. "
            f"Forwarded to {self.rule.name} <{self.rule.destination_address}>"
        )

    def _persist(self, store: ForwardedIdStore, sent: Iterable[str]) -> PhaseResult[int]:
        sent = list(sent)
        if not sent:
            return PhaseResult.ok(0)
        try:
            store.record_batch(sent)
        except (OSError, ValueError) as e:
            self.log.error(f"Failed to record {len(sent)} forwarded messages: {e}")
            return PhaseResult.fatal(e)
        self.log.info(f"Marked {len(sent)} messages as forwarded")
        return PhaseResult.ok(len(sent))

    async def close(self) -> None:
        """Disconnect both directions and release the store."""
        await self.outbound.invalidate()
        await self.inbound.invalidate()
        if self.store is not None:
            self.store.close()
            self.log.debug("Forwarded-ID store released")


def _raw_header(message: EmailMessage, name: str) -> str:
    """Unparsed header value for log lines; never raises on malformed headers."""
    for key, value in message.raw_items():
        if key.lower() == name.lower():
            return str(value)
    return ""
