"""
Relay coordinator - supervises both listeners and dispatches claims.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from .backoff import BackoffPolicy
from .chain import ChainClient
from .config import RelayerConfig
from .db import ClaimKey, ClaimLedger
from .errors import ConnectivityError, SubscriptionError
from .listener import ChainListener
from .models import ClaimRequest, DepositEvent, ErrorKind, SubmissionResult
from .router import route
from .submitter import ClaimSubmitter

logger = structlog.get_logger()

# Time in-flight claims get to finish when the relayer stops
SHUTDOWN_GRACE_SECONDS = 10.0


@dataclass
class RelayerState:
    """Current relayer counters."""

    is_running: bool = False
    startup_attempts: int = 0
    listener_restarts: int = 0
    claims_submitted: int = 0
    claims_failed: int = 0
    claims_retried: int = 0
    deposits_skipped: int = 0
    duplicates_skipped: int = 0


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Event loop exception handler: log anything nobody else caught."""
    exc = context.get("exception")
    logger.error(
        "unhandled_async_exception",
        message=context.get("message"),
        error=str(exc) if exc else None,
        error_type=type(exc).__name__ if exc else None,
        task=repr(context.get("task") or context.get("future")),
        exc_info=exc,
    )


class RelayCoordinator:
    """
    Owns the relay pair:
    1. Health-checks both chains before anything subscribes
    2. Keeps one listener per chain running, restarting it after faults
    3. Routes each deposit and submits the claim on the peer chain
    4. Retries retryable claim failures a bounded number of times
    """

    def __init__(
        self,
        config: RelayerConfig,
        client_a: ChainClient,
        client_b: ChainClient,
        ledger: Optional[ClaimLedger] = None,
        restart_policy: Optional[BackoffPolicy] = None,
        claim_retry_policy: Optional[BackoffPolicy] = None,
    ):
        self.config = config
        self.state = RelayerState()
        settings = config.settings

        self.client_a = client_a
        self.client_b = client_b
        self.ledger = ledger or ClaimLedger(settings.database_url)
        self.restart_policy = restart_policy or config.restart_policy()
        self.claim_retry_policy = claim_retry_policy or config.claim_retry_policy()
        self.restart_floor = settings.restart_delay_seconds
        self.claim_max_attempts = settings.claim_max_attempts

        self.queue: asyncio.Queue[tuple[ChainListener, DepositEvent]] = asyncio.Queue()

        chain_a, chain_b = config.chain_a, config.chain_b
        self.listener_a = ChainListener(chain_a.name, client_a, chain_a.bridge_address, self.queue)
        self.listener_b = ChainListener(chain_b.name, client_b, chain_b.bridge_address, self.queue)
        self.submitter_a = ClaimSubmitter(
            chain_a.name,
            client_a,
            chain_a.bridge_address,
            gas_limit=chain_a.gas_limit,
            max_fee=chain_a.max_fee,
            fee_limit=chain_a.fee_limit,
        )
        self.submitter_b = ClaimSubmitter(
            chain_b.name,
            client_b,
            chain_b.bridge_address,
            gas_limit=chain_b.gas_limit,
            max_fee=chain_b.max_fee,
            fee_limit=chain_b.fee_limit,
        )

        # Deposits seen by a listener are claimed through the other chain's submitter
        self._peers: dict[ChainListener, ClaimSubmitter] = {
            self.listener_a: self.submitter_b,
            self.listener_b: self.submitter_a,
        }
        self._claim_tasks: set[asyncio.Task] = set()
        self._shutdown = asyncio.Event()

        logger.info(
            "coordinator_initialized",
            chain_a=chain_a.name,
            chain_a_id=client_a.chain_id,
            chain_b=chain_b.name,
            chain_b_id=client_b.chain_id,
            claim_max_attempts=self.claim_max_attempts,
        )

    @property
    def listeners(self) -> tuple[ChainListener, ChainListener]:
        return (self.listener_a, self.listener_b)

    async def _sleep_or_shutdown(self, delay: float) -> bool:
        """Sleep for `delay` seconds. Returns True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _restart_delay(self, attempt: int) -> float:
        return max(self.restart_policy.delay(attempt), self.restart_floor)

    # Startup

    async def check_connectivity(self) -> None:
        """
        Liveness check of both chain clients.

        Raises:
            ConnectivityError: If either chain fails its check
        """
        names = (self.config.chain_a.name, self.config.chain_b.name)
        results = await asyncio.gather(
            self.client_a.check_connectivity(),
            self.client_b.check_connectivity(),
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, ConnectivityError):
                raise result
            if isinstance(result, BaseException):
                raise ConnectivityError(name, str(result) or type(result).__name__) from result

    async def wait_until_healthy(self) -> bool:
        """
        Repeat the startup health check until both chains pass.

        Returns False if the relayer was stopped before that happened.
        """
        attempt = 0
        while self.state.is_running:
            attempt += 1
            self.state.startup_attempts += 1
            try:
                await self.check_connectivity()
            except ConnectivityError as e:
                delay = self._restart_delay(attempt)
                logger.error(
                    "startup_check_failed",
                    chain=e.chain,
                    attempt=attempt,
                    error=e.message,
                    retry_in=delay,
                )
                if await self._sleep_or_shutdown(delay):
                    return False
                continue

            logger.info("startup_check_passed", attempt=attempt)
            return True
        return False

    # Supervision

    async def supervise(self, listener: ChainListener) -> None:
        """Run listener sessions back to back, waiting between faults."""
        attempt = 0
        while self.state.is_running:
            try:
                await listener.run_session()
            except SubscriptionError as e:
                logger.error(
                    "listener_faulted",
                    listener=listener.name,
                    session=listener.session,
                    error=e.message,
                )
            except Exception as e:
                logger.exception(
                    "listener_crashed",
                    listener=listener.name,
                    session=listener.session,
                    error=str(e),
                )

            if not self.state.is_running:
                break

            attempt = 1 if listener.was_active else attempt + 1
            delay = self._restart_delay(attempt)
            self.state.listener_restarts += 1
            logger.info(
                "listener_restart_scheduled",
                listener=listener.name,
                attempt=attempt,
                delay=delay,
            )
            if await self._sleep_or_shutdown(delay):
                break

    # Dispatch

    async def dispatch(self) -> None:
        """Consume deposit events from both listeners."""
        while True:
            listener, event = await self.queue.get()
            try:
                await self.handle_event(listener, event)
            except Exception as e:
                logger.exception(
                    "deposit_dispatch_error",
                    listener=listener.name,
                    deposit_id=event.deposit_id_hex,
                    error=str(e),
                )
            finally:
                self.queue.task_done()

    async def handle_event(
        self, listener: ChainListener, event: DepositEvent
    ) -> Optional["asyncio.Task[SubmissionResult]"]:
        """
        Route one deposit and start its claim on the peer chain.

        Returns the claim task, or None if the deposit was skipped.
        """
        submitter = self._peers[listener]
        claim = route(event, listener.local_chain_id, submitter.chain_id)

        if claim is None:
            self.state.deposits_skipped += 1
            logger.debug(
                "deposit_not_routed",
                listener=listener.name,
                deposit_id=event.deposit_id_hex,
                destination_chain_id=event.destination_chain_id,
                peer_chain_id=submitter.chain_id,
            )
            return None

        # The ledger blocks on the database, so it runs off the event loop
        if not await asyncio.to_thread(self.ledger.reserve, claim, submitter.chain_id):
            self.state.duplicates_skipped += 1
            logger.warning(
                "duplicate_deposit_skipped",
                listener=listener.name,
                deposit_id=claim.deposit_id_hex,
                source_chain_id=claim.source_chain_id,
            )
            return None

        logger.info(
            "deposit_routed",
            source=listener.name,
            destination=submitter.name,
            deposit_id=claim.deposit_id_hex,
            recipient=claim.recipient,
            amount=claim.amount,
            tx_hash=event.tx_hash,
        )
        task = asyncio.create_task(
            self.process_claim(claim, submitter),
            name=f"claim-{submitter.name}-{claim.deposit_id_hex[:10]}",
        )
        self._claim_tasks.add(task)
        task.add_done_callback(self._claim_tasks.discard)
        return task

    async def process_claim(self, claim: ClaimRequest, submitter: ClaimSubmitter) -> SubmissionResult:
        """Submit a claim, retrying retryable failures with the same request."""
        key = ClaimKey.for_claim(claim)
        context = dict(
            deposit_id=claim.deposit_id_hex,
            source_chain_id=claim.source_chain_id,
            destination_chain_id=submitter.chain_id,
            recipient=claim.recipient,
            amount=claim.amount,
        )
        attempt = 0

        try:
            while True:
                attempt += 1
                result = await submitter.submit(claim)

                if result.success:
                    await asyncio.to_thread(
                        self.ledger.mark_confirmed, key, result.tx_hash or "", attempt
                    )
                    self.state.claims_submitted += 1
                    logger.info("claim_submitted", tx_hash=result.tx_hash, attempts=attempt, **context)
                    return result

                if result.retryable and attempt < self.claim_max_attempts:
                    delay = self.claim_retry_policy.delay(attempt)
                    self.state.claims_retried += 1
                    logger.warning(
                        "claim_retry_scheduled",
                        attempt=attempt,
                        max_attempts=self.claim_max_attempts,
                        delay=delay,
                        error_kind=result.error_kind.value if result.error_kind else None,
                        **context,
                    )
                    await asyncio.sleep(delay)
                    continue

                kind = result.error_kind.value if result.error_kind else ErrorKind.UNKNOWN.value
                await asyncio.to_thread(
                    self.ledger.mark_failed, key, f"{kind}: {result.error}", attempt
                )
                self.state.claims_failed += 1
                logger.error(
                    "claim_failed",
                    reason="retries_exhausted" if result.retryable else "nonretryable",
                    error_kind=kind,
                    error=result.error,
                    attempts=attempt,
                    **context,
                )
                return result

        except asyncio.CancelledError:
            logger.warning("claim_abandoned", attempts=attempt, **context)
            raise
        except Exception as e:
            self.state.claims_failed += 1
            logger.exception("claim_processing_error", attempts=attempt, error=str(e), **context)
            return SubmissionResult.failed(ErrorKind.UNKNOWN, False, str(e))

    # Lifecycle

    def stats(self) -> dict[str, Any]:
        """Counters and listener states for status logging."""
        return {
            "listener_a": self.listener_a.state.value,
            "listener_b": self.listener_b.state.value,
            "listener_restarts": self.state.listener_restarts,
            "claims_submitted": self.state.claims_submitted,
            "claims_failed": self.state.claims_failed,
            "claims_retried": self.state.claims_retried,
            "claims_in_flight": len(self._claim_tasks),
            "deposits_skipped": self.state.deposits_skipped,
            "duplicates_skipped": self.state.duplicates_skipped,
        }

    async def _periodic_status_logger(self) -> None:
        interval = self.config.settings.status_log_interval_seconds
        while self.state.is_running:
            await asyncio.sleep(interval)
            logger.info("relayer_status", **self.stats())

    async def run(self) -> None:
        """Run until stop() is called."""
        self.state.is_running = True
        self._shutdown.clear()
        logger.info("relayer_starting")

        tasks: dict[str, asyncio.Task] = {}
        try:
            if not await self.wait_until_healthy():
                return

            tasks = {
                "dispatch": asyncio.create_task(self.dispatch(), name="dispatch"),
                "supervise_a": asyncio.create_task(
                    self.supervise(self.listener_a), name=f"supervise-{self.listener_a.name}"
                ),
                "supervise_b": asyncio.create_task(
                    self.supervise(self.listener_b), name=f"supervise-{self.listener_b.name}"
                ),
                "status": asyncio.create_task(self._periodic_status_logger(), name="status"),
            }
            logger.info("relayer_started")
            await self._shutdown.wait()
        finally:
            self.state.is_running = False
            await self._cleanup(tasks)
            logger.info("relayer_stopped", **self.stats())

    async def _cleanup(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop listeners, let in-flight claims finish, cancel the rest."""
        for listener in self.listeners:
            await listener.stop()

        for task in tasks.values():
            task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)

        if self._claim_tasks:
            logger.info("waiting_for_claims", in_flight=len(self._claim_tasks))
            _, pending = await asyncio.wait(set(self._claim_tasks), timeout=SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def stop(self) -> None:
        """Stop the relayer."""
        self.state.is_running = False
        self._shutdown.set()
        logger.info("relayer_stopping")
