"""
IP claim scheduler.

Runs three independent loops against a resource store:
- service watcher: turns service external IPs into IpClaims
- claim watcher: binds unassigned IpClaims to a node
- node monitor: classifies IpNodes by generation advance and releases the
  claims of nodes that stopped heartbeating

The loops share nothing but the store and the LivenessState. Store failures
are logged and dropped after bounded retries; the next event touching the
same object repairs the state. Claim releases for a dead node are the
exception: they are attempted again on every sweep until they succeed.

Once the stop event is set no loop issues a new store call, apart from the
node monitor finishing a sweep already in progress.
"""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterable, Awaitable, Callable, Dict, List, Optional, Set

from ipclaim.scheduler.liveness import LivenessState, NodeTransition
from ipclaim.scheduler.retry import RetryConfig, RetryManager
from ipclaim.scheduler.ticker import Ticker
from ipclaim.store.errors import AbortedError, AlreadyExistsError, NotFoundError, StoreError
from ipclaim.store.interface import ResourceClient, ResourceStore
from ipclaim.store.models import NODE_LABEL, IpClaim, IpNode, Service, claim_name, new_claim
from ipclaim.store.watch import EventType, Watch, WatchEvent
from ipclaim.utils.config import Config
from ipclaim.utils.logging import get_logger, loop_context

logger = get_logger(__name__)


@dataclass
class SchedulerConfig:
    """
    Scheduler settings.

    Attributes:
        default_mask: Netmask bit-width appended to every external IP
        monitor_interval_s: Seconds between two liveness sweeps
        retry: Retry policy for store calls
    """
    default_mask: str = "24"
    monitor_interval_s: float = 5.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_config(cls, config: Config) -> "SchedulerConfig":
        """Build settings from a loaded Config."""
        return cls(
            default_mask=str(config.get("scheduler.default_mask", "24")),
            monitor_interval_s=float(config.get("scheduler.monitor_interval_s", 5.0)),
            retry=RetryConfig(
                max_retries=int(config.get("retry.max_retries", 2)),
                retry_backoff_ms=int(config.get("retry.retry_backoff_ms", 100)),
                retry_backoff_max_ms=int(config.get("retry.retry_backoff_max_ms", 5000)),
                retry_jitter_ms=int(config.get("retry.retry_jitter_ms", 20)),
            ),
        )


class IpClaimScheduler:
    """
    Allocates external IP claims to live nodes.

    Node selection: among listed nodes not classified dead, the one with the
    lexicographically smallest name. Nodes never observed by the monitor are
    eligible, so scheduling works before the first sweep.

    Claims released by the monitor come back to the claim watcher as
    MODIFIED events with an empty node name and are scheduled again.
    """

    def __init__(
        self,
        store: ResourceStore,
        config: Optional[SchedulerConfig] = None,
        liveness: Optional[LivenessState] = None,
    ):
        """
        Initialize scheduler.

        Args:
            store: Resource store client
            config: Scheduler settings
            liveness: Shared liveness state (a fresh one if omitted)
        """
        self.store = store
        self.config = config or SchedulerConfig()
        self.default_mask = self.config.default_mask
        self.liveness = liveness or LivenessState()
        self.retry = RetryManager(self.config.retry)

        # Service name -> external IPs last seen for it
        self._service_ips: Dict[str, List[str]] = {}

        # Dead nodes whose claims are not all released yet
        self._pending_release: Set[str] = set()

        self._stop_event: Optional[asyncio.Event] = None
        self._run_task: Optional[asyncio.Task] = None

        logger.info(
            "IpClaimScheduler initialized",
            default_mask=self.default_mask,
            monitor_interval_s=self.config.monitor_interval_s,
            max_retries=self.config.retry.max_retries,
        )

    def is_live(self, name: str) -> bool:
        """Whether the node is currently classified live."""
        return self.liveness.is_live(name)

    # Lifecycle

    async def run(
        self,
        stop: asyncio.Event,
        ticks: Optional[AsyncIterable] = None,
    ) -> None:
        """
        Run all three loops until stop is set.

        If one loop fails with an unexpected error the other two are
        cancelled before the error is raised.

        Args:
            stop: Shared stop signal
            ticks: Tick source for the node monitor (a Ticker on the
                configured interval if omitted)
        """
        if ticks is None:
            ticks = Ticker(self.config.monitor_interval_s, stop)

        logger.info("IpClaimScheduler running")

        tasks = [
            asyncio.create_task(self.service_watcher(stop), name="service_watcher"),
            asyncio.create_task(self.claim_watcher(stop), name="claim_watcher"),
            asyncio.create_task(self.monitor_ip_nodes(stop, ticks), name="node_monitor"),
        ]
        try:
            await asyncio.gather(*tasks)
        except Exception as e:
            logger.error("Scheduler loop failed", error=str(e), exc_info=True)
            raise
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("IpClaimScheduler stopped")

    async def start(self) -> None:
        """Start the loops as a background task."""
        if self._run_task is not None:
            return

        self._stop_event = asyncio.Event()
        self._run_task = asyncio.create_task(self.run(self._stop_event))

    async def stop(self) -> None:
        """Signal the loops to stop and wait for them to exit."""
        if self._run_task is None:
            return

        self._stop_event.set()
        await self._run_task

        self._run_task = None
        self._stop_event = None

    async def _watch_events(
        self,
        client: ResourceClient,
        handler: Callable[[WatchEvent, asyncio.Event], Awaitable[None]],
        stop: asyncio.Event,
    ) -> None:
        """Keep a watch on client open and feed it to handler until stop."""
        while not stop.is_set():
            watch = await self._open_watch(client, stop)
            if watch is None:
                return

            await self._consume(watch, handler, stop)

            if not stop.is_set():
                logger.warning("Watch closed by the store, reopening", kind=watch.kind)
                await self.retry.wait_backoff(self.retry.calculate_backoff(0), stop)

    async def _open_watch(self, client: ResourceClient, stop: asyncio.Event) -> Optional[Watch]:
        """
        Open a watch, retrying store failures.

        Returns:
            The open watch, or None once stop is set
        """
        failures = 0
        while not stop.is_set():
            try:
                return await self.retry.execute_with_retry(client.watch, "open watch", stop)
            except StoreError as e:
                if stop.is_set():
                    break
                backoff_ms = self.retry.calculate_backoff(failures)
                logger.error(
                    "Failed to open watch, will retry",
                    failures=failures + 1,
                    backoff_ms=backoff_ms,
                    error=str(e),
                )
                failures += 1
                await self.retry.wait_backoff(backoff_ms, stop)
        return None

    async def _consume(
        self,
        watch: Watch,
        handler: Callable[[WatchEvent, asyncio.Event], Awaitable[None]],
        stop: asyncio.Event,
    ) -> None:
        """Feed watch events to handler, one at a time, until stop is set."""
        closer = asyncio.create_task(self._close_on_stop(watch, stop))
        try:
            async for event in watch:
                if stop.is_set():
                    break
                try:
                    await handler(event, stop)
                except Exception as e:
                    logger.error(
                        "Error handling watch event",
                        kind=watch.kind,
                        event_type=getattr(event, "type", None),
                        error=str(e),
                        exc_info=True,
                    )
        finally:
            closer.cancel()
            watch.stop()

    @staticmethod
    async def _close_on_stop(watch: Watch, stop: asyncio.Event) -> None:
        await stop.wait()
        watch.stop()

    @staticmethod
    def _stopping(stop: Optional[asyncio.Event]) -> bool:
        return stop is not None and stop.is_set()

    # Service watcher

    async def service_watcher(self, stop: asyncio.Event) -> None:
        """Create and delete IpClaims following service external IPs."""
        with loop_context("service_watcher"):
            logger.info("Service watcher started")
            await self._watch_events(self.store.services, self._handle_service_event, stop)
            logger.info("Service watcher stopped")

    async def _handle_service_event(
        self,
        event: WatchEvent,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        service: Service = event.obj
        name = getattr(getattr(service, "metadata", None), "name", "")
        if not name:
            logger.warning("Skipping service without a name", event_type=event.type)
            return

        ips = self._external_ips(service)

        if event.type == EventType.DELETED:
            known = self._service_ips.pop(name, [])
            deletes = list(dict.fromkeys(ips + known))
            creates: List[str] = []
        else:
            previous = self._service_ips.get(name)
            self._service_ips[name] = ips
            if previous is None:
                creates, deletes = ips, []
            else:
                # Re-delivered add or an update: act on the difference only
                creates = [ip for ip in ips if ip not in previous]
                deletes = [ip for ip in previous if ip not in ips]

        for ip in creates:
            if self._stopping(stop):
                logger.info("Stopping, IpClaim create skipped", service=name, ip=ip)
                return
            await self._create_claim(name, ip, stop)

        for ip in deletes:
            if self._stopping(stop):
                logger.info("Stopping, IpClaim delete skipped", service=name, ip=ip)
                return
            await self._delete_claim(name, ip, stop)

    def _external_ips(self, service: Service) -> List[str]:
        ips = []
        for ip in service.spec.external_ips:
            ip = (ip or "").strip()
            if not ip:
                logger.warning("Skipping blank external IP", service=service.name)
                continue
            ips.append(ip)
        return list(dict.fromkeys(ips))

    async def _create_claim(
        self,
        service: str,
        ip: str,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        claim = new_claim(ip, self.default_mask)
        try:
            await self.retry.execute_with_retry(
                lambda: self.store.ipclaims.create(claim),
                "create ipclaim",
                stop,
            )
        except AlreadyExistsError:
            logger.info("IpClaim already exists", service=service, claim=claim.name)
        except AbortedError:
            logger.info("Stopping, IpClaim create skipped", service=service, claim=claim.name)
        except StoreError as e:
            logger.error(
                "Failed to create IpClaim",
                service=service,
                claim=claim.name,
                error=str(e),
            )
        else:
            logger.info(
                "Created IpClaim",
                service=service,
                claim=claim.name,
                cidr=claim.spec.cidr,
            )

    async def _delete_claim(
        self,
        service: str,
        ip: str,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        name = claim_name(ip, self.default_mask)
        try:
            await self.retry.execute_with_retry(
                lambda: self.store.ipclaims.delete(name),
                "delete ipclaim",
                stop,
            )
        except NotFoundError:
            logger.info("IpClaim already gone", service=service, claim=name)
        except AbortedError:
            logger.info("Stopping, IpClaim delete skipped", service=service, claim=name)
        except StoreError as e:
            logger.error(
                "Failed to delete IpClaim",
                service=service,
                claim=name,
                error=str(e),
            )
        else:
            logger.info("Deleted IpClaim", service=service, claim=name)

    # Claim watcher

    async def claim_watcher(self, stop: asyncio.Event) -> None:
        """Assign a node to every unassigned IpClaim seen."""
        with loop_context("claim_watcher"):
            logger.info("Claim watcher started")
            await self._watch_events(self.store.ipclaims, self._handle_claim_event, stop)
            logger.info("Claim watcher stopped")

    async def _handle_claim_event(
        self,
        event: WatchEvent,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        if event.type == EventType.DELETED:
            return

        claim: IpClaim = event.obj
        if not getattr(getattr(claim, "metadata", None), "name", ""):
            logger.warning("Skipping IpClaim without a name", event_type=event.type)
            return

        if claim.is_assigned():
            return

        await self.schedule_claim(claim, stop)

    def select_node(self, nodes: List[IpNode]) -> Optional[IpNode]:
        """
        Pick the node for a claim.

        Args:
            nodes: Listed IpNodes

        Returns:
            Eligible node with the smallest name, or None
        """
        candidates = [
            node for node in nodes
            if node.name and not self.liveness.is_dead(node.name)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda node: node.name)

    async def schedule_claim(
        self,
        claim: IpClaim,
        stop: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        """
        Bind an unassigned claim to a node.

        Args:
            claim: Claim as observed; updated in place on success
            stop: Stop signal; no store call is issued once it is set

        Returns:
            Chosen node name, or None if the claim stays unassigned
        """
        try:
            nodes = await self.retry.execute_with_retry(
                lambda: self.store.ipnodes.list(),
                "list ipnodes",
                stop,
            )
        except StoreError as e:
            logger.error("Failed to list IpNodes", claim=claim.name, error=str(e))
            return None

        node = self.select_node(nodes)
        if node is None:
            logger.info(
                "No eligible IpNode, claim left unassigned",
                claim=claim.name,
                listed=len(nodes),
            )
            return None

        claim.assign(node.name)
        try:
            await self.retry.execute_with_retry(
                lambda: self.store.ipclaims.update(claim),
                "update ipclaim",
                stop,
            )
        except AbortedError:
            claim.release()
            logger.info("Stopping, IpClaim left unassigned", claim=claim.name)
            return None
        except StoreError as e:
            claim.release()
            logger.error(
                "Failed to assign IpClaim",
                claim=claim.name,
                node=node.name,
                error=str(e),
            )
            return None

        logger.info(
            "Assigned IpClaim",
            claim=claim.name,
            cidr=claim.spec.cidr,
            node=node.name,
        )
        return node.name

    # Node monitor

    async def monitor_ip_nodes(self, stop: asyncio.Event, ticks: AsyncIterable) -> None:
        """
        Sweep node liveness once per tick.

        Each sweep runs to completion before the next tick is taken. A sweep
        in progress when stop is set is finished; no new one starts.

        Args:
            stop: Shared stop signal
            ticks: Async iterable of ticks
        """
        with loop_context("node_monitor"):
            logger.info("Node monitor started")

            async for _ in ticks:
                if stop.is_set():
                    break
                try:
                    await self.reconcile_nodes()
                except Exception as e:
                    logger.error(
                        "Error in node monitor sweep",
                        error=str(e),
                        exc_info=True,
                    )

            logger.info("Node monitor stopped")

    async def reconcile_nodes(self) -> List[NodeTransition]:
        """
        Run one liveness sweep.

        Nodes that die in this sweep are queued for release. A node stays
        queued until all of its claims have been released or it comes back
        live, so a release that failed is attempted again on the next sweep.

        Returns:
            Transitions observed in this sweep (empty if listing failed)
        """
        try:
            nodes = await self.retry.execute_with_retry(
                lambda: self.store.ipnodes.list(),
                "list ipnodes",
            )
        except StoreError as e:
            logger.error("Failed to list IpNodes, skipping sweep", error=str(e))
            return []

        samples = []
        for node in nodes:
            if not node.name:
                logger.warning("Skipping IpNode without a name")
                continue
            samples.append((node.name, node.generation))

        transitions = self.liveness.observe_all(samples)

        for transition in transitions:
            if transition.changed:
                logger.info(
                    "IpNode liveness changed",
                    node=transition.name,
                    previous=transition.previous.value,
                    current=transition.current.value,
                )
            if transition.died:
                self._pending_release.add(transition.name)

        for name in sorted(self._pending_release):
            if self.liveness.is_live(name):
                logger.info("IpNode live again, release dropped", node=name)
                self._pending_release.discard(name)
            elif await self.release_claims(name):
                self._pending_release.discard(name)

        return transitions

    async def release_claims(self, node_name: str) -> bool:
        """
        Return every claim held by a node to the unassigned pool.

        Args:
            node_name: Node that stopped heartbeating

        Returns:
            True if no claim is left on the node
        """
        try:
            claims = await self.retry.execute_with_retry(
                lambda: self.store.ipclaims.list(label_selector={NODE_LABEL: node_name}),
                "list ipclaims",
            )
        except StoreError as e:
            logger.error("Failed to list IpClaims", node=node_name, error=str(e))
            return False

        released = 0
        failed = 0
        for claim in claims:
            if claim.metadata.labels.get(NODE_LABEL) != node_name:
                continue

            claim.release()
            try:
                await self.retry.execute_with_retry(
                    lambda: self.store.ipclaims.update(claim),
                    "update ipclaim",
                )
            except NotFoundError:
                # Deleted meanwhile; nothing left to release
                continue
            except StoreError as e:
                logger.error(
                    "Failed to release IpClaim",
                    claim=claim.name,
                    node=node_name,
                    error=str(e),
                )
                failed += 1
                continue

            released += 1

        logger.warning(
            "Released IpClaims of dead IpNode",
            node=node_name,
            released=released,
            failed=failed,
        )
        return failed == 0
