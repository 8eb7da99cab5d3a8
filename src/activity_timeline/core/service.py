"""Activities service: owns the activity list and publishes the merged timeline."""

import logging
import threading
import time
import weakref
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from typing import Any

from activity_timeline.core.attributes import AttributeResolver, TokenHolder, interpolate_filter
from activity_timeline.core.builder import ActivityBuilder, BuiltActivity
from activity_timeline.core.filters import ActivitiesFilterStrategy, TransactionsFilterStrategy, filter_activities
from activity_timeline.core.interfaces import (
    CardDefinitionProvider,
    EventStore,
    TokenHolderAdaptor,
    TokenStore,
    TransactionStore,
    WalletSession,
)
from activity_timeline.core.merger import TimelineMerger, sort_rows
from activity_timeline.core.models import (
    ActivitiesViewModel,
    Activity,
    ActivityValues,
    ContractCardFilter,
    Token,
    TokenScriptDefinition,
    TokenSnapshot,
    TransactionInstance,
)
from activity_timeline.core.observable import Signal, Subscribable
from activity_timeline.core.queues import SerialQueue
from activity_timeline.core.rate_limiter import RateLimiter
from activity_timeline.core.values import merge_attributes
from activity_timeline.data.loader import Settings

logger = logging.getLogger(__name__)


def _weak_handler(method: Callable[..., Any]) -> Callable[..., None]:
    ref = weakref.WeakMethod(method)

    def handler(*args: Any, **kwargs: Any) -> None:
        bound = ref()
        if bound is not None:
            bound(*args, **kwargs)

    return handler


def _disconnect(connections: list[tuple[Signal, Callable[..., None]]]) -> None:
    for signal, handler in connections:
        signal.disconnect(handler)


class ActivitiesService:
    """
    Builds, merges and publishes the activity timeline of a wallet.

    Work runs on three serial queues: ``processing`` builds activities and
    merges rows, ``main`` reads store configuration, issues transaction
    fetches and publishes, ``sync`` guards every mutation of the activity list
    and its index.

    Parameters
    ----------
    settings : Settings
        Engine settings
    sessions : Mapping[str, WalletSession]
        Wallet sessions by server name
    token_store : TokenStore
        Wallet tokens
    event_store : EventStore
        Recent on-chain events
    transaction_store : TransactionStore
        Wallet transactions
    card_provider : CardDefinitionProvider
        TokenScript definitions
    holder_adaptor : TokenHolderAdaptor
        Wallet holdings
    activities_filter : ActivitiesFilterStrategy | None
        Filter applied to built activities, defaults to none
    transactions_filter : TransactionsFilterStrategy | None
        Transactions (and tokens) covered, defaults to all

    Attributes
    ----------
    view_model : Subscribable[ActivitiesViewModel]
        Latest published timeline
    updated_activity : Subscribable[Activity]
        Last activity re-published after attribute resolution

    """

    def __init__(
        self,
        settings: Settings,
        sessions: Mapping[str, WalletSession],
        token_store: TokenStore,
        event_store: EventStore,
        transaction_store: TransactionStore,
        card_provider: CardDefinitionProvider,
        holder_adaptor: TokenHolderAdaptor,
        activities_filter: ActivitiesFilterStrategy | None = None,
        transactions_filter: TransactionsFilterStrategy | None = None,
    ) -> None:
        if not sessions:
            msg = "At least one wallet session is required"
            raise ValueError(msg)

        self.settings = settings
        self.sessions = sessions
        self.token_store = token_store
        self.event_store = event_store
        self.transaction_store = transaction_store
        self.card_provider = card_provider
        self.holder_adaptor = holder_adaptor
        self.activities_filter = activities_filter or ActivitiesFilterStrategy.none()
        self.transactions_filter = transactions_filter or TransactionsFilterStrategy.all()

        self.wallet_address = next(iter(sessions.values())).address
        self.resolver = AttributeResolver(sessions)
        self.builder = ActivityBuilder(
            event_store,
            token_store,
            holder_adaptor,
            self.resolver,
            self.wallet_address,
            settings.native_crypto_address,
        )
        self.merger = TimelineMerger(token_store, self.wallet_address, settings)

        self.view_model: Subscribable[ActivitiesViewModel] = Subscribable(ActivitiesViewModel())
        self.updated_activity: Subscribable[Activity] = Subscribable()

        self._processing_queue = SerialQueue("activities-processing")
        self._main_queue = SerialQueue("activities-main")
        self._sync_queue = SerialQueue("activities-sync")

        # sync queue only
        self._activities: list[Activity] = []
        self._index: dict[str, tuple[int, Activity]] = {}

        # processing queue only
        self._cycle_in_flight = False
        self._reload_requested = False
        self._requested_immediate = False

        self._state_lock = threading.Lock()
        self._transactions_future: Future | None = None
        self._fetches_in_flight = 0
        self._has_loaded_first_time = False
        self._stopped = False

        self._rate_limiter = RateLimiter(
            self._reload_view_controller_impl,
            settings.reload_rate_limit_seconds,
            name="Reload activities and transactions",
        )

        self._connections: list[tuple[Signal, Callable[..., None]]] = [
            (transaction_store.changed, _weak_handler(self._on_transactions_changed)),
            (event_store.changed, _weak_handler(self._on_events_changed)),
            (token_store.changed, _weak_handler(self._on_tokens_changed)),
        ]
        for signal, handler in self._connections:
            signal.connect(handler)
        self._disconnect_stores = weakref.finalize(self, _disconnect, self._connections)

    @property
    def activities(self) -> list[Activity]:
        """Snapshot of the current activity list, newest block first."""
        return self._sync_queue.run_sync(lambda: list(self._activities))

    @property
    def has_loaded_first_time(self) -> bool:
        return self._has_loaded_first_time

    def reload(self, immediate: bool = False) -> None:
        """
        Request a full rebuild of the timeline.

        Fire and forget. A request arriving while a rebuild is in flight is
        dropped, or with ``coalesce_reloads`` enabled, folded into one
        follow-up rebuild.

        Parameters
        ----------
        immediate : bool
            Publish without going through the rate limiter

        """
        if self._stopped:
            logger.debug("Ignoring reload on stopped service")
            return
        self._processing_queue.submit(self._reload_impl, immediate)

    def reinject(self, activity_id: str) -> None:
        """
        Re-publish an activity's holder-backed attributes.

        Uses the cached token and holder of the activity's contract. Unknown
        ids and uncached contracts are ignored.

        Parameters
        ----------
        activity_id : str
            Activity to refresh

        """
        if self._stopped:
            return
        self._processing_queue.submit(self._reinject_impl, activity_id)

    def clone(
        self,
        activities_filter: ActivitiesFilterStrategy,
        transactions_filter: TransactionsFilterStrategy,
    ) -> "ActivitiesService":
        """
        Create a service over the same stores and sessions with other filters.

        Parameters
        ----------
        activities_filter : ActivitiesFilterStrategy
            Filter for the new service
        transactions_filter : TransactionsFilterStrategy
            Transaction filter for the new service

        Returns
        -------
        ActivitiesService
            Independent service with empty state

        """
        return ActivitiesService(
            self.settings,
            self.sessions,
            self.token_store,
            self.event_store,
            self.transaction_store,
            self.card_provider,
            self.holder_adaptor,
            activities_filter=activities_filter,
            transactions_filter=transactions_filter,
        )

    def stop(self) -> None:
        """Stop the wallet sessions and release the service's workers."""
        if self._stopped:
            return
        self._stopped = True

        for session in self.sessions.values():
            session.stop()
        self._disconnect_stores()
        self.resolver.release()
        self._rate_limiter.cancel()
        with self._state_lock:
            future = self._transactions_future
            self._transactions_future = None
        if future is not None:
            future.cancel()
        for queue in (self._processing_queue, self._main_queue, self._sync_queue):
            queue.shutdown(wait=False)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """
        Block until no rebuild, fetch or publish is outstanding.

        A trailing rate-limited refresh counts as outstanding work.

        Parameters
        ----------
        timeout : float | None
            Maximum wait in seconds, None waits forever

        Returns
        -------
        bool
            True when the service became idle in time

        """
        deadline = None if timeout is None else time.monotonic() + timeout
        queues = (self._processing_queue, self._main_queue, self._sync_queue)

        while True:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            for queue in queues:
                queue.wait_idle(remaining)
            with self._state_lock:
                future = self._transactions_future
            if future is not None and not future.done():
                wait_futures([future], timeout=remaining)

            if self._is_idle(queues):
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)

    def _is_idle(self, queues: tuple[SerialQueue, ...]) -> bool:
        with self._state_lock:
            fetches = self._fetches_in_flight
        return fetches == 0 and self._rate_limiter.is_idle and all(queue.is_idle for queue in queues)

    # change notifications

    def _on_transactions_changed(self, *_args: Any) -> None:
        self.reload(immediate=True)

    def _on_events_changed(self, *_args: Any) -> None:
        self.reload(immediate=True)

    def _on_tokens_changed(self, *_args: Any) -> None:
        if self._stopped:
            return
        self._processing_queue.submit(self._invalidate_and_reload)

    def _invalidate_and_reload(self) -> None:
        self.builder.invalidate()
        self._reload_impl(True)

    # full rebuild, processing queue

    def _reload_impl(self, immediate: bool) -> None:
        if self._cycle_in_flight:
            if self.settings.coalesce_reloads:
                self._reload_requested = True
                self._requested_immediate = self._requested_immediate or immediate
                logger.debug("Reload in flight, scheduling one follow-up")
            else:
                logger.debug("Reload in flight, dropping request")
            return

        self._cycle_in_flight = True
        self._main_queue.submit(self._read_tokens_and_definitions, immediate)

    def _read_tokens_and_definitions(self, immediate: bool) -> None:
        # main queue
        try:
            servers = list(self.settings.enabled_servers)
            tokens = self.transactions_filter.tokens(self.token_store, servers)
            definitions = []
            for token in tokens:
                definition = self.card_provider.definition_for(token)
                if definition is None or not definition.matches_server(token.server):
                    continue
                definitions.append((token, definition))
        except Exception:
            logger.exception("Failed to read tokens and card definitions")
            self._processing_queue.submit(self._end_cycle)
            return
        self._processing_queue.submit(self._fetch_and_refresh, definitions, servers, immediate)

    def _contract_card_filters(
        self,
        definitions: list[tuple[Token, TokenScriptDefinition]],
        servers: list[str],
    ) -> list[ContractCardFilter]:
        items = []
        for token, definition in definitions:
            for card in definition.activity_cards:
                interpolated_filter = interpolate_filter(card, self.wallet_address)
                if interpolated_filter is None:
                    logger.debug("Skipping card %s of %s, unsupported filter", card.name, token.contract_address)
                    continue
                targets = servers if definition.server == "any" else [definition.server]
                items.extend(
                    ContractCardFilter(
                        contract=token.contract_address,
                        server=server,
                        card=card,
                        interpolated_filter=interpolated_filter,
                    )
                    for server in targets
                )
        return items

    def _fetch_and_refresh(
        self,
        definitions: list[tuple[Token, TokenScriptDefinition]],
        servers: list[str],
        immediate: bool,
    ) -> None:
        try:
            items = self._contract_card_filters(definitions, servers)
            built: list[BuiltActivity] = []
            for item in items:
                built.extend(self.builder.build_activities(item))
            built = filter_activities(built, self.activities_filter)

            self._sync_queue.run_sync(self._replace_activities, [each.activity for each in built])
            self.resolver.retain({each.activity.id for each in built})
            self._reload_view_controller(immediate)

            for activity, token, holder in built:
                self._refresh_activity(token, holder, activity)
        except Exception:
            logger.exception("Failed to build activities")
        finally:
            self._end_cycle()

    def _end_cycle(self) -> None:
        self._cycle_in_flight = False
        if self._reload_requested and not self._stopped:
            immediate = self._requested_immediate
            self._reload_requested = False
            self._requested_immediate = False
            self._reload_impl(immediate)

    def _replace_activities(self, activities: list[Activity]) -> None:
        # sync queue
        self._activities = sorted(activities, key=lambda activity: activity.block_number, reverse=True)
        self._index = {activity.id: (index, activity) for index, activity in enumerate(self._activities)}

    # publishing

    def _reload_view_controller(self, immediate: bool) -> None:
        if immediate or not self._has_loaded_first_time:
            self._reload_view_controller_impl()
        else:
            self._rate_limiter.run()

    def _reload_view_controller_impl(self) -> None:
        if self._stopped:
            return
        activities = self._sync_queue.run_sync(lambda: list(self._activities))
        if activities:
            self._has_loaded_first_time = True
        self._main_queue.submit(self._fetch_transactions)

    def _fetch_transactions(self) -> None:
        # main queue
        with self._state_lock:
            previous = self._transactions_future
            # a cancelled fetch must see itself as superseded
            self._transactions_future = None
        if previous is not None:
            previous.cancel()

        activities = self._sync_queue.run_sync(lambda: list(self._activities))
        oldest_block_number = activities[-1].block_number if activities else None
        try:
            future = self.transaction_store.fetch_transactions(
                self.transactions_filter,
                list(self.settings.enabled_servers),
                oldest_block_number,
            )
        except Exception as exc:
            logger.debug("Transaction fetch failed to start: %s", exc)
            future = Future()
            future.set_result([])

        with self._state_lock:
            self._transactions_future = future
            self._fetches_in_flight += 1
        future.add_done_callback(self._transactions_fetched)

    def _transactions_fetched(self, future: Future) -> None:
        try:
            with self._state_lock:
                superseded = future is not self._transactions_future
            if superseded or self._stopped:
                logger.debug("Ignoring superseded transaction fetch")
                return
            if future.cancelled():
                transactions = []
            elif future.exception() is not None:
                logger.debug("Transaction fetch failed: %s", future.exception())
                transactions = []
            else:
                transactions = future.result()
            self._processing_queue.submit(self._merge_and_publish, transactions)
        finally:
            with self._state_lock:
                self._fetches_in_flight -= 1

    def _merge_and_publish(self, transactions: list[TransactionInstance]) -> None:
        # processing queue
        activities = self._sync_queue.run_sync(lambda: list(self._activities))
        rows = sort_rows(self.merger.merge(activities, transactions))
        self._main_queue.submit(self._set_view_model, ActivitiesViewModel(rows=rows))

    def _set_view_model(self, view_model: ActivitiesViewModel) -> None:
        # main queue
        self.view_model.value = view_model

    # attribute refresh

    def _reinject_impl(self, activity_id: str) -> None:
        entry = self._sync_queue.run_sync(lambda: self._index.get(activity_id))
        if entry is None:
            logger.debug("Cannot reinject unknown activity %s", activity_id)
            return
        _, activity = entry
        cached = self.builder.cached(activity.token.contract_address, activity.token.server)
        if cached is None or not cached[1]:
            logger.debug("No cached holder for %s", activity.token.contract_address)
            return
        token, holders = cached
        self._refresh_activity(token, holders[0], activity)

    def _refresh_activity(
        self,
        token: TokenSnapshot,
        holder: TokenHolder,
        activity: Activity,
        is_first_update: bool = True,
    ) -> None:
        if self._stopped:
            return
        service_ref = weakref.ref(self)
        holder_ref = weakref.ref(holder)

        def on_update(_name: str) -> None:
            service = service_ref()
            live_holder = holder_ref()
            if service is None or live_holder is None:
                return
            service._refresh_activity(token, live_holder, activity, is_first_update=False)

        # only the first update watches pending values, one set per activity
        if is_first_update:
            resolved = self.resolver.resolve(holder, on_update, owner=activity.id)
        else:
            resolved = self.resolver.resolve(holder, None)

        def splice() -> None:
            # sync queue
            entry = self._index.get(activity.id)
            if entry is None:
                logger.debug("Activity %s no longer listed, dropping update", activity.id)
                return
            index, _ = entry
            if index >= len(self._activities) or self._activities[index].id != activity.id:
                logger.debug("Activity %s moved, dropping update", activity.id)
                return

            current = self._activities[index]
            values = ActivityValues(
                token=merge_attributes(current.values.token, resolved),
                card=current.values.card,
            )
            updated = current.model_copy(update={"token": token, "values": values})
            self._activities[index] = updated
            self._reload_view_controller(False)
            self.updated_activity.value = updated

        self._sync_queue.run_sync(splice)
