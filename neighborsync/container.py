from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from neighborsync.config import AppConfig
from neighborsync.domain.commands import GroupRecord
from neighborsync.domain.neighborhood import Coordinates, NeighborhoodGroup
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.enums.events import SyncEvent
from neighborsync.hardware.controllers.wled_client import WLEDClient
from neighborsync.hardware.mqtt import MQTTClientWrapper, MQTTNotifier
from neighborsync.infrastructure import MQTTDocumentStore
from neighborsync.services import (
    BroadcastDistributor,
    CommandSynthesizer,
    FireMarkerStore,
    LocalExecutionAgent,
    NeighborhoodService,
    ScheduleEvaluator,
)
from neighborsync.services.command_synthesizer import StartResult
from neighborsync.services.protocols import DocumentStore
from neighborsync.services.utilities.sun_times_service import SunTimesService
from neighborsync.utils.event_bus import EventBus
from neighborsync.utils.time import now_ms
from neighborsync.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)


@dataclass
class MemberContainer:
    """Everything one member's client runs for one group."""

    config: AppConfig
    member_id: str
    group: NeighborhoodGroup
    store: DocumentStore
    event_bus: EventBus
    scheduler: UnifiedScheduler
    distributor: BroadcastDistributor
    synthesizer: CommandSynthesizer
    neighborhood: NeighborhoodService
    evaluator: ScheduleEvaluator
    sun_times: SunTimesService
    agent: LocalExecutionAgent | None = None
    mqtt_client: MQTTClientWrapper | None = None
    _unsubscribers: list[Callable[[], None]] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        member_id: str,
        group: NeighborhoodGroup,
        controller_host: str | None = None,
        store: DocumentStore | None = None,
    ) -> "MemberContainer":
        """Construct the client with all dependencies.

        Args:
            config: Application configuration
            member_id: The member this client acts for
            group: Group to follow
            controller_host: Local controller address; without one the client
                can start/stop shows but never drives lights itself
            store: Shared store; defaults to MQTT retained messages
        """
        logger.info("Building MemberContainer for %s in group %s", member_id, group.group_id)
        event_bus = EventBus()

        mqtt_client: MQTTClientWrapper | None = None
        notifier: MQTTNotifier | None = None
        if store is None:
            mqtt_client = MQTTClientWrapper(
                broker=config.mqtt_broker_host,
                port=config.mqtt_broker_port,
                client_id=f"neighborsync-{member_id}",
                event_bus=event_bus,
            )
            store = MQTTDocumentStore(mqtt_client, topic_prefix=config.mqtt_topic_prefix)
            notifier = MQTTNotifier(mqtt_client, topic_prefix=config.mqtt_topic_prefix)

        scheduler = UnifiedScheduler(max_workers=config.scheduler_max_workers)
        distributor = BroadcastDistributor(store, event_bus=event_bus)
        synthesizer = CommandSynthesizer(
            distributor,
            lead_time_ms=config.command_lead_time_ms,
            leds_per_meter=config.leds_per_meter,
            max_effect_id=config.max_effect_id,
        )
        sun_times = SunTimesService(
            timezone=config.timezone,
            cache_hours=config.sun_times_cache_hours,
            api_url=config.sun_times_api_url,
        )

        agent = None
        if controller_host:
            agent = LocalExecutionAgent(
                member_id,
                WLEDClient(controller_host, timeout=config.controller_timeout_seconds),
                scheduler=scheduler,
                members_source=store.read_member_records,
                event_bus=event_bus,
                late_grace_ms=config.late_grace_ms,
                leds_per_meter=config.leds_per_meter,
            )
        else:
            logger.warning("No controller host for %s; lights will not be driven on this client", member_id)

        container: MemberContainer

        def location_for(_schedule: SyncSchedule) -> Coordinates | None:
            if container.group.coordinates is not None:
                return container.group.coordinates
            if config.default_latitude is not None and config.default_longitude is not None:
                return Coordinates(config.default_latitude, config.default_longitude)
            return None

        evaluator = ScheduleEvaluator(
            lambda schedule: container.trigger_schedule(schedule),
            fire_markers=FireMarkerStore(f"fire_markers_{member_id}.json", config.state_dir),
            sunset_provider=sun_times,
            location_provider=location_for,
            notifier=notifier,
            timezone=config.timezone,
            event_bus=event_bus,
        )

        container = cls(
            config=config,
            member_id=member_id,
            group=group,
            store=store,
            event_bus=event_bus,
            scheduler=scheduler,
            distributor=distributor,
            synthesizer=synthesizer,
            neighborhood=NeighborhoodService(store, member_id, max_effect_id=config.max_effect_id),
            evaluator=evaluator,
            sun_times=sun_times,
            agent=agent,
            mqtt_client=mqtt_client,
        )
        return container

    # ── Actions ───────────────────────────────────────────────────

    def start_sync(self, **command_fields: Any):
        """Manual start for the whole group; see ``CommandSynthesizer.start``."""
        result = self.synthesizer.start(
            self.group,
            self.store.read_member_records(self.group.group_id),
            **command_fields,
        )
        self.group = result.group
        return result

    def stop_sync(self) -> NeighborhoodGroup:
        self.group = self.synthesizer.stop(self.group)
        return self.group

    def trigger_schedule(self, schedule: SyncSchedule) -> StartResult | None:
        """Schedule trigger.

        Every member's client evaluates the same schedules, so a show started
        for this schedule by another member within the last two check
        intervals is left alone instead of being restarted. Returns ``None``
        in that case, so only the client that published the start notifies.
        """
        current: GroupRecord | None = self.distributor.current(schedule.group_id)
        recent_ms = 2 * self.config.schedule_check_interval_seconds * 1000
        if (
            current is not None
            and current.is_active
            and current.command is not None
            and current.command.schedule_id == schedule.schedule_id
            and now_ms() - current.version <= recent_ms
        ):
            logger.info(
                "Schedule %s already started by another member (v%s)",
                schedule.schedule_id,
                current.version,
            )
            return None
        result = self.synthesizer.start_from_schedule(
            self.group,
            self.store.read_member_records(schedule.group_id),
            schedule,
        )
        self.group = result.group
        return result

    # ── Lifecycle ─────────────────────────────────────────────────

    def _on_connectivity(self, data: Any) -> None:
        if not isinstance(data, dict) or data.get("status") != "connected" or self.agent is None:
            return
        self.agent.refresh()

    def start(self) -> None:
        group_id = self.group.group_id
        if self.agent is not None:
            self.agent.attach(self.distributor, group_id)
        self.evaluator.attach(
            self.scheduler,
            self.config.schedule_check_interval_seconds,
            lambda: self.store.read_schedule_list(group_id),
        )
        self._unsubscribers.append(
            self.event_bus.subscribe(SyncEvent.BROKER_CONNECTIVITY_CHANGED, self._on_connectivity)
        )
        self.scheduler.start()
        logger.info("Member %s client started for group %s", self.member_id, group_id)

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self.agent is not None:
            self.agent.detach()
        self.scheduler.stop()
        if self.mqtt_client is not None:
            self.mqtt_client.disconnect()
        logger.info("Member %s client stopped", self.member_id)
