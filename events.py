"""
Single-change events and their routing into the sync engine.

Changes made by people arrive with origin USER and are reconciled. Every
write the engine makes is published as a MirrorApplied event with origin
MIRROR; the router never feeds those back into the engine, and it drops the
hook notification the written system sends back for that same write.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Type


logger = logging.getLogger(__name__)


class Origin(str, Enum):
    USER = "user"
    MIRROR = "mirror"


COMMUNITY = "community"
DIRECTORY = "directory"


@dataclass
class Event:
    origin: Origin = field(default=Origin.USER, init=False)


@dataclass
class MemberJoined(Event):
    group_id: int
    member_id: int
    is_admin: bool = False


@dataclass
class MemberLeft(Event):
    group_id: int
    member_id: int
    was_admin: bool = False


@dataclass
class MemberPromoted(Event):
    group_id: int
    member_id: int


@dataclass
class MemberDemoted(Event):
    group_id: int
    member_id: int


@dataclass
class GroupCreated(Event):
    group_id: int


@dataclass
class GroupUpdated(Event):
    group_id: int


@dataclass
class GroupDeleted(Event):
    group_id: int


@dataclass
class GroupReparented(Event):
    group_id: int
    parent_id: int = 0


@dataclass
class ContactsAdded(Event):
    """Contacts added to a Directory group."""
    directory_group_id: int
    contact_ids: List[int] = field(default_factory=list)


@dataclass
class ContactsRemoved(Event):
    directory_group_id: int
    contact_ids: List[int] = field(default_factory=list)


@dataclass
class MirrorApplied(Event):
    """
    A write made by the engine. system is "community" or "directory",
    operation the store method that was called.
    """
    system: str
    operation: str
    group_id: int
    subject_id: int

    def __post_init__(self):
        self.origin = Origin.MIRROR


Handler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe keyed on event class."""

    def __init__(self):
        self._handlers: Dict[Type[Event], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[Event], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: Event) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if isinstance(event, event_type):
                for handler in list(handlers):
                    handler(event)


# Hook notifications that echo an engine write, keyed like MirrorApplied
_ECHOES = {
    MemberJoined: (COMMUNITY, "member_add"),
    MemberLeft: (COMMUNITY, "member_remove"),
    MemberPromoted: (COMMUNITY, "member_promote"),
    MemberDemoted: (COMMUNITY, "member_demote"),
    ContactsAdded: (DIRECTORY, "membership_create"),
    ContactsRemoved: (DIRECTORY, "membership_delete"),
}


class EventRouter:
    """
    Routes USER events to the engine.

    engine is anything with the SyncEngine single-change methods; it is
    called synchronously, so a failure propagates to whoever published.
    """

    def __init__(self, engine, bus: Optional[EventBus] = None):
        self.engine = engine
        self.bus = bus or EventBus()
        self._pending_echoes: Counter = Counter()
        self.ignored = 0
        self.bus.subscribe(Event, self.handle)

    def _echo_keys(self, event: Event) -> List[Tuple]:
        system, operation = _ECHOES[type(event)]
        if isinstance(event, (ContactsAdded, ContactsRemoved)):
            return [(system, operation, event.directory_group_id, c) for c in event.contact_ids]
        return [(system, operation, event.group_id, event.member_id)]

    def _is_echo(self, event: Event) -> bool:
        if type(event) not in _ECHOES:
            return False
        keys = self._echo_keys(event)
        if not all(self._pending_echoes[key] for key in keys):
            return False
        for key in keys:
            self._pending_echoes[key] -= 1
        return True

    def handle(self, event: Event) -> None:
        if event.origin is Origin.MIRROR:
            if isinstance(event, MirrorApplied):
                self._pending_echoes[
                    (event.system, event.operation, event.group_id, event.subject_id)
                ] += 1
            return
        if self._is_echo(event):
            logger.debug(f"Ignoring echo of an engine write: {event}")
            self.ignored += 1
            return
        self.dispatch(event)

    def dispatch(self, event: Event) -> None:
        logger.info(f"Handling {type(event).__name__}: {event}")
        if isinstance(event, MemberJoined):
            self.engine.member_joined(event.group_id, event.member_id, event.is_admin)
        elif isinstance(event, MemberLeft):
            self.engine.member_left(event.group_id, event.member_id, event.was_admin)
        elif isinstance(event, MemberPromoted):
            self.engine.member_role_changed(event.group_id, event.member_id, promoted=True)
        elif isinstance(event, MemberDemoted):
            self.engine.member_role_changed(event.group_id, event.member_id, promoted=False)
        elif isinstance(event, GroupCreated):
            self.engine.group_created(event.group_id)
        elif isinstance(event, GroupUpdated):
            self.engine.group_updated(event.group_id)
        elif isinstance(event, GroupDeleted):
            self.engine.group_deleted(event.group_id)
        elif isinstance(event, GroupReparented):
            self.engine.group_reparented(event.group_id, event.parent_id)
        elif isinstance(event, ContactsAdded):
            self.engine.contacts_changed(event.directory_group_id, event.contact_ids, added=True)
        elif isinstance(event, ContactsRemoved):
            self.engine.contacts_changed(event.directory_group_id, event.contact_ids, added=False)
        else:
            logger.warning(f"No route for event {event}")
