"""
LDAP adapter: the Community store over LDAP groups
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import ldap
import ldap.dn

from errors import CommunityError
from records import CommunityGroup, CommunityMembership
from stores import CommunityStore


logger = logging.getLogger(__name__)


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return value


def _first(attrs: Dict, name: str) -> Optional[str]:
    values = attrs.get(name)
    if not values:
        return None
    return _decode(values[0])


def _normalize_dn(dn: str) -> str:
    try:
        return ldap.dn.dn2str(ldap.dn.str2dn(dn)).lower()
    except ldap.DECODING_ERROR:
        return dn.lower()


@dataclass
class LDAPGroupEntry:
    dn: str
    id: int
    name: str
    description: str = ""
    parent_dn: Optional[str] = None
    member_dns: Set[str] = field(default_factory=set)
    owner_dns: Set[str] = field(default_factory=set)


class LDAPCommunityStore(CommunityStore):
    """
    Community store backed by LDAP.

    A group is an entry under LDAP_GROUP_BASE_DN matching LDAP_GROUP_FILTER.
    Its members are the DNs in the member attribute, its admins the DNs in
    the admin attribute, and its parent the group DN in the parent attribute.
    Group and member ids are the numeric gidNumber/uidNumber values.
    Groups are read once per store and kept in step with every write.
    """

    def __init__(self, sync_groups: Optional[Set[int]] = None):
        self.ldap_conn = None
        self.sync_groups = sync_groups
        self.group_base_dn = os.getenv("LDAP_GROUP_BASE_DN")
        self.user_base_dn = os.getenv("LDAP_USER_BASE_DN", self.group_base_dn)
        self.group_filter = os.getenv("LDAP_GROUP_FILTER", "(objectClass=groupOfNames)")
        self.member_attribute = os.getenv("LDAP_MEMBER_ATTRIBUTE", "member")
        self.admin_attribute = os.getenv("LDAP_ADMIN_ATTRIBUTE", "owner")
        self.group_id_attribute = os.getenv("LDAP_GROUP_ID_ATTRIBUTE", "gidNumber")
        self.member_id_attribute = os.getenv("LDAP_MEMBER_ID_ATTRIBUTE", "uidNumber")
        self.parent_attribute = os.getenv("LDAP_PARENT_ATTRIBUTE", "seeAlso")
        self.locked_attribute = os.getenv("LDAP_LOCKED_ATTRIBUTE", "pwdAccountLockedTime")

        self._groups: Optional[Dict[int, LDAPGroupEntry]] = None
        self._member_ids: Dict[str, Optional[int]] = {}
        self._member_dns: Dict[int, str] = {}
        self._locked: Set[int] = set()

    def connect_ldap(self):
        """Establish connection to LDAP server."""
        server = os.getenv("LDAP_SERVER")
        bind_dn = os.getenv("LDAP_BIND_DN")
        bind_password = os.getenv("LDAP_BIND_PASSWORD")
        use_tls = os.getenv("LDAP_USE_TLS", "false").lower() == "true"
        ca_cert_file = os.getenv("LDAP_CA_CERT_FILE")

        logger.info(f"Connecting to LDAP server: {server}")

        try:
            # Configure TLS certificate verification if CA cert is provided
            if ca_cert_file and os.path.exists(ca_cert_file):
                logger.info(f"Using custom CA certificate: {ca_cert_file}")
                ldap.set_option(ldap.OPT_X_TLS_CACERTFILE, ca_cert_file)
                ldap.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
            elif ca_cert_file:
                logger.warning(f"CA certificate file not found: {ca_cert_file}")

            self.ldap_conn = ldap.initialize(server)
            self.ldap_conn.protocol_version = ldap.VERSION3

            if use_tls and server.startswith("ldap://"):
                self.ldap_conn.start_tls_s()

            self.ldap_conn.simple_bind_s(bind_dn, bind_password)
            logger.info("Successfully connected to LDAP")
        except ldap.LDAPError as e:
            logger.error(f"Failed to connect to LDAP: {e}")
            raise CommunityError(f"Failed to connect to LDAP: {e}") from e

    def disconnect_ldap(self):
        """Close LDAP connection."""
        if self.ldap_conn:
            self.ldap_conn.unbind_s()
            self.ldap_conn = None
            logger.info("Disconnected from LDAP")

    def _connection(self):
        if not self.ldap_conn:
            self.connect_ldap()
        return self.ldap_conn

    # Reading

    def _load_groups(self) -> Dict[int, LDAPGroupEntry]:
        if self._groups is not None:
            return self._groups

        logger.info("Loading groups from LDAP")
        attributes = [
            'cn', 'description', self.group_id_attribute, self.member_attribute,
            self.admin_attribute, self.parent_attribute,
        ]
        try:
            results = self._connection().search_s(
                self.group_base_dn,
                ldap.SCOPE_SUBTREE,
                self.group_filter,
                attributes
            )
        except ldap.LDAPError as e:
            logger.error(f"LDAP search failed: {e}")
            raise CommunityError(f"LDAP group search failed: {e}") from e

        groups: Dict[int, LDAPGroupEntry] = {}
        for dn, attrs in results:
            if not dn:
                continue

            group_id = _first(attrs, self.group_id_attribute)
            name = _first(attrs, 'cn')
            if group_id is None or name is None:
                logger.warning(f"Group {dn} has no {self.group_id_attribute} or cn, skipping")
                continue

            groups[int(group_id)] = LDAPGroupEntry(
                dn=dn,
                id=int(group_id),
                name=name,
                description=_first(attrs, 'description') or "",
                parent_dn=_first(attrs, self.parent_attribute),
                member_dns={_decode(v) for v in attrs.get(self.member_attribute, [])},
                owner_dns={_decode(v) for v in attrs.get(self.admin_attribute, [])},
            )

        logger.info(f"Loaded {len(groups)} groups from LDAP")
        self._groups = groups
        return groups

    def _group_entry(self, group_id: int) -> LDAPGroupEntry:
        entry = self._load_groups().get(group_id)
        if entry is None:
            raise CommunityError(f"LDAP group {group_id} does not exist")
        return entry

    def _parent_id(self, entry: LDAPGroupEntry) -> int:
        if not entry.parent_dn:
            return 0
        wanted = _normalize_dn(entry.parent_dn)
        for group in self._load_groups().values():
            if _normalize_dn(group.dn) == wanted:
                return group.id
        logger.debug(f"Parent {entry.parent_dn} of group {entry.dn} is not a group")
        return 0

    def _member_id(self, dn: str) -> Optional[int]:
        """Numeric id of a member DN, read once per DN."""
        key = _normalize_dn(dn)
        if key in self._member_ids:
            return self._member_ids[key]
        try:
            result = self._connection().search_s(
                dn,
                ldap.SCOPE_BASE,
                attrlist=[self.member_id_attribute, self.locked_attribute]
            )
        except ldap.NO_SUCH_OBJECT:
            logger.warning(f"Member DN not found: {dn}")
            result = []
        except ldap.LDAPError as e:
            raise CommunityError(f"Could not read member {dn}: {e}") from e

        member_id = None
        if result:
            _, attrs = result[0]
            value = _first(attrs, self.member_id_attribute)
            if value is not None:
                member_id = int(value)
                self._member_dns[member_id] = dn
                if attrs.get(self.locked_attribute):
                    self._locked.add(member_id)
            else:
                logger.warning(f"Member {dn} has no {self.member_id_attribute}")
        self._member_ids[key] = member_id
        return member_id

    def _member_dn(self, member_id: int) -> str:
        if member_id in self._member_dns:
            return self._member_dns[member_id]
        try:
            results = self._connection().search_s(
                self.user_base_dn,
                ldap.SCOPE_SUBTREE,
                f"({self.member_id_attribute}={int(member_id)})",
                [self.member_id_attribute, self.locked_attribute]
            )
        except ldap.LDAPError as e:
            raise CommunityError(f"Could not look up member {member_id}: {e}") from e
        for dn, attrs in results:
            if dn:
                self._member_dns[member_id] = dn
                self._member_ids[_normalize_dn(dn)] = member_id
                if attrs.get(self.locked_attribute):
                    self._locked.add(member_id)
                return dn
        raise CommunityError(f"No LDAP entry has {self.member_id_attribute}={member_id}")

    def _roster(self, entry: LDAPGroupEntry) -> Dict[int, bool]:
        """member id -> is admin. Admins count as members."""
        owners = {_normalize_dn(dn) for dn in entry.owner_dns}
        roster: Dict[int, bool] = {}
        for dn in entry.member_dns | entry.owner_dns:
            member_id = self._member_id(dn)
            if member_id is None:
                continue
            roster[member_id] = roster.get(member_id, False) or _normalize_dn(dn) in owners
        return roster

    def group_get(self, group_id):
        entry = self._load_groups().get(group_id)
        if entry is None:
            return None
        return CommunityGroup(
            id=entry.id,
            name=entry.name,
            description=entry.description,
            parent_id=self._parent_id(entry),
        )

    def group_ids(self):
        return sorted(gid for gid in self._load_groups() if self.should_sync(gid))

    def _memberships(self, entry: LDAPGroupEntry) -> List[CommunityMembership]:
        return [
            CommunityMembership(
                group_id=entry.id,
                member_id=member_id,
                is_admin=is_admin,
                is_active=member_id not in self._locked,
            )
            for member_id, is_admin in sorted(self._roster(entry).items())
        ]

    def _slots(self) -> List[Tuple[LDAPGroupEntry, str]]:
        """Every (group, member DN) of the synced groups in listing order, without member lookups."""
        slots = []
        for group_id in self.group_ids():
            entry = self._group_entry(group_id)
            dns = {_normalize_dn(dn): dn for dn in entry.member_dns | entry.owner_dns}
            slots.extend((entry, dns[key]) for key in sorted(dns))
        return slots

    def memberships_get(self, limit=0, offset=0):
        """
        Memberships ordered by group id then member DN. Only the DNs of the
        requested window are looked up. A DN without a member id keeps its
        slot, and the page reads on past it until it is full.
        """
        rows: List[CommunityMembership] = []
        for entry, dn in self._slots()[offset:]:
            member_id = self._member_id(dn)
            if member_id is None:
                continue
            owners = {_normalize_dn(owner) for owner in entry.owner_dns}
            rows.append(CommunityMembership(
                group_id=entry.id,
                member_id=member_id,
                is_admin=_normalize_dn(dn) in owners,
                is_active=member_id not in self._locked,
            ))
            if limit and len(rows) == limit:
                break
        return rows

    def group_members(self, group_id):
        return self._memberships(self._group_entry(group_id))

    def is_member(self, group_id, member_id):
        entry = self._load_groups().get(group_id)
        return entry is not None and member_id in self._roster(entry)

    def is_admin(self, group_id, member_id):
        entry = self._load_groups().get(group_id)
        return entry is not None and self._roster(entry).get(member_id, False)

    def member_is_active(self, member_id):
        self._member_dn(member_id)
        return member_id not in self._locked

    # Writing

    def _modify(self, entry: LDAPGroupEntry, operation: int, attribute: str, dn: str) -> None:
        try:
            self._connection().modify_s(entry.dn, [(operation, attribute, [dn.encode('utf-8')])])
        except (ldap.TYPE_OR_VALUE_EXISTS, ldap.NO_SUCH_ATTRIBUTE):
            logger.debug(f"{attribute} of {entry.dn} already up to date for {dn}")
        except ldap.LDAPError as e:
            logger.error(f"Failed to modify {attribute} of {entry.dn}: {e}")
            raise CommunityError(f"Failed to modify {attribute} of {entry.dn}: {e}") from e

        values = entry.member_dns if attribute == self.member_attribute else entry.owner_dns
        if operation == ldap.MOD_ADD:
            values.add(dn)
        else:
            wanted = _normalize_dn(dn)
            for value in [v for v in values if _normalize_dn(v) == wanted]:
                values.discard(value)

    def member_add(self, group_id, member_id, is_admin=False):
        entry = self._group_entry(group_id)
        dn = self._member_dn(member_id)
        self._modify(entry, ldap.MOD_ADD, self.member_attribute, dn)
        if is_admin:
            self._modify(entry, ldap.MOD_ADD, self.admin_attribute, dn)
        logger.debug(f"Added {dn} to {entry.dn}")

    def member_remove(self, group_id, member_id):
        entry = self._group_entry(group_id)
        dn = self._member_dn(member_id)
        self._modify(entry, ldap.MOD_DELETE, self.admin_attribute, dn)
        self._modify(entry, ldap.MOD_DELETE, self.member_attribute, dn)
        logger.debug(f"Removed {dn} from {entry.dn}")

    def member_promote(self, group_id, member_id):
        entry = self._group_entry(group_id)
        self._modify(entry, ldap.MOD_ADD, self.admin_attribute, self._member_dn(member_id))

    def member_demote(self, group_id, member_id):
        entry = self._group_entry(group_id)
        self._modify(entry, ldap.MOD_DELETE, self.admin_attribute, self._member_dn(member_id))

    def ping(self):
        try:
            self._connection().whoami_s()
        except ldap.LDAPError as e:
            raise CommunityError(f"LDAP is not reachable: {e}") from e
