"""
CiviCRM adapter: the Directory store over the APIv4 REST endpoint
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from errors import DirectoryError
from records import DirectoryGroup, GroupContact, MembershipStatus, MirrorKind
from stores import DirectoryStore


logger = logging.getLogger(__name__)

# CiviCRM group_type option values
ACCESS_CONTROL = 1
MAILING_LIST = 2

GROUP_FIELDS = ["id", "title", "description", "source", "is_active"]


class CiviCRMDirectoryStore(DirectoryStore):
    """
    Directory store backed by CiviCRM.

    Every call is one POST to /civicrm/ajax/api4/<Entity>/<action>. Failures
    are raised as DirectoryError; nothing is retried here.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 site_key: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or os.getenv("CIVICRM_URL", "")).rstrip("/")
        api_key = api_key or os.getenv("CIVICRM_API_KEY", "")
        site_key = site_key or os.getenv("CIVICRM_SITE_KEY")
        self.timeout = timeout or float(os.getenv("CIVICRM_TIMEOUT", "30"))

        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Civi-Auth": f"Bearer {api_key}",
            "X-Requested-With": "XMLHttpRequest",
            "Accept": "application/json",
        })
        if site_key:
            self.session.headers["X-Civi-Key"] = site_key

    def call(self, entity: str, action: str, params: Optional[Dict[str, Any]] = None) -> List[Dict]:
        """Run one APIv4 call and return its values."""
        url = f"{self.base_url}/civicrm/ajax/api4/{entity}/{action}"
        logger.debug(f"CiviCRM {entity}.{action} {params}")
        try:
            response = self.session.post(
                url,
                data={"params": json.dumps(params or {})},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DirectoryError(f"CiviCRM {entity}.{action} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise DirectoryError(
                f"CiviCRM {entity}.{action} returned HTTP {response.status_code} "
                f"without a JSON body"
            ) from e

        if response.status_code >= 400 or "error_message" in body:
            message = body.get("error_message", f"HTTP {response.status_code}")
            raise DirectoryError(f"CiviCRM {entity}.{action} failed: {message}")
        return body.get("values", [])

    # Groups

    def _group(self, values: Dict, parents: Optional[List[int]] = None) -> DirectoryGroup:
        return DirectoryGroup(
            id=int(values["id"]),
            title=values.get("title") or "",
            description=values.get("description") or "",
            source=values.get("source") or "",
            is_active=bool(values.get("is_active", True)),
            parents=parents if parents is not None else [],
        )

    def _parents_by_child(self, group_ids: List[int]) -> Dict[int, List[int]]:
        if not group_ids:
            return {}
        rows = self.call("GroupNesting", "get", {
            "select": ["child_group_id", "parent_group_id"],
            "where": [["child_group_id", "IN", group_ids]],
        })
        parents: Dict[int, List[int]] = {}
        for row in rows:
            parents.setdefault(int(row["child_group_id"]), []).append(int(row["parent_group_id"]))
        return parents

    def _groups(self, where: List) -> List[DirectoryGroup]:
        rows = self.call("Group", "get", {
            "select": GROUP_FIELDS,
            "where": where,
            "orderBy": {"id": "ASC"},
        })
        parents = self._parents_by_child([int(row["id"]) for row in rows])
        return [self._group(row, sorted(parents.get(int(row["id"]), []))) for row in rows]

    def group_create(self, title, description, source, kind, is_active=True):
        group_type = [MAILING_LIST] if kind is MirrorKind.MEMBER else [ACCESS_CONTROL]
        rows = self.call("Group", "create", {
            "values": {
                "title": title,
                "description": description,
                "source": source,
                "is_active": is_active,
                "group_type": group_type,
            },
        })
        if not rows:
            raise DirectoryError(f"CiviCRM did not return the created group '{title}'")
        group = self._group({**rows[0], "title": title, "description": description,
                             "source": source, "is_active": is_active})
        group.kind = kind
        logger.debug(f"Created CiviCRM group {group.id} '{title}'")
        return group

    def group_update(self, group_id, title=None, description=None, is_active=None):
        values = {}
        if title is not None:
            values["title"] = title
        if description is not None:
            values["description"] = description
        if is_active is not None:
            values["is_active"] = is_active
        self.call("Group", "update", {"where": [["id", "=", group_id]], "values": values})
        group = self.group_get_by_id(group_id)
        if group is None:
            raise DirectoryError(f"CiviCRM group {group_id} does not exist")
        return group

    def group_delete(self, group_id):
        self.call("Group", "delete", {"where": [["id", "=", group_id]]})

    def group_get_by_id(self, group_id):
        groups = self._groups([["id", "=", group_id]])
        return groups[0] if groups else None

    def group_get_by_source(self, source):
        return self._groups([["source", "=", source]])

    def groups_get_by_source_prefix(self, prefix):
        return self._groups([["source", "LIKE", f"{prefix}%"]])

    # Memberships

    def _group_contact(self, row: Dict) -> GroupContact:
        member_id = row.get("uf_match.uf_id")
        return GroupContact(
            group_id=int(row["group_id"]),
            contact_id=int(row["contact_id"]),
            status=MembershipStatus(row["status"]),
            member_id=int(member_id) if member_id else None,
            group_source=row.get("group_id.source") or "",
        )

    def _group_contacts(self, where: List, limit: int = 0, offset: int = 0) -> List[GroupContact]:
        params = {
            "select": ["group_id", "contact_id", "status", "group_id.source", "uf_match.uf_id"],
            "join": [["UFMatch AS uf_match", "LEFT", ["contact_id", "=", "uf_match.contact_id"]]],
            "where": where,
            "orderBy": {"group_id": "ASC", "contact_id": "ASC"},
        }
        if limit:
            params["limit"] = limit
            params["offset"] = offset
        elif offset:
            params["offset"] = offset
        return [self._group_contact(row) for row in self.call("GroupContact", "get", params)]

    def membership_get(self, group_id, contact_id):
        rows = self._group_contacts([["group_id", "=", group_id], ["contact_id", "=", contact_id]])
        return rows[0] if rows else None

    def membership_create(self, group_id, contact_id, status=MembershipStatus.ADDED):
        # save matches on the pair, so a Removed record is re-tagged instead of duplicated
        self.call("GroupContact", "save", {
            "records": [{"group_id": group_id, "contact_id": contact_id, "status": status.value}],
            "match": ["group_id", "contact_id"],
        })
        return GroupContact(group_id=group_id, contact_id=contact_id, status=status)

    def membership_delete(self, group_id, contact_id):
        self.call("GroupContact", "update", {
            "where": [["group_id", "=", group_id], ["contact_id", "=", contact_id]],
            "values": {"status": MembershipStatus.REMOVED.value},
        })
        return GroupContact(group_id=group_id, contact_id=contact_id, status=MembershipStatus.REMOVED)

    def group_contacts_get(self, source_prefix, limit=0, offset=0,
                           statuses=(MembershipStatus.ADDED,)):
        return self._group_contacts(
            [
                ["status", "IN", [status.value for status in statuses]],
                ["group_id.source", "LIKE", f"{source_prefix}%"],
            ],
            limit=limit,
            offset=offset,
        )

    def group_contacts_for_group(self, group_id):
        return self._group_contacts([
            ["group_id", "=", group_id],
            ["status", "IN", [MembershipStatus.ADDED.value, MembershipStatus.PENDING.value]],
        ])

    # Nesting

    def hierarchy_get(self, group_id):
        return sorted(self._parents_by_child([group_id]).get(group_id, []))

    def hierarchy_create(self, group_id, parent_id):
        self.call("GroupNesting", "create", {
            "values": {"child_group_id": group_id, "parent_group_id": parent_id},
        })

    def hierarchy_delete(self, group_id, parent_id):
        self.call("GroupNesting", "delete", {
            "where": [["child_group_id", "=", group_id], ["parent_group_id", "=", parent_id]],
        })

    # Contacts

    def contact_id_by_member_id(self, member_id):
        rows = self.call("UFMatch", "get", {
            "select": ["contact_id"],
            "where": [["uf_id", "=", member_id]],
            "limit": 1,
        })
        return int(rows[0]["contact_id"]) if rows else None

    def member_id_by_contact_id(self, contact_id):
        rows = self.call("UFMatch", "get", {
            "select": ["uf_id"],
            "where": [["contact_id", "=", contact_id]],
            "limit": 1,
        })
        return int(rows[0]["uf_id"]) if rows else None

    def ping(self):
        self.call("Group", "get", {"select": ["id"], "limit": 1})
        logger.info(f"Connected to CiviCRM at {self.base_url}")
