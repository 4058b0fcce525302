"""
OpenFGA adapter: the ACL collaborator over relationship tuples
"""

import os
import logging
from typing import Optional

from openfga_sdk import ReadRequestTupleKey
from openfga_sdk.client import ClientConfiguration
from openfga_sdk.client.models import (
    ClientTuple,
    ClientWriteRequest
)
from openfga_sdk.credentials import Credentials, CredentialConfiguration
from openfga_sdk.sync import OpenFgaClient

from errors import AclError
from stores import AclCollaborator


logger = logging.getLogger(__name__)


class OpenFGAAcl(AclCollaborator):
    """
    Links an access-control mirror to its membership mirror in OpenFGA.

    The link is the tuple
        <type>:<acl group>#member  <relation>  <type>:<member group>
    so every member of the access-control mirror holds the admin relation
    on the membership mirror.
    """

    def __init__(self, client: Optional[OpenFgaClient] = None):
        self.client = client
        self.store_id: str = ""
        self.group_type = os.getenv("OPENFGA_GROUP_TYPE", "group")
        self.relation = os.getenv("OPENFGA_ACL_RELATION", "admin")

    def connect_openfga(self):
        """Establish connection to OpenFGA."""
        api_url = os.getenv("OPENFGA_API_URL")
        self.store_id = os.getenv("OPENFGA_STORE_ID")
        api_token = os.getenv("OPENFGA_API_TOKEN", "")
        model_id = os.getenv("OPENFGA_AUTHORIZATION_MODEL_ID") or None

        logger.info(f"Connecting to OpenFGA: {api_url}")

        # Create credentials object if API token is provided
        credentials = None
        if api_token:
            credential_config = CredentialConfiguration(
                api_token=api_token
            )
            credentials = Credentials(
                method="api_token",
                configuration=credential_config
            )

        configuration = ClientConfiguration(
            api_url=api_url,
            store_id=self.store_id,
            authorization_model_id=model_id,
            credentials=credentials
        )

        self.client = OpenFgaClient(configuration)
        logger.info("Successfully connected to OpenFGA")

    def _client(self) -> OpenFgaClient:
        if not self.client:
            self.connect_openfga()
        return self.client

    def _tuple_fields(self, acl_group_id: int, member_group_id: int):
        return (
            f"{self.group_type}:{acl_group_id}#member",
            self.relation,
            f"{self.group_type}:{member_group_id}",
        )

    def is_linked(self, acl_group_id, member_group_id):
        user, relation, obj = self._tuple_fields(acl_group_id, member_group_id)
        try:
            response = self._client().read(
                body=ReadRequestTupleKey(user=user, relation=relation, object=obj)
            )
        except Exception as e:
            logger.error(f"Failed to read tuple {user} {relation} {obj}: {e}")
            raise AclError(f"Failed to read tuple {user} {relation} {obj}: {e}") from e
        return bool(getattr(response, 'tuples', None))

    def _write(self, body: ClientWriteRequest, description: str) -> None:
        try:
            self._client().write(body=body)
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
            raise AclError(f"Failed to {description}: {e}") from e

    def link(self, acl_group_id, member_group_id):
        """Write the linkage tuple unless it already exists."""
        if self.is_linked(acl_group_id, member_group_id):
            logger.debug(f"Group {acl_group_id} already linked to {member_group_id}")
            return
        user, relation, obj = self._tuple_fields(acl_group_id, member_group_id)
        self._write(
            ClientWriteRequest(writes=[ClientTuple(user=user, relation=relation, object=obj)]),
            f"add {user} {relation} {obj}",
        )
        logger.info(f"Added tuple: {user} {relation} {obj}")

    def unlink(self, acl_group_id, member_group_id):
        """Delete the linkage tuple if it exists."""
        if not self.is_linked(acl_group_id, member_group_id):
            logger.debug(f"Group {acl_group_id} is not linked to {member_group_id}")
            return
        user, relation, obj = self._tuple_fields(acl_group_id, member_group_id)
        self._write(
            ClientWriteRequest(deletes=[ClientTuple(user=user, relation=relation, object=obj)]),
            f"remove {user} {relation} {obj}",
        )
        logger.info(f"Removed tuple: {user} {relation} {obj}")

    def ping(self):
        try:
            self._client().read(body=ReadRequestTupleKey(), options={"page_size": 1})
        except Exception as e:
            raise AclError(f"OpenFGA is not reachable: {e}") from e

    def close(self):
        """Close the OpenFGA client connection and cleanup resources."""
        if self.client:
            try:
                self.client.close()
                logger.debug("OpenFGA client closed")
            except Exception as e:
                logger.warning(f"Error closing OpenFGA client: {e}")
