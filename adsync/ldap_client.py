"""
LDAP client for querying and updating Active Directory.

Every operation opens its own DirectorySession: connect, bind, run a single
search or modify request, unbind. Sessions are never shared or reused.
"""

import logging
from typing import List

from ldap3 import Server, Connection, LEVEL, MODIFY_ADD, SIMPLE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from adsync.config import DirectoryConfig

logger = logging.getLogger(__name__)

USER_FILTER = '(objectClass=user)'
GROUP_FILTER = '(&(objectClass=group)(cn={group}))'
ACCOUNT_ATTRIBUTE = 'distinguishedName'
MEMBER_ATTRIBUTE = 'member'


class DirectoryError(Exception):
    """Base exception for directory failures."""
    pass


class LDAPConnectionError(DirectoryError):
    """Raised when the directory server cannot be reached."""
    pass


class LDAPAuthenticationError(DirectoryError):
    """Raised when the bind is rejected."""
    pass


class LDAPQueryError(DirectoryError):
    """Raised when LDAP query fails."""
    pass


class EmptyResultError(LDAPQueryError):
    """Raised when the account search returns no entries."""
    pass


class GroupLookupError(LDAPQueryError):
    """Raised when the configured group does not match exactly one entry."""
    pass


class LDAPModifyError(DirectoryError):
    """Raised when adding a member to the group is rejected."""
    pass


def _describe(result) -> str:
    if not result:
        return 'no result'
    description = result.get('description', 'unknown')
    message = result.get('message')
    return f"{description} ({message})" if message else description


class DirectorySession:
    """
    A single authenticated connection, exclusively owned by one operation.

    Use as a context manager; the connection is unbound on exit whether the
    body succeeded or raised.
    """

    def __init__(self, config: DirectoryConfig):
        self.config = config
        self.connection = None

    def open(self) -> Connection:
        """
        Connect and bind.

        Raises:
            LDAPConnectionError: If the server cannot be reached
            LDAPAuthenticationError: If the bind is rejected
        """
        server = Server(self.config.host, port=self.config.port, use_ssl=False)
        self.connection = Connection(
            server,
            user=self.config.bind_user,
            password=self.config.password,
            authentication=SIMPLE,
            auto_bind=False,
            raise_exceptions=False
        )

        try:
            self.connection.open()
        except LDAPException as e:
            self.connection = None
            raise LDAPConnectionError(f"unable to connect to AD server {self.config.server_url}: {e}") from e

        try:
            bound = self.connection.bind()
        except LDAPException as e:
            self.close()
            raise LDAPAuthenticationError(f"unable to bind to ldap as {self.config.bind_user}: {e}") from e
        if not bound:
            result = self.connection.result
            self.close()
            raise LDAPAuthenticationError(
                f"unable to bind to ldap as {self.config.bind_user}: {_describe(result)}"
            )

        logger.debug(f"Bound to {self.config.server_url} as {self.config.bind_user}")
        return self.connection

    def close(self):
        """Close LDAP connection."""
        if self.connection is None:
            return
        try:
            self.connection.unbind()
            logger.debug("LDAP connection closed")
        except LDAPException as e:
            logger.warning(f"Error closing LDAP connection: {e}")
        finally:
            self.connection = None

    def __enter__(self) -> Connection:
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class LDAPClient:
    """
    Lists the accounts of an organizational unit and the members of a group,
    and adds members to that group.
    """

    def __init__(self, config: DirectoryConfig):
        self.config = config

    def session(self) -> DirectorySession:
        return DirectorySession(self.config)

    def _search(self, connection: Connection, search_base: str, search_filter: str,
                attribute: str) -> list:
        try:
            connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=LEVEL,
                attributes=[attribute]
            )
        except LDAPException as e:
            raise LDAPQueryError(f"ldap search error: {e}") from e

        # a search with no entries still succeeds with result code 0
        result = connection.result or {}
        if result.get('result', 0) != 0:
            raise LDAPQueryError(f"ldap search error: {_describe(result)}")
        return list(connection.entries)

    def list_accounts(self) -> List[str]:
        """
        Retrieve the distinguished name of every user directly inside the
        configured organizational unit (sub-OUs are not searched).

        Returns:
            Uppercased identifiers in directory response order

        Raises:
            EmptyResultError: If the search returned no entries
        """
        with self.session() as connection:
            entries = self._search(connection, self.config.userdn, USER_FILTER, ACCOUNT_ATTRIBUTE)

        if not entries:
            raise EmptyResultError(f"no results returned from ldap search in {self.config.userdn}")

        accounts = []
        for entry in entries:
            values = entry.entry_attributes_as_dict.get(ACCOUNT_ATTRIBUTE) or [entry.entry_dn]
            accounts.append(str(values[0]).upper())

        logger.info(f"{len(accounts)} records retrieved")
        return accounts

    def list_group_members(self) -> List[str]:
        """
        Retrieve the current member values of the configured group.

        A group without any members has no member attribute at all; that
        yields an empty list.

        Raises:
            GroupLookupError: If the group filter matched zero or several entries
        """
        search_filter = GROUP_FILTER.format(group=escape_filter_chars(self.config.group))
        with self.session() as connection:
            entries = self._search(connection, self.config.groupdn, search_filter, MEMBER_ATTRIBUTE)

        if not entries:
            raise GroupLookupError(f"group {self.config.group} not found in {self.config.groupdn}")
        if len(entries) > 1:
            dns = ', '.join(str(entry.entry_dn) for entry in entries)
            raise GroupLookupError(f"group name {self.config.group} is ambiguous: {dns}")

        values = entries[0].entry_attributes_as_dict.get(MEMBER_ATTRIBUTE) or []
        members = [str(value).upper() for value in values]

        logger.info(f"{len(members)} users in group")
        return members

    def add_group_member(self, identifier: str) -> None:
        """
        Add one value to the group's member attribute.

        Raises:
            LDAPModifyError: If the server rejects the modification
        """
        group_dn = self.config.group_dn
        with self.session() as connection:
            try:
                success = connection.modify(group_dn, {MEMBER_ATTRIBUTE: [(MODIFY_ADD, [identifier])]})
            except LDAPException as e:
                raise LDAPModifyError(f"ldap modify error: {e}") from e
            if not success:
                raise LDAPModifyError(f"ldap modify error adding {identifier}: {_describe(connection.result)}")

        logger.info(f"{identifier} added to group")

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if a session could be opened and bound
        """
        try:
            with self.session():
                return True
        except DirectoryError as e:
            logger.debug(f"Connection test failed: {e}")
            return False
