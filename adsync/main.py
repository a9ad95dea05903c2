"""
Main orchestrator for AD Group Sync.

Lists every user account of an organizational unit, lists the current
members of a security group and adds each account that is missing from
the group. Members are never removed.
"""

import sys
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from adsync.config import Configuration, ConfigurationError, load_config
from adsync.ldap_client import LDAPClient, DirectoryError
from adsync.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def find_missing(accounts: Iterable[str], members: Iterable[str]) -> List[str]:
    """Accounts not present in members, in account order."""
    current = {member.upper() for member in members}
    return [account for account in accounts if account.upper() not in current]


def synchronize_group(accounts: List[str], members: List[str],
                      provision: Callable[[str], Any]) -> List[str]:
    """
    Call provision once for every account that is not yet a member.

    Calls are made one at a time in account order. The first failure
    propagates and the remaining accounts are not attempted.

    Returns:
        The identifiers that were added
    """
    added = []
    for identifier in find_missing(accounts, members):
        provision(identifier)
        added.append(identifier)
    return added


class SyncOrchestrator:
    """
    Runs one synchronization pass and turns any failure into an exit code.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = config_path
        self.config: Optional[Configuration] = None
        self.logging_ready = False

        self.sync_stats = {
            'accounts': 0,
            'members': 0,
            'users_added': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, 1 for any failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self.config = load_config(self.config_path)
            setup_logging(self.config.logging)
            self.logging_ready = True

            self.sync(LDAPClient(self.config.activedirectory))

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()
            self._log_sync_summary()
            return 0

        except ConfigurationError as e:
            return self._fail(f"Configuration error: {e}")
        except DirectoryError as e:
            return self._fail(str(e))
        except Exception as e:
            return self._fail(f"Unexpected error: {e}")

    def sync(self, client: LDAPClient) -> List[str]:
        """List accounts, list group members, add the missing accounts."""
        logger.info("Loading the list of users from Active Directory")
        accounts = client.list_accounts()
        self.sync_stats['accounts'] = len(accounts)

        logger.info("Loading the list of users in group")
        members = client.list_group_members()
        self.sync_stats['members'] = len(members)

        logger.info("Synchronizing group membership")

        def provision(identifier: str):
            client.add_group_member(identifier)
            self.sync_stats['users_added'] += 1

        return synchronize_group(accounts, members, provision)

    def _fail(self, message: str) -> int:
        # before setup_logging the root logger has no handlers to write to
        if self.logging_ready:
            logger.error(message, exc_info=True)
        print(f"adsync: {message}", file=sys.stderr)
        return 1

    def _log_sync_summary(self):
        stats = self.sync_stats
        logger.info(f"Sync completed in {stats['runtime_seconds']:.2f} seconds: "
                    f"{stats['accounts']} accounts, {stats['members']} members, "
                    f"{stats['users_added']} added")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self.config = load_config(self.config_path)
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        directory = self.config.activedirectory
        if LDAPClient(directory).test_connection():
            health_status['checks']['ldap'] = {
                'status': 'pass',
                'message': f'Bound to {directory.server_url} as {directory.bind_user}'
            }
        else:
            health_status['checks']['ldap'] = {
                'status': 'fail',
                'message': f'Unable to connect or bind to {directory.server_url}'
            }
            health_status['status'] = 'unhealthy'

        return health_status


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(
        description='Add every user account of an organizational unit to an AD group'
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Check configuration and directory bind instead of syncing')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
