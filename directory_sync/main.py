"""
Main orchestrator for the Directory Sync application.

This module runs one synchronization pass: it reads the registry's current
state, lists the prefixed directory groups with their members, and brings the
registry's groups in line with the directory.
"""

import sys
import json
import signal
import logging
import threading
from datetime import datetime
from typing import Dict, Any, Optional

from directory_sync.config import load_config, ConfigurationError
from directory_sync.errors import SyncError, DirectoryError, OperationCancelled
from directory_sync.pagination import PaginationError
from directory_sync.fetcher import BoundedFetcher, MemberFetchError
from directory_sync.reconciler import Reconciler, ReconcileError, ReconcileResult
from directory_sync.registry import RegistryClient, RegistryAPIError
from directory_sync.directory import create_directory_client
from directory_sync.logging_setup import setup_logging, audit_logger
from directory_sync.notifications import (
    send_failure_notification, send_success_summary, send_test_notification, format_runtime
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_DIRECTORY = 3
EXIT_REGISTRY = 4
EXIT_RECONCILE = 5
EXIT_CANCELLED = 6

STAGE_STARTUP = 'startup'
STAGE_REGISTRY = 'registry'
STAGE_DIRECTORY = 'directory'
STAGE_RECONCILE = 'reconcile'


class SyncOrchestrator:
    """
    Main orchestrator for directory to registry group synchronization.

    A run is fail-fast: the first error stops it, is reported, and is
    mapped to a non-zero exit code.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            dry_run: Plan registry changes without applying them
        """
        self.config = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.registry_client = None
        self.directory_client = None
        self.cancel_event = threading.Event()
        self.stage = STAGE_STARTUP

        self.sync_stats = {
            'organizations': 0,
            'users': 0,
            'registry_groups': 0,
            'directory_groups': 0,
            'directory_members': 0,
            'groups_updated': 0,
            'groups_created': 0,
            'skipped_empty_groups': 0,
            'unmatched_registry_groups': 0,
            'dry_run': dry_run,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0
        }

    def install_signal_handlers(self):
        """Cancel the run on SIGINT and SIGTERM."""
        def handle_signal(signum, frame):
            logger.warning(f"Received signal {signum}, cancelling sync")
            self.cancel_event.set()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            self._setup_logging()

            logger.info(f"Starting directory group sync{' (dry run)' if self.dry_run else ''}")

            registry_groups = self._fetch_registry_state()
            directory_groups, membership = self._fetch_directory_state()
            result = self._reconcile(registry_groups, directory_groups, membership)

            self._record_result(result)
            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()
            self._send_success_notification()

            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION
        except OperationCancelled as e:
            logger.warning(f"Sync cancelled during {self.stage} stage: {e}")
            return EXIT_CANCELLED
        except ReconcileError as e:
            logger.error(f"Reconciliation failed after {e.applied} applied changes: {e}")
            self._send_failure_notification("Registry Update Failed", str(e), {
                'Failed Action': e.action.describe(),
                'Changes Applied Before Failure': e.applied
            })
            return EXIT_RECONCILE
        except RegistryAPIError as e:
            logger.error(f"Registry error: {e}")
            self._send_failure_notification("Registry Error", str(e), {'Status Code': e.status_code})
            return EXIT_REGISTRY
        except (DirectoryError, MemberFetchError) as e:
            logger.error(f"Directory error: {e}")
            self._send_failure_notification("Directory Error", str(e))
            return EXIT_DIRECTORY
        except PaginationError as e:
            logger.error(f"Paginated fetch failed at page {e.page} with {len(e.partial_items)} items fetched: {e}")
            if self.stage == STAGE_REGISTRY:
                self._send_failure_notification("Registry Error", str(e), {'Page': e.page})
                return EXIT_REGISTRY
            self._send_failure_notification("Directory Error", str(e), {'Page': e.page})
            return EXIT_DIRECTORY
        except SyncError as e:
            logger.error(f"Sync failed during {self.stage} stage: {e}")
            self._send_failure_notification("Sync Failed", str(e))
            return EXIT_UNEXPECTED
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        self.config = load_config(self.config_path)

    def _setup_logging(self):
        """Configure logging based on configuration."""
        setup_logging(self.config.get('logging', {}))

    def _connect_registry(self):
        """Create the registry client and log in."""
        self.registry_client = RegistryClient(self.config['registry'], self.config.get('error_handling', {}))
        try:
            self.registry_client.authenticate()
        except RegistryAPIError:
            audit_logger.log_authentication('registry', self.registry_client.client_id, False)
            raise
        audit_logger.log_authentication('registry', self.registry_client.client_id, True)

    def _fetch_registry_state(self):
        """Log in to the registry and read organizations, users and groups."""
        self.stage = STAGE_REGISTRY
        self._connect_registry()

        organizations = self.registry_client.get_organizations(self.cancel_event)
        self.sync_stats['organizations'] = len(organizations)
        logger.info(f"Fetched {len(organizations)} organizations from registry")

        users = self.registry_client.get_users(self.cancel_event)
        self.sync_stats['users'] = len(users)
        logger.info(f"Fetched {len(users)} users from registry")

        groups = self.registry_client.get_groups(self.cancel_event)
        self.sync_stats['registry_groups'] = len(groups)
        logger.info(f"Fetched {len(groups)} groups from registry")

        return groups

    def _fetch_directory_state(self):
        """List prefixed directory groups and fetch their members."""
        self.stage = STAGE_DIRECTORY
        directory_config = self.config['directory']

        self.directory_client = create_directory_client(self.config, self.cancel_event)
        directory_groups = self.directory_client.list_groups()
        self.sync_stats['directory_groups'] = len(directory_groups)

        fetcher = BoundedFetcher(
            self.directory_client.get_group_members,
            concurrency=directory_config.get('concurrency', 10),
            cancel_event=self.cancel_event
        )
        membership = fetcher.fetch(directory_groups)
        self.sync_stats['directory_members'] = sum(len(m) for m in membership.values())

        return directory_groups, membership

    def _reconcile(self, registry_groups, directory_groups, membership) -> ReconcileResult:
        self.stage = STAGE_RECONCILE
        directory_config = self.config['directory']

        reconciler = Reconciler(
            self.registry_client,
            directory_config['group_prefix'],
            provider=directory_config.get('provider_name', 'gsuite'),
            dry_run=self.dry_run
        )
        return reconciler.reconcile(registry_groups, directory_groups, membership)

    def _record_result(self, result: ReconcileResult):
        self.sync_stats['groups_updated'] = result.planned_updates if result.dry_run else result.groups_updated
        self.sync_stats['groups_created'] = result.planned_creates if result.dry_run else result.groups_created
        self.sync_stats['skipped_empty_groups'] = result.skipped_empty_groups
        self.sync_stats['unmatched_registry_groups'] = result.unmatched_registry_groups

    def _send_failure_notification(self, title: str, error_message: str,
                                   additional_info: Optional[Dict[str, Any]] = None):
        """Send email notification for failures."""
        if not self.config:
            return
        info = {'Stage': self.stage, 'Dry Run': self.dry_run}
        info.update(additional_info or {})
        send_failure_notification(title, error_message, self.config.get('notifications', {}), info)

    def _send_success_notification(self):
        """Send email notification for successful sync."""
        send_success_summary(self.sync_stats, self.config.get('notifications', {}))

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats
        verb = "planned" if self.dry_run else "applied"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {format_runtime(stats['runtime_seconds'])}")
        logger.info(f"Registry: {stats['organizations']} organizations, {stats['users']} users, "
                    f"{stats['registry_groups']} groups")
        logger.info(f"Directory: {stats['directory_groups']} groups, {stats['directory_members']} members")
        logger.info(f"Groups updated ({verb}): {stats['groups_updated']}")
        logger.info(f"Groups created ({verb}): {stats['groups_created']}")
        logger.info(f"Empty directory groups skipped: {stats['skipped_empty_groups']}")
        logger.info(f"Registry groups without directory counterpart: {stats['unmatched_registry_groups']}")

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
            self._load_configuration()
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

        try:
            with RegistryClient(self.config['registry'], {'max_retries': 0}) as client:
                client.authenticate()
            health_status['checks']['registry'] = {
                'status': 'pass',
                'message': 'Registry login successful'
            }
        except SyncError as e:
            health_status['checks']['registry'] = {
                'status': 'fail',
                'message': f'Registry login failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        try:
            with create_directory_client(self.config) as directory_client:
                connected = directory_client.test_connection()
        except SyncError as e:
            connected = False
            logger.debug(f"Directory client creation failed: {e}")

        if connected:
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': f"{self.config['directory']['type']} directory reachable"
            }
        else:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f"{self.config['directory']['type']} directory connection failed"
            }
            health_status['status'] = 'unhealthy'

        if self.config['notifications'].get('enable_email', False):
            health_status['checks']['notifications'] = {
                'status': 'pass',
                'message': 'Email notification configuration valid'
            }
        else:
            health_status['checks']['notifications'] = {
                'status': 'skip',
                'message': 'Email notifications disabled'
            }

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.directory_client:
            self.directory_client.close()
            self.directory_client = None
        if self.registry_client:
            self.registry_client.close_connection()
            self.registry_client = None


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='Mirror directory groups into the registry')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true',
                        help='Log planned registry changes without applying them')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config, dry_run=args.dry_run)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(EXIT_CONFIGURATION)

        if send_test_notification(orchestrator.config.get('notifications', {})):
            print("Test email sent successfully")
            sys.exit(0)
        print("Failed to send test email")
        sys.exit(1)

    else:
        orchestrator.install_signal_handlers()
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
