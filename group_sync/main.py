"""
Main orchestrator for AD Cloud Group Sync.

This module drives one sync pass: for every configured mapping it reads the
source and cloud memberships, computes the delta, applies it, and reports
the outcome. A mapping that cannot be read is aborted and the run moves on
to the next one.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional

from group_sync.cloud.auth import EXCHANGE_SCOPE, GRAPH_SCOPE, MsalTokenProvider, TokenAcquisitionError, TokenProvider
from group_sync.cloud.base import CloudAPIError
from group_sync.cloud.exchange import ExchangeClient
from group_sync.cloud.graph import GraphClient
from group_sync.cloud_reader import CloudDirectoryReader
from group_sync.config import ConfigurationError, SyncConfig, load_config
from group_sync.delta import compute_delta
from group_sync.errors import GroupNotFound
from group_sync.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError
from group_sync.logging_setup import audit_logger, get_logging_stats, log_success, setup_logging
from group_sync.models import GroupMapping, SyncResult
from group_sync.mutator import ADD, REMOVE, MembershipMutator
from group_sync.notifications import send_run_report
from group_sync.source_reader import SourceDirectoryReader

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_SOURCE_CONNECTION_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4

# Errors that abort a single mapping; anything else is still contained per mapping
MAPPING_ERRORS = (GroupNotFound, LDAPQueryError, CloudAPIError, TokenAcquisitionError)


class SyncOrchestrator:
    """
    Main orchestrator for directory to cloud group synchronization.

    Processes every configured mapping once, isolating failures per mapping.
    """

    def __init__(self, config: SyncConfig,
                 source_reader: Optional[SourceDirectoryReader] = None,
                 cloud_reader: Optional[CloudDirectoryReader] = None,
                 mutator: Optional[MembershipMutator] = None,
                 token_provider: Optional[TokenProvider] = None,
                 dry_run: bool = False):
        """
        Initialize sync orchestrator.

        Args:
            config: Immutable run configuration
            source_reader: Reader for the source directory (built from config if None)
            cloud_reader: Reader for the cloud directory (built from config if None)
            mutator: Membership mutator (built from config if None)
            token_provider: Cloud token provider (built from config if None)
            dry_run: Compute and report deltas without applying them
        """
        self.config = config
        self.source_reader = source_reader
        self.cloud_reader = cloud_reader
        self.mutator = mutator
        self.token_provider = token_provider
        self.dry_run = dry_run

        self.ldap_client = None
        self.graph = None
        self.exchange = None
        self.results: List[SyncResult] = []

        self.sync_stats = {
            'mappings_processed': 0,
            'mappings_aborted': 0,
            'total_added': 0,
            'total_removed': 0,
            'total_failures': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0
        }

    def run(self) -> int:
        """
        Run the complete synchronization pass.

        Returns:
            Exit code (0 when everything applied, 1 when any mapping or item failed,
            3 when the source directory is unreachable, 4 on unexpected errors)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()
            logger.info(f"Starting group sync for {len(self.config.mappings)} mappings"
                        + (" (dry run)" if self.dry_run else ""))

            if self.source_reader is None:
                self._connect_source()
            if self.cloud_reader is None or self.mutator is None:
                self._build_cloud_clients()

            for mapping in self.config.mappings:
                self.results.append(self.sync_mapping(mapping))

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()
            self._send_run_report()

            if self.sync_stats['mappings_aborted'] or self.sync_stats['total_failures']:
                logger.warning(f"Sync completed with {self.sync_stats['mappings_aborted']} aborted mappings "
                               f"and {self.sync_stats['total_failures']} failed membership changes")
                return EXIT_PARTIAL_FAILURE

            log_success(logger, "Sync completed successfully")
            return EXIT_OK

        except LDAPConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            return EXIT_SOURCE_CONNECTION_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _connect_source(self):
        """Connect to the source directory and build its reader."""
        error_config = self.config.error_handling
        self.ldap_client = LDAPClient(self.config.ldap)
        try:
            self.ldap_client.connect(
                max_retries=int(error_config.get('max_retries', 3)),
                retry_wait=float(error_config.get('retry_wait_seconds', 5))
            )
        except LDAPConnectionError:
            self.ldap_client = None
            raise
        self.source_reader = SourceDirectoryReader(self.ldap_client)

    def _build_cloud_clients(self):
        """Build the cloud API clients, reader and mutator."""
        if self.token_provider is None:
            self.token_provider = MsalTokenProvider(self.config.cloud)
        self.graph = GraphClient(self.config.cloud, self.token_provider, self.config.error_handling)
        self.exchange = ExchangeClient(self.config.cloud, self.token_provider, self.config.error_handling)
        if self.cloud_reader is None:
            self.cloud_reader = CloudDirectoryReader(self.graph)
        if self.mutator is None:
            self.mutator = MembershipMutator(self.graph, self.exchange)

    def sync_mapping(self, mapping: GroupMapping) -> SyncResult:
        """
        Synchronize one source group into its cloud group.

        Both memberships are read before anything is changed; if either read
        fails the mapping is aborted without a partial diff.

        Args:
            mapping: Source and cloud group identifiers

        Returns:
            SyncResult for the mapping
        """
        result = SyncResult(mapping)
        logger.info(f"Syncing group: {mapping}")

        try:
            source = self.source_reader.read_source_members(mapping.source_group)
            result.source_enabled = len(source.enabled)
            result.source_disabled = source.disabled_count
            result.source_skipped = source.skipped_count

            descriptor, cloud_members = self.cloud_reader.read_cloud_group(mapping.cloud_group)
            result.group_kind = descriptor.kind
            result.cloud_members = len(cloud_members)
        except MAPPING_ERRORS as e:
            return self._abort(result, str(e))
        except Exception as e:
            logger.error(f"Unexpected error reading {mapping}: {e}", exc_info=True)
            return self._abort(result, f"unexpected error: {e}")

        delta = compute_delta(source.enabled, cloud_members)
        result.pending_adds = delta.to_add.sorted()
        result.pending_removes = delta.to_remove.sorted()
        logger.info(f"Changes needed for {descriptor.label}: {len(delta.to_add)} to add, "
                    f"{len(delta.to_remove)} to remove")

        if self.dry_run:
            for identity in result.pending_adds:
                logger.info(f"[dry run] Would add {identity} to {descriptor.label}")
            for identity in result.pending_removes:
                logger.info(f"[dry run] Would remove {identity} from {descriptor.label}")
        elif not delta.is_empty:
            result.added = self.mutator.apply_batch(descriptor, delta.to_add, ADD)
            result.removed = self.mutator.apply_batch(descriptor, delta.to_remove, REMOVE)

        result.status = 'completed'
        result.finished_at = datetime.now()

        self.sync_stats['mappings_processed'] += 1
        self.sync_stats['total_added'] += result.added_count
        self.sync_stats['total_removed'] += result.removed_count
        self.sync_stats['total_failures'] += len(result.failures)

        self._log_mapping_summary(result)
        return result

    def _abort(self, result: SyncResult, reason: str) -> SyncResult:
        result.status = 'aborted'
        result.error = reason
        result.finished_at = datetime.now()
        self.sync_stats['mappings_aborted'] += 1
        logger.error(f"Aborting mapping {result.mapping}: {reason}")
        audit_logger.log_mapping_aborted(str(result.mapping), reason)
        return result

    def _log_mapping_summary(self, result: SyncResult):
        message = (f"Group {result.mapping}: {result.added_count} added, {result.removed_count} removed, "
                   f"{len(result.failures)} failed (source {result.source_enabled} enabled / "
                   f"{result.source_disabled} disabled, cloud {result.cloud_members} members)")
        if result.failures:
            logger.warning(message)
            for failure in result.failures:
                logger.warning(f"  Failed to {failure.operation} {failure.identity}: {failure.error}")
        else:
            log_success(logger, message)

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Mappings processed: {stats['mappings_processed']}")
        logger.info(f"Mappings aborted: {stats['mappings_aborted']}")
        logger.info(f"Total users added: {stats['total_added']}")
        logger.info(f"Total users removed: {stats['total_removed']}")
        logger.info(f"Total failed changes: {stats['total_failures']}")

        for result in self.results:
            logger.info(f"--- {result.mapping} ---")
            logger.info(f"  Status: {result.status}" + (f" ({result.error})" if result.error else ""))
            if not result.aborted:
                logger.info(f"  Group type: {result.group_kind}")
                logger.info(f"  Source enabled/disabled/skipped: "
                            f"{result.source_enabled}/{result.source_disabled}/{result.source_skipped}")
                logger.info(f"  Cloud members before sync: {result.cloud_members}")
                logger.info(f"  Added: {result.added_count}, Removed: {result.removed_count}, "
                            f"Failed: {len(result.failures)}")

    def _send_run_report(self):
        """Email the run report when notifications are enabled."""
        try:
            send_run_report([r.to_dict() for r in self.results], self.sync_stats, self.config.notifications)
        except Exception as e:
            logger.error(f"Failed to send run report: {e}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check that both directories are reachable with the configured credentials.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {
                'configuration': {
                    'status': 'pass',
                    'message': f"{len(self.config.mappings)} group mappings configured"
                }
            }
        }

        test_client = LDAPClient(self.config.ldap)
        try:
            if test_client.test_connection():
                health_status['checks']['ldap'] = {'status': 'pass', 'message': 'LDAP bind and root DSE read successful'}
            else:
                health_status['checks']['ldap'] = {'status': 'fail', 'message': 'LDAP connection test failed'}
                health_status['status'] = 'unhealthy'
        finally:
            test_client.disconnect()

        token_provider = self.token_provider or MsalTokenProvider(self.config.cloud)
        for name, scope in (('graph', GRAPH_SCOPE), ('exchange', EXCHANGE_SCOPE)):
            try:
                token_provider.get_token(scope)
                health_status['checks'][name] = {'status': 'pass', 'message': 'Access token acquired'}
            except TokenAcquisitionError as e:
                health_status['checks'][name] = {'status': 'fail', 'message': str(e)}
                health_status['status'] = 'unhealthy'

        health_status['checks']['logging'] = {'status': 'pass', 'details': get_logging_stats()}
        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.ldap_client:
            self.ldap_client.disconnect()
        for client in (self.graph, self.exchange):
            if client:
                client.close_connection()


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Sync on-premises directory groups into cloud groups')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true',
                        help='Compute and log membership changes without applying them')
    parser.add_argument('--health-check', action='store_true',
                        help='Check directory connectivity instead of syncing')

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIGURATION_ERROR)

    setup_logging(config.logging)
    orchestrator = SyncOrchestrator(config, dry_run=args.dry_run)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
