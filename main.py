#!/usr/bin/env python3
"""
AI Pretranslate Service

Entry point for the background pretranslation service. Modes:

- serve: start the scheduler and run until interrupted
- run-once: process every user once and exit
- user <id>: process a single user and exit
- status: print cache statistics and configuration
"""

import asyncio
import signal
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import argparse

from config import config, get_logger
from models import CacheStore
from preferences import PreferenceStore
from pretranslator import CancellationToken
from scheduler import PretranslateScheduler
from telemetry import init_telemetry, trace_span
from utils import format_duration

# Module-specific logger
logger = get_logger("service")
init_telemetry("pretranslate-service")


class PretranslateService:
    """Wires the cache, preference store and scheduler together."""

    def __init__(self, db_path: Optional[str] = None, preferences_dir: Optional[str] = None) -> None:
        self.cache = CacheStore(db_path)
        self.preferences = PreferenceStore(preferences_dir)
        self.scheduler = PretranslateScheduler(self.cache, self.preferences)
        self.preferences.add_ai_change_listener(self.scheduler.notify_config_changed)

    async def initialize(self) -> None:
        await self.cache.start()
        migrated = await self.preferences.migrate_all()
        if migrated:
            logger.info(f"Migrated legacy filter preferences for {migrated} users")

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.cache.close()

    async def serve(self) -> None:
        """Run the scheduler until the task is cancelled."""
        await self.initialize()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGHUP, config.reload_prompts)
        except (NotImplementedError, AttributeError):
            logger.debug("SIGHUP prompt reload not supported on this platform")
        try:
            self.scheduler.start()
            await asyncio.Event().wait()
        finally:
            await self.close()

    @trace_span("run_once", tracer_name="service")
    async def run_once(self) -> bool:
        await self.initialize()
        start_time = time.time()
        try:
            await self.scheduler.run_all(CancellationToken())
            logger.info(f"Round completed in {format_duration(time.time() - start_time)}")
            return True
        except Exception as e:
            logger.error(f"Round failed: {e}")
            return False
        finally:
            await self.close()

    @trace_span("run_user", tracer_name="service", attr_from_args=lambda self, user_id: {"user.id": user_id})
    async def run_user(self, user_id: str) -> bool:
        await self.initialize()
        try:
            stats = await self.scheduler.run_user(user_id)
            if stats is None:
                return False
            logger.info(f"User {user_id}: {stats['titles']} titles, {stats['articles']} articles, "
                        f"{stats['summaries']} summaries cached")
            return True
        except Exception as e:
            logger.error(f"Processing user {user_id} failed: {e}")
            return False
        finally:
            await self.close()

    async def check_status(self) -> dict:
        """Collect cache and configuration status."""
        status = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'config': config.get_config_summary(),
            'checks': {},
        }

        if Path(self.cache.db.db_path).exists():
            try:
                await self.cache.start()
                per_user = await self.cache.stats()
                status['checks']['cache'] = {
                    'status': 'ok',
                    'users': per_user,
                    'total_entries': sum(per_user.values()),
                }
            except Exception as e:
                status['checks']['cache'] = {'status': 'error', 'message': str(e)}
            finally:
                await self.cache.close()
        else:
            status['checks']['cache'] = {'status': 'missing', 'message': 'Database file not found'}

        user_ids = await self.preferences.get_all_user_ids()
        status['checks']['preferences'] = {'users': len(user_ids)}

        all_ok = (
            status['checks']['cache']['status'] == 'ok' and
            status['config']['has_miniflux_url'] and
            status['config']['has_miniflux_credentials']
        )
        status['overall_status'] = 'healthy' if all_ok else 'issues_detected'
        return status

    def print_status(self, status: dict):
        """Print formatted status information."""
        print("\nAI Pretranslate Status")
        print(f"Time: {status['timestamp']}")
        print(f"Overall: {status['overall_status'].upper()}")

        cache = status['checks']['cache']
        if cache['status'] == 'ok':
            print(f"\nCache: {cache['total_entries']} entries")
            for user_id, count in cache['users'].items():
                print(f"   {user_id}: {count}")
        else:
            print(f"\nCache: {cache['status'].upper()} - {cache.get('message', 'Unknown error')}")

        print(f"\nPreferences: {status['checks']['preferences']['users']} users")
        print("\nConfig:")
        for key, value in status['config'].items():
            print(f"   {key}: {value}")


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='AI Pretranslate Service')
    parser.add_argument('mode', choices=['serve', 'run-once', 'user', 'status'],
                        help='Operation mode')
    parser.add_argument('user_id', nargs='?',
                        help='User id (required for "user" mode)')
    parser.add_argument('--db', type=str,
                        help='Cache database path (default: DATABASE_PATH)')
    parser.add_argument('--preferences-dir', type=str,
                        help='Preferences directory (default: PREFERENCES_DIR)')

    args = parser.parse_args()
    if args.mode == 'user' and not args.user_id:
        parser.error('user mode requires a user id')

    service = PretranslateService(args.db, args.preferences_dir)

    try:
        if args.mode == 'serve':
            asyncio.run(service.serve())

        elif args.mode == 'run-once':
            success = asyncio.run(service.run_once())
            sys.exit(0 if success else 1)

        elif args.mode == 'user':
            success = asyncio.run(service.run_user(args.user_id))
            sys.exit(0 if success else 1)

        elif args.mode == 'status':
            status = asyncio.run(service.check_status())
            service.print_status(status)

    except KeyboardInterrupt:
        logger.info("Pretranslate service shutting down")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
