"""
Health Check - System health monitoring
"""

import asyncio
import time
from typing import Dict

from config.environments import current_config
from database.db import ping_db
from tools.language_model import llm
from utils.cache import kv_store
from utils.timeutils import isoformat, utcnow
from workers.followup_worker import followup_worker


class HealthCheck:
    """System health monitoring"""

    async def check_database(self) -> Dict:
        """Check database connectivity"""
        start = time.time()
        try:
            await ping_db()
            return {
                'status': 'healthy',
                'latency_ms': int((time.time() - start) * 1000),
                'message': 'Database connection OK'
            }
        except Exception as e:
            return {
                'status': 'unhealthy',
                'error': str(e),
                'message': 'Database connection failed'
            }

    async def check_ollama(self) -> Dict:
        """Check Ollama LLM service"""
        try:
            models = await asyncio.to_thread(llm.list_models)
        except Exception as e:
            return {
                'status': 'unhealthy',
                'error': str(e),
                'message': 'Ollama service not responding'
            }

        if llm.model not in models and f"{llm.model}:latest" not in models:
            return {
                'status': 'degraded',
                'models': models,
                'message': f'Ollama running but model {llm.model} is not pulled'
            }

        return {
            'status': 'healthy',
            'models': models,
            'message': 'Ollama service OK'
        }

    async def check_followup_worker(self) -> Dict:
        """Check follow-up worker status"""
        if not current_config.ENABLE_FOLLOWUP_WORKER:
            return {
                'status': 'healthy',
                'message': 'Follow-up worker disabled (cron endpoint in use)'
            }

        status = followup_worker.get_status()
        if status['running']:
            return {
                'status': 'healthy',
                'last_run': status.get('last_run'),
                'message': 'Follow-up worker running'
            }
        return {
            'status': 'unhealthy',
            'message': 'Follow-up worker not running'
        }

    async def check_kv_store(self) -> Dict:
        """Check the key-value store used for locks and dedup"""
        try:
            ok = await kv_store.ping()
        except Exception as e:
            # Locks fail open, so a broken store only degrades dedup
            return {
                'status': 'degraded',
                'error': str(e),
                'message': 'Key-value store not responding'
            }

        return {
            'status': 'healthy' if ok else 'degraded',
            'backend': type(kv_store).__name__,
            'message': 'Key-value store OK' if ok else 'Key-value store ping failed'
        }

    async def check_all(self) -> Dict:
        """Run all health checks"""
        checks = await asyncio.gather(
            self.check_database(),
            self.check_ollama(),
            self.check_followup_worker(),
            self.check_kv_store(),
            return_exceptions=True
        )

        names = ('database', 'ollama', 'followup_worker', 'kv_store')
        result = {
            'timestamp': isoformat(utcnow()),
            'checks': {
                name: check if isinstance(check, dict) else {'status': 'unhealthy', 'error': str(check)}
                for name, check in zip(names, checks)
            }
        }

        # Determine overall status
        statuses = [check.get('status', 'unknown') for check in result['checks'].values()]

        if 'unhealthy' in statuses:
            result['overall_status'] = 'unhealthy'
        elif 'degraded' in statuses:
            result['overall_status'] = 'degraded'
        else:
            result['overall_status'] = 'healthy'

        return result


# Singleton instance
health_check = HealthCheck()
