"""
Health monitoring and Prometheus metrics for the mint engine
"""

import os
import time
from typing import Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from log_utils import get_logger

logger = get_logger(__name__)

# Prometheus metrics
engine_info = Info('minter_engine', 'Mint engine information')
deposits_seen_total = Counter('minter_deposits_seen_total', 'Matching deposits returned by the deposit source')
mints_finalized_total = Counter('minter_mints_finalized_total', 'Deposits minted and marked processed')
mint_failures_total = Counter('minter_mint_failures_total', 'Aborted mint attempts by stage', ['stage'])
tick_failures_total = Counter('minter_tick_failures_total', 'Ticks aborted before processing deposits')
next_sequence_gauge = Gauge('minter_next_sequence', 'Next unused mint sequence number')
pending_reservations_gauge = Gauge('minter_pending_reservations', 'Reservations awaiting finalization')
processed_deposits_gauge = Gauge('minter_processed_deposits', 'Deposits permanently processed')
last_tick_time = Gauge('minter_last_tick_timestamp_seconds', 'Timestamp of the last completed tick')
tick_duration = Histogram('minter_tick_duration_seconds', 'Time spent in one poll tick')
health_check_status = Gauge('minter_health_check_status', 'Health check status by component', ['component'])


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    status: HealthStatus
    message: str
    last_check: float
    details: Optional[Dict[str, Any]] = None


def record_state(state) -> None:
    """Mirror the state store counters into gauges"""
    next_sequence_gauge.set(state.next_sequence)
    pending_reservations_gauge.set(len(state.pending))
    processed_deposits_gauge.set(state.processed_count)


class HealthMonitor:
    """Component health for the status API"""

    def __init__(self, state=None, poll_interval: float = 60, version: str = "1.0.0"):
        self.state = state
        self.poll_interval = poll_interval
        self.start_time = time.time()
        self.last_tick: Optional[float] = None
        self.last_tick_ok = True
        engine_info.info({
            'version': version,
            'node_id': os.environ.get('HOSTNAME', 'unknown')
        })

    def record_tick(self, ok: bool):
        self.last_tick = time.time()
        self.last_tick_ok = ok
        last_tick_time.set(self.last_tick)

    def check_state_health(self) -> ComponentHealth:
        """State file must still exist and be readable"""
        if self.state is None:
            health_check_status.labels(component='state').set(0.0)
            return ComponentHealth(HealthStatus.UNHEALTHY, "State store not loaded", time.time())

        path = self.state.path
        if not os.path.exists(path) or not os.access(path, os.R_OK | os.W_OK):
            health_check_status.labels(component='state').set(0.0)
            return ComponentHealth(
                status=HealthStatus.UNHEALTHY,
                message=f"State file not accessible: {path}",
                last_check=time.time(),
            )

        pending = len(self.state.pending)
        health_check_status.labels(component='state').set(1.0)
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="State file accessible",
            last_check=time.time(),
            details={
                "next_sequence": self.state.next_sequence,
                "pending": pending,
                "processed": self.state.processed_count,
            }
        )

    def check_scheduler_health(self) -> ComponentHealth:
        """Ticks must keep coming; a failed fetch degrades but is retried"""
        now = time.time()
        reference = self.last_tick or self.start_time
        silence = now - reference

        if silence > 3 * self.poll_interval:
            health_check_status.labels(component='scheduler').set(0.0)
            return ComponentHealth(
                status=HealthStatus.UNHEALTHY,
                message=f"No tick for {silence:.0f}s",
                last_check=now,
                details={"last_tick": self.last_tick},
            )

        if not self.last_tick_ok:
            health_check_status.labels(component='scheduler').set(0.5)
            return ComponentHealth(
                status=HealthStatus.DEGRADED,
                message="Last tick could not fetch deposits",
                last_check=now,
                details={"last_tick": self.last_tick},
            )

        health_check_status.labels(component='scheduler').set(1.0)
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Scheduler ticking",
            last_check=now,
            details={"last_tick": self.last_tick},
        )

    def get_health(self) -> Dict[str, Any]:
        components = {
            "state": self.check_state_health(),
            "scheduler": self.check_scheduler_health(),
        }
        statuses = {c.status for c in components.values()}
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return {
            "status": overall.value,
            "uptime": time.time() - self.start_time,
            "components": {
                name: {
                    "status": c.status.value,
                    "message": c.message,
                    "last_check": c.last_check,
                    "details": c.details,
                }
                for name, c in components.items()
            },
        }
