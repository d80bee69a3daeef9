import logging

import psutil

from .storage_types import InstanceStats

logger = logging.getLogger(__name__)


def log_instance_status(
    stats: InstanceStats, store_name: str, include_process_rss: bool = True
) -> None:
    """Log instance cache stats alongside system memory and process RSS."""
    try:
        vm = psutil.virtual_memory()
        process_rss_mb: int | None = None
        if include_process_rss:
            try:
                process_rss_mb = psutil.Process().memory_info().rss // (1024**2)
            except psutil.Error:
                process_rss_mb = None

        msg = (
            f"MetadataStore={store_name} | instances={stats.cached_instances} "
            f"(oldest idle {stats.oldest_instance_age_ms // 1000}s, "
            f"pending={stats.pending_reconstructions}, "
            f"rebuilt={stats.reconstructions}, evicted={stats.evictions}) | "
            f"RAM used={vm.percent:.1f}% "
            f"({vm.used // (1024**2)}MB/{vm.total // (1024**2)}MB)"
            + (
                f" | Process RSS={process_rss_mb}MB"
                if process_rss_mb is not None
                else ""
            )
        )
        logger.info(msg)
    except Exception as exc:  # noqa: BLE001
        logger.debug(f"Failed to log instance status: {exc}")
