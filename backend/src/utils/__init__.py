"""
Utility modules for the temple-events backend.

This package contains shared utilities used across the application:
- logging_config: Named, structured loggers
- progress: Transient progress tracking for long-running rewrites
- claims: In-process claims guarding single-flight operations
- cancellation: Cooperative cancellation tokens with deadlines
- retry: Retry-with-backoff and poll-until primitives
- snapshot_cache: Thread-safe snapshot store for synced calendar windows
"""
