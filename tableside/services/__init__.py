"""
                        Services Module

Business logic behind the API, each concern in its own subpackage:

    - store: record store backends and the collection repository
    - events: event dispatcher and storage-change watcher
    - orders: order lifecycle engine
    - tables: table session reconciler and sweep scheduler

Wire them together with ``tableside.services.container.build_services``.
"""
