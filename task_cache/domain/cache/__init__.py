"""
Cache Domain Module

Namespaces, keys, codecs and outcome types shared by the cache service,
the rate limiter and the invalidation coordinator.
"""
