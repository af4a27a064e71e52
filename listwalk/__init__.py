"""
Partitioned, paginated listing crawler.

This package walks a sequence of partitions (for example surname prefixes),
pages through the listing results of each one, extracts one record per
listing and writes one artifact per partition.
"""
