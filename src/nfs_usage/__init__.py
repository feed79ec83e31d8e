"""nfs-usage — per-directory disk usage of a shared filesystem, indexed in Elasticsearch."""
