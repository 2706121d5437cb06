"""Crawl services: listing client, index builder, crawl engine, coordinator, notifier."""
