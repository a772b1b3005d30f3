"""
Memcached Object Cache

A namespaced, failure-tolerant object cache client for memcached, with a
PHP-serialize compatible value codec.
"""

__version__ = "1.0.0"
__author__ = "Daniil Krizhanovskyi"
