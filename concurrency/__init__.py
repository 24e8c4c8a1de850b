"""
BlobDB Concurrency
==================
Bounded worker pools for index work and the out-of-band fault channel.
"""
