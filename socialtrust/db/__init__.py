"""
SocialTrust — Database Package
Re-exports for convenience.
"""
from socialtrust.db.redis import Store, get_store, close
from socialtrust.db.retry import RetryExecutor, RetryOutcome, with_retry
from socialtrust.db.write_queue import WriteSerializationQueue
