"""Default parameters for transactional stress workloads."""

# Transactions per run, across all workers.
DEFAULT_TRANSACTIONS = 100

# Number of concurrent workers, each with a private store session.
DEFAULT_CONCURRENCY = 1

# Rows inserted per transaction, drawn uniformly from [min, max].
DEFAULT_MIN_INSERTS = 1
DEFAULT_MAX_INSERTS = 9

# Probability that a transaction is rolled back instead of committed.
DEFAULT_ROLLBACK_PROBABILITY = 0.5

# Probability that a transaction re-inserts rows it already wrote.
DEFAULT_DUPLICATE_RETRY_PROBABILITY = 0.0

# Rows re-inserted by one duplicate retry.
DEFAULT_DUPLICATE_BATCH_SIZE = 1

# Default SQLite database file for the SQL store.
DEFAULT_DB_URL = "sqlite:///todos.db"

# Rows dumped after verification.
DEFAULT_SAMPLE_SIZE = 20

# Mismatched keys listed in a verification report.
MAX_REPORTED_KEYS = 10
