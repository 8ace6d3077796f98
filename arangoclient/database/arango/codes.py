"""ArangoDB error numbers the client reacts to.

See https://docs.arangodb.com/stable/develop/error-codes-and-meanings/
"""

TRANSACTION_NOT_FOUND = 10
ERROR_ARANGO_CONFLICT = 1200
CURSOR_NOT_FOUND = 1600
