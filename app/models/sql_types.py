from sqlalchemy import BigInteger, Integer

# PostgreSQL uses BIGINT, SQLite tests need INTEGER for autoincrement PK behavior.
ROW_ID_SQL_TYPE = BigInteger().with_variant(Integer, "sqlite")
# Provider timestamps are epoch seconds.
EPOCH_SQL_TYPE = BigInteger().with_variant(Integer, "sqlite")
