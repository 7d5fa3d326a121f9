"""Archive side: columnar batching, Parquet encoding, and object storage."""
