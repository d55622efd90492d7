"""tidesync: incremental upload of locally recorded diabetes data to Tidepool."""
