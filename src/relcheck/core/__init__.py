"""Model types, validation, the rewrite evaluator and the query façade."""
