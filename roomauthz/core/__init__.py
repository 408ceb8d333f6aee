"""Room document vocabulary: field catalog, merge markers, wire models."""
