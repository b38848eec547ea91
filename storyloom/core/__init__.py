"""Core engine: chunking, embeddings, chunk store, retrieval and planning context."""
