"""Portfolio and blog assistant: retrieval-augmented Q&A over portfolio and blog content."""
